"""Error types shared by the acesync components.

Storage I/O failures are not wrapped: they surface as ``OSError`` (or
``sqlite3.Error`` from the log store) exactly as raised. A lost commit race
is reported as ``False`` by ``Repository.commit`` and never as an exception.
"""


class AceSyncError(Exception):
    """Base class for acesync errors."""


class FormatError(AceSyncError, ValueError):
    """Malformed range text, escape sequence, event line or version string."""


class NotFoundError(AceSyncError, LookupError):
    """Unknown version, repository, log or deployment target."""


class NotMasterError(AceSyncError):
    """Commit attempted on a repository that only accepts replicated data."""


class OverloadedError(AceSyncError):
    """Transient backpressure signal; the caller should wait and retry."""

    def __init__(self, message: str, backoff_seconds: float = 0.0):
        super().__init__(message)
        self.backoff_seconds = backoff_seconds


class TransportError(AceSyncError):
    """A remote peer could not be reached or answered with an error."""


class PeerUnavailableError(TransportError):
    """The remote peer could not be reached at all: refused, unreachable or timed out."""
