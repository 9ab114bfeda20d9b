"""Artifacts, versions and deployment snapshots."""

import re
from dataclasses import dataclass, field, replace
from typing import Any

from ..errors import FormatError

FILENAME_PATTERN = re.compile(r"[A-Za-z0-9._-]+", re.ASCII)
_QUALIFIER = re.compile(r"[A-Za-z0-9_-]*", re.ASCII)
_NUMBER = re.compile(r"[0-9]+")


@dataclass(frozen=True, order=True)
class Version:
    """``major.minor.micro[.qualifier]`` version, ordered numerically."""

    major: int = 0
    minor: int = 0
    micro: int = 0
    qualifier: str = ""

    @classmethod
    def parse(cls, text: str | None) -> "Version":
        """Parse a version string; missing parts default to 0.

        An empty string or None yields ``0.0.0``.

        Raises:
            FormatError: If a numeric part is not a number or the qualifier
                contains invalid characters.
        """
        if text is None or not text.strip():
            return cls()
        parts = text.strip().split(".", 3)
        numbers = []
        for part in parts[:3]:
            if not _NUMBER.fullmatch(part):
                raise FormatError(f"Invalid version {text!r}")
            numbers.append(int(part))
        while len(numbers) < 3:
            numbers.append(0)
        qualifier = parts[3] if len(parts) > 3 else ""
        if not _QUALIFIER.fullmatch(qualifier):
            raise FormatError(f"Invalid qualifier in version {text!r}")
        return cls(numbers[0], numbers[1], numbers[2], qualifier)

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.micro}"
        return f"{base}.{self.qualifier}" if self.qualifier else base


@dataclass(frozen=True)
class ArtifactData:
    """One artifact of a deployment snapshot.

    An artifact with a symbolic name is a bundle; any other artifact is a
    resource handled by the resource processor named in ``processor_pid``.
    ``has_changed`` is relative to the snapshot it was compared against.
    """

    filename: str
    url: str
    symbolic_name: str | None = None
    version: str | None = None
    processor_pid: str | None = None
    digest: str | None = None
    size: int = -1
    directives: dict[str, str] = field(default_factory=dict)
    has_changed: bool = True

    def __post_init__(self) -> None:
        if not FILENAME_PATTERN.fullmatch(self.filename):
            raise FormatError(f"Invalid artifact filename: {self.filename!r}")
        if self.version is not None:
            Version.parse(self.version)

    @property
    def is_bundle(self) -> bool:
        return self.symbolic_name is not None

    @property
    def key(self) -> tuple[str, str]:
        """Identity of the artifact across snapshots."""
        return (self.symbolic_name or "", self.filename)

    @property
    def normalized_version(self) -> str:
        return str(Version.parse(self.version))

    def same_content(self, other: "ArtifactData") -> bool:
        """Whether ``other`` is the same artifact at the same version and digest."""
        if self.normalized_version != other.normalized_version:
            return False
        if self.digest and other.digest:
            return self.digest == other.digest
        return True

    def with_changed(self, has_changed: bool) -> "ArtifactData":
        return replace(self, has_changed=has_changed)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {"filename": self.filename, "url": self.url}
        for name in ("symbolic_name", "version", "processor_pid", "digest"):
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        if self.size >= 0:
            data["size"] = self.size
        if self.directives:
            data["directives"] = dict(self.directives)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ArtifactData":
        """Create from dictionary."""
        try:
            return cls(
                filename=data["filename"],
                url=data["url"],
                symbolic_name=data.get("symbolic_name"),
                version=data.get("version"),
                processor_pid=data.get("processor_pid"),
                digest=data.get("digest"),
                size=int(data.get("size", -1)),
                directives=dict(data.get("directives", {})),
            )
        except FormatError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise FormatError(f"Invalid artifact description {data!r}: {e}") from e


@dataclass(frozen=True)
class DeploymentSnapshot:
    """The artifacts making up one deployment version of a target."""

    target: str
    version: str
    artifacts: tuple[ArtifactData, ...] = ()

    @property
    def version_key(self) -> Version:
        return Version.parse(self.version)
