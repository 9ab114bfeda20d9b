"""Remote repository paired with a local working copy."""

import logging

from ..errors import NotFoundError
from ..ranges import SortedRangeSet
from .base import BackupRepository, Repository

logger = logging.getLogger(__name__)

UNCOMMITTED_VERSION = -1


class CachedRepository:
    """Working copy of a remote ``Repository`` kept in a ``BackupRepository``.

    The backup slot of the local store always holds the last version that was
    checked out or committed, so ``revert`` discards local edits. Instances are
    not thread-safe; callers serialize access.
    """

    def __init__(
        self,
        remote: Repository,
        local: BackupRepository,
        most_recent_version: int = UNCOMMITTED_VERSION,
    ):
        """Initialize the cached repository.

        Args:
            remote: Repository holding the committed versions.
            local: Backup repository holding the working copy.
            most_recent_version: Version the working copy was based on, or
                ``UNCOMMITTED_VERSION`` if nothing was checked out yet.
        """
        self.remote = remote
        self.local = local
        self._most_recent_version = most_recent_version

    @property
    def most_recent_version(self) -> int:
        return self._most_recent_version

    def checkout(self, version: int | None = None, fail: bool = False) -> bytes | None:
        """Fetch a version from the remote into the working copy.

        Args:
            version: Version to check out; the remote head when omitted.
            fail: With no ``version``, raise instead of returning None when the
                remote holds nothing yet.

        Returns:
            The checked out bytes, or None if the remote is empty.
        """
        if version is None:
            head = self.remote.get_range().high
            self._most_recent_version = head
            if head <= 0:
                if fail:
                    raise NotFoundError("No version has yet been committed to the repository")
                return None
            version = head

        self.local.write(self.remote.checkout(version))
        self._keep_for_revert()
        self._most_recent_version = version
        logger.debug(f"Checked out version {version} from {self.remote!r}")
        return self.local.read()

    def commit(self, data: bytes | None = None, from_version: int | None = None) -> bool:
        """Commit the working copy (optionally replaced by ``data``) to the remote.

        Without ``from_version`` the commit is based on the most recent
        checked out version.

        Returns:
            The remote's verdict; on success the working copy becomes the new
            backup and ``most_recent_version`` advances.
        """
        if data is not None:
            self.local.write(data)
        if from_version is None:
            if self._most_recent_version < 0:
                raise RuntimeError("A commit should be preceded by a checkout")
            from_version = self._most_recent_version

        success = self.remote.commit(self.local.read(), from_version)
        if success:
            self._keep_for_revert()
            self._most_recent_version = from_version + 1
        else:
            logger.info(f"Commit from version {from_version} was rejected by {self.remote!r}")
        return success

    def _keep_for_revert(self) -> None:
        """Make the working copy the version ``revert`` returns to."""
        if not self.local.backup():
            # Empty content is never backed up; drop the older revert point
            self.local.delete()

    def get_range(self) -> SortedRangeSet:
        return self.remote.get_range()

    def get_local(self, fail: bool = False) -> bytes:
        if self._most_recent_version <= 0 and fail:
            raise NotFoundError(f"No local version available of {self.local!r}, remote {self.remote!r}")
        return self.local.read()

    def write_local(self, data: bytes) -> None:
        self.local.write(data)

    def revert(self) -> bool:
        """Discard local edits by restoring the last checked out version."""
        return self.local.restore()

    def is_current(self) -> bool:
        return self.remote.get_range().high == self._most_recent_version

    def delete_local(self) -> None:
        self.local.delete()
