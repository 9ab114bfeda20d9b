"""Directory-backed versioned repository, one file per version."""

import logging
import sys
import threading
from pathlib import Path

from ..errors import NotFoundError, NotMasterError
from ..ranges import SortedRangeSet
from .backup import atomic_write
from .base import ReplicatedRepository

logger = logging.getLogger(__name__)


class FileRepository(ReplicatedRepository):
    """Versioned repository storing version ``n`` as the file ``<dir>/<n><ext>``.

    A master repository accepts ``commit``; a replica only accepts ``put`` of
    versions that were committed elsewhere, so its range may be sparse. With a
    ``limit`` the oldest versions are purged after each commit, which also
    makes the range start above 1.

    Commits on one instance are serialized by a lock: of several concurrent
    commits naming the same head, exactly one wins.
    """

    def __init__(
        self,
        directory: str | Path,
        master: bool = True,
        limit: int | None = None,
        file_extension: str = "",
        skip_unchanged: bool = False,
    ):
        """Initialize the repository.

        Args:
            directory: Storage directory, created if needed.
            master: Whether this repository accepts commits.
            limit: Maximum number of versions to keep; None keeps all.
            file_extension: Suffix appended to every version file name.
            skip_unchanged: Reject a commit whose data equals the head's data.
        """
        if limit is not None and limit < 1:
            raise ValueError(f"Limit must be at least 1, was {limit}")
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)
        self.file_extension = file_extension
        self.skip_unchanged = skip_unchanged
        self._master = master
        self._limit = limit if limit is not None else sys.maxsize
        self._lock = threading.Lock()

    @property
    def is_master(self) -> bool:
        return self._master

    @property
    def limit(self) -> int:
        return self._limit

    def _path(self, version: int) -> Path:
        return self.directory / f"{version}{self.file_extension}"

    def _versions(self) -> list[int]:
        """All stored versions in ascending order."""
        versions = []
        for path in self.directory.iterdir():
            name = path.name
            if name.startswith(".") or not name.endswith(self.file_extension):
                continue
            stem = name[: len(name) - len(self.file_extension)] if self.file_extension else name
            if not (stem.isascii() and stem.isdigit()):
                logger.warning(f"Unable to determine version number for '{name}', skipping it")
                continue
            versions.append(int(stem))
        versions.sort()
        return versions

    def get_range(self) -> SortedRangeSet:
        return SortedRangeSet.from_items(self._versions())

    def checkout(self, version: int) -> bytes:
        path = self._path(version)
        if version <= 0 or not path.is_file():
            raise NotFoundError(f"Version {version} not found in {self.directory}")
        return path.read_bytes()

    def commit(self, data: bytes, from_version: int) -> bool:
        if not self._master:
            raise NotMasterError(f"Commit is only permitted on master repositories ({self.directory})")

        with self._lock:
            versions = self._versions()
            head = versions[-1] if versions else 0
            if from_version != head:
                logger.debug(
                    f"Commit from version {from_version} rejected, head is {head}"
                )
                return False

            if self.skip_unchanged and head and self._path(head).read_bytes() == data:
                logger.debug(f"Commit on top of {head} rejected, content unchanged")
                return False

            atomic_write(self._path(head + 1), data)
            self._purge(versions + [head + 1], self._limit)

        logger.info(f"Committed version {head + 1} to {self.directory}")
        return True

    def put(self, data: bytes, version: int) -> bool:
        if version <= 0:
            raise ValueError("Version must be greater than 0")
        with self._lock:
            path = self._path(version)
            if path.exists():
                return False
            atomic_write(path, data)
        logger.debug(f"Stored replicated version {version} in {self.directory}")
        return True

    def update(self, master: bool, limit: int | None) -> None:
        """Apply a new master flag and version limit, purging if needed."""
        if limit is not None and limit < 1:
            raise ValueError(f"Limit must be at least 1, was {limit}")
        new_limit = limit if limit is not None else sys.maxsize
        with self._lock:
            self._master = master
            if new_limit < self._limit:
                self._purge(self._versions(), new_limit)
            self._limit = new_limit

    def _purge(self, versions: list[int], limit: int) -> None:
        excess = len(versions) - limit
        for version in versions[: max(excess, 0)]:
            self._path(version).unlink(missing_ok=True)
            logger.debug(f"Purged version {version} from {self.directory}")

    def __repr__(self) -> str:
        return f"FileRepository[{self.directory}, master={self._master}]"
