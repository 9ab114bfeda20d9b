"""Abstract repository interfaces."""

from abc import ABC, abstractmethod

from ..ranges import SortedRangeSet


class Repository(ABC):
    """Linear-history, versioned store of opaque byte blobs.

    Versions are positive integers. The first commit is made from version 0
    and creates version 1; every later commit must name the current head.
    """

    @abstractmethod
    def checkout(self, version: int) -> bytes:
        """Return the data committed as ``version``.

        Raises:
            NotFoundError: If ``version`` is not in ``get_range()``.
        """
        pass

    @abstractmethod
    def commit(self, data: bytes, from_version: int) -> bool:
        """Store ``data`` as version ``from_version + 1``.

        This is a compare-and-swap on the head: it succeeds only when
        ``from_version`` equals the current head. On any mismatch it returns
        ``False`` and changes nothing.
        """
        pass

    @abstractmethod
    def get_range(self) -> SortedRangeSet:
        """The versions for which ``checkout`` will succeed."""
        pass

    @property
    def head(self) -> int:
        """Latest committed version, 0 for an empty repository."""
        return self.get_range().high


class ReplicatedRepository(Repository):
    """Repository that can also receive exact versions from a master."""

    @abstractmethod
    def put(self, data: bytes, version: int) -> bool:
        """Store ``data`` as exactly ``version``.

        Returns:
            False if that version is already present.
        """
        pass


class BackupRepository(ABC):
    """A current slot plus a single rollback snapshot for one resource."""

    @abstractmethod
    def read(self) -> bytes:
        """Current content, or ``b""`` if nothing was ever written."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Atomically replace the current content."""
        pass

    @abstractmethod
    def backup(self) -> bool:
        """Copy current into the backup slot; False if current is empty."""
        pass

    @abstractmethod
    def restore(self) -> bool:
        """Copy backup into current; False if the backup is empty."""
        pass

    @abstractmethod
    def delete(self) -> None:
        """Remove both slots."""
        pass
