"""File-backed current/backup pair for a single resource."""

import logging
import os
import tempfile
import threading
from pathlib import Path

from .base import BackupRepository

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` through a temporary file and an atomic rename.

    A crash at any point leaves either the old content or the new content at
    ``path``, never a truncated mix of both.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class FileBackupRepository(BackupRepository):
    """Keeps ``current`` and ``backup`` as two files.

    All operations on one instance are serialized. ``write`` replaces the
    current file atomically, so readers see either the old or the new bytes.
    """

    def __init__(self, current: str | Path, backup: str | Path):
        """Initialize the backup repository.

        Args:
            current: File holding the current content; created on first write.
            backup: File holding the single rollback snapshot.
        """
        self.current_path = Path(current).expanduser()
        self.backup_path = Path(backup).expanduser()
        self._lock = threading.Lock()

    def read(self) -> bytes:
        with self._lock:
            if not self.current_path.exists():
                return b""
            return self.current_path.read_bytes()

    def write(self, data: bytes) -> None:
        with self._lock:
            atomic_write(self.current_path, data)
        logger.debug(f"Wrote {len(data)} bytes to {self.current_path}")

    def backup(self) -> bool:
        with self._lock:
            data = self.current_path.read_bytes() if self.current_path.exists() else b""
            if not data:
                return False
            atomic_write(self.backup_path, data)
            return True

    def restore(self) -> bool:
        with self._lock:
            data = self.backup_path.read_bytes() if self.backup_path.exists() else b""
            if not data:
                return False
            atomic_write(self.current_path, data)
            logger.info(f"Restored {self.current_path} from backup")
            return True

    def delete(self) -> None:
        with self._lock:
            for path in (self.current_path, self.backup_path):
                path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"FileBackupRepository[{self.current_path},{self.backup_path}]"
