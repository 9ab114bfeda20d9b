"""Versioned and backup repositories."""

from .backup import FileBackupRepository, atomic_write
from .base import BackupRepository, ReplicatedRepository, Repository
from .cached import UNCOMMITTED_VERSION, CachedRepository
from .file_repository import FileRepository
from .remote import RemoteRepository

__all__ = [
    "BackupRepository",
    "CachedRepository",
    "FileBackupRepository",
    "FileRepository",
    "RemoteRepository",
    "ReplicatedRepository",
    "Repository",
    "UNCOMMITTED_VERSION",
    "atomic_write",
]
