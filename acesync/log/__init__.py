"""Append-only event logs and their range-based replication."""

from .event import AuditEventType, AuditKey, Descriptor, LogEvent, LowestID
from .store import LogStore
from .sync import (
    HttpLogPeer,
    LocalLogPeer,
    LogPeer,
    LogSyncTask,
    SyncMode,
    SyncResult,
    SyncStatus,
    calculate_delta,
)

__all__ = [
    "AuditEventType",
    "AuditKey",
    "Descriptor",
    "HttpLogPeer",
    "LocalLogPeer",
    "LogEvent",
    "LogPeer",
    "LogStore",
    "LogSyncTask",
    "LowestID",
    "SyncMode",
    "SyncResult",
    "SyncStatus",
    "calculate_delta",
]
