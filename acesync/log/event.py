"""Audit log records and the line formats used to exchange them."""

import re
import time
from dataclasses import dataclass, field
from enum import IntEnum

from ..errors import FormatError
from ..ranges import SortedRangeSet
from . import codec

_NUMBER = re.compile(r"[0-9]+")
_SIGNED_NUMBER = re.compile(r"-?[0-9]+")


class AuditEventType(IntEnum):
    """Event types recorded by a target's audit log."""

    BUNDLE_BASE = 0
    BUNDLE_INSTALLED = 1
    BUNDLE_RESOLVED = 2
    BUNDLE_STARTED = 3
    BUNDLE_STOPPED = 4
    BUNDLE_UNRESOLVED = 5
    BUNDLE_UPDATED = 6
    BUNDLE_UNINSTALLED = 7
    BUNDLE_STARTING = 8
    BUNDLE_STOPPING = 9

    FRAMEWORK_BASE = 1000
    FRAMEWORK_INFO = 1001
    FRAMEWORK_WARNING = 1002
    FRAMEWORK_ERROR = 1003
    FRAMEWORK_REFRESH = 1004
    FRAMEWORK_STARTED = 1005
    FRAMEWORK_STARTLEVEL = 1006

    DEPLOYMENTADMIN_BASE = 2000
    DEPLOYMENTADMIN_INSTALL = 2001
    DEPLOYMENTADMIN_UNINSTALL = 2002
    DEPLOYMENTADMIN_COMPLETE = 2003

    DEPLOYMENTCONTROL_BASE = 3000
    DEPLOYMENTCONTROL_INSTALL = 3001

    TARGETPROPERTIES_BASE = 4000
    TARGETPROPERTIES_SET = 4001


class AuditKey:
    """Property keys used by audit events."""

    ID = "id"
    NAME = "name"
    VERSION = "version"
    LOCATION = "location"
    MSG = "msg"
    TYPE = "type"
    SUCCESS = "success"


def _parse_int(token: str, what: str, line: str) -> int:
    if not _NUMBER.fullmatch(token):
        raise FormatError(f"Invalid {what} {token!r} in {line!r}")
    return int(token)


@dataclass(frozen=True)
class LogEvent:
    """One event in the log of a single target or subject.

    ``properties`` keeps insertion order, which is also the order used by
    ``to_representation``.
    """

    log_id: str
    event_id: int
    timestamp: int
    type: int
    properties: dict[str, str] = field(default_factory=dict)

    def to_representation(self) -> str:
        """Single-line form ``logID,eventID,timestamp,type[,key,value]*``."""
        parts = [codec.encode(self.log_id), str(self.event_id), str(self.timestamp), str(int(self.type))]
        for key, value in self.properties.items():
            parts.append(codec.encode(key))
            parts.append(codec.encode(value))
        return ",".join(parts)

    @classmethod
    def from_representation(cls, line: str) -> "LogEvent":
        """Parse the output of ``to_representation``.

        Raises:
            FormatError: If the line is malformed.
        """
        tokens = line.split(",")
        if len(tokens) < 4 or (len(tokens) - 4) % 2:
            raise FormatError(f"Could not create log event from: {line!r}")
        properties = {}
        for i in range(4, len(tokens), 2):
            properties[codec.decode(tokens[i])] = codec.decode(tokens[i + 1])
        type_token = tokens[3]
        if not _SIGNED_NUMBER.fullmatch(type_token):
            raise FormatError(f"Invalid event type {type_token!r} in {line!r}")
        return cls(
            log_id=codec.decode(tokens[0]),
            event_id=_parse_int(tokens[1], "event ID", line),
            timestamp=_parse_int(tokens[2], "timestamp", line),
            type=int(type_token),
            properties=properties,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON output."""
        return {
            "log_id": self.log_id,
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "type": self.type,
            "properties": dict(self.properties),
        }


def now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Descriptor:
    """The event IDs one party holds for one log."""

    log_id: str
    range_set: SortedRangeSet

    def to_representation(self) -> str:
        return f"{codec.encode(self.log_id)},{self.range_set.to_representation()}"

    @classmethod
    def from_representation(cls, line: str) -> "Descriptor":
        """Parse ``logID,range``; the range itself may contain commas."""
        log_id, sep, representation = line.partition(",")
        if not sep or not log_id:
            raise FormatError(f"Could not create descriptor from: {line!r}")
        return cls(codec.decode(log_id), SortedRangeSet.parse(representation))


@dataclass(frozen=True)
class LowestID:
    """Lowest event ID that is still kept for a log."""

    log_id: str
    lowest_id: int

    def to_representation(self) -> str:
        return f"{codec.encode(self.log_id)},{self.lowest_id}"

    @classmethod
    def from_representation(cls, line: str) -> "LowestID":
        log_id, sep, value = line.partition(",")
        if not sep or not log_id:
            raise FormatError(f"Could not create lowest ID from: {line!r}")
        return cls(codec.decode(log_id), _parse_int(value, "lowest ID", line))
