"""Range-based log replication between two parties.

Each side describes the event IDs it holds per log as a ``Descriptor``.
Comparing descriptors tells a party exactly which events the other side is
missing, so only those are transferred. Replication is additive and
idempotent: an interrupted exchange leaves both stores valid, and the next
run simply continues.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

import httpx

from ..errors import AceSyncError, FormatError, PeerUnavailableError, TransportError
from .event import Descriptor, LogEvent, LowestID
from .store import LogStore

logger = logging.getLogger(__name__)


class SyncMode(Enum):
    """Direction(s) in which data is transferred."""

    NONE = "none"
    PUSH = "push"
    PULL = "pull"
    PUSHPULL = "pushpull"

    @property
    def pushes(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.PUSHPULL)

    @property
    def pulls(self) -> bool:
        return self in (SyncMode.PULL, SyncMode.PUSHPULL)


class SyncStatus(Enum):
    """Status of a sync operation."""

    SUCCESS = "success"
    FAILED = "failed"
    OFFLINE = "offline"  # Remote unavailable


@dataclass
class SyncResult:
    """Result of a sync operation."""

    status: SyncStatus
    events_pushed: int = 0
    events_pulled: int = 0
    ids_pushed: int = 0
    ids_pulled: int = 0
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def transferred(self) -> int:
        return self.events_pushed + self.events_pulled


class LogPeer(Protocol):
    """The remote side of a log replication exchange.

    A peer with a ``log_id`` only exchanges that one log.
    """

    log_id: str | None

    async def query(self) -> list[Descriptor]:
        """Descriptors of every log the peer holds."""
        ...

    async def send(self, events: list[LogEvent]) -> None:
        """Hand events to the peer for storage."""
        ...

    async def receive(self, descriptor: Descriptor) -> list[LogEvent]:
        """Fetch the peer's events selected by ``descriptor``."""
        ...

    async def send_ids(self, lowest_ids: list[LowestID]) -> None:
        ...

    async def receive_ids(self) -> list[LowestID]:
        ...


class LocalLogPeer:
    """Peer backed by a ``LogStore`` in the same process."""

    def __init__(self, store: LogStore, log_id: str | None = None):
        """Initialize the peer.

        Args:
            store: Store answering the requests.
            log_id: Only expose this log, when given.
        """
        self.store = store
        self.log_id = log_id

    def _descriptors(self) -> list[Descriptor]:
        if self.log_id is not None:
            return [self.store.get_descriptor(self.log_id)]
        return self.store.get_descriptors()

    async def query(self) -> list[Descriptor]:
        return self._descriptors()

    async def send(self, events: list[LogEvent]) -> None:
        self.store.put_events(events)

    async def receive(self, descriptor: Descriptor) -> list[LogEvent]:
        return self.store.get_events(descriptor.log_id, descriptor.range_set)

    async def send_ids(self, lowest_ids: list[LowestID]) -> None:
        for lowest in lowest_ids:
            self.store.set_lowest_id(lowest.log_id, lowest.lowest_id)

    async def receive_ids(self) -> list[LowestID]:
        result = []
        for descriptor in self._descriptors():
            lowest = self.store.get_lowest_id(descriptor.log_id)
            if lowest > 0:
                result.append(LowestID(descriptor.log_id, lowest))
        return result


def _lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line]


class HttpLogPeer:
    """Peer reached over HTTP at ``<base_url>/<name>/<command>``.

    Requests are retried with exponential backoff on connection failures,
    timeouts, dropped connections and server errors; client errors and
    malformed responses fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        name: str = "auditlog",
        log_id: str | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
    ):
        """Initialize the HTTP peer.

        Args:
            base_url: Base URL of the server (e.g., "http://server:8080").
            name: Name of the log store on the server.
            log_id: Restrict the exchange to this log, typically the
                target's own ID.
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.log_id = log_id
        self.max_retries = max_retries
        self.timeout = timeout

    async def _request_with_retry(
        self,
        method: str,
        command: str,
        params: dict[str, str] | None = None,
        content: str | None = None,
    ) -> str:
        """Make HTTP request with exponential backoff retry.

        Args:
            method: HTTP method (GET, POST).
            command: Command appended to the store's path.
            params: Optional query parameters.
            content: Optional text body.

        Returns:
            The response body.

        Raises:
            PeerUnavailableError: When the last attempt could not connect or
                timed out.
            TransportError: When the request did not succeed otherwise.
        """
        url = f"{self.base_url}/{self.name}/{command}"
        params = dict(params or {})
        if self.log_id is not None:
            params.setdefault("log_id", self.log_id)
        backoff = 1.0
        last_error = f"Max retries ({self.max_retries}) exceeded"
        unreachable = False

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_retries):
                try:
                    if method == "GET":
                        response = await client.get(url, params=params)
                    elif method == "POST":
                        response = await client.post(
                            url,
                            params=params,
                            content=content.encode("utf-8") if content else b"",
                            headers={"Content-Type": "text/plain; charset=utf-8"},
                        )
                    else:
                        raise TransportError(f"Unsupported method: {method}")

                    if response.status_code == 200:
                        return response.text

                    elif response.status_code >= 500:
                        # Server error, retry
                        last_error = f"HTTP {response.status_code}"
                        unreachable = False
                        logger.warning(
                            f"Server error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        raise TransportError(f"HTTP {response.status_code}: {response.text}")

                except httpx.ConnectError:
                    last_error = "Connection failed"
                    unreachable = True
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.TimeoutException:
                    last_error = "Request timeout"
                    unreachable = True
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                    )
                except httpx.HTTPError as e:
                    # Connection dropped mid-exchange, protocol errors
                    last_error = f"Request error: {e}"
                    unreachable = False
                    logger.warning(
                        f"Request error {e!r}, attempt {attempt + 1}/{self.max_retries}"
                    )

                # Exponential backoff
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        if unreachable:
            raise PeerUnavailableError(last_error)
        raise TransportError(last_error)

    async def query(self) -> list[Descriptor]:
        text = await self._request_with_retry("GET", "query")
        try:
            return [Descriptor.from_representation(line) for line in _lines(text)]
        except FormatError as e:
            raise TransportError(f"Received malformed event range: {e}") from e

    async def send(self, events: list[LogEvent]) -> None:
        body = "".join(f"{event.to_representation()}\n" for event in events)
        await self._request_with_retry("POST", "send", content=body)

    async def receive(self, descriptor: Descriptor) -> list[LogEvent]:
        text = await self._request_with_retry(
            "GET",
            "receive",
            params={
                "log_id": descriptor.log_id,
                "range": descriptor.range_set.to_representation(),
            },
        )
        try:
            return [LogEvent.from_representation(line) for line in _lines(text)]
        except FormatError as e:
            raise TransportError(f"Received malformed event: {e}") from e

    async def send_ids(self, lowest_ids: list[LowestID]) -> None:
        body = "".join(f"{lowest.to_representation()}\n" for lowest in lowest_ids)
        await self._request_with_retry("POST", "sendids", content=body)

    async def receive_ids(self) -> list[LowestID]:
        text = await self._request_with_retry("GET", "receiveids")
        try:
            return [LowestID.from_representation(line) for line in _lines(text)]
        except FormatError as e:
            raise TransportError(f"Received malformed lowest ID: {e}") from e


def calculate_delta(source: list[Descriptor], destination: list[Descriptor]) -> list[Descriptor]:
    """Per log, the IDs present in ``source`` but missing from ``destination``.

    A log unknown to ``destination`` is returned whole; logs without
    missing IDs are left out.
    """
    known = {d.log_id: d.range_set for d in destination}
    result = []
    for s in source:
        if s.range_set.is_empty:
            continue
        other = known.get(s.log_id)
        missing = s.range_set if other is None else s.range_set.difference(other)
        if not missing.is_empty:
            result.append(Descriptor(s.log_id, missing))
    return result


class LogSyncTask:
    """Synchronizes a local ``LogStore`` with a ``LogPeer``.

    Supports:
    - Data transfer: push missing events, pull missing events, or both
    - Lowest IDs: push or pull pruning boundaries between the two sides

    ``execute`` runs one cycle according to the configured modes and never
    raises for remote or data problems; the failure is reported in the
    returned ``SyncResult`` and counts toward the loop's back-off.
    """

    def __init__(
        self,
        store: LogStore,
        peer: LogPeer,
        name: str = "auditlog",
        data_mode: SyncMode = SyncMode.PUSHPULL,
        lowest_id_mode: SyncMode = SyncMode.NONE,
    ):
        """Initialize the sync task.

        Args:
            store: Local log store.
            peer: Remote side of the exchange.
            name: Name of the synchronized log store, used in log messages.
            data_mode: Direction of event transfer.
            lowest_id_mode: Direction of lowest ID transfer.
        """
        self.store = store
        self.peer = peer
        self.name = name
        self.data_mode = data_mode
        self.lowest_id_mode = lowest_id_mode
        self._last_sync: datetime | None = None
        self._consecutive_failures = 0

    # ------------------------------------------------------------------
    # Event transfer

    def _local_descriptors(self) -> list[Descriptor]:
        """Descriptors of the local logs that take part in the exchange."""
        if self.peer.log_id is not None:
            return [self.store.get_descriptor(self.peer.log_id)]
        return self.store.get_descriptors()

    async def _push(self, local: list[Descriptor], remote: list[Descriptor]) -> int:
        delta = calculate_delta(local, remote)
        events = []
        for descriptor in delta:
            events.extend(self.store.get_events(descriptor.log_id, descriptor.range_set))
        if events:
            await self.peer.send(events)
            logger.debug(f"Pushed {len(events)} events of {self.name} to remote")
        return len(events)

    async def _pull(self, local: list[Descriptor], remote: list[Descriptor]) -> int:
        delta = calculate_delta(remote, local)
        added = 0
        for descriptor in delta:
            events = await self.peer.receive(descriptor)
            added += self.store.put_events(events)
        if added:
            logger.debug(f"Pulled {added} events of {self.name} from remote")
        return added

    async def _synchronize(self, push: bool, pull: bool) -> SyncResult:
        local = self._local_descriptors()
        remote = await self.peer.query()
        result = SyncResult(status=SyncStatus.SUCCESS)
        if push:
            result.events_pushed = await self._push(local, remote)
        if pull:
            result.events_pulled = await self._pull(local, remote)
        result.timestamp = datetime.now()
        return result

    async def push(self) -> SyncResult:
        """Send the events the peer is missing."""
        return await self._synchronize(push=True, pull=False)

    async def pull(self) -> SyncResult:
        """Fetch the events this side is missing."""
        return await self._synchronize(push=False, pull=True)

    async def pushpull(self) -> SyncResult:
        """Push, then pull, against a single query of the peer."""
        return await self._synchronize(push=True, pull=True)

    # ------------------------------------------------------------------
    # Lowest IDs

    async def push_ids(self) -> int:
        lowest_ids = []
        for descriptor in self._local_descriptors():
            lowest = self.store.get_lowest_id(descriptor.log_id)
            if lowest > 0:
                lowest_ids.append(LowestID(descriptor.log_id, lowest))
        await self.peer.send_ids(lowest_ids)
        return len(lowest_ids)

    async def pull_ids(self) -> int:
        lowest_ids = await self.peer.receive_ids()
        for lowest in lowest_ids:
            self.store.set_lowest_id(lowest.log_id, lowest.lowest_id)
        return len(lowest_ids)

    # ------------------------------------------------------------------
    # Scheduling

    async def execute(self) -> SyncResult:
        """Run one cycle: lowest IDs first, then event data.

        Returns:
            Combined SyncResult.
        """
        ids_pushed = ids_pulled = 0
        try:
            if self.lowest_id_mode.pushes:
                ids_pushed = await self.push_ids()
            if self.lowest_id_mode.pulls:
                ids_pulled = await self.pull_ids()

            if self.data_mode is SyncMode.NONE:
                result = SyncResult(status=SyncStatus.SUCCESS, timestamp=datetime.now())
            else:
                result = await self._synchronize(self.data_mode.pushes, self.data_mode.pulls)
        except PeerUnavailableError as e:
            self._consecutive_failures += 1
            logger.warning(f"Remote unavailable for {self.name}: {e}")
            return SyncResult(status=SyncStatus.OFFLINE, error=str(e))
        except TransportError as e:
            self._consecutive_failures += 1
            logger.warning(f"Unable to synchronize {self.name} with remote: {e}")
            return SyncResult(status=SyncStatus.FAILED, error=str(e))
        except AceSyncError as e:
            self._consecutive_failures += 1
            logger.error(f"Synchronization of {self.name} aborted: {e}")
            return SyncResult(status=SyncStatus.FAILED, error=str(e))

        result.ids_pushed = ids_pushed
        result.ids_pulled = ids_pulled
        self._consecutive_failures = 0
        self._last_sync = result.timestamp
        return result

    async def run_to_fixed_point(self, max_rounds: int = 10) -> list[SyncResult]:
        """Repeat ``execute`` until a round transfers no events.

        Args:
            max_rounds: Upper bound on the number of rounds.

        Returns:
            The result of every round, the last one transferring nothing
            unless a round failed or ``max_rounds`` was reached.
        """
        results = []
        for _ in range(max_rounds):
            result = await self.execute()
            results.append(result)
            if result.status != SyncStatus.SUCCESS or result.transferred == 0:
                break
        return results

    async def sync_loop(
        self,
        interval_seconds: int = 300,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts.
            stop_event: Event to signal loop should stop.
        """
        logger.info(f"Starting {self.name} sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            try:
                result = await self.execute()
                logger.info(
                    f"Sync {self.name}: {result.status.value}, "
                    f"pushed={result.events_pushed}, "
                    f"pulled={result.events_pulled}"
                )
            except Exception as e:
                self._consecutive_failures += 1
                logger.error(f"Sync loop error for {self.name}: {e}")

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            if self._consecutive_failures > 0:
                wait_time = min(
                    interval_seconds * (2 ** self._consecutive_failures),
                    3600,  # Max 1 hour
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(
                        stop_event.wait(), timeout=wait_time
                    )
                    break  # Stop event was set
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop
            else:
                await asyncio.sleep(wait_time)

        logger.info(f"Sync loop for {self.name} stopped")

    @property
    def last_sync(self) -> datetime | None:
        """Get timestamp of last successful sync."""
        return self._last_sync

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync statistics.
        """
        stats = self.store.get_stats()

        return {
            "name": self.name,
            "data_mode": self.data_mode.value,
            "lowest_id_mode": self.lowest_id_mode.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "consecutive_failures": self._consecutive_failures,
            "total_events": stats["total_events"],
            "logs": len(stats["logs"]),
        }
