"""Full and fix deployment streams computed from two snapshots."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from ..errors import OverloadedError
from .artifact import ArtifactData, DeploymentSnapshot

logger = logging.getLogger(__name__)

BACKOFF_SECONDS_PER_USER = 5


def artifact_order(artifact: ArtifactData) -> tuple[str, str]:
    """Sort key: symbolic name, then filename."""
    return artifact.key


@dataclass(frozen=True)
class DeploymentStream:
    """What to ship to a target to bring it to ``version``.

    ``artifacts`` holds the entries whose bytes are shipped, in install
    order. For a fix package ``missing`` lists the artifacts the target
    already has unchanged and ``removed`` those it should no longer have.
    """

    target: str
    version: str
    artifacts: tuple[ArtifactData, ...]
    from_version: str | None = None
    missing: tuple[ArtifactData, ...] = ()
    removed: tuple[ArtifactData, ...] = ()

    @property
    def is_fix_package(self) -> bool:
        return self.from_version is not None


class UsageLimiter:
    """Counts concurrent users of a resource and rejects those above a maximum.

    A user is a thread: nested ``acquire`` blocks on the same thread share
    the slot taken by the outermost one.
    """

    def __init__(self, max_users: int = 0):
        """Initialize the limiter.

        Args:
            max_users: Maximum number of concurrent users; 0 is unlimited.
        """
        self.max_users = max_users
        self._users = 0
        self._lock = threading.Lock()
        self._held = threading.local()

    @property
    def users(self) -> int:
        return self._users

    @contextmanager
    def acquire(self) -> Iterator[None]:
        """Hold one usage slot for the duration of the block.

        Raises:
            OverloadedError: If the maximum is exceeded; ``backoff_seconds``
                grows with the number of excess users.
        """
        depth = getattr(self._held, "depth", 0)
        if depth:
            self._held.depth = depth + 1
            try:
                yield
            finally:
                self._held.depth = depth
            return

        with self._lock:
            self._users += 1
            current = self._users
        try:
            if self.max_users > 0 and current > self.max_users:
                backoff = (current - self.max_users) * BACKOFF_SECONDS_PER_USER
                logger.warning(f"Too many concurrent users ({current}), asking to retry in {backoff}s")
                raise OverloadedError(
                    f"Too many users, maximum is {self.max_users}", backoff_seconds=backoff
                )
            self._held.depth = 1
            try:
                yield
            finally:
                self._held.depth = 0
        finally:
            with self._lock:
                self._users -= 1


class DeploymentDiffEngine:
    """Builds deployment streams from snapshots.

    Artifacts are matched across snapshots by ``(symbolic name, filename)``.
    Output is always sorted by symbolic name, then filename.
    """

    def __init__(self, limiter: UsageLimiter | None = None):
        self.limiter = limiter or UsageLimiter()

    def full_package(self, to: DeploymentSnapshot) -> DeploymentStream:
        """Every artifact of ``to``, all marked changed."""
        with self.limiter.acquire():
            artifacts = tuple(
                a.with_changed(True) for a in sorted(to.artifacts, key=artifact_order)
            )
        logger.debug(f"Full package {to.target}@{to.version}: {len(artifacts)} artifacts")
        return DeploymentStream(target=to.target, version=to.version, artifacts=artifacts)

    def fix_package(self, from_: DeploymentSnapshot | None, to: DeploymentSnapshot) -> DeploymentStream:
        """Only the artifacts that changed between ``from_`` and ``to``.

        Without a ``from_`` snapshot this is the full package.
        """
        if from_ is None:
            return self.full_package(to)
        with self.limiter.acquire():
            changed, unchanged, removed = self.diff(from_, to)
        logger.debug(
            f"Fix package {to.target} {from_.version}->{to.version}: "
            f"{len(changed)} changed, {len(unchanged)} unchanged, {len(removed)} removed"
        )
        return DeploymentStream(
            target=to.target,
            version=to.version,
            artifacts=changed,
            from_version=from_.version,
            missing=unchanged,
            removed=removed,
        )

    @staticmethod
    def diff(
        from_: DeploymentSnapshot, to: DeploymentSnapshot
    ) -> tuple[tuple[ArtifactData, ...], tuple[ArtifactData, ...], tuple[ArtifactData, ...]]:
        """Classify artifacts as changed, unchanged or removed.

        Returns:
            Tuple of (changed, unchanged, removed), each sorted. Changed and
            unchanged come from ``to`` with ``has_changed`` set; removed come
            from ``from_``.
        """
        previous = {a.key: a for a in from_.artifacts}
        changed = []
        unchanged = []
        for artifact in sorted(to.artifacts, key=artifact_order):
            old = previous.pop(artifact.key, None)
            if old is not None and artifact.same_content(old):
                unchanged.append(artifact.with_changed(False))
            else:
                changed.append(artifact.with_changed(True))
        removed = sorted(previous.values(), key=artifact_order)
        return tuple(changed), tuple(unchanged), tuple(removed)
