"""Deployment snapshots read from a versioned repository.

The repository head holds a JSON document of the form::

    {
      "targets": {
        "gateway-1": [
          {"version": "1.0.0", "artifacts": [{"filename": "a.jar", "url": "...", ...}]}
        ]
      }
    }
"""

import json
import logging
from typing import Any

from ..errors import FormatError, NotFoundError
from ..repository import Repository
from .artifact import ArtifactData, DeploymentSnapshot, Version
from .diff import UsageLimiter

logger = logging.getLogger(__name__)


class RepositoryDeploymentProvider:
    """Answers version and snapshot queries for deployment targets."""

    def __init__(self, repository: Repository, limiter: UsageLimiter | None = None):
        """Initialize the provider.

        Args:
            repository: Repository whose head holds the deployment document.
            limiter: Shared limit on concurrent users.
        """
        self.repository = repository
        self.limiter = limiter or UsageLimiter()

    def _load(self) -> dict[str, Any]:
        head = self.repository.head
        if head <= 0:
            return {}
        raw = self.repository.checkout(head)
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise FormatError(f"Deployment document version {head} is not valid JSON: {e}") from e
        targets = document.get("targets", {}) if isinstance(document, dict) else None
        if not isinstance(targets, dict):
            raise FormatError(f"Deployment document version {head} has no 'targets' mapping")
        return targets

    def _entries(self, target: str) -> list[tuple[Version, dict[str, Any]]]:
        result = []
        for entry in self._load().get(target, []):
            if not isinstance(entry, dict):
                logger.warning(f"Malformed deployment entry of {target} ignored")
                continue
            try:
                version = Version.parse(entry.get("version"))
            except FormatError as e:
                logger.warning(f"Deployment version of {target} ignored: {e}")
                continue
            if version == Version():
                continue
            result.append((version, entry))
        result.sort(key=lambda pair: pair[0])
        return result

    def get_versions(self, target: str) -> list[str]:
        """Deployment versions of ``target`` in ascending order.

        An unknown target has no versions.
        """
        with self.limiter.acquire():
            entries = self._entries(target)
        if not entries:
            logger.debug(f"No versions found for target {target}")
        return [entry.get("version") for _, entry in entries]

    def get_snapshot(self, target: str, version: str) -> DeploymentSnapshot:
        """The artifacts of one deployment version.

        Raises:
            FormatError: If ``version`` or the stored document is malformed.
            NotFoundError: If the target has no such version.
        """
        wanted = Version.parse(version)
        with self.limiter.acquire():
            for found, entry in self._entries(target):
                if found == wanted:
                    artifacts = tuple(
                        ArtifactData.from_dict(a) for a in entry.get("artifacts", [])
                    )
                    return DeploymentSnapshot(target, entry.get("version"), artifacts)
        raise NotFoundError(f"Version {version} not found for target {target}")
