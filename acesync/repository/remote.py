"""HTTP client for a repository hosted by the acesync server."""

import logging

import httpx

from ..errors import NotFoundError, NotMasterError
from ..ranges import SortedRangeSet
from .base import Repository

logger = logging.getLogger(__name__)


class RemoteRepository(Repository):
    """Repository whose versions live on a remote acesync server.

    Talks to the ``/repository/query``, ``/repository/checkout`` and
    ``/repository/commit`` endpoints. Transport failures propagate as
    ``httpx.HTTPError``; this class never retries.
    """

    def __init__(
        self,
        base_url: str,
        name: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        """Initialize the remote repository.

        Args:
            base_url: Server URL (e.g., "http://server:8080").
            name: Name of the repository on the server.
            timeout: Request timeout in seconds.
            client: Optional preconfigured client, used instead of creating one.
        """
        self.base_url = base_url.rstrip("/")
        self.name = name
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def get_range(self) -> SortedRangeSet:
        response = self._client.get("/repository/query", params={"name": self.name})
        response.raise_for_status()
        for line in response.text.splitlines():
            name, _, representation = line.partition(",")
            if name == self.name:
                return SortedRangeSet.parse(representation)
        return SortedRangeSet()

    def checkout(self, version: int) -> bytes:
        response = self._client.get(
            "/repository/checkout", params={"name": self.name, "version": version}
        )
        if response.status_code == 404:
            raise NotFoundError(f"Version {version} of {self.name} not found at {self.base_url}")
        response.raise_for_status()
        return response.content

    def commit(self, data: bytes, from_version: int) -> bool:
        response = self._client.post(
            "/repository/commit",
            params={"name": self.name, "version": from_version},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        if response.status_code == 409:
            logger.debug(f"Remote rejected commit of {self.name} from version {from_version}")
            return False
        if response.status_code == 406:
            raise NotMasterError(f"Repository {self.name} at {self.base_url} is not a master")
        if response.status_code == 404:
            raise NotFoundError(f"Repository {self.name} not found at {self.base_url}")
        response.raise_for_status()
        return True

    def __repr__(self) -> str:
        return f"RemoteRepository[{self.base_url}, {self.name}]"
