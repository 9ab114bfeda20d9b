"""FastAPI application exposing repositories, log stores and deployment packages.

All payloads are plain text or raw bytes:

- ``/repository/*``: range lines ``name,range``, version bytes, commits.
- ``/<log name>/*``: descriptor, event and lowest ID lines, one per line.
- ``/deployment/<target>/versions[/<version>]``: version lines and zip packages.
"""

import asyncio
import io
import logging
import math
from datetime import datetime
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import PlainTextResponse, Response

from ..config import Config
from ..deployment import (
    ArtifactSource,
    DeploymentDiffEngine,
    RepositoryDeploymentProvider,
    estimate_size,
    write_deployment_package,
)
from ..errors import FormatError, NotFoundError, NotMasterError, OverloadedError
from ..log import Descriptor, LogEvent, LogStore, LowestID
from ..ranges import FULL_SET, SortedRangeSet
from ..repository import Repository

logger = logging.getLogger(__name__)

PACKAGE_MEDIA_TYPE = "application/vnd.osgi.dp"
SIZE_HEADER = "X-Deployment-Size"
RESERVED_PREFIXES = ("api", "deployment", "docs", "openapi.json", "redoc", "repository")


def _lines(items: list[str]) -> PlainTextResponse:
    return PlainTextResponse("".join(f"{item}\n" for item in items))


def _text(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"Request body is not valid UTF-8: {e}") from e


def _log_router(name: str, store: LogStore) -> APIRouter:
    """Routes for one log store, mounted under ``/<name>``."""
    router = APIRouter(prefix=f"/{name}")

    def descriptors(log_id: str | None) -> list[Descriptor]:
        if log_id is not None:
            return [store.get_descriptor(log_id)]
        return store.get_descriptors()

    @router.get("/query")
    def query(log_id: str | None = None) -> PlainTextResponse:
        """Descriptors of the stored logs."""
        return _lines([d.to_representation() for d in descriptors(log_id)])

    @router.get("/receive")
    def receive(
        log_id: str | None = None,
        range_: str | None = Query(None, alias="range"),
    ) -> PlainTextResponse:
        """Events selected by log and range."""
        range_set = SortedRangeSet.parse(range_) if range_ is not None else FULL_SET
        events = []
        for descriptor in descriptors(log_id):
            events.extend(store.get_events(descriptor.log_id, range_set))
        return _lines([e.to_representation() for e in events])

    @router.post("/send")
    async def send(request: Request) -> PlainTextResponse:
        """Store the posted events; the whole body is rejected if a line is malformed."""
        body = _text(await request.body())
        events = [LogEvent.from_representation(line) for line in body.splitlines() if line]
        added = await asyncio.to_thread(store.put_events, events)
        logger.debug(f"Received {len(events)} events for {name}, {added} new")
        return PlainTextResponse("")

    @router.get("/receiveids")
    def receive_ids(log_id: str | None = None) -> PlainTextResponse:
        result = []
        for descriptor in descriptors(log_id):
            lowest = store.get_lowest_id(descriptor.log_id)
            if lowest > 0:
                result.append(LowestID(descriptor.log_id, lowest).to_representation())
        return _lines(result)

    @router.post("/sendids")
    async def send_ids(request: Request) -> PlainTextResponse:
        body = _text(await request.body())
        lowest_ids = [LowestID.from_representation(line) for line in body.splitlines() if line]
        for lowest in lowest_ids:
            await asyncio.to_thread(store.set_lowest_id, lowest.log_id, lowest.lowest_id)
        return PlainTextResponse("")

    return router


def create_app(
    config: Config,
    repositories: dict[str, Repository] | None = None,
    log_stores: dict[str, LogStore] | None = None,
    provider: RepositoryDeploymentProvider | None = None,
    engine: DeploymentDiffEngine | None = None,
    artifact_source: ArtifactSource | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Application configuration.
        repositories: Versioned repositories by name.
        log_stores: Log stores by name; each gets its own route prefix.
        provider: Optional deployment provider; deployment routes answer 404
            without one.
        engine: Diff engine used to build deployment streams.
        artifact_source: Source of artifact bytes for packages.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="acesync",
        description="Range-based synchronization of repositories, logs and deployments",
        version="0.1.0",
    )

    repositories = repositories or {}
    log_stores = log_stores or {}
    engine = engine or DeploymentDiffEngine()

    # Store references for route handlers
    app.state.config = config
    app.state.repositories = repositories
    app.state.log_stores = log_stores
    app.state.provider = provider
    app.state.engine = engine
    app.state.artifact_source = artifact_source

    # ==================== Error Mapping ====================

    @app.exception_handler(FormatError)
    async def format_error_handler(request: Request, exc: FormatError) -> PlainTextResponse:
        return PlainTextResponse(str(exc), status_code=400)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> PlainTextResponse:
        return PlainTextResponse(str(exc), status_code=404)

    @app.exception_handler(NotMasterError)
    async def not_master_handler(request: Request, exc: NotMasterError) -> PlainTextResponse:
        return PlainTextResponse(str(exc), status_code=406)

    @app.exception_handler(OverloadedError)
    async def overloaded_handler(request: Request, exc: OverloadedError) -> PlainTextResponse:
        retry_after = max(1, math.ceil(exc.backoff_seconds))
        return PlainTextResponse(
            str(exc), status_code=503, headers={"Retry-After": str(retry_after)}
        )

    # ==================== Repository Routes ====================

    def get_repository(name: str) -> Repository:
        try:
            return repositories[name]
        except KeyError:
            raise NotFoundError(f"Unknown repository: {name}") from None

    @app.get("/repository/query")
    def repository_query(name: str | None = None) -> PlainTextResponse:
        """Ranges of the hosted repositories as ``name,range`` lines."""
        lines = [
            f"{repo_name},{repository.get_range().to_representation()}"
            for repo_name, repository in sorted(repositories.items())
            if name is None or repo_name == name
        ]
        return _lines(lines)

    @app.get("/repository/checkout")
    def repository_checkout(name: str, version: int) -> Response:
        data = get_repository(name).checkout(version)
        return Response(content=data, media_type="application/octet-stream")

    @app.post("/repository/commit")
    async def repository_commit(name: str, version: int, request: Request) -> PlainTextResponse:
        """Commit the body on top of ``version``; 409 when that is not the head."""
        repository = get_repository(name)
        data = await request.body()
        if not await asyncio.to_thread(repository.commit, data, version):
            return PlainTextResponse(
                f"Version {version} is not the head of {name}", status_code=409
            )
        return PlainTextResponse("")

    # ==================== Log Routes ====================

    for log_name, store in log_stores.items():
        if log_name in RESERVED_PREFIXES:
            raise ValueError(f"Log store name {log_name!r} clashes with a built-in route")
        app.include_router(_log_router(log_name, store))

    # ==================== Deployment Routes ====================

    def get_provider() -> RepositoryDeploymentProvider:
        if provider is None:
            raise NotFoundError("No deployment provider configured")
        return provider

    def build_stream(target: str, version: str, current: str | None):
        deployments = get_provider()
        to = deployments.get_snapshot(target, version)
        if current is None:
            return engine.full_package(to)
        try:
            from_ = deployments.get_snapshot(target, current)
        except NotFoundError:
            logger.warning(f"Unknown current version {current} of {target}, sending full package")
            return engine.full_package(to)
        return engine.fix_package(from_, to)

    @app.get("/deployment/{target}/versions")
    def deployment_versions(target: str) -> PlainTextResponse:
        return _lines(get_provider().get_versions(target))

    @app.get("/deployment/{target}/versions/{version}")
    def deployment_package(target: str, version: str, current: str | None = None) -> Response:
        """Full package, or a fix package when ``current`` is given.

        The usage slot is held until the last artifact has been copied.
        """
        if artifact_source is None:
            raise NotFoundError("No artifact source configured")
        with engine.limiter.acquire():
            stream = build_stream(target, version, current)
            buffer = io.BytesIO()
            write_deployment_package(stream, buffer, artifact_source)
        return Response(content=buffer.getvalue(), media_type=PACKAGE_MEDIA_TYPE)

    @app.head("/deployment/{target}/versions/{version}")
    def deployment_package_size(target: str, version: str, current: str | None = None) -> Response:
        """Estimated package size in the ``X-Deployment-Size`` header, -1 if unknown."""
        with engine.limiter.acquire():
            stream = build_stream(target, version, current)
            size = estimate_size(stream, artifact_source) if artifact_source is not None else -1
        return Response(headers={SIZE_HEADER: str(size)}, media_type=PACKAGE_MEDIA_TYPE)

    # ==================== Status ====================

    @app.get("/api/health")
    def api_health() -> dict[str, Any]:
        """Health check endpoint for monitoring and load balancers."""
        health: dict[str, Any] = {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "node_name": config.node.name,
            "repositories": {
                name: repository.get_range().to_representation()
                for name, repository in repositories.items()
            },
            "logs": {},
            "deployment": provider is not None,
        }
        for name, store in log_stores.items():
            try:
                health["logs"][name] = store.get_stats()["total_events"]
            except Exception as e:
                health["logs"][name] = str(e)
        return health

    return app
