"""CLI entry point for acesync."""

import argparse
import asyncio
import inspect
import json
import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, ConfigHolder, load_config
from .errors import FormatError
from .ranges import SortedRangeSet

logger = logging.getLogger(__name__)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            # Fallback for non-serializable objects
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    # Configure handler with appropriate formatter
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _open_repositories(config: Config) -> dict:
    from .repository import FileRepository

    return {
        name: FileRepository(
            config.repository.path(name),
            master=config.repository.master,
            limit=config.repository.limit,
            skip_unchanged=config.repository.skip_unchanged,
        )
        for name in config.repository.names
    }


def _open_log_stores(config: Config, names: tuple[str, ...] | None = None) -> dict:
    from .log import LogStore

    stores = {}
    for name in names if names is not None else config.log.names:
        store = LogStore(config.log.db_path(name), max_events=config.log.max_events)
        store.connect()
        stores[name] = store
    return stores


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP server."""
    config = load_config(args.config)
    holder = ConfigHolder(config)

    try:
        import uvicorn

        from .deployment import (
            ArtifactSource,
            DeploymentDiffEngine,
            RepositoryDeploymentProvider,
            UsageLimiter,
        )
        from .server import create_app
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        return 1

    repositories = _open_repositories(config)
    log_stores = _open_log_stores(config)

    limiter = UsageLimiter(config.deployment.max_concurrent_users)
    provider = None
    if config.deployment.repository in repositories:
        provider = RepositoryDeploymentProvider(repositories[config.deployment.repository], limiter)
    else:
        logger.warning(
            f"Deployment repository '{config.deployment.repository}' is not configured, "
            "deployment routes are disabled"
        )
    source = ArtifactSource(timeout=config.deployment.artifact_timeout)

    def reconfigure(new: Config) -> None:
        for repository in repositories.values():
            repository.update(new.repository.master, new.repository.limit)
        limiter.max_users = new.deployment.max_concurrent_users

    holder.add_listener(reconfigure)

    def reload() -> None:
        try:
            holder.update(load_config(args.config))
        except (OSError, ValueError) as e:
            logger.error(f"Configuration reload failed, keeping current settings: {e}")

    if args.config and hasattr(signal, "SIGHUP"):
        asyncio.get_running_loop().add_signal_handler(signal.SIGHUP, reload)

    host = args.host or config.server.host
    port = args.port or config.server.port
    print(f"Starting acesync server for node {config.node.name}")
    print(f"Repositories: {', '.join(repositories) or 'none'}")
    print(f"Log stores: {', '.join(log_stores) or 'none'}")
    print(f"URL: http://{host}:{port}")

    app = create_app(
        config,
        repositories=repositories,
        log_stores=log_stores,
        provider=provider,
        engine=DeploymentDiffEngine(limiter),
        artifact_source=source,
    )

    try:
        verbose = getattr(args, "verbose", False)
        config_uvicorn = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
        server = uvicorn.Server(config_uvicorn)
        await server.serve()
    finally:
        source.close()
        for store in log_stores.values():
            store.close()

    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Synchronize the local log stores with the server."""
    from .log import HttpLogPeer, LogSyncTask, SyncStatus

    config = load_config(args.config)
    server_url = args.server or config.sync.server_url
    if not server_url:
        print("No server URL configured (sync.server_url or --server)", file=sys.stderr)
        return 1

    stores = _open_log_stores(config, config.sync.log_names)
    tasks = [
        LogSyncTask(
            store,
            HttpLogPeer(
                server_url,
                name=name,
                log_id=config.node.name if args.own_log_only else None,
                max_retries=config.sync.max_retries,
                timeout=config.sync.timeout,
            ),
            name=name,
            data_mode=config.sync.data_mode,
            lowest_id_mode=config.sync.lowest_id_mode,
        )
        for name, store in stores.items()
    ]

    try:
        if args.once:
            failed = False
            for task in tasks:
                results = await task.run_to_fixed_point()
                last = results[-1]
                pushed = sum(r.events_pushed for r in results)
                pulled = sum(r.events_pulled for r in results)
                print(f"{task.name}: {last.status.value}, pushed={pushed}, pulled={pulled}")
                if last.status != SyncStatus.SUCCESS:
                    print(f"  Error: {last.error}", file=sys.stderr)
                    failed = True
            return 1 if failed else 0

        if not config.sync.enabled:
            print("Sync is disabled in the configuration", file=sys.stderr)
            return 1
        await asyncio.gather(
            *(task.sync_loop(config.sync.interval_seconds) for task in tasks)
        )
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        for store in stores.values():
            store.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local repository and log state, and check the server."""
    config = load_config(args.config)

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "node": {"name": config.node.name},
        "repositories": {},
        "logs": {},
        "sync": {
            "enabled": config.sync.enabled,
            "server_url": config.sync.server_url,
            "data_mode": config.sync.data_mode.value,
            "lowest_id_mode": config.sync.lowest_id_mode.value,
        },
    }

    for name, repository in _open_repositories(config).items():
        status_data["repositories"][name] = repository.get_range().to_representation()

    stores = _open_log_stores(config)
    try:
        for name, store in stores.items():
            status_data["logs"][name] = {
                d.log_id: d.range_set.to_representation() for d in store.get_descriptors()
            }
    finally:
        for store in stores.values():
            store.close()

    if config.sync.server_url:
        import httpx

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{config.sync.server_url.rstrip('/')}/api/health")
            status_data["sync"]["server_reachable"] = resp.status_code == 200
        except httpx.HTTPError:
            status_data["sync"]["server_reachable"] = False

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    print("acesync Status Check")
    print("====================")
    print(f"Node: {config.node.name}")
    print()
    print("Repositories:")
    for name, versions in status_data["repositories"].items():
        print(f"  {name}: {versions or '(empty)'}")
    print()
    print("Logs:")
    for name, logs in status_data["logs"].items():
        print(f"  {name}: {len(logs)} logs")
        for log_id, ids in logs.items():
            print(f"    - {log_id}: {ids or '(empty)'}")
    print()
    sync = status_data["sync"]
    print(f"Sync ({sync['data_mode']}, lowest IDs {sync['lowest_id_mode']}):")
    if sync["server_url"]:
        reachable = "Reachable" if sync.get("server_reachable") else "Not reachable"
        print(f"  Server: {sync['server_url']} ({reachable})")
    else:
        print("  Server: not configured")

    return 0


def cmd_range(args: argparse.Namespace) -> int:
    """Evaluate range set expressions."""
    try:
        left = SortedRangeSet.parse(args.left)
        right = SortedRangeSet.parse(args.right) if args.right is not None else None
    except FormatError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.operation == "normalize":
        print(left)
        return 0
    if right is None:
        print(f"Operation '{args.operation}' needs two range sets", file=sys.stderr)
        return 1
    if args.operation == "union":
        print(left | right)
    elif args.operation == "difference":
        print(left - right)
    else:
        print(left & right)
    return 0


def cmd_log_put(args: argparse.Namespace) -> int:
    """Append an event to a local log."""
    from .log import AuditEventType

    config = load_config(args.config)
    properties = {}
    for item in args.properties:
        key, sep, value = item.partition("=")
        if not sep:
            print(f"Invalid property {item!r}, expected key=value", file=sys.stderr)
            return 1
        properties[key] = value

    if args.type.isascii() and args.type.isdigit():
        event_type = int(args.type)
    elif args.type.upper() in AuditEventType.__members__:
        event_type = AuditEventType[args.type.upper()]
    else:
        print(f"Unknown event type {args.type!r}", file=sys.stderr)
        return 1

    stores = _open_log_stores(config, (args.store,))
    try:
        event = stores[args.store].put(args.log_id or config.node.name, event_type, properties)
    finally:
        stores[args.store].close()
    print(event.to_representation())
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="acesync",
        description="Range-based synchronization of versioned repositories, event logs and deployments",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: server.port)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: server.host)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Synchronize local logs with the server")
    sync_parser.add_argument(
        "--server",
        type=str,
        default=None,
        help="Server URL (default: sync.server_url)",
    )
    sync_parser.add_argument(
        "--once",
        action="store_true",
        help="Synchronize until nothing is left to transfer, then exit",
    )
    sync_parser.add_argument(
        "--own-log-only",
        action="store_true",
        help="Only exchange the log named after this node",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show local state and server reachability")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Range command
    range_parser = subparsers.add_parser("range", help="Evaluate range set expressions")
    range_parser.add_argument(
        "operation",
        choices=["normalize", "union", "difference", "intersection"],
    )
    range_parser.add_argument("left", help="Range set, e.g. 1-5,7")
    range_parser.add_argument("right", nargs="?", default=None, help="Second range set")
    range_parser.set_defaults(func=cmd_range)

    # Log commands
    log_parser = subparsers.add_parser("log", help="Work with local event logs")
    log_subparsers = log_parser.add_subparsers(dest="log_command", help="Log commands")

    # log put
    log_put = log_subparsers.add_parser("put", help="Append an event")
    log_put.add_argument("type", help="Event type number or name (e.g. framework_info)")
    log_put.add_argument("properties", nargs="*", help="Event properties as key=value")
    log_put.add_argument("--store", default="auditlog", help="Log store name (default: auditlog)")
    log_put.add_argument("--log-id", default=None, help="Log ID (default: node name)")
    log_put.set_defaults(func=cmd_log_put)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    # Handle log subcommand requiring its own subcommand
    if args.command == "log" and not args.log_command:
        log_parser.print_help()
        return 1

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    else:
        return func(args)


if __name__ == "__main__":
    sys.exit(main())
