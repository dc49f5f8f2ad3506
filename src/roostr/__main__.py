"""CLI entry point for Roostr.

Resolves identities and runs one-shot sync jobs from the command line.
During a sync, SIGINT/SIGTERM cancel the job gracefully and the partial
report is still printed.

Examples:
    ```bash
    python -m roostr resolve bob@example.com
    python -m roostr sync --config config/sync.yaml
    python -m roostr sync --pubkey npub1... --relay wss://nos.lol --output events.jsonl
    ```
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any

import yaml

from roostr.core import start_metrics_server
from roostr.core.exceptions import ConfigurationError, IdentityError
from roostr.core.logger import Logger, StructuredFormatter
from roostr.core.yaml import load_yaml
from roostr.nips.nip05 import resolve_identity
from roostr.services.synchronizer import MemoryEventStore, SyncStatus, Synchronizer


logger = Logger("cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

DEFAULT_NIP05_TIMEOUT = 10.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(prog="roostr", description="Roostr relay sync client")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve an npub, hex pubkey or NIP-05 identifier")
    resolve.add_argument("identity", help="npub1..., 64-char hex or name@domain")
    resolve.add_argument(
        "--timeout", type=float, default=DEFAULT_NIP05_TIMEOUT, help="NIP-05 timeout in seconds"
    )

    sync = subparsers.add_parser("sync", help="Sync events of identities from relays")
    sync.add_argument("--config", type=Path, help="Synchronizer YAML config")
    sync.add_argument(
        "--pubkey",
        action="append",
        default=[],
        help="Identity to sync (npub, hex or NIP-05); repeatable, replaces config pubkeys",
    )
    sync.add_argument(
        "--relay",
        action="append",
        default=[],
        help="Relay URL; repeatable, replaces config relays",
    )
    sync.add_argument("--kind", type=int, action="append", default=[], help="Event kind; repeatable")
    sync.add_argument("--since", type=int, help="Only events created at or after this timestamp")
    sync.add_argument("--output", type=Path, help="Write verified events as JSON lines")

    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Configure the root logger with structured formatting.

    Installs a ``StructuredFormatter`` on the root handler so that output of
    both ``Logger`` and plain ``logging.getLogger()`` calls in utils and nips
    is unified as ``level name message key=value ...``.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


async def run_resolve(identity: str, timeout: float) -> int:  # noqa: ASYNC109
    """Resolve *identity* and print its hex, npub and source."""
    try:
        resolved = await resolve_identity(identity, timeout=timeout)
    except IdentityError as e:
        logger.error("resolve_failed", identity=identity, error=str(e))
        return EXIT_FAILED

    print(f"pubkey: {resolved.pubkey}")
    print(f"npub:   {resolved.npub}")
    print(f"source: {resolved.source}")
    if resolved.nip05_name is not None:
        print(f"nip05:  {resolved.nip05_name}")
    return EXIT_OK


async def _build_sync_config(args: argparse.Namespace) -> dict[str, Any]:
    """Merge the YAML config with command-line overrides."""
    data: dict[str, Any] = {}
    if args.config is not None:
        try:
            data = load_yaml(args.config)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot load config {args.config}: {e}") from e

    if args.pubkey:
        timeouts = data.get("timeouts") or {}
        timeout = (timeouts.get("nip05") if isinstance(timeouts, dict) else None) or DEFAULT_NIP05_TIMEOUT
        pubkeys = []
        for identity in args.pubkey:
            try:
                resolved = await resolve_identity(identity, timeout=timeout)
            except IdentityError as e:
                raise ConfigurationError(f"cannot resolve {identity!r}: {e}") from e
            pubkeys.append(resolved.pubkey)
        data["pubkeys"] = pubkeys
    if args.relay:
        data["relays"] = args.relay
    if args.kind:
        data["kinds"] = args.kind
    if args.since is not None:
        data["since"] = args.since
    return data


def _write_events(path: Path, store: MemoryEventStore) -> None:
    with path.open("w", encoding="utf-8") as f:
        for event in store.events:
            f.write(event.to_json() + "\n")


async def run_sync(args: argparse.Namespace) -> int:
    """Run one sync job with signal-driven cancellation."""
    store = MemoryEventStore()
    try:
        sync = Synchronizer.from_dict(await _build_sync_config(args), store)
    except ConfigurationError as e:
        logger.error("config_invalid", error=str(e))
        return EXIT_FAILED

    metrics_config = sync.config.metrics
    metrics_server = await start_metrics_server(metrics_config)
    if metrics_config.enabled:
        logger.info(
            "metrics_server_started",
            host=metrics_config.host,
            port=metrics_config.port,
            path=metrics_config.path,
        )

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        sync.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        report = await sync.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await metrics_server.stop()

    if args.output is not None:
        _write_events(args.output, store)
        logger.info("events_written", path=str(args.output), count=len(store))

    print(
        f"{report.status}: fetched={report.fetched} stored={report.stored} "
        f"skipped={report.skipped} rejected={report.rejected}"
    )
    if report.status == SyncStatus.FAILED:
        return EXIT_FAILED
    if report.status == SyncStatus.CANCELLED:
        return EXIT_INTERRUPTED
    return EXIT_OK


async def main(argv: list[str] | None = None) -> int:
    """Main entry point: parse args and dispatch the subcommand."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        if args.command == "resolve":
            return await run_resolve(args.identity, args.timeout)
        return await run_sync(args)
    except KeyboardInterrupt:
        logger.info("interrupted")
        return EXIT_INTERRUPTED


def cli() -> None:
    """Synchronous entry point for console_scripts."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
