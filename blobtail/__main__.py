"""CLI entry point for blob-tail.

Usage:
    blob-tail run insights.yaml                # poll until SIGINT/SIGTERM
    blob-tail once insights.yaml               # a single poll cycle
    blob-tail check insights.yaml              # validate config, show prefixes
    blob-tail cursors insights.yaml            # list persisted cursors
    python -m blobtail run insights.yaml --json-logs

Decoded events are written to stdout as JSON lines; logs go to stderr.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from blobtail.lib.config import IngestConfig, load_config
from blobtail.lib.cursors import decode_row_key, get_cursor_store, read_cursor_snapshot
from blobtail.lib.env import load_env_file
from blobtail.lib.errors import ConfigurationError, IngestError, ShutdownSignal
from blobtail.lib.ingester import build_engine, build_poll_loop
from blobtail.lib.observability import setup_logging
from blobtail.lib.poller import PollLoop
from blobtail.lib.prefixes import expand_prefixes
from blobtail.lib.sinks import JsonLinesSink

logger = logging.getLogger(__name__)


def _configure_logging(args: argparse.Namespace, config: Optional[IngestConfig] = None) -> None:
    verbose = args.verbose
    json_format = args.json_logs
    log_file = args.log_file
    if config is not None:
        verbose = verbose or config.logging.level == "DEBUG"
        json_format = json_format or config.logging.format == "json"
        log_file = log_file or config.logging.file
    setup_logging(verbose=verbose, json_format=json_format, log_file=log_file)


def _install_signal_handlers(loop: PollLoop) -> None:
    def handler(signum: int, frame: Any) -> None:
        logger.info("Received %s", signal.Signals(signum).name)
        loop.stop()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def run_command(config: IngestConfig) -> int:
    """Poll until a stop signal arrives."""
    loop = build_poll_loop(config, JsonLinesSink())
    _install_signal_handlers(loop)
    try:
        loop.run()
    except ShutdownSignal:
        logger.info("Shut down while a cycle was in progress")
    return 0


def once_command(config: IngestConfig) -> int:
    """Run one poll cycle; exit non-zero if any blob failed."""
    engine = build_engine(config, JsonLinesSink())
    loop = PollLoop(engine, interval_seconds=config.sleep_time)
    result = loop.run_once()
    if result is None:
        return 1
    return 0 if result.succeeded else 1


def check_command(config: IngestConfig) -> int:
    """Print the validated settings and today's expanded prefixes."""
    now = datetime.now(timezone.utc)
    prefixes = expand_prefixes(config.templates, now)

    print()
    print("=" * 60)
    print("CONFIGURATION CHECK")
    print("=" * 60)
    print(f"  Container:      {config.container}")
    print(f"  Cursor table:   {config.sincedb} ({config.cursor_store.type})")
    print(f"  Store:          {config.store.type}")
    print(f"  Codec:          {config.codec.name}")
    print(f"  Start position: {config.start_position.value}")
    print(f"  Ignore older:   {config.ignore_older}s")
    print(f"  Sleep time:     {config.sleep_time}s")
    print()
    print(f"Expanded prefixes for {now:%Y-%m-%d} ({len(prefixes)}):")
    for prefix in prefixes:
        print(f"  - {prefix!r}")
    print()
    print("=" * 60)
    print("RESULT: PASSED")
    return 0


def cursors_command(config: IngestConfig) -> int:
    """List the cursor entries stored for the configured container."""
    store = get_cursor_store(config.sincedb, config.cursor_store.options())
    snapshot = read_cursor_snapshot(store, config.container)

    if not snapshot:
        print(f"No cursors stored for {config.container} in {config.sincedb}.")
        return 0

    rows = sorted(
        ((e.blob_name or decode_row_key(e.row_key), e) for e in snapshot.values()),
        key=lambda row: row[0],
    )
    max_name = max(10, *(len(name) for name, _ in rows))

    print(f"  {'Blob':<{max_name}}  {'Offset':>12}  ETag")
    print(f"  {'-' * max_name}  {'-' * 12}  {'-' * 20}")
    for name, entry in rows:
        print(f"  {name:<{max_name}}  {entry.byte_offset:>12}  {entry.etag}")
    print()
    print(f"{len(rows)} cursor(s)")
    return 0


COMMANDS = {
    "run": run_command,
    "once": once_command,
    "check": check_command,
    "cursors": cursors_command,
}


def _add_global_options(parser: argparse.ArgumentParser, default: Any = None) -> None:
    # Accepted before or after the subcommand; subcommand copies only set values they see.
    flag_default = False if default is None else default
    parser.add_argument(
        "--verbose", "-v", action="store_true", default=flag_default, help="Enable debug logging"
    )
    parser.add_argument(
        "--json-logs", action="store_true", default=flag_default, help="Output logs in JSON format"
    )
    parser.add_argument("--log-file", default=default, help="Also write logs to this file")
    parser.add_argument("--env-file", default=default, help="Load environment variables from this .env file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blob-tail",
        description="Tail append-only log blobs and emit new lines as events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  blob-tail check insights.yaml
  blob-tail once insights.yaml --verbose
  blob-tail run insights.yaml --json-logs --log-file ./logs/blobtail.log
        """,
    )
    _add_global_options(parser)

    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, fn in COMMANDS.items():
        sub = subparsers.add_parser(name, help=(fn.__doc__ or "").strip().splitlines()[0])
        sub.add_argument("config", help="Path to the YAML configuration file")
        _add_global_options(sub, default=argparse.SUPPRESS)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.env_file:
        if not Path(args.env_file).exists():
            print(f"Error: .env file not found: {args.env_file}", file=sys.stderr)
            return 2
        load_env_file(args.env_file)
    else:
        load_env_file()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        _configure_logging(args)
        print(f"Error: {e}", file=sys.stderr)
        return 2

    _configure_logging(args, config)

    try:
        return COMMANDS[args.command](config)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except IngestError as e:
        logger.error("%s", e, extra={"error": e.to_dict()})
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
