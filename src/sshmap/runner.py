#!/usr/bin/env python3
"""Main entry point for sshmap."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import shutil
import sys
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .credentials import Credential, build_credential
from .errors import CredentialError
from .executor import OutcomeRecord, collect, map_command, map_transfer

logger = logging.getLogger("sshmap")

# ANSI colors for different hosts
COLORS = [
    "\033[36m",  # Cyan
    "\033[33m",  # Yellow
    "\033[35m",  # Magenta
    "\033[32m",  # Green
    "\033[34m",  # Blue
    "\033[91m",  # Light Red
    "\033[96m",  # Light Cyan
    "\033[93m",  # Light Yellow
]
RESET = "\033[0m"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sshmap",
        description="Run a command or copy a file on many SSH hosts at once",
    )
    parser.add_argument("-c", "--config", type=Path, help="Path to YAML configuration file")
    parser.add_argument(
        "-g",
        "--group",
        action="append",
        default=[],
        help="Host group from the config file (repeatable)",
    )
    parser.add_argument(
        "-H",
        "--hosts",
        action="append",
        default=[],
        help="Comma separated host addresses (repeatable)",
    )
    parser.add_argument("-u", "--user", help="Remote username (default: login name)")
    parser.add_argument("-k", "--key", help="Private key path (default: ~/.ssh/id_rsa)")
    parser.add_argument("-p", "--port", help="SSH port (default: $PORT or 22)")
    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum hosts in flight at once (default: unbounded)",
    )
    parser.add_argument("--timeout", type=float, help="Connect timeout in seconds")
    parser.add_argument(
        "--no-logs",
        action="store_true",
        help="Disable logging to files",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="action", required=True)

    run = subparsers.add_parser("run", help="Run a shell command on every host")
    run.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")

    copy = subparsers.add_parser("copy", help="Copy a local file to every host")
    copy.add_argument("local_path", type=Path, help="Local file to send")
    copy.add_argument("remote_dir", help="Remote directory to place the file in")

    return parser


def configure_logging(verbose: bool = False) -> None:
    """Send sshmap log records to stderr."""
    level = logging.DEBUG if verbose else logging.WARNING
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.limit is not None and args.limit < 0:
        parser.error("--limit must be 0 (unbounded) or a positive number")
    if args.timeout is not None and args.timeout < 0:
        parser.error("--timeout must not be negative")
    configure_logging(args.verbose)

    # Load configuration
    try:
        config = load_config(args.config) if args.config else Config()
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except (ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Command line flags override the config defaults
    defaults = config.defaults
    if args.user is not None:
        defaults.user = args.user
    if args.key is not None:
        defaults.ssh_key = args.key
    if args.port is not None:
        defaults.port = args.port
    if args.limit is not None:
        defaults.limit = args.limit
    if args.timeout is not None:
        defaults.timeout = args.timeout

    try:
        hosts = config.hosts_for(args.group, _split_hosts(args.hosts))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    if not hosts:
        print("Error: no hosts given (use --hosts or --group)", file=sys.stderr)
        return 2

    if args.action == "run":
        command = command_line(args.command)
        if not command:
            print("Error: no command given", file=sys.stderr)
            return 2
    elif not args.local_path.is_file():
        print(f"Error: local file not found: {args.local_path}", file=sys.stderr)
        return 2

    try:
        credential = build_credential(defaults.user, defaults.ssh_key)
    except CredentialError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    log_dir = None
    if not (args.no_logs or defaults.no_logs):
        log_dir = _setup_log_dir(config)

    if args.dashboard:
        from .dashboard import Dashboard

        app = Dashboard(config, hosts, credential, args, log_dir=log_dir)
        app.run()
        records = app.records
    else:
        records = asyncio.run(_run_headless(config, hosts, credential, args, log_dir))

    # Check final status
    failed = [record.hostname for record in records if not record.ok]
    if failed or len(records) < len(hosts):
        if failed:
            print(f"\nFailed hosts: {', '.join(failed)}", file=sys.stderr)
        return 1

    return 0


def start_fan_out(
    config: Config,
    hosts: list[str],
    credential: Credential,
    args: argparse.Namespace,
    results: asyncio.Queue[OutcomeRecord],
    on_status=None,
) -> list[asyncio.Task[None]]:
    """Launch the fan-out selected on the command line."""
    defaults = config.defaults
    options = dict(
        port=defaults.port,
        connect_timeout=defaults.timeout,
        limit=defaults.limit or None,
        on_status=on_status,
    )
    if args.action == "run":
        command = command_line(args.command)
        return map_command(hosts, credential, command, results, **options)
    return map_transfer(
        hosts,
        credential,
        args.local_path,
        args.remote_dir,
        results,
        chunk_size=defaults.chunk_size,
        **options,
    )


async def _run_headless(
    config: Config,
    hosts: list[str],
    credential: Credential,
    args: argparse.Namespace,
    log_dir: Path | None,
) -> list[OutcomeRecord]:
    """Run the fan-out without TUI dashboard."""
    # Assign colors to hosts
    host_colors = {
        host: COLORS[i % len(COLORS)] for i, host in enumerate(dict.fromkeys(hosts))
    }

    def on_record(record: OutcomeRecord) -> None:
        color = host_colors.get(record.hostname, "")
        prefix = f"{color}[{record.hostname}]{RESET}"
        for line in format_outcome(record):
            stream = sys.stdout if record.ok else sys.stderr
            print(f"{prefix} {line}", file=stream)
        if log_dir:
            write_host_log(log_dir, record)

    results: asyncio.Queue[OutcomeRecord] = asyncio.Queue()
    tasks = start_fan_out(config, hosts, credential, args, results)
    records = await collect(results, len(tasks), on_record=on_record)
    await asyncio.gather(*tasks, return_exceptions=True)
    return records


def command_line(words: list[str]) -> str:
    """Turn the ``run`` arguments into the remote command string.

    A single argument is already a shell command line and is sent as is.
    Several arguments are quoted so each reaches the remote shell intact.
    """
    if len(words) == 1:
        return words[0].strip()
    return shlex.join(words)


def format_outcome(record: OutcomeRecord) -> list[str]:
    """Render one outcome as display lines."""
    if not record.ok:
        return [f"ERROR: {record.error}"]
    lines = record.result.splitlines()
    if record.exit_status:
        lines.append(f"Command exited with status {record.exit_status}")
    return lines


def write_host_log(log_dir: Path, record: OutcomeRecord) -> None:
    """Append one outcome to the host's log file."""
    log_file = log_dir / f"{_safe_name(record.hostname)}.log"
    with open(log_file, "a") as f:
        for line in format_outcome(record):
            f.write(line + "\n")


def _setup_log_dir(config: Config) -> Path:
    """Set up log directory with timestamp."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_dir = config.log_dir / timestamp
    log_dir.mkdir(parents=True, exist_ok=True)

    # Copy the source config file to the log directory
    if config.source_path and config.source_path.exists():
        shutil.copy(config.source_path, log_dir / "config.yaml")
    return log_dir


def _split_hosts(values: list[str]) -> list[str]:
    return [host.strip() for value in values for host in value.split(",") if host.strip()]


def _safe_name(hostname: str) -> str:
    return "".join(c if c.isalnum() or c in "-._" else "_" for c in hostname)


if __name__ == "__main__":
    sys.exit(main())
