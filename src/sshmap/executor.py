"""Fan-out engine: run one operation on every host and collect one outcome each."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import posixpath
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import asyncssh

from .credentials import Credential
from .errors import HostError, TransferError
from .session import RemoteSession

logger = logging.getLogger(__name__)

HostGroup = Sequence[str]

DEFAULT_CHUNK_SIZE = 1024


class HostStatus(Enum):
    """Progress of a single host within a fan-out."""

    PENDING = "pending"
    CONNECTING = "connecting"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class OutcomeRecord:
    """Result of the operation on one host.

    ``exit_status`` is informational only: a command that exits non-zero still
    has ``error=None``.
    """

    hostname: str
    result: str = ""
    error: BaseException | None = None
    exit_status: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# Type alias for status callback
StatusCallback = Callable[[int, str, HostStatus], None]  # (slot, hostname, status) -> None

HostOperation = Callable[[int, str], Awaitable[OutcomeRecord]]


def map_command(
    hosts: HostGroup,
    credential: Credential,
    command: str,
    results: asyncio.Queue[OutcomeRecord],
    *,
    port: str | int = "",
    environ: Mapping[str, str] | None = None,
    connect_timeout: float | None = None,
    known_hosts: str | None = None,
    limit: int | None = None,
    on_status: StatusCallback | None = None,
) -> list[asyncio.Task[None]]:
    """Run ``command`` on every host concurrently.

    Returns as soon as one task per host has been scheduled. Each task puts
    exactly one OutcomeRecord on ``results``; drain ``len(hosts)`` records to
    observe completion. Must be called from a running event loop.
    """
    dial_options = dict(
        environ=environ, connect_timeout=connect_timeout, known_hosts=known_hosts
    )

    async def run_on_host(slot: int, hostname: str) -> OutcomeRecord:
        _emit_status(on_status, slot, hostname, HostStatus.CONNECTING)
        session = await RemoteSession.open(hostname, credential, port, **dial_options)
        async with session:
            _emit_status(on_status, slot, hostname, HostStatus.RUNNING)
            output = await session.run_command(command)
            return OutcomeRecord(hostname, output, None, session.exit_status)

    return _fan_out(hosts, run_on_host, results, limit, on_status)


def map_transfer(
    hosts: HostGroup,
    credential: Credential,
    local_path: str | Path,
    remote_dir: str,
    results: asyncio.Queue[OutcomeRecord],
    *,
    port: str | int = "",
    environ: Mapping[str, str] | None = None,
    connect_timeout: float | None = None,
    known_hosts: str | None = None,
    limit: int | None = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_status: StatusCallback | None = None,
) -> list[asyncio.Task[None]]:
    """Copy ``local_path`` into ``remote_dir`` on every host concurrently.

    The remote file is ``remote_dir/<basename of local_path>`` and is
    overwritten if present. The remote directory is not created. Channel
    semantics are the same as map_command().
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    remote_path = remote_file_path(local_path, remote_dir)
    dial_options = dict(
        environ=environ, connect_timeout=connect_timeout, known_hosts=known_hosts
    )

    async def copy_to_host(slot: int, hostname: str) -> OutcomeRecord:
        _emit_status(on_status, slot, hostname, HostStatus.CONNECTING)
        session = await RemoteSession.open(hostname, credential, port, **dial_options)
        async with session:
            sftp = await session.file_client()
            _emit_status(on_status, slot, hostname, HostStatus.RUNNING)
            size = await _copy_file(hostname, sftp, local_path, remote_path, chunk_size)
            return OutcomeRecord(hostname, f"{size} bytes -> {remote_path}")

    return _fan_out(hosts, copy_to_host, results, limit, on_status)


async def collect(
    results: asyncio.Queue[OutcomeRecord],
    count: int,
    *,
    on_record: Callable[[OutcomeRecord], None] | None = None,
) -> list[OutcomeRecord]:
    """Drain exactly ``count`` records, in completion order."""
    records = []
    for _ in range(count):
        record = await results.get()
        results.task_done()
        if on_record:
            on_record(record)
        records.append(record)
    return records


def remote_file_path(local_path: str | Path, remote_dir: str) -> str:
    """Remote destination for ``local_path`` inside ``remote_dir``."""
    return posixpath.join(remote_dir, os.path.basename(os.fspath(local_path)))


def _emit_status(
    on_status: StatusCallback | None, slot: int, hostname: str, status: HostStatus
) -> None:
    """Emit status change for a host."""
    if on_status:
        on_status(slot, hostname, status)


def _fan_out(
    hosts: HostGroup,
    operation: HostOperation,
    results: asyncio.Queue[OutcomeRecord],
    limit: int | None,
    on_status: StatusCallback | None,
) -> list[asyncio.Task[None]]:
    """Schedule one publishing task per host."""
    semaphore = asyncio.Semaphore(limit) if limit else None

    async def run_slot(slot: int, hostname: str) -> None:
        record: OutcomeRecord | None = None
        try:
            if semaphore is None:
                record = await operation(slot, hostname)
            else:
                async with semaphore:
                    record = await operation(slot, hostname)
        except HostError as e:
            logger.info("%s", e)
            record = OutcomeRecord(hostname, error=e)
        except asyncio.CancelledError as e:
            record = OutcomeRecord(hostname, error=e)
            raise
        except Exception as e:
            logger.exception("Unexpected failure on %s", hostname)
            record = OutcomeRecord(hostname, error=e)
        finally:
            # Every exit path publishes exactly one record
            if record is None:
                record = OutcomeRecord(hostname, error=RuntimeError("Task ended without a result"))
            results.put_nowait(record)
            status = HostStatus.SUCCESS if record.ok else HostStatus.FAILED
            with contextlib.suppress(Exception):
                _emit_status(on_status, slot, hostname, status)

    tasks = []
    for slot, hostname in enumerate(hosts):
        _emit_status(on_status, slot, hostname, HostStatus.PENDING)
        tasks.append(asyncio.create_task(run_slot(slot, hostname), name=f"sshmap:{hostname}"))
    return tasks


async def _copy_file(
    hostname: str,
    sftp: asyncssh.SFTPClient,
    local_path: str | Path,
    remote_path: str,
    chunk_size: int,
) -> int:
    """Stream a local file to ``remote_path`` in chunks. Returns bytes written."""
    try:
        local_file = open(local_path, "rb")
    except OSError as e:
        raise TransferError(hostname, f"Cannot open {local_path}: {e.strerror or e}") from e

    total = 0
    with local_file:
        try:
            remote_file = await sftp.open(remote_path, "wb")
        except (asyncssh.Error, OSError) as e:
            raise TransferError(hostname, f"Cannot create {remote_path}: {e}") from e

        async with remote_file:
            while True:
                try:
                    chunk = local_file.read(chunk_size)
                except OSError as e:
                    raise TransferError(hostname, f"Read from {local_path} failed: {e}") from e
                if not chunk:
                    break

                try:
                    await remote_file.write(chunk)
                except (asyncssh.Error, OSError) as e:
                    raise TransferError(hostname, f"Write to {remote_path} failed: {e}") from e
                total += len(chunk)

    logger.debug("Copied %d bytes to %s:%s", total, hostname, remote_path)
    return total
