"""Per-host SSH session: dial, run one command or open SFTP, then release."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from enum import Enum
from typing import Any

import asyncssh

from .credentials import Credential
from .errors import ConnectError, FileSubsystemError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 22
PORT_ENV_VAR = "PORT"

# Bytes per stdout read while collecting command output
READ_SIZE = 65536


def resolve_port(port: str | int = "", environ: Mapping[str, str] | None = None) -> int:
    """Pick the port: explicit value, else $PORT, else 22."""
    if environ is None:
        environ = os.environ
    value = str(port).strip() if port else ""
    if not value:
        value = environ.get(PORT_ENV_VAR, "").strip()
    if not value:
        return DEFAULT_PORT

    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"Invalid port: {value!r}") from None
    if not 0 < number < 65536:
        raise ValueError(f"Port out of range: {number}")
    return number


async def dial(
    hostname: str,
    credential: Credential,
    port: str | int = "",
    *,
    environ: Mapping[str, str] | None = None,
    connect_timeout: float | None = None,
    known_hosts: str | None = None,
) -> asyncssh.SSHClientConnection:
    """Open an authenticated connection to one host.

    Connection, DNS, timeout and authentication failures are all raised as
    ConnectError since the caller skips the host in every case.
    """
    try:
        port_number = resolve_port(port, environ)
    except ValueError as e:
        raise ConnectError(hostname, str(e)) from e

    options: dict[str, Any] = dict(
        port=port_number,
        username=credential.username,
        client_keys=[credential.key],
        agent_path=None,
        preferred_auth="publickey",
        known_hosts=known_hosts,  # None skips host key verification
    )
    if connect_timeout:
        options["connect_timeout"] = connect_timeout

    logger.debug("Connecting to %s@%s:%d", credential.username, hostname, port_number)
    try:
        return await asyncssh.connect(hostname, **options)
    except asyncssh.PermissionDenied as e:
        raise ConnectError(hostname, f"Authentication failed: {e}") from e
    except asyncssh.Error as e:
        raise ConnectError(hostname, f"SSH error: {e}") from e
    except (OSError, asyncio.TimeoutError) as e:
        raise ConnectError(hostname, f"Connection error: {str(e) or type(e).__name__}") from e


class SessionState(Enum):
    """Lifecycle of a RemoteSession."""

    UNINITIALIZED = "uninitialized"
    CONNECTED = "connected"
    SHELL_READY = "shell_ready"
    FILE_SUBSYSTEM_READY = "file_subsystem_ready"
    CLOSED = "closed"


class RemoteSession:
    """One connection to one host plus the channel opened on it.

    Each handle is stored only once it has been acquired, and close() only
    releases handles that are present.
    """

    def __init__(self, hostname: str, credential: Credential, port: str | int = ""):
        self.hostname = hostname
        self.credential = credential
        self.port = port
        self.conn: asyncssh.SSHClientConnection | None = None
        self.process: asyncssh.SSHClientProcess | None = None
        self.sftp: asyncssh.SFTPClient | None = None
        self.error: ConnectError | None = None
        self.exit_status: int | None = None
        self.state = SessionState.UNINITIALIZED

    @classmethod
    async def open(
        cls,
        hostname: str,
        credential: Credential,
        port: str | int = "",
        **dial_options: Any,
    ) -> RemoteSession:
        """Connect to ``hostname``. Raises ConnectError on failure."""
        session = cls(hostname, credential, port)
        try:
            session.conn = await dial(hostname, credential, port, **dial_options)
        except ConnectError as e:
            session.error = e
            raise
        session.state = SessionState.CONNECTED
        return session

    async def __aenter__(self) -> RemoteSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_connection(self) -> asyncssh.SSHClientConnection:
        if self.conn is None or self.state is SessionState.CLOSED:
            raise ConnectError(self.hostname, "Session is not connected")
        return self.conn

    async def run_command(self, command: str) -> str:
        """Run ``command`` and return its stdout.

        stderr is discarded and a non-zero exit is not an error; the exit
        status is kept on ``self.exit_status``. If the stream breaks midway
        the output read so far is returned. Output is read as raw bytes and
        bytes that are not valid UTF-8 become U+FFFD.
        """
        conn = self._require_connection()
        try:
            self.process = await conn.create_process(
                command, stderr=asyncssh.DEVNULL, encoding=None
            )
        except (asyncssh.Error, OSError) as e:
            raise ConnectError(self.hostname, f"Failed to open session: {e}") from e
        self.state = SessionState.SHELL_READY

        chunks: list[bytes] = []
        try:
            while True:
                chunk = await self.process.stdout.read(READ_SIZE)
                if not chunk:
                    break
                chunks.append(chunk)
            completed = await self.process.wait()
            self.exit_status = completed.exit_status
        except (asyncssh.Error, OSError) as e:
            logger.debug("Output from %s cut short: %s", self.hostname, e)

        return b"".join(chunks).decode("utf-8", errors="replace")

    async def file_client(self) -> asyncssh.SFTPClient:
        """Start the SFTP subsystem. Raises FileSubsystemError on failure."""
        conn = self._require_connection()
        try:
            sftp = await conn.start_sftp_client()
        except (asyncssh.Error, OSError) as e:
            raise FileSubsystemError(self.hostname, f"Failed to start SFTP: {e}") from e
        self.sftp = sftp
        self.state = SessionState.FILE_SUBSYSTEM_READY
        return sftp

    async def close(self) -> None:
        """Release whatever was acquired. Safe to call more than once."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED

        # The connection is released even if a channel fails to close
        try:
            if self.process is not None:
                process, self.process = self.process, None
                process.close()
                await process.wait_closed()
        finally:
            try:
                if self.sftp is not None:
                    sftp, self.sftp = self.sftp, None
                    sftp.exit()
                    await sftp.wait_closed()
            finally:
                if self.conn is not None:
                    conn, self.conn = self.conn, None
                    conn.close()
                    await conn.wait_closed()
                logger.debug("Closed session to %s", self.hostname)
