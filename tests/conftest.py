"""Pytest configuration and shared fixtures.

Stands in for the asyncssh transport with in-memory fakes so the fan-out
engine can be exercised without real SSH servers.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import asyncssh
import pytest

from sshmap.credentials import Credential


class FakeStream:
    """Byte stream that hands out its data in pieces, optionally breaking midway."""

    def __init__(self, data: bytes, break_after: int | None = None):
        self._data = data
        self._pos = 0
        self._break_after = break_after

    async def read(self, n: int = -1) -> bytes:
        if self._break_after is not None and self._pos >= self._break_after:
            raise asyncssh.ConnectionLost("Connection lost")
        end = len(self._data) if n < 0 else self._pos + n
        if self._break_after is not None:
            end = min(end, self._break_after)
        chunk = self._data[self._pos:end]
        self._pos += len(chunk)
        return chunk


class FakeProcess:
    def __init__(self, stdout: bytes, exit_status: int = 0, break_after: int | None = None):
        self.stdout = FakeStream(stdout, break_after)
        self.exit_status = exit_status
        self.closed = False

    async def wait(self):
        return SimpleNamespace(exit_status=self.exit_status)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


class FakeRemoteFile:
    def __init__(self, network: FakeNetwork, hostname: str, path: str):
        self.network = network
        self.hostname = hostname
        self.path = path
        self.writes = 0

    async def write(self, data: bytes) -> int:
        if self.network.fail_write:
            raise asyncssh.SFTPFailure("Disk full")
        self.network.files[self.hostname][self.path] += data
        self.writes += 1
        return len(data)

    async def __aenter__(self) -> FakeRemoteFile:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        pass


class FakeSFTPClient:
    def __init__(self, network: FakeNetwork, hostname: str):
        self.network = network
        self.hostname = hostname
        self.exited = False

    async def open(self, path: str, mode: str = "r") -> FakeRemoteFile:
        if self.network.fail_create:
            raise asyncssh.SFTPNoSuchFile(f"No such directory: {path}")
        self.network.files[self.hostname][path] = bytearray()
        return FakeRemoteFile(self.network, self.hostname, path)

    def exit(self) -> None:
        self.exited = True

    async def wait_closed(self) -> None:
        pass


class FakeConnection:
    def __init__(self, network: FakeNetwork, hostname: str, options: dict):
        self.network = network
        self.hostname = hostname
        self.options = options
        self.processes: list[FakeProcess] = []
        self.commands: list[str] = []
        self.sftp: FakeSFTPClient | None = None
        self.closed = False

    async def create_process(self, command: str, **kwargs) -> FakeProcess:
        self.commands.append(command)
        if self.network.fail_channel:
            raise asyncssh.ChannelOpenError(2, "Channel open failed")
        assert kwargs.get("encoding") is None
        stdout, exit_status = self.network.run(command)
        process = FakeProcess(stdout, exit_status, self.network.break_output_after)
        self.processes.append(process)
        return process

    async def start_sftp_client(self) -> FakeSFTPClient:
        if self.network.fail_sftp:
            raise asyncssh.ChannelOpenError(1, "Subsystem request failed")
        self.sftp = FakeSFTPClient(self.network, self.hostname)
        return self.sftp

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass


class FakeNetwork:
    """Hosts reachable through the patched asyncssh.connect."""

    def __init__(self):
        self.unreachable: set[str] = set()
        self.denied: set[str] = set()
        self.delay = 0.0
        self.fail_channel = False
        self.fail_sftp = False
        self.fail_create = False
        self.fail_write = False
        self.break_output_after: int | None = None
        self.connections: list[FakeConnection] = []
        self.attempts: list[str] = []
        self.files: dict[str, dict[str, bytearray]] = {}

    async def connect(self, hostname: str, **options) -> FakeConnection:
        self.attempts.append(hostname)
        if self.delay:
            await asyncio.sleep(self.delay)
        if hostname in self.unreachable:
            raise OSError(111, "Connection refused")
        if hostname in self.denied:
            raise asyncssh.PermissionDenied("Permission denied")
        conn = FakeConnection(self, hostname, options)
        self.files.setdefault(hostname, {})
        self.connections.append(conn)
        return conn

    def run(self, command: str) -> tuple[bytes, int]:
        if command.startswith("echo "):
            return command[len("echo "):].encode() + b"\n", 0
        if command == "false":
            return b"", 1
        if command == "cat binary.dat":
            return b"ok\n\xff\xfe tail\n", 0
        return b"", 127


@pytest.fixture
def network(monkeypatch: pytest.MonkeyPatch) -> FakeNetwork:
    """Patch asyncssh.connect with an in-memory network."""
    net = FakeNetwork()
    monkeypatch.setattr(asyncssh, "connect", net.connect)
    return net


@pytest.fixture(scope="session")
def private_key() -> asyncssh.SSHKey:
    return asyncssh.generate_private_key("ssh-ed25519")


@pytest.fixture
def key_file(tmp_path: Path, private_key: asyncssh.SSHKey) -> Path:
    path = tmp_path / "id_ed25519"
    private_key.write_private_key(str(path))
    return path


@pytest.fixture
def credential(private_key: asyncssh.SSHKey, tmp_path: Path) -> Credential:
    return Credential(username="deploy", key=private_key, key_path=tmp_path / "id_ed25519")
