"""Error types for sshmap."""

from __future__ import annotations


class SSHMapError(Exception):
    """Base class for every error raised by sshmap."""


class CredentialError(SSHMapError):
    """The shared credential could not be built. Fatal for the whole call."""


class KeyLoadError(CredentialError):
    """The private key file could not be read or parsed."""

    def __init__(self, key_path: str, reason: str):
        super().__init__(f"Cannot load private key {key_path}: {reason}")
        self.key_path = key_path
        self.reason = reason


class HostError(SSHMapError):
    """A failure isolated to a single host."""

    def __init__(self, hostname: str, message: str):
        super().__init__(f"{hostname}: {message}")
        self.hostname = hostname
        self.message = message


class ConnectError(HostError):
    """DNS, TCP or authentication failure while reaching a host."""


class FileSubsystemError(HostError):
    """The SFTP subsystem could not be started on an open connection."""


class TransferError(HostError):
    """Reading the local file or writing the remote file failed mid-transfer."""
