"""sshmap: Run a command or copy a file on many SSH hosts concurrently."""

from .config import Config, Defaults, load_config
from .credentials import Credential, build_credential
from .errors import (
    ConnectError,
    CredentialError,
    FileSubsystemError,
    HostError,
    KeyLoadError,
    SSHMapError,
    TransferError,
)
from .executor import HostStatus, OutcomeRecord, collect, map_command, map_transfer
from .session import RemoteSession, dial, resolve_port

__all__ = [
    "Config",
    "Defaults",
    "load_config",
    "Credential",
    "build_credential",
    "SSHMapError",
    "CredentialError",
    "KeyLoadError",
    "HostError",
    "ConnectError",
    "FileSubsystemError",
    "TransferError",
    "HostStatus",
    "OutcomeRecord",
    "collect",
    "map_command",
    "map_transfer",
    "RemoteSession",
    "dial",
    "resolve_port",
]
