"""Build the connection credential shared by every host in a fan-out."""

from __future__ import annotations

import getpass
import logging
from dataclasses import dataclass
from pathlib import Path

import asyncssh

from .errors import CredentialError, KeyLoadError

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAME = ".ssh/id_rsa"


@dataclass(frozen=True)
class Credential:
    """Username plus loaded private key. Read-only, safe to share across tasks."""

    username: str
    key: asyncssh.SSHKey
    key_path: Path


def default_key_path(home: Path | None = None) -> Path:
    """Conventional private key location for the current user."""
    if home is None:
        home = Path.home()
    return Path(home) / DEFAULT_KEY_NAME


def build_credential(
    username: str = "",
    key_path: str | Path = "",
    *,
    passphrase: str | None = None,
    home: Path | None = None,
    login: str | None = None,
) -> Credential:
    """Resolve a username and key path into a Credential.

    Empty strings mean "use the default": the key falls back to
    ``<home>/.ssh/id_rsa`` and the username to the login name. ``home`` and
    ``login`` default to the current user's values but can be injected.

    Raises:
        KeyLoadError: The key file is unreadable, unparsable, or encrypted
            with a passphrase that was not (correctly) supplied.
        CredentialError: No username was given and the login name is unknown.
    """
    if key_path:
        path = Path(key_path).expanduser()
    else:
        path = default_key_path(home)

    try:
        key = asyncssh.read_private_key(str(path), passphrase)
    except OSError as e:
        raise KeyLoadError(str(path), e.strerror or str(e)) from e
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e:
        raise KeyLoadError(str(path), str(e)) from e

    if not username:
        if login is None:
            try:
                login = getpass.getuser()
            except (KeyError, OSError) as e:
                raise CredentialError(f"Cannot determine login name: {e}") from e
        username = login

    logger.debug("Loaded key %s for user %s", path, username)
    return Credential(username=username, key=key, key_path=path)
