"""Configuration loader for sshmap."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class Defaults:
    """Connection and transfer defaults. Empty strings mean "resolve at runtime"."""

    user: str = ""
    port: str = ""
    ssh_key: str = ""
    timeout: float | None = 30
    limit: int = 0
    chunk_size: int = 1024
    no_logs: bool = False


@dataclass
class Config:
    """Main configuration for sshmap."""

    defaults: Defaults = field(default_factory=Defaults)
    groups: dict[str, list[str]] = field(default_factory=dict)
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    source_path: Path | None = None  # Path to the original config file

    def hosts_for(
        self, group_names: Iterable[str] = (), extra_hosts: Iterable[str] = ()
    ) -> list[str]:
        """Build a host group from group names plus ad hoc hosts.

        Order and duplicates are preserved.
        """
        hosts: list[str] = []
        for name in group_names:
            if name not in self.groups:
                raise ValueError(f"Unknown host group: {name!r}")
            hosts.extend(self.groups[name])
        hosts.extend(extra_hosts)
        return hosts


def load_config(config_path: str | Path) -> Config:
    """Load and validate configuration from a YAML file."""
    config_path = Path(config_path).resolve()

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("Configuration must be a mapping")

    config = _parse_config(raw)
    config.source_path = config_path
    return config


def _parse_defaults(raw: dict[str, Any]) -> Defaults:
    """Parse the defaults section."""
    defaults_raw = raw.get("defaults") or {}
    if not isinstance(defaults_raw, dict):
        raise ValueError("'defaults' must be a mapping")

    timeout = defaults_raw.get("timeout", 30)
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout < 0):
        raise ValueError(f"Invalid timeout: {timeout!r}")

    limit = defaults_raw.get("limit", 0)
    if not isinstance(limit, int) or limit < 0:
        raise ValueError(f"Invalid limit: {limit!r}")

    chunk_size = defaults_raw.get("chunk_size", 1024)
    if not isinstance(chunk_size, int) or chunk_size <= 0:
        raise ValueError(f"Invalid chunk_size: {chunk_size!r}")

    port = defaults_raw.get("port")
    return Defaults(
        user=str(defaults_raw.get("user") or ""),
        port="" if port is None else str(port),
        ssh_key=str(defaults_raw.get("ssh_key") or ""),
        timeout=timeout,
        limit=limit,
        chunk_size=chunk_size,
        no_logs=bool(defaults_raw.get("no_logs", False)),
    )


def _parse_config(raw: dict[str, Any]) -> Config:
    """Parse raw YAML data into Config object."""
    defaults = _parse_defaults(raw)

    log_dir = Path(raw.get("log_dir", "logs")).expanduser().resolve()

    groups_raw = raw.get("groups") or {}
    if not isinstance(groups_raw, dict):
        raise ValueError("'groups' must be a mapping of name to host list")

    groups = {}
    for name in groups_raw:
        groups[str(name)] = _resolve_group(str(name), groups_raw, ())

    return Config(
        defaults=defaults,
        groups=groups,
        log_dir=log_dir,
    )


def _resolve_group(
    name: str, groups_raw: dict[str, Any], seen: tuple[str, ...]
) -> list[str]:
    """Resolve group references to actual hosts."""
    if name in seen:
        chain = " -> ".join(seen + (name,))
        raise ValueError(f"Host group cycle: {chain}")

    entries = groups_raw[name]
    if isinstance(entries, str):
        entries = [entries]
    if not isinstance(entries, list):
        raise ValueError(f"Host group '{name}' must be a list")

    hosts = []
    for entry in entries:
        entry = str(entry)
        if entry in groups_raw:
            # It's a group reference, expand it
            hosts.extend(_resolve_group(entry, groups_raw, seen + (name,)))
        else:
            # It's a host address
            hosts.append(entry)

    return hosts
