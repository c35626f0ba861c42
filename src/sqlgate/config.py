from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

APP_NAME = "sqlgate"
SERVERS_FILENAME = "servers.json"
CONFIG_FILENAME = "config.yaml"


@dataclass(frozen=True)
class Paths:
    config_dir: Path
    servers_file: Path
    config_yaml: Path


def _xdg_or_default(env_name: str, default: Path) -> Path:
    value = os.environ.get(env_name)
    if value:
        return Path(value).expanduser().resolve()
    return default.expanduser().resolve()


def get_paths() -> Paths:
    config_home = _xdg_or_default("XDG_CONFIG_HOME", Path.home() / ".config")
    config_dir = config_home / APP_NAME
    servers_override = os.environ.get("SQLGATE_SERVERS_FILE")
    servers_file = (
        Path(servers_override).expanduser().resolve()
        if servers_override
        else config_dir / SERVERS_FILENAME
    )
    return Paths(
        config_dir=config_dir,
        servers_file=servers_file,
        config_yaml=config_dir / CONFIG_FILENAME,
    )
