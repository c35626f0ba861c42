from __future__ import annotations

import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from sqlgate.errors import IndexOutOfRangeError, PersistenceError, ValidationError
from sqlgate.util.logging import get_logger

DEFAULT_PORT = 1433

log = get_logger(__name__)


def utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def coerce_port(value: Any) -> int:
    """Registry files written by older clients store the port as a string; blank,
    non-numeric and non-positive values fall back to the SQL Server default."""
    if isinstance(value, bool):
        return DEFAULT_PORT
    try:
        port = int(str(value).strip()) if value is not None else DEFAULT_PORT
    except ValueError:
        return DEFAULT_PORT
    if port <= 0 or port > 65535:
        return DEFAULT_PORT
    return port


class ServerProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    name: str = ""
    ip: str = ""
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = ""
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")

    @field_validator("name", "ip", "user", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("password", mode="before")
    @classmethod
    def _none_password(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("port", mode="before")
    @classmethod
    def _port(cls, value: Any) -> int:
        return coerce_port(value)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ServerUpdate(BaseModel):
    """Partial update; a field left as ``None`` keeps the stored value."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    name: str | None = None
    ip: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None

    @field_validator("port", mode="before")
    @classmethod
    def _port(cls, value: Any) -> int | None:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return DEFAULT_PORT
        if isinstance(value, bool):
            raise ValueError("port must be an integer between 1 and 65535")
        try:
            port = int(str(value).strip())
        except ValueError:
            raise ValueError("port must be an integer between 1 and 65535") from None
        if port <= 0 or port > 65535:
            raise ValueError("port must be an integer between 1 and 65535")
        return port

    def apply(self, previous: ServerProfile) -> ServerProfile:
        changes = self.model_dump(exclude_none=True)
        merged = previous.model_copy(update=changes)
        merged = ServerProfile.model_validate(merged.to_record())
        merged.created_at = previous.created_at or utc_timestamp()
        merged.updated_at = utc_timestamp()
        return merged


def _check_profile(profile: ServerProfile) -> None:
    if not profile.ip:
        raise ValidationError("server ip must not be empty")


class ServerRegistry:
    """Ordered list of server profiles persisted as one JSON array.

    Every mutation re-reads the file, applies the change and writes the whole
    list back. Indices are positional, so callers must re-list after a delete.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> list[ServerProfile]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("ignoring unreadable server registry %s: %s", self.path, exc)
            return []
        if not isinstance(data, list):
            log.warning("ignoring server registry %s: expected a JSON array", self.path)
            return []

        servers: list[ServerProfile] = []
        for position, item in enumerate(data):
            if not isinstance(item, dict):
                log.warning("skipping malformed registry entry at position %d", position)
                continue
            try:
                servers.append(ServerProfile.model_validate(item))
            except PydanticValidationError as exc:
                log.warning(
                    "skipping invalid registry entry at position %d: %d error(s)",
                    position,
                    exc.error_count(),
                )
        return servers

    def _write(self, servers: list[ServerProfile]) -> None:
        content = json.dumps([server.to_record() for server in servers], indent=2, ensure_ascii=False)
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".servers-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as exc:
            raise PersistenceError(f"could not write server registry {self.path}: {exc}") from exc
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    @staticmethod
    def _check_index(index: Any, length: int) -> int:
        if isinstance(index, bool) or not isinstance(index, int) or index < 0 or index >= length:
            raise IndexOutOfRangeError(index, length)
        return index

    def list(self) -> list[ServerProfile]:
        return self._read()

    def get(self, index: int) -> ServerProfile:
        servers = self._read()
        return servers[self._check_index(index, len(servers))]

    def save(self, profile: ServerProfile) -> ServerProfile:
        _check_profile(profile)
        entry = profile.model_copy(update={"created_at": utc_timestamp(), "updated_at": None})
        with self._lock:
            servers = self._read()
            servers.append(entry)
            self._write(servers)
        log.info("[saveServer] name=%s ip=%s port=%s", entry.name, entry.ip, entry.port)
        return entry

    def update(self, index: int, changes: ServerUpdate) -> ServerProfile:
        with self._lock:
            servers = self._read()
            position = self._check_index(index, len(servers))
            entry = changes.apply(servers[position])
            _check_profile(entry)
            servers[position] = entry
            self._write(servers)
        log.info("[updateServer] idx=%d ip=%s port=%s", position, entry.ip, entry.port)
        return entry

    def delete(self, index: int) -> ServerProfile:
        with self._lock:
            servers = self._read()
            position = self._check_index(index, len(servers))
            removed = servers.pop(position)
            self._write(servers)
        log.info("[deleteServer] idx=%d ip=%s", position, removed.ip)
        return removed

    def find_index_by_ip(self, ip: str | None, servers: list[ServerProfile] | None = None) -> int:
        needle = str(ip or "").strip()
        if not needle:
            return -1
        candidates = self._read() if servers is None else servers
        for position, server in enumerate(candidates):
            if server.ip == needle:
                return position
        return -1
