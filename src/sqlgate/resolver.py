from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlgate.errors import NoServerConfiguredError
from sqlgate.registry import ServerProfile


@dataclass(frozen=True)
class ServerHints:
    server_ip: str | None = None
    server_index: int | None = None

    @classmethod
    def from_args(cls, args: dict[str, Any]) -> ServerHints:
        raw_ip = args.get("serverIp")
        ip = str(raw_ip).strip() if raw_ip is not None else None
        raw_index = args.get("serverIndex")
        index: int | None = None
        if isinstance(raw_index, int) and not isinstance(raw_index, bool):
            index = raw_index
        elif isinstance(raw_index, str) and raw_index.strip().lstrip("-").isdigit():
            index = int(raw_index.strip())
        return cls(server_ip=ip or None, server_index=index)


@dataclass(frozen=True)
class ResolvedServer:
    index: int
    profile: ServerProfile
    reason: str


def _in_range(index: int | None, length: int) -> bool:
    return index is not None and 0 <= index < length


def resolve_server(
    servers: list[ServerProfile],
    hints: ServerHints,
    active_index: int | None = None,
) -> ResolvedServer:
    """Pick the profile an operation targets.

    Precedence: ip hint, then index hint, then session affinity, then the most
    recently added profile. Hints that do not match are skipped, not errors.
    """
    if not servers:
        raise NoServerConfiguredError()

    if hints.server_ip:
        for position, server in enumerate(servers):
            if server.ip == hints.server_ip:
                return ResolvedServer(position, server, "ip")

    if _in_range(hints.server_index, len(servers)):
        index = int(hints.server_index)  # type: ignore[arg-type]
        return ResolvedServer(index, servers[index], "index")

    if _in_range(active_index, len(servers)):
        index = int(active_index)  # type: ignore[arg-type]
        return ResolvedServer(index, servers[index], "session")

    last = len(servers) - 1
    return ResolvedServer(last, servers[last], "last")
