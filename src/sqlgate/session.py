from __future__ import annotations

import threading
from dataclasses import dataclass, field

from sqlgate.config import get_paths
from sqlgate.registry import ServerRegistry
from sqlgate.resolver import ResolvedServer, ServerHints, resolve_server
from sqlgate.settings import GatewaySettings, load_settings


class ActiveSession:
    """Index of the last profile a login succeeded against.

    Lives for the lifetime of the hosting process. Written by a successful
    credential validation, cleared by logout, read by server resolution.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._index: int | None = None

    @property
    def index(self) -> int | None:
        with self._lock:
            return self._index

    def activate(self, index: int) -> None:
        with self._lock:
            self._index = index

    def clear(self) -> bool:
        with self._lock:
            had_value = self._index is not None
            self._index = None
            return had_value


@dataclass
class GatewayContext:
    settings: GatewaySettings
    registry: ServerRegistry
    session: ActiveSession = field(default_factory=ActiveSession)

    def resolve(self, hints: ServerHints) -> ResolvedServer:
        return resolve_server(self.registry.list(), hints, self.session.index)


def build_context(settings: GatewaySettings | None = None) -> GatewayContext:
    resolved_settings = settings or load_settings()
    registry = ServerRegistry(get_paths().servers_file)
    return GatewayContext(settings=resolved_settings, registry=registry)
