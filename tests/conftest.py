from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pymssql
import pytest

from sqlgate.registry import ServerProfile, ServerRegistry
from sqlgate.session import GatewayContext
from sqlgate.settings import GatewaySettings

UNREACHABLE_MESSAGE = (
    b"DB-Lib error message 20009, severity 9:\n"
    b"Unable to connect: Adaptive Server is unavailable or does not exist (10.0.0.99)\n"
)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run integration tests against the SQL Server named by SQLGATE_TEST_SERVER",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="integration tests disabled (use --run-integration)")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeCursor:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.description: list[tuple[Any, ...]] | None = None
        self.rowcount = -1
        self._rows: list[tuple[Any, ...]] = []

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        pass

    def _result(self, columns: list[str], rows: list[tuple[Any, ...]]) -> None:
        self.description = [(name, 1, None, None, None, None, None) for name in columns]
        self._rows = list(rows)
        self.rowcount = len(rows)

    def execute(self, sql: str, params: Any = None) -> None:
        server = self.conn.server
        compact = " ".join(sql.split())
        server.executed.append((self.conn.database, compact, params))
        self.description = None
        self._rows = []

        if compact in server.failing_sql:
            raise pymssql.ProgrammingError(208, server.failing_sql[compact].encode("utf-8"))

        if "FROM sys.databases WHERE name =" in compact:
            name = params[0]
            self._result(["name"], [(name,)] if name in server.databases else [])
        elif compact.startswith("SELECT TOP 1 name FROM sys.databases"):
            self._result(["name"], [(name,) for name in sorted(server.databases)][:1])
        elif "GENUsuario" in compact:
            matches = [
                (codigo, clave)
                for codigo, clave in server.users
                if codigo == params["codigo"] and clave == params["clave"]
            ]
            self._result(["Codigo", "Clave"], matches)
        elif "existsFlag" in compact:
            key = (params["codigo"], params["descripcion"])
            self._result(["existsFlag"], [(1,)] if key in server.consultas else [])
        elif compact.startswith("UPDATE") and "GENConsultas" in compact:
            key = (params["codigo"], params["descripcion"])
            server.consultas[key] = {"Consulta": params["consulta"], "ReporteAsociado": params["reporte"]}
            self.rowcount = 1
        elif compact.startswith("INSERT INTO") and "GENConsultas" in compact:
            key = (params["codigo"], params["descripcion"])
            if key in server.consultas:
                raise pymssql.IntegrityError(2627, b"Violation of PRIMARY KEY constraint")
            server.consultas[key] = {"Consulta": params["consulta"], "ReporteAsociado": params["reporte"]}
            self.rowcount = 1
        elif compact in server.results:
            columns, rows = server.results[compact]
            self._result(columns, rows)
        else:
            self.rowcount = 0

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self.description is None:
            raise pymssql.OperationalError("Statement not executed or executed statement has no resultset")
        rows, self._rows = self._rows, []
        return rows

    def nextset(self) -> bool | None:
        return None


class FakeConnection:
    def __init__(self, server: FakeSqlServer, options: dict[str, Any]) -> None:
        self.server = server
        self.options = options
        self.database = options["database"]
        self.closed = False

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def close(self) -> None:
        self.closed = True
        if self.server.fail_on_close:
            raise pymssql.OperationalError("connection already broken")


class FakeSqlServer:
    """In-memory stand-in for ``pymssql.connect`` that understands the gateway's statements."""

    def __init__(self) -> None:
        self.databases: set[str] = {"master", "Opciones"}
        self.users: list[tuple[str, str]] = []
        self.consultas: dict[tuple[str, str], dict[str, Any]] = {}
        self.results: dict[str, tuple[list[str], list[tuple[Any, ...]]]] = {}
        self.failing_sql: dict[str, str] = {}
        self.unreachable: set[str] = set()
        self.fail_on_close = False
        self.connections: list[FakeConnection] = []
        self.executed: list[tuple[str, str, Any]] = []

    def connect(self, **options: Any) -> FakeConnection:
        if options["server"] in self.unreachable:
            raise pymssql.OperationalError(20009, UNREACHABLE_MESSAGE)
        conn = FakeConnection(self, options)
        self.connections.append(conn)
        return conn

    def statements(self) -> list[str]:
        return [sql for _, sql, _ in self.executed]

    @property
    def all_closed(self) -> bool:
        return all(conn.closed for conn in self.connections)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.delenv("SQLGATE_SERVERS_FILE", raising=False)
    for name in list(os.environ):
        if name.startswith("SQLGATE_") and not name.startswith("SQLGATE_TEST_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_server(monkeypatch: pytest.MonkeyPatch) -> FakeSqlServer:
    server = FakeSqlServer()
    monkeypatch.setattr(pymssql, "connect", server.connect)
    return server


@pytest.fixture
def registry(tmp_path: Path) -> ServerRegistry:
    return ServerRegistry(tmp_path / "config" / "sqlgate" / "servers.json")


@pytest.fixture
def gateway_ctx(registry: ServerRegistry) -> GatewayContext:
    return GatewayContext(settings=GatewaySettings(), registry=registry)


@pytest.fixture
def add_servers(registry: ServerRegistry) -> Callable[..., None]:
    def _add(*ips: str) -> None:
        for ip in ips:
            position = len(registry.list())
            registry.save(
                ServerProfile(name=f"srv{position}", ip=ip, port=1433, user="sa", password=f"pw{position}")
            )

    return _add


@pytest.fixture
def live_server() -> dict[str, Any]:
    server = os.environ.get("SQLGATE_TEST_SERVER")
    if not server:
        pytest.skip("SQLGATE_TEST_SERVER is not set")
    return {
        "ip": server,
        "port": int(os.environ.get("SQLGATE_TEST_PORT", "1433")),
        "user": os.environ.get("SQLGATE_TEST_USER", "sa"),
        "password": os.environ.get("SQLGATE_TEST_PASSWORD", ""),
    }
