from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import pymssql

from sqlgate.config import APP_NAME
from sqlgate.errors import ConnectivityError
from sqlgate.registry import DEFAULT_PORT, ServerProfile
from sqlgate.util.logging import get_logger

log = get_logger(__name__)

Params = Sequence[Any] | Mapping[str, Any]


@dataclass(frozen=True)
class Timeouts:
    connect: int
    request: int


@dataclass(frozen=True)
class ConnectionTarget:
    server: str
    port: int = DEFAULT_PORT
    user: str = ""
    password: str = ""
    encrypt: bool = False

    @classmethod
    def from_profile(cls, profile: ServerProfile, *, encrypt: bool = False) -> ConnectionTarget:
        return cls(
            server=profile.ip,
            port=profile.port,
            user=profile.user,
            password=profile.password.strip(),
            encrypt=encrypt,
        )


def driver_message(exc: BaseException) -> str:
    """Flatten pymssql's ``(code, b'message')`` argument tuples into plain text."""
    parts: list[str] = []

    def collect(args: Sequence[Any]) -> None:
        for arg in args:
            if isinstance(arg, tuple):
                collect(arg)
            elif isinstance(arg, bytes):
                parts.append(arg.decode("utf-8", errors="replace").strip())
            elif isinstance(arg, str):
                parts.append(arg.strip())

    collect(exc.args)
    return " ".join(part for part in parts if part) or exc.__class__.__name__


def close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception as exc:
        log.debug("ignoring error while closing connection: %s", exc)


@contextmanager
def connect_mssql(
    target: ConnectionTarget,
    *,
    database: str,
    timeouts: Timeouts,
) -> Iterator[Any]:
    """Open one connection owned by the caller; it is closed on every exit path."""
    try:
        conn = pymssql.connect(
            server=target.server,
            port=str(target.port),
            user=target.user,
            password=target.password,
            database=database,
            login_timeout=timeouts.connect,
            timeout=timeouts.request,
            autocommit=True,
            encryption="require" if target.encrypt else "off",
            appname=APP_NAME,
        )
    except pymssql.Error as exc:
        raise ConnectivityError(driver_message(exc)) from exc
    try:
        yield conn
    finally:
        close_quietly(conn)


def _rows_from_cursor(cur: Any) -> list[dict[str, Any]]:
    columns = [str(column[0]) for column in cur.description]
    return [dict(zip(columns, row)) for row in cur.fetchall()]


def fetch_all(conn: Any, sql: str, params: Params | None = None) -> list[dict[str, Any]]:
    with conn.cursor() as cur:
        if params is None:
            cur.execute(sql)
        else:
            cur.execute(sql, params)
        return _rows_from_cursor(cur)


def fetch_one(conn: Any, sql: str, params: Params | None = None) -> dict[str, Any] | None:
    rows = fetch_all(conn, sql, params)
    return rows[0] if rows else None


def execute(conn: Any, sql: str, params: Params | None = None) -> int:
    with conn.cursor() as cur:
        if params is None:
            cur.execute(sql)
        else:
            cur.execute(sql, params)
        return int(cur.rowcount)


def execute_batch(conn: Any, sql: str) -> list[dict[str, Any]]:
    """Run caller SQL verbatim and return the first result set, if any.

    Statements without a result set (DDL, DML, SET ...) yield an empty list.
    """
    with conn.cursor() as cur:
        cur.execute(sql)
        while cur.description is None:
            if not cur.nextset():
                return []
        return _rows_from_cursor(cur)
