from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pymssql

from sqlgate.db_mssql import (
    ConnectionTarget,
    Timeouts,
    connect_mssql,
    driver_message,
    execute_batch,
    fetch_all,
    fetch_one,
)
from sqlgate.errors import ConnectivityError, DatabaseNotFoundError, QueryExecutionError, ValidationError
from sqlgate.registry import ServerProfile
from sqlgate.resolver import ServerHints
from sqlgate.session import GatewayContext
from sqlgate.settings import GatewaySettings
from sqlgate.util.logging import get_logger

PROBE_SQL = "SELECT TOP 1 name FROM sys.databases"
DATABASE_EXISTS_SQL = "SELECT TOP 1 name FROM sys.databases WHERE name = %s"

log = get_logger(__name__)


@dataclass
class QueryResult:
    rows: list[dict[str, Any]]
    columns: list[str]

    @property
    def count(self) -> int:
        return len(self.rows)


def probe_timeouts(settings: GatewaySettings) -> Timeouts:
    return Timeouts(connect=settings.probe_connect_timeout, request=settings.probe_request_timeout)


def query_timeouts(settings: GatewaySettings) -> Timeouts:
    return Timeouts(connect=settings.query_connect_timeout, request=settings.query_request_timeout)


def _encrypt(settings: GatewaySettings, encrypt: bool | None) -> bool:
    return settings.encrypt if encrypt is None else bool(encrypt)


def check_connection(
    settings: GatewaySettings,
    profile: ServerProfile,
    *,
    database: str | None = None,
    encrypt: bool | None = None,
) -> None:
    """Connect with the short probe timeouts and run a trivial catalog query."""
    if not profile.ip:
        raise ValidationError("server ip must not be empty")
    target = ConnectionTarget.from_profile(profile, encrypt=_encrypt(settings, encrypt))
    db_name = (database or "").strip() or settings.system_database
    log.info(
        "[testConnection] server=%s port=%s db=%s encrypt=%s",
        target.server,
        target.port,
        db_name,
        target.encrypt,
    )
    with connect_mssql(target, database=db_name, timeouts=probe_timeouts(settings)) as conn:
        try:
            fetch_all(conn, PROBE_SQL)
        except pymssql.Error as exc:
            raise ConnectivityError(driver_message(exc)) from exc
    log.info("[testConnection] OK server=%s", target.server)


def database_exists(conn: Any, database: str) -> bool:
    try:
        return fetch_one(conn, DATABASE_EXISTS_SQL, (database,)) is not None
    except pymssql.Error as exc:
        raise ConnectivityError(driver_message(exc)) from exc


def run_query(
    ctx: GatewayContext,
    sql_text: str,
    *,
    database: str | None = None,
    hints: ServerHints | None = None,
    encrypt: bool | None = None,
) -> QueryResult:
    if not isinstance(sql_text, str) or not sql_text.strip():
        raise ValidationError("SQL text is empty")

    settings = ctx.settings
    resolved = ctx.resolve(hints or ServerHints())
    target = ConnectionTarget.from_profile(resolved.profile, encrypt=_encrypt(settings, encrypt))
    db_name = (database or "").strip() or settings.catalog_database
    timeouts = query_timeouts(settings)
    log.info(
        "[runQuery] server=%s port=%s db=%s idx=%d via=%s",
        target.server,
        target.port,
        db_name,
        resolved.index,
        resolved.reason,
    )

    with connect_mssql(target, database=settings.system_database, timeouts=timeouts) as conn:
        exists = database_exists(conn, db_name)
    if not exists:
        raise DatabaseNotFoundError(db_name, target.server)

    with connect_mssql(target, database=db_name, timeouts=timeouts) as conn:
        try:
            rows = execute_batch(conn, sql_text)
        except pymssql.Error as exc:
            raise QueryExecutionError(driver_message(exc)) from exc

    columns = list(rows[0].keys()) if rows else []
    log.info("[runQuery] OK rows=%d", len(rows))
    return QueryResult(rows=rows, columns=columns)
