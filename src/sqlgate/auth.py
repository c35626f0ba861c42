from __future__ import annotations

from dataclasses import dataclass

import pymssql

from sqlgate.db_mssql import ConnectionTarget, connect_mssql, driver_message, fetch_all
from sqlgate.errors import ConnectivityError, InvalidCredentialsError, ValidationError
from sqlgate.gateway import probe_timeouts
from sqlgate.resolver import ServerHints
from sqlgate.session import GatewayContext
from sqlgate.util.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class LoginResult:
    index: int
    server: str
    matches: int


def login_sql(table_fqname: str) -> str:
    return f"SELECT Codigo, Clave FROM {table_fqname} WHERE Codigo = %(codigo)s AND Clave = %(clave)s"


def validate_user(
    ctx: GatewayContext,
    username: str,
    password: str,
    *,
    hints: ServerHints | None = None,
    encrypt: bool | None = None,
) -> LoginResult:
    """Check a user/password pair against the catalog user table.

    On success the resolved profile becomes the session's active server.
    """
    codigo = str(username or "").strip()
    if not codigo:
        raise ValidationError("username must not be empty")

    settings = ctx.settings
    resolved = ctx.resolve(hints or ServerHints())
    target = ConnectionTarget.from_profile(
        resolved.profile,
        encrypt=settings.encrypt if encrypt is None else bool(encrypt),
    )
    log.info(
        "[validateUser] server=%s port=%s db=%s user=%s idx=%d",
        target.server,
        target.port,
        settings.catalog_database,
        codigo,
        resolved.index,
    )

    with connect_mssql(target, database=settings.catalog_database, timeouts=probe_timeouts(settings)) as conn:
        try:
            rows = fetch_all(
                conn,
                login_sql(settings.user_table_fqname),
                {"codigo": codigo, "clave": str(password or "")},
            )
        except pymssql.Error as exc:
            raise ConnectivityError(driver_message(exc)) from exc

    if not rows:
        raise InvalidCredentialsError("invalid username or password")
    if len(rows) > 1 and settings.require_unique_login:
        raise InvalidCredentialsError(f"ambiguous credentials: {len(rows)} users match")

    ctx.session.activate(resolved.index)
    log.info("[validateUser] OK idx=%d matches=%d", resolved.index, len(rows))
    return LoginResult(index=resolved.index, server=target.server, matches=len(rows))


def logout(ctx: GatewayContext) -> bool:
    if not ctx.settings.clear_affinity_on_logout:
        return False
    cleared = ctx.session.clear()
    log.info("[logout] cleared=%s", cleared)
    return cleared
