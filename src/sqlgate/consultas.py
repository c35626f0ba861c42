from __future__ import annotations

from typing import Any, Literal

import pymssql
from pydantic import BaseModel, ConfigDict, Field, field_validator

from sqlgate.db_mssql import ConnectionTarget, connect_mssql, driver_message, execute, fetch_one
from sqlgate.errors import QueryExecutionError
from sqlgate.gateway import query_timeouts
from sqlgate.resolver import ServerHints
from sqlgate.session import GatewayContext
from sqlgate.util.logging import get_logger

MAX_CODIGO_LENGTH = 2
MAX_DESCRIPCION_LENGTH = 50

UpsertOutcome = Literal["inserted", "updated"]

log = get_logger(__name__)


class QueryDefinition(BaseModel):
    """A named query stored in the catalog, keyed by (codigoAplicacion, descripcion)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    codigo_aplicacion: str = Field(alias="codigoAplicacion")
    descripcion: str
    consulta: str
    reporte_asociado: str | None = Field(default=None, alias="reporteAsociado")

    @field_validator("codigo_aplicacion", mode="before")
    @classmethod
    def _check_codigo(cls, value: Any) -> str:
        cleaned = str(value if value is not None else "").strip()
        if not cleaned or len(cleaned) > MAX_CODIGO_LENGTH:
            raise ValueError(f"codigoAplicacion must be 1-{MAX_CODIGO_LENGTH} characters")
        return cleaned

    @field_validator("descripcion", mode="before")
    @classmethod
    def _check_descripcion(cls, value: Any) -> str:
        cleaned = str(value if value is not None else "").strip()
        if not cleaned or len(cleaned) > MAX_DESCRIPCION_LENGTH:
            raise ValueError(f"descripcion must be 1-{MAX_DESCRIPCION_LENGTH} characters")
        return cleaned

    @field_validator("consulta", mode="before")
    @classmethod
    def _check_consulta(cls, value: Any) -> str:
        text = value if isinstance(value, str) else str(value if value is not None else "")
        if not text.strip():
            raise ValueError("consulta must not be empty")
        return text

    @field_validator("reporte_asociado", mode="before")
    @classmethod
    def _reporte(cls, value: Any) -> str | None:
        return None if value is None else str(value)


def consulta_sql(table_fqname: str) -> dict[str, str]:
    key = "CodigoAplicacion = %(codigo)s AND Descripcion = %(descripcion)s"
    return {
        "exists": f"SELECT TOP 1 1 AS existsFlag FROM {table_fqname} WHERE {key}",
        "update": (
            f"UPDATE {table_fqname} SET Consulta = %(consulta)s, ReporteAsociado = %(reporte)s "
            f"WHERE {key}"
        ),
        "insert": (
            f"INSERT INTO {table_fqname} (CodigoAplicacion, Descripcion, Consulta, ReporteAsociado) "
            "VALUES (%(codigo)s, %(descripcion)s, %(consulta)s, %(reporte)s)"
        ),
    }


def upsert_consulta(
    ctx: GatewayContext,
    definition: QueryDefinition,
    *,
    hints: ServerHints | None = None,
    encrypt: bool | None = None,
) -> UpsertOutcome:
    settings = ctx.settings
    resolved = ctx.resolve(hints or ServerHints())
    target = ConnectionTarget.from_profile(
        resolved.profile,
        encrypt=settings.encrypt if encrypt is None else bool(encrypt),
    )
    statements = consulta_sql(settings.consulta_table_fqname)
    params = {
        "codigo": definition.codigo_aplicacion,
        "descripcion": definition.descripcion,
        "consulta": definition.consulta,
        "reporte": definition.reporte_asociado,
    }
    log.info(
        "[saveConsulta] server=%s port=%s db=%s idx=%d key=(%s, %s)",
        target.server,
        target.port,
        settings.catalog_database,
        resolved.index,
        definition.codigo_aplicacion,
        definition.descripcion,
    )

    with connect_mssql(target, database=settings.catalog_database, timeouts=query_timeouts(settings)) as conn:
        try:
            if fetch_one(conn, statements["exists"], params) is not None:
                execute(conn, statements["update"], params)
                outcome: UpsertOutcome = "updated"
            else:
                execute(conn, statements["insert"], params)
                outcome = "inserted"
        except pymssql.Error as exc:
            raise QueryExecutionError(driver_message(exc)) from exc

    log.info("[saveConsulta] OK %s", outcome)
    return outcome
