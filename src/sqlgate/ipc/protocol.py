from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from sqlgate import __version__
from sqlgate.auth import logout, validate_user
from sqlgate.consultas import QueryDefinition, upsert_consulta
from sqlgate.errors import GatewayError, IndexOutOfRangeError, ValidationError
from sqlgate.gateway import check_connection, run_query
from sqlgate.registry import ServerProfile, ServerUpdate
from sqlgate.resolver import ServerHints
from sqlgate.session import GatewayContext
from sqlgate.util.jsonify import to_jsonable
from sqlgate.util.logging import get_logger
from sqlgate.util.redaction import redact_mapping

ModelT = TypeVar("ModelT", bound=BaseModel)
Handler = Callable[[GatewayContext, dict[str, Any]], dict[str, Any]]

log = get_logger(__name__)


class CommandError(RuntimeError):
    pass


def _parse(model: type[ModelT], data: Any) -> ModelT:
    if not isinstance(data, dict):
        raise ValidationError("expected an object")
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = str(first.get("msg", "invalid value")).removeprefix("Value error, ")
        raise ValidationError(f"{location}: {message}" if location else message) from exc


def _index(args: dict[str, Any], length_hint: int) -> int:
    raw = args.get("index")
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        return int(raw.strip())
    raise IndexOutOfRangeError(raw, length_hint)


def _encrypt(args: dict[str, Any]) -> bool | None:
    value = args.get("encrypt")
    if value is None:
        return None
    return value is True


def _list_servers(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    return {"servers": [server.to_record() for server in ctx.registry.list()]}


def _save_server(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.registry.save(_parse(ServerProfile, args))
    return {}


def _update_server(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    index = _index(args, len(ctx.registry.list()))
    info = args.get("info")
    changes = _parse(ServerUpdate, info if info is not None else {})
    ctx.registry.update(index, changes)
    return {}


def _delete_server(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    ctx.registry.delete(_index(args, len(ctx.registry.list())))
    return {}


def _test_connection(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    payload = dict(args)
    if not payload.get("ip") and payload.get("server"):
        payload["ip"] = payload["server"]
    profile = _parse(ServerProfile, payload)
    check_connection(
        ctx.settings,
        profile,
        database=args.get("database"),
        encrypt=_encrypt(args),
    )
    return {}


def _validate_user(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    result = validate_user(
        ctx,
        str(args.get("username") or ""),
        str(args.get("password") or ""),
        hints=ServerHints.from_args(args),
        encrypt=_encrypt(args),
    )
    return {"serverIndex": result.index}


def _run_query(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    result = run_query(
        ctx,
        args.get("sqlText"),  # type: ignore[arg-type]
        database=args.get("database"),
        hints=ServerHints.from_args(args),
        encrypt=_encrypt(args),
    )
    return {
        "rows": to_jsonable(result.rows),
        "columns": result.columns,
        "count": result.count,
    }


def _save_consulta(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    payload = dict(args)
    if payload.get("codigoAplicacion") is None:
        payload["codigoAplicacion"] = ctx.settings.default_codigo_aplicacion
    definition = _parse(QueryDefinition, payload)
    outcome = upsert_consulta(
        ctx,
        definition,
        hints=ServerHints.from_args(args),
        encrypt=_encrypt(args),
    )
    return {outcome: True}


def _logout(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    return {"cleared": logout(ctx)}


def _get_session(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    return {"activeIndex": ctx.session.index}


def _get_version(ctx: GatewayContext, args: dict[str, Any]) -> dict[str, Any]:
    return {"version": __version__}


COMMANDS: dict[str, Handler] = {
    "listServers": _list_servers,
    "saveServer": _save_server,
    "updateServer": _update_server,
    "deleteServer": _delete_server,
    "testConnection": _test_connection,
    "validateUser": _validate_user,
    "runQuery": _run_query,
    "saveConsulta": _save_consulta,
    "logout": _logout,
    "getSession": _get_session,
    "getVersion": _get_version,
}


def dispatch_command(ctx: GatewayContext, command: str, args: dict[str, Any] | None = None) -> dict[str, Any]:
    """Run one command and return ``{"ok": ...}``; failures never raise."""
    handler = COMMANDS.get(command)
    if handler is None:
        raise CommandError(f"unknown command: {command}")

    log.debug("[%s] args=%s", command, redact_mapping(args or {}))
    try:
        payload = handler(ctx, args or {})
    except GatewayError as exc:
        log.error("[%s] %s: %s", command, exc.kind, exc)
        return {"ok": False, "error": str(exc), "errorKind": exc.kind}
    except Exception as exc:
        log.exception("[%s] unexpected failure", command)
        return {"ok": False, "error": str(exc) or exc.__class__.__name__, "errorKind": "InternalError"}
    return {"ok": True, **payload}


def _jsonrpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _jsonrpc_error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _handle_plain_request(ctx: GatewayContext, payload: dict[str, Any]) -> dict[str, Any]:
    request_id = payload.get("id")
    command = payload.get("command")
    args = payload.get("args")

    if not isinstance(command, str):
        return {"id": request_id, "error": "payload must include string field 'command'"}

    try:
        result = dispatch_command(ctx, command, args if isinstance(args, dict) else None)
    except CommandError as exc:
        return {"id": request_id, "error": str(exc)}

    return {"id": request_id, "result": result}


def _handle_jsonrpc_request(ctx: GatewayContext, payload: dict[str, Any]) -> dict[str, Any] | None:
    request_id = payload.get("id")
    method = payload.get("method")
    if not isinstance(method, str):
        return _jsonrpc_error(request_id, -32600, "Invalid Request: missing method")

    params = payload.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        return _jsonrpc_error(request_id, -32602, "Invalid params: expected object")

    # Notification: no response expected.
    if "id" not in payload:
        if method in COMMANDS:
            dispatch_command(ctx, method, params)
        return None

    if method == "ping":
        return _jsonrpc_result(request_id, {})

    if method == "commands/list":
        return _jsonrpc_result(request_id, {"commands": sorted(COMMANDS)})

    try:
        result = dispatch_command(ctx, method, params)
    except CommandError:
        return _jsonrpc_error(request_id, -32601, f"Method not found: {method}")
    return _jsonrpc_result(request_id, result)


def handle_request(ctx: GatewayContext, payload: dict[str, Any]) -> dict[str, Any] | None:
    if "method" in payload:
        return _handle_jsonrpc_request(ctx, payload)
    return _handle_plain_request(ctx, payload)
