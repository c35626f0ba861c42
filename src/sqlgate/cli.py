from __future__ import annotations

import argparse
import json
import sys
from typing import Any, TextIO

from sqlgate.config import get_paths
from sqlgate.errors import GatewayError
from sqlgate.ipc.protocol import dispatch_command
from sqlgate.ipc.server_http import serve_http
from sqlgate.ipc.server_stdio import serve_stdio
from sqlgate.resolver import ServerHints
from sqlgate.session import GatewayContext, build_context
from sqlgate.settings import config_yaml_path, load_settings
from sqlgate.util.logging import configure_logging
from sqlgate.util.redaction import redact_secret

EXIT_RUNTIME_KINDS = {"ConnectivityError", "ExecutionError"}


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _context() -> GatewayContext:
    return build_context(load_settings())


def _read_password(args: argparse.Namespace, stdin: TextIO) -> str | None:
    if getattr(args, "password_stdin", False):
        password = stdin.readline().rstrip("\r\n")
        if not password:
            raise ValueError("missing password on stdin for --password-stdin")
        return password
    return getattr(args, "password", None)


def _target_args(args: argparse.Namespace) -> dict[str, Any]:
    hints: dict[str, Any] = {}
    if getattr(args, "server_ip", None):
        hints["serverIp"] = args.server_ip
    if getattr(args, "server_index", None) is not None:
        hints["serverIndex"] = args.server_index
    if getattr(args, "encrypt", False):
        hints["encrypt"] = True
    return hints


def _finish(response: dict[str, Any], *, json_output: bool, message: str | None = None) -> int:
    if json_output:
        _print_json(response)
    if response.get("ok"):
        if message and not json_output:
            print(message)
        return 0

    if not json_output:
        print(str(response.get("error", "command failed")), file=sys.stderr)
    kind = response.get("errorKind")
    if kind in EXIT_RUNTIME_KINDS:
        return 4
    if kind == "InternalError":
        return 1
    return 2


def cmd_config(args: argparse.Namespace) -> int:
    paths = get_paths()
    settings = load_settings()
    yaml_path = config_yaml_path()
    payload = {
        "config_yaml_path": str(yaml_path),
        "config_yaml_exists": yaml_path.exists(),
        "servers_file": str(paths.servers_file),
        "settings": settings.model_dump(),
    }
    if args.json:
        _print_json(payload)
        return 0

    print(f"config_yaml: {payload['config_yaml_path']}")
    print(f"config_yaml_exists: {payload['config_yaml_exists']}")
    print(f"servers_file: {payload['servers_file']}")
    for key, value in payload["settings"].items():
        print(f"{key}: {value}")
    return 0


def cmd_server(args: argparse.Namespace) -> int:
    ctx = _context()

    if args.server_cmd == "list":
        response = dispatch_command(ctx, "listServers")
        if not response.get("ok"):
            return _finish(response, json_output=args.json)
        servers = response.get("servers", [])
        if not args.show_passwords:
            servers = [{**server, "password": redact_secret(server.get("password"))} for server in servers]
        if args.json:
            _print_json({**response, "servers": servers})
            return 0
        if not servers:
            print("no servers configured")
            return 0
        for index, server in enumerate(servers):
            print(
                f"{index}\t{server.get('name') or '-'}\t{server['ip']}:{server['port']}"
                f"\tuser={server.get('user') or '-'}\tpassword={server.get('password') or '-'}"
                f"\tcreated={server.get('createdAt', '-')}\tupdated={server.get('updatedAt', '-')}"
            )
        return 0

    try:
        password = _read_password(args, sys.stdin)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if args.server_cmd == "add":
        request = {
            "name": args.name,
            "ip": args.ip,
            "port": args.port,
            "user": args.user,
            "password": password or "",
        }
        response = dispatch_command(ctx, "saveServer", request)
        return _finish(response, json_output=args.json, message=f"added server '{args.name or args.ip}'")

    if args.server_cmd == "update":
        info = {
            key: value
            for key, value in {
                "name": args.name,
                "ip": args.ip,
                "port": args.port,
                "user": args.user,
                "password": password,
            }.items()
            if value is not None
        }
        response = dispatch_command(ctx, "updateServer", {"index": args.index, "info": info})
        return _finish(response, json_output=args.json, message=f"updated server {args.index}")

    if args.server_cmd == "rm":
        response = dispatch_command(ctx, "deleteServer", {"index": args.index})
        return _finish(response, json_output=args.json, message=f"removed server {args.index}")

    return 1


def cmd_test(args: argparse.Namespace) -> int:
    ctx = _context()
    try:
        password = _read_password(args, sys.stdin)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    if args.ip:
        request: dict[str, Any] = {
            "ip": args.ip,
            "port": args.port,
            "user": args.user or "",
            "password": password or "",
        }
    else:
        try:
            resolved = ctx.resolve(ServerHints.from_args(_target_args(args)))
        except GatewayError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        request = resolved.profile.to_record()

    if args.database:
        request["database"] = args.database
    if args.encrypt:
        request["encrypt"] = True

    response = dispatch_command(ctx, "testConnection", request)
    return _finish(response, json_output=args.json, message=f"connection OK: {request['ip']}")


def cmd_login(args: argparse.Namespace) -> int:
    ctx = _context()
    try:
        password = _read_password(args, sys.stdin)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    request = {"username": args.username, "password": password or "", **_target_args(args)}
    response = dispatch_command(ctx, "validateUser", request)
    return _finish(
        response,
        json_output=args.json,
        message=f"credentials valid on server {response.get('serverIndex')}",
    )


def _read_sql(text: str, stdin: TextIO) -> str:
    if text == "-":
        return stdin.read()
    return text


def _print_rows(columns: list[str], rows: list[dict[str, Any]]) -> None:
    if not columns:
        print("(no rows)")
        return
    print("\t".join(columns))
    for row in rows:
        print("\t".join("NULL" if row.get(column) is None else str(row.get(column)) for column in columns))
    print(f"({len(rows)} row(s))")


def cmd_query(args: argparse.Namespace) -> int:
    ctx = _context()
    request: dict[str, Any] = {"sqlText": _read_sql(args.sql, sys.stdin), **_target_args(args)}
    if args.database:
        request["database"] = args.database

    response = dispatch_command(ctx, "runQuery", request)
    if response.get("ok") and not args.json:
        _print_rows(response.get("columns", []), response.get("rows", []))
        return 0
    return _finish(response, json_output=args.json)


def cmd_consulta(args: argparse.Namespace) -> int:
    ctx = _context()
    if args.consulta_cmd == "save":
        request: dict[str, Any] = {
            "descripcion": args.descripcion,
            "consulta": _read_sql(args.sql, sys.stdin),
            "reporteAsociado": args.reporte,
            **_target_args(args),
        }
        if args.codigo is not None:
            request["codigoAplicacion"] = args.codigo
        response = dispatch_command(ctx, "saveConsulta", request)
        action = "updated" if response.get("updated") else "inserted"
        return _finish(response, json_output=args.json, message=f"{action} consulta '{args.descripcion}'")
    return 1


def cmd_serve(args: argparse.Namespace) -> int:
    ctx = _context()
    if args.http:
        print(f"sqlgate HTTP server listening on http://{args.host}:{args.port}")
        print("health endpoint: GET /health, rpc endpoint: POST /rpc")
        return serve_http(ctx, host=args.host, port=args.port)
    print("sqlgate stdio server started", file=sys.stderr)
    return serve_stdio(ctx)


def _add_hint_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--server-ip", help="target the registered server with this ip")
    parser.add_argument("--server-index", type=int, help="target the registered server at this position")
    parser.add_argument("--encrypt", action="store_true", help="require TLS for the connection")


def _add_password_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--password")
    group.add_argument(
        "--password-stdin",
        action="store_true",
        help="read the password from stdin (first line)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqlgate", description="SQL Server profile registry and query gateway")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="cmd", required=True)

    config_parser = subparsers.add_parser("config", help="show effective configuration")
    config_parser.add_argument("--json", action="store_true")
    config_parser.set_defaults(func=cmd_config)

    server_parser = subparsers.add_parser("server", help="manage SQL Server profiles")
    server_sub = server_parser.add_subparsers(dest="server_cmd", required=True)

    server_add = server_sub.add_parser("add", help="append a server profile")
    server_add.add_argument("--name", default="")
    server_add.add_argument("--ip", required=True)
    server_add.add_argument("--port", type=int, default=1433)
    server_add.add_argument("--user", default="")
    _add_password_arguments(server_add)
    server_add.add_argument("--json", action="store_true")
    server_add.set_defaults(func=cmd_server)

    server_list = server_sub.add_parser("list", help="list server profiles in registry order")
    server_list.add_argument("--show-passwords", action="store_true")
    server_list.add_argument("--json", action="store_true")
    server_list.set_defaults(func=cmd_server)

    server_update = server_sub.add_parser("update", help="change fields of a server profile")
    server_update.add_argument("index", type=int)
    server_update.add_argument("--name")
    server_update.add_argument("--ip")
    server_update.add_argument("--port", type=int)
    server_update.add_argument("--user")
    _add_password_arguments(server_update)
    server_update.add_argument("--json", action="store_true")
    server_update.set_defaults(func=cmd_server)

    server_rm = server_sub.add_parser("rm", help="remove a server profile (later indices shift down)")
    server_rm.add_argument("index", type=int)
    server_rm.add_argument("--json", action="store_true")
    server_rm.set_defaults(func=cmd_server)

    test_parser = subparsers.add_parser("test", help="test connectivity to a server")
    test_parser.add_argument("--ip", help="ad-hoc server ip (otherwise a registered profile is used)")
    test_parser.add_argument("--port", type=int, default=1433)
    test_parser.add_argument("--user")
    _add_password_arguments(test_parser)
    test_parser.add_argument("--database")
    _add_hint_arguments(test_parser)
    test_parser.add_argument("--json", action="store_true")
    test_parser.set_defaults(func=cmd_test)

    login_parser = subparsers.add_parser("login", help="validate user credentials against the catalog")
    login_parser.add_argument("username")
    _add_password_arguments(login_parser)
    _add_hint_arguments(login_parser)
    login_parser.add_argument("--json", action="store_true")
    login_parser.set_defaults(func=cmd_login)

    query_parser = subparsers.add_parser("query", help="run SQL against a database ('-' reads stdin)")
    query_parser.add_argument("sql")
    query_parser.add_argument("--database")
    _add_hint_arguments(query_parser)
    query_parser.add_argument("--json", action="store_true")
    query_parser.set_defaults(func=cmd_query)

    consulta_parser = subparsers.add_parser("consulta", help="manage saved query definitions")
    consulta_sub = consulta_parser.add_subparsers(dest="consulta_cmd", required=True)
    consulta_save = consulta_sub.add_parser("save", help="insert or update a saved query")
    consulta_save.add_argument("sql")
    consulta_save.add_argument("--descripcion", required=True)
    consulta_save.add_argument("--codigo", help="application code (defaults to configured value)")
    consulta_save.add_argument("--reporte", help="associated report reference")
    _add_hint_arguments(consulta_save)
    consulta_save.add_argument("--json", action="store_true")
    consulta_save.set_defaults(func=cmd_consulta)

    serve_parser = subparsers.add_parser("serve", help="serve the command surface over stdio or HTTP")
    serve_parser.add_argument("--http", action="store_true")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8766)
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 1
    return int(func(args))


def app() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    app()
