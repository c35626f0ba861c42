from __future__ import annotations

import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, cast

from sqlgate import __version__
from sqlgate.ipc.protocol import handle_request
from sqlgate.session import GatewayContext
from sqlgate.util.logging import get_logger

log = get_logger(__name__)


class GatewayHTTPHandler(BaseHTTPRequestHandler):
    server_version = f"sqlgate/{__version__}"

    def _read_json(self) -> dict[str, Any] | None:
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length)
        try:
            payload = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return payload if isinstance(payload, dict) else None

    def _write_json(self, status: HTTPStatus, payload: dict[str, Any] | None) -> None:
        content = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(content)))
        self.end_headers()
        self.wfile.write(content)

    @property
    def _ctx(self) -> GatewayContext:
        server = cast(Any, self.server)
        return cast(GatewayContext, server.gateway_ctx)

    def log_message(self, format: str, *args: Any) -> None:
        log.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self) -> None:
        if self.path == "/health":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return
        self._write_json(HTTPStatus.NOT_FOUND, {"error": "not found"})

    def do_POST(self) -> None:
        if self.path != "/rpc":
            self._write_json(HTTPStatus.NOT_FOUND, {"error": "not found"})
            return

        payload = self._read_json()
        if payload is None:
            self._write_json(HTTPStatus.BAD_REQUEST, {"error": "invalid JSON payload"})
            return

        response = handle_request(self._ctx, payload)
        if response is None:
            self.send_response(HTTPStatus.NO_CONTENT.value)
            self.end_headers()
            return
        self._write_json(HTTPStatus.OK, response)


def make_server(ctx: GatewayContext, *, host: str = "127.0.0.1", port: int = 8766) -> ThreadingHTTPServer:
    server = ThreadingHTTPServer((host, port), GatewayHTTPHandler)
    server.gateway_ctx = ctx  # type: ignore[attr-defined]
    return server


def serve_http(ctx: GatewayContext, *, host: str = "127.0.0.1", port: int = 8766) -> int:
    server = make_server(ctx, host=host, port=port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
    return 0
