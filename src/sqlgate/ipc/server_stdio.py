from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from sqlgate.ipc.protocol import handle_request
from sqlgate.session import GatewayContext


def _write(stream: TextIO, payload: dict[str, Any]) -> None:
    stream.write(json.dumps(payload, ensure_ascii=False) + "\n")
    stream.flush()


def serve_stdio(
    ctx: GatewayContext,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
) -> int:
    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    for raw_line in source:
        line = raw_line.strip()
        if not line:
            continue
        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            _write(sink, {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}})
            continue

        if not isinstance(payload, dict):
            _write(sink, {"jsonrpc": "2.0", "id": None, "error": {"code": -32600, "message": "Invalid Request"}})
            continue

        response = handle_request(ctx, payload)
        if response is not None:
            _write(sink, response)

    return 0
