from __future__ import annotations

from typing import Any

SENSITIVE_KEYS = {"password", "passwd", "pwd", "clave", "secret", "token"}


def redact_secret(secret: str | None, *, keep_prefix: int = 0, keep_suffix: int = 0) -> str | None:
    if secret is None:
        return None
    if not secret:
        return ""
    if keep_prefix < 0 or keep_suffix < 0:
        raise ValueError("keep_prefix and keep_suffix must be non-negative")

    visible = keep_prefix + keep_suffix
    if len(secret) <= visible or visible == 0:
        return "*" * len(secret)
    suffix = secret[-keep_suffix:] if keep_suffix else ""
    return f"{secret[:keep_prefix]}...{suffix}"


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return redact_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item) for item in value]
    return value


def redact_mapping(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy ``payload`` with every sensitive key masked, at any nesting depth (used for log lines)."""
    redacted: dict[str, Any] = {}
    for key, value in payload.items():
        if str(key).lower() in SENSITIVE_KEYS and isinstance(value, str):
            redacted[key] = redact_secret(value)
        else:
            redacted[key] = _redact_value(value)
    return redacted
