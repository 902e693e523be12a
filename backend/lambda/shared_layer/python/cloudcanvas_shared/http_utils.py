"""cloudcanvas_shared.http_utils — HTTP response helpers with CORS.

Every response carries the envelope ``{success, data?, error?}``. Error
responses also carry ``error_envelope`` with a machine-readable code.
"""

from __future__ import annotations

import base64
import json
import logging
import os
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from cloudcanvas_shared.config import PUBLIC_CACHE_CONTROL

logger = logging.getLogger(__name__)

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")

_ERROR_CODES = {
    400: "INVALID_INPUT",
    401: "PERMISSION_DENIED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
}


def _cors_headers() -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Methods": "GET, POST, PUT, OPTIONS",
        "Access-Control-Allow-Headers": "Accept, Authorization, Content-Type, If-Match",
    }


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    if isinstance(obj, set):
        return sorted(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _response(
    status_code: int,
    body: Any,
    *,
    cache_control: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an API Gateway proxy response with CORS headers."""
    headers = {**_cors_headers(), "Content-Type": "application/json"}
    if cache_control:
        headers["Cache-Control"] = cache_control
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, default=_json_default),
    }


def _ok(data: Any = None, status_code: int = 200, *, public_cache: bool = False, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"success": True}
    if data is not None:
        payload["data"] = data
    payload.update(extra)
    return _response(
        status_code,
        payload,
        cache_control=PUBLIC_CACHE_CONTROL if public_cache else None,
    )


def _error(status_code: int, message: str, **extra: Any) -> Dict[str, Any]:
    """Build a standard error response.

    Args:
        status_code: HTTP status code.
        message: Human-readable error message, shown to the user as-is.
        **extra: ``code``/``retryable`` overrides; remaining keys become details.
    """
    code = str(extra.pop("code", "") or "").strip().upper()
    if not code:
        code = _ERROR_CODES.get(status_code, "INTERNAL_ERROR")
    retryable = bool(extra.pop("retryable", status_code >= 500))
    details = dict(extra)
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "error_envelope": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "details": details,
        },
    }
    return _response(status_code, body)


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Parse the JSON object body of an API Gateway event (handles base64)."""
    raw = event.get("body")
    if raw in (None, ""):
        return {}
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ValueError(f"Invalid JSON body: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("JSON body must be an object")
    return parsed


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from an API Gateway v1/v2 event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = event.get("rawPath") or http.get("path") or event.get("path") or "/"
    return method, path


def _header(event: Dict[str, Any], name: str) -> str:
    """Case-insensitive header lookup; returns "" when absent."""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return str(value or "")
    return ""


def _query_param(event: Dict[str, Any], name: str) -> str:
    qs = event.get("queryStringParameters") or {}
    return str(qs.get(name) or "").strip()
