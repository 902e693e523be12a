"""auth_api/lambda_function.py

Lambda API handler for Cloud Canvas admin sign-in.

Routes (via API Gateway proxy):
    POST /api/auth/login    — {email, password} -> {token, user}
    POST /api/auth/logout   — Acknowledgement only; tokens are discarded client-side
    OPTIONS /api/auth/*     — CORS preflight

Both login failure modes (unknown email, wrong password) return the same 401
message.

Environment variables:
    AWS_REGION, SERVICES_TABLE_NAME, USERS_TABLE_NAME, JWT_SECRET
    DYNAMODB_ENDPOINT_URL   optional, local DynamoDB
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from cloudcanvas_shared.catalog import UsersTable
from cloudcanvas_shared.config import ConfigurationError, Settings
from cloudcanvas_shared.credentials import compare_password, generate_token, sanitize_user
from cloudcanvas_shared.http_utils import _error, _json_body, _ok, _path_method, _response
from cloudcanvas_shared.store import DocumentStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

INVALID_CREDENTIALS = "Invalid credentials"

# ---------------------------------------------------------------------------
# Store lifecycle
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_store: Optional[DocumentStore] = None


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def _get_store() -> DocumentStore:
    global _store
    if _store is None or _store.closed:
        _store = DocumentStore.open(_get_settings())
    return _store


def _set_store(store: Optional[DocumentStore], settings: Optional[Settings] = None) -> None:
    global _store, _settings
    _store = store
    if settings is not None:
        _settings = settings


def _close_store() -> None:
    global _store
    if _store is not None:
        _store.close()
        _store = None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_login(event: Dict[str, Any]) -> Dict[str, Any]:
    try:
        body = _json_body(event)
    except ValueError as exc:
        return _error(400, str(exc))

    email = body.get("email")
    password = body.get("password")
    if not isinstance(email, str) or not isinstance(password, str) or not email.strip() or not password:
        return _error(400, "Email and password are required")

    secret = _get_settings().require_secret()
    user = UsersTable(_get_store()).get_user_by_email(email.strip())
    if user is None or not compare_password(password, str(user.get("passwordHash") or "")):
        logger.info("login rejected")
        return _error(401, INVALID_CREDENTIALS)

    token = generate_token(user, secret)
    logger.info("login succeeded for user %s", user.get("id"))
    return _ok({"token": token, "user": sanitize_user(user)})


def _handle_logout() -> Dict[str, Any]:
    return _ok(message="Logged out successfully")


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

_LOGIN_PATTERN = re.compile(r"^/api/auth/login/?$")
_LOGOUT_PATTERN = re.compile(r"^/api/auth/logout/?$")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Main Lambda entry point."""
    method, path = _path_method(event)
    logger.info("auth_api: %s %s", method, path)

    if method == "OPTIONS":
        return _response(204, "")

    try:
        if _LOGIN_PATTERN.match(path):
            if method != "POST":
                return _error(405, f"Method {method} not allowed")
            return _handle_login(event)

        if _LOGOUT_PATTERN.match(path):
            if method != "POST":
                return _error(405, f"Method {method} not allowed")
            return _handle_logout()

        return _error(404, f"Route not found: {method} {path}")

    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise
    except (ClientError, BotoCoreError) as e:
        logger.error("AWS error: %s", e, exc_info=True)
        return _error(500, "Internal server error")
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        return _error(500, "Internal server error")
