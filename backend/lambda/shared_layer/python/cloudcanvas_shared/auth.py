"""cloudcanvas_shared.auth — Bearer-token authorization gate for admin routes.

Reads ``Authorization: Bearer <token>``, verifies the HS256 session token, and
re-reads the user record so that a deleted account or revoked admin flag takes
effect immediately rather than when the token expires.

    no / malformed header      -> 401 "No authentication token provided"
    bad signature / expired    -> 401 "Invalid or expired token"
    user record gone           -> 401 "User not found"
    user.isAdmin is not True   -> 403 "Admin access required"
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from cloudcanvas_shared.catalog import UsersTable
from cloudcanvas_shared.credentials import extract_token_from_headers, sanitize_user, verify_token
from cloudcanvas_shared.http_utils import _error, _header
from cloudcanvas_shared.store import DocumentStore

logger = logging.getLogger(__name__)

ErrorFn = Callable[[int, str], Dict[str, Any]]

_Result = Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]


def _authenticate(
    event: Dict[str, Any],
    store: DocumentStore,
    secret: str,
    *,
    error_fn: Optional[ErrorFn] = None,
) -> _Result:
    """Resolve the calling user.

    Returns (user, None) on success or (None, error_response) on failure. The
    returned user never carries ``passwordHash``.
    """
    if error_fn is None:
        error_fn = _error

    token = extract_token_from_headers(_header(event, "Authorization"))
    if not token:
        return None, error_fn(401, "No authentication token provided")

    claims = verify_token(token, secret)
    if claims is None:
        return None, error_fn(401, "Invalid or expired token")

    user = UsersTable(store).get_user(str(claims["userId"]))
    if user is None:
        logger.info("token for unknown user %s rejected", claims["userId"])
        return None, error_fn(401, "User not found")

    return sanitize_user(user), None


def _require_admin(
    event: Dict[str, Any],
    store: DocumentStore,
    secret: str,
    *,
    error_fn: Optional[ErrorFn] = None,
) -> _Result:
    """Like ``_authenticate`` but additionally requires ``isAdmin is True``."""
    if error_fn is None:
        error_fn = _error

    user, err = _authenticate(event, store, secret, error_fn=error_fn)
    if err is not None:
        return None, err
    if user.get("isAdmin") is not True:
        logger.info("non-admin user %s denied", user.get("id"))
        return None, error_fn(403, "Admin access required")
    return user, None
