"""cloudcanvas_shared.credentials — Password hashing and session tokens.

Passwords are stored as bcrypt hashes (passlib, fixed work factor). Session
tokens are HS256 JWTs carrying ``{userId, email, isAdmin}`` plus ``iat``/``exp``
and are valid for seven days.

Failures collapse to ``None``/``False``. The only exception that escapes this
module is ``ConfigurationError`` when the signing secret is not configured.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from cloudcanvas_shared.config import BCRYPT_ROUNDS, TOKEN_TTL_SECONDS, ConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "BEARER_PREFIX",
    "JWT_ALGORITHM",
    "compare_password",
    "extract_token_from_headers",
    "generate_token",
    "hash_password",
    "sanitize_user",
    "verify_token",
]

JWT_ALGORITHM = "HS256"
BEARER_PREFIX = "Bearer "

_pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=BCRYPT_ROUNDS,
)


def _check_secret(secret: Optional[str]) -> str:
    if not secret:
        raise ConfigurationError("JWT_SECRET environment variable is required")
    return secret


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str) -> str:
    """Hash a password for storage (salted bcrypt)."""
    return _pwd_context.hash(password)


def compare_password(password: str, password_hash: str) -> bool:
    """Verify a plain password against a stored hash.

    Malformed or empty hashes count as a mismatch.
    """
    if not password or not password_hash:
        return False
    try:
        return _pwd_context.verify(password, password_hash)
    except (ValueError, TypeError) as exc:
        logger.warning("password hash could not be verified: %s", exc)
        return False


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def generate_token(user: Dict[str, Any], secret: str, *, ttl_seconds: int = TOKEN_TTL_SECONDS) -> str:
    """Issue a signed session token for ``user``."""
    key = _check_secret(secret)
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "userId": user["id"],
        "email": user.get("email", ""),
        "isAdmin": bool(user.get("isAdmin", False)),
        "iat": now,
        "exp": now + dt.timedelta(seconds=ttl_seconds),
    }
    return jwt.encode(payload, key, algorithm=JWT_ALGORITHM)


def verify_token(token: str, secret: str) -> Optional[Dict[str, Any]]:
    """Return the token payload, or None on bad signature, expiry or garbage."""
    key = _check_secret(secret)
    if not token:
        return None
    try:
        claims = jwt.decode(
            token,
            key,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        logger.info("session token expired")
        return None
    except jwt.PyJWTError as exc:
        logger.info("session token rejected: %s", exc)
        return None
    if not claims.get("userId"):
        return None
    return claims


def extract_token_from_headers(auth_header: Optional[str]) -> Optional[str]:
    """Strip the ``Bearer`` prefix from an Authorization header value."""
    if not auth_header or not auth_header.startswith(BEARER_PREFIX):
        return None
    token = auth_header[len(BEARER_PREFIX):].strip()
    return token or None


def sanitize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``user`` without ``passwordHash``."""
    return {k: v for k, v in user.items() if k != "passwordHash"}
