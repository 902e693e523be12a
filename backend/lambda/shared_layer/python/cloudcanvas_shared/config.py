"""cloudcanvas_shared.config — Environment configuration and constants.

Requires environment variables:
    AWS_REGION             — falls back to DYNAMODB_REGION
    SERVICES_TABLE_NAME    — services collection
    USERS_TABLE_NAME       — users collection
    JWT_SECRET             — HS256 signing secret for session tokens

Optional:
    DYNAMODB_ENDPOINT_URL          — e.g. http://localhost:8000 for DynamoDB Local
    CACHE_INVALIDATION_EVENT_BUS   — EventBridge bus for page revalidation events
    SERVICES_SLUG_INDEX            — GSI name keyed on slug
    SERVICES_CATEGORY_INDEX        — GSI name keyed on category
    USERS_EMAIL_INDEX              — GSI name keyed on email

Required values are checked when a component that needs them is opened, not
at import time, so modules stay importable in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

__all__ = [
    "BATCH_GET_LIMIT",
    "BATCH_WRITE_LIMIT",
    "BCRYPT_ROUNDS",
    "ConfigurationError",
    "PUBLIC_CACHE_CONTROL",
    "READ_DEFAULT_ENABLED",
    "SEED_DEFAULT_ENABLED",
    "Settings",
    "TOKEN_TTL_SECONDS",
]

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TOKEN_TTL_SECONDS = 7 * 24 * 3600
BCRYPT_ROUNDS = 12
BATCH_WRITE_LIMIT = 25  # DynamoDB BatchWriteItem hard limit
BATCH_GET_LIMIT = 100  # DynamoDB BatchGetItem hard limit
BATCH_MAX_ATTEMPTS = 4

# Seeded records start hidden until reviewed; records written before the flag
# existed have no `enabled` attribute and are read as visible.
SEED_DEFAULT_ENABLED = False
READ_DEFAULT_ENABLED = True

PUBLIC_CACHE_CONTROL = "public, s-maxage=60, stale-while-revalidate=30"
CACHE_EVENT_SOURCE = "cloudcanvas.services"
CACHE_EVENT_DETAIL_TYPE = "ServiceContentChanged"


class ConfigurationError(RuntimeError):
    """Raised when required server configuration is absent."""


def _env(name: str, default: str = "") -> str:
    return str(os.environ.get(name, default) or "").strip()


def _require(name: str, value: str) -> str:
    if not value:
        raise ConfigurationError(f"{name} environment variable is required")
    return value


@dataclass(frozen=True)
class Settings:
    region: str = ""
    services_table: str = ""
    users_table: str = ""
    jwt_secret: str = ""
    endpoint_url: Optional[str] = None
    event_bus: str = ""
    indexes: Dict[Tuple[str, str], str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        indexes: Dict[Tuple[str, str], str] = {}
        for collection, attribute, var in (
            ("services", "slug", "SERVICES_SLUG_INDEX"),
            ("services", "category", "SERVICES_CATEGORY_INDEX"),
            ("users", "email", "USERS_EMAIL_INDEX"),
        ):
            index_name = _env(var)
            if index_name:
                indexes[(collection, attribute)] = index_name
        return cls(
            region=_env("AWS_REGION") or _env("DYNAMODB_REGION"),
            services_table=_env("SERVICES_TABLE_NAME"),
            users_table=_env("USERS_TABLE_NAME"),
            jwt_secret=_env("JWT_SECRET"),
            endpoint_url=_env("DYNAMODB_ENDPOINT_URL") or None,
            event_bus=_env("CACHE_INVALIDATION_EVENT_BUS"),
            indexes=indexes,
        )

    def require_store(self) -> "Settings":
        """Fail fast if the store cannot be opened with these settings."""
        _require("AWS_REGION", self.region)
        _require("SERVICES_TABLE_NAME", self.services_table)
        _require("USERS_TABLE_NAME", self.users_table)
        return self

    def require_secret(self) -> str:
        return _require("JWT_SECRET", self.jwt_secret)
