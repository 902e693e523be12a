"""services_api/lambda_function.py

Lambda API handler for the Cloud Canvas service catalog.

Routes (via API Gateway proxy):
    GET  /api/services                 — Catalog grouped by category
    GET  /api/services?category=<id>   — Services in one category
    GET  /api/services/stats           — {total, available}
    GET  /api/services/id/{id}         — Single service by id
    PUT  /api/services/id/{id}         — Admin partial update by id
    GET  /api/services/{slug}          — Single service by slug
    PUT  /api/services/{slug}          — Admin partial update by slug
    OPTIONS /api/services/*            — CORS preflight

Auth:
    Reads and GETs are public. PUT requires ``Authorization: Bearer <token>``
    for a user whose stored record has ``isAdmin`` set. An optional
    ``If-Match`` header carrying the last ``updatedAt`` seen by the caller
    turns the update into a conditional write (409 on mismatch).

Environment variables:
    AWS_REGION, SERVICES_TABLE_NAME, USERS_TABLE_NAME, JWT_SECRET
    DYNAMODB_ENDPOINT_URL          optional, local DynamoDB
    CACHE_INVALIDATION_EVENT_BUS   optional, enables revalidation events
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Optional
from urllib.parse import unquote

from botocore.exceptions import BotoCoreError, ClientError

from cloudcanvas_shared.auth import _require_admin
from cloudcanvas_shared.aws_clients import _get_eb
from cloudcanvas_shared.catalog import (
    PatchValidationError,
    ServicesTable,
    build_service_patch,
    group_services_by_category,
    service_stats,
)
from cloudcanvas_shared.config import (
    CACHE_EVENT_DETAIL_TYPE,
    CACHE_EVENT_SOURCE,
    ConfigurationError,
    Settings,
)
from cloudcanvas_shared.http_utils import (
    _error,
    _header,
    _json_body,
    _ok,
    _path_method,
    _query_param,
    _response,
)
from cloudcanvas_shared.store import ConflictError, DocumentStore

logger = logging.getLogger()
logger.setLevel(logging.INFO)

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
    """Open the store on first use; reused across warm invocations."""
    global _store
    if _store is None or _store.closed:
        _store = DocumentStore.open(_get_settings())
    return _store


def _set_store(store: Optional[DocumentStore], settings: Optional[Settings] = None) -> None:
    """Install an already-opened store (and settings) in place of the env-built ones."""
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
# Cache invalidation
# ---------------------------------------------------------------------------


def _detail_path(service: Dict[str, Any]) -> str:
    return f"/{service.get('category', '')}/{service.get('slug', '')}"


def _signal_cache_invalidation(service: Dict[str, Any], previous: Optional[Dict[str, Any]] = None) -> None:
    """Ask the front end to revalidate the detail page(s) and the dashboard.

    When an update moved the service to a new slug or category, the page at
    the old location is included as well.
    """
    bus = _get_settings().event_bus
    if not bus:
        return
    paths = [_detail_path(service)]
    if previous is not None and _detail_path(previous) not in paths:
        paths.insert(0, _detail_path(previous))
    paths.append("/")
    try:
        _get_eb(_get_settings().region or None).put_events(
            Entries=[
                {
                    "Source": CACHE_EVENT_SOURCE,
                    "DetailType": CACHE_EVENT_DETAIL_TYPE,
                    "EventBusName": bus,
                    "Detail": json.dumps({"serviceId": service.get("id"), "paths": paths}),
                }
            ]
        )
    except (ClientError, BotoCoreError) as exc:
        logger.warning("Failed emitting cache invalidation event: %s", exc)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_list(event: Dict[str, Any]) -> Dict[str, Any]:
    services = ServicesTable(_get_store())
    category = _query_param(event, "category")
    if category:
        return _ok(services.get_services_by_category(category), public_cache=True)
    groups = group_services_by_category(services.get_services_for_dashboard())
    return _ok(groups, public_cache=True)


def _handle_stats() -> Dict[str, Any]:
    services = ServicesTable(_get_store()).get_all_services_for_admin()
    return _ok(service_stats(services), public_cache=True)


def _handle_get_by_id(service_id: str) -> Dict[str, Any]:
    if not service_id:
        return _error(400, "Service ID is required")
    service = ServicesTable(_get_store()).get_service(service_id)
    if service is None:
        return _error(404, f"Service not found with ID: {service_id}")
    return _ok(service)


def _handle_get_by_slug(slug: str) -> Dict[str, Any]:
    if not slug:
        return _error(400, "Service slug is required")
    service = ServicesTable(_get_store()).get_service_by_slug(slug)
    if service is None:
        return _error(404, "Service not found")
    return _ok(service)


def _if_match(event: Dict[str, Any]) -> Optional[str]:
    value = _header(event, "If-Match").strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    if not value or value == "*":
        return None
    return value


def _handle_update(
    event: Dict[str, Any],
    lookup: Callable[[ServicesTable], Optional[Dict[str, Any]]],
    not_found: str,
) -> Dict[str, Any]:
    store = _get_store()
    user, auth_error = _require_admin(event, store, _get_settings().require_secret())
    if auth_error:
        return auth_error

    try:
        patch = build_service_patch(_json_body(event))
    except (PatchValidationError, ValueError) as exc:
        return _error(400, str(exc))

    services = ServicesTable(store)
    existing = lookup(services)
    if existing is None:
        return _error(404, not_found)

    service_id = existing["id"]
    try:
        services.update_service(service_id, patch, expected_updated_at=_if_match(event))
    except ConflictError as exc:
        logger.info("update of service %s rejected: %s", service_id, exc)
        return _error(409, "Service was modified or removed by another request", service_id=service_id)

    updated = services.get_service(service_id, consistent=True)
    if updated is None:
        return _error(404, not_found)
    logger.info(
        "service %s updated by user %s (fields: %s)",
        service_id, user.get("id"), ", ".join(sorted(patch.values)) or "none",
    )
    _signal_cache_invalidation(updated, existing)
    return _ok(updated)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

_LIST_PATTERN = re.compile(r"^/api/services/?$")
_STATS_PATTERN = re.compile(r"^/api/services/stats/?$")
_ID_PATTERN = re.compile(r"^/api/services/id(?:/(?P<serviceId>[^/]*))?/?$")
_SLUG_PATTERN = re.compile(r"^/api/services/(?P<slug>[^/]+)/?$")


def _route(method: str, path: str, event: Dict[str, Any]) -> Dict[str, Any]:
    if _LIST_PATTERN.match(path):
        if method != "GET":
            return _error(405, f"Method {method} not allowed")
        return _handle_list(event)

    if _STATS_PATTERN.match(path):
        if method != "GET":
            return _error(405, f"Method {method} not allowed")
        return _handle_stats()

    m = _ID_PATTERN.match(path)
    if m:
        service_id = unquote(m.group("serviceId") or "")
        if method == "GET":
            return _handle_get_by_id(service_id)
        if method == "PUT":
            if not service_id:
                return _error(400, "Service ID is required")
            return _handle_update(
                event,
                lambda services: services.get_service(service_id),
                f"Service not found with ID: {service_id}",
            )
        return _error(405, f"Method {method} not allowed")

    m = _SLUG_PATTERN.match(path)
    if m:
        slug = unquote(m.group("slug"))
        if method == "GET":
            return _handle_get_by_slug(slug)
        if method == "PUT":
            return _handle_update(
                event,
                lambda services: services.get_service_by_slug(slug),
                "Service not found",
            )
        return _error(405, f"Method {method} not allowed")

    return _error(404, f"Route not found: {method} {path}")


_FAILURE_MESSAGES = {
    "GET": "Failed to fetch services",
    "PUT": "Failed to update service",
}


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Main Lambda entry point."""
    method, path = _path_method(event)
    logger.info("services_api: %s %s", method, path)

    if method == "OPTIONS":
        return _response(204, "")

    try:
        return _route(method, path, event)
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        raise
    except (ClientError, BotoCoreError) as e:
        logger.error("AWS error: %s", e, exc_info=True)
        return _error(500, _FAILURE_MESSAGES.get(method, "Internal server error"))
    except Exception as e:
        logger.error("Unexpected error: %s", e, exc_info=True)
        return _error(500, _FAILURE_MESSAGES.get(method, "Internal server error"))

