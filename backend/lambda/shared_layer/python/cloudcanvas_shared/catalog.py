"""cloudcanvas_shared.catalog — Services and Users tables over DocumentStore.

Partial updates go through a ``FieldMask``: the payload is checked against an
allow-list of patchable fields and their JSON types before anything is
written. ``id``, ``createdAt`` and ``updatedAt`` in a payload are ignored;
any other unlisted field is rejected.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from cloudcanvas_shared.categories import AWS_CATEGORIES, CategoryConfig, is_known_category
from cloudcanvas_shared.config import READ_DEFAULT_ENABLED
from cloudcanvas_shared.serialization import _now_iso
from cloudcanvas_shared.store import Collection, ConflictError, DocumentStore

logger = logging.getLogger(__name__)

__all__ = [
    "BatchOperations",
    "FieldMask",
    "PatchValidationError",
    "SERVICE_PATCH_FIELDS",
    "ServicesTable",
    "USER_PATCH_FIELDS",
    "UsersTable",
    "build_service_patch",
    "build_user_patch",
    "group_services_by_category",
    "new_user",
    "service_stats",
    "with_read_defaults",
]

SYSTEM_FIELDS = frozenset({"id", "createdAt", "updatedAt"})

SERVICE_PATCH_FIELDS: Dict[str, Tuple[type, ...]] = {
    "name": (str,),
    "slug": (str,),
    "category": (str,),
    "summary": (str,),
    "description": (str,),
    "htmlContent": (str,),
    "markdownContent": (str,),
    "iconPath": (str,),
    "enabled": (bool,),
    "awsDocsUrl": (str,),
    "diagramUrl": (str,),
}

USER_PATCH_FIELDS: Dict[str, Tuple[type, ...]] = {
    "email": (str,),
    "name": (str,),
    "passwordHash": (str,),
    "isAdmin": (bool,),
    "favorites": (list,),
}

CATEGORY_PROJECTION = (
    "id", "name", "slug", "category", "summary", "description", "htmlContent",
    "markdownContent", "awsDocsUrl", "diagramUrl", "iconPath", "enabled",
    "createdAt", "updatedAt",
)
DASHBOARD_PROJECTION = (
    "id", "name", "slug", "category", "summary", "iconPath", "enabled",
    "htmlContent", "markdownContent", "awsDocsUrl", "diagramUrl",
)

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
# Path segments routed ahead of /api/services/{slug}.
RESERVED_SLUGS = frozenset({"id", "stats"})


class PatchValidationError(ValueError):
    """Raised when a partial-update payload names or types a field wrongly."""


# ---------------------------------------------------------------------------
# Field masks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldMask:
    """The set of fields a partial update will overwrite, with their values."""

    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.values

    def __contains__(self, name: str) -> bool:
        return name in self.values

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        allowed: Mapping[str, Tuple[type, ...]],
        *,
        validators: Optional[Mapping[str, Callable[[Any], Any]]] = None,
    ) -> "FieldMask":
        unknown = sorted(k for k in payload if k not in allowed and k not in SYSTEM_FIELDS)
        if unknown:
            raise PatchValidationError(f"Fields not allowed in update: {', '.join(unknown)}")

        values: Dict[str, Any] = {}
        for name, types in allowed.items():
            if name not in payload or payload[name] is None:
                continue
            value = payload[name]
            # bool is an int subclass; only accept it where bool is declared
            if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
                expected = " or ".join(t.__name__ for t in types)
                raise PatchValidationError(f"Field '{name}' must be of type {expected}")
            if validators and name in validators:
                value = validators[name](value)
            values[name] = value
        return cls(values)


def _check_category(value: str) -> str:
    if not is_known_category(value):
        raise PatchValidationError(f"Unknown category: {value}")
    return value


def _check_slug(value: str) -> str:
    if not _SLUG_RE.match(value):
        raise PatchValidationError("Field 'slug' must be lower-case letters, digits and single hyphens")
    if value in RESERVED_SLUGS:
        raise PatchValidationError(f"Slug '{value}' is reserved")
    return value


def _check_favorites(value: List[Any]) -> List[str]:
    if not all(isinstance(v, str) for v in value):
        raise PatchValidationError("Field 'favorites' must be a list of service ids")
    return list(dict.fromkeys(value))


def _check_email(value: str) -> str:
    value = value.strip()
    if "@" not in value:
        raise PatchValidationError("Field 'email' must be an email address")
    return value


def build_service_patch(payload: Mapping[str, Any]) -> FieldMask:
    return FieldMask.from_payload(
        payload,
        SERVICE_PATCH_FIELDS,
        validators={"category": _check_category, "slug": _check_slug},
    )


def build_user_patch(payload: Mapping[str, Any]) -> FieldMask:
    return FieldMask.from_payload(
        payload,
        USER_PATCH_FIELDS,
        validators={"favorites": _check_favorites, "email": _check_email},
    )


# ---------------------------------------------------------------------------
# Read-side defaults, grouping, stats
# ---------------------------------------------------------------------------


def with_read_defaults(service: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve a missing ``enabled`` flag the way every list path does."""
    out = dict(service)
    if out.get("enabled") is None:
        out["enabled"] = READ_DEFAULT_ENABLED
    return out


def _dashboard_entry(service: Dict[str, Any]) -> Dict[str, Any]:
    summary = service.get("summary") or ""
    return {
        "id": service.get("id", ""),
        "name": service.get("name") or "",
        "slug": service.get("slug") or "",
        "category": service.get("category") or "",
        "summary": summary,
        "description": summary,
        "htmlContent": service.get("htmlContent") or "",
        "markdownContent": service.get("markdownContent") or "",
        "awsDocsUrl": service.get("awsDocsUrl") or "",
        "diagramUrl": service.get("diagramUrl") or "",
        "iconPath": service.get("iconPath") or "",
        "enabled": with_read_defaults(service)["enabled"],
    }


def group_services_by_category(
    services: Sequence[Dict[str, Any]],
    categories: Sequence[CategoryConfig] = AWS_CATEGORIES,
) -> List[Dict[str, Any]]:
    """Group services in configured category order; empty groups are omitted."""
    groups: List[Dict[str, Any]] = []
    for config in categories:
        members = [s for s in services if s.get("category") == config.id]
        if not members:
            continue
        groups.append({
            "category": config.id,
            "displayName": config.display_name,
            "iconPath": config.icon_path,
            "services": [_dashboard_entry(s) for s in members],
        })
    return groups


def service_stats(services: Sequence[Dict[str, Any]]) -> Dict[str, int]:
    """Counts over all services, disabled ones included."""
    available = sum(1 for s in services if with_read_defaults(s)["enabled"] is True)
    return {"total": len(services), "available": available}


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class ServicesTable:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def create_service(self, service: Dict[str, Any]) -> None:
        self._store.put(Collection.SERVICES, service)

    def get_service(self, service_id: str, *, consistent: bool = False) -> Optional[Dict[str, Any]]:
        return self._store.get(Collection.SERVICES, service_id, consistent=consistent)

    def get_service_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        return self._store.find_one(Collection.SERVICES, "slug", slug)

    def get_all_services(self) -> List[Dict[str, Any]]:
        return self._store.scan(Collection.SERVICES)

    def get_services_by_category(self, category: str) -> List[Dict[str, Any]]:
        services = self._store.scan_by_attribute(
            Collection.SERVICES, "category", category, projection=CATEGORY_PROJECTION,
        )
        return [with_read_defaults(s) for s in services]

    def get_services_by_ids(self, service_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not service_ids:
            return []
        return self._store.batch_get(Collection.SERVICES, service_ids)

    def get_services_for_dashboard(self) -> List[Dict[str, Any]]:
        services = self._store.scan(Collection.SERVICES, projection=DASHBOARD_PROJECTION)
        return [with_read_defaults(s) for s in services]

    def get_all_services_for_admin(self) -> List[Dict[str, Any]]:
        return self.get_services_for_dashboard()

    def update_service(
        self,
        service_id: str,
        patch: FieldMask,
        *,
        expected_updated_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Apply ``patch``; an empty patch still rewrites ``updatedAt``."""
        if patch.is_empty:
            return self._store.touch(Collection.SERVICES, service_id, expected_updated_at=expected_updated_at)
        return self._store.update(
            Collection.SERVICES, service_id, patch.values, expected_updated_at=expected_updated_at,
        )

    def delete_service(self, service_id: str) -> None:
        self._store.delete(Collection.SERVICES, service_id)


def new_user(email: str, name: str, password_hash: str, *, is_admin: bool = False) -> Dict[str, Any]:
    now = _now_iso()
    return {
        "id": str(uuid.uuid4()),
        "email": email,
        "name": name,
        "passwordHash": password_hash,
        "isAdmin": is_admin,
        "favorites": [],
        "createdAt": now,
        "updatedAt": now,
    }


class UsersTable:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def create_user(self, user: Dict[str, Any]) -> None:
        """Insert a user; ConflictError if the id or email is already taken."""
        if self.get_user_by_email(user["email"]) is not None:
            raise ConflictError(f"users: email {user['email']!r} already exists")
        self._store.put(Collection.USERS, user, condition_absent="id")

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._store.get(Collection.USERS, user_id)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._store.find_one(Collection.USERS, "email", email)

    def update_user(self, user_id: str, patch: FieldMask) -> Optional[Dict[str, Any]]:
        return self._store.update(Collection.USERS, user_id, patch.values)

    def update_favorites(self, user_id: str, favorites: Sequence[str]) -> Optional[Dict[str, Any]]:
        return self.update_user(user_id, build_user_patch({"favorites": list(favorites)}))

    def delete_user(self, user_id: str) -> None:
        self._store.delete(Collection.USERS, user_id)


class BatchOperations:
    """Bulk writes used by the seed/bootstrap tooling."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def batch_create_services(self, services: Sequence[Dict[str, Any]]) -> int:
        return self._store.batch_put(Collection.SERVICES, services)

    def _clear(self, collection: Collection) -> int:
        ids = [r["id"] for r in self._store.scan(collection, projection=("id",)) if r.get("id")]
        if not ids:
            logger.info("%s: nothing to clear", collection.value)
            return 0
        self._store.batch_delete(collection, ids)
        logger.info("%s: cleared %d record(s)", collection.value, len(ids))
        return len(ids)

    def clear_all_services(self) -> int:
        return self._clear(Collection.SERVICES)

    def clear_all_users(self) -> int:
        return self._clear(Collection.USERS)
