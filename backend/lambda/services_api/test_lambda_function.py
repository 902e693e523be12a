"""test_lambda_function.py — Tests for services_api.

Covers listing (grouped and by category), stats, lookup by slug/id, and the
admin-gated partial update flow, against an in-memory DynamoDB fake. All
locally runnable without AWS credentials.

Run: python3 -m pytest test_lambda_function.py -v
"""

from __future__ import annotations

import importlib.util
import json
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from cloudcanvas_shared.config import ConfigurationError, Settings
from cloudcanvas_shared.credentials import generate_token
from cloudcanvas_shared.store import Collection, DocumentStore
from fake_dynamodb import FakeDynamoDB

sys.path.insert(0, os.path.dirname(__file__))

_spec = importlib.util.spec_from_file_location(
    "services_api",
    os.path.join(os.path.dirname(__file__), "lambda_function.py"),
)
services_api = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(services_api)

SECRET = "unit-test-secret-0123456789abcdef01234"
OLD_STAMP = "2024-01-01T00:00:00.000000Z"

ADMIN = {"id": "u-admin", "email": "admin@example.com", "name": "Admin", "isAdmin": True,
         "passwordHash": "$2b$12$notarealhash", "favorites": []}
EDITOR = {"id": "u-editor", "email": "editor@example.com", "name": "Editor", "isAdmin": False,
          "passwordHash": "$2b$12$notarealhash", "favorites": []}


def _service(sid, slug, category, **extra):
    record = {
        "id": sid,
        "name": slug.upper(),
        "slug": slug,
        "category": category,
        "summary": f"{slug} service",
        "description": f"{slug} description",
        "htmlContent": "<p>hi</p>",
        "markdownContent": "# hi",
        "iconPath": f"/aws/Architecture-Service/Arch_{category}/{slug}.svg",
        "awsDocsUrl": f"https://docs.aws.amazon.com/{slug}/",
        "diagramUrl": "",
        "createdAt": OLD_STAMP,
        "updatedAt": OLD_STAMP,
    }
    record.update(extra)
    return record


SERVICES = [
    _service("s-1", "s3", "Storage", enabled=False),
    _service("s-2", "ec2", "Compute", enabled=True),
    # Written before the enabled flag existed.
    _service("s-3", "lambda", "Compute"),
]


def _make_event(method="GET", path="/api/services", body=None, token=None, query_params=None, headers=None):
    """Build a mock API Gateway v2 event."""
    event = {
        "requestContext": {"http": {"method": method, "path": path}},
        "headers": dict(headers or {}),
        "rawPath": path,
        "queryStringParameters": query_params or {},
    }
    if token:
        event["headers"]["authorization"] = f"Bearer {token}"
    if body is not None:
        event["body"] = json.dumps(body) if isinstance(body, dict) else body
    return event


def _body(resp):
    return json.loads(resp["body"])


class _StoreCase(unittest.TestCase):
    event_bus = ""

    def setUp(self):
        self.fake = FakeDynamoDB()
        self.settings = Settings(
            region="us-east-1",
            services_table="services",
            users_table="users",
            jwt_secret=SECRET,
            event_bus=self.event_bus,
        )
        self.store = DocumentStore.open(self.settings, client=self.fake)
        for record in SERVICES:
            self.store.put(Collection.SERVICES, record)
        for user in (ADMIN, EDITOR):
            self.store.put(Collection.USERS, user)
        services_api._set_store(self.store, self.settings)

    def tearDown(self):
        services_api._close_store()

    def stored(self, sid):
        return self.store.get(Collection.SERVICES, sid)


class OptionsAndRoutingTests(_StoreCase):
    def test_options_returns_204_with_cors(self):
        resp = services_api.lambda_handler(_make_event(method="OPTIONS"), None)
        self.assertEqual(resp["statusCode"], 204)
        self.assertIn("Access-Control-Allow-Origin", resp["headers"])

    def test_unknown_route_returns_404(self):
        resp = services_api.lambda_handler(_make_event(path="/api/other"), None)
        self.assertEqual(resp["statusCode"], 404)
        self.assertEqual(_body(resp)["error_envelope"]["code"], "NOT_FOUND")

    def test_post_on_listing_not_allowed(self):
        resp = services_api.lambda_handler(_make_event(method="POST"), None)
        self.assertEqual(resp["statusCode"], 405)


class ListingTests(_StoreCase):
    def test_grouped_listing_follows_category_order(self):
        resp = services_api.lambda_handler(_make_event(), None)
        self.assertEqual(resp["statusCode"], 200)
        groups = _body(resp)["data"]
        self.assertEqual([g["category"] for g in groups], ["Compute", "Storage"])
        self.assertTrue(all(g["services"] for g in groups))
        compute = groups[0]
        self.assertEqual(compute["displayName"], "Compute")
        self.assertEqual(compute["iconPath"], "/aws/Category/Arch-Category_Compute_64.svg")

    def test_grouped_listing_defaults_enabled(self):
        groups = _body(services_api.lambda_handler(_make_event(), None))["data"]
        by_slug = {s["slug"]: s for g in groups for s in g["services"]}
        self.assertIs(by_slug["lambda"]["enabled"], True)
        self.assertIs(by_slug["s3"]["enabled"], False)
        for entry in by_slug.values():
            self.assertIsInstance(entry["enabled"], bool)
            self.assertEqual(entry["description"], entry["summary"])

    def test_listing_carries_public_cache_hint(self):
        resp = services_api.lambda_handler(_make_event(), None)
        self.assertEqual(resp["headers"]["Cache-Control"], "public, s-maxage=60, stale-while-revalidate=30")

    def test_listing_by_category(self):
        event = _make_event(query_params={"category": "Compute"})
        resp = services_api.lambda_handler(event, None)
        data = _body(resp)["data"]
        self.assertEqual(sorted(s["slug"] for s in data), ["ec2", "lambda"])
        self.assertTrue(all(isinstance(s["enabled"], bool) for s in data))
        self.assertIn("Cache-Control", resp["headers"])

    def test_listing_unknown_category_is_empty(self):
        event = _make_event(query_params={"category": "Nope"})
        self.assertEqual(_body(services_api.lambda_handler(event, None))["data"], [])

    def test_stats_count_disabled_services(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/stats"), None)
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(_body(resp)["data"], {"total": 3, "available": 2})
        self.assertIn("Cache-Control", resp["headers"])

    def test_store_failure_returns_generic_500(self):
        err = ClientError({"Error": {"Code": "InternalServerError", "Message": "table on fire"}}, "Scan")
        with patch.object(self.fake, "scan", side_effect=err):
            resp = services_api.lambda_handler(_make_event(), None)
        self.assertEqual(resp["statusCode"], 500)
        body = _body(resp)
        self.assertEqual(body["error"], "Failed to fetch services")
        self.assertNotIn("fire", resp["body"])
        self.assertTrue(body["error_envelope"]["retryable"])


class LookupTests(_StoreCase):
    def test_get_by_slug(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/ec2"), None)
        self.assertEqual(resp["statusCode"], 200)
        self.assertEqual(_body(resp)["data"]["id"], "s-2")

    def test_get_by_slug_missing(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/nope"), None)
        self.assertEqual(resp["statusCode"], 404)
        self.assertEqual(_body(resp)["error"], "Service not found")

    def test_get_by_id(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/id/s-1"), None)
        self.assertEqual(_body(resp)["data"]["slug"], "s3")

    def test_get_by_id_missing(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/id/zzz"), None)
        self.assertEqual(resp["statusCode"], 404)
        self.assertEqual(_body(resp)["error"], "Service not found with ID: zzz")

    def test_get_by_id_without_id(self):
        resp = services_api.lambda_handler(_make_event(path="/api/services/id/"), None)
        self.assertEqual(resp["statusCode"], 400)


class UpdateAuthTests(_StoreCase):
    def test_missing_token_returns_401_and_leaves_record(self):
        event = _make_event(method="PUT", path="/api/services/id/s-1", body={"enabled": True})
        resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 401)
        self.assertEqual(_body(resp)["error"], "No authentication token provided")
        self.assertEqual(self.stored("s-1"), SERVICES[0])

    def test_garbage_token_returns_401(self):
        event = _make_event(method="PUT", path="/api/services/s3", body={"enabled": True}, token="garbage")
        resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 401)
        self.assertEqual(_body(resp)["error"], "Invalid or expired token")

    def test_non_admin_returns_403_and_leaves_record(self):
        token = generate_token(EDITOR, SECRET)
        event = _make_event(method="PUT", path="/api/services/s3", body={"enabled": True}, token=token)
        resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 403)
        self.assertEqual(_body(resp)["error_envelope"]["code"], "FORBIDDEN")
        self.assertEqual(self.stored("s-1"), SERVICES[0])

    def test_deleted_user_returns_401(self):
        token = generate_token(ADMIN, SECRET)
        self.store.delete(Collection.USERS, ADMIN["id"])
        event = _make_event(method="PUT", path="/api/services/s3", body={"enabled": True}, token=token)
        resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 401)
        self.assertEqual(_body(resp)["error"], "User not found")

    def test_revoked_admin_flag_takes_effect_immediately(self):
        token = generate_token(ADMIN, SECRET)
        self.store.update(Collection.USERS, ADMIN["id"], {"isAdmin": False})
        event = _make_event(method="PUT", path="/api/services/s3", body={"enabled": True}, token=token)
        self.assertEqual(services_api.lambda_handler(event, None)["statusCode"], 403)


class UpdateTests(_StoreCase):
    def setUp(self):
        super().setUp()
        self.token = generate_token(ADMIN, SECRET)

    def _put(self, path, body, headers=None):
        return services_api.lambda_handler(
            _make_event(method="PUT", path=path, body=body, token=self.token, headers=headers), None,
        )

    def test_enable_by_id_then_get(self):
        resp = self._put("/api/services/id/s-1", {"enabled": True})
        self.assertEqual(resp["statusCode"], 200)
        self.assertIs(_body(resp)["data"]["enabled"], True)

        got = _body(services_api.lambda_handler(_make_event(path="/api/services/id/s-1"), None))["data"]
        self.assertIs(got["enabled"], True)
        self.assertGreater(got["updatedAt"], OLD_STAMP)

    def test_update_by_slug_returns_refetched_record(self):
        resp = self._put("/api/services/ec2", {"summary": "Virtual machines"})
        data = _body(resp)["data"]
        self.assertEqual(data["summary"], "Virtual machines")
        self.assertEqual(data["name"], "EC2")
        self.assertEqual(self.stored("s-2")["summary"], "Virtual machines")

    def test_empty_body_changes_only_updated_at(self):
        before = self.stored("s-2")
        resp = self._put("/api/services/id/s-2", {})
        self.assertEqual(resp["statusCode"], 200)
        after = self.stored("s-2")
        self.assertGreater(after["updatedAt"], before["updatedAt"])
        after.pop("updatedAt")
        before.pop("updatedAt")
        self.assertEqual(after, before)

    def test_system_fields_are_ignored(self):
        resp = self._put("/api/services/id/s-2", {"id": "hijack", "createdAt": "x", "name": "EC2 Instances"})
        self.assertEqual(resp["statusCode"], 200)
        record = self.stored("s-2")
        self.assertEqual(record["id"], "s-2")
        self.assertEqual(record["createdAt"], OLD_STAMP)
        self.assertIsNone(self.stored("hijack"))

    def test_disallowed_field_rejected(self):
        resp = self._put("/api/services/id/s-2", {"passwordHash": "x"})
        self.assertEqual(resp["statusCode"], 400)
        self.assertIn("passwordHash", _body(resp)["error"])
        self.assertEqual(self.stored("s-2"), SERVICES[1])

    def test_reserved_slug_rejected(self):
        for slug in ("id", "stats"):
            resp = self._put("/api/services/id/s-2", {"slug": slug})
            self.assertEqual(resp["statusCode"], 400)
            self.assertIn("reserved", _body(resp)["error"])
        self.assertEqual(self.stored("s-2"), SERVICES[1])

    def test_mistyped_field_rejected(self):
        resp = self._put("/api/services/id/s-2", {"enabled": "yes"})
        self.assertEqual(resp["statusCode"], 400)

    def test_unknown_category_rejected(self):
        resp = self._put("/api/services/id/s-2", {"category": "Teleportation"})
        self.assertEqual(resp["statusCode"], 400)

    def test_malformed_json_returns_400(self):
        resp = self._put("/api/services/id/s-2", "{not json")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(_body(resp)["error_envelope"]["code"], "INVALID_INPUT")

    def test_missing_target_returns_404(self):
        resp = self._put("/api/services/id/ghost", {"enabled": True})
        self.assertEqual(resp["statusCode"], 404)
        self.assertEqual(_body(resp)["error"], "Service not found with ID: ghost")
        self.assertIsNone(self.stored("ghost"))

    def test_missing_slug_target_returns_404(self):
        resp = self._put("/api/services/ghost", {"enabled": True})
        self.assertEqual(resp["statusCode"], 404)

    def test_if_match_mismatch_returns_409(self):
        resp = self._put("/api/services/id/s-2", {"enabled": False},
                         headers={"If-Match": '"2023-01-01T00:00:00.000000Z"'})
        self.assertEqual(resp["statusCode"], 409)
        self.assertEqual(_body(resp)["error_envelope"]["code"], "CONFLICT")
        self.assertIs(self.stored("s-2")["enabled"], True)

    def test_if_match_current_value_succeeds(self):
        resp = self._put("/api/services/id/s-2", {"enabled": False}, headers={"If-Match": OLD_STAMP})
        self.assertEqual(resp["statusCode"], 200)
        self.assertIs(self.stored("s-2")["enabled"], False)

    def test_no_event_without_bus(self):
        with patch.object(services_api, "_get_eb") as mock_eb:
            self._put("/api/services/id/s-2", {"enabled": False})
        mock_eb.assert_not_called()


class CacheSignalTests(_StoreCase):
    event_bus = "cloudcanvas-bus"

    def test_update_emits_revalidation_event(self):
        eb = MagicMock()
        token = generate_token(ADMIN, SECRET)
        event = _make_event(method="PUT", path="/api/services/id/s-1", body={"enabled": True}, token=token)
        with patch.object(services_api, "_get_eb", return_value=eb):
            resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 200)
        entry = eb.put_events.call_args.kwargs["Entries"][0]
        self.assertEqual(entry["EventBusName"], "cloudcanvas-bus")
        self.assertEqual(entry["Source"], "cloudcanvas.services")
        self.assertEqual(json.loads(entry["Detail"])["paths"], ["/Storage/s3", "/"])

    def test_rename_invalidates_old_and_new_pages(self):
        eb = MagicMock()
        token = generate_token(ADMIN, SECRET)
        event = _make_event(
            method="PUT", path="/api/services/s3",
            body={"slug": "simple-storage", "category": "Database"}, token=token,
        )
        with patch.object(services_api, "_get_eb", return_value=eb):
            resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 200)
        paths = json.loads(eb.put_events.call_args.kwargs["Entries"][0]["Detail"])["paths"]
        self.assertEqual(paths, ["/Storage/s3", "/Database/simple-storage", "/"])

    def test_event_failure_does_not_fail_update(self):
        eb = MagicMock()
        eb.put_events.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutEvents")
        token = generate_token(ADMIN, SECRET)
        event = _make_event(method="PUT", path="/api/services/s3", body={"enabled": True}, token=token)
        with patch.object(services_api, "_get_eb", return_value=eb):
            resp = services_api.lambda_handler(event, None)
        self.assertEqual(resp["statusCode"], 200)


class ConfigurationTests(unittest.TestCase):
    def tearDown(self):
        services_api._set_store(None, Settings.from_env())

    def test_missing_configuration_is_fatal(self):
        services_api._set_store(None, Settings())
        with self.assertRaises(ConfigurationError):
            services_api.lambda_handler(_make_event(), None)


if __name__ == "__main__":
    unittest.main()
