"""cloudcanvas_shared.store — DynamoDB document store for Cloud Canvas.

Two flat collections (services, users), both keyed by ``id``. Lookups on any
other attribute are full scans with an equality filter unless a secondary
index has been configured for that (collection, attribute) pair, in which
case the lookup is a Query on the index.

Batch writes are split into chunks of 25 items (the BatchWriteItem limit) and
sent one chunk at a time. There is no cross-chunk atomicity: a failure on
chunk k leaves chunks 1..k-1 written and raises ``BatchWriteError``.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from botocore.exceptions import ClientError

from cloudcanvas_shared.aws_clients import _new_ddb_client
from cloudcanvas_shared.config import BATCH_GET_LIMIT, BATCH_MAX_ATTEMPTS, BATCH_WRITE_LIMIT, Settings
from cloudcanvas_shared.serialization import _deserialize, _now_iso, _serialize, _serialize_item

logger = logging.getLogger(__name__)

__all__ = [
    "BatchWriteError",
    "Collection",
    "ConflictError",
    "DocumentStore",
    "KEY_ATTRIBUTE",
    "StoreError",
    "chunked",
]

KEY_ATTRIBUTE = "id"
UPDATED_AT = "updatedAt"

# Patchable through update(): the key is never rewritten.
_NEVER_PATCH = {KEY_ATTRIBUTE}


class Collection(str, enum.Enum):
    SERVICES = "services"
    USERS = "users"


class StoreError(Exception):
    """Base class for store-level failures that callers handle explicitly."""


class ConflictError(StoreError):
    """A conditional write failed (record exists, vanished, or changed)."""


class BatchWriteError(StoreError):
    """A batch chunk failed; earlier chunks stay written."""

    def __init__(self, collection: Collection, chunk_number: int, total_chunks: int, written: int, reason: str):
        self.collection = collection
        self.chunk_number = chunk_number
        self.total_chunks = total_chunks
        self.written = written
        super().__init__(
            f"{collection.value}: batch chunk {chunk_number}/{total_chunks} failed "
            f"after {written} item(s) written: {reason}"
        )


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yield consecutive slices of ``items`` of at most ``size`` elements."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _projection(attributes: Optional[Iterable[str]], names: Dict[str, str]) -> Optional[str]:
    if not attributes:
        return None
    parts = []
    for idx, attr in enumerate(attributes):
        alias = f"#p{idx}"
        names[alias] = attr
        parts.append(alias)
    return ", ".join(parts)


class DocumentStore:
    """Typed access to the services/users tables over a low-level DynamoDB client."""

    def __init__(
        self,
        client: Any,
        tables: Dict[Collection, str],
        *,
        indexes: Optional[Dict[Tuple[str, str], str]] = None,
    ) -> None:
        self._client = client
        self._tables = dict(tables)
        self._indexes = dict(indexes or {})
        self._closed = False

    @classmethod
    def open(cls, settings: Settings, client: Any = None) -> "DocumentStore":
        """Open a store from settings; raises ConfigurationError if incomplete."""
        settings.require_store()
        if client is None:
            client = _new_ddb_client(settings)
        logger.info(
            "document store opened: services=%s users=%s indexes=%s",
            settings.services_table,
            settings.users_table,
            sorted(f"{c}.{a}" for c, a in settings.indexes) or "none",
        )
        return cls(
            client,
            {Collection.SERVICES: settings.services_table, Collection.USERS: settings.users_table},
            indexes=settings.indexes,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    @property
    def closed(self) -> bool:
        return self._closed

    def table_name(self, collection: Collection) -> str:
        return self._tables[collection]

    def index_for(self, collection: Collection, attribute: str) -> Optional[str]:
        return self._indexes.get((collection.value, attribute))

    @staticmethod
    def _key(record_id: str) -> Dict[str, Any]:
        return {KEY_ATTRIBUTE: _serialize(record_id)}

    # -- reads ---------------------------------------------------------------

    def get(self, collection: Collection, record_id: str, *, consistent: bool = False) -> Optional[Dict[str, Any]]:
        resp = self._client.get_item(
            TableName=self.table_name(collection),
            Key=self._key(record_id),
            ConsistentRead=consistent,
        )
        raw = resp.get("Item")
        if not raw:
            return None
        return _deserialize(raw)

    def _paginate(self, operation: str, kwargs: Dict[str, Any], limit: Optional[int]) -> List[Dict[str, Any]]:
        call = getattr(self._client, operation)
        items: List[Dict[str, Any]] = []
        while True:
            resp = call(**kwargs)
            for raw in resp.get("Items", []):
                items.append(_deserialize(raw))
                if limit is not None and len(items) >= limit:
                    return items
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def scan(self, collection: Collection, *, projection: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Read every record in ``collection`` (all pages)."""
        kwargs: Dict[str, Any] = {"TableName": self.table_name(collection)}
        names: Dict[str, str] = {}
        proj = _projection(projection, names)
        if proj:
            kwargs["ProjectionExpression"] = proj
            kwargs["ExpressionAttributeNames"] = names
        return self._paginate("scan", kwargs, None)

    def scan_by_attribute(
        self,
        collection: Collection,
        attribute: str,
        value: Any,
        *,
        limit: Optional[int] = None,
        projection: Optional[Sequence[str]] = None,
    ) -> List[Dict[str, Any]]:
        """Records whose ``attribute`` equals ``value``.

        Scan filters are applied after DynamoDB reads a page, so ``Limit`` is
        never sent on a scan; pages are read until ``limit`` matches are found.
        """
        names: Dict[str, str] = {"#f": attribute}
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name(collection),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": {":v": _serialize(value)},
        }
        proj = _projection(projection, names)
        if proj:
            kwargs["ProjectionExpression"] = proj

        index_name = self.index_for(collection, attribute)
        if index_name:
            kwargs["IndexName"] = index_name
            kwargs["KeyConditionExpression"] = "#f = :v"
            if limit is not None:
                kwargs["Limit"] = limit
            return self._paginate("query", kwargs, limit)

        kwargs["FilterExpression"] = "#f = :v"
        return self._paginate("scan", kwargs, limit)

    def find_one(self, collection: Collection, attribute: str, value: Any) -> Optional[Dict[str, Any]]:
        matches = self.scan_by_attribute(collection, attribute, value, limit=1)
        return matches[0] if matches else None

    def batch_get(self, collection: Collection, record_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """Fetch records by id in chunks of 100; missing ids are skipped."""
        table = self.table_name(collection)
        out: List[Dict[str, Any]] = []
        unique_ids = list(dict.fromkeys(record_ids))
        for chunk in chunked(unique_ids, BATCH_GET_LIMIT):
            request: Dict[str, Any] = {table: {"Keys": [self._key(rid) for rid in chunk]}}
            for attempt in range(BATCH_MAX_ATTEMPTS):
                resp = self._client.batch_get_item(RequestItems=request)
                for raw in (resp.get("Responses") or {}).get(table, []):
                    out.append(_deserialize(raw))
                request = resp.get("UnprocessedKeys") or {}
                if not request:
                    break
                self._backoff(attempt)
            if request:
                raise StoreError(f"{collection.value}: batch get left unprocessed keys")
        return out

    # -- writes --------------------------------------------------------------

    def put(self, collection: Collection, record: Dict[str, Any], *, condition_absent: Optional[str] = None) -> None:
        """Write a full record.

        ``condition_absent`` names an attribute that must not already exist on
        the item with the same key; a violation raises ConflictError.
        """
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name(collection),
            "Item": _serialize_item(record),
        }
        if condition_absent:
            kwargs["ConditionExpression"] = "attribute_not_exists(#c)"
            kwargs["ExpressionAttributeNames"] = {"#c": condition_absent}
        try:
            self._client.put_item(**kwargs)
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise ConflictError(
                    f"{collection.value}: record {record.get(KEY_ATTRIBUTE)!r} already exists"
                ) from exc
            raise

    def update(
        self,
        collection: Collection,
        record_id: str,
        fields: Dict[str, Any],
        *,
        expected_updated_at: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Patch only the supplied fields plus ``updatedAt``.

        ``id`` and None values are dropped. An empty patch is a no-op and
        returns None. Returns the full record after the write otherwise.
        """
        patch = {
            k: v for k, v in fields.items()
            if k not in _NEVER_PATCH and k != UPDATED_AT and v is not None
        }
        if not patch:
            return None
        return self._write_patch(collection, record_id, patch, expected_updated_at)

    def touch(self, collection: Collection, record_id: str, *, expected_updated_at: Optional[str] = None) -> Dict[str, Any]:
        """Rewrite only ``updatedAt``."""
        return self._write_patch(collection, record_id, {}, expected_updated_at)

    def _write_patch(
        self,
        collection: Collection,
        record_id: str,
        patch: Dict[str, Any],
        expected_updated_at: Optional[str],
    ) -> Dict[str, Any]:
        names: Dict[str, str] = {"#k": KEY_ATTRIBUTE, "#u": UPDATED_AT}
        values: Dict[str, Any] = {":u": _serialize(_now_iso())}
        assignments = []
        for idx, (attr, value) in enumerate(patch.items()):
            names[f"#a{idx}"] = attr
            values[f":a{idx}"] = _serialize(value)
            assignments.append(f"#a{idx} = :a{idx}")
        assignments.append("#u = :u")

        condition = "attribute_exists(#k)"
        if expected_updated_at is not None:
            condition += " AND #u = :expected"
            values[":expected"] = _serialize(expected_updated_at)

        try:
            resp = self._client.update_item(
                TableName=self.table_name(collection),
                Key=self._key(record_id),
                UpdateExpression="SET " + ", ".join(assignments),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                raise ConflictError(
                    f"{collection.value}: record {record_id!r} was removed or modified concurrently"
                ) from exc
            raise
        return _deserialize(resp.get("Attributes") or {})

    def delete(self, collection: Collection, record_id: str) -> None:
        self._client.delete_item(TableName=self.table_name(collection), Key=self._key(record_id))

    def batch_put(self, collection: Collection, records: Sequence[Dict[str, Any]]) -> int:
        """Write ``records`` in sequential chunks of 25. Returns chunks sent."""
        requests = [{"PutRequest": {"Item": _serialize_item(r)}} for r in records]
        return self._batch_write(collection, requests)

    def batch_delete(self, collection: Collection, record_ids: Sequence[str]) -> int:
        """Delete ``record_ids`` in sequential chunks of 25. Returns chunks sent."""
        requests = [{"DeleteRequest": {"Key": self._key(rid)}} for rid in record_ids]
        return self._batch_write(collection, requests)

    def _batch_write(self, collection: Collection, requests: List[Dict[str, Any]]) -> int:
        table = self.table_name(collection)
        total_chunks = (len(requests) + BATCH_WRITE_LIMIT - 1) // BATCH_WRITE_LIMIT
        written = 0
        for number, chunk in enumerate(chunked(requests, BATCH_WRITE_LIMIT), start=1):
            pending: List[Dict[str, Any]] = list(chunk)
            try:
                for attempt in range(BATCH_MAX_ATTEMPTS):
                    resp = self._client.batch_write_item(RequestItems={table: pending})
                    pending = (resp.get("UnprocessedItems") or {}).get(table) or []
                    if not pending:
                        break
                    logger.warning(
                        "%s: chunk %d/%d has %d unprocessed item(s), retrying",
                        collection.value, number, total_chunks, len(pending),
                    )
                    self._backoff(attempt)
            except ClientError as exc:
                raise BatchWriteError(collection, number, total_chunks, written, str(exc)) from exc
            if pending:
                raise BatchWriteError(
                    collection, number, total_chunks, written,
                    f"{len(pending)} item(s) still unprocessed after {BATCH_MAX_ATTEMPTS} attempts",
                )
            written += len(chunk)
            logger.info("%s: batch chunk %d/%d written (%d items)", collection.value, number, total_chunks, len(chunk))
        return total_chunks

    @staticmethod
    def _backoff(attempt: int) -> None:
        time.sleep(0.05 * (2 ** attempt))
