"""cloudcanvas_shared.serialization — DynamoDB serialization/deserialization.

Provides TypeSerializer/TypeDeserializer wrappers and the timestamp helper
used for ``createdAt``/``updatedAt``.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

_SER = TypeSerializer()
_DESER = TypeDeserializer()


def _to_ddb_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_ddb_value(v) for v in value]
    return value


def _from_ddb_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _from_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_from_ddb_value(v) for v in value]
    if isinstance(value, set):
        return sorted(_from_ddb_value(v) for v in value)
    return value


def _serialize(value: Any) -> Dict[str, Any]:
    """Serialize a Python value to a DynamoDB AttributeValue."""
    return _SER.serialize(_to_ddb_value(value))


def _serialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a record, dropping attributes whose value is None."""
    return {k: _serialize(v) for k, v in item.items() if v is not None}


def _deserialize(item: Dict[str, Any]) -> Dict[str, Any]:
    """Deserialize a DynamoDB item to a plain JSON-compatible dict."""
    return {k: _from_ddb_value(_DESER.deserialize(v)) for k, v in item.items()}


def _now_iso() -> str:
    """Current UTC timestamp, ISO 8601 with microseconds and Z suffix."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
