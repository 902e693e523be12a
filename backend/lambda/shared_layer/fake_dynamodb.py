"""fake_dynamodb.py — In-memory stand-in for the low-level DynamoDB client, for tests.

Understands only the expression shapes ``DocumentStore`` emits:

    ProjectionExpression   "#p0, #p1, ..."
    FilterExpression       "#f = :v"
    KeyConditionExpression "#f = :v"
    ConditionExpression    "attribute_not_exists(#c)" | "attribute_exists(#k)"
                           [" AND #u = :expected"]
    UpdateExpression       "SET #a0 = :a0, ..., #u = :u"

Items are held in wire format (``{"S": ...}``), so serialization is exercised
the same way it is against DynamoDB.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Optional, Set

from botocore.exceptions import ClientError

_EQ_RE = re.compile(r"^\s*(#\w+)\s*=\s*(:\w+)\s*$")
_ABSENT_RE = re.compile(r"^attribute_not_exists\((#\w+)\)$")
_EXISTS_RE = re.compile(r"^attribute_exists\((#\w+)\)$")


def client_error(code: str, operation: str, message: str = "") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)


class FakeDynamoDB:
    """Dict-backed tables keyed by the ``id`` string attribute."""

    def __init__(self, *, page_size: Optional[int] = None) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.page_size = page_size
        self.closed = False
        # 1-based batch_write_item call numbers that should raise / leave items unprocessed.
        self.fail_batch_write_calls: Set[int] = set()
        self.unprocessed_batch_write_calls: Set[int] = set()
        self._batch_write_count = 0

    # -- helpers -------------------------------------------------------------

    def _table(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.tables.setdefault(name, {})

    @staticmethod
    def _key_of(key: Dict[str, Any]) -> str:
        return key["id"]["S"]

    def load(self, table: str, items: List[Dict[str, Any]]) -> None:
        """Insert wire-format items directly."""
        for item in items:
            self._table(table)[self._key_of(item)] = copy.deepcopy(item)

    def items(self, table: str) -> List[Dict[str, Any]]:
        return list(self._table(table).values())

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    @staticmethod
    def _project(item: Dict[str, Any], expr: Optional[str], names: Dict[str, str]) -> Dict[str, Any]:
        if not expr:
            return copy.deepcopy(item)
        wanted = [names.get(p.strip(), p.strip()) for p in expr.split(",")]
        return {a: copy.deepcopy(item[a]) for a in wanted if a in item}

    @staticmethod
    def _matches(item: Dict[str, Any], expr: Optional[str], names: Dict[str, str], values: Dict[str, Any]) -> bool:
        if not expr:
            return True
        m = _EQ_RE.match(expr)
        if not m:
            raise NotImplementedError(f"unsupported expression: {expr}")
        return item.get(names[m.group(1)]) == values[m.group(2)]

    def _check_condition(
        self,
        item: Optional[Dict[str, Any]],
        expr: Optional[str],
        names: Dict[str, str],
        values: Dict[str, Any],
        operation: str,
    ) -> None:
        if not expr:
            return
        for clause in expr.split(" AND "):
            clause = clause.strip()
            absent = _ABSENT_RE.match(clause)
            exists = _EXISTS_RE.match(clause)
            if absent:
                ok = item is None or names[absent.group(1)] not in item
            elif exists:
                ok = item is not None and names[exists.group(1)] in item
            else:
                ok = item is not None and self._matches(item, clause, names, values)
            if not ok:
                raise client_error("ConditionalCheckFailedException", operation, "The conditional request failed")

    def _page(self, matched: List[Dict[str, Any]], kwargs: Dict[str, Any], limit: Optional[int]) -> Dict[str, Any]:
        start = 0
        esk = kwargs.get("ExclusiveStartKey")
        if esk:
            start = int(esk["id"]["S"].split(":", 1)[0])
        size = limit or self.page_size
        end = len(matched) if size is None else min(len(matched), start + size)
        resp: Dict[str, Any] = {"Items": matched[start:end], "Count": end - start}
        if end < len(matched):
            resp["LastEvaluatedKey"] = {"id": {"S": f"{end}:cursor"}}
        return resp

    # -- client API ----------------------------------------------------------

    def get_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("get_item", kwargs))
        item = self._table(kwargs["TableName"]).get(self._key_of(kwargs["Key"]))
        return {"Item": copy.deepcopy(item)} if item else {}

    def scan(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("scan", kwargs))
        if "Limit" in kwargs:
            raise AssertionError("Limit must not be combined with a scan filter")
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        rows = list(self._table(kwargs["TableName"]).values())
        # Filters apply per page, after the page is read.
        page = self._page(rows, kwargs, None)
        page["Items"] = [
            self._project(i, kwargs.get("ProjectionExpression"), names)
            for i in page["Items"]
            if self._matches(i, kwargs.get("FilterExpression"), names, values)
        ]
        page["Count"] = len(page["Items"])
        return page

    def query(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("query", kwargs))
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        matched = [
            self._project(i, kwargs.get("ProjectionExpression"), names)
            for i in self._table(kwargs["TableName"]).values()
            if self._matches(i, kwargs["KeyConditionExpression"], names, values)
        ]
        return self._page(matched, kwargs, kwargs.get("Limit"))

    def put_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("put_item", kwargs))
        table = self._table(kwargs["TableName"])
        item = kwargs["Item"]
        self._check_condition(
            table.get(self._key_of(item)),
            kwargs.get("ConditionExpression"),
            kwargs.get("ExpressionAttributeNames") or {},
            kwargs.get("ExpressionAttributeValues") or {},
            "PutItem",
        )
        table[self._key_of(item)] = copy.deepcopy(item)
        return {}

    def update_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("update_item", kwargs))
        table = self._table(kwargs["TableName"])
        key = self._key_of(kwargs["Key"])
        names = kwargs.get("ExpressionAttributeNames") or {}
        values = kwargs.get("ExpressionAttributeValues") or {}
        current = table.get(key)
        self._check_condition(current, kwargs.get("ConditionExpression"), names, values, "UpdateItem")

        expr = kwargs["UpdateExpression"]
        if not expr.startswith("SET "):
            raise NotImplementedError(f"unsupported update: {expr}")
        updated = copy.deepcopy(current) if current else dict(kwargs["Key"])
        for assignment in expr[4:].split(","):
            m = _EQ_RE.match(assignment)
            if not m:
                raise NotImplementedError(f"unsupported assignment: {assignment}")
            updated[names[m.group(1)]] = copy.deepcopy(values[m.group(2)])
        table[key] = updated
        if kwargs.get("ReturnValues") == "ALL_NEW":
            return {"Attributes": copy.deepcopy(updated)}
        return {}

    def delete_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("delete_item", kwargs))
        self._table(kwargs["TableName"]).pop(self._key_of(kwargs["Key"]), None)
        return {}

    def batch_write_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("batch_write_item", kwargs))
        self._batch_write_count += 1
        number = self._batch_write_count
        if number in self.fail_batch_write_calls:
            raise client_error("ProvisionedThroughputExceededException", "BatchWriteItem")
        unprocessed: Dict[str, List[Dict[str, Any]]] = {}
        for table_name, requests in kwargs["RequestItems"].items():
            if len(requests) > 25:
                raise client_error("ValidationException", "BatchWriteItem", "Too many items requested")
            if number in self.unprocessed_batch_write_calls:
                unprocessed[table_name] = list(requests)
                continue
            table = self._table(table_name)
            for request in requests:
                if "PutRequest" in request:
                    item = request["PutRequest"]["Item"]
                    table[self._key_of(item)] = copy.deepcopy(item)
                else:
                    table.pop(self._key_of(request["DeleteRequest"]["Key"]), None)
        return {"UnprocessedItems": unprocessed}

    def batch_get_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.calls.append(("batch_get_item", kwargs))
        responses: Dict[str, List[Dict[str, Any]]] = {}
        for table_name, request in kwargs["RequestItems"].items():
            if len(request["Keys"]) > 100:
                raise client_error("ValidationException", "BatchGetItem", "Too many items requested")
            table = self._table(table_name)
            responses[table_name] = [
                copy.deepcopy(table[self._key_of(k)]) for k in request["Keys"] if self._key_of(k) in table
            ]
        return {"Responses": responses, "UnprocessedKeys": {}}

    def close(self) -> None:
        self.closed = True
