from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable

from boto3.dynamodb.types import TypeSerializer

from .client import dynamodb_client, dynamodb_resource
from .errors import DdbInternal
from .retry import NO_RETRY, READ_RETRY, ddb_call

_serializer = TypeSerializer()


def _to_attribute_values(values: dict[str, Any]) -> dict[str, Any]:
    # Transactions go through the low-level client: {"S": ...}, {"N": ...} shapes.
    return {k: _serializer.serialize(v) for k, v in values.items()}


def _expression_kwargs(
    condition_expression: str | None,
    names: dict[str, str] | None,
    values: dict[str, Any] | None,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if condition_expression:
        out["ConditionExpression"] = condition_expression
    if names:
        out["ExpressionAttributeNames"] = names
    if values:
        out["ExpressionAttributeValues"] = values
    return out


@dataclass(slots=True)
class Page:
    items: list[dict[str, Any]]
    last_evaluated_key: dict[str, Any] | None


class DynamoTable:
    """
    Single-table access. Items use pk/sk, with one overloaded secondary index
    (GSI1: gsi1pk/gsi1sk) for per-owner listings in sequence order.

    Reads retry on throttling; every write is a single attempt.
    """

    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = dynamodb_resource().Table(self.table_name)
        self._client = dynamodb_client()

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = False) -> dict[str, Any] | None:
        def _op():
            return self._table.get_item(Key=key, ConsistentRead=bool(consistent_read)).get("Item")

        return ddb_call("GetItem", _op, table_name=self.table_name, key=key, retry_policy=READ_RETRY)

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        kwargs = _expression_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)
        key = {"pk": item.get("pk"), "sk": item.get("sk")}
        return ddb_call(
            "PutItem",
            lambda: self._table.put_item(Item=item, **kwargs),
            table_name=self.table_name,
            key=key,
            retry_policy=NO_RETRY,
        )

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        kwargs = _expression_kwargs(condition_expression, expression_attribute_names, expression_attribute_values)

        def _op():
            resp = self._table.update_item(
                Key=key,
                UpdateExpression=update_expression,
                ReturnValues="ALL_NEW",
                **kwargs,
            )
            return resp.get("Attributes")

        return ddb_call("UpdateItem", _op, table_name=self.table_name, key=key, retry_policy=NO_RETRY)

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> Page:
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": key_condition_expression,
            "ScanIndexForward": bool(scan_index_forward),
            "Limit": max(1, min(500, int(limit or 50))),
        }
        if index_name:
            kwargs["IndexName"] = index_name
        if exclusive_start_key:
            kwargs["ExclusiveStartKey"] = exclusive_start_key

        resp = ddb_call("Query", lambda: self._table.query(**kwargs), table_name=self.table_name, retry_policy=READ_RETRY)
        return Page(items=resp.get("Items") or [], last_evaluated_key=resp.get("LastEvaluatedKey"))

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        start: dict[str, Any] | None = None
        while True:
            pg = self.query_page(
                key_condition_expression=key_condition_expression,
                index_name=index_name,
                limit=500,
                scan_index_forward=scan_index_forward,
                exclusive_start_key=start,
            )
            out.extend(pg.items)
            start = pg.last_evaluated_key
            if not start:
                return out

    def scan_all(self, *, filter_expression: Any) -> list[dict[str, Any]]:
        """Filtered full scan. Only for the small hand-entered reference entities."""
        out: list[dict[str, Any]] = []
        start: dict[str, Any] | None = None
        while True:
            kwargs: dict[str, Any] = {"FilterExpression": filter_expression}
            if start:
                kwargs["ExclusiveStartKey"] = start
            resp = ddb_call("Scan", lambda: self._table.scan(**kwargs), table_name=self.table_name, retry_policy=READ_RETRY)
            out.extend(resp.get("Items") or [])
            start = resp.get("LastEvaluatedKey")
            if not start:
                return out

    # --- transactions ---

    def transact_write(
        self,
        *,
        puts: Iterable[dict[str, Any]] = (),
        updates: Iterable[dict[str, Any]] = (),
    ) -> None:
        """
        All-or-nothing write. Puts come first, then updates; a
        DdbTransactionCanceled carries one reason per entry in that order.
        """
        items = [{"Put": p} for p in puts] + [{"Update": u} for u in updates]
        if not items:
            return
        ddb_call(
            "TransactWriteItems",
            lambda: self._client.transact_write_items(TransactItems=items),
            table_name=self.table_name,
            retry_policy=NO_RETRY,
        )

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "TableName": self.table_name,
            "Item": _to_attribute_values(item),
            **_expression_kwargs(
                condition_expression,
                expression_attribute_names,
                _to_attribute_values(expression_attribute_values) if expression_attribute_values else None,
            ),
        }

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        return {
            "TableName": self.table_name,
            "Key": _to_attribute_values(key),
            "UpdateExpression": update_expression,
            **_expression_kwargs(
                condition_expression,
                expression_attribute_names,
                _to_attribute_values(expression_attribute_values),
            ),
        }


@lru_cache(maxsize=4)
def _table_for(table_name: str) -> DynamoTable:
    return DynamoTable(table_name=table_name)


def get_main_table() -> DynamoTable:
    from ...settings import settings

    if not settings.ddb_table_name:
        raise DdbInternal(message="DDB_TABLE_NAME is not set", operation="Config")
    return _table_for(settings.ddb_table_name)
