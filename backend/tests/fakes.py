from __future__ import annotations

import json
import re
import threading
from types import SimpleNamespace
from typing import Any, Callable

from clientintel.db.dynamodb.errors import (
    DdbConflict,
    DdbInternal,
    DdbTransactionCanceled,
)
from clientintel.db.dynamodb.table import Page


# --- condition strings ---
# Only the forms the repositories use: attribute_(not_)exists, "=", AND, OR, parens.

_TOKEN = re.compile(
    r"\s*(attribute_not_exists\([^)]*\)|attribute_exists\([^)]*\)|\(|\)|AND\b|OR\b|=|[#:\w]+)"
)


def _tokenize(expr: str) -> list[str]:
    out: list[str] = []
    pos = 0
    expr = expr.strip()
    while pos < len(expr):
        m = _TOKEN.match(expr, pos)
        if not m:
            raise ValueError(f"unsupported condition: {expr!r}")
        out.append(m.group(1))
        pos = m.end()
    return out


class _CondEval:
    def __init__(self, expr: str, item: dict[str, Any] | None, names: dict | None, values: dict | None):
        self.toks = _tokenize(expr)
        self.i = 0
        self.item = item or {}
        self.names = names or {}
        self.values = values or {}

    def _peek(self) -> str | None:
        return self.toks[self.i] if self.i < len(self.toks) else None

    def _next(self) -> str:
        t = self.toks[self.i]
        self.i += 1
        return t

    def _name(self, raw: str) -> str:
        return str(self.names.get(raw, raw)) if raw.startswith("#") else raw

    def _operand(self, raw: str) -> Any:
        if raw.startswith(":"):
            return self.values[raw]
        return self.item.get(self._name(raw))

    def run(self) -> bool:
        out = self._or()
        if self._peek() is not None:
            raise ValueError(f"trailing tokens in condition: {self.toks[self.i:]}")
        return out

    def _or(self) -> bool:
        left = self._and()
        while self._peek() == "OR":
            self._next()
            right = self._and()
            left = left or right
        return left

    def _and(self) -> bool:
        left = self._atom()
        while self._peek() == "AND":
            self._next()
            right = self._atom()
            left = left and right
        return left

    def _atom(self) -> bool:
        t = self._next()
        if t == "(":
            v = self._or()
            assert self._next() == ")"
            return v
        if t.startswith("attribute_not_exists("):
            return self._name(t[len("attribute_not_exists(") : -1].strip()) not in self.item
        if t.startswith("attribute_exists("):
            return self._name(t[len("attribute_exists(") : -1].strip()) in self.item
        assert self._next() == "="
        return self._operand(t) == self._operand(self._next())


def eval_condition_string(expr: str | None, item: dict[str, Any] | None, names=None, values=None) -> bool:
    if not expr:
        return True
    return _CondEval(expr, item, names, values).run()


# --- boto3 condition objects (Key / Attr) ---


def eval_boto_condition(cond: Any, item: dict[str, Any]) -> bool:
    expr = cond.get_expression()
    op = expr["operator"]
    vals = expr["values"]
    if op == "AND":
        return all(eval_boto_condition(v, item) for v in vals)
    if op == "OR":
        return any(eval_boto_condition(v, item) for v in vals)
    if op == "NOT":
        return not eval_boto_condition(vals[0], item)
    attr = item.get(vals[0].name)
    if op == "=":
        return attr == vals[1]
    if op == "BETWEEN":
        return attr is not None and vals[1] <= attr <= vals[2]
    if op == "begins_with":
        return isinstance(attr, str) and attr.startswith(vals[1])
    if op == "contains":
        return attr is not None and vals[1] in attr
    raise NotImplementedError(op)


def apply_set_expression(item: dict[str, Any], update_expression: str, names=None, values=None) -> None:
    # Super-minimal parser: "SET a = :x, #b = :y, ..."
    assert update_expression.startswith("SET ")
    for assign in update_expression[len("SET ") :].split(","):
        left, right = assign.split("=", 1)
        left, right = left.strip(), right.strip()
        if left.startswith("#"):
            left = str((names or {}).get(left, left))
        item[left] = (values or {})[right]


class FakeTable:
    """
    In-memory stand-in for DynamoTable.

    Transactions and conditional writes are atomic under one lock, which is
    all the counter tests need. tx_put/tx_update return unserialized entries.
    """

    def __init__(self, table_name: str = "Fake"):
        self.table_name = table_name
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()
        # Injected failures: return True to make put_item raise DdbInternal.
        self.fail_put: Callable[[dict[str, Any]], bool] | None = None
        self.transactions = 0

    def _k(self, key: dict[str, Any]) -> tuple[str, str]:
        return str(key.get("pk") or ""), str(key.get("sk") or "")

    # --- basic operations ---

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = False) -> dict[str, Any] | None:
        with self._lock:
            it = self.items.get(self._k(key))
            return dict(it) if it else None

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self.fail_put and self.fail_put(item):
            raise DdbInternal(message="injected put failure", operation="PutItem", table_name=self.table_name)
        with self._lock:
            k = self._k(item)
            if not eval_condition_string(
                condition_expression, self.items.get(k), expression_attribute_names, expression_attribute_values
            ):
                raise DdbConflict(message="conditional check failed", operation="PutItem", table_name=self.table_name)
            self.items[k] = dict(item)
        return {}

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any] | None:
        with self._lock:
            k = self._k(key)
            cur = self.items.get(k)
            if not eval_condition_string(
                condition_expression, cur, expression_attribute_names, expression_attribute_values
            ):
                raise DdbConflict(message="conditional check failed", operation="UpdateItem", table_name=self.table_name)
            nxt = dict(cur or {"pk": k[0], "sk": k[1]})
            apply_set_expression(nxt, update_expression, expression_attribute_names, expression_attribute_values)
            self.items[k] = nxt
            return dict(nxt)

    # --- query/scan ---

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> Page:
        sort_attr = "gsi1sk" if index_name == "GSI1" else "sk"
        with self._lock:
            rows = [dict(it) for it in self.items.values() if eval_boto_condition(key_condition_expression, it)]
        rows.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=not scan_index_forward)
        rows = rows[: max(1, int(limit or 50))]
        return Page(items=rows, last_evaluated_key=None)

    def query_all(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        return self.query_page(
            key_condition_expression=key_condition_expression,
            index_name=index_name,
            limit=10_000,
            scan_index_forward=scan_index_forward,
        ).items

    def scan_all(self, *, filter_expression: Any) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(it) for it in self.items.values() if eval_boto_condition(filter_expression, it)]

    # --- transactions ---

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "Item": dict(item),
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
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
            "Key": dict(key),
            "UpdateExpression": update_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
            "ConditionExpression": condition_expression,
        }

    def transact_write(self, *, puts=(), updates=()) -> None:
        entries = [("put", p) for p in puts] + [("update", u) for u in updates]
        with self._lock:
            reasons: list[str] = []
            for kind, e in entries:
                k = self._k(e["Item"] if kind == "put" else e["Key"])
                ok = eval_condition_string(
                    e.get("ConditionExpression"),
                    self.items.get(k),
                    e.get("ExpressionAttributeNames"),
                    e.get("ExpressionAttributeValues"),
                )
                reasons.append("None" if ok else "ConditionalCheckFailed")
            if any(r != "None" for r in reasons):
                raise DdbTransactionCanceled(
                    message="DynamoDB transaction canceled",
                    operation="TransactWriteItems",
                    table_name=self.table_name,
                    reasons=reasons,
                )
            for kind, e in entries:
                if kind == "put":
                    self.items[self._k(e["Item"])] = dict(e["Item"])
                else:
                    k = self._k(e["Key"])
                    nxt = dict(self.items.get(k) or {"pk": k[0], "sk": k[1]})
                    apply_set_expression(
                        nxt,
                        e["UpdateExpression"],
                        e.get("ExpressionAttributeNames"),
                        e.get("ExpressionAttributeValues"),
                    )
                    self.items[k] = nxt
            self.transactions += 1

    # --- test helpers ---

    def of_type(self, entity_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(it) for it in self.items.values() if it.get("entityType") == entity_type]


class FakeModel:
    """
    SDK-shaped stand-in for the OpenAI client. Replies are consumed in order;
    a reply may be a string, an Exception to raise, or a callable taking the
    request kwargs and returning a string.
    """

    def __init__(self):
        self.replies: list[Any] = []
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def queue(self, *replies: Any) -> "FakeModel":
        self.replies.extend(replies)
        return self

    def client(self, *, timeout_s: float):
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=self._create)))

    def _create(self, **kwargs):
        with self._lock:
            self.calls.append(kwargs)
            if not self.replies:
                raise AssertionError("unexpected model call")
            reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(kwargs)
        return SimpleNamespace(
            id=f"chatcmpl_{len(self.calls)}",
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
        )

    def prompt(self, index: int = -1) -> str:
        msgs = self.calls[index].get("messages") or []
        return "\n".join(str(m.get("content") or "") for m in msgs)


# --- canned model replies ---


def enrichment_json(**overrides: Any) -> str:
    body: dict[str, Any] = {
        "summary": "Client wants a Q1 pilot; budget confirmed.",
        "themes": ["pilot", "budget"],
        "timeHorizon": "0-3 months",
        "budgetSignal": "high",
        "competitorMention": None,
        "selectedProjectId": None,
        "selectedStakeholderId": None,
    }
    body.update(overrides)
    return json.dumps(body)


def synthesis_json(tasks: list[Any] | None = None, **opportunity: Any) -> str:
    opp: dict[str, Any] = {
        "title": "Pilot expansion",
        "description": "Turn the pilot interest into a scoped engagement.",
        "valueEstimate": "$50k",
    }
    opp.update(opportunity)
    if tasks is None:
        tasks = [
            {
                "title": "Schedule scoping call",
                "description": "Align on pilot scope",
                "assignedToTeam": "sales",
                "priority": "high",
                "dueDate": "2030-01-10",
            },
            {
                "title": "Draft proposal",
                "description": None,
                "assignedToTeam": "consulting",
                "priority": "medium",
                "dueDate": "2030-01-20",
            },
        ]
    return json.dumps({"opportunity": opp, "tasks": tasks})
