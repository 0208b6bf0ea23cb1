from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional, Sequence

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from atsocial.core.errors import StoreUnavailable
from atsocial.core.keys import index_keys
from atsocial.metrics import record_store_error

logger = logging.getLogger(__name__)

_ITEM_EXISTS = "attribute_exists(PK) AND attribute_exists(SK)"
_ITEM_ABSENT = "attribute_not_exists(PK) AND attribute_not_exists(SK)"


class ConditionFailed(Exception):
    """A conditional write lost: the item was (or was not) already there."""


class Page(NamedTuple):
    items: List[Dict[str, Any]]
    last_key: Optional[Dict[str, Any]]


def key_of(item: Dict[str, Any], index: Optional[str] = None) -> Dict[str, Any]:
    """The exclusive-start key that resumes a read right after ``item``."""
    key = {"PK": item["PK"], "SK": item["SK"]}
    if index:
        ipk, isk = index_keys(index)
        key[ipk] = item[ipk]
        key[isk] = item[isk]
    return key


def usable_start_key(
    start_key: Optional[Dict[str, Any]],
    partition: str,
    index: Optional[str] = None,
    sk_prefix: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """``start_key`` if it can resume this query, else None (read from the start).

    A cursor taken from another listing decodes fine but names other key
    attributes or another partition, which DynamoDB rejects outright.
    """
    if not start_key:
        return None
    pk_name, sk_name = index_keys(index) if index else ("PK", "SK")
    expected = {"PK", "SK", pk_name, sk_name}
    if (
        set(start_key) != expected
        or start_key[pk_name] != partition
        or not isinstance(start_key[sk_name], str)
        or (sk_prefix and not start_key[sk_name].startswith(sk_prefix))
    ):
        logger.debug("ignoring start key %s for %s/%s", start_key, index or "table", partition)
        return None
    return start_key


class Store(ABC):
    """Capability over the single social table and its GSIs.

    Every write is atomic per item; ``if_absent``/``if_exists`` map to the
    backend's conditional write and raise :class:`ConditionFailed` when lost.
    """

    @abstractmethod
    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def put(self, item: Dict[str, Any], *, if_absent: bool = False) -> None: ...

    @abstractmethod
    def update(
        self,
        pk: str,
        sk: str,
        *,
        set_fields: Optional[Dict[str, Any]] = None,
        remove_fields: Sequence[str] = (),
        add_fields: Optional[Dict[str, int]] = None,
        if_exists: bool = False,
    ) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def delete(self, pk: str, sk: str, *, if_exists: bool = False) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def query(
        self,
        partition: str,
        *,
        index: Optional[str] = None,
        sk_prefix: Optional[str] = None,
        limit: Optional[int] = None,
        start_key: Optional[Dict[str, Any]] = None,
        newest_first: bool = False,
    ) -> Page: ...

    @abstractmethod
    def count(self, partition: str, *, index: Optional[str] = None, sk_prefix: Optional[str] = None) -> int: ...

    @abstractmethod
    def batch_delete(self, keys: Iterable[Dict[str, Any]]) -> int: ...

    def query_all(
        self,
        partition: str,
        *,
        index: Optional[str] = None,
        sk_prefix: Optional[str] = None,
        page_size: int = 200,
    ) -> Iterator[Dict[str, Any]]:
        last_key = None
        while True:
            page = self.query(partition, index=index, sk_prefix=sk_prefix, limit=page_size, start_key=last_key)
            yield from page.items
            last_key = page.last_key
            if not last_key:
                break


@contextmanager
def _guard(operation: str) -> Iterator[None]:
    try:
        yield
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code")
        if code == "ConditionalCheckFailedException":
            raise ConditionFailed(operation) from exc
        message = exc.response.get("Error", {}).get("Message") or code or ""
        logger.error("dynamodb %s failed: %s", operation, message)
        record_store_error(operation)
        raise StoreUnavailable(operation, message) from exc
    except BotoCoreError as exc:
        logger.error("dynamodb %s failed: %s", operation, exc)
        record_store_error(operation)
        raise StoreUnavailable(operation, str(exc)) from exc


def _update_expression(
    set_fields: Dict[str, Any], remove_fields: Sequence[str], add_fields: Dict[str, int]
) -> Dict[str, Any]:
    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    clauses: List[str] = []

    sets = []
    for i, (field, value) in enumerate(set_fields.items()):
        names[f"#s{i}"] = field
        values[f":s{i}"] = value
        sets.append(f"#s{i} = :s{i}")
    if sets:
        clauses.append("SET " + ", ".join(sets))

    removes = []
    for i, field in enumerate(remove_fields):
        names[f"#r{i}"] = field
        removes.append(f"#r{i}")
    if removes:
        clauses.append("REMOVE " + ", ".join(removes))

    adds = []
    for i, (field, delta) in enumerate(add_fields.items()):
        names[f"#a{i}"] = field
        values[f":a{i}"] = int(delta)
        adds.append(f"#a{i} :a{i}")
    if adds:
        clauses.append("ADD " + ", ".join(adds))

    kwargs: Dict[str, Any] = {
        "UpdateExpression": " ".join(clauses),
        "ExpressionAttributeNames": names,
    }
    if values:
        kwargs["ExpressionAttributeValues"] = values
    return kwargs


class DynamoStore(Store):
    """Store over a boto3 ``Table`` resource."""

    def __init__(self, table: Any) -> None:
        self.table = table

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        with _guard("get_item"):
            return self.table.get_item(Key={"PK": pk, "SK": sk}).get("Item")

    def put(self, item: Dict[str, Any], *, if_absent: bool = False) -> None:
        kwargs: Dict[str, Any] = {"Item": item}
        if if_absent:
            kwargs["ConditionExpression"] = _ITEM_ABSENT
        with _guard("put_item"):
            self.table.put_item(**kwargs)

    def update(
        self,
        pk: str,
        sk: str,
        *,
        set_fields: Optional[Dict[str, Any]] = None,
        remove_fields: Sequence[str] = (),
        add_fields: Optional[Dict[str, int]] = None,
        if_exists: bool = False,
    ) -> Optional[Dict[str, Any]]:
        set_fields = {k: v for k, v in (set_fields or {}).items() if k not in ("PK", "SK")}
        remove_fields = [f for f in remove_fields if f not in ("PK", "SK") and f not in set_fields]
        add_fields = add_fields or {}
        if not (set_fields or remove_fields or add_fields):
            return self.get(pk, sk)
        kwargs = _update_expression(set_fields, remove_fields, add_fields)
        kwargs["Key"] = {"PK": pk, "SK": sk}
        kwargs["ReturnValues"] = "ALL_NEW"
        if if_exists:
            kwargs["ConditionExpression"] = _ITEM_EXISTS
        with _guard("update_item"):
            return self.table.update_item(**kwargs).get("Attributes")

    def delete(self, pk: str, sk: str, *, if_exists: bool = False) -> Optional[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"Key": {"PK": pk, "SK": sk}, "ReturnValues": "ALL_OLD"}
        if if_exists:
            kwargs["ConditionExpression"] = _ITEM_EXISTS
        with _guard("delete_item"):
            return self.table.delete_item(**kwargs).get("Attributes")

    def _query_kwargs(self, partition: str, index: Optional[str], sk_prefix: Optional[str]) -> Dict[str, Any]:
        pk_name, sk_name = index_keys(index) if index else ("PK", "SK")
        cond = Key(pk_name).eq(partition)
        if sk_prefix:
            cond = cond & Key(sk_name).begins_with(sk_prefix)
        kwargs: Dict[str, Any] = {"KeyConditionExpression": cond}
        if index:
            kwargs["IndexName"] = index
        return kwargs

    def query(
        self,
        partition: str,
        *,
        index: Optional[str] = None,
        sk_prefix: Optional[str] = None,
        limit: Optional[int] = None,
        start_key: Optional[Dict[str, Any]] = None,
        newest_first: bool = False,
    ) -> Page:
        kwargs = self._query_kwargs(partition, index, sk_prefix)
        kwargs["ScanIndexForward"] = not newest_first
        if limit:
            kwargs["Limit"] = limit
        start_key = usable_start_key(start_key, partition, index, sk_prefix)
        if start_key:
            kwargs["ExclusiveStartKey"] = start_key
        with _guard("query"):
            resp = self.table.query(**kwargs)
        return Page(list(resp.get("Items", [])), resp.get("LastEvaluatedKey"))

    def count(self, partition: str, *, index: Optional[str] = None, sk_prefix: Optional[str] = None) -> int:
        total = 0
        last_key = None
        while True:
            kwargs = self._query_kwargs(partition, index, sk_prefix)
            kwargs["Select"] = "COUNT"
            if last_key:
                kwargs["ExclusiveStartKey"] = last_key
            with _guard("query"):
                resp = self.table.query(**kwargs)
            total += int(resp.get("Count", 0))
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return total

    def batch_delete(self, keys: Iterable[Dict[str, Any]]) -> int:
        deleted = 0
        with _guard("batch_write_item"):
            with self.table.batch_writer() as batch:
                for key in keys:
                    batch.delete_item(Key={"PK": key["PK"], "SK": key["SK"]})
                    deleted += 1
        return deleted
