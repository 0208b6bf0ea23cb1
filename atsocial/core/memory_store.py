from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from atsocial.core.keys import index_keys
from atsocial.core.store import ConditionFailed, Page, Store, key_of, usable_start_key


class MemoryStore(Store):
    """In-process table with the same key, index and conditional semantics.

    Items live in a dict keyed by ``(PK, SK)``; a GSI is any item carrying
    both ``<index>PK`` and ``<index>SK``. One lock makes each call atomic,
    matching per-item atomicity of the real backend.
    """

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._items)

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._items.get((pk, sk))
            return copy.deepcopy(item) if item is not None else None

    def put(self, item: Dict[str, Any], *, if_absent: bool = False) -> None:
        key = (item["PK"], item["SK"])
        with self._lock:
            if if_absent and key in self._items:
                raise ConditionFailed("put_item")
            self._items[key] = copy.deepcopy(item)

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
        with self._lock:
            current = self._items.get((pk, sk))
            if current is None:
                if if_exists:
                    raise ConditionFailed("update_item")
                current = {"PK": pk, "SK": sk}
            updated = dict(current)
            for field, value in (set_fields or {}).items():
                if field not in ("PK", "SK"):
                    updated[field] = copy.deepcopy(value)
            for field in remove_fields:
                if field not in ("PK", "SK") and field not in (set_fields or {}):
                    updated.pop(field, None)
            for field, delta in (add_fields or {}).items():
                updated[field] = int(updated.get(field) or 0) + int(delta)
            self._items[(pk, sk)] = updated
            return copy.deepcopy(updated)

    def delete(self, pk: str, sk: str, *, if_exists: bool = False) -> Optional[Dict[str, Any]]:
        with self._lock:
            old = self._items.pop((pk, sk), None)
            if old is None and if_exists:
                raise ConditionFailed("delete_item")
            return old

    def _matching(self, partition: str, index: Optional[str], sk_prefix: Optional[str]) -> List[Dict[str, Any]]:
        pk_name, sk_name = index_keys(index) if index else ("PK", "SK")
        out = []
        for item in self._items.values():
            if item.get(pk_name) != partition or sk_name not in item:
                continue
            if sk_prefix and not str(item[sk_name]).startswith(sk_prefix):
                continue
            out.append(item)
        # GSI sort keys are not unique; table keys break ties deterministically.
        out.sort(key=lambda it: (it[sk_name], it["PK"], it["SK"]))
        return out

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
        start_key = usable_start_key(start_key, partition, index, sk_prefix)
        with self._lock:
            items = self._matching(partition, index, sk_prefix)
            if newest_first:
                items.reverse()
            if start_key:
                marker = (start_key.get("PK"), start_key.get("SK"))
                positions = [i for i, it in enumerate(items) if (it["PK"], it["SK"]) == marker]
                if positions:
                    items = items[positions[0] + 1:]
                else:
                    items = self._after(items, start_key, index, newest_first)
            page = items[:limit] if limit else items
            last_key = key_of(page[-1], index) if limit and len(items) > limit else None
            return Page(copy.deepcopy(page), last_key)

    @staticmethod
    def _after(
        items: List[Dict[str, Any]], start_key: Dict[str, Any], index: Optional[str], newest_first: bool
    ) -> List[Dict[str, Any]]:
        # The start item was deleted between pages; resume by sort position.
        _, sk_name = index_keys(index) if index else ("PK", "SK")
        marker = (start_key.get(sk_name, ""), start_key.get("PK", ""), start_key.get("SK", ""))
        if newest_first:
            return [it for it in items if (it[sk_name], it["PK"], it["SK"]) < marker]
        return [it for it in items if (it[sk_name], it["PK"], it["SK"]) > marker]

    def count(self, partition: str, *, index: Optional[str] = None, sk_prefix: Optional[str] = None) -> int:
        with self._lock:
            return len(self._matching(partition, index, sk_prefix))

    def batch_delete(self, keys: Iterable[Dict[str, Any]]) -> int:
        deleted = 0
        with self._lock:
            for key in keys:
                self._items.pop((key["PK"], key["SK"]), None)
                deleted += 1
        return deleted
