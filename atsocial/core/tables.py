from __future__ import annotations

from typing import Optional

from .memory_store import MemoryStore
from .settings import S, Settings
from .store import DynamoStore, Store

STORE_BACKENDS = ("dynamodb", "memory")


def build_store(settings: Optional[Settings] = None, *, backend: Optional[str] = None) -> Store:
    """Store selected by explicit configuration, never by probing credentials."""
    settings = settings or S
    backend = (backend or settings.store_backend).lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "dynamodb":
        from .aws import ddb

        return DynamoStore(ddb.Table(settings.sns_table_name))
    raise ValueError(f"Unknown store backend {backend!r}; expected one of {STORE_BACKENDS}")
