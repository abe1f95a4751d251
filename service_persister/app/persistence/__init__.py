"""
Record persistence.

``RecordStore`` is the contract; ``InMemoryRecordStore`` serves local runs
and tests, ``PostgresRecordStore`` is the durable backend.
"""

from shared.config import BaseConfig
from .base import RecordStore
from .memory import InMemoryRecordStore
from .models import Record
from .postgres import PostgresRecordStore


def build_store(config: BaseConfig) -> RecordStore:
    """Build the record store for the configured backend."""
    if config.store_backend == "postgres":
        return PostgresRecordStore(
            config.postgres_dsn,
            table_name=config.resource_name("table"),
            index_name=config.resource_name("index"),
        )
    if config.store_backend == "memory":
        return InMemoryRecordStore(index_lag_seconds=config.index_lag_seconds)
    raise ValueError(f"Unknown store backend: {config.store_backend}")


__all__ = ["InMemoryRecordStore", "PostgresRecordStore", "Record", "RecordStore", "build_store"]
