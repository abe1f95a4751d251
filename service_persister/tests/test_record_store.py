"""
Unit tests for record stores and outcome mapping.
"""

import asyncpg
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from service_persister.app.mapping import record_from_outcome
from service_persister.app.persistence import InMemoryRecordStore, PostgresRecordStore, Record, build_store
from shared.config import get_config
from shared.errors import PersistFailure, StoreError
from shared.test_helpers import ManualClock, data_factory


def _record(employee_id="E1", employee_name="Ada", age="36", designation="Engineer"):
    return Record(
        employee_id=employee_id,
        employee_name=employee_name,
        employee_age=age,
        employee_designation=designation,
    )


class TestRecord:
    """Test cases for the Record model."""

    def test_numbers_stored_as_strings(self):
        record = Record(employee_id=7, employee_name="Ada", employee_age=36, employee_designation="Engineer")
        assert record.employee_id == "7"
        assert record.employee_age == "36"
        assert record.key == ("7", "Ada")
        assert record.index_key == ("36", "Engineer")

    def test_empty_key_rejected(self):
        with pytest.raises(ValueError):
            _record(employee_id="")


class TestInMemoryRecordStore:
    """Test cases for InMemoryRecordStore."""

    @pytest.mark.asyncio
    async def test_upsert_by_primary_key(self):
        store = InMemoryRecordStore()
        await store.put(_record(designation="Engineer"))
        await store.put(_record(designation="Manager"))

        [record] = await store.get_by_partition("E1")
        assert record.employee_designation == "Manager"
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_partition_sorted_by_name(self):
        store = InMemoryRecordStore()
        for name in ("Zed", "Ada", "Mia"):
            await store.put(_record(employee_name=name))
        await store.put(_record(employee_id="E2"))

        records = await store.query_by_partition("E1")
        assert [r.employee_name for r in records] == ["Ada", "Mia", "Zed"]

    @pytest.mark.asyncio
    async def test_index_follows_updates(self):
        store = InMemoryRecordStore()
        await store.put(_record(designation="Engineer"))
        await store.put(_record(designation="Manager"))

        assert await store.query_index("36", "Engineer") == []
        assert len(await store.query_by_index("36", "Manager")) == 1

    @pytest.mark.asyncio
    async def test_index_lags_behind_writes(self):
        """The secondary index is eventually consistent."""
        clock = ManualClock()
        store = InMemoryRecordStore(index_lag_seconds=2, clock=clock)
        await store.put(_record())

        assert len(await store.get_by_partition("E1")) == 1
        assert await store.query_index("36", "Engineer") == []

        clock.advance(2)
        assert len(await store.query_index("36", "Engineer")) == 1


class TestPostgresRecordStore:
    """Test cases for PostgresRecordStore."""

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        conn.execute = AsyncMock()
        conn.fetch = AsyncMock(return_value=[])
        conn.fetchval = AsyncMock(return_value=1)
        return conn

    @pytest.fixture
    def store(self, conn):
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        pool.close = AsyncMock()
        store = PostgresRecordStore("postgres://localhost/test", table_name="employee-records-dev")
        store.pool = pool
        return store

    def test_identifiers_sanitized(self, store):
        assert store.table_name == "employee_records_dev"
        assert store.index_name == "employee_records_dev_age_designation_idx"

    @pytest.mark.asyncio
    async def test_start_creates_schema(self, conn):
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)

        with patch("service_persister.app.persistence.postgres.asyncpg.create_pool", AsyncMock(return_value=pool)):
            await PostgresRecordStore("postgres://localhost/test").start()

        statements = [call.args[0] for call in conn.execute.await_args_list]
        assert any("PRIMARY KEY (employee_id, employee_name)" in s for s in statements)
        assert any("(employee_age, employee_designation)" in s for s in statements)

    @pytest.mark.asyncio
    async def test_start_failure_raises_store_error(self):
        with patch("service_persister.app.persistence.postgres.asyncpg.create_pool",
                   AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(StoreError):
                await PostgresRecordStore("postgres://localhost/test").start()

    @pytest.mark.asyncio
    async def test_put_upserts(self, store, conn):
        await store.put(_record())

        sql, *params = conn.execute.await_args.args
        assert "ON CONFLICT (employee_id, employee_name) DO UPDATE" in sql
        assert params == ["E1", "Ada", "36", "Engineer"]

    @pytest.mark.asyncio
    async def test_put_error_wrapped(self, store, conn):
        conn.execute = AsyncMock(side_effect=asyncpg.exceptions.InterfaceError("connection closed"))
        with pytest.raises(StoreError):
            await store.put(_record())

    @pytest.mark.asyncio
    async def test_query_index(self, store, conn):
        conn.fetch = AsyncMock(return_value=[{
            "employee_id": "E1",
            "employee_name": "Ada",
            "employee_age": "36",
            "employee_designation": "Engineer",
        }])

        [record] = await store.query_index("36", "Engineer")

        assert record == _record()
        assert conn.fetch.await_args.args[1:] == ("36", "Engineer")

    @pytest.mark.asyncio
    async def test_read_errors_wrapped(self, store, conn):
        conn.fetch = AsyncMock(side_effect=asyncpg.exceptions.InterfaceError("connection closed"))

        with pytest.raises(StoreError) as exc_info:
            await store.get_by_partition("E1")
        assert exc_info.value.details["error"] == "connection closed"

        with pytest.raises(StoreError):
            await store.query_index("36", "Engineer")

    @pytest.mark.asyncio
    async def test_not_started(self):
        with pytest.raises(StoreError):
            await PostgresRecordStore("postgres://localhost/test").get_by_partition("E1")

    @pytest.mark.asyncio
    async def test_health_check(self, store, conn):
        assert await store.health_check() is True
        conn.fetchval = AsyncMock(side_effect=OSError("gone"))
        assert await store.health_check() is False


class TestBuildStore:
    """Test cases for store selection."""

    def test_memory_backend(self):
        assert isinstance(build_store(get_config("persister", 8020)), InMemoryRecordStore)

    def test_postgres_backend(self):
        store = build_store(get_config("persister", 8020, store_backend="postgres", env="prod"))
        assert isinstance(store, PostgresRecordStore)
        assert store.table_name == "employee_records_prod"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            build_store(get_config("persister", 8020, store_backend="dynamo"))


class TestRecordMapping:
    """Test cases for outcome to record mapping."""

    def test_top_level_payload(self):
        outcome = data_factory.make_success(data_factory.make_employee("E1", "Ada", 36, "Engineer"))
        assert record_from_outcome(outcome) == _record()

    def test_nested_employee_payload(self):
        outcome = data_factory.make_success({"employee": data_factory.make_employee("E1", "Ada", 36, "Engineer")})
        assert record_from_outcome(outcome) == _record()

    def test_fallbacks_from_request(self):
        event = data_factory.make_event("2024-05-01")
        record = record_from_outcome(data_factory.make_success({"status": "ok"}, event=event))

        assert record.employee_id == event.request_id
        assert record.employee_name == "2024-05-01"
        assert record.employee_age == "unknown"
        assert record.employee_designation == "unknown"

    def test_mapping_is_deterministic(self):
        outcome = data_factory.make_success("plain")
        assert record_from_outcome(outcome) == record_from_outcome(outcome)

    def test_failure_outcome_rejected(self):
        with pytest.raises(PersistFailure):
            record_from_outcome(data_factory.make_failure())

    def test_invalid_payload_rejected(self):
        outcome = data_factory.make_success({"employee_id": ["not", "a", "string"]})
        with pytest.raises(PersistFailure):
            record_from_outcome(outcome)
