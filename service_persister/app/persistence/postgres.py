"""
PostgreSQL persistence layer for employee records.
"""

import re
from typing import List, Optional

import asyncpg

from shared.errors import StoreError
from shared.logging import get_logger
from .base import RecordStore
from .models import Record


def _identifier(name: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9_]", "_", name).lower()
    if not cleaned or cleaned[0].isdigit():
        cleaned = f"t_{cleaned}"
    return cleaned


class PostgresRecordStore(RecordStore):
    """Record store backed by a PostgreSQL table.

    The composite primary key gives idempotent upserts; a B-tree index on
    ``(employee_age, employee_designation)`` serves the alternate lookup.
    """

    def __init__(self, dsn: str, table_name: str = "employee_records", index_name: Optional[str] = None):
        self.dsn = dsn
        self.table_name = _identifier(table_name)
        self.index_name = _identifier(index_name or f"{self.table_name}_age_designation_idx")
        self.logger = get_logger("persister.store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL record store started", table=self.table_name)

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL record store", error=str(e))
            raise StoreError("PostgreSQL unavailable", details={"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL record store stopped")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise StoreError("PostgreSQL record store not started")
        return self.pool

    async def _create_tables(self):
        """Create the table and secondary index."""
        async with self._require_pool().acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    employee_id VARCHAR(255) NOT NULL,
                    employee_name VARCHAR(255) NOT NULL,
                    employee_age VARCHAR(64) NOT NULL,
                    employee_designation VARCHAR(255) NOT NULL,
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (employee_id, employee_name)
                );
            """)

            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS {self.index_name}
                ON {self.table_name}(employee_age, employee_designation);
            """)

    async def put(self, record: Record) -> None:
        try:
            async with self._require_pool().acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {self.table_name} (
                        employee_id, employee_name, employee_age, employee_designation
                    ) VALUES ($1, $2, $3, $4)
                    ON CONFLICT (employee_id, employee_name) DO UPDATE SET
                        employee_age = EXCLUDED.employee_age,
                        employee_designation = EXCLUDED.employee_designation,
                        updated_at = NOW()
                """, record.employee_id, record.employee_name, record.employee_age, record.employee_designation)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Failed to store record", employee_id=record.employee_id, error=str(e))
            raise StoreError("Record write failed", details={"error": str(e)}) from e

    async def get_by_partition(self, employee_id: str) -> List[Record]:
        rows = await self._fetch("partition read", f"""
            SELECT employee_id, employee_name, employee_age, employee_designation
            FROM {self.table_name}
            WHERE employee_id = $1
            ORDER BY employee_name
        """, employee_id)
        return [self._row_to_record(row) for row in rows]

    async def query_index(self, employee_age: str, employee_designation: str) -> List[Record]:
        rows = await self._fetch("index query", f"""
            SELECT employee_id, employee_name, employee_age, employee_designation
            FROM {self.table_name}
            WHERE employee_age = $1 AND employee_designation = $2
            ORDER BY employee_id, employee_name
        """, employee_age, employee_designation)
        return [self._row_to_record(row) for row in rows]

    async def _fetch(self, operation: str, query: str, *args):
        try:
            async with self._require_pool().acquire() as conn:
                return await conn.fetch(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            self.logger.error("Record read failed", operation=operation, error=str(e))
            raise StoreError(f"Record {operation} failed", details={"error": str(e)}) from e

    async def health_check(self) -> bool:
        try:
            async with self._require_pool().acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    def _row_to_record(self, row) -> Record:
        return Record(
            employee_id=row["employee_id"],
            employee_name=row["employee_name"],
            employee_age=row["employee_age"],
            employee_designation=row["employee_designation"],
        )
