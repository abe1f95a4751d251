"""
In-process record store with a lagging secondary index.
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Tuple

from shared.logging import get_logger
from .base import RecordStore
from .models import Record

Key = Tuple[str, str]


class InMemoryRecordStore(RecordStore):
    """Record store held in memory.

    Index updates become visible ``index_lag_seconds`` after the primary
    write, mirroring an asynchronously maintained global index.
    """

    def __init__(self, index_lag_seconds: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self.index_lag_seconds = index_lag_seconds
        self.logger = get_logger("persister.store.memory")
        self._clock = clock
        self._lock = asyncio.Lock()
        self._records: Dict[Key, Record] = {}
        self._index: Dict[Key, Dict[Key, Record]] = {}
        self._pending: Deque[Tuple[float, Optional[Record], Record]] = deque()

    async def put(self, record: Record) -> None:
        async with self._lock:
            previous = self._records.get(record.key)
            self._records[record.key] = record
            if self.index_lag_seconds <= 0:
                self._apply_index(previous, record)
            else:
                self._pending.append((self._clock() + self.index_lag_seconds, previous, record))
        self.logger.debug("Record stored", employee_id=record.employee_id, employee_name=record.employee_name)

    async def get_by_partition(self, employee_id: str) -> List[Record]:
        async with self._lock:
            matches = [r for (pk, _), r in self._records.items() if pk == employee_id]
        return sorted(matches, key=lambda r: r.employee_name)

    async def query_index(self, employee_age: str, employee_designation: str) -> List[Record]:
        async with self._lock:
            self._flush_index(self._clock())
            bucket = self._index.get((employee_age, employee_designation), {})
            return sorted(bucket.values(), key=lambda r: r.key)

    async def count(self) -> int:
        async with self._lock:
            return len(self._records)

    def _flush_index(self, now: float) -> None:
        while self._pending and self._pending[0][0] <= now:
            _, previous, record = self._pending.popleft()
            self._apply_index(previous, record)

    def _apply_index(self, previous: Optional[Record], record: Record) -> None:
        if previous is not None:
            bucket = self._index.get(previous.index_key)
            if bucket is not None:
                bucket.pop(previous.key, None)
                if not bucket:
                    del self._index[previous.index_key]
        self._index.setdefault(record.index_key, {})[record.key] = record
