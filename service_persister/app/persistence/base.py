"""
Record store contract.
"""

import abc
from typing import List

from .models import Record


class RecordStore(abc.ABC):
    """Key-value table keyed by ``(employee_id, employee_name)``.

    ``put`` is an idempotent upsert and is durable once it returns.
    ``query_index`` reads an eventually-consistent projection that may lag
    behind recent writes.
    """

    @abc.abstractmethod
    async def put(self, record: Record) -> None:
        ...

    @abc.abstractmethod
    async def get_by_partition(self, employee_id: str) -> List[Record]:
        """All records sharing ``employee_id``, ordered by employee name."""

    @abc.abstractmethod
    async def query_index(self, employee_age: str, employee_designation: str) -> List[Record]:
        """Records matching the secondary index key."""

    async def query_by_partition(self, employee_id: str) -> List[Record]:
        return await self.get_by_partition(employee_id)

    async def query_by_index(self, employee_age: str, employee_designation: str) -> List[Record]:
        return await self.query_index(employee_age, employee_designation)

    async def start(self) -> None:
        """Open backend connections."""

    async def stop(self) -> None:
        """Close backend connections."""

    async def health_check(self) -> bool:
        return True
