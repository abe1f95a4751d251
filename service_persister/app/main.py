"""
Persister service: drains the success queue into the record store.
"""

from typing import Dict, Optional

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.faults import FaultReporter
from shared.queues import OutcomeQueue, build_queue
from .consumer import BatchConsumer
from .persistence import RecordStore, build_store


class PersisterService(BaseService):
    """Batch consumer with health, metrics and record read endpoints."""

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 *,
                 queue: Optional[OutcomeQueue] = None,
                 store: Optional[RecordStore] = None,
                 start_consumer: bool = True):
        super().__init__("persister", 8020, config or get_config("persister", 8020))
        self.faults = FaultReporter("persister", self.metrics)
        self.queue = queue or build_queue(self.config, "success_queue", self.faults)
        self.store = store or build_store(self.config)
        self.start_consumer = start_consumer
        self.consumer = BatchConsumer(
            self.queue,
            self.store,
            batch_size=self.config.batch_size,
            wait_seconds=self.config.receive_wait_seconds,
            poll_interval=self.config.poll_interval_seconds,
            concurrent_writes=self.config.concurrent_writes,
            metrics=self.metrics,
        )
        self._setup_persister_routes()

    async def startup(self):
        await self.queue.start()
        await self.store.start()
        if self.start_consumer:
            await self.consumer.start()

    async def shutdown(self):
        await self.consumer.stop()
        await self.store.stop()
        await self.queue.stop()

    async def _check_dependencies(self) -> Dict[str, str]:
        stats = await self.queue.stats()
        return {
            "queue": "ok",
            "store": "ok" if await self.store.health_check() else "error",
            "consumer": "running" if self.consumer.running else "stopped",
            "dead_lettered": str(stats.get("dead_lettered", 0)),
        }

    def _setup_persister_routes(self):

        @self.app.get("/")
        async def root():
            return {
                "service": "persister",
                "message": "Request Pipeline - Persister Service",
                "version": "1.0.0"
            }

        @self.app.get("/records/{employee_id}")
        async def get_records(employee_id: str):
            records = await self.store.get_by_partition(employee_id)
            return {"items": [r.model_dump() for r in records], "count": len(records)}

        @self.app.get("/records")
        async def query_records(employee_age: str, employee_designation: str):
            records = await self.store.query_index(employee_age, employee_designation)
            return {"items": [r.model_dump() for r in records], "count": len(records)}

        @self.app.get("/dead-letters")
        async def dead_letters():
            letters = await self.queue.dead_letters()
            return {
                "items": [
                    {
                        "message_id": letter.message_id,
                        "outcome_id": letter.outcome.outcome_id,
                        "request_id": letter.outcome.request_id,
                        "receive_count": letter.receive_count,
                        "enqueued_at": letter.enqueued_at,
                    }
                    for letter in letters
                ],
                "count": len(letters),
            }


def create_app(**kwargs):
    """Create the persister FastAPI application."""
    return PersisterService(**kwargs).app


if __name__ == "__main__":
    PersisterService().run()
