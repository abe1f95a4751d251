"""
Batch consumer draining the success queue into the record store.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.queues import FailureOutcome, OutcomeQueue, QueueItem, SuccessOutcome
from shared.tracing import trace_operation
from .mapping import record_from_outcome
from .persistence import Record, RecordStore

MAX_BATCH_SIZE = 5

RecordMapper = Callable[[Union[SuccessOutcome, FailureOutcome]], Record]


@dataclass
class BatchResult:
    """What happened to one received batch."""
    received: int = 0
    persisted: int = 0
    failed: int = 0
    unacknowledged: int = 0
    failures: Dict[str, str] = field(default_factory=dict)
    acknowledged: List[str] = field(default_factory=list)


class BatchConsumer:
    """Polls the success queue and persists each item.

    An item is acknowledged only after its store write returned. Items whose
    mapping or write fails stay unacknowledged and are redelivered after the
    queue's visibility timeout; the queue dead-letters them once they exceed
    its maximum receive count.
    """

    def __init__(self,
                 queue: OutcomeQueue,
                 store: RecordStore,
                 *,
                 batch_size: int = MAX_BATCH_SIZE,
                 wait_seconds: float = 1.0,
                 poll_interval: float = 1.0,
                 error_backoff: float = 5.0,
                 concurrent_writes: bool = False,
                 record_mapper: RecordMapper = record_from_outcome,
                 metrics: Optional[MetricsCollector] = None):
        if batch_size < 1 or batch_size > MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")
        self.queue = queue
        self.store = store
        self.batch_size = batch_size
        self.wait_seconds = wait_seconds
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.concurrent_writes = concurrent_writes
        self.record_mapper = record_mapper
        self.metrics = metrics
        self.logger = get_logger("persister.consumer")
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> BatchResult:
        """Receive one batch and process it."""
        items = await self.queue.receive_batch(max_items=self.batch_size, wait_seconds=self.wait_seconds)
        result = BatchResult(received=len(items))
        if not items:
            return result

        started = time.time()
        with trace_operation("persister.batch", batch_size=len(items), queue=self.queue.name):
            if self.concurrent_writes:
                statuses = await asyncio.gather(*(self._process(item, result) for item in items))
            else:
                statuses = [await self._process(item, result) for item in items]

        for status in statuses:
            if status == "persisted":
                result.persisted += 1
            elif status == "unacknowledged":
                result.persisted += 1
                result.unacknowledged += 1
            else:
                result.failed += 1

        if self.metrics is not None:
            self.metrics.increment_counter("batches_processed_total")
            self.metrics.observe_histogram("batch_duration_seconds", time.time() - started)
            for status in statuses:
                self.metrics.increment_counter("items_processed_total", status=status)

        self.logger.info(
            "Batch processed",
            received=result.received,
            persisted=result.persisted,
            failed=result.failed,
            unacknowledged=result.unacknowledged
        )
        return result

    async def _process(self, item: QueueItem, result: BatchResult) -> str:
        try:
            record = self.record_mapper(item.outcome)
            await self.store.put(record)
        except Exception as e:
            result.failures[item.message_id] = str(e)
            self.logger.error(
                "Failed to persist item, leaving it for redelivery",
                message_id=item.message_id,
                outcome_id=item.outcome.outcome_id,
                receive_count=item.receive_count,
                error_type=type(e).__name__,
                error=str(e)
            )
            return "failed"

        try:
            acknowledged = await self.queue.acknowledge(item.receipt_handle)
        except Exception as e:
            self.logger.warning(
                "Acknowledge failed after write; item will be redelivered",
                message_id=item.message_id,
                error=str(e)
            )
            return "unacknowledged"

        if not acknowledged:
            self.logger.warning(
                "Receipt expired before acknowledge; item will be redelivered",
                message_id=item.message_id,
                receive_count=item.receive_count
            )
            return "unacknowledged"

        result.acknowledged.append(item.message_id)
        return "persisted"

    async def start(self):
        """Start the polling loop in the background."""
        if self._task is not None and not self._task.done():
            return
        self.running = True
        self._task = asyncio.create_task(self.run_forever())
        self.logger.info("Batch consumer started", queue=self.queue.name, batch_size=self.batch_size)

    async def stop(self):
        """Stop the polling loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.logger.info("Batch consumer stopped", queue=self.queue.name)

    async def run_forever(self):
        """Main consumption loop."""
        self.running = True
        while self.running:
            try:
                result = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Batch consumer error", error=str(e))
                await asyncio.sleep(self.error_backoff)
                continue

            if result.received == 0 and self.wait_seconds <= 0:
                await asyncio.sleep(self.poll_interval)
