"""
In-process outcome queue used for local runs and tests.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from shared.faults import FaultReporter
from shared.logging import get_logger
from shared.queues.base import DeadLetter, OutcomeQueue, check_batch_size
from shared.queues.models import QueueItem, SuccessOutcome, FailureOutcome


@dataclass
class _StoredMessage:
    message_id: str
    outcome: Union[SuccessOutcome, FailureOutcome]
    enqueued_at: float
    receive_count: int = 0
    receipt_handle: Optional[str] = None
    visible_at: float = 0.0


class InMemoryOutcomeQueue(OutcomeQueue):
    """Visibility-timeout queue held in process memory.

    ``clock`` drives visibility; tests that inject a manual clock should
    receive with ``wait_seconds=0``.
    """

    def __init__(self,
                 name: str,
                 visibility_timeout: float = 30.0,
                 max_receive_count: int = 5,
                 poll_interval: float = 0.05,
                 clock: Callable[[], float] = time.monotonic,
                 fault_reporter: Optional[FaultReporter] = None):
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.max_receive_count = max_receive_count
        self.poll_interval = poll_interval
        self.fault_reporter = fault_reporter
        self.logger = get_logger(f"queues.memory.{name}")
        self._clock = clock
        self._lock = asyncio.Lock()
        self._messages: Dict[str, _StoredMessage] = {}
        self._receipts: Dict[str, str] = {}
        self._dead: List[DeadLetter] = []

    async def enqueue(self, outcome: Union[SuccessOutcome, FailureOutcome]) -> str:
        message_id = str(uuid.uuid4())
        async with self._lock:
            self._messages[message_id] = _StoredMessage(
                message_id=message_id,
                outcome=outcome,
                enqueued_at=time.time(),
            )
        self.logger.debug("Outcome enqueued", message_id=message_id, condition=outcome.condition)
        return message_id

    async def receive_batch(self, max_items: int = 5, wait_seconds: float = 0.0) -> List[QueueItem]:
        check_batch_size(max_items)
        deadline = self._clock() + wait_seconds

        while True:
            items = await self._receive_visible(max_items)
            remaining = deadline - self._clock()
            if items or remaining <= 0:
                return items
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _receive_visible(self, max_items: int) -> List[QueueItem]:
        now = self._clock()
        items: List[QueueItem] = []
        dead: List[DeadLetter] = []

        async with self._lock:
            for message in list(self._messages.values()):
                if len(items) >= max_items:
                    break
                if message.receipt_handle is not None and message.visible_at > now:
                    continue

                if message.receipt_handle is not None:
                    self._receipts.pop(message.receipt_handle, None)

                if message.receive_count >= self.max_receive_count:
                    del self._messages[message.message_id]
                    letter = DeadLetter(
                        message_id=message.message_id,
                        outcome=message.outcome,
                        receive_count=message.receive_count,
                        enqueued_at=message.enqueued_at,
                    )
                    self._dead.append(letter)
                    dead.append(letter)
                    continue

                message.receive_count += 1
                message.receipt_handle = str(uuid.uuid4())
                message.visible_at = now + self.visibility_timeout
                self._receipts[message.receipt_handle] = message.message_id
                items.append(QueueItem(
                    message_id=message.message_id,
                    receipt_handle=message.receipt_handle,
                    outcome=message.outcome,
                    receive_count=message.receive_count,
                    enqueued_at=message.enqueued_at,
                ))

        for letter in dead:
            self._report_dead_letter(letter)

        return items

    async def acknowledge(self, receipt_handle: str) -> bool:
        async with self._lock:
            message_id = self._receipts.pop(receipt_handle, None)
            if message_id is None:
                return False
            del self._messages[message_id]
        self.logger.debug("Item acknowledged", message_id=message_id)
        return True

    async def dead_letters(self) -> List[DeadLetter]:
        async with self._lock:
            return list(self._dead)

    async def stats(self) -> Dict[str, int]:
        now = self._clock()
        async with self._lock:
            in_flight = sum(
                1 for m in self._messages.values()
                if m.receipt_handle is not None and m.visible_at > now
            )
            return {
                "visible": len(self._messages) - in_flight,
                "in_flight": in_flight,
                "dead_lettered": len(self._dead),
            }

    async def outcomes(self) -> List[Union[SuccessOutcome, FailureOutcome]]:
        """Every stored, unacknowledged outcome regardless of visibility."""
        async with self._lock:
            return [m.outcome for m in self._messages.values()]

    def _report_dead_letter(self, letter: DeadLetter) -> None:
        self.logger.error(
            "Item exceeded max receive count",
            message_id=letter.message_id,
            receive_count=letter.receive_count,
            queue=self.name
        )
        if self.fault_reporter is not None:
            self.fault_reporter.report(
                "dead_letter",
                "Queue item moved to dead letters",
                queue=self.name,
                message_id=letter.message_id,
                outcome_id=letter.outcome.outcome_id,
                receive_count=letter.receive_count,
            )
