"""
Queue contract for outcome hand-off.
"""

import abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from shared.queues.models import QueueItem, SuccessOutcome, FailureOutcome

MAX_RECEIVE_BATCH = 10


@dataclass
class DeadLetter:
    """An item that exceeded the queue's maximum receive count."""
    message_id: str
    outcome: Union[SuccessOutcome, FailureOutcome]
    receive_count: int
    enqueued_at: float
    details: Dict[str, Any] = field(default_factory=dict)


class OutcomeQueue(abc.ABC):
    """Durable, at-least-once queue of outcomes.

    Received items stay invisible for ``visibility_timeout`` seconds. If they
    are not acknowledged in that window they become visible again and their
    receive count grows; once it passes ``max_receive_count`` the item is moved
    to the dead-letter list instead of being redelivered. No ordering is
    guaranteed across items.
    """

    name: str

    @abc.abstractmethod
    async def enqueue(self, outcome: Union[SuccessOutcome, FailureOutcome]) -> str:
        """Store an outcome and return its message id."""

    @abc.abstractmethod
    async def receive_batch(self, max_items: int = 5, wait_seconds: float = 0.0) -> List[QueueItem]:
        """Receive up to ``max_items`` visible items, waiting up to ``wait_seconds``."""

    @abc.abstractmethod
    async def acknowledge(self, receipt_handle: str) -> bool:
        """Remove a received item. Returns False for stale or unknown receipts."""

    @abc.abstractmethod
    async def dead_letters(self) -> List[DeadLetter]:
        """Items that were never acknowledged within ``max_receive_count`` receives."""

    @abc.abstractmethod
    async def stats(self) -> Dict[str, int]:
        """Counts of visible, in-flight and dead-lettered items."""

    async def start(self) -> None:
        """Open backend connections."""

    async def stop(self) -> None:
        """Close backend connections."""


def check_batch_size(max_items: int) -> int:
    if max_items < 1 or max_items > MAX_RECEIVE_BATCH:
        raise ValueError(f"max_items must be between 1 and {MAX_RECEIVE_BATCH}")
    return max_items
