"""
Outcome queues.

The success and failure queues are the only synchronization points between
the dispatch service and the persister: producers never block on
consumers, delivery is at-least-once and unordered.

- models: tagged ``SuccessOutcome`` / ``FailureOutcome`` and ``QueueItem``
- base: ``OutcomeQueue`` contract and ``DeadLetter``
- memory: in-process backend for local runs and tests
- redis_queue: Redis backend (Lua scripts for atomic receive/acknowledge)
"""

from typing import Optional

from shared.config import BaseConfig
from shared.faults import FaultReporter
from shared.queues.base import DeadLetter, OutcomeQueue
from shared.queues.memory import InMemoryOutcomeQueue
from shared.queues.models import (
    FailureOutcome,
    InvocationEvent,
    Outcome,
    QueueItem,
    SuccessOutcome,
)
from shared.queues.redis_queue import RedisOutcomeQueue


def build_queue(config: BaseConfig, kind: str, fault_reporter: Optional[FaultReporter] = None) -> OutcomeQueue:
    """Build the success or failure queue for the configured backend."""
    name = config.resource_name(kind)
    if config.queue_backend == "redis":
        return RedisOutcomeQueue(
            config.redis_url,
            name,
            visibility_timeout=config.visibility_timeout_seconds,
            max_receive_count=config.max_receive_count,
            poll_interval=config.poll_interval_seconds,
            fault_reporter=fault_reporter,
        )
    if config.queue_backend == "memory":
        return InMemoryOutcomeQueue(
            name,
            visibility_timeout=config.visibility_timeout_seconds,
            max_receive_count=config.max_receive_count,
            fault_reporter=fault_reporter,
        )
    raise ValueError(f"Unknown queue backend: {config.queue_backend}")


__all__ = [
    "DeadLetter",
    "FailureOutcome",
    "InMemoryOutcomeQueue",
    "InvocationEvent",
    "Outcome",
    "OutcomeQueue",
    "QueueItem",
    "RedisOutcomeQueue",
    "SuccessOutcome",
    "build_queue",
]
