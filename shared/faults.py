"""
Out-of-band fault channel.

Faults are conditions that can no longer be reported to the original
caller: an outcome dropped after enqueue retries, an authorizer that could
not decide, a queue item moved to dead letters. Each fault is logged at
critical level, counted, and fanned out to any registered sinks (pagers,
alert queues, test probes).
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class FaultEvent:
    """A single operational fault."""
    fault_type: str
    message: str
    data_loss: bool = False
    details: Dict[str, Any] = field(default_factory=dict)
    occurred_at: float = field(default_factory=time.time)


FaultSink = Callable[[FaultEvent], None]


class FaultReporter:
    """Publishes faults to logs, metrics and registered sinks."""

    def __init__(self, service_name: str, metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.metrics = metrics
        self.logger = get_logger(f"{service_name}.faults")
        self._sinks: List[FaultSink] = []

    def add_sink(self, sink: FaultSink) -> None:
        self._sinks.append(sink)

    def report(self, fault_type: str, message: str, *, data_loss: bool = False, **details) -> FaultEvent:
        """Report a fault. Sink errors are logged and never mask the fault."""
        event = FaultEvent(fault_type=fault_type, message=message, data_loss=data_loss, details=details)

        self.logger.critical(
            message,
            fault_type=fault_type,
            data_loss=data_loss,
            **details
        )
        if self.metrics is not None:
            self.metrics.record_fault(fault_type)

        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception as e:
                self.logger.error("Fault sink failed", fault_type=fault_type, error=str(e))

        return event
