"""
Primary compute unit execution and outcome routing.
"""

import asyncio
import functools
import inspect
from typing import Any, Awaitable, Callable, Optional, Set, Union

from shared.errors import EnqueueFailure, ExecutionError, ExecutionTimeout
from shared.faults import FaultReporter
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.queues import FailureOutcome, InvocationEvent, OutcomeQueue, SuccessOutcome
from shared.retry import RetryConfig, RetryError, call_with_retry
from shared.tracing import trace_operation

Handler = Callable[[InvocationEvent], Union[Any, Awaitable[Any]]]


class OutcomeDispatcher:
    """Runs the primary handler and routes its outcome to one of two queues.

    A normal return becomes a ``SuccessOutcome`` on the success queue, a raised
    exception a ``FailureOutcome`` on the failure queue. Routing runs in the
    background so callers never wait on queue delivery. Enqueue errors are
    retried with backoff; once retries are exhausted the outcome is dropped
    and reported on the fault channel as data loss.
    """

    def __init__(self,
                 success_queue: OutcomeQueue,
                 failure_queue: OutcomeQueue,
                 handler: Handler,
                 *,
                 retry_config: Optional[RetryConfig] = None,
                 fault_reporter: Optional[FaultReporter] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.success_queue = success_queue
        self.failure_queue = failure_queue
        self.handler = handler
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=5.0)
        self.metrics = metrics
        self.fault_reporter = fault_reporter or FaultReporter("dispatch", metrics)
        self.logger = get_logger("dispatch.dispatcher")
        self._executions: Set[asyncio.Task] = set()
        self._routings: Set[asyncio.Task] = set()

    async def invoke(self, event: InvocationEvent, timeout: Optional[float] = None) -> Any:
        """Execute the handler, waiting at most ``timeout`` seconds.

        The execution is shielded: on timeout the caller gets
        ``ExecutionTimeout`` while the handler keeps running and its outcome is
        still routed when it finishes.
        """
        task = asyncio.ensure_future(self.execute(event))
        self._track(task, self._executions)

        try:
            if timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Primary unit exceeded timeout",
                request_id=event.request_id,
                timeout_seconds=timeout
            )
            raise ExecutionTimeout(
                f"Primary unit did not complete within {timeout} seconds",
                details={"request_id": event.request_id}
            )
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(
                str(e) or type(e).__name__,
                details={"request_id": event.request_id, "error_type": type(e).__name__}
            ) from e

    async def execute(self, event: InvocationEvent) -> Any:
        """Run the handler once and schedule routing of its outcome."""
        with trace_operation("dispatch.execute", request_id=event.request_id, date=event.date):
            try:
                result = await self._run_handler(event)
            except Exception as exc:
                self.logger.info(
                    "Primary unit raised",
                    request_id=event.request_id,
                    error_type=type(exc).__name__,
                    error=str(exc)
                )
                self._schedule_routing(FailureOutcome(
                    request_context=event,
                    error_type=type(exc).__name__,
                    error_detail=getattr(exc, "message", None) or str(exc),
                ))
                raise

            self._schedule_routing(SuccessOutcome(request_context=event, payload=result))
            return result

    async def _run_handler(self, event: InvocationEvent) -> Any:
        call = getattr(self.handler, "__call__", None)
        if inspect.iscoroutinefunction(self.handler) or inspect.iscoroutinefunction(call):
            return await self.handler(event)

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, functools.partial(self.handler, event))
        if inspect.isawaitable(result):
            result = await result
        return result

    def _schedule_routing(self, outcome: Union[SuccessOutcome, FailureOutcome]) -> None:
        task = asyncio.ensure_future(self.route(outcome))
        self._track(task, self._routings)

    async def route(self, outcome: Union[SuccessOutcome, FailureOutcome]) -> Optional[str]:
        """Enqueue ``outcome`` on the queue matching its condition."""
        queue = self.success_queue if outcome.condition == "Success" else self.failure_queue

        def on_retry(attempt: int, error: Exception) -> None:
            if self.metrics is not None:
                self.metrics.increment_counter("enqueue_retries_total", queue=queue.name)

        try:
            message_id = await call_with_retry(
                queue.enqueue,
                outcome,
                config=self.retry_config,
                name=f"enqueue.{queue.name}",
                on_retry=on_retry,
            )
        except RetryError as e:
            self._report_dropped(outcome, queue, e)
            return None

        if self.metrics is not None:
            self.metrics.increment_counter("outcomes_routed_total", condition=outcome.condition)
        self.logger.info(
            "Outcome routed",
            request_id=outcome.request_id,
            outcome_id=outcome.outcome_id,
            condition=outcome.condition,
            queue=queue.name,
            message_id=message_id
        )
        return message_id

    def _report_dropped(self, outcome, queue: OutcomeQueue, error: RetryError) -> None:
        failure = EnqueueFailure(
            f"Outcome dropped after {error.attempts} enqueue attempts",
            details={
                "queue": queue.name,
                "request_id": outcome.request_id,
                "outcome_id": outcome.outcome_id,
                "condition": outcome.condition,
                "attempts": error.attempts,
                "error": str(error.last_exception),
            }
        )
        if self.metrics is not None:
            self.metrics.increment_counter("outcomes_dropped_total", condition=outcome.condition)
        self.fault_reporter.report(
            "enqueue_failure",
            failure.message,
            data_loss=True,
            code=failure.code,
            **failure.details
        )

    async def drain(self) -> None:
        """Wait for in-flight executions and outcome routing to finish."""
        while self._executions or self._routings:
            pending = list(self._executions | self._routings)
            await asyncio.gather(*pending, return_exceptions=True)

    def _track(self, task: asyncio.Task, registry: Set[asyncio.Task]) -> None:
        registry.add(task)

        def _done(t: asyncio.Task) -> None:
            registry.discard(t)
            if not t.cancelled() and t.exception() is not None and registry is self._routings:
                self.logger.error("Outcome routing crashed", error=str(t.exception()))

        task.add_done_callback(_done)
