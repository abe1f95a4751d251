"""
API Gateway service for the Request Pipeline.
"""

import time
from typing import Dict, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import ExecutionError, ExecutionTimeout
from shared.faults import FaultReporter
from shared.logging import request_id_var, set_request_id
from shared.queues import InvocationEvent, OutcomeQueue, build_queue
from shared.retry import RetryConfig
from service_authorizer.app import DecisionCache, JWKSTokenValidator, TokenAuthorizer, TokenValidator
from service_dispatch.app import Handler, OutcomeDispatcher, load_handler
from .domain.auth_middleware import AdmissionMiddleware
from .domain.usage_plans import UsagePlanRegistry


class GatewayService(BaseService):
    """API Gateway service implementation.

    Collaborators default to what the configuration describes and can be
    injected for tests or embedding.
    """

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 *,
                 validator: Optional[TokenValidator] = None,
                 authorizer: Optional[TokenAuthorizer] = None,
                 usage_plans: Optional[UsagePlanRegistry] = None,
                 success_queue: Optional[OutcomeQueue] = None,
                 failure_queue: Optional[OutcomeQueue] = None,
                 handler: Optional[Handler] = None,
                 dispatcher: Optional[OutcomeDispatcher] = None):
        super().__init__("gateway", 8000, config or get_config("gateway", 8000))
        self.faults = FaultReporter("gateway", self.metrics)

        self.validator = validator or JWKSTokenValidator(
            self.config.jwks_url,
            audience=self.config.jwks_audience,
            issuer=self.config.jwks_issuer,
            required_scope=self.config.required_scope,
        )
        self.authorizer = authorizer or TokenAuthorizer(
            self.validator,
            cache_ttl_seconds=self.config.authorizer_cache_ttl_seconds,
            cache=DecisionCache(max_entries=self.config.authorizer_cache_max_entries),
            metrics=self.metrics,
        )
        self.usage_plans = usage_plans or UsagePlanRegistry.from_config(self.config)

        self.success_queue = success_queue or build_queue(self.config, "success_queue", self.faults)
        self.failure_queue = failure_queue or build_queue(self.config, "failure_queue", self.faults)
        self.dispatcher = dispatcher or OutcomeDispatcher(
            self.success_queue,
            self.failure_queue,
            handler or load_handler(self.config.primary_handler),
            retry_config=RetryConfig(
                max_attempts=self.config.enqueue_max_attempts,
                base_delay=self.config.enqueue_base_delay,
                max_delay=self.config.enqueue_max_delay,
            ),
            fault_reporter=self.faults,
            metrics=self.metrics,
        )

        self.admission = AdmissionMiddleware(self.usage_plans, self.authorizer, self.faults, self.metrics)
        self._setup_gateway_routes()

    async def startup(self):
        await self.success_queue.start()
        await self.failure_queue.start()
        await self.usage_plans.counter.start()

    async def shutdown(self):
        # Let outcomes of finished requests reach their queues before closing them.
        await self.dispatcher.drain()
        await self.usage_plans.counter.stop()
        await self.success_queue.stop()
        await self.failure_queue.stop()
        await self.validator.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        success = await self.success_queue.stats()
        failure = await self.failure_queue.stats()
        dependencies = {
            "success_queue": f"{success['visible']} visible",
            "failure_queue": f"{failure['visible']} visible",
        }
        breaker = getattr(self.validator, "circuit_breaker", None)
        if breaker is not None:
            dependencies["token_backend"] = breaker.state.value
        return dependencies

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "gateway",
                "message": "Request Pipeline - Gateway",
                "version": "1.0.0"
            }

        @self.app.get("/new/route/{date}")
        async def invoke_primary(date: str, request: Request):
            """Admit the request and return the primary unit's result."""
            admitted = await self.admission.admit(request)

            event = InvocationEvent(
                request_id=request_id_var.get() or set_request_id(),
                date=date,
                principal_id=admitted.principal_id,
                api_key_id=admitted.api_key_id,
            )

            started = time.time()
            status = "success"
            try:
                return await self.dispatcher.invoke(event, timeout=self.config.gateway_timeout_seconds)
            except ExecutionTimeout:
                status = "timeout"
                raise
            except ExecutionError:
                status = "error"
                raise
            finally:
                self.metrics.observe_histogram(
                    "execution_duration_seconds",
                    time.time() - started,
                    status=status
                )


def create_app(**kwargs):
    """Create the gateway FastAPI application."""
    return GatewayService(**kwargs).app


if __name__ == "__main__":
    GatewayService().run()
