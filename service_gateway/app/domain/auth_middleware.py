"""
Admission middleware for Gateway: API key, quota, then token authorizer.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from shared.errors import AuthBackendError, AuthFault, AuthenticationError, PipelineException
from shared.faults import FaultReporter
from shared.logging import get_logger, set_principal
from shared.metrics import MetricsCollector
from service_authorizer.app import TokenAuthorizer
from .usage_plans import UsagePlanRegistry


@dataclass(frozen=True)
class AdmittedRequest:
    """Identity established for a request that passed every gate."""
    api_key_id: str
    usage_plan: str
    principal_id: Optional[str]


class AdmissionMiddleware:
    """Gates requests in a fixed order.

    The API key and its usage plan quota are checked first, so a request with
    a missing or invalid key never reaches the token authorizer.
    """

    def __init__(self,
                 usage_plans: UsagePlanRegistry,
                 authorizer: TokenAuthorizer,
                 faults: FaultReporter,
                 metrics: Optional[MetricsCollector] = None):
        self.usage_plans = usage_plans
        self.authorizer = authorizer
        self.faults = faults
        self.metrics = metrics
        self.logger = get_logger("gateway.admission")

    async def admit(self, request: Request) -> AdmittedRequest:
        try:
            return await self._admit(request)
        except PipelineException as e:
            if self.metrics is not None:
                self.metrics.increment_counter("gateway_rejections_total", reason=e.code)
            raise

    async def _admit(self, request: Request) -> AdmittedRequest:
        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        identity = await self.usage_plans.admit(api_key)

        authorization = request.headers.get("Authorization")
        if not authorization:
            raise AuthenticationError("Authorization header required")

        try:
            decision = await self.authorizer.authorize(authorization)
        except AuthBackendError as e:
            # Fail closed, but as a fault rather than an ordinary rejection.
            self.faults.report(
                "auth_backend_error",
                "Authorizer could not decide; request rejected",
                key_id=identity.key_id,
                path=request.url.path,
                **e.details
            )
            raise

        if not decision.allowed:
            self.logger.info("Request denied by authorizer", key_id=identity.key_id, reason=decision.reason)
            raise AuthFault(details={"reason": decision.reason} if decision.reason else None)

        set_principal(decision.principal_id)
        admitted = AdmittedRequest(
            api_key_id=identity.key_id,
            usage_plan=identity.plan.name,
            principal_id=decision.principal_id,
        )
        request.state.admitted = admitted

        self.logger.debug(
            "Request admitted",
            key_id=identity.key_id,
            plan=identity.plan.name,
            principal_id=decision.principal_id,
            cached_decision=decision.cached
        )
        return admitted
