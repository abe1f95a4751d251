"""
Domain utilities for the Gateway Service.

Request admission helpers that do not belong to transport-specific layers.
"""

from .auth_middleware import AdmissionMiddleware, AdmittedRequest
from .usage_plans import (
    ApiKeyIdentity,
    InMemoryQuotaCounter,
    QuotaCounter,
    QuotaStatus,
    RedisQuotaCounter,
    UsagePlan,
    UsagePlanRegistry,
    api_key_id,
)

__all__ = [
    "AdmissionMiddleware",
    "AdmittedRequest",
    "ApiKeyIdentity",
    "InMemoryQuotaCounter",
    "QuotaCounter",
    "QuotaStatus",
    "RedisQuotaCounter",
    "UsagePlan",
    "UsagePlanRegistry",
    "api_key_id",
]
