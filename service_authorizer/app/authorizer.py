"""
Token authorizer with a TTL-bound decision cache.
"""

import time
from typing import Optional

from shared.errors import AuthBackendError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .cache import AuthDecision, DecisionCache, hash_credential
from .validation.token_validator import TokenValidator


class TokenAuthorizer:
    """Decides allow/deny for a raw ``Authorization`` header value.

    With ``cache_ttl_seconds > 0`` a decision is reused for that long without
    calling the validator again. ``0`` disables caching so time-boxed tokens
    are re-validated on every call. Backend errors propagate as
    ``AuthBackendError`` and are never cached.
    """

    def __init__(self,
                 validator: TokenValidator,
                 cache_ttl_seconds: float = 0,
                 cache: Optional[DecisionCache] = None,
                 metrics: Optional[MetricsCollector] = None):
        if cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        self.validator = validator
        self.cache_ttl_seconds = cache_ttl_seconds
        self.cache = cache if cache is not None else DecisionCache()
        self.metrics = metrics
        self.logger = get_logger("authorizer.token")

    @property
    def caching_enabled(self) -> bool:
        return self.cache_ttl_seconds > 0

    async def authorize(self, authorization: Optional[str]) -> AuthDecision:
        token = self._parse(authorization)
        if token is None:
            self._record_decision("deny")
            return AuthDecision(
                credential_hash=hash_credential(authorization or ""),
                allowed=False,
                reason="Unparseable credential",
            )

        credential_hash = hash_credential(token)

        if self.caching_enabled:
            cached = self.cache.get(credential_hash)
            if cached is not None:
                self._record_cache("hit")
                self._record_decision("allow" if cached.allowed else "deny")
                return cached
            self._record_cache("miss")

        decision = await self._validate(token, credential_hash)

        if self.caching_enabled:
            decision = self.cache.put(decision, self.cache_ttl_seconds)
            if self.metrics is not None:
                self.metrics.set_gauge("auth_cache_entries", len(self.cache))

        self._record_decision("allow" if decision.allowed else "deny")
        return decision

    async def _validate(self, token: str, credential_hash: str) -> AuthDecision:
        started = time.time()
        try:
            response = await self.validator.verify_token(token)
        except AuthBackendError:
            self._record_decision("error")
            raise
        except Exception as e:
            self._record_decision("error")
            raise AuthBackendError(
                "Token validation backend failed",
                details={"error": str(e), "error_type": type(e).__name__}
            ) from e

        self.logger.debug(
            "Token validated",
            allowed=response.valid,
            principal_id=response.principal_id,
            duration_ms=round((time.time() - started) * 1000, 2)
        )

        if not response.valid:
            self.logger.info("Token denied", reason=response.error)

        return AuthDecision(
            credential_hash=credential_hash,
            allowed=response.valid,
            principal_id=response.principal_id if response.valid else None,
            reason=response.error,
        )

    @staticmethod
    def _parse(authorization: Optional[str]) -> Optional[str]:
        """Extract the bearer token; ``None`` when nothing usable is present."""
        if not authorization:
            return None
        value = authorization.strip()
        scheme, _, rest = value.partition(" ")
        if scheme.lower() == "bearer":
            value = rest.strip()
        if not value or any(ch.isspace() for ch in value):
            return None
        return value

    def _record_decision(self, decision: str):
        if self.metrics is not None:
            self.metrics.increment_counter("auth_decisions_total", decision=decision)

    def _record_cache(self, result: str):
        if self.metrics is not None:
            self.metrics.increment_counter("auth_cache_total", result=result)
