"""
API keys, usage plans and per-key request quotas.
"""

import abc
import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as redis

from shared.config import BaseConfig
from shared.errors import ApiKeyError, QuotaExceededError
from shared.logging import get_logger


@dataclass(frozen=True)
class UsagePlan:
    """Request quota shared by every key attached to the plan."""
    name: str
    quota_limit: int
    quota_period_seconds: int


@dataclass(frozen=True)
class ApiKeyIdentity:
    """A recognized API key. ``key_id`` is safe to log; the raw key is not kept."""
    key_id: str
    plan: UsagePlan


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    used: int
    limit: int
    reset_in_seconds: int


def api_key_id(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


class QuotaCounter(abc.ABC):
    """Fixed-window request counter per API key."""

    @abc.abstractmethod
    async def hit(self, key_id: str, plan: UsagePlan) -> QuotaStatus:
        """Count one request and report whether it fits the plan's quota."""

    async def start(self) -> None:
        """Open backend connections."""

    async def stop(self) -> None:
        """Close backend connections."""


class InMemoryQuotaCounter(QuotaCounter):
    """Quota counter held in process memory."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._windows: Dict[str, Tuple[int, int]] = {}

    async def hit(self, key_id: str, plan: UsagePlan) -> QuotaStatus:
        now = self._clock()
        window = int(now // plan.quota_period_seconds)
        reset_in = int((window + 1) * plan.quota_period_seconds - now)

        async with self._lock:
            current_window, count = self._windows.get(key_id, (window, 0))
            if current_window != window:
                count = 0
            if count >= plan.quota_limit:
                return QuotaStatus(False, count, plan.quota_limit, reset_in)
            count += 1
            self._windows[key_id] = (window, count)

        return QuotaStatus(True, count, plan.quota_limit, reset_in)


class RedisQuotaCounter(QuotaCounter):
    """Distributed quota counter using Redis.

    Redis outages fail open: admission keeps working and the error is logged.
    """

    def __init__(self, redis_url: str, prefix: str = "quota"):
        self.redis_url = redis_url
        self.prefix = prefix
        self.logger = get_logger("gateway.quota")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def stop(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _make_key(self, key_id: str, window: int) -> str:
        return f"{self.prefix}:{key_id}:{window}"

    async def hit(self, key_id: str, plan: UsagePlan) -> QuotaStatus:
        now = time.time()
        window = int(now // plan.quota_period_seconds)
        reset_in = int((window + 1) * plan.quota_period_seconds - now)
        key = self._make_key(key_id, window)

        try:
            redis_client = await self._get_redis()
            async with redis_client.pipeline(transaction=True) as pipeline:
                pipeline.incr(key)
                pipeline.expire(key, plan.quota_period_seconds)
                count, _ = await pipeline.execute()
        except Exception as e:
            self.logger.error("Quota check error", key_id=key_id, error=str(e))
            return QuotaStatus(True, 0, plan.quota_limit, reset_in)

        count = int(count)
        if count > plan.quota_limit:
            return QuotaStatus(False, count - 1, plan.quota_limit, reset_in)
        return QuotaStatus(True, count, plan.quota_limit, reset_in)


class UsagePlanRegistry:
    """Admits requests by API key and usage plan quota."""

    def __init__(self,
                 api_keys: Dict[str, str],
                 plans: Dict[str, UsagePlan],
                 counter: Optional[QuotaCounter] = None):
        missing = sorted(set(api_keys.values()) - set(plans))
        if missing:
            raise ValueError(f"API keys reference unknown usage plans: {missing}")
        self._keys = {api_key_id(key): plans[plan] for key, plan in api_keys.items()}
        self.plans = plans
        self.counter = counter or InMemoryQuotaCounter()
        self.logger = get_logger("gateway.usage_plans")

    @classmethod
    def from_config(cls, config: BaseConfig, counter: Optional[QuotaCounter] = None) -> "UsagePlanRegistry":
        plans = {
            name: UsagePlan(name, settings.quota_limit, settings.quota_period_seconds)
            for name, settings in config.usage_plans.items()
        }
        if counter is None and config.quota_backend == "redis":
            counter = RedisQuotaCounter(config.redis_url, prefix=config.resource_name("quota"))
        return cls(config.api_keys, plans, counter)

    def identify(self, api_key: Optional[str]) -> ApiKeyIdentity:
        if not api_key:
            raise ApiKeyError("API key required")
        key_id = api_key_id(api_key)
        plan = self._keys.get(key_id)
        if plan is None:
            self.logger.info("Unknown API key", key_id=key_id)
            raise ApiKeyError("Invalid API key")
        return ApiKeyIdentity(key_id=key_id, plan=plan)

    async def admit(self, api_key: Optional[str]) -> ApiKeyIdentity:
        identity = self.identify(api_key)
        status = await self.counter.hit(identity.key_id, identity.plan)
        if not status.allowed:
            self.logger.warning(
                "Usage plan quota exceeded",
                key_id=identity.key_id,
                plan=identity.plan.name,
                used=status.used,
                limit=status.limit
            )
            raise QuotaExceededError(details={
                "plan": identity.plan.name,
                "limit": status.limit,
                "retry_after": status.reset_in_seconds,
            })
        return identity
