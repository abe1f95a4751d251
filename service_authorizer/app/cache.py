"""
Expiring cache of authorizer decisions.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional


def hash_credential(credential: str) -> str:
    """Cache key for a credential; raw tokens are never held in memory."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AuthDecision:
    """Allow/deny decision for one credential."""
    credential_hash: str
    allowed: bool
    principal_id: Optional[str] = None
    reason: Optional[str] = None
    expires_at: Optional[float] = None
    cached: bool = False


class DecisionCache:
    """Thread-safe map of credential hash to decision.

    Entries are evicted lazily: on read once expired, and on write when the
    cache is full (expired entries first, then the oldest).
    """

    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, AuthDecision]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, credential_hash: str) -> Optional[AuthDecision]:
        with self._lock:
            decision = self._entries.get(credential_hash)
            if decision is None:
                return None
            if decision.expires_at is not None and decision.expires_at <= self._clock():
                del self._entries[credential_hash]
                return None
            return decision

    def put(self, decision: AuthDecision, ttl_seconds: float) -> AuthDecision:
        """Store ``decision`` for ``ttl_seconds`` and return the stored copy."""
        stored = AuthDecision(
            credential_hash=decision.credential_hash,
            allowed=decision.allowed,
            principal_id=decision.principal_id,
            reason=decision.reason,
            expires_at=self._clock() + ttl_seconds,
            cached=True,
        )
        with self._lock:
            self._entries.pop(decision.credential_hash, None)
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[decision.credential_hash] = stored
        return stored

    def invalidate(self, credential_hash: str) -> bool:
        with self._lock:
            return self._entries.pop(credential_hash, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, d in self._entries.items() if d.expires_at is not None and d.expires_at <= now]:
            del self._entries[key]
        while len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)
