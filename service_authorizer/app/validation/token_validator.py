"""
Bearer token validation against a remote JWKS.
"""

from __future__ import annotations

import abc
import asyncio
import time
from typing import Any, Dict, Iterable, Optional, Set

import httpx
from jose import JWTError, jwt
from pydantic import BaseModel

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import AuthBackendError
from shared.logging import get_logger


class TokenVerificationResponse(BaseModel):
    """Result of validating one token."""
    valid: bool
    principal_id: Optional[str] = None
    claims: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class TokenValidator(abc.ABC):
    """Validation backend used by the token authorizer.

    ``verify_token`` returns ``valid=False`` for tokens it rejects and raises
    ``AuthBackendError`` when it cannot decide.
    """

    @abc.abstractmethod
    async def verify_token(self, token: str) -> TokenVerificationResponse:
        ...

    async def close(self) -> None:
        """Release backend resources."""


class JWKSTokenValidator(TokenValidator):
    """Validates JWTs against a remote JWKS endpoint."""

    def __init__(
        self,
        jwks_url: str,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        *,
        required_scope: Optional[str] = None,
        refresh_interval: int = 300,
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.audience = audience
        self.issuer = issuer
        self.required_scope = required_scope
        self.refresh_interval = refresh_interval
        self.logger = get_logger("authorizer.jwks")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            name="jwks"
        )

        self._keys: Optional[Iterable[Dict[str, Any]]] = None
        self._last_refresh: float = 0.0
        self._lock = asyncio.Lock()
        self._client = client or httpx.AsyncClient(timeout=http_timeout)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def verify_token(self, token: str) -> TokenVerificationResponse:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            return TokenVerificationResponse(valid=False, error=f"Malformed token: {exc}")

        kid = header.get("kid")
        if not isinstance(kid, str):
            return TokenVerificationResponse(valid=False, error="JWT header missing key id (kid)")

        key_data = await self._get_key(kid)
        if not key_data:
            return TokenVerificationResponse(valid=False, error=f"Signing key not found for kid {kid}")

        algorithms = [key_data.get("alg", "RS256")]
        options: Dict[str, Any] = {"verify_aud": self.audience is not None}

        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=algorithms,
                audience=self.audience,
                issuer=self.issuer,
                options=options,
            )
        except JWTError as exc:
            return TokenVerificationResponse(valid=False, error=f"JWT validation failed: {exc}")

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return TokenVerificationResponse(valid=False, error="JWT missing subject claim")

        if self.required_scope and self.required_scope not in self._extract_scopes(claims):
            return TokenVerificationResponse(
                valid=False,
                error=f"Missing required scope '{self.required_scope}'",
            )

        return TokenVerificationResponse(valid=True, principal_id=subject, claims=claims)

    async def _get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        """Fetch the JWKS and return the key matching the provided kid."""
        await self._refresh_keys(force=False)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key

        # Key might be rotated; refresh once more eagerly.
        await self._refresh_keys(force=True)
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    async def _refresh_keys(self, *, force: bool) -> None:
        """Refresh the JWKS if the cache is stale."""
        if not force and self._keys is not None and (time.time() - self._last_refresh) < self.refresh_interval:
            return

        async with self._lock:
            if not force and self._keys is not None and (time.time() - self._last_refresh) < self.refresh_interval:
                return

            try:
                payload = await self.circuit_breaker.call(self._fetch_jwks)
            except CircuitBreakerOpenException as exc:
                raise AuthBackendError("JWKS endpoint circuit open", details={"error": str(exc)}) from exc
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.error("JWKS fetch failed", url=self.jwks_url, error=str(exc))
                raise AuthBackendError("JWKS endpoint unavailable", details={"error": str(exc)}) from exc

            keys = payload.get("keys") if isinstance(payload, dict) else None
            if not isinstance(keys, list):
                raise AuthBackendError("JWKS response missing 'keys' array")

            self._keys = keys
            self._last_refresh = time.time()

    async def _fetch_jwks(self) -> Any:
        response = await self._client.get(self.jwks_url)
        response.raise_for_status()
        return response.json()

    def _extract_scopes(self, claims: Dict[str, Any]) -> Set[str]:
        """Collect scopes and roles from common token structures."""
        scopes: Set[str] = set()

        scope = claims.get("scope")
        if isinstance(scope, str):
            scopes.update(scope.split())

        direct_roles = claims.get("roles")
        if isinstance(direct_roles, list):
            scopes.update(role for role in direct_roles if isinstance(role, str))

        realm_access = claims.get("realm_access", {})
        if isinstance(realm_access, dict):
            realm_roles = realm_access.get("roles")
            if isinstance(realm_roles, list):
                scopes.update(role for role in realm_roles if isinstance(role, str))

        return scopes
