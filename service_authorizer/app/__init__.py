"""
Token authorizer for the Request Pipeline.

Gates every gateway request with an allow/deny decision for the bearer
credential:

- app.authorizer: ``TokenAuthorizer`` (parsing, caching, error mapping)
- app.cache: ``DecisionCache`` keyed by a SHA-256 hash of the credential
- app.validation: validation backends (JWKS)

Design notes:
- A deny and an undecidable result are different: backend failures raise
  ``AuthBackendError`` so the gateway can fail closed and report a fault.
- The decision cache is the only cross-request mutable state in the
  pipeline; it is lock-protected and evicts lazily.
"""

from .authorizer import TokenAuthorizer
from .cache import AuthDecision, DecisionCache, hash_credential
from .validation import JWKSTokenValidator, TokenValidator, TokenVerificationResponse

__all__ = [
    "AuthDecision",
    "DecisionCache",
    "JWKSTokenValidator",
    "TokenAuthorizer",
    "TokenValidator",
    "TokenVerificationResponse",
    "hash_credential",
]
