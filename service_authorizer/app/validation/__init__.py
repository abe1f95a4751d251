"""
Token validation backends.

Backends return a ``TokenVerificationResponse`` for tokens they can judge
and raise ``AuthBackendError`` when they cannot reach a decision (identity
provider unreachable, malformed JWKS). Only standard JOSE/JWT behavior is
assumed so the identity provider can be switched with configuration.
"""

from .token_validator import JWKSTokenValidator, TokenValidator, TokenVerificationResponse

__all__ = ["JWKSTokenValidator", "TokenValidator", "TokenVerificationResponse"]
