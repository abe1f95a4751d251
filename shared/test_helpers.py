"""
Test helper functions and factory methods for the Request Pipeline.
"""

import base64
import time
import uuid
from typing import Any, Dict, List, Optional

from jose import jwt

from shared.faults import FaultEvent
from shared.queues import FailureOutcome, InMemoryOutcomeQueue, InvocationEvent, SuccessOutcome
from service_authorizer.app import TokenValidator, TokenVerificationResponse


class PipelineDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def make_event(date: str = "2024-05-01", **overrides) -> InvocationEvent:
        values = {
            "request_id": str(uuid.uuid4()),
            "date": date,
            "principal_id": "user-1",
            "api_key_id": "key-1",
        }
        values.update(overrides)
        return InvocationEvent(**values)

    @staticmethod
    def make_success(payload: Any = None, event: Optional[InvocationEvent] = None) -> SuccessOutcome:
        return SuccessOutcome(
            request_context=event or PipelineDataFactory.make_event(),
            payload=payload,
        )

    @staticmethod
    def make_failure(error_type: str = "ValidationError",
                     error_detail: str = "bad date",
                     event: Optional[InvocationEvent] = None) -> FailureOutcome:
        return FailureOutcome(
            request_context=event or PipelineDataFactory.make_event(),
            error_type=error_type,
            error_detail=error_detail,
        )

    @staticmethod
    def make_employee(employee_id: str = "E1",
                      employee_name: str = "Ada",
                      employee_age: Any = "36",
                      employee_designation: str = "Engineer") -> Dict[str, Any]:
        return {
            "employee_id": employee_id,
            "employee_name": employee_name,
            "employee_age": employee_age,
            "employee_designation": employee_designation,
        }


class MockTokenGenerator:
    """Generate HS256 tokens and the matching JWKS document."""

    def __init__(self,
                 issuer: str = "http://localhost:8080/realms/pipeline",
                 secret: str = "mock-secret-for-tests",
                 kid: str = "test-key"):
        self.issuer = issuer
        self.secret = secret
        self.kid = kid

    def jwks(self) -> Dict[str, Any]:
        encoded = base64.urlsafe_b64encode(self.secret.encode("utf-8")).rstrip(b"=").decode("ascii")
        return {"keys": [{"kty": "oct", "kid": self.kid, "alg": "HS256", "k": encoded}]}

    def generate_access_token(self,
                              subject: Optional[str] = "user-1",
                              expires_in: int = 3600,
                              audience: Optional[str] = None,
                              roles: Optional[List[str]] = None,
                              kid: Optional[str] = None) -> str:
        now = int(time.time())
        payload: Dict[str, Any] = {
            "iss": self.issuer,
            "iat": now,
            "exp": now + expires_in,
            "scope": "openid profile",
            "realm_access": {"roles": roles or []},
        }
        if subject is not None:
            payload["sub"] = subject
        if audience is not None:
            payload["aud"] = audience
        return jwt.encode(payload, self.secret, algorithm="HS256", headers={"kid": kid or self.kid})


class StubTokenValidator(TokenValidator):
    """Validator that allows a fixed token to principal map."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None, error: Optional[Exception] = None):
        self.tokens = tokens or {}
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    async def verify_token(self, token: str) -> TokenVerificationResponse:
        self.calls.append(token)
        if self.error is not None:
            raise self.error
        principal = self.tokens.get(token)
        if principal is None:
            return TokenVerificationResponse(valid=False, error="Unknown token")
        return TokenVerificationResponse(valid=True, principal_id=principal, claims={"sub": principal})

    async def close(self) -> None:
        self.closed = True


class FaultProbe:
    """Fault sink that records every event it receives."""

    def __init__(self):
        self.events: List[FaultEvent] = []

    def __call__(self, event: FaultEvent) -> None:
        self.events.append(event)

    def of_type(self, fault_type: str) -> List[FaultEvent]:
        return [e for e in self.events if e.fault_type == fault_type]


class FlakyQueue(InMemoryOutcomeQueue):
    """In-memory queue whose first ``failures`` enqueues raise."""

    def __init__(self, name: str, failures: int, **kwargs):
        super().__init__(name, **kwargs)
        self.failures = failures
        self.attempts = 0

    async def enqueue(self, outcome):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"{self.name} unavailable")
        return await super().enqueue(outcome)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


data_factory = PipelineDataFactory()
mock_token_generator = MockTokenGenerator()
