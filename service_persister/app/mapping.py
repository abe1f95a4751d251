"""
Mapping from queued outcomes to employee records.
"""

from typing import Any, Dict, Union

from pydantic import ValidationError as ModelValidationError

from shared.errors import PersistFailure
from shared.queues import FailureOutcome, SuccessOutcome
from .persistence.models import Record

UNKNOWN = "unknown"


def _pick(source: Dict[str, Any], key: str, default: str) -> Any:
    value = source.get(key)
    if value is None or value == "":
        return default
    return value


def record_from_outcome(outcome: Union[SuccessOutcome, FailureOutcome]) -> Record:
    """Derive the record a successful outcome should persist.

    Employee attributes come from the payload, either top-level or under an
    ``"employee"`` key. Missing keys fall back to the request id and date so
    a redelivered outcome always maps to the same primary key.
    """
    if not isinstance(outcome, SuccessOutcome):
        raise PersistFailure(
            "Only successful outcomes can be persisted",
            details={"outcome_id": outcome.outcome_id, "condition": outcome.condition}
        )

    payload = outcome.payload
    source: Dict[str, Any] = {}
    if isinstance(payload, dict):
        nested = payload.get("employee")
        source = nested if isinstance(nested, dict) else payload

    context = outcome.request_context
    try:
        return Record(
            employee_id=_pick(source, "employee_id", context.request_id),
            employee_name=_pick(source, "employee_name", context.date),
            employee_age=_pick(source, "employee_age", UNKNOWN),
            employee_designation=_pick(source, "employee_designation", UNKNOWN),
        )
    except ModelValidationError as e:
        raise PersistFailure(
            "Outcome payload does not describe a valid record",
            details={"outcome_id": outcome.outcome_id, "error": str(e)}
        ) from e
