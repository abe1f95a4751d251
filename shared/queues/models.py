"""
Outcome and queue item models shared by the dispatch and persister services.
"""

import time
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from typing_extensions import Annotated


class InvocationEvent(BaseModel):
    """Immutable view of one gateway request handed to the primary unit."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    date: str
    principal_id: Optional[str] = None
    api_key_id: Optional[str] = None
    received_at: float = Field(default_factory=time.time)


class _OutcomeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    request_context: InvocationEvent
    produced_at: float = Field(default_factory=time.time)

    @property
    def request_id(self) -> str:
        return self.request_context.request_id


class SuccessOutcome(_OutcomeBase):
    """The primary unit returned normally."""

    condition: Literal["Success"] = "Success"
    payload: Any = None


class FailureOutcome(_OutcomeBase):
    """The primary unit raised."""

    condition: Literal["Failure"] = "Failure"
    error_type: str
    error_detail: str


Outcome = Annotated[Union[SuccessOutcome, FailureOutcome], Field(discriminator="condition")]

_outcome_adapter: TypeAdapter = TypeAdapter(Outcome)


def parse_outcome(raw: Union[str, bytes]) -> Union[SuccessOutcome, FailureOutcome]:
    """Decode a serialized outcome into its tagged variant."""
    return _outcome_adapter.validate_json(raw)


def dump_outcome(outcome: Union[SuccessOutcome, FailureOutcome]) -> str:
    return outcome.model_dump_json()


@dataclass
class QueueItem:
    """An outcome in transit, with its delivery metadata."""
    message_id: str
    receipt_handle: str
    outcome: Union[SuccessOutcome, FailureOutcome]
    receive_count: int
    enqueued_at: float
