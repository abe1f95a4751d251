"""
Employee record model.
"""

from typing import Any, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Record(BaseModel):
    """One persisted employee record.

    ``(employee_id, employee_name)`` is the primary key; the secondary index
    is keyed by ``(employee_age, employee_designation)``. All attributes are
    stored as strings.
    """

    model_config = ConfigDict(frozen=True)

    employee_id: str = Field(min_length=1)
    employee_name: str = Field(min_length=1)
    employee_age: str = Field(min_length=1)
    employee_designation: str = Field(min_length=1)

    @field_validator("*", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def key(self) -> Tuple[str, str]:
        return (self.employee_id, self.employee_name)

    @property
    def index_key(self) -> Tuple[str, str]:
        return (self.employee_age, self.employee_designation)
