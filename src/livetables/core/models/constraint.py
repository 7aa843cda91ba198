"""
Constraint model: a named predicate over a record plus a violation policy.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class ViolationPolicy(str, Enum):
    """What happens to a row that violates a constraint."""

    DROP = "drop"
    FAIL = "fail"
    WARN = "warn"


class Constraint(BaseModel):
    """
    A configurable constraint attached to a stage at definition time.

    Attributes:
        name: Constraint identifier reported on violation ("has_customer")
        rule_type: "required_field", "type_check", "range", "regex" or "custom"
        field_name: Field the predicate reads
        parameters: Rule-specific params (e.g. {"min": 0} or {"expected_type": "timestamp"})
        policy: drop (exclude row), fail (abort the stage run) or warn (keep row, count it)
        enabled: Disabled constraints are ignored
    """

    name: str = Field(..., min_length=1)
    rule_type: Literal["required_field", "type_check", "range", "regex", "custom"]
    field_name: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)
    policy: ViolationPolicy = ViolationPolicy.DROP
    enabled: bool = True

    class Config:
        json_schema_extra = {
            "example": {
                "name": "has_customer",
                "rule_type": "required_field",
                "field_name": "CustomerID",
                "parameters": {},
                "policy": "drop",
                "enabled": True,
            }
        }
