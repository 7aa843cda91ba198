"""
ConstraintResult model representing the outcome of evaluating one record (ephemeral).
"""

from pydantic import BaseModel, Field, field_validator


class ConstraintResult(BaseModel):
    """
    Outcome of evaluating a record against a constraint set.

    Attributes:
        passed: True when no drop/fail constraint was violated
        violated: Every violated drop/fail constraint, in declaration order
        warnings: Violated warn-policy constraints (row is kept)
        errors: Predicate error messages keyed by constraint name
    """

    passed: bool
    violated: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    @field_validator("violated")
    @classmethod
    def check_passed_consistency(cls, v, info):
        """Validate that passed=True implies violated is empty."""
        if info.data.get("passed") and len(v) > 0:
            raise ValueError("passed=True but violated is not empty")
        return v
