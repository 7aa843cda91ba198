"""
RangePredicate - numeric bounds check.
"""

from typing import Any, Mapping

from .base import BasePredicate, ConstraintViolation


class RangePredicate(BasePredicate):
    """
    Holds when a numeric field lies within the configured bounds.

    Parameters:
    - min / max: Inclusive bounds
    - min_exclusive / max_exclusive: Exclusive bounds
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.min_value = self.parameters.get("min")
        self.max_value = self.parameters.get("max")
        self.min_exclusive = self.parameters.get("min_exclusive")
        self.max_exclusive = self.parameters.get("max_exclusive")

        if all(v is None for v in [self.min_value, self.max_value, self.min_exclusive, self.max_exclusive]):
            raise ValueError("range requires at least one of: min, max, min_exclusive, max_exclusive")

    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        # Null handling belongs to required_field
        if value is None:
            return

        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ConstraintViolation(
                rule_type="range",
                field_name=self.field_name,
                message=f"Value must be numeric, got {type(value).__name__}"
            )

        if self.min_value is not None and value < self.min_value:
            raise ConstraintViolation(
                rule_type="range",
                field_name=self.field_name,
                message=f"Value {value} is less than minimum {self.min_value}"
            )

        if self.min_exclusive is not None and value <= self.min_exclusive:
            raise ConstraintViolation(
                rule_type="range",
                field_name=self.field_name,
                message=f"Value {value} must be greater than {self.min_exclusive}"
            )

        if self.max_value is not None and value > self.max_value:
            raise ConstraintViolation(
                rule_type="range",
                field_name=self.field_name,
                message=f"Value {value} exceeds maximum {self.max_value}"
            )

        if self.max_exclusive is not None and value >= self.max_exclusive:
            raise ConstraintViolation(
                rule_type="range",
                field_name=self.field_name,
                message=f"Value {value} must be less than {self.max_exclusive}"
            )

    @property
    def rule_type(self) -> str:
        return "range"
