"""
CustomPredicate - arbitrary boolean predicate supplied as a callable.
"""

from typing import Any, Mapping

from .base import BasePredicate, ConstraintViolation


class CustomPredicate(BasePredicate):
    """
    Holds when a user-supplied function returns a truthy value.

    Parameters:
    - predicate: Callable taking (value, record) and returning bool
    - error_message: Optional message used on violation

    A predicate that raises is treated as returning False.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        self.predicate = self.parameters.get("predicate")
        if not self.predicate:
            raise ValueError("custom requires 'predicate' parameter")
        if not callable(self.predicate):
            raise ValueError("predicate must be callable")

        self.error_message = self.parameters.get("error_message", "Custom predicate failed")

    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        try:
            holds = self.predicate(value, record)
        except Exception as e:
            raise ConstraintViolation(
                rule_type="custom",
                field_name=self.field_name,
                message=f"{self.error_message}: {e}"
            )

        if not holds:
            raise ConstraintViolation(
                rule_type="custom",
                field_name=self.field_name,
                message=self.error_message
            )

    @property
    def rule_type(self) -> str:
        return "custom"
