"""
RequiredFieldPredicate - the IS NOT NULL check.
"""

from typing import Any, Mapping

from .base import BasePredicate, ConstraintViolation


class RequiredFieldPredicate(BasePredicate):
    """
    Holds when a field is present and not null.

    Empty or whitespace-only strings also violate unless allow_empty_string is set.
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)
        self.allow_empty_string = self.parameters.get("allow_empty_string", False)

    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        if self.field_name not in record:
            raise ConstraintViolation(
                rule_type="required_field",
                field_name=self.field_name,
                message="Field is missing from record"
            )

        if value is None:
            raise ConstraintViolation(
                rule_type="required_field",
                field_name=self.field_name,
                message="Field value is null"
            )

        if not self.allow_empty_string and isinstance(value, str) and value.strip() == "":
            raise ConstraintViolation(
                rule_type="required_field",
                field_name=self.field_name,
                message="Field value is empty string"
            )

    @property
    def rule_type(self) -> str:
        return "required_field"
