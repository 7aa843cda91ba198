"""
RegexPredicate - pattern match check.
"""

import re
from re import Pattern
from typing import Any, Mapping

from .base import BasePredicate, ConstraintViolation


class RegexPredicate(BasePredicate):
    """
    Holds when the field's string form matches a regular expression.

    Parameters:
    - pattern: Regular expression (string or compiled Pattern)
    - flags: Optional regex flags
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        pattern = self.parameters.get("pattern")
        if not pattern:
            raise ValueError("regex requires 'pattern' parameter")

        flags = self.parameters.get("flags", 0)

        if isinstance(pattern, Pattern):
            self.pattern: Pattern = pattern
        elif isinstance(pattern, str):
            try:
                self.pattern = re.compile(pattern, flags)
            except re.error as e:
                raise ValueError(f"Invalid regex pattern: {e}")
        else:
            raise ValueError(f"Pattern must be string or compiled Pattern, got {type(pattern)}")

    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        if value is None:
            return

        value_str = value if isinstance(value, str) else str(value)

        if not self.pattern.match(value_str):
            raise ConstraintViolation(
                rule_type="regex",
                field_name=self.field_name,
                message=f"Value '{value_str}' does not match pattern '{self.pattern.pattern}'"
            )

    @property
    def rule_type(self) -> str:
        return "regex"
