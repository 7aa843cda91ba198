"""
Base predicate interface for all constraint rule types.

A predicate inspects one field of a record and raises ConstraintViolation when
the record does not satisfy it.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping


class ConstraintViolation(Exception):
    """Raised when a constraint predicate is not satisfied."""

    def __init__(self, rule_type: str, field_name: str, message: str):
        self.rule_type = rule_type
        self.field_name = field_name
        self.message = message
        super().__init__(f"[{rule_type}] {field_name}: {message}")


class BasePredicate(ABC):
    """
    Abstract base class for constraint predicates.

    Each subclass implements one rule type
    (required_field, type_check, range, regex, custom).
    """

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        """
        Initialize predicate.

        Args:
            field_name: Name of the field the predicate reads
            parameters: Rule-specific parameters (e.g., min/max for range)
        """
        self.field_name = field_name
        self.parameters = parameters or {}

    @abstractmethod
    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        """
        Check a value against this predicate.

        Args:
            value: The field value
            record: The entire record (for context-dependent predicates)

        Raises:
            ConstraintViolation: If the predicate does not hold
        """

    @property
    @abstractmethod
    def rule_type(self) -> str:
        """Return the rule type identifier."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(field={self.field_name}, params={self.parameters})"
