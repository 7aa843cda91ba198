"""
TypeCheckPredicate - the CAST(field AS type) IS NOT NULL check.
"""

from datetime import date, datetime
from typing import Any, Mapping

from .base import BasePredicate, ConstraintViolation


def _cast_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def _cast_bool(value: Any) -> bool:
    # "False" must not become True
    if isinstance(value, str):
        if value.lower() in ("true", "1", "yes"):
            return True
        if value.lower() in ("false", "0", "no"):
            return False
        raise ValueError(f"Cannot parse '{value}' as boolean")
    return bool(value)


class TypeCheckPredicate(BasePredicate):
    """
    Holds when a field's value can be cast to the expected type.

    Supported types: int, float, str, bool, timestamp (and their long names).

    Parameters:
    - expected_type: Target type name (required)
    - coerce: Accept values that cast successfully, not only exact instances (default True)
    - nullable: Whether None passes (default True; set False for CAST(...) IS NOT NULL)
    """

    TYPE_MAPPING = {
        "integer": int,
        "int": int,
        "decimal": float,
        "float": float,
        "double": float,
        "string": str,
        "str": str,
        "boolean": bool,
        "bool": bool,
        "timestamp": datetime,
        "datetime": datetime,
    }

    def __init__(self, field_name: str, parameters: dict[str, Any] | None = None):
        super().__init__(field_name, parameters)

        expected_type = self.parameters.get("expected_type")
        if not expected_type:
            raise ValueError("type_check requires 'expected_type' parameter")

        self.expected_type = self.TYPE_MAPPING.get(str(expected_type).lower())
        if not self.expected_type:
            raise ValueError(f"Unsupported type: {expected_type}")

        self.coerce = self.parameters.get("coerce", True)
        self.nullable = self.parameters.get("nullable", True)

    def check(self, value: Any, record: Mapping[str, Any]) -> None:
        if value is None:
            if self.nullable:
                return
            raise ConstraintViolation(
                rule_type="type_check",
                field_name=self.field_name,
                message=f"Value is null, expected {self.expected_type.__name__}"
            )

        if isinstance(value, self.expected_type) and not (
            self.expected_type is int and isinstance(value, bool)
        ):
            return

        if not self.coerce:
            raise ConstraintViolation(
                rule_type="type_check",
                field_name=self.field_name,
                message=f"Expected {self.expected_type.__name__}, got {type(value).__name__}"
            )

        try:
            self._coerce(value)
        except (ValueError, TypeError, OverflowError) as e:
            raise ConstraintViolation(
                rule_type="type_check",
                field_name=self.field_name,
                message=f"Cannot cast {type(value).__name__} to {self.expected_type.__name__}: {e}"
            )

    def _coerce(self, value: Any) -> Any:
        if self.expected_type is datetime:
            return _cast_timestamp(value)
        if self.expected_type is bool:
            return _cast_bool(value)
        return self.expected_type(value)

    @property
    def rule_type(self) -> str:
        return "type_check"
