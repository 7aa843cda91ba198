"""
Source schema declarations.

Parses Spark-style DDL field lists ("InvoiceNo STRING, Quantity FLOAT") and
casts raw connector values to the declared types in permissive mode: a value
that cannot be cast becomes None instead of failing the read.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from livetables.core.errors import SchemaError

SUPPORTED_TYPES = {
    "STRING": str,
    "VARCHAR": str,
    "FLOAT": float,
    "DOUBLE": float,
    "DECIMAL": float,
    "INT": int,
    "INTEGER": int,
    "BIGINT": int,
    "LONG": int,
    "BOOLEAN": bool,
    "TIMESTAMP": datetime,
    "DATE": date,
}

_TRUE_STRINGS = ("true", "1", "yes")
_FALSE_STRINGS = ("false", "0", "no")


@dataclass(frozen=True)
class SchemaField:
    """A declared source field."""

    name: str
    type_name: str

    @property
    def python_type(self) -> type:
        return SUPPORTED_TYPES[self.type_name]


def parse_schema(ddl: str) -> list[SchemaField]:
    """
    Parse a DDL field list into schema fields.

    Args:
        ddl: Comma separated "<name> <TYPE>" pairs

    Returns:
        Ordered list of SchemaField

    Raises:
        SchemaError: If a declaration is malformed, repeated or uses an unknown type
    """
    if not ddl or not ddl.strip():
        raise SchemaError("Schema declaration is empty")

    fields: list[SchemaField] = []
    seen: set[str] = set()

    for declaration in ddl.split(","):
        parts = declaration.split()
        if len(parts) != 2:
            raise SchemaError(f"Malformed field declaration: '{declaration.strip()}'")

        name, type_name = parts[0], parts[1].upper()
        if type_name not in SUPPORTED_TYPES:
            raise SchemaError(
                f"Unsupported type '{parts[1]}' for field '{name}'. "
                f"Supported: {', '.join(sorted(SUPPORTED_TYPES))}"
            )
        if name in seen:
            raise SchemaError(f"Field '{name}' is declared more than once")

        seen.add(name)
        fields.append(SchemaField(name=name, type_name=type_name))

    return fields


def cast_value(value: Any, schema_field: SchemaField) -> Any:
    """
    Cast a raw value to the field's declared type.

    Empty strings and values that fail the cast become None.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return None

    target = schema_field.python_type
    try:
        if target is str:
            return str(value)
        if target is bool:
            if isinstance(value, bool):
                return value
            lowered = str(value).lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            return None
        if target is int:
            if isinstance(value, bool):
                return None
            return int(float(value)) if isinstance(value, str) else int(value)
        if target is float:
            if isinstance(value, bool):
                return None
            return float(value)
        if target is datetime:
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
        if target is date:
            if isinstance(value, datetime):
                return value.date()
            return value if isinstance(value, date) else date.fromisoformat(str(value))
    except (ValueError, TypeError, OverflowError):
        return None

    return None


def apply_schema(raw: dict[str, Any], schema: list[SchemaField]) -> dict[str, Any]:
    """
    Project a raw row onto the schema.

    Declared fields missing from the row become None, undeclared columns are dropped.
    """
    return {field.name: cast_value(raw.get(field.name), field) for field in schema}
