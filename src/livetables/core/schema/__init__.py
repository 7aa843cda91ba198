"""
Source schema declaration and permissive casting.
"""

from .ddl import SchemaField, apply_schema, cast_value, parse_schema

__all__ = [
    "SchemaField",
    "parse_schema",
    "cast_value",
    "apply_schema",
]
