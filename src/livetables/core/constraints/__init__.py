"""
Constraint predicate implementations.

Provides predicates for required fields, castability, ranges, regex patterns,
and custom logic.
"""

from .base import BasePredicate, ConstraintViolation
from .custom import CustomPredicate
from .range import RangePredicate
from .regex import RegexPredicate
from .required_field import RequiredFieldPredicate
from .type_check import TypeCheckPredicate

__all__ = [
    "BasePredicate",
    "ConstraintViolation",
    "RequiredFieldPredicate",
    "TypeCheckPredicate",
    "RangePredicate",
    "RegexPredicate",
    "CustomPredicate",
]
