"""
Constraint evaluation and configuration management.
"""

from .config import ConstraintConfigBuilder, ConstraintConfigLoader
from .evaluator import (
    FAILED_CONSTRAINTS_FIELD,
    ConstraintEvaluator,
    EvaluationOutcome,
    QuarantineEvaluator,
)

__all__ = [
    "ConstraintEvaluator",
    "QuarantineEvaluator",
    "EvaluationOutcome",
    "FAILED_CONSTRAINTS_FIELD",
    "ConstraintConfigLoader",
    "ConstraintConfigBuilder",
]
