"""
Core data models for the livetables pipeline.

Configuration and persisted models use Pydantic for runtime validation.
"""

from .constraint import Constraint, ViolationPolicy
from .constraint_result import ConstraintResult
from .data_source import DataSource
from .record import Record, SourceRow, freeze_record
from .stage_manifest import Cursor, StageManifest

__all__ = [
    "Constraint",
    "ViolationPolicy",
    "ConstraintResult",
    "DataSource",
    "Record",
    "SourceRow",
    "freeze_record",
    "Cursor",
    "StageManifest",
]
