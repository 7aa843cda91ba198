"""
Incremental execution engine: stage graph, CDC merge and aggregate views.
"""

from .aggregates import (
    Aggregate,
    AggregateMaintainer,
    AggregateView,
    OrderBy,
    date_trunc_day,
    sum_view,
)
from .graph import PipelineRunResult, StageGraph, StageRunResult
from .merge import CurrentStateTable, MergeAnomaly, MergeResult, TableSnapshot, apply_changes
from .stage import MaterializationMode, MergeStage, SourceStage, Stage, passthrough

__all__ = [
    "Aggregate",
    "AggregateMaintainer",
    "AggregateView",
    "OrderBy",
    "date_trunc_day",
    "sum_view",
    "StageGraph",
    "StageRunResult",
    "PipelineRunResult",
    "CurrentStateTable",
    "MergeAnomaly",
    "MergeResult",
    "TableSnapshot",
    "apply_changes",
    "MaterializationMode",
    "Stage",
    "SourceStage",
    "MergeStage",
    "passthrough",
]
