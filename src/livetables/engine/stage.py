"""
Stage definitions.

A stage is pure configuration: its name, upstreams, transform, constraints and
materialization mode. Execution and persistence belong to the StageGraph.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Sequence

from livetables.core.models import DataSource, Record
from livetables.core.rules import ConstraintEvaluator, QuarantineEvaluator

from .aggregates import AggregateView

Transform = Callable[[Sequence[Record]], Sequence[Record]]


class MaterializationMode(str, Enum):
    """How a stage's output is stored."""

    APPEND = "append"  # append-only log, consumed incrementally downstream
    KEYED = "keyed"  # full-state keyed table maintained by CDC merge


def passthrough(records: Sequence[Record]) -> Sequence[Record]:
    """SELECT * transform."""
    return records


@dataclass
class Stage:
    """
    An append-only transform stage.

    Attributes:
        name: Unique stage name
        upstreams: Names of the stages this one reads, in input order
        transform: Maps the new upstream records to candidate output records
        constraints: Evaluator (or quarantine complement) applied to the transform output
        finalize: Maps the rows kept by the constraints to the rows committed (None keeps them as is)
        output_fields: Fields the transform produces, which constraints are checked against;
            required when constraints are attached
        partition_by: Storage layout hint, no effect on results
        trigger_interval: Minimum time between runs; None runs on every cycle
        properties: Free-form table properties (e.g. {"quality": "silver"})
        comment: Human readable description
    """

    name: str
    upstreams: tuple[str, ...] = ()
    transform: Transform = passthrough
    constraints: ConstraintEvaluator | QuarantineEvaluator | None = None
    finalize: Transform | None = None
    output_fields: tuple[str, ...] | None = None
    partition_by: str | None = None
    trigger_interval: timedelta | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    comment: str = ""

    @property
    def mode(self) -> MaterializationMode:
        return MaterializationMode.APPEND


@dataclass
class SourceStage(Stage):
    """
    A bronze stage fed by the ingestion connector instead of upstream stages.

    Attributes:
        data_source: Where and how the connector reads raw files
        connector: Object exposing poll(location, format, schema, read_options, offsets)
        source_field: Output field receiving the originating file path (None to omit)
    """

    data_source: DataSource | None = None
    connector: Any = None
    source_field: str | None = "inputFileName"


@dataclass
class MergeStage(Stage):
    """
    A keyed stage applying CDC changes from one upstream into a current-state table.

    Attributes:
        key_fields: Fields forming the table key
        sequence_field: Field ordering versions of a key
        views: Aggregate views maintained over the table
    """

    key_fields: tuple[str, ...] = ()
    sequence_field: str = ""
    views: list[AggregateView] = field(default_factory=list)

    @property
    def mode(self) -> MaterializationMode:
        return MaterializationMode.KEYED
