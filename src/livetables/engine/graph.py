"""
Stage graph and incremental execution.

Stages form a DAG. Each run of a stage reads only the upstream rows it has not
seen yet (tracked by a persisted cursor per (stage, upstream) pair), computes
its output, and commits output and cursors together. A run that fails commits
nothing, so it can be retried without duplicating output.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import networkx as nx

from livetables.core.errors import (
    GraphDefinitionError,
    LiveTablesError,
    StageRunError,
)
from livetables.core.models import Cursor, Record, StageManifest, freeze_record
from livetables.core.schema import parse_schema
from livetables.observability import metrics
from livetables.observability.logger import get_logger, log_operation
from livetables.store import StageStore, StateStore, ViewStore
from livetables.transforms.common import add_input_file_name

from .aggregates import AggregateMaintainer
from .merge import CurrentStateTable, MergeResult
from .stage import MergeStage, SourceStage, Stage, passthrough

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StageRunResult:
    """Outcome of one stage run."""

    stage_name: str
    status: str  # success, failed, skipped, cancelled
    input_rows: int = 0
    output_rows: int = 0
    rejected_rows: int = 0
    duration_seconds: float = 0.0
    merge: MergeResult | None = None
    error: LiveTablesError | None = None


@dataclass
class PipelineRunResult:
    """Outcome of one run_all cycle, in execution order."""

    stages: list[StageRunResult] = field(default_factory=list)

    def __getitem__(self, stage_name: str) -> StageRunResult:
        for result in self.stages:
            if result.stage_name == stage_name:
                return result
        raise KeyError(stage_name)

    @property
    def failures(self) -> list[StageRunResult]:
        return [r for r in self.stages if r.status == "failed"]

    @property
    def succeeded(self) -> bool:
        return not self.failures


class StageGraph:
    """
    A DAG of named stages with persisted incremental progress.

    Stages are registered with add_stage() and the graph is checked and opened
    by validate(), which raises before any row is processed when the graph or
    its constraints are misconfigured.
    """

    def __init__(self, storage_path: str | Path, max_workers: int = 4):
        """
        Args:
            storage_path: Root directory for stage logs, tables and manifests
            max_workers: Upper bound on stages executed concurrently
        """
        self.storage_path = Path(storage_path)
        self.max_workers = max_workers
        self._stages: dict[str, Stage] = {}
        self._dag = nx.DiGraph()
        self._validated = False

        self._logs: dict[str, StageStore] = {}
        self._state_stores: dict[str, StateStore] = {}
        self._state_manifests: dict[str, StageManifest] = {}
        self._tables: dict[str, CurrentStateTable] = {}
        self._maintainers: dict[str, AggregateMaintainer] = {}
        self._view_store: ViewStore | None = None
        self._stage_locks: dict[str, threading.Lock] = {}

    # =======================
    # DEFINITION
    # =======================

    def add_stage(self, stage: Stage) -> Stage:
        """
        Register a stage.

        Raises:
            GraphDefinitionError: If the name is taken or the graph is already validated
        """
        if self._validated:
            raise GraphDefinitionError("Cannot add stages after the graph has been validated")
        if stage.name in self._stages:
            raise GraphDefinitionError(f"Duplicate stage name: '{stage.name}'")
        self._stages[stage.name] = stage
        return stage

    def stage(self, name: str) -> Stage:
        try:
            return self._stages[name]
        except KeyError:
            raise GraphDefinitionError(f"Unknown stage: '{name}'") from None

    @property
    def stage_names(self) -> list[str]:
        return list(self._stages)

    def validate(self) -> "StageGraph":
        """
        Check the graph and open the stores of every stage.

        Raises:
            GraphDefinitionError: Unknown upstream, cycle, or invalid stage wiring
            ConstraintConfigError: A constraint references a field the stage does not produce
            SchemaError: A source stage declares an unparseable schema
        """
        if self._validated:
            return self

        dag = nx.DiGraph()
        for name, stage in self._stages.items():
            dag.add_node(name)
            for upstream in stage.upstreams:
                if upstream not in self._stages:
                    raise GraphDefinitionError(
                        f"Stage '{name}' reads unknown upstream '{upstream}'"
                    )
                dag.add_edge(upstream, name)

        if not nx.is_directed_acyclic_graph(dag):
            cycle = nx.find_cycle(dag)
            raise GraphDefinitionError(
                f"Stage graph has a cycle: {' -> '.join(edge[0] for edge in cycle)}"
            )

        # Upstreams first, so declared fields can be inherited downstream
        for name in nx.topological_sort(dag):
            self._validate_stage(self._stages[name])

        self._dag = dag
        self._open_stores()
        self._validated = True
        logger.info(
            f"Validated stage graph with {len(self._stages)} stages: "
            f"{', '.join(self.topological_order())}"
        )
        return self

    def _validate_stage(self, stage: Stage) -> None:
        if isinstance(stage, SourceStage):
            if stage.upstreams:
                raise GraphDefinitionError(f"Source stage '{stage.name}' cannot read upstream stages")
            if stage.data_source is None or stage.connector is None:
                raise GraphDefinitionError(
                    f"Source stage '{stage.name}' needs a data_source and a connector"
                )
            fields = [f.name for f in parse_schema(stage.data_source.schema_ddl)]
            if stage.source_field:
                fields.append(stage.source_field)
            if stage.output_fields is None:
                stage.output_fields = tuple(fields)
        elif not stage.upstreams:
            raise GraphDefinitionError(f"Stage '{stage.name}' has no upstream")
        elif (
            stage.output_fields is None
            and stage.transform is passthrough
            and len(stage.upstreams) == 1
        ):
            stage.output_fields = self._committed_fields(stage.upstreams[0])

        for upstream in stage.upstreams:
            if isinstance(self._stages[upstream], MergeStage):
                raise GraphDefinitionError(
                    f"Stage '{stage.name}' cannot read keyed stage '{upstream}' incrementally; "
                    "register an aggregate view on it instead"
                )

        if isinstance(stage, MergeStage):
            if len(stage.upstreams) != 1:
                raise GraphDefinitionError(f"Merge stage '{stage.name}' must have exactly one upstream")
            if not stage.key_fields or not stage.sequence_field:
                raise GraphDefinitionError(
                    f"Merge stage '{stage.name}' needs key_fields and a sequence_field"
                )
            upstream_fields = self._committed_fields(stage.upstreams[0])
            if upstream_fields is not None:
                missing = [
                    f for f in (*stage.key_fields, stage.sequence_field) if f not in upstream_fields
                ]
                if missing:
                    raise GraphDefinitionError(
                        f"Merge stage '{stage.name}' references fields not produced by "
                        f"'{stage.upstreams[0]}': {', '.join(missing)}"
                    )
            if stage.output_fields is None:
                stage.output_fields = upstream_fields

        if stage.constraints is not None:
            if stage.output_fields is None:
                raise GraphDefinitionError(
                    f"Stage '{stage.name}' has constraints and must declare output_fields"
                )
            stage.constraints.validate_fields(stage.output_fields)

    def _committed_fields(self, name: str) -> tuple[str, ...] | None:
        # A finalize step reshapes rows after evaluation, so the committed fields are unknown
        stage = self._stages[name]
        return stage.output_fields if stage.finalize is None else None

    def _open_stores(self) -> None:
        self._view_store = ViewStore(self.storage_path)
        for name, stage in self._stages.items():
            self._stage_locks[name] = threading.Lock()
            if isinstance(stage, MergeStage):
                state_store = StateStore(self.storage_path, name)
                rows, manifest = state_store.load()
                table = CurrentStateTable(
                    name, stage.key_fields, stage.sequence_field, rows, manifest.version
                )
                maintainer = AggregateMaintainer(table, on_refresh=self._view_store.write)
                for view in stage.views:
                    maintainer.register(view)
                self._state_stores[name] = state_store
                self._state_manifests[name] = manifest
                self._tables[name] = table
                self._maintainers[name] = maintainer
            else:
                self._logs[name] = StageStore(self.storage_path, name)

    def _require_validated(self) -> None:
        if not self._validated:
            self.validate()

    def topological_order(self) -> list[str]:
        return list(nx.topological_sort(self._dag if self._validated else self._build_plain_dag()))

    def generations(self) -> list[list[str]]:
        """Stages grouped so that every stage's upstreams are in earlier groups."""
        self._require_validated()
        return [sorted(generation) for generation in nx.topological_generations(self._dag)]

    def _build_plain_dag(self) -> nx.DiGraph:
        dag = nx.DiGraph()
        for name, stage in self._stages.items():
            dag.add_node(name)
            for upstream in stage.upstreams:
                dag.add_edge(upstream, name)
        return dag

    # =======================
    # EXECUTION
    # =======================

    def manifest(self, stage_name: str) -> StageManifest:
        self._require_validated()
        if stage_name in self._state_manifests:
            return self._state_manifests[stage_name].model_copy(deep=True)
        return self._logs[self.stage(stage_name).name].manifest

    def is_due(self, stage_name: str, now: datetime | None = None) -> bool:
        """Whether the stage's trigger interval has elapsed since its last run."""
        interval = self.stage(stage_name).trigger_interval
        if interval is None:
            return True
        last_run_at = self.manifest(stage_name).last_run_at
        if last_run_at is None:
            return True
        return (now or _utcnow()) - last_run_at >= interval

    def run(self, stage_name: str, now: datetime | None = None) -> StageRunResult:
        """
        Run one stage over the upstream rows it has not processed yet.

        Safe to call repeatedly: with no new upstream rows the run commits nothing new.

        Raises:
            StageRunError: If the stage fails; nothing from this run is committed
                (except for a failed aggregate refresh, which follows a durable merge)
        """
        self._require_validated()
        stage = self.stage(stage_name)
        now = now or _utcnow()
        started = time.monotonic()

        with self._stage_locks[stage_name]:
            try:
                with log_operation("Running stage", logger=logger, stage=stage_name), \
                        metrics.track_duration(metrics.stage_run_duration_seconds, stage=stage_name):
                    if isinstance(stage, SourceStage):
                        result = self._run_source(stage, now)
                    elif isinstance(stage, MergeStage):
                        result = self._run_merge(stage, now)
                    else:
                        result = self._run_append(stage, now)
            except Exception as e:
                metrics.record_stage_run(stage_name, "failure")
                raise StageRunError(stage_name, e) from e

        result.duration_seconds = time.monotonic() - started
        metrics.record_stage_run(stage_name, "success")
        metrics.record_stage_rows(stage_name, result.input_rows, result.output_rows, result.rejected_rows)
        return result

    def _read_new_rows(self, stage: Stage) -> tuple[list[Record], dict[str, Cursor]]:
        """Read each upstream's committed rows past this stage's cursor."""
        own_log = self._logs.get(stage.name)
        own_manifest = own_log.manifest if own_log is not None else self._state_manifests[stage.name]

        rows: list[Record] = []
        cursors: dict[str, Cursor] = {}
        for upstream in stage.upstreams:
            upstream_log = self._logs[upstream]
            start = own_manifest.cursors.get(upstream, 0)
            end = len(upstream_log)
            rows.extend(upstream_log.read(start, end))
            cursors[upstream] = end
        return rows, cursors

    def _apply_constraints(self, stage: Stage, candidates: list[Record]) -> tuple[list[Record], int]:
        kept, rejected = candidates, 0
        if stage.constraints is not None:
            outcome = stage.constraints.apply(candidates)
            metrics.record_constraint_violations(stage.name, outcome.violation_counts)
            if outcome.rejected:
                logger.info(
                    f"Stage '{stage.name}' excluded {len(outcome.rejected)} row(s)",
                    extra={"stage": stage.name, "violations": outcome.violation_counts},
                )
            kept, rejected = outcome.kept, len(outcome.rejected)

        if stage.finalize is not None and kept:
            kept = [freeze_record(r) for r in stage.finalize(kept)]
        return kept, rejected

    def _run_source(self, stage: SourceStage, now: datetime) -> StageRunResult:
        source = stage.data_source
        log = self._logs[stage.name]
        offsets = log.cursor(source.source_id) or {}

        batch = stage.connector.poll(
            source.location,
            source.file_format,
            source.schema_ddl,
            source.read_options,
            offsets=offsets,
        )

        if stage.source_field:
            candidates = add_input_file_name(batch.rows, stage.source_field)
        else:
            candidates = [row.record for row in batch.rows]

        output = [freeze_record(r) for r in stage.transform(candidates)]
        kept, rejected = self._apply_constraints(stage, output)
        manifest = log.commit(kept, {source.source_id: dict(batch.offsets)}, now)
        metrics.set_gauge(metrics.stage_committed_rows, manifest.committed_rows, stage=stage.name)

        return StageRunResult(
            stage_name=stage.name,
            status="success",
            input_rows=len(batch.rows),
            output_rows=len(kept),
            rejected_rows=rejected,
        )

    def _run_append(self, stage: Stage, now: datetime) -> StageRunResult:
        log = self._logs[stage.name]
        rows, cursors = self._read_new_rows(stage)

        output = [freeze_record(r) for r in stage.transform(rows)] if rows else []
        kept, rejected = self._apply_constraints(stage, output)
        manifest = log.commit(kept, cursors, now)
        metrics.set_gauge(metrics.stage_committed_rows, manifest.committed_rows, stage=stage.name)

        return StageRunResult(
            stage_name=stage.name,
            status="success",
            input_rows=len(rows),
            output_rows=len(kept),
            rejected_rows=rejected,
        )

    def _run_merge(self, stage: MergeStage, now: datetime) -> StageRunResult:
        table = self._tables[stage.name]
        state_store = self._state_stores[stage.name]
        rows, cursors = self._read_new_rows(stage)

        changes = [freeze_record(r) for r in stage.transform(rows)] if rows else []
        changes, rejected = self._apply_constraints(stage, changes)
        previous = self._state_manifests[stage.name]

        def persist(state: dict, version: int) -> None:
            manifest = StageManifest(
                stage_name=stage.name,
                committed_rows=len(state),
                cursors={**previous.cursors, **cursors},
                version=version,
                run_count=previous.run_count + 1,
                last_run_at=now,
            )
            state_store.save(state, manifest)
            self._state_manifests[stage.name] = manifest

        result = table.merge(changes, persist=persist)
        outcomes = result.outcome_counts()
        metrics.record_merge_outcomes(stage.name, outcomes)
        metrics.set_gauge(metrics.stage_committed_rows, len(table), stage=stage.name)
        if result.late or result.anomalies:
            logger.info(
                f"Merge into '{stage.name}' discarded {result.late} late and "
                f"{len(result.anomalies)} anomalous event(s)",
                extra={"stage": stage.name, "outcomes": outcomes},
            )

        self._maintainers[stage.name].refresh(table.snapshot())

        return StageRunResult(
            stage_name=stage.name,
            status="success",
            input_rows=len(rows),
            output_rows=len(result.inserted) + len(result.updated),
            rejected_rows=rejected,
            merge=result,
        )

    def run_all(
        self,
        now: datetime | None = None,
        cancel_event: threading.Event | None = None,
        raise_on_failure: bool = True,
    ) -> PipelineRunResult:
        """
        Run every due stage once, in topological generations.

        Stages in one generation do not depend on each other and run
        concurrently. A failed stage skips its descendants for this cycle.
        Cancellation is honoured between generations, never inside a stage.

        Args:
            now: Cycle time used for trigger checks and manifests
            cancel_event: When set, stages not yet started are marked cancelled
            raise_on_failure: Raise the first StageRunError after the cycle

        Returns:
            PipelineRunResult with one entry per stage

        Raises:
            StageRunError: If a stage failed and raise_on_failure is True
        """
        self._require_validated()
        now = now or _utcnow()
        run_result = PipelineRunResult()
        blocked: set[str] = set()

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stage") as pool:
            for generation in self.generations():
                if cancel_event is not None and cancel_event.is_set():
                    run_result.stages.extend(StageRunResult(n, "cancelled") for n in generation)
                    continue

                runnable = []
                for name in generation:
                    if name in blocked or not self.is_due(name, now):
                        run_result.stages.append(StageRunResult(name, "skipped"))
                        metrics.record_stage_run(name, "skipped")
                    else:
                        runnable.append(name)

                futures = {name: pool.submit(self.run, name, now) for name in runnable}
                for name, future in futures.items():
                    try:
                        run_result.stages.append(future.result())
                    except StageRunError as e:
                        logger.error(f"Stage '{name}' failed: {e.cause}")
                        run_result.stages.append(StageRunResult(name, "failed", error=e))
                        blocked.update(nx.descendants(self._dag, name))

        if raise_on_failure and run_result.failures:
            error = run_result.failures[0].error
            error.run_result = run_result
            raise error
        return run_result

    # =======================
    # READS
    # =======================

    def output(self, stage_name: str) -> list[Record]:
        """Committed rows of an append stage."""
        self._require_validated()
        if stage_name not in self._logs:
            raise GraphDefinitionError(f"Stage '{stage_name}' is not an append stage")
        return self._logs[stage_name].read()

    def table(self, stage_name: str) -> CurrentStateTable:
        """Current-state table of a keyed stage."""
        self._require_validated()
        if stage_name not in self._tables:
            raise GraphDefinitionError(f"Stage '{stage_name}' is not a keyed stage")
        return self._tables[stage_name]

    def view(self, view_name: str) -> list[Record]:
        """Read an aggregate view, consistent with the latest committed table."""
        self._require_validated()
        for maintainer in self._maintainers.values():
            if view_name in maintainer.view_names:
                return maintainer.read(view_name)
        raise KeyError(f"Unknown aggregate view: {view_name}")

    @property
    def view_names(self) -> list[str]:
        self._require_validated()
        return [name for m in self._maintainers.values() for name in m.view_names]

    def refresh_views(self, stage_name: str | None = None) -> dict[str, int]:
        """
        Recompute aggregate views without re-running any merge.

        Args:
            stage_name: Keyed stage whose views to refresh; all when None

        Returns:
            Table version reflected by each refreshed stage's views
        """
        self._require_validated()
        names = [stage_name] if stage_name else list(self._maintainers)
        versions = {}
        for name in names:
            if name not in self._maintainers:
                raise GraphDefinitionError(f"Stage '{name}' has no aggregate views")
            versions[name] = self._maintainers[name].refresh()
        return versions

    def status(self) -> list[dict[str, Any]]:
        """Per-stage committed progress, in topological order."""
        self._require_validated()
        report = []
        for name in self.topological_order():
            stage = self._stages[name]
            manifest = self.manifest(name)
            report.append({
                "stage": name,
                "mode": stage.mode.value,
                "upstreams": list(stage.upstreams),
                "committed_rows": manifest.committed_rows,
                "version": manifest.version,
                "run_count": manifest.run_count,
                "last_run_at": manifest.last_run_at.isoformat() if manifest.last_run_at else None,
                "cursors": manifest.cursors,
                "partition_by": stage.partition_by,
                "trigger_interval": str(stage.trigger_interval) if stage.trigger_interval else None,
                "constraints": (
                    stage.constraints.get_constraint_summary() if stage.constraints is not None else None
                ),
            })
        return report
