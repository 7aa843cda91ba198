"""
Unit tests for the stage graph: definition checks, incremental runs,
retries, triggers and failure isolation.
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from livetables.core.errors import (
    ConnectorError,
    ConstraintConfigError,
    GraphDefinitionError,
    StageRunError,
)
from livetables.core.models import DataSource, SourceRow, freeze_record
from livetables.core.rules import ConstraintConfigBuilder, ConstraintEvaluator
from livetables.engine import (
    AggregateView,
    MergeStage,
    SourceStage,
    Stage,
    StageGraph,
    sum_view,
)
from livetables.sources import ConnectorBatch

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class ListConnector:
    """In-memory connector: every appended row becomes visible to the next poll"""

    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.fail = False

    def poll(self, source_location, file_format, schema, read_options=None, offsets=None):
        if self.fail:
            raise ConnectorError("source unreachable")
        consumed = (offsets or {}).get("memory", 0)
        new = [
            SourceRow(record=freeze_record(row), source_record_id="memory", row_number=i)
            for i, row in enumerate(self.rows[consumed:], start=consumed)
        ]
        return ConnectorBatch(rows=new, offsets={"memory": len(self.rows)})


def source_stage(connector, **kwargs) -> SourceStage:
    return SourceStage(
        name="raw",
        data_source=DataSource(
            source_id="test", location="memory", schema_ddl="id INT, customer STRING, qty FLOAT",
        ),
        connector=connector,
        source_field="inputFileName",
        **kwargs,
    )


def build_graph(storage, connector, *stages) -> StageGraph:
    graph = StageGraph(storage, max_workers=2)
    graph.add_stage(source_stage(connector))
    for stage in stages:
        graph.add_stage(stage)
    return graph.validate()


def row(i, customer="c1", qty=1.0):
    return {"id": i, "customer": customer, "qty": qty}


@pytest.mark.unit
class TestGraphDefinition:
    """Tests for StageGraph definition checks"""

    def test_duplicate_stage_name(self, tmp_path):
        graph = StageGraph(tmp_path)
        graph.add_stage(Stage(name="a", upstreams=("raw",)))

        with pytest.raises(GraphDefinitionError, match="Duplicate"):
            graph.add_stage(Stage(name="a", upstreams=("raw",)))

    def test_unknown_upstream(self, tmp_path):
        graph = StageGraph(tmp_path)
        graph.add_stage(Stage(name="a", upstreams=("missing",)))

        with pytest.raises(GraphDefinitionError, match="missing"):
            graph.validate()

    def test_cycle_detected(self, tmp_path):
        graph = StageGraph(tmp_path)
        graph.add_stage(Stage(name="a", upstreams=("b",)))
        graph.add_stage(Stage(name="b", upstreams=("a",)))

        with pytest.raises(GraphDefinitionError, match="cycle"):
            graph.validate()

    def test_stage_without_upstream(self, tmp_path):
        graph = StageGraph(tmp_path)
        graph.add_stage(Stage(name="orphan"))

        with pytest.raises(GraphDefinitionError, match="no upstream"):
            graph.validate()

    def test_constraint_on_unknown_field_fails_before_any_row(self, tmp_path):
        connector = ListConnector([row(1)])
        gate = ConstraintEvaluator(
            ConstraintConfigBuilder().add_required_field("CustomerID").build(), stage_name="clean"
        )

        with pytest.raises(ConstraintConfigError, match="CustomerID"):
            build_graph(tmp_path, connector, Stage(name="clean", upstreams=("raw",), constraints=gate))

        assert not (tmp_path / "raw").exists()

    def test_constraints_need_declared_fields(self, tmp_path):
        gate = ConstraintEvaluator(ConstraintConfigBuilder().add_required_field("customer").build())
        stage = Stage(name="clean", upstreams=("raw",), transform=lambda rows: rows, constraints=gate)

        with pytest.raises(GraphDefinitionError, match="output_fields"):
            build_graph(tmp_path, ListConnector(), stage)

    def test_keyed_stage_cannot_feed_append_stage(self, tmp_path):
        merge = MergeStage(name="table", upstreams=("raw",), key_fields=("id",), sequence_field="qty")

        with pytest.raises(GraphDefinitionError, match="keyed"):
            build_graph(tmp_path, ListConnector(), merge, Stage(name="after", upstreams=("table",)))

    def test_merge_fields_must_exist_upstream(self, tmp_path):
        merge = MergeStage(name="table", upstreams=("raw",), key_fields=("missing",), sequence_field="qty")

        with pytest.raises(GraphDefinitionError, match="missing"):
            build_graph(tmp_path, ListConnector(), merge)

    def test_no_stages_after_validation(self, tmp_path):
        graph = build_graph(tmp_path, ListConnector())

        with pytest.raises(GraphDefinitionError):
            graph.add_stage(Stage(name="late", upstreams=("raw",)))

    def test_generations_group_independent_stages(self, tmp_path):
        graph = build_graph(
            tmp_path,
            ListConnector(),
            Stage(name="b", upstreams=("raw",)),
            Stage(name="a", upstreams=("raw",)),
            Stage(name="c", upstreams=("a", "b")),
        )

        assert graph.generations() == [["raw"], ["a", "b"], ["c"]]
        order = graph.topological_order()
        assert order.index("raw") < order.index("a") < order.index("c")

    def test_passthrough_stage_inherits_fields(self, tmp_path):
        graph = build_graph(tmp_path, ListConnector(), Stage(name="copy", upstreams=("raw",)))

        assert graph.stage("copy").output_fields == ("id", "customer", "qty", "inputFileName")

    def test_fields_not_inherited_through_finalize(self, tmp_path):
        reshaped = Stage(name="reshaped", upstreams=("raw",), finalize=lambda rows: rows)

        graph = build_graph(tmp_path, ListConnector(), reshaped, Stage(name="copy", upstreams=("reshaped",)))

        assert graph.stage("copy").output_fields is None


@pytest.mark.unit
class TestIncrementalRuns:
    """Tests for cursor-based incremental processing"""

    def test_stage_processes_only_new_rows(self, tmp_path):
        connector = ListConnector([row(1), row(2)])
        seen = []

        def record_batch(rows):
            seen.append(len(rows))
            return rows

        graph = build_graph(tmp_path, connector, Stage(name="copy", upstreams=("raw",), transform=record_batch))

        graph.run_all(now=NOW)
        connector.rows.append(row(3))
        graph.run_all(now=NOW)
        graph.run_all(now=NOW)

        assert seen == [2, 1]
        assert [r["id"] for r in graph.output("copy")] == [1, 2, 3]
        assert graph.manifest("copy").cursors == {"raw": 3}

    def test_append_stage_runs_alone_on_empty_store(self, tmp_path):
        graph = build_graph(tmp_path, ListConnector([row(1), row(2)]), Stage(name="copy", upstreams=("raw",)))

        graph.run("raw", now=NOW)
        result = graph.run("copy", now=NOW)

        assert result.status == "success"
        assert result.output_rows == 2
        assert graph.manifest("copy").cursors == {"raw": 2}

    def test_append_stage_with_empty_upstream(self, tmp_path):
        graph = build_graph(tmp_path, ListConnector(), Stage(name="copy", upstreams=("raw",)))

        result = graph.run("copy", now=NOW)

        assert result.output_rows == 0
        assert graph.manifest("copy").run_count == 1
        assert graph.manifest("copy").cursors == {"raw": 0}

    def test_finalize_reshapes_kept_rows_after_constraints(self, tmp_path):
        gate = ConstraintEvaluator(
            ConstraintConfigBuilder().add_required_field("customer", name="has_customer").build(),
            stage_name="checked",
        )

        def only_ids(rows):
            return [{"id": r["id"]} for r in rows]

        stage = Stage(name="checked", upstreams=("raw",), constraints=gate, finalize=only_ids)
        graph = build_graph(tmp_path, ListConnector([row(1), row(2, customer=None)]), stage)

        graph.run_all(now=NOW)

        assert [dict(r) for r in graph.output("checked")] == [{"id": 1}]
        status = {entry["stage"]: entry for entry in graph.status()}
        assert status["checked"]["constraints"]["total_constraints"] == 1
        assert status["raw"]["constraints"] is None

    def test_source_field_is_added(self, tmp_path):
        graph = build_graph(tmp_path, ListConnector([row(1)]))

        graph.run("raw", now=NOW)

        assert graph.output("raw")[0]["inputFileName"] == "memory"

    def test_progress_survives_restart(self, tmp_path):
        connector = ListConnector([row(1), row(2)])
        graph = build_graph(tmp_path, connector, Stage(name="copy", upstreams=("raw",)))
        graph.run_all(now=NOW)

        connector.rows.append(row(3))
        restarted = build_graph(tmp_path, connector, Stage(name="copy", upstreams=("raw",)))
        restarted.run_all(now=NOW)

        assert [r["id"] for r in restarted.output("copy")] == [1, 2, 3]
        assert restarted.manifest("raw").run_count == 2

    def test_failed_run_commits_nothing_and_retry_does_not_duplicate(self, tmp_path):
        connector = ListConnector([row(1), row(2)])
        attempts = {"count": 0}

        def flaky(rows):
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise RuntimeError("transient failure")
            return rows

        graph = build_graph(tmp_path, connector, Stage(name="copy", upstreams=("raw",), transform=flaky))
        graph.run("raw", now=NOW)

        with pytest.raises(StageRunError) as exc_info:
            graph.run("copy", now=NOW)

        assert exc_info.value.stage_name == "copy"
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert graph.output("copy") == []
        assert graph.manifest("copy").cursors == {}

        graph.run("copy", now=NOW)
        graph.run("copy", now=NOW)
        assert [r["id"] for r in graph.output("copy")] == [1, 2]

    def test_connector_failure_is_retryable(self, tmp_path):
        connector = ListConnector([row(1)])
        graph = build_graph(tmp_path, connector)
        connector.fail = True

        with pytest.raises(StageRunError, match="source unreachable"):
            graph.run("raw", now=NOW)

        connector.fail = False
        graph.run("raw", now=NOW)
        assert len(graph.output("raw")) == 1

    def test_fail_policy_aborts_without_commit(self, tmp_path):
        gate = ConstraintEvaluator(
            ConstraintConfigBuilder().add_range("qty", min_value=0, policy="fail").build(),
            stage_name="checked",
        )
        stage = Stage(name="checked", upstreams=("raw",), constraints=gate)
        graph = build_graph(tmp_path, ListConnector([row(1), row(2, qty=-1.0)]), stage)
        graph.run("raw", now=NOW)

        with pytest.raises(StageRunError) as exc_info:
            graph.run("checked", now=NOW)

        assert exc_info.value.cause.constraint_names == ["qty_range"]
        assert graph.output("checked") == []
        assert graph.manifest("checked").run_count == 0

    def test_drop_policy_filters_rows(self, tmp_path):
        gate = ConstraintEvaluator(
            ConstraintConfigBuilder().add_required_field("customer", name="has_customer").build(),
            stage_name="checked",
        )
        stage = Stage(name="checked", upstreams=("raw",), constraints=gate)
        graph = build_graph(tmp_path, ListConnector([row(1), row(2, customer=None)]), stage)

        result = graph.run_all(now=NOW)

        assert result["checked"].output_rows == 1
        assert result["checked"].rejected_rows == 1
        assert [r["id"] for r in graph.output("checked")] == [1]


@pytest.mark.unit
class TestRunAll:
    """Tests for run_all scheduling"""

    def test_failure_skips_descendants_but_not_siblings(self, tmp_path):
        def broken(rows):
            raise ValueError("bad transform")

        graph = build_graph(
            tmp_path,
            ListConnector([row(1)]),
            Stage(name="broken", upstreams=("raw",), transform=broken),
            Stage(name="after_broken", upstreams=("broken",)),
            Stage(name="healthy", upstreams=("raw",)),
        )

        result = graph.run_all(now=NOW, raise_on_failure=False)

        assert result["broken"].status == "failed"
        assert result["after_broken"].status == "skipped"
        assert result["healthy"].status == "success"
        assert len(graph.output("healthy")) == 1

    def test_failure_raises_with_cycle_results(self, tmp_path):
        def broken(rows):
            raise ValueError("bad transform")

        graph = build_graph(tmp_path, ListConnector([row(1)]), Stage(name="broken", upstreams=("raw",), transform=broken))

        with pytest.raises(StageRunError) as exc_info:
            graph.run_all(now=NOW)

        assert exc_info.value.run_result["raw"].status == "success"

    def test_cancellation_stops_before_next_generation(self, tmp_path):
        cancel = threading.Event()

        def cancel_after(rows):
            cancel.set()
            return rows

        graph = build_graph(
            tmp_path,
            ListConnector([row(1)]),
            Stage(name="first", upstreams=("raw",), transform=cancel_after),
            Stage(name="second", upstreams=("first",)),
        )

        result = graph.run_all(now=NOW, cancel_event=cancel)

        assert result["first"].status == "success"
        assert result["second"].status == "cancelled"
        assert len(graph.output("first")) == 1
        assert graph.output("second") == []

    def test_trigger_interval_gates_runs(self, tmp_path):
        connector = ListConnector([row(1)])
        hourly = Stage(name="hourly", upstreams=("raw",), trigger_interval=timedelta(hours=1))
        graph = build_graph(tmp_path, connector, hourly)

        graph.run_all(now=NOW)
        connector.rows.append(row(2))

        result = graph.run_all(now=NOW + timedelta(minutes=30))
        assert result["hourly"].status == "skipped"
        assert len(graph.output("hourly")) == 1

        result = graph.run_all(now=NOW + timedelta(minutes=61))
        assert result["hourly"].status == "success"
        assert len(graph.output("hourly")) == 2


@pytest.mark.unit
class TestMergeStages:
    """Tests for keyed stages and their views"""

    def _graph(self, storage, connector, views=None):
        merge = MergeStage(
            name="latest",
            upstreams=("raw",),
            key_fields=("customer",),
            sequence_field="id",
            views=views if views is not None else [
                sum_view("qty_by_customer", "customer", "customer", "qty", "total"),
            ],
        )
        return build_graph(storage, connector, merge)

    def test_merge_keeps_latest_and_refreshes_views(self, tmp_path):
        connector = ListConnector([row(1, "c1", 3.0), row(2, "c1", 5.0), row(3, "c2", 1.0)])
        graph = self._graph(tmp_path, connector)

        result = graph.run_all(now=NOW)

        assert result["latest"].merge.outcome_counts()["inserted"] == 2
        assert graph.table("latest").get(("c1",))["qty"] == 5.0
        assert {r["customer"]: r["total"] for r in graph.view("qty_by_customer")} == {"c1": 5.0, "c2": 1.0}
        assert (tmp_path / "views" / "qty_by_customer.json").exists()

    def test_table_and_cursor_survive_restart(self, tmp_path):
        connector = ListConnector([row(1, "c1", 3.0)])
        self._graph(tmp_path, connector).run_all(now=NOW)

        connector.rows.append(row(2, "c1", 4.0))
        restarted = self._graph(tmp_path, connector)
        result = restarted.run_all(now=NOW)

        assert result["latest"].input_rows == 1
        assert restarted.table("latest").get(("c1",))["qty"] == 4.0
        assert restarted.table("latest").version == 2

    def test_refresh_failure_is_retried_alone(self, tmp_path):
        calls = {"count": 0}

        def flaky_total(record):
            calls["count"] += 1
            if calls["count"] == 1:
                raise RuntimeError("view backend unavailable")
            return record["customer"]

        views = [AggregateView(name="customers", group_by={"customer": flaky_total})]
        graph = self._graph(tmp_path, ListConnector([row(1, "c1")]), views=views)
        graph.run("raw", now=NOW)

        with pytest.raises(StageRunError) as exc_info:
            graph.run("latest", now=NOW)

        assert type(exc_info.value.cause).__name__ == "AggregateRefreshError"
        assert len(graph.table("latest")) == 1

        assert graph.refresh_views("latest") == {"latest": 1}
        assert [r["customer"] for r in graph.view("customers")] == ["c1"]

    def test_status_reports_every_stage(self, tmp_path):
        graph = self._graph(tmp_path, ListConnector([row(1)]))
        graph.run_all(now=NOW)

        status = {entry["stage"]: entry for entry in graph.status()}

        assert status["raw"]["committed_rows"] == 1
        assert status["raw"]["mode"] == "append"
        assert status["latest"]["mode"] == "keyed"
        assert status["latest"]["cursors"] == {"raw": 1}
        assert graph.view_names == ["qty_by_customer"]

    def test_output_and_table_reject_wrong_mode(self, tmp_path):
        graph = self._graph(tmp_path, ListConnector())

        with pytest.raises(GraphDefinitionError):
            graph.output("latest")
        with pytest.raises(GraphDefinitionError):
            graph.table("raw")
