"""
Prometheus metrics collection for livetables

Counters and histograms for stage runs, data quality and CDC merge outcomes.
Late and anomalous merge events are not failures, so these counters are how
they stay observable.
"""
import os
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# STAGE METRICS
# =======================

stage_runs_total = Counter(
    name="livetables_stage_runs_total",
    documentation="Total number of stage runs",
    labelnames=["stage", "status"],  # status: success, failure, skipped
    registry=REGISTRY,
)

stage_run_duration_seconds = Histogram(
    name="livetables_stage_run_duration_seconds",
    documentation="Time spent in a stage run in seconds",
    labelnames=["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0],
    registry=REGISTRY,
)

records_processed_total = Counter(
    name="livetables_records_processed_total",
    documentation="Records read and emitted by stages",
    labelnames=["stage", "status"],  # status: input, output, rejected
    registry=REGISTRY,
)

stage_committed_rows = Gauge(
    name="livetables_stage_committed_rows",
    documentation="Committed rows in a stage output (rows in the state table for keyed stages)",
    labelnames=["stage"],
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

constraint_violations_total = Counter(
    name="livetables_constraint_violations_total",
    documentation="Total number of constraint violations",
    labelnames=["stage", "constraint"],
    registry=REGISTRY,
)

# =======================
# MERGE METRICS
# =======================

merge_outcomes_total = Counter(
    name="livetables_merge_outcomes_total",
    documentation="CDC merge outcomes per candidate event",
    labelnames=["stage", "outcome"],  # inserted, updated, unchanged, late, anomaly
    registry=REGISTRY,
)

aggregate_refreshes_total = Counter(
    name="livetables_aggregate_refreshes_total",
    documentation="Aggregate view refreshes",
    labelnames=["view", "status"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Generate Prometheus metrics in text format"""
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: avoids binding a port on import
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(stage_run_duration_seconds, stage="quality_retail"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """Increment a counter metric (zero increments are skipped)"""
    if value:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


# =======================
# PIPELINE HELPERS
# =======================

def record_stage_run(stage: str, status: str) -> None:
    increment_counter(stage_runs_total, 1, stage=stage, status=status)


def record_stage_rows(stage: str, input_rows: int, output_rows: int, rejected_rows: int) -> None:
    """
    Record row counts of a committed stage run.

    Args:
        stage: Stage name
        input_rows: Rows read from upstreams
        output_rows: Rows committed to the stage output
        rejected_rows: Rows excluded by constraints
    """
    increment_counter(records_processed_total, input_rows, stage=stage, status="input")
    increment_counter(records_processed_total, output_rows, stage=stage, status="output")
    increment_counter(records_processed_total, rejected_rows, stage=stage, status="rejected")


def record_constraint_violations(stage: str, violation_counts: dict[str, int]) -> None:
    for constraint, count in violation_counts.items():
        increment_counter(constraint_violations_total, count, stage=stage, constraint=constraint)


def record_merge_outcomes(stage: str, outcomes: dict[str, int]) -> None:
    for outcome, count in outcomes.items():
        increment_counter(merge_outcomes_total, count, stage=stage, outcome=outcome)


def record_aggregate_refresh(view: str, success: bool) -> None:
    increment_counter(aggregate_refreshes_total, 1, view=view, status="success" if success else "failure")
