"""
Exception hierarchy for the livetables pipeline.

Definition-time errors (schema, constraint configuration, graph shape) are
raised before any row is processed. Row-level problems never surface here:
they are routed to quarantine by the constraint evaluator.
"""


class LiveTablesError(Exception):
    """Base exception for all pipeline failures."""


class ConfigError(LiveTablesError):
    """Raised for invalid pipeline settings."""


class SchemaError(LiveTablesError):
    """Raised when a source schema declaration cannot be parsed."""


class ConstraintConfigError(LiveTablesError):
    """Raised when a constraint is declared with an invalid configuration."""


class GraphDefinitionError(LiveTablesError):
    """Raised when the stage graph is malformed (unknown upstream, cycle, duplicate)."""


class ConstraintFailure(LiveTablesError):
    """Raised when a row violates a constraint whose policy is 'fail'."""

    def __init__(self, stage_name: str, constraint_names: list[str], record: dict):
        self.stage_name = stage_name
        self.constraint_names = constraint_names
        self.record = record
        super().__init__(
            f"Stage '{stage_name}' failed: constraint(s) {', '.join(constraint_names)} "
            f"violated with policy 'fail'"
        )


class ConnectorError(LiveTablesError):
    """Raised when the ingestion connector cannot read its source."""


class CheckpointError(LiveTablesError):
    """Raised when persisted stage state is unreadable."""


class StageRunError(LiveTablesError):
    """Raised when a stage run fails. Nothing from the failed run is committed."""

    def __init__(self, stage_name: str, cause: BaseException):
        self.stage_name = stage_name
        self.cause = cause
        # Set by StageGraph.run_all to the results of the whole cycle
        self.run_result = None
        super().__init__(f"Stage '{stage_name}' failed: {cause}")


class AggregateRefreshError(LiveTablesError):
    """Raised when aggregate views cannot be recomputed after a merge commit."""

    def __init__(self, view_name: str, cause: BaseException):
        self.view_name = view_name
        self.cause = cause
        super().__init__(f"Failed to refresh aggregate view '{view_name}': {cause}")
