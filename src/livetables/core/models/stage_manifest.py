"""
StageManifest model: the persisted progress of one stage.
"""

from datetime import datetime
from typing import Union

from pydantic import BaseModel, Field

# Offset into an upstream stage's committed log, or per-file row counts for the connector
Cursor = Union[int, dict[str, int]]


class StageManifest(BaseModel):
    """
    Committed state of a stage.

    Attributes:
        stage_name: Stage this manifest belongs to
        committed_rows: Rows of the output log that are committed
        cursors: Per-upstream progress, advanced only together with output
        version: Incremented on every commit that changes output or state
        run_count: Successful runs so far
        last_run_at: Completion time of the last successful run
    """

    stage_name: str
    committed_rows: int = Field(0, ge=0)
    cursors: dict[str, Cursor] = Field(default_factory=dict)
    version: int = Field(0, ge=0)
    run_count: int = Field(0, ge=0)
    last_run_at: datetime | None = None
