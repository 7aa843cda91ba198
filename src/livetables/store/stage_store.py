"""
Append-only output log and manifest for one stage.

The manifest holds the committed row count and per-upstream cursors. A commit
appends rows to the log and then atomically replaces the manifest, so output
and cursors advance together. Rows written past the committed count by an
interrupted commit are discarded.
"""

import json
import os
import threading
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from livetables.core.errors import CheckpointError
from livetables.core.models import Cursor, Record, StageManifest
from livetables.observability.logger import get_logger

from .codec import atomic_write_text, record_from_json, record_to_json

logger = get_logger(__name__)

OUTPUT_FILE_NAME = "output.jsonl"
MANIFEST_FILE_NAME = "manifest.json"


def read_manifest(path: Path, stage_name: str) -> StageManifest:
    """Read a manifest file, returning an empty manifest if it does not exist."""
    if not path.exists():
        return StageManifest(stage_name=stage_name)
    try:
        return StageManifest.model_validate_json(path.read_text(encoding="utf-8"))
    except (ValidationError, ValueError) as e:
        raise CheckpointError(
            f"Failed to read manifest for stage '{stage_name}' at {path}: {e}. "
            "Delete the stage directory to rebuild it from its upstreams."
        ) from e


class StageStore:
    """Filesystem-backed append log for a stage's committed output."""

    def __init__(self, root: Path, stage_name: str):
        self.stage_name = stage_name
        self._dir = Path(root) / stage_name
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        self._manifest = read_manifest(self._manifest_path(), stage_name)
        self._rows: list[Record] = []
        self._committed_bytes = 0
        self._load_log()

    def _output_path(self) -> Path:
        return self._dir / OUTPUT_FILE_NAME

    def _manifest_path(self) -> Path:
        return self._dir / MANIFEST_FILE_NAME

    def _load_log(self) -> None:
        path = self._output_path()
        expected = self._manifest.committed_rows
        if not path.exists():
            if expected:
                raise CheckpointError(
                    f"Output log for stage '{self.stage_name}' is missing but manifest "
                    f"records {expected} committed rows"
                )
            return

        with open(path, "rb") as f:
            for line_number, line in enumerate(f, 1):
                if len(self._rows) == expected:
                    break
                if not line.endswith(b"\n"):
                    break
                try:
                    self._rows.append(record_from_json(line.decode("utf-8")))
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    raise CheckpointError(
                        f"Corrupt output log for stage '{self.stage_name}' at line {line_number}: {e}"
                    ) from e
                self._committed_bytes += len(line)

        if len(self._rows) < expected:
            raise CheckpointError(
                f"Output log for stage '{self.stage_name}' has {len(self._rows)} rows, "
                f"manifest records {expected}"
            )

        if path.stat().st_size > self._committed_bytes:
            logger.warning(
                f"Discarding uncommitted output of stage '{self.stage_name}' "
                f"({path.stat().st_size - self._committed_bytes} bytes)"
            )
            with open(path, "r+b") as f:
                f.truncate(self._committed_bytes)

    @property
    def manifest(self) -> StageManifest:
        with self._lock:
            return self._manifest.model_copy(deep=True)

    def cursor(self, upstream: str) -> Cursor | None:
        with self._lock:
            return self._manifest.cursors.get(upstream)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def read(self, start: int = 0, end: int | None = None) -> list[Record]:
        """
        Read committed rows.

        Args:
            start: First row offset (inclusive)
            end: Last row offset (exclusive); defaults to the committed count

        Returns:
            Committed rows in the requested range
        """
        with self._lock:
            return self._rows[start:end]

    def commit(self, rows: list[Record], cursors: dict[str, Cursor], now: datetime) -> StageManifest:
        """
        Append rows and advance cursors as one unit.

        Args:
            rows: New output rows (may be empty)
            cursors: Cursor values replacing the current ones
            now: Commit time recorded as last_run_at

        Returns:
            The new manifest
        """
        with self._lock:
            payload = "".join(record_to_json(row) + "\n" for row in rows).encode("utf-8")

            with open(self._output_path(), "ab") as f:
                f.truncate(self._committed_bytes)
                f.write(payload)
                f.flush()
                # Rows must be durable before the manifest counts them
                os.fsync(f.fileno())

            manifest = StageManifest(
                stage_name=self.stage_name,
                committed_rows=self._manifest.committed_rows + len(rows),
                cursors={**self._manifest.cursors, **cursors},
                version=self._manifest.version + (1 if rows else 0),
                run_count=self._manifest.run_count + 1,
                last_run_at=now,
            )
            atomic_write_text(self._manifest_path(), manifest.model_dump_json(indent=2))

            self._manifest = manifest
            self._rows.extend(rows)
            self._committed_bytes += len(payload)
            return self.manifest
