"""
Snapshot persistence for keyed current-state tables.

The table rows and the stage manifest are written to one file with an atomic
replace, so a merge and its cursor advance commit together.
"""

import json
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from livetables.core.errors import CheckpointError
from livetables.core.models import Record, StageManifest, freeze_record

from .codec import atomic_write_text, decode_value, encode_value

STATE_FILE_NAME = "state.json"

Key = tuple[Any, ...]


class StateStore:
    """Filesystem-backed snapshot of a keyed table."""

    def __init__(self, root: Path, stage_name: str):
        self.stage_name = stage_name
        self._dir = Path(root) / stage_name
        self._dir.mkdir(parents=True, exist_ok=True)

    def _state_path(self) -> Path:
        return self._dir / STATE_FILE_NAME

    def load(self) -> tuple[dict[Key, Record], StageManifest]:
        """
        Load the committed table and manifest.

        Returns:
            (rows by key, manifest); an empty table for a stage that never ran

        Raises:
            CheckpointError: If the snapshot is unreadable
        """
        path = self._state_path()
        if not path.exists():
            return {}, StageManifest(stage_name=self.stage_name)

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            manifest = StageManifest.model_validate(payload["manifest"])
            rows = {
                tuple(decode_value(part) for part in entry["key"]): freeze_record(
                    {name: decode_value(value) for name, value in entry["row"].items()}
                )
                for entry in payload["rows"]
            }
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
            raise CheckpointError(
                f"Failed to read state table for stage '{self.stage_name}' at {path}: {e}"
            ) from e

        return rows, manifest

    def save(self, rows: dict[Key, Record], manifest: StageManifest) -> None:
        """Atomically replace the snapshot."""
        payload = {
            "manifest": manifest.model_dump(mode="json"),
            "rows": [
                {
                    "key": [encode_value(part) for part in key],
                    "row": {name: encode_value(value) for name, value in row.items()},
                }
                for key, row in rows.items()
            ],
        }
        atomic_write_text(self._state_path(), json.dumps(payload))
