"""
Materialized aggregate views for external consumers.
"""

import json
from pathlib import Path

from livetables.core.models import Record

from .codec import atomic_write_text, encode_value

VIEWS_DIR_NAME = "views"


class ViewStore:
    """Writes each aggregate view as a read-only JSON table."""

    def __init__(self, root: Path):
        self._dir = Path(root) / VIEWS_DIR_NAME
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, view_name: str) -> Path:
        return self._dir / f"{view_name}.json"

    def write(self, view_name: str, rows: list[Record], table_version: int) -> None:
        payload = {
            "view": view_name,
            "table_version": table_version,
            "rows": [{k: encode_value(v) for k, v in row.items()} for row in rows],
        }
        atomic_write_text(self.path_for(view_name), json.dumps(payload, indent=2))
