"""
JSON serialization for records.

Timestamps and dates are tagged so they round-trip as datetime/date values
rather than strings.
"""

import json
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping

from livetables.core.models import Record, freeze_record

_TIMESTAMP_TAG = "$timestamp"
_DATE_TAG = "$date"


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_TIMESTAMP_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v) for v in value]
    return value


def _decode_object(payload: dict[str, Any]) -> Any:
    if len(payload) == 1:
        if _TIMESTAMP_TAG in payload:
            return datetime.fromisoformat(payload[_TIMESTAMP_TAG])
        if _DATE_TAG in payload:
            return date.fromisoformat(payload[_DATE_TAG])
    return payload


def encode_value(value: Any) -> Any:
    """Return a JSON-safe form of a single field value."""
    return _encode_value(value)


def decode_value(value: Any) -> Any:
    """Inverse of encode_value."""
    if isinstance(value, dict):
        return _decode_object(value)
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


def record_to_json(record: Mapping[str, Any]) -> str:
    """Serialize a record to a single JSON line."""
    return json.dumps({key: _encode_value(value) for key, value in record.items()})


def record_from_json(line: str) -> Record:
    """Deserialize a JSON line produced by record_to_json."""
    return freeze_record(json.loads(line, object_hook=_decode_object))


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace a file's contents atomically.

    Readers see either the old or the new contents, never a partial write.
    """
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(text)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
