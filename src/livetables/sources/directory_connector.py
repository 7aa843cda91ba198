"""
Directory connector for incremental file ingestion.

Scans a directory for raw CSV or JSON-lines files and returns the rows that
the caller's offsets do not cover yet. Offsets are per-file row counts, so new
files and rows appended to known files are both picked up by the next poll.
The connector keeps no state of its own: the caller persists the offsets it
returns together with the rows it committed.
"""

import csv
import json
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Any, Iterator

from livetables.core.errors import ConnectorError
from livetables.core.models import SourceRow, freeze_record
from livetables.core.schema import SchemaField, apply_schema, parse_schema
from livetables.observability.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_FORMATS = ("csv", "json")


@dataclass
class ConnectorBatch:
    """
    Rows returned by one poll.

    Attributes:
        rows: New rows in file order, then row order
        offsets: Per-file row counts after consuming rows (includes untouched files)
    """

    rows: list[SourceRow] = field(default_factory=list)
    offsets: dict[str, int] = field(default_factory=dict)


def _is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


class DirectoryConnector:
    """
    Polls a directory (or a single file) for new rows.

    Hidden files and files starting with "_" (e.g. _SUCCESS markers) are
    ignored. Files are read in sorted path order.
    """

    def poll(
        self,
        source_location: str,
        file_format: str,
        schema: str | list[SchemaField],
        read_options: dict[str, Any] | None = None,
        offsets: dict[str, int] | None = None,
    ) -> ConnectorBatch:
        """
        Read rows not yet covered by offsets.

        Args:
            source_location: Directory or file to read
            file_format: "csv" or "json"
            schema: DDL field list or parsed schema applied to every row
            read_options: header (csv, default true) and delimiter (csv, default ",")
            offsets: Per-file row counts already consumed

        Returns:
            ConnectorBatch with new rows and advanced offsets

        Raises:
            ConnectorError: If the location cannot be read or the format is unsupported
            SchemaError: If the schema declaration is invalid
        """
        if file_format not in SUPPORTED_FORMATS:
            raise ConnectorError(
                f"Unsupported file format '{file_format}'. Supported: {', '.join(SUPPORTED_FORMATS)}"
            )

        fields = parse_schema(schema) if isinstance(schema, str) else list(schema)
        options = read_options or {}
        batch = ConnectorBatch(offsets=dict(offsets or {}))

        for path in self._discover(source_location):
            file_id = str(path)
            consumed = batch.offsets.get(file_id, 0)
            try:
                new_raw_rows = list(islice(self._read_rows(path, file_format, fields, options), consumed, None))
            except (OSError, UnicodeDecodeError, csv.Error) as e:
                raise ConnectorError(f"Failed to read {file_id}: {e}") from e

            for index, raw in enumerate(new_raw_rows, start=consumed):
                batch.rows.append(SourceRow(
                    record=freeze_record(apply_schema(raw, fields)),
                    source_record_id=file_id,
                    row_number=index,
                ))
            batch.offsets[file_id] = consumed + len(new_raw_rows)

            if new_raw_rows:
                logger.debug(f"Read {len(new_raw_rows)} new row(s) from {file_id}")

        if batch.rows:
            logger.info(
                f"Polled {len(batch.rows)} new row(s) from {source_location}",
                extra={"source_location": source_location, "rows": len(batch.rows)},
            )
        return batch

    def _discover(self, source_location: str) -> list[Path]:
        location = Path(source_location)
        if not location.exists():
            raise ConnectorError(f"Source location does not exist: {source_location}")

        if location.is_file():
            return [location]

        try:
            candidates = sorted(p for p in location.rglob("*") if p.is_file())
        except OSError as e:
            raise ConnectorError(f"Cannot list source location {source_location}: {e}") from e

        return [
            p for p in candidates
            if not any(part.startswith((".", "_")) for part in p.relative_to(location).parts)
        ]

    def _read_rows(
        self,
        path: Path,
        file_format: str,
        fields: list[SchemaField],
        options: dict[str, Any],
    ) -> Iterator[dict[str, Any]]:
        if file_format == "csv":
            yield from self._read_csv(path, fields, options)
        else:
            yield from self._read_json_lines(path)

    def _read_csv(self, path: Path, fields: list[SchemaField], options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        header = _is_truthy(options.get("header", True))
        delimiter = str(options.get("delimiter", options.get("sep", ",")))

        with open(path, newline="", encoding=options.get("encoding", "utf-8")) as f:
            if header:
                yield from csv.DictReader(f, delimiter=delimiter)
            else:
                names = [schema_field.name for schema_field in fields]
                for values in csv.reader(f, delimiter=delimiter):
                    yield dict(zip(names, values))

    def _read_json_lines(self, path: Path) -> Iterator[dict[str, Any]]:
        with open(path, encoding="utf-8") as f:
            for line_number, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Malformed JSON at {path}:{line_number}, reading as empty row")
                    yield {}
                    continue
                yield payload if isinstance(payload, dict) else {}
