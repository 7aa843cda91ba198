"""
Record types shared by the connector, stages and stores.

A Record is an immutable field-name to value mapping. Stages never mutate the
records they receive; they build new ones with freeze_record().
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

Record = Mapping[str, Any]


def freeze_record(values: Mapping[str, Any]) -> Record:
    """Return a read-only copy of a field mapping."""
    return MappingProxyType(dict(values))


@dataclass(frozen=True)
class SourceRow:
    """
    A row surfaced by the ingestion connector.

    Attributes:
        record: Schema-validated record
        source_record_id: Stable identifier of the originating file
        row_number: Zero-based position of the row within that file
    """

    record: Record
    source_record_id: str
    row_number: int
