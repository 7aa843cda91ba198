"""
Generic record transforms shared by pipelines.
"""

from typing import Iterable

from livetables.core.models import Record, SourceRow, freeze_record


def add_input_file_name(rows: Iterable[SourceRow], field_name: str = "inputFileName") -> list[Record]:
    """Attach the originating file of each connector row as a field."""
    output = []
    for row in rows:
        values = dict(row.record)
        values[field_name] = row.source_record_id
        output.append(freeze_record(values))
    return output
