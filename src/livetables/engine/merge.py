"""
CDC merge engine.

Merges a batch of change events into a keyed current-state table, keeping only
the logically latest version of each key according to a sequence field rather
than arrival order.

Tie rule: when several events in one batch share a key and the maximum
sequence value, the last one in arrival order wins. Against the committed
table, a candidate replaces the existing row when its sequence value is
greater than or equal to the existing one.
"""

import math
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Sequence

from livetables.core.models import Record, freeze_record
from livetables.observability.logger import get_logger

logger = get_logger(__name__)

Key = tuple[Any, ...]


@dataclass(frozen=True)
class MergeAnomaly:
    """A change event discarded because it cannot be merged."""

    reason: str  # null_key, null_sequence, incomparable_sequence
    key: Key
    record: Record


@dataclass
class MergeResult:
    """
    Outcome of apply_changes.

    Attributes:
        state: The new table contents (the input mapping is never mutated)
        inserted: Keys seen for the first time
        updated: Keys whose row was replaced
        unchanged: Candidates identical to the committed row
        late: Candidates older than the committed row (discarded)
        superseded: Events beaten by a newer event for the same key in the same batch
        anomalies: Events discarded because of a null key or sequence value
    """

    state: dict[Key, Record]
    inserted: list[Key] = field(default_factory=list)
    updated: list[Key] = field(default_factory=list)
    unchanged: int = 0
    late: int = 0
    superseded: int = 0
    anomalies: list[MergeAnomaly] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.updated)

    def outcome_counts(self) -> dict[str, int]:
        return {
            "inserted": len(self.inserted),
            "updated": len(self.updated),
            "unchanged": self.unchanged,
            "late": self.late,
            "superseded": self.superseded,
            "anomaly": len(self.anomalies),
        }


def _is_sequence_value(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return isinstance(value, (int, float, datetime, date))


def _newer_or_equal(candidate: Any, existing: Any) -> bool:
    # TypeError propagates for mixed types (e.g. datetime vs float)
    return candidate >= existing


def apply_changes(
    current_state: Mapping[Key, Record],
    change_batch: Iterable[Record],
    key_fields: Sequence[str],
    sequence_field: str,
) -> MergeResult:
    """
    Merge a change batch into a keyed table.

    Args:
        current_state: Committed rows by key tuple
        change_batch: Change events in arrival order
        key_fields: Fields forming the key, in key-tuple order
        sequence_field: Field whose value orders versions of a key

    Returns:
        MergeResult holding the new state and per-outcome counts
    """
    result = MergeResult(state=dict(current_state))
    candidates: dict[Key, Record] = {}

    # Latest event per key within the batch
    for event in change_batch:
        key = tuple(event.get(name) for name in key_fields)
        sequence = event.get(sequence_field)

        if any(part is None for part in key):
            result.anomalies.append(MergeAnomaly("null_key", key, event))
            continue
        if sequence is None:
            result.anomalies.append(MergeAnomaly("null_sequence", key, event))
            continue
        if not _is_sequence_value(sequence):
            result.anomalies.append(MergeAnomaly("incomparable_sequence", key, event))
            continue

        current = candidates.get(key)
        if current is None:
            candidates[key] = event
            continue

        try:
            newer = _newer_or_equal(sequence, current[sequence_field])
        except TypeError:
            result.anomalies.append(MergeAnomaly("incomparable_sequence", key, event))
            continue

        if newer:
            candidates[key] = event
        result.superseded += 1

    # Compare each candidate with the committed row
    for key, candidate in candidates.items():
        existing = result.state.get(key)
        if existing is None:
            result.state[key] = freeze_record(candidate)
            result.inserted.append(key)
            continue

        try:
            newer = _newer_or_equal(candidate[sequence_field], existing.get(sequence_field))
        except TypeError:
            result.anomalies.append(MergeAnomaly("incomparable_sequence", key, candidate))
            continue

        if not newer:
            result.late += 1
            logger.debug(f"Discarding late change for key {key}")
        elif dict(candidate) == dict(existing):
            result.unchanged += 1
        else:
            result.state[key] = freeze_record(candidate)
            result.updated.append(key)

    for anomaly in result.anomalies:
        logger.warning(
            f"Discarded change event: {anomaly.reason}",
            extra={"reason": anomaly.reason, "key": [str(part) for part in anomaly.key]},
        )

    return result


@dataclass(frozen=True)
class TableSnapshot:
    """An immutable, versioned view of a current-state table."""

    rows: Mapping[Key, Record]
    version: int

    def __len__(self) -> int:
        return len(self.rows)

    def records(self) -> list[Record]:
        return list(self.rows.values())


class CurrentStateTable:
    """
    Keyed table holding the latest version of each key.

    Writers are serialized by a lock; a merge is computed against the committed
    snapshot, persisted, and only then swapped in as the new snapshot. Readers
    always get a complete snapshot: never one reflecting only part of a batch.
    """

    def __init__(
        self,
        name: str,
        key_fields: Sequence[str],
        sequence_field: str,
        rows: Mapping[Key, Record] | None = None,
        version: int = 0,
    ):
        self.name = name
        self.key_fields = tuple(key_fields)
        self.sequence_field = sequence_field
        self._lock = threading.RLock()
        self._snapshot = TableSnapshot(MappingProxyType(dict(rows or {})), version)

    @property
    def version(self) -> int:
        return self._snapshot.version

    def snapshot(self) -> TableSnapshot:
        return self._snapshot

    def get(self, key: Key) -> Record | None:
        return self._snapshot.rows.get(tuple(key))

    def __len__(self) -> int:
        return len(self._snapshot)

    def merge(
        self,
        change_batch: Iterable[Record],
        persist: Callable[[dict[Key, Record], int], None] | None = None,
    ) -> MergeResult:
        """
        Apply a change batch and commit the result.

        Args:
            change_batch: Change events in arrival order
            persist: Called with (new rows, new version) before the new snapshot
                is installed; if it raises, the table is left unchanged

        Returns:
            MergeResult of the batch
        """
        with self._lock:
            result = apply_changes(
                self._snapshot.rows, change_batch, self.key_fields, self.sequence_field
            )
            version = self._snapshot.version + (1 if result.changed else 0)
            if persist is not None:
                persist(result.state, version)
            self._snapshot = TableSnapshot(MappingProxyType(result.state), version)
            return result
