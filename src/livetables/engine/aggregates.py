"""
Aggregate maintainer for gold views.

Each view is a pure group-by reduction over the full current-state table.
Views are recomputed after every table commit and stamped with the table
version they reflect; a read against a newer table recomputes first, so
consumers never observe a stale view.
"""

import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Iterable, Sequence

from livetables.core.errors import AggregateRefreshError
from livetables.core.models import Record, freeze_record
from livetables.observability.logger import get_logger
from livetables.observability.metrics import record_aggregate_refresh

from .merge import CurrentStateTable, TableSnapshot

logger = get_logger(__name__)

Reducer = Callable[[list[Any]], Any]


def _sum(values: list[Any]) -> Any:
    return sum(v for v in values if v is not None)


def _count(values: list[Any]) -> int:
    return sum(1 for v in values if v is not None)


def _count_distinct(values: list[Any]) -> int:
    return len({v for v in values if v is not None})


def _min(values: list[Any]) -> Any:
    present = [v for v in values if v is not None]
    return min(present) if present else None


def _max(values: list[Any]) -> Any:
    present = [v for v in values if v is not None]
    return max(present) if present else None


REDUCERS: dict[str, Reducer] = {
    "sum": _sum,
    "count": _count,
    "count_distinct": _count_distinct,
    "min": _min,
    "max": _max,
}


def date_trunc_day(field_name: str) -> Callable[[Record], Any]:
    """Group-key extractor equivalent to date_trunc('day', field)."""

    def extract(record: Record) -> Any:
        value = record.get(field_name)
        if isinstance(value, datetime):
            return value.replace(hour=0, minute=0, second=0, microsecond=0)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        return None

    return extract


@dataclass(frozen=True)
class Aggregate:
    """One aggregate column: output name, reducer name and input field."""

    output: str
    function: str
    field_name: str

    def __post_init__(self):
        if self.function not in REDUCERS:
            raise ValueError(
                f"Unknown aggregate function '{self.function}'. Supported: {', '.join(REDUCERS)}"
            )


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False


@dataclass(frozen=True)
class AggregateView:
    """
    A gold view definition.

    Attributes:
        name: View name
        group_by: Output column name to extractor. A string extractor reads that field.
        aggregates: Aggregate columns (empty for SELECT DISTINCT style views)
        order_by: Ordering applied after grouping
        limit: Optional top-N cut applied after ordering
    """

    name: str
    group_by: dict[str, str | Callable[[Record], Any]]
    aggregates: tuple[Aggregate, ...] = ()
    order_by: tuple[OrderBy, ...] = ()
    limit: int | None = None

    def compute(self, rows: Iterable[Record]) -> list[Record]:
        """Reduce table rows to the view's rows."""
        extractors = {
            column: (lambda r, f=source: r.get(f)) if isinstance(source, str) else source
            for column, source in self.group_by.items()
        }

        groups: dict[tuple, dict[str, list[Any]]] = {}
        for row in rows:
            group_key = tuple(extract(row) for extract in extractors.values())
            inputs = groups.setdefault(group_key, {agg.output: [] for agg in self.aggregates})
            for agg in self.aggregates:
                inputs[agg.output].append(row.get(agg.field_name))

        output = []
        for group_key, inputs in groups.items():
            values = dict(zip(extractors.keys(), group_key))
            for agg in self.aggregates:
                values[agg.output] = REDUCERS[agg.function](inputs[agg.output])
            output.append(values)

        # Stable sorts applied last-key-first; None sorts first ascending
        for order in reversed(self.order_by):
            output.sort(
                key=lambda values, c=order.column: (values[c] is not None, values[c]),
                reverse=order.descending,
            )

        if self.limit is not None:
            output = output[: self.limit]

        return [freeze_record(values) for values in output]


@dataclass
class ViewState:
    rows: list[Record] = field(default_factory=list)
    table_version: int = -1


class AggregateMaintainer:
    """
    Keeps registered views consistent with a current-state table.

    refresh() recomputes every view from one table snapshot. It can be retried
    on its own after a failure: the table commit it follows is already durable.
    """

    def __init__(self, table: CurrentStateTable, on_refresh: Callable[[str, list[Record], int], None] | None = None):
        """
        Args:
            table: The table the views reduce
            on_refresh: Optional sink called with (view name, rows, table version),
                e.g. to materialize views for external readers
        """
        self.table = table
        self.on_refresh = on_refresh
        self._views: dict[str, AggregateView] = {}
        self._state: dict[str, ViewState] = {}
        self._lock = threading.RLock()

    def register(self, view: AggregateView) -> None:
        with self._lock:
            if view.name in self._views:
                raise ValueError(f"Aggregate view '{view.name}' is already registered")
            self._views[view.name] = view
            self._state[view.name] = ViewState()

    @property
    def view_names(self) -> list[str]:
        return list(self._views)

    def is_stale(self) -> bool:
        version = self.table.version
        return any(state.table_version != version for state in self._state.values())

    def refresh(self, snapshot: TableSnapshot | None = None) -> int:
        """
        Recompute all views from a table snapshot.

        Args:
            snapshot: Snapshot to reduce; defaults to the table's current snapshot

        Returns:
            The table version the views now reflect

        Raises:
            AggregateRefreshError: If any view fails; no view is updated in that case
        """
        with self._lock:
            snapshot = snapshot or self.table.snapshot()
            rows = snapshot.records()
            computed: dict[str, list[Record]] = {}

            for name, view in self._views.items():
                try:
                    computed[name] = view.compute(rows)
                except Exception as e:
                    record_aggregate_refresh(name, success=False)
                    raise AggregateRefreshError(name, e) from e

            for name, view_rows in computed.items():
                if self.on_refresh is not None:
                    try:
                        self.on_refresh(name, view_rows, snapshot.version)
                    except OSError as e:
                        record_aggregate_refresh(name, success=False)
                        raise AggregateRefreshError(name, e) from e

            for name, view_rows in computed.items():
                self._state[name] = ViewState(rows=view_rows, table_version=snapshot.version)
                record_aggregate_refresh(name, success=True)

            logger.info(
                f"Refreshed {len(computed)} aggregate view(s) of '{self.table.name}' "
                f"at version {snapshot.version}"
            )
            return snapshot.version

    def read(self, view_name: str) -> list[Record]:
        """
        Read a view, recomputing first if the table has moved past it.

        Raises:
            KeyError: If the view is not registered
        """
        with self._lock:
            if view_name not in self._views:
                raise KeyError(f"Unknown aggregate view: {view_name}")
            snapshot = self.table.snapshot()
            if self._state[view_name].table_version != snapshot.version:
                self.refresh(snapshot)
            return list(self._state[view_name].rows)


def sum_view(name: str, group_column: str, group_source: str | Callable[[Record], Any],
             value_field: str, output: str, order_by: Sequence[OrderBy] = (),
             limit: int | None = None) -> AggregateView:
    """Shorthand for a single SUM grouped by one column."""
    return AggregateView(
        name=name,
        group_by={group_column: group_source},
        aggregates=(Aggregate(output, "sum", value_field),),
        order_by=tuple(order_by),
        limit=limit,
    )
