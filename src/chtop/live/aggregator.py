"""
Snapshot aggregation and bounded metric history.

This module provides:
- Ordering helpers: caller-supplied comparators for merged rows
- SnapshotAggregator: merges a FanoutResult into one cluster-wide Snapshot
- MetricSeries: ring buffer of Snapshots per template for delta/rate derivation
- compute_rates: per-second rates between two snapshots

Merged rows are keyed by RowKey(host_id, native_id). A duplicate key can
only come from a template whose key is not unique per host, so it raises
DuplicateRowKeyError instead of being merged away.
"""

import functools
import logging
from collections import deque
from collections.abc import Callable, Iterator
from typing import Any

from chtop.errors import DuplicateRowKeyError
from chtop.query import QueryTemplate, rate_value
from chtop.types import FanoutResult, HostError, Row, RowKey, Snapshot

logger = logging.getLogger(__name__)

Ordering = Callable[[Row, Row], int]
"""Comparator over rows: negative if a sorts before b, 0 if equal, positive otherwise."""


def _compare(a: Any, b: Any) -> int:
    # None sorts lowest
    if a is None or b is None:
        return (a is not None) - (b is not None)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def by_field(name: str, descending: bool = True) -> Ordering:
    """
    Build a comparator on one row field.

    Args:
        name: Semantic field name
        descending: Largest first when True (the default for "top" views)
    """

    def ordering(a: Row, b: Row) -> int:
        result = _compare(a.get(name), b.get(name))
        return -result if descending else result

    return ordering


def by_fields(*orderings: Ordering) -> Ordering:
    """Chain comparators; later ones break ties of earlier ones."""

    def ordering(a: Row, b: Row) -> int:
        for cmp in orderings:
            result = cmp(a, b)
            if result:
                return result
        return 0

    return ordering


def default_ordering(template: QueryTemplate) -> Ordering | None:
    """The template's declared ordering, if any."""
    if template.order_by is None:
        return None
    return by_field(template.order_by, descending=True)


def compute_rates(
    previous: Snapshot,
    current: Snapshot,
    rate_fields: tuple[str, ...],
) -> dict[RowKey, dict[str, float]]:
    """
    Compute per-second rates for keys present in both snapshots.

    rate = (value_now - value_prev) / (t_now - t_prev)

    Keys that only exist in current get no entry (absent, not zero). A
    counter that went backwards (query restarted, host replaced) gets no
    rate either. Non-increasing timestamps produce no rates at all.
    """
    elapsed = (current.timestamp - previous.timestamp).total_seconds()
    if elapsed <= 0 or not rate_fields:
        return {}

    previous_rows = {row.key: row for row in previous.rows}
    rates: dict[RowKey, dict[str, float]] = {}
    for row in current.rows:
        prev_row = previous_rows.get(row.key)
        if prev_row is None:
            continue
        row_rates: dict[str, float] = {}
        for rate_field in rate_fields:
            now_value = rate_value(row, rate_field)
            prev_value = rate_value(prev_row, rate_field)
            if now_value is None or prev_value is None or now_value < prev_value:
                continue
            row_rates[rate_field] = (now_value - prev_value) / elapsed
        if row_rates:
            rates[row.key] = row_rates
    return rates


class SnapshotAggregator:
    """
    Merges per-host rows into one ordered, deduplicated Snapshot.

    Example:
        aggregator = SnapshotAggregator(PROCESSES)
        snapshot = aggregator.merge(result, by_field("elapsed"), previous=series.latest)
        for row in snapshot.top(20):
            print(row.key, row["elapsed"], snapshot.rate(row.key, "cpu_us"))
    """

    def __init__(self, template: QueryTemplate) -> None:
        self.template = template

    def merge(
        self,
        result: FanoutResult,
        ordering: Ordering | None = None,
        top_n: int | None = None,
        previous: Snapshot | None = None,
    ) -> Snapshot:
        """
        Merge a fan-out result.

        Args:
            result: Per-host rows or errors
            ordering: Row comparator; ties are broken by RowKey
            top_n: Truncate to this many rows (None keeps all). Series
                owners should keep the full set and truncate at display time.
            previous: Previous snapshot of the same series for rate derivation

        Returns:
            Snapshot with failed hosts recorded in source_hosts_failed.

        Raises:
            DuplicateRowKeyError: If two rows share a host-qualified key.
        """
        rows: list[Row] = []
        seen: set[RowKey] = set()
        errors: dict[str, HostError] = {}
        for host_id, entry in result.per_host.items():
            if isinstance(entry, HostError):
                errors[host_id] = entry
                continue
            for row in entry:
                if row.key in seen:
                    raise DuplicateRowKeyError(self.template.name, row.key)
                seen.add(row.key)
                rows.append(row)

        rows.sort(key=functools.cmp_to_key(self._with_tiebreak(ordering)))
        if top_n is not None:
            rows = rows[: max(top_n, 0)]

        snapshot = Snapshot(
            template=self.template.name,
            timestamp=result.finished_at,
            rows=rows,
            source_hosts_failed=frozenset(errors),
            hosts_total=len(result.per_host),
            errors=errors,
        )
        if previous is not None:
            snapshot.rates = compute_rates(previous, snapshot, self.template.rate_fields)
        return snapshot

    @staticmethod
    def _with_tiebreak(ordering: Ordering | None) -> Ordering:
        def compare(a: Row, b: Row) -> int:
            if ordering is not None:
                result = ordering(a, b)
                if result:
                    return result
            return _compare(a.key, b.key)

        return compare


class MetricSeries:
    """
    Bounded, strictly time-ordered history of Snapshots for one template.

    Oldest snapshots are evicted on append once capacity is reached.

    Example:
        series = MetricSeries(capacity=60)
        series.append(snapshot)
        print(series.latest, series.previous)
    """

    def __init__(self, capacity: int = 60) -> None:
        if capacity < 2:
            raise ValueError(f"MetricSeries capacity must be >= 2, got {capacity}")
        self._snapshots: deque[Snapshot] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._snapshots.maxlen or 0

    def append(self, snapshot: Snapshot) -> None:
        """
        Append a snapshot.

        Raises:
            ValueError: If the timestamp does not move forward.
        """
        latest = self.latest
        if latest is not None and snapshot.timestamp <= latest.timestamp:
            raise ValueError(
                f"Snapshot timestamp {snapshot.timestamp} is not after {latest.timestamp}"
            )
        self._snapshots.append(snapshot)

    @property
    def latest(self) -> Snapshot | None:
        return self._snapshots[-1] if self._snapshots else None

    @property
    def previous(self) -> Snapshot | None:
        return self._snapshots[-2] if len(self._snapshots) > 1 else None

    def values(self, extract: Callable[[Snapshot], float]) -> list[float]:
        """Project every stored snapshot to one number (for sparklines)."""
        return [extract(s) for s in self._snapshots]

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self._snapshots)

    def clear(self) -> None:
        self._snapshots.clear()
