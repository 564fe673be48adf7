"""
Tests for SnapshotAggregator, compute_rates and MetricSeries.

Verifies that:
- Merged rows are host-qualified, unique and ordered with a stable tie-break
- Failed hosts are recorded without dropping rows of the others
- Rates are exact per-second deltas and absent (not zero) for new keys
- MetricSeries is bounded and strictly time-ordered
"""

from datetime import datetime, timedelta, timezone

import pytest

from chtop.errors import DuplicateRowKeyError
from chtop.live.aggregator import (
    MetricSeries,
    SnapshotAggregator,
    by_field,
    by_fields,
    compute_rates,
)
from chtop.query import Column, QueryTemplate, to_counters, to_int, to_str
from chtop.types import ErrorCause, FanoutResult, HostError, Row, RowKey, Snapshot

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

TEMPLATE = QueryTemplate(
    name="items",
    sql="SELECT id, value, user FROM items",
    columns=(
        Column("id", convert=to_str),
        Column("value", convert=to_int),
        Column("user", convert=to_str),
    ),
    key="id",
    rate_fields=("value",),
    order_by="value",
)


def row(host_id: str, native_id: str, value: int, user: str = "default") -> Row:
    return TEMPLATE.decode(host_id, {"id": native_id, "value": value, "user": user})


def result(per_host, at: datetime = T0) -> FanoutResult:
    return FanoutResult(template="items", per_host=per_host, started_at=at, finished_at=at)


class TestMerge:
    def test_merge_completeness(self):
        fanout = result(
            {
                "a:8123": [row("a:8123", "q1", 5), row("a:8123", "q2", 1)],
                "b:8123": [row("b:8123", "q1", 3)],
                "c:8123": HostError("c:8123", ErrorCause.TIMEOUT, "timed out"),
            }
        )

        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout)

        keys = [r.key for r in snapshot.rows]
        assert len(keys) == 3
        assert len(set(keys)) == len(keys)
        # Same native id on two hosts stays two rows
        assert RowKey("a:8123", "q1") in keys
        assert RowKey("b:8123", "q1") in keys
        assert snapshot.source_hosts_failed == frozenset({"c:8123"})
        assert snapshot.hosts_total == 3
        assert snapshot.partial_failure
        assert not snapshot.total_failure
        assert snapshot.timestamp == T0

    def test_ordering_descending_with_key_tiebreak(self):
        fanout = result(
            {
                "b:8123": [row("b:8123", "q1", 5)],
                "a:8123": [row("a:8123", "q2", 5), row("a:8123", "q3", 9)],
            }
        )

        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout, by_field("value"))

        assert [r.key for r in snapshot.rows] == [
            RowKey("a:8123", "q3"),
            RowKey("a:8123", "q2"),
            RowKey("b:8123", "q1"),
        ]

    def test_no_ordering_sorts_by_key(self):
        fanout = result({"b:8123": [row("b:8123", "x", 1)], "a:8123": [row("a:8123", "y", 2)]})
        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout)
        assert [r.host_id for r in snapshot.rows] == ["a:8123", "b:8123"]

    def test_chained_ordering(self):
        fanout = result(
            {
                "a:8123": [
                    row("a:8123", "q1", 1, "bob"),
                    row("a:8123", "q2", 7, "alice"),
                    row("a:8123", "q3", 3, "bob"),
                ]
            }
        )
        ordering = by_fields(by_field("user", descending=False), by_field("value"))

        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout, ordering)

        assert [r.native_id for r in snapshot.rows] == ["q2", "q3", "q1"]

    def test_top_n_truncates(self):
        fanout = result({"a:8123": [row("a:8123", f"q{i}", i) for i in range(10)]})
        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout, by_field("value"), top_n=3)
        assert [r["value"] for r in snapshot.rows] == [9, 8, 7]

    def test_duplicate_key_on_one_host_raises(self):
        fanout = result({"a:8123": [row("a:8123", "q1", 1), row("a:8123", "q1", 2)]})
        with pytest.raises(DuplicateRowKeyError) as exc_info:
            SnapshotAggregator(TEMPLATE).merge(fanout)
        assert exc_info.value.template == "items"

    def test_total_failure(self):
        fanout = result(
            {
                "a:8123": HostError("a:8123", ErrorCause.UNREACHABLE, "refused"),
                "b:8123": HostError("b:8123", ErrorCause.UNREACHABLE, "refused"),
            }
        )
        snapshot = SnapshotAggregator(TEMPLATE).merge(fanout)
        assert snapshot.rows == []
        assert snapshot.total_failure
        assert not snapshot.partial_failure


class TestRates:
    def test_delta_correctness(self):
        aggregator = SnapshotAggregator(TEMPLATE)
        first = aggregator.merge(result({"a:8123": [row("a:8123", "q1", 10)]}, T0))
        second = aggregator.merge(
            result(
                {"a:8123": [row("a:8123", "q1", 20), row("a:8123", "q2", 50)]},
                T0 + timedelta(seconds=5),
            ),
            previous=first,
        )

        assert second.rate(RowKey("a:8123", "q1"), "value") == 2.0
        # New key: absent, not zero
        assert second.rate(RowKey("a:8123", "q2"), "value") is None
        assert RowKey("a:8123", "q2") not in second.rates

    def test_counter_reset_has_no_rate(self):
        previous = Snapshot("items", T0, [row("a:8123", "q1", 100)])
        current = Snapshot("items", T0 + timedelta(seconds=1), [row("a:8123", "q1", 5)])
        assert compute_rates(previous, current, ("value",)) == {}

    def test_non_increasing_time_has_no_rates(self):
        previous = Snapshot("items", T0, [row("a:8123", "q1", 1)])
        current = Snapshot("items", T0, [row("a:8123", "q1", 5)])
        assert compute_rates(previous, current, ("value",)) == {}

    def test_same_native_id_on_other_host_is_new(self):
        previous = Snapshot("items", T0, [row("a:8123", "q1", 1)])
        current = Snapshot("items", T0 + timedelta(seconds=1), [row("b:8123", "q1", 5)])
        assert compute_rates(previous, current, ("value",)) == {}

    def test_counter_map_rates(self):
        template = QueryTemplate(
            name="processes",
            sql="SELECT query_id, ProfileEvents FROM system.processes",
            columns=(Column("query_id"), Column("ProfileEvents", "events", to_counters)),
            key="query_id",
            rate_fields=("events.NetworkSendBytes",),
        )
        before = template.decode("a:8123", {"query_id": "q", "ProfileEvents": {}})
        after = template.decode(
            "a:8123", {"query_id": "q", "ProfileEvents": {"NetworkSendBytes": "4096"}}
        )
        rates = compute_rates(
            Snapshot("processes", T0, [before]),
            Snapshot("processes", T0 + timedelta(seconds=2), [after]),
            template.rate_fields,
        )
        assert rates[RowKey("a:8123", "q")]["events.NetworkSendBytes"] == 2048.0


class TestMetricSeries:
    def snapshot(self, seconds: int) -> Snapshot:
        return Snapshot("items", T0 + timedelta(seconds=seconds), [])

    def test_capacity_evicts_oldest(self):
        series = MetricSeries(capacity=3)
        for i in range(5):
            series.append(self.snapshot(i))

        assert len(series) == 3
        assert [s.timestamp.second for s in series] == [2, 3, 4]
        assert series.latest.timestamp.second == 4
        assert series.previous.timestamp.second == 3

    def test_rejects_non_increasing_timestamp(self):
        series = MetricSeries()
        series.append(self.snapshot(5))
        with pytest.raises(ValueError):
            series.append(self.snapshot(5))
        with pytest.raises(ValueError):
            series.append(self.snapshot(1))

    def test_capacity_minimum(self):
        with pytest.raises(ValueError):
            MetricSeries(capacity=1)

    def test_empty_series(self):
        series = MetricSeries()
        assert series.latest is None
        assert series.previous is None
        assert series.values(lambda s: 1.0) == []

    def test_values_projects_snapshots(self):
        series = MetricSeries()
        for i in range(3):
            series.append(self.snapshot(i))
        assert series.values(lambda s: float(s.timestamp.second)) == [0.0, 1.0, 2.0]

    def test_clear(self):
        series = MetricSeries()
        series.append(self.snapshot(0))
        series.clear()
        assert len(series) == 0
