"""
Live telemetry engine.

This module provides:
- FanoutExecutor, CancellationToken: concurrent per-host query execution
- SnapshotAggregator, MetricSeries: merged snapshots and bounded history
- TimeWindow: live/historical time ranges
- LiveScheduler: tick loop with pause/resume/seek
- QueryActions: one-off kill query and explain
"""

from chtop.live.actions import ActionOutcome, ExplainKind, QueryActions
from chtop.live.aggregator import (
    MetricSeries,
    SnapshotAggregator,
    by_field,
    by_fields,
    compute_rates,
)
from chtop.live.fanout import CancellationToken, FanoutExecutor
from chtop.live.scheduler import LiveScheduler, SchedulerState
from chtop.live.window import TimeWindow, WindowMode

__all__ = [
    "ActionOutcome",
    "CancellationToken",
    "ExplainKind",
    "FanoutExecutor",
    "LiveScheduler",
    "MetricSeries",
    "QueryActions",
    "SchedulerState",
    "SnapshotAggregator",
    "TimeWindow",
    "WindowMode",
    "by_field",
    "by_fields",
    "compute_rates",
]
