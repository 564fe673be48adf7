"""
Tests for the dashboard building blocks.

Covers the log buffer, the pure rendering helpers and the controller's
key handling. The Live display itself is not started.
"""

import asyncio
import io
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from conftest import StepClock
from chtop.clickhouse.templates import CPU_EVENT, MERGES, PROCESSES, SUMMARY
from chtop.errors import HostUnreachableError, RefreshRejectedError
from chtop.live.actions import QueryActions
from chtop.live.aggregator import MetricSeries
from chtop.live.fanout import FanoutExecutor
from chtop.live.scheduler import LiveScheduler, SchedulerState
from chtop.live.window import TimeWindow
from chtop.tui.buffer import BufferHandler, OutputBuffer
from chtop.tui.controller import DashboardController
from chtop.tui.keyboard import KEY_DOWN, KEY_UP
from chtop.tui.layout import create_layout, make_cluster_panel
from chtop.tui.render import (
    build_view_table,
    format_bytes,
    format_cluster_panel,
    format_header,
    format_rate,
    format_summary_panel,
    format_value,
    get_sparkline,
)
from chtop.types import HostState, HostStatus, Snapshot

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def process_row(host_id: str, query_id: str, elapsed: float):
    return PROCESSES.decode(
        host_id,
        {
            "query_id": query_id,
            "user": "default",
            "elapsed": elapsed,
            "peak_memory_usage": 1024,
            "threads": 1,
            "is_initial_query": 1,
            "ProfileEvents": {CPU_EVENT: 1000000},
            "normalized_query": "SELECT [x]",
            "query": "SELECT [x]",
        },
    )


class TestOutputBuffer:
    def test_ring_buffer_drops_oldest(self):
        buffer = OutputBuffer(maxlen=3)
        for i in range(5):
            buffer.append(f"line {i}\n")

        assert len(buffer) == 3
        assert buffer.get_lines() == ["line 2", "line 3", "line 4"]
        assert buffer.get_lines(2) == ["line 3", "line 4"]
        assert buffer.get_lines(0) == []
        assert buffer.get_text(1) == "line 4"

    def test_clear(self):
        buffer = OutputBuffer()
        buffer.append("x")
        buffer.clear()
        assert list(buffer) == []


class TestBufferHandler:
    def make_logger(self, buffer: OutputBuffer) -> logging.Logger:
        logger = logging.getLogger("chtop.tests.buffer")
        logger.handlers = [BufferHandler(buffer)]
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        return logger

    def test_formats_level_and_escapes_markup(self):
        buffer = OutputBuffer()
        self.make_logger(buffer).warning("Host [b] failed")

        line = buffer.get_lines()[0]
        assert "[yellow]W[/yellow]" in line
        assert "\\[b]" in line

    def test_multiline_messages_are_indented(self):
        buffer = OutputBuffer()
        self.make_logger(buffer).error("first\nsecond")

        lines = buffer.get_lines()
        assert len(lines) == 2
        assert lines[1].startswith(" ") and lines[1].endswith("second")


class TestRender:
    def test_format_bytes(self):
        assert format_bytes(512) == "512 B"
        assert format_bytes(1536) == "1.5 KiB"
        assert format_bytes(3 * 1024**3) == "3.0 GiB"

    def test_format_value(self):
        assert format_value("memory", 2048) == "2.0 KiB"
        assert format_value("elapsed", 1.234) == "1.23"
        assert format_value("initial", True) == "yes"
        assert format_value("query", "x" * 100, width=10) == "x" * 9 + "…"
        assert format_value("query", None) == ""

    def test_format_rate(self):
        assert format_rate(f"events.{CPU_EVENT}", 2_500_000) == "2.50"
        assert format_rate("rows_read", 1234.0) == "1,234"
        # Absent is empty, not zero
        assert format_rate("rows_read", None) == ""

    def test_build_view_table(self):
        rows = [process_row("a:8123", "q1", 2.0), process_row("b:8123", "q2", 1.0)]
        snapshot = Snapshot("processes", T0, rows)

        table = build_view_table(PROCESSES, snapshot, rows, selected=0)

        assert table.row_count == 2
        headers = [c.header for c in table.columns]
        assert headers[0] == "host"
        assert "cpu" in headers

    def test_build_view_table_without_snapshot(self):
        table = build_view_table(MERGES, None, [])
        assert table.row_count == 0

    def test_header_banners(self):
        window = TimeWindow.live(timedelta(hours=1))
        partial = Snapshot(
            "processes", T0, [], source_hosts_failed=frozenset({"b:8123"}), hosts_total=3
        )
        total = Snapshot(
            "processes",
            T0,
            [],
            source_hosts_failed=frozenset({"a:8123", "b:8123"}),
            hosts_total=2,
        )

        partial_header = format_header(
            SchedulerState.RUNNING, window, [PROCESSES], "processes", partial, 20
        )
        total_header = format_header(
            SchedulerState.PAUSED, window, [PROCESSES], "processes", total, 20
        )

        assert "RUNNING" in partial_header
        assert "1/3 hosts failed" in partial_header
        assert "b:8123" in partial_header
        assert "PAUSED" in total_header
        assert "All hosts failed" in total_header

    def test_cluster_panel(self, topology):
        topology.get("b:8123").state = HostState(HostStatus.DOWN, "Connection refused")
        text = format_cluster_panel(topology)

        assert "b:8123" in text
        assert "Connection refused" in text
        assert "1 down" in text

    def test_cluster_panel_border(self):
        assert make_cluster_panel("", failed=2, total=2).border_style == "bold red"
        assert make_cluster_panel("", failed=1, total=2).border_style == "yellow"
        assert make_cluster_panel("", failed=0, total=2).border_style == "cyan"

    def test_summary_panel(self):
        series = MetricSeries()
        assert "Waiting" in format_summary_panel(series)

        raw = {c.name: 1 for c in SUMMARY.columns}
        for i in range(3):
            raw["host_name"] = "ch-1"
            raw["running_queries"] = i
            row = SUMMARY.decode("a:8123", raw)
            series.append(Snapshot("summary", T0 + timedelta(seconds=i), [row], hosts_total=1))

        text = format_summary_panel(series)
        assert "queries" in text
        assert "1/1 hosts reporting" in text

    def test_sparkline(self):
        assert get_sparkline([]) == ""
        assert len(get_sparkline([1, 2, 3])) == 3

    def test_layout_regions(self):
        layout = create_layout()
        for name in ("header", "cluster", "view", "summary", "log"):
            assert layout[name] is not None


def mock_scheduler() -> MagicMock:
    scheduler = MagicMock(spec=LiveScheduler)
    scheduler.state = SchedulerState.RUNNING
    scheduler.window = TimeWindow.live(timedelta(hours=1))
    scheduler.top_n = 20
    scheduler.visible.return_value = []
    return scheduler


def make_controller(scheduler, **kwargs) -> DashboardController:
    return DashboardController(scheduler, console=Console(file=io.StringIO()), **kwargs)


class TestKeyHandling:
    @pytest.mark.asyncio
    async def test_pause_toggles(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)

        controller.handle_key("p")
        scheduler.pause.assert_called_once()

        scheduler.state = SchedulerState.PAUSED
        controller.handle_key("p")
        scheduler.resume.assert_called_once()

    @pytest.mark.asyncio
    async def test_seek_keys(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler, seek_step=timedelta(minutes=5))

        controller.handle_key("[")
        controller.handle_key("]")
        controller.handle_key("l")

        scheduler.seek.assert_any_call(-timedelta(minutes=5))
        scheduler.seek.assert_any_call(timedelta(minutes=5))
        scheduler.set_live.assert_called_once()

    @pytest.mark.asyncio
    async def test_span_keys(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)

        controller.handle_key("(")
        scheduler.set_time_interval.assert_called_with(timedelta(minutes=30))
        controller.handle_key(")")
        scheduler.set_time_interval.assert_called_with(timedelta(hours=2))

    @pytest.mark.asyncio
    async def test_top_n_keys(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)

        controller.handle_key("+")
        scheduler.set_top_n.assert_called_with(25)
        controller.handle_key("-")
        scheduler.set_top_n.assert_called_with(15)

    @pytest.mark.asyncio
    async def test_refresh_rejected_is_logged(self, caplog, monkeypatch):
        scheduler = mock_scheduler()
        scheduler.refresh_now.side_effect = RefreshRejectedError()
        controller = make_controller(scheduler)
        monkeypatch.setattr(logging.getLogger("chtop"), "propagate", True)

        with caplog.at_level(logging.WARNING, logger="chtop.tui.controller"):
            controller.handle_key("r")

        assert "paused" in caplog.text

    @pytest.mark.asyncio
    async def test_quit_stops_scheduler(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)

        controller.handle_key("q")

        scheduler.stop.assert_called_once()
        assert controller._shutdown.is_set()

    @pytest.mark.asyncio
    async def test_unknown_keys_ignored(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)
        controller.handle_key("z")
        controller.handle_key("0")
        scheduler.pause.assert_not_called()
        scheduler.register.assert_not_called()


class TestViewsAndSelection:
    @pytest.mark.asyncio
    async def test_switch_view_replaces_registration(self, transport, topology):
        scheduler = LiveScheduler(FanoutExecutor(transport, clock=StepClock()), topology)
        controller = make_controller(scheduler)
        scheduler.register(SUMMARY)
        scheduler.register(controller.current)

        controller.handle_key("3")
        await scheduler.drain()

        assert controller.current.name == "merges"
        assert {v.name for v in scheduler.views} == {"summary", "merges"}
        assert len(scheduler.view("merges").series) == 1

    @pytest.mark.asyncio
    async def test_switch_out_of_range_ignored(self):
        scheduler = mock_scheduler()
        controller = make_controller(scheduler)
        controller.handle_key("9")
        assert controller.current.name == "processes"

    @pytest.mark.asyncio
    async def test_selection_and_kill(self, transport, topology):
        transport.script(
            "b:8123",
            [
                {
                    "query_id": "slow",
                    "user": "default",
                    "elapsed": 9.0,
                    "peak_memory_usage": 0,
                    "threads": 1,
                    "is_initial_query": 1,
                    "ProfileEvents": {},
                    "normalized_query": "SELECT ?",
                    "query": "SELECT 1",
                },
                {
                    "query_id": "fast",
                    "user": "default",
                    "elapsed": 1.0,
                    "peak_memory_usage": 0,
                    "threads": 1,
                    "is_initial_query": 1,
                    "ProfileEvents": {},
                    "normalized_query": "SELECT ?",
                    "query": "SELECT 2",
                },
            ],
        )
        scheduler = LiveScheduler(FanoutExecutor(transport, clock=StepClock()), topology)
        actions = QueryActions(transport, topology)
        controller = make_controller(scheduler, actions=actions)
        scheduler.register(PROCESSES)
        await asyncio.gather(*scheduler.tick())

        controller.handle_key(KEY_DOWN)
        controller.handle_key(KEY_DOWN)
        assert controller.selected == 1
        controller.handle_key(KEY_UP)
        assert controller.selected_row().native_id == "slow"

        controller.handle_key("K")
        await asyncio.gather(*actions._tasks)

        outcome = actions.outcomes[-1]
        assert outcome.host_id == "b:8123"
        assert outcome.target == "slow"

    @pytest.mark.asyncio
    async def test_kill_ignored_outside_processes_view(self):
        scheduler = mock_scheduler()
        actions = MagicMock(spec=QueryActions)
        controller = make_controller(scheduler, actions=actions)
        controller.current = MERGES

        controller.handle_key("K")

        actions.kill_query.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_panels_shows_partial_failure(self, transport, topology):
        transport.script("b:8123", HostUnreachableError("b:8123", "refused"))
        scheduler = LiveScheduler(FanoutExecutor(transport, clock=StepClock()), topology)
        controller = make_controller(scheduler)
        scheduler.register(SUMMARY)
        scheduler.register(controller.current)
        await asyncio.gather(*scheduler.tick())

        controller._refresh_panels()

        header = controller._layout["header"].renderable
        assert "1/3 hosts failed" in header
        assert "b:8123" in header
