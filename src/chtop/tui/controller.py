"""
DashboardController: ties the LiveScheduler to a rich Live display.

The controller:
- Registers the current view and the summary view with the scheduler
- Runs the scheduler loop, the keyboard reader and the redraw loop in
  one asyncio TaskGroup
- Maps keypresses to scheduler controls (pause, seek, refresh, top_n)
- Handles SIGINT/SIGTERM by stopping every task

Signal handlers are registered first thing in run(), before the Live
context takes over the terminal, so Ctrl+C works during startup too.

Keys:
    p          pause / resume
    r          refresh now
    [ ]        seek backwards / forwards by seek_step
    l          back to live
    ( )        halve / double the time span
    + -        show more / fewer rows
    1-8        switch view
    up/down    move selection
    K          kill the selected query (processes view)
    q          quit
"""

import asyncio
import functools
import logging
import signal
from collections.abc import Sequence
from datetime import timedelta

from rich.console import Console
from rich.live import Live

from chtop.clickhouse.templates import PROCESSES, SUMMARY, VIEWS
from chtop.errors import RefreshRejectedError
from chtop.live.actions import QueryActions
from chtop.live.scheduler import LiveScheduler, SchedulerState
from chtop.query import QueryTemplate
from chtop.tui.buffer import OutputBuffer
from chtop.tui.keyboard import KEY_DOWN, KEY_UP, KeyboardTask
from chtop.tui.layout import create_layout, make_cluster_panel, make_panel
from chtop.tui.render import (
    build_view_table,
    format_cluster_panel,
    format_header,
    format_summary_panel,
)
from chtop.types import HostStatus, Row

logger = logging.getLogger(__name__)

TOP_N_STEP = 5


class DashboardController:
    """
    Runs the interactive dashboard until quit or a shutdown signal.

    Example:
        controller = DashboardController(scheduler, actions, log_buffer=buffer)
        await controller.run()
    """

    def __init__(
        self,
        scheduler: LiveScheduler,
        actions: QueryActions | None = None,
        views: Sequence[QueryTemplate] = VIEWS,
        summary: QueryTemplate = SUMMARY,
        console: Console | None = None,
        log_buffer: OutputBuffer | None = None,
        seek_step: timedelta = timedelta(minutes=10),
        redraw_interval: float = 0.25,
    ) -> None:
        """
        Initialize controller.

        Args:
            scheduler: Scheduler that owns views and time window
            actions: One-off actions (kill query); None disables K
            views: Views reachable with the number keys
            summary: View feeding the summary sparklines
            console: Rich Console to use (creates default if None)
            log_buffer: Buffer the log panel is rendered from
            seek_step: How far [ and ] move the window
            redraw_interval: Seconds between redraws
        """
        if not views:
            raise ValueError("At least one view is required")
        self.scheduler = scheduler
        self.actions = actions
        self.views = list(views)
        self.summary = summary
        self.console = console if console is not None else Console()
        self.log_buffer = log_buffer if log_buffer is not None else OutputBuffer(200)
        self.seek_step = seek_step
        self.redraw_interval = redraw_interval
        self.current = self.views[0]
        self.selected = 0
        self._layout = create_layout()
        self._shutdown = asyncio.Event()
        self._keyboard: KeyboardTask | None = None

    async def run(self) -> None:
        """Run the dashboard until q, SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, functools.partial(self._handle_signal, sig))

        try:
            self.scheduler.register(self.summary)
            self.scheduler.register(self.current)
            self._keyboard = KeyboardTask(on_key=self.handle_key)
            self._refresh_panels()

            with Live(
                self._layout,
                console=self.console,
                refresh_per_second=4,
                screen=True,
            ) as live:
                async with asyncio.TaskGroup() as tg:
                    tg.create_task(self.scheduler.run())
                    tg.create_task(self._keyboard.run())
                    tg.create_task(self._update_loop(live))
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    def shutdown(self) -> None:
        """Stop the scheduler, the keyboard reader and the redraw loop."""
        self._shutdown.set()
        self.scheduler.stop()
        if self._keyboard is not None:
            self._keyboard.stop()

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        self.shutdown()

    async def _update_loop(self, live: Live) -> None:
        while not self._shutdown.is_set():
            self._refresh_panels()
            live.refresh()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.redraw_interval)
            except asyncio.TimeoutError:
                pass

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    def handle_key(self, key: str) -> None:
        """Dispatch one keypress to the matching control."""
        scheduler = self.scheduler
        if key in ("q", "Q"):
            self.shutdown()
        elif key == "p":
            if scheduler.state is SchedulerState.PAUSED:
                scheduler.resume()
            else:
                scheduler.pause()
        elif key == "r":
            try:
                scheduler.refresh_now()
            except RefreshRejectedError as e:
                logger.warning("%s", e)
        elif key == "[":
            scheduler.seek(-self.seek_step)
        elif key == "]":
            scheduler.seek(self.seek_step)
        elif key == "l":
            scheduler.set_live()
        elif key == "(":
            scheduler.set_time_interval(scheduler.window.span / 2)
        elif key == ")":
            scheduler.set_time_interval(scheduler.window.span * 2)
        elif key in ("+", "="):
            scheduler.set_top_n(scheduler.top_n + TOP_N_STEP)
        elif key == "-":
            scheduler.set_top_n(max(1, scheduler.top_n - TOP_N_STEP))
        elif key.isdigit() and key != "0":
            self.switch_view(int(key) - 1)
        elif key == KEY_UP:
            self.selected = max(0, self.selected - 1)
        elif key == KEY_DOWN:
            self.selected = min(self.selected + 1, max(0, len(self._visible()) - 1))
        elif key == "K":
            self.kill_selected()

    def switch_view(self, index: int) -> None:
        """Show views[index]; the previous view stops being refreshed."""
        if not 0 <= index < len(self.views):
            return
        view = self.views[index]
        if view.name == self.current.name:
            return
        if self.current.name != self.summary.name:
            self.scheduler.unregister(self.current.name)
        self.current = view
        self.selected = 0
        self.scheduler.register(view)
        if self.scheduler.state is not SchedulerState.PAUSED:
            self.scheduler.refresh_now()

    def selected_row(self) -> Row | None:
        rows = self._visible()
        if 0 <= self.selected < len(rows):
            return rows[self.selected]
        return None

    def kill_selected(self) -> None:
        """Kill the highlighted query in the processes view."""
        if self.actions is None or self.current.name != PROCESSES.name:
            return
        row = self.selected_row()
        if row is None:
            return
        self.actions.kill_query(row.host_id, row.native_id)

    # -------------------------------------------------------------------------
    # Panels
    # -------------------------------------------------------------------------

    def _visible(self) -> list[Row]:
        return self.scheduler.visible(self.current.name)

    def _refresh_panels(self) -> None:
        scheduler = self.scheduler
        topology = scheduler.topology
        snapshot = scheduler.latest(self.current.name)

        self._layout["header"].update(
            format_header(
                scheduler.state,
                scheduler.window,
                self.views,
                self.current.name,
                snapshot,
                scheduler.top_n,
            )
        )

        counts = topology.status_counts()
        self._layout["cluster"].update(
            make_cluster_panel(
                format_cluster_panel(topology),
                failed=counts[HostStatus.DOWN],
                total=len(topology.active_hosts()),
            )
        )

        rows = self._visible()
        self.selected = min(self.selected, max(0, len(rows) - 1))
        table = build_view_table(self.current, snapshot, rows, selected=self.selected)
        self._layout["view"].update(make_panel(table, self.current.title or self.current.name))

        summary = scheduler.view(self.summary.name).series
        self._layout["summary"].update(make_panel(format_summary_panel(summary), "Summary", "yellow"))
        self._layout["log"].update(make_panel(self.log_buffer.get_text(n=20), "Log", "green"))
