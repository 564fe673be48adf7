"""
LiveScheduler: drives refresh ticks and owns pause/seek/time-window state.

This module implements the scheduler state machine:
- RUNNING: ticks query the live window
- PAUSED: no new cycles; the last snapshot stays visible
- SEEKING: ticks re-query the same fixed historical window

Scheduling rules:
- At most one fan-out in flight per view. A tick that finds the previous
  cycle still running is skipped, never queued.
- Every cycle carries its own CancellationToken. pause(), seek(),
  set_live(), set_time_interval() and unregister() cancel the in-flight
  tokens, and a cancelled cycle never writes into the series.
- Remote errors never stop the loop; only stop() does.

The run loop uses an asyncio.Event with wait_for timeout as an
interruptible sleep, so stop() takes effect immediately.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from chtop.errors import RefreshRejectedError
from chtop.live.aggregator import (
    MetricSeries,
    Ordering,
    SnapshotAggregator,
    default_ordering,
)
from chtop.live.fanout import CancellationToken, FanoutExecutor
from chtop.live.window import TimeWindow, utcnow
from chtop.query import QueryTemplate
from chtop.topology import ClusterTopology
from chtop.types import Row, Snapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[str, Snapshot], None]


class SchedulerState(str, Enum):
    """Valid scheduler states."""

    RUNNING = "running"
    PAUSED = "paused"
    SEEKING = "seeking"


@dataclass
class View:
    """
    Scheduling state for one registered template.

    Attributes:
        template: Query and decoding contract
        ordering: Row comparator for merged snapshots
        series: Bounded snapshot history (owned by the scheduler)
        params: Extra query parameters
        task: The in-flight cycle, if any
        token: Cancellation token of the in-flight cycle
        cycles: Completed cycles whose snapshot was stored
        skipped_ticks: Ticks skipped because a cycle was still in flight
        discarded: Cycles whose result was dropped as stale
        rerun: Start a new cycle as soon as the cancelled one finishes
        last_error: Last cycle failure that was not a per-host error
    """

    template: QueryTemplate
    ordering: Ordering | None
    series: MetricSeries
    params: dict[str, Any] = field(default_factory=dict)
    task: asyncio.Task | None = None
    token: CancellationToken | None = None
    cycles: int = 0
    skipped_ticks: int = 0
    discarded: int = 0
    rerun: bool = False
    last_error: str | None = None
    slow_warned: bool = False

    @property
    def name(self) -> str:
        return self.template.name

    @property
    def in_flight(self) -> bool:
        return self.task is not None and not self.task.done()


class LiveScheduler:
    """
    Tick loop and control surface for the live views.

    Example:
        scheduler = LiveScheduler(executor, topology, interval=3.0)
        scheduler.register(PROCESSES)
        task = asyncio.create_task(scheduler.run())
        scheduler.seek(-timedelta(minutes=10))
        rows = scheduler.visible("processes")
        scheduler.stop()
        await task
    """

    def __init__(
        self,
        executor: FanoutExecutor,
        topology: ClusterTopology,
        interval: float = 3.0,
        window: TimeWindow | None = None,
        series_capacity: int = 60,
        top_n: int = 20,
        on_snapshot: SnapshotCallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            executor: Runs fan-out cycles
            topology: Hosts to query
            interval: Seconds between ticks
            window: Initial time window (live, default span, if None)
            series_capacity: Snapshots kept per view
            top_n: Initial display limit
            on_snapshot: Called with (view name, snapshot) after each stored cycle
            clock: Wall clock used for seeking
        """
        self.executor = executor
        self.topology = topology
        self.interval = interval
        self.series_capacity = series_capacity
        self.on_snapshot = on_snapshot
        self._clock = clock
        self._window = window or TimeWindow.live()
        self._state = (
            SchedulerState.RUNNING if self._window.is_live else SchedulerState.SEEKING
        )
        self._top_n = max(1, top_n)
        self._views: dict[str, View] = {}
        self._shutdown = asyncio.Event()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def window(self) -> TimeWindow:
        return self._window

    @property
    def top_n(self) -> int:
        return self._top_n

    def set_top_n(self, n: int) -> None:
        """Change the display limit; has no effect on stored snapshots."""
        self._top_n = max(1, n)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def register(
        self,
        template: QueryTemplate,
        ordering: Ordering | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> View:
        """
        Register a template for periodic refresh.

        Re-registering a name replaces the view (its history is dropped).
        """
        if template.name in self._views:
            self.unregister(template.name)
        view = View(
            template=template,
            ordering=ordering if ordering is not None else default_ordering(template),
            series=MetricSeries(self.series_capacity),
            params=dict(params or {}),
        )
        self._views[template.name] = view
        return view

    def unregister(self, name: str) -> None:
        view = self._views.pop(name, None)
        if view is not None and view.token is not None:
            view.token.cancel("view removed")

    def view(self, name: str) -> View:
        return self._views[name]

    @property
    def views(self) -> list[View]:
        return list(self._views.values())

    def latest(self, name: str) -> Snapshot | None:
        return self._views[name].series.latest

    def visible(self, name: str) -> list[Row]:
        """Rows of the latest snapshot, truncated to the current top_n."""
        snapshot = self.latest(name)
        if snapshot is None:
            return []
        return snapshot.top(self._top_n)

    # -------------------------------------------------------------------------
    # Control surface
    # -------------------------------------------------------------------------

    def pause(self) -> None:
        """Stop scheduling new cycles; in-flight results are dropped."""
        if self._state is SchedulerState.PAUSED:
            return
        self._state = SchedulerState.PAUSED
        self._invalidate("paused")
        logger.info("Updates paused")

    def resume(self) -> None:
        """Resume ticking and trigger one cycle immediately."""
        if self._state is not SchedulerState.PAUSED:
            return
        self._state = (
            SchedulerState.RUNNING if self._window.is_live else SchedulerState.SEEKING
        )
        logger.info("Updates resumed (%s)", self._window.describe())
        self.tick()

    def seek(self, delta: timedelta) -> None:
        """
        Move to a historical window shifted by delta (negative = backwards).

        From RUNNING the scheduler enters SEEKING; while PAUSED it stays
        paused with the new window.
        """
        self._window = self._window.shifted(delta, self._clock())
        # PAUSED is kept on purpose: seeking while paused only moves the
        # window, and resume() then enters SEEKING
        if self._state is SchedulerState.RUNNING:
            self._state = SchedulerState.SEEKING
        logger.debug("Set time frame to %s", self._window.describe())
        self._invalidate("window changed")
        if self._state is not SchedulerState.PAUSED:
            self.tick()

    def set_live(self) -> None:
        """Return to the live window; SEEKING becomes RUNNING."""
        self._window = self._window.as_live()
        if self._state is SchedulerState.SEEKING:
            self._state = SchedulerState.RUNNING
        self._invalidate("window changed")
        if self._state is not SchedulerState.PAUSED:
            self.tick()

    def set_time_interval(self, span: timedelta) -> None:
        """Change the window width without changing mode or state."""
        self._window = self._window.with_span(span)
        self._invalidate("window changed")
        if self._state is not SchedulerState.PAUSED:
            self.tick()

    def refresh_now(self) -> list[asyncio.Task]:
        """
        Trigger a cycle for every view now.

        Raises:
            RefreshRejectedError: While paused.
        """
        if self._state is SchedulerState.PAUSED:
            raise RefreshRejectedError()
        return self.tick()

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def tick(self) -> list[asyncio.Task]:
        """
        Run one scheduling pass.

        Starts a cycle for each view that has none in flight. Views with a
        cycle in flight are skipped; if that cycle was cancelled, a rerun
        is requested for when it finishes.

        Returns:
            Tasks for the cycles started by this pass.
        """
        if self._state is SchedulerState.PAUSED:
            return []
        started = []
        for view in self._views.values():
            if view.in_flight:
                view.skipped_ticks += 1
                if view.token is not None and view.token.cancelled:
                    view.rerun = True
                continue
            started.append(self._start_cycle(view))
        return started

    async def run(self) -> None:
        """Tick at the configured interval until stop() is called."""
        logger.info("Scheduler starting (interval: %.1fs)", self.interval)
        while not self._shutdown.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        await self.drain()
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Signal run() to exit; in-flight cycles are cancelled."""
        self._shutdown.set()
        self._invalidate("stopped")

    async def drain(self) -> None:
        """Wait for all in-flight cycles to finish."""
        tasks = [v.task for v in self._views.values() if v.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def _invalidate(self, reason: str) -> None:
        for view in self._views.values():
            if view.in_flight and view.token is not None:
                view.token.cancel(reason)

    def _start_cycle(self, view: View) -> asyncio.Task:
        token = CancellationToken()
        view.token = token
        view.rerun = False
        task = asyncio.create_task(self._cycle(view, token), name=f"cycle-{view.name}")
        view.task = task
        task.add_done_callback(lambda t: self._cycle_done(view, t))
        return task

    def _cycle_done(self, view: View, task: asyncio.Task) -> None:
        if view.task is task and view.rerun and not self._shutdown.is_set():
            if self._state is not SchedulerState.PAUSED and view.name in self._views:
                self._start_cycle(view)

    async def _cycle(self, view: View, token: CancellationToken) -> None:
        """Run one fan-out, merge it and append it to the view's series."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            result = await self.executor.execute(
                self.topology,
                view.template,
                self._window,
                token=token,
                params=view.params,
            )
            if token.cancelled:
                view.discarded += 1
                logger.debug("Discarding stale %s cycle (%s)", view.name, token.reason)
                return

            snapshot = SnapshotAggregator(view.template).merge(
                result, view.ordering, previous=view.series.latest
            )
            view.series.append(snapshot)
            view.cycles += 1
            view.last_error = None
        except Exception as e:
            # Log but keep ticking
            view.last_error = str(e)
            logger.exception("Cycle for %s failed", view.name)
            return

        if snapshot.total_failure:
            logger.warning(
                "All %d hosts failed for %s: %s",
                snapshot.hosts_total,
                view.name,
                "; ".join(f"{h}: {e.message}" for h, e in snapshot.errors.items()),
            )
        elif snapshot.partial_failure:
            logger.debug(
                "%s: %d of %d hosts failed",
                view.name,
                len(snapshot.source_hosts_failed),
                snapshot.hosts_total,
            )

        elapsed = loop.time() - started
        if elapsed > self.interval and not view.slow_warned:
            view.slow_warned = True
            logger.warning(
                "Refreshing %s took %.1fs, longer than the %.1fs interval "
                "(consider increasing --delay-interval)",
                view.name,
                elapsed,
                self.interval,
            )

        if self.on_snapshot is not None:
            self.on_snapshot(view.name, snapshot)
