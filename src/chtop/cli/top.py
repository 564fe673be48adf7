"""Live dashboard command.

This module provides the `chtop top` command: the interactive dashboard
over every host of the cluster.

Logging is redirected into the dashboard's log panel while the display
is up, and back to stderr afterwards.
"""

import asyncio
import logging

import typer

from chtop.cli.common import (
    CLUSTER_OPTION,
    LOG_LEVEL_OPTION,
    PASSWORD_OPTION,
    URL_OPTION,
    USER_OPTION,
    Cluster,
    connect,
    make_settings,
)
from chtop.clickhouse.discovery import rediscover
from chtop.clickhouse.templates import VIEWS, get_template
from chtop.errors import TopologyError, TransportError
from chtop.live.actions import ActionOutcome, QueryActions
from chtop.live.scheduler import LiveScheduler
from chtop.live.window import TimeWindow, parse_duration, parse_time_bound, utcnow
from chtop.log import configure_logging
from chtop.tui.buffer import BufferHandler, OutputBuffer
from chtop.tui.controller import DashboardController

logger = logging.getLogger(__name__)


async def rediscover_loop(cluster: Cluster, interval: float, stop: asyncio.Event) -> None:
    """Refresh cluster membership every interval seconds until stop is set."""
    while not stop.is_set():
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await rediscover(
                cluster.transport, cluster.topology, cluster.seed, cluster.settings.host_timeout
            )
        except (TransportError, TopologyError) as e:
            logger.warning("Cluster rediscovery failed: %s", e)


def run_top(
    url: list[str] = URL_OPTION,
    cluster: str = CLUSTER_OPTION,
    user: str = USER_OPTION,
    password: str = PASSWORD_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    delay_interval: float = typer.Option(
        None, "--delay-interval", "-d", help="Seconds between refreshes (env: CHTOP_DELAY_INTERVAL)"
    ),
    top_n: int = typer.Option(None, "--top", "-n", help="Rows per view (env: CHTOP_TOP_N)"),
    time_span: str = typer.Option(
        None, "--span", help="Width of the time window, e.g. 1h, 30m (env: CHTOP_TIME_SPAN)"
    ),
    start: str = typer.Option(
        None, "--from", help="Start in the past: datetime, date or relative (e.g. 2h)"
    ),
    end: str = typer.Option(None, "--to", help="End of the historical window (default: now)"),
    view: str = typer.Option("processes", "--view", "-v", help="Initial view"),
) -> None:
    """
    Run the live cluster dashboard.

    Runs until q or Ctrl+C.
    """
    settings = make_settings(
        url,
        cluster=cluster,
        user=user,
        password=password,
        log_level=log_level,
        delay_interval=delay_interval,
        top_n=top_n,
        time_span=time_span,
    )

    if end and not start:
        print("Error: --to requires --from")
        raise typer.Exit(1)
    try:
        initial = get_template(view)
        if start:
            now = utcnow()
            window = TimeWindow.historical(parse_time_bound(start, now), parse_time_bound(end or "", now))
        else:
            window = TimeWindow.live(parse_duration(settings.time_span))
    except (KeyError, ValueError) as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    views = [initial, *(v for v in VIEWS if v.name != initial.name)]
    log_buffer = OutputBuffer(maxlen=200)

    async def _run() -> None:
        async with connect(settings) as connected:
            configure_logging(settings.log_level, handler=BufferHandler(log_buffer))
            scheduler = LiveScheduler(
                connected.executor(),
                connected.topology,
                interval=settings.delay_interval,
                window=window,
                series_capacity=settings.series_capacity,
                top_n=settings.top_n,
            )

            def on_outcome(outcome: ActionOutcome) -> None:
                if outcome.ok:
                    logger.info("Kill sent for %s on %s", outcome.target, outcome.host_id)

            actions = QueryActions(
                connected.transport,
                connected.topology,
                timeout=settings.host_timeout,
                on_outcome=on_outcome,
            )
            controller = DashboardController(
                scheduler, actions, views=views, log_buffer=log_buffer
            )

            stop = asyncio.Event()
            rediscovery = None
            if settings.cluster and settings.rediscover_interval > 0:
                rediscovery = asyncio.create_task(
                    rediscover_loop(connected, settings.rediscover_interval, stop)
                )
            try:
                await controller.run()
            finally:
                stop.set()
                if rediscovery is not None:
                    await rediscovery

    try:
        asyncio.run(_run())
    finally:
        configure_logging(settings.log_level)
    print("chtop stopped")
