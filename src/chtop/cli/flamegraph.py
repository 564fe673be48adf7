"""Flamegraph export command.

This module provides `chtop flamegraph`: collect stack samples of one
profile type from every host, fold them into a call tree and write it as
folded stacks or d3-flame-graph JSON.

Output goes to --output or stdout, so it can be piped straight into a
viewer:

    chtop flamegraph --type cpu --from 10m | flamegraph.pl > cpu.svg
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

import typer

from chtop.cli.common import (
    CLUSTER_OPTION,
    LOG_LEVEL_OPTION,
    PASSWORD_OPTION,
    URL_OPTION,
    USER_OPTION,
    connect,
    make_settings,
)
from chtop.live.window import TimeWindow, parse_time_bound, utcnow
from chtop.log import configure_logging
from chtop.profiling.calltree import CallTreeBuilder, CallTreeNode, LiveFlamegraph
from chtop.profiling.collector import StackSampleCollector
from chtop.profiling.export import ExportFormat, export
from chtop.profiling.symbols import SymbolResolver
from chtop.types import ProfileType

logger = logging.getLogger(__name__)

PROFILE_TYPES = {p.name.lower().replace("_", "-"): p for p in ProfileType}


def write_output(path: Path, data: bytes) -> None:
    """Replace path with data in one step, so viewers never read a partial file."""
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_bytes(data)
    tmp.replace(path)


def run_flamegraph(
    url: list[str] = URL_OPTION,
    cluster: str = CLUSTER_OPTION,
    user: str = USER_OPTION,
    password: str = PASSWORD_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    profile: str = typer.Option(
        "cpu", "--type", "-t", help=f"Profile type ({', '.join(PROFILE_TYPES)})"
    ),
    start: str = typer.Option("1h", "--from", help="Start: datetime, date or relative (e.g. 10m)"),
    end: str = typer.Option("", "--to", help="End (default: now)"),
    query_id: list[str] = typer.Option(
        None, "--query-id", "-q", help="Only samples of this query, repeatable"
    ),
    fmt: ExportFormat = typer.Option(ExportFormat.FOLDED, "--format", "-f", help="Output format"),
    output: Path = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
    symbols: bool = typer.Option(True, "--symbols/--no-symbols", help="Resolve addresses"),
    watch: float = typer.Option(
        0.0, "--watch", "-w", help="With --type live: re-sample every N seconds, rewriting --output"
    ),
) -> None:
    """
    Export a flamegraph of the cluster.

    Samples come from system.trace_log (or system.stack_trace for
    --type live). Hosts that fail are skipped with a warning.

    With --watch, a live flamegraph is re-sampled every N seconds and
    --output rewritten until Ctrl+C.
    """
    settings = make_settings(
        url, cluster=cluster, user=user, password=password, log_level=log_level
    )
    configure_logging(settings.log_level)

    profile_type = PROFILE_TYPES.get(profile.lower())
    if profile_type is None:
        print(f"Error: unknown profile type {profile!r} (available: {', '.join(PROFILE_TYPES)})")
        raise typer.Exit(1)
    try:
        now = utcnow()
        window = TimeWindow.historical(parse_time_bound(start, now), parse_time_bound(end, now))
    except ValueError as e:
        print(f"Error: {e}")
        raise typer.Exit(1)

    if watch < 0:
        print("Error: --watch must be positive")
        raise typer.Exit(1)
    if watch:
        if profile_type is not ProfileType.LIVE:
            print("Error: --watch requires --type live")
            raise typer.Exit(1)
        if output is None:
            print("Error: --watch requires --output")
            raise typer.Exit(1)

        async def _watch() -> None:
            async with connect(settings) as connected:
                resolver = None
                if symbols:
                    resolver = SymbolResolver(connected.transport, timeout=settings.fanout_deadline)

                def on_refresh(root: CallTreeNode) -> None:
                    write_output(output, export(root, fmt))
                    logger.info("Rewrote %s (total weight %d)", output, root.total_weight)

                session = LiveFlamegraph(
                    StackSampleCollector(connected.executor()),
                    connected.topology,
                    resolver,
                    query_ids=query_id,
                    interval=watch,
                    on_refresh=on_refresh,
                )
                loop = asyncio.get_running_loop()
                for sig in (signal.SIGINT, signal.SIGTERM):
                    loop.add_signal_handler(sig, session.stop)
                await session.run()

        asyncio.run(_watch())
        return

    async def _run() -> bytes:
        async with connect(settings) as connected:
            collector = StackSampleCollector(connected.executor())
            samples = await collector.collect(
                connected.topology, profile_type, window, query_ids=query_id
            )
            resolver = None
            if symbols:
                resolver = SymbolResolver(connected.transport, timeout=settings.fanout_deadline)
                await resolver.prefetch_samples(connected.topology, samples)
            builder = CallTreeBuilder(profile_type, resolver)
            root = builder.build(samples)
            logger.info(
                "%d stacks, total weight %d %s",
                builder.samples,
                root.total_weight,
                profile_type.weight_unit,
            )
            if not samples and len(collector.last_errors) == len(connected.topology.active_hosts()):
                print("Error: no host returned samples")
                raise typer.Exit(1)
            return export(root, fmt)

    data = asyncio.run(_run())
    if output is None:
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
    else:
        write_output(output, data)
        logger.info("Wrote %s (%d bytes)", output, len(data))
