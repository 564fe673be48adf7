"""
Rendering helpers for the dashboard panels.

Pure functions from engine state (Snapshot, MetricSeries, topology,
scheduler state) to Rich markup or Tables. Nothing here talks to the
cluster.
"""

import math
from collections.abc import Sequence
from typing import Any

from rich.markup import escape
from rich.table import Table
from sparklines import sparklines

from chtop.clickhouse.templates import (
    CPU_EVENT,
    DISK_READ_EVENT,
    NET_RECEIVE_EVENT,
    NET_SEND_EVENT,
)
from chtop.live.aggregator import MetricSeries
from chtop.live.scheduler import SchedulerState
from chtop.live.window import TimeWindow
from chtop.query import QueryTemplate
from chtop.topology import ClusterTopology
from chtop.types import Host, HostStatus, Row, Snapshot

UP_SYMBOL = "●"
DOWN_SYMBOL = "✗"

# Fields shown per view; views not listed show every scalar field
DISPLAY_FIELDS: dict[str, tuple[str, ...]] = {
    "processes": ("query_id", "user", "elapsed", "memory", "threads", "query"),
    "queries": ("query_id", "user", "status", "duration_ms", "memory", "read_rows", "query"),
    "merges": ("database", "table", "part", "elapsed", "progress", "parts", "size", "memory"),
    "mutations": ("database", "table", "mutation_id", "command", "parts", "fail_reason"),
    "replication_queue": ("database", "table", "type", "part", "executing", "tries", "exception"),
    "replicated_fetches": ("database", "table", "part", "elapsed", "progress", "size", "bytes"),
    "replicas": ("database", "table", "readonly", "parts_to_check", "queue", "delay"),
    "errors": ("name", "count", "error_time", "message"),
}

RATE_LABELS = {
    f"events.{CPU_EVENT}": "cpu",
    f"events.{DISK_READ_EVENT}": "disk/s",
    f"events.{NET_RECEIVE_EVENT}": "net in/s",
    f"events.{NET_SEND_EVENT}": "net out/s",
}

BYTE_FIELDS = {"memory", "size", "bytes"}

STATE_STYLES = {
    SchedulerState.RUNNING: "[bold green]RUNNING[/bold green]",
    SchedulerState.PAUSED: "[bold yellow]PAUSED[/bold yellow]",
    SchedulerState.SEEKING: "[bold magenta]SEEKING[/bold magenta]",
}


def format_bytes(value: float) -> str:
    """Human-readable byte count ("1.5 GiB")."""
    size = float(value)
    for unit in ("B", "KiB", "MiB", "GiB", "TiB"):
        if abs(size) < 1024 or unit == "TiB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TiB"


def format_value(name: str, value: Any, width: int = 60) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "yes" if value else ""
    if name in BYTE_FIELDS and isinstance(value, (int, float)):
        return format_bytes(value)
    if isinstance(value, float):
        return f"{value:.2f}"
    text = str(value).replace("\n", " ")
    if len(text) > width:
        text = text[: width - 1] + "…"
    return text


def format_rate(rate_field: str, value: float | None) -> str:
    """Format a derived rate; absent rates render empty, not zero."""
    if value is None:
        return ""
    if rate_field.endswith(CPU_EVENT):
        # microseconds of CPU per second -> cores
        return f"{value / 1_000_000:.2f}"
    if rate_field.startswith("events."):
        return format_bytes(value)
    return f"{value:,.0f}"


def rate_label(rate_field: str) -> str:
    return RATE_LABELS.get(rate_field, f"{rate_field}/s")


def display_fields(template: QueryTemplate) -> tuple[str, ...]:
    return DISPLAY_FIELDS.get(template.name, template.field_names)


def build_view_table(
    template: QueryTemplate,
    snapshot: Snapshot | None,
    rows: Sequence[Row],
    selected: int | None = None,
    show_host: bool = True,
) -> Table:
    """
    Build the main view table.

    Args:
        template: Template of the view (decides columns)
        snapshot: Snapshot the rows come from (for rates); None before the first cycle
        rows: Rows to show (already truncated to top_n)
        selected: Index of the highlighted row
        show_host: Prepend a host column
    """
    table = Table(expand=True, box=None, header_style="bold", pad_edge=False)
    fields = [f for f in display_fields(template) if f in template.field_names]
    if show_host:
        table.add_column("host", style="cyan", no_wrap=True)
    for name in fields:
        table.add_column(name, no_wrap=name != "query", overflow="ellipsis")
    for rate_field in template.rate_fields:
        table.add_column(rate_label(rate_field), justify="right", style="green")

    for i, row in enumerate(rows):
        cells = [escape(row.host_id)] if show_host else []
        cells.extend(escape(format_value(name, row.get(name))) for name in fields)
        for rate_field in template.rate_fields:
            rate = snapshot.rate(row.key, rate_field) if snapshot is not None else None
            cells.append(format_rate(rate_field, rate))
        table.add_row(*cells, style="reverse" if i == selected else None)
    return table


def format_host_status(host: Host) -> str:
    """
    Format one host line with a color-coded indicator.

    Returns:
        Rich markup like "[green]●[/green] ch-1:8123 [dim]s1[/dim]"
    """
    if host.retired:
        indicator = "[dim]-[/dim]"
    elif host.status is HostStatus.UP:
        indicator = f"[green]{UP_SYMBOL}[/green]"
    elif host.status is HostStatus.DOWN:
        indicator = f"[red]{DOWN_SYMBOL}[/red]"
    else:
        indicator = "[dim]?[/dim]"
    line = f"{indicator} {escape(host.id)} [dim]s{host.shard}[/dim]"
    if host.status is HostStatus.DOWN and host.last_error and not host.retired:
        line += f"\n    [red]{escape(host.last_error[:60])}[/red]"
    return line


def format_cluster_panel(topology: ClusterTopology) -> str:
    """Cluster panel content: one line per host, grouped by shard."""
    lines = []
    if topology.cluster:
        lines.extend([f"[bold]{escape(topology.cluster)}[/bold]", ""])
    for host in topology:
        lines.append(format_host_status(host))
    counts = topology.status_counts()
    lines.extend(
        [
            "",
            f"[green]{counts[HostStatus.UP]} up[/green]  "
            f"[red]{counts[HostStatus.DOWN]} down[/red]  "
            f"[dim]{counts[HostStatus.UNKNOWN]} unknown[/dim]",
        ]
    )
    return "\n".join(lines)


def format_header(
    state: SchedulerState,
    window: TimeWindow,
    views: Sequence[QueryTemplate],
    current: str,
    snapshot: Snapshot | None,
    top_n: int,
) -> str:
    """Header: scheduler state, window, view tabs and failure banner."""
    tabs = "  ".join(
        f"[reverse]{i}:{t.title or t.name}[/reverse]" if t.name == current else f"{i}:{t.title or t.name}"
        for i, t in enumerate(views, start=1)
    )
    line = f"{STATE_STYLES[state]}  {escape(window.describe())}  top {top_n}   {tabs}"
    if snapshot is not None and snapshot.total_failure:
        line += "\n[bold white on red] All hosts failed: showing no data [/bold white on red]"
    elif snapshot is not None and snapshot.partial_failure:
        failed = ", ".join(sorted(snapshot.source_hosts_failed))
        line += (
            f"\n[yellow]Partial data: {len(snapshot.source_hosts_failed)}/{snapshot.hosts_total}"
            f" hosts failed ({escape(failed)})[/yellow]"
        )
    return line


def get_sparkline(values: Sequence[float]) -> str:
    """One-line sparkline; empty without data."""
    finite = [max(v, 0.0) for v in values if not math.isnan(v)]
    if not finite:
        return ""
    lines = list(sparklines(finite))
    return lines[0] if lines else ""


def _sum_field(name: str):
    def extract(snapshot: Snapshot) -> float:
        return float(sum(row.get(name) or 0 for row in snapshot.rows))

    return extract


def format_summary_panel(series: MetricSeries) -> str:
    """
    Cluster-wide sparklines from the summary view's history.

    Sums each metric over the hosts of every snapshot.
    """
    latest = series.latest
    if latest is None:
        return "[dim]Waiting for data...[/dim]"

    metrics = (
        ("memory", "memory_resident", format_bytes),
        ("queries", "running_queries", lambda v: f"{v:.0f}"),
        ("merges", "running_merges", lambda v: f"{v:.0f}"),
        ("threads", "threads_os_runnable", lambda v: f"{v:.0f}"),
    )
    lines = []
    for label, name, fmt in metrics:
        values = series.values(_sum_field(name))
        lines.append(f"{label:<8} [green]{get_sparkline(values)}[/green] {fmt(values[-1])}")
    hosts_ok = latest.hosts_total - len(latest.source_hosts_failed)
    lines.append(f"[dim]{hosts_ok}/{latest.hosts_total} hosts reporting[/dim]")
    return "\n".join(lines)
