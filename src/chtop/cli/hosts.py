"""Single-shot host commands.

This module provides CLI commands that run once and exit:
- hosts: check every host of the topology and print version and uptime
- kill: kill a running query on one host
- explain: print EXPLAIN output of a query on one host

Host ids are "hostname:port", as shown by `chtop hosts`.
"""

import asyncio
import json
from datetime import timedelta

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chtop.cli.common import (
    CLUSTER_OPTION,
    LOG_LEVEL_OPTION,
    PASSWORD_OPTION,
    URL_OPTION,
    USER_OPTION,
    connect,
    make_settings,
)
from chtop.clickhouse.templates import VERSION
from chtop.errors import TopologyError, TransportError
from chtop.live.actions import ExplainKind, QueryActions
from chtop.live.window import TimeWindow, format_duration
from chtop.log import configure_logging
from chtop.types import HostError, HostStatus

STATUS_MARKUP = {
    HostStatus.UP: "[green]up[/green]",
    HostStatus.DOWN: "[red]down[/red]",
    HostStatus.UNKNOWN: "[dim]unknown[/dim]",
}


def list_hosts(
    url: list[str] = URL_OPTION,
    cluster: str = CLUSTER_OPTION,
    user: str = USER_OPTION,
    password: str = PASSWORD_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Check every host and show its status, version and uptime."""
    settings = make_settings(
        url, cluster=cluster, user=user, password=password, log_level=log_level
    )
    configure_logging(settings.log_level)

    async def _check() -> bool:
        async with connect(settings) as connected:
            result = await connected.executor().execute(
                connected.topology, VERSION, TimeWindow.live()
            )
            topology = connected.topology

        if json_output:
            data = []
            for host in topology.active_hosts():
                entry = result.per_host[host.id]
                item = {
                    "id": host.id,
                    "address": host.address,
                    "role": host.role.value,
                    "shard": host.shard,
                    "status": host.status.value,
                }
                if isinstance(entry, HostError):
                    item["error"] = {"cause": entry.cause.value, "message": entry.message}
                elif entry:
                    item["version"] = entry[0].get("version")
                    item["uptime"] = entry[0].get("uptime")
                data.append(item)
            print(json.dumps(data, indent=2))
            return not result.all_failed

        console = Console()
        table = Table(title=f"Cluster {topology.cluster}" if topology.cluster else "Hosts")
        table.add_column("Host", style="cyan")
        table.add_column("Shard", justify="right")
        table.add_column("Role")
        table.add_column("Status", justify="center")
        table.add_column("Version")
        table.add_column("Uptime", justify="right")
        table.add_column("Error", style="red")

        for host in topology.active_hosts():
            entry = result.per_host[host.id]
            version = uptime = error = ""
            if isinstance(entry, HostError):
                error = escape(f"{entry.cause.value}: {entry.message}")
            elif entry:
                version = str(entry[0].get("version") or "")
                uptime = format_duration(timedelta(seconds=entry[0].get("uptime") or 0))
            table.add_row(
                host.id,
                str(host.shard),
                host.role.value,
                STATUS_MARKUP[host.status],
                version,
                uptime,
                error,
            )

        console.print(table)
        console.print(
            f"{len(result.succeeded)}/{len(result.per_host)} hosts up "
            f"[dim]({result.duration:.2f}s)[/dim]"
        )
        return not result.all_failed

    if not asyncio.run(_check()):
        raise typer.Exit(1)


def kill_query(
    host_id: str = typer.Argument(..., help="Host id (hostname:port)"),
    query_id: str = typer.Argument(..., help="query_id to kill"),
    url: list[str] = URL_OPTION,
    cluster: str = CLUSTER_OPTION,
    user: str = USER_OPTION,
    password: str = PASSWORD_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Kill a running query on one host."""
    settings = make_settings(
        url, cluster=cluster, user=user, password=password, log_level=log_level
    )
    configure_logging(settings.log_level)

    async def _kill() -> bool:
        async with connect(settings) as connected:
            actions = QueryActions(
                connected.transport, connected.topology, timeout=settings.host_timeout
            )
            try:
                outcome = await actions.kill_query(host_id, query_id)
            except TopologyError as e:
                print(f"Error: {e}")
                return False
        if outcome.ok:
            print(f"Kill sent for query {query_id} on {host_id}")
        else:
            print(f"Error: cannot kill query {query_id} on {host_id}: {outcome.message}")
        return outcome.ok

    if not asyncio.run(_kill()):
        raise typer.Exit(1)


def explain_query(
    host_id: str = typer.Argument(..., help="Host id (hostname:port)"),
    query: str = typer.Argument(..., help="Query text to explain"),
    kind: ExplainKind = typer.Option(ExplainKind.PLAN, "--kind", "-k", help="EXPLAIN variant"),
    url: list[str] = URL_OPTION,
    cluster: str = CLUSTER_OPTION,
    user: str = USER_OPTION,
    password: str = PASSWORD_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
) -> None:
    """Show EXPLAIN output for a query on one host."""
    settings = make_settings(
        url, cluster=cluster, user=user, password=password, log_level=log_level
    )
    configure_logging(settings.log_level)

    async def _explain() -> list[str]:
        async with connect(settings) as connected:
            actions = QueryActions(
                connected.transport, connected.topology, timeout=settings.host_timeout
            )
            return await actions.explain(host_id, query, kind)

    try:
        lines = asyncio.run(_explain())
    except (TopologyError, TransportError) as e:
        print(f"Error: {e}")
        raise typer.Exit(1)
    for line in lines:
        print(line)
