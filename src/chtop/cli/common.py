"""Shared CLI wiring: settings, connection and topology setup.

Every command resolves Settings (environment first, CLI options on top),
opens one httpx.AsyncClient for all hosts and builds the topology either
from an explicit URL list or by discovering a named cluster.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import typer
from pydantic import ValidationError

from chtop.clickhouse.client import ClickHouseHTTPTransport
from chtop.clickhouse.discovery import discover_topology
from chtop.config import Settings, load_settings
from chtop.errors import TopologyError, TransportError
from chtop.live.fanout import FanoutExecutor
from chtop.topology import ClusterTopology, host_from_url, topology_from_urls
from chtop.types import Host

# Options shared by every command
URL_OPTION = typer.Option(
    None, "--url", "-u", help="Host URL, repeatable (env: CHTOP_URLS, comma-separated)"
)
CLUSTER_OPTION = typer.Option(
    None, "--cluster", "-c", help="Discover hosts of this cluster from system.clusters"
)
USER_OPTION = typer.Option(None, "--user", help="ClickHouse user (env: CHTOP_USER)")
PASSWORD_OPTION = typer.Option(None, "--password", help="ClickHouse password (env: CHTOP_PASSWORD)")
LOG_LEVEL_OPTION = typer.Option(None, "--log-level", help="Log level (env: CHTOP_LOG_LEVEL)")


def make_settings(urls: list[str] | None, **overrides) -> Settings:
    """Load settings or exit with a readable message."""
    try:
        return load_settings(urls=",".join(urls) if urls else None, **overrides)
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}")
        raise typer.Exit(1)


@dataclass
class Cluster:
    """
    Connected cluster handle.

    Attributes:
        settings: Effective settings
        transport: HTTP transport shared by all hosts
        topology: Hosts to query
        seed: Host used for discovery
    """

    settings: Settings
    transport: ClickHouseHTTPTransport
    topology: ClusterTopology
    seed: Host

    def executor(self) -> FanoutExecutor:
        return FanoutExecutor(
            self.transport,
            max_in_flight=self.settings.max_in_flight,
            host_timeout=self.settings.host_timeout,
            deadline=self.settings.fanout_deadline,
        )


@asynccontextmanager
async def connect(settings: Settings) -> AsyncIterator[Cluster]:
    """
    Open the HTTP client and build the topology.

    Raises:
        typer.Exit: If no URL is configured or discovery fails.
    """
    urls = settings.url_list
    if not urls:
        print("Error: no host URL given (use --url or CHTOP_URLS)")
        raise typer.Exit(1)

    async with httpx.AsyncClient() as http:
        transport = ClickHouseHTTPTransport(
            http=http, user=settings.user, password=settings.password
        )
        try:
            seed = host_from_url(urls[0])
            if settings.cluster:
                topology = await discover_topology(
                    transport, seed, settings.cluster, settings.host_timeout
                )
            else:
                topology = topology_from_urls(urls)
        except (TransportError, TopologyError) as e:
            print(f"Error: {e}")
            raise typer.Exit(1)

        yield Cluster(settings=settings, transport=transport, topology=topology, seed=seed)
