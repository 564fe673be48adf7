"""
Cluster topology: the ordered set of hosts chtop talks to.

Hosts are unique by id and keep their insertion order for the whole
session, so per-host columns in the UI stay put. Hosts are never removed:
when rediscovery stops reporting a host it is marked retired, and the next
fan-out records it as UNKNOWN. Stale references to a retired host stay
valid.

Host.state is written only by the FanoutExecutor; everything here reads it.
"""

import logging
from collections.abc import Iterable, Iterator
from urllib.parse import urlsplit

from chtop.errors import TopologyError
from chtop.types import Host, HostId, HostRole, HostStatus

logger = logging.getLogger(__name__)


class ClusterTopology:
    """
    Ordered, id-unique collection of hosts.

    Example:
        topology = topology_from_urls(["http://ch-1:8123", "http://ch-2:8123"])
        for host in topology.active_hosts():
            print(host.id, host.status)
    """

    def __init__(self, hosts: Iterable[Host] = (), cluster: str | None = None) -> None:
        """
        Initialize topology.

        Args:
            hosts: Initial hosts, in display order
            cluster: Name of the ClickHouse cluster (None for a plain host list)

        Raises:
            TopologyError: If two hosts share an id.
        """
        self.cluster = cluster
        self._hosts: dict[HostId, Host] = {}
        for host in hosts:
            self.add(host)

    def add(self, host: Host) -> None:
        """Append a host; raises TopologyError if its id is already known."""
        if host.id in self._hosts:
            raise TopologyError(f"Duplicate host id: {host.id}")
        self._hosts[host.id] = host

    def get(self, host_id: HostId) -> Host:
        try:
            return self._hosts[host_id]
        except KeyError:
            raise TopologyError(f"Unknown host id: {host_id}") from None

    def __contains__(self, host_id: object) -> bool:
        return host_id in self._hosts

    def __iter__(self) -> Iterator[Host]:
        return iter(self._hosts.values())

    def __len__(self) -> int:
        return len(self._hosts)

    @property
    def hosts(self) -> list[Host]:
        """All hosts, retired included, in insertion order."""
        return list(self._hosts.values())

    def active_hosts(self) -> list[Host]:
        """Hosts that take part in fan-outs, in insertion order."""
        return [h for h in self._hosts.values() if not h.retired]

    def refresh(self, discovered: Iterable[Host]) -> tuple[list[HostId], list[HostId]]:
        """
        Reconcile the topology with a fresh discovery result.

        New hosts are appended, known hosts are reactivated and get their
        address/role updated, hosts missing from the result are retired.
        Host state is left untouched.

        Args:
            discovered: Hosts reported by discovery

        Returns:
            Tuple of (added host ids, retired host ids)
        """
        seen: set[HostId] = set()
        added: list[HostId] = []
        for host in discovered:
            if host.id in seen:
                raise TopologyError(f"Duplicate host id in discovery result: {host.id}")
            seen.add(host.id)
            known = self._hosts.get(host.id)
            if known is None:
                self._hosts[host.id] = host
                added.append(host.id)
            else:
                known.address = host.address
                known.role = host.role
                known.shard = host.shard
                known.retired = False

        retired = []
        for host in self._hosts.values():
            if host.id not in seen and not host.retired:
                host.retired = True
                retired.append(host.id)

        if added or retired:
            logger.info("Topology refreshed: added=%s retired=%s", added, retired)
        return added, retired

    def status_counts(self) -> dict[HostStatus, int]:
        """Count hosts per status (retired hosts count as they are recorded)."""
        counts = {status: 0 for status in HostStatus}
        for host in self._hosts.values():
            counts[host.status] += 1
        return counts


def host_from_url(url: str, role: HostRole = HostRole.SHARD, shard: int = 1) -> Host:
    """
    Build a Host from an HTTP URL.

    The host id is "hostname:port" (port defaults to 8123 for http and
    8443 for https).
    """
    if "://" not in url:
        url = f"http://{url}"
    parts = urlsplit(url)
    if not parts.hostname:
        raise TopologyError(f"Cannot parse host from URL: {url!r}")
    port = parts.port or (8443 if parts.scheme == "https" else 8123)
    address = f"{parts.scheme}://{parts.hostname}:{port}"
    return Host(id=f"{parts.hostname}:{port}", address=address, role=role, shard=shard)


def topology_from_urls(urls: Iterable[str], cluster: str | None = None) -> ClusterTopology:
    """Create a topology from an explicit host list, one shard per URL."""
    hosts = [host_from_url(url, shard=i) for i, url in enumerate(urls, start=1)]
    return ClusterTopology(hosts, cluster=cluster)
