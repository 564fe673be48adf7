"""
Cluster discovery through system.clusters.

A seed host is asked for the replicas of a named cluster. system.clusters
reports native TCP ports, so discovered hosts reuse the seed's HTTP scheme
and port. The first replica of every shard gets the SHARD role, the rest
REPLICA.
"""

import logging
from urllib.parse import urlsplit

from chtop.clickhouse.types import ClusterHostRow
from chtop.errors import TopologyError
from chtop.protocols import QueryTransportProtocol
from chtop.topology import ClusterTopology
from chtop.types import Host, HostId, HostRole

logger = logging.getLogger(__name__)

CLUSTER_HOSTS_SQL = """
    SELECT cluster, shard_num, replica_num, host_name, host_address, port
    FROM system.clusters
    WHERE cluster = {cluster:String}
    ORDER BY shard_num, replica_num
"""


async def discover_hosts(
    transport: QueryTransportProtocol,
    seed: Host,
    cluster: str,
    timeout: float = 5.0,
) -> list[Host]:
    """
    Read the hosts of a cluster from the seed.

    Args:
        transport: Transport used to query the seed
        seed: Any reachable host of the cluster
        cluster: Cluster name from the server configuration
        timeout: Per-call timeout in seconds

    Returns:
        Hosts in shard/replica order; a host listed in several shards
        appears once, at its first position.

    Raises:
        TopologyError: If the seed does not know the cluster.
        TransportError: If the seed cannot be queried.
    """
    rows = await transport.execute(seed, CLUSTER_HOSTS_SQL, {"cluster": cluster}, timeout)
    if not rows:
        raise TopologyError(f"Cluster {cluster!r} is not defined on {seed.id}")

    seed_url = urlsplit(seed.address)
    scheme = seed_url.scheme or "http"
    port = seed_url.port or (8443 if scheme == "https" else 8123)

    hosts: list[Host] = []
    seen: set[HostId] = set()
    for raw in rows:
        entry = ClusterHostRow.model_validate(raw)
        host_id = f"{entry.host_name}:{port}"
        if host_id in seen:
            continue
        seen.add(host_id)
        hosts.append(
            Host(
                id=host_id,
                address=f"{scheme}://{entry.host_name}:{port}",
                role=HostRole.SHARD if entry.replica_num == 1 else HostRole.REPLICA,
                shard=entry.shard_num,
            )
        )
    logger.debug("Discovered %d hosts in cluster %s", len(hosts), cluster)
    return hosts


async def discover_topology(
    transport: QueryTransportProtocol,
    seed: Host,
    cluster: str,
    timeout: float = 5.0,
) -> ClusterTopology:
    """Build a topology for a named cluster (see discover_hosts)."""
    hosts = await discover_hosts(transport, seed, cluster, timeout)
    return ClusterTopology(hosts, cluster=cluster)


async def rediscover(
    transport: QueryTransportProtocol,
    topology: ClusterTopology,
    seed: Host,
    timeout: float = 5.0,
) -> tuple[list[HostId], list[HostId]]:
    """
    Refresh an existing cluster topology in place.

    Returns:
        Tuple of (added host ids, retired host ids)

    Raises:
        TopologyError: If the topology was not built from a named cluster.
    """
    if topology.cluster is None:
        raise TopologyError("Topology has no cluster name to rediscover")
    hosts = await discover_hosts(transport, seed, topology.cluster, timeout)
    return topology.refresh(hosts)
