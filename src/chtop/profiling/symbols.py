"""
SymbolResolver: batched address-to-symbol lookup with a per-epoch cache.

Addresses are only meaningful for the binary of the host that recorded
them, so the cache is keyed by (host_id, address). Lookups run on that
host with addressToSymbol + demangle (requires
allow_introspection_functions).

A failed or empty lookup never fails the flamegraph: the frame degrades
to its raw hex address. The cache holds at most max_entries symbols; a
prefetch that would overflow it starts a new epoch first.
"""

import logging
from collections.abc import Iterable

from chtop.errors import TransportError
from chtop.protocols import QueryTransportProtocol
from chtop.topology import ClusterTopology
from chtop.types import Frame, HostId, StackSample

logger = logging.getLogger(__name__)

SYMBOLS_SQL = """
    SELECT addr, demangle(addressToSymbol(addr)) AS symbol
    FROM (SELECT arrayJoin({addresses:Array(UInt64)}) AS addr)
    SETTINGS allow_introspection_functions = 1
"""


def hex_frame(address: int) -> str:
    return f"0x{address:x}"


class SymbolResolver:
    """
    Resolves raw frame addresses to symbol names.

    Example:
        resolver = SymbolResolver(transport)
        await resolver.prefetch_samples(topology, samples)
        name = resolver.lookup("ch-1:8123", 0x1a2b3c)
    """

    def __init__(
        self,
        transport: QueryTransportProtocol,
        timeout: float = 10.0,
        batch_size: int = 1000,
        max_entries: int = 200_000,
    ) -> None:
        self.transport = transport
        self.timeout = timeout
        self.batch_size = batch_size
        self.max_entries = max_entries
        # None marks a miss; misses are not retried until the next epoch
        self._cache: dict[tuple[HostId, int], str | None] = {}
        self.epoch = 0

    def new_epoch(self) -> None:
        """Drop all cached symbols (e.g. after a server upgrade)."""
        self._cache.clear()
        self.epoch += 1

    def __len__(self) -> int:
        return len(self._cache)

    def lookup(self, host_id: HostId, frame: Frame) -> str:
        """
        Return the symbol for a frame, or its hex address when unknown.

        String frames are already symbolic and returned as-is.
        """
        if isinstance(frame, str):
            return frame
        symbol = self._cache.get((host_id, frame))
        return symbol if symbol else hex_frame(frame)

    async def prefetch(self, topology: ClusterTopology, host_id: HostId, addresses: Iterable[int]) -> None:
        """
        Resolve every uncached address of one host in batches.

        Transport errors are logged at debug level and the affected
        addresses recorded as misses.
        """
        addresses = set(addresses)
        missing = sorted(a for a in addresses if (host_id, a) not in self._cache)
        if not missing:
            return
        if len(self._cache) + len(missing) > self.max_entries:
            logger.debug("Symbol cache full (%d entries), starting a new epoch", len(self._cache))
            self.new_epoch()
            missing = sorted(addresses)
        host = topology.get(host_id)
        for i in range(0, len(missing), self.batch_size):
            batch = missing[i : i + self.batch_size]
            try:
                rows = await self.transport.execute(
                    host, SYMBOLS_SQL, {"addresses": batch}, self.timeout
                )
            except TransportError as e:
                logger.debug("Symbol lookup on %s failed: %s", host_id, e)
                rows = []
            resolved = {int(row["addr"]): str(row.get("symbol") or "") for row in rows}
            for address in batch:
                self._cache[(host_id, address)] = resolved.get(address) or None
        misses = sum(1 for a in missing if self._cache[(host_id, a)] is None)
        if misses:
            logger.debug("%d of %d addresses on %s left unresolved", misses, len(missing), host_id)

    async def prefetch_samples(self, topology: ClusterTopology, samples: Iterable[StackSample]) -> None:
        """Resolve the addresses of all samples, one batch series per host."""
        by_host: dict[HostId, set[int]] = {}
        for sample in samples:
            addresses = by_host.setdefault(sample.host_id, set())
            addresses.update(f for f in sample.frames if isinstance(f, int))
        uncached = sum(
            1 for h, addrs in by_host.items() for a in addrs if (h, a) not in self._cache
        )
        if uncached and len(self._cache) + uncached > self.max_entries:
            # One epoch switch per build so earlier hosts keep their symbols
            self.new_epoch()
        for host_id, addresses in by_host.items():
            await self.prefetch(topology, host_id, addresses)
