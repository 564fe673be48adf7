"""
Call tree construction from stack samples.

This module provides:
- CallTreeNode: weighted trie node
- CallTreeBuilder: folds StackSamples into a CallTreeNode tree
- LiveFlamegraph: periodically rebuilt tree from system.stack_trace

Every node keeps total_weight == self_weight + sum(child.total_weight).
Children keep first-seen order so exports are deterministic for a given
sample order. Building is O(total frames).
Samples without frames are filed under UNKNOWN_FRAME, so the root never
carries self weight.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime

from chtop.live.window import TimeWindow, utcnow
from chtop.profiling.collector import StackSampleCollector
from chtop.profiling.symbols import SymbolResolver, hex_frame
from chtop.topology import ClusterTopology
from chtop.types import UNKNOWN_FRAME, Frame, HostId, ProfileType, StackSample

logger = logging.getLogger(__name__)

ROOT_FRAME = ""


@dataclass
class CallTreeNode:
    """
    One frame of a call tree.

    Attributes:
        frame: Symbol name ("" for the root)
        children: Callee frame to node, in first-seen order
        self_weight: Weight of samples whose stack ends here
        total_weight: Weight of all samples passing through this node
    """

    frame: str = ROOT_FRAME
    children: dict[str, "CallTreeNode"] = field(default_factory=dict)
    self_weight: int = 0
    total_weight: int = 0

    def child(self, frame: str) -> "CallTreeNode":
        """Get or create the child for a frame."""
        node = self.children.get(frame)
        if node is None:
            node = CallTreeNode(frame)
            self.children[frame] = node
        return node

    def add_path(self, frames: Iterable[str], weight: int) -> None:
        """Add one root-first stack with its weight below this node."""
        node = self
        node.total_weight += weight
        for frame in frames:
            node = node.child(frame)
            node.total_weight += weight
        node.self_weight += weight

    def find(self, path: Iterable[str]) -> "CallTreeNode | None":
        node: CallTreeNode | None = self
        for frame in path:
            node = node.children.get(frame) if node is not None else None
        return node

    def walk(self) -> Iterator[tuple[tuple[str, ...], "CallTreeNode"]]:
        """Depth-first (path, node) pairs below this node, children in order."""
        stack: list[tuple[tuple[str, ...], CallTreeNode]] = [((), self)]
        while stack:
            path, node = stack.pop()
            if path:
                yield path, node
            for frame in reversed(node.children):
                stack.append(((*path, frame), node.children[frame]))

    def is_consistent(self) -> bool:
        """Check the weight invariant on every node."""
        nodes = [self, *(node for _, node in self.walk())]
        return all(
            n.total_weight == n.self_weight + sum(c.total_weight for c in n.children.values())
            for n in nodes
        )

    def __len__(self) -> int:
        """Number of nodes, root excluded."""
        return sum(1 for _ in self.walk())


class CallTreeBuilder:
    """
    Folds stack samples into a weighted call tree.

    Profile types only change what the weight means (profile_type.weight_unit);
    the folding is identical.

    Example:
        builder = CallTreeBuilder(ProfileType.CPU, resolver)
        root = builder.build(samples)
        print(root.total_weight, builder.profile_type.weight_unit)
    """

    def __init__(
        self,
        profile_type: ProfileType = ProfileType.CPU,
        resolver: SymbolResolver | None = None,
    ) -> None:
        self.profile_type = profile_type
        self.resolver = resolver
        self.root = CallTreeNode()
        self.samples = 0

    def reset(self) -> None:
        self.root = CallTreeNode()
        self.samples = 0

    def build(self, samples: Iterable[StackSample]) -> CallTreeNode:
        """Build a fresh tree from samples."""
        self.reset()
        return self.merge(samples)

    def merge(self, samples: Iterable[StackSample]) -> CallTreeNode:
        """Add samples to the current tree."""
        for sample in samples:
            frames = [self._label(sample.host_id, f) for f in sample.frames] or [UNKNOWN_FRAME]
            self.root.add_path(frames, sample.weight)
            self.samples += 1
        return self.root

    def _label(self, host_id: HostId, frame: Frame) -> str:
        if isinstance(frame, str):
            return frame
        if self.resolver is not None:
            return self.resolver.lookup(host_id, frame)
        return hex_frame(frame)


class LiveFlamegraph:
    """
    Continuously refreshed flamegraph of what every thread is doing now.

    Each refresh samples system.stack_trace, builds a new tree and swaps it
    in as a whole, so readers of root never see a half-built tree. The
    resolver cache starts a new epoch every epoch_refreshes refreshes so a
    long session does not keep addresses of binaries that are gone.

    Example:
        session = LiveFlamegraph(collector, topology, resolver, on_refresh=write)
        await session.run()
    """

    def __init__(
        self,
        collector: StackSampleCollector,
        topology: ClusterTopology,
        resolver: SymbolResolver | None = None,
        query_ids: Iterable[str] | None = None,
        interval: float = 1.0,
        epoch_refreshes: int = 60,
        on_refresh: Callable[[CallTreeNode], None] | None = None,
    ) -> None:
        if epoch_refreshes < 1:
            raise ValueError(f"epoch_refreshes must be >= 1, got {epoch_refreshes}")
        self.collector = collector
        self.topology = topology
        self.resolver = resolver
        self.query_ids = list(query_ids or ())
        self.interval = interval
        self.epoch_refreshes = epoch_refreshes
        self.on_refresh = on_refresh
        self._root = CallTreeNode()
        self.updated_at: datetime | None = None
        self.refreshes = 0
        self._shutdown = asyncio.Event()

    @property
    def root(self) -> CallTreeNode:
        return self._root

    async def refresh(self) -> CallTreeNode:
        """Sample once and replace the current tree."""
        if self.resolver is not None and self.refreshes:
            if self.refreshes % self.epoch_refreshes == 0:
                self.resolver.new_epoch()
        samples = await self.collector.collect(
            self.topology, ProfileType.LIVE, TimeWindow.live(), query_ids=self.query_ids
        )
        if self.resolver is not None:
            await self.resolver.prefetch_samples(self.topology, samples)
        root = CallTreeBuilder(ProfileType.LIVE, self.resolver).build(samples)
        self._root = root
        self.updated_at = utcnow()
        self.refreshes += 1
        if self.on_refresh is not None:
            self.on_refresh(root)
        return root

    async def run(self) -> None:
        """Refresh every interval until stop() is called."""
        while not self._shutdown.is_set():
            try:
                await self.refresh()
            except Exception:
                logger.exception("Live flamegraph refresh failed")
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        self._shutdown.set()
