"""
Shared data types for chtop.

This module defines the data structures that flow between the live
telemetry engine and the profiling engine:
- Host, HostState, HostRole, HostStatus: cluster members and their liveness
- Row, RowKey: decoded, host-qualified result rows
- HostError, ErrorCause: classified per-host failures
- FanoutResult: one entry per host for a single fan-out cycle
- Snapshot: merged, ordered, timestamped cluster-wide result set
- StackSample, ProfileType: profiling inputs

These are internal types, not API models. Pydantic models are reserved for
config parsing and server responses (see chtop.clickhouse.types).
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, NamedTuple

# Type aliases for common patterns
HostId = str
"""Unique identifier for a cluster host (stable for the whole session)."""


class HostRole(str, Enum):
    """Role of a host inside the cluster topology."""

    SHARD = "shard"
    REPLICA = "replica"


class HostStatus(str, Enum):
    """Liveness of a host as observed by the last fan-out attempt."""

    UP = "up"
    DOWN = "down"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class HostState:
    """
    Immutable liveness record for a host.

    Status and last error are replaced together as a single value, so a
    concurrent reader always sees a consistent pair.

    Attributes:
        status: Result of the last attempt
        last_error: Message of the last failure (None after a success)
        changed_at: When this state was recorded (None before first attempt)
    """

    status: HostStatus = HostStatus.UNKNOWN
    last_error: str | None = None
    changed_at: datetime | None = None


@dataclass
class Host:
    """
    A ClickHouse server taking part in the cluster.

    Attributes:
        id: Unique host identifier (usually "host:port")
        address: Base URL used by the transport (e.g. "http://ch-1:8123")
        role: SHARD for the first replica of a shard, REPLICA otherwise
        shard: Shard number from the cluster definition (1 when unknown)
        state: Liveness record, replaced only by the FanoutExecutor
        retired: True once discovery no longer reports this host
    """

    id: HostId
    address: str
    role: HostRole = HostRole.SHARD
    shard: int = 1
    state: HostState = field(default_factory=HostState)
    retired: bool = False

    @property
    def status(self) -> HostStatus:
        return self.state.status

    @property
    def last_error(self) -> str | None:
        return self.state.last_error


class RowKey(NamedTuple):
    """Cluster-unique row key: native identifiers are only unique per host."""

    host_id: HostId
    native_id: str


@dataclass
class Row:
    """
    One decoded result row.

    Rows are tagged with the name of the template that decoded them; the
    fields mapping follows that template's decoding contract.

    Attributes:
        template: Name of the QueryTemplate that produced this row
        host_id: Host the row came from
        native_id: Value of the template's key field, as a string
        fields: Semantic field name to converted value
    """

    template: str
    host_id: HostId
    native_id: str
    fields: dict[str, Any]

    @property
    def key(self) -> RowKey:
        return RowKey(self.host_id, self.native_id)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.fields[name]


class ErrorCause(str, Enum):
    """Classified reason for a per-host failure."""

    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    QUERY_ERROR = "query_error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class HostError:
    """
    Per-host failure entry of a FanoutResult.

    Attributes:
        host_id: Host that failed
        cause: Classified failure reason
        message: Human-readable detail (server message verbatim for QUERY_ERROR)
    """

    host_id: HostId
    cause: ErrorCause
    message: str = ""


@dataclass
class FanoutResult:
    """
    Outcome of running one template against every active host.

    Every host that was active when the fan-out started has exactly one
    entry: either its decoded rows or a HostError.
    """

    template: str
    per_host: dict[HostId, list[Row] | HostError]
    started_at: datetime
    finished_at: datetime

    @property
    def errors(self) -> dict[HostId, HostError]:
        return {h: e for h, e in self.per_host.items() if isinstance(e, HostError)}

    @property
    def succeeded(self) -> list[HostId]:
        return [h for h, e in self.per_host.items() if not isinstance(e, HostError)]

    @property
    def all_failed(self) -> bool:
        return bool(self.per_host) and not self.succeeded

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class Snapshot:
    """
    Merged, ordered, timestamped result set for one template.

    Attributes:
        template: Name of the template the rows were decoded with
        timestamp: When the underlying fan-out finished
        rows: Merged rows in display order (full set unless merged with top_n)
        source_hosts_failed: Hosts whose entry was an error
        hosts_total: Number of hosts taking part in the fan-out
        rates: Per-row derived rates (units per second) for rate fields.
            A key or field missing here has no previous counterpart.
        errors: Failure detail for every failed host
    """

    template: str
    timestamp: datetime
    rows: list[Row]
    source_hosts_failed: frozenset[HostId] = frozenset()
    hosts_total: int = 0
    rates: dict[RowKey, dict[str, float]] = field(default_factory=dict)
    errors: dict[HostId, HostError] = field(default_factory=dict)

    @property
    def partial_failure(self) -> bool:
        """Some hosts failed while others succeeded."""
        return 0 < len(self.source_hosts_failed) < self.hosts_total

    @property
    def total_failure(self) -> bool:
        """Every host failed in this cycle."""
        return self.hosts_total > 0 and len(self.source_hosts_failed) == self.hosts_total

    def top(self, n: int | None) -> list[Row]:
        """Return the first n rows (all rows when n is None)."""
        if n is None:
            return list(self.rows)
        return self.rows[: max(n, 0)]

    def rate(self, key: RowKey, name: str) -> float | None:
        """Return the derived rate for a row field, or None when absent."""
        return self.rates.get(key, {}).get(name)


class ProfileType(str, Enum):
    """
    Stack sample source.

    Values match the trace_type names of system.trace_log; LIVE samples
    system.stack_trace instead.
    """

    CPU = "CPU"
    REAL = "Real"
    MEMORY = "Memory"
    MEMORY_SAMPLE = "MemorySample"
    JEMALLOC_SAMPLE = "JemallocSample"
    MEMORY_ALLOCATED_WITHOUT_CHECK = "MemoryAllocatedWithoutCheck"
    PROFILE_EVENTS = "ProfileEvent"
    LIVE = "Live"

    @property
    def weight_unit(self) -> str:
        """What a sample weight counts for this profile type."""
        if self in (
            ProfileType.MEMORY,
            ProfileType.MEMORY_SAMPLE,
            ProfileType.JEMALLOC_SAMPLE,
            ProfileType.MEMORY_ALLOCATED_WITHOUT_CHECK,
        ):
            return "bytes"
        if self is ProfileType.PROFILE_EVENTS:
            return "events"
        return "samples"


Frame = str | int
"""A stack frame: a resolved symbol name or a raw instruction address."""

UNKNOWN_FRAME = "[unknown]"
"""Placeholder frame for samples recorded without a stack."""


@dataclass(frozen=True)
class StackSample:
    """
    One recorded call stack.

    Attributes:
        host_id: Host the sample was taken on
        thread_id: OS thread id
        frames: Frames ordered root first (outermost caller first)
        weight: Sample count or bytes, always >= 1
    """

    host_id: HostId
    thread_id: int
    frames: tuple[Frame, ...]
    weight: int = 1

    def __post_init__(self) -> None:
        if self.weight < 1:
            raise ValueError(f"StackSample weight must be >= 1, got {self.weight}")
