"""
chtop

Terminal dashboard for distributed ClickHouse clusters. This package
provides:

- Live telemetry: concurrent per-host fan-out, merged snapshots, bounded
  history, pause/resume/seek scheduling
- Profiling: stack samples from trace_log/stack_trace folded into call
  trees and exported as flamegraphs
- ClickHouse HTTP transport, cluster discovery and built-in views
- CLI infrastructure: Typer-based commands and a rich TUI
"""

__version__ = "0.1.0"

# Re-export public types for convenient imports
from chtop.errors import (
    ChtopError,
    DuplicateRowKeyError,
    HostTimeoutError,
    HostUnreachableError,
    QueryError,
    RefreshRejectedError,
    TemplateError,
    TopologyError,
)
from chtop.query import Column, QueryTemplate
from chtop.topology import ClusterTopology, topology_from_urls
from chtop.types import (
    ErrorCause,
    FanoutResult,
    Host,
    HostError,
    HostRole,
    HostStatus,
    ProfileType,
    Row,
    RowKey,
    Snapshot,
    StackSample,
)

__all__ = [
    "__version__",
    # Errors
    "ChtopError",
    "DuplicateRowKeyError",
    "HostTimeoutError",
    "HostUnreachableError",
    "QueryError",
    "RefreshRejectedError",
    "TemplateError",
    "TopologyError",
    # Templates
    "Column",
    "QueryTemplate",
    # Topology
    "ClusterTopology",
    "topology_from_urls",
    # Data types
    "ErrorCause",
    "FanoutResult",
    "Host",
    "HostError",
    "HostRole",
    "HostStatus",
    "ProfileType",
    "Row",
    "RowKey",
    "Snapshot",
    "StackSample",
]
