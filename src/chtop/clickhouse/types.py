"""
ClickHouse-specific Pydantic response types.

This module provides Pydantic models for parsing responses from the
ClickHouse HTTP interface:
- QueryResponse: body of a FORMAT JSON result
- ClusterHostRow: one row of system.clusters

These are API response types for external data validation. Internal
types (Host, Row, Snapshot, etc.) are dataclasses in chtop.types.

Notes:
- 64-bit integers arrive as JSON strings by default
  (output_format_json_quote_64bit_integers=1); pydantic coerces them.
- The port column of system.clusters is the native TCP port, not the
  HTTP port, so discovery reuses the seed's HTTP port.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict


# =============================================================================
# FORMAT JSON Response Types
# =============================================================================
# Response structure:
# {"meta": [{"name": ..., "type": ...}], "data": [{...}], "rows": N, "statistics": {...}}


class ColumnMeta(BaseModel):
    """Name and ClickHouse type of one result column."""

    name: str
    type: str


class QueryStatistics(BaseModel):
    """Server-side execution statistics."""

    elapsed: float = 0.0
    rows_read: int = 0
    bytes_read: int = 0


class QueryResponse(BaseModel):
    """
    Body of a FORMAT JSON response.

    Only data is required; statements without a result set are answered
    with an empty body and never parsed.
    """

    model_config = ConfigDict(extra="ignore")

    meta: list[ColumnMeta] = []
    data: list[dict[str, Any]]
    rows: int = 0
    statistics: QueryStatistics | None = None


# =============================================================================
# system.clusters
# =============================================================================


class ClusterHostRow(BaseModel):
    """One replica entry of a cluster definition."""

    model_config = ConfigDict(extra="ignore")

    cluster: str
    shard_num: int
    replica_num: int
    host_name: str
    host_address: str = ""
    port: int = 9000
