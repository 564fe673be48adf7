"""
ClickHouse integration for chtop.

This module provides:
- ClickHouseHTTPTransport: QueryTransportProtocol over the HTTP interface
- discover_topology / rediscover: cluster membership from system.clusters
- Built-in QueryTemplates for the live views
"""

from chtop.clickhouse.client import ClickHouseHTTPTransport, format_param
from chtop.clickhouse.discovery import discover_hosts, discover_topology, rediscover
from chtop.clickhouse.templates import TEMPLATES, VIEWS, get_template

__all__ = [
    "ClickHouseHTTPTransport",
    "TEMPLATES",
    "VIEWS",
    "discover_hosts",
    "discover_topology",
    "format_param",
    "get_template",
    "rediscover",
]
