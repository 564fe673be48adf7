"""
ClickHouse HTTP interface transport.

This module provides ClickHouseHTTPTransport, the QueryTransportProtocol
implementation used by the CLI. It talks to the HTTP interface (port
8123 by default) of each host.

Key design decisions:
- Uses injected httpx.AsyncClient; one client serves every host since
  each request carries the host's absolute URL
- Query text is sent as the POST body; values are bound server-side as
  param_<name> URL parameters, never formatted into the SQL
- Results are requested as FORMAT JSON via the default_format setting
- Credentials are passed verbatim in X-ClickHouse-User/X-ClickHouse-Key

Error mapping:
- httpx.TimeoutException -> HostTimeoutError
- any other httpx.TransportError (connect refused, DNS, reset) -> HostUnreachableError
- non-200 response -> QueryError with the server's message
- unparseable body -> QueryError
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import httpx

from chtop.clickhouse.types import QueryResponse
from chtop.errors import HostTimeoutError, HostUnreachableError, QueryError
from chtop.types import Host

logger = logging.getLogger(__name__)


def _escape(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
    )


def _literal(value: Any) -> str:
    """Format a value nested inside an array/tuple parameter."""
    if isinstance(value, str):
        return "'" + _escape(value).replace("'", "\\'") + "'"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_literal(v) for v in value) + "]"
    return format_param(value)


def format_param(value: Any) -> str:
    """
    Format a Python value as a ClickHouse HTTP query parameter.

    Parameters use the escaped text format: strings are sent as-is (with
    backslash, tab and newline escaped), arrays as [..] literals and
    datetimes as UTC "YYYY-MM-DD hh:mm:ss".

    Example:
        format_param(["a", "b"])  # "['a','b']"
        format_param(True)        # "1"
    """
    if value is None:
        return "\\N"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ",".join(_literal(v) for v in value) + "]"
    if isinstance(value, str):
        return _escape(value)
    return str(value)


@dataclass
class ClickHouseHTTPTransport:
    """
    ClickHouse HTTP transport with injected httpx client.

    Attributes:
        http: httpx.AsyncClient (no base_url needed, hosts carry their address)
        user: ClickHouse user
        password: ClickHouse password
        settings: Extra server settings sent with every query

    Example:
        async with httpx.AsyncClient() as http:
            transport = ClickHouseHTTPTransport(http=http, user="default")
            rows = await transport.execute(host, "SELECT version() AS v", {}, 5.0)
            print(rows[0]["v"])
    """

    http: httpx.AsyncClient
    user: str = "default"
    password: str = ""
    settings: dict[str, Any] = field(default_factory=dict)

    async def execute(
        self,
        host: Host,
        query: str,
        params: Mapping[str, Any],
        timeout: float,
    ) -> list[dict[str, Any]]:
        """
        Execute a query on one host.

        Args:
            host: Target host (its address is the base URL)
            query: Query text with {name:Type} placeholders
            params: Values for the placeholders
            timeout: Seconds for connect and read

        Returns:
            Rows as column name to value mappings (empty for statements
            without a result set).

        Raises:
            HostTimeoutError: On connect/read timeout.
            HostUnreachableError: On connection errors.
            QueryError: When the server rejects the query or the body is malformed.
        """
        request_params = {"default_format": "JSON"}
        request_params.update({k: format_param(v) for k, v in self.settings.items()})
        request_params.update({f"param_{k}": format_param(v) for k, v in params.items()})

        headers = {"X-ClickHouse-User": self.user}
        if self.password:
            headers["X-ClickHouse-Key"] = self.password

        try:
            response = await self.http.post(
                f"{host.address.rstrip('/')}/",
                content=query.encode(),
                params=request_params,
                headers=headers,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise HostTimeoutError(host.id, timeout) from e
        except httpx.TransportError as e:
            raise HostUnreachableError(host.id, str(e) or type(e).__name__) from e
        except httpx.HTTPError as e:
            # Body decoding, redirect loops and other protocol-level failures
            raise QueryError(host.id, f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise QueryError(host.id, response.text or f"HTTP {response.status_code}")

        if not response.content.strip():
            return []

        try:
            data = QueryResponse.model_validate(response.json())
        except ValueError as e:
            # Covers both JSON decoding and pydantic validation errors
            raise QueryError(host.id, f"Malformed response: {e}") from e

        if data.statistics is not None:
            logger.debug(
                "%s: %d rows in %.3fs (read %d rows)",
                host.id,
                data.rows,
                data.statistics.elapsed,
                data.statistics.rows_read,
            )
        return data.data
