"""
Transport protocol definition.

The QueryTransportProtocol is the only capability the engine needs from
the database wire layer: run one query against one host and return rows
or raise a classified TransportError. ClickHouseHTTPTransport is the
shipped implementation; tests use in-memory fakes.
"""

from typing import Any, Mapping, Protocol, runtime_checkable

from chtop.types import Host


@runtime_checkable
class QueryTransportProtocol(Protocol):
    """
    Protocol for executing a query on a single host.

    Implementations should:
    - Bind params as server-side query parameters (never string-format them)
    - Raise HostUnreachableError when the host cannot be reached
    - Raise HostTimeoutError when the call exceeds timeout
    - Raise QueryError with the server message when the query is rejected
    - Handle any authentication themselves
    """

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
            host: Target host
            query: Query text with {name:Type} placeholders
            params: Values for the placeholders
            timeout: Seconds before the call is abandoned

        Returns:
            Rows as column name to value mappings.
        """
        ...
