"""
Exception classes for chtop.

Transport-level exceptions are raised by a QueryTransportProtocol
implementation and classified by the FanoutExecutor into an ErrorCause.
They never escape a fan-out cycle.

Contract exceptions (TemplateError, DuplicateRowKeyError, TopologyError,
RefreshRejectedError) signal programmer errors or rejected operations and
are raised to the caller.
"""


class ChtopError(Exception):
    """Base class for all chtop exceptions."""


class TransportError(ChtopError):
    """
    Base class for errors raised while executing a query on one host.

    Attributes:
        host_id: Host the query was sent to
    """

    def __init__(self, host_id: str, message: str) -> None:
        self.host_id = host_id
        super().__init__(message)


class HostUnreachableError(TransportError):
    """Raised when the host cannot be connected to."""

    def __init__(self, host_id: str, reason: str = "") -> None:
        message = f"Host {host_id} is unreachable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(host_id, message)


class HostTimeoutError(TransportError):
    """
    Raised when the host did not answer within the per-host timeout.

    Attributes:
        timeout: Timeout in seconds that expired
    """

    def __init__(self, host_id: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(host_id, f"Host {host_id} timed out after {timeout:.1f}s")


class QueryError(TransportError):
    """
    Raised when the server rejected the query.

    The server message is kept verbatim (malformed query, missing
    permission, unknown table and so on).
    """

    def __init__(self, host_id: str, message: str) -> None:
        super().__init__(host_id, message.strip())


class TemplateError(ChtopError):
    """Raised when a QueryTemplate declaration is malformed."""


class RowDecodeError(ChtopError):
    """
    Raised when a host returns a row that violates the template contract.

    Attributes:
        template: Name of the template that was decoding
        column: Column that was missing or failed conversion
    """

    def __init__(self, template: str, column: str, reason: str) -> None:
        self.template = template
        self.column = column
        super().__init__(f"Cannot decode column '{column}' for {template}: {reason}")


class DuplicateRowKeyError(ChtopError):
    """
    Raised when two merged rows share the same host-qualified key.

    Rows are host-qualified, so a duplicate means the template's key column
    is not unique per host. This is a contract bug and is never merged away.
    """

    def __init__(self, template: str, key: object) -> None:
        self.template = template
        self.key = key
        super().__init__(f"Duplicate row key {key!r} in {template}")


class TopologyError(ChtopError):
    """Raised on invalid topology operations (duplicate or unknown host id)."""


class RefreshRejectedError(ChtopError):
    """Raised when refresh_now() is requested while the scheduler is paused."""

    def __init__(self) -> None:
        super().__init__("Refresh rejected: scheduler is paused (resume first)")
