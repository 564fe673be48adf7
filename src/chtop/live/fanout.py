"""
FanoutExecutor: run one query template against every host concurrently.

This module implements the per-cycle fan-out:
- Bounded parallelism via asyncio.Semaphore (max_in_flight)
- Per-host timeout around each transport call
- Overall deadline so a cycle can never stall the tick loop
- Explicit CancellationToken so superseded cycles stop early
- Classification of per-host failures into ErrorCause values

The executor is the single writer of Host.state. Each attempt replaces the
host's immutable HostState: success sets UP, a failed attempt sets DOWN.
Cancelled hosts keep their previous state since no attempt completed.

Per-host failures never fail the call: a cycle where every host failed
still returns a FanoutResult with one error entry per host.
"""

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from chtop.errors import (
    HostTimeoutError,
    HostUnreachableError,
    QueryError,
    RowDecodeError,
)
from chtop.live.window import TimeWindow, utcnow
from chtop.protocols import QueryTransportProtocol
from chtop.query import QueryTemplate
from chtop.topology import ClusterTopology
from chtop.types import (
    ErrorCause,
    FanoutResult,
    Host,
    HostError,
    HostId,
    HostState,
    HostStatus,
    Row,
)

logger = logging.getLogger(__name__)

HostEntry = list[Row] | HostError


class CancellationToken:
    """
    One-shot cancellation signal for a fan-out cycle.

    The scheduler hands a fresh token to every cycle and cancels it when
    the cycle's result would be stale (pause, window change, view removal).

    Example:
        token = CancellationToken()
        task = asyncio.create_task(executor.execute(topology, template, window, token=token))
        token.cancel("paused")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class FanoutExecutor:
    """
    Runs a QueryTemplate against all active hosts of a topology.

    Example:
        executor = FanoutExecutor(transport, max_in_flight=8, host_timeout=5.0)
        result = await executor.execute(topology, PROCESSES, TimeWindow.live())
        for host_id, error in result.errors.items():
            print(host_id, error.cause)
    """

    def __init__(
        self,
        transport: QueryTransportProtocol,
        max_in_flight: int = 16,
        host_timeout: float = 5.0,
        deadline: float = 10.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize executor.

        Args:
            transport: Executes a query on one host
            max_in_flight: Maximum concurrent host calls
            host_timeout: Default per-host timeout in seconds
            deadline: Upper bound in seconds for a whole fan-out
            clock: Wall clock used for window resolution and timestamps
        """
        if max_in_flight < 1:
            raise ValueError(f"max_in_flight must be >= 1, got {max_in_flight}")
        self.transport = transport
        self.max_in_flight = max_in_flight
        self.host_timeout = host_timeout
        self.deadline = deadline
        self._clock = clock

    async def execute(
        self,
        topology: ClusterTopology,
        template: QueryTemplate,
        window: TimeWindow,
        timeout: float | None = None,
        token: CancellationToken | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> FanoutResult:
        """
        Run one fan-out cycle.

        Args:
            topology: Hosts to query (retired hosts are marked UNKNOWN, not queried)
            template: Query and decoding contract
            window: Time window bound into the query parameters
            timeout: Per-host timeout (defaults to host_timeout)
            token: Cancellation token for this cycle
            params: Extra query parameters

        Returns:
            FanoutResult with exactly one entry per active host.
        """
        timeout = self.host_timeout if timeout is None else timeout
        started_at = self._clock()

        for host in topology.hosts:
            if host.retired and host.status is not HostStatus.UNKNOWN:
                self._record(host, HostState(HostStatus.UNKNOWN, None, started_at))

        hosts = topology.active_hosts()
        start, end = window.resolve(started_at)
        query_params = template.parameters(start, end, params)

        entries: dict[HostId, HostEntry] = {}
        if token is not None and token.cancelled:
            for host in hosts:
                entries[host.id] = HostError(host.id, ErrorCause.CANCELLED, token.reason)
        elif hosts:
            entries = await self._fan_out(hosts, template, query_params, timeout, token)

        result = FanoutResult(
            template=template.name,
            per_host={host.id: entries[host.id] for host in hosts},
            started_at=started_at,
            finished_at=self._clock(),
        )
        logger.debug(
            "Fan-out %s: %d hosts, %d failed, %.3fs",
            template.name,
            len(hosts),
            len(result.errors),
            result.duration,
        )
        return result

    async def _fan_out(
        self,
        hosts: list[Host],
        template: QueryTemplate,
        params: dict[str, Any],
        timeout: float,
        token: CancellationToken | None,
    ) -> dict[HostId, HostEntry]:
        semaphore = asyncio.Semaphore(self.max_in_flight)
        tasks = {
            asyncio.create_task(self._run_host(host, template, params, timeout, semaphore)): host
            for host in hosts
        }
        entries: dict[HostId, HostEntry] = {}
        pending: set[asyncio.Task] = set(tasks)
        cancel_waiter = asyncio.create_task(token.wait()) if token is not None else None

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + self.deadline
        try:
            while pending:
                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    break
                waiting = pending | {cancel_waiter} if cancel_waiter else pending
                done, _ = await asyncio.wait(
                    waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter is not None and cancel_waiter in done:
                    break
                for task in done:
                    pending.discard(task)
                    entries[tasks[task].id] = task.result()
        except BaseException:
            # Outer cancellation: no host task may outlive this cycle
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        finally:
            if cancel_waiter is not None:
                cancel_waiter.cancel()

        # Collect results that finished in the same pass as the cancel/deadline
        for task in list(pending):
            if task.done() and not task.cancelled():
                pending.discard(task)
                entries[tasks[task].id] = task.result()

        if pending:
            cancelled = token is not None and token.cancelled
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in pending:
                host = tasks[task]
                if cancelled:
                    entries[host.id] = HostError(host.id, ErrorCause.CANCELLED, token.reason)
                else:
                    message = f"fan-out deadline of {self.deadline:.1f}s exceeded"
                    entries[host.id] = HostError(host.id, ErrorCause.TIMEOUT, message)
                    self._record(host, HostState(HostStatus.DOWN, message, self._clock()))

        return entries

    async def _run_host(
        self,
        host: Host,
        template: QueryTemplate,
        params: dict[str, Any],
        timeout: float,
        semaphore: asyncio.Semaphore,
    ) -> HostEntry:
        """Run the query on one host and record the attempt's outcome."""
        async with semaphore:
            try:
                raw_rows = await asyncio.wait_for(
                    self.transport.execute(host, template.sql, params, timeout),
                    timeout=timeout,
                )
                rows = [template.decode(host.id, raw) for raw in raw_rows]
            except (asyncio.TimeoutError, HostTimeoutError):
                error = HostError(host.id, ErrorCause.TIMEOUT, f"timed out after {timeout:.1f}s")
            except (HostUnreachableError, OSError) as e:
                error = HostError(host.id, ErrorCause.UNREACHABLE, str(e))
            except (QueryError, RowDecodeError) as e:
                error = HostError(host.id, ErrorCause.QUERY_ERROR, str(e))
            except Exception as e:
                logger.warning("Unexpected error from host %s", host.id, exc_info=True)
                error = HostError(host.id, ErrorCause.QUERY_ERROR, f"{type(e).__name__}: {e}")
            else:
                self._record(host, HostState(HostStatus.UP, None, self._clock()))
                return rows

        logger.debug("Host %s failed (%s): %s", host.id, error.cause.value, error.message)
        self._record(host, HostState(HostStatus.DOWN, error.message, self._clock()))
        return error

    def _record(self, host: Host, state: HostState) -> None:
        """Replace a host's state (the only place Host.state is written)."""
        host.state = state
