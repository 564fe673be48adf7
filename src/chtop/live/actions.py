"""
One-off actions against a single host.

Actions bypass the FanoutExecutor: they target one host, never touch
Host.state and are not part of a refresh cycle.

- kill_query: fire-and-forget. Returns the background task immediately;
  the outcome goes to the on_outcome callback and a bounded outcome log.
- explain: awaited by the caller, returns the EXPLAIN output lines.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from chtop.errors import TransportError
from chtop.live.window import utcnow
from chtop.protocols import QueryTransportProtocol
from chtop.topology import ClusterTopology
from chtop.types import HostId

logger = logging.getLogger(__name__)

KILL_QUERY_SQL = "KILL QUERY WHERE query_id = {query_id:String} ASYNC"


class ExplainKind(str, Enum):
    """EXPLAIN variants exposed in the UI."""

    PLAN = "PLAN"
    PIPELINE = "PIPELINE"
    SYNTAX = "SYNTAX"


@dataclass(frozen=True)
class ActionOutcome:
    """
    Result of a one-off action.

    Attributes:
        action: Action name ("kill")
        host_id: Target host
        target: What the action was applied to (query id)
        ok: True if the server accepted the action
        message: Server or transport message on failure
        finished_at: When the outcome was recorded
    """

    action: str
    host_id: HostId
    target: str
    ok: bool
    message: str = ""
    finished_at: datetime = field(default_factory=utcnow)


OutcomeCallback = Callable[[ActionOutcome], None]


class QueryActions:
    """
    Issues one-off commands for a single host.

    Example:
        actions = QueryActions(transport, topology, on_outcome=print)
        actions.kill_query("ch-1:8123", "f2c1...")
        plan = await actions.explain("ch-1:8123", "SELECT 1", ExplainKind.PLAN)
    """

    def __init__(
        self,
        transport: QueryTransportProtocol,
        topology: ClusterTopology,
        timeout: float = 5.0,
        on_outcome: OutcomeCallback | None = None,
        log_size: int = 50,
    ) -> None:
        self.transport = transport
        self.topology = topology
        self.timeout = timeout
        self.on_outcome = on_outcome
        self.outcomes: deque[ActionOutcome] = deque(maxlen=log_size)
        # Keep references so running tasks are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    def kill_query(self, host_id: HostId, query_id: str) -> asyncio.Task:
        """
        Kill a running query on one host without waiting for the result.

        Args:
            host_id: Host running the query
            query_id: ClickHouse query_id

        Returns:
            The background task (awaiting it is optional).

        Raises:
            TopologyError: If host_id is unknown.
        """
        host = self.topology.get(host_id)
        task = asyncio.create_task(self._kill(host_id, query_id), name=f"kill-{query_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Killing query %s on %s", query_id, host.id)
        return task

    async def _kill(self, host_id: HostId, query_id: str) -> ActionOutcome:
        host = self.topology.get(host_id)
        try:
            await asyncio.wait_for(
                self.transport.execute(host, KILL_QUERY_SQL, {"query_id": query_id}, self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            outcome = ActionOutcome("kill", host_id, query_id, False, "timed out")
        except (TransportError, OSError) as e:
            outcome = ActionOutcome("kill", host_id, query_id, False, str(e))
        else:
            outcome = ActionOutcome("kill", host_id, query_id, True)

        if outcome.ok:
            logger.info("Query %s killed on %s", query_id, host_id)
        else:
            logger.warning("Cannot kill query %s on %s: %s", query_id, host_id, outcome.message)
        self.outcomes.append(outcome)
        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    async def explain(
        self,
        host_id: HostId,
        query: str,
        kind: ExplainKind = ExplainKind.PLAN,
    ) -> list[str]:
        """
        Run EXPLAIN for a query on one host.

        The query text comes from system.processes and is embedded verbatim;
        EXPLAIN cannot take the explained statement as a parameter.

        Returns:
            Output lines of the EXPLAIN statement.

        Raises:
            TopologyError: If host_id is unknown.
            TransportError: If the host fails or rejects the statement.
        """
        host = self.topology.get(host_id)
        sql = f"EXPLAIN {kind.value} {query}"
        rows = await self.transport.execute(host, sql, {}, self.timeout)
        return [str(value) for row in rows for value in row.values()]
