"""
StackSampleCollector: turn trace rows from every host into StackSamples.

Sample sources:
- system.trace_log for the recorded profile types (CPU, Real, memory
  variants, ProfileEvent), bounded by the time window
- system.stack_trace for LIVE (a one-shot snapshot of every thread)

Both tables store stacks leaf first (innermost frame first); samples are
reversed to root first here. Identical (thread, stack) pairs are grouped
server-side and their weights summed.
"""

import functools
import logging
from collections.abc import Iterable
from typing import Any

from chtop.live.fanout import CancellationToken, FanoutExecutor
from chtop.live.window import TimeWindow
from chtop.query import Column, QueryTemplate, to_int, to_str
from chtop.topology import ClusterTopology
from chtop.types import UNKNOWN_FRAME, HostError, HostId, ProfileType, StackSample

logger = logging.getLogger(__name__)

# How each trace_type weighs a sample
_TRACE_WEIGHTS = {
    ProfileType.CPU: "count()",
    ProfileType.REAL: "count()",
    ProfileType.MEMORY: "sum(abs(size))",
    ProfileType.MEMORY_SAMPLE: "sum(abs(size))",
    ProfileType.JEMALLOC_SAMPLE: "sum(abs(size))",
    ProfileType.MEMORY_ALLOCATED_WITHOUT_CHECK: "sum(abs(size))",
    ProfileType.PROFILE_EVENTS: "sum(abs(increment))",
}

TRACE_LOG_SQL = """
    SELECT
        concat(toString(thread_id), ':', toString(cityHash64(trace))) AS sample_id,
        thread_id,
        trace,
        {weight} AS weight
    FROM system.trace_log
    WHERE
        event_date >= toDate(fromUnixTimestamp64Micro({{start_us:Int64}}))
        AND event_time_microseconds >= fromUnixTimestamp64Micro({{start_us:Int64}})
        AND event_time_microseconds < fromUnixTimestamp64Micro({{end_us:Int64}})
        AND trace_type = {{trace_type:String}}
        AND (empty({{query_ids:Array(String)}}) OR has({{query_ids:Array(String)}}, query_id))
    GROUP BY thread_id, trace
    HAVING weight > 0
"""

STACK_TRACE_SQL = """
    SELECT
        concat(toString(thread_id), ':', toString(cityHash64(trace))) AS sample_id,
        thread_id,
        trace,
        count() AS weight
    FROM system.stack_trace
    WHERE empty({query_ids:Array(String)}) OR has({query_ids:Array(String)}, query_id)
    GROUP BY thread_id, trace
"""


def to_addresses(value: Any) -> tuple[int, ...]:
    """Convert an Array(UInt64) value (numbers or quoted numbers) to ints."""
    if not value:
        return ()
    return tuple(int(v) for v in value)


_TRACE_COLUMNS = (
    Column("sample_id", convert=to_str),
    Column("thread_id", convert=to_int),
    Column("trace", "frames", to_addresses),
    Column("weight", convert=to_int),
)


@functools.cache
def trace_template(profile_type: ProfileType) -> QueryTemplate:
    """Build (once) the query template that samples stacks for a profile type."""
    if profile_type is ProfileType.LIVE:
        return QueryTemplate(
            name="stack_trace",
            title="Live stacks",
            sql=STACK_TRACE_SQL,
            columns=_TRACE_COLUMNS,
            key="sample_id",
        )
    return QueryTemplate(
        name=f"trace_log_{profile_type.value.lower()}",
        title=f"{profile_type.value} profile",
        sql=TRACE_LOG_SQL.format(weight=_TRACE_WEIGHTS[profile_type]),
        columns=_TRACE_COLUMNS,
        key="sample_id",
        windowed=True,
    )


class StackSampleCollector:
    """
    Collects stack samples from every host of a topology.

    Example:
        collector = StackSampleCollector(executor)
        samples = await collector.collect(topology, ProfileType.CPU, window)
        tree = CallTreeBuilder(ProfileType.CPU).build(samples)
    """

    def __init__(self, executor: FanoutExecutor) -> None:
        self.executor = executor
        self.last_errors: dict[HostId, HostError] = {}

    async def collect(
        self,
        topology: ClusterTopology,
        profile_type: ProfileType,
        window: TimeWindow,
        query_ids: Iterable[str] | None = None,
        token: CancellationToken | None = None,
    ) -> list[StackSample]:
        """
        Collect samples for one profile type.

        Hosts that fail are skipped (and kept in last_errors); the samples
        of the remaining hosts are still returned.

        Args:
            topology: Hosts to sample
            profile_type: Which trace type to read (LIVE ignores window)
            window: Time window for trace_log types
            query_ids: Restrict to these queries (all queries if empty/None)
            token: Cancellation token for the fan-out

        Returns:
            Samples with frames ordered root first.
        """
        template = trace_template(profile_type)
        params = {"query_ids": list(query_ids or ())}
        if profile_type is not ProfileType.LIVE:
            params["trace_type"] = profile_type.value

        result = await self.executor.execute(
            topology, template, window, token=token, params=params
        )
        self.last_errors = result.errors
        for host_id, error in result.errors.items():
            logger.warning(
                "Cannot collect %s samples from %s (%s): %s",
                profile_type.value,
                host_id,
                error.cause.value,
                error.message,
            )

        samples = []
        for host_id, entry in result.per_host.items():
            if isinstance(entry, HostError):
                continue
            for row in entry:
                weight = row["weight"]
                if weight < 1:
                    continue
                samples.append(
                    StackSample(
                        host_id=host_id,
                        thread_id=row["thread_id"],
                        frames=tuple(reversed(row["frames"])) or (UNKNOWN_FRAME,),
                        weight=weight,
                    )
                )
        logger.debug("Collected %d %s samples", len(samples), profile_type.value)
        return samples
