"""
Built-in query templates for the live views.

Each template queries one system table on a single host; the fan-out
executor runs it everywhere and the aggregator merges the per-host rows.
Keys are unique per host (rows become cluster-unique once qualified by
host id), so composite identifiers are built in SQL where a system table
has no single id column.

Views:
- processes: running queries with ProfileEvents counters
- queries: finished queries of the current time window (system.query_log)
- merges, mutations: background part work
- replication_queue, replicated_fetches, replicas: replication state
- errors: server error counters
- summary: one row per host with server-wide resource usage
"""

from chtop.query import (
    Column,
    QueryTemplate,
    to_bool,
    to_counters,
    to_float,
    to_int,
    to_str,
)

CPU_EVENT = "OSCPUVirtualTimeMicroseconds"
DISK_READ_EVENT = "ReadBufferFromFileDescriptorReadBytes"
NET_RECEIVE_EVENT = "NetworkReceiveBytes"
NET_SEND_EVENT = "NetworkSendBytes"

PROCESSES = QueryTemplate(
    name="processes",
    title="Queries",
    sql="""
        SELECT
            query_id,
            user,
            elapsed,
            peak_memory_usage,
            length(thread_ids) AS threads,
            is_initial_query,
            ProfileEvents,
            normalizeQuery(query) AS normalized_query,
            query
        FROM system.processes
    """,
    columns=(
        Column("query_id", convert=to_str),
        Column("user", convert=to_str),
        Column("elapsed", convert=to_float),
        Column("peak_memory_usage", "memory", to_int),
        Column("threads", convert=to_int),
        Column("is_initial_query", "initial", to_bool),
        Column("ProfileEvents", "events", to_counters),
        Column("normalized_query", "query", to_str),
        Column("query", "query_text", to_str),
    ),
    key="query_id",
    rate_fields=(
        f"events.{CPU_EVENT}",
        f"events.{DISK_READ_EVENT}",
        f"events.{NET_RECEIVE_EVENT}",
        f"events.{NET_SEND_EVENT}",
    ),
    order_by="elapsed",
)

QUERIES = QueryTemplate(
    name="queries",
    title="Last queries",
    sql="""
        SELECT
            concat(query_id, '@', toString(toUnixTimestamp64Micro(event_time_microseconds))) AS log_id,
            query_id,
            user,
            type,
            query_duration_ms,
            memory_usage,
            read_rows,
            written_rows,
            normalizeQuery(query) AS normalized_query
        FROM system.query_log
        WHERE
            event_date >= toDate(fromUnixTimestamp64Micro({start_us:Int64}))
            AND event_time_microseconds >= fromUnixTimestamp64Micro({start_us:Int64})
            AND event_time_microseconds < fromUnixTimestamp64Micro({end_us:Int64})
            AND type != 'QueryStart'
        ORDER BY query_duration_ms DESC
        LIMIT 1000
    """,
    columns=(
        Column("log_id", convert=to_str),
        Column("query_id", convert=to_str),
        Column("user", convert=to_str),
        Column("type", "status", to_str),
        Column("query_duration_ms", "duration_ms", to_int),
        Column("memory_usage", "memory", to_int),
        Column("read_rows", convert=to_int),
        Column("written_rows", convert=to_int),
        Column("normalized_query", "query", to_str),
    ),
    key="log_id",
    windowed=True,
    order_by="duration_ms",
)

MERGES = QueryTemplate(
    name="merges",
    title="Merges",
    sql="""
        SELECT
            concat(database, '.', table, ':', result_part_name) AS merge_id,
            database,
            table,
            result_part_name,
            elapsed,
            progress,
            num_parts,
            is_mutation,
            total_size_bytes_compressed,
            rows_read,
            rows_written,
            memory_usage
        FROM system.merges
    """,
    columns=(
        Column("merge_id", convert=to_str),
        Column("database", convert=to_str),
        Column("table", convert=to_str),
        Column("result_part_name", "part", to_str),
        Column("elapsed", convert=to_float),
        Column("progress", convert=to_float),
        Column("num_parts", "parts", to_int),
        Column("is_mutation", "mutation", to_bool),
        Column("total_size_bytes_compressed", "size", to_int),
        Column("rows_read", convert=to_int),
        Column("rows_written", convert=to_int),
        Column("memory_usage", "memory", to_int),
    ),
    key="merge_id",
    rate_fields=("rows_read", "rows_written"),
    order_by="elapsed",
)

MUTATIONS = QueryTemplate(
    name="mutations",
    title="Mutations",
    sql="""
        SELECT
            concat(database, '.', table, ':', mutation_id) AS mutation_key,
            database,
            table,
            mutation_id,
            command,
            create_time,
            parts_to_do,
            is_done,
            latest_fail_reason,
            latest_fail_time
        FROM system.mutations
        WHERE is_done = 0
    """,
    columns=(
        Column("mutation_key", convert=to_str),
        Column("database", convert=to_str),
        Column("table", convert=to_str),
        Column("mutation_id", convert=to_str),
        Column("command", convert=to_str),
        Column("create_time", convert=to_str),
        Column("parts_to_do", "parts", to_int),
        Column("is_done", "done", to_bool),
        Column("latest_fail_reason", "fail_reason", to_str),
        Column("latest_fail_time", "fail_time", to_str),
    ),
    key="mutation_key",
    order_by="parts",
)

REPLICATION_QUEUE = QueryTemplate(
    name="replication_queue",
    title="Replication queue",
    sql="""
        SELECT
            concat(database, '.', table, ':', node_name) AS entry,
            database,
            table,
            type,
            new_part_name,
            create_time,
            is_currently_executing,
            num_tries,
            last_exception,
            num_postponed,
            postpone_reason
        FROM system.replication_queue
    """,
    columns=(
        Column("entry", convert=to_str),
        Column("database", convert=to_str),
        Column("table", convert=to_str),
        Column("type", convert=to_str),
        Column("new_part_name", "part", to_str),
        Column("create_time", convert=to_str),
        Column("is_currently_executing", "executing", to_bool),
        Column("num_tries", "tries", to_int),
        Column("last_exception", "exception", to_str),
        Column("num_postponed", "postponed", to_int),
        Column("postpone_reason", "reason", to_str),
    ),
    key="entry",
    order_by="tries",
)

REPLICATED_FETCHES = QueryTemplate(
    name="replicated_fetches",
    title="Fetches",
    sql="""
        SELECT
            concat(database, '.', table, ':', result_part_name) AS fetch_id,
            database,
            table,
            result_part_name,
            elapsed,
            progress,
            total_size_bytes_compressed,
            bytes_read_compressed
        FROM system.replicated_fetches
    """,
    columns=(
        Column("fetch_id", convert=to_str),
        Column("database", convert=to_str),
        Column("table", convert=to_str),
        Column("result_part_name", "part", to_str),
        Column("elapsed", convert=to_float),
        Column("progress", convert=to_float),
        Column("total_size_bytes_compressed", "size", to_int),
        Column("bytes_read_compressed", "bytes", to_int),
    ),
    key="fetch_id",
    rate_fields=("bytes",),
    order_by="elapsed",
)

REPLICAS = QueryTemplate(
    name="replicas",
    title="Replicas",
    sql="""
        SELECT
            concat(database, '.', table) AS replica_table,
            database,
            table,
            is_readonly,
            parts_to_check,
            queue_size,
            absolute_delay,
            last_queue_update
        FROM system.replicas
    """,
    columns=(
        Column("replica_table", convert=to_str),
        Column("database", convert=to_str),
        Column("table", convert=to_str),
        Column("is_readonly", "readonly", to_bool),
        Column("parts_to_check", convert=to_int),
        Column("queue_size", "queue", to_int),
        Column("absolute_delay", "delay", to_int),
        Column("last_queue_update", "last_update", to_str),
    ),
    key="replica_table",
    order_by="queue",
)

ERRORS = QueryTemplate(
    name="errors",
    title="Errors",
    sql="""
        SELECT
            name,
            value,
            last_error_time,
            last_error_message
        FROM system.errors
    """,
    columns=(
        Column("name", convert=to_str),
        Column("value", "count", to_int),
        Column("last_error_time", "error_time", to_str),
        Column("last_error_message", "message", to_str),
    ),
    key="name",
    rate_fields=("count",),
    order_by="count",
)

SUMMARY = QueryTemplate(
    name="summary",
    title="Summary",
    sql="""
        SELECT
            hostName() AS host_name,
            asynchronous.*,
            current.*
        FROM
        (
            SELECT
                maxIf(value, metric = 'Uptime')::UInt64 AS uptime,
                sumIf(value, metric = 'OSMemoryTotal')::UInt64 AS os_memory_total,
                sumIf(value, metric = 'MemoryResident')::UInt64 AS memory_resident,
                countIf(metric LIKE 'OSUserTimeCPU%')::UInt64 AS cpu_count,
                sumIf(value, metric LIKE 'OSUserTimeCPU%') AS cpu_user,
                sumIf(value, metric LIKE 'OSSystemTimeCPU%') AS cpu_system,
                sumIf(value, metric = 'OSThreadsTotal')::UInt64 AS threads_os_total,
                sumIf(value, metric = 'OSThreadsRunnable')::UInt64 AS threads_os_runnable,
                sumIf(value, metric LIKE 'NetworkSendBytes%')::UInt64 AS net_send_bytes,
                sumIf(value, metric LIKE 'NetworkReceiveBytes%')::UInt64 AS net_receive_bytes,
                sumIf(value, metric LIKE 'BlockReadBytes%')::UInt64 AS block_read_bytes,
                sumIf(value, metric LIKE 'BlockWriteBytes%')::UInt64 AS block_write_bytes
            FROM system.asynchronous_metrics
        ) AS asynchronous,
        (
            SELECT
                sumIf(value, metric = 'MemoryTracking')::Int64 AS memory_tracked,
                sumIf(value, metric = 'Query')::UInt64 AS running_queries,
                sumIf(value, metric = 'Merge')::UInt64 AS running_merges
            FROM system.metrics
        ) AS current
    """,
    columns=(
        Column("host_name", convert=to_str),
        Column("uptime", convert=to_int),
        Column("os_memory_total", convert=to_int),
        Column("memory_resident", convert=to_int),
        Column("memory_tracked", convert=to_int),
        Column("cpu_count", convert=to_int),
        Column("cpu_user", convert=to_float),
        Column("cpu_system", convert=to_float),
        Column("threads_os_total", convert=to_int),
        Column("threads_os_runnable", convert=to_int),
        Column("net_send_bytes", convert=to_int),
        Column("net_receive_bytes", convert=to_int),
        Column("block_read_bytes", convert=to_int),
        Column("block_write_bytes", convert=to_int),
        Column("running_queries", convert=to_int),
        Column("running_merges", convert=to_int),
    ),
    key="host_name",
    order_by="memory_resident",
)

VERSION = QueryTemplate(
    name="version",
    title="Hosts",
    sql="SELECT hostName() AS host_name, version() AS version, uptime() AS uptime",
    columns=(
        Column("host_name", convert=to_str),
        Column("version", convert=to_str),
        Column("uptime", convert=to_int),
    ),
    key="host_name",
)

# Views reachable with the number keys, in key order
VIEWS: tuple[QueryTemplate, ...] = (
    PROCESSES,
    QUERIES,
    MERGES,
    MUTATIONS,
    REPLICATION_QUEUE,
    REPLICATED_FETCHES,
    REPLICAS,
    ERRORS,
)

TEMPLATES: dict[str, QueryTemplate] = {t.name: t for t in (*VIEWS, SUMMARY, VERSION)}


def get_template(name: str) -> QueryTemplate:
    """
    Look up a built-in template by name.

    Raises:
        KeyError: If no template has that name.
    """
    try:
        return TEMPLATES[name]
    except KeyError:
        raise KeyError(
            f"Unknown view {name!r} (available: {', '.join(TEMPLATES)})"
        ) from None
