"""chtop CLI - top-like dashboard for ClickHouse clusters."""

import typer

from chtop.cli.flamegraph import run_flamegraph
from chtop.cli.hosts import explain_query, kill_query, list_hosts
from chtop.cli.top import run_top

app = typer.Typer(
    name="chtop",
    help="Top-like dashboard and profiler for ClickHouse clusters",
    no_args_is_help=True,
)

app.command("top")(run_top)
app.command("flamegraph")(run_flamegraph)
app.command("hosts")(list_hosts)
app.command("kill")(kill_query)
app.command("explain")(explain_query)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
