"""
Layout factory for the chtop dashboard.

Layout structure:
+---------------------------------------------------------------+
|  Header (3 rows): state, window, view tabs, failure banner    |
+------------------+--------------------------------------------+
|                  |  View table (ratio=3)                      |
|  Cluster         +----------------------+---------------------+
|  (32 cols fixed) |  Summary sparklines  |  Log                |
|                  |  (ratio=1)           |  (ratio=1)          |
+------------------+----------------------+---------------------+
"""

from rich.console import RenderableType
from rich.layout import Layout
from rich.panel import Panel


def create_layout() -> Layout:
    """
    Create the dashboard layout.

    Named regions:
    - layout["header"]
    - layout["cluster"]
    - layout["view"]
    - layout["summary"]
    - layout["log"]
    """
    layout = Layout(name="root")
    layout.split_column(
        Layout(name="header", size=3),
        Layout(name="body"),
    )
    layout["body"].split_row(
        Layout(name="cluster", size=32),
        Layout(name="main"),
    )
    layout["main"].split_column(
        Layout(name="view", ratio=3),
        Layout(name="bottom", ratio=1),
    )
    layout["bottom"].split_row(
        Layout(name="summary"),
        Layout(name="log"),
    )
    return layout


def make_panel(content: RenderableType, title: str, style: str = "blue") -> Panel:
    """
    Create a styled panel.

    Args:
        content: Markup string or renderable (e.g. a Table)
        title: Panel title (will be bolded)
        style: Border style color
    """
    return Panel(
        content,
        title=f"[bold]{title}[/bold]",
        border_style=style,
        padding=(0, 1),
    )


def make_cluster_panel(content: str, failed: int = 0, total: int = 0) -> Panel:
    """
    Create the cluster panel with failure-aware border color.

    - every host failing: bold red border, "!" in title
    - some hosts failing: yellow border
    - all healthy: cyan border
    """
    if total and failed == total:
        border_style = "bold red"
        title = "[bold red]! Cluster ![/bold red]"
    elif failed:
        border_style = "yellow"
        title = f"[bold yellow]Cluster ({failed}/{total} down)[/bold yellow]"
    else:
        border_style = "cyan"
        title = "[bold cyan]Cluster[/bold cyan]"
    return Panel(content, title=title, border_style=border_style, padding=(0, 1))
