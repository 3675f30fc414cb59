"""Rich console shared by CLI commands."""

from rich.console import Console
from rich.table import Table

console = Console()


def error(msg: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {msg}")


def success(msg: str) -> None:
    console.print(f"[green]{msg}[/green]")


def dim(msg: str) -> None:
    console.print(f"[dim]{msg}[/dim]")


def create_table(title: str, columns: list[tuple[str, str | dict]]) -> Table:
    """Build a table from (name, style) or (name, column kwargs) pairs."""
    table = Table(title=title)
    for name, spec in columns:
        kwargs = spec if isinstance(spec, dict) else {"style": spec}
        table.add_column(name, **kwargs)
    return table
