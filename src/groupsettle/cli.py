"""CLI for groupsettle."""

import typer

from .ledger.cli import expense_app, group_app, settle_app
from .mcp_server import run_server

app = typer.Typer(
    name="groupsettle",
    help="Split shared group expenses and work out who pays whom",
)

app.add_typer(group_app, name="group", help="Create and inspect groups")
app.add_typer(expense_app, name="expense", help="Record and edit shared expenses")
app.add_typer(settle_app, name="settle", help="List and pay settlements")


@app.command()
def mcp():
    """Start the MCP server for assistant integration."""
    run_server()


if __name__ == "__main__":
    app()
