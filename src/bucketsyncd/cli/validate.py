"""
bucketsyncd validate - Check a configuration file.

Loads and validates the configuration, then prints the workflows it defines.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from bucketsyncd.config.loader import DEFAULT_CONFIG_PATH, load_config
from bucketsyncd.exceptions import ConfigurationError
from bucketsyncd.sync.inbound import redact_url

app = typer.Typer(name="validate", help="Validate a configuration file", invoke_without_command=True)

console = Console()


@app.callback()
def validate(
    ctx: typer.Context,
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Configuration file"),
) -> None:
    """
    Validate the configuration and list its workflows.
    """
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        console.print(str(e), style="red", markup=False)
        raise typer.Exit(1) from None

    table = Table(title=escape(f"Workflows in {config_path}"))
    table.add_column("Name", style="cyan")
    table.add_column("Direction")
    table.add_column("Source")
    table.add_column("Destination")

    for w in config.outbound:
        table.add_row(escape(w.name), "outbound", escape(w.source), escape(redact_url(w.destination)))
    for w in config.inbound:
        table.add_row(escape(w.name), "inbound", escape(f"{redact_url(w.source)} ({w.queue})"), escape(w.destination))

    console.print(table)
    console.print(f"[green]Configuration OK[/green]: {len(config.remotes)} remote(s)")
