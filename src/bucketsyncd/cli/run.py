"""
bucketsyncd run - Long-running sync daemon.

Starts every configured outbound watcher and inbound consumer and keeps
running until SIGINT or SIGTERM.
"""

from pathlib import Path

import typer

from bucketsyncd.config.loader import DEFAULT_CONFIG_PATH, load_config
from bucketsyncd.exceptions import ConfigurationError
from bucketsyncd.service.supervisor import run_service
from bucketsyncd.utils.logging import setup_logging

app = typer.Typer(name="run", help="Run the sync daemon", invoke_without_command=True)


@app.callback()
def run(
    ctx: typer.Context,
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Configuration file"),
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Override log_level (debug, info, warn)"),
    json_logs: bool = typer.Option(False, "--json", help="Emit JSON log lines (same as log_json: true)"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    """
    Run all configured workflows until interrupted.
    """
    if ctx.invoked_subcommand is not None:
        return

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        # Logging isn't configured yet; report on stderr directly
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    setup_logging(
        log_level or config.log_level,
        json_format=json_logs or config.log_json,
        log_file=log_file or config.log_file,
    )

    raise typer.Exit(run_service(config))
