"""
Main CLI entry point.
"""

import typer

from bucketsyncd import __version__
from bucketsyncd.cli import run, validate


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"bucketsyncd version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="bucketsyncd",
    help="bucketsyncd - Bidirectional sync between local directories and object stores",
    add_completion=True,
)

# Register subcommands
app.add_typer(run.app, name="run")
app.add_typer(validate.app, name="validate")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    bucketsyncd - Bidirectional sync between local directories and object stores.

    Run 'bucketsyncd <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
