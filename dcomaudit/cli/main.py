"""dcomaudit CLI - Main application entry point.

Registers the command groups and the global options shared by every
command (--config, --verbose, --version).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from dcomaudit.cli.acl import acl_app
from dcomaudit.cli.console import set_verbose_mode

app = typer.Typer(
    name="dcomaudit",
    help="Audit and edit DCOM launch and access permissions",
    add_completion=False,
    pretty_exceptions_enable=False,
)


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to dcomaudit.yaml"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", help="Debug logging and full tracebacks"
    ),
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
) -> None:
    """dcomaudit - DCOM permission auditing."""
    if version:
        from dcomaudit import __version__

        typer.echo(f"dcomaudit {__version__}")
        raise typer.Exit()

    ctx.obj = {"config_path": config, "verbose": verbose}
    set_verbose_mode(verbose)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


app.add_typer(acl_app, name="acl")


def cli_main() -> None:
    """Entry point for console_scripts."""
    app()


if __name__ == "__main__":
    cli_main()
