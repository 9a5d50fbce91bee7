#!/usr/bin/env python3
################################################################################
# DOCKA-BACKUP
#
# @file:        main.py
# @module:      docka_backup.cli.main
# @description: Typer-based CLI entry point orchestrating docka-backup runs.
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
################################################################################

"""
docka-backup main CLI

Typer-based CLI following the "tool bench" pattern:
- Global options are stored on the context once
- Configuration is loaded lazily by the commands that need it
- Commands retrieve tools from context instead of parameters
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.markup import escape

from ..helpers.constants import VERSION
from ..helpers.logging import log_manager
from ..helpers.ui_utils import console, print_error
from . import backup_commands

app = typer.Typer(
    name="docka-backup",
    help="docka-backup - Cold backup & restore of Docker volumes to an SSH server",
    add_completion=False,
)
backup_commands.register_to_main_app(app)


# -------------------------
# Application Context
# -------------------------

@app.callback()
def initialize_context(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR). Overrides LOG_LEVEL."
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Also write logs to this file. Overrides LOG_FILE."
    ),
    env_file: Optional[Path] = typer.Option(
        None, "--env-file", help="Load settings from a .env file (environment wins)."
    ),
):
    """
    Initialize application context before any command runs.
    Sets up logging from the options; configuration is loaded on demand.
    """
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file
    ctx.obj["env_file"] = env_file

    try:
        log_manager.configure(
            level=log_level or os.environ.get("LOG_LEVEL") or "INFO",
            log_file=log_file,
            fmt=os.environ.get("LOG_FORMAT") or "text",
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(code=1)


@app.command()
def version():
    """Show version information"""
    console.print(f"[cyan]docka-backup[/cyan] v{VERSION}")


def cli_main():
    """
    Entry point for CLI

    This function is called by the console script entry point.
    """
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if os.environ.get("LOG_LEVEL", "").upper() == "DEBUG":
            raise
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
