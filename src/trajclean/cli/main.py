#!/usr/bin/env python3
"""
Main CLI application entry point with plugin system.

Commands are auto-discovered from `trajclean.cli.commands` using the
@cli_command decorator.
"""

from pathlib import Path
from typing import Optional

import typer

from trajclean.cli.config import TrajcleanConfig, load_config_with_precedence
from trajclean.cli.plugin_system import discover_commands


# Global configuration singleton
_config: Optional[TrajcleanConfig] = None


def get_config() -> TrajcleanConfig:
    """
    Get or create the global config instance.

    Loads with precedence (project file, user file, TRAJCLEAN_* env, defaults)
    on first use.
    """
    global _config
    if _config is None:
        _config = load_config_with_precedence()
    return _config


def set_config(config: Optional[TrajcleanConfig]) -> None:
    """Set the global config instance (None forces a reload on next use)."""
    global _config
    _config = config


app = typer.Typer(
    name="trajclean",
    help="Cleaning pipeline for raw flight-trajectory CSV logs",
    add_completion=False,
)


@app.callback()
def global_options(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output for all commands"
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output-dir",
        help="Override output directory for cleaned files and reports"
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Use specific config file"
    ),
):
    """
    Global options applied to all commands.

    These options override configuration from files and environment variables.
    """
    overrides = {}
    if verbose:
        overrides["verbose"] = True
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    set_config(load_config_with_precedence(config_file=config_file, **overrides))


discover_commands(app)


def main():
    """Main entry point for the CLI application."""
    app()


if __name__ == "__main__":
    main()
