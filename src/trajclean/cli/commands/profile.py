#!/usr/bin/env python3
"""
Cleaning profile commands.

Provides commands to:
- Write the built-in profile to a file (profile-init)
- Display a profile's stages and parameters (profile-show)
- Validate a profile file (profile-validate)
- List registered stages (stages)
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from trajclean.cli.plugin_system import cli_command
from trajclean.core import ConfigError
from trajclean.core.stages import list_stages
from trajclean.models.profile import CleaningProfile

console = Console()


def _resolve_profile(profile_path: Optional[Path]) -> CleaningProfile:
    if profile_path is None:
        from trajclean.cli.main import get_config
        profile_path = get_config().profile_path
    if profile_path is None:
        return CleaningProfile.default()
    return CleaningProfile.load(profile_path)


@cli_command(name="profile-init", group="profile", description="Write the default cleaning profile to a file")
def profile_init_command(
    output: Path = typer.Argument(
        Path("trajclean_profile.yaml"),
        help="Destination (.yaml, .yml or .json)"
    ),
    name: str = typer.Option(
        "default",
        "--name",
        "-n",
        help="Profile name"
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing file"
    ),
):
    """
    Write the built-in profile (all eight stages, default parameters).

    Edit the file and pass it to `trajclean clean --profile`.
    """
    if output.exists() and not force:
        console.print(f"[red]Error:[/red] {output} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    profile = CleaningProfile.from_stages(CleaningProfile.default().to_dict()["stages"], name=name)
    profile.save(output)
    console.print(f"[green]✓[/green] Wrote profile '{name}' to {output}")


@cli_command(name="profile-show", group="profile", description="Display a cleaning profile")
def profile_show_command(
    profile_path: Optional[Path] = typer.Argument(
        None,
        help="Profile file (default: from config, else built-in)"
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the profile as JSON"
    ),
):
    """Show the ordered stages with their enabled flag and parameters."""
    try:
        profile = _resolve_profile(profile_path)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if as_json:
        typer.echo(profile.to_json())
        return

    table = Table(
        title=f"Profile: {profile.name}",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("#", style="bold blue", justify="right")
    table.add_column("Stage", style="bold", no_wrap=True)
    table.add_column("Enabled")
    table.add_column("Parameters", style="dim")

    for i, stage in enumerate(profile.stages):
        params = stage.parameters.model_dump(mode="json")
        table.add_row(
            str(i),
            stage.stage_id,
            "[green]✓[/green]" if stage.enabled else "[red]✗[/red]",
            json.dumps(params, sort_keys=True),
        )
    console.print(table)


@cli_command(name="profile-validate", group="profile", description="Validate a cleaning profile file")
def profile_validate_command(
    profile_path: Path = typer.Argument(..., help="Profile file (.yaml, .yml or .json)"),
):
    """
    Check parameters and stage ordering without touching any data.

    Exits with status 1 and the validation message when the profile is invalid.
    """
    try:
        profile = CleaningProfile.load(profile_path)
    except ConfigError as e:
        console.print(f"[red]✗ Invalid profile:[/red] {e}")
        raise typer.Exit(1)

    enabled = sum(1 for s in profile.stages if s.enabled)
    console.print(
        f"[green]✓[/green] Profile '{profile.name}' is valid "
        f"({len(profile.stages)} stage(s), {enabled} enabled)"
    )


@cli_command(name="stages", group="profile", description="List available cleaning stages")
def stages_command():
    """List every registered stage with its scope and requirements."""
    table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan")
    table.add_column("Stage", style="bold", no_wrap=True)
    table.add_column("Scope")
    table.add_column("Canonical")
    table.add_column("Description", style="dim")
    for spec in list_stages():
        table.add_row(
            spec.stage_id,
            spec.scope,
            "✓" if spec.requires_canonical else "",
            spec.description,
        )
    console.print(table)
