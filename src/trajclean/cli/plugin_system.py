"""
CLI Plugin System - Auto-discovery and registration of commands.

Provides decorator-based command registration and automatic discovery
of the modules in `trajclean.cli.commands`.
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import typer
import yaml

logger = logging.getLogger(__name__)

COMMANDS_PACKAGE = "trajclean.cli.commands"


@dataclass
class CommandMetadata:
    """Metadata for a CLI command plugin."""

    name: str
    """Command name (kebab-case, e.g., 'profile-show')"""

    function: Callable
    """The actual command function"""

    group: str = "general"
    """Command group for organization (e.g., 'pipeline', 'profile')"""

    description: str = ""
    """Short description for the command"""

    aliases: List[str] = field(default_factory=list)
    """Alternative names for the command"""

    priority: int = 0
    """Registration priority (higher = earlier)"""


# Global registry of discovered commands
_COMMAND_REGISTRY: Dict[str, CommandMetadata] = {}


def cli_command(
    name: str,
    group: str = "general",
    description: str = "",
    aliases: Optional[List[str]] = None,
    priority: int = 0,
):
    """
    Decorator to register a function as a CLI command plugin.

    Parameters
    ----------
    name : str
        Command name (kebab-case, e.g., 'profile-init')
    group : str
        Command group for organization
    description : str
        Short description (overrides docstring first line)
    aliases : list[str], optional
        Alternative command names
    priority : int
        Registration priority (higher = registered earlier)

    Examples
    --------
    >>> @cli_command(name="inspect", group="pipeline")
    ... def inspect_command(path: Path):
    ...     '''Show baseline statistics of one file'''
    """
    def decorator(func: Callable) -> Callable:
        if not description and func.__doc__:
            desc = func.__doc__.strip().split("\n")[0]
        else:
            desc = description

        _COMMAND_REGISTRY[name] = CommandMetadata(
            name=name,
            function=func,
            group=group,
            description=desc,
            aliases=aliases or [],
            priority=priority,
        )
        return func

    return decorator


def load_plugin_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load plugin configuration from a YAML file.

    Returns
    -------
    dict
        - enabled_groups: List of enabled command groups ("all" enables everything)
        - disabled_commands: List of disabled command names
    """
    default_config = {
        "enabled_groups": ["all"],
        "disabled_commands": [],
    }
    if config_path is None or not Path(config_path).exists():
        return default_config

    with open(config_path, encoding="utf-8") as f:
        config = yaml.safe_load(f)
    return {**default_config, **(config or {})}


def discover_commands(
    app: typer.Typer,
    package: str = COMMANDS_PACKAGE,
    config_path: Optional[Path] = None,
) -> int:
    """
    Import every module of the commands package and register its commands.

    Commands are registered in priority order (highest first), then
    alphabetically by name.

    Returns
    -------
    int
        Number of commands registered
    """
    config = load_plugin_config(config_path)
    enabled_groups = config["enabled_groups"]
    disabled_commands = config["disabled_commands"]

    pkg = importlib.import_module(package)
    for module_info in pkgutil.iter_modules(pkg.__path__):
        importlib.import_module(f"{package}.{module_info.name}")
        logger.debug(f"Loaded plugin module: {package}.{module_info.name}")

    registered = 0
    for metadata in sorted(_COMMAND_REGISTRY.values(), key=lambda c: (-c.priority, c.name)):
        if "all" not in enabled_groups and metadata.group not in enabled_groups:
            continue
        if metadata.name in disabled_commands:
            continue
        app.command(name=metadata.name, help=metadata.description)(metadata.function)
        for alias in metadata.aliases:
            app.command(name=alias, hidden=True)(metadata.function)
        registered += 1
    return registered


def list_available_commands(group: Optional[str] = None) -> List[CommandMetadata]:
    commands = list(_COMMAND_REGISTRY.values())
    if group:
        commands = [c for c in commands if c.group == group]
    return sorted(commands, key=lambda c: c.name)
