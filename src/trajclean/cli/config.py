#!/usr/bin/env python3
"""
Configuration Management Layer for the trajclean CLI

Provides centralized configuration with support for:
- Environment variables (TRAJCLEAN_* prefix)
- Config files (~/.trajclean_config.json or project-specific)
- Command-line overrides
- Validated defaults

Configuration priority (highest to lowest):
1. Command-line overrides
2. Explicit config file
3. Project config file (./.trajclean_config.json)
4. User config file (~/.trajclean_config.json)
5. Environment variables
6. Hardcoded defaults
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "TRAJCLEAN_"
CONFIG_FILENAME = ".trajclean_config.json"


class TrajcleanConfig(BaseModel):
    """
    Central configuration for the trajclean CLI.

    Relative paths are resolved against the current working directory.
    """

    # Directory paths
    raw_data_dir: Path = Field(
        default=Path("data/raw"),
        description="Directory containing raw trajectory CSV files"
    )
    output_dir: Path = Field(
        default=Path("data/clean"),
        description="Directory for cleaned CSV files and reports"
    )
    profile_path: Optional[Path] = Field(
        default=None,
        description="Cleaning profile (JSON/YAML); default profile when unset"
    )
    log_dir: Path = Field(
        default=Path("logs"),
        description="Directory for rotating log files"
    )

    # Processing settings
    workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Number of files cleaned in parallel"
    )
    chunk_rows: int = Field(
        default=10_000,
        ge=1,
        description="Rows per chunk for ingestion and row-local stages"
    )
    cache_enabled: bool = Field(
        default=True,
        description="Reuse stage results across runs of a session"
    )
    histogram_bins: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Bins for corpus histograms"
    )

    # Behavior settings
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output"
    )

    config_version: str = Field(
        default="1.0.0",
        description="Configuration schema version"
    )

    model_config = {
        "validate_assignment": True,
        "validate_default": True,
    }

    @field_validator("raw_data_dir", "output_dir", "profile_path", "log_dir", mode="before")
    @classmethod
    def resolve_path(cls, v):
        """Resolve paths to absolute paths."""
        if v is None:
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        return path.resolve()

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "TrajcleanConfig":
        """
        Load configuration from environment variables.

        Environment variable format: {prefix}{FIELD_NAME}
        Example: TRAJCLEAN_WORKERS=8, TRAJCLEAN_OUTPUT_DIR=/tmp/clean

        Only variables that are set are passed to the model; pydantic
        coerces "true"/"1"/"8" etc. to the field types.
        """
        config_dict: Dict[str, Any] = {}
        for field_name in cls.model_fields:
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is not None:
                config_dict[field_name] = env_value
        return cls(**config_dict)

    @classmethod
    def from_file(cls, config_file: Path) -> "TrajcleanConfig":
        """
        Load configuration from a JSON config file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            json.JSONDecodeError: If config file is invalid JSON
        """
        config_file = Path(config_file)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")

        with open(config_file, "r", encoding="utf-8") as f:
            config_dict = json.load(f)

        # Ignore comments or metadata keys that aren't part of the model
        config_dict = {k: v for k, v in config_dict.items() if k in cls.model_fields}
        return cls(**config_dict)

    def save(self, config_file: Path, pretty: bool = True) -> None:
        """Save current configuration to a JSON file."""
        config_file = Path(config_file)
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_dict = self.model_dump(mode="json")
        with open(config_file, "w", encoding="utf-8") as f:
            if pretty:
                json.dump(config_dict, f, indent=2, sort_keys=False)
                f.write("\n")
            else:
                json.dump(config_dict, f)

    def merge_with(self, **overrides) -> "TrajcleanConfig":
        """Create a new config with the given field overrides."""
        config_dict = self.model_dump()
        config_dict.update(overrides)
        return TrajcleanConfig(**config_dict)

    def _layer(self, other: "TrajcleanConfig") -> "TrajcleanConfig":
        """Apply the fields explicitly set on `other` on top of self."""
        explicit = {name: getattr(other, name) for name in other.model_fields_set}
        return self.merge_with(**explicit) if explicit else self


def load_config_with_precedence(
    config_file: Optional[Path] = None,
    check_env: bool = True,
    check_user_config: bool = True,
    check_project_config: bool = True,
    **overrides
) -> TrajcleanConfig:
    """
    Load configuration with proper precedence handling.

    Precedence (highest to lowest):
    1. Explicit overrides (**overrides)
    2. Specified config file (config_file parameter)
    3. Project-local config (./.trajclean_config.json)
    4. User config (~/.trajclean_config.json)
    5. Environment variables (TRAJCLEAN_*)
    6. Defaults

    Unreadable user/project files and invalid environment values are
    logged and skipped; an explicit config_file that fails to load raises.
    """
    config = TrajcleanConfig()

    if check_env:
        try:
            config = config._layer(TrajcleanConfig.from_env())
        except ValidationError as e:
            logger.warning(f"Ignoring invalid {ENV_PREFIX}* environment settings: {e}")

    user_config_path = Path.home() / CONFIG_FILENAME
    project_config_path = Path.cwd() / CONFIG_FILENAME
    candidates = []
    if check_user_config:
        candidates.append(user_config_path)
    if check_project_config and project_config_path != user_config_path:
        candidates.append(project_config_path)

    for path in candidates:
        if not path.exists():
            continue
        try:
            config = config._layer(TrajcleanConfig.from_file(path))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring config file {path}: {e}")

    if config_file is not None:
        config = config._layer(TrajcleanConfig.from_file(Path(config_file)))

    if overrides:
        config = config.merge_with(**overrides)

    return config
