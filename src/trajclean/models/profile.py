"""
Pydantic models for cleaning profiles.

A CleaningProfile is an ordered list of stage configurations. Each entry
is serialized as {stage_id, enabled, parameters} and validated against a
parameter model selected by `stage_id` (tagged union).

Profiles are immutable: every edit returns a new profile.

Example
-------
>>> profile = CleaningProfile.default()
>>> stricter = profile.with_stage("size_filter", min_size_mb=25.0)
>>> stricter.stage("size_filter").parameters.min_size_mb
25.0
>>> profile.stage("size_filter").parameters.min_size_mb
10.0
"""

from __future__ import annotations

import json
import string
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from trajclean.core.dataset import CANONICAL_FIELDS
from trajclean.core.errors import ConfigError
from trajclean.core.stages import check_stage_order

DEFAULT_QUATERNION_COLUMNS: Tuple[str, ...] = ("Quat_1", "Quat_2", "Quat_3", "Quat_4", "quat_valid")

AnomalyMetric = Literal["mean_speed", "total_distance", "altitude_change", "duration"]


# ══════════════════════════════════════════════════════════════════════
# Stage Parameters
# ══════════════════════════════════════════════════════════════════════

class StageParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SizeFilterParams(StageParams):
    min_size_mb: float = Field(10.0, ge=0, description="Minimum raw file size in MiB")


class HeaderStandardizerParams(StageParams):
    canonical_fields: Tuple[str, ...] = Field(
        CANONICAL_FIELDS,
        min_length=1,
        description="Output schema, in order",
    )
    retain_extras: bool = Field(False, description="Keep unmatched fields after the canonical block")
    aliases: Dict[str, str] = Field(
        default_factory=dict,
        description="Source name -> canonical field overrides",
    )

    @field_validator("canonical_fields")
    @classmethod
    def _unique_fields(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if len(set(v)) != len(v):
            raise ValueError("canonical_fields must be unique")
        return v

    @model_validator(mode="after")
    def _aliases_target_canonical(self) -> "HeaderStandardizerParams":
        unknown = sorted({t for t in self.aliases.values() if t not in self.canonical_fields})
        if unknown:
            raise ValueError(f"aliases map to unknown canonical fields: {unknown}")
        return self


class StaticFlightParams(StageParams):
    distance_threshold: float = Field(10.0, gt=0, description="Metres")
    method: Literal["max_pairwise", "endpoint"] = "max_pairwise"
    exclude: bool = Field(True, description="Exclude flagged files (else annotate only)")


class StaticStartParams(StageParams):
    window_size: int = Field(50, ge=1, description="Samples per window")
    speed_threshold: float = Field(0.5, ge=0, description="Mean speed a window must exceed")
    position_threshold: float = Field(0.5, ge=0, description="Net displacement a window must exceed")
    speed_field: str = Field("vg", min_length=1)


class StaticSampleParams(StageParams):
    speed_threshold: float = Field(0.0, ge=0, description="Records with speed <= this are dropped")
    speed_field: str = Field("vg", min_length=1)


class QuaternionParams(StageParams):
    columns: Tuple[str, ...] = DEFAULT_QUATERNION_COLUMNS


class AnomalyParams(StageParams):
    threshold_sigma: float = Field(2.0, gt=0)
    metrics: Tuple[AnomalyMetric, ...] = Field(
        ("mean_speed", "total_distance", "altitude_change"),
        min_length=1,
    )
    exclude: bool = Field(False, description="Exclude flagged files (else flag only)")
    statistics: Literal["leave_one_out", "population"] = "leave_one_out"
    min_corpus_size: int = Field(3, ge=2)
    speed_field: str = Field("vg", min_length=1)


class ResequencerParams(StageParams):
    template: str = Field("test {number}.csv", min_length=1)
    start_number: int = Field(1, ge=0)
    padding: int = Field(0, ge=0, le=12)

    @field_validator("template")
    @classmethod
    def _check_template(cls, v: str) -> str:
        try:
            names = {fname for _, fname, _, _ in string.Formatter().parse(v) if fname is not None}
        except ValueError as e:
            raise ValueError(f"malformed template {v!r}: {e}") from e
        if names != {"number"}:
            raise ValueError(f"template must use exactly the {{number}} placeholder, got {v!r}")
        if "/" in v or "\\" in v:
            raise ValueError("template must not contain path separators")
        return v


# ══════════════════════════════════════════════════════════════════════
# Stage Configurations (tagged by stage_id)
# ══════════════════════════════════════════════════════════════════════

class _StageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    enabled: bool = True


class SizeFilterConfig(_StageConfig):
    stage_id: Literal["size_filter"] = "size_filter"
    parameters: SizeFilterParams = Field(default_factory=SizeFilterParams)


class HeaderStandardizerConfig(_StageConfig):
    stage_id: Literal["header_standardizer"] = "header_standardizer"
    parameters: HeaderStandardizerParams = Field(default_factory=HeaderStandardizerParams)


class StaticFlightConfig(_StageConfig):
    stage_id: Literal["static_flight_detector"] = "static_flight_detector"
    parameters: StaticFlightParams = Field(default_factory=StaticFlightParams)


class StaticStartConfig(_StageConfig):
    stage_id: Literal["static_start_trimmer"] = "static_start_trimmer"
    parameters: StaticStartParams = Field(default_factory=StaticStartParams)


class StaticSampleConfig(_StageConfig):
    stage_id: Literal["static_sample_remover"] = "static_sample_remover"
    parameters: StaticSampleParams = Field(default_factory=StaticSampleParams)


class QuaternionConfig(_StageConfig):
    stage_id: Literal["quaternion_column_remover"] = "quaternion_column_remover"
    parameters: QuaternionParams = Field(default_factory=QuaternionParams)


class AnomalyConfig(_StageConfig):
    stage_id: Literal["anomaly_detector"] = "anomaly_detector"
    parameters: AnomalyParams = Field(default_factory=AnomalyParams)


class ResequencerConfig(_StageConfig):
    stage_id: Literal["resequencer"] = "resequencer"
    parameters: ResequencerParams = Field(default_factory=ResequencerParams)


StageConfig = Annotated[
    Union[
        SizeFilterConfig,
        HeaderStandardizerConfig,
        StaticFlightConfig,
        StaticStartConfig,
        StaticSampleConfig,
        QuaternionConfig,
        AnomalyConfig,
        ResequencerConfig,
    ],
    Field(discriminator="stage_id"),
]

DEFAULT_STAGE_ORDER: Tuple[str, ...] = (
    "size_filter",
    "header_standardizer",
    "static_flight_detector",
    "static_start_trimmer",
    "static_sample_remover",
    "quaternion_column_remover",
    "anomaly_detector",
    "resequencer",
)


def _wrap_validation(e: ValidationError) -> ConfigError:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return ConfigError("Invalid cleaning profile: " + "; ".join(parts))


# ══════════════════════════════════════════════════════════════════════
# Cleaning Profile
# ══════════════════════════════════════════════════════════════════════

class CleaningProfile(BaseModel):
    """
    Ordered, immutable list of stage configurations.

    Construct through `default()`, `from_dict()`, `from_stages()` or
    `load()`; these raise ConfigError on any invalid parameter or ordering.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str = Field("default", min_length=1)
    stages: Tuple[StageConfig, ...] = ()

    @model_validator(mode="after")
    def _check_order(self) -> "CleaningProfile":
        try:
            check_stage_order(self.stages)
        except ConfigError as e:
            raise ValueError(str(e)) from e
        return self

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def default(cls) -> "CleaningProfile":
        """All eight stages, enabled, with default parameters."""
        return cls.from_stages([{"stage_id": sid} for sid in DEFAULT_STAGE_ORDER])

    @classmethod
    def from_stages(cls, stages: Sequence[Any], name: str = "default") -> "CleaningProfile":
        return cls.from_dict({"name": name, "stages": list(stages)})

    @classmethod
    def from_dict(cls, data: Any) -> "CleaningProfile":
        """
        Build from {"name", "stages"} or a bare list of stage entries.

        Raises:
            ConfigError: Invalid entry, parameter or ordering
        """
        if isinstance(data, list):
            data = {"stages": data}
        if not isinstance(data, dict):
            raise ConfigError("Profile must be a mapping or a list of stage entries")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise _wrap_validation(e) from e

    @classmethod
    def load(cls, path: Path) -> "CleaningProfile":
        """Load a profile from .json, .yaml or .yml."""
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read profile {path}: {e}") from e
        try:
            if path.suffix.lower() in {".yaml", ".yml"}:
                data = yaml.safe_load(text)
            else:
                data = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Malformed profile {path}: {e}") from e
        return cls.from_dict(data)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stages": [
                {
                    "stage_id": s.stage_id,
                    "enabled": s.enabled,
                    "parameters": s.parameters.model_dump(mode="json"),
                }
                for s in self.stages
            ],
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() in {".yaml", ".yml"}:
            path.write_text(self.to_yaml(), encoding="utf-8")
        else:
            path.write_text(self.to_json(), encoding="utf-8")

    # ------------------------------------------------------------------
    # Queries and edits
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> List[str]:
        return [s.stage_id for s in self.stages]

    def stage(self, stage_id: str) -> Optional[_StageConfig]:
        for s in self.stages:
            if s.stage_id == stage_id:
                return s
        return None

    def index(self, stage_id: str) -> int:
        try:
            return self.stage_ids.index(stage_id)
        except ValueError:
            raise ConfigError(f"Stage '{stage_id}' is not in profile '{self.name}'") from None

    def with_stage(self, stage_id: str, enabled: Optional[bool] = None, **params: Any) -> "CleaningProfile":
        """
        Return a copy with one stage's enabled flag and/or parameters changed.

        Raises:
            ConfigError: Unknown stage or invalid parameter value
        """
        pos = self.index(stage_id)
        entries = self.to_dict()["stages"]
        entry = entries[pos]
        if enabled is not None:
            entry["enabled"] = enabled
        entry["parameters"] = {**entry["parameters"], **params}
        return self.from_stages(entries, name=self.name)

    def chain_snapshot(self, upto: Optional[int] = None) -> List[Dict[str, Any]]:
        """Serialized entries 0..upto (inclusive), used for cache keys."""
        entries = self.to_dict()["stages"]
        return entries if upto is None else entries[: upto + 1]
