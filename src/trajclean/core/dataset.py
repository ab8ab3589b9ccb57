"""
Core data model: Dataset, StageResult and FileEntry.

A Dataset wraps a polars DataFrame and is never mutated after a stage
produces it; every stage returns a new Dataset. FileEntry is the only
mutable object and is owned by exactly one worker at a time.
"""

from __future__ import annotations

import dataclasses
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence

import polars as pl

if TYPE_CHECKING:
    from .kinematics import TrajectoryStats


# ----------------------------- Schema -----------------------------

CANONICAL_FIELDS: tuple[str, ...] = (
    "sec", "nanosec", "frame_id",
    "position_n", "position_e", "position_d",
    "va", "alpha", "beta",
    "phi", "theta", "psi", "chi",
    "u", "v", "w",
    "p", "q", "r",
    "vg", "wn", "we",
    "chi_deg", "psi_deg",
    "initial_lat", "initial_long", "initial_alt",
)

# Canonical fields kept as text; everything else canonical is Float64.
TEXT_FIELDS = frozenset({"frame_id"})


def canonical_dtype(name: str) -> pl.DataType:
    """Polars dtype a canonical field is stored as."""
    return pl.Utf8 if name in TEXT_FIELDS else pl.Float64


# ----------------------------- Dataset -----------------------------

@dataclass(frozen=True, eq=False)
class Dataset:
    """
    Ordered sequence of records sharing a fixed, ordered schema.

    Attributes:
        frame: Backing polars DataFrame (treated as immutable)

    Example:
        >>> ds = Dataset.from_records([{"sec": 0, "vg": 1.5}], fields=["sec", "vg"])
        >>> ds.fields
        ['sec', 'vg']
        >>> next(ds.records())
        {'sec': 0, 'vg': 1.5}
    """
    frame: pl.DataFrame

    @classmethod
    def from_records(cls, records: Sequence[Dict[str, Any]], fields: Sequence[str]) -> "Dataset":
        columns = {name: [rec.get(name) for rec in records] for name in fields}
        return cls(pl.DataFrame(columns, strict=False))

    @classmethod
    def empty(cls, fields: Sequence[str] = CANONICAL_FIELDS) -> "Dataset":
        return cls(pl.DataFrame(schema={name: canonical_dtype(name) for name in fields}))

    @property
    def fields(self) -> List[str]:
        return list(self.frame.columns)

    @property
    def height(self) -> int:
        return self.frame.height

    def __len__(self) -> int:
        return self.frame.height

    def records(self) -> Iterator[Dict[str, Any]]:
        """Iterate rows as field -> value mappings (blank values are None)."""
        yield from self.frame.iter_rows(named=True)

    def column(self, name: str) -> pl.Series:
        return self.frame.get_column(name)

    def missing_fields(self, required: Sequence[str]) -> List[str]:
        present = set(self.frame.columns)
        return [name for name in required if name not in present]

    def chunks(self, chunk_rows: int) -> Iterator["Dataset"]:
        """Yield bounded row slices (at least one, even when empty)."""
        if self.frame.height == 0:
            yield self
            return
        for part in self.frame.iter_slices(n_rows=max(1, chunk_rows)):
            yield Dataset(part)

    def with_frame(self, frame: pl.DataFrame) -> "Dataset":
        return Dataset(frame)

    def equals(self, other: "Dataset") -> bool:
        return self.frame.columns == other.frame.columns and self.frame.equals(other.frame)

    def to_csv_bytes(self) -> bytes:
        return self.frame.write_csv().encode("utf-8")

    def fingerprint(self) -> str:
        """SHA-256 of the CSV rendering (schema + values)."""
        return hashlib.sha256(self.to_csv_bytes()).hexdigest()


# ----------------------------- Results -----------------------------

class StageStatus(str, Enum):
    """Outcome of one stage on one file."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    EXCLUDED = "excluded"


@dataclass(frozen=True, eq=False)
class StageResult:
    """
    Output of a stage: the new Dataset plus diagnostics.

    Attributes:
        stage_id: Registry identity of the stage that produced this result
        dataset: Output Dataset (input Dataset for skipped/excluded results)
        status: applied, skipped (stage disabled) or excluded (file dropped)
        input_count: Record count the stage received
        removed: Records removed by the stage
        changed: Fields or records changed in place
        flags: Short machine-readable markers (e.g. "static", "anomaly")
        details: Free-form diagnostics for reports
        exclusion_reason: Human-readable reason when status is excluded
        cached: True when served from the CacheManager
    """
    stage_id: str
    dataset: Dataset
    status: StageStatus = StageStatus.APPLIED
    input_count: int = 0
    removed: int = 0
    changed: int = 0
    flags: tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict)
    exclusion_reason: Optional[str] = None
    cached: bool = False

    @property
    def excluded(self) -> bool:
        return self.status is StageStatus.EXCLUDED

    @property
    def output_count(self) -> int:
        return 0 if self.excluded else self.dataset.height

    def as_cached(self) -> "StageResult":
        return dataclasses.replace(self, cached=True)

    @classmethod
    def applied(cls, stage_id: str, before: Dataset, after: Dataset, **diagnostics) -> "StageResult":
        diagnostics.setdefault("removed", max(0, before.height - after.height))
        return cls(stage_id=stage_id, dataset=after, input_count=before.height, **diagnostics)

    @classmethod
    def skipped(cls, stage_id: str, dataset: Dataset) -> "StageResult":
        return cls(stage_id=stage_id, dataset=dataset, status=StageStatus.SKIPPED,
                   input_count=dataset.height)

    @classmethod
    def exclude(cls, stage_id: str, dataset: Dataset, reason: str, **diagnostics) -> "StageResult":
        return cls(stage_id=stage_id, dataset=dataset, status=StageStatus.EXCLUDED,
                   input_count=dataset.height, exclusion_reason=reason, **diagnostics)


# ----------------------------- Files -----------------------------

class FileStatus(str, Enum):
    ACTIVE = "active"
    EXCLUDED = "excluded"


@dataclass(eq=False)
class FileEntry:
    """
    One source file in a session and the state of its latest run.

    Raw content stays on disk when `source_path` is set; otherwise it is
    held in `content` (e.g. uploaded bytes).
    """
    name: str
    raw_size: int
    content_hash: str
    order: int = 0
    source_path: Optional[Path] = None
    content: Optional[bytes] = None

    # Runtime state (reset at the start of each run)
    dataset: Optional[Dataset] = None
    results: List[StageResult] = field(default_factory=list)
    status: FileStatus = FileStatus.ACTIVE
    excluded_by: Optional[str] = None
    exclusion_reason: Optional[str] = None
    baseline: Optional["TrajectoryStats"] = None
    ingested_count: int = 0
    output_name: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is FileStatus.ACTIVE

    def read_bytes(self) -> bytes:
        if self.content is not None:
            return self.content
        if self.source_path is None:
            raise FileNotFoundError(f"No content or path for {self.name}")
        return self.source_path.read_bytes()

    def reset(self) -> None:
        self.dataset = None
        self.results = []
        self.status = FileStatus.ACTIVE
        self.excluded_by = None
        self.exclusion_reason = None
        self.baseline = None
        self.ingested_count = 0
        self.output_name = None

    def exclude(self, stage_id: str, reason: str) -> None:
        self.status = FileStatus.EXCLUDED
        self.excluded_by = stage_id
        self.exclusion_reason = reason
