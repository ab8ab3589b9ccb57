"""
Shared fixtures: synthetic trajectory logs and a test profile.

Trajectories move north in equal steps at constant altitude. A "static
prefix" holds the vehicle at the origin with zero speed before it starts
moving.
"""

import csv
import io
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from trajclean.core.dataset import CANONICAL_FIELDS
from trajclean.models.profile import CleaningProfile


def trajectory_rows(
    n: int = 120,
    static_prefix: int = 0,
    step: float = 1.0,
    speed: float = 2.0,
    altitude: float = 100.0,
) -> List[Dict[str, object]]:
    rows = []
    for i in range(n):
        moving = i >= static_prefix
        k = i - static_prefix + 1 if moving else 0
        row: Dict[str, object] = {name: 0.0 for name in CANONICAL_FIELDS}
        row.update(
            sec=float(i),
            nanosec=0.0,
            frame_id="ned",
            position_n=k * step,
            position_e=0.0,
            position_d=-altitude,
            va=speed if moving else 0.0,
            vg=speed if moving else 0.0,
            initial_lat=-33.45,
            initial_long=-70.66,
            initial_alt=520.0,
        )
        rows.append(row)
    return rows


def rows_to_csv(
    rows: List[Dict[str, object]],
    rename: Optional[Dict[str, str]] = None,
    extra: Optional[Dict[str, object]] = None,
) -> bytes:
    """Render rows as CSV bytes, optionally renaming headers and adding columns."""
    rename = rename or {}
    extra = extra or {}
    fields = list(rows[0].keys()) if rows else list(CANONICAL_FIELDS)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([rename.get(f, f) for f in fields] + list(extra))
    for row in rows:
        writer.writerow([row[f] for f in fields] + list(extra.values()))
    return buf.getvalue().encode("utf-8")


def trajectory_csv(**kwargs) -> bytes:
    rename = kwargs.pop("rename", None)
    extra = kwargs.pop("extra", None)
    return rows_to_csv(trajectory_rows(**kwargs), rename=rename, extra=extra)


@pytest.fixture
def moving_csv() -> bytes:
    """120 samples: 50 static, then 70 moving at 1 m per sample."""
    return trajectory_csv(n=120, static_prefix=50)


@pytest.fixture
def static_csv() -> bytes:
    """120 samples that never leave the origin."""
    return trajectory_csv(n=120, static_prefix=120)


@pytest.fixture
def test_profile() -> CleaningProfile:
    """Default profile with the size filter relaxed for small synthetic files."""
    return CleaningProfile.default().with_stage("size_filter", min_size_mb=0.0)


@pytest.fixture
def corpus_dir(tmp_path: Path, moving_csv: bytes, static_csv: bytes) -> Path:
    """Directory with three moving logs and one static log."""
    root = tmp_path / "raw"
    root.mkdir()
    for name in ("flight_a.csv", "flight_b.csv", "flight_c.csv"):
        (root / name).write_bytes(moving_csv)
    (root / "ground_test.csv").write_bytes(static_csv)
    return root


@pytest.fixture
def make_csv():
    """Factory: make_csv(n=..., static_prefix=..., rename=..., extra=...) -> bytes."""
    return trajectory_csv


@pytest.fixture
def make_rows():
    """Factory for row dicts, see trajectory_rows()."""
    return trajectory_rows
