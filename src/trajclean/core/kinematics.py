"""
Trajectory kinematics shared by ingestion and the motion-aware stages.

All helpers take a polars DataFrame in canonical field names and return
numpy arrays or plain floats. Blank positions count as zero step
displacement in distance sums and are left out of displacement measures,
so a handful of missing samples does not poison the corpus statistics.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np
import polars as pl

POSITION_FIELDS = ("position_n", "position_e", "position_d")

# Step displacement (metres) below which a sample counts as static
STATIC_STEP_THRESHOLD = 0.01


@dataclass(frozen=True)
class TrajectoryStats:
    """Baseline statistics captured at ingestion."""
    record_count: int
    duration: float
    total_distance: float
    altitude_change: float
    mean_speed: float
    min_altitude: float
    max_altitude: float
    static_percentage: float

    def to_dict(self) -> dict:
        return asdict(self)

    def metric(self, name: str) -> float:
        return float(getattr(self, name))


# ----------------------------- Helpers -----------------------------

def _column(frame: pl.DataFrame, name: str) -> Optional[np.ndarray]:
    if name not in frame.columns:
        return None
    series = frame.get_column(name)
    if not series.dtype.is_numeric():
        series = series.cast(pl.Float64, strict=False)
    values = series.cast(pl.Float64).to_numpy()
    if values.size and np.all(np.isnan(values)):
        return None
    return values


def has_positions(frame: pl.DataFrame) -> bool:
    return all(_column(frame, name) is not None for name in POSITION_FIELDS)


def positions(frame: pl.DataFrame, horizontal: bool = False) -> np.ndarray:
    """
    Position samples as an (n, 2) or (n, 3) array, blanks as NaN.

    Missing position columns yield zeros so downstream distances are 0.
    """
    names = POSITION_FIELDS[:2] if horizontal else POSITION_FIELDS
    cols = []
    for name in names:
        values = _column(frame, name)
        cols.append(np.zeros(frame.height) if values is None else values)
    if not cols or frame.height == 0:
        return np.zeros((frame.height, len(names)))
    return np.column_stack(cols)


def finite_positions(frame: pl.DataFrame) -> np.ndarray:
    """Position samples with any blank coordinate dropped."""
    pts = positions(frame)
    return pts[np.isfinite(pts).all(axis=1)]


def filled_positions(frame: pl.DataFrame) -> np.ndarray:
    """
    Position samples with blanks forward-filled per coordinate.

    Leading blanks take the first recorded value, so a gap never reads as
    a jump to the origin.
    """
    pts = positions(frame).copy()
    for k in range(pts.shape[1]):
        col = pts[:, k]
        valid = np.isfinite(col)
        if valid.all():
            continue
        if not valid.any():
            pts[:, k] = 0.0
            continue
        idx = np.where(valid, np.arange(len(col)), 0)
        np.maximum.accumulate(idx, out=idx)
        filled = col[idx]
        filled[:np.argmax(valid)] = col[np.argmax(valid)]
        pts[:, k] = filled
    return pts


def timestamps(frame: pl.DataFrame) -> Optional[np.ndarray]:
    """Seconds as `sec + nanosec * 1e-9`, or None when time is unavailable."""
    sec = _column(frame, "sec")
    if sec is None:
        return None
    nanosec = _column(frame, "nanosec")
    if nanosec is not None:
        sec = sec + np.nan_to_num(nanosec) * 1e-9
    return sec


def step_distances(frame: pl.DataFrame, horizontal: bool = False) -> np.ndarray:
    """Euclidean length of each consecutive position step (length n - 1)."""
    pts = positions(frame, horizontal=horizontal)
    if len(pts) < 2:
        return np.zeros(0)
    steps = np.linalg.norm(np.diff(pts, axis=0), axis=1)
    return np.nan_to_num(steps)


def derived_speeds(frame: pl.DataFrame) -> np.ndarray:
    """
    Speed derived from position steps divided by the time step.

    Falls back to per-sample steps (dt = 1) where time is unavailable or
    non-increasing. The first sample takes the second sample's value.
    """
    n = frame.height
    if n == 0:
        return np.zeros(0)
    if n == 1:
        return np.zeros(1)

    steps = step_distances(frame)
    t = timestamps(frame)
    if t is None:
        dt = np.ones(n - 1)
    else:
        dt = np.diff(t)
        dt = np.where(np.isfinite(dt) & (dt > 0), dt, 1.0)

    speeds = np.empty(n)
    speeds[1:] = steps / dt
    speeds[0] = speeds[1]
    return speeds


def sample_speeds(frame: pl.DataFrame, speed_field: str = "vg") -> np.ndarray:
    """
    Per-sample speed from `speed_field` when it holds any value, else derived.

    Blank samples in the speed field read as 0.0.
    """
    values = _column(frame, speed_field)
    if values is not None:
        return np.nan_to_num(values)
    return derived_speeds(frame)


def endpoint_displacement(frame: pl.DataFrame) -> float:
    pts = finite_positions(frame)
    if len(pts) < 2:
        return 0.0
    return float(np.linalg.norm(pts[-1] - pts[0]))


def max_pairwise_displacement(
    frame: pl.DataFrame,
    stop_at: Optional[float] = None,
    block_size: int = 1024,
) -> tuple[float, bool]:
    """
    Largest distance between any two position samples.

    Args:
        frame: Canonical DataFrame
        stop_at: Return as soon as a pair at least this far apart is found
        block_size: Rows compared per vectorized block

    Returns:
        (distance, exact). When `stop_at` triggers an early return, the
        distance is a real pairwise distance >= stop_at and exact is False.
    """
    pts = finite_positions(frame)
    if len(pts) < 2:
        return 0.0, True
    pts = np.unique(pts, axis=0)
    if len(pts) < 2:
        return 0.0, True

    if stop_at is not None:
        # Any pair spanning the widest axis is a lower bound on the maximum
        axis = int(np.argmax(pts.max(axis=0) - pts.min(axis=0)))
        a = pts[np.argmin(pts[:, axis])]
        b = pts[np.argmax(pts[:, axis])]
        span = float(np.linalg.norm(b - a))
        if span >= stop_at:
            return span, False

    best = 0.0
    for i in range(0, len(pts), block_size):
        left = pts[i:i + block_size]
        for j in range(i, len(pts), block_size):
            right = pts[j:j + block_size]
            diff = left[:, None, :] - right[None, :, :]
            best = max(best, float(np.sqrt((diff ** 2).sum(axis=2)).max()))
            if stop_at is not None and best >= stop_at:
                return best, False
    return best, True


# ----------------------------- Baseline -----------------------------

def compute_stats(frame: pl.DataFrame, speed_field: str = "vg") -> TrajectoryStats:
    """
    Baseline statistics for one trajectory.

    Altitude is `-position_d` (NED convention). Total distance sums the
    horizontal (N/E) step lengths.
    """
    n = frame.height
    if n == 0:
        return TrajectoryStats(0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    t = timestamps(frame)
    if t is not None and np.any(np.isfinite(t)):
        duration = float(np.nanmax(t) - np.nanmin(t))
    else:
        duration = 0.0

    total_distance = float(step_distances(frame, horizontal=True).sum())

    down = _column(frame, "position_d")
    if down is not None and np.any(np.isfinite(down)):
        altitude = -down[np.isfinite(down)]
        altitude_change = float(altitude[-1] - altitude[0])
        min_altitude = float(altitude.min())
        max_altitude = float(altitude.max())
    else:
        altitude_change = min_altitude = max_altitude = 0.0

    speeds = sample_speeds(frame, speed_field)
    mean_speed = float(speeds.mean()) if speeds.size else 0.0

    steps = step_distances(frame)
    static_percentage = (
        float((steps < STATIC_STEP_THRESHOLD).sum()) / steps.size * 100.0 if steps.size else 0.0
    )

    return TrajectoryStats(
        record_count=n,
        duration=duration,
        total_distance=total_distance,
        altitude_change=altitude_change,
        mean_speed=mean_speed,
        min_altitude=min_altitude,
        max_altitude=max_altitude,
        static_percentage=static_percentage,
    )
