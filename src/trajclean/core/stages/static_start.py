"""Trim the static (pre-takeoff) segment at the start of a trajectory."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import numpy as np

from ..dataset import Dataset, StageResult
from ..kinematics import POSITION_FIELDS, filled_positions, sample_speeds
from .base import StageContext, register_stage, require_fields

if TYPE_CHECKING:
    from ...models.profile import StaticStartParams


def find_motion_start(
    speeds: np.ndarray,
    points: np.ndarray,
    window_size: int,
    speed_threshold: float,
    position_threshold: float,
) -> Optional[int]:
    """
    Index of the first window showing motion, or None.

    Windows are consecutive, non-overlapping blocks of `window_size`
    samples (the last one may be shorter). A window shows motion when its
    mean speed exceeds `speed_threshold` and the distance between its first
    and last sample exceeds `position_threshold`.

    Example:
        >>> speeds = np.r_[np.zeros(50), np.ones(10)]
        >>> points = np.c_[np.r_[np.zeros(50), np.arange(1, 11)], np.zeros(60), np.zeros(60)]
        >>> find_motion_start(speeds, points, 50, 0.5, 0.5)
        50
    """
    n = len(speeds)
    for start in range(0, n, window_size):
        end = min(start + window_size, n)
        mean_speed = float(np.mean(speeds[start:end]))
        net_change = float(np.linalg.norm(points[end - 1] - points[start]))
        if mean_speed > speed_threshold and net_change > position_threshold:
            return start
    return None


@register_stage("static_start_trimmer", requires_canonical=True)
def apply_static_start_trimmer(
    dataset: Dataset,
    params: "StaticStartParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """Drop records before the first window that shows motion."""
    require_fields(dataset, POSITION_FIELDS, "static_start_trimmer")
    if context is not None:
        context.check_cancelled()

    speeds = sample_speeds(dataset.frame, params.speed_field)
    points = filled_positions(dataset.frame)
    start = find_motion_start(
        speeds, points, params.window_size, params.speed_threshold, params.position_threshold
    )

    if start is None:
        return StageResult.applied(
            "static_start_trimmer",
            dataset,
            dataset,
            flags=("no_motion",),
            details={"trim_index": None, "diagnostic": "no motion detected"},
        )

    trimmed = Dataset(dataset.frame.slice(start)) if start else dataset
    return StageResult.applied(
        "static_start_trimmer",
        dataset,
        trimmed,
        details={"trim_index": start},
    )
