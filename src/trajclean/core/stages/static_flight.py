"""Detect trajectories that never leave their starting area."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..dataset import Dataset, StageResult
from ..kinematics import POSITION_FIELDS, endpoint_displacement, max_pairwise_displacement
from .base import StageContext, register_stage, require_fields

if TYPE_CHECKING:
    from ...models.profile import StaticFlightParams

logger = logging.getLogger(__name__)


@register_stage("static_flight_detector", requires_canonical=True)
def apply_static_flight_detector(
    dataset: Dataset,
    params: "StaticFlightParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """
    Flag files whose position displacement stays under distance_threshold.

    With method="max_pairwise" the displacement is the largest distance
    between any two samples; with method="endpoint" it is the distance
    from the first to the last sample. A flagged file is excluded when
    `exclude` is set, otherwise it passes through annotated.
    """
    require_fields(dataset, POSITION_FIELDS, "static_flight_detector")
    if context is not None:
        context.check_cancelled()

    if params.method == "endpoint":
        displacement, exact = endpoint_displacement(dataset.frame), True
    else:
        displacement, exact = max_pairwise_displacement(
            dataset.frame, stop_at=params.distance_threshold
        )

    details = {
        "method": params.method,
        "displacement": displacement,
        "exact": exact,
        "distance_threshold": params.distance_threshold,
    }
    if displacement >= params.distance_threshold:
        return StageResult.applied("static_flight_detector", dataset, dataset, details=details)

    name = context.file_name if context is not None else "<memory>"
    logger.info(f"{name}: static flight ({displacement:.3f} m < {params.distance_threshold} m)")
    if params.exclude:
        return StageResult.exclude(
            "static_flight_detector",
            dataset,
            f"static flight: displacement {displacement:.2f} m below {params.distance_threshold:.2f} m",
            flags=("static",),
            details=details,
        )
    return StageResult.applied(
        "static_flight_detector", dataset, dataset, flags=("static",), details=details
    )
