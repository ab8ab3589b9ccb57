"""Remove individual records where the vehicle is not moving."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import polars as pl

from ..dataset import Dataset, StageResult
from ..kinematics import POSITION_FIELDS, derived_speeds
from .base import StageContext, apply_chunked, register_stage, require_fields

if TYPE_CHECKING:
    from ...models.profile import StaticSampleParams


def _has_speed_values(dataset: Dataset, field: str) -> bool:
    return field in dataset.fields and dataset.column(field).null_count() < dataset.height


@register_stage("static_sample_remover", requires_canonical=True, row_local=True)
def apply_static_sample_remover(
    dataset: Dataset,
    params: "StaticSampleParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """
    Drop records whose speed is <= speed_threshold.

    Records with a blank speed value are kept. When the speed field holds no
    values at all, speed is derived from position steps instead, which needs
    the whole trajectory and so runs unchunked.
    """
    field = params.speed_field
    threshold = params.speed_threshold

    if _has_speed_values(dataset, field):
        keep = pl.col(field).is_null() | (pl.col(field).cast(pl.Float64, strict=False) > threshold)
        cleaned = apply_chunked(dataset, lambda part: Dataset(part.frame.filter(keep)), context)
        source = field
    else:
        require_fields(dataset, POSITION_FIELDS, "static_sample_remover")
        if context is not None:
            context.check_cancelled()
        mask = pl.Series("keep", derived_speeds(dataset.frame) > threshold)
        cleaned = Dataset(dataset.frame.filter(mask))
        source = "derived"

    return StageResult.applied(
        "static_sample_remover",
        dataset,
        cleaned,
        details={"speed_source": source, "speed_threshold": threshold},
    )
