"""Drop quaternion attitude columns that downstream views do not use."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ..dataset import Dataset, StageResult
from .base import StageContext, register_stage

if TYPE_CHECKING:
    from ...models.profile import QuaternionParams


@register_stage("quaternion_column_remover")
def apply_quaternion_column_remover(
    dataset: Dataset,
    params: "QuaternionParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """Remove the configured columns; absent ones are ignored."""
    present = [c for c in params.columns if c in dataset.fields]
    if not present:
        return StageResult.applied(
            "quaternion_column_remover", dataset, dataset, details={"removed_columns": []}
        )
    return StageResult.applied(
        "quaternion_column_remover",
        dataset,
        Dataset(dataset.frame.drop(present)),
        changed=len(present),
        details={"removed_columns": present},
    )
