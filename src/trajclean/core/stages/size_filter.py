"""Exclude files whose raw size is below a threshold."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from ..dataset import Dataset, StageResult
from .base import StageContext, register_stage

if TYPE_CHECKING:
    from ...models.profile import SizeFilterParams

BYTES_PER_MB = 1024 * 1024


@register_stage("size_filter")
def apply_size_filter(
    dataset: Dataset,
    params: "SizeFilterParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """Exclude files smaller than min_size_mb (MiB) on disk."""
    raw_size = context.raw_size if context is not None else 0
    size_mb = raw_size / BYTES_PER_MB
    details = {"file_size_mb": round(size_mb, 6), "min_size_mb": params.min_size_mb}

    if size_mb < params.min_size_mb:
        return StageResult.exclude(
            "size_filter",
            dataset,
            f"file size {size_mb:.2f} MB below {params.min_size_mb:.2f} MB",
            flags=("too_small",),
            details=details,
        )
    return StageResult.applied("size_filter", dataset, dataset, details=details)
