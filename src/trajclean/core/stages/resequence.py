"""Assign sequential output names to surviving files."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

from ..dataset import StageResult
from .base import CORPUS_SCOPE, CorpusItem, StageContext, register_stage

if TYPE_CHECKING:
    from ...models.profile import ResequencerParams


def render_name(template: str, number: int, padding: int = 0) -> str:
    """
    Render an output file name.

    Example:
        >>> render_name("test {number}.csv", 3)
        'test 3.csv'
        >>> render_name("flight_{number}.csv", 7, padding=3)
        'flight_007.csv'
    """
    return template.format(number=str(number).zfill(padding))


@register_stage("resequencer", scope=CORPUS_SCOPE)
def apply_resequencer(
    items: Sequence[CorpusItem],
    params: "ResequencerParams",
    context: Optional[StageContext] = None,
) -> tuple[List[StageResult], None]:
    """Name survivors template-wise in input order, starting at start_number."""
    results = []
    for offset, item in enumerate(items):
        output_name = render_name(params.template, params.start_number + offset, params.padding)
        results.append(
            StageResult.applied(
                "resequencer",
                item.dataset,
                item.dataset,
                changed=int(output_name != item.name),
                details={"source_name": item.name, "output_name": output_name},
            )
        )
    return results, None
