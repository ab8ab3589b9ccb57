"""
Stage registry and execution context.

Stages are plain functions registered under their `stage_id` with the
`register_stage` decorator. A file-scope stage receives one Dataset;
a corpus-scope stage receives every surviving file at once.

    >>> @register_stage("size_filter")
    ... def apply_size_filter(dataset, params, context=None) -> StageResult:
    ...     ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import polars as pl

from ..dataset import CANONICAL_FIELDS, Dataset
from ..errors import ConfigError, PipelineCancelled, SchemaError

FILE_SCOPE = "file"
CORPUS_SCOPE = "corpus"

DEFAULT_STAGE_CHUNK_ROWS = 10_000


@dataclass
class StageContext:
    """
    Per-file facts a stage may need beyond the Dataset itself.

    Attributes:
        file_name: Source file name (for messages)
        raw_size: Raw byte size of the source file
        chunk_rows: Row chunk size for row-local stages
        cancel_check: Polled at chunk boundaries; True aborts the stage
    """
    file_name: str = "<memory>"
    raw_size: int = 0
    chunk_rows: int = DEFAULT_STAGE_CHUNK_ROWS
    cancel_check: Optional[Callable[[], bool]] = None

    def check_cancelled(self) -> None:
        if self.cancel_check is not None and self.cancel_check():
            raise PipelineCancelled(f"{self.file_name}: cancelled")


@dataclass(frozen=True)
class CorpusItem:
    """One surviving file handed to a corpus-scope stage."""
    name: str
    dataset: Dataset


@dataclass(frozen=True)
class StageSpec:
    """Registry entry for a stage."""

    stage_id: str
    """Stable identity used in profiles, cache keys and lineage"""

    function: Callable
    """apply(dataset | items, params, context) -> StageResult | list[StageResult]"""

    scope: str = FILE_SCOPE
    """'file' or 'corpus'"""

    requires_canonical: bool = False
    """Reads canonical field names, so must follow the header standardizer"""

    row_local: bool = False
    """Processes records independently and can run chunk by chunk"""

    description: str = ""


_STAGE_REGISTRY: Dict[str, StageSpec] = {}


def register_stage(
    stage_id: str,
    scope: str = FILE_SCOPE,
    requires_canonical: bool = False,
    row_local: bool = False,
    description: str = "",
):
    """
    Decorator registering a stage function under `stage_id`.

    The first docstring line is used as the description when none is given.
    """
    if scope not in (FILE_SCOPE, CORPUS_SCOPE):
        raise ValueError(f"Unknown stage scope: {scope}")

    def decorator(func: Callable) -> Callable:
        if not description and func.__doc__:
            desc = func.__doc__.strip().split("\n")[0]
        else:
            desc = description
        _STAGE_REGISTRY[stage_id] = StageSpec(
            stage_id=stage_id,
            function=func,
            scope=scope,
            requires_canonical=requires_canonical,
            row_local=row_local,
            description=desc,
        )
        return func

    return decorator


def get_stage(stage_id: str) -> StageSpec:
    try:
        return _STAGE_REGISTRY[stage_id]
    except KeyError:
        raise ConfigError(f"Unknown stage: {stage_id}") from None


def list_stages() -> List[StageSpec]:
    return list(_STAGE_REGISTRY.values())


def require_fields(dataset: Dataset, required: Sequence[str], stage_id: str) -> None:
    """Raise SchemaError naming the required fields the dataset lacks."""
    missing = dataset.missing_fields(required)
    if missing:
        raise SchemaError(f"{stage_id}: missing required fields {missing}", missing=missing)


def apply_chunked(
    dataset: Dataset,
    func: Callable[[Dataset], Dataset],
    context: Optional[StageContext],
) -> Dataset:
    """
    Apply a row-local transform chunk by chunk with cancellation checks.
    """
    ctx = context or StageContext()
    if dataset.height <= ctx.chunk_rows:
        ctx.check_cancelled()
        return func(dataset)

    parts = []
    for chunk in dataset.chunks(ctx.chunk_rows):
        ctx.check_cancelled()
        parts.append(func(chunk).frame)

    return Dataset(pl.concat(parts, how="vertical"))


def check_stage_order(stages: Sequence) -> None:
    """
    Validate ordering rules for a stage chain.

    Accepts any sequence of objects with a `stage_id` attribute.

    Rules:
    - stage_ids are unique
    - when header_standardizer is present, every stage that reads canonical
      fields comes after it
    - corpus-scope stages follow all file-scope stages
    - resequencer, when present, is last

    Raises:
        ConfigError: First rule violated
    """
    ids = [s.stage_id for s in stages]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ConfigError(f"Duplicate stages in profile: {duplicates}")

    specs = [get_stage(i) for i in ids]

    if "header_standardizer" in ids:
        header_pos = ids.index("header_standardizer")
        early = [s.stage_id for s in specs[:header_pos] if s.requires_canonical]
        if early:
            raise ConfigError(f"Stages {early} read canonical fields and must follow header_standardizer")

    seen_corpus = None
    for spec in specs:
        if spec.scope == CORPUS_SCOPE:
            seen_corpus = seen_corpus or spec.stage_id
        elif seen_corpus is not None:
            raise ConfigError(
                f"File stage '{spec.stage_id}' cannot follow corpus stage '{seen_corpus}'"
            )

    if "resequencer" in ids and ids[-1] != "resequencer":
        raise ConfigError("resequencer must be the last stage")


__all__ = [
    "FILE_SCOPE",
    "CORPUS_SCOPE",
    "CANONICAL_FIELDS",
    "StageContext",
    "CorpusItem",
    "StageSpec",
    "register_stage",
    "get_stage",
    "list_stages",
    "require_fields",
    "apply_chunked",
    "check_stage_order",
]
