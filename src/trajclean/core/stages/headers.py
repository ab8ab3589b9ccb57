"""
Header standardization: map raw column names onto the canonical schema.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence

import polars as pl

from ..dataset import Dataset, StageResult, canonical_dtype
from .base import StageContext, register_stage

if TYPE_CHECKING:
    from ...models.profile import HeaderStandardizerParams


def normalize_name(s: str) -> str:
    """
    Normalize a column name for tolerant matching.

    Removes whitespace, underscores, hyphens, dots, brackets and case so
    that "Position N", "position-n" and "POSITION_N" compare equal.

    Example:
        >>> normalize_name("Position_N (m)")
        'positionnm'
        >>> normalize_name(" initial.lat ")
        'initiallat'
    """
    s = s.strip().lower()
    s = re.sub(r"\s+", "", s)
    s = s.replace("°", "deg")
    return re.sub(r"[_\-.()\[\]{}/]", "", s)


# Synonym seeds per canonical field; regexes matched against normalized names.
TRAJECTORY_SYNONYMS: Dict[str, List[str]] = {
    "sec":          [r"^(time)?secs?$", r"^timestampsec$"],
    "nanosec":      [r"^(time)?nanosecs?$", r"^timestampnanosec$", r"^nsec$"],
    "position_n":   [r"^pos(ition)?north$", r"^north(m)?$", r"^pn$"],
    "position_e":   [r"^pos(ition)?east$", r"^east(m)?$", r"^pe$"],
    "position_d":   [r"^pos(ition)?down$", r"^down(m)?$", r"^pd$"],
    "va":           [r"^airspeed$"],
    "vg":           [r"^groundspeed$"],
    "initial_long": [r"^initiallon$"],
}


def build_rename_map(
    columns: Sequence[str],
    canonical_fields: Sequence[str],
    aliases: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Map source column names to canonical field names.

    Matching runs as successive passes over the canonical fields, each
    pass only considering columns no earlier pass claimed:
    1. Exact name
    2. Normalized name (case/punctuation-insensitive)
    3. Configured aliases ({source_name: canonical_field})
    4. Built-in synonym patterns

    A source column is used for at most one canonical field, and a column
    already named like a canonical field always maps to that field.

    Returns:
        Dictionary {source_name -> canonical_field}, in canonical order

    Example:
        >>> build_rename_map(["Sec", "North", "vg"], ["sec", "position_n", "vg"])
        {'Sec': 'sec', 'North': 'position_n', 'vg': 'vg'}
    """
    aliases = dict(aliases or {})
    alias_norms = {t: {normalize_name(a) for a, tt in aliases.items() if tt == t} for t in canonical_fields}
    patterns = {t: [re.compile(p) for p in TRAJECTORY_SYNONYMS.get(t, [])] for t in canonical_fields}

    passes = [
        lambda col, target: col == target,
        lambda col, target: normalize_name(col) == normalize_name(target),
        lambda col, target: normalize_name(col) in alias_norms[target],
        lambda col, target: any(p.fullmatch(normalize_name(col)) for p in patterns[target]),
    ]

    source_for: Dict[str, str] = {}
    claimed: set = set()
    for matches in passes:
        for target in canonical_fields:
            if target in source_for:
                continue
            for col in columns:
                if col not in claimed and matches(col, target):
                    source_for[target] = col
                    claimed.add(col)
                    break

    return {source_for[t]: t for t in canonical_fields if t in source_for}


@register_stage("header_standardizer")
def apply_header_standardizer(
    dataset: Dataset,
    params: "HeaderStandardizerParams",
    context: Optional[StageContext] = None,
) -> StageResult:
    """Rename, insert and order fields into the canonical schema."""
    if context is not None:
        context.check_cancelled()

    canonical = list(params.canonical_fields)
    rename = build_rename_map(dataset.fields, canonical, params.aliases)
    source_for = {target: source for source, target in rename.items()}

    inserted = [t for t in canonical if t not in source_for]
    # Literal columns broadcast to the frame height only via with_columns
    frame = dataset.frame.with_columns(
        [pl.lit(None, dtype=canonical_dtype(t)).alias(t) for t in inserted]
    )

    exprs = [
        pl.col(source_for.get(t, t)).cast(canonical_dtype(t), strict=False).alias(t)
        for t in canonical
    ]
    extras = [c for c in dataset.fields if c not in rename]
    if params.retain_extras:
        exprs.extend(pl.col(c) for c in extras)
        dropped: List[str] = []
    else:
        dropped = extras

    frame = frame.select(exprs)
    renamed = {s: t for s, t in rename.items() if s != t}
    details = {
        "renamed": renamed,
        "inserted": inserted,
        "dropped": dropped,
        "retained": extras if params.retain_extras else [],
    }
    return StageResult.applied(
        "header_standardizer",
        dataset,
        Dataset(frame),
        removed=0,
        changed=len(renamed) + len(inserted) + len(dropped),
        details=details,
    )
