"""
Corpus-wide anomaly detection on per-file trajectory metrics.

Each surviving file contributes one value per metric (mean speed, total
horizontal distance, net altitude change). A file is flagged when any of
its metrics lies more than `threshold_sigma` standard deviations from the
corpus. Two reference statistics are supported:

- leave_one_out: compare each file with the mean/std of the *other* files.
  A single extreme file cannot inflate its own reference spread, so it is
  caught even in small corpora.
- population: compare each file with the mean/std of all files.

Standard deviations are population (ddof=0). A zero reference std gives a
z-score of 0 for an equal value and +/-inf otherwise.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

import numpy as np

from ..dataset import StageResult
from ..errors import AnomalyFlag, SchemaError
from ..kinematics import POSITION_FIELDS, compute_stats
from .base import CORPUS_SCOPE, CorpusItem, StageContext, register_stage, require_fields

if TYPE_CHECKING:
    from ...models.profile import AnomalyParams

logger = logging.getLogger(__name__)


def _json_float(value: float):
    return value if math.isfinite(value) else ("inf" if value > 0 else "-inf")


@dataclass
class AnomalyReport:
    """
    Corpus statistics and flags produced by the anomaly detector.

    Attributes:
        metrics: Metric names evaluated
        statistics: "leave_one_out" or "population"
        threshold_sigma: Flagging threshold
        metric_stats: {metric: {"mean": ..., "std": ...}} over all evaluated files
        values: {file_name: {metric: value}}
        z_scores: {file_name: {metric: z}}
        flags: One AnomalyFlag per (file, metric) beyond threshold
        excluded: Files excluded because they were flagged
        note: Why no evaluation happened (e.g. corpus too small)
    """
    metrics: List[str]
    statistics: str
    threshold_sigma: float
    metric_stats: Dict[str, Dict[str, float]] = field(default_factory=dict)
    values: Dict[str, Dict[str, float]] = field(default_factory=dict)
    z_scores: Dict[str, Dict[str, float]] = field(default_factory=dict)
    flags: List[AnomalyFlag] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    note: Optional[str] = None

    @property
    def flagged_files(self) -> List[str]:
        seen: Dict[str, None] = {}
        for flag in self.flags:
            seen.setdefault(flag.file_name, None)
        return list(seen)

    def to_dict(self) -> dict:
        return {
            "metrics": list(self.metrics),
            "statistics": self.statistics,
            "threshold_sigma": self.threshold_sigma,
            "metric_stats": self.metric_stats,
            "values": self.values,
            "z_scores": {
                name: {m: _json_float(z) for m, z in scores.items()}
                for name, scores in self.z_scores.items()
            },
            "flags": [
                {"file_name": f.file_name, "metric": f.metric, "value": f.value,
                 "z_score": _json_float(f.z_score)}
                for f in self.flags
            ],
            "excluded": list(self.excluded),
            "note": self.note,
        }


def z_scores(values: Sequence[float], statistics: str = "leave_one_out") -> np.ndarray:
    """
    Z-score of each value against the rest of the corpus.

    Example:
        >>> z = z_scores([10, 11, 9, 10, 50])
        >>> [bool(abs(v) > 2.0) for v in z]
        [False, False, False, False, True]
    """
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    out = np.zeros(n)
    for i in range(n):
        if statistics == "population":
            ref = arr
        else:
            ref = np.delete(arr, i)
        if ref.size == 0:
            continue
        mean = float(ref.mean())
        std = float(ref.std())
        diff = arr[i] - mean
        if std == 0.0:
            out[i] = 0.0 if diff == 0 else math.copysign(math.inf, diff)
        else:
            out[i] = diff / std
    return out


@register_stage("anomaly_detector", scope=CORPUS_SCOPE, requires_canonical=True)
def apply_anomaly_detector(
    items: Sequence[CorpusItem],
    params: "AnomalyParams",
    context: Optional[StageContext] = None,
) -> tuple[List[StageResult], AnomalyReport]:
    """Flag files whose metrics deviate from the corpus beyond threshold_sigma."""
    metrics = list(params.metrics)
    report = AnomalyReport(
        metrics=metrics,
        statistics=params.statistics,
        threshold_sigma=params.threshold_sigma,
    )

    results: Dict[str, StageResult] = {}
    evaluated: List[CorpusItem] = []
    for item in items:
        try:
            require_fields(item.dataset, POSITION_FIELDS, "anomaly_detector")
        except SchemaError as e:
            results[item.name] = StageResult.exclude("anomaly_detector", item.dataset, str(e))
            continue
        stats = compute_stats(item.dataset.frame, speed_field=params.speed_field)
        report.values[item.name] = {m: stats.metric(m) for m in metrics}
        evaluated.append(item)

    if len(evaluated) < params.min_corpus_size:
        report.note = (
            f"corpus of {len(evaluated)} file(s) below min_corpus_size={params.min_corpus_size}"
        )
        logger.info(f"Anomaly detection skipped: {report.note}")
        for item in evaluated:
            results[item.name] = StageResult.applied(
                "anomaly_detector", item.dataset, item.dataset, details={"note": report.note}
            )
        return [results[item.name] for item in items], report

    names = [item.name for item in evaluated]
    for metric in metrics:
        column = np.array([report.values[name][metric] for name in names])
        report.metric_stats[metric] = {"mean": float(column.mean()), "std": float(column.std())}
        for name, value, z in zip(names, column, z_scores(column, params.statistics)):
            report.z_scores.setdefault(name, {})[metric] = float(z)
            if abs(z) > params.threshold_sigma:
                report.flags.append(AnomalyFlag(name, metric, float(value), float(z)))

    flagged = {}
    for flag in report.flags:
        flagged.setdefault(flag.file_name, []).append(flag)

    for item in evaluated:
        details = {"z_scores": report.z_scores.get(item.name, {})}
        file_flags = flagged.get(item.name)
        if not file_flags:
            results[item.name] = StageResult.applied(
                "anomaly_detector", item.dataset, item.dataset, details=details
            )
            continue
        worst = max(file_flags, key=lambda f: abs(f.z_score))
        details["flags"] = [f.metric for f in file_flags]
        if params.exclude:
            report.excluded.append(item.name)
            results[item.name] = StageResult.exclude(
                "anomaly_detector",
                item.dataset,
                f"anomalous {worst.metric}: {worst.value:.3f} (z={worst.z_score:.2f})",
                flags=("anomaly",),
                details=details,
            )
        else:
            results[item.name] = StageResult.applied(
                "anomaly_detector", item.dataset, item.dataset, flags=("anomaly",), details=details
            )

    if report.flags:
        logger.info(f"Anomaly detector flagged {len(flagged)} of {len(evaluated)} file(s)")
    return [results[item.name] for item in items], report
