"""
Corpus analytics: per-file record counts, histograms of baseline
statistics and display rows for the anomaly report.

Results are computed lazily and kept until the session invalidates them
(a run finished, a file was added/removed or the profile changed).
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np
import polars as pl

if TYPE_CHECKING:
    from .session import CleaningSession

HISTOGRAM_METRICS = ("duration", "total_distance", "mean_speed", "altitude_change")


def data_reduction_percent(original: int, final: int) -> float:
    """(original - final) / original * 100, 0.0 for an empty corpus."""
    if original <= 0:
        return 0.0
    return (original - final) / original * 100.0


class AnalyticsAggregator:
    """
    Lazily computed corpus summaries for one session.

    Args:
        session: Session whose files are summarized
        bins: Histogram bin count
    """

    def __init__(self, session: "CleaningSession", bins: int = 10):
        if bins < 1:
            raise ValueError("bins must be >= 1")
        self._session = session
        self.bins = bins
        self._lock = threading.Lock()
        self._cached: Optional[Dict[str, Any]] = None
        self.computations = 0

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None

    @property
    def is_stale(self) -> bool:
        return self._cached is None

    def summary(self) -> Dict[str, Any]:
        """
        Full analytics snapshot.

        Returns:
            {"files": [...], "histograms": {...}, "anomalies": [...], "totals": {...}}
        """
        with self._lock:
            if self._cached is None:
                self._cached = self._compute()
                self.computations += 1
            return self._cached

    def file_rows(self) -> List[Dict[str, Any]]:
        return self.summary()["files"]

    def histograms(self) -> Dict[str, Dict[str, List[float]]]:
        return self.summary()["histograms"]

    def anomaly_rows(self) -> List[Dict[str, Any]]:
        return self.summary()["anomalies"]

    def totals(self) -> Dict[str, Any]:
        return self.summary()["totals"]

    def files_frame(self) -> pl.DataFrame:
        return pl.DataFrame(self.file_rows())

    def anomaly_frame(self) -> pl.DataFrame:
        rows = self.anomaly_rows()
        return pl.DataFrame(rows) if rows else pl.DataFrame()

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def _compute(self) -> Dict[str, Any]:
        entries = self._session.files
        rows = []
        for entry in entries:
            after = entry.dataset.height if entry.is_active and entry.dataset is not None else 0
            rows.append({
                "file_name": entry.name,
                "output_name": entry.output_name,
                "status": entry.status.value,
                "excluded_by": entry.excluded_by,
                "reason": entry.exclusion_reason,
                "records_before": entry.ingested_count,
                "records_after": after,
                "removed": entry.ingested_count - after,
            })

        survivors = [e for e in entries if e.is_active and e.dataset is not None and e.baseline is not None]
        histograms: Dict[str, Dict[str, List[float]]] = {}
        for metric in HISTOGRAM_METRICS:
            values = np.array([e.baseline.metric(metric) for e in survivors], dtype=float)
            values = values[np.isfinite(values)]
            if values.size == 0:
                histograms[metric] = {"counts": [], "edges": []}
                continue
            counts, edges = np.histogram(values, bins=self.bins)
            histograms[metric] = {"counts": counts.tolist(), "edges": edges.tolist()}

        original = sum(r["records_before"] for r in rows)
        final = sum(r["records_after"] for r in rows)
        totals = {
            "files": len(rows),
            "surviving": len(survivors),
            "excluded": sum(1 for r in rows if r["status"] == "excluded"),
            "original_records": original,
            "final_records": final,
            "data_reduction_percent": data_reduction_percent(original, final),
        }
        return {
            "files": rows,
            "histograms": histograms,
            "anomalies": self._anomaly_rows(),
            "totals": totals,
        }

    def _anomaly_rows(self) -> List[Dict[str, Any]]:
        report = self._session.anomaly_report
        if report is None:
            return []
        flagged: Dict[str, List[str]] = {}
        for flag in report.flags:
            flagged.setdefault(flag.file_name, []).append(flag.metric)

        rows = []
        for name, values in report.values.items():
            row: Dict[str, Any] = {"file_name": name}
            for metric in report.metrics:
                row[metric] = values.get(metric)
                row[f"{metric}_z"] = report.z_scores.get(name, {}).get(metric)
            row["flagged"] = name in flagged
            row["flagged_metrics"] = ",".join(flagged.get(name, []))
            rows.append(row)
        return rows
