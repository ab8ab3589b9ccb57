"""
Export cleaned datasets and the batch report.

Output layout:
    <output_dir>/
    ├── test 1.csv ...            # one CSV per surviving file
    ├── batch_summary.json        # exclusions per stage, data reduction
    ├── anomaly_report.json       # when the anomaly detector ran
    └── lineage.parquet           # every lineage entry of the session
"""

from __future__ import annotations

import json
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import polars as pl

from .analytics import data_reduction_percent
from .dataset import CANONICAL_FIELDS, Dataset

if TYPE_CHECKING:
    from .executor import RunResult
    from .session import CleaningSession

logger = logging.getLogger(__name__)

BATCH_SUMMARY_NAME = "batch_summary.json"
ANOMALY_REPORT_NAME = "anomaly_report.json"
LINEAGE_NAME = "lineage.parquet"


def _atomic_write(out_file: Path, write) -> None:
    """Write via a temp file in the same directory, then rename into place."""
    out_file.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=out_file.parent, suffix=".tmp") as tmp:
        tmp_path = Path(tmp.name)
    try:
        write(tmp_path)
        tmp_path.replace(out_file)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_csv(frame: pl.DataFrame, out_file: Path) -> None:
    _atomic_write(out_file, frame.write_csv)


def atomic_write_json(data: Any, out_file: Path) -> None:
    text = json.dumps(data, indent=2, default=str)
    _atomic_write(out_file, lambda p: p.write_text(text, encoding="utf-8"))


def order_fields(dataset: Dataset, canonical_fields: Sequence[str] = CANONICAL_FIELDS) -> pl.DataFrame:
    """Canonical fields present, in canonical order, followed by any others."""
    present = set(dataset.fields)
    canonical = [f for f in canonical_fields if f in present]
    extras = [f for f in dataset.fields if f not in set(canonical)]
    return dataset.frame.select(canonical + extras)


@dataclass
class ExportResult:
    """Files written by Exporter.export() and the batch summary."""
    output_dir: Path
    datasets: List[Path] = field(default_factory=list)
    reports: List[Path] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)


class Exporter:
    """
    Write surviving datasets and reports for a finished run.

    Args:
        output_dir: Destination directory (created if missing)
        canonical_fields: Field order for written CSVs
        write_lineage: Also write lineage.parquet
    """

    def __init__(
        self,
        output_dir: Path,
        canonical_fields: Sequence[str] = CANONICAL_FIELDS,
        write_lineage: bool = True,
    ):
        self.output_dir = Path(output_dir)
        self.canonical_fields = tuple(canonical_fields)
        self.write_lineage = write_lineage

    def export(self, session: "CleaningSession", run: Optional["RunResult"] = None) -> ExportResult:
        run = run or session.last_run
        result = ExportResult(output_dir=self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        exported: List[Dict[str, Any]] = []
        for entry in session.files:
            if not entry.is_active or entry.dataset is None:
                continue
            out_name = entry.output_name or entry.name
            out_file = self.output_dir / out_name
            atomic_write_csv(order_fields(entry.dataset, self.canonical_fields), out_file)
            result.datasets.append(out_file)
            exported.append({
                "source_name": entry.name,
                "output_name": out_name,
                "records_before": entry.ingested_count,
                "records_after": entry.dataset.height,
            })
            logger.debug(f"Exported {entry.name} -> {out_file}")

        summary = self.build_summary(session, run, exported)
        result.summary = summary

        summary_path = self.output_dir / BATCH_SUMMARY_NAME
        atomic_write_json(summary, summary_path)
        result.reports.append(summary_path)

        report = run.anomaly_report if run is not None else session.anomaly_report
        if report is not None:
            report_path = self.output_dir / ANOMALY_REPORT_NAME
            atomic_write_json(report.to_dict(), report_path)
            result.reports.append(report_path)

        if self.write_lineage:
            result.reports.append(session.lineage.write_parquet(self.output_dir / LINEAGE_NAME))

        logger.info(
            f"Exported {len(result.datasets)} file(s) to {self.output_dir} "
            f"({summary['data_reduction_percent']:.1f}% data reduction)"
        )
        return result

    def build_summary(
        self,
        session: "CleaningSession",
        run: Optional["RunResult"],
        exported: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Batch summary: exclusions per stage (each excluded file listed once)
        and total data reduction over ingested records.
        """
        excluded_files = []
        by_stage: Dict[str, Dict[str, Any]] = {}
        for entry in session.files:
            if entry.is_active:
                continue
            stage = entry.excluded_by or "unknown"
            item = {"file_name": entry.name, "stage_id": stage, "reason": entry.exclusion_reason}
            excluded_files.append(item)
            bucket = by_stage.setdefault(stage, {"count": 0, "files": []})
            bucket["count"] += 1
            bucket["files"].append({"file_name": entry.name, "reason": entry.exclusion_reason})

        original = sum(e.ingested_count for e in session.files)
        final = sum(item["records_after"] for item in exported)
        return {
            "run_id": run.run_id if run is not None else None,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "cancelled": bool(run.cancelled) if run is not None else False,
            "profile": session.profile.to_dict(),
            "files_total": len(session.files),
            "files_exported": len(exported),
            "files_excluded": len(excluded_files),
            "exclusions_by_stage": by_stage,
            "excluded_files": excluded_files,
            "exported_files": exported,
            "original_records": original,
            "exported_records": final,
            "data_reduction_percent": data_reduction_percent(original, final),
        }
