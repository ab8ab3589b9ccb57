"""
Append-only lineage of every stage applied to every file.

Workers record entries into a private FileLineage buffer and commit it when
the file finishes, so a cancelled file leaves no partial trail. Committed
entries are never modified or removed.
"""

from __future__ import annotations

import json
import tempfile
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import polars as pl

from .dataset import StageResult


@dataclass(frozen=True)
class LineageEntry:
    """
    One stage application on one file.

    Attributes:
        run_id: Identifier of the executor run
        file_name: Source file name
        stage_id: Stage identity ("ingest" for ingestion)
        position: Index of the stage in the profile (-1 for ingestion)
        config: Snapshot of {enabled, parameters} used
        input_count: Records received
        output_count: Records produced (0 when excluded)
        status: applied / skipped / excluded
        reason: Exclusion reason, if any
        cached: Result came from the cache
        removed: Records removed
        flags: Stage flags
        timestamp: UTC time the entry was recorded
    """
    run_id: str
    file_name: str
    stage_id: str
    position: int
    config: Dict[str, Any]
    input_count: int
    output_count: int
    status: str
    reason: Optional[str] = None
    cached: bool = False
    removed: int = 0
    flags: Tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def excluded(self) -> bool:
        return self.status == "excluded"

    @classmethod
    def from_result(
        cls,
        run_id: str,
        file_name: str,
        position: int,
        config: Dict[str, Any],
        result: StageResult,
    ) -> "LineageEntry":
        return cls(
            run_id=run_id,
            file_name=file_name,
            stage_id=result.stage_id,
            position=position,
            config=config,
            input_count=result.input_count,
            output_count=result.output_count,
            status=result.status.value,
            reason=result.exclusion_reason,
            cached=result.cached,
            removed=result.removed,
            flags=tuple(result.flags),
        )


class FileLineage:
    """Per-file buffer of entries awaiting commit."""

    def __init__(self, file_name: str, run_id: str):
        self.file_name = file_name
        self.run_id = run_id
        self.entries: List[LineageEntry] = []

    def record(self, position: int, config: Dict[str, Any], result: StageResult) -> LineageEntry:
        entry = LineageEntry.from_result(self.run_id, self.file_name, position, config, result)
        self.entries.append(entry)
        return entry


class LineageTracker:
    """Thread-safe, append-only store of LineageEntry per file."""

    def __init__(self):
        self._entries: Dict[str, List[LineageEntry]] = {}
        self._lock = threading.Lock()

    def begin(self, file_name: str, run_id: str) -> FileLineage:
        return FileLineage(file_name, run_id)

    def commit(self, buffer: FileLineage) -> None:
        """Append a finished file's entries in one atomic step."""
        if not buffer.entries:
            return
        with self._lock:
            self._entries.setdefault(buffer.file_name, []).extend(buffer.entries)
        buffer.entries = []

    def append(self, entry: LineageEntry) -> None:
        with self._lock:
            self._entries.setdefault(entry.file_name, []).append(entry)

    def entries(self, file_name: Optional[str] = None, run_id: Optional[str] = None) -> List[LineageEntry]:
        with self._lock:
            if file_name is None:
                items = [e for entries in self._entries.values() for e in entries]
            else:
                items = list(self._entries.get(file_name, []))
        if run_id is not None:
            items = [e for e in items if e.run_id == run_id]
        return items

    def files(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._entries.values())

    def diff(self, file_name: str, run_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Changes between adjacent entries of one file.

        Example:
            >>> tracker.diff("a.csv")
            [{'from_stage': 'ingest', 'to_stage': 'size_filter', 'records_before': 60,
              'records_after': 60, 'record_delta': 0, 'status': 'applied', ...}, ...]
        """
        entries = self.entries(file_name, run_id=run_id)
        diffs = []
        for prev, curr in zip(entries, entries[1:]):
            diffs.append({
                "from_stage": prev.stage_id,
                "to_stage": curr.stage_id,
                "records_before": prev.output_count,
                "records_after": curr.output_count,
                "record_delta": curr.output_count - prev.output_count,
                "status": curr.status,
                "status_changed": prev.status != curr.status,
                "reason": curr.reason,
            })
        return diffs

    # ------------------------------- Export --------------------------------

    def to_frame(self) -> pl.DataFrame:
        rows = []
        for entry in self.entries():
            row = asdict(entry)
            row["config"] = json.dumps(entry.config, sort_keys=True)
            row["flags"] = ",".join(entry.flags)
            row["timestamp"] = entry.timestamp.isoformat()
            rows.append(row)
        schema = {
            "run_id": pl.Utf8, "file_name": pl.Utf8, "stage_id": pl.Utf8, "position": pl.Int64,
            "config": pl.Utf8, "input_count": pl.Int64, "output_count": pl.Int64, "status": pl.Utf8,
            "reason": pl.Utf8, "cached": pl.Boolean, "removed": pl.Int64, "flags": pl.Utf8,
            "timestamp": pl.Utf8,
        }
        return pl.DataFrame(rows, schema=schema) if rows else pl.DataFrame(schema=schema)

    def write_parquet(self, out_file: Path) -> Path:
        """Write all entries to Parquet atomically (temp file + rename)."""
        out_file = Path(out_file)
        out_file.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile("wb", delete=False, dir=out_file.parent, suffix=".tmp") as tmp:
            tmp_path = Path(tmp.name)
        try:
            self.to_frame().write_parquet(tmp_path)
            tmp_path.replace(out_file)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        return out_file
