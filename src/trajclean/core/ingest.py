"""
Raw trajectory log ingestion.

Turns the bytes of a delimited text log into a Dataset plus baseline
statistics. Malformed rows are skipped and counted; only a file with no
header or no parsable data row is rejected.
"""

from __future__ import annotations

import csv
import hashlib
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import polars as pl

from .dataset import CANONICAL_FIELDS, TEXT_FIELDS, Dataset
from .errors import IngestError, PipelineCancelled, ProcessingError
from .kinematics import TrajectoryStats, compute_stats

logger = logging.getLogger(__name__)


# ----------------------------- Config -----------------------------

DEFAULT_CHUNK_ROWS = 10_000
MAX_REPORTED_ROW_ERRORS = 20

CancelCheck = Callable[[], bool]
ChunkProgress = Callable[[int, int], None]


def content_hash(raw: bytes) -> str:
    """SHA-256 hex digest of raw file content."""
    return hashlib.sha256(raw).hexdigest()


def decode_text(raw: bytes) -> Tuple[str, str]:
    """
    Decode raw bytes as UTF-8 (BOM tolerated), falling back to Latin-1.

    Returns:
        (text, encoding)
    """
    try:
        return raw.decode("utf-8-sig"), "utf-8"
    except UnicodeDecodeError:
        return raw.decode("latin-1"), "latin-1"


@dataclass
class IngestResult:
    """
    Output of FileIngestor.ingest().

    Attributes:
        dataset: Parsed records
        stats: Baseline statistics of the parsed records
        rows_read: Data rows seen (excluding header and blank lines)
        rows_skipped: Rows dropped for field-count or value errors
        row_errors: First few row errors as (line_number, message)
        encoding: Encoding used to decode the content
    """
    dataset: Dataset
    stats: TrajectoryStats
    rows_read: int
    rows_skipped: int
    row_errors: List[Tuple[int, str]] = field(default_factory=list)
    encoding: str = "utf-8"


def _dedupe_header(header: Sequence[str]) -> List[str]:
    seen: Dict[str, int] = {}
    names = []
    for idx, raw in enumerate(header):
        name = raw.strip() or f"column_{idx}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 0
        names.append(name)
    return names


class FileIngestor:
    """
    Parse delimited trajectory logs into Datasets.

    Known numeric canonical fields are stored as Float64 and a row with a
    non-numeric, non-blank value in one of them is skipped. `frame_id`
    stays text. Unknown fields become Float64 when every non-blank value
    parses, otherwise they stay text.

    Args:
        canonical_fields: Field names treated as known
        chunk_rows: Rows parsed between cancellation/progress checks
        speed_field: Field used for the mean-speed baseline statistic
        delimiter: Column delimiter

    Example:
        >>> ingestor = FileIngestor()
        >>> result = ingestor.ingest(b"sec,vg\\n0,1.5\\n1,2.5\\n")
        >>> result.dataset.height, result.stats.mean_speed
        (2, 2.0)
    """

    def __init__(
        self,
        canonical_fields: Sequence[str] = CANONICAL_FIELDS,
        chunk_rows: int = DEFAULT_CHUNK_ROWS,
        speed_field: str = "vg",
        delimiter: str = ",",
    ):
        if chunk_rows < 1:
            raise ValueError("chunk_rows must be >= 1")
        self.canonical_fields = tuple(canonical_fields)
        self.numeric_fields = frozenset(f for f in self.canonical_fields if f not in TEXT_FIELDS)
        self.chunk_rows = chunk_rows
        self.speed_field = speed_field
        self.delimiter = delimiter

    def settings(self) -> Dict[str, object]:
        """Settings that influence the parsed output (part of cache keys)."""
        return {
            "canonical_fields": list(self.canonical_fields),
            "speed_field": self.speed_field,
            "delimiter": self.delimiter,
        }

    def ingest_path(self, path: Path, **kwargs) -> IngestResult:
        try:
            raw = Path(path).read_bytes()
        except OSError as e:
            raise IngestError(f"Cannot read {path}: {e}") from e
        return self.ingest(raw, name=Path(path).name, **kwargs)

    def ingest(
        self,
        raw: bytes,
        name: str = "<memory>",
        cancel_check: Optional[CancelCheck] = None,
        progress: Optional[ChunkProgress] = None,
    ) -> IngestResult:
        """
        Parse raw bytes into a Dataset.

        Args:
            raw: File content
            name: Name used in log messages
            cancel_check: Polled at every chunk boundary
            progress: Called as progress(rows_done, rows_total) per chunk

        Raises:
            IngestError: Empty content, no header or no parsable data row
            PipelineCancelled: cancel_check returned True
        """
        if not raw or not raw.strip():
            raise IngestError(f"{name}: file is empty")

        text, encoding = decode_text(raw)
        reader = csv.reader(io.StringIO(text, newline=""), delimiter=self.delimiter)

        header: Optional[List[str]] = None
        rows: List[Tuple[int, List[str]]] = []
        for row in reader:
            if not row or all(not cell.strip() for cell in row):
                continue
            if header is None:
                header = _dedupe_header(row)
                continue
            rows.append((reader.line_num, row))

        if header is None:
            raise IngestError(f"{name}: no header row")

        total = len(rows)
        frames: List[pl.DataFrame] = []
        errors: List[Tuple[int, str]] = []
        skipped = 0

        for start in range(0, max(total, 1), self.chunk_rows):
            if cancel_check is not None and cancel_check():
                raise PipelineCancelled(f"{name}: cancelled during ingestion")
            chunk = rows[start:start + self.chunk_rows]
            frame, chunk_errors = self._parse_chunk(header, chunk)
            skipped += len(chunk_errors)
            if len(errors) < MAX_REPORTED_ROW_ERRORS:
                errors.extend(chunk_errors[:MAX_REPORTED_ROW_ERRORS - len(errors)])
            if frame.height:
                frames.append(frame)
            if progress is not None:
                progress(min(start + len(chunk), total), total)

        if not frames:
            raise IngestError(f"{name}: no parsable data rows ({skipped} malformed)")

        frame = self._cast_columns(pl.concat(frames, how="vertical"))
        if skipped:
            logger.warning(f"{name}: skipped {skipped} malformed row(s) of {total}")

        dataset = Dataset(frame)
        return IngestResult(
            dataset=dataset,
            stats=compute_stats(frame, speed_field=self.speed_field),
            rows_read=total,
            rows_skipped=skipped,
            row_errors=errors,
            encoding=encoding,
        )

    # ------------------------------- Parsing --------------------------------

    def _check_row(self, header: List[str], line_no: int, row: List[str]) -> List[Optional[str]]:
        if len(row) != len(header):
            raise ProcessingError(
                f"expected {len(header)} fields, found {len(row)}", row_number=line_no
            )
        return [cell.strip() or None for cell in row]

    def _parse_chunk(
        self, header: List[str], chunk: List[Tuple[int, List[str]]]
    ) -> Tuple[pl.DataFrame, List[Tuple[int, str]]]:
        errors: List[Tuple[int, str]] = []
        good: List[List[Optional[str]]] = []
        line_numbers: List[int] = []
        for line_no, row in chunk:
            try:
                good.append(self._check_row(header, line_no, row))
                line_numbers.append(line_no)
            except ProcessingError as e:
                errors.append((e.row_number or line_no, str(e)))

        frame = pl.DataFrame(
            good,
            schema={name: pl.Utf8 for name in header},
            orient="row",
        )

        # Rows with non-numeric text in a known numeric field
        numeric = [name for name in header if name in self.numeric_fields]
        if numeric and frame.height:
            bad_expr = pl.any_horizontal(
                [pl.col(c).is_not_null() & pl.col(c).cast(pl.Float64, strict=False).is_null()
                 for c in numeric]
            )
            bad = frame.select(bad_expr.alias("bad")).get_column("bad").to_list()
            if any(bad):
                for line_no, is_bad in zip(line_numbers, bad):
                    if is_bad:
                        errors.append((line_no, "non-numeric value in numeric field"))
                frame = frame.filter(~bad_expr)
        return frame, sorted(errors)

    def _cast_columns(self, frame: pl.DataFrame) -> pl.DataFrame:
        casts = []
        for name in frame.columns:
            col = frame.get_column(name)
            if name in TEXT_FIELDS:
                continue
            as_float = col.cast(pl.Float64, strict=False)
            if name in self.numeric_fields or as_float.null_count() == col.null_count():
                casts.append(as_float.alias(name))
        return frame.with_columns(casts) if casts else frame
