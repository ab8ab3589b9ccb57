"""
Output formatters for CLI commands.

Renders analytics tables (per-file results, anomaly scores, histograms)
as Rich tables for the terminal, or as JSON/CSV for scripting.

Usage:
    >>> from trajclean.cli.formatters import get_formatter
    >>> formatter = get_formatter("json")
    >>> print(formatter.format_dataframe(df, title="Files"))
"""

from __future__ import annotations

import io
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

import numpy as np
import polars as pl
from rich import box
from rich.console import Console
from rich.table import Table


class OutputFormatter(ABC):
    """Renders DataFrames and summary dicts to a string."""

    @abstractmethod
    def format_dataframe(
        self,
        df: pl.DataFrame,
        title: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Format a Polars DataFrame for output.

        Parameters
        ----------
        df : pl.DataFrame
            Data to format
        title : str, optional
            Title or header for the output
        metadata : dict, optional
            Additional context (run id, profile name, ...)
        """

    @abstractmethod
    def format_summary(self, data: Dict[str, Any]) -> str:
        """Format a flat summary dictionary."""


class RichTableFormatter(OutputFormatter):
    """
    Rich table formatter for terminal output (default).

    Excluded rows are dimmed red, flagged anomaly rows yellow.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def format_dataframe(
        self,
        df: pl.DataFrame,
        title: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        table = Table(
            title=title or None,
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan",
        )

        for col in df.columns:
            if col in ("file_name", "output_name"):
                table.add_column(col, style="bold", no_wrap=True)
            elif col in ("records_before", "records_after", "removed", "count"):
                table.add_column(col, style="green", justify="right")
            elif col.endswith("_z"):
                table.add_column(col, style="magenta", justify="right")
            elif col in ("excluded_by", "reason", "flagged_metrics"):
                table.add_column(col, style="yellow")
            else:
                table.add_column(col, justify="left")

        for row in df.iter_rows(named=True):
            cells = [self._format_value(row[col]) for col in df.columns]
            style = None
            if row.get("status") == "excluded":
                style = "dim red"
            elif row.get("flagged") is True:
                style = "yellow"
            table.add_row(*cells, style=style)

        with self.console.capture() as capture:
            self.console.print(table)
        return capture.get()

    def format_summary(self, data: Dict[str, Any]) -> str:
        with self.console.capture() as capture:
            for key, value in data.items():
                if isinstance(value, float):
                    value = f"{value:.2f}"
                self.console.print(f"[cyan]{key}:[/cyan] {value}")
        return capture.get()

    @staticmethod
    def _format_value(value: Any) -> str:
        if value is None:
            return "[dim]—[/dim]"
        if isinstance(value, bool):
            return "✓" if value else "✗"
        if isinstance(value, float):
            if np.isnan(value):
                return "[dim]—[/dim]"
            if np.isinf(value):
                return "∞" if value > 0 else "-∞"
            return f"{value:.4g}"
        return str(value)


class JSONFormatter(OutputFormatter):
    """
    JSON formatter for machine-readable output.

    Output structure: {"metadata": {...}, "data": [{...}, ...]}.
    NaN/Inf become null.
    """

    def __init__(self, indent: int = 2, ensure_ascii: bool = False):
        self.indent = indent
        self.ensure_ascii = ensure_ascii

    def format_dataframe(
        self,
        df: pl.DataFrame,
        title: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        rows = [{k: self._serialize_value(v) for k, v in row.items()} for row in df.to_dicts()]
        meta = dict(metadata or {})
        if title:
            meta["title"] = title
        meta["row_count"] = len(rows)
        return json.dumps({"metadata": meta, "data": rows}, indent=self.indent, ensure_ascii=self.ensure_ascii)

    def format_summary(self, data: Dict[str, Any]) -> str:
        serialized = {k: self._serialize_value(v) for k, v in data.items()}
        return json.dumps(serialized, indent=self.indent, ensure_ascii=self.ensure_ascii)

    def _serialize_value(self, value: Any) -> Any:
        if value is None:
            return None
        if hasattr(value, "isoformat"):
            return value.isoformat()
        if isinstance(value, (float, np.floating)):
            if not np.isfinite(value):
                return None
            return round(float(value), 10)
        if isinstance(value, np.integer):
            return int(value)
        if isinstance(value, np.bool_):
            return bool(value)
        if isinstance(value, (list, tuple, np.ndarray)):
            return [self._serialize_value(v) for v in value]
        if isinstance(value, dict):
            return {k: self._serialize_value(v) for k, v in value.items()}
        return value


class CSVFormatter(OutputFormatter):
    """CSV formatter (header row, empty string for nulls)."""

    def __init__(self, null_value: str = ""):
        self.null_value = null_value

    def format_dataframe(
        self,
        df: pl.DataFrame,
        title: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        # CSV cannot hold nested values
        nested = [c for c, dtype in df.schema.items() if isinstance(dtype, (pl.List, pl.Struct))]
        if nested:
            df = df.with_columns([pl.col(c).cast(pl.String) for c in nested])
        buffer = io.StringIO()
        df.write_csv(buffer, null_value=self.null_value)
        return buffer.getvalue()

    def format_summary(self, data: Dict[str, Any]) -> str:
        df = pl.DataFrame({
            "key": list(data.keys()),
            "value": [str(v) for v in data.values()],
        })
        buffer = io.StringIO()
        df.write_csv(buffer, null_value=self.null_value)
        return buffer.getvalue()


FORMATTERS: Dict[str, Type[OutputFormatter]] = {
    "table": RichTableFormatter,
    "json": JSONFormatter,
    "csv": CSVFormatter,
}

FORMATTER_ALIASES: Dict[str, str] = {
    "rich": "table",
    "text": "table",
}


def get_formatter(format_name: str, console: Optional[Console] = None) -> OutputFormatter:
    """
    Get formatter instance by name ("table", "json", "csv" or an alias).

    Raises
    ------
    ValueError
        If format name is unknown
    """
    name = format_name.lower().strip()
    name = FORMATTER_ALIASES.get(name, name)
    if name not in FORMATTERS:
        raise ValueError(
            f"Unknown format '{format_name}'. Available: {', '.join(sorted(FORMATTERS))}"
        )
    if name == "table":
        return RichTableFormatter(console=console)
    return FORMATTERS[name]()


def histogram_frame(histograms: Dict[str, Dict[str, List[float]]]) -> pl.DataFrame:
    """Flatten {metric: {"counts", "edges"}} into one row per bin."""
    rows = []
    for metric, hist in histograms.items():
        counts, edges = hist["counts"], hist["edges"]
        for i, count in enumerate(counts):
            rows.append({
                "metric": metric,
                "bin_start": float(edges[i]),
                "bin_end": float(edges[i + 1]),
                "count": int(count),
            })
    return pl.DataFrame(
        rows,
        schema={"metric": pl.String, "bin_start": pl.Float64, "bin_end": pl.Float64, "count": pl.Int64},
    )
