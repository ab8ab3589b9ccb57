"""
Error taxonomy for the cleaning pipeline.

Propagation rules:
- ConfigError halts a run before any file is touched.
- IngestError and SchemaError exclude a single file; siblings continue.
- ProcessingError is absorbed at row level (row skipped, count recorded).
- AnomalyFlag is advisory and never raised.
"""

from __future__ import annotations

from dataclasses import dataclass


class TrajcleanError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(TrajcleanError):
    """Invalid profile or stage parameter. Fatal at configuration time."""


class IngestError(TrajcleanError):
    """File is empty, unreadable or has no parsable data rows."""


class SchemaError(TrajcleanError):
    """Required canonical fields are missing and no safe mapping exists."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class ProcessingError(TrajcleanError):
    """Row-level malformation. Raised per row and counted by the caller."""

    def __init__(self, message: str, row_number: int | None = None):
        super().__init__(message)
        self.row_number = row_number


class PipelineCancelled(TrajcleanError):
    """Raised at a chunk boundary after cancellation was requested."""


@dataclass(frozen=True)
class AnomalyFlag:
    """Advisory marker produced by the anomaly detector."""
    file_name: str
    metric: str
    value: float
    z_score: float
