"""
Cleaning Engine - Trajectory Log Pipeline
=========================================

Turns raw flight-trajectory CSV logs into cleaned, analyzable datasets.

Architecture
------------
raw bytes -> FileIngestor -> Dataset -> stage chain -> AnalyticsAggregator -> Exporter
                                          |       |
                                   CacheManager  LineageTracker

Phase 1 runs ingestion and every file-scope stage on a bounded thread pool.
Phase 2 runs the corpus stages (anomaly detection, resequencing) once all
files have reached the barrier.

Usage
-----
    >>> from trajclean.core import CleaningSession, PipelineExecutor
    >>> from trajclean.models.profile import CleaningProfile
    >>>
    >>> session = CleaningSession(CleaningProfile.default())
    >>> session.add_path(Path("data/raw/flight_01.csv"))
    >>> run = PipelineExecutor(workers=4).run(session)
    >>> Exporter(Path("data/clean")).export(session, run)
"""

from .dataset import Dataset, StageResult, FileEntry, FileStatus, CANONICAL_FIELDS
from .errors import (
    TrajcleanError,
    ConfigError,
    IngestError,
    SchemaError,
    ProcessingError,
    PipelineCancelled,
    AnomalyFlag,
)
from .ingest import FileIngestor
from .cache import CacheManager
from .lineage import LineageTracker, LineageEntry
from .session import CleaningSession
from .executor import PipelineExecutor, RunResult
from .analytics import AnalyticsAggregator
from .exporter import Exporter

__all__ = [
    "Dataset",
    "StageResult",
    "FileEntry",
    "FileStatus",
    "CANONICAL_FIELDS",
    "TrajcleanError",
    "ConfigError",
    "IngestError",
    "SchemaError",
    "ProcessingError",
    "PipelineCancelled",
    "AnomalyFlag",
    "FileIngestor",
    "CacheManager",
    "LineageTracker",
    "LineageEntry",
    "CleaningSession",
    "PipelineExecutor",
    "RunResult",
    "AnalyticsAggregator",
    "Exporter",
]
