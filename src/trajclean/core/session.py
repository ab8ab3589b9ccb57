"""
Cleaning session: the files, profile, cache and lineage of one workspace.

The session is an explicit object passed to the executor; nothing in the
engine keeps process-wide state.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Tuple

from .analytics import AnalyticsAggregator
from .cache import CORPUS_OWNER, CacheManager
from .dataset import Dataset, FileEntry
from .ingest import FileIngestor, content_hash
from .lineage import LineageTracker

if TYPE_CHECKING:
    from ..models.profile import CleaningProfile
    from .executor import RunResult
    from .stages.anomaly import AnomalyReport

logger = logging.getLogger(__name__)


class CleaningSession:
    """
    Files plus the profile they are cleaned with.

    Args:
        profile: CleaningProfile to run
        ingestor: FileIngestor (defaults to canonical fields, 10k-row chunks)
        cache: CacheManager shared by runs of this session
        lineage: LineageTracker shared by runs of this session
        histogram_bins: Bin count for corpus histograms

    Example:
        >>> session = CleaningSession(CleaningProfile.default())
        >>> session.add_directory(Path("data/raw"))
        >>> PipelineExecutor(workers=4).run(session)
        >>> for name, dataset in session.surviving():
        ...     print(name, dataset.height)
    """

    def __init__(
        self,
        profile: "CleaningProfile",
        ingestor: Optional[FileIngestor] = None,
        cache: Optional[CacheManager] = None,
        lineage: Optional[LineageTracker] = None,
        histogram_bins: int = 10,
    ):
        self._profile = profile
        self.ingestor = ingestor or FileIngestor()
        self.cache = cache or CacheManager()
        self.lineage = lineage or LineageTracker()
        self.analytics = AnalyticsAggregator(self, bins=histogram_bins)
        self._files: Dict[str, FileEntry] = {}
        self._next_order = 0
        self.anomaly_report: Optional["AnomalyReport"] = None
        self.last_run: Optional["RunResult"] = None

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    @property
    def files(self) -> List[FileEntry]:
        """File entries in input order."""
        return sorted(self._files.values(), key=lambda e: e.order)

    def __len__(self) -> int:
        return len(self._files)

    def __contains__(self, name: str) -> bool:
        return name in self._files

    def entry(self, name: str) -> FileEntry:
        try:
            return self._files[name]
        except KeyError:
            raise KeyError(f"No file named {name!r} in session") from None

    def _register(self, entry: FileEntry) -> FileEntry:
        if entry.name in self._files:
            raise ValueError(f"File {entry.name!r} is already in the session")
        self._files[entry.name] = entry
        self._next_order += 1
        self.analytics.invalidate()
        logger.debug(f"Added {entry.name} ({entry.raw_size} bytes)")
        return entry

    def add_path(self, path: Path, name: Optional[str] = None) -> FileEntry:
        """Add a file on disk; content is hashed now and re-read at ingestion."""
        path = Path(path)
        raw = path.read_bytes()
        return self._register(FileEntry(
            name=name or path.name,
            raw_size=len(raw),
            content_hash=content_hash(raw),
            order=self._next_order,
            source_path=path,
        ))

    def add_bytes(self, name: str, content: bytes) -> FileEntry:
        """Add in-memory content (e.g. an upload)."""
        return self._register(FileEntry(
            name=name,
            raw_size=len(content),
            content_hash=content_hash(content),
            order=self._next_order,
            content=bytes(content),
        ))

    def add_directory(self, root: Path, pattern: str = "*.csv", recursive: bool = False) -> List[FileEntry]:
        """
        Add every matching file under root, in sorted path order.

        Files are named by their path relative to root (e.g. "day1/log.csv"),
        so equally named logs in different subdirectories stay distinct.
        """
        root = Path(root)
        paths = sorted(root.rglob(pattern) if recursive else root.glob(pattern))
        return [self.add_path(p, name=p.relative_to(root).as_posix()) for p in paths if p.is_file()]

    def remove_file(self, name: str) -> int:
        """
        Remove a file and evict its cache entries.

        Corpus-stage results are evicted too, since the file may have
        contributed to them. Lineage already recorded for the file is kept.

        Returns:
            Number of cache entries evicted
        """
        self._files.pop(name)
        evicted = self.cache.evict_owner(name) + self.cache.evict_owner(CORPUS_OWNER)
        self.analytics.invalidate()
        logger.info(f"Removed {name} from session ({evicted} cache entries evicted)")
        return evicted

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @property
    def profile(self) -> "CleaningProfile":
        return self._profile

    def set_profile(self, profile: "CleaningProfile") -> List[str]:
        """
        Replace the profile.

        Returns:
            Stage ids of the new profile that must be recomputed, i.e. the
            first stage whose chain entry changed and every stage after it
        """
        old = self._profile.chain_snapshot()
        new = profile.chain_snapshot()
        first_change: Optional[int] = None
        for i, entry in enumerate(new):
            if i >= len(old) or old[i] != entry:
                first_change = i
                break
        if first_change is None and len(old) != len(new):
            first_change = len(new)
        self._profile = profile
        self.analytics.invalidate()
        return profile.stage_ids[first_change:] if first_change is not None else []

    def update_stage(self, stage_id: str, enabled: Optional[bool] = None, **params: Any) -> List[str]:
        """
        Change one stage's enabled flag and/or parameters.

        Raises:
            ConfigError: Unknown stage or invalid parameter

        Returns:
            Stage ids needing recomputation (the edited stage and later ones);
            the caller decides when to re-run
        """
        return self.set_profile(self._profile.with_stage(stage_id, enabled=enabled, **params))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def surviving(self) -> Iterator[Tuple[str, Dataset]]:
        """(name, Dataset) of files that survived the last run, in input order."""
        for entry in self.files:
            if entry.is_active and entry.dataset is not None:
                yield entry.name, entry.dataset

    def excluded(self) -> List[FileEntry]:
        return [e for e in self.files if not e.is_active]

    def invalidate_analytics(self) -> None:
        self.analytics.invalidate()
