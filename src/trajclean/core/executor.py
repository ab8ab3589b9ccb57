"""
Pipeline executor: drives every file of a session through the stage chain.

Phase 1 runs ingestion and all file-scope stages on a bounded thread pool,
one worker per file at a time. After the barrier, phase 2 runs each
corpus-scope stage once over the surviving files in input order.

Every stage output is cached under its chain fingerprint, so re-running
after an edit recomputes only the edited stage and the stages after it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from .cache import CORPUS_OWNER, fingerprint
from .dataset import Dataset, FileEntry, StageResult
from .errors import IngestError, PipelineCancelled, SchemaError
from .ingest import DEFAULT_CHUNK_ROWS
from .lineage import FileLineage
from .stages import CORPUS_SCOPE, CorpusItem, StageContext, check_stage_order, get_stage

if TYPE_CHECKING:
    from .session import CleaningSession
    from .stages.anomaly import AnomalyReport

logger = logging.getLogger(__name__)

INGEST_STAGE_ID = "ingest"

ProgressCallback = Callable[[int, int, str, str], None]


# ----------------------------- Results -----------------------------

@dataclass
class RunResult:
    """
    Outcome of one PipelineExecutor.run().

    Attributes:
        run_id: Identifier stamped on every lineage entry of the run
        files: File entries in input order (state as of the end of the run)
        cancelled: Run stopped early on request
        cancelled_files: Files whose processing was discarded by cancellation
        anomaly_report: Report of the anomaly detector, when it ran
        started_at / finished_at: UTC timestamps
    """
    run_id: str
    files: List[FileEntry] = field(default_factory=list)
    cancelled: bool = False
    cancelled_files: List[str] = field(default_factory=list)
    anomaly_report: Optional["AnomalyReport"] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def survivors(self) -> List[FileEntry]:
        return [e for e in self.files if e.is_active and e.dataset is not None]

    @property
    def excluded(self) -> List[FileEntry]:
        return [e for e in self.files if not e.is_active]

    @property
    def elapsed(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def recomputed_stages(self) -> List[str]:
        """Stage ids computed (not served from cache) for at least one file."""
        seen: Dict[str, None] = {}
        for entry in self.files:
            for result in entry.results:
                if not result.cached and result.status.value != "skipped":
                    seen.setdefault(result.stage_id, None)
        return list(seen)

    def cache_hits(self) -> int:
        return sum(1 for e in self.files for r in e.results if r.cached)


# ----------------------------- Executor -----------------------------

class PipelineExecutor:
    """
    Run a session's profile over its files.

    Args:
        workers: Thread pool size (default: os.cpu_count()), capped at file count
        chunk_rows: Row chunk size for ingestion and row-local stages
        progress_callback: Called as (completed, total, file_name, status)
            after each phase-1 file, status one of "ok", "excluded" or
            "cancelled". An exception raised by the callback (including
            KeyboardInterrupt) cancels the files still in flight.

    Example:
        >>> executor = PipelineExecutor(workers=4)
        >>> run = executor.run(session)
        >>> [e.name for e in run.survivors]
        ['a.csv', 'c.csv']
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        chunk_rows: int = DEFAULT_CHUNK_ROWS,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        if workers is not None and workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        self.chunk_rows = chunk_rows
        self.progress_callback = progress_callback
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next chunk boundary."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, session: "CleaningSession") -> RunResult:
        """
        Execute the profile over every file in the session.

        Raises:
            ConfigError: Profile ordering is invalid (before any file is touched)
        """
        profile = session.profile
        check_stage_order(profile.stages)
        self._cancel.clear()

        run = RunResult(run_id=uuid.uuid4().hex[:12])
        entries = session.files
        run.files = entries
        for entry in entries:
            entry.reset()

        chain = profile.chain_snapshot()
        corpus_start = next(
            (i for i, s in enumerate(profile.stages) if get_stage(s.stage_id).scope == CORPUS_SCOPE),
            len(profile.stages),
        )
        logger.info(
            f"Run {run.run_id}: {len(entries)} file(s), stages={profile.stage_ids}, "
            f"corpus stages from position {corpus_start}"
        )

        keys = self._run_file_phase(session, run, chain, corpus_start)

        if run.cancelled:
            logger.warning(f"Run {run.run_id} cancelled; {len(run.cancelled_files)} file(s) discarded")
        else:
            self._run_corpus_phase(session, run, chain, corpus_start, keys)

        run.finished_at = datetime.now(timezone.utc)
        session.anomaly_report = run.anomaly_report
        session.last_run = run
        session.invalidate_analytics()
        logger.info(
            f"Run {run.run_id} finished: {len(run.survivors)} surviving, "
            f"{len(run.excluded)} excluded, {run.cache_hits()} cache hits"
        )
        return run

    # ------------------------------------------------------------------
    # Phase 1: ingestion + file-scope stages
    # ------------------------------------------------------------------

    def _run_file_phase(
        self,
        session: "CleaningSession",
        run: RunResult,
        chain: List[Dict[str, Any]],
        corpus_start: int,
    ) -> Dict[str, str]:
        entries = run.files
        keys: Dict[str, str] = {}
        if not entries:
            return keys

        max_workers = min(self.workers or os.cpu_count() or 1, len(entries))
        total = len(entries)
        completed = 0

        pool = ThreadPoolExecutor(max_workers=max_workers)
        future_to_entry = {
            pool.submit(self._process_file, session, entry, run.run_id, chain, corpus_start): entry
            for entry in entries
        }
        try:
            for fut in as_completed(future_to_entry):
                completed += 1
                entry = future_to_entry[fut]
                try:
                    keys[entry.name] = fut.result()
                    status = "ok" if entry.is_active else "excluded"
                except PipelineCancelled:
                    self._discard(run, entry)
                    status = "cancelled"

                if self.progress_callback:
                    self.progress_callback(completed, total, entry.name, status)
        except BaseException:
            # Interrupted (Ctrl-C or a failing callback): stop in-flight files
            # at their next chunk boundary and drop the queued ones
            self._cancel.set()
            pool.shutdown(wait=True, cancel_futures=True)
            for fut, entry in future_to_entry.items():
                if fut.cancelled() or isinstance(fut.exception(), PipelineCancelled):
                    if entry.name not in run.cancelled_files:
                        self._discard(run, entry)
            raise
        pool.shutdown(wait=True)

        if run.cancelled:
            order = {e.name: e.order for e in entries}
            run.cancelled_files.sort(key=order.__getitem__)
        return keys

    @staticmethod
    def _discard(run: RunResult, entry: FileEntry) -> None:
        entry.reset()
        run.cancelled = True
        run.cancelled_files.append(entry.name)

    def _process_file(
        self,
        session: "CleaningSession",
        entry: FileEntry,
        run_id: str,
        chain: List[Dict[str, Any]],
        corpus_start: int,
    ) -> str:
        """Ingest one file and run it through the file-scope stages.

        Returns the chain fingerprint of the file's last computed output.
        An unexpected error excludes the file at the stage that raised it;
        that result is not cached, so the next run retries the stage.
        """
        buffer = session.lineage.begin(entry.name, run_id)
        ctx = StageContext(
            file_name=entry.name,
            raw_size=entry.raw_size,
            chunk_rows=self.chunk_rows,
            cancel_check=self._cancel.is_set,
        )
        ctx.check_cancelled()

        settings = session.ingestor.settings()
        key = fingerprint(entry.content_hash, [], ingest=settings)
        stage_id, position, config = INGEST_STAGE_ID, -1, {"enabled": True, "parameters": settings}
        dataset = Dataset.empty()

        try:
            result = session.cache.get_or_compute(key, entry.name, lambda: self._ingest(session, entry, ctx))
            buffer.record(position, config, result)
            entry.results.append(result)

            if result.excluded:
                entry.exclude(INGEST_STAGE_ID, result.exclusion_reason or "ingestion failed")
                session.lineage.commit(buffer)
                return key

            entry.baseline = result.details["stats"]
            entry.ingested_count = result.dataset.height
            dataset = result.dataset

            for position in range(corpus_start):
                cfg = session.profile.stages[position]
                stage_id, config = cfg.stage_id, chain[position]
                key = fingerprint(entry.content_hash, chain[: position + 1], ingest=settings)
                if not cfg.enabled:
                    result = StageResult.skipped(cfg.stage_id, dataset)
                else:
                    result = session.cache.get_or_compute(
                        key, entry.name, lambda: self._apply_file_stage(cfg, dataset, ctx)
                    )
                buffer.record(position, config, result)
                entry.results.append(result)

                if result.excluded:
                    entry.exclude(cfg.stage_id, result.exclusion_reason or "excluded")
                    break
                dataset = result.dataset
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.exception(f"{entry.name}: stage {stage_id} failed")
            result = StageResult.exclude(stage_id, dataset, f"error: {e}")
            buffer.record(position, config, result)
            entry.results.append(result)
            entry.exclude(stage_id, result.exclusion_reason)

        if entry.is_active:
            entry.dataset = dataset
        session.lineage.commit(buffer)
        return key

    def _ingest(self, session: "CleaningSession", entry: FileEntry, ctx: StageContext) -> StageResult:
        try:
            raw = entry.read_bytes()
        except OSError as e:
            return StageResult.exclude(INGEST_STAGE_ID, Dataset.empty(), f"unreadable: {e}")
        try:
            parsed = session.ingestor.ingest(raw, name=entry.name, cancel_check=ctx.cancel_check)
        except IngestError as e:
            return StageResult.exclude(INGEST_STAGE_ID, Dataset.empty(), str(e))
        return StageResult(
            stage_id=INGEST_STAGE_ID,
            dataset=parsed.dataset,
            input_count=parsed.rows_read,
            removed=parsed.rows_skipped,
            details={
                "stats": parsed.stats,
                "rows_read": parsed.rows_read,
                "rows_skipped": parsed.rows_skipped,
                "row_errors": parsed.row_errors,
                "encoding": parsed.encoding,
            },
        )

    def _apply_file_stage(self, cfg, dataset: Dataset, ctx: StageContext) -> StageResult:
        spec = get_stage(cfg.stage_id)
        ctx.check_cancelled()
        try:
            return spec.function(dataset, cfg.parameters, ctx)
        except SchemaError as e:
            return StageResult.exclude(cfg.stage_id, dataset, str(e), details={"missing": e.missing})

    # ------------------------------------------------------------------
    # Phase 2: corpus-scope stages
    # ------------------------------------------------------------------

    def _run_corpus_phase(
        self,
        session: "CleaningSession",
        run: RunResult,
        chain: List[Dict[str, Any]],
        corpus_start: int,
        keys: Dict[str, str],
    ) -> None:
        profile = session.profile
        for position in range(corpus_start, len(profile.stages)):
            if self._cancel.is_set():
                run.cancelled = True
                return

            cfg = profile.stages[position]
            survivors = run.survivors
            items = [CorpusItem(e.name, e.dataset) for e in survivors]

            digest = hashlib.sha256(
                "|".join(f"{e.name}:{keys[e.name]}" for e in survivors).encode("utf-8")
            ).hexdigest()
            corpus_key = fingerprint(digest, chain[: position + 1])

            if not cfg.enabled:
                results = [StageResult.skipped(cfg.stage_id, item.dataset) for item in items]
                report = None
            else:
                cached = session.cache.lookup(corpus_key, CORPUS_OWNER)
                if cached is not None:
                    results = [r.as_cached() for r in cached[0]]
                    report = cached[1]
                else:
                    spec = get_stage(cfg.stage_id)
                    results, report = spec.function(items, cfg.parameters, None)
                    session.cache.insert(corpus_key, (results, report), CORPUS_OWNER)

            if cfg.stage_id == "anomaly_detector" and report is not None:
                run.anomaly_report = report

            for entry, result in zip(survivors, results):
                buffer = FileLineage(entry.name, run.run_id)
                buffer.record(position, chain[position], result)
                session.lineage.commit(buffer)
                entry.results.append(result)
                keys[entry.name] = fingerprint(corpus_key, [], file=entry.name)
                if result.excluded:
                    entry.exclude(cfg.stage_id, result.exclusion_reason or "excluded")
                    entry.dataset = None
                    continue
                entry.dataset = result.dataset
                output_name = result.details.get("output_name")
                if output_name:
                    entry.output_name = output_name
