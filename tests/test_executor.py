"""
Tests for PipelineExecutor: the end-to-end behavior of a cleaning run.

Covers idempotence, determinism, cache correctness after edits,
exclusion handling, ingestion failures, ordering and cancellation.
"""

import dataclasses

import pytest

from trajclean.core import CleaningSession, Exporter, PipelineExecutor
from trajclean.core.dataset import StageStatus
from trajclean.core.errors import ConfigError
from trajclean.core.stages import get_stage
from trajclean.core.stages.base import _STAGE_REGISTRY
from trajclean.models.profile import CleaningProfile


def _run(profile, files, workers=2):
    session = CleaningSession(profile)
    for name, content in files:
        session.add_bytes(name, content)
    run = PipelineExecutor(workers=workers).run(session)
    return session, run


@pytest.fixture
def corpus(moving_csv, static_csv, make_csv):
    return [
        ("flight_a.csv", moving_csv),
        ("flight_b.csv", make_csv(n=150, static_prefix=50, step=1.5, speed=3.0)),
        ("ground_test.csv", static_csv),
        ("flight_c.csv", make_csv(n=130, static_prefix=50, step=0.8, speed=1.6)),
    ]


class TestRun:
    def test_survivors_and_exclusions(self, test_profile, corpus):
        session, run = _run(test_profile, corpus)

        assert [e.name for e in run.survivors] == ["flight_a.csv", "flight_b.csv", "flight_c.csv"]
        excluded = session.entry("ground_test.csv")
        assert excluded.excluded_by == "static_flight_detector"
        assert excluded.dataset is None
        assert run.finished_at is not None

    def test_output_names_follow_input_order(self, test_profile, moving_csv):
        session, _ = _run(test_profile, [(n, moving_csv) for n in ("c.csv", "a.csv", "b.csv")])
        names = {e.name: e.output_name for e in session.files}
        assert names == {"c.csv": "test 1.csv", "a.csv": "test 2.csv", "b.csv": "test 3.csv"}

    def test_trim_and_counts(self, test_profile, moving_csv):
        session, _ = _run(test_profile, [("a.csv", moving_csv)])
        entry = session.entry("a.csv")
        assert entry.ingested_count == 120
        assert entry.dataset.height == 70
        assert entry.baseline.record_count == 120

    def test_disabled_stage_is_skipped(self, test_profile, moving_csv):
        profile = test_profile.with_stage("static_start_trimmer", enabled=False)
        session, _ = _run(profile, [("a.csv", moving_csv)])
        entry = session.entry("a.csv")

        trim = next(r for r in entry.results if r.stage_id == "static_start_trimmer")
        assert trim.status is StageStatus.SKIPPED
        # The static prefix still goes, record by record
        assert entry.dataset.height == 70

    def test_unreadable_file_excluded_at_ingest(self, test_profile, moving_csv):
        session, run = _run(test_profile, [("good.csv", moving_csv), ("empty.csv", b"")])
        empty = session.entry("empty.csv")
        assert empty.excluded_by == "ingest"
        assert "empty" in empty.exclusion_reason
        assert [e.name for e in run.survivors] == ["good.csv"]

    def test_missing_positions_excluded_by_schema(self, moving_csv):
        profile = CleaningProfile.from_stages([
            {"stage_id": "header_standardizer", "parameters": {"canonical_fields": ["sec", "vg"]}},
            {"stage_id": "static_flight_detector"},
        ])
        session, _ = _run(profile, [("a.csv", moving_csv)])
        entry = session.entry("a.csv")
        assert entry.excluded_by == "static_flight_detector"
        assert "missing required fields" in entry.exclusion_reason

    def test_invalid_workers(self):
        with pytest.raises(ValueError):
            PipelineExecutor(workers=0)

    def test_progress_callback(self, test_profile, corpus):
        calls = []
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        PipelineExecutor(workers=2, progress_callback=lambda *a: calls.append(a)).run(session)

        assert sorted(c[0] for c in calls) == [1, 2, 3, 4]
        assert all(c[1] == 4 for c in calls)
        statuses = {c[2]: c[3] for c in calls}
        assert statuses["ground_test.csv"] == "excluded"
        assert statuses["flight_a.csv"] == "ok"

    def test_empty_session(self, test_profile):
        session = CleaningSession(test_profile)
        run = PipelineExecutor().run(session)
        assert run.files == []
        assert run.survivors == []


class TestIdempotence:
    def test_cleaning_cleaned_data_changes_nothing(self, test_profile, corpus):
        session, _ = _run(test_profile, corpus)
        cleaned = {name: ds for name, ds in session.surviving()}

        again, _ = _run(test_profile, [(name, ds.to_csv_bytes()) for name, ds in cleaned.items()])
        for name, ds in again.surviving():
            assert ds.equals(cleaned[name]), name
        assert not again.excluded()

    def test_second_run_served_from_cache(self, test_profile, corpus):
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        executor = PipelineExecutor(workers=2)
        first = executor.run(session)
        first_outputs = {name: ds for name, ds in session.surviving()}

        second = executor.run(session)

        assert second.recomputed_stages() == []
        assert second.cache_hits() > 0
        for name, ds in session.surviving():
            assert ds.equals(first_outputs[name])
        assert len(session.lineage.entries(run_id=first.run_id)) == len(session.lineage.entries(run_id=second.run_id))


class TestDeterminism:
    def test_identical_inputs_identical_outputs(self, test_profile, corpus, tmp_path):
        s1, r1 = _run(test_profile, corpus, workers=1)
        s2, r2 = _run(test_profile, corpus, workers=4)

        out1 = Exporter(tmp_path / "one").export(s1, r1)
        out2 = Exporter(tmp_path / "two").export(s2, r2)

        assert [p.name for p in out1.datasets] == [p.name for p in out2.datasets]
        for a, b in zip(out1.datasets, out2.datasets):
            assert a.read_bytes() == b.read_bytes()
        assert r1.anomaly_report.to_dict() == r2.anomaly_report.to_dict()


class TestCacheCorrectness:
    def test_edit_recomputes_only_downstream(self, test_profile, corpus):
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        executor = PipelineExecutor(workers=2)
        executor.run(session)

        stale = session.update_stage("static_sample_remover", speed_threshold=1.7)
        run = executor.run(session)

        assert run.recomputed_stages() == stale
        for entry in run.survivors:
            upstream = [r for r in entry.results if r.stage_id in ("ingest", "size_filter",
                        "header_standardizer", "static_flight_detector", "static_start_trimmer")]
            assert all(r.cached for r in upstream)

        cold, _ = _run(session.profile, corpus)
        warm = dict(session.surviving())
        for name, ds in cold.surviving():
            assert ds.equals(warm[name])
        # flight_c moves at 1.6 m/s and is emptied by the higher threshold
        assert warm["flight_c.csv"].height == 0
        assert warm["flight_b.csv"].height == 100

    def test_corpus_stage_edit_keeps_file_stages_cached(self, test_profile, corpus):
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        executor = PipelineExecutor(workers=2)
        executor.run(session)

        session.update_stage("resequencer", template="flight_{number}.csv", padding=2)
        run = executor.run(session)

        assert run.recomputed_stages() == ["resequencer"]
        assert [e.output_name for e in run.survivors] == ["flight_01.csv", "flight_02.csv", "flight_03.csv"]


class TestExclusionMonotonicity:
    def test_excluded_file_has_no_later_entries(self, test_profile, corpus):
        session, run = _run(test_profile, corpus)

        entries = session.lineage.entries("ground_test.csv", run_id=run.run_id)
        assert entries[-1].excluded
        assert entries[-1].stage_id == "static_flight_detector"
        assert sum(1 for e in entries if e.excluded) == 1
        assert "ground_test.csv" not in run.anomaly_report.values

    def test_anomaly_exclusion_removes_file_from_later_stages(self, test_profile, moving_csv, make_csv):
        profile = test_profile.with_stage("anomaly_detector", exclude=True, metrics=["mean_speed"])
        files = [(f"f{i}.csv", moving_csv) for i in range(4)]
        files.append(("fast.csv", make_csv(n=120, static_prefix=50, speed=40.0)))
        session, run = _run(profile, files)

        fast = session.entry("fast.csv")
        assert fast.excluded_by == "anomaly_detector"
        assert fast.output_name is None
        stages = [e.stage_id for e in session.lineage.entries("fast.csv", run_id=run.run_id)]
        assert "resequencer" not in stages
        assert [e.output_name for e in run.survivors] == ["test 1.csv", "test 2.csv", "test 3.csv", "test 4.csv"]

    def test_bad_profile_refused_before_any_file(self, moving_csv):
        session = CleaningSession(CleaningProfile.default())
        session.add_bytes("a.csv", moving_csv)
        session._profile = CleaningProfile.model_construct(
            name="broken", stages=tuple(reversed(CleaningProfile.default().stages))
        )
        with pytest.raises(ConfigError):
            PipelineExecutor().run(session)
        assert len(session.lineage) == 0


class TestCancellation:
    def test_cancel_discards_corpus_phase(self, test_profile, corpus):
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        executor = PipelineExecutor(workers=1)
        executor.progress_callback = lambda *args: executor.cancel()

        run = executor.run(session)

        assert run.cancelled
        assert run.anomaly_report is None
        assert all(e.output_name is None for e in session.files)
        assert len(run.survivors) + len(run.excluded) + len(run.cancelled_files) == len(corpus)
        for name in run.cancelled_files:
            assert session.lineage.entries(name, run_id=run.run_id) == []

    def test_run_after_cancel_completes(self, test_profile, corpus):
        session = CleaningSession(test_profile)
        for name, content in corpus:
            session.add_bytes(name, content)
        executor = PipelineExecutor(workers=1)
        executor.progress_callback = lambda *args: executor.cancel()
        executor.run(session)

        executor.progress_callback = None
        run = executor.run(session)

        assert not run.cancelled
        assert [e.output_name for e in run.survivors] == ["test 1.csv", "test 2.csv", "test 3.csv"]


class TestInterrupt:
    def test_interrupt_stops_queued_files(self, test_profile, make_csv):
        session = CleaningSession(test_profile)
        for i in range(6):
            session.add_bytes(f"f{i}.csv", make_csv(n=120 + i, static_prefix=50))
        executor = PipelineExecutor(workers=1)

        def interrupt(*args):
            raise KeyboardInterrupt

        executor.progress_callback = interrupt
        with pytest.raises(KeyboardInterrupt):
            executor.run(session)

        assert executor.cancelled
        processed = session.lineage.files()
        assert "f0.csv" in processed
        assert len(processed) <= 2

        executor.progress_callback = None
        run = executor.run(session)
        assert not run.cancelled
        assert len(run.survivors) == 6
        assert sorted(session.lineage.files()) == [f"f{i}.csv" for i in range(6)]


class TestUnexpectedErrors:
    def test_stage_error_excludes_file_at_that_stage(self, test_profile, moving_csv, make_csv, monkeypatch):
        original = get_stage("static_start_trimmer")

        def failing(dataset, params, context=None):
            if context is not None and context.file_name == "bad.csv":
                raise RuntimeError("boom")
            return original.function(dataset, params, context)

        monkeypatch.setitem(
            _STAGE_REGISTRY, "static_start_trimmer", dataclasses.replace(original, function=failing)
        )
        session, run = _run(test_profile, [("good.csv", moving_csv), ("bad.csv", make_csv(n=130, static_prefix=50))])

        bad = session.entry("bad.csv")
        assert bad.excluded_by == "static_start_trimmer"
        assert bad.exclusion_reason == "error: boom"
        last = session.lineage.entries("bad.csv", run_id=run.run_id)[-1]
        assert last.stage_id == "static_start_trimmer"
        assert last.status == "excluded"
        assert last.reason == "error: boom"
        assert [e.name for e in run.survivors] == ["good.csv"]

    def test_ingest_error_is_recorded_and_retried(self, test_profile, moving_csv, make_csv, monkeypatch):
        session = CleaningSession(test_profile)
        session.add_bytes("a.csv", moving_csv)
        session.add_bytes("b.csv", make_csv(n=130, static_prefix=50))
        real_ingest = session.ingestor.ingest

        def flaky(raw, name="<memory>", **kwargs):
            if name == "b.csv":
                raise RuntimeError("decoder crashed")
            return real_ingest(raw, name=name, **kwargs)

        monkeypatch.setattr(session.ingestor, "ingest", flaky)
        run = PipelineExecutor(workers=1).run(session)

        entry = session.entry("b.csv")
        assert entry.excluded_by == "ingest"
        [lineage] = session.lineage.entries("b.csv", run_id=run.run_id)
        assert lineage.position == -1
        assert lineage.reason == "error: decoder crashed"

        monkeypatch.setattr(session.ingestor, "ingest", real_ingest)
        rerun = PipelineExecutor(workers=1).run(session)
        assert [e.name for e in rerun.survivors] == ["a.csv", "b.csv"]
