"""
Tests for CleaningSession file and profile management.
"""

import pytest

from trajclean.core import CleaningSession, Exporter, PipelineExecutor
from trajclean.core.cache import CORPUS_OWNER
from trajclean.core.errors import ConfigError
from trajclean.models.profile import CleaningProfile


def test_add_directory_in_sorted_order(corpus_dir, test_profile):
    session = CleaningSession(test_profile)
    entries = session.add_directory(corpus_dir)

    assert [e.name for e in entries] == ["flight_a.csv", "flight_b.csv", "flight_c.csv", "ground_test.csv"]
    assert [e.order for e in session.files] == [0, 1, 2, 3]
    assert all(e.raw_size > 0 for e in entries)


def test_input_order_is_insertion_order(test_profile, moving_csv):
    session = CleaningSession(test_profile)
    for name in ("c.csv", "a.csv", "b.csv"):
        session.add_bytes(name, moving_csv)
    assert [e.name for e in session.files] == ["c.csv", "a.csv", "b.csv"]


def test_duplicate_name_rejected(test_profile, moving_csv):
    session = CleaningSession(test_profile)
    session.add_bytes("a.csv", moving_csv)
    with pytest.raises(ValueError, match="already"):
        session.add_bytes("a.csv", moving_csv)


def test_remove_file_evicts_cache(test_profile, moving_csv, static_csv):
    session = CleaningSession(test_profile)
    session.add_bytes("a.csv", moving_csv)
    session.add_bytes("b.csv", static_csv)
    PipelineExecutor(workers=1).run(session)
    assert session.cache.keys_for("b.csv")

    evicted = session.remove_file("b.csv")

    assert evicted > 0
    assert "b.csv" not in session
    assert session.cache.keys_for("b.csv") == set()
    assert session.cache.keys_for("a.csv")


def test_update_stage_reports_downstream_stages(test_profile):
    session = CleaningSession(test_profile)
    stale = session.update_stage("static_sample_remover", speed_threshold=1.0)
    assert stale == ["static_sample_remover", "quaternion_column_remover", "anomaly_detector", "resequencer"]
    assert session.profile.stage("static_sample_remover").parameters.speed_threshold == 1.0


def test_update_stage_toggle(test_profile):
    session = CleaningSession(test_profile)
    assert session.update_stage("resequencer", enabled=False) == ["resequencer"]


def test_set_identical_profile_is_noop(test_profile):
    session = CleaningSession(test_profile)
    assert session.set_profile(CleaningProfile.from_dict(test_profile.to_dict())) == []


def test_update_stage_invalid_parameter(test_profile):
    session = CleaningSession(test_profile)
    with pytest.raises(ConfigError):
        session.update_stage("anomaly_detector", threshold_sigma=-1)
    assert session.profile == test_profile


def test_surviving_yields_names_and_datasets(corpus_dir, test_profile):
    session = CleaningSession(test_profile)
    session.add_directory(corpus_dir)
    PipelineExecutor(workers=2).run(session)

    surviving = list(session.surviving())
    assert [name for name, _ in surviving] == ["flight_a.csv", "flight_b.csv", "flight_c.csv"]
    assert all(ds.height == 70 for _, ds in surviving)
    assert [e.name for e in session.excluded()] == ["ground_test.csv"]


def test_recursive_directory_keeps_equal_names_apart(tmp_path, test_profile, moving_csv):
    for day in ("day1", "day2"):
        (tmp_path / "raw" / day).mkdir(parents=True)
        (tmp_path / "raw" / day / "log.csv").write_bytes(moving_csv)
    profile = test_profile.with_stage("resequencer", enabled=False)
    session = CleaningSession(profile)

    entries = session.add_directory(tmp_path / "raw", recursive=True)
    assert [e.name for e in entries] == ["day1/log.csv", "day2/log.csv"]

    run = PipelineExecutor(workers=2).run(session)
    assert len(run.survivors) == 2
    Exporter(tmp_path / "out").export(session, run)
    assert (tmp_path / "out" / "day1" / "log.csv").exists()
    assert (tmp_path / "out" / "day2" / "log.csv").exists()


def test_remove_file_evicts_corpus_results(test_profile, corpus_dir):
    session = CleaningSession(test_profile)
    session.add_directory(corpus_dir)
    PipelineExecutor(workers=1).run(session)
    assert session.cache.keys_for(CORPUS_OWNER)

    session.remove_file("flight_a.csv")

    assert session.cache.keys_for(CORPUS_OWNER) == set()
    run = PipelineExecutor(workers=1).run(session)
    assert "anomaly_detector" in run.recomputed_stages()
    assert [e.name for e in run.survivors] == ["flight_b.csv", "flight_c.csv"]
