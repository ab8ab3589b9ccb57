"""
Tests for the append-only lineage tracker.
"""

import polars as pl

from trajclean.core.dataset import Dataset, StageResult
from trajclean.core.lineage import LineageTracker


def _ds(n):
    return Dataset.from_records([{"sec": float(i)} for i in range(n)], fields=["sec"])


def _record_run(tracker, name="a.csv", run_id="run1"):
    buffer = tracker.begin(name, run_id)
    buffer.record(-1, {"enabled": True, "parameters": {}}, StageResult.applied("ingest", _ds(10), _ds(10)))
    buffer.record(0, {"enabled": True, "parameters": {"window_size": 5}},
                  StageResult.applied("static_start_trimmer", _ds(10), _ds(6)))
    buffer.record(1, {"enabled": True, "parameters": {}},
                  StageResult.exclude("static_flight_detector", _ds(6), "static flight", flags=("static",)))
    return buffer


def test_entries_visible_only_after_commit():
    tracker = LineageTracker()
    buffer = _record_run(tracker)
    assert len(tracker) == 0

    tracker.commit(buffer)
    assert len(tracker) == 3
    assert tracker.files() == ["a.csv"]


def test_entry_fields():
    tracker = LineageTracker()
    tracker.commit(_record_run(tracker))
    ingest, trim, static = tracker.entries("a.csv")

    assert ingest.position == -1
    assert trim.input_count == 10
    assert trim.output_count == 6
    assert trim.removed == 4
    assert static.excluded
    assert static.output_count == 0
    assert static.reason == "static flight"
    assert static.flags == ("static",)


def test_entries_filtered_by_run():
    tracker = LineageTracker()
    tracker.commit(_record_run(tracker, run_id="run1"))
    tracker.commit(_record_run(tracker, run_id="run2"))
    assert len(tracker.entries("a.csv")) == 6
    assert {e.run_id for e in tracker.entries(run_id="run2")} == {"run2"}


def test_diff():
    tracker = LineageTracker()
    tracker.commit(_record_run(tracker))
    diff = tracker.diff("a.csv")

    assert [(d["from_stage"], d["to_stage"]) for d in diff] == [
        ("ingest", "static_start_trimmer"),
        ("static_start_trimmer", "static_flight_detector"),
    ]
    assert diff[0]["record_delta"] == -4
    assert diff[1]["status_changed"] is True
    assert diff[1]["reason"] == "static flight"


def test_to_frame_and_parquet(tmp_path):
    tracker = LineageTracker()
    assert tracker.to_frame().height == 0

    tracker.commit(_record_run(tracker))
    frame = tracker.to_frame()
    assert frame.height == 3
    assert frame.schema["position"] == pl.Int64
    assert frame.filter(pl.col("stage_id") == "static_flight_detector")["flags"].to_list() == ["static"]

    path = tracker.write_parquet(tmp_path / "lineage.parquet")
    assert pl.read_parquet(path).height == 3
    assert not list(tmp_path.glob("*.tmp"))
