"""
Tests for exporting cleaned files and reports.
"""

import json

import polars as pl
import pytest

from trajclean.core import CleaningSession, Exporter, PipelineExecutor
from trajclean.core.dataset import CANONICAL_FIELDS, Dataset
from trajclean.core.exporter import ANOMALY_REPORT_NAME, BATCH_SUMMARY_NAME, LINEAGE_NAME, order_fields


@pytest.fixture
def exported(corpus_dir, test_profile, tmp_path):
    session = CleaningSession(test_profile)
    session.add_directory(corpus_dir)
    run = PipelineExecutor(workers=2).run(session)
    result = Exporter(tmp_path / "clean").export(session, run)
    return session, run, result


def test_writes_resequenced_files(exported):
    _, _, result = exported
    assert [p.name for p in result.datasets] == ["test 1.csv", "test 2.csv", "test 3.csv"]
    frame = pl.read_csv(result.datasets[0])
    assert frame.columns == list(CANONICAL_FIELDS)
    assert frame.height == 70


def test_batch_summary(exported):
    session, run, result = exported
    summary = json.loads((result.output_dir / BATCH_SUMMARY_NAME).read_text())

    assert summary["run_id"] == run.run_id
    assert summary["files_total"] == 4
    assert summary["files_exported"] == 3
    assert summary["original_records"] == 480
    assert summary["exported_records"] == 210
    assert summary["data_reduction_percent"] == pytest.approx(56.25)
    assert summary["exclusions_by_stage"] == {
        "static_flight_detector": {
            "count": 1,
            "files": [{"file_name": "ground_test.csv", "reason": session.entry("ground_test.csv").exclusion_reason}],
        }
    }
    assert [f["file_name"] for f in summary["excluded_files"]] == ["ground_test.csv"]
    assert summary["profile"] == session.profile.to_dict()


def test_excluded_file_listed_once(exported):
    _, _, result = exported
    names = [f["file_name"] for f in result.summary["excluded_files"]]
    assert names.count("ground_test.csv") == 1
    assert "ground_test.csv" not in [f["source_name"] for f in result.summary["exported_files"]]


def test_anomaly_report_and_lineage(exported):
    session, _, result = exported
    report = json.loads((result.output_dir / ANOMALY_REPORT_NAME).read_text())
    assert set(report["values"]) == {"flight_a.csv", "flight_b.csv", "flight_c.csv"}
    assert report["statistics"] == "leave_one_out"

    lineage = pl.read_parquet(result.output_dir / LINEAGE_NAME)
    assert lineage.height == len(session.lineage)


def test_no_anomaly_report_without_detector(moving_csv, tmp_path, test_profile):
    profile = test_profile.with_stage("anomaly_detector", enabled=False)
    session = CleaningSession(profile)
    session.add_bytes("a.csv", moving_csv)
    PipelineExecutor().run(session)

    result = Exporter(tmp_path, write_lineage=False).export(session)
    assert not (tmp_path / ANOMALY_REPORT_NAME).exists()
    assert not (tmp_path / LINEAGE_NAME).exists()
    assert [p.name for p in result.datasets] == ["test 1.csv"]


def test_source_name_used_without_resequencer(moving_csv, tmp_path, test_profile):
    profile = test_profile.with_stage("resequencer", enabled=False)
    session = CleaningSession(profile)
    session.add_bytes("flight_07.csv", moving_csv)
    PipelineExecutor().run(session)

    result = Exporter(tmp_path).export(session)
    assert [p.name for p in result.datasets] == ["flight_07.csv"]


def test_order_fields_puts_canonical_first():
    ds = Dataset.from_records([{"extra": 1, "vg": 2.0, "sec": 0.0}], fields=["extra", "vg", "sec"])
    assert order_fields(ds).columns == ["sec", "vg", "extra"]
