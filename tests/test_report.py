"""Tests for report summaries, the session listing and result sinks."""

import argparse
import json
import tempfile
from pathlib import Path

import pytest

from insights_fetcher.errors import NotFound, UpstreamError
from insights_fetcher.models import QueueStatus, RunSummary
from insights_fetcher.queue import QueueItem, QueueStorage
from insights_fetcher.report import SessionReport, run, summarize_report
from insights_fetcher.sinks import JsonFileSink, LogSink, ResultSink

REPORT = {
    "lighthouseResult": {
        "fetchTime": "2024-01-01T00:00:00.000Z",
        "lighthouseVersion": "12.0.0",
        "categories": {
            "performance": {"score": 0.87},
            "accessibility": {"score": 1},
            "best-practices": {"score": 0.5},
            "seo": {"score": None},
        },
    },
}


@pytest.fixture
def tmpdir_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


def test_summarize_report():
    """Test pulling scores out of a report."""
    item = QueueItem(id=1, url="https://e.org/", strategy="MOBILE", status="FETCHED", report=REPORT)

    summary = summarize_report(item)

    assert summary.url == "https://e.org/"
    assert summary.strategy == "MOBILE"
    assert summary.fetch_time == "2024-01-01T00:00:00.000Z"
    assert summary.lighthouse_version == "12.0.0"
    assert summary.performance_score == 87.0
    assert summary.accessibility_score == 100.0
    assert summary.best_practices_score == 50.0
    assert summary.seo_score is None


def test_summarize_field_metrics():
    """Test the real-user metrics from the origin loading experience."""
    report = dict(REPORT)
    report["originLoadingExperience"] = {
        "metrics": {
            "CUMULATIVE_LAYOUT_SHIFT_SCORE": {"percentile": 5, "category": "FAST"},
            "FIRST_CONTENTFUL_PAINT_MS": {"percentile": 1800, "category": "AVERAGE"},
            "LARGEST_CONTENTFUL_PAINT_MS": {"percentile": 4100, "category": "SLOW"},
        },
    }
    item = QueueItem(id=1, url="https://e.org/", strategy="DESKTOP", status="FETCHED", report=report)

    summary = summarize_report(item)

    assert summary.id == "https://e.org/___DESKTOP"
    assert summary.cumulative_layout_shift.percentile == 5
    assert summary.cumulative_layout_shift.category == "FAST"
    assert summary.first_contentful_paint.percentile == 1800
    assert summary.largest_contentful_paint.category == "SLOW"
    assert summary.first_input_delay is None


def test_summarize_opaque_report():

    """Test that an unexpected report shape gives an empty summary, not an error."""
    item = QueueItem(id=1, url="https://e.org/", strategy="DESKTOP", report={"something": "else"})

    summary = summarize_report(item)

    assert summary.performance_score is None
    assert summary.lighthouse_version is None
    assert summary.cumulative_layout_shift is None


def test_session_report_display(tmpdir_path, capsys):
    """Test the console listing of a session."""
    with QueueStorage(db_path=str(tmpdir_path / "session.db")) as storage:
        storage.enqueue([
            {"url": "https://e.org/", "strategy": "DESKTOP"},
            {"url": "https://e.org/", "strategy": "MOBILE"},
        ])
        storage.update_status(1, QueueStatus.FETCHED, None, REPORT)
        storage.update_status(2, QueueStatus.FAILED, "Status 500 returned", None)

        SessionReport(storage).display()

    out = capsys.readouterr().out
    assert "FETCHED" in out
    assert "87" in out
    assert "error: Status 500 returned" in out
    assert "Fetched:      1" in out
    assert "Failed:       1" in out


def test_sinks_satisfy_protocol(tmpdir_path):
    """Test that the shipped sinks implement the sink interface."""
    assert isinstance(LogSink(), ResultSink)
    assert isinstance(JsonFileSink(str(tmpdir_path)), ResultSink)


def test_json_file_sink(tmpdir_path):
    """Test saving reports, errors and the run record to disk."""
    output_dir = tmpdir_path / "reports"
    sink = JsonFileSink(output_dir=str(output_dir))
    item = QueueItem(id=7, url="https://e.org/a/b?c=d", strategy="MOBILE")

    sink.on_begin(["https://e.org/a/b?c=d"])
    sink.store_result(item, REPORT)
    sink.store_error(QueueItem(id=8, url="https://e.org/x", strategy="DESKTOP"), UpstreamError("boom", 500))
    sink.on_end(RunSummary(processed=2, fetched=1, failed=1))

    saved = json.loads(sink.report_path(item).read_text())
    assert sink.report_path(item).name.startswith("7_mobile_")
    assert saved["url"] == "https://e.org/a/b?c=d"
    assert saved["report"] == REPORT

    errors = [json.loads(line) for line in (output_dir / "errors.jsonl").read_text().splitlines()]
    assert errors == [{"id": 8, "url": "https://e.org/x", "strategy": "DESKTOP", "error": "boom"}]

    run = json.loads((output_dir / "run.json").read_text())
    assert run["state"] == "done"
    assert run["fetched"] == 1


def test_json_file_sink_fatal(tmpdir_path):
    """Test that a fatal run is recorded."""
    sink = JsonFileSink(output_dir=str(tmpdir_path / "reports"))
    sink.on_fatal(RuntimeError("sitemap unavailable"))

    run = json.loads((tmpdir_path / "reports" / "run.json").read_text())
    assert run == {"state": "fatal", "finished_at": run["finished_at"], "error": "sitemap unavailable"}


def test_report_missing_database(tmpdir_path):
    """Test that listing a session that does not exist leaves no file behind."""
    args = argparse.Namespace(db=str(tmpdir_path / "typo.db"), status=None, limit=None)

    with pytest.raises(NotFound):
        run(args)

    assert not (tmpdir_path / "typo.db").exists()
