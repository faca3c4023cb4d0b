"""
Unit tests for run tracking and report rendering
"""

import csv
import io
import json
import pytest
from datetime import datetime, timedelta
from analytics.collector import AnalyticsCollector, determine_status
from analytics.renderers import render
from models.base import RunKind, RunStatus
from schemas.reports import ContentMetrics, RunReport

START = datetime(2024, 1, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def collector(clock):
    # Progress tracking never touches the repository
    return AnalyticsCollector(repository=None, clock=clock)


class TestProgress:

    def test_progress_and_batches(self, collector):
        collector.start_run("migration", 10, batch_size=4)
        metrics = collector.update_run(5)

        assert metrics.progress == 50.0
        assert metrics.current_batch == 2
        assert metrics.total_batches == 3

    def test_progress_clamped(self, collector):
        collector.start_run("migration", 2)
        metrics = collector.update_run(5)

        assert metrics.progress == 100.0
        assert metrics.processed == 5

    def test_zero_total_reports_zero_progress(self, collector):
        collector.start_run("migration", 0)
        assert collector.update_run(3).progress == 0.0

    def test_negative_delta_rejected(self, collector):
        collector.start_run("migration", 10)
        collector.update_run(4)

        with pytest.raises(ValueError):
            collector.update_run(-1)
        assert collector.current_metrics().processed == 4

    def test_update_without_run(self, collector):
        with pytest.raises(RuntimeError):
            collector.update_run(1)

    def test_eta(self, collector, clock):
        collector.start_run("migration", 10)
        assert collector.current_metrics().estimated_completion is None

        clock.advance(20)
        metrics = collector.update_run(2)

        # 10 seconds per unit, 10 units
        assert metrics.estimated_completion == START + timedelta(seconds=100)

    def test_returned_metrics_are_copies(self, collector):
        collector.start_run("migration", 10)
        metrics = collector.update_run(1)
        metrics.processed = 999

        assert collector.current_metrics().processed == 1

    def test_stop_run_keeps_last_run(self, collector):
        collector.start_run("sync", 3)
        collector.update_run(3, errors=1)
        last = collector.stop_run()

        assert last.errors == 1
        assert collector.current_metrics() is None
        assert collector.summary()["last_run"]["processed"] == 3


@pytest.mark.parametrize("succeeded,failed,fatal,expected", [
    (5, 0, False, RunStatus.SUCCESS),
    (0, 0, False, RunStatus.SUCCESS),
    (3, 2, False, RunStatus.PARTIAL),
    (0, 2, False, RunStatus.FAILED),
    (5, 0, True, RunStatus.FAILED),
])
def test_determine_status(succeeded, failed, fatal, expected):
    assert determine_status(succeeded, failed, fatal) == expected


@pytest.fixture
def report():
    return RunReport(
        id="report_1704110400000_abcdef012",
        timestamp=START,
        kind=RunKind.MIGRATION,
        status=RunStatus.PARTIAL,
        duration_ms=1234.0,
        metrics=ContentMetrics(total_articles=3, status_distribution={"PUBLISHED": 2, "DRAFT": 1}),
        success_rate=66.7,
        error_rate=33.3,
        errors=["hn-9: <script>alert(1)</script>"],
        recommendations=["Consider adding tags"],
    )


class TestRenderers:

    def test_json_round_trips(self, report):
        assert RunReport.model_validate(json.loads(render(report, "json"))) == report

    def test_csv(self, report):
        rows = list(csv.reader(io.StringIO(render(report, "csv"))))
        assert rows[0] == ["Metric", "Value"]
        assert ["Status", "partial"] in rows
        assert ["Status: PUBLISHED", "2"] in rows
        assert ["Recommendation", "Consider adding tags"] in rows

    def test_html_escapes_values(self, report):
        page = render(report, "html")
        assert "<script>" not in page
        assert "&lt;script&gt;" in page
        assert "Migration Report" in page

    def test_table(self, report):
        table = render(report, "table")
        assert "Report ID" in table
        assert "- Consider adding tags" in table

    def test_unknown_format(self, report):
        with pytest.raises(ValueError):
            render(report, "pdf")
