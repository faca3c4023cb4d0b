"""
Integration tests for content metrics and persisted reports
"""

import pytest
from analytics.collector import AnalyticsCollector
from analytics.report_store import ReportStore
from migration.engine import MigrationEngine
from models.base import EntityType, RunKind, RunStatus
from schemas.results import MigrationOptions


@pytest.mark.asyncio
async def test_collect_metrics_after_migration(repository, fake_client):
    await MigrationEngine(repository, fake_client).migrate(MigrationOptions(batch_size=10))
    collector = AnalyticsCollector(repository)

    metrics = await collector.collect_metrics()

    assert metrics.total_articles == 5
    assert metrics.total_tags == 2
    assert metrics.total_series == 1
    assert metrics.total_users == 1
    assert metrics.status_distribution == {"PUBLISHED": 4, "DRAFT": 1}
    assert metrics.tag_distribution == {"Python": 4, "asyncio": 1}
    assert metrics.series_distribution == {"Async Python": 2}
    assert metrics.author_distribution == {"Admin User": 5}
    assert metrics.seo.meta_title_rate == 100.0
    assert metrics.seo.og_image_rate == 0.0
    assert metrics.seo.average_seo_score == pytest.approx(200 / 3)
    assert metrics.quality.articles_with_cover == 4
    assert metrics.quality.articles_with_tags == 4
    assert metrics.quality.articles_with_series == 2
    assert metrics.quality.average_reading_time == 1.0
    assert 0 < metrics.quality.content_completeness < 100
    assert len(collector.history) == 1


@pytest.mark.asyncio
async def test_empty_store_metrics(repository):
    metrics = await AnalyticsCollector(repository).collect_metrics()

    assert metrics.total_articles == 0
    assert metrics.seo.average_seo_score == 0.0
    assert metrics.quality.content_completeness == 0.0


@pytest.mark.asyncio
async def test_recommendations_for_sparse_content(repository):
    await repository.create(EntityType.ARTICLE, {"title": "Bare", "slug": "bare", "content_mdx": "text"})
    collector = AnalyticsCollector(repository)

    report = await collector.build_report(RunKind.AUDIT, RunStatus.SUCCESS, errors=["boom"], duration_ms=1.0)

    assert any("meta titles" in r for r in report.recommendations)
    assert any("meta descriptions" in r for r in report.recommendations)
    assert any("cover images" in r for r in report.recommendations)
    assert any("tags" in r for r in report.recommendations)
    assert any("run errors" in r for r in report.recommendations)


@pytest.mark.asyncio
async def test_report_rates_from_explicit_counts(repository):
    report = await AnalyticsCollector(repository).build_report(
        RunKind.MIGRATION, RunStatus.PARTIAL, duration_ms=5.0, succeeded=3, failed=1
    )

    assert report.success_rate == 75.0
    assert report.error_rate == 25.0
    assert report.id.startswith("report_")


@pytest.mark.asyncio
async def test_report_rates_with_nothing_processed(repository):
    report = await AnalyticsCollector(repository).build_report(RunKind.SYNC, RunStatus.SUCCESS)

    assert report.success_rate == 0.0
    assert report.error_rate == 0.0


@pytest.mark.asyncio
async def test_report_store_persists_files_and_row(repository, session_maker, tmp_path):
    store = ReportStore(session_maker, directory=str(tmp_path / "reports"), formats=["json", "csv", "html"])
    report = await AnalyticsCollector(repository).build_report(RunKind.BACKUP, RunStatus.SUCCESS, duration_ms=2.0)

    json_path = await store.save(report)

    assert json_path.exists()
    assert (tmp_path / "reports" / f"{report.id}.csv").exists()
    assert (tmp_path / "reports" / f"{report.id}.html").exists()
    assert (await store.latest()).id == report.id
    assert (await store.latest(RunKind.MIGRATION)) is None
    recent = await store.recent()
    assert recent[0].report_id == report.id


@pytest.mark.asyncio
async def test_runner_report_without_runs_audits_store(runner):
    result = await runner.report("table")

    assert result.success is True
    assert "Report ID" in result.data["content"]
    assert (await runner.reports.latest()).kind == RunKind.AUDIT


@pytest.mark.asyncio
async def test_runner_report_unknown_format(runner):
    result = await runner.report("pdf")

    assert result.success is False
