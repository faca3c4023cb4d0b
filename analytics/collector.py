"""
Run analytics - live progress tracking and end-of-run reports.

This module provides:
- Real-time progress for the current run (monotonic, clamped, with ETA)
- Content metrics computed from repository aggregates
- Completeness and SEO scores
- Threshold-based recommendations
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional
import logging
import math
import uuid

from core.clock import utcnow
from models.base import EntityType, RunKind, RunStatus
from repository.content_repository import AggregateQuery, ContentRepository
from schemas.reports import ContentMetrics, QualityMetrics, RealTimeMetrics, RunReport, SeoMetrics

logger = logging.getLogger(__name__)

# Weights of each field in the content completeness score (sum to 100)
COMPLETENESS_WEIGHTS = {
    "title": 20,
    "content_mdx": 30,
    "excerpt": 15,
    "tags": 15,
    "cover_url": 10,
    "meta_title": 5,
    "meta_description": 5,
}

# Recommendation thresholds (percent of articles)
META_TITLE_THRESHOLD = 80
META_DESCRIPTION_THRESHOLD = 80
COVER_IMAGE_THRESHOLD = 50
TAGS_THRESHOLD = 70
SLOW_RECORD_MS = 5000

HISTORY_LIMIT = 50


def determine_status(succeeded: int, failed: int, fatal: bool = False) -> RunStatus:
    """success: nothing failed; partial: some of each; failed: fatal or nothing succeeded"""
    if fatal:
        return RunStatus.FAILED
    if failed == 0:
        return RunStatus.SUCCESS
    if succeeded > 0:
        return RunStatus.PARTIAL
    return RunStatus.FAILED


def _rate(count: int, total: int) -> float:
    return count / total * 100 if total else 0.0


class AnalyticsCollector:
    """
    Observe runs and produce immutable reports.

    Only this class mutates the live RealTimeMetrics; callers receive copies.
    """

    def __init__(self, repository: ContentRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock
        self._current: Optional[RealTimeMetrics] = None
        self._batch_size: Optional[int] = None
        self.last_run: Optional[RealTimeMetrics] = None
        self.history: List[ContentMetrics] = []

    # ------------------------------------------------------------------
    # Real-time tracking
    # ------------------------------------------------------------------

    def start_run(self, operation: str, total_units: int, batch_size: Optional[int] = None) -> RealTimeMetrics:
        total_units = max(int(total_units or 0), 0)
        self._batch_size = batch_size if batch_size and batch_size > 0 else None
        self._current = RealTimeMetrics(
            operation=operation,
            total=total_units,
            start_time=self.clock(),
            total_batches=math.ceil(total_units / self._batch_size) if self._batch_size else 0,
        )
        logger.info(f"Tracking {operation}: {total_units} units")
        return self._current.model_copy()

    def update_run(self, delta: int = 1, errors: int = 0, warnings: int = 0) -> RealTimeMetrics:
        """Advance the current run; processed never decreases"""
        if self._current is None:
            raise RuntimeError("No run in progress")
        if delta < 0 or errors < 0 or warnings < 0:
            raise ValueError("Progress deltas must be non-negative")

        metrics = self._current
        metrics.processed += delta
        metrics.errors += errors
        metrics.warnings += warnings

        if metrics.total > 0:
            metrics.progress = min(max(metrics.processed / metrics.total * 100, 0.0), 100.0)
        else:
            metrics.progress = 0.0

        if self._batch_size:
            metrics.current_batch = math.ceil(metrics.processed / self._batch_size)

        metrics.estimated_completion = self._estimate_completion(metrics)
        logger.debug(f"Progress: {metrics.progress:.1f}% ({metrics.processed}/{metrics.total})")
        return metrics.model_copy()

    def _estimate_completion(self, metrics: RealTimeMetrics) -> Optional[datetime]:
        """start + per-unit time x total; None until something was processed"""
        if metrics.processed <= 0:
            return None
        elapsed = (self.clock() - metrics.start_time).total_seconds()
        per_unit = elapsed / metrics.processed
        return metrics.start_time + timedelta(seconds=per_unit * max(metrics.total, metrics.processed))

    def stop_run(self) -> Optional[RealTimeMetrics]:
        if self._current is None:
            return None
        self.last_run = self._current.model_copy()
        self._current = None
        logger.info(f"Tracking complete for {self.last_run.operation}")
        return self.last_run

    def current_metrics(self) -> Optional[RealTimeMetrics]:
        return self._current.model_copy() if self._current is not None else None

    # ------------------------------------------------------------------
    # Content metrics
    # ------------------------------------------------------------------

    async def collect_metrics(self) -> ContentMetrics:
        """Aggregate the content store through the repository"""
        article_fields = ["title", "content_mdx", "excerpt", "tags", "cover_url",
                          "meta_title", "meta_description", "og_image_url", "series_id"]

        articles = await self.repository.aggregate(EntityType.ARTICLE, AggregateQuery(
            group_by="status",
            count_non_null=article_fields,
            averages=["reading_minutes", "content_length"],
        ))
        visibility = await self.repository.aggregate(EntityType.ARTICLE, AggregateQuery(group_by="visibility"))
        by_tag = await self.repository.aggregate(EntityType.ARTICLE, AggregateQuery(group_by="tag"))
        by_series = await self.repository.aggregate(EntityType.ARTICLE, AggregateQuery(group_by="series"))
        by_author = await self.repository.aggregate(EntityType.ARTICLE, AggregateQuery(group_by="author"))
        tags = await self.repository.aggregate(EntityType.TAG, AggregateQuery())
        series = await self.repository.aggregate(EntityType.SERIES, AggregateQuery())
        users = await self.repository.aggregate(EntityType.USER, AggregateQuery())

        total = articles.total
        present = articles.non_null

        seo = SeoMetrics(
            articles_with_meta_title=present.get("meta_title", 0),
            articles_with_meta_description=present.get("meta_description", 0),
            articles_with_og_image=present.get("og_image_url", 0),
            meta_title_rate=_rate(present.get("meta_title", 0), total),
            meta_description_rate=_rate(present.get("meta_description", 0), total),
            og_image_rate=_rate(present.get("og_image_url", 0), total),
        )
        seo.average_seo_score = (seo.meta_title_rate + seo.meta_description_rate + seo.og_image_rate) / 3

        # Mean of per-article weighted sums == weighted sum of presence rates
        completeness = sum(
            weight * _rate(present.get(field, 0), total) / 100
            for field, weight in COMPLETENESS_WEIGHTS.items()
        )

        quality = QualityMetrics(
            articles_with_cover=present.get("cover_url", 0),
            articles_with_tags=present.get("tags", 0),
            articles_with_series=present.get("series_id", 0),
            articles_with_excerpt=present.get("excerpt", 0),
            average_reading_time=articles.averages.get("reading_minutes", 0.0) if total else 0.0,
            average_content_length=articles.averages.get("content_length", 0.0) if total else 0.0,
            content_completeness=completeness,
        )

        metrics = ContentMetrics(
            total_articles=total,
            total_tags=tags.total,
            total_series=series.total,
            total_users=users.total,
            status_distribution=articles.groups,
            visibility_distribution=visibility.groups,
            tag_distribution=by_tag.groups,
            series_distribution=by_series.groups,
            author_distribution=by_author.groups,
            seo=seo,
            quality=quality,
        )

        self.history.append(metrics)
        del self.history[:-HISTORY_LIMIT]
        return metrics

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def recommendations(
        self,
        metrics: ContentMetrics,
        errors: List[str],
        warnings: List[str],
        run: Optional[RealTimeMetrics] = None
    ) -> List[str]:
        recommendations = []

        if metrics.total_articles > 0:
            if metrics.seo.meta_title_rate < META_TITLE_THRESHOLD:
                recommendations.append(
                    "Consider adding meta titles to improve SEO for articles without them"
                )
            if metrics.seo.meta_description_rate < META_DESCRIPTION_THRESHOLD:
                recommendations.append(
                    "Consider adding meta descriptions to improve SEO for articles without them"
                )
            if _rate(metrics.quality.articles_with_cover, metrics.total_articles) < COVER_IMAGE_THRESHOLD:
                recommendations.append(
                    "Consider adding cover images to articles to improve visual appeal"
                )
            if _rate(metrics.quality.articles_with_tags, metrics.total_articles) < TAGS_THRESHOLD:
                recommendations.append(
                    "Consider adding tags to articles to improve categorization and discoverability"
                )

        if run is not None and run.processed > 0:
            elapsed_ms = (self.clock() - run.start_time).total_seconds() * 1000
            if elapsed_ms / run.processed > SLOW_RECORD_MS:
                recommendations.append(
                    "Consider optimizing processing time with larger batches"
                )

        if errors:
            recommendations.append("Review and fix run errors to improve success rate")
        if warnings:
            recommendations.append("Address run warnings to improve data quality")

        return recommendations

    async def build_report(
        self,
        kind: RunKind,
        status: RunStatus,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
        duration_ms: Optional[float] = None,
        succeeded: Optional[int] = None,
        failed: Optional[int] = None
    ) -> RunReport:
        """
        Assemble the immutable report for a finished run.

        Success and error rates come from the explicit counts when given,
        otherwise from the tracked run; with nothing processed both are 0.
        """
        errors = list(errors or [])
        warnings = list(warnings or [])
        run = self.current_metrics() or self.last_run
        metrics = await self.collect_metrics()

        if succeeded is None or failed is None:
            processed = run.processed if run else 0
            failed = run.errors if run else 0
            succeeded = max(processed - failed, 0)
        attempted = succeeded + failed

        if duration_ms is None:
            duration_ms = (self.clock() - run.start_time).total_seconds() * 1000 if run else 0.0

        timestamp = self.clock()
        report = RunReport(
            id=f"report_{int(timestamp.replace(tzinfo=timezone.utc).timestamp() * 1000)}_{uuid.uuid4().hex[:9]}",
            timestamp=timestamp,
            kind=RunKind(kind),
            status=RunStatus(status),
            duration_ms=duration_ms,
            metrics=metrics,
            run=run,
            success_rate=_rate(succeeded, attempted),
            error_rate=_rate(failed, attempted),
            errors=errors,
            warnings=warnings,
            recommendations=self.recommendations(metrics, errors, warnings, run),
            data_processed={
                "articles": metrics.total_articles,
                "tags": metrics.total_tags,
                "series": metrics.total_series,
                "users": metrics.total_users,
            },
        )
        logger.info(f"Report {report.id} built ({report.kind.value}, {report.status.value})")
        return report

    def summary(self) -> Dict[str, object]:
        """Snapshot of tracking state for status output"""
        latest = self.history[-1] if self.history else None
        return {
            "current_run": self.current_metrics().model_dump(mode="json") if self._current else None,
            "last_run": self.last_run.model_dump(mode="json") if self.last_run else None,
            "latest_metrics": latest.model_dump(mode="json") if latest else None,
            "history_size": len(self.history),
        }
