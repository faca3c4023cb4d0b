"""
Persist run reports: JSON file (source of truth), optional CSV/HTML views,
and an audit row in `run_reports`
"""

from pathlib import Path
from typing import List, Optional
import logging
import os
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from models.base import RunKind
from models.run_report import RunReportRecord
from schemas.reports import RunReport
from analytics.renderers import FILE_EXTENSIONS, render

logger = logging.getLogger(__name__)


class ReportStore:
    """Write reports to the report directory and record them in the database"""

    def __init__(
        self,
        session_maker: async_sessionmaker,
        directory: Optional[str] = None,
        formats: Optional[List[str]] = None
    ):
        self.session_maker = session_maker
        self.directory = Path(directory or settings.REPORT_DIR)
        self.formats = list(formats if formats is not None else settings.REPORT_FORMATS)

    def _write(self, path: Path, content: str):
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + f".tmp.{uuid.uuid4().hex[:8]}")
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)

    async def save(self, report: RunReport) -> Path:
        """Write every configured format (JSON always) and the audit row"""
        json_path = self.directory / f"{report.id}.json"
        self._write(json_path, render(report, "json"))

        for fmt in self.formats:
            if fmt == "json" or fmt not in FILE_EXTENSIONS:
                continue
            self._write(self.directory / f"{report.id}.{FILE_EXTENSIONS[fmt]}", render(report, fmt))

        async with self.session_maker() as session:
            session.add(RunReportRecord(
                report_id=report.id,
                kind=report.kind,
                status=report.status,
                created_at=report.timestamp,
                duration_ms=report.duration_ms,
                error_count=len(report.errors),
                warning_count=len(report.warnings),
                error_message=report.errors[0] if report.errors else None,
                report_path=str(json_path),
                report=report.model_dump(mode="json"),
            ))
            await session.commit()

        logger.info(f"Report {report.id} saved to {json_path}")
        return json_path

    async def latest(self, kind: Optional[RunKind] = None) -> Optional[RunReport]:
        query = select(RunReportRecord).order_by(RunReportRecord.created_at.desc(), RunReportRecord.id.desc())
        if kind is not None:
            query = query.where(RunReportRecord.kind == kind)
        async with self.session_maker() as session:
            record = (await session.execute(query.limit(1))).scalar_one_or_none()
        return RunReport.model_validate(record.report) if record else None

    async def recent(self, limit: int = 10) -> List[RunReportRecord]:
        query = select(RunReportRecord).order_by(RunReportRecord.created_at.desc()).limit(limit)
        async with self.session_maker() as session:
            return list((await session.execute(query)).scalars().all())
