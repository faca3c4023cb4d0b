from sqlalchemy import Column, Integer, String, Enum, DateTime, Float, Text
from core.clock import utcnow
from models.base import Base, JSONType, RunKind, RunStatus


class RunReportRecord(Base):
    """
    Audit trail of every operator run.

    Purpose:
    - Queryable history next to the JSON report files
    - Status page and "latest report" lookups
    """
    __tablename__ = "run_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String(100), nullable=False, unique=True, index=True)

    kind = Column(Enum(RunKind), nullable=False, index=True)
    status = Column(Enum(RunStatus), nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    duration_ms = Column(Float, nullable=True)

    error_count = Column(Integer, default=0)
    warning_count = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)

    report_path = Column(String(1024), nullable=True)
    report = Column(JSONType, nullable=False)
