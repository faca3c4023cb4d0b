from analytics.collector import AnalyticsCollector, determine_status
from analytics.renderers import render
from analytics.report_store import ReportStore

__all__ = ["AnalyticsCollector", "determine_status", "render", "ReportStore"]
