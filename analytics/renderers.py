"""
Report renderers: JSON (source of truth), CSV, HTML and a plain-text table
"""

from typing import Callable, Dict, List
import csv
import html
import io

from schemas.reports import RunReport


def render_json(report: RunReport) -> str:
    return report.model_dump_json(indent=2)


def _summary_rows(report: RunReport) -> List[List[str]]:
    metrics = report.metrics
    return [
        ["Report ID", report.id],
        ["Kind", report.kind.value],
        ["Status", report.status.value],
        ["Timestamp", report.timestamp.isoformat()],
        ["Duration (ms)", f"{report.duration_ms:.0f}"],
        ["Success Rate (%)", f"{report.success_rate:.1f}"],
        ["Error Rate (%)", f"{report.error_rate:.1f}"],
        ["Total Articles", str(metrics.total_articles)],
        ["Total Tags", str(metrics.total_tags)],
        ["Total Series", str(metrics.total_series)],
        ["Total Users", str(metrics.total_users)],
        ["Meta Title Rate (%)", f"{metrics.seo.meta_title_rate:.1f}"],
        ["Meta Description Rate (%)", f"{metrics.seo.meta_description_rate:.1f}"],
        ["Average SEO Score", f"{metrics.seo.average_seo_score:.1f}"],
        ["Average Reading Time (min)", f"{metrics.quality.average_reading_time:.1f}"],
        ["Content Completeness (%)", f"{metrics.quality.content_completeness:.1f}"],
        ["Errors", str(len(report.errors))],
        ["Warnings", str(len(report.warnings))],
    ]


def render_csv(report: RunReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Metric", "Value"])
    writer.writerows(_summary_rows(report))
    for name, count in sorted(report.metrics.status_distribution.items()):
        writer.writerow([f"Status: {name}", count])
    for recommendation in report.recommendations:
        writer.writerow(["Recommendation", recommendation])
    return buffer.getvalue()


def _html_list(title: str, css_class: str, items: List[str]) -> str:
    if not items:
        return ""
    entries = "".join(f"<li>{html.escape(item)}</li>" for item in items)
    return f'<div class="{css_class}"><h3>{title}</h3><ul>{entries}</ul></div>'


def render_html(report: RunReport) -> str:
    """Standalone HTML page; every interpolated value is escaped"""
    cards = "".join(
        f'<div class="metric-card"><div class="metric-value">{html.escape(value)}</div>'
        f'<div class="metric-label">{html.escape(label)}</div></div>'
        for label, value in _summary_rows(report)[7:11]
    )
    status = html.escape(report.status.value)
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Run Report - {html.escape(report.id)}</title>
    <style>
        body {{ font-family: Arial, sans-serif; margin: 20px; }}
        .header {{ background: #f5f5f5; padding: 20px; border-radius: 5px; }}
        .metrics {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 20px; margin: 20px 0; }}
        .metric-card {{ border: 1px solid #ddd; padding: 15px; border-radius: 5px; }}
        .metric-value {{ font-size: 24px; font-weight: bold; }}
        .recommendations {{ background: #e8f4fd; padding: 15px; border-radius: 5px; }}
        .error, .failed {{ color: #d32f2f; }}
        .warning, .partial {{ color: #f57c00; }}
        .success {{ color: #388e3c; }}
    </style>
</head>
<body>
    <div class="header">
        <h1>{html.escape(report.kind.value.title())} Report</h1>
        <p><strong>Report ID:</strong> {html.escape(report.id)}</p>
        <p><strong>Status:</strong> <span class="{status}">{status}</span></p>
        <p><strong>Timestamp:</strong> {html.escape(report.timestamp.isoformat())}</p>
        <p><strong>Duration:</strong> {report.duration_ms:.0f}ms</p>
        <p><strong>Success Rate:</strong> {report.success_rate:.1f}%</p>
    </div>
    <div class="metrics">{cards}</div>
    {_html_list("Recommendations", "recommendations", report.recommendations)}
    {_html_list("Errors", "error", report.errors)}
    {_html_list("Warnings", "warning", report.warnings)}
</body>
</html>
"""


def render_table(report: RunReport) -> str:
    rows = _summary_rows(report)
    width = max(len(label) for label, _ in rows)
    lines = [f"{label.ljust(width)}  {value}" for label, value in rows]
    for recommendation in report.recommendations:
        lines.append(f"- {recommendation}")
    return "\n".join(lines)


RENDERERS: Dict[str, Callable[[RunReport], str]] = {
    "json": render_json,
    "csv": render_csv,
    "html": render_html,
    "table": render_table,
}

FILE_EXTENSIONS = {"json": "json", "csv": "csv", "html": "html"}


def render(report: RunReport, fmt: str) -> str:
    try:
        return RENDERERS[fmt](report)
    except KeyError:
        raise ValueError(f"Unknown report format '{fmt}' (expected one of {', '.join(RENDERERS)})")
