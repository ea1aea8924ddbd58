"""Durable report artifacts written next to each other in a reports directory."""

from __future__ import annotations

from pathlib import Path

import structlog

from .report import Report, format_report_markdown

logger = structlog.get_logger(__name__)


def _write_atomic(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(text, encoding="utf-8")
    tmp.replace(path)


def report_stem(report: Report, prefix: str = "verification-report") -> str:
    ts = report.generated_at.strftime("%Y%m%dT%H%M%S%fZ")
    return f"{prefix}-{ts}"


class JsonReportSink:
    """Writes ``<directory>/verification-report-<timestamp>.json``."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def write(self, report: Report) -> Path:
        path = self.directory / f"{report_stem(report)}.json"
        _write_atomic(path, report.to_json() + "\n")
        logger.info("Saved JSON report", path=str(path))
        return path


class MarkdownReportSink:
    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def write(self, report: Report) -> Path:
        path = self.directory / f"{report_stem(report)}.md"
        _write_atomic(path, format_report_markdown(report))
        logger.info("Saved markdown report", path=str(path))
        return path
