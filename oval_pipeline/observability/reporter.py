"""
Markdown run reports.

RunReporter renders a RunMetrics object (and, for cache builds, the
quality check results) as a short Markdown document: a metadata header,
a summary table for the run mode, the severity mix of the cached
dataset, quality checks, and source health. Tables use tabulate's
GitHub format so reports render on any Markdown viewer and diff cleanly
when kept under version control.
"""
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from tabulate import tabulate

from ..ingestion.base_adapter import Severity
from .metrics import RunMetrics
from .quality_checks import QualityCheckResult

SEVERITY_ORDER = [s.value for s in Severity]

PASS_MARK = "✓"
FAIL_MARK = "✗"


def _table(rows, headers) -> List[str]:
    return [tabulate(rows, headers=headers, tablefmt="github"), ""]


def _mark(ok: bool) -> str:
    return PASS_MARK if ok else FAIL_MARK


class RunReporter:
    """Generates Markdown reports from pipeline run metrics."""

    def generate_report(
        self,
        metrics: RunMetrics,
        quality_results: Optional[List[QualityCheckResult]] = None
    ) -> str:
        """
        Render the full report for one run.

        Args:
            metrics: Metrics of the finished run
            quality_results: Quality check results, if checks were run

        Returns:
            The report as a Markdown string
        """
        sections = [
            self._header(metrics),
            self._summary(metrics),
            self._severities(metrics),
            self._quality(quality_results or []),
            self._health(metrics),
        ]
        return "\n".join(line for section in sections for line in section)

    def _header(self, metrics: RunMetrics) -> List[str]:
        header = [
            "# Pipeline Run Report",
            f"**Run ID:** {metrics.run_id}",
            f"**Mode:** {metrics.mode}",
            f"**Started:** {metrics.started_at.isoformat()}",
        ]
        if metrics.duration_seconds is not None:
            header.append(f"**Duration:** {metrics.duration_seconds:.1f} seconds")
        header.append("")
        return header

    def _summary(self, metrics: RunMetrics) -> List[str]:
        if metrics.mode == "make_cache":
            rows = [
                ("Advisories Listed", metrics.advisories_listed),
                ("Advisories Processed", metrics.advisories_processed),
                ("Vulnerabilities", metrics.vulnerabilities),
                ("Features", metrics.features),
                ("Watermark", metrics.watermark or "-"),
            ]
        else:
            rows = [
                ("Records Seen", metrics.records_seen),
                ("Records Invalid", metrics.records_invalid),
                ("Records Skipped", metrics.records_skipped),
                ("Version Errors", metrics.version_errors),
                ("Report Lines", metrics.report_lines),
                ("Batches Delivered", metrics.batches_delivered),
            ]
        rows.append(("Errors", metrics.errors))
        return ["## Summary"] + _table(rows, ["Metric", "Value"])

    def _severities(self, metrics: RunMetrics) -> List[str]:
        counts = metrics.severity_counts
        rows = [(name, counts[name]) for name in SEVERITY_ORDER if counts.get(name)]
        if not rows:
            return []
        return ["## Severity Distribution"] + _table(rows, ["Severity", "Count"])

    def _quality(self, results: List[QualityCheckResult]) -> List[str]:
        if not results:
            return []
        rows = [(_mark(r.passed), r.check_name, r.message) for r in results]
        return ["## Data Quality Checks"] + _table(rows, ["Status", "Check", "Details"])

    def _health(self, metrics: RunMetrics) -> List[str]:
        if not metrics.source_health:
            return []
        rows = [
            (_mark(h.get("healthy", False)), source, h.get("records", 0), h.get("error") or "")
            for source, h in metrics.source_health.items()
        ]
        return ["## Source Health"] + _table(rows, ["Status", "Source", "Records", "Error"])

    def save_report(self, report: str, output_dir: Union[str, Path]) -> Path:
        """Write the report as run-report-<UTC timestamp>.md under output_dir."""
        target_dir = Path(output_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"run-report-{datetime.utcnow():%Y%m%d-%H%M%S}.md"
        path.write_text(report, encoding="utf-8")
        return path
