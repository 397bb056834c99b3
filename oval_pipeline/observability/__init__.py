"""
Run observability: counters, dataset quality checks and Markdown reports.

RunMetrics is filled in by the pipeline during a cache build or a matching
run, QualityChecker inspects a freshly built dataset before it is cached,
and RunReporter renders both for the optional report directory.
"""
from .metrics import RunMetrics
from .quality_checks import QualityCheckResult, QualityChecker
from .reporter import RunReporter

__all__ = [
    "QualityCheckResult",
    "QualityChecker",
    "RunMetrics",
    "RunReporter",
]
