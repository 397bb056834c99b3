"""
Metrics collection for pipeline runs.

This module provides RunMetrics, a dataclass that tracks the observability
metrics for a single run, either a cache build or a matching run:
- Advisories listed and processed, vulnerabilities and features cached
- Severity distribution across the cached dataset
- Inventory records seen, rejected, skipped and matched
- Report lines produced and batches delivered
- Source health and errors encountered

One RunMetrics object is created per run and serialized with to_dict()
into the pipeline_runs table when a run ledger is configured.
"""
from collections import defaultdict
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class RunMetrics:
    """
    Metrics for a single pipeline run.

    Designed to be serialized to JSON for storage in the pipeline_runs table.
    """
    run_id: str
    mode: str                     # make_cache | sample | event
    started_at: datetime
    completed_at: Optional[datetime] = None

    # Cache build counts
    advisories_listed: int = 0
    advisories_processed: int = 0
    vulnerabilities: int = 0
    features: int = 0
    watermark: Optional[str] = None

    # Matching counts
    records_seen: int = 0
    records_invalid: int = 0
    records_skipped: int = 0
    version_errors: int = 0
    report_lines: int = 0
    batches_delivered: int = 0

    errors: int = 0

    # Key: severity name, Value: number of cached vulnerabilities
    severity_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Key: source_id, Value: dict with health status
    source_health: Dict[str, Dict] = field(default_factory=dict)

    quality_issues: List[Dict] = field(default_factory=list)

    def record_dataset(self, dataset) -> None:
        """
        Record the size and severity distribution of a dataset.

        Args:
            dataset: UpdateResponse built or loaded in this run
        """
        self.vulnerabilities = len(dataset.vulnerabilities)
        self.features = dataset.feature_count
        self.watermark = dataset.flag_value or None
        self.severity_counts = defaultdict(int)
        for vuln in dataset.vulnerabilities:
            self.severity_counts[vuln.severity.value] += 1

    def record_match_stats(self, stats) -> None:
        """Copy counters from a Matcher's MatchStats."""
        self.records_seen = stats.records_seen
        self.records_invalid = stats.records_invalid
        self.records_skipped = stats.records_skipped
        self.version_errors = stats.version_errors
        self.report_lines = stats.matches

    def record_error(self, error: str, context: Dict = None):
        """Count an error and keep its message and context for the report."""
        self.errors += 1
        self.quality_issues.append({
            "type": "error",
            "message": error,
            "context": context or {}
        })

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view of every field; datetimes become ISO strings."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, defaultdict):
                value = dict(value)
            data[f.name] = value
        return data
