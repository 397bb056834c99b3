"""
Data quality checks for a built vulnerability dataset.

This module implements QualityChecker, which validates the aggregate dataset
after a cache build and before it is written.

Checks implemented:
- Features present: Every vulnerability must affect at least one package
- Namespace format: Namespaces must look like "<family>:<major>"
- Fixed version format: Non-empty fixed-in versions must parse as EVRs
- Names present: Vulnerability and package names must be non-empty
- Unknown severity ratio: Share of vulnerabilities without a severity
- Watermark present: A non-empty dataset must carry the updater flag

Design decisions:
- Each check returns a QualityCheckResult with pass/fail and details
- Checks run in Python over the in-memory dataset; nothing is queried
- Failures are reported, never raised; the caller decides what to do
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List

from ..errors import MalformedVersionError
from ..ingestion.base_adapter import Severity, UpdateResponse
from ..matching.versions import validate_version

NAMESPACE_FORMAT = re.compile(r"^[a-z]+:\d+$")

# Sample size kept in details for failing checks
SAMPLE_LIMIT = 5


@dataclass
class QualityCheckResult:
    """
    Result of a single quality check.

    Attributes:
        check_name: Unique identifier for the check
        passed: True if check passed, False otherwise
        message: Human-readable summary of the result
        details: Optional dict with additional context (e.g., counts)
    """
    check_name: str
    passed: bool
    message: str
    details: Dict[str, Any] = None


class QualityChecker:
    """
    Runs data quality checks against a vulnerability dataset.

    Each check method walks the dataset and returns a QualityCheckResult
    indicating pass/fail status.
    """

    def __init__(self, dataset: UpdateResponse, unknown_severity_threshold: float = 0.5):
        """
        Initialize quality checker.

        Args:
            dataset: Dataset produced by an adapter fetch
            unknown_severity_threshold: Highest acceptable share of
                vulnerabilities with Unknown severity
        """
        self.dataset = dataset
        self.unknown_severity_threshold = unknown_severity_threshold

    def run_all_checks(self) -> List[QualityCheckResult]:
        """
        Run all quality checks.

        Returns:
            List of QualityCheckResult objects, one per check
        """
        results = []
        results.append(self.check_features_present())
        results.append(self.check_namespace_format())
        results.append(self.check_fixed_version_format())
        results.append(self.check_names_present())
        results.append(self.check_unknown_severity_ratio())
        results.append(self.check_watermark_present())
        return results

    def check_features_present(self) -> QualityCheckResult:
        """Every vulnerability must list at least one affected package."""
        empty = [v.name for v in self.dataset.vulnerabilities if not v.affected]

        return QualityCheckResult(
            check_name="features_present",
            passed=not empty,
            message=f"{len(empty)} vulnerabilities without features" if empty else "All vulnerabilities have features",
            details={"missing_count": len(empty), "sample": empty[:SAMPLE_LIMIT]}
        )

    def check_namespace_format(self) -> QualityCheckResult:
        bad = sorted({
            f.namespace
            for v in self.dataset.vulnerabilities
            for f in v.affected
            if not NAMESPACE_FORMAT.match(f.namespace)
        })

        return QualityCheckResult(
            check_name="namespace_format",
            passed=not bad,
            message=f"{len(bad)} malformed namespaces" if bad else "All namespaces well-formed",
            details={"invalid_count": len(bad), "sample": bad[:SAMPLE_LIMIT]}
        )

    def check_fixed_version_format(self) -> QualityCheckResult:
        """
        Check that every non-empty fixed-in version parses as an EVR.

        Empty fixed-in versions mean "no fix" and are skipped.
        """
        bad = []
        for vuln in self.dataset.vulnerabilities:
            for feature in vuln.affected:
                if not feature.fixed_in_version:
                    continue
                try:
                    validate_version(feature.fixed_in_version)
                except MalformedVersionError:
                    bad.append(f"{vuln.name}/{feature.feature_name}: {feature.fixed_in_version}")

        return QualityCheckResult(
            check_name="fixed_version_format",
            passed=not bad,
            message=f"{len(bad)} malformed fixed versions" if bad else "All fixed versions valid",
            details={"invalid_count": len(bad), "sample": bad[:SAMPLE_LIMIT]}
        )

    def check_names_present(self) -> QualityCheckResult:
        missing = 0
        for vuln in self.dataset.vulnerabilities:
            if not vuln.name.strip():
                missing += 1
            missing += sum(1 for f in vuln.affected if not f.feature_name.strip())

        return QualityCheckResult(
            check_name="names_present",
            passed=missing == 0,
            message=f"{missing} empty names" if missing else "All names present",
            details={"missing_count": missing}
        )

    def check_unknown_severity_ratio(self) -> QualityCheckResult:
        """
        Flag datasets where too many advisories have no parsable severity.

        A high ratio usually means the title format changed upstream.
        """
        total = len(self.dataset.vulnerabilities)
        unknown = sum(1 for v in self.dataset.vulnerabilities if v.severity == Severity.UNKNOWN)
        ratio = unknown / total if total else 0.0
        passed = ratio <= self.unknown_severity_threshold

        return QualityCheckResult(
            check_name="unknown_severity_ratio",
            passed=passed,
            message=f"{unknown}/{total} vulnerabilities with Unknown severity ({ratio:.0%})",
            details={
                "unknown_count": unknown,
                "total": total,
                "ratio": ratio,
                "threshold": self.unknown_severity_threshold
            }
        )

    def check_watermark_present(self) -> QualityCheckResult:
        """A dataset with vulnerabilities must record how far it has read."""
        has_data = bool(self.dataset.vulnerabilities)
        has_flag = bool(self.dataset.flag_name and self.dataset.flag_value)
        passed = has_flag or not has_data

        if has_flag:
            message = f"Watermark {self.dataset.flag_name}={self.dataset.flag_value}"
        elif has_data:
            message = "Dataset has vulnerabilities but no watermark"
        else:
            message = "Empty dataset, no watermark required"

        return QualityCheckResult(
            check_name="watermark_present",
            passed=passed,
            message=message,
            details={"flag_name": self.dataset.flag_name, "flag_value": self.dataset.flag_value}
        )
