"""
Matching of inventory records against the cached vulnerability dataset.

A record is reported once for every affected feature with the same
namespace and package name whose fixed-in version is strictly newer than
the installed version.

Records are validated first and fail closed: a record missing a required
field, or from a distribution outside the RHEL family, produces no report
lines and never raises. The dataset is read-only; the lookup index built
at construction only references it.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import MalformedVersionError, ValidationError
from ..ingestion.base_adapter import AffectedFeature, UpdateResponse, Vulnerability
from .inventory import InventoryRecord, ReportLine
from .versions import is_older

logger = logging.getLogger(__name__)

# RHEL-family distribution identifiers, e.g. "centos:7" or "rhel:8"
NAMESPACE_PATTERN = re.compile(r"^(centos|rhel):(\d+)$")


@dataclass
class MatchStats:
    records_seen: int = 0
    records_invalid: int = 0
    records_skipped: int = 0
    version_errors: int = 0
    matches: int = 0


class Matcher:
    """Tests inventory records against one loaded dataset."""

    def __init__(self, dataset: UpdateResponse, namespace_family: str = "centos"):
        """
        Args:
            dataset: Loaded vulnerability dataset (never modified)
            namespace_family: Family the dataset labels RHEL-family facts with
        """
        self.dataset = dataset
        self.namespace_family = namespace_family
        self.stats = MatchStats()
        self._index = self._build_index(dataset)

    @staticmethod
    def _build_index(dataset: UpdateResponse) -> Dict[Tuple[str, str], List[Tuple[Vulnerability, AffectedFeature]]]:
        index: Dict[Tuple[str, str], List[Tuple[Vulnerability, AffectedFeature]]] = {}
        for vuln in dataset.vulnerabilities:
            for feature in vuln.affected:
                index.setdefault((feature.namespace, feature.feature_name), []).append((vuln, feature))
        return index

    def namespace_for(self, dist: str) -> Optional[str]:
        """Dataset namespace for a record's distribution, or None if unsupported."""
        match = NAMESPACE_PATTERN.match(dist.strip().lower())
        if not match:
            return None
        return f"{self.namespace_family}:{int(match.group(2))}"

    def check(self, record: InventoryRecord) -> List[ReportLine]:
        """
        Match one record against the dataset.

        Args:
            record: Observed package on a host

        Returns:
            One ReportLine per vulnerability affecting the installed version
        """
        self.stats.records_seen += 1

        try:
            record.validate()
        except ValidationError as e:
            self.stats.records_invalid += 1
            logger.warning(f"Skipping inventory record from {record.hostname or 'unknown host'}: {e}")
            return []

        namespace = self.namespace_for(record.dist)
        if namespace is None:
            self.stats.records_skipped += 1
            logger.info(f"Skipping {record.pkg_name}: unsupported distribution {record.dist!r}")
            return []

        logger.debug(f"Checking {record.pkg_name} ({record.pkg_version}) on {namespace}")

        lines = []
        for vuln, feature in self._index.get((namespace, record.pkg_name), []):
            if not feature.fixed_in_version:
                continue
            try:
                vulnerable = is_older(record.pkg_version, feature.fixed_in_version)
            except MalformedVersionError as e:
                self.stats.version_errors += 1
                logger.warning(
                    f"Cannot compare {record.pkg_name} {record.pkg_version!r} "
                    f"with {feature.fixed_in_version!r} ({vuln.name}): {e}"
                )
                continue

            if vulnerable:
                lines.append(ReportLine.from_match(record, vuln.name, vuln.severity.value))

        self.stats.matches += len(lines)
        return lines

    def check_all(self, records: Iterable[InventoryRecord]) -> List[ReportLine]:
        """Match records in order, concatenating their report lines."""
        lines: List[ReportLine] = []
        for record in records:
            lines.extend(self.check(record))
        return lines
