"""
Base adapter interface for advisory source adapters.

Defines the contract that source adapters implement and the normalized
vulnerability model every adapter produces. The aggregate UpdateResponse is
what gets cached and later loaded read-only by the matcher.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional


class Severity(str, Enum):
    """Normalized vulnerability severity."""
    UNKNOWN = "Unknown"
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


@dataclass
class AffectedFeature:
    """
    A package affected by a vulnerability in one distribution namespace.

    Uniquely identified within an advisory by (namespace, feature_name).
    An empty fixed_in_version means no fix exists yet.
    """
    namespace: str                # e.g. "centos:7"
    feature_name: str             # package name, e.g. "httpd"
    affected_version: str
    fixed_in_version: str = ""
    version_format: str = "rpm"

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.feature_name}"


@dataclass
class Vulnerability:
    """One advisory with the packages it affects."""
    name: str
    link: str
    severity: Severity
    description: str
    affected: List[AffectedFeature] = field(default_factory=list)


@dataclass
class UpdateResponse:
    """
    Aggregate dataset produced by one fetch cycle.

    flag_name/flag_value record the highest advisory identifier seen, used
    as a watermark for incremental refresh.
    """
    vulnerabilities: List[Vulnerability] = field(default_factory=list)
    flag_name: str = ""
    flag_value: str = ""

    @property
    def feature_count(self) -> int:
        return sum(len(v.affected) for v in self.vulnerabilities)


@dataclass
class SourceHealth:
    """Health status of a source adapter."""
    source_id: str
    is_healthy: bool
    last_fetch: Optional[datetime]
    records_fetched: int
    error_message: Optional[str] = None


class BaseAdapter(ABC):
    """
    Abstract base class for advisory source adapters.

    Adapters implement fetch(), which returns the complete dataset for one
    cycle or raises. Partial results are never returned.
    """

    def __init__(self, config: dict):
        self.config = config
        self.source_id: str = ""
        self._last_fetch: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._records_fetched: int = 0

    @abstractmethod
    def fetch(self) -> UpdateResponse:
        """
        Fetch and normalize every advisory from the source.

        Returns:
            UpdateResponse with all vulnerabilities and the watermark flag
        """
        pass

    @abstractmethod
    def normalize(self, raw_record: Any, **kwargs) -> List[Vulnerability]:
        """
        Transform one raw source document into vulnerabilities.

        Args:
            raw_record: Raw document from the source
            **kwargs: Additional context (e.g., document identifier)

        Returns:
            Vulnerabilities affecting at least one package
        """
        pass

    def get_health(self) -> SourceHealth:
        """Return health status of this adapter."""
        return SourceHealth(
            source_id=self.source_id,
            is_healthy=self._last_error is None,
            last_fetch=self._last_fetch,
            records_fetched=self._records_fetched,
            error_message=self._last_error
        )
