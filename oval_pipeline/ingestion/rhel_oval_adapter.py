"""
Adapter for Red Hat's per-advisory OVAL feed.

Enumerates com.redhat.rhsa-<id>.xml files from the OVAL directory listing,
downloads every advisory newer than the configured low-water mark, and
turns each document into Vulnerability records.

Any download or parse failure aborts the whole fetch: a dataset with
silently missing advisories must never be cached as complete.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import PipelineError
from .base_adapter import BaseAdapter, UpdateResponse, Vulnerability
from .features import DEFAULT_MIN_OS_VERSION, DEFAULT_NAMESPACE_FAMILY, FeatureExtractor
from .http_client import HttpClient, RetryConfig
from .oval_parser import parse_definitions

logger = logging.getLogger(__name__)

OVAL_URI = "https://www.redhat.com/security/data/oval/"
RHSA_FILE_PREFIX = "com.redhat.rhsa-"
RHSA_PATTERN = re.compile(r"com\.redhat\.rhsa-(\d+)\.xml")

# Advisories at or below this identifier are never fetched
FIRST_RHSA = 20170000

UPDATER_FLAG = "rhelUpdater"


class RhelOvalAdapter(BaseAdapter):
    """Red Hat OVAL adapter producing the aggregate vulnerability dataset."""

    def __init__(self, config: Dict[str, Any], client: Optional[HttpClient] = None):
        super().__init__(config)
        self.source_id = "rhel_oval"
        self.base_url = config.get("base_url") or OVAL_URI
        if not self.base_url.endswith("/"):
            self.base_url += "/"
        self.first_rhsa = int(config.get("first_rhsa", FIRST_RHSA))
        self.max_advisories = config.get("max_advisories")
        self.extractor = FeatureExtractor(
            min_os_version=int(config.get("min_os_version", DEFAULT_MIN_OS_VERSION)),
            namespace_family=config.get("namespace_family", DEFAULT_NAMESPACE_FAMILY),
        )
        self.advisories_listed = 0
        self.advisories_processed = 0

        self.client = client or HttpClient(
            source_id=self.source_id,
            rate_limit_per_minute=config.get("rate_limit_per_minute"),
            rate_limit_burst=config.get("rate_limit_burst"),
            retry_config=RetryConfig(
                max_retries=config.get("max_retries", 0),
                base_delay_seconds=config.get("retry_base_seconds", 1.0),
                max_delay_seconds=config.get("retry_max_seconds", 60.0),
                timeout_seconds=config.get("timeout_seconds", 60.0),
            ),
        )

    def fetch(self) -> UpdateResponse:
        """
        Download and normalize every advisory above the low-water mark.

        Returns:
            UpdateResponse with vulnerabilities in listing order and the
            watermark flag set to the highest processed identifier

        Raises:
            DownloadError: If the listing or any advisory cannot be fetched
            ParseError: If any advisory document is malformed
        """
        self._last_fetch = datetime.now(timezone.utc)
        self.advisories_processed = 0

        try:
            listing = self.client.get_text(self.base_url)
            rhsa_ids = self.list_advisories(listing)
            self.advisories_listed = len(rhsa_ids)
            logger.info(f"Found {len(rhsa_ids)} advisories newer than RHSA {self.first_rhsa}")

            to_process = rhsa_ids
            if self.max_advisories:
                to_process = rhsa_ids[:int(self.max_advisories)]
                logger.warning(
                    f"Processing {len(to_process)} of {len(rhsa_ids)} advisories (max_advisories)"
                )

            vulnerabilities: List[Vulnerability] = []
            for rhsa in to_process:
                document = self.client.get_bytes(self.advisory_url(rhsa))
                vulnerabilities.extend(self.normalize(document, document_id=str(rhsa)))
                self.advisories_processed += 1

        except PipelineError as e:
            self._last_error = f"{type(e).__name__}: {e}"
            self._records_fetched = 0
            logger.error(f"RHEL OVAL fetch aborted: {self._last_error}")
            raise

        response = UpdateResponse(vulnerabilities=vulnerabilities)
        # Only advisories actually downloaded count towards the watermark
        if to_process:
            response.flag_name = UPDATER_FLAG
            response.flag_value = str(max(to_process))

        self._records_fetched = len(vulnerabilities)
        self._last_error = None
        return response

    def list_advisories(self, listing: str) -> List[int]:
        """
        Extract advisory identifiers above the low-water mark.

        Args:
            listing: Directory listing body

        Returns:
            Unique identifiers in listing order
        """
        seen = {}
        for match in RHSA_PATTERN.finditer(listing):
            rhsa = int(match.group(1))
            if rhsa > self.first_rhsa:
                seen.setdefault(rhsa, None)
        return list(seen)

    def advisory_url(self, rhsa: int) -> str:
        return f"{self.base_url}{RHSA_FILE_PREFIX}{rhsa}.xml"

    def normalize(self, raw_record: bytes, document_id: Optional[str] = None, **kwargs) -> List[Vulnerability]:
        """
        Transform one OVAL document into vulnerabilities.

        Definitions with no accepted feature contribute nothing.

        Raises:
            ParseError: If the document is malformed
        """
        vulnerabilities = []
        for definition in parse_definitions(raw_record, document_id=document_id):
            features = self.extractor.to_features(definition.criteria)
            if not features:
                continue

            vulnerabilities.append(Vulnerability(
                name=definition.name,
                link=definition.link,
                severity=definition.severity,
                description=definition.clean_description,
                affected=features
            ))

        return vulnerabilities
