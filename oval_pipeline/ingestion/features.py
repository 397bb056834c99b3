"""
Extraction of affected-package facts from DNF clauses.

Criterion comments in Red Hat OVAL feeds are English phrases. Two of them
carry facts:

- "Red Hat Enterprise Linux 7 is installed"   -> OS major version
- "httpd is earlier than 0:2.4.6-90.el7"      -> package and fixed version

parse_criterion() holds that grammar and nothing else, so new phrasings
can be supported without touching tree expansion.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..errors import MalformedVersionError
from ..matching.versions import MAX_VERSION, validate_version
from .base_adapter import AffectedFeature
from .criteria import Clause, expand
from .oval_parser import CriteriaNode

logger = logging.getLogger(__name__)

OS_PREFIX = "Red Hat Enterprise Linux "
INSTALLED_MARKER = " is installed"
EARLIER_MARKER = " is earlier than "

# Before this release, advisories only cover RHEL <= 4
DEFAULT_MIN_OS_VERSION = 5
DEFAULT_NAMESPACE_FAMILY = "centos"
VERSION_FORMAT = "rpm"


@dataclass
class CriterionFact:
    """Structured fact recovered from one criterion comment."""
    kind: str                         # os | package
    os_version: Optional[int] = None
    package_name: str = ""
    version: str = ""
    valid: bool = True


def parse_criterion(comment: str) -> Optional[CriterionFact]:
    """
    Recover a fact from a criterion comment.

    Args:
        comment: Criterion comment text

    Returns:
        CriterionFact, or None if the comment matches no known phrase.
        An OS fact with os_version None means the release could not be read.
        A package fact with valid False carries an unparsable version.
    """
    if INSTALLED_MARKER in comment:
        return CriterionFact(kind="os", os_version=_parse_os_version(comment))

    if EARLIER_MARKER in comment:
        idx = comment.index(EARLIER_MARKER)
        name = comment[:idx].strip()
        version = comment[idx + len(EARLIER_MARKER):].strip()
        try:
            validate_version(version)
        except MalformedVersionError as e:
            logger.warning(f"Could not parse package version {version!r}: {e}")
            return CriterionFact(kind="package", package_name=name, version=version, valid=False)
        return CriterionFact(kind="package", package_name=name, version=version)

    return None


def _parse_os_version(comment: str) -> Optional[int]:
    if not comment.startswith(OS_PREFIX):
        logger.debug(f"Could not parse Red Hat release version from: {comment}")
        return None

    token = comment[len(OS_PREFIX):].split(" ", 1)[0].strip()
    if not token.isdigit():
        logger.debug(f"Could not parse Red Hat release version from: {comment}")
        return None
    return int(token)


class FeatureExtractor:
    """
    Turns criteria trees into deduplicated AffectedFeature lists.

    Each DNF clause yields at most one feature. Features are keyed by
    namespace and package name; a later clause with the same key replaces
    an earlier one.
    """

    def __init__(
        self,
        min_os_version: int = DEFAULT_MIN_OS_VERSION,
        namespace_family: str = DEFAULT_NAMESPACE_FAMILY
    ):
        self.min_os_version = min_os_version
        self.namespace_family = namespace_family

    def extract(self, clause: Clause) -> Optional[AffectedFeature]:
        """
        Build a feature from one conjunctive clause.

        Returns:
            AffectedFeature, or None if the clause does not describe an
            affected package on a supported OS release
        """
        os_version: Optional[int] = None
        name = ""
        affected_version = ""
        fixed_in_version = ""

        for criterion in clause:
            fact = parse_criterion(criterion.comment)
            if fact is None:
                continue

            if fact.kind == "os":
                os_version = fact.os_version
            elif fact.kind == "package":
                if not fact.valid:
                    return None
                name = fact.package_name
                affected_version = fact.version
                fixed_in_version = "" if fact.version == MAX_VERSION else fact.version

        if os_version is None or os_version < self.min_os_version:
            return None

        namespace = f"{self.namespace_family}:{os_version}"
        if not (namespace and name and affected_version and fixed_in_version):
            logger.debug("Could not determine a valid package from criterions")
            return None

        return AffectedFeature(
            namespace=namespace,
            feature_name=name,
            affected_version=affected_version,
            fixed_in_version=fixed_in_version,
            version_format=VERSION_FORMAT
        )

    def to_features(self, criteria: CriteriaNode) -> List[AffectedFeature]:
        """Expand a criteria tree and collect its deduplicated features."""
        features: Dict[str, AffectedFeature] = {}
        for clause in expand(criteria):
            feature = self.extract(clause)
            if feature is not None:
                features[feature.key] = feature
        return list(features.values())
