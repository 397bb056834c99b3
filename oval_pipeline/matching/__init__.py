"""
Matching layer.

Decides which observed packages are vulnerable:
- versions: RPM epoch:version-release ordering
- inventory: inventory records and report lines
- matcher: record validation and dataset lookup
"""
from .inventory import InventoryRecord, ReportLine, decode_kinesis_event, parse_lines
from .matcher import Matcher, MatchStats
from .versions import EVR, MAX_VERSION, MIN_VERSION, compare_versions, parse_evr, validate_version

__all__ = [
    "InventoryRecord",
    "ReportLine",
    "decode_kinesis_event",
    "parse_lines",
    "Matcher",
    "MatchStats",
    "EVR",
    "MAX_VERSION",
    "MIN_VERSION",
    "compare_versions",
    "parse_evr",
    "validate_version",
]
