"""
Ingestion layer for the OVAL pipeline.

Fetches Red Hat OVAL advisories and normalizes them into the aggregate
vulnerability dataset:
- oval_parser: XML documents -> Definition records with criteria trees
- criteria: criteria trees -> DNF clauses
- features: clauses -> deduplicated AffectedFeature records
- rhel_oval_adapter: listing, download, and assembly of the dataset
"""
from .base_adapter import (
    AffectedFeature,
    BaseAdapter,
    Severity,
    SourceHealth,
    UpdateResponse,
    Vulnerability,
)
from .criteria import expand
from .features import FeatureExtractor, parse_criterion
from .oval_parser import CriteriaNode, Criterion, Definition, parse_definitions
from .rhel_oval_adapter import RhelOvalAdapter

__all__ = [
    "AffectedFeature",
    "BaseAdapter",
    "Severity",
    "SourceHealth",
    "UpdateResponse",
    "Vulnerability",
    "CriteriaNode",
    "Criterion",
    "Definition",
    "parse_definitions",
    "expand",
    "FeatureExtractor",
    "parse_criterion",
    "RhelOvalAdapter",
]
