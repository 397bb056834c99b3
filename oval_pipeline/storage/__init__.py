"""
Storage layer for the OVAL pipeline.

Components:
- cache: lossless JSON serialization of the vulnerability dataset
- DatasetCache: file-backed blob holding the cached dataset
- Database: DuckDB tables for delivered report lines and run metadata

Usage:
    from oval_pipeline.storage import DatasetCache

    cache = DatasetCache("/var/cache/oval")
    cache.save(dataset)
    dataset = cache.load()
"""

from . import cache
from .cache import DatasetCache
from .database import Database, new_run_id

__all__ = [
    "cache",
    "DatasetCache",
    "Database",
    "new_run_id",
]
