"""
Exceptions raised across the OVAL pipeline.

Hierarchy:
- PipelineError (base)
  ├── ConfigError (missing or invalid configuration)
  ├── DownloadError (advisory listing or document fetch failed)
  ├── ParseError (malformed advisory document)
  │   └── CacheCorruptError (cache blob cannot be decoded)
  ├── MalformedVersionError (version string fails EVR grammar)
  ├── ValidationError (inventory record missing a required field)
  └── SinkError (batch delivery failed)

Document-level errors (download, parse, cache) are fatal to the enclosing
run. Record-level errors (validation, version) are handled where the record
is processed and never escape a batch.
"""
from typing import Any, Dict, Optional


class PipelineError(Exception):
    """Base exception for all pipeline operations."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.details = details or {}
        super().__init__(message)


class ConfigError(PipelineError):
    """Raised when required configuration is missing or invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        self.config_key = config_key
        super().__init__(message, {"config_key": config_key})


class DownloadError(PipelineError):
    """Raised when the advisory listing or a document cannot be fetched."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message, {"url": url, "status_code": status_code})

    def __str__(self):
        if self.url:
            return f"{super().__str__()} ({self.url})"
        return super().__str__()


class ParseError(PipelineError):
    """Raised when an advisory document cannot be decoded."""

    def __init__(self, message: str, document: Optional[str] = None):
        self.document = document
        super().__init__(message, {"document": document})

    def __str__(self):
        if self.document:
            return f"[{self.document}] {super().__str__()}"
        return super().__str__()


class CacheCorruptError(ParseError):
    """Raised when the cached dataset blob is missing or malformed."""


class MalformedVersionError(PipelineError):
    """Raised when a version string does not follow the EVR grammar."""

    def __init__(self, message: str, version: Optional[str] = None):
        self.version = version
        super().__init__(message, {"version": version})


class ValidationError(PipelineError):
    """Raised when an inventory record is missing a required field."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, {"field": field})


class SinkError(PipelineError):
    """Raised when a batch cannot be delivered to the sink."""

    def __init__(self, message: str, batch_index: Optional[int] = None):
        self.batch_index = batch_index
        super().__init__(message, {"batch_index": batch_index})
