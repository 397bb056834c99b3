"""
Delivery layer: batched emission of report lines to downstream sinks.
"""
from .emitter import BATCH_SIZE, BatchEmitter
from .sinks import BaseSink, DuckDBSink, HttpSink, StreamSink, create_sink

__all__ = [
    "BATCH_SIZE",
    "BatchEmitter",
    "BaseSink",
    "DuckDBSink",
    "HttpSink",
    "StreamSink",
    "create_sink",
]
