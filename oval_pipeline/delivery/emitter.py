"""
Batched delivery of report lines.

Lines are split into fixed-size batches in input order and each batch is
handed to the sink in one call. Delivery stops at the first failed batch
and the SinkError reaches the caller; batches already delivered stay
delivered (at-least-once once the caller retries).
"""
import logging
from typing import List, Sequence, Union

from ..errors import SinkError
from ..matching.inventory import ReportLine
from .sinks import BaseSink

logger = logging.getLogger(__name__)

BATCH_SIZE = 400


class BatchEmitter:
    """Groups report lines into batches and delivers them to a sink."""

    def __init__(self, sink: BaseSink, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.sink = sink
        self.batch_size = batch_size

    def emit(self, lines: Sequence[Union[ReportLine, str]]) -> int:
        """
        Deliver lines to the sink in order.

        Args:
            lines: Report lines (or already rendered TSV strings)

        Returns:
            Number of batches delivered

        Raises:
            SinkError: If a batch cannot be delivered; later batches are not sent
        """
        rendered = [line.to_tsv() if isinstance(line, ReportLine) else line for line in lines]
        if not rendered:
            return 0

        logger.info(f"Attempting to write {len(rendered)} records to {self.sink.name}")

        delivered = 0
        for start in range(0, len(rendered), self.batch_size):
            batch: List[str] = rendered[start:start + self.batch_size]
            try:
                self.sink.put_batch(batch)
            except SinkError as e:
                e.batch_index = delivered
                e.details["batch_index"] = delivered
                logger.error(
                    f"Delivery failed at batch {delivered} ({len(batch)} records); "
                    f"{delivered} batches already delivered: {e}"
                )
                raise
            delivered += 1

        return delivered
