"""
Downstream sinks for report lines.

Every sink receives whole batches through put_batch() and raises SinkError
when a batch cannot be delivered. Sinks are selected by identifier:

- "-" or empty         -> standard output
- "file://<path>"      -> appended to a local file
- "duckdb://<path>"    -> report_lines table in a DuckDB file
- "http(s)://..."      -> one POST per batch, lines newline-delimited
- "firehose://<name>"  -> Kinesis Firehose delivery stream (PutRecordBatch)
- "<name>"             -> the same, for the bare stream names of OUTPUTSTREAM
"""
import logging
import re
import sys
from abc import ABC, abstractmethod
from typing import List, Optional, TextIO

import boto3
import duckdb
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ConfigError, SinkError
from ..ingestion.http_client import HttpClient, RetryConfig
from ..storage.database import Database

logger = logging.getLogger(__name__)

FIREHOSE_SCHEME = "firehose://"
STREAM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")


class BaseSink(ABC):
    """A delivery target accepting batches of rendered report lines."""

    name: str = "sink"

    @abstractmethod
    def put_batch(self, lines: List[str]) -> None:
        """
        Deliver one batch.

        Raises:
            SinkError: If the batch was not delivered
        """
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class StreamSink(BaseSink):
    """Writes lines to a text stream, one per line."""

    def __init__(self, stream: TextIO, name: str = "stdout", owns_stream: bool = False):
        self.stream = stream
        self.name = name
        self.owns_stream = owns_stream

    def put_batch(self, lines: List[str]) -> None:
        try:
            self.stream.write("".join(f"{line}\n" for line in lines))
            self.stream.flush()
        except (OSError, ValueError) as e:
            raise SinkError(f"could not write to {self.name}: {e}") from e

    def close(self) -> None:
        if self.owns_stream:
            self.stream.close()


class DuckDBSink(BaseSink):
    """Stores each batch in the report_lines table in one transaction."""

    def __init__(self, db_path: str):
        self.name = f"duckdb://{db_path}"
        self.db = Database(db_path)
        self.db.initialize_schema()

    def put_batch(self, lines: List[str]) -> None:
        rows = [line.split("\t") for line in lines]
        try:
            self.db.insert_report_batch(rows)
        except (duckdb.Error, ValueError) as e:
            raise SinkError(f"could not store batch in {self.name}: {e}") from e

    def close(self) -> None:
        self.db.close()


class HttpSink(BaseSink):
    """POSTs each batch as newline-delimited text."""

    CONTENT_TYPE = "text/tab-separated-values; charset=utf-8"

    def __init__(self, url: str, client: Optional[HttpClient] = None, timeout_seconds: float = 60.0):
        self.name = url
        self.url = url
        self.client = client or HttpClient(
            source_id="http_sink",
            retry_config=RetryConfig(max_retries=0, timeout_seconds=timeout_seconds),
        )

    def put_batch(self, lines: List[str]) -> None:
        body = "".join(f"{line}\n" for line in lines)
        try:
            self.client.post_text(self.url, body, headers={"Content-Type": self.CONTENT_TYPE})
        except requests.RequestException as e:
            raise SinkError(f"could not deliver batch to {self.url}: {e}") from e

    def close(self) -> None:
        self.client.close()


class FirehoseSink(BaseSink):
    """Sends each batch to a Kinesis Firehose delivery stream in one PutRecordBatch call."""

    def __init__(self, stream_name: str, client=None, timeout_seconds: float = 60.0):
        self.name = f"{FIREHOSE_SCHEME}{stream_name}"
        self.stream_name = stream_name
        if client is None:
            client = boto3.client(
                "firehose",
                config=BotoConfig(connect_timeout=timeout_seconds, read_timeout=timeout_seconds),
            )
        self.client = client

    def put_batch(self, lines: List[str]) -> None:
        records = [{"Data": f"{line}\n".encode("utf-8")} for line in lines]
        try:
            response = self.client.put_record_batch(DeliveryStreamName=self.stream_name, Records=records)
        except (BotoCoreError, ClientError) as e:
            raise SinkError(f"could not deliver batch to {self.name}: {e}") from e

        failed = response.get("FailedPutCount", 0)
        if failed:
            raise SinkError(f"{self.name} rejected {failed} of {len(records)} records")


def create_sink(identifier: Optional[str], timeout_seconds: float = 60.0) -> BaseSink:
    """
    Build the sink named by an identifier.

    Raises:
        ConfigError: If the identifier scheme is not supported or the
            Firehose client cannot be created
    """
    target = (identifier or "").strip()

    if target in ("", "-", "stdout"):
        return StreamSink(sys.stdout)

    if target.startswith("file://"):
        path = target[len("file://"):]
        try:
            stream = open(path, "a", encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"cannot open output file {path}: {e}", config_key="OUTPUT_SINK") from e
        return StreamSink(stream, name=target, owns_stream=True)

    if target.startswith("duckdb://"):
        return DuckDBSink(target[len("duckdb://"):])

    if target.startswith(("http://", "https://")):
        return HttpSink(target, timeout_seconds=timeout_seconds)

    stream_name = target[len(FIREHOSE_SCHEME):] if target.startswith(FIREHOSE_SCHEME) else target
    if STREAM_NAME_PATTERN.match(stream_name):
        try:
            return FirehoseSink(stream_name, timeout_seconds=timeout_seconds)
        except BotoCoreError as e:
            raise ConfigError(f"cannot create Firehose client for {stream_name}: {e}", config_key="OUTPUT_SINK") from e

    raise ConfigError(f"unsupported output sink: {target}", config_key="OUTPUT_SINK")
