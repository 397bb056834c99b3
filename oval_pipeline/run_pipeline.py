#!/usr/bin/env python3
"""
Main pipeline orchestrator for the OVAL vulnerability pipeline.

This module coordinates the three run modes:
1. Cache build: Fetch every advisory, check the dataset, write the cache
2. Sample: Match a local newline-delimited inventory file, print report lines locally
3. Event: Match the inventory records of one Kinesis-style event batch

The orchestrator is designed to be:
- Fail-fast: Download, parse, cache and sink failures end the run
- Tolerant per record: One bad inventory record never blocks a batch
- Observable: Metrics, quality checks and an optional run report/ledger
- Explicitly configured: One PipelineConfig is built up front and passed in

Usage:
    python -m oval_pipeline.run_pipeline [--config config.yaml] [--make-cache] [--sample PATH]
"""
import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import duckdb
import yaml

from .delivery.emitter import BATCH_SIZE, BatchEmitter
from .delivery.sinks import BaseSink, StreamSink, create_sink
from .errors import ConfigError, PipelineError
from .ingestion.base_adapter import BaseAdapter, UpdateResponse
from .ingestion.rhel_oval_adapter import RhelOvalAdapter
from .matching.inventory import InventoryRecord, ReportLine, decode_kinesis_event, parse_lines
from .matching.matcher import Matcher
from .observability.metrics import RunMetrics
from .observability.quality_checks import QualityChecker, QualityCheckResult
from .observability.reporter import RunReporter
from .storage.cache import DatasetCache
from .storage.database import Database, new_run_id

logger = logging.getLogger(__name__)

CONFIG_ENV = "OVAL_PIPELINE_CONFIG"

# Current name, legacy name
ENV_NAMES = {
    "cache_dir": ("CACHE_DIR", "CACHEDIR"),
    "sample_path": ("INPUT_SAMPLE_PATH", "INPUTSAMPLE"),
    "output_sink": ("OUTPUT_SINK", "OUTPUTSTREAM"),
    "make_cache": ("MAKE_CACHE", "MAKECACHE"),
}


@dataclass
class PipelineConfig:
    """
    Settings for one pipeline process.

    Environment variables take precedence over the YAML file; command line
    flags take precedence over both.
    """
    cache_dir: str
    sample_path: Optional[str] = None
    output_sink: str = ""
    make_cache: bool = False
    source: Dict[str, Any] = field(default_factory=dict)
    batch_size: int = BATCH_SIZE
    sink_timeout_seconds: float = 60.0
    report_dir: Optional[str] = None
    run_ledger: Optional[str] = None

    @property
    def namespace_family(self) -> str:
        return self.source.get("namespace_family", "centos")

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config_path: Optional[str] = None,
        make_cache: Optional[bool] = None,
        sample_path: Optional[str] = None,
    ) -> "PipelineConfig":
        """
        Build the configuration from the environment and an optional YAML file.

        Args:
            environ: Environment mapping (defaults to os.environ)
            config_path: YAML file path; falls back to OVAL_PIPELINE_CONFIG
            make_cache: Overrides MAKE_CACHE when not None
            sample_path: Overrides INPUT_SAMPLE_PATH when set

        Raises:
            ConfigError: If the YAML file is unreadable or CACHE_DIR is missing
        """
        environ = os.environ if environ is None else environ
        config_path = config_path or environ.get(CONFIG_ENV)
        settings = load_yaml(config_path) if config_path else {}

        cache_dir = _env(environ, "cache_dir") or settings.get("cache_dir")
        if not cache_dir:
            raise ConfigError("CACHE_DIR is required", config_key="CACHE_DIR")

        if make_cache is None:
            make_cache = bool(_env(environ, "make_cache"))

        delivery = settings.get("delivery") or {}
        reporting = settings.get("reporting") or {}

        try:
            batch_size = int(delivery.get("batch_size", BATCH_SIZE))
            sink_timeout = float(delivery.get("timeout_seconds", 60.0))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid delivery settings: {e}", config_key="delivery") from e
        if batch_size < 1:
            raise ConfigError("delivery.batch_size must be positive", config_key="delivery.batch_size")

        return cls(
            cache_dir=str(cache_dir),
            sample_path=sample_path or _env(environ, "sample_path") or settings.get("sample_path"),
            output_sink=_env(environ, "output_sink") or settings.get("output_sink") or "",
            make_cache=make_cache,
            source=dict(settings.get("source") or {}),
            batch_size=batch_size,
            sink_timeout_seconds=sink_timeout,
            report_dir=reporting.get("report_dir"),
            run_ledger=reporting.get("run_ledger"),
        )


def load_yaml(config_path: str) -> Dict[str, Any]:
    """
    Load the YAML settings file.

    Raises:
        ConfigError: If the file is missing, invalid, or not a mapping
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {config_path}", config_key=CONFIG_ENV)

    try:
        with open(path, encoding="utf-8") as f:
            settings = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot load config file {config_path}: {e}", config_key=CONFIG_ENV) from e

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping", config_key=CONFIG_ENV)
    return settings


def _env(environ: Mapping[str, str], key: str) -> Optional[str]:
    current, legacy = ENV_NAMES[key]
    return environ.get(current) or environ.get(legacy) or None


class OvalPipeline:
    """
    Orchestrates cache builds and inventory matching runs.

    The dataset is loaded once and shared read-only by every matching run;
    each run gets its own Matcher so statistics stay per run.
    """

    def __init__(
        self,
        config: PipelineConfig,
        adapter: Optional[BaseAdapter] = None,
        sink: Optional[BaseSink] = None,
        local_sink: Optional[BaseSink] = None,
    ):
        """
        Args:
            config: Pipeline settings
            adapter: Advisory source (defaults to RhelOvalAdapter)
            sink: Delivery target for events (defaults to the one named by output_sink)
            local_sink: Output for sample runs (defaults to standard output)
        """
        self.config = config
        self.cache = DatasetCache(config.cache_dir)
        self.reporter = RunReporter()
        self._adapter = adapter
        self._sink = sink
        self._local_sink = local_sink
        self._dataset: Optional[UpdateResponse] = None

    @property
    def adapter(self) -> BaseAdapter:
        if self._adapter is None:
            self._adapter = RhelOvalAdapter(self.config.source)
        return self._adapter

    @property
    def sink(self) -> BaseSink:
        if self._sink is None:
            self._sink = create_sink(self.config.output_sink, timeout_seconds=self.config.sink_timeout_seconds)
        return self._sink

    def build_cache(self) -> RunMetrics:
        """
        Fetch every advisory and replace the cache blob.

        Quality check failures are logged and never block the write.

        Returns:
            RunMetrics for the build

        Raises:
            PipelineError: If the fetch or the cache write fails; the
                previous cache blob is left untouched
        """
        metrics = RunMetrics(run_id=new_run_id(), mode="make_cache", started_at=datetime.utcnow())
        quality_results: List[QualityCheckResult] = []
        status = "failed"

        logger.info(f"=== Starting cache build: {metrics.run_id} ===")

        adapter = self.adapter
        try:
            dataset = adapter.fetch()
            metrics.record_dataset(dataset)

            logger.info("Running quality checks")
            quality_results = QualityChecker(dataset).run_all_checks()
            for result in quality_results:
                if not result.passed:
                    logger.warning(f"Quality check {result.check_name} failed: {result.message}")

            self.cache.save(dataset)
            status = "success"

        except PipelineError as e:
            metrics.record_error(str(e), context=e.details)
            raise

        finally:
            metrics.advisories_listed = getattr(adapter, "advisories_listed", 0)
            metrics.advisories_processed = getattr(adapter, "advisories_processed", 0)
            health = adapter.get_health()
            metrics.source_health[health.source_id or "source"] = {
                "healthy": health.is_healthy,
                "records": health.records_fetched,
                "error": health.error_message
            }
            self._finish_run(metrics, status, quality_results)

        return metrics

    def load_dataset(self) -> UpdateResponse:
        """
        Load the cached dataset, once per pipeline.

        Raises:
            CacheCorruptError: If the blob is missing or malformed
        """
        if self._dataset is None:
            self._dataset = self.cache.load()
            logger.info(f"Dataset watermark: {self._dataset.flag_value or 'none'}")
        return self._dataset

    def process_sample(self, sample_path: Optional[str] = None) -> RunMetrics:
        """
        Match a local newline-delimited JSON inventory file.

        Report lines go to local output only; the configured sink is never
        built in sample mode.

        Raises:
            ConfigError: If no sample path is configured or it cannot be read
            ValidationError: If the file contains a malformed line
            SinkError: If report lines cannot be delivered
        """
        sample_path = sample_path or self.config.sample_path
        if not sample_path:
            raise ConfigError("INPUT_SAMPLE_PATH is not set", config_key="INPUT_SAMPLE_PATH")

        metrics = RunMetrics(run_id=new_run_id(), mode="sample", started_at=datetime.utcnow())
        status = "failed"
        try:
            matcher = Matcher(self.load_dataset(), namespace_family=self.config.namespace_family)
            try:
                with open(sample_path, encoding="utf-8") as f:
                    lines = matcher.check_all(parse_lines(f))
            except OSError as e:
                raise ConfigError(
                    f"Cannot read sample file {sample_path}: {e}", config_key="INPUT_SAMPLE_PATH"
                ) from e

            self._deliver(lines, matcher, metrics, self._local_sink or StreamSink(sys.stdout))
            status = "success"

        except PipelineError as e:
            metrics.record_error(str(e), context=e.details)
            raise

        finally:
            self._finish_run(metrics, status)

        return metrics

    def handle_event(self, event: Dict[str, Any]) -> RunMetrics:
        """
        Match the inventory records of one event batch and deliver the results.

        Raises:
            SinkError: If any batch cannot be delivered; the platform is
                expected to retry the event
        """
        metrics = RunMetrics(run_id=new_run_id(), mode="event", started_at=datetime.utcnow())
        records: List[InventoryRecord] = decode_kinesis_event(event)
        matcher = Matcher(self.load_dataset(), namespace_family=self.config.namespace_family)
        lines = matcher.check_all(records)
        self._deliver(lines, matcher, metrics, self.sink)
        metrics.completed_at = datetime.utcnow()
        return metrics

    def close(self) -> None:
        if self._sink is not None:
            self._sink.close()
            self._sink = None

    def _deliver(self, lines: List[ReportLine], matcher: Matcher, metrics: RunMetrics, sink: BaseSink) -> None:
        metrics.record_match_stats(matcher.stats)
        # Records dropped by the decoder never reach the matcher
        logger.info(
            f"Matched {matcher.stats.records_seen} records: {len(lines)} report lines, "
            f"{matcher.stats.records_invalid} invalid, {matcher.stats.records_skipped} skipped"
        )
        if lines:
            emitter = BatchEmitter(sink, batch_size=self.config.batch_size)
            metrics.batches_delivered = emitter.emit(lines)

    def _finish_run(
        self,
        metrics: RunMetrics,
        status: str,
        quality_results: Optional[List[QualityCheckResult]] = None
    ) -> None:
        """Complete the metrics and write the optional report and ledger row."""
        metrics.completed_at = datetime.utcnow()
        logger.info(f"=== Run {metrics.run_id} {status} in {metrics.duration_seconds:.1f}s ===")

        if self.config.report_dir:
            report = self.reporter.generate_report(metrics, quality_results)
            try:
                report_path = self.reporter.save_report(report, Path(self.config.report_dir))
                logger.info(f"Report: {report_path}")
            except OSError as e:
                logger.warning(f"Could not write run report: {e}")

        if self.config.run_ledger:
            try:
                with Database(self.config.run_ledger) as db:
                    db.initialize_schema()
                    db.record_run(metrics, status)
            except (duckdb.Error, OSError) as e:
                logger.warning(f"Could not record run in {self.config.run_ledger}: {e}")


_pipeline: Optional[OvalPipeline] = None


def _get_pipeline() -> OvalPipeline:
    """Build the process-wide pipeline and load its dataset on first use."""
    global _pipeline
    if _pipeline is None:
        pipeline = OvalPipeline(PipelineConfig.from_env())
        pipeline.load_dataset()
        _pipeline = pipeline
    return _pipeline


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, int]:
    """
    Entry point for the event-processing platform.

    Returns:
        Counts for the processed batch

    Raises:
        SinkError: If delivery fails, so the platform retries the batch
    """
    metrics = _get_pipeline().handle_event(event)
    return {
        "records": metrics.records_seen,
        "report_lines": metrics.report_lines,
        "batches": metrics.batches_delivered,
    }


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Build the RHEL OVAL vulnerability cache or match inventory records against it"
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to YAML configuration file (default: ${CONFIG_ENV})"
    )
    parser.add_argument(
        "--make-cache",
        action="store_true",
        help="Fetch advisories, write the cache and exit"
    )
    parser.add_argument(
        "--sample",
        default=None,
        help="Newline-delimited JSON inventory file to match"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    pipeline = None
    try:
        config = PipelineConfig.from_env(
            config_path=args.config,
            make_cache=True if args.make_cache else None,
            sample_path=args.sample,
        )
        pipeline = OvalPipeline(config)

        if config.make_cache:
            metrics = pipeline.build_cache()
            logger.info(
                f"Cache build summary: {metrics.advisories_processed}/{metrics.advisories_listed} advisories, "
                f"{metrics.vulnerabilities} vulnerabilities, watermark {metrics.watermark or 'none'}"
            )
        elif config.sample_path:
            metrics = pipeline.process_sample()
            logger.info(
                f"Sample summary: {metrics.records_seen} records, {metrics.report_lines} report lines, "
                f"{metrics.batches_delivered} batches"
            )
        else:
            raise ConfigError(
                "No run mode selected: set MAKE_CACHE or INPUT_SAMPLE_PATH "
                "(event batches are processed through handler())",
                config_key="MAKE_CACHE"
            )

    except Exception as e:
        logger.error(f"Pipeline failed: {e}", exc_info=True)
        sys.exit(1)

    finally:
        if pipeline is not None:
            pipeline.close()

    sys.exit(0)


if __name__ == "__main__":
    main()
