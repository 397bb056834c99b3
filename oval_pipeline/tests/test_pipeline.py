"""
Integration tests for the pipeline orchestrator.

Covers configuration loading, the cache build, sample and event run modes,
the event handler entry point and CLI exit codes. Advisory sources and
sinks are replaced with in-memory stand-ins.
"""
import base64
import json
from unittest.mock import MagicMock

import pytest

from oval_pipeline import run_pipeline
from oval_pipeline.delivery import sinks
from oval_pipeline.delivery.sinks import FirehoseSink
from oval_pipeline.errors import CacheCorruptError, ConfigError, DownloadError, SinkError, ValidationError
from oval_pipeline.ingestion.base_adapter import BaseAdapter, UpdateResponse
from oval_pipeline.run_pipeline import OvalPipeline, PipelineConfig
from oval_pipeline.storage.cache import DatasetCache
from oval_pipeline.storage.database import Database

ENV_VARS = [
    "CACHE_DIR", "CACHEDIR",
    "INPUT_SAMPLE_PATH", "INPUTSAMPLE",
    "OUTPUT_SINK", "OUTPUTSTREAM",
    "MAKE_CACHE", "MAKECACHE",
    "OVAL_PIPELINE_CONFIG",
]


class StaticAdapter(BaseAdapter):
    """Adapter returning a fixed dataset, or raising a fixed error."""

    def __init__(self, dataset=None, error=None):
        super().__init__({})
        self.source_id = "static"
        self.dataset = dataset
        self.error = error
        self.advisories_listed = 3
        self.advisories_processed = 3

    def fetch(self) -> UpdateResponse:
        if self.error is not None:
            self._last_error = str(self.error)
            raise self.error
        self._records_fetched = len(self.dataset.vulnerabilities)
        return self.dataset

    def normalize(self, raw_record, **kwargs):
        return []


def inventory_event(pkg_version="1.2.3-1", hostname="web-1"):
    return {
        "hostname": hostname,
        "timestamp": "2017-06-01T12:30:05Z",
        "fields": {
            "dist": "centos:7",
            "instanceid": "i-1",
            "instancetags": ["app=frontend"],
            "pkgarch": "x86_64",
            "pkgname": "example",
            "pkgversion": pkg_version,
        },
    }


def kinesis_event(*payloads):
    return {
        "Records": [
            {"kinesis": {"data": base64.b64encode(json.dumps(p).encode()).decode()}}
            for p in payloads
        ]
    }


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def cache_dir(tmp_path, sample_dataset):
    path = tmp_path / "cache"
    DatasetCache(path).save(sample_dataset)
    return path


@pytest.fixture
def sample_file(tmp_path):
    path = tmp_path / "inventory.json"
    lines = [
        json.dumps(inventory_event("1.2.3-1", "web-1")),
        json.dumps(inventory_event("1.2.5-1", "web-2")),
        json.dumps(inventory_event("1.2.2-1", "web-3")),
    ]
    path.write_text("\n".join(lines) + "\n")
    return path


class TestPipelineConfig:

    def test_from_environment(self):
        config = PipelineConfig.from_env({
            "CACHE_DIR": "/var/cache/oval",
            "INPUT_SAMPLE_PATH": "/tmp/sample.json",
            "OUTPUT_SINK": "duckdb:///tmp/out.duckdb",
        })

        assert config.cache_dir == "/var/cache/oval"
        assert config.sample_path == "/tmp/sample.json"
        assert config.output_sink == "duckdb:///tmp/out.duckdb"
        assert not config.make_cache
        assert config.batch_size == 400

    def test_legacy_names(self):
        config = PipelineConfig.from_env({
            "CACHEDIR": "/var/cache/oval",
            "INPUTSAMPLE": "/tmp/sample.json",
            "OUTPUTSTREAM": "-",
            "MAKECACHE": "1",
        })

        assert config.cache_dir == "/var/cache/oval"
        assert config.sample_path == "/tmp/sample.json"
        assert config.output_sink == "-"
        assert config.make_cache

    def test_missing_cache_dir(self):
        with pytest.raises(ConfigError) as exc_info:
            PipelineConfig.from_env({})
        assert exc_info.value.config_key == "CACHE_DIR"

    def test_yaml_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "cache_dir: /srv/cache\n"
            "source:\n"
            "  first_rhsa: 20180000\n"
            "  namespace_family: centos\n"
            "delivery:\n"
            "  batch_size: 50\n"
            "reporting:\n"
            "  report_dir: /srv/reports\n"
        )

        config = PipelineConfig.from_env({"OVAL_PIPELINE_CONFIG": str(config_file)})

        assert config.cache_dir == "/srv/cache"
        assert config.source["first_rhsa"] == 20180000
        assert config.batch_size == 50
        assert config.report_dir == "/srv/reports"
        assert config.run_ledger is None

    def test_environment_overrides_yaml(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("cache_dir: /srv/cache\noutput_sink: '-'\n")

        config = PipelineConfig.from_env(
            {"CACHE_DIR": "/override", "OUTPUT_SINK": "file:///tmp/out"},
            config_path=str(config_file),
        )

        assert config.cache_dir == "/override"
        assert config.output_sink == "file:///tmp/out"

    def test_flags_override_environment(self):
        config = PipelineConfig.from_env(
            {"CACHE_DIR": "/c", "INPUT_SAMPLE_PATH": "/env.json"},
            make_cache=True,
            sample_path="/flag.json",
        )
        assert config.make_cache
        assert config.sample_path == "/flag.json"

    def test_missing_yaml_file(self, tmp_path):
        with pytest.raises(ConfigError):
            PipelineConfig.from_env({"CACHE_DIR": "/c"}, config_path=str(tmp_path / "absent.yaml"))

    @pytest.mark.parametrize("content", ["- just\n- a list\n", "source: [unclosed\n"])
    def test_invalid_yaml(self, tmp_path, content):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(content)
        with pytest.raises(ConfigError):
            PipelineConfig.from_env({"CACHE_DIR": "/c"}, config_path=str(config_file))

    def test_invalid_batch_size(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("delivery:\n  batch_size: 0\n")
        with pytest.raises(ConfigError):
            PipelineConfig.from_env({"CACHE_DIR": "/c"}, config_path=str(config_file))


class TestBuildCache:

    def test_writes_cache(self, tmp_path, sample_dataset):
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(tmp_path)), adapter=StaticAdapter(sample_dataset))

        metrics = pipeline.build_cache()

        assert DatasetCache(tmp_path).load() == sample_dataset
        assert metrics.vulnerabilities == 3
        assert metrics.advisories_listed == 3
        assert metrics.watermark == "20170003"
        assert metrics.source_health["static"]["healthy"]
        assert metrics.completed_at is not None

    def test_failed_fetch_keeps_previous_cache(self, tmp_path, sample_dataset):
        DatasetCache(tmp_path).save(sample_dataset)
        adapter = StaticAdapter(error=DownloadError("listing unavailable", url="https://oval.example.com/"))
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(tmp_path)), adapter=adapter)

        with pytest.raises(DownloadError):
            pipeline.build_cache()

        assert DatasetCache(tmp_path).load() == sample_dataset

    def test_quality_failures_do_not_block_write(self, tmp_path, sample_dataset, caplog):
        sample_dataset.flag_name = ""
        sample_dataset.flag_value = ""
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(tmp_path)), adapter=StaticAdapter(sample_dataset))

        pipeline.build_cache()

        assert DatasetCache(tmp_path).load().vulnerabilities == sample_dataset.vulnerabilities
        assert "Quality check watermark_present failed" in caplog.text

    def test_report_and_ledger(self, tmp_path, sample_dataset):
        config = PipelineConfig(
            cache_dir=str(tmp_path / "cache"),
            report_dir=str(tmp_path / "reports"),
            run_ledger=str(tmp_path / "ledger.duckdb"),
        )
        pipeline = OvalPipeline(config, adapter=StaticAdapter(sample_dataset))

        metrics = pipeline.build_cache()

        reports = list((tmp_path / "reports").glob("run-report-*.md"))
        assert len(reports) == 1
        assert "## Data Quality Checks" in reports[0].read_text()

        with Database(config.run_ledger) as db:
            rows = db.connect().execute("SELECT run_id, mode, status, vulnerabilities FROM pipeline_runs").fetchall()
        assert rows == [(metrics.run_id, "make_cache", "success", 3)]

    def test_failed_run_recorded_in_ledger(self, tmp_path):
        config = PipelineConfig(cache_dir=str(tmp_path / "cache"), run_ledger=str(tmp_path / "ledger.duckdb"))
        pipeline = OvalPipeline(config, adapter=StaticAdapter(error=DownloadError("boom")))

        with pytest.raises(DownloadError):
            pipeline.build_cache()

        with Database(config.run_ledger) as db:
            rows = db.connect().execute("SELECT status, errors FROM pipeline_runs").fetchall()
        assert rows == [("failed", 1)]


class TestSampleMode:

    def test_matches_sample_file(self, cache_dir, sample_file, recording_sink):
        config = PipelineConfig(cache_dir=str(cache_dir), sample_path=str(sample_file))
        pipeline = OvalPipeline(config, local_sink=recording_sink)

        metrics = pipeline.process_sample()

        hosts = [line.split("\t")[1] for line in recording_sink.lines]
        assert hosts == ["web-1", "web-3", "web-3"]
        assert metrics.records_seen == 3
        assert metrics.report_lines == 3
        assert metrics.batches_delivered == 1

    def test_configured_sink_is_not_used(self, cache_dir, sample_file, capsys, monkeypatch):
        def no_sink(*args, **kwargs):
            raise AssertionError("sample mode must not build the output sink")

        monkeypatch.setattr(run_pipeline, "create_sink", no_sink)
        config = PipelineConfig.from_env({
            "CACHE_DIR": str(cache_dir),
            "INPUT_SAMPLE_PATH": str(sample_file),
            "OUTPUT_SINK": "https://collector.example.com/ingest",
        })
        pipeline = OvalPipeline(config)

        metrics = pipeline.process_sample()
        pipeline.close()

        assert metrics.report_lines == 3
        assert len(capsys.readouterr().out.splitlines()) == 3
        assert pipeline._sink is None

    def test_malformed_sample_is_fatal(self, cache_dir, tmp_path, recording_sink):
        sample = tmp_path / "bad.json"
        sample.write_text(json.dumps(inventory_event()) + "\n{not json\n")
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), local_sink=recording_sink)

        with pytest.raises(ValidationError):
            pipeline.process_sample(str(sample))
        assert recording_sink.calls == 0

    def test_missing_sample_file(self, cache_dir, tmp_path, recording_sink):
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), local_sink=recording_sink)

        with pytest.raises(ConfigError):
            pipeline.process_sample(str(tmp_path / "absent.json"))

    def test_missing_cache_is_fatal(self, tmp_path, sample_file, recording_sink):
        config = PipelineConfig(cache_dir=str(tmp_path / "empty"), sample_path=str(sample_file))

        with pytest.raises(CacheCorruptError):
            OvalPipeline(config, local_sink=recording_sink).process_sample()


class TestEventMode:

    def test_handle_event(self, cache_dir, recording_sink):
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), sink=recording_sink)
        event = kinesis_event(inventory_event("1.2.3-1"), inventory_event("1.2.5-1"))

        metrics = pipeline.handle_event(event)

        assert metrics.records_seen == 2
        assert len(recording_sink.lines) == 1
        assert recording_sink.lines[0].endswith("RHSA-2017:0001\tHigh\tfrontend")

    def test_statistics_are_per_event(self, cache_dir, recording_sink):
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), sink=recording_sink)

        pipeline.handle_event(kinesis_event(inventory_event()))
        metrics = pipeline.handle_event(kinesis_event(inventory_event()))

        assert metrics.records_seen == 1

    def test_invalid_records_do_not_block_batch(self, cache_dir, recording_sink):
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), sink=recording_sink)
        broken = inventory_event()
        del broken["fields"]["pkgversion"]

        metrics = pipeline.handle_event(kinesis_event(broken, inventory_event()))

        assert metrics.records_invalid == 1
        assert len(recording_sink.lines) == 1

    def test_sink_failure_propagates(self, cache_dir, recording_sink):
        recording_sink.fail_on_call = 1
        pipeline = OvalPipeline(PipelineConfig(cache_dir=str(cache_dir)), sink=recording_sink)

        with pytest.raises(SinkError):
            pipeline.handle_event(kinesis_event(inventory_event()))

    def test_handler_entry_point(self, clean_env, cache_dir, tmp_path):
        output = tmp_path / "out.tsv"
        clean_env.setenv("CACHE_DIR", str(cache_dir))
        clean_env.setenv("OUTPUT_SINK", f"file://{output}")
        clean_env.setattr(run_pipeline, "_pipeline", None)

        result = run_pipeline.handler(kinesis_event(inventory_event("1.2.2-1")))
        run_pipeline._pipeline.close()

        assert result == {"records": 1, "report_lines": 2, "batches": 1}
        assert len(output.read_text().splitlines()) == 2

    def test_legacy_output_stream_selects_firehose(self, cache_dir, monkeypatch):
        firehose = MagicMock()
        firehose.put_record_batch.return_value = {"FailedPutCount": 0}
        monkeypatch.setattr(sinks.boto3, "client", MagicMock(return_value=firehose))
        config = PipelineConfig.from_env({"CACHEDIR": str(cache_dir), "OUTPUTSTREAM": "systrack-firehose"})
        pipeline = OvalPipeline(config)

        metrics = pipeline.handle_event(kinesis_event(inventory_event("1.2.2-1")))

        assert isinstance(pipeline.sink, FirehoseSink)
        assert metrics.batches_delivered == 1
        kwargs = firehose.put_record_batch.call_args.kwargs
        assert kwargs["DeliveryStreamName"] == "systrack-firehose"
        assert len(kwargs["Records"]) == 2

    def test_handler_fails_without_cache(self, clean_env, tmp_path):
        clean_env.setenv("CACHE_DIR", str(tmp_path / "empty"))
        clean_env.setattr(run_pipeline, "_pipeline", None)

        with pytest.raises(CacheCorruptError):
            run_pipeline.handler(kinesis_event(inventory_event()))


class TestMain:

    def test_sample_mode_writes_stdout(self, clean_env, cache_dir, sample_file, capsys):
        clean_env.setenv("CACHE_DIR", str(cache_dir))

        with pytest.raises(SystemExit) as exc_info:
            run_pipeline.main(["--sample", str(sample_file)])

        assert exc_info.value.code == 0
        out = capsys.readouterr().out.splitlines()
        assert len(out) == 3
        assert all(len(line.split("\t")) == 11 for line in out)

    def test_missing_cache_dir_exits_1(self, clean_env):
        with pytest.raises(SystemExit) as exc_info:
            run_pipeline.main([])
        assert exc_info.value.code == 1

    def test_no_mode_exits_1(self, clean_env, cache_dir):
        clean_env.setenv("CACHE_DIR", str(cache_dir))
        with pytest.raises(SystemExit) as exc_info:
            run_pipeline.main([])
        assert exc_info.value.code == 1

    def test_corrupt_cache_exits_1(self, clean_env, tmp_path, sample_file):
        (tmp_path / "rheldata").write_text("{}")
        clean_env.setenv("CACHE_DIR", str(tmp_path))

        with pytest.raises(SystemExit) as exc_info:
            run_pipeline.main(["--sample", str(sample_file)])
        assert exc_info.value.code == 1
