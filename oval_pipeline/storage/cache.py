"""
Serialization of the aggregate vulnerability dataset.

The dataset is stored as a single JSON blob named "rheldata" inside the
cache directory. write()/read() are lossless inverses; read() rejects any
blob that does not have the expected shape, since a matcher cannot run
against a partially decoded dataset.

Blob layout:
{
  "Vulnerabilities": [
    {"Name", "Link", "Severity", "Description",
     "Affected": [{"Namespace", "FeatureName", "AffectedVersion",
                   "FixedInVersion", "VersionFormat"}]}
  ],
  "FlagName": "rhelUpdater",
  "FlagValue": "20171234"
}
"""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union

from ..errors import CacheCorruptError
from ..ingestion.base_adapter import AffectedFeature, Severity, UpdateResponse, Vulnerability

logger = logging.getLogger(__name__)

CACHE_FILENAME = "rheldata"


def write(dataset: UpdateResponse) -> bytes:
    """Serialize a dataset to a JSON blob."""
    payload = {
        "Vulnerabilities": [
            {
                "Name": v.name,
                "Link": v.link,
                "Severity": v.severity.value,
                "Description": v.description,
                "Affected": [
                    {
                        "Namespace": f.namespace,
                        "FeatureName": f.feature_name,
                        "AffectedVersion": f.affected_version,
                        "FixedInVersion": f.fixed_in_version,
                        "VersionFormat": f.version_format,
                    }
                    for f in v.affected
                ],
            }
            for v in dataset.vulnerabilities
        ],
        "FlagName": dataset.flag_name,
        "FlagValue": dataset.flag_value,
    }
    return json.dumps(payload).encode("utf-8")


def read(blob: Union[bytes, str]) -> UpdateResponse:
    """
    Deserialize a dataset blob.

    Raises:
        CacheCorruptError: If the blob is not valid JSON or has the wrong shape
    """
    try:
        payload = json.loads(blob)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise CacheCorruptError(f"cache blob is not valid JSON: {e}", document=CACHE_FILENAME) from e

    try:
        return _decode(payload)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CacheCorruptError(f"cache blob has unexpected shape: {e!r}", document=CACHE_FILENAME) from e


def _decode(payload: Dict[str, Any]) -> UpdateResponse:
    vulnerabilities = []
    # A Go-style null list decodes as empty
    for item in payload["Vulnerabilities"] or []:
        affected = [
            AffectedFeature(
                namespace=_string(f["Namespace"]),
                feature_name=_string(f["FeatureName"]),
                affected_version=_string(f["AffectedVersion"]),
                fixed_in_version=_string(f["FixedInVersion"]),
                version_format=_string(f["VersionFormat"]),
            )
            for f in item["Affected"] or []
        ]
        vulnerabilities.append(Vulnerability(
            name=_string(item["Name"]),
            link=_string(item["Link"]),
            severity=Severity(item["Severity"]),
            description=_string(item["Description"]),
            affected=affected,
        ))

    return UpdateResponse(
        vulnerabilities=vulnerabilities,
        flag_name=_string(payload["FlagName"]),
        flag_value=_string(payload["FlagValue"]),
    )


def _string(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected string, got {type(value).__name__}")
    return value


class DatasetCache:
    """
    File-backed cache for the dataset blob.

    save() writes through a temporary file in the same directory so a
    reader never sees a half-written blob.
    """

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)
        self.path = self.cache_dir / CACHE_FILENAME

    def save(self, dataset: UpdateResponse) -> Path:
        blob = write(dataset)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        fd, temp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{CACHE_FILENAME}.", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(blob)
            os.replace(temp_name, self.path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

        logger.info(
            f"Cached {len(dataset.vulnerabilities)} vulnerabilities "
            f"({dataset.feature_count} features) to {self.path}"
        )
        return self.path

    def load(self) -> UpdateResponse:
        """
        Load the cached dataset.

        Raises:
            CacheCorruptError: If the blob is missing or malformed
        """
        try:
            blob = self.path.read_bytes()
        except OSError as e:
            raise CacheCorruptError(f"cannot read cache file: {e}", document=str(self.path)) from e

        dataset = read(blob)
        logger.info(f"Loaded {len(dataset.vulnerabilities)} vulnerabilities from {self.path}")
        return dataset
