"""
Inventory records and report lines.

An InventoryRecord is one observed host/package fact as produced by the
package-inventory collector:

    {"hostname": ..., "timestamp": ...,
     "fields": {"dist", "fqdn", "instanceid", "instancetype",
                "instancetags": ["key=value", ...], "ami",
                "pkgarch", "pkgname", "pkgversion"}}

The collector's original mozlog-style capitalized keys ("Hostname",
"Timestamp", "Time", "Fields") are accepted too.

A ReportLine is the denormalized output for one vulnerable package and
renders as a single tab-separated line.
"""
import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ValidationError

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

REQUIRED_FIELDS = (
    ("pkg_name", "package name"),
    ("pkg_version", "package version"),
    ("pkg_arch", "package architecture"),
    ("dist", "distribution"),
)

_FRACTION = re.compile(r"(\.\d{6})\d+")
# Tabs and line breaks inside a value would shift the report columns
_SEPARATORS = re.compile(r"[\t\r\n]")


@dataclass
class InventoryRecord:
    """One observed package on one host."""
    hostname: str = ""
    timestamp: Optional[datetime] = None
    dist: str = ""
    fqdn: str = ""
    instance_id: str = ""
    instance_type: str = ""
    instance_tags: List[str] = field(default_factory=list)
    ami: str = ""
    pkg_arch: str = ""
    pkg_name: str = ""
    pkg_version: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InventoryRecord":
        """
        Build a record from a decoded inventory event.

        Raises:
            ValidationError: If the event is not an object or a field has
                the wrong type
        """
        if not isinstance(data, dict):
            raise ValidationError("inventory event is not a JSON object")

        fields = _get(data, "fields", "Fields") or {}
        if not isinstance(fields, dict):
            raise ValidationError("inventory event fields are not an object", field="fields")

        tags = fields.get("instancetags") or []
        if not isinstance(tags, list):
            raise ValidationError("instance tags are not a list", field="instancetags")

        timestamp = _parse_time(_get(data, "time", "Time"))
        if timestamp is None:
            timestamp = _parse_time(_get(data, "timestamp", "Timestamp"))

        return cls(
            hostname=_str(_get(data, "hostname", "Hostname")),
            timestamp=timestamp,
            dist=_str(fields.get("dist")),
            fqdn=_str(fields.get("fqdn")),
            instance_id=_str(fields.get("instanceid")),
            instance_type=_str(fields.get("instancetype")),
            instance_tags=[str(t) for t in tags],
            ami=_str(fields.get("ami")),
            pkg_arch=_str(fields.get("pkgarch")),
            pkg_name=_str(fields.get("pkgname")),
            pkg_version=_str(fields.get("pkgversion")),
        )

    def validate(self) -> None:
        """
        Check that every field needed for matching is present.

        Raises:
            ValidationError: Naming the first missing field
        """
        for attr, label in REQUIRED_FIELDS:
            if not getattr(self, attr).strip():
                raise ValidationError(f"package entry had no {label}", field=attr)

    @property
    def app_tag(self) -> str:
        """Value of the "app" instance tag (case-insensitive key), last one wins."""
        app = UNKNOWN
        for tag in self.instance_tags:
            parts = tag.split("=")
            if len(parts) != 2:
                continue
            if parts[0].lower() == "app":
                app = parts[1]
        return app


@dataclass
class ReportLine:
    """One vulnerable package installation."""
    timestamp: str
    hostname: str
    instance_id: str
    instance_type: str
    ami: str
    pkg_arch: str
    pkg_name: str
    pkg_version: str
    vuln_name: str
    severity: str
    app_tag: str

    @classmethod
    def from_match(cls, record: InventoryRecord, vuln_name: str, severity: str) -> "ReportLine":
        timestamp = UNKNOWN
        if record.timestamp is not None:
            timestamp = record.timestamp.astimezone(timezone.utc).strftime(TIME_FORMAT)

        return cls(
            timestamp=timestamp,
            hostname=record.hostname or record.fqdn or UNKNOWN,
            instance_id=record.instance_id or UNKNOWN,
            instance_type=record.instance_type or UNKNOWN,
            ami=record.ami or UNKNOWN,
            pkg_arch=record.pkg_arch,
            pkg_name=record.pkg_name,
            pkg_version=record.pkg_version,
            vuln_name=vuln_name,
            severity=severity,
            app_tag=record.app_tag,
        )

    def fields(self) -> List[str]:
        """Column values with embedded tabs and line breaks replaced by spaces."""
        values = [
            self.timestamp, self.hostname, self.instance_id, self.instance_type,
            self.ami, self.pkg_arch, self.pkg_name, self.pkg_version,
            self.vuln_name, self.severity, self.app_tag,
        ]
        return [_SEPARATORS.sub(" ", value) for value in values]

    def to_tsv(self) -> str:
        return "\t".join(self.fields())

    @classmethod
    def from_tsv(cls, line: str) -> "ReportLine":
        parts = line.rstrip("\n").split("\t")
        if len(parts) != 11:
            raise ValueError(f"report line has {len(parts)} fields, expected 11")
        return cls(*parts)


def decode_kinesis_event(event: Dict[str, Any]) -> List[InventoryRecord]:
    """
    Decode the inventory records carried by a Kinesis-style event.

    Each entry of event["Records"] holds base64 JSON under kinesis.data.
    Entries that cannot be decoded are logged and skipped.
    """
    records = []
    for idx, entry in enumerate(event.get("Records") or []):
        try:
            raw = base64.b64decode(entry["kinesis"]["data"], validate=True)
            records.append(InventoryRecord.from_dict(json.loads(raw)))
        except (KeyError, TypeError, binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Skipping undecodable event record {idx}: {e}")
        except ValidationError as e:
            logger.warning(f"Skipping event record {idx}: {e}")
    return records


def parse_lines(lines: Iterable[str]) -> Iterable[InventoryRecord]:
    """
    Parse newline-delimited JSON inventory records.

    Blank lines are ignored; the first malformed line raises.

    Raises:
        ValidationError: If a line is not a valid inventory record
    """
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            raise ValidationError(f"line {lineno}: invalid JSON: {e}") from e
        try:
            yield InventoryRecord.from_dict(data)
        except ValidationError as e:
            raise ValidationError(f"line {lineno}: {e}", field=e.field) from e


def _get(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) not in (None, ""):
            return data[key]
    return None


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _parse_time(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or a unix timestamp in s, ms, us or ns."""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        seconds = float(value)
        while seconds > 1e11:
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return _parse_time(int(text))
        text = _FRACTION.sub(r"\1", text.replace("Z", "+00:00"))
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparsable event time: {value!r}")
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        if parsed.year <= 1:
            return None
        return parsed

    return None
