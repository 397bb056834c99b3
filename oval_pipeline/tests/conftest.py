"""
Shared pytest fixtures for OVAL pipeline tests.

This module provides reusable fixtures that simplify test setup
and reduce code duplication across test modules.
"""
import dataclasses
from datetime import datetime, timezone
from typing import List

import pytest

from oval_pipeline.delivery.sinks import BaseSink
from oval_pipeline.errors import SinkError
from oval_pipeline.ingestion.base_adapter import (
    AffectedFeature,
    Severity,
    UpdateResponse,
    Vulnerability,
)
from oval_pipeline.matching.inventory import InventoryRecord
from oval_pipeline.storage.database import Database

ERRATA_URL = "https://access.redhat.com/errata/"

OVAL_DOCUMENT = b"""<?xml version="1.0" encoding="utf-8"?>
<oval_definitions xmlns="http://oval.mitre.org/XMLSchema/oval-definitions-5">
  <generator>
    <product_name>Red Hat OVAL Patch Definition Merger</product_name>
  </generator>
  <definitions>
    <definition class="patch" id="oval:com.redhat.rhsa:def:20171234" version="601">
      <metadata>
        <title>RHSA-2017:1234: httpd security update (Important)</title>
        <reference ref_id="RHSA-2017:1234" ref_url="https://access.redhat.com/errata/RHSA-2017:1234" source="RHSA"/>
        <reference ref_id="CVE-2017-3167" ref_url="https://access.redhat.com/security/cve/CVE-2017-3167" source="CVE"/>
        <description>The httpd packages provide the Apache HTTP Server.

Security Fix(es):
* Authentication bypass.</description>
      </metadata>
      <criteria operator="OR">
        <criterion comment="Red Hat Enterprise Linux must be installed" test_ref="oval:com.redhat.rhsa:tst:20171234004"/>
        <criteria operator="AND">
          <criterion comment="Red Hat Enterprise Linux 7 is installed" test_ref="oval:com.redhat.rhsa:tst:20171234003"/>
          <criteria operator="OR">
            <criteria operator="AND">
              <criterion comment="httpd is earlier than 0:2.4.6-67.el7_4.2" test_ref="oval:com.redhat.rhsa:tst:20171234001"/>
              <criterion comment="httpd is signed with Red Hat redhatrelease2 key" test_ref="oval:com.redhat.rhsa:tst:20171234002"/>
            </criteria>
            <criteria operator="AND">
              <criterion comment="mod_ssl is earlier than 1:2.4.6-67.el7_4.2" test_ref="oval:com.redhat.rhsa:tst:20171234005"/>
              <criterion comment="mod_ssl is signed with Red Hat redhatrelease2 key" test_ref="oval:com.redhat.rhsa:tst:20171234006"/>
            </criteria>
          </criteria>
        </criteria>
      </criteria>
    </definition>
  </definitions>
</oval_definitions>
"""


class RecordingSink(BaseSink):
    """Sink that keeps every batch in memory and can fail on a given call."""

    name = "recording"

    def __init__(self):
        self.batches: List[List[str]] = []
        self.calls = 0
        self.fail_on_call = None
        self.closed = False

    def put_batch(self, lines: List[str]) -> None:
        self.calls += 1
        if self.fail_on_call == self.calls:
            raise SinkError("sink unavailable")
        self.batches.append(list(lines))

    def close(self) -> None:
        self.closed = True

    @property
    def lines(self) -> List[str]:
        return [line for batch in self.batches for line in batch]


@pytest.fixture
def temp_db(tmp_path):
    """
    Create a temporary DuckDB database for testing.

    Yields:
        Database instance with schema initialized
    """
    db = Database(str(tmp_path / "test.duckdb"))
    db.initialize_schema()
    yield db
    db.close()


@pytest.fixture
def oval_document():
    """Single-definition RHSA document covering httpd and mod_ssl on RHEL 7."""
    return OVAL_DOCUMENT


@pytest.fixture
def sample_dataset():
    """
    Small dataset for matching tests.

    - RHSA-2017:0001 (High): example fixed in 1.2.4-1 (centos:7) and 1.2.2-1 (centos:6)
    - RHSA-2017:0002 (Low): example fixed in 1.2.3-1, openssl fixed in 1:1.0.2k-8.el7
    - RHSA-2017:0003 (Medium): kernel with no fix
    """
    return UpdateResponse(
        vulnerabilities=[
            Vulnerability(
                name="RHSA-2017:0001",
                link=ERRATA_URL + "RHSA-2017:0001",
                severity=Severity.HIGH,
                description="example security update",
                affected=[
                    AffectedFeature("centos:7", "example", "1.2.4-1", "1.2.4-1"),
                    AffectedFeature("centos:6", "example", "1.2.2-1", "1.2.2-1"),
                ]
            ),
            Vulnerability(
                name="RHSA-2017:0002",
                link=ERRATA_URL + "RHSA-2017:0002",
                severity=Severity.LOW,
                description="example and openssl update",
                affected=[
                    AffectedFeature("centos:7", "example", "1.2.3-1", "1.2.3-1"),
                    AffectedFeature("centos:7", "openssl", "1:1.0.2k-8.el7", "1:1.0.2k-8.el7"),
                ]
            ),
            Vulnerability(
                name="RHSA-2017:0003",
                link=ERRATA_URL + "RHSA-2017:0003",
                severity=Severity.MEDIUM,
                description="kernel issue without a fix",
                affected=[
                    AffectedFeature("centos:7", "kernel", "#MAXV#", ""),
                ]
            ),
        ],
        flag_name="rhelUpdater",
        flag_value="20170003"
    )


@pytest.fixture
def make_record():
    """
    Factory for inventory records.

    Returns:
        Callable taking field overrides and returning an InventoryRecord
    """
    base = InventoryRecord(
        hostname="web-1",
        timestamp=datetime(2017, 6, 1, 12, 30, 5, tzinfo=timezone.utc),
        dist="centos:7",
        fqdn="web-1.example.com",
        instance_id="i-0abc123",
        instance_type="t2.micro",
        instance_tags=["env=prod", "app=frontend"],
        ami="ami-1234abcd",
        pkg_arch="x86_64",
        pkg_name="example",
        pkg_version="1.2.3-1",
    )

    def _make(**overrides) -> InventoryRecord:
        return dataclasses.replace(base, **overrides)

    return _make


@pytest.fixture
def recording_sink():
    """In-memory sink; set fail_on_call to make a given put_batch call fail."""
    return RecordingSink()
