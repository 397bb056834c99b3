"""
DuckDB storage for report lines and pipeline run metadata.

This module provides:
- DuckDB connection lifecycle management
- report_lines table used by the DuckDB sink
- pipeline_runs table recording one row per cache build or match run

Design decisions:
- One transaction per inserted batch, so a batch lands completely or not at all
- Report fields are stored as separate columns for ad hoc querying
- Run metrics are kept as JSON alongside the headline counters
"""
import json
import secrets
from datetime import datetime
from typing import List, Optional, Sequence

import duckdb

REPORT_COLUMNS = (
    "event_time",
    "hostname",
    "instance_id",
    "instance_type",
    "ami",
    "pkg_arch",
    "pkg_name",
    "pkg_version",
    "vuln_name",
    "severity",
    "app_tag",
)


class Database:
    """DuckDB connection plus the report_lines and pipeline_runs tables."""

    def __init__(self, db_path: str = "oval_pipeline.duckdb"):
        self.db_path = db_path
        self.conn: Optional[duckdb.DuckDBPyConnection] = None

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Open the database file on first use and reuse the connection."""
        if self.conn is None:
            self.conn = duckdb.connect(self.db_path)
        return self.conn

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    def initialize_schema(self):
        """Create all required tables if they don't exist."""
        conn = self.connect()

        columns = "".join(f"{name} VARCHAR, " for name in REPORT_COLUMNS)
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS report_lines ({columns}loaded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP)"
        )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS pipeline_runs (
                run_id VARCHAR PRIMARY KEY,
                mode VARCHAR,
                started_at TIMESTAMP,
                completed_at TIMESTAMP,
                status VARCHAR,
                vulnerabilities INTEGER,
                report_lines INTEGER,
                errors INTEGER,
                metadata JSON
            )
        """)

        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_report_vuln
            ON report_lines(vuln_name)
        """)

    def insert_report_batch(self, rows: Sequence[Sequence[str]]) -> int:
        """
        Insert one batch of report rows in a single transaction.

        Args:
            rows: Rows with one value per REPORT_COLUMNS entry

        Returns:
            Number of rows inserted

        Raises:
            ValueError: If a row has the wrong number of fields
            duckdb.Error: If the insert fails (the batch is rolled back)
        """
        for row in rows:
            if len(row) != len(REPORT_COLUMNS):
                raise ValueError(f"report row has {len(row)} fields, expected {len(REPORT_COLUMNS)}")

        conn = self.connect()
        placeholders = ", ".join("?" for _ in REPORT_COLUMNS)
        conn.execute("BEGIN TRANSACTION")
        try:
            conn.executemany(
                f"INSERT INTO report_lines ({', '.join(REPORT_COLUMNS)}) VALUES ({placeholders})",
                [list(row) for row in rows],
            )
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

        return len(rows)

    def count_report_lines(self) -> int:
        return self.connect().execute("SELECT count(*) FROM report_lines").fetchone()[0]

    def fetch_report_lines(self) -> List[tuple]:
        """Return stored report rows in insertion order."""
        return self.connect().execute(
            f"SELECT {', '.join(REPORT_COLUMNS)} FROM report_lines"
        ).fetchall()

    def record_run(self, metrics, status: str) -> None:
        """
        Record (or replace) the metadata row for a pipeline run.

        Args:
            metrics: RunMetrics for the run
            status: success | failed
        """
        conn = self.connect()
        conn.execute("DELETE FROM pipeline_runs WHERE run_id = ?", [metrics.run_id])
        conn.execute("""
            INSERT INTO pipeline_runs
            (run_id, mode, started_at, completed_at, status,
             vulnerabilities, report_lines, errors, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [
            metrics.run_id,
            metrics.mode,
            metrics.started_at,
            metrics.completed_at,
            status,
            metrics.vulnerabilities,
            metrics.report_lines,
            metrics.errors,
            json.dumps(metrics.to_dict()),
        ])

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def new_run_id() -> str:
    """Run ID in format: run_YYYYMMDD_HHMMSS_ffffff_<6 hex chars>"""
    return f"run_{datetime.utcnow().strftime('%Y%m%d_%H%M%S_%f')}_{secrets.token_hex(3)}"
