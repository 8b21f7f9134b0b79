"""Persistent run state using SQLite.

Holds everything that survives between runs: coverage units with their
dependency hashes, per-form content digests, the previous verdict of every
site and a small metadata table.
"""

from __future__ import annotations

import json
import sqlite3
from collections import defaultdict
from pathlib import Path

from mutagraph.coverage.index import CoverageUnit
from mutagraph.mutation.models import SiteResult


class StateStore:
    """Reads and writes `.mutagraph/state.db`. The core is its only user."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        return self._conn

    def _create_tables(self) -> None:
        conn = self._get_conn()
        conn.executescript("""
            -- One row per test file
            CREATE TABLE IF NOT EXISTS coverage_units (
                unit_id TEXT PRIMARY KEY,
                dependency_hash TEXT NOT NULL,
                test_hash TEXT NOT NULL,
                dependencies TEXT NOT NULL,      -- JSON list of relative paths
                tests TEXT NOT NULL              -- JSON list of node ids
            );

            CREATE TABLE IF NOT EXISTS coverage_hits (
                unit_id TEXT NOT NULL REFERENCES coverage_units(unit_id),
                test_id TEXT NOT NULL,
                form_id TEXT NOT NULL,           -- oracle form id
                coordinate TEXT NOT NULL,        -- '0/2/#3fa9c1d2e4b5'
                PRIMARY KEY (unit_id, test_id, form_id, coordinate)
            );

            -- Oracle form id -> where it starts, as seen by each unit
            CREATE TABLE IF NOT EXISTS form_locations (
                unit_id TEXT NOT NULL REFERENCES coverage_units(unit_id),
                form_id TEXT NOT NULL,
                file TEXT NOT NULL,
                line INTEGER NOT NULL,
                PRIMARY KEY (unit_id, form_id)
            );

            CREATE TABLE IF NOT EXISTS form_digests (
                form_id TEXT PRIMARY KEY,
                file TEXT NOT NULL,
                digest TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS site_results (
                site_id TEXT PRIMARY KEY,
                form_id TEXT NOT NULL,
                verdict TEXT NOT NULL,
                payload TEXT NOT NULL            -- SiteResult as JSON
            );

            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_hits_unit ON coverage_hits(unit_id);
            CREATE INDEX IF NOT EXISTS idx_results_form ON site_results(form_id);
        """)
        conn.commit()

    # ------------------------------------------------------------------
    # Coverage units
    # ------------------------------------------------------------------

    def load_units(self) -> dict[str, CoverageUnit]:
        conn = self._get_conn()
        hits: dict[str, list[tuple[str, str, str]]] = defaultdict(list)
        for row in conn.execute("SELECT unit_id, test_id, form_id, coordinate FROM coverage_hits"):
            hits[row["unit_id"]].append((row["test_id"], row["form_id"], row["coordinate"]))
        locations: dict[str, dict[str, tuple[str, int]]] = defaultdict(dict)
        for row in conn.execute("SELECT unit_id, form_id, file, line FROM form_locations"):
            locations[row["unit_id"]][row["form_id"]] = (row["file"], row["line"])

        units = {}
        for row in conn.execute("SELECT * FROM coverage_units"):
            unit_id = row["unit_id"]
            units[unit_id] = CoverageUnit(
                unit_id=unit_id,
                dependency_hash=row["dependency_hash"],
                test_hash=row["test_hash"],
                dependencies=json.loads(row["dependencies"]),
                tests=json.loads(row["tests"]),
                hits=sorted(hits.get(unit_id, [])),
                locations=locations.get(unit_id, {}),
            )
        return units

    def save_units(self, units: dict[str, CoverageUnit]) -> None:
        """Replace all stored units with `units`."""
        conn = self._get_conn()
        conn.execute("DELETE FROM coverage_hits")
        conn.execute("DELETE FROM form_locations")
        conn.execute("DELETE FROM coverage_units")
        for unit in units.values():
            conn.execute(
                "INSERT INTO coverage_units (unit_id, dependency_hash, test_hash, dependencies, tests) VALUES (?, ?, ?, ?, ?)",
                (unit.unit_id, unit.dependency_hash, unit.test_hash, json.dumps(unit.dependencies), json.dumps(unit.tests)),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO coverage_hits (unit_id, test_id, form_id, coordinate) VALUES (?, ?, ?, ?)",
                [(unit.unit_id, t, f, c) for t, f, c in unit.hits],
            )
            conn.executemany(
                "INSERT INTO form_locations (unit_id, form_id, file, line) VALUES (?, ?, ?, ?)",
                [(unit.unit_id, fid, file, line) for fid, (file, line) in unit.locations.items()],
            )
        conn.commit()

    # ------------------------------------------------------------------
    # Form digests
    # ------------------------------------------------------------------

    def load_digests(self) -> dict[str, str]:
        conn = self._get_conn()
        return {row["form_id"]: row["digest"] for row in conn.execute("SELECT form_id, digest FROM form_digests")}

    def save_digests(self, digests: dict[str, tuple[str, str]]) -> None:
        """Replace the digest table; `digests` maps form id -> (file, digest)."""
        conn = self._get_conn()
        conn.execute("DELETE FROM form_digests")
        conn.executemany(
            "INSERT INTO form_digests (form_id, file, digest) VALUES (?, ?, ?)",
            [(fid, file, digest) for fid, (file, digest) in digests.items()],
        )
        conn.commit()

    # ------------------------------------------------------------------
    # Site results
    # ------------------------------------------------------------------

    def load_results(self, form_ids: set[str] | None = None) -> list[SiteResult]:
        conn = self._get_conn()
        rows = conn.execute("SELECT form_id, payload FROM site_results ORDER BY rowid").fetchall()
        return [
            SiteResult.model_validate_json(row["payload"])
            for row in rows
            if form_ids is None or row["form_id"] in form_ids
        ]

    def save_results(self, results: list[SiteResult]) -> None:
        """Replace the results table with `results`."""
        conn = self._get_conn()
        conn.execute("DELETE FROM site_results")
        conn.executemany(
            "INSERT OR REPLACE INTO site_results (site_id, form_id, verdict, payload) VALUES (?, ?, ?, ?)",
            [(r.site.id, r.site.form_id, r.verdict.value, r.model_dump_json()) for r in results],
        )
        conn.commit()

    def verdict_counts(self) -> dict[str, int]:
        conn = self._get_conn()
        rows = conn.execute("SELECT verdict, COUNT(*) AS n FROM site_results GROUP BY verdict")
        return {row["verdict"]: row["n"] for row in rows}

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def get_metadata(self, key: str):
        """Get a metadata value."""
        conn = self._get_conn()
        row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        if row:
            return json.loads(row["value"])
        return None

    def set_metadata(self, key: str, value) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
