"""store.py — read-only access to the lane tracking database.

The tracking database is a SQLite file with the tables below. Only the
columns listed are read; the database is opened read-only and never written.

Lane directories are ``<root>/<lane.hierarchy_name>``, with ``symlink_root``
giving the presentation-tier path and ``storage_root`` the storage-tier path.
"""
from __future__ import annotations

__all__ = ["SCHEMA", "ID_TYPES", "TrackingStore"]

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

import pandas as pd

from lane_pathfind.config import FinderConfig
from lane_pathfind.exceptions import ConfigurationError
from lane_pathfind.lanes import Lane, PipelineRun

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS project (
    project_id INTEGER PRIMARY KEY,
    ssid INTEGER,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS species (
    species_id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS sample (
    sample_id INTEGER PRIMARY KEY,
    project_id INTEGER NOT NULL REFERENCES project(project_id),
    species_id INTEGER REFERENCES species(species_id),
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS library (
    library_id INTEGER PRIMARY KEY,
    sample_id INTEGER NOT NULL REFERENCES sample(sample_id),
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS lane (
    lane_id INTEGER PRIMARY KEY,
    library_id INTEGER NOT NULL REFERENCES library(library_id),
    name TEXT NOT NULL,
    hierarchy_name TEXT NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    paired INTEGER NOT NULL DEFAULT 1,
    qc_status TEXT DEFAULT 'pending',
    read_len INTEGER,
    raw_reads INTEGER,
    raw_bases INTEGER
);
CREATE TABLE IF NOT EXISTS mapstats (
    mapstats_id INTEGER PRIMARY KEY,
    lane_id INTEGER NOT NULL REFERENCES lane(lane_id),
    prefix TEXT NOT NULL DEFAULT '_',
    mapper TEXT NOT NULL,
    reference TEXT NOT NULL,
    changed TEXT NOT NULL,
    is_qc INTEGER NOT NULL DEFAULT 0,
    raw_reads INTEGER,
    raw_bases INTEGER,
    reads_mapped INTEGER,
    reads_paired INTEGER,
    mean_insert REAL,
    reference_size INTEGER,
    depth_of_coverage REAL,
    depth_of_coverage_sd REAL,
    genome_covered_1x REAL,
    genome_covered_5x REAL,
    genome_covered_10x REAL,
    genome_covered_50x REAL,
    genome_covered_100x REAL
);
"""

ID_TYPES: tuple[str, ...] = ("lane", "library", "sample", "species", "study")

_LANE_QUERY = """
SELECT l.lane_id, l.name, l.hierarchy_name, l.processed, l.paired, l.qc_status,
       l.read_len AS cycles, l.raw_reads, l.raw_bases,
       p.ssid AS study_id, s.name AS sample
FROM lane l
JOIN library lib ON l.library_id = lib.library_id
JOIN sample s ON lib.sample_id = s.sample_id
JOIN project p ON s.project_id = p.project_id
LEFT JOIN species sp ON s.species_id = sp.species_id
WHERE {where}
ORDER BY l.name, l.lane_id
"""

_ID_CLAUSES: dict[str, str] = {
    "lane": "l.name = :id",
    "library": "lib.name = :id",
    "sample": "s.name = :id",
    "species": "sp.name LIKE :id || '%'",
    "study": "(CAST(p.ssid AS TEXT) = :id OR p.name = :id)",
}

_RUN_INT_COLUMNS = ("raw_reads", "raw_bases", "reads_mapped", "reads_paired", "reference_size")
_RUN_FLOAT_COLUMNS = (
    "mean_insert", "depth_of_coverage", "depth_of_coverage_sd",
    "genome_covered_1x", "genome_covered_5x", "genome_covered_10x",
    "genome_covered_50x", "genome_covered_100x",
)


def _value(value, cast=None):
    """Return None for SQL NULL / NaN, otherwise *value* (optionally cast)."""
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return cast(value) if cast is not None else value


class TrackingStore:
    """Queries the tracking database for lanes and their mapping runs.

    Parameters
    ----------
    db_path:
        SQLite database file. Opened read-only.
    symlink_root / storage_root:
        Roots of the presentation and storage tiers of the lane hierarchy.
    """

    def __init__(self, db_path: Path, symlink_root: Path, storage_root: Path) -> None:
        self.db_path = Path(db_path)
        self.symlink_root = Path(symlink_root)
        self.storage_root = Path(storage_root)
        if not self.db_path.is_file():
            raise ConfigurationError(f"tracking database {self.db_path} does not exist")
        try:
            self._conn = sqlite3.connect(f"{self.db_path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as exc:
            raise ConfigurationError(
                f"cannot open tracking database {self.db_path}: {exc}"
            ) from exc

    @classmethod
    def from_config(cls, config: FinderConfig) -> "TrackingStore":
        return cls(config.database, config.symlink_root, config.storage_root)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> "TrackingStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def lanes_for_id(self, lane_id: str, id_type: str) -> pd.DataFrame:
        """Return the lane rows matching one identifier, ordered by lane name.

        Species ids match as a name prefix; study ids match either the
        numeric study id or the study name.

        Raises
        ------
        ConfigurationError
            If *id_type* is not one of :data:`ID_TYPES`.
        """
        if id_type not in _ID_CLAUSES:
            raise ConfigurationError(
                f"Unknown id type {id_type!r}. Known types: {list(ID_TYPES)}"
            )
        sql = _LANE_QUERY.format(where=_ID_CLAUSES[id_type])
        rows = pd.read_sql_query(sql, self._conn, params={"id": str(lane_id)})
        logger.debug("%s %r matched %d lane(s)", id_type, lane_id, len(rows))
        return rows

    def runs_for_lane(self, lane_id: int, include_qc: bool = False) -> list[PipelineRun]:
        """Return the mapping runs of a lane, oldest mapstats id first."""
        sql = "SELECT * FROM mapstats WHERE lane_id = :lane_id"
        if not include_qc:
            sql += " AND is_qc = 0"
        sql += " ORDER BY mapstats_id"
        rows = pd.read_sql_query(sql, self._conn, params={"lane_id": int(lane_id)})

        runs = []
        for _, row in rows.iterrows():
            stats = {col: _value(row.get(col), int) for col in _RUN_INT_COLUMNS}
            stats.update({col: _value(row.get(col), float) for col in _RUN_FLOAT_COLUMNS})
            runs.append(PipelineRun(
                mapstats_id=int(row["mapstats_id"]),
                prefix=str(row["prefix"]),
                mapper=str(row["mapper"]),
                reference=str(row["reference"]),
                changed=datetime.fromisoformat(str(row["changed"])),
                is_qc=bool(row["is_qc"]),
                **stats,
            ))
        return runs

    def make_lane(self, row: pd.Series) -> Lane:
        """Build a :class:`Lane`, with its non-QC mapping runs, from a lane row."""
        hierarchy = str(row["hierarchy_name"])
        return Lane(
            name=str(row["name"]),
            lane_id=int(row["lane_id"]),
            symlink_path=self.symlink_root / hierarchy,
            storage_path=self.storage_root / hierarchy,
            processed=int(row["processed"]),
            paired=bool(row["paired"]),
            qc_status=_value(row["qc_status"], str) or "pending",
            study_id=_value(row["study_id"], lambda v: str(int(v))),
            sample=_value(row["sample"], str),
            cycles=_value(row["cycles"], int),
            raw_reads=_value(row["raw_reads"], int),
            raw_bases=_value(row["raw_bases"], int),
            runs=self.runs_for_lane(int(row["lane_id"])),
        )
