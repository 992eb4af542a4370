"""stats.py — per-lane statistics tables.

Two reports are built from files left by the pipelines and from the mapping
runs in the tracking database:

* assembly statistics, one row per assembler and assembly, from the
  assembler's ``*.stats`` file and the bamcheck report of reads mapped back
  to the contigs (``contigs.mapped.sorted.bam.bc``);
* mapping statistics, one row per mapping run.

A value that cannot be found is left empty (``None``), never ``0``.
"""
from __future__ import annotations

__all__ = [
    "ASSEMBLY_STATS_HEADERS",
    "MAPPING_STATS_HEADERS",
    "parse_assembly_stats",
    "parse_bamcheck",
    "assembly_stats_rows",
    "mapping_stats_rows",
    "stats_frame",
    "write_stats",
]

import logging
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from lane_pathfind.lanes import Lane
from lane_pathfind.sink import check_destination

logger = logging.getLogger(__name__)

ASSEMBLY_STATS_HEADERS: list[str] = [
    "Lane",
    "Assembly Type",
    "Total Length",
    "No Contigs",
    "Avg Contig Length",
    "Largest Contig",
    "N50",
    "Contigs in N50",
    "N60",
    "Contigs in N60",
    "N70",
    "Contigs in N70",
    "N80",
    "Contigs in N80",
    "N90",
    "Contigs in N90",
    "N100",
    "Contigs in N100",
    "No scaffolded bases (N)",
    "Total Raw Reads",
    "Reads Mapped",
    "Reads Unmapped",
    "Reads Paired",
    "Reads Unpaired",
    "Total Raw Bases",
    "Total Bases Mapped",
    "Total Bases Mapped (Cigar)",
    "Average Read Length",
    "Maximum Read Length",
    "Average Quality",
    "Insert Size Average",
    "Insert Size Std Dev",
]

MAPPING_STATS_HEADERS: list[str] = [
    "Study ID",
    "Sample",
    "Lane Name",
    "Cycles",
    "Reads",
    "Bases",
    "Map Type",
    "Reference",
    "Reference Size",
    "Mapper",
    "Mapstats ID",
    "Mapped %",
    "Paired %",
    "Mean Insert Size",
    "Depth of Coverage",
    "Depth of Coverage sd",
    "Genome Covered (% >= 1X)",
    "Genome Covered (% >= 5X)",
    "Genome Covered (% >= 10X)",
    "Genome Covered (% >= 50X)",
    "Genome Covered (% >= 100X)",
]

# Stats file inside <assembler>_assembly/ → assembly type shown in the report
_ASSEMBLY_STATS_FILES: dict[str, str] = {
    "contigs.fa.stats": "Scaffold",
    "unscaffolded_contigs.fa.stats": "Contig",
}

_BAMCHECK_FILE = "contigs.mapped.sorted.bam.bc"

_N_LEVELS = ("N50", "N60", "N70", "N80", "N90", "N100")

# Keys of the first line of an assembly stats file
_SUMMARY_KEYS = {
    "sum": "total_length",
    "n": "num_contigs",
    "ave": "average_contig_length",
    "largest": "largest_contig",
}

_BAMCHECK_FIELDS = (
    "sequences",
    "reads mapped",
    "reads unmapped",
    "reads paired",
    "reads unpaired",
    "total length",
    "bases mapped",
    "bases mapped (cigar)",
    "average length",
    "maximum length",
    "average quality",
    "insert size average",
    "insert size standard deviation",
)


def _number(text: str) -> int | float | None:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def parse_assembly_stats(path: Path) -> dict[str, int | float]:
    """Parse an assembly ``.stats`` file.

    Expected layout::

        sum = 2823549, n = 83, ave = 34018.66, largest = 237581
        N50 = 100573, n = 10
        ...
        N100 = 203, n = 83
        N_count = 0

    Returns keys ``total_length``, ``num_contigs``,
    ``average_contig_length``, ``largest_contig``, ``N50`` … ``N100``,
    ``N50_n`` … ``N100_n`` and ``n_count`` for whatever is present. A
    missing file gives ``{}``.
    """
    if not path.is_file():
        logger.debug("no assembly stats file at %s", path)
        return {}

    stats: dict[str, int | float] = {}
    for line in path.read_text().splitlines():
        pairs = []
        for part in line.split(","):
            if "=" not in part:
                continue
            key, value = part.split("=", 1)
            pairs.append((key.strip(), _number(value)))
        if not pairs:
            continue

        first_key, first_value = pairs[0]
        if first_key == "sum":
            for key, value in pairs:
                if key in _SUMMARY_KEYS and value is not None:
                    stats[_SUMMARY_KEYS[key]] = value
        elif first_key in _N_LEVELS:
            if first_value is not None:
                stats[first_key] = first_value
            if len(pairs) > 1 and pairs[1][0] == "n" and pairs[1][1] is not None:
                stats[f"{first_key}_n"] = pairs[1][1]
        elif first_key == "N_count" and first_value is not None:
            stats["n_count"] = first_value
    return stats


def parse_bamcheck(path: Path) -> dict[str, int | float]:
    """Parse the summary (``SN``) lines of a bamcheck report.

    ``SN\\treads mapped:\\t1234`` becomes ``{"reads mapped": 1234}``. A
    missing file gives ``{}``.
    """
    if not path.is_file():
        logger.debug("no bamcheck file at %s", path)
        return {}

    stats: dict[str, int | float] = {}
    for line in path.read_text().splitlines():
        parts = line.split("\t")
        if len(parts) < 3 or parts[0] != "SN":
            continue
        value = _number(parts[2])
        if value is not None:
            stats[parts[1].strip().rstrip(":")] = value
    return stats


def assembly_stats_rows(lane: Lane, assemblers: Sequence[str]) -> list[list]:
    """One :data:`ASSEMBLY_STATS_HEADERS` row per assembly of *lane*.

    An assembly is reported when its stats file or its FASTA file exists in
    ``<assembler>_assembly/`` on the storage tier.
    """
    rows = []
    for assembler in assemblers:
        assembly_dir = lane.storage_path / f"{assembler}_assembly"
        if not assembly_dir.is_dir():
            continue
        bamcheck = parse_bamcheck(assembly_dir / _BAMCHECK_FILE)
        for stats_name, assembly_type in _ASSEMBLY_STATS_FILES.items():
            stats_file = assembly_dir / stats_name
            fasta = assembly_dir / stats_name.removesuffix(".stats")
            if not (stats_file.is_file() or fasta.is_file()):
                continue
            file_stats = parse_assembly_stats(stats_file)
            row = [
                lane.name,
                assembly_type,
                file_stats.get("total_length"),
                file_stats.get("num_contigs"),
                file_stats.get("average_contig_length"),
                file_stats.get("largest_contig"),
            ]
            for level in _N_LEVELS:
                row += [file_stats.get(level), file_stats.get(f"{level}_n")]
            row.append(file_stats.get("n_count"))
            row += [bamcheck.get(field) for field in _BAMCHECK_FIELDS]
            rows.append(row)
    return rows


def _percent(part: int | None, whole: int | None) -> float | None:
    if part is None or not whole:
        return None
    return round(100.0 * part / whole, 1)


def mapping_stats_rows(lane: Lane) -> list[list]:
    """One :data:`MAPPING_STATS_HEADERS` row per non-QC mapping run of *lane*."""
    rows = []
    for run in lane.runs:
        if run.is_qc:
            continue
        rows.append([
            lane.study_id,
            lane.sample,
            lane.name,
            lane.cycles,
            lane.raw_reads,
            lane.raw_bases,
            "Mapping",
            run.reference,
            run.reference_size,
            run.mapper,
            run.mapstats_id,
            _percent(run.reads_mapped, run.raw_reads),
            _percent(run.reads_paired, run.raw_reads),
            run.mean_insert,
            run.depth_of_coverage,
            run.depth_of_coverage_sd,
            run.genome_covered_1x,
            run.genome_covered_5x,
            run.genome_covered_10x,
            run.genome_covered_50x,
            run.genome_covered_100x,
        ])
    return rows


def stats_frame(headers: Sequence[str], rows: Iterable[Sequence]) -> pd.DataFrame:
    """Return the rows as a DataFrame, keeping ``None`` for missing values."""
    return pd.DataFrame(list(rows), columns=list(headers), dtype=object)


def write_stats(
    frame: pd.DataFrame,
    path: Path,
    separator: str = ",",
    force: bool = False,
) -> Path:
    """Write *frame* as delimited text; missing values are written empty.

    Raises
    ------
    DestinationExistsError
        If *path* exists and *force* is False.
    """
    path = Path(path)
    check_destination(path, force)
    frame.to_csv(path, sep=separator, index=False)
    logger.info("wrote statistics for %d row(s) to %s", len(frame), path)
    return path
