"""status.py — pipeline status from the "processed" flag and job status files.

A lane's pipeline is *done* when its bit is set in the tracking database's
``processed`` flag. Otherwise the pipeline runner may have left a job status
marker (``<prefix>job_status``) in the lane directory, which tells us whether
the job is running or has failed, and when it last changed.

Typical usage::

    from lane_pathfind.status import collect_status_files, pipeline_status

    markers = collect_status_files(lane.symlink_path)
    print(pipeline_status(lane.processed, markers, "mapped"))
"""
from __future__ import annotations

__all__ = [
    "STATUS_MARKER_SUFFIX",
    "StatusFile",
    "DisplayStatus",
    "NA",
    "DONE",
    "UNKNOWN",
    "read_status_file",
    "collect_status_files",
    "pipeline_status",
    "status_table",
]

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

import pandas as pd

from lane_pathfind.config import PIPELINE_BITS

if TYPE_CHECKING:
    from lane_pathfind.lanes import Lane

logger = logging.getLogger(__name__)

STATUS_MARKER_SUFFIX = "job_status"

# Pipeline config file stem fragment → pipeline name used in PIPELINE_BITS.
# Checked in order, so longer fragments must come before their substrings.
_CONFIG_TO_PIPELINE: tuple[tuple[str, str], ...] = (
    ("annotate_assembly", "annotated"),
    ("rna_seq", "rna_seq_expression"),
    ("snps", "snp_called"),
    ("improvement", "improved"),
    ("assembly", "assembled"),
    ("mapping", "mapped"),
    ("stored", "stored"),
    ("import", "import"),
    ("qc", "qc"),
)

# Columns of the status report, in display order.
_STATUS_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Import", "import"),
    ("QC", "qc"),
    ("Mapping", "mapped"),
    ("Archive", "stored"),
    ("Improve", "improved"),
    ("SNP call", "snp_called"),
    ("RNASeq", "rna_seq_expression"),
    ("Assembly", "assembled"),
    ("Annotation", "annotated"),
)


@dataclass(frozen=True)
class StatusFile:
    """One parsed job status marker."""

    path: Path
    pipeline_name: str
    current_status: str
    last_update: datetime
    number_of_attempts: int | None = None


@dataclass(frozen=True)
class DisplayStatus:
    """What to show for one pipeline of one lane."""

    label: str
    updated: date | None = None

    def __str__(self) -> str:
        if self.label == "Unknown":
            return "-"
        if self.updated is not None:
            return f"{self.label} ({self.updated:%d-%m-%Y})"
        return self.label


NA = DisplayStatus("NA")
DONE = DisplayStatus("Done")
UNKNOWN = DisplayStatus("Unknown")


def _pipeline_from_text(text: str) -> str | None:
    """Map a config file stem or marker prefix onto a pipeline name."""
    for fragment, pipeline in _CONFIG_TO_PIPELINE:
        if fragment in text:
            return pipeline
    return None


def read_status_file(path: Path) -> StatusFile:
    """Parse a job status marker.

    The marker holds the pipeline config file path, the current status and
    the number of attempts, one per line. The pipeline name comes from the
    config file name; when that line is missing or not recognised, it is
    taken from the marker's own file name instead. ``last_update`` is the
    marker's modification time, not anything written inside it.

    Raises
    ------
    ValueError
        If no pipeline name can be worked out.
    OSError
        If the marker cannot be read.
    """
    lines = [line.strip() for line in path.read_text().splitlines()]
    config_line = lines[0] if lines else ""
    current_status = lines[1] if len(lines) > 1 else ""
    attempts = int(lines[2]) if len(lines) > 2 and lines[2].isdigit() else None

    pipeline = None
    if config_line:
        pipeline = _pipeline_from_text(Path(config_line).name.removesuffix(".conf"))
    if pipeline is None:
        prefix = path.name.removesuffix(STATUS_MARKER_SUFFIX).strip("_")
        pipeline = _pipeline_from_text(prefix) or prefix or None
    if pipeline is None:
        raise ValueError(f"Cannot tell which pipeline {path} belongs to")

    return StatusFile(
        path=path,
        pipeline_name=pipeline,
        current_status=current_status or "unknown",
        last_update=datetime.fromtimestamp(path.stat().st_mtime),
        number_of_attempts=attempts,
    )


def collect_status_files(directory: Path) -> dict[str, list[StatusFile]]:
    """Return ``{pipeline_name: [StatusFile, ...]}`` for markers in *directory*.

    Markers are listed in file name order. A missing or unreadable directory
    gives an empty dict: having no status information is normal.
    """
    try:
        candidates = sorted(
            p for p in Path(directory).iterdir()
            if p.name.endswith("_" + STATUS_MARKER_SUFFIX) and p.is_file()
        )
    except OSError as exc:
        logger.debug("no status files readable in %s: %s", directory, exc)
        return {}

    found: dict[str, list[StatusFile]] = {}
    for path in candidates:
        try:
            status_file = read_status_file(path)
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            logger.debug("skipping status file %s: %s", path, exc)
            continue
        found.setdefault(status_file.pipeline_name, []).append(status_file)
    return found


def pipeline_status(
    processed: int,
    status_files: Mapping[str, Sequence[StatusFile]],
    pipeline_name: str | None,
) -> DisplayStatus:
    """Return the display status of *pipeline_name*.

    1. Unknown pipeline name → ``NA``.
    2. Bit set in *processed* → ``Done``, whatever the markers say.
    3. No markers at all, or none for this pipeline → ``Unknown`` (``-``).
    4. Otherwise the marker with the latest ``last_update`` wins; the first
       one listed wins a tie.
    """
    bit = PIPELINE_BITS.get(pipeline_name) if pipeline_name is not None else None
    if bit is None:
        return NA
    if processed & bit:
        return DONE
    if not status_files:
        return UNKNOWN
    candidates = status_files.get(pipeline_name)
    if not candidates:
        return UNKNOWN

    latest = max(candidates, key=lambda sf: sf.last_update)
    status = latest.current_status
    return DisplayStatus(status[:1].upper() + status[1:], latest.last_update.date())


def status_table(lanes: Iterable[Lane]) -> pd.DataFrame:
    """Build the status report: one row per lane, one column per pipeline."""
    rows = []
    for lane in lanes:
        row = {"Name": lane.name}
        for column, pipeline in _STATUS_COLUMNS:
            row[column] = str(lane.pipeline_status(pipeline))
        rows.append(row)
    return pd.DataFrame(rows, columns=["Name"] + [c for c, _ in _STATUS_COLUMNS])
