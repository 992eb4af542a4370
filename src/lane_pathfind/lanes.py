from __future__ import annotations

__all__ = ["PipelineRun", "ResolvedFile", "Lane"]

import logging
from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property
from pathlib import Path

from lane_pathfind.status import DisplayStatus, StatusFile, collect_status_files, pipeline_status

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    """One mapping run of a lane (a row of the ``mapstats`` table)."""

    mapstats_id: int
    prefix: str
    mapper: str
    reference: str
    changed: datetime
    is_qc: bool = False
    # Mapping statistics; None when the tracking database has no value
    raw_reads: int | None = None
    raw_bases: int | None = None
    reads_mapped: int | None = None
    reads_paired: int | None = None
    mean_insert: float | None = None
    reference_size: int | None = None
    depth_of_coverage: float | None = None
    depth_of_coverage_sd: float | None = None
    genome_covered_1x: float | None = None
    genome_covered_5x: float | None = None
    genome_covered_10x: float | None = None
    genome_covered_50x: float | None = None
    genome_covered_100x: float | None = None


@dataclass
class ResolvedFile:
    """A file found for a lane.

    ``path`` is always on the symlink tier. ``reference``, ``mapper`` and
    ``timestamp`` are filled by resolvers that work from mapping runs.
    """

    path: Path
    reference: str | None = None
    mapper: str | None = None
    timestamp: datetime | None = None

    def __str__(self) -> str:
        return str(self.path)


@dataclass
class Lane:
    """A sequencing lane from the tracking database plus the files found for it."""

    name: str
    lane_id: int
    symlink_path: Path
    storage_path: Path
    processed: int = 0
    paired: bool = True
    qc_status: str = "pending"
    study_id: str | None = None
    sample: str | None = None
    cycles: int | None = None
    raw_reads: int | None = None
    raw_bases: int | None = None
    runs: list[PipelineRun] = field(default_factory=list)
    files: list[ResolvedFile] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def pairing(self) -> str:
        """``"pe"`` for paired-end lanes, ``"se"`` otherwise."""
        return "pe" if self.paired else "se"

    def add_file(self, resolved: ResolvedFile) -> None:
        self.files.append(resolved)

    def warn(self, message: str) -> None:
        """Record a non-fatal problem with this lane and log it straight away."""
        self.warnings.append(message)
        logger.warning("%s: %s", self.name, message)

    def all_files(self) -> list[Path]:
        return [f.path for f in self.files]

    def storage_copy(self, path: Path) -> Path:
        """Storage-tier path of a file found on the symlink tier."""
        try:
            return self.storage_path / Path(path).relative_to(self.symlink_path)
        except ValueError:
            return Path(path)

    def file_info(self, path: Path | str) -> ResolvedFile | None:
        """Return the :class:`ResolvedFile` recorded for *path*, if any."""
        path = Path(path)
        for f in self.files:
            if f.path == path:
                return f
        return None

    @cached_property
    def status_files(self) -> dict[str, list[StatusFile]]:
        """Job status markers found in the lane directory on the symlink tier."""
        return collect_status_files(self.symlink_path)

    def pipeline_status(self, pipeline_name: str | None) -> DisplayStatus:
        """Status of *pipeline_name* for this lane (see :func:`pipeline_status`)."""
        return pipeline_status(self.processed, self.status_files, pipeline_name)
