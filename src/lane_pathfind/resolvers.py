from __future__ import annotations

__all__ = [
    "LaneFilters",
    "RunFileSpec",
    "RUN_FILE_SPECS",
    "ASSEMBLY_FILES",
    "allowed_filetypes",
    "files_by_extension",
    "find_files",
    "resolve_files",
    "resolve_run_files",
    "details_rows",
]

import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable

from lane_pathfind.config import KIND_PIPELINES, FinderConfig
from lane_pathfind.exceptions import ConfigurationError
from lane_pathfind.lanes import Lane, ResolvedFile

logger = logging.getLogger(__name__)


@dataclass
class LaneFilters:
    """Filters applied while finding lanes and their files.

    ``qc`` and ``processed`` are applied to the tracking database rows;
    ``mappers``, ``reference`` and ``assemblers`` while resolving files.
    Empty/None means "don't filter".
    """

    qc: str | None = None
    processed: str | None = None
    mappers: list[str] = field(default_factory=list)
    reference: str | None = None
    assemblers: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RunFileSpec:
    """Where a mapping run leaves one kind of output file.

    ``candidates`` are filename templates relative to the lane directory, in
    order of preference; ``{id}`` is the mapstats id and ``{pairing}`` is
    ``pe`` or ``se``. The last candidate is reported even when missing.
    """

    candidates: tuple[str, ...]
    label: str


RUN_FILE_SPECS = MappingProxyType({
    "bam": RunFileSpec(
        ("{id}.{pairing}.markdup.bam", "{id}.{pairing}.raw.sorted.bam"),
        "bam",
    ),
    "vcf": RunFileSpec(("{id}.{pairing}.markdup.snp/mpileup.unfilt.vcf.gz",), "VCF"),
    "pseudogenome": RunFileSpec(("{id}.{pairing}.markdup.snp/pseudo_genome.fasta",), "pseudogenome"),
})

# Assembly filetype → files inside <assembler>_assembly/
ASSEMBLY_FILES = MappingProxyType({
    "scaffold": ("contigs.fa",),
    "contigs": ("unscaffolded_contigs.fa",),
    "all": ("contigs.fa", "unscaffolded_contigs.fa"),
})

_RUN_KIND_FILETYPES = MappingProxyType({
    "map": ("bam",),
    "snp": ("vcf", "pseudogenome"),
})


# ---------------------------------------------------------------------------
# Resolver registry
# ---------------------------------------------------------------------------

# Maps pipeline kind → resolver
# Signature: (lane, filetype, filters, config) -> list[ResolvedFile]
_RESOLVERS: dict[str, Callable[..., list[ResolvedFile]]] = {}


def _register_resolver(kind: str):
    """Decorator to register the file resolver for a pipeline kind."""

    def decorator(fn: Callable) -> Callable:
        _RESOLVERS[kind] = fn
        return fn

    return decorator


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def allowed_filetypes(kind: str, config: FinderConfig) -> tuple[str, ...]:
    """Return the filetypes a pipeline kind can resolve.

    Raises
    ------
    ConfigurationError
        If *kind* is not a known pipeline kind.
    """
    if kind not in KIND_PIPELINES or kind not in _RESOLVERS:
        raise ConfigurationError(
            f"Unknown pipeline kind {kind!r}. Known kinds: {sorted(_RESOLVERS)}"
        )
    if kind in _RUN_KIND_FILETYPES:
        return _RUN_KIND_FILETYPES[kind]
    if kind == "assembly":
        return tuple(ASSEMBLY_FILES)
    return tuple(config.extensions_for(kind))


def resolve_files(
    lane: Lane,
    kind: str,
    filetype: str,
    filters: LaneFilters,
    config: FinderConfig,
) -> list[ResolvedFile]:
    """Return the *filetype* files of *lane* without recording them on it.

    Missing files only produce warnings on the lane.

    Raises
    ------
    ConfigurationError
        If *kind* is unknown or *filetype* is not one it can resolve.
    """
    allowed = allowed_filetypes(kind, config)
    if filetype not in allowed:
        raise ConfigurationError(
            f"Filetype {filetype!r} is not valid for {kind!r}. "
            f"Valid filetypes: {list(allowed)}"
        )
    return _RESOLVERS[kind](lane, filetype, filters, config)


def find_files(
    lane: Lane,
    kind: str,
    filetype: str,
    filters: LaneFilters,
    config: FinderConfig,
) -> list[ResolvedFile]:
    """Resolve *filetype* files for *lane* and append them to ``lane.files``.

    Returns the newly found files (see :func:`resolve_files`).
    """
    found = resolve_files(lane, kind, filetype, filters, config)
    for resolved in found:
        lane.add_file(resolved)
    logger.debug("%s: found %d %s file(s)", lane.name, len(found), filetype)
    return found


def resolve_run_files(
    lane: Lane,
    file_spec: RunFileSpec,
    mappers: list[str] | None = None,
    reference: str | None = None,
) -> list[ResolvedFile]:
    """Return one file per finished, non-QC mapping run of *lane*.

    A run is skipped when:

    * it is a QC run,
    * ``<storage_path>/<prefix>job_status`` exists (still running or failed),
    * *mappers* is non-empty and does not contain the run's mapper,
    * *reference* is set and differs from the run's reference.

    The first candidate file that exists on the storage tier is returned;
    using a later candidate records a warning. If none exists, the last
    candidate is returned anyway with a "missing" warning. Returned paths
    are on the symlink tier.
    """
    found: list[ResolvedFile] = []
    for run in lane.runs:
        if run.is_qc:
            continue
        if (lane.storage_path / f"{run.prefix}job_status").is_file():
            logger.debug("%s: mapstats %s has a job status file; skipped", lane.name, run.mapstats_id)
            continue
        if mappers and run.mapper not in mappers:
            continue
        if reference and run.reference != reference:
            continue

        names = [t.format(id=run.mapstats_id, pairing=lane.pairing) for t in file_spec.candidates]
        chosen = next((n for n in names if (lane.storage_path / n).is_file()), None)
        if chosen is None:
            chosen = names[-1]
            lane.warn(
                f'expected to find {file_spec.label} file at "{lane.symlink_path / chosen}", '
                "but it was missing"
            )
        elif chosen != names[0]:
            lane.warn(f'no {file_spec.label} file "{names[0]}"; using "{chosen}" instead')

        found.append(ResolvedFile(
            path=lane.symlink_path / chosen,
            reference=run.reference,
            mapper=run.mapper,
            timestamp=run.changed,
        ))
    return found


def files_by_extension(root: Path, pattern: str, depth: int = 1) -> list[Path]:
    """Return paths relative to *root* of files whose name matches *pattern*.

    ``depth=1`` looks only at files directly inside *root*; each extra level
    descends one more directory. Results are sorted.
    """
    if not root.is_dir():
        return []
    matches: list[Path] = []
    level = [root]
    for _ in range(depth):
        next_level: list[Path] = []
        for directory in level:
            try:
                entries = sorted(directory.iterdir())
            except PermissionError as exc:
                logger.debug("cannot list %s: %s", directory, exc)
                continue
            for entry in entries:
                if entry.is_dir():
                    next_level.append(entry)
                elif entry.match(pattern):
                    matches.append(entry.relative_to(root))
        level = next_level
    return sorted(matches)


def details_rows(lane: Lane) -> list[str]:
    """Tab-separated ``path, reference, mapper, timestamp`` lines for *lane*."""
    rows = []
    for f in lane.files:
        fields = [str(f.path)]
        if f.reference is not None or f.mapper is not None:
            stamp = f.timestamp.strftime("%Y-%m-%dT%H:%M:%S") if f.timestamp else ""
            fields += [f.reference or "", f.mapper or "", stamp]
        rows.append("\t".join(fields))
    return rows


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------


@_register_resolver("map")
@_register_resolver("snp")
def _run_files(lane: Lane, filetype: str, filters: LaneFilters, config: FinderConfig) -> list[ResolvedFile]:
    """BAMs, VCFs and pseudogenomes all come from mapping runs."""
    return resolve_run_files(lane, RUN_FILE_SPECS[filetype], filters.mappers, filters.reference)


@_register_resolver("assembly")
def _assembly_files(lane: Lane, filetype: str, filters: LaneFilters, config: FinderConfig) -> list[ResolvedFile]:
    found = []
    for assembler in filters.assemblers or config.assemblers:
        subdir = f"{assembler}_assembly"
        for name in ASSEMBLY_FILES[filetype]:
            if (lane.storage_path / subdir / name).is_file():
                found.append(ResolvedFile(lane.symlink_path / subdir / name))
    return found


@_register_resolver("annotation")
def _annotation_files(lane: Lane, filetype: str, filters: LaneFilters, config: FinderConfig) -> list[ResolvedFile]:
    """Annotation lives under <assembler>_assembly/annotation/, possibly in tool subdirectories."""
    pattern = config.extensions_for("annotation")[filetype]
    found = []
    for assembler in filters.assemblers or config.assemblers:
        subdir = Path(f"{assembler}_assembly") / "annotation"
        depth = config.annotation_search_depth
        for rel in files_by_extension(lane.storage_path / subdir, pattern, depth):
            found.append(ResolvedFile(lane.symlink_path / subdir / rel))
    return found


@_register_resolver("data")
def _data_files(lane: Lane, filetype: str, filters: LaneFilters, config: FinderConfig) -> list[ResolvedFile]:
    pattern = config.extensions_for("data")[filetype]
    return [
        ResolvedFile(lane.symlink_path / rel)
        for rel in files_by_extension(lane.storage_path, pattern, config.search_depth)
    ]
