"""pseudogenome.py — concatenate per-lane pseudogenomes into alignments.

Each SNP-called mapping run leaves a ``pseudo_genome.fasta``: the reference
sequence with the lane's SNPs applied. Concatenating these for many lanes,
one file per reference, gives an alignment ready for tree building::

    <id>_<reference>_concatenated.aln

For every lane only the newest pseudogenome per reference is used. The
reference sequence itself goes first unless it is excluded.
"""
from __future__ import annotations

__all__ = [
    "collect_sequences",
    "pseudogenome_filename",
    "reference_path",
    "write_pseudogenomes",
]

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable

from lane_pathfind.exceptions import (
    AmbiguousReferenceError,
    PathFindError,
    ReferenceLookupError,
    ReferenceNotFoundError,
)
from lane_pathfind.lanes import Lane, ResolvedFile
from lane_pathfind.references import ReferenceFinder
from lane_pathfind.sink import check_destination

logger = logging.getLogger(__name__)

# (lane name, file on the storage tier, resolved file)
SequenceFile = tuple[str, Path, ResolvedFile]


def collect_sequences(lanes: Iterable[Lane]) -> dict[str, list[SequenceFile]]:
    """Group the lanes' pseudogenome files by reference.

    Per lane and reference, the file with the latest timestamp is kept; on
    equal timestamps the first one found stays. Files that do not exist are
    skipped (the finder has already warned about them). References appear
    in the order they are first seen.
    """
    groups: dict[str, list[SequenceFile]] = {}
    for lane in lanes:
        latest: dict[str, tuple[Path, ResolvedFile]] = {}
        for resolved in lane.files:
            stored = lane.storage_copy(resolved.path)
            if not stored.is_file():
                continue
            ref = resolved.reference or "unknown"
            stamp = resolved.timestamp or datetime.min
            current = latest.get(ref)
            if current is None or stamp > (current[1].timestamp or datetime.min):
                latest[ref] = (stored, resolved)
        for ref, (stored, resolved) in latest.items():
            groups.setdefault(ref, []).append((lane.name, stored, resolved))
    return groups


def pseudogenome_filename(renamed_id: str, reference: str) -> str:
    return f"{renamed_id}_{reference}_concatenated.aln"


def reference_path(ref_finder: ReferenceFinder, reference: str) -> Path:
    """Return the one FASTA file for *reference*.

    Raises
    ------
    ReferenceNotFoundError
        If no file matches.
    AmbiguousReferenceError
        If more than one file matches.
    """
    paths = ref_finder.lookup_paths([reference], "fa")
    if not paths:
        raise ReferenceNotFoundError(
            f'can\'t find reference genome "{reference}"; check the reference index',
            reference=reference,
        )
    if len(paths) > 1:
        raise AmbiguousReferenceError(
            f'reference genome name "{reference}" is ambiguous; it matches '
            + ", ".join(str(p) for p in paths),
            reference=reference,
            matches=paths,
        )
    return paths[0]


def _sequence_lines(path: Path) -> list[str]:
    """Sequence lines of a FASTA file, headers dropped."""
    try:
        with path.open() as fh:
            lines = [line for line in fh if not line.startswith(">")]
    except OSError as exc:
        raise PathFindError(f'couldn\'t read the reference genome sequence from "{path}": {exc}') from exc
    if lines and not lines[-1].endswith("\n"):
        lines[-1] += "\n"
    return lines


def write_pseudogenomes(
    groups: dict[str, list[SequenceFile]],
    ref_finder: ReferenceFinder,
    renamed_id: str,
    out_dir: Path = Path("."),
    exclude_reference: bool = False,
    force: bool = False,
) -> list[Path]:
    """Write one concatenated alignment per reference; returns the files written.

    Every destination is checked before any file is created. A reference
    that can't be looked up is logged and skipped so the other references
    are still written; the first such error is raised once the pass is
    done. A lane file that cannot be read is left out with a warning.

    Raises
    ------
    ReferenceLookupError
        If a reference name matches no file or more than one.
    DestinationExistsError
        If an output file exists and *force* is False.
    """
    if exclude_reference:
        logger.info("omitting reference sequences from pseudogenomes")

    destinations = {
        reference: Path(out_dir) / pseudogenome_filename(renamed_id, reference)
        for reference in groups
    }
    for out_path in destinations.values():
        check_destination(out_path, force)

    written: list[Path] = []
    failure: ReferenceLookupError | None = None
    for reference, files in groups.items():
        try:
            ref_path = reference_path(ref_finder, reference)
        except ReferenceLookupError as exc:
            logger.error("skipping pseudogenome for %s: %s", reference, exc)
            failure = failure or exc
            continue
        out_path = destinations[reference]
        ref_lines = [] if exclude_reference else _sequence_lines(ref_path)

        with out_path.open("w") as out:
            if not exclude_reference:
                out.write(f">{reference}\n")
                out.writelines(ref_lines)
            for lane_name, stored, _ in files:
                try:
                    with stored.open() as pg:
                        shutil.copyfileobj(pg, out)
                except OSError as exc:
                    logger.warning(
                        "couldn't read the pseudogenome sequence file for lane %s (%s): %s",
                        lane_name, stored, exc,
                    )
        written.append(out_path)
        logger.info('wrote "%s" (%d lane(s))', out_path, len(files))
    if failure is not None:
        raise failure
    return written
