from __future__ import annotations

__all__ = ["ID_TYPES", "LaneFilters", "load_ids", "expand_ids", "find_lanes"]

import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from lane_pathfind.config import PIPELINE_BITS, FinderConfig
from lane_pathfind.exceptions import ConfigurationError
from lane_pathfind.lanes import Lane
from lane_pathfind.resolvers import LaneFilters, allowed_filetypes, find_files
from lane_pathfind.store import ID_TYPES, TrackingStore

logger = logging.getLogger(__name__)


def load_ids(source: str | Path) -> list[str]:
    """Read ids, one per line, from a file or from stdin when *source* is ``-``.

    Blank lines and lines starting with ``#`` are ignored.

    Raises
    ------
    ConfigurationError
        If the file does not exist or contains no ids.
    """
    if str(source) == "-":
        lines = sys.stdin.read().splitlines()
    else:
        path = Path(source)
        if not path.is_file():
            raise ConfigurationError(f"no such file ({path})")
        lines = path.read_text().splitlines()

    ids = [line.strip() for line in lines if line.strip() and not line.startswith("#")]
    if not ids:
        raise ConfigurationError(f"no IDs found in {source}")
    return ids


def expand_ids(id_value: str, id_type: str, file_id_type: str | None = None) -> tuple[list[str], str]:
    """Turn the ``--id`` / ``--type`` pair into a list of ids and their type.

    With ``id_type="file"``, *id_value* names a file of ids (``-`` for
    stdin) whose type is *file_id_type*.

    Raises
    ------
    ConfigurationError
        If ``id_type`` is ``file`` but ``file_id_type`` is not given, or if
        either type is unknown.
    """
    if id_type == "file":
        if not file_id_type:
            raise ConfigurationError('if "type" is "file", you must also specify "file_id_type"')
        if file_id_type not in ID_TYPES:
            raise ConfigurationError(
                f"Unknown file id type {file_id_type!r}. Known types: {list(ID_TYPES)}"
            )
        ids = load_ids(id_value)
        logger.debug("found %d IDs in %s, of type %r", len(ids), id_value, file_id_type)
        return ids, file_id_type

    if id_type not in ID_TYPES:
        raise ConfigurationError(f"Unknown id type {id_type!r}. Known types: {list(ID_TYPES)}")
    logger.debug("looking for single ID %r of type %r", id_value, id_type)
    return [id_value], id_type


def find_lanes(
    store: TrackingStore,
    ids: list[str],
    id_type: str,
    kind: str,
    filetype: str | None,
    filters: LaneFilters | None = None,
    config: FinderConfig | None = None,
    workers: int | None = None,
) -> list[Lane]:
    """Return the lanes matching *ids*, with their *filetype* files resolved.

    Lanes come back in tracking database order, ids in the order given; a
    lane matched by several ids appears once. ``filters.qc`` and
    ``filters.processed`` drop lanes before any file is looked at. Each
    remaining lane's files are resolved exactly once; a filesystem error for
    one lane becomes a warning on that lane and the others carry on. Lanes
    left with no files are dropped.

    With *filetype* ``None`` no files are resolved and every matching lane is
    returned (used by the status report).

    *workers* (default ``config.workers``) above 1 resolves lanes on a
    thread pool; the returned order is the same.

    Raises
    ------
    ConfigurationError
        For an unknown id type, pipeline kind, filetype or processed-flag
        pipeline name. Raised before the database is queried.
    """
    filters = filters or LaneFilters()
    config = config or FinderConfig()
    workers = workers or config.workers

    if id_type not in ID_TYPES:
        raise ConfigurationError(f"Unknown id type {id_type!r}. Known types: {list(ID_TYPES)}")
    allowed = allowed_filetypes(kind, config)
    if filetype is not None and filetype not in allowed:
        raise ConfigurationError(
            f"Filetype {filetype!r} is not valid for {kind!r}. Valid filetypes: {list(allowed)}"
        )
    processed_bit = None
    if filters.processed is not None:
        processed_bit = PIPELINE_BITS.get(filters.processed)
        if processed_bit is None:
            raise ConfigurationError(f"Unknown pipeline {filters.processed!r} for processed flag")

    lanes: list[Lane] = []
    seen: set[int] = set()
    for lane_id in ids:
        rows = store.lanes_for_id(lane_id, id_type)
        for _, row in rows.iterrows():
            if int(row["lane_id"]) in seen:
                continue
            seen.add(int(row["lane_id"]))
            if filters.qc and row["qc_status"] != filters.qc:
                continue
            if processed_bit is not None and not int(row["processed"]) & processed_bit:
                continue
            lanes.append(store.make_lane(row))

    logger.debug("found a total of %d lane(s)", len(lanes))
    if filetype is None:
        return lanes

    def resolve(lane: Lane) -> None:
        try:
            find_files(lane, kind, filetype, filters, config)
        except OSError as exc:
            lane.warn(f"could not look for {filetype} files: {exc}")

    if workers > 1 and len(lanes) > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            list(pool.map(resolve, lanes))
    else:
        for lane in lanes:
            resolve(lane)

    return [lane for lane in lanes if lane.files]
