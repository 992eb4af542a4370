"""sink.py — hand found files to the user as symlinks, archives or a list.

Every writer refuses to replace an existing destination unless ``force`` is
set, and checks that before writing anything.

Typical usage::

    from lane_pathfind.sink import collect_filenames, make_tar

    mapping = collect_filenames(lanes, "12345_1#1", rename=True)
    make_tar(mapping, Path("pf_12345_1_1.tar.gz"))
"""
from __future__ import annotations

__all__ = [
    "renamed_id",
    "archive_name",
    "collect_filenames",
    "check_destination",
    "make_symlinks",
    "make_tar",
    "make_zip",
    "write_list",
]

import io
import logging
import tarfile
import time
import zipfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Iterable, Mapping

from lane_pathfind.exceptions import DestinationExistsError, PathFindError

if TYPE_CHECKING:
    from lane_pathfind.lanes import Lane

logger = logging.getLogger(__name__)


def renamed_id(id_value: str) -> str:
    """Replace ``#`` with ``_`` so the id can be used in file names."""
    return id_value.replace("#", "_")


def archive_name(path: Path, id_value: str, rename: bool = False) -> PurePosixPath:
    """Return the name *path* gets inside an archive: ``<id>/<basename>``.

    With *rename*, ``#`` in the basename becomes ``_`` as well.
    """
    basename = Path(path).name
    if rename:
        basename = renamed_id(basename)
    return PurePosixPath(renamed_id(id_value)) / basename


def collect_filenames(
    lanes: Iterable[Lane],
    id_value: str,
    rename: bool = False,
) -> dict[Path, PurePosixPath]:
    """Map every found file of *lanes* to its archive name, in lane order."""
    mapping: dict[Path, PurePosixPath] = {}
    for lane in lanes:
        for path in lane.all_files():
            mapping[path] = archive_name(path, id_value, rename)
    return mapping


def check_destination(path: Path, force: bool = False) -> None:
    """Raise :class:`DestinationExistsError` if *path* exists and not *force*."""
    path = Path(path)
    if (path.exists() or path.is_symlink()) and not force:
        raise DestinationExistsError(path)


def make_symlinks(files: Iterable[Path], dest_dir: Path, rename: bool = False) -> list[Path]:
    """Create a symlink in *dest_dir* for each file; returns the links made.

    Links that already exist are left alone, with a warning.

    Raises
    ------
    PathFindError
        If *dest_dir* exists but is not a directory.
    """
    dest_dir = Path(dest_dir)
    if dest_dir.exists() and not dest_dir.is_dir():
        raise PathFindError(f'symlink destination "{dest_dir}" exists but isn\'t a directory')
    dest_dir.mkdir(parents=True, exist_ok=True)

    made = []
    for src in files:
        name = renamed_id(src.name) if rename else src.name
        link = dest_dir / name
        if link.exists() or link.is_symlink():
            logger.warning('"%s" already exists; not linking %s', link, src)
            continue
        link.symlink_to(src)
        made.append(link)
    logger.info("created %d link(s) in %s", len(made), dest_dir)
    return made


def make_tar(
    mapping: Mapping[Path, PurePosixPath],
    tar_path: Path,
    force: bool = False,
    extra: Mapping[str, str] | None = None,
) -> Path:
    """Write a gzipped tar of the mapped files.

    *extra* maps archive names to text content added alongside the files
    (e.g. a statistics table). Files that cannot be read are skipped with a
    warning.
    """
    tar_path = Path(tar_path)
    check_destination(tar_path, force)
    with tarfile.open(tar_path, "w:gz") as tar:
        for src, name in mapping.items():
            if not Path(src).is_file():
                logger.warning("cannot archive %s: file not found", src)
                continue
            tar.add(str(src), arcname=str(name))
        for name, text in (extra or {}).items():
            data = text.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mtime = int(time.time())
            tar.addfile(info, io.BytesIO(data))
    logger.info("wrote tar archive %s", tar_path)
    return tar_path


def make_zip(
    mapping: Mapping[Path, PurePosixPath],
    zip_path: Path,
    force: bool = False,
    extra: Mapping[str, str] | None = None,
) -> Path:
    """Write a zip archive of the mapped files (see :func:`make_tar`)."""
    zip_path = Path(zip_path)
    check_destination(zip_path, force)
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for src, name in mapping.items():
            if not Path(src).is_file():
                logger.warning("cannot archive %s: file not found", src)
                continue
            archive.write(src, arcname=str(name))
        for name, text in (extra or {}).items():
            archive.writestr(name, text)
    logger.info("wrote zip archive %s", zip_path)
    return zip_path


def write_list(lines: Iterable[str], path: Path, force: bool = False) -> Path:
    """Write one item per line to *path*."""
    path = Path(path)
    check_destination(path, force)
    with path.open("w") as fh:
        for line in lines:
            fh.write(f"{line}\n")
    return path
