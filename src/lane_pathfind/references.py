from __future__ import annotations

__all__ = ["ReferenceFinder"]

import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)


class ReferenceFinder:
    """Looks up reference genome sequence files by name.

    The index is a tab-separated file of ``<name>\\t<path to fasta>`` lines;
    blank lines and ``#`` comments are ignored.

    Parameters
    ----------
    index_file:
        Path to the reference index.
    """

    def __init__(self, index_file: Path) -> None:
        self.index_file = Path(index_file)
        self._index: dict[str, Path] | None = None

    @property
    def index(self) -> dict[str, Path]:
        """Reference name → sequence file, read on first use."""
        if self._index is None:
            self._index = self._read_index()
        return self._index

    def _read_index(self) -> dict[str, Path]:
        try:
            frame = pd.read_csv(
                self.index_file, sep="\t", header=None, names=["name", "path"],
                comment="#", dtype=str, skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            frame = pd.DataFrame(columns=["name", "path"], dtype=str)
        malformed = frame["path"].isna().sum()
        if malformed:
            logger.debug("ignoring %d malformed line(s) in %s", malformed, self.index_file)
        frame = frame.dropna()
        index = {
            name.strip(): Path(path.strip())
            for name, path in zip(frame["name"], frame["path"])
        }
        logger.debug("read %d reference(s) from %s", len(index), self.index_file)
        return index

    def available(self) -> list[str]:
        """Return all reference names in the index, sorted."""
        return sorted(self.index)

    def find_names(self, name: str) -> list[str]:
        """Return the index names matching *name*.

        An exact match wins outright; otherwise every name containing *name*
        (case-insensitive) matches.
        """
        if name in self.index:
            return [name]
        wanted = name.lower()
        return [ref for ref in self.available() if wanted in ref.lower()]

    def lookup_paths(self, names: list[str], extension: str | None = None) -> list[Path]:
        """Return the sequence file paths for *names*.

        With *extension*, the file suffix is replaced (``"fa"`` →
        ``genome.fa``). A name may give zero or several paths; callers that
        need exactly one must check.
        """
        paths = []
        for name in names:
            for ref in self.find_names(name):
                path = self.index[ref]
                if extension:
                    path = path.with_suffix(f".{extension.lstrip('.')}")
                paths.append(path)
        return paths
