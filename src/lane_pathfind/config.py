from __future__ import annotations

__all__ = [
    "PIPELINE_BITS",
    "KIND_PIPELINES",
    "DEFAULT_MAPPERS",
    "DEFAULT_ASSEMBLERS",
    "DEFAULT_FILETYPE_EXTENSIONS",
    "FinderConfig",
]

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml


# Bits of the lane "processed" flag, as set by the tracking database.
PIPELINE_BITS = MappingProxyType({
    "import": 1,
    "qc": 2,
    "mapped": 4,
    "stored": 8,
    "deleted": 16,
    "swapped": 32,
    "altered_fastq": 64,
    "improved": 128,
    "snp_called": 256,
    "rna_seq_expression": 512,
    "assembled": 1024,
    "annotated": 2048,
})

# Pipeline kind → the "processed" bit that marks it done (None: no bit).
KIND_PIPELINES = MappingProxyType({
    "data": None,
    "map": "mapped",
    "snp": "snp_called",
    "assembly": "assembled",
    "annotation": "annotated",
})

DEFAULT_MAPPERS: tuple[str, ...] = (
    "bowtie2",
    "bwa",
    "bwa_aln",
    "smalt",
    "ssaha2",
    "stampy",
    "tophat",
)

DEFAULT_ASSEMBLERS: tuple[str, ...] = ("iva", "pacbio", "spades", "velvet")

# Filetype → filename glob, per pipeline kind. Only used for filetypes that
# have no dedicated resolver (see resolvers.RUN_FILE_SPECS / ASSEMBLY_FILES).
DEFAULT_FILETYPE_EXTENSIONS: dict[str, dict[str, str]] = {
    "data": {
        "fastq": "*.fastq.gz",
        "bam": "*.bam",
        "pacbio": "*.h5",
        "corrected": "*.corrected.*",
    },
    "annotation": {
        "gff": "*.gff",
        "faa": "*.faa",
        "ffn": "*.ffn",
        "gbk": "*.gbk",
        "fasta": "*.fna",
    },
}


@dataclass
class FinderConfig:
    """All path conventions and settings in one place."""

    # Tracking database (SQLite file, opened read-only)
    database: Path = field(default_factory=lambda: Path("/data/pathfind/tracking.db"))

    # Presentation tier: paths handed back to the user
    symlink_root: Path = field(default_factory=lambda: Path("/lustre/pathogen/tracking"))
    # Storage tier: where file existence is checked
    storage_root: Path = field(default_factory=lambda: Path("/nfs/pathogen/tracking"))

    # Tab-separated "<name>\t<path>" index of reference genomes
    refs_index: Path = field(default_factory=lambda: Path("/data/pathfind/refs.index"))

    # How many directory levels below a lane to search for files by extension
    search_depth: int = 1
    # Levels searched below <assembler>_assembly/annotation/
    annotation_search_depth: int = 3
    csv_separator: str = ","
    # Lanes resolved in parallel; output order is unaffected
    workers: int = 1

    mappers: list[str] = field(default_factory=lambda: list(DEFAULT_MAPPERS))
    assemblers: list[str] = field(default_factory=lambda: list(DEFAULT_ASSEMBLERS))
    filetype_extensions: dict[str, dict[str, str]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_FILETYPE_EXTENSIONS.items()}
    )

    def __post_init__(self) -> None:
        """Validate settings that would otherwise fail deep inside a run.

        Raises
        ------
        ValueError
            If ``filetype_extensions`` names an unknown pipeline kind, if
            ``search_depth``, ``annotation_search_depth`` or ``workers`` is
            not positive, or if
            ``csv_separator`` is empty.
        """
        unknown = set(self.filetype_extensions) - set(KIND_PIPELINES)
        if unknown:
            raise ValueError(
                f"filetype_extensions has unknown pipeline kind(s) {sorted(unknown)}. "
                f"Known kinds: {sorted(KIND_PIPELINES)}"
            )
        if self.search_depth < 1:
            raise ValueError(f"search_depth must be at least 1, got {self.search_depth}")
        if self.annotation_search_depth < 1:
            raise ValueError(
                f"annotation_search_depth must be at least 1, got {self.annotation_search_depth}"
            )
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        if not self.csv_separator:
            raise ValueError("csv_separator must not be empty")

    def extensions_for(self, kind: str) -> dict[str, str]:
        """Return the filetype → glob table for a pipeline kind."""
        return self.filetype_extensions.get(kind, {})

    @classmethod
    def from_yaml(cls, path: str | Path) -> "FinderConfig":
        """Load config from a YAML file, overriding defaults.

        ``filetype_extensions`` entries are merged over the defaults per kind,
        so a file only needs to list the patterns it changes.

        Raises
        ------
        ValueError
            If the file contains invalid YAML syntax.
        FileNotFoundError
            If *path* does not exist.
        """
        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

        path_fields = {"database", "symlink_root", "storage_root", "refs_index"}
        for key in path_fields:
            if data.get(key) is not None:
                data[key] = Path(data[key])

        if "filetype_extensions" in data:
            merged = {k: dict(v) for k, v in DEFAULT_FILETYPE_EXTENSIONS.items()}
            for kind, patterns in (data["filetype_extensions"] or {}).items():
                merged.setdefault(kind, {}).update(patterns or {})
            data["filetype_extensions"] = merged

        return cls(**data)
