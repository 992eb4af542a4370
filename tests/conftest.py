import os
import sqlite3
from datetime import datetime

import pytest

from lane_pathfind.config import FinderConfig
from lane_pathfind.store import SCHEMA, TrackingStore

REFERENCE = "Streptococcus_pneumoniae_ATCC_700669_v1"
MARKER_TIME = datetime(2016, 3, 14, 12, 0, 0)

CONTIGS_STATS = """\
sum = 2823549, n = 83, ave = 34018.66, largest = 237581
N50 = 100573, n = 10
N60 = 82118, n = 13
N70 = 62500, n = 17
N80 = 41260, n = 23
N90 = 19600, n = 33
N100 = 203, n = 83
N_count = 0
"""

BAMCHECK = """\
# Summary numbers
SN\tsequences:\t1000
SN\treads mapped:\t900
SN\treads unmapped:\t100
SN\treads paired:\t880
SN\treads unpaired:\t20
SN\ttotal length:\t100000
SN\tbases mapped:\t90000
SN\tbases mapped (cigar):\t89000
SN\taverage length:\t100
SN\tmaximum length:\t100
SN\taverage quality:\t35.5
SN\tinsert size average:\t350.2
SN\tinsert size standard deviation:\t40.1
"""

# Prokka-style GFF3 with one forward and one reverse-strand CDS
ANNOTATION_GFF = """\
##gff-version 3
##sequence-region contig1 1 60
contig1\tProdigal\tCDS\t1\t12\t.\t+\t0\tID=ABC_00001;gene=dnaA;product=Chromosomal replication initiator protein
contig1\tProdigal\tCDS\t13\t24\t.\t-\t0\tID=ABC_00002;product=hypothetical protein
##FASTA
>contig1
ATGAAACCCTAATTACGGGTTCATAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA
"""


def hierarchy_name(sample: str, library: str, lane: str) -> str:
    return f"Streptococcus/pneumoniae/TRACKING/607/{sample}/SLX/{library}/{lane}"


# ---------------------------------------------------------------------------
# Config pointing at a temporary two-tier lane hierarchy
# ---------------------------------------------------------------------------

@pytest.fixture
def cfg(tmp_path):
    """FinderConfig whose symlink tier is a symlink to the storage tier."""
    storage = tmp_path / "nfs"
    storage.mkdir()
    (tmp_path / "lustre").symlink_to(storage, target_is_directory=True)
    return FinderConfig(
        database=tmp_path / "tracking.db",
        symlink_root=tmp_path / "lustre",
        storage_root=storage,
        refs_index=tmp_path / "refs.index",
    )


# ---------------------------------------------------------------------------
# Tracking database and lane directories
# ---------------------------------------------------------------------------

def _write(path, text=""):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


@pytest.fixture
def tracking(cfg, tmp_path):
    """Create a tracking database with three lanes and their files.

    Lanes (study 607, species Streptococcus pneumoniae):
      10018_1#1  paired, qc passed; mapped, SNP called, assembled, annotated.
                 Mapping runs 1 (bwa, markdup BAM) and 2 (smalt, only a
                 raw.sorted BAM), both with pseudogenomes; run 3 is QC.
      10018_1#2  single-end, qc failed; imported only.
      10018_1#3  paired, qc pending; mapped, but its BAM is missing. Has a
                 failed SNP-calling job status marker.
    """
    conn = sqlite3.connect(cfg.database)
    conn.executescript(SCHEMA)
    conn.executescript(
        """
        INSERT INTO project VALUES (1, 607, 'Pneumo study');
        INSERT INTO species VALUES (1, 'Streptococcus pneumoniae');
        INSERT INTO sample VALUES (1, 1, 1, 'sample_1');
        INSERT INTO sample VALUES (2, 1, 1, 'sample_2');
        INSERT INTO library VALUES (1, 1, 'lib_1');
        INSERT INTO library VALUES (2, 2, 'lib_2');
        """
    )
    lanes = [
        (1, 1, "10018_1#1", hierarchy_name("sample_1", "lib_1", "10018_1#1"), 3335, 1, "passed", 100, 1000, 100000),
        (2, 2, "10018_1#2", hierarchy_name("sample_2", "lib_2", "10018_1#2"), 1, 0, "failed", 100, None, None),
        (3, 1, "10018_1#3", hierarchy_name("sample_1", "lib_1", "10018_1#3"), 5, 1, "pending", 100, 500, 50000),
    ]
    conn.executemany(
        "INSERT INTO lane (lane_id, library_id, name, hierarchy_name, processed, paired, "
        "qc_status, read_len, raw_reads, raw_bases) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        lanes,
    )
    runs = [
        (1, 1, "_1_", "bwa", REFERENCE, "2015-01-01 10:00:00", 0, 1000, 100000, 900, 800, 350.5, 2221315, 30.1, 5.2, 99.1, 98.0, 95.5, 40.0, 1.2),
        (2, 1, "_2_", "smalt", REFERENCE, "2015-02-01 10:00:00", 0, 1000, 100000, None, None, None, None, None, None, None, None, None, None, None),
        (3, 1, "_3_", "bwa", REFERENCE, "2015-03-01 10:00:00", 1, None, None, None, None, None, None, None, None, None, None, None, None, None),
        (4, 3, "_4_", "bwa", REFERENCE, "2015-01-05 10:00:00", 0, 500, 50000, 450, 400, None, None, None, None, None, None, None, None, None),
    ]
    conn.executemany("INSERT INTO mapstats VALUES (" + ", ".join(["?"] * 20) + ")", runs)
    conn.commit()
    conn.close()

    lane1 = cfg.storage_root / lanes[0][3]
    _write(lane1 / "10018_1#1_1.fastq.gz")
    _write(lane1 / "10018_1#1_2.fastq.gz")
    _write(lane1 / "1.pe.markdup.bam")
    _write(lane1 / "2.pe.raw.sorted.bam")
    _write(lane1 / "1.pe.markdup.snp" / "mpileup.unfilt.vcf.gz")
    _write(lane1 / "1.pe.markdup.snp" / "pseudo_genome.fasta", ">10018_1#1\nCCCCTTTT\n")
    _write(lane1 / "2.pe.markdup.snp" / "pseudo_genome.fasta", ">10018_1#1\nAAAAGGGG\n")
    _write(lane1 / "spades_assembly" / "contigs.fa", ">contig1\nACGT\n")
    _write(lane1 / "spades_assembly" / "contigs.fa.stats", CONTIGS_STATS)
    _write(lane1 / "spades_assembly" / "contigs.mapped.sorted.bam.bc", BAMCHECK)
    _write(lane1 / "spades_assembly" / "annotation" / "10018_1#1.gff", ANNOTATION_GFF)
    _write(lane1 / "spades_assembly" / "annotation" / "10018_1#1.faa", ">ABC_00001\nMKP\n")

    lane2 = cfg.storage_root / lanes[1][3]
    _write(lane2 / "10018_1#2_1.fastq.gz")

    lane3 = cfg.storage_root / lanes[2][3]
    _write(lane3 / "10018_1#3_1.fastq.gz")
    _write(lane3 / "10018_1#3_2.fastq.gz")
    marker = _write(
        lane3 / "_snps_job_status",
        "/nfs/pathogen/conf/prokaryotes/snps/snps_607.conf\nfailed\n2\n",
    )
    stamp = MARKER_TIME.timestamp()
    os.utime(marker, (stamp, stamp))

    ref_fasta = _write(tmp_path / "refs" / REFERENCE / f"{REFERENCE}.fa", ">ref\nACGTACGT\nACGT")
    _write(cfg.refs_index, f"{REFERENCE}\t{ref_fasta}\n")
    return cfg


@pytest.fixture
def store(tracking):
    with TrackingStore.from_config(tracking) as s:
        yield s
