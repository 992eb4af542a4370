"""CLI tests using Click's CliRunner."""
import tarfile

import pandas as pd
import pytest
from click.testing import CliRunner

from lane_pathfind.cli import main

REF = "Streptococcus_pneumoniae_ATCC_700669_v1"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def cfg_path(tracking, tmp_path, monkeypatch):
    """YAML config pointing at the temporary tracking database; cwd is an empty dir."""
    yaml_file = tmp_path / "config.yaml"
    yaml_file.write_text(
        f"database: {tracking.database}\n"
        f"symlink_root: {tracking.symlink_root}\n"
        f"storage_root: {tracking.storage_root}\n"
        f"refs_index: {tracking.refs_index}\n"
    )
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    return yaml_file


def _run(runner, cfg_path, *args):
    return runner.invoke(main, ["--config", str(cfg_path), *args])


# ---------------------------------------------------------------------------
# --help
# ---------------------------------------------------------------------------


def test_main_help(runner):
    result = runner.invoke(main, ["--help"])
    assert result.exit_code == 0
    for command in ("data", "map", "snp", "assembly", "annotation", "status"):
        assert command in result.output


def test_snp_help(runner):
    result = runner.invoke(main, ["snp", "--help"])
    assert result.exit_code == 0
    assert "--pseudogenome" in result.output
    assert "--exclude-reference" in result.output


# ---------------------------------------------------------------------------
# Finding and printing
# ---------------------------------------------------------------------------


def test_data_lists_files(runner, cfg_path, tracking):
    result = _run(runner, cfg_path, "data", "-t", "lane", "-i", "10018_1#1")
    assert result.exit_code == 0, result.output
    lines = result.output.splitlines()
    assert [line.rsplit("/", 1)[1] for line in lines] == ["10018_1#1_1.fastq.gz", "10018_1#1_2.fastq.gz"]
    assert all(line.startswith(str(tracking.symlink_root)) for line in lines)


def test_no_data_found(runner, cfg_path):
    result = _run(runner, cfg_path, "data", "-t", "lane", "-i", "nothing")
    assert result.exit_code == 0
    assert "No data found." in result.output


def test_ids_from_file(runner, cfg_path, tmp_path):
    ids = tmp_path / "ids.txt"
    ids.write_text("10018_1#2\n10018_1#3\n")
    result = _run(runner, cfg_path, "data", "-t", "file", "-i", str(ids), "--file-id-type", "lane")
    assert result.exit_code == 0, result.output
    assert len(result.output.splitlines()) == 3


def test_file_type_without_file_id_type_fails(runner, cfg_path):
    result = _run(runner, cfg_path, "data", "-t", "file", "-i", "ids.txt")
    assert result.exit_code == 1
    assert "file_id_type" in result.output


def test_processed_flag_filters_lanes(runner, cfg_path):
    result = _run(runner, cfg_path, "map", "-t", "study", "-i", "607")
    assert result.exit_code == 0, result.output
    names = [line.rsplit("/", 1)[1] for line in result.output.splitlines() if line.startswith("/")]
    assert names == ["1.pe.markdup.bam", "2.pe.raw.sorted.bam", "4.pe.raw.sorted.bam"]


def test_map_details(runner, cfg_path):
    result = _run(runner, cfg_path, "map", "-t", "lane", "-i", "10018_1#1", "--mapper", "bwa", "-d")
    assert result.exit_code == 0, result.output
    fields = result.output.splitlines()[0].split("\t")
    assert fields[1:] == [REF, "bwa", "2015-01-01T10:00:00"]


# ---------------------------------------------------------------------------
# Symlinks, archives, stats
# ---------------------------------------------------------------------------


def test_symlink_default_directory(runner, cfg_path):
    result = _run(runner, cfg_path, "data", "-t", "lane", "-i", "10018_1#1", "--symlink", "--rename")
    assert result.exit_code == 0, result.output
    links = sorted(p.name for p in (cfg_path.parent / "work" / "datafind_10018_1_1").iterdir())
    assert links == ["10018_1_1_1.fastq.gz", "10018_1_1_2.fastq.gz"]


def test_archive_with_stats(runner, cfg_path):
    result = _run(runner, cfg_path, "map", "-t", "lane", "-i", "10018_1#1", "--archive", "--stats")
    assert result.exit_code == 0, result.output
    work = cfg_path.parent / "work"
    with tarfile.open(work / "mapfind_10018_1_1.tar.gz") as tar:
        assert tar.getnames() == [
            "10018_1_1/1.pe.markdup.bam",
            "10018_1_1/2.pe.raw.sorted.bam",
            "10018_1_1.mapfind_stats.csv",
        ]
    stats = pd.read_csv(work / "10018_1_1.mapfind_stats.csv")
    assert list(stats["Mapstats ID"]) == [1, 2]


def test_stats_refuse_to_overwrite(runner, cfg_path):
    stats = cfg_path.parent / "work" / "607.assemblyfind_stats.csv"
    stats.write_text("old")
    result = _run(runner, cfg_path, "assembly", "-t", "study", "-i", "607", "--stats")
    assert result.exit_code == 1
    assert "--force" in result.output
    assert stats.read_text() == "old"

    result = _run(runner, cfg_path, "assembly", "-t", "study", "-i", "607", "--stats", "--force",
                  "--csv-separator", "\t")
    assert result.exit_code == 0, result.output
    frame = pd.read_csv(stats, sep="\t")
    assert list(frame["Lane"]) == ["10018_1#1"]
    assert list(frame["Assembly Type"]) == ["Scaffold"]


def test_list_file(runner, cfg_path):
    result = _run(runner, cfg_path, "assembly", "-t", "lane", "-i", "10018_1#1", "--list", "files.txt")
    assert result.exit_code == 0, result.output
    lines = (cfg_path.parent / "work" / "files.txt").read_text().splitlines()
    assert [line.rsplit("/", 2)[1:] for line in lines] == [["spades_assembly", "contigs.fa"]]


def test_archive_collision_writes_nothing(runner, cfg_path):
    work = cfg_path.parent / "work"
    (work / "out.tar.gz").write_text("old")
    result = _run(runner, cfg_path, "map", "-i", "10018_1#1", "-t", "lane",
                  "--stats", "s.csv", "--archive", "out.tar.gz")
    assert result.exit_code == 1
    assert "--force" in result.output
    assert not (work / "s.csv").exists()
    assert (work / "out.tar.gz").read_text() == "old"


def test_list_collision_writes_no_archive(runner, cfg_path):
    work = cfg_path.parent / "work"
    (work / "files.txt").write_text("old")
    result = _run(runner, cfg_path, "assembly", "-t", "lane", "-i", "10018_1#1",
                  "--zip", "out.zip", "--list", "files.txt")
    assert result.exit_code == 1
    assert not (work / "out.zip").exists()


# ---------------------------------------------------------------------------
# snp / annotation / status
# ---------------------------------------------------------------------------


def test_snp_pseudogenome(runner, cfg_path):
    result = _run(runner, cfg_path, "snp", "-t", "study", "-i", "607", "-p")
    assert result.exit_code == 0, result.output
    out = cfg_path.parent / "work" / f"607_{REF}_concatenated.aln"
    assert out.read_text() == f">{REF}\nACGTACGT\nACGT\n>10018_1#1\nAAAAGGGG\n"


def test_snp_vcf(runner, cfg_path):
    result = _run(runner, cfg_path, "snp", "-t", "lane", "-i", "10018_1#1", "--mapper", "bwa")
    assert result.exit_code == 0, result.output
    assert result.output.strip().endswith("1.pe.markdup.snp/mpileup.unfilt.vcf.gz")


def test_annotation_gene_search(runner, cfg_path):
    result = _run(runner, cfg_path, "annotation", "-t", "lane", "-i", "10018_1#1",
                  "-f", "faa", "--gene", "dnaA", "-o", "genes.fa")
    assert result.exit_code == 0, result.output
    assert "Samples containing gene/product:\t1" in result.output
    assert (cfg_path.parent / "work" / "genes.fa").read_text().startswith(">10018_1#1_ABC_00001")


def test_status(runner, cfg_path):
    result = _run(runner, cfg_path, "status", "-t", "study", "-i", "607")
    assert result.exit_code == 0, result.output
    assert "Failed (14-03-2016)" in result.output
    assert "10018_1#2" in result.output


def test_bad_config_reports_error(runner, tmp_path):
    bad = tmp_path / "bad.yaml"
    bad.write_text("workers: 0\n")
    result = runner.invoke(main, ["--config", str(bad), "status", "-t", "lane", "-i", "x"])
    assert result.exit_code == 1
    assert "workers" in result.output
