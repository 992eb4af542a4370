from datetime import datetime
from pathlib import Path

import pytest

from lane_pathfind.exceptions import (
    AmbiguousReferenceError,
    DestinationExistsError,
    ReferenceNotFoundError,
)
from lane_pathfind.finder import find_lanes
from lane_pathfind.lanes import Lane, ResolvedFile
from lane_pathfind.pseudogenome import (
    collect_sequences,
    pseudogenome_filename,
    reference_path,
    write_pseudogenomes,
)
from lane_pathfind.references import ReferenceFinder

REF = "Streptococcus_pneumoniae_ATCC_700669_v1"


def _lane_with(tmp_path, name, files):
    """A lane whose pseudogenome files are {relative name: (reference, timestamp, text)}."""
    lane_dir = tmp_path / name
    lane_dir.mkdir()
    lane = Lane(name, 1, lane_dir, lane_dir)
    for rel, (ref, stamp, text) in files.items():
        path = lane_dir / rel
        if text is not None:
            path.write_text(text)
        lane.add_file(ResolvedFile(path, ref, "bwa", stamp))
    return lane


@pytest.fixture
def snp_lanes(store, tracking):
    return find_lanes(store, ["607"], "study", "snp", "pseudogenome", config=tracking)


# ---------------------------------------------------------------------------
# collect_sequences
# ---------------------------------------------------------------------------


def test_latest_file_per_reference_is_kept(tmp_path):
    lane = _lane_with(tmp_path, "1_1#1", {
        "a.fasta": ("refA", datetime(2015, 1, 1), ">a\n"),
        "b.fasta": ("refA", datetime(2015, 3, 1), ">b\n"),
        "c.fasta": ("refB", datetime(2015, 2, 1), ">c\n"),
    })
    groups = collect_sequences([lane])
    assert list(groups) == ["refA", "refB"]
    assert [stored.name for _, stored, _ in groups["refA"]] == ["b.fasta"]


def test_tie_keeps_first_file(tmp_path):
    when = datetime(2015, 1, 1)
    lane = _lane_with(tmp_path, "1_1#1", {
        "a.fasta": ("refA", when, ">a\n"),
        "b.fasta": ("refA", when, ">b\n"),
    })
    assert [s.name for _, s, _ in collect_sequences([lane])["refA"]] == ["a.fasta"]


def test_missing_files_are_skipped(tmp_path):
    lane = _lane_with(tmp_path, "1_1#1", {
        "a.fasta": ("refA", datetime(2015, 1, 1), ">a\n"),
        "b.fasta": ("refA", datetime(2015, 3, 1), None),
    })
    assert [s.name for _, s, _ in collect_sequences([lane])["refA"]] == ["a.fasta"]


def test_collect_reads_storage_tier(snp_lanes):
    groups = collect_sequences(snp_lanes)
    assert list(groups) == [REF]
    (lane_name, stored, resolved), = groups[REF]
    assert lane_name == "10018_1#1"
    assert resolved.mapper == "smalt"
    assert "nfs" in stored.parts


# ---------------------------------------------------------------------------
# Reference lookup
# ---------------------------------------------------------------------------


def test_pseudogenome_filename():
    assert pseudogenome_filename("10018_1_1", REF) == f"10018_1_1_{REF}_concatenated.aln"


def test_reference_not_found(tracking):
    with pytest.raises(ReferenceNotFoundError) as excinfo:
        reference_path(ReferenceFinder(tracking.refs_index), "Escherichia_coli")
    assert excinfo.value.reference == "Escherichia_coli"


def test_reference_ambiguous(tmp_path):
    index = tmp_path / "refs.index"
    index.write_text("Spn_v1\t/r/1.fa\nSpn_v2\t/r/2.fa\n")
    with pytest.raises(AmbiguousReferenceError) as excinfo:
        reference_path(ReferenceFinder(index), "Spn")
    assert excinfo.value.matches == [Path("/r/1.fa"), Path("/r/2.fa")]


# ---------------------------------------------------------------------------
# write_pseudogenomes
# ---------------------------------------------------------------------------


def test_write_pseudogenome(tmp_path, tracking, snp_lanes):
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    written = write_pseudogenomes(
        collect_sequences(snp_lanes), ReferenceFinder(tracking.refs_index), "607", out_dir,
    )
    assert written == [out_dir / f"607_{REF}_concatenated.aln"]
    assert written[0].read_text() == f">{REF}\nACGTACGT\nACGT\n>10018_1#1\nAAAAGGGG\n"


def test_write_pseudogenome_without_reference(tmp_path, tracking, snp_lanes):
    written = write_pseudogenomes(
        collect_sequences(snp_lanes), ReferenceFinder(tracking.refs_index), "607", tmp_path,
        exclude_reference=True,
    )
    assert written[0].read_text() == ">10018_1#1\nAAAAGGGG\n"


def test_write_pseudogenome_refuses_to_overwrite(tmp_path, tracking, snp_lanes):
    out = tmp_path / pseudogenome_filename("607", REF)
    out.write_text("old")
    with pytest.raises(DestinationExistsError):
        write_pseudogenomes(collect_sequences(snp_lanes), ReferenceFinder(tracking.refs_index), "607", tmp_path)
    assert out.read_text() == "old"


def test_unknown_reference_writes_nothing(tmp_path, tracking):
    lane = _lane_with(tmp_path, "1_1#1", {"a.fasta": ("Unknown_ref", datetime(2015, 1, 1), ">a\n")})
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    with pytest.raises(ReferenceNotFoundError):
        write_pseudogenomes(collect_sequences([lane]), ReferenceFinder(tracking.refs_index), "x", out_dir)
    assert list(out_dir.iterdir()) == []


def test_earlier_alignments_kept_after_failure(tmp_path, tracking):
    lane = _lane_with(tmp_path, "1_1#1", {
        "a.fasta": (REF, datetime(2015, 1, 1), ">a\nAC\n"),
        "b.fasta": ("Unknown_ref", datetime(2015, 1, 1), ">b\nGT\n"),
    })
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    with pytest.raises(ReferenceNotFoundError):
        write_pseudogenomes(collect_sequences([lane]), ReferenceFinder(tracking.refs_index), "x", out_dir)
    assert [p.name for p in out_dir.iterdir()] == [pseudogenome_filename("x", REF)]


def test_unknown_reference_does_not_stop_later_ones(tmp_path, tracking):
    lane = _lane_with(tmp_path, "1_1#1", {
        "b.fasta": ("Unknown_ref", datetime(2015, 1, 1), ">b\nGT\n"),
        "a.fasta": (REF, datetime(2015, 1, 1), ">a\nAC\n"),
    })
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    with pytest.raises(ReferenceNotFoundError):
        write_pseudogenomes(collect_sequences([lane]), ReferenceFinder(tracking.refs_index), "x", out_dir)
    written = out_dir / pseudogenome_filename("x", REF)
    assert [p.name for p in out_dir.iterdir()] == [written.name]
    assert written.read_text().endswith(">a\nAC\n")


def test_existing_destination_checked_before_any_write(tmp_path, tracking):
    lane = _lane_with(tmp_path, "1_1#1", {
        "a.fasta": (REF, datetime(2015, 1, 1), ">a\nAC\n"),
        "b.fasta": ("Other_ref", datetime(2015, 1, 1), ">b\nGT\n"),
    })
    out_dir = tmp_path / "out"
    out_dir.mkdir()
    taken = out_dir / pseudogenome_filename("x", "Other_ref")
    taken.write_text("old")
    with pytest.raises(DestinationExistsError):
        write_pseudogenomes(collect_sequences([lane]), ReferenceFinder(tracking.refs_index), "x", out_dir)
    assert [p.name for p in out_dir.iterdir()] == [taken.name]
