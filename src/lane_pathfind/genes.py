"""genes.py — search annotation GFFs for a gene or product.

Annotation GFF3 files (as written by Prokka) carry their contig sequences in a
trailing ``##FASTA`` section, so a matching CDS can be cut out and written as
protein (bacterial translation table 11) or nucleotide FASTA.
"""
from __future__ import annotations

__all__ = ["GeneSearchResult", "gene_query", "read_gff", "search_genes"]

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path

import gffutils
from Bio import SeqIO
from Bio.SeqRecord import SeqRecord
from gffutils.exceptions import EmptyInputError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = Path("output_contigs.fa")


@dataclass
class GeneSearchResult:
    output_file: Path
    hits: int
    misses: int


def gene_query(gene: str | None, product: str | None) -> tuple[str, list[str]]:
    """Return ``(query, qualifiers)`` for a gene and/or product search.

    * product only → search ``product`` for the product name
    * gene only → search ``gene`` and ``ID`` for the gene name
    * both → search ``gene``, ``ID`` and ``product`` for the *gene* name;
      the product value is not used. Earlier pathfind releases tested the
      product first and so searched only ``product`` for the product value
      when both were given; the gene-first construction here is deliberate.

    Raises
    ------
    ValueError
        If neither is given.
    """
    if gene and product:
        return gene, ["gene", "ID", "product"]
    if product:
        return product, ["product"]
    if gene:
        return gene, ["gene", "ID"]
    raise ValueError('either "gene" or "product" must be set')


def _attribute(feature: gffutils.Feature, key: str, default: str = "") -> str:
    """First value of a GFF attribute; gffutils keeps every value as a list."""
    values = feature.attributes.get(key) or [default]
    return values[0]


def read_gff(path: Path) -> tuple[list[gffutils.Feature], dict[str, SeqRecord]]:
    """Return the CDS features and the ``##FASTA`` contigs of a GFF3 file.

    Features are read with gffutils into an in-memory database, in contig
    and start order; the contigs are parsed with Biopython.
    """
    try:
        db = gffutils.create_db(str(path), ":memory:", merge_strategy="create_unique")
    except EmptyInputError:
        logger.debug("%s: no features", path)
        features = []
    else:
        features = list(db.features_of_type("CDS", order_by=("seqid", "start")))

    _, marker, fasta = Path(path).read_text().partition("##FASTA")
    contigs = SeqIO.to_dict(SeqIO.parse(io.StringIO(fasta if marker else ""), "fasta"))
    return features, contigs


def search_genes(
    gff_files: list[Path],
    query: str,
    qualifiers: list[str],
    nucleotides: bool = False,
    output_file: Path | None = None,
) -> GeneSearchResult:
    """Find CDS features whose *qualifiers* match *query* in each GFF.

    *query* is a case-insensitive regular expression. Matching sequences are
    written to *output_file* as FASTA, named ``<gff stem>_<feature ID>``.
    ``hits`` counts GFFs with at least one match, ``misses`` the rest.
    """
    output_file = Path(output_file or DEFAULT_OUTPUT)
    pattern = re.compile(query, re.IGNORECASE)

    records: list[SeqRecord] = []
    hits = misses = 0
    for gff in gff_files:
        gff = Path(gff)
        features, contigs = read_gff(gff)
        found = 0
        for feature in features:
            values = [_attribute(feature, q) for q in qualifiers]
            if not any(pattern.search(v) for v in values if v):
                continue
            contig = contigs.get(feature.seqid)
            if contig is None:
                logger.warning("%s: no sequence for contig %s", gff, feature.seqid)
                continue
            seq = contig.seq[feature.start - 1:feature.end]
            if feature.strand == "-":
                seq = seq.reverse_complement()
            if not nucleotides:
                seq = seq.translate(table=11, to_stop=True)
            feature_id = _attribute(feature, "ID", f"{feature.seqid}_{feature.start}")
            records.append(SeqRecord(
                seq,
                id=f"{gff.stem}_{feature_id}",
                description=_attribute(feature, "product"),
            ))
            found += 1
        if found:
            hits += 1
        else:
            misses += 1

    SeqIO.write(records, output_file, "fasta")
    logger.info("wrote %d sequence(s) to %s", len(records), output_file)
    return GeneSearchResult(output_file=output_file, hits=hits, misses=misses)
