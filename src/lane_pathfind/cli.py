from __future__ import annotations

import dataclasses
import functools
import logging
from pathlib import Path

import click

from lane_pathfind.config import KIND_PIPELINES, FinderConfig
from lane_pathfind.exceptions import PathFindError
from lane_pathfind.finder import ID_TYPES, LaneFilters, expand_ids, find_lanes
from lane_pathfind.genes import gene_query, search_genes
from lane_pathfind.lanes import Lane
from lane_pathfind.pseudogenome import collect_sequences, write_pseudogenomes
from lane_pathfind.references import ReferenceFinder
from lane_pathfind.resolvers import ASSEMBLY_FILES, details_rows, resolve_files
from lane_pathfind.sink import (
    check_destination,
    collect_filenames,
    make_symlinks,
    make_tar,
    make_zip,
    renamed_id,
    write_list,
)
from lane_pathfind.stats import (
    ASSEMBLY_STATS_HEADERS,
    MAPPING_STATS_HEADERS,
    assembly_stats_rows,
    mapping_stats_rows,
    stats_frame,
    write_stats,
)
from lane_pathfind.status import status_table
from lane_pathfind.store import TrackingStore

logger = logging.getLogger(__name__)


def _split_commas(ctx: click.Context, param: click.Parameter, value: tuple[str, ...]) -> list[str]:
    """Accept both ``--mapper bwa --mapper smalt`` and ``--mapper bwa,smalt``."""
    return [item for v in value for item in v.split(",") if item]


def _handle_errors(fn):
    """Report PathFindError as a clean CLI error (exit status 1)."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except PathFindError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


def _lane_options(fn):
    """Options shared by every finding command."""
    options = [
        click.option("--id", "-i", "id_value", required=True, envvar="PF_ID",
                     help='ID, or name of a file of IDs when --type is "file" ("-" for stdin).'),
        click.option("--type", "-t", "id_type", required=True, envvar="PF_TYPE",
                     type=click.Choice(ID_TYPES + ("file",)),
                     help='ID type. Use "file" to read IDs from a file.'),
        click.option("--file-id-type", "--ft", "file_id_type", default=None,
                     type=click.Choice(ID_TYPES), help="Type of the IDs in the input file."),
        click.option("--qc", "-q", default=None, type=click.Choice(["passed", "failed", "pending"]),
                     help="Only lanes with this QC status."),
        click.option("--ignore-processed-flag", is_flag=True, default=False,
                     help="Include lanes whose pipeline has not finished."),
        click.option("--force", "-F", is_flag=True, default=False, envvar="PF_FORCE_OVERWRITE",
                     help="Overwrite existing output files."),
        click.option("--rename", "-r", is_flag=True, default=False,
                     help="Replace # with _ in file names."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _output_options(fn):
    """Options choosing what to do with the files found."""
    options = [
        click.option("--symlink", "-l", default=None, is_flag=False, flag_value="", metavar="DIR",
                     help="Create symlinks to the files in DIR."),
        click.option("--archive", "-a", default=None, is_flag=False, flag_value="", metavar="FILE",
                     help="Write the files to a gzipped tar archive."),
        click.option("--zip", "-z", "zip_file", default=None, is_flag=False, flag_value="",
                     metavar="FILE", help="Write the files to a zip archive."),
        click.option("--list", "-L", "list_file", default=None, type=click.Path(path_type=Path),
                     help="Write the file paths, one per line, to FILE."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _stats_options(fn):
    options = [
        click.option("--stats", "-s", default=None, is_flag=False, flag_value="", metavar="FILE",
                     help="Write a statistics table."),
        click.option("--csv-separator", "-c", default=None, envvar="PF_CSV_SEP",
                     help="Field separator for the statistics table."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.option(
    "--config",
    "config_path",
    default=None,
    metavar="PATH",
    envvar="PF_CONFIG",
    help="Path to YAML config file. Uses built-in defaults if omitted.",
)
@click.option("--verbose", "-v", count=True, help="Show debugging messages.")
@click.option("--workers", default=None, type=int, metavar="N",
              help="Resolve lanes with N threads. Overrides config file.")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: int, workers: int | None) -> None:
    """pathfind: find pipeline output files for sequencing lanes."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    ctx.ensure_object(dict)
    try:
        config = FinderConfig.from_yaml(config_path) if config_path else FinderConfig()
        if workers is not None:
            config = dataclasses.replace(config, workers=workers)
    except (OSError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc
    ctx.obj["config"] = config


# ---------------------------------------------------------------------------
# Shared steps
# ---------------------------------------------------------------------------


def _find(
    config: FinderConfig,
    kind: str,
    filetype: str | None,
    opts: dict,
    filters: LaneFilters,
) -> list[Lane]:
    ids, id_type = expand_ids(opts["id_value"], opts["id_type"], opts["file_id_type"])
    filters.qc = opts["qc"]
    if not opts["ignore_processed_flag"]:
        filters.processed = KIND_PIPELINES[kind]
    with TrackingStore.from_config(config) as store:
        lanes = find_lanes(store, ids, id_type, kind, filetype, filters, config)
    warned = sum(1 for lane in lanes if lane.warnings)
    if warned:
        logger.info("%d of %d lane(s) had missing files; see warnings above", warned, len(lanes))
    return lanes


def _output_paths(kind: str, opts: dict) -> dict[str, Path]:
    """Files the stats, archive, zip and list options will write, by option."""
    name = renamed_id(opts["id_value"])
    prefix = f"{kind}find_{name}"
    paths = {}
    if opts.get("stats") is not None:
        paths["stats"] = Path(opts["stats"] or f"{name}.{kind}find_stats.csv")
    if opts.get("archive") is not None:
        paths["archive"] = Path(opts["archive"] or f"{prefix}.tar.gz")
    if opts.get("zip_file") is not None:
        paths["zip_file"] = Path(opts["zip_file"] or f"{prefix}.zip")
    if opts.get("list_file") is not None:
        paths["list_file"] = Path(opts["list_file"])
    return paths


def _check_outputs(kind: str, opts: dict) -> None:
    """Refuse to start writing if any requested output file already exists.

    Raises
    ------
    DestinationExistsError
        If an output exists and ``--force`` was not given.
    """
    for path in _output_paths(kind, opts).values():
        check_destination(path, opts["force"])


def _deliver(lanes: list[Lane], kind: str, opts: dict, stats=None, separator: str = ",") -> bool:
    """Write symlinks, archives and stats as requested; False if none were."""
    name = renamed_id(opts["id_value"])
    prefix = f"{kind}find_{name}"
    paths = _output_paths(kind, opts)
    extra = {}
    if stats is not None:
        extra[f"{name}.{kind}find_stats.csv"] = stats.to_csv(index=False, sep=separator)

    delivered = False
    if opts.get("symlink") is not None:
        dest = Path(opts["symlink"] or prefix)
        links = make_symlinks([p for lane in lanes for p in lane.all_files()], dest, rename=opts["rename"])
        click.echo(f"Created {len(links)} link(s) in {dest}.")
        delivered = True
    if opts.get("archive") is not None or opts.get("zip_file") is not None:
        mapping = collect_filenames(lanes, opts["id_value"], rename=opts["rename"])
        if opts.get("archive") is not None:
            out = make_tar(mapping, paths["archive"], opts["force"], extra)
            click.echo(f"Wrote {out}.")
        if opts.get("zip_file") is not None:
            out = make_zip(mapping, paths["zip_file"], opts["force"], extra)
            click.echo(f"Wrote {out}.")
        delivered = True
    if opts.get("list_file") is not None:
        out = write_list((str(p) for lane in lanes for p in lane.all_files()), paths["list_file"], opts["force"])
        click.echo(f"Wrote file list to {out}.")
        delivered = True
    return delivered


def _separator(config: FinderConfig, opts: dict) -> str:
    return opts.get("csv_separator") or config.csv_separator


def _write_stats(config: FinderConfig, kind: str, opts: dict, frame) -> None:
    path = _output_paths(kind, opts)["stats"]
    write_stats(frame, path, separator=_separator(config, opts), force=opts["force"])
    click.echo(f"Wrote statistics to {path}.")


def _assembly_stats(lanes: list[Lane], assemblers: list[str]):
    return stats_frame(
        ASSEMBLY_STATS_HEADERS,
        [r for lane in lanes for r in assembly_stats_rows(lane, assemblers)],
    )


def _print_files(lanes: list[Lane], details: bool = False) -> None:
    for lane in lanes:
        lines = details_rows(lane) if details else [str(p) for p in lane.all_files()]
        for line in lines:
            click.echo(line)


def _no_data(lanes: list[Lane]) -> bool:
    if not lanes:
        click.echo("No data found.", err=True)
        return True
    return False


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@main.command()
@_lane_options
@_output_options
@click.option("--filetype", "-f", default="fastq", help="Type of files to find (fastq, bam, pacbio, corrected).")
@click.pass_context
@_handle_errors
def data(ctx: click.Context, filetype: str, **opts) -> None:
    """Find raw data files for lanes."""
    config: FinderConfig = ctx.obj["config"]
    lanes = _find(config, "data", filetype, opts, LaneFilters())
    if _no_data(lanes):
        return
    _check_outputs("data", opts)
    if not _deliver(lanes, "data", opts):
        _print_files(lanes)


@main.command(name="map")
@_lane_options
@_output_options
@_stats_options
@click.option("--mapper", "-M", multiple=True, callback=_split_commas,
              help="Only mappings made with these mappers (comma-separated).")
@click.option("--reference", "-R", default=None, help="Only mappings against this reference.")
@click.option("--details", "-d", is_flag=True, default=False,
              help="Show reference, mapper and date for each file.")
@click.pass_context
@_handle_errors
def map_command(ctx: click.Context, mapper: list[str], reference: str | None, details: bool, **opts) -> None:
    """Find BAM files from the mapping pipeline."""
    config: FinderConfig = ctx.obj["config"]
    lanes = _find(config, "map", "bam", opts, LaneFilters(mappers=mapper, reference=reference))
    if _no_data(lanes):
        return
    _check_outputs("map", opts)
    frame = None
    if opts["stats"] is not None:
        frame = stats_frame(MAPPING_STATS_HEADERS, [r for lane in lanes for r in mapping_stats_rows(lane)])
        _write_stats(config, "map", opts, frame)
    delivered = _deliver(lanes, "map", opts, frame, _separator(config, opts))
    if not delivered and opts["stats"] is None:
        _print_files(lanes, details)


@main.command()
@_lane_options
@_output_options
@click.option("--filetype", "-f", default="vcf", type=click.Choice(["vcf", "pseudogenome"]),
              help="Type of files to find.")
@click.option("--mapper", "-M", multiple=True, callback=_split_commas,
              help="Only SNP calls from mappings made with these mappers.")
@click.option("--reference", "-R", default=None, help="Only SNP calls against this reference.")
@click.option("--details", "-d", is_flag=True, default=False,
              help="Show reference, mapper and date for each file.")
@click.option("--pseudogenome", "-p", is_flag=True, default=False, help="Generate pseudogenome alignments.")
@click.option("--exclude-reference", "-x", is_flag=True, default=False,
              help="Leave the reference sequence out of pseudogenome alignments.")
@click.pass_context
@_handle_errors
def snp(
    ctx: click.Context,
    filetype: str,
    mapper: list[str],
    reference: str | None,
    details: bool,
    pseudogenome: bool,
    exclude_reference: bool,
    **opts,
) -> None:
    """Find VCF files, or build pseudogenome alignments, for lanes."""
    config: FinderConfig = ctx.obj["config"]
    if pseudogenome:
        filetype = "pseudogenome"
    lanes = _find(config, "snp", filetype, opts, LaneFilters(mappers=mapper, reference=reference))
    if _no_data(lanes):
        return
    if not pseudogenome:
        _check_outputs("snp", opts)

    if pseudogenome:
        written = write_pseudogenomes(
            collect_sequences(lanes),
            ReferenceFinder(config.refs_index),
            renamed_id(opts["id_value"]),
            exclude_reference=exclude_reference,
            force=opts["force"],
        )
        for path in written:
            click.echo(f'wrote "{path}"')
    elif not _deliver(lanes, "snp", opts):
        _print_files(lanes, details)


@main.command()
@_lane_options
@_output_options
@_stats_options
@click.option("--filetype", "-f", default="scaffold", type=click.Choice(list(ASSEMBLY_FILES)),
              help="Type of files to find.")
@click.option("--program", "-P", multiple=True, callback=_split_commas,
              help="Only assemblies from these assemblers (comma-separated).")
@click.pass_context
@_handle_errors
def assembly(ctx: click.Context, filetype: str, program: list[str], **opts) -> None:
    """Find assemblies for lanes."""
    config: FinderConfig = ctx.obj["config"]
    lanes = _find(config, "assembly", filetype, opts, LaneFilters(assemblers=program))
    if _no_data(lanes):
        return
    _check_outputs("assembly", opts)
    frame = None
    if opts["stats"] is not None:
        frame = _assembly_stats(lanes, program or config.assemblers)
        _write_stats(config, "assembly", opts, frame)
    delivered = _deliver(lanes, "assembly", opts, frame, _separator(config, opts))
    if not delivered and opts["stats"] is None:
        _print_files(lanes)


@main.command()
@_lane_options
@_output_options
@_stats_options
@click.option("--filetype", "-f", default="gff", help="Type of files to find (gff, faa, ffn, gbk, fasta).")
@click.option("--program", "-P", multiple=True, callback=_split_commas,
              help="Only annotation of assemblies from these assemblers.")
@click.option("--gene", "-g", default=None, help="Gene name to search for.")
@click.option("--product", "-p", default=None, help="Product name to search for.")
@click.option("--output", "-o", default=None, type=click.Path(path_type=Path),
              help="Output file for the genes found.")
@click.option("--nucleotides", "-n", is_flag=True, default=False,
              help="Output nucleotide instead of protein sequences.")
@click.pass_context
@_handle_errors
def annotation(
    ctx: click.Context,
    filetype: str,
    program: list[str],
    gene: str | None,
    product: str | None,
    output: Path | None,
    nucleotides: bool,
    **opts,
) -> None:
    """Find annotation files, or search them for a gene or product."""
    config: FinderConfig = ctx.obj["config"]
    filters = LaneFilters(assemblers=program)
    lanes = _find(config, "annotation", filetype, opts, filters)
    if _no_data(lanes):
        return
    _check_outputs("annotation", opts)

    frame = None
    if opts["stats"] is not None:
        frame = _assembly_stats(lanes, program or config.assemblers)
        _write_stats(config, "annotation", opts, frame)
    delivered = _deliver(lanes, "annotation", opts, frame, _separator(config, opts))

    if gene or product:
        _print_files(lanes)
        gffs = [
            lane.storage_copy(f.path) for lane in lanes
            for f in resolve_files(lane, "annotation", "gff", filters, config)
        ]
        query, qualifiers = gene_query(gene, product)
        result = search_genes(gffs, query, qualifiers, nucleotides=nucleotides, output_file=output)
        if nucleotides:
            click.echo("Outputting nucleotide sequences")
        click.echo(f"Samples containing gene/product:\t{result.hits}")
        click.echo(f"Samples missing gene/product:   \t{result.misses}")
    elif not delivered and opts["stats"] is None:
        _print_files(lanes)


@main.command()
@_lane_options
@click.pass_context
@_handle_errors
def status(ctx: click.Context, **opts) -> None:
    """Show pipeline status for lanes."""
    config: FinderConfig = ctx.obj["config"]
    opts["ignore_processed_flag"] = True
    lanes = _find(config, "data", None, opts, LaneFilters())
    if _no_data(lanes):
        return
    click.echo(status_table(lanes).to_string(index=False))
