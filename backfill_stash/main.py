import sys
from pathlib import Path
import click
from pydantic import ValidationError

from . import __version__
from .config_schema import CollectionError, FolderNode, RunSettings, format_validation_error, load_collection
from .data_source import DataSourceError


@click.group(help="BackfillStash CLI: run Postman collection requests once per CSV row.")
@click.version_option(__version__, prog_name="BackfillStash")
def main():
    """BackfillStash top-level command group."""
    pass


@main.command()
@click.argument("collection", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def validate(collection: Path):
    """Validate a COLLECTION file and print its folder/request tree."""
    try:
        tree = load_collection(collection)
    except (ValidationError, CollectionError, FileNotFoundError) as e:
        click.echo(format_validation_error(e), err=True)
        sys.exit(1)

    leaves = tree.leaves()
    click.echo(f"OK: {collection} is a valid collection. Name='{tree.name}', Requests={len(leaves)}")
    for depth, node in tree.iter_nodes():
        indent = "  " * (depth + 1)
        if isinstance(node, FolderNode):
            click.echo(f"{indent}[folder] {node.name}")
        else:
            click.echo(f"{indent}{node.request.method} {node.name}: {node.request.url_template}")


@main.command(help="Execute every request in COLLECTION once per row of the CSV data file.")
@click.option("-c", "--collection", required=True, type=click.Path(dir_okay=False, path_type=Path), help="Path to Postman collection JSON (or YAML) file.")
@click.option("-s", "--csv", "csv_path", required=True, type=click.Path(dir_okay=False, path_type=Path), help="Path to CSV file with data; the header row names the template variables.")
@click.option("-t", "--threads", "workers", default=10, show_default=True, type=int, help="Number of concurrent workers per request.")
@click.option("-a", "--bearer-token", envvar="BACKFILL_BEARER_TOKEN", help="Bearer token for every request (overrides collection and request auth).")
@click.option("-m", "--metrics-file", type=click.Path(dir_okay=False, path_type=Path), help="Where to write run metrics (.json, or .yml/.yaml). Default: metrics_<timestamp>.json in --out.")
@click.option("--out", "out_dir", default=".", show_default=True, type=click.Path(file_okay=False, path_type=Path), help="Directory for failure CSVs, metrics and the run log.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress and summaries (useful for CI/CD).")
@click.option("-v", "--verbose", is_flag=True, help="Print every failed row as it happens.")
def run(collection: Path, csv_path: Path, workers: int, bearer_token: str | None, metrics_file: Path | None,
        out_dir: Path, quiet: bool, verbose: bool):
    # 1) Validate settings before touching any input
    try:
        settings = RunSettings(
            collection_path=collection,
            data_path=csv_path,
            workers=workers,
            bearer_token=bearer_token or None,
            metrics_file=metrics_file,
            output_dir=out_dir,
            quiet=quiet,
            verbose=verbose,
        )
    except ValidationError as e:
        click.echo(format_validation_error(e), err=True)
        sys.exit(9)

    if not quiet:
        click.echo(f"BackfillStash v{__version__}")
        click.echo(f"  Collection: {collection}")
        click.echo(f"  CSV Data:   {csv_path}")
        click.echo(f"  Workers:    {workers}")
        if metrics_file is not None:
            click.echo(f"  Metrics:    {metrics_file}")
        click.echo("")

    # 2) Execute; input problems abort before any request is sent
    from .runner import run_batch
    try:
        _, metrics_path = run_batch(settings)
    except (ValidationError, CollectionError, FileNotFoundError) as e:
        click.echo(f"Error loading collection '{collection}': {format_validation_error(e)}", err=True)
        sys.exit(9)
    except DataSourceError as e:
        click.echo(f"Error reading CSV file: {e}", err=True)
        sys.exit(9)

    if not quiet:
        click.echo(click.style(f"Metrics saved to: {metrics_path}", fg="green"))
    sys.exit(0)
