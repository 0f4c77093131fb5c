"""
runner.py

Walk a collection tree and run every request item against every data row.

Items run strictly one after another: an item's worker pool is fully joined
before the next item starts. Each item's result stream is read by a single
consumer that hands every result to the metrics aggregator and the progress
reporter; failed rows are exported once the stream is exhausted.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

import click
from rich.console import Console
from rich.table import Table

from .config_schema import CollectionTree, FolderNode, LeafNode, Node, RunSettings, load_collection
from .data_source import DataSet, DataSourceError, read_csv_rows
from .dispatcher import Dispatcher
from .failure_exporter import export_failures
from .metrics import MetricsAggregator, default_metrics_path, save_metrics
from .models import ItemMetrics, RunMetrics
from .progress import ProgressReporter, format_duration
from .request_manager import RequestManager
from .utility import PathLike, log_yaml, rfc3339, start_run_log, write_log


class BatchRunner:
    def __init__(
        self,
        settings: RunSettings,
        tree: CollectionTree,
        data: DataSet,
        request_manager: Optional[RequestManager] = None,
        log_file: Optional[PathLike] = None,
        console: Optional[Console] = None,
    ) -> None:
        self.settings = settings
        self.tree = tree
        self.data = data
        self.request_manager = request_manager or RequestManager(pool_maxsize=max(settings.workers, 10))
        self.log_file = log_file
        self.console = console or Console(highlight=False)
        self.dispatcher = Dispatcher(
            self.request_manager,
            settings.workers,
            collection_auth=tree.auth,
            cli_token=settings.bearer_token,
        )

    def _echo(self, message: str, **style) -> None:
        if not self.settings.quiet:
            click.echo(click.style(message, **style) if style else message)

    def _log(self, message: str) -> None:
        if self.log_file is not None:
            write_log(self.log_file, message)

    def run(self) -> RunMetrics:
        if not self.data.rows:
            raise DataSourceError("No data records found in CSV file (only headers)")
        run = RunMetrics(
            collection_name=self.tree.name,
            collection_file=str(self.settings.collection_path),
            csv_file=str(self.settings.data_path),
            started_at=datetime.now(timezone.utc),
            total_records=len(self.data.rows),
        )
        self._walk(self.tree.nodes, run, 0)
        run.finished_at = datetime.now(timezone.utc)
        self._log(
            f"=== BackfillStash run finished at {rfc3339(run.finished_at)}: "
            f"{run.summary()['successful']} ok, {run.summary()['failed']} failed ==="
        )
        return run

    def _walk(self, nodes: Sequence[Node], run: RunMetrics, depth: int) -> None:
        indent = "  " * depth
        for node in nodes:
            if isinstance(node, FolderNode):
                self._echo(f"{indent}Folder: {node.name}", fg="cyan")
                self._log(f"{indent}Folder: {node.name}")
                self._walk(node.children, run, depth + 1)
            else:
                run.items.append(self._run_leaf(node, indent))

    def _run_leaf(self, leaf: LeafNode, indent: str) -> ItemMetrics:
        rows = self.data.rows
        req = leaf.request
        self._echo(f"{indent}Processing: {leaf.name}", bold=True)
        self._echo(f"{indent}   Method: {req.method} | URL: {req.url_template}")
        self._echo(f"{indent}   Records: {len(rows)} | Workers: {self.settings.workers}")
        self._log(f"{indent}Request: {leaf.name} ({req.method} {req.url_template})")

        aggregator = MetricsAggregator(leaf.name)
        progress = ProgressReporter(len(rows), quiet=self.settings.quiet)
        for result in self.dispatcher.execute(leaf, rows):
            aggregator.record(result)
            progress.update(result)
            if not result.success:
                line = f"{indent}   FAILED [{result.status_code}] {result.method} {result.url}: {result.error_detail}"
                self._log(line)
                if self.settings.verbose and not self.settings.quiet:
                    click.echo("\n" + click.style(line, fg="red"), err=True)
        progress.finish()
        metrics = aggregator.finish()

        failure_file = export_failures(metrics.failed_results, leaf.name, self.settings.output_dir)
        if failure_file is not None:
            metrics.failure_file = str(failure_file)
            self._echo(f"{indent}   Failed: {metrics.failure_count} requests saved to {failure_file}", fg="yellow")
            self._log(f"{indent}   Failures written to {failure_file}")

        self._log(
            f"{indent}   Total={metrics.total} Successful={metrics.success_count} Failed={metrics.failure_count} "
            f"Avg={int(metrics.average_ms)}ms Min={int(metrics.min_time_ms or 0)}ms Max={int(metrics.max_time_ms or 0)}ms"
        )
        if not self.settings.quiet:
            print_item_summary(self.console, metrics)
        return metrics


def print_item_summary(console: Console, metrics: ItemMetrics) -> None:
    table = Table(title=f"Summary: {metrics.name}", show_header=False, title_justify="left")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    rate = metrics.success_rate_pct
    failed_pct = 100 - rate if metrics.total else 0.0
    table.add_row("Total", str(metrics.total))
    table.add_row("Successful", f"[green]{metrics.success_count}[/green] ({rate:.1f}%)")
    table.add_row("Failed", f"[red]{metrics.failure_count}[/red] ({failed_pct:.1f}%)")
    table.add_row("Avg Time", f"{int(metrics.average_ms)}ms")
    table.add_row("Min Time", f"{int(metrics.min_time_ms or 0)}ms")
    table.add_row("Max Time", f"{int(metrics.max_time_ms or 0)}ms")
    table.add_row("Duration", format_duration(metrics.duration_seconds))
    console.print(table)


def print_final_summary(console: Console, run: RunMetrics) -> None:
    s = run.summary()
    total = s["total_requests"]
    table = Table(title="EXECUTION COMPLETE", show_header=False, title_justify="left")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Collection", run.collection_name)
    table.add_row("Total Requests", str(total))
    table.add_row("Successful", f"[green]{s['successful']}[/green] ({s['success_rate_pct']:.1f}%)")
    failed_pct = s["failed"] / total * 100 if total else 0.0
    table.add_row("Failed", f"[red]{s['failed']}[/red] ({failed_pct:.1f}%)")
    table.add_row("Duration", format_duration(run.duration_seconds))
    table.add_row("Throughput", f"{s['throughput_rps']:.2f} req/s")
    console.print(table)


def run_batch(
    settings: RunSettings,
    request_manager: Optional[RequestManager] = None,
    console: Optional[Console] = None,
) -> tuple[RunMetrics, Path]:
    """
    Load inputs, execute the whole collection and write the metrics file.

    Collection and data problems raise before any request is sent.
    Returns the run metrics and the path of the metrics file.
    """
    tree = load_collection(settings.collection_path)
    data = read_csv_rows(settings.data_path)
    if not data.rows:
        raise DataSourceError("No data records found in CSV file (only headers)")

    output_dir = Path(settings.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    now = datetime.now()
    log_file = output_dir / f"backfill-run-{now.strftime('%Y%m%d_%H%M%S')}.log"
    start_run_log(log_file, rfc3339(datetime.now(timezone.utc)), tree.name, settings.collection_path, settings.data_path)
    log_yaml(log_file, "Settings:", settings.model_dump(mode="json", exclude={"bearer_token"}), indent=2)
    write_log(log_file, f"Records: {len(data.rows)} | Columns: {', '.join(data.columns)}")

    runner = BatchRunner(settings, tree, data, request_manager=request_manager, log_file=log_file, console=console)
    try:
        run = runner.run()
    finally:
        if request_manager is None:
            runner.request_manager.close()

    metrics_path = save_metrics(run, settings.metrics_file or default_metrics_path(output_dir, now))
    write_log(log_file, f"Metrics saved to {metrics_path}")
    if not settings.quiet:
        print_final_summary(runner.console, run)
    return run, metrics_path
