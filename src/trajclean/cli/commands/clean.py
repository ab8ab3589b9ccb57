"""Pipeline commands: clean (full run + export) and inspect (single file)."""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from trajclean.cli.formatters import RichTableFormatter, get_formatter, histogram_frame
from trajclean.cli.plugin_system import cli_command
from trajclean.core import (
    CacheManager,
    CleaningSession,
    ConfigError,
    Exporter,
    FileIngestor,
    IngestError,
    PipelineExecutor,
)
from trajclean.logging_config import setup_logging
from trajclean.models.profile import CleaningProfile

console = Console()

_STATUS_STYLE = {
    "ok": "green",
    "excluded": "yellow",
    "cancelled": "dim",
}


def _load_profile(profile_path: Optional[Path]) -> CleaningProfile:
    if profile_path is None:
        return CleaningProfile.default()
    return CleaningProfile.load(profile_path)


@cli_command(
    name="clean",
    group="pipeline",
    description="Clean a directory of trajectory logs and export the results",
    priority=10,
)
def clean_command(
    input_dir: Optional[Path] = typer.Argument(
        None,
        help="Directory with raw CSV logs (default: from config)"
    ),
    profile_path: Optional[Path] = typer.Option(
        None,
        "--profile",
        "-p",
        help="Cleaning profile, JSON or YAML (default: from config, else built-in)"
    ),
    output_dir: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Destination for cleaned CSVs and reports (default: from config)"
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        "-w",
        help="Files cleaned in parallel (default: from config)"
    ),
    pattern: str = typer.Option(
        "*.csv",
        "--pattern",
        help="Glob pattern for input files"
    ),
    recursive: bool = typer.Option(
        False,
        "--recursive",
        "-r",
        help="Search subdirectories"
    ),
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Report format: table, json or csv"
    ),
    show_histograms: bool = typer.Option(
        False,
        "--histograms",
        help="Print baseline histograms of surviving files"
    ),
):
    """
    Run the cleaning profile over every log in a directory.

    Phase 1 cleans files in parallel (size filter, header standardization,
    static detection, trimming, column removal). Phase 2 runs corpus
    stages (anomaly detection, resequencing). Survivors are written as
    CSV together with batch_summary.json, anomaly_report.json and
    lineage.parquet.

    Examples:
        trajclean clean data/raw
        trajclean clean data/raw -p profile.yaml -o data/clean -w 8
        trajclean clean data/raw --format json > report.json
    """
    from trajclean.cli.main import get_config
    config = get_config()

    input_dir = input_dir or config.raw_data_dir
    output_dir = output_dir or config.output_dir
    workers = workers or config.workers
    profile_path = profile_path or config.profile_path

    log_file = setup_logging(config.log_dir, level=logging.DEBUG if config.verbose else logging.INFO)
    if config.verbose:
        console.print(f"[dim]Logging to {log_file}[/dim]")

    try:
        formatter = get_formatter(output_format, console=console)
        profile = _load_profile(profile_path)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not input_dir.is_dir():
        console.print(f"[red]Error:[/red] Input directory not found: {input_dir}")
        raise typer.Exit(1)

    session = CleaningSession(
        profile,
        ingestor=FileIngestor(chunk_rows=config.chunk_rows),
        cache=CacheManager(enabled=config.cache_enabled),
        histogram_bins=config.histogram_bins,
    )
    entries = session.add_directory(input_dir, pattern=pattern, recursive=recursive)
    if not entries:
        console.print(f"[yellow]⚠[/yellow] No files matching '{pattern}' in {input_dir}")
        raise typer.Exit(1)

    table_output = isinstance(formatter, RichTableFormatter)
    if table_output:
        console.print(Panel.fit(
            f"[bold blue]Cleaning {len(entries)} file(s)[/bold blue]\n"
            f"Profile: {profile.name} ({', '.join(s.stage_id for s in profile.stages if s.enabled)})\n"
            f"Output: {output_dir}",
            title="trajclean",
            border_style="blue",
        ))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        disable=not table_output,
    ) as progress:
        task = progress.add_task("[cyan]Cleaning...", total=len(entries))

        def on_progress(completed: int, total: int, name: str, status: str) -> None:
            style = _STATUS_STYLE.get(status, "white")
            progress.update(task, completed=completed, description=f"[{style}]{name}: {status}")

        executor = PipelineExecutor(
            workers=workers,
            chunk_rows=config.chunk_rows,
            progress_callback=on_progress,
        )
        try:
            run = executor.run(session)
        except ConfigError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1)
        except KeyboardInterrupt:
            executor.cancel()
            console.print("[yellow]⚠[/yellow] Cancelled; nothing exported")
            raise typer.Exit(130)

    if run.cancelled:
        console.print("[yellow]⚠[/yellow] Run cancelled; nothing exported")
        raise typer.Exit(130)

    result = Exporter(output_dir).export(session, run)
    analytics = session.analytics

    typer.echo(formatter.format_dataframe(
        analytics.files_frame(),
        title="Files",
        metadata={"run_id": run.run_id, "profile": profile.name},
    ))
    anomaly_frame = analytics.anomaly_frame()
    if anomaly_frame.height > 0:
        typer.echo(formatter.format_dataframe(anomaly_frame, title="Anomaly scores"))
    if show_histograms:
        typer.echo(formatter.format_dataframe(histogram_frame(analytics.histograms()), title="Histograms"))

    summary = result.summary
    typer.echo(formatter.format_summary({
        "run_id": run.run_id,
        "files_total": summary["files_total"],
        "files_exported": summary["files_exported"],
        "files_excluded": summary["files_excluded"],
        "original_records": summary["original_records"],
        "exported_records": summary["exported_records"],
        "data_reduction_percent": summary["data_reduction_percent"],
    }))

    if table_output:
        console.print(f"[green]✓[/green] Wrote {len(result.datasets)} file(s) to {output_dir}")


@cli_command(
    name="inspect",
    group="pipeline",
    description="Ingest one log and show its baseline statistics",
)
def inspect_command(
    path: Path = typer.Argument(..., help="Raw trajectory CSV file"),
    output_format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table, json or csv"
    ),
):
    """
    Parse a single file without running the profile.

    Shows row counts, skipped rows, detected fields and the baseline
    trajectory statistics used by the anomaly detector.
    """
    try:
        formatter = get_formatter(output_format, console=console)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not path.is_file():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)

    try:
        result = FileIngestor().ingest_path(path)
    except IngestError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    data = {
        "file": path.name,
        "encoding": result.encoding,
        "rows_read": result.rows_read,
        "rows_skipped": result.rows_skipped,
        "fields": ", ".join(result.dataset.fields),
    }
    data.update(result.stats.to_dict())
    typer.echo(formatter.format_summary(data))

    if result.row_errors and output_format == "table":
        console.print("[bold]First row errors:[/bold]")
        for line_no, message in result.row_errors:
            console.print(f"  line {line_no}: {message}")
