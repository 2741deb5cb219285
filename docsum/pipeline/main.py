"""CLI entry point for the document summarization pipeline.

This module provides the command-line interface for summarizing a PDF
with argument parsing, a live progress bar, and error handling.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from docsum import __version__
from docsum.models.config import ConfigManager, PipelineConfig
from docsum.models.data_models import JobSnapshot, JobStatus, ProgressEvent, SourceDocument
from docsum.pipeline.orchestrator import PipelineOrchestrator
from docsum.pipeline.output import JSONOutputFormatter
from docsum.summarizer.analysis import estimate_cost
from docsum.summarizer.tiers import parse_tier


console = Console()


@click.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--tier",
    type=click.Choice(["SHORT", "MEDIUM", "LONG"], case_sensitive=False),
    help="Summary length tier (overrides config)",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to configuration YAML file (default: config/config.yaml if present)",
)
@click.option(
    "--timeout",
    "-t",
    type=float,
    help="Total processing timeout in seconds (overrides config)",
)
@click.option(
    "--rate-limit",
    "-r",
    type=int,
    help="Summarization calls allowed per rate window (overrides config)",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    help="Output JSON file path (overrides config)",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.option(
    "--no-progress",
    is_flag=True,
    help="Disable progress bars (useful for CI/CD)",
)
@click.version_option(version=__version__, prog_name="docsum")
def main(
    file: Path,
    tier: Optional[str],
    config: Optional[Path],
    timeout: Optional[float],
    rate_limit: Optional[int],
    output: Optional[Path],
    log_level: Optional[str],
    no_progress: bool,
) -> None:
    """
    docsum - Summarize a PDF document with an OpenAI-compatible model.

    Without OPENAI_API_KEY (or DOCSUM_API_KEY) a deterministic demo summary
    is produced instead, so the whole pipeline can run offline.

    Examples:

        # Medium summary with default configuration
        $ docsum report.pdf

        # Long summary, custom timeout
        $ docsum report.pdf --tier LONG --timeout 120

        # Disable progress bars for CI/CD
        $ docsum report.pdf --no-progress
    """
    try:
        cli_overrides = {}
        if tier is not None:
            cli_overrides["default_tier"] = tier.upper()
        if timeout is not None:
            cli_overrides["total_timeout"] = timeout
        if rate_limit is not None:
            cli_overrides["rate_limit_quota"] = rate_limit
        if log_level is not None:
            cli_overrides["log_level"] = log_level.upper()

        config_manager = ConfigManager(config)
        pipeline_config = config_manager.load_config(cli_overrides)

        output_path = output if output else pipeline_config.output_path

        _display_config_summary(pipeline_config, no_progress)

        document = SourceDocument.from_path(file)
        snapshot, cost = asyncio.run(
            _run_pipeline_with_progress(pipeline_config, document, no_progress)
        )

        formatter = JSONOutputFormatter()
        formatter.save(snapshot, str(output_path), cost_estimate=cost)

        _display_results(snapshot, cost, output_path, no_progress)

        sys.exit(0 if snapshot.status is JobStatus.DONE else 1)

    except KeyboardInterrupt:
        console.print("\n[yellow]Processing interrupted by user[/yellow]")
        sys.exit(130)  # Standard exit code for SIGINT
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}", style="bold red")
        if "--debug" in sys.argv:
            console.print_exception()
        sys.exit(1)


async def _run_pipeline_with_progress(
    config: PipelineConfig,
    document: SourceDocument,
    no_progress: bool,
) -> Tuple[JobSnapshot, Optional[dict]]:
    """
    Run one document through the pipeline with progress tracking.

    Args:
        config: Pipeline configuration
        document: Document to summarize
        no_progress: Whether to disable progress bars

    Returns:
        Final job snapshot and a cost estimate (None without extracted text)
    """
    tier = parse_tier(config.default_tier)

    async with PipelineOrchestrator(config) as orchestrator:
        pipeline = orchestrator.create_pipeline()

        if no_progress:
            console.print(f"[cyan]Summarizing {document.name}...[/cyan]")
            snapshot = await orchestrator.run(document, tier, pipeline=pipeline)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task_id = progress.add_task(f"[cyan]{document.name}", total=100)

                def on_progress(event: ProgressEvent) -> None:
                    progress.update(
                        task_id,
                        completed=event.progress,
                        description=f"[cyan]{event.status.value.title()}[/cyan] {event.message}",
                    )

                snapshot = await orchestrator.run(document, tier, listener=on_progress, pipeline=pipeline)

        text = pipeline.extracted_text
        cost = estimate_cost(
            text,
            tier,
            config.economy_model,
            config.capable_model,
            config.model_threshold_chars,
        ) if text else None
        return snapshot, cost


def _display_config_summary(config: PipelineConfig, no_progress: bool) -> None:
    """Display configuration summary before running."""
    if no_progress:
        return

    console.print("\n[bold cyan]Pipeline Configuration[/bold cyan]")
    console.print(f"  Mode: {'demo (no API key)' if config.demo_mode else config.api_url}")
    console.print(f"  Tier: {config.default_tier}")
    console.print(f"  Rate Limit: {config.rate_limit_quota} calls / {config.rate_limit_window:g}s")
    console.print(f"  Retries: {config.max_retries}")
    console.print(f"  Timeout: {config.total_timeout}s")
    console.print()


def _display_results(
    snapshot: JobSnapshot,
    cost: Optional[dict],
    output_path: Path,
    no_progress: bool,
) -> None:
    """Display final results summary."""
    if snapshot.status is not JobStatus.DONE:
        console.print(f"[red]✗ {snapshot.status.value.title()}:[/red] {snapshot.error_message}")
        console.print(f"Output saved to: {output_path}")
        return

    result = snapshot.result
    if no_progress:
        console.print(f"✓ Summary complete: {result.word_count} words ({result.model})")
        console.print(f"✓ Output saved to: {output_path}")
        return

    console.print("\n[bold green]Summary Complete![/bold green]\n")

    summary_table = Table(title="Execution Summary", show_header=False)
    summary_table.add_column("Metric", style="cyan")
    summary_table.add_column("Value", style="green")

    summary_table.add_row("Document", snapshot.document_name)
    summary_table.add_row("Pages", str(snapshot.metadata.get("page_count", "N/A")))
    summary_table.add_row("Document Type", f"{result.document_type} ({result.confidence * 100:.0f}%)")
    summary_table.add_row("Model", result.model + (" (demo)" if result.is_demo else ""))
    summary_table.add_row("Summary Words", str(result.word_count))
    if cost:
        summary_table.add_row("Estimated Cost", f"${cost['estimated_cost']:.4f}")

    console.print(summary_table)
    console.print()
    console.print(result.summary)
    console.print()

    console.print(f"[bold]Output saved to:[/bold] {output_path}")
    console.print()


if __name__ == "__main__":
    main()
