from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from catalog_sync.domain.models import SyncResult, WorkerAssignment
from catalog_sync.rollup.engine import RollupOutcome, RollupReport
from catalog_sync.utils.profiler import ProfileStats

_OUTCOME_STYLE = {
    RollupOutcome.SUCCESS: "bold green",
    RollupOutcome.SKIPPED: "yellow",
    RollupOutcome.FAILURE: "bold red",
}


def _format_mb(value: Optional[int]) -> str:
    if value is None:
        return "N/A"
    return f"{value / (1024 * 1024):.2f}"


def _profile_caption(stats: Optional[ProfileStats]) -> Optional[str]:
    if stats is None:
        return None
    cpu = f"{stats.cpu_percent:.1f}" if stats.cpu_percent is not None else "N/A"
    return (
        f"{stats.duration_seconds:.1f}s │ peak RSS {_format_mb(stats.peak_rss_bytes)} MB "
        f"│ CPU {cpu}%"
    )


def print_partition(
    total_pages: int,
    assignments: Sequence[WorkerAssignment],
    worker_count: int,
    console: Optional[Console] = None,
) -> None:
    """
    Render a page partition as a rich table.

    Workers with a zero-page share are listed as idle so the table always has
    one row per configured worker.
    """
    console = console or Console()
    by_index = {assignment.worker_index: assignment for assignment in assignments}

    table = Table(
        title=f"Page partition ({total_pages:,} pages, {worker_count} workers)",
        box=box.ROUNDED,
    )
    table.add_column("Worker", style="cyan", no_wrap=True)
    table.add_column("Pages", justify="right", style="magenta")
    table.add_column("Count", justify="right", style="green")

    for index in range(worker_count):
        assignment = by_index.get(index)
        if assignment is None:
            table.add_row(f"worker-{index + 1}", "[dim]idle[/dim]", "0")
            continue
        table.add_row(
            assignment.worker_id,
            str(assignment.page_range),
            f"{len(assignment.page_range):,}",
        )

    console.print(table)


def print_sync_result(
    result: SyncResult,
    stats: Optional[ProfileStats] = None,
    console: Optional[Console] = None,
) -> None:
    """Render one worker's ``SyncResult``, with profiling numbers when given."""
    console = console or Console()
    table = Table(
        title=f"Sync {result.owner_id} pages {result.page_range}",
        box=box.ROUNDED,
        caption=_profile_caption(stats),
        show_header=False,
    )
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="bold green")

    failed_pages = ", ".join(str(page) for page in result.failed_pages) or "-"
    table.add_row("Pages processed", f"{result.processed_page_count:,}")
    table.add_row("Pages failed", f"[red]{failed_pages}[/red]" if result.failed_pages else "-")
    table.add_row("Entities seen", f"{result.total_entities_seen:,}")
    table.add_row("Entities upserted", f"{result.entities_upserted:,}")
    table.add_row("Entity failures", f"{result.entity_failures:,}")
    table.add_row("Price samples", f"{result.samples_appended:,}")
    if result.failed_tasks:
        table.add_row("Page tasks failed", f"[red]{result.failed_tasks}[/red]")

    console.print(table)


def print_rollup_report(
    report: RollupReport,
    stats: Optional[ProfileStats] = None,
    console: Optional[Console] = None,
) -> None:
    """Render upsert and prune counts of one rollup run."""
    console = console or Console()
    outcome = report.outcome or RollupOutcome.FAILURE
    style = _OUTCOME_STYLE[outcome]

    table = Table(
        title=f"Rollup [{style}]{outcome.value}[/{style}]",
        box=box.ROUNDED,
        caption=_profile_caption(stats),
    )
    table.add_column("Step", style="cyan", no_wrap=True)
    table.add_column("Phase", style="blue")
    table.add_column("Rows", justify="right", style="magenta")

    for tier, count in report.upserted.items():
        table.add_row(tier, "upsert", f"{count:,}")
    for step, count in report.deleted.items():
        table.add_row(step, "prune", f"{count:,}")
    for step, error in report.prune_failures.items():
        table.add_row(step, "prune", f"[red]failed: {error}[/red]")

    console.print(table)
    if report.error:
        console.print(f"[red]Error:[/red] {report.error}")


__all__ = ["print_partition", "print_sync_result", "print_rollup_report"]
