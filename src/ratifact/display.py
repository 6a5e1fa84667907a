"""Rich terminal display for ratifact."""

from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from ratifact.models import (
    Artifact,
    ArtifactStatus,
    ExclusionEntry,
    HistoryEvent,
    HistoryKind,
    JobSnapshot,
    JobState,
    RetentionPolicy,
    ScanSession,
    format_size,
)

console = Console()


def status_label(status: ArtifactStatus) -> str:
    """Get styled label for an artifact status."""
    labels = {
        ArtifactStatus.ACTIVE: "[green]active[/green]",
        ArtifactStatus.PENDING_DELETE: "[yellow]deleting[/yellow]",
        ArtifactStatus.DELETED: "[dim]deleted[/dim]",
        ArtifactStatus.EXCLUDED: "[blue]excluded[/blue]",
    }
    return labels.get(status, status.value)


def job_state_label(state: JobState) -> str:
    """Get styled label for a job state."""
    labels = {
        JobState.QUEUED: "[dim]queued[/dim]",
        JobState.RUNNING: "[yellow]running[/yellow]",
        JobState.SUCCEEDED: "[green]succeeded[/green]",
        JobState.FAILED: "[red]failed[/red]",
        JobState.CANCELLED: "[dim]cancelled[/dim]",
    }
    return labels.get(state, state.value)


def history_label(kind: HistoryKind) -> str:
    if kind in (HistoryKind.DELETE_FAILED, HistoryKind.REBUILD_FAILED):
        return f"[red]{kind.value}[/red]"
    if kind in (HistoryKind.DELETED, HistoryKind.REMOVED):
        return f"[yellow]{kind.value}[/yellow]"
    return kind.value


def format_age(days: float) -> str:
    """Compact age string."""
    if days < 1:
        return f"{days * 24:.0f}h"
    return f"{days:.0f}d"


def show_artifacts(
    artifacts: list[Artifact],
    retention_days: int | None = None,
    title: str = "Build Artifacts",
) -> None:
    """Display artifacts as a table, largest first."""
    if not artifacts:
        console.print("[yellow]No artifacts tracked.[/yellow]")
        return

    now = datetime.now()
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Path")
    table.add_column("Language")
    table.add_column("Size", justify="right")
    table.add_column("Age", justify="right")
    table.add_column("Status")

    for artifact in artifacts:
        age = artifact.age_days(now)
        age_text = format_age(age)
        if retention_days is not None and age >= retention_days:
            age_text = f"[red]{age_text}[/red]"
        table.add_row(
            artifact.path,
            artifact.language,
            artifact.size_human,
            age_text,
            status_label(artifact.status),
        )

    console.print(table)
    total = sum(a.size_bytes for a in artifacts)
    console.print(f"[bold]Total: {format_size(total)}[/bold] in {len(artifacts)} artifacts")


def show_scan_summary(sessions: list[ScanSession]) -> None:
    """Display the result of one or more scan passes."""
    table = Table(title="Scan Summary", show_header=True, header_style="bold")
    table.add_column("Root")
    table.add_column("Found", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Restored", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Excluded", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Time", justify="right")

    for s in sessions:
        errors = f"[red]{len(s.errors)}[/red]" if s.errors else "0"
        table.add_row(
            s.root,
            str(s.found),
            str(s.inserted),
            str(s.restored),
            str(s.removed),
            str(s.excluded),
            errors,
            f"{s.duration_seconds:.1f}s",
        )

    console.print(table)

    for s in sessions:
        for path, message in list(s.errors.items())[:10]:
            console.print(f"  [dim]✗ {path}: {message}[/dim]")


def show_history(events: list[HistoryEvent]) -> None:
    """Display history events, newest first."""
    if not events:
        console.print("[yellow]No history yet.[/yellow]")
        return

    table = Table(title="History", show_header=True, header_style="bold")
    table.add_column("When")
    table.add_column("Event")
    table.add_column("Path")
    table.add_column("Detail")

    for event in events:
        table.add_row(
            event.created_at.strftime("%Y-%m-%d %H:%M"),
            history_label(event.kind),
            event.path,
            event.detail,
        )

    console.print(table)


def show_exclusions(exclusions: list[ExclusionEntry]) -> None:
    if not exclusions:
        console.print("[dim]No exclusions.[/dim]")
        return
    console.print("[bold]Excluded Paths[/bold]")
    for entry in exclusions:
        kind = "pattern" if entry.is_pattern else "path"
        console.print(f"  • {entry.path} [dim]({kind})[/dim]")


def show_policy(policy: RetentionPolicy) -> None:
    """Display the retention policy."""
    auto = "[green]on[/green]" if policy.auto_removal_enabled else "[dim]off[/dim]"
    paths = "\n".join(f"  • {p}" for p in policy.scan_paths) or "  [dim](none)[/dim]"
    console.print(
        Panel(
            f"[bold]Retention:[/bold] {policy.retention_days} days\n"
            f"[bold]Automatic removal:[/bold] {auto}\n"
            f"[bold]Scan paths:[/bold]\n{paths}",
            title="Retention Policy",
            border_style="blue",
        )
    )


def show_job(job: JobSnapshot) -> None:
    """Display the outcome of a job."""
    icon = "[green]✓[/green]" if job.state == JobState.SUCCEEDED else "[red]✗[/red]"
    console.print(f"  {icon} {job.kind.value} {job_state_label(job.state)}: {job.message}")


def show_scanning_progress() -> Progress:
    """Create spinner for scanning (the total is unknown up front)."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TextColumn("{task.completed} found"),
        TimeElapsedColumn(),
        console=console,
    )


def confirm_action(message: str) -> bool:
    """Ask for confirmation."""
    from rich.prompt import Confirm

    return Confirm.ask(message)
