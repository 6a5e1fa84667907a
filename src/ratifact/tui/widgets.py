"""Custom widgets for the ratifact TUI."""

from collections import defaultdict
from pathlib import Path

from textual.reactive import reactive
from textual.widgets import Static

from ratifact.display import format_age
from ratifact.models import Activity, Artifact, JobState, Snapshot, format_size


class SummaryPanel(Static):
    """Totals, policy and background status."""

    total_bytes: reactive[int] = reactive(0)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.snapshot: Snapshot | None = None

    def update_snapshot(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot
        self.total_bytes = snapshot.total_bytes
        self.refresh()

    def render(self) -> str:
        if not self.snapshot:
            return "[dim]Loading...[/dim]"

        s = self.snapshot
        if s.activity == Activity.SCAN_IN_PROGRESS:
            activity = "[yellow]scanning[/yellow]"
        else:
            activity = "[green]idle[/green]"
        auto = (
            f"[red]on[/red] (> {s.policy.retention_days}d)"
            if s.policy.auto_removal_enabled
            else "[dim]off[/dim]"
        )
        watcher = s.watcher_mode
        if watcher == "polling":
            watcher = "[yellow]polling[/yellow]"

        last = "[dim]never[/dim]"
        if s.last_scan and s.last_scan.finished_at:
            last = s.last_scan.finished_at.strftime("%H:%M:%S")

        return (
            f"[bold]{format_size(self.total_bytes)}[/bold] in "
            f"{len(s.visible_artifacts)} artifacts  |  "
            f"Status: {activity}  |  Auto removal: {auto}  |  "
            f"Watcher: {watcher}  |  Last scan: {last}"
        )


class JobsPanel(Static):
    """Most recent background jobs."""

    MAX_ROWS = 5

    def update_snapshot(self, snapshot: Snapshot) -> None:
        jobs = sorted(snapshot.jobs, key=lambda j: j.id, reverse=True)[: self.MAX_ROWS]
        if not jobs:
            self.update("[dim]No jobs[/dim]")
            return

        colors = {
            JobState.QUEUED: "dim",
            JobState.RUNNING: "yellow",
            JobState.SUCCEEDED: "green",
            JobState.FAILED: "red",
            JobState.CANCELLED: "dim",
        }
        lines = []
        for job in jobs:
            color = colors.get(job.state, "white")
            target = job.targets[0] if len(job.targets) == 1 else f"{len(job.targets)} paths"
            lines.append(
                f"[{color}]{job.state.value:<9}[/{color}] #{job.id} {job.kind.value} "
                f"{target} [dim]{job.message}[/dim]"
            )
        self.update("\n".join(lines))


class NoticeBar(Static):
    """Latest notice from the controller."""

    def update_snapshot(self, snapshot: Snapshot) -> None:
        self.update(f"[dim]{snapshot.notices[-1]}[/dim]" if snapshot.notices else "")


def age_cell(days: float, retention_days: int) -> str:
    text = format_age(days)
    return f"[red]{text}[/red]" if days >= retention_days else text


def project_sizes(artifacts: list[Artifact], limit: int = 7) -> list[tuple[str, int]]:
    """Total artifact size per project root, largest first."""
    totals: dict[str, int] = defaultdict(int)
    for artifact in artifacts:
        totals[artifact.project_root] += artifact.size_bytes
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)[:limit]


class ProjectSizePanel(Static):
    """Bar chart of artifact size by project."""

    BAR_WIDTH = 30
    COLORS = ["red", "green", "blue", "yellow", "magenta", "cyan", "white"]

    def update_snapshot(self, snapshot: Snapshot) -> None:
        rows = project_sizes(snapshot.visible_artifacts)
        if not rows:
            self.update("[dim]No data[/dim]")
            return

        largest = rows[0][1] or 1
        lines = []
        for i, (root, size) in enumerate(rows):
            name = Path(root).name or root
            if len(name) > 15:
                name = name[:12] + "..."
            filled = int(self.BAR_WIDTH * size / largest)
            color = self.COLORS[i % len(self.COLORS)]
            lines.append(f"{name:<15} [{color}]{'█' * filled}[/{color}] {format_size(size)}")
        self.update("\n".join(lines))
