"""CLI interface for ratifact."""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from ratifact import __version__
from ratifact.config import load_config
from ratifact.display import (
    confirm_action,
    console,
    show_artifacts,
    show_exclusions,
    show_history,
    show_job,
    show_policy,
    show_scan_summary,
    show_scanning_progress,
)
from ratifact.errors import InvalidPolicy, RatifactError, StoreUnavailable
from ratifact.log_config import setup_logging
from ratifact.models import ArtifactStatus, JobState
from ratifact.scanner import normalize_root, scan_roots
from ratifact.session import SessionController
from ratifact.store import ArtifactStore

# Create Typer app
app = typer.Typer(
    name="ratifact",
    help="Track, prune and rebuild build artifacts safely",
    add_completion=False,
)
exclude_app = typer.Typer(help="Manage excluded paths and patterns.")
app.add_typer(exclude_app, name="exclude")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ratifact version {__version__}")
        raise typer.Exit()


@contextmanager
def _session() -> Iterator[SessionController]:
    """Open the store and a controller without background watchers."""
    config = load_config()
    try:
        store = ArtifactStore(config.database_path)
    except StoreUnavailable as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    controller = SessionController(store, config)
    try:
        yield controller
    finally:
        controller.shutdown()
        store.close()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    debug: bool = typer.Option(False, "--debug", help="Log at debug level."),
) -> None:
    """ratifact - build artifact tracker."""
    interactive = ctx.invoked_subcommand in (None, "tui")
    setup_logging(debug=debug or load_config().debug_logs_enabled, console=not interactive)

    # If no command specified, launch the TUI
    if ctx.invoked_subcommand is None:
        ctx.invoke(tui)


@app.command()
def scan(
    paths: Optional[List[Path]] = typer.Argument(None, help="Roots to scan (default: policy scan paths)"),
) -> None:
    """Scan for build artifacts and reconcile them with the database."""
    with _session() as controller:
        roots = [str(p) for p in paths] if paths else controller.policy.scan_paths
        if not roots:
            console.print("[yellow]No scan paths configured. Use [bold]ratifact policy --path[/bold].[/yellow]")
            raise typer.Exit(1)

        with show_scanning_progress() as progress:
            task = progress.add_task("Scanning...", total=None)

            def update_progress(path: str, size_bytes: int):
                progress.update(task, advance=1, description=f"Found {Path(path).name}")

            controller.scanner.progress_callback = update_progress
            sessions = scan_roots(controller.scanner, roots)

        console.print()
        show_scan_summary(sessions)


@app.command(name="list")
def list_artifacts(
    all_: bool = typer.Option(False, "--all", "-a", help="Include deleted and excluded artifacts"),
    under: Optional[Path] = typer.Option(None, "--under", help="Only artifacts below this path"),
) -> None:
    """List tracked artifacts."""
    with _session() as controller:
        statuses = None if all_ else [ArtifactStatus.ACTIVE, ArtifactStatus.PENDING_DELETE]
        artifacts = controller.store.list_artifacts(
            statuses, under=normalize_root(under) if under else None
        )
        show_artifacts(artifacts, controller.policy.retention_days)


@app.command()
def history(
    limit: int = typer.Option(50, "--limit", "-n", help="Number of events"),
    path: Optional[Path] = typer.Option(None, "--path", help="Only events for this path"),
) -> None:
    """Show past scans, deletions and rebuilds."""
    with _session() as controller:
        events = controller.store.list_history(
            limit, normalize_root(path) if path else None
        )
        show_history(events)


@exclude_app.command("add")
def exclude_add(
    path: str = typer.Argument(..., help="Path or glob pattern to exclude"),
) -> None:
    """Exclude a path or pattern from scanning."""
    with _session() as controller:
        entry = controller.set_exclusion(path)
        console.print(f"[green]✓[/green] Excluded {entry.path}")


@exclude_app.command("remove")
def exclude_remove(
    path: str = typer.Argument(..., help="Exclusion to remove"),
) -> None:
    """Remove an exclusion and rescan what it covered."""
    with _session() as controller:
        future = controller.remove_exclusion(path)
        if future is None:
            console.print(f"[yellow]No exclusion for {path}[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]✓[/green] Removed exclusion {path}, rescanning...")
        show_scan_summary(future.result())


@exclude_app.command("list")
def exclude_list() -> None:
    """List exclusions."""
    with _session() as controller:
        show_exclusions(controller.store.list_exclusions())


@app.command()
def policy(
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Retention period in days"),
    auto: Optional[bool] = typer.Option(
        None, "--auto/--no-auto", help="Enable or disable automatic removal"
    ),
    paths: Optional[List[Path]] = typer.Option(None, "--path", "-p", help="Scan path (repeatable)"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Show or change the retention policy."""
    with _session() as controller:
        if days is None and auto is None and not paths:
            show_policy(controller.policy)
            return

        if auto and not controller.policy.auto_removal_enabled and not yes:
            would_delete = controller.safety.preview()
            if would_delete:
                console.print(f"[yellow]{len(would_delete)} artifacts would be removed:[/yellow]")
                for p in would_delete[:20]:
                    console.print(f"  • {p}")
            if not confirm_action("Enable automatic removal?"):
                console.print("[yellow]Cancelled[/yellow]")
                raise typer.Exit(0)

        try:
            new_policy = controller.set_retention_policy(
                retention_days=days,
                auto_removal_enabled=auto,
                scan_paths=[str(p) for p in paths] if paths else None,
            )
        except InvalidPolicy as e:
            console.print(f"[red]Invalid policy: {e}[/red]")
            raise typer.Exit(1)

        show_policy(new_policy)


@app.command()
def stale(
    delete: bool = typer.Option(False, "--delete", help="Delete the stale artifacts"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Show artifacts older than the retention period (dry run of automatic removal)."""
    with _session() as controller:
        paths = controller.safety.preview()
        stale_paths = set(paths)
        artifacts = [a for a in controller.store.read_all_active() if a.path in stale_paths]
        show_artifacts(
            artifacts,
            controller.policy.retention_days,
            title=f"Stale Artifacts (> {controller.policy.retention_days} days)",
        )
        if not delete or not artifacts:
            return

        if not yes and not confirm_action(f"Delete {len(artifacts)} artifacts?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

        _run_delete(controller, paths)


@app.command()
def delete(
    paths: List[Path] = typer.Argument(..., help="Artifact paths to delete"),
    yes: bool = typer.Option(False, "-y", "--yes", help="Skip confirmation prompts"),
) -> None:
    """Delete tracked artifacts (verified after removal)."""
    with _session() as controller:
        targets = [normalize_root(p) for p in paths]
        untracked = [t for t in targets if controller.store.get_artifact(t) is None]
        if untracked:
            for t in untracked:
                console.print(f"[red]Not a tracked artifact: {t}[/red]")
            raise typer.Exit(1)

        if not yes and not confirm_action(f"Delete {len(targets)} artifacts?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

        _run_delete(controller, targets)


def _run_delete(controller: SessionController, paths: list[str]) -> None:
    handle = controller.request_delete(paths)
    with console.status("Deleting..."):
        handle.wait()
    show_job(handle.snapshot())

    if handle.state == JobState.FAILED and handle.needs_privilege:
        tracked = [controller.store.get_artifact(p) for p in paths]
        remaining = [a.path for a in tracked if a and a.status == ArtifactStatus.ACTIVE]
        if remaining and confirm_action("Permission denied. Retry with sudo?"):
            secret = typer.prompt("Password", hide_input=True)
            elevated = controller.request_delete_elevated(remaining, secret)
            del secret
            with console.status("Deleting with sudo..."):
                elevated.wait()
            show_job(elevated.snapshot())
            handle = elevated

    if handle.state != JobState.SUCCEEDED:
        raise typer.Exit(1)


@app.command()
def rebuild(
    path: Path = typer.Argument(..., help="Artifact or project root to rebuild"),
) -> None:
    """Run the project's build command to regenerate its artifacts."""
    with _session() as controller:
        try:
            handle = controller.request_rebuild(str(path))
        except RatifactError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)

        with console.status(f"Rebuilding {handle.targets[0]}..."):
            handle.wait()
        show_job(handle.snapshot())
        if handle.state != JobState.SUCCEEDED:
            console.print("[dim]Full output: [bold]ratifact history --path <project>[/bold][/dim]")
            raise typer.Exit(1)
        controller.request_scan(handle.targets[0]).result()


@app.command()
def tui() -> None:
    """Launch the interactive TUI (default)."""
    from ratifact.tui import run_tui

    try:
        run_tui(load_config())
    except StoreUnavailable as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
