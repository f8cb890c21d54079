"""
clipvault.cli - Typer CLI entry point.

Provides the subcommands for fetching, publishing and expiring videos.
"""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clipvault import __version__
from clipvault.config import ClipvaultConfig
from clipvault.exceptions import ClipvaultError
from clipvault.lifecycle.coordinator import ArtifactLifecycle, PublishedArtifact
from clipvault.logging import configure_logging
from clipvault.project import Project, find_project_dir
from clipvault.utils import format_duration, format_size

app = typer.Typer(
    name="clipvault",
    help="Short-lived video drop box.\n\n"
    "Downloads videos with yt-dlp, uploads them to object storage, and "
    "deletes them again once they expire.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    if value:
        console.print(f"clipvault {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Clipvault - short-lived video drop box."""
    configure_logging(verbose)


def open_project() -> tuple[Project, ClipvaultConfig, ArtifactLifecycle]:
    """Load the surrounding project and build its lifecycle coordinator."""
    from clipvault.storage.base import create_storage

    project_dir = find_project_dir()
    if not project_dir:
        console.print("[red]Error: Not in a Clipvault project directory[/red]")
        console.print("[dim]Run 'clipvault init' first or cd into a project directory[/dim]")
        raise typer.Exit(1)

    project = Project(project_dir)
    try:
        config = project.load_config()
        storage = create_storage(config, project_dir)
    except ClipvaultError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    return project, config, ArtifactLifecycle.from_config(config, storage)


def print_published(lifecycle: ArtifactLifecycle, published: list[PublishedArtifact]) -> None:
    table = Table(title="Published")
    table.add_column("Key", style="cyan")
    table.add_column("Size", style="green")
    table.add_column("Expires", style="yellow")

    expires_in = format_duration(lifecycle.policy.delay_seconds)
    for artifact in published:
        table.add_row(
            artifact.key,
            format_size(artifact.size_bytes),
            f"in {expires_in} ({artifact.expires_at.astimezone():%H:%M:%S})",
        )
    console.print(table)

    console.print("\nDownload links:")
    for artifact in published:
        console.print(f"  {artifact.download_url}", soft_wrap=True)
    console.print("\n[dim]Fetch a copy before it expires with: clipvault get <key>[/dim]")


def hold_until_expired(lifecycle: ArtifactLifecycle, hold: bool) -> None:
    """Keep the process alive until every scheduled deletion has run.

    Without hold, pending deletions go through the cleanup path: they are
    cancelled and the objects stay in storage.
    """
    if not lifecycle.pending():
        return

    if not hold:
        cancelled = lifecycle.on_cleanup_requested()
        console.print(f"[yellow]Warning: {cancelled} scheduled deletion(s) cancelled.[/yellow]")
        console.print("[yellow]Those objects will persist.[/yellow]")
        return

    console.print(
        "\n[dim]Waiting for scheduled deletions "
        "(Ctrl-C cancels them and keeps the objects)...[/dim]"
    )
    interrupted = False
    lifecycle.install_signal_handlers()
    try:
        while not lifecycle.wait(timeout=1.0):
            if lifecycle.shutdown_requested:
                break
    except KeyboardInterrupt:
        interrupted = True
    finally:
        lifecycle.restore_signal_handlers()

    cancelled = lifecycle.shutdown_if_requested()
    if cancelled is None and interrupted:
        cancelled = lifecycle.on_shutdown()
    if cancelled is not None:
        console.print(f"\n[yellow]Interrupted: {cancelled} pending deletion(s) cancelled[/yellow]")

    for result in lifecycle.history:
        if result.succeeded:
            console.print(f"[green]✓[/green] Deleted {result.key}")
        else:
            error = escape(str(result.error))
            console.print(f"[red]✗ Failed to delete {result.key}: {error}[/red]")


@app.command("init")
def init_project(
    name: str = typer.Argument(..., help="Project name"),
    backend: str = typer.Option(
        "local",
        "--backend",
        "-b",
        help="Storage backend: local or supabase",
    ),
    path: str = typer.Option(".", "--path", "-d", help="Directory to create project in"),
) -> None:
    """Create a new Clipvault project."""
    if backend not in {"local", "supabase"}:
        console.print(f"[red]Error: Unknown backend '{backend}'[/red]")
        raise typer.Exit(1)

    project_path = Path(path) / name

    if project_path.exists():
        console.print(f"[red]Error: Directory '{project_path}' already exists[/red]")
        raise typer.Exit(1)

    try:
        Project(project_path).create(backend=backend)
    except OSError as e:
        console.print(f"[red]Error creating project: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Created project '{name}' with {backend} storage")
    console.print(f"[dim]  {project_path}[/dim]")
    if backend == "supabase":
        console.print("\nSet SUPABASE_URL and SUPABASE_SERVICE_KEY before publishing.")
    console.print("\nNext steps:")
    console.print(f"  cd {name}")
    console.print("  clipvault fetch <url>")


@app.command("publish")
def publish_files(
    files: list[str] = typer.Argument(..., help="Local video file(s) to publish"),
    hold: bool = typer.Option(
        True, "--hold/--no-hold", help="Stay running until the uploads expire"
    ),
) -> None:
    """Upload local files and schedule their deletion."""
    _, _, lifecycle = open_project()

    published: list[PublishedArtifact] = []
    failed = 0
    try:
        for file_path in files:
            local_file = Path(file_path).expanduser()
            if not local_file.is_file():
                console.print(f"[red]Not found: {local_file}[/red]")
                failed += 1
                continue
            try:
                published.append(lifecycle.publish(local_file, remove_local=False))
            except ClipvaultError as e:
                console.print(f"[red]Error publishing {local_file.name}: {escape(str(e))}[/red]")
                failed += 1

        if published:
            print_published(lifecycle, published)

        hold_until_expired(lifecycle, hold)
    finally:
        lifecycle.close()

    if failed:
        raise typer.Exit(1)


@app.command("fetch")
def fetch_video(
    url: str = typer.Argument(..., help="Video page URL"),
    format_id: str | None = typer.Option(None, "--format", "-f", help="yt-dlp format ID"),
    hold: bool = typer.Option(
        True, "--hold/--no-hold", help="Stay running until the upload expires"
    ),
) -> None:
    """Download a video, upload it, and schedule its deletion."""
    from clipvault.fetch.ytdlp import build_download_path, download_video

    project, config, lifecycle = open_project()

    cookies = Path(config.cookies_file) if config.cookies_file else None
    if cookies is not None and not cookies.is_absolute():
        cookies = project.path / cookies

    output_path = build_download_path(
        project.downloads_dir(config), extension=config.merge_output_format
    )

    try:
        try:
            download_video(
                url,
                output_path,
                format_id=format_id,
                binary=config.ytdlp_binary,
                cookies_file=cookies,
                merge_output_format=config.merge_output_format,
                console=console,
            )
            artifact = lifecycle.publish(output_path)
        except ClipvaultError as e:
            output_path.unlink(missing_ok=True)
            console.print(f"[red]Error: {escape(str(e))}[/red]")
            hint = getattr(e, "install_hint", None)
            if hint:
                console.print(f"[dim]{hint}[/dim]")
            raise typer.Exit(1)

        print_published(lifecycle, [artifact])
        hold_until_expired(lifecycle, hold)
    finally:
        lifecycle.close()


@app.command("get")
def get_object(
    key: str = typer.Argument(..., help="Object key shown by publish or fetch"),
    output: str | None = typer.Option(
        None, "--output", "-o", help="Where to save the file (default: ./<name>)"
    ),
) -> None:
    """Download a stored object by its key."""
    _, _, lifecycle = open_project()

    destination = Path(output).expanduser() if output else Path.cwd() / Path(key).name
    try:
        data = lifecycle.storage.download(key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(data)
    except (ClipvaultError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)
    finally:
        lifecycle.close()

    console.print(f"[green]✓[/green] Saved {key} to {destination} ({format_size(len(data))})")


@app.command("config")
def show_config() -> None:
    """Show the resolved project configuration."""
    project_dir = find_project_dir()
    if not project_dir:
        console.print("[red]Error: Not in a Clipvault project directory[/red]")
        raise typer.Exit(1)

    try:
        config = Project(project_dir).load_config()
    except ClipvaultError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)

    data = config.model_dump(mode="json", exclude={"config_path"})
    if data["storage"].get("supabase_key"):
        data["storage"]["supabase_key"] = "***"
    console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))


@app.command("doctor")
def run_doctor() -> None:
    """Check dependencies and storage setup."""
    from clipvault.exceptions import DependencyError
    from clipvault.fetch.ytdlp import check_ytdlp

    console.print("[cyan]Running preflight checks...[/cyan]\n")

    table = Table(title="Dependency Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Version/Details")

    all_passed = True
    project_dir = find_project_dir()
    config = ClipvaultConfig()
    if project_dir:
        try:
            config = Project(project_dir).load_config()
        except ClipvaultError as e:
            table.add_row("Config", "✗ Invalid", escape(str(e)))
            all_passed = False
            project_dir = None

    try:
        versions = check_ytdlp(config.ytdlp_binary)
        table.add_row("yt-dlp", "✓ Installed", versions["ytdlp_version"])
    except DependencyError as e:
        table.add_row("yt-dlp", "✗ Missing", e.install_hint or "")
        all_passed = False

    if project_dir:
        from clipvault.storage.base import create_storage

        try:
            create_storage(config, project_dir).close()
            table.add_row("Storage", "✓ Configured", config.storage.backend)
        except ClipvaultError as e:
            table.add_row("Storage", "✗ Misconfigured", escape(str(e)))
            all_passed = False
    else:
        table.add_row("Project", "- Not found", "run 'clipvault init'")

    console.print(table)

    if not all_passed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
