"""CLI for the repolaunch local launcher."""

import sys
import threading
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import DEFAULT_SETTINGS, PROFILE_NAMES, LaunchSettings, RepoConfig, TargetConfig, load_config
from .errors import LaunchError
from .launcher_api import LauncherService, prompt_for_directory
from .orchestrator import Orchestrator
from .platform import default_workspace_dir
from .profiles import get_profile
from .runner import CommandRunner
from .status import LaunchStatus, Step
from .tools import ToolProber

console = Console()

_SECRET_HINTS = ("PASSWORD", "SECRET", "TOKEN", "_PW")


def _print_guidance(guidance) -> None:
    if guidance is None:
        return
    body = "\n".join(f"{i}. {s}" for i, s in enumerate(guidance.steps, start=1))
    if guidance.links:
        body += "\n\n" + "\n".join(f"{label}: {url}" for label, url in guidance.links)
    console.print(Panel(body or guidance.title, title=guidance.title, border_style="yellow"))


class _LogPrinter:
    """Prints each new status log line once, in order."""

    def __init__(self, quiet: bool):
        self.quiet = quiet
        self._printed = 0
        self._step: Optional[Step] = None
        self._lock = threading.Lock()

    def __call__(self, status: LaunchStatus) -> None:
        with self._lock:
            if status.step != self._step:
                self._step = status.step
                if status.step not in (Step.IDLE, Step.ERROR):
                    console.print(f"[bold cyan]» {status.step.value}[/bold cyan] {status.message or ''}")
            if len(status.logs) < self._printed:
                self._printed = 0
            new = status.logs[self._printed:]
            self._printed = len(status.logs)
        if self.quiet:
            return
        for line in new:
            console.print(line, markup=False, highlight=False)


@click.group()
@click.version_option(version=__version__, prog_name="repolaunch")
def cli():
    """repolaunch – clone, install and run a frontend/server pair locally."""
    pass


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
@click.option("--workspace", "-w", type=click.Path(file_okay=False), help="Workspace directory")
@click.option("--choose-dir", is_flag=True, help="Ask for the workspace directory")
@click.option("--parallel", "-p", is_flag=True, help="Clone and install both repositories concurrently")
@click.option("--quiet", "-q", is_flag=True, help="Only show step changes")
def start(config_path: str, workspace: Optional[str], choose_dir: bool, parallel: bool, quiet: bool):
    """Clone, install and start the repositories described in CONFIG_PATH."""
    try:
        config = load_config(config_path)
        service = LauncherService(Orchestrator())
        if choose_dir and not workspace:
            workspace = service.choose_directory()
            if workspace is None:
                console.print("[yellow]No directory chosen[/yellow]")
                sys.exit(1)

        unsubscribe = service.on_status_update(_LogPrinter(quiet))
        result = service.start(config, parallel=parallel, workspace_dir=workspace)
        if not result.ok:
            unsubscribe()
            console.print(f"[red]Error: {result.error}[/red]")
            _print_guidance(result.guidance)
            if result.report_path:
                console.print(f"[dim]Report: {result.report_path}[/dim]")
            sys.exit(1)

        service.orchestrator.print_status()
        if config.frontend.dev_url:
            console.print(f"Frontend: [link={config.frontend.dev_url}]{config.frontend.dev_url}[/link]")
        console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Shutting down...[/yellow]")
            unsubscribe()
            stopped = service.stop()
            for k in stopped.kills:
                mark = "[green]✓[/green]" if k.ok else "[red]✗[/red]"
                console.print(f"  {mark} {k.role} (pid={k.pid}, {k.method})")

    except (LaunchError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command("check-tools")
@click.option("--profile", "profile_name", type=click.Choice(PROFILE_NAMES), default="jvm", show_default=True)
def check_tools(profile_name: str):
    """Check (and on Windows install) the tools a launch needs."""
    profile = get_profile(profile_name)
    runner = CommandRunner(lambda line: console.print(line, markup=False, highlight=False))
    try:
        ToolProber(runner).ensure_tools(needs_java=profile.needs_java, needs_yarn=profile.needs_yarn)
        console.print("[green]All required tools are available[/green]")
    except LaunchError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True))
def validate(config_path: str):
    """Validate a launch configuration."""
    try:
        config = load_config(config_path)
        profile = get_profile(config.resolved_profile())
        if profile.manages_server and config.server is None:
            raise ValueError(f"Profile '{profile.name}' needs a 'server' section")
        settings = LaunchSettings.from_env()
        ws = config.workspace_dir or settings.workspace_override() or str(default_workspace_dir())
        console.print(f"[green]✓[/green] profile: {profile.name}")
        console.print(f"[green]✓[/green] frontend: {config.frontend.url}")
        if config.server:
            console.print(f"[green]✓[/green] server: {config.server.url}")
        console.print(f"[green]✓[/green] workspace: {ws}")
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("path", type=click.Path(), default="repolaunch.yaml")
@click.option("--frontend-url", default="https://github.com/example/frontend.git", show_default=True)
@click.option("--server-url", default=None, help="Server repository (omit for a frontend-only launch)")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def init(path: str, frontend_url: str, server_url: Optional[str], force: bool):
    """Write a starter launch configuration."""
    target = Path(path)
    if target.exists() and not force:
        console.print(f"[red]Error: {target} already exists (use --force)[/red]")
        sys.exit(1)
    config = RepoConfig(
        frontend=TargetConfig(url=frontend_url, branch="main", start_command="yarn dev", dev_url="http://localhost:3000"),
        server=TargetConfig(url=server_url, branch="main", cwd_name="server") if server_url else None,
    )
    config.to_yaml(target)
    console.print(f"[green]Created {target}[/green]")


@cli.command()
def env():
    """Show the resolved launch settings and where each value came from."""
    settings = LaunchSettings.from_env()
    table = Table(title="Launch settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    table.add_column("Source", style="dim")
    for key in DEFAULT_SETTINGS:
        value = settings.get(key) or ""
        if value and any(h in key for h in _SECRET_HINTS):
            value = "****"
        table.add_row(key, value, settings.source_of(key))
    console.print(table)
    if settings.dotenv_path:
        console.print(f"[dim]Loaded {settings.dotenv_path}[/dim]")


@cli.command("open")
@click.argument("url")
def open_link(url: str):
    """Open URL in the default browser."""
    try:
        LauncherService(Orchestrator(), chooser=prompt_for_directory).open_external_link(url)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option("--host", default=None, help="Bind address (default from REPOLAUNCH_API_HOST)")
@click.option("--port", default=None, type=int, help="Port (default from REPOLAUNCH_API_PORT)")
def serve(host: Optional[str], port: Optional[int]):
    """Run the HTTP launcher API."""
    import uvicorn

    from .launcher_api import LauncherApiSettings, create_launcher_api

    settings = LauncherApiSettings()
    app = create_launcher_api(service=LauncherService(Orchestrator()), settings=settings)
    uvicorn.run(app, host=host or settings.host, port=port or settings.port)


def main(argv=None):
    """Main entry point."""
    cli(argv)


if __name__ == "__main__":
    main()
