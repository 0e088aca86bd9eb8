import typer
import requests
from rich import print
from pathlib import Path
from typing import List, Optional

from runslot.utils.config import load_config
from runslot.utils import config as config_module
from runslot.cmd.cli import serve_app, runs_app, config_app
from runslot.utils.git import GitError, current_branch, current_commit
from runslot.utils.logging import setup_logging, get_logger
from runslot.utils.misc import daemon_url, parse_error_response
from runslot.scheduler.models import EventType, PipelineKind

log = get_logger("cli")

app = typer.Typer(no_args_is_help=True)

@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Write logs to file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Config file path"),
):
    config = load_config(config_file)

    # Override with CLI args
    level = "DEBUG" if verbose else config.logging.level
    log_path = log_file or (Path(config.logging.file) if config.logging.file else None)
    setup_logging(level=level, log_file=log_path, verbose=verbose or config.logging.verbose)

app.add_typer(serve_app, name="serve", help="Start the runslot daemon")
app.add_typer(runs_app, name="runs", help="Inspect and complete runs")
app.add_typer(config_app, name="config", help="Configuration management")

@app.command("status")
def status(port: int = typer.Option(None, "--port")):
    """
    Show whether the daemon is running, with its active runs.
    """
    port = port or config_module.config.daemon.port
    try:
        r = requests.get(f"{daemon_url(port)}/status", timeout=1)
    except requests.exceptions.ConnectionError:
        print("[red]runslot daemon not running[/red]")
        raise typer.Exit(1)

    data = r.json()
    print("[bold green]runslot daemon running[/bold green]")
    print(f"  Port: {data.get('port')}")
    print(f"  Executor: {data.get('executor') or 'external'}")
    print(f"  Main branch: {data.get('main_branch')}")
    print(f"  Pending events: {data.get('queue', {}).get('pending', 0)}")
    active = data.get("active_runs", [])
    print(f"  Active runs: {len(active)}")
    for run in active:
        print(f"    • {run['run_id']} {run['pipeline']} [{run['key']}]")

@app.command("stop")
def stop(port: int = typer.Option(None, "--port")):
    """
    Stop the daemon, cancelling every active run.
    """
    port = port or config_module.config.daemon.port
    try:
        requests.post(f"{daemon_url(port)}/stop", timeout=5)
        print("[green]runslot daemon stopped[/green]")
    except requests.exceptions.ConnectionError:
        print("[red]Daemon not running[/red]")

@app.command("trigger")
def trigger(
    event_type: str = typer.Argument(..., help=f"Event type: {', '.join(e.value for e in EventType)}"),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Branch (default: current git branch)"),
    commit: Optional[str] = typer.Option(None, "--commit", help="Commit hash (default: current HEAD)"),
    pipelines: Optional[List[str]] = typer.Option(
        None, "--pipeline", "-p",
        help=f"Pipeline kind, repeatable: {', '.join(k.value for k in PipelineKind)} (default: all)"
    ),
    port: int = typer.Option(None, "--port"),
):
    """
    Submit a pull request trigger event to the daemon.

    Examples:
        # Trigger every pipeline for the current checkout
        runslot trigger synchronize

        # Trigger only the style check for a given commit
        runslot trigger opened --branch feature/x --commit 1a2b3c --pipeline style-check
    """
    port = port or config_module.config.daemon.port

    try:
        branch = branch or current_branch()
        commit = commit or current_commit()
    except GitError as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    payload = {
        "event_type": event_type,
        "branch_ref": branch,
        "commit_hash": commit,
    }
    if pipelines:
        payload["pipelines"] = pipelines

    try:
        r = requests.post(f"{daemon_url(port)}/events", json=payload, timeout=5)
    except requests.exceptions.ConnectionError:
        print("[red]runslot daemon not running[/red]")
        raise typer.Exit(1)

    if r.status_code != 200:
        print(f"[red]Error:[/red] {parse_error_response(r)}")
        raise typer.Exit(1)

    queued = r.json().get("pipelines", [])
    print(f"[green]✓ Queued {event_type}[/green] on {branch} @ {commit[:12]}")
    for kind in queued:
        print(f"  • {kind}")

def main():
    app()

if __name__ == "__main__":
    main()
