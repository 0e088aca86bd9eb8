"""
Run inspection commands for the runslot CLI.

Commands:
- active: Runs currently holding a slot
- history: Recorded runs with aggregate statistics
- show: Details of one run
- complete: Report the outcome of an externally executed run
- clear: Remove finished runs from the history
"""

import typer
import requests
from rich import print
from rich.table import Table
from rich.console import Console
from typing import Dict, List, Optional

from runslot.utils.config import get_config
from runslot.utils.misc import daemon_url, format_duration, format_timestamp, parse_error_response

console = Console()

runs_app = typer.Typer(no_args_is_help=True)

STATE_STYLES = {
    "running": "cyan",
    "cancelled": "yellow",
    "completed": "green",
}

def _get(port: int, path: str, params: Optional[Dict] = None) -> Dict:
    try:
        r = requests.get(f"{daemon_url(port)}{path}", params=params, timeout=5)
    except requests.exceptions.ConnectionError:
        print("[red]runslot daemon not running[/red]")
        raise typer.Exit(1)

    if r.status_code != 200:
        print(f"[red]Error:[/red] {parse_error_response(r)}")
        raise typer.Exit(1)
    return r.json()

def _runs_table(title: str, runs: List[Dict]) -> Table:
    table = Table(title=title)
    table.add_column("Run ID", style="bold")
    table.add_column("Pipeline")
    table.add_column("Key")
    table.add_column("Commit")
    table.add_column("State")
    table.add_column("Outcome")
    table.add_column("Submitted")
    table.add_column("Duration")

    for run in runs:
        state = run.get("state", "")
        style = STATE_STYLES.get(state, "white")
        table.add_row(
            run.get("run_id") or run.get("id", ""),
            run.get("pipeline", ""),
            run.get("key", ""),
            (run.get("commit_hash") or "")[:12],
            f"[{style}]{state}[/{style}]",
            run.get("outcome") or "-",
            format_timestamp(run.get("submitted_at")),
            format_duration(run.get("submitted_at"), run.get("finished_at")),
        )
    return table

@runs_app.command("active")
def runs_active(port: int = typer.Option(None, "--port")) -> None:
    """
    List runs currently active, one per slot.
    """
    port = port or get_config().daemon.port
    runs = _get(port, "/runs")["runs"]

    if not runs:
        print("[dim]No active runs[/dim]")
        return
    console.print(_runs_table("Active runs", runs))

@runs_app.command("history")
def runs_history(
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="Filter by branch"),
    pipeline: Optional[str] = typer.Option(None, "--pipeline", "-p", help="Filter by pipeline kind"),
    state: Optional[str] = typer.Option(None, "--state", "-s", help="Filter by state"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of runs"),
    port: int = typer.Option(None, "--port"),
) -> None:
    """
    Show recorded runs, most recent first.
    """
    port = port or get_config().daemon.port
    params = {"limit": limit}
    if branch:
        params["branch"] = branch
    if pipeline:
        params["pipeline"] = pipeline
    if state:
        params["state"] = state

    data = _get(port, "/runs/history", params)
    runs = data["runs"]
    if not runs:
        print("[dim]No recorded runs[/dim]")
    else:
        console.print(_runs_table("Run history", runs))

    stats = data.get("stats") or {}
    if stats.get("total_runs"):
        print(
            f"\n[cyan]Finished:[/cyan] {stats['total_runs']}  "
            f"[green]success:[/green] {stats['successful_runs']}  "
            f"[red]failure:[/red] {stats['failed_runs']}  "
            f"[yellow]cancelled:[/yellow] {stats['cancelled_runs']}  "
            f"success rate: {stats['success_rate']:.0%}"
        )

@runs_app.command("show")
def runs_show(
    run_id: str = typer.Argument(..., help="Run ID (e.g., run-1a2b3c4d5e6f)"),
    port: int = typer.Option(None, "--port"),
) -> None:
    """
    Show one run.
    """
    port = port or get_config().daemon.port
    run = _get(port, f"/runs/{run_id}")

    print(f"[bold]{run_id}[/bold]")
    for field in ("pipeline", "key", "event_type", "branch", "commit_hash", "state", "outcome"):
        print(f"  {field}: {run.get(field) or '-'}")
    print(f"  submitted: {format_timestamp(run.get('submitted_at'))}")
    print(f"  duration: {format_duration(run.get('submitted_at'), run.get('finished_at'))}")

@runs_app.command("complete")
def runs_complete(
    run_id: str = typer.Argument(..., help="Run ID"),
    outcome: str = typer.Argument(..., help="success or failure"),
    port: int = typer.Option(None, "--port"),
) -> None:
    """
    Report the outcome of a run executed outside the daemon.
    """
    port = port or get_config().daemon.port
    try:
        r = requests.post(f"{daemon_url(port)}/runs/{run_id}/complete", json={"outcome": outcome}, timeout=5)
    except requests.exceptions.ConnectionError:
        print("[red]runslot daemon not running[/red]")
        raise typer.Exit(1)

    if r.status_code != 200:
        print(f"[red]Error:[/red] {parse_error_response(r)}")
        raise typer.Exit(1)

    if r.json().get("applied"):
        print(f"[green]✓ {run_id} completed:[/green] {outcome}")
    else:
        print(f"[yellow]{run_id} is no longer active; completion ignored[/yellow]")

@runs_app.command("clear")
def runs_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    port: int = typer.Option(None, "--port"),
) -> None:
    """
    Remove finished runs from the history. Active runs are kept.
    """
    port = port or get_config().daemon.port
    if not yes:
        typer.confirm("Remove all finished runs from the history?", abort=True)

    try:
        r = requests.delete(f"{daemon_url(port)}/runs/history", timeout=5)
    except requests.exceptions.ConnectionError:
        print("[red]runslot daemon not running[/red]")
        raise typer.Exit(1)

    if r.status_code != 200:
        print(f"[red]Error:[/red] {parse_error_response(r)}")
        raise typer.Exit(1)

    print(f"[green]✓ Removed {r.json().get('cleared', 0)} run(s) from history[/green]")
