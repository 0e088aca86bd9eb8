"""
Serve command for the runslot CLI.

Starts the runslot daemon, which ingests trigger events, admits and cancels
runs, and executes pipelines with the configured executor backend.

The daemon can run in the foreground (blocking) or be detached to run in
the background as a separate process.
"""

import typer
import shutil
import subprocess
from rich import print
from typing import Optional

from runslot.utils.config import Config, get_config, get_config_path
from runslot.server.daemon import RunDaemon
from runslot.executors import ExecutorError, JobExecutor, create_executor

# invoke_without_command=True runs the callback when no subcommand is given
serve_app = typer.Typer(no_args_is_help=False, invoke_without_command=True)

# Backend name for runs that are executed elsewhere and completed over HTTP
EXTERNAL_BACKEND = "external"

def build_executor(config: Config, backend: Optional[str] = None) -> Optional[JobExecutor]:
    """
    Create the executor selected by the configuration.

    :param config: Loaded configuration.
    :param backend: Backend name overriding config.executor.backend.
    :return: Executor instance, or None for the external backend.
    """
    backend = backend or config.executor.backend
    if backend == EXTERNAL_BACKEND:
        return None

    kwargs = {
        "workdir": config.executor.workdir,
        "log_dir": config.executor.log_dir,
        "stop_timeout": config.executor.stop_timeout,
    }
    if backend == "docker":
        kwargs["image"] = config.executor.image

    executor = create_executor(backend, **kwargs)
    if backend == "docker":
        executor.ensure_image()
    return executor

@serve_app.callback()
def serve_root(
    port: int = typer.Option(None, "--port"),
    executor: str = typer.Option(None, "--executor", "-e", help="Executor backend: local, docker or external"),
    detach: bool = typer.Option(False, "--detach")
) -> None:
    """
    Start the runslot daemon.

    When detached, the daemon runs in a new session and logs to
    /tmp/runslot.out and /tmp/runslot.err.

    :param port: Port number for the daemon to listen on.
    :param executor: Executor backend overriding the configuration.
    :param detach: If True, run daemon in background as separate process.
    """
    config = get_config()
    port = port or config.daemon.port

    if detach:
        runslot_bin = shutil.which("runslot")
        if runslot_bin is None:
            print("[red]Could not find 'runslot' executable in PATH[/red]")
            raise typer.Exit(1)

        # The child reads the same config file as this process
        cmd = [runslot_bin, "--config", str(get_config_path().resolve()), "serve", "--port", str(port)]
        if executor:
            cmd += ["--executor", executor]

        # start_new_session=True keeps the daemon alive after the terminal closes
        subprocess.Popen(
            cmd,
            stdout=open("/tmp/runslot.out", "a"),
            stderr=open("/tmp/runslot.err", "a"),
            start_new_session=True,
        )
        print("[green]runslot daemon started in background[/green]")
        return

    try:
        job_executor = build_executor(config, executor)
    except (ValueError, ExecutorError) as e:
        print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    daemon = RunDaemon(
        port=port,
        host=config.daemon.host,
        executor=job_executor,
        main_branch=config.scheduler.main_branch,
        workers=config.scheduler.workers,
        webhook_url=config.reporting.webhook_url,
        webhook_timeout=config.reporting.timeout,
    )
    daemon.start()
