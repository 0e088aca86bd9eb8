"""
runslot daemon - run admission server.

This module implements the daemon that receives pull request trigger
events over HTTP, queues them for admission by the run scheduler, and
exposes the active run table and run history.

The daemon handles:
- Event ingestion with validation of event types and pipeline kinds
- Admission and cancellation through the run scheduler
- Completion callbacks from external executors
- Run history persistence via SQLite, with clearing of finished runs
- Graceful shutdown: active runs are cancelled and containers removed
"""

import sys
import time
import signal
import uvicorn
import threading
from rich import print
from pydantic import BaseModel
from fastapi import FastAPI, HTTPException
from typing import Any, Dict, List, Optional

from runslot import reporting
from runslot.state import store
from runslot.utils.logging import get_logger
from runslot.executors import JobExecutor
from runslot.scheduler.ingest import EventQueue
from runslot.scheduler.table import ActiveRunTable
from runslot.scheduler.scheduler import RunScheduler
from runslot.utils.lock import DaemonLock, is_daemon_running
from runslot.utils.cleanup import cleanup_all, register_cleanup_handler
from runslot.scheduler.models import Outcome, UnknownEventError, UnknownPipelineError

log = get_logger("daemon")

class EventRequest(BaseModel):
    """Request model for a pull request trigger event."""

    event_type: str
    branch_ref: str
    commit_hash: str
    # Defaults to every known pipeline
    pipelines: Optional[List[str]] = None

class CompleteRequest(BaseModel):
    """Request model for an external completion callback."""
    outcome: str  # 'success' or 'failure'

class RunDaemon:
    """
    runslot daemon server.

    Owns one scheduler, its active run table and the ingestion queue in
    front of it. The executor is optional: without one, runs are started
    elsewhere and reported back through POST /runs/{run_id}/complete.
    """

    def __init__(self,
                 port: int,
                 host: str = "0.0.0.0",
                 executor: Optional[JobExecutor] = None,
                 main_branch: str = "main",
                 workers: int = 4,
                 webhook_url: Optional[str] = None,
                 webhook_timeout: int = 10,
                 ):
        """
        Initialize the daemon and its FastAPI application.

        :param port: Port number for the HTTP server to listen on.
        :param host: Interface to bind.
        :param executor: Executor that runs admitted pipelines, or None.
        :param main_branch: Branch whose runs are keyed by commit.
        :param workers: Number of ingestion consumer threads.
        :param webhook_url: Optional URL receiving run transitions.
        :param webhook_timeout: Timeout in seconds for webhook requests.
        """
        self.port = port
        self.host = host
        self.executor = executor
        self.started_at = time.time()

        store.init_db()
        interrupted = store.mark_interrupted()
        if interrupted:
            log.info(f"Marked {interrupted} run(s) from a previous session as cancelled")

        self.table = ActiveRunTable()
        self.scheduler = RunScheduler(self.table, executor=executor, main_branch=main_branch)
        self.scheduler.add_observer(reporting.record_history)

        self._reporter = reporting.make_webhook_reporter(webhook_url, timeout=webhook_timeout)
        if self._reporter is not None:
            self.scheduler.add_observer(self._reporter)

        self.events = EventQueue(self.scheduler, workers=workers)

        # Event for coordinating graceful shutdown
        self.shutdown_event = threading.Event()

        register_cleanup_handler("daemon", self._shutdown_components)

        log.info(f"runslot daemon initializing on port {port}")

        self.app = FastAPI(title="runslot daemon")

        @self.app.get("/status")
        def status() -> Dict[str, Any]:
            """
            Daemon status with the active runs and ingestion backlog.
            """
            return {
                "running": True,
                "port": self.port,
                "uptime": time.time() - self.started_at,
                "main_branch": self.scheduler.main_branch,
                "executor": self.executor.name if self.executor else None,
                "active_runs": [h.to_dict() for h in self.scheduler.active_runs()],
                "queue": {
                    "running": self.events.is_running,
                    "pending": self.events.pending(),
                },
            }

        @self.app.post("/events")
        def ingest(req: EventRequest) -> Dict[str, Any]:
            """
            Queue a trigger event for admission.

            :param req: Event with its type, branch and commit.
            :return: Dictionary with the pipelines the event was queued for.
            """
            try:
                kinds = self.events.put(
                    {
                        "event_type": req.event_type,
                        "branch_ref": req.branch_ref,
                        "commit_hash": req.commit_hash,
                    },
                    pipelines=req.pipelines,
                )
            except (UnknownEventError, UnknownPipelineError, ValueError) as e:
                raise HTTPException(status_code=400, detail=str(e))

            return {"accepted": True, "pipelines": [k.value for k in kinds]}

        @self.app.get("/runs")
        def active_runs() -> Dict[str, Any]:
            """
            List the runs currently active.
            """
            return {"runs": [h.to_dict() for h in self.scheduler.active_runs()]}

        @self.app.get("/runs/history")
        def run_history(branch: Optional[str] = None,
                        pipeline: Optional[str] = None,
                        state: Optional[str] = None,
                        limit: int = 50,
                        ) -> Dict[str, Any]:
            """
            List recorded runs, most recent first, with aggregate statistics.
            """
            return {
                "runs": store.list_runs(branch=branch, pipeline=pipeline, state=state, limit=limit),
                "stats": store.get_run_stats(pipeline=pipeline),
            }

        @self.app.delete("/runs/history")
        def clear_history() -> Dict[str, Any]:
            """
            Remove finished runs from the history.

            :return: Dictionary with the number of runs removed.
            """
            cleared = store.clear_runs()
            log.info(f"Cleared {cleared} finished run(s) from history")
            return {"cleared": cleared}

        @self.app.get("/runs/{run_id}")
        def get_run(run_id: str) -> Dict[str, Any]:
            """
            Get one run, active or recorded.
            """
            run = self.table.find(run_id)
            if run is not None:
                return run.to_dict()

            record = store.get_run(run_id)
            if record is None:
                raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
            record["run_id"] = record.pop("id")
            return record

        @self.app.post("/runs/{run_id}/complete")
        def complete_run(run_id: str, req: CompleteRequest) -> Dict[str, Any]:
            """
            Report the outcome of a run executed outside the daemon.

            Completions of superseded or unknown runs are accepted and ignored.

            :param run_id: Identifier of the run.
            :param req: Outcome of the run.
            :return: Dictionary telling whether the completion was applied.
            """
            try:
                outcome = Outcome(req.outcome)
            except ValueError:
                raise HTTPException(
                    status_code=400,
                    detail=f"Unknown outcome '{req.outcome}'. Known: {[o.value for o in Outcome]}"
                )

            return {"run_id": run_id, "applied": self.scheduler.complete_by_id(run_id, outcome)}

        @self.app.post("/stop")
        def stop() -> Dict[str, Any]:
            """
            Stop the daemon. Active runs are cancelled during shutdown.
            """
            self.shutdown_event.set()
            return {"stopped": True}

    def start(self) -> None:
        """
        Start the daemon server.

        Acquires the daemon lock, starts the ingestion workers, launches
        the FastAPI server in a background thread, and waits for shutdown.
        """
        if is_daemon_running():
            print("[red]Daemon already running[/red]")
            sys.exit(1)

        self._lock = DaemonLock()
        if not self._lock.acquire():
            print("[red]Could not acquire daemon lock[/red]")
            sys.exit(1)

        executor_name = self.executor.name if self.executor else "external"
        print(
            f"[bold cyan]runslot daemon started[/bold cyan] "
            f"(port={self.port}, executor={executor_name})"
        )

        signal.signal(signal.SIGINT, self._signal_shutdown)
        signal.signal(signal.SIGTERM, self._signal_shutdown)

        self.events.start()

        thread = threading.Thread(target=self._run_api, daemon=True)
        thread.start()

        self._loop()

    def _run_api(self) -> None:
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.port,
            log_level="error",
        )

    def _loop(self) -> None:
        while not self.shutdown_event.is_set():
            time.sleep(0.2)

        self._cleanup_and_exit()

    def _signal_shutdown(self, *_) -> None:
        self.shutdown_event.set()

    def _shutdown_components(self) -> None:
        """
        Drain ingestion, cancel active runs and stop the executor.

        Registered with the cleanup manager so it also runs at interpreter exit.
        """
        log.info("Stopping ingestion and cancelling active runs...")
        self.events.stop()
        self.scheduler.shutdown()
        if self.executor is not None:
            self.executor.shutdown()
        if self._reporter is not None:
            self._reporter.close()

    def _cleanup_and_exit(self) -> None:
        log.info("Shutting down runslot daemon")

        cleanup_all()

        if hasattr(self, "_lock"):
            self._lock.release()

        sys.exit(0)
