import threading
from pathlib import Path
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from runslot.pipelines import PipelineSpec
from runslot.utils.logging import get_logger
from runslot.scheduler.models import Outcome, RunHandle

log = get_logger("executor.base")

CompletionCallback = Callable[[RunHandle, Outcome], Any]


class ExecutorError(RuntimeError):
    """Raised when an executor cannot start a job."""


@dataclass
class Job:
    """Executor-side state of one started run."""

    handle: RunHandle
    pipeline: PipelineSpec
    on_complete: CompletionCallback
    log_path: Path
    cancelled: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Backend-specific resource: a Popen for local jobs, a container for docker jobs
    resource: Optional[Any] = None

    def to_dict(self) -> dict:
        return {
            "run_id": self.handle.run_id,
            "pipeline": self.pipeline.kind.value,
            "log_path": str(self.log_path),
            "cancelled": self.cancelled.is_set(),
        }


class JobExecutor(ABC):
    """
    Runs a pipeline's command sequence for admitted runs.

    start() must return promptly; the steps run on a background thread and
    the outcome is reported through the job's completion callback. cancel()
    is advisory and fire-and-forget: it signals the job to stop and returns
    without waiting for it to exit. Cancelled jobs do not report an outcome.
    """

    name: str

    def __init__(self, workdir: str = ".", log_dir: str = "~/.runslot/logs", stop_timeout: int = 10):
        self.workdir = Path(workdir).expanduser().resolve()
        self.log_dir = Path(log_dir).expanduser()
        self.stop_timeout = stop_timeout
        self._jobs: Dict[str, Job] = {}
        self._jobs_lock = threading.Lock()

    def start(self, handle: RunHandle, pipeline: PipelineSpec, on_complete: CompletionCallback) -> Job:
        """Start running a pipeline for an admitted run."""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        job = Job(
            handle=handle,
            pipeline=pipeline,
            on_complete=on_complete,
            log_path=self.log_dir / f"{handle.run_id}.log",
        )
        with self._jobs_lock:
            self._jobs[handle.run_id] = job

        thread = threading.Thread(
            target=self._run_job,
            args=(job,),
            name=f"{self.name}-{handle.run_id}",
            daemon=True,
        )
        thread.start()
        log.debug(f"Started {pipeline.kind.value} job for {handle.run_id}")
        return job

    def cancel(self, handle: RunHandle) -> bool:
        """
        Ask a running job to stop.

        :return: True if the job was known and signalled, False otherwise.
        """
        with self._jobs_lock:
            job = self._jobs.get(handle.run_id)
        if job is None:
            return False

        with job.lock:
            job.cancelled.set()
            resource = job.resource
        if resource is not None:
            self._signal_stop(job, resource)
        log.info(f"Cancellation signalled for {handle.run_id}")
        return True

    def active_jobs(self) -> List[dict]:
        with self._jobs_lock:
            return [job.to_dict() for job in self._jobs.values()]

    def shutdown(self) -> None:
        """Cancel every job still running."""
        with self._jobs_lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            self.cancel(job.handle)

    def _run_job(self, job: Job) -> None:
        try:
            outcome = self._execute(job)
        except Exception as e:
            log.error(f"Job {job.handle.run_id} crashed: {e}")
            outcome = Outcome.FAILURE
        finally:
            with self._jobs_lock:
                self._jobs.pop(job.handle.run_id, None)

        if job.cancelled.is_set():
            log.debug(f"Job {job.handle.run_id} stopped after cancellation")
            return

        log.info(f"Job {job.handle.run_id} finished: {outcome.value}")
        try:
            job.on_complete(job.handle, outcome)
        except Exception as e:
            log.warning(f"Completion callback for {job.handle.run_id} failed: {e}")

    @abstractmethod
    def _execute(self, job: Job) -> Outcome:
        """Run all steps of the job, blocking until done."""

    @abstractmethod
    def _signal_stop(self, job: Job, resource: Any) -> None:
        """Stop the backend resource of a cancelled job without waiting for it."""
