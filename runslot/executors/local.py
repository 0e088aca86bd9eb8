import os
import subprocess
import threading
from typing import Any

from runslot.utils.logging import get_logger
from runslot.scheduler.models import Outcome
from runslot.executors.base import ExecutorError, Job, JobExecutor

log = get_logger("executor.local")


class LocalExecutor(JobExecutor):
    """
    Runs pipeline steps as shell subprocesses in the configured workspace.

    Steps run in order and stop at the first non-zero exit. Output of every
    step is appended to the run's log file.
    """

    name = "local"

    def _execute(self, job: Job) -> Outcome:
        if not self.workdir.is_dir():
            raise ExecutorError(f"Workspace {self.workdir} does not exist")

        env = {**os.environ, **job.pipeline.env}
        handle = job.handle

        with open(job.log_path, "a") as logf:
            for step in job.pipeline.steps:
                command = step.command(handle.event)
                with job.lock:
                    if job.cancelled.is_set():
                        return Outcome.FAILURE
                    logf.write(f"==> {step.name}: {command}\n")
                    logf.flush()
                    proc = subprocess.Popen(
                        command,
                        shell=True,
                        cwd=self.workdir,
                        env=env,
                        stdout=logf,
                        stderr=subprocess.STDOUT,
                    )
                    job.resource = proc

                returncode = proc.wait()
                logf.write(f"<== {step.name} exited with {returncode}\n")
                logf.flush()

                if returncode != 0:
                    log.info(f"{handle.run_id}: step '{step.name}' failed with exit code {returncode}")
                    return Outcome.FAILURE

        return Outcome.SUCCESS

    def _signal_stop(self, job: Job, resource: Any) -> None:
        proc: subprocess.Popen = resource
        if proc.poll() is not None:
            return
        proc.terminate()

        def _kill_if_alive():
            if proc.poll() is None:
                log.warning(f"{job.handle.run_id} ignored SIGTERM, killing")
                proc.kill()

        timer = threading.Timer(self.stop_timeout, _kill_if_alive)
        timer.daemon = True
        timer.start()
