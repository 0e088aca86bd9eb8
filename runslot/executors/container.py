import shlex
import threading
from typing import Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from runslot.utils.retry import retry
from runslot.utils.logging import get_logger
from runslot.scheduler.models import Outcome
from runslot.executors.base import ExecutorError, Job, JobExecutor
from runslot.utils.cleanup import register_container, unregister_container

log = get_logger("executor.docker")

CONTAINER_WORKDIR = "/workspace"


class DockerExecutor(JobExecutor):
    """
    Runs pipeline steps inside a throwaway container.

    The workspace is bind-mounted at /workspace and every step runs in one
    shell script with 'set -e', so the first failing step ends the job. The
    container's exit code decides the outcome.
    """

    name = "docker"
    MEMORY_LIMIT: str = "8g"

    def __init__(self, image: str = "rust:latest", **kwargs):
        super().__init__(**kwargs)
        self.image = image
        self.client = docker.from_env()

    @retry(max_attempts=3, delay=2.0, exceptions=(APIError,))
    def _pull(self) -> None:
        log.info(f"Pulling Docker image {self.image}...")
        self.client.images.pull(self.image)

    def ensure_image(self) -> None:
        """Use the local image if present, pull it otherwise."""
        try:
            self.client.images.get(self.image)
            log.debug(f"Image found locally: {self.image}")
        except ImageNotFound:
            try:
                self._pull()
            except APIError as e:
                raise ExecutorError(f"Image {self.image} not available: {e}") from e

    def _script(self, job: Job) -> str:
        lines = ["set -e"]
        for step in job.pipeline.steps:
            lines.append(f"echo {shlex.quote('==> ' + step.name)}")
            lines.append(step.command(job.handle.event))
        return "\n".join(lines)

    def _execute(self, job: Job) -> Outcome:
        run_id = job.handle.run_id
        self.ensure_image()

        with job.lock:
            if job.cancelled.is_set():
                return Outcome.FAILURE
            try:
                container = self.client.containers.run(
                    self.image,
                    command=["sh", "-c", self._script(job)],
                    detach=True,
                    name=run_id,
                    working_dir=CONTAINER_WORKDIR,
                    volumes={str(self.workdir): {"bind": CONTAINER_WORKDIR, "mode": "rw"}},
                    environment=job.pipeline.env,
                    labels={
                        "runslot.run_id": run_id,
                        "runslot.pipeline": job.pipeline.kind.value,
                        "runslot.key": job.handle.key,
                    },
                    mem_limit=self.MEMORY_LIMIT,
                )
            except DockerException as e:
                raise ExecutorError(f"Failed to start container for {run_id}: {e}") from e
            job.resource = container

        register_container(container.id, run_id)
        log.debug(f"Container started: {run_id} ({container.id[:12]})")

        try:
            result = container.wait()
            status_code = result.get("StatusCode", 1)
            with open(job.log_path, "ab") as logf:
                logf.write(container.logs(stdout=True, stderr=True))
        finally:
            self._remove(container)

        return Outcome.SUCCESS if status_code == 0 else Outcome.FAILURE

    def _remove(self, container) -> None:
        try:
            container.remove(force=True)
        except NotFound:
            pass
        except DockerException as e:
            log.warning(f"Could not remove container {container.id[:12]}: {e}")
        unregister_container(container.id)

    def _signal_stop(self, job: Job, resource: Any) -> None:
        def _stop():
            try:
                resource.stop(timeout=self.stop_timeout)
                log.debug(f"Container stopped: {resource.id[:12]}")
            except NotFound:
                log.debug(f"Container already removed: {resource.id[:12]}")
            except DockerException as e:
                log.warning(f"Failed to stop container for {job.handle.run_id}: {e}")

        # container.stop() blocks for up to stop_timeout
        threading.Thread(target=_stop, daemon=True).start()
