"""
Job executors

Backends that run a pipeline's command sequence for admitted runs.
"""

from .base import ExecutorError, Job, JobExecutor
from .local import LocalExecutor
from .container import DockerExecutor

EXECUTORS = {
    "local": LocalExecutor,
    "docker": DockerExecutor,
}


def create_executor(backend: str, **kwargs) -> JobExecutor:
    """
    Instantiate an executor by backend name.

    :param backend: Name of the backend, 'local' or 'docker'.
    :param kwargs: Keyword arguments passed to the executor constructor.
    :return: The executor instance.
    """
    if backend not in EXECUTORS:
        raise ValueError(f"Unknown executor '{backend}'. Available: {list(EXECUTORS)}")
    return EXECUTORS[backend](**kwargs)
