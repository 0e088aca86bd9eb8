"""
Integration tests for the Docker executor.

These tests start real containers and are skipped when Docker is not
available. Run with: pytest tests/integration -m integration
"""

import threading
import time

import pytest

IMAGE = "alpine:latest"


def _pipeline(*commands):
    from runslot.pipelines import PipelineSpec, Step
    from runslot.scheduler.models import PipelineKind

    return {
        PipelineKind.BUILD_TEST: PipelineSpec(
            kind=PipelineKind.BUILD_TEST,
            workflow="build-test",
            title="integration",
            steps=[Step(f"step {i}", cmd) for i, cmd in enumerate(commands)],
        ),
    }


@pytest.fixture
def executor(temp_dir):
    from runslot.executors import DockerExecutor

    workdir = temp_dir / "workspace"
    workdir.mkdir()
    ex = DockerExecutor(image=IMAGE, workdir=str(workdir), log_dir=str(temp_dir / "logs"), stop_timeout=1)
    ex.ensure_image()
    yield ex
    ex.shutdown()


@pytest.mark.integration
@pytest.mark.slow
class TestDockerExecutor:
    """Runs pipelines in real containers through the scheduler."""

    def test_successful_run(self, executor, make_event):
        from runslot.scheduler.models import Outcome, RunState
        from runslot.scheduler.scheduler import RunScheduler

        scheduler = RunScheduler(executor=executor, pipelines=_pipeline("echo {commit} > out.txt", "cat out.txt"))
        done = threading.Event()
        scheduler.add_observer(lambda run, transition: transition == "completed" and done.set())

        handle = scheduler.submit(make_event("feature-x", "abc123"), "build-test")

        assert done.wait(timeout=120)
        assert handle.state is RunState.COMPLETED
        assert handle.outcome is Outcome.SUCCESS
        assert (executor.workdir / "out.txt").read_text().strip() == "abc123"

    def test_failing_step(self, executor, make_event):
        from runslot.scheduler.models import Outcome
        from runslot.scheduler.scheduler import RunScheduler

        scheduler = RunScheduler(executor=executor, pipelines=_pipeline("exit 3", "echo unreachable"))
        done = threading.Event()
        scheduler.add_observer(lambda run, transition: transition == "completed" and done.set())

        handle = scheduler.submit(make_event(), "build-test")

        assert done.wait(timeout=120)
        assert handle.outcome is Outcome.FAILURE

    def test_superseded_run_container_stopped(self, executor, make_event):
        from runslot.scheduler.models import RunState
        from runslot.scheduler.scheduler import RunScheduler

        scheduler = RunScheduler(executor=executor, pipelines=_pipeline("sleep 60"))

        first = scheduler.submit(make_event("feature-x", "c1"), "build-test")
        deadline = time.time() + 60
        while not executor.active_jobs() and time.time() < deadline:
            time.sleep(0.1)

        second = scheduler.submit(make_event("feature-x", "c2"), "build-test")

        assert first.state is RunState.CANCELLED
        assert second.state is RunState.RUNNING

        deadline = time.time() + 30
        while first.run_id in [j["run_id"] for j in executor.active_jobs()] and time.time() < deadline:
            time.sleep(0.2)
        assert first.run_id not in [j["run_id"] for j in executor.active_jobs()]
