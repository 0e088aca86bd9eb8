"""
Run scheduler.

Admits pipeline runs for trigger events and enforces that every
(concurrency key, pipeline kind) slot holds at most one running run. A new
submission for an occupied slot cancels the run in it; the last submission
wins. Completions that arrive for runs which are no longer the slot's
current entry are discarded.

All reads and writes of a slot happen under that slot's lock, so
operations on unrelated branches proceed in parallel.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple, Union

from runslot.utils.logging import get_logger
from runslot.pipelines import PIPELINES, PipelineSpec
from runslot.scheduler.table import ActiveRunTable
from runslot.executors.base import JobExecutor
from runslot.scheduler.models import (
    Outcome,
    PipelineKind,
    Run,
    RunHandle,
    RunState,
    TriggerEvent,
    concurrency_key,
)

log = get_logger("scheduler")

# Called with the run and the transition name: 'admitted', 'cancelled' or 'completed'
RunObserver = Callable[[Run, str], None]


class RunScheduler:
    """
    Admission control and cancellation for concurrent pipeline runs.

    The active run table is injected so that several schedulers can live
    side by side, e.g. in tests. Without an executor the scheduler only
    tracks runs, and completions are expected from outside (for example the
    daemon's completion endpoint).
    """

    def __init__(self,
                 table: Optional[ActiveRunTable] = None,
                 executor: Optional[JobExecutor] = None,
                 pipelines: Optional[Dict[PipelineKind, PipelineSpec]] = None,
                 main_branch: str = "main",
                 ):
        """
        :param table: Active run table to use; a fresh one if omitted.
        :param executor: Executor that runs admitted pipelines, or None.
        :param pipelines: Pipeline definitions by kind (default: PIPELINES).
        :param main_branch: Branch whose runs are keyed by commit.
        """
        self.table = table if table is not None else ActiveRunTable()
        self.executor = executor
        self.pipelines = pipelines or PIPELINES
        self.main_branch = main_branch
        self._observers: List[RunObserver] = []

    def add_observer(self, observer: RunObserver) -> None:
        """
        Register a callable notified after every run transition.
        """
        self._observers.append(observer)

    def key_for(self, event: TriggerEvent, pipeline: Union[PipelineKind, str]) -> str:
        """
        Concurrency key of an event for a pipeline kind.
        """
        spec = self.pipelines[PipelineKind.parse(pipeline)]
        return concurrency_key(spec.workflow, event, self.main_branch)

    def submit(self, event: TriggerEvent, pipeline: Union[PipelineKind, str]) -> RunHandle:
        """
        Admit a new run for an event, cancelling the run it supersedes.

        :param event: The trigger event.
        :param pipeline: Pipeline kind the event targets.
        :return: Handle of the newly admitted run.
        :raises UnknownPipelineError: If the pipeline kind is not known.
        """
        kind = PipelineKind.parse(pipeline)
        spec = self.pipelines[kind]
        key = concurrency_key(spec.workflow, event, self.main_branch)
        run = Run(key=key, pipeline=kind, event=event)
        handle = RunHandle(run)
        transitions: List[Tuple[Run, str]] = []

        with self.table.lock(run.slot):
            previous = self.table.pop(run.slot)
            if previous is not None:
                previous.state = RunState.CANCELLED
                previous.finished_at = time.time()
                transitions.append((previous, "cancelled"))
                log.info(f"Cancelling {previous.run_id} ({key}, {kind.value}): superseded by {run.run_id}")
                self._signal_cancel(RunHandle(previous))

            self.table.put(run)
            transitions.append((run, "admitted"))
            log.info(f"Admitted {run.run_id} ({key}, {kind.value}) for {event.commit_hash[:12]}")

            if self.executor is not None:
                try:
                    self.executor.start(handle, spec, self.complete)
                except Exception as e:
                    log.error(f"Executor failed to start {run.run_id}: {e}")
                    self.table.pop(run.slot)
                    self._finish(run, Outcome.FAILURE)
                    transitions.append((run, "completed"))

        self._notify(transitions)
        return handle

    def complete(self, handle: RunHandle, outcome: Union[Outcome, str]) -> bool:
        """
        Record the terminal outcome of a run.

        Only the slot's current run can complete. A handle that was
        superseded, or already completed, is ignored.

        :param handle: Handle returned by submit().
        :param outcome: Outcome.SUCCESS or Outcome.FAILURE.
        :return: True if the table changed, False for a no-op.
        """
        outcome = Outcome(outcome)

        with self.table.lock(handle.slot):
            current = self.table.get(handle.slot)
            if current is None or current.run_id != handle.run_id:
                log.debug(f"Ignoring completion of {handle.run_id}: no longer active")
                return False
            self.table.pop(handle.slot)
            self._finish(current, outcome)

        log.info(f"Run {current.run_id} completed: {outcome.value}")
        self._notify([(current, "completed")])
        return True

    def complete_by_id(self, run_id: str, outcome: Union[Outcome, str]) -> bool:
        """
        Complete an active run identified only by its id.

        :return: True if the run was active and is now completed.
        """
        run = self.table.find(run_id)
        if run is None:
            log.debug(f"Ignoring completion of {run_id}: not active")
            return False
        return self.complete(RunHandle(run), outcome)

    def get_active(self, key: str, pipeline: Union[PipelineKind, str]) -> Optional[RunHandle]:
        run = self.table.get((key, PipelineKind.parse(pipeline)))
        return RunHandle(run) if run is not None else None

    def active_runs(self) -> List[RunHandle]:
        return [RunHandle(run) for run in self.table.snapshot()]

    def shutdown(self) -> None:
        """
        Cancel every active run and clear the table.
        """
        transitions = []
        for run in self.table.snapshot():
            with self.table.lock(run.slot):
                if self.table.get(run.slot) is not run:
                    continue
                self.table.pop(run.slot)
                run.state = RunState.CANCELLED
                run.finished_at = time.time()
                self._signal_cancel(RunHandle(run))
            transitions.append((run, "cancelled"))

        self.table.clear()
        if transitions:
            log.info(f"Cancelled {len(transitions)} active run(s) on shutdown")
        self._notify(transitions)

    def _finish(self, run: Run, outcome: Outcome) -> None:
        run.state = RunState.COMPLETED
        run.outcome = outcome
        run.finished_at = time.time()

    def _signal_cancel(self, handle: RunHandle) -> None:
        if self.executor is None:
            return
        try:
            self.executor.cancel(handle)
        except Exception as e:
            # Slot is already free at this point
            log.warning(f"Failed to signal cancellation of {handle.run_id}: {e}")

    def _notify(self, transitions: List[Tuple[Run, str]]) -> None:
        for run, transition in transitions:
            for observer in self._observers:
                try:
                    observer(run, transition)
                except Exception as e:
                    log.warning(f"Run observer failed on {run.run_id} ({transition}): {e}")
