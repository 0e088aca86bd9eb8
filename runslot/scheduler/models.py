"""
Data model for the run scheduler.

Trigger events, pipeline kinds, runs and the handles returned to callers,
plus the concurrency key derivation that decides which runs may not execute
side by side.
"""

import re
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

# Stands in for the commit on every branch other than the main one, so that
# all commits of such a branch collapse into one slot
ANY_SHA = "anysha"

# Branch names and commit ids: git ref characters only, never a leading dash
REF_PATTERN = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_./-]{0,254}")


class UnknownEventError(ValueError):
    """Raised when a trigger event has an unrecognized event type."""


class UnknownPipelineError(ValueError):
    """Raised when a pipeline kind is not one of the known kinds."""


class EventType(Enum):
    """Pull request activities that trigger pipelines."""
    ASSIGNED = "assigned"
    OPENED = "opened"
    SYNCHRONIZE = "synchronize"
    REOPENED = "reopened"


class PipelineKind(Enum):
    """Pipelines a trigger event can target."""
    BUILD_TEST = "build-test"
    STYLE_CHECK = "style-check"

    @classmethod
    def parse(cls, value: Any) -> "PipelineKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            known = [k.value for k in cls]
            raise UnknownPipelineError(f"Unknown pipeline '{value}'. Known: {known}") from None


class RunState(Enum):
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class TriggerEvent:
    """One pull request activity notification. Immutable once received."""

    event_type: EventType
    branch_ref: str
    commit_hash: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TriggerEvent":
        """
        Build an event from an already-parsed mapping.

        :param data: Mapping with 'event_type', 'branch_ref' and 'commit_hash'.
        :return: The validated TriggerEvent.
        :raises UnknownEventError: If event_type is not a recognized activity.
        :raises ValueError: If branch_ref or commit_hash is missing or not a valid ref.
        """
        raw_type = data.get("event_type")
        try:
            event_type = EventType(raw_type)
        except ValueError:
            known = [e.value for e in EventType]
            raise UnknownEventError(f"Unknown event type '{raw_type}'. Known: {known}") from None

        branch_ref = data.get("branch_ref")
        commit_hash = data.get("commit_hash")
        if not branch_ref or not commit_hash:
            raise ValueError("Trigger event needs both 'branch_ref' and 'commit_hash'")
        for name, value in (("branch_ref", branch_ref), ("commit_hash", commit_hash)):
            if not REF_PATTERN.fullmatch(str(value)):
                raise ValueError(f"Invalid {name} '{value}'")

        return cls(event_type=event_type, branch_ref=str(branch_ref), commit_hash=str(commit_hash))

    def to_dict(self) -> Dict[str, str]:
        return {
            "event_type": self.event_type.value,
            "branch_ref": self.branch_ref,
            "commit_hash": self.commit_hash,
        }


def concurrency_key(workflow: str, event: TriggerEvent, main_branch: str = "main") -> str:
    """
    Derive the concurrency key of an event for a workflow.

    Runs on the main branch are keyed by commit, so distinct main commits
    never share a slot. Every other branch collapses to a single slot.

    :param workflow: Workflow name of the targeted pipeline.
    :param event: The trigger event.
    :param main_branch: Name of the branch keyed by commit.
    :return: The concurrency key, e.g. 'build-test-feature-x-anysha'.
    """
    sha = event.commit_hash if event.branch_ref == main_branch else ANY_SHA
    return f"{workflow}-{event.branch_ref}-{sha}"


@dataclass
class Run:
    """
    One execution of a pipeline bound to a concurrency key.

    Mutated only by the scheduler while it holds the lock of the run's slot.
    """

    key: str
    pipeline: PipelineKind
    event: TriggerEvent
    run_id: str = field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    state: RunState = RunState.RUNNING
    outcome: Optional[Outcome] = None
    submitted_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def slot(self) -> Tuple[str, PipelineKind]:
        return (self.key, self.pipeline)

    @property
    def is_active(self) -> bool:
        return self.state is RunState.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "key": self.key,
            "pipeline": self.pipeline.value,
            "event_type": self.event.event_type.value,
            "branch": self.event.branch_ref,
            "commit_hash": self.event.commit_hash,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "submitted_at": self.submitted_at,
            "finished_at": self.finished_at,
        }


class RunHandle:
    """
    Reference to an admitted run, returned by RunScheduler.submit().

    Identity fields are fixed; state and outcome reflect the run as the
    scheduler last left it.
    """

    __slots__ = ("_run",)

    def __init__(self, run: Run):
        self._run = run

    @property
    def run_id(self) -> str:
        return self._run.run_id

    @property
    def key(self) -> str:
        return self._run.key

    @property
    def pipeline(self) -> PipelineKind:
        return self._run.pipeline

    @property
    def event(self) -> TriggerEvent:
        return self._run.event

    @property
    def state(self) -> RunState:
        return self._run.state

    @property
    def outcome(self) -> Optional[Outcome]:
        return self._run.outcome

    @property
    def slot(self) -> Tuple[str, PipelineKind]:
        return self._run.slot

    def to_dict(self) -> Dict[str, Any]:
        return self._run.to_dict()

    def __eq__(self, other) -> bool:
        return isinstance(other, RunHandle) and other.run_id == self.run_id

    def __hash__(self) -> int:
        return hash(self.run_id)

    def __repr__(self) -> str:
        return f"RunHandle({self.run_id}, key={self.key!r}, pipeline={self.pipeline.value}, state={self.state.value})"
