"""
Pipeline Registry

PIPELINES: dict mapping pipeline kind -> PipelineSpec, the fixed command
sequence an executor runs for an admitted run.
"""

import shlex
from dataclasses import dataclass, field
from typing import Dict, List

from runslot.scheduler.models import PipelineKind, TriggerEvent

CHECKOUT = "git checkout --force {commit}"

# Passed through to every step unchanged
PIPELINE_ENV = {
    "CARGO_TERM_COLOR": "always",
    "CARGO_INCREMENTAL": "0",
    "RUST_BACKTRACE": "1",
}

@dataclass(frozen=True)
class Step:
    name: str
    run: str

    def command(self, event: TriggerEvent) -> str:
        """Render the command for the event a run was triggered by. Event values are shell-quoted."""
        return self.run.format(
            commit=shlex.quote(event.commit_hash),
            branch=shlex.quote(event.branch_ref),
        )


@dataclass(frozen=True)
class PipelineSpec:
    kind: PipelineKind
    workflow: str
    title: str
    steps: List[Step]
    env: Dict[str, str] = field(default_factory=lambda: dict(PIPELINE_ENV))


PIPELINES: Dict[PipelineKind, PipelineSpec] = {
    PipelineKind.BUILD_TEST: PipelineSpec(
        kind=PipelineKind.BUILD_TEST,
        workflow=PipelineKind.BUILD_TEST.value,
        title="Build and test",
        steps=[
            Step("Checkout repo", CHECKOUT),
            Step("Build project", "cargo build"),
            Step("Run tests", "cargo test --no-fail-fast --future-incompat-report"),
        ],
    ),
    PipelineKind.STYLE_CHECK: PipelineSpec(
        kind=PipelineKind.STYLE_CHECK,
        workflow=PipelineKind.STYLE_CHECK.value,
        title="Style checks",
        steps=[
            Step("Checkout repo", CHECKOUT),
            Step("Run style checks", "cargo fmt --all --check"),
        ],
    ),
}
