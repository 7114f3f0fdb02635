"""Deterministic stage machine for a single pipeline run."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .observability import StageLogger


class PipelineStage(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    EXPANDING = "expanding"
    CLASSIFYING = "classifying"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[PipelineStage, frozenset[PipelineStage]] = {
    PipelineStage.IDLE: frozenset({PipelineStage.COLLECTING}),
    # Only total seed failure moves a run to FAILED.
    PipelineStage.COLLECTING: frozenset({PipelineStage.EXPANDING, PipelineStage.FAILED}),
    PipelineStage.EXPANDING: frozenset({PipelineStage.CLASSIFYING}),
    PipelineStage.CLASSIFYING: frozenset({PipelineStage.RECONCILING}),
    PipelineStage.RECONCILING: frozenset({PipelineStage.DONE}),
    PipelineStage.DONE: frozenset(),
    PipelineStage.FAILED: frozenset(),
}


class PipelineError(RuntimeError):
    """Fatal pipeline failure that names the stage it happened in."""

    def __init__(self, stage: PipelineStage, message: str, *, pipeline: str = "Issue detection"):
        self.stage = stage
        self.pipeline = pipeline
        super().__init__(f"{pipeline} failed at {stage.value} stage: {message}")


class SeedSearchError(PipelineError):
    def __init__(self, failures: dict[str, BaseException], *, pipeline: str = "Issue detection"):
        self.failures = dict(failures)
        details = "; ".join(f"{query}: {exc}" for query, exc in sorted(self.failures.items()))
        super().__init__(PipelineStage.COLLECTING, f"all searches failed ({details})", pipeline=pipeline)


@dataclass
class StageTracker:
    run_id: str
    observer: StageLogger | None = None
    stage: PipelineStage = PipelineStage.IDLE
    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])

    def advance(self, next_stage: PipelineStage, *, reason: str = "") -> None:
        if next_stage not in ALLOWED_TRANSITIONS[self.stage]:
            raise RuntimeError(
                f"Illegal pipeline transition {self.stage.value} -> {next_stage.value} run_id={self.run_id}"
            )
        previous = self.stage
        self.stage = next_stage
        self.history.append(next_stage)
        if self.observer is not None:
            self.observer.on_transition(
                run_id=self.run_id,
                previous=previous.value,
                current=next_stage.value,
                reason=reason,
            )

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.stage]
