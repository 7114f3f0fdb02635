"""Pipeline stage observability callbacks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone


@dataclass
class StageLogger:
    """Best-effort stage transition logger with stable key=value lines."""

    logger_name: str = "pipeline.stages"

    def __post_init__(self) -> None:
        self.logger = logging.getLogger(self.logger_name)

    def on_transition(self, *, run_id: str, previous: str, current: str, reason: str = "") -> None:
        self.logger.info(
            "pipeline_stage at=%s run_id=%s from=%s to=%s reason=%s",
            datetime.now(timezone.utc).isoformat(),
            run_id,
            previous,
            current,
            reason or "-",
        )

    def on_stage_stats(self, *, run_id: str, stage: str, **stats: object) -> None:
        self.logger.info(
            "pipeline_stats run_id=%s stage=%s %s",
            run_id,
            stage,
            " ".join(f"{key}={stats[key]}" for key in sorted(stats)),
        )
