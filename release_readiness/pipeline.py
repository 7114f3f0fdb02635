"""Issue detection pipeline: collect, expand, classify, reconcile."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Iterable

from .fanout import gather_outcomes
from .issue_signals import ambiguous_ticket_keys, apply_semantic_verdicts, classify_thread
from .message_source import MessageSource
from .models import DetectionConfig, DetectionResult, Issue, ThreadContext
from .observability import StageLogger
from .patterns import PatternMatcher
from .reconciler import Candidate, apply_severity_filter, reconcile
from .seed_collector import DEFAULT_SEED_QUERIES, SeedCollection, SeedCollector
from .semantic_classifier import DEFAULT_CONFIDENCE_FLOOR, SemanticClassifier
from .state_machine import PipelineStage, SeedSearchError, StageTracker
from .thread_resolver import ThreadContextResolver

DEFAULT_SEMANTIC_CONCURRENCY = 3


@dataclass
class _RunAccumulator:
    """Mutable state owned by exactly one pipeline run."""

    run_id: str
    tracker: StageTracker
    seeds: SeedCollection | None = None
    contexts: list[ThreadContext] = field(default_factory=list)
    candidates: list[Candidate] = field(default_factory=list)
    semantic_used: bool = False


class IssueDetectionPipeline:
    def __init__(
        self,
        *,
        source: MessageSource,
        matcher: PatternMatcher | None = None,
        semantic: SemanticClassifier | None = None,
        seed_queries: Iterable[str] = DEFAULT_SEED_QUERIES,
        confidence_floor: int = DEFAULT_CONFIDENCE_FLOOR,
        semantic_concurrency: int = DEFAULT_SEMANTIC_CONCURRENCY,
        observer: StageLogger | None = None,
    ):
        self.source = source
        self.matcher = matcher or PatternMatcher()
        self.collector = SeedCollector(source=source, matcher=self.matcher, queries=seed_queries)
        self.resolver = ThreadContextResolver(source=source)
        self.semantic = semantic
        self.confidence_floor = confidence_floor
        self.semantic_concurrency = max(1, semantic_concurrency)
        self.observer = observer or StageLogger()
        self.logger = logging.getLogger("issue_pipeline")

    async def run(self, config: DetectionConfig) -> DetectionResult:
        run_id = uuid.uuid4().hex[:12]
        run = _RunAccumulator(run_id=run_id, tracker=StageTracker(run_id=run_id, observer=self.observer))
        started = time.monotonic()

        run.tracker.advance(PipelineStage.COLLECTING, reason=f"channel={config.channel} date={config.date}")
        try:
            run.seeds = await self.collector.collect(config)
        except SeedSearchError as exc:
            run.tracker.advance(PipelineStage.FAILED, reason="all searches failed")
            self.logger.error("issue_pipeline_failed run_id=%s stage=%s error=%s", run_id, exc.stage.value, exc)
            raise

        run.tracker.advance(PipelineStage.EXPANDING, reason=f"seeds={len(run.seeds.messages)}")
        run.contexts = await self.resolver.resolve_all(
            run.seeds.messages,
            config.channel,
            max_threads=config.max_threads,
        )

        run.tracker.advance(PipelineStage.CLASSIFYING, reason=f"contexts={len(run.contexts)}")
        run.candidates = await self._classify(run, config)

        run.tracker.advance(PipelineStage.RECONCILING, reason=f"candidates={len(run.candidates)}")
        issues = apply_severity_filter(
            reconcile(run.candidates),
            config.severity_filter,
            include_resolved=config.include_resolved,
        )
        issues = await self._attach_permalinks(issues, config.channel)
        run.tracker.advance(PipelineStage.DONE, reason=f"issues={len(issues)}")

        result = DetectionResult(
            issues=issues,
            stage=run.tracker.stage.value,
            partial_failure=run.seeds.partial_failure,
            failed_queries=list(run.seeds.failed_queries),
            analyzed_threads=sum(1 for context in run.contexts if context.has_thread),
            total_messages=sum(1 + len(context.replies) for context in run.contexts),
            semantic_used=run.semantic_used,
            elapsed_seconds=round(time.monotonic() - started, 3),
        )
        self.observer.on_stage_stats(
            run_id=run_id,
            stage=result.stage,
            issues=len(result.issues),
            threads=result.analyzed_threads,
            messages=result.total_messages,
            partial_failure=result.partial_failure,
        )
        return result

    async def _classify(self, run: _RunAccumulator, config: DetectionConfig) -> list[Candidate]:
        heuristic = [classify_thread(context, self.matcher) for context in run.contexts]
        if self.semantic is None or not config.use_semantic:
            return [candidate for batch in heuristic for candidate in batch]

        pending = {
            index: keys
            for index, keys in (
                (index, ambiguous_ticket_keys(batch, floor=self.confidence_floor))
                for index, batch in enumerate(heuristic)
            )
            if keys
        }
        if not pending:
            return [candidate for batch in heuristic for candidate in batch]

        # Created per run so concurrent runs never share a semaphore.
        limiter = asyncio.Semaphore(self.semantic_concurrency)

        async def _refine(index: int, keys: list[str]) -> list[Candidate]:
            assert self.semantic is not None
            context = run.contexts[index]
            async with limiter:
                verdicts = await self.semantic.classify(context, keys, subject="tickets")
            if any(verdict.used_semantic_model for verdict in verdicts.values()):
                run.semantic_used = True
            return apply_semantic_verdicts(
                heuristic[index],
                verdicts,
                thread=context,
                floor=self.confidence_floor,
            )

        outcome = await gather_outcomes({index: _refine(index, keys) for index, keys in pending.items()})
        for index, exc in outcome.failures.items():
            self.logger.warning(
                "semantic_refine_failed run_id=%s thread=%s error=%s",
                run.run_id,
                run.contexts[index].thread_key,
                exc,
            )
        merged: list[Candidate] = []
        for index, batch in enumerate(heuristic):
            merged.extend(outcome.successes.get(index, batch))
        return merged

    async def _attach_permalinks(self, issues: list[Issue], channel: str) -> list[Issue]:
        missing = {
            index: issue.timestamp
            for index, issue in enumerate(issues)
            if issue.timestamp and "://" not in issue.source_ref
        }
        if not missing:
            return issues
        outcome = await gather_outcomes(
            {index: self.source.get_permalink(channel, message_id) for index, message_id in missing.items()}
        )
        for index, exc in outcome.failures.items():
            self.logger.debug("permalink_unavailable channel=%s ts=%s error=%s", channel, missing[index], exc)
        return [
            issue.model_copy(update={"source_ref": outcome.successes[index]}) if outcome.successes.get(index) else issue
            for index, issue in enumerate(issues)
        ]

    async def validate(self) -> dict[str, bool]:
        """Report which collaborators are wired and reachable."""
        semantic_ready = False
        if self.semantic is not None:
            semantic_ready = await self.semantic.is_available()
        return {
            "source": self.source is not None,
            "matcher": self.matcher is not None,
            "semantic": semantic_ready,
        }
