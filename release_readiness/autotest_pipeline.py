"""Test-status pipeline: latest bot run per suite with reviewed per-test verdicts."""
from __future__ import annotations

import asyncio
import logging

from .autotest_status import (
    DEFAULT_TEST_BOTS,
    apply_recent_resolution,
    classify_test_thread,
    extract_failed_test_names,
    parse_suite_status,
    section_status,
    suite_for_message,
)
from .fanout import gather_outcomes
from .message_blocks import extract_all_text
from .message_source import DateWindow, MessageSource
from .models import Message, SectionStatus, SuiteResult, SuiteStatus
from .semantic_classifier import DEFAULT_CONFIDENCE_FLOOR, SemanticClassifier, merge_verdicts, needs_review_verdict
from .state_machine import SeedSearchError
from .thread_resolver import ThreadContextResolver

PIPELINE_LABEL = "Test status classification"


class AutotestPipeline:
    def __init__(
        self,
        *,
        source: MessageSource,
        semantic: SemanticClassifier | None = None,
        test_bots: dict[str, str] | None = None,
        confidence_floor: int = DEFAULT_CONFIDENCE_FLOOR,
    ):
        self.source = source
        self.resolver = ThreadContextResolver(source=source)
        self.semantic = semantic
        self.test_bots = dict(test_bots or DEFAULT_TEST_BOTS)
        if not self.test_bots:
            raise RuntimeError("AutotestPipeline requires at least one test bot id.")
        self.confidence_floor = confidence_floor
        self.logger = logging.getLogger("autotest_pipeline")

    async def run(self, channel: str, date: str = "today", *, use_semantic: bool = True) -> list[SuiteResult]:
        window = DateWindow.autotest_lookback(date)
        outcome = await gather_outcomes(
            {bot_id: self.source.search(f"from:<@{bot_id}>", channel, window) for bot_id in self.test_bots}
        )
        for bot_id, exc in outcome.failures.items():
            self.logger.warning("autotest_search_failed channel=%s bot=%s error=%s", channel, bot_id, exc)
        if outcome.all_failed:
            raise SeedSearchError(dict(outcome.failures), pipeline=PIPELINE_LABEL)

        latest: dict[str, Message] = {}
        for bot_id, messages in outcome.successes.items():
            for message in messages or []:
                if message is None or not window.contains(message.id):
                    continue
                suite = suite_for_message(message, self.test_bots) or self.test_bots[bot_id]
                current = latest.get(suite)
                if current is None or message.sort_key > current.sort_key:
                    latest[suite] = message

        results = await asyncio.gather(
            *(
                self._analyze_suite(suite, latest[suite], channel, use_semantic=use_semantic)
                for suite in sorted(latest)
            )
        )
        self.logger.info(
            "autotest_run channel=%s window=%s suites=%s failed=%s",
            channel,
            window.search_modifier(),
            len(results),
            sum(1 for result in results if result.status == SuiteStatus.FAILED),
        )
        return list(results)

    async def _analyze_suite(self, suite: str, message: Message, channel: str, *, use_semantic: bool) -> SuiteResult:
        text = extract_all_text(message)
        status = parse_suite_status(text)
        failed_tests = extract_failed_test_names(text)
        result = SuiteResult(
            suite=suite,
            status=status,
            message_id=message.id,
            timestamp=message.id,
            permalink=message.permalink,
            failed_tests=failed_tests,
        )
        if status == SuiteStatus.PASSED:
            result.section_status = SectionStatus.REVIEWED_NOT_BLOCKING
            return result
        if status != SuiteStatus.FAILED:
            return result

        thread = await self.resolver.resolve(message, channel)
        if not thread.has_thread:
            result.verdicts = {
                test: needs_review_verdict(test, "no thread replies yet") for test in failed_tests
            }
            result.section_status = SectionStatus.AWAITING_REVIEW
            return result

        thread_tests = extract_failed_test_names("\n".join(extract_all_text(item) for item in thread.messages))
        tests = thread_tests if len(thread_tests) > len(failed_tests) else failed_tests
        # Suites without recognizable test names are reviewed as a single item.
        items = tests or [suite]
        heuristic = classify_test_thread(thread, items)
        semantic = {}
        if use_semantic and self.semantic is not None:
            semantic = await self.semantic.classify(thread, items, subject="tests")
        verdicts = apply_recent_resolution(
            thread,
            merge_verdicts(heuristic, semantic, floor=self.confidence_floor),
        )
        result.failed_tests = tests
        result.verdicts = verdicts
        result.section_status = section_status(verdicts)
        result.has_review = True
        return result
