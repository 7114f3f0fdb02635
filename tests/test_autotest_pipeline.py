import asyncio

import pytest

from release_readiness.autotest_pipeline import AutotestPipeline
from release_readiness.message_source import DateWindow
from release_readiness.models import Message, SectionStatus, SuiteStatus, VerdictStatus
from release_readiness.semantic_classifier import SemanticClassifier
from release_readiness.state_machine import SeedSearchError

PLAYWRIGHT = "B052372DK4H"
CYPRESS_GENERAL = "B067SLP8AR5"
CYPRESS_UNVERIFIED = "B067SMD5MAT"

# 2024-05-07 09:00 UTC, inside the lookback window for 2024-05-08.
RUN_TS = "1715072400.000100"


class _BotSource:
    def __init__(self, searches: dict, threads: dict[str, list[Message]] | None = None) -> None:
        self.searches = searches
        self.threads = threads or {}
        self.windows: list[DateWindow] = []

    async def search(self, query: str, channel: str, window: DateWindow) -> list[Message]:
        self.windows.append(window)
        outcome = self.searches.get(query, [])
        if isinstance(outcome, Exception):
            raise outcome
        return list(outcome)

    async def get_message(self, channel: str, message_id: str) -> Message | None:
        for messages in [*self.threads.values(), *self.searches.values()]:
            if isinstance(messages, Exception):
                continue
            for message in messages:
                if message.id == message_id:
                    return message
        return None

    async def get_thread_replies(self, channel: str, root_id: str) -> list[Message]:
        return list(self.threads.get(root_id, []))


class _AnswerGateway:
    def __init__(self, response: str) -> None:
        self.response = response

    async def is_available(self) -> bool:
        return True

    async def generate(self, prompt: str) -> str:
        return self.response


def _failed_run(**extra) -> Message:
    return Message(
        id=RUN_TS,
        text="Failed run. Specs for Review:\ntests/login_flow_spec.ts 1 failed",
        is_bot=True,
        bot_id=PLAYWRIGHT,
        **extra,
    )


def _source_with_reviewed_run() -> _BotSource:
    run = _failed_run(reply_count=1)
    reply = Message(id="1715073000.000200", text="login_flow passes locally, flaky", author_ref="U1", thread_root_id=RUN_TS)
    return _BotSource(
        {
            f"from:<@{PLAYWRIGHT}>": [run],
            f"from:<@{CYPRESS_GENERAL}>": [
                Message(id="1715040100.000100", text="Failed run", is_bot=True, bot_id=CYPRESS_GENERAL),
                Message(id="1715080000.000200", text="Run #12 passed ✅", is_bot=True, bot_id=CYPRESS_GENERAL),
                Message(id="1714900000.000100", text="Run #9 passed", is_bot=True, bot_id=CYPRESS_GENERAL),
            ],
            f"from:<@{CYPRESS_UNVERIFIED}>": RuntimeError("search failed"),
        },
        threads={RUN_TS: [run, reply]},
    )


def test_latest_run_per_suite_is_reviewed() -> None:
    source = _source_with_reviewed_run()

    results = asyncio.run(AutotestPipeline(source=source).run("qa-runs", "2024-05-08"))

    assert [result.suite for result in results] == ["Cypress (general)", "Playwright"]
    general, playwright = results
    assert general.status == SuiteStatus.PASSED
    assert general.message_id == "1715080000.000200"
    assert general.section_status == SectionStatus.REVIEWED_NOT_BLOCKING
    assert playwright.status == SuiteStatus.FAILED
    assert playwright.failed_tests == ["login_flow"]
    assert playwright.verdicts["login_flow"].status == VerdictStatus.FLAKY
    assert playwright.section_status == SectionStatus.REVIEWED_NOT_BLOCKING
    assert playwright.has_review is True
    assert source.windows[0].search_modifier() == "after:2024-05-06 before:2024-05-09"


def test_failed_run_without_thread_awaits_review() -> None:
    source = _BotSource({f"from:<@{PLAYWRIGHT}>": [_failed_run()]})

    results = asyncio.run(AutotestPipeline(source=source, test_bots={PLAYWRIGHT: "Playwright"}).run("qa", "2024-05-08"))

    assert results[0].section_status == SectionStatus.AWAITING_REVIEW
    assert results[0].verdicts["login_flow"].reasoning == "needs review: no thread replies yet"
    assert results[0].has_review is False


def test_confident_semantic_verdict_overrides_heuristics() -> None:
    source = _source_with_reviewed_run()
    semantic = SemanticClassifier(
        gateway=_AnswerGateway('{"tests": [{"id": 1, "status": "still_failing", "confidence": 92, "reasoning": "fails on CI"}]}')
    )

    results = asyncio.run(AutotestPipeline(source=source, semantic=semantic).run("qa-runs", "2024-05-08"))
    playwright = results[1]

    assert playwright.verdicts["login_flow"].status == VerdictStatus.STILL_FAILING
    assert playwright.verdicts["login_flow"].used_semantic_model is True
    assert playwright.section_status == SectionStatus.NEEDS_ATTENTION


def test_semantic_pass_can_be_disabled() -> None:
    source = _source_with_reviewed_run()
    semantic = SemanticClassifier(gateway=_AnswerGateway('[{"id": 1, "status": "still_failing", "confidence": 92}]'))

    results = asyncio.run(
        AutotestPipeline(source=source, semantic=semantic).run("qa-runs", "2024-05-08", use_semantic=False)
    )

    assert results[1].verdicts["login_flow"].status == VerdictStatus.FLAKY


def test_all_bot_searches_failing_raises() -> None:
    source = _BotSource({f"from:<@{PLAYWRIGHT}>": RuntimeError("invalid_auth")})

    with pytest.raises(SeedSearchError, match="Test status classification failed at collecting stage"):
        asyncio.run(AutotestPipeline(source=source, test_bots={PLAYWRIGHT: "Playwright"}).run("qa", "2024-05-08"))
