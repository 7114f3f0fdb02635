"""Heuristic test-status classification for automated test bot threads."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import unquote

from .message_blocks import extract_all_text
from .models import (
    ClassificationVerdict,
    Message,
    SectionStatus,
    SuiteStatus,
    ThreadContext,
    VerdictStatus,
)
from .semantic_classifier import normalize_item_name

DEFAULT_TEST_BOTS: dict[str, str] = {
    "B067SLP8AR5": "Cypress (general)",
    "B067SMD5MAT": "Cypress (unverified)",
    "B052372DK4H": "Playwright",
}
BOT_MESSAGE_PRIORITY_CAP = 30
RECENT_REPLY_WINDOW = 3

FAILED_STATUS_RE = re.compile(r"failed\s+run|test\s+results:\s*failed|\bfailed:|❌|:x:", re.IGNORECASE)
PASSED_STATUS_RE = re.compile(r"\bpassed\b|\bsuccess(?:ful)?\b|✅|🟢|:white_check_mark:", re.IGNORECASE)
STATUS_KEYWORD_RE = re.compile(r"pass|fail|flak|fix|resolved|blocked|investigat|locally", re.IGNORECASE)

TEST_FILE_RE = re.compile(r"([\w\-]+(?:\.test|_spec|\.spec|_test)\.[jt]sx?)", re.IGNORECASE)
SPECS_FOR_REVIEW_RE = re.compile(r"([\w\-/]+(?:_spec)?\.tsx?)\s+\d+\s+failed", re.IGNORECASE)
BACKTICK_TEST_RE = re.compile(r"`([\w\-]+(?:\.test|_spec|\.spec|_test)?\.tsx?)`", re.IGNORECASE)
NAME_BLOCKLIST_RE = re.compile(
    r"^(?:index|config|setup|utils?|helpers?|types?|constants?|models?|services?|playwright|cypress"
    r"|jest|mocha|failed|passed|test|tests|spec|specs|pages?|components?|reports?)$",
    re.IGNORECASE,
)
PATH_BLOCKLIST_RE = re.compile(r"/(?:pages|components|helpers|utils|fixtures|support)/", re.IGNORECASE)
PAGE_OBJECT_RE = re.compile(r"(?:Page|Component|Helper|Util|Service)$", re.IGNORECASE)
PASSES_NOW_RE = re.compile(
    r"\b(?:it\s+did\s+pass|now\s+it\s+pass(?:es)?|pass(?:es)?\s+now|works\s+now|it\s+pass(?:es)?|did\s+pass)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class StatusRule:
    pattern: re.Pattern[str]
    status: VerdictStatus


def _status_rule(pattern: str, status: VerdictStatus) -> StatusRule:
    return StatusRule(pattern=re.compile(pattern, re.IGNORECASE), status=status)


STATUS_RULES: tuple[StatusRule, ...] = (
    _status_rule(r"manual\s+re[-\s]?run\s+successful|passed\s+on\s+re[-\s]?run|re[-\s]?run\s+passed", VerdictStatus.RESOLVED),
    _status_rule(
        r"\b(?:pass(?:ed|es|ing)?|did\s+pass)\b(?!\s+(?:for\s+me\s+)?locally)|\b(?:fixed|resolved|green)\b",
        VerdictStatus.RESOLVED,
    ),
    _status_rule(r"\bnot\s+(?:a\s+)?(?:release\s+)?block(?:ing|er)\b", VerdictStatus.NOT_BLOCKING),
    _status_rule(
        r"(?<!not )(?<!not a )\brelease\s+blocker\b|(?<!not )(?<!not a )(?<!release )\bblocker\b",
        VerdictStatus.BLOCKER,
    ),
    _status_rule(r"\b(?:on\s+me|my\s+responsibility|i'?ll\s+take|assigned\s+to\s+me)\b", VerdictStatus.ASSIGNED),
    _status_rule(
        r"(?:started|starting|kicked(?:\s+off)?|triggered|triggering)\s+(?:a\s+)?re[-\s]?run"
        r"|re[-\s]?running\s+(?:now|again|today)|rerun\s+in\s+progress",
        VerdictStatus.RERUN_IN_PROGRESS,
    ),
    _status_rule(r"fix[^\n]{0,40}review|should\s+be\s+fixed|\bpr\b[^\n]{0,40}(?:open|up)", VerdictStatus.FIX_IN_PROGRESS),
    _status_rule(r"known\s+issue|already\s+aware|acknowledged", VerdictStatus.ACKNOWLEDGED),
    _status_rule(r"\b[A-Z]{2,}-\d+\b[^\n]{0,40}(?:track|created|filed)|ticket\s+(?:created|filed)", VerdictStatus.TRACKED),
    _status_rule(r"cannot\s+repro(?:duce)?|can[’'`]?t\s+repro(?:duce)?", VerdictStatus.NEEDS_REPRO),
    _status_rule(r"(?:pass(?:es|ed|ing)?|works)\s+(?:for\s+me\s+)?locally|\bflak(?:e|ey|y)\b", VerdictStatus.FLAKY),
    _status_rule(r"test[^\n]{0,30}updat|button[^\n]{0,30}moved|selector[^\n]{0,30}(?:chang|moved)", VerdictStatus.TEST_UPDATE_REQUIRED),
    _status_rule(r"root\s+cause|technical\s+reason", VerdictStatus.ROOT_CAUSE_IDENTIFIED),
    _status_rule(r"\bexplained\b|setup\s+issue|test\s+issue", VerdictStatus.EXPLAINED),
    _status_rule(r"\brevert(?:ed|ing)?\b", VerdictStatus.REVERT_PLANNED),
    _status_rule(r"investigat|working\s+on|looking\s+into|i'?ll\s+look|as\s+we\s+speak", VerdictStatus.INVESTIGATING),
    _status_rule(r"still\s+fail(?:ing|s)?|keeps\s+failing|issue\s+persists", VerdictStatus.STILL_FAILING),
)

STATUS_PRIORITY: dict[VerdictStatus, int] = {
    VerdictStatus.STILL_FAILING: 90,
    VerdictStatus.BLOCKER: 90,
    VerdictStatus.RESOLVED: 85,
    VerdictStatus.NOT_BLOCKING: 80,
    VerdictStatus.REVERT_PLANNED: 80,
    VerdictStatus.RERUN_IN_PROGRESS: 70,
    VerdictStatus.FIX_IN_PROGRESS: 65,
    VerdictStatus.TRACKED: 60,
    VerdictStatus.ASSIGNED: 55,
    VerdictStatus.INVESTIGATING: 50,
    VerdictStatus.FLAKY: 45,
    VerdictStatus.TEST_UPDATE_REQUIRED: 45,
    VerdictStatus.NEEDS_REPRO: 40,
    VerdictStatus.ROOT_CAUSE_IDENTIFIED: 40,
    VerdictStatus.ACKNOWLEDGED: 35,
    VerdictStatus.EXPLAINED: 35,
    VerdictStatus.NEEDS_REVIEW: 30,
}

ATTENTION_STATUSES = frozenset(
    {
        VerdictStatus.STILL_FAILING,
        VerdictStatus.NEEDS_ATTENTION,
        VerdictStatus.UNCLEAR,
        VerdictStatus.NEEDS_REVIEW,
    }
)
IN_PROGRESS_STATUSES = frozenset(
    {
        VerdictStatus.FIX_IN_PROGRESS,
        VerdictStatus.INVESTIGATING,
        VerdictStatus.TRACKED,
        VerdictStatus.RERUN_IN_PROGRESS,
        VerdictStatus.ASSIGNED,
        VerdictStatus.REVERT_PLANNED,
    }
)


def parse_suite_status(text: str) -> SuiteStatus:
    if FAILED_STATUS_RE.search(text or ""):
        return SuiteStatus.FAILED
    if PASSED_STATUS_RE.search(text or ""):
        return SuiteStatus.PASSED
    return SuiteStatus.PENDING


def suite_for_message(message: Message, test_bots: dict[str, str]) -> str | None:
    if message.bot_id and message.bot_id in test_bots:
        return test_bots[message.bot_id]
    return None


def extract_failed_test_names(text: str) -> list[str]:
    processed = unquote(text or "").replace("%2F", "/").replace("%2f", "/")
    matches = [
        *TEST_FILE_RE.findall(processed),
        *SPECS_FOR_REVIEW_RE.findall(processed),
        *BACKTICK_TEST_RE.findall(processed),
    ]
    names: list[str] = []
    for match in matches:
        if PATH_BLOCKLIST_RE.search(match):
            continue
        name = normalize_item_name(match)
        if len(name) < 5 or NAME_BLOCKLIST_RE.match(name) or PAGE_OBJECT_RE.search(name):
            continue
        if name not in names:
            names.append(name)
    return names


def _mentioned_tests(text: str, tests: Iterable[str]) -> list[str]:
    lowered = text.lower()
    return [test for test in tests if test.lower() in lowered]


def _best_status(text: str, *, human: bool) -> tuple[VerdictStatus, int] | None:
    best: tuple[VerdictStatus, int] | None = None
    for rule in STATUS_RULES:
        if not rule.pattern.search(text):
            continue
        priority = STATUS_PRIORITY.get(rule.status, 20)
        if not human:
            priority = min(priority, BOT_MESSAGE_PRIORITY_CAP)
        if best is None or priority > best[1]:
            best = (rule.status, priority)
    return best


def classify_test_thread(thread: ThreadContext, tests: list[str]) -> dict[str, ClassificationVerdict]:
    """Chronological per-test status; a later equal-or-higher priority statement wins."""
    statuses: dict[str, tuple[VerdictStatus, int, str]] = {}
    for message in thread.messages:
        text = extract_all_text(message)
        if not text:
            continue
        mentioned = _mentioned_tests(text, tests)
        targets = mentioned or (list(tests) if STATUS_KEYWORD_RE.search(text) else [])
        if not targets:
            continue
        best = _best_status(text, human=not message.is_bot)
        if best is None:
            continue
        status, priority = best
        for test in targets:
            current = statuses.get(test)
            if current is None or priority >= current[1]:
                statuses[test] = (status, priority, text)

    verdicts: dict[str, ClassificationVerdict] = {}
    for test in tests:
        if test in statuses:
            status, priority, text = statuses[test]
            verdicts[test] = ClassificationVerdict(
                item_id=test,
                status=status,
                confidence=priority,
                reasoning=" ".join(text.split())[:160],
            )
        else:
            verdicts[test] = ClassificationVerdict(
                item_id=test,
                status=VerdictStatus.NEEDS_REVIEW,
                confidence=STATUS_PRIORITY[VerdictStatus.NEEDS_REVIEW],
                reasoning="no review activity for this test",
            )
    return verdicts


def _was_reviewed_as_open(verdict: ClassificationVerdict) -> bool:
    # Fallback verdicts (unaddressed tests, model failures) were never reviewed.
    if verdict.status == VerdictStatus.NEEDS_ATTENTION:
        return True
    return verdict.status == VerdictStatus.UNCLEAR and verdict.used_semantic_model


def apply_recent_resolution(
    thread: ThreadContext,
    verdicts: dict[str, ClassificationVerdict],
) -> dict[str, ClassificationVerdict]:
    """Promote reviewed attention verdicts when a recent human reply says the test passes now.

    A reply that names tests only clears those tests. `needs_review` verdicts are
    never promoted: nobody has looked at those tests yet.
    """
    recent = [reply for reply in thread.replies[-RECENT_REPLY_WINDOW:] if not reply.is_bot]
    signal = next(
        (reply for reply in reversed(recent) if PASSES_NOW_RE.search(extract_all_text(reply))),
        None,
    )
    if signal is None:
        return dict(verdicts)
    signal_text = extract_all_text(signal)
    named = set(_mentioned_tests(signal_text, verdicts))
    updated: dict[str, ClassificationVerdict] = {}
    for test, verdict in verdicts.items():
        in_scope = not named or test in named
        if in_scope and _was_reviewed_as_open(verdict):
            updated[test] = verdict.model_copy(
                update={
                    "status": VerdictStatus.RESOLVED,
                    "reasoning": f"resolution signal in recent reply: {signal_text[:120]}",
                }
            )
        else:
            updated[test] = verdict
    return updated


def section_status(verdicts: dict[str, ClassificationVerdict]) -> SectionStatus:
    if not verdicts:
        return SectionStatus.AWAITING_REVIEW
    statuses = [verdict.status for verdict in verdicts.values()]
    if VerdictStatus.BLOCKER in statuses:
        return SectionStatus.BLOCKER_FOUND
    if any(status in ATTENTION_STATUSES for status in statuses):
        return SectionStatus.NEEDS_ATTENTION
    if any(status in IN_PROGRESS_STATUSES for status in statuses):
        return SectionStatus.IN_PROGRESS
    return SectionStatus.REVIEWED_NOT_BLOCKING
