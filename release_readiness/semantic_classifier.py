"""Optional language-model classification of ambiguous thread items."""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Iterable

from pydantic import ValidationError

from .message_blocks import extract_all_text
from .models import SEMANTIC_STATUSES, ClassificationVerdict, ThreadContext, VerdictStatus, coerce_verdict_status
from .patterns import RESOLUTION_SIGNAL_RE
from .runtime_contracts import SemanticItemPayload, SemanticResponsePayload
from .tools.ollama_tools import OllamaGateway, clean_response, extract_balanced_json

DEFAULT_CONFIDENCE_FLOOR = 70
MAX_TURN_CHARS = 1500

STATUS_GUIDE: dict[VerdictStatus, str] = {
    VerdictStatus.RESOLVED: "fixed, passed on rerun or confirmed working",
    VerdictStatus.NOT_BLOCKING: "reviewed and explicitly not blocking the release",
    VerdictStatus.FIX_IN_PROGRESS: "a fix or PR is being prepared",
    VerdictStatus.FLAKY: "flaky or environment specific, passes locally",
    VerdictStatus.NEEDS_ATTENTION: "blocking or needs action before release",
    VerdictStatus.INVESTIGATING: "someone is looking into it",
    VerdictStatus.TRACKED: "known issue with a ticket",
    VerdictStatus.STILL_FAILING: "still failing after rerun or fix",
    VerdictStatus.UNCLEAR: "no clear signal in the thread",
}

SUBJECT_LABELS = {
    "tests": "failing automated tests",
    "tickets": "tickets mentioned as possible release blockers",
}

TEST_SUFFIX_RE = re.compile(r"(?:\.test|\.spec|_test|_spec)$", re.IGNORECASE)
EXTENSION_RE = re.compile(r"\.(?:[cm]?[jt]sx?|py)$", re.IGNORECASE)


def normalize_item_name(name: str) -> str:
    base = re.split(r"[\\/]", (name or "").strip().strip("`"))[-1]
    base = EXTENSION_RE.sub("", base)
    base = TEST_SUFFIX_RE.sub("", base)
    return base.lower()


def needs_review_verdict(item: str, reason: str) -> ClassificationVerdict:
    return ClassificationVerdict(
        item_id=item,
        status=VerdictStatus.UNCLEAR,
        confidence=0,
        reasoning=f"needs review: {reason}",
        used_semantic_model=False,
    )


def fallback_verdicts(items: Iterable[str], reason: str) -> dict[str, ClassificationVerdict]:
    return {item: needs_review_verdict(item, reason) for item in items}


def build_prompt(thread: ThreadContext, items: list[str], *, subject: str = "tests") -> str:
    lines = [
        "You review a release coordination thread from a team chat.",
        f"Classify each of the numbered {SUBJECT_LABELS.get(subject, subject)} using only the thread.",
        "The most recent statements win over older ones.",
        "",
        "THREAD:",
    ]
    root_id = thread.root_message.id
    for message in thread.messages:
        text = extract_all_text(message)[:MAX_TURN_CHARS]
        if not text:
            continue
        label = "[Bot]" if message.is_bot else f"[User:{message.author_ref or 'unknown'}]"
        marker = ""
        if message.id != root_id and not message.is_bot and RESOLUTION_SIGNAL_RE.search(text):
            marker = " [RESOLUTION SIGNAL]"
        lines.append(f"{label}{marker} {text}")
    lines.extend(["", "ITEMS:"])
    lines.extend(f"{index}. {item}" for index, item in enumerate(items, start=1))
    lines.extend(["", "STATUS OPTIONS:"])
    lines.extend(f"- {status.value}: {meaning}" for status, meaning in STATUS_GUIDE.items())
    lines.extend(
        [
            "",
            "Answer with JSON only, in this shape:",
            '{"items": [{"id": 1, "name": "<item>", "status": "<status>", '
            '"confidence": 0-100, "reasoning": "<one sentence>"}], "summary": "<one sentence>"}',
        ]
    )
    return "\n".join(lines)


def _resolve_item(entry: SemanticItemPayload, items: list[str]) -> str | None:
    if entry.id is not None and 1 <= entry.id <= len(items):
        return items[entry.id - 1]
    if not entry.name:
        return None
    wanted = normalize_item_name(entry.name)
    if not wanted:
        return None
    normalized = {item: normalize_item_name(item) for item in items}
    for item, name in normalized.items():
        if name == wanted:
            return item
    for item, name in normalized.items():
        if name and (wanted in name or name in wanted):
            return item
    return None


def parse_verdicts(raw: str, items: list[str]) -> dict[str, ClassificationVerdict] | None:
    """Parse a model answer into one verdict per item, or None when unusable."""
    json_text = extract_balanced_json(clean_response(raw))
    if json_text is None:
        return None
    try:
        payload = SemanticResponsePayload.from_raw(json.loads(json_text))
    except (json.JSONDecodeError, ValidationError, ValueError):
        return None
    verdicts: dict[str, ClassificationVerdict] = {}
    for entry in payload.items:
        item = _resolve_item(entry, items)
        if item is None or item in verdicts:
            continue
        verdicts[item] = ClassificationVerdict(
            item_id=item,
            status=coerce_verdict_status(entry.status, allowed=SEMANTIC_STATUSES),
            confidence=entry.confidence,
            reasoning=entry.reasoning,
            used_semantic_model=True,
        )
    return {
        item: verdicts.get(item) or needs_review_verdict(item, "not covered by the semantic answer")
        for item in items
    }


def merge_verdicts(
    heuristic: dict[str, ClassificationVerdict],
    semantic: dict[str, ClassificationVerdict],
    *,
    floor: int = DEFAULT_CONFIDENCE_FLOOR,
) -> dict[str, ClassificationVerdict]:
    """Pick one verdict per item: a confident semantic verdict, else the heuristic one."""
    merged: dict[str, ClassificationVerdict] = {}
    for item in [*heuristic, *(key for key in semantic if key not in heuristic)]:
        candidate = semantic.get(item)
        if candidate is not None and candidate.used_semantic_model and candidate.confidence >= floor:
            merged[item] = candidate
        elif item in heuristic:
            merged[item] = heuristic[item]
        elif candidate is not None:
            merged[item] = candidate
    return merged


class SemanticClassifier:
    """Best-effort classifier; every failure resolves to a fallback verdict."""

    def __init__(self, *, gateway: OllamaGateway | None, timeout_seconds: float = 60.0):
        self.gateway = gateway
        self.timeout_seconds = min(timeout_seconds, 60.0)
        self.logger = logging.getLogger("semantic_classifier")

    async def is_available(self) -> bool:
        if self.gateway is None:
            return False
        return await self.gateway.is_available()

    async def classify(
        self,
        thread: ThreadContext,
        items: Iterable[str],
        *,
        subject: str = "tests",
    ) -> dict[str, ClassificationVerdict]:
        unique = list(dict.fromkeys(item for item in items if item))
        if not unique:
            return {}
        if not await self.is_available():
            return {
                item: ClassificationVerdict(
                    item_id=item,
                    status=VerdictStatus.UNCLEAR,
                    confidence=0,
                    reasoning="semantic model unavailable",
                    used_semantic_model=False,
                )
                for item in unique
            }
        assert self.gateway is not None
        prompt = build_prompt(thread, unique, subject=subject)
        try:
            raw = await asyncio.wait_for(self.gateway.generate(prompt), timeout=self.timeout_seconds)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning(
                "semantic_generate_failed thread=%s items=%s error=%s",
                thread.thread_key,
                len(unique),
                exc or type(exc).__name__,
            )
            return fallback_verdicts(unique, "semantic model call failed")
        verdicts = parse_verdicts(raw, unique)
        if verdicts is None:
            self.logger.warning(
                "semantic_parse_failed thread=%s items=%s preview=%s",
                thread.thread_key,
                len(unique),
                raw[:120],
            )
            return fallback_verdicts(unique, "semantic answer could not be parsed")
        self.logger.info(
            "semantic_classified thread=%s items=%s used=%s",
            thread.thread_key,
            len(unique),
            sum(1 for verdict in verdicts.values() if verdict.used_semantic_model),
        )
        return verdicts
