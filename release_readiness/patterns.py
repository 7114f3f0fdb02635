"""Rule registries and pure text classifiers for release-blocking language.

Every classification axis (blocking, critical, resolution, UI exceptions,
hotfix context) is an ordered tuple of :class:`Rule` entries. Classifiers only
walk the registries, so rules can be added or tested without touching control
flow. All regexes use bounded repetition, so evaluation stays near-linear in
the length of the text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Iterable

from .models import TicketRef

DEFAULT_NEGATION_WINDOW = 4
DEFAULT_ESCALATION_MENTIONS: tuple[str, ...] = ("@test-managers", "@escalation")
DEFAULT_SUMMARY_HEADER_PATTERNS: tuple[str, ...] = (
    r"frontend\s+release\s+(?:update|pipeline\s+aborted)",
)
DEFAULT_NEGATED_PHRASES: tuple[str, ...] = (
    "not blocking",
    "not a blocker",
    "not urgent",
    "not critical",
    "not super high priority",
    "low priority",
    "no need to tackle immediately",
    "not tackle immediately",
    "not immediately",
    "no longer blocking",
)

TICKET_RE = re.compile(r"\b[A-Z]+-\d+\b")
RELEASE_TERM_RE = re.compile(r"\b(?:release|deploy(?:ment)?|prod(?:uction)?)\b", re.IGNORECASE)
LIST_HEADER_RE = re.compile(
    r"(?P<blockers>\bblockers?\b[^\n:]{0,80}:|\bblockers?\s+for\b)"
    r"|(?P<hotfixes>\blist\s+of\s+hot[-\s]?fix(?:es)?\b|\bhot[-\s]?fix(?:es)?\s*:)",
    re.IGNORECASE,
)
THREAD_LINK_RE = re.compile(
    r"mentioned\s+(?:here|in\s+(?:the\s+)?thread)?\s*:?\s*<([^|>\s]+)",
    re.IGNORECASE,
)
NUMERIC_ID_RE = re.compile(r"\b(\d{4,})\b")
RESOLUTION_SIGNAL_RE = re.compile(
    r"\b(?:(?:pass(?:es|ed|ing)?|works)\s+(?:for\s+me\s+)?locally"
    r"|passed\s+on\s+re[-\s]?run|re[-\s]?run\s+passed"
    r"|fixed|resolved|flak(?:e|ey|y)|not\s+blocking|not\s+a\s+blocker)\b",
    re.IGNORECASE,
)


class RuleEffect(str, Enum):
    EXPLICIT_BLOCKING = "explicit_blocking"
    CONTEXTUAL_BLOCKING = "contextual_blocking"
    NEGATED_BLOCKING = "negated_blocking"
    CRITICAL = "critical"
    NEGATE_CRITICAL = "negate_critical"
    RESOLUTION = "resolution"
    UI_EXCEPTION = "ui_exception"
    HOTFIX_CONTEXT = "hotfix_context"


class SignalStrength(int, Enum):
    NONE = 0
    CONTEXTUAL = 1
    EXPLICIT = 2


@dataclass(frozen=True)
class Rule:
    name: str
    pattern: re.Pattern[str]
    effect: RuleEffect
    requires: re.Pattern[str] | None = None
    unless: re.Pattern[str] | None = None

    def applies(self, text: str) -> bool:
        if self.requires is not None and not self.requires.search(text):
            return False
        if self.unless is not None and self.unless.search(text):
            return False
        return self.pattern.search(text) is not None


def _rule(
    name: str,
    pattern: str,
    effect: RuleEffect,
    *,
    requires: re.Pattern[str] | None = None,
    unless: re.Pattern[str] | None = None,
) -> Rule:
    return Rule(
        name=name,
        pattern=re.compile(pattern, re.IGNORECASE | re.MULTILINE),
        effect=effect,
        requires=requires,
        unless=unless,
    )


UI_EXCEPTION_RULES: tuple[Rule, ...] = (
    _rule("add block dialog", r"\badd\s+block\s+dialog\b", RuleEffect.UI_EXCEPTION),
    _rule("create block panel", r"\bcreate\s+block\s+panel\b", RuleEffect.UI_EXCEPTION),
    _rule("block dialog", r"\bblock\s+dialog\b", RuleEffect.UI_EXCEPTION),
    _rule("block panel", r"\bblock\s+panel\b", RuleEffect.UI_EXCEPTION),
    _rule(
        "content block",
        r"\b(?:code|text|content|answer|question|image|video|slide|layout)\s+blocks?\b",
        RuleEffect.UI_EXCEPTION,
    ),
    _rule("block editor", r"\bblocks?\s+(?:editor|component)s?\b", RuleEffect.UI_EXCEPTION),
    _rule("insert block", r"\b(?:insert|delete)\s+blocks?\b", RuleEffect.UI_EXCEPTION),
    _rule("labels of blocks", r"\blabels\s+of\s+[^\n]{0,40}?\bblocks\b", RuleEffect.UI_EXCEPTION),
    _rule("building block", r"\bbuilding\s+blocks?\b", RuleEffect.UI_EXCEPTION),
    _rule("ad blocker", r"\bad[-\s]?blockers?\b", RuleEffect.UI_EXCEPTION, unless=RELEASE_TERM_RE),
)

NEGATED_BLOCKING_RULES: tuple[Rule, ...] = (
    _rule("not a blocker", r"\bnot\s+(?:a\s+)?(?:release\s+)?blockers?\b", RuleEffect.NEGATED_BLOCKING),
    _rule("not blocking", r"\bnot\s+(?:\w+\s+){0,2}blocking\b", RuleEffect.NEGATED_BLOCKING),
    _rule("no longer blocking", r"\bno\s+longer\s+(?:a\s+)?block(?:ing|er)\b", RuleEffect.NEGATED_BLOCKING),
    _rule("non-blocking", r"\bnon[-\s]?blocking\b", RuleEffect.NEGATED_BLOCKING),
)


def build_blocking_rules(escalation_mentions: Iterable[str] = DEFAULT_ESCALATION_MENTIONS) -> tuple[Rule, ...]:
    rules = [
        _rule("release blocker", r"\brelease\s*blockers?\b", RuleEffect.EXPLICIT_BLOCKING),
        _rule("blocker", r"\bblockers?\b", RuleEffect.EXPLICIT_BLOCKING),
        _rule("blocking", r"\bblocking\b", RuleEffect.EXPLICIT_BLOCKING),
        _rule("blocks release", r"\bblocks?\b", RuleEffect.EXPLICIT_BLOCKING, requires=RELEASE_TERM_RE),
        _rule("no go", r"\bno[-_\s]?go\b", RuleEffect.CONTEXTUAL_BLOCKING),
        _rule("hotfix", r"\bhot[-\s]?fix(?:es|ed|ing)?\b", RuleEffect.CONTEXTUAL_BLOCKING),
    ]
    mentions = [mention.strip() for mention in escalation_mentions if mention and mention.strip()]
    if mentions:
        alternatives = "|".join(re.escape(mention) for mention in mentions)
        rules.append(_rule("escalation", rf"(?:{alternatives})(?![\w-])", RuleEffect.CONTEXTUAL_BLOCKING))
    return tuple(rules)


BLOCKING_RULES: tuple[Rule, ...] = build_blocking_rules()

CRITICAL_RULES: tuple[Rule, ...] = (
    _rule("critical", r"\bcritical\b(?!\s*path)", RuleEffect.CRITICAL),
    _rule("urgent", r"\burgent\b", RuleEffect.CRITICAL),
    _rule("high priority", r"\bhigh\s+priority\b", RuleEffect.CRITICAL),
)

CRITICAL_NEGATION_RULES: tuple[Rule, ...] = (
    _rule("not high priority", r"\bnot\s+(?:a\s+)?(?:super\s+)?high\s+priority\b", RuleEffect.NEGATE_CRITICAL),
    _rule("not urgent", r"\bnot\s+urgent\b", RuleEffect.NEGATE_CRITICAL),
    _rule("not critical", r"\bnot\s+critical\b", RuleEffect.NEGATE_CRITICAL),
    _rule("low priority", r"\blow\s+priority\b", RuleEffect.NEGATE_CRITICAL),
    _rule(
        "no need to tackle immediately",
        r"\bno\s+need\s+to\s+tackle\s+immediately\b",
        RuleEffect.NEGATE_CRITICAL,
    ),
)

RESOLUTION_RULES: tuple[Rule, ...] = (
    _rule("resolved", r"\bresolved\b", RuleEffect.RESOLUTION),
    _rule("fixed", r"\bfixed\b", RuleEffect.RESOLUTION),
    _rule("deployed", r"\bdeployed\b", RuleEffect.RESOLUTION),
    *(
        Rule(name=rule.name, pattern=rule.pattern, effect=RuleEffect.RESOLUTION)
        for rule in NEGATED_BLOCKING_RULES
    ),
)

HOTFIX_RULES: tuple[Rule, ...] = (
    _rule("list of hotfixes", r"\blist\s+of\s+hot[-\s]?fix(?:es)?\b", RuleEffect.HOTFIX_CONTEXT),
    _rule("hotfix header", r"\bhot[-\s]?fix(?:es)?\s*:", RuleEffect.HOTFIX_CONTEXT),
    _rule("hotfix bullet", r"^[ \t]*(?:•|-|\*)[^\n]*\bhot[-\s]?fix", RuleEffect.HOTFIX_CONTEXT),
    _rule("hotfix pr", r"\bhot[-\s]?fix\s+(?:pr|branch)\b", RuleEffect.HOTFIX_CONTEXT),
    _rule("prepare hotfix", r"\bprepare\s+(?:a\s+)?hot[-\s]?fix\b", RuleEffect.HOTFIX_CONTEXT),
    _rule("will hotfix", r"\b(?:should|will|must|need\s+to|going\s+to)\s+(?:\w+\s+){0,3}?hot[-\s]?fix", RuleEffect.HOTFIX_CONTEXT),
)


@lru_cache(maxsize=16)
def _window_negation_re(window: int) -> re.Pattern[str]:
    size = max(0, int(window))
    return re.compile(
        r"\b(?:not|isn['’]?t|no|doesn['’]?t(?:\s+have)?)\b"
        rf"(?:\W+\w+){{0,{size}}}?\W+"
        r"(?:critical\b(?!\s*path)|urgent\b|high\s+priority\b)",
        re.IGNORECASE,
    )


def _clean(text: object) -> str:
    if text is None:
        return ""
    return text if isinstance(text, str) else str(text)


def _mask(text: str, rules: Iterable[Rule]) -> str:
    masked = text
    for rule in rules:
        if rule.unless is not None and rule.unless.search(masked):
            continue
        masked = rule.pattern.sub(" ", masked)
    return masked


def _matching(text: str, rules: Iterable[Rule]) -> list[Rule]:
    return [rule for rule in rules if rule.applies(text)]


def blocking_strength(text: object, *, rules: tuple[Rule, ...] = BLOCKING_RULES) -> SignalStrength:
    cleaned = _clean(text)
    if not cleaned.strip():
        return SignalStrength.NONE
    masked = _mask(_mask(cleaned, UI_EXCEPTION_RULES), NEGATED_BLOCKING_RULES)
    strength = SignalStrength.NONE
    for rule in _matching(masked, rules):
        if rule.effect == RuleEffect.EXPLICIT_BLOCKING:
            return SignalStrength.EXPLICIT
        strength = SignalStrength.CONTEXTUAL
    return strength


def has_blocking_indicators(text: object, *, rules: tuple[Rule, ...] = BLOCKING_RULES) -> bool:
    return blocking_strength(text, rules=rules) != SignalStrength.NONE


def blocking_keywords(text: object, *, rules: tuple[Rule, ...] = BLOCKING_RULES) -> list[str]:
    cleaned = _clean(text)
    masked = _mask(_mask(cleaned, UI_EXCEPTION_RULES), NEGATED_BLOCKING_RULES)
    return [rule.name for rule in _matching(masked, rules)]


def has_critical_indicators(text: object, *, negation_window: int = DEFAULT_NEGATION_WINDOW) -> bool:
    cleaned = _clean(text)
    if not cleaned.strip():
        return False
    if not _matching(cleaned, CRITICAL_RULES):
        return False
    if _matching(cleaned, CRITICAL_NEGATION_RULES):
        return False
    return _window_negation_re(negation_window).search(cleaned) is None


def has_resolution_indicators(text: object) -> bool:
    cleaned = _clean(text)
    return bool(cleaned.strip()) and bool(_matching(cleaned, RESOLUTION_RULES))


def resolution_keywords(text: object) -> list[str]:
    return [rule.name for rule in _matching(_clean(text), RESOLUTION_RULES)]


def is_hotfix_context(text: object) -> bool:
    cleaned = _clean(text)
    return bool(cleaned.strip()) and bool(_matching(cleaned, HOTFIX_RULES))


def browse_url(base_url: str | None, key: str) -> str | None:
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/browse/{key}"


def extract_tickets(
    text: object,
    *,
    browse_base_url: str | None = None,
    source_message_id: str = "",
) -> list[TicketRef]:
    seen: set[str] = set()
    tickets: list[TicketRef] = []
    for match in TICKET_RE.finditer(_clean(text)):
        key = match.group(0)
        if key in seen:
            continue
        seen.add(key)
        tickets.append(
            TicketRef(
                key=key,
                source_message_id=source_message_id,
                url=browse_url(browse_base_url, key),
            )
        )
    return tickets


def explicit_list_kind(text: object) -> str | None:
    """Return ``"blockers"`` or ``"hotfixes"`` when the text carries a list header."""
    match = LIST_HEADER_RE.search(_clean(text))
    if match is None:
        return None
    return "hotfixes" if match.group("hotfixes") else "blockers"


def _list_entries(body: str) -> list[str]:
    if "•" in body:
        return body.split("•")[1:]
    entries: list[str] = []
    for line in body.splitlines():
        stripped = line.strip()
        if stripped.startswith(("-", "*")):
            entries.append(stripped[1:])
        elif stripped.startswith("◦") and entries:
            entries[-1] += "\n" + stripped
    return entries


def parse_explicit_list(
    text: object,
    *,
    browse_base_url: str | None = None,
    source_message_id: str = "",
) -> list[TicketRef]:
    cleaned = _clean(text)
    header = LIST_HEADER_RE.search(cleaned)
    if header is None:
        return []
    seen: set[str] = set()
    tickets: list[TicketRef] = []
    for entry in _list_entries(cleaned[header.start():]):
        match = TICKET_RE.search(entry)
        if match is None or match.group(0) in seen:
            continue
        key = match.group(0)
        seen.add(key)
        link = THREAD_LINK_RE.search(entry)
        tickets.append(
            TicketRef(
                key=key,
                source_message_id=source_message_id,
                url=browse_url(browse_base_url, key),
                thread_link=link.group(1) if link else None,
            )
        )
    return tickets


def numeric_ids(text: object) -> set[str]:
    return set(NUMERIC_ID_RE.findall(_clean(text)))


def contains_negated_phrase(text: object, phrases: Iterable[str] = DEFAULT_NEGATED_PHRASES) -> bool:
    lowered = _clean(text).lower()
    return any(phrase.lower() in lowered for phrase in phrases if phrase)


class PatternMatcher:
    """Pattern engine bound to one set of tunable parameters."""

    def __init__(
        self,
        *,
        negation_window: int = DEFAULT_NEGATION_WINDOW,
        escalation_mentions: Iterable[str] = DEFAULT_ESCALATION_MENTIONS,
        browse_base_url: str | None = None,
        negated_phrases: Iterable[str] = DEFAULT_NEGATED_PHRASES,
        summary_header_patterns: Iterable[str] = DEFAULT_SUMMARY_HEADER_PATTERNS,
    ):
        self.negation_window = negation_window
        self.browse_base_url = browse_base_url
        self.negated_phrases = tuple(negated_phrases)
        self.blocking_rules = build_blocking_rules(escalation_mentions)
        self.summary_header_patterns = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in summary_header_patterns
        )

    def has_blocking_indicators(self, text: object) -> bool:
        return has_blocking_indicators(text, rules=self.blocking_rules)

    def blocking_strength(self, text: object) -> SignalStrength:
        return blocking_strength(text, rules=self.blocking_rules)

    def blocking_keywords(self, text: object) -> list[str]:
        return blocking_keywords(text, rules=self.blocking_rules)

    def has_critical_indicators(self, text: object) -> bool:
        return has_critical_indicators(text, negation_window=self.negation_window)

    def has_resolution_indicators(self, text: object) -> bool:
        return has_resolution_indicators(text)

    def resolution_keywords(self, text: object) -> list[str]:
        return resolution_keywords(text)

    def is_hotfix_context(self, text: object) -> bool:
        return is_hotfix_context(text)

    def extract_tickets(self, text: object, *, source_message_id: str = "") -> list[TicketRef]:
        return extract_tickets(
            text,
            browse_base_url=self.browse_base_url,
            source_message_id=source_message_id,
        )

    def parse_explicit_list(self, text: object, *, source_message_id: str = "") -> list[TicketRef]:
        return parse_explicit_list(
            text,
            browse_base_url=self.browse_base_url,
            source_message_id=source_message_id,
        )

    def explicit_list_kind(self, text: object) -> str | None:
        return explicit_list_kind(text)

    def is_negated_seed(self, text: object) -> bool:
        return contains_negated_phrase(text, self.negated_phrases)

    def is_status_summary_header(self, text: object) -> bool:
        cleaned = _clean(text)
        return any(pattern.search(cleaned) for pattern in self.summary_header_patterns)
