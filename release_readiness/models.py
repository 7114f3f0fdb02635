"""Domain models for issue detection and test-status classification."""
from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .message_blocks import Attachment, Block, parse_attachments, parse_blocks

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class IssueKind(str, Enum):
    BLOCKING = "blocking"
    CRITICAL = "critical"
    RESOLVED_BLOCKING = "resolved_blocking"


class SeverityFilter(str, Enum):
    BLOCKING = "blocking"
    CRITICAL = "critical"
    BOTH = "both"


class VerdictStatus(str, Enum):
    # Closed set accepted from the semantic model.
    RESOLVED = "resolved"
    NOT_BLOCKING = "not_blocking"
    FIX_IN_PROGRESS = "fix_in_progress"
    FLAKY = "flaky"
    NEEDS_ATTENTION = "needs_attention"
    INVESTIGATING = "investigating"
    TRACKED = "tracked"
    STILL_FAILING = "still_failing"
    UNCLEAR = "unclear"
    # Heuristic-only statuses.
    BLOCKER = "blocker"
    ASSIGNED = "assigned"
    RERUN_IN_PROGRESS = "rerun_in_progress"
    ACKNOWLEDGED = "acknowledged"
    NEEDS_REPRO = "needs_repro"
    TEST_UPDATE_REQUIRED = "test_update_required"
    ROOT_CAUSE_IDENTIFIED = "root_cause_identified"
    EXPLAINED = "explained"
    REVERT_PLANNED = "revert_planned"
    NEEDS_REVIEW = "needs_review"


SEMANTIC_STATUSES: frozenset[VerdictStatus] = frozenset(
    {
        VerdictStatus.RESOLVED,
        VerdictStatus.NOT_BLOCKING,
        VerdictStatus.FIX_IN_PROGRESS,
        VerdictStatus.FLAKY,
        VerdictStatus.NEEDS_ATTENTION,
        VerdictStatus.INVESTIGATING,
        VerdictStatus.TRACKED,
        VerdictStatus.STILL_FAILING,
        VerdictStatus.UNCLEAR,
    }
)

# Shared aliases for free-form status values coming from model payloads.
STATUS_ALIASES: dict[str, VerdictStatus] = {
    "FLAKEY": VerdictStatus.FLAKY,
    "FLAKY_ENV_SPECIFIC": VerdictStatus.FLAKY,
    "NOT_A_BLOCKER": VerdictStatus.NOT_BLOCKING,
    "NON_BLOCKING": VerdictStatus.NOT_BLOCKING,
    "FIXED": VerdictStatus.RESOLVED,
    "PASSED": VerdictStatus.RESOLVED,
    "IN_PROGRESS": VerdictStatus.FIX_IN_PROGRESS,
    "KNOWN_ISSUE": VerdictStatus.TRACKED,
    "FAILING": VerdictStatus.STILL_FAILING,
}


def coerce_verdict_status(
    value: Any,
    *,
    allowed: frozenset[VerdictStatus] = SEMANTIC_STATUSES,
    fallback: VerdictStatus = VerdictStatus.UNCLEAR,
) -> VerdictStatus:
    if isinstance(value, VerdictStatus):
        return value if value in allowed else fallback
    if not isinstance(value, str):
        return fallback
    normalized = re.sub(r"[\s\-/]+", "_", value.strip()).upper()
    if not normalized:
        return fallback
    status: VerdictStatus | None = None
    if normalized.lower() in VerdictStatus._value2member_map_:
        status = VerdictStatus(normalized.lower())
    elif normalized in STATUS_ALIASES:
        status = STATUS_ALIASES[normalized]
    if status is None or status not in allowed:
        return fallback
    return status


def message_sort_key(message_id: str) -> float:
    """Numeric ordering key for Slack-style ``ts`` ids; malformed ids sort first."""
    try:
        return float(message_id)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class Message:
    id: str
    text: str = ""
    author_ref: str = ""
    thread_root_id: str | None = None
    reply_count: int = 0
    is_bot: bool = False
    bot_id: str | None = None
    permalink: str | None = None
    blocks: tuple[Block, ...] = ()
    attachments: tuple[Attachment, ...] = ()

    @property
    def sort_key(self) -> float:
        return message_sort_key(self.id)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> Message:
        raw = payload or {}
        bot_id = _optional_str(raw.get("bot_id"))
        subtype = _optional_str(raw.get("subtype"))
        author = _optional_str(raw.get("user")) or _optional_str(raw.get("username")) or bot_id or ""
        try:
            reply_count = int(raw.get("reply_count") or 0)
        except (TypeError, ValueError):
            reply_count = 0
        return cls(
            id=str(raw.get("ts") or raw.get("id") or ""),
            text=str(raw.get("text") or ""),
            author_ref=author,
            thread_root_id=_optional_str(raw.get("thread_ts")),
            reply_count=reply_count,
            is_bot=bool(bot_id) or subtype == "bot_message",
            bot_id=bot_id,
            permalink=_optional_str(raw.get("permalink")),
            blocks=parse_blocks(raw.get("blocks")),
            attachments=parse_attachments(raw.get("attachments")),
        )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ThreadContext:
    root_message: Message
    replies: tuple[Message, ...] = field(default_factory=tuple)

    @property
    def has_thread(self) -> bool:
        return len(self.replies) > 0

    @property
    def messages(self) -> Iterator[Message]:
        yield self.root_message
        yield from self.replies

    @property
    def thread_key(self) -> str:
        return self.root_message.id


@dataclass(frozen=True)
class TicketRef:
    key: str
    source_message_id: str = ""
    url: str | None = None
    thread_link: str | None = None


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: IssueKind
    tickets: tuple[TicketRef, ...] = ()
    text: str = ""
    timestamp: str = ""
    has_thread: bool = False
    resolution_text: str | None = None
    hotfix_commitment: bool = False
    source_ref: str = ""

    @model_validator(mode="after")
    def _ticket_or_text(self) -> Issue:
        if not self.tickets and not self.text.strip():
            raise ValueError("issue requires at least one ticket or non-empty text")
        keys = [ticket.key for ticket in self.tickets]
        if len(keys) != len(set(keys)):
            raise ValueError("issue tickets must be unique by key")
        return self

    @property
    def ticket_keys(self) -> list[str]:
        return [ticket.key for ticket in self.tickets]


class ClassificationVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    item_id: str
    status: VerdictStatus = VerdictStatus.UNCLEAR
    confidence: int = 0
    reasoning: str = ""
    used_semantic_model: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> int:
        try:
            number = int(round(float(value)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, number))


class DetectionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    channel: str = Field(..., min_length=1)
    date: str = "today"
    severity_filter: SeverityFilter = SeverityFilter.BOTH
    max_threads: int = Field(default=50, ge=0)
    max_messages: int = Field(default=200, ge=1)
    include_resolved: bool = True
    use_semantic: bool = True

    @field_validator("channel")
    @classmethod
    def _strip_channel(cls, value: str) -> str:
        stripped = value.strip().lstrip("#")
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped

    @field_validator("date")
    @classmethod
    def _validate_date(cls, value: str) -> str:
        normalized = (value or "today").strip().lower()
        if normalized == "today":
            return normalized
        if DATE_RE.match(normalized):
            try:
                datetime.date.fromisoformat(normalized)
            except ValueError as exc:
                raise ValueError(f"date is not a valid calendar day: {exc}") from exc
            return normalized
        raise ValueError("date must be 'today' or YYYY-MM-DD")


class DetectionResult(BaseModel):
    issues: list[Issue] = Field(default_factory=list)
    stage: str = "done"
    partial_failure: bool = False
    failed_queries: list[str] = Field(default_factory=list)
    analyzed_threads: int = 0
    total_messages: int = 0
    semantic_used: bool = False
    elapsed_seconds: float = 0.0

    def by_kind(self, kind: IssueKind) -> list[Issue]:
        return [issue for issue in self.issues if issue.kind == kind]


class SuiteStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    PENDING = "pending"


class SectionStatus(str, Enum):
    AWAITING_REVIEW = "awaiting_review"
    BLOCKER_FOUND = "blocker_found"
    NEEDS_ATTENTION = "needs_attention"
    IN_PROGRESS = "in_progress"
    REVIEWED_NOT_BLOCKING = "reviewed_not_blocking"


class SuiteResult(BaseModel):
    suite: str
    status: SuiteStatus = SuiteStatus.PENDING
    message_id: str = ""
    timestamp: str = ""
    permalink: str | None = None
    failed_tests: list[str] = Field(default_factory=list)
    verdicts: dict[str, ClassificationVerdict] = Field(default_factory=dict)
    section_status: SectionStatus = SectionStatus.AWAITING_REVIEW
    has_review: bool = False


class ReleaseDecision(str, Enum):
    READY = "ready"
    BLOCKED = "blocked"
    UNCERTAIN = "uncertain"


class ReleaseReadiness(BaseModel):
    date: str
    channel: str
    decision: ReleaseDecision
    issues: DetectionResult
    suites: list[SuiteResult] = Field(default_factory=list)
