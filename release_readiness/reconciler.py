"""Merge detection candidates into issues with last-signal-wins reconciliation."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable

from .models import Issue, IssueKind, SeverityFilter, TicketRef, message_sort_key


class Signal(str, Enum):
    BLOCKING = "blocking"
    CRITICAL = "critical"
    RESOLVED = "resolved"


KIND_RANK: dict[IssueKind, int] = {
    IssueKind.BLOCKING: 0,
    IssueKind.CRITICAL: 1,
    IssueKind.RESOLVED_BLOCKING: 2,
}
# Severity signals sort before a resolution carried by the same message.
SIGNAL_ORDER: dict[Signal, int] = {Signal.BLOCKING: 0, Signal.CRITICAL: 0, Signal.RESOLVED: 1}


@dataclass(frozen=True)
class Candidate:
    """One signal about one subject, observed in one message.

    ``subject_id`` is the message the free-text statement was made in; it is the
    grouping key when no ticket is attached. ``evidence_id`` is the message that
    carries the signal.
    """

    signal: Signal
    subject_id: str
    evidence_id: str
    timestamp: str
    text: str = ""
    ticket: TicketRef | None = None
    thread_key: str = ""
    has_thread: bool = False
    hotfix_commitment: bool = False
    confidence: int = 90
    source_ref: str = ""

    @property
    def group_key(self) -> str:
        if self.ticket is not None:
            return self.ticket.key
        return f"message:{self.subject_id}"


def _dedupe(candidates: Iterable[Candidate]) -> list[Candidate]:
    seen: dict[tuple[str, str, Signal], Candidate] = {}
    for candidate in candidates:
        marker = (candidate.group_key, candidate.evidence_id, candidate.signal)
        existing = seen.get(marker)
        if existing is None:
            seen[marker] = candidate
        elif candidate.hotfix_commitment and not existing.hotfix_commitment:
            seen[marker] = replace(existing, hotfix_commitment=True)
    return list(seen.values())


def _merge_tickets(members: list[Candidate]) -> tuple[TicketRef, ...]:
    merged: dict[str, TicketRef] = {}
    for candidate in members:
        ticket = candidate.ticket
        if ticket is None:
            continue
        current = merged.get(ticket.key)
        if current is None:
            merged[ticket.key] = ticket
            continue
        merged[ticket.key] = replace(
            current,
            url=current.url or ticket.url,
            thread_link=current.thread_link or ticket.thread_link,
        )
    return tuple(merged.values())


def _reconcile_group(members: list[Candidate]) -> Issue | None:
    ordered = sorted(
        _dedupe(members),
        key=lambda item: (message_sort_key(item.timestamp), item.evidence_id, SIGNAL_ORDER[item.signal]),
    )
    severity: IssueKind | None = None
    origin: Candidate | None = None
    resolved_by: Candidate | None = None
    hotfix = False
    for candidate in ordered:
        if candidate.signal == Signal.RESOLVED:
            if severity is not None:
                resolved_by = candidate
            continue
        kind = IssueKind.BLOCKING if candidate.signal == Signal.BLOCKING else IssueKind.CRITICAL
        if severity is None or KIND_RANK[kind] < KIND_RANK[severity]:
            severity = kind
            origin = candidate
        hotfix = hotfix or candidate.hotfix_commitment
        resolved_by = None

    if severity is None or origin is None:
        return None
    tickets = _merge_tickets(ordered)
    if not tickets and not origin.text.strip():
        return None
    # Hotfix commitments stay blocking even after a fix is announced.
    final_kind = IssueKind.RESOLVED_BLOCKING if resolved_by is not None and not hotfix else severity
    return Issue(
        kind=final_kind,
        tickets=tickets,
        text=origin.text,
        timestamp=origin.timestamp,
        has_thread=any(candidate.has_thread for candidate in ordered),
        resolution_text=resolved_by.text if final_kind == IssueKind.RESOLVED_BLOCKING and resolved_by else None,
        hotfix_commitment=hotfix,
        source_ref=origin.source_ref,
    )


def reconcile(candidates: Iterable[Candidate]) -> list[Issue]:
    groups: dict[str, list[Candidate]] = {}
    for candidate in candidates:
        groups.setdefault(candidate.group_key, []).append(candidate)
    reconciled: list[tuple[str, Issue]] = []
    for key, members in groups.items():
        issue = _reconcile_group(members)
        if issue is not None:
            reconciled.append((key, issue))
    reconciled.sort(key=lambda pair: (KIND_RANK[pair[1].kind], message_sort_key(pair[1].timestamp), pair[0]))
    return [issue for _key, issue in reconciled]


def apply_severity_filter(
    issues: Iterable[Issue],
    severity_filter: SeverityFilter,
    *,
    include_resolved: bool = True,
) -> list[Issue]:
    allowed: set[IssueKind] = set()
    if severity_filter in (SeverityFilter.BLOCKING, SeverityFilter.BOTH):
        allowed.add(IssueKind.BLOCKING)
        if include_resolved:
            allowed.add(IssueKind.RESOLVED_BLOCKING)
    if severity_filter in (SeverityFilter.CRITICAL, SeverityFilter.BOTH):
        allowed.add(IssueKind.CRITICAL)
    return [issue for issue in issues if issue.kind in allowed]
