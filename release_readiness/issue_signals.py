"""Rule-based classification of a thread into issue detection candidates."""
from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from .message_blocks import extract_all_text
from .models import ClassificationVerdict, Message, ThreadContext, TicketRef, VerdictStatus
from .patterns import PatternMatcher, SignalStrength, numeric_ids
from .reconciler import Candidate, Signal

EVIDENCE_TEXT_LIMIT = 200

SIGNAL_CONFIDENCE: dict[SignalStrength, int] = {
    SignalStrength.EXPLICIT: 90,
    SignalStrength.CONTEXTUAL: 60,
}
CRITICAL_CONFIDENCE = 55
RESOLUTION_CONFIDENCE = 80


def evidence_text(text: str) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= EVIDENCE_TEXT_LIMIT:
        return cleaned
    return cleaned[:EVIDENCE_TEXT_LIMIT] + "..."


def _referenced_tickets(text: str, known: dict[str, TicketRef]) -> tuple[list[TicketRef], bool]:
    """Tickets a reply refers to without spelling their keys.

    Returns the tickets and whether they were inferred only because the thread
    tracks a single ticket.
    """
    numbers = numeric_ids(text)
    if numbers:
        matched = [ticket for key, ticket in known.items() if key.rsplit("-", 1)[-1] in numbers]
        if matched:
            return matched, False
    if len(known) == 1:
        return list(known.values()), True
    return [], False


def _source_ref(message: Message, thread: ThreadContext) -> str:
    return message.permalink or thread.root_message.permalink or message.id


def classify_thread(thread: ThreadContext, matcher: PatternMatcher) -> list[Candidate]:
    """Walk a thread oldest first and emit one candidate per signal and subject."""
    candidates: list[Candidate] = []
    known: dict[str, TicketRef] = {}
    open_free_text: list[str] = []
    root_id = thread.root_message.id

    for message in thread.messages:
        text = extract_all_text(message)
        if not text or matcher.is_status_summary_header(text):
            continue
        base = dict(
            evidence_id=message.id,
            timestamp=message.id,
            text=evidence_text(text),
            thread_key=thread.thread_key,
            has_thread=thread.has_thread,
            source_ref=_source_ref(message, thread),
        )

        listed = matcher.parse_explicit_list(text, source_message_id=message.id)
        hotfix_list = bool(listed) and matcher.explicit_list_kind(text) == "hotfixes"
        for ticket in listed:
            known.setdefault(ticket.key, ticket)
            candidates.append(
                Candidate(
                    signal=Signal.BLOCKING,
                    subject_id=message.id,
                    ticket=ticket,
                    hotfix_commitment=hotfix_list,
                    confidence=SIGNAL_CONFIDENCE[SignalStrength.EXPLICIT],
                    **base,
                )
            )
        listed_keys = {ticket.key for ticket in listed}
        mentioned = [
            ticket
            for ticket in matcher.extract_tickets(text, source_message_id=message.id)
            if ticket.key not in listed_keys
        ]
        for ticket in mentioned:
            known.setdefault(ticket.key, ticket)

        strength = matcher.blocking_strength(text)
        if matcher.has_resolution_indicators(text):
            signal, confidence = Signal.RESOLVED, RESOLUTION_CONFIDENCE
        elif strength != SignalStrength.NONE:
            signal, confidence = Signal.BLOCKING, SIGNAL_CONFIDENCE[strength]
        elif matcher.has_critical_indicators(text):
            signal, confidence = Signal.CRITICAL, CRITICAL_CONFIDENCE
        else:
            continue
        hotfix = signal == Signal.BLOCKING and matcher.is_hotfix_context(text)

        subjects = mentioned
        inferred = False
        if not subjects and not listed and message.id != root_id:
            subjects, inferred = _referenced_tickets(text, known)
        for ticket in subjects:
            candidates.append(
                Candidate(
                    signal=signal,
                    subject_id=message.id,
                    ticket=ticket,
                    hotfix_commitment=hotfix,
                    confidence=confidence,
                    **base,
                )
            )
        if listed or (subjects and not inferred):
            continue
        if signal == Signal.RESOLVED:
            for subject_id in open_free_text:
                candidates.append(
                    Candidate(signal=signal, subject_id=subject_id, confidence=confidence, **base)
                )
            continue
        if subjects:
            continue
        open_free_text.append(message.id)
        candidates.append(
            Candidate(
                signal=signal,
                subject_id=message.id,
                hotfix_commitment=hotfix,
                confidence=confidence,
                **base,
            )
        )
    return candidates


def ambiguous_ticket_keys(candidates: Iterable[Candidate], *, floor: int) -> list[str]:
    """Ticket keys whose strongest severity evidence is weaker than ``floor``."""
    strongest: dict[str, int] = {}
    resolved: set[str] = set()
    for candidate in candidates:
        if candidate.ticket is None:
            continue
        key = candidate.ticket.key
        if candidate.signal == Signal.RESOLVED:
            resolved.add(key)
            continue
        strongest[key] = max(strongest.get(key, 0), candidate.confidence)
    return [key for key, confidence in strongest.items() if confidence < floor and key not in resolved]


def apply_semantic_verdicts(
    candidates: list[Candidate],
    verdicts: dict[str, ClassificationVerdict],
    *,
    thread: ThreadContext,
    floor: int,
) -> list[Candidate]:
    """Fold confident semantic verdicts about tickets back into the candidate list."""
    confident = {
        key: verdict
        for key, verdict in verdicts.items()
        if verdict.used_semantic_model and verdict.confidence >= floor
    }
    if not confident:
        return list(candidates)
    last_message = thread.replies[-1] if thread.replies else thread.root_message
    updated: list[Candidate] = []
    resolved_keys: dict[str, Candidate] = {}
    for candidate in candidates:
        key = candidate.ticket.key if candidate.ticket is not None else None
        verdict = confident.get(key) if key else None
        if verdict is None:
            updated.append(candidate)
            continue
        if verdict.status == VerdictStatus.NOT_BLOCKING:
            continue
        if verdict.status in (VerdictStatus.STILL_FAILING, VerdictStatus.NEEDS_ATTENTION) and candidate.signal != Signal.RESOLVED:
            updated.append(replace(candidate, signal=Signal.BLOCKING, confidence=verdict.confidence))
            continue
        updated.append(candidate)
        if verdict.status == VerdictStatus.RESOLVED and key not in resolved_keys:
            resolved_keys[key] = replace(
                candidate,
                signal=Signal.RESOLVED,
                evidence_id=last_message.id,
                timestamp=last_message.id,
                text=evidence_text(verdict.reasoning or extract_all_text(last_message)),
                hotfix_commitment=False,
                confidence=verdict.confidence,
            )
    updated.extend(resolved_keys.values())
    return updated
