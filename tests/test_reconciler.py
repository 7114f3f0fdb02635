import pytest
from pydantic import ValidationError

from release_readiness.models import Issue, IssueKind, SeverityFilter, TicketRef
from release_readiness.reconciler import Candidate, Signal, apply_severity_filter, reconcile


def _candidate(signal: Signal, ts: str, *, key: str | None = "KAH-1", subject: str = "1.0", **extra) -> Candidate:
    return Candidate(
        signal=signal,
        subject_id=subject,
        evidence_id=ts,
        timestamp=ts,
        text=extra.pop("text", f"{signal.value} at {ts}"),
        ticket=TicketRef(key=key, source_message_id=ts) if key else None,
        **extra,
    )


def test_resolution_after_blocking_yields_resolved_blocking() -> None:
    candidates = [
        _candidate(Signal.BLOCKING, "100.0", text="KAH-1 is a blocker"),
        _candidate(Signal.RESOLVED, "200.0", text="KAH-1 fixed"),
    ]

    issues = reconcile(candidates)
    reversed_issues = reconcile(list(reversed(candidates)))

    assert len(issues) == 1
    assert issues[0].kind == IssueKind.RESOLVED_BLOCKING
    assert issues[0].text == "KAH-1 is a blocker"
    assert issues[0].resolution_text == "KAH-1 fixed"
    assert issues == reversed_issues


def test_later_blocking_reopens_resolved_issue() -> None:
    issues = reconcile(
        [
            _candidate(Signal.BLOCKING, "100.0"),
            _candidate(Signal.RESOLVED, "200.0"),
            _candidate(Signal.BLOCKING, "300.0"),
        ]
    )

    assert issues[0].kind == IssueKind.BLOCKING
    assert issues[0].resolution_text is None


def test_resolution_without_prior_severity_is_ignored() -> None:
    assert reconcile([_candidate(Signal.RESOLVED, "100.0")]) == []
    issues = reconcile([_candidate(Signal.RESOLVED, "100.0"), _candidate(Signal.BLOCKING, "200.0")])
    assert issues[0].kind == IssueKind.BLOCKING


def test_strongest_severity_wins_and_keeps_its_text() -> None:
    issues = reconcile(
        [
            _candidate(Signal.CRITICAL, "100.0", text="KAH-1 urgent"),
            _candidate(Signal.BLOCKING, "200.0", text="KAH-1 now a blocker"),
        ]
    )

    assert issues[0].kind == IssueKind.BLOCKING
    assert issues[0].text == "KAH-1 now a blocker"
    assert issues[0].timestamp == "200.0"


def test_resolved_critical_becomes_resolved_blocking() -> None:
    issues = reconcile([_candidate(Signal.CRITICAL, "100.0"), _candidate(Signal.RESOLVED, "200.0")])

    assert issues[0].kind == IssueKind.RESOLVED_BLOCKING


def test_hotfix_commitment_stays_blocking() -> None:
    issues = reconcile(
        [
            _candidate(Signal.BLOCKING, "100.0", hotfix_commitment=True),
            _candidate(Signal.RESOLVED, "200.0"),
        ]
    )

    assert issues[0].kind == IssueKind.BLOCKING
    assert issues[0].hotfix_commitment is True


def test_free_text_subjects_are_not_merged() -> None:
    issues = reconcile(
        [
            _candidate(Signal.BLOCKING, "100.0", key=None, subject="100.0", text="release blocker one"),
            _candidate(Signal.BLOCKING, "200.0", key=None, subject="200.0", text="release blocker two"),
        ]
    )

    assert [issue.text for issue in issues] == ["release blocker one", "release blocker two"]
    assert all(issue.tickets == () for issue in issues)


def test_duplicate_ticket_mentions_collapse_into_one_issue() -> None:
    first = Candidate(
        signal=Signal.BLOCKING,
        subject_id="1.0",
        evidence_id="1.0",
        timestamp="1.0",
        text="KAH-1 blocker",
        ticket=TicketRef(key="KAH-1", source_message_id="1.0"),
        has_thread=False,
    )
    second = Candidate(
        signal=Signal.BLOCKING,
        subject_id="2.0",
        evidence_id="2.0",
        timestamp="2.0",
        text="KAH-1 still a blocker",
        ticket=TicketRef(key="KAH-1", source_message_id="2.0", url="https://jira.example.com/browse/KAH-1"),
        has_thread=True,
    )

    issues = reconcile([first, second])

    assert len(issues) == 1
    assert issues[0].ticket_keys == ["KAH-1"]
    assert issues[0].tickets[0].url == "https://jira.example.com/browse/KAH-1"
    assert issues[0].has_thread is True


def test_output_order_is_kind_then_time() -> None:
    issues = reconcile(
        [
            _candidate(Signal.CRITICAL, "50.0", key="KAH-3"),
            _candidate(Signal.BLOCKING, "300.0", key="KAH-2"),
            _candidate(Signal.BLOCKING, "100.0", key="KAH-1"),
            _candidate(Signal.BLOCKING, "10.0", key="KAH-4"),
            _candidate(Signal.RESOLVED, "20.0", key="KAH-4"),
        ]
    )

    assert [(issue.kind, issue.ticket_keys[0]) for issue in issues] == [
        (IssueKind.BLOCKING, "KAH-1"),
        (IssueKind.BLOCKING, "KAH-2"),
        (IssueKind.CRITICAL, "KAH-3"),
        (IssueKind.RESOLVED_BLOCKING, "KAH-4"),
    ]


def test_severity_filter() -> None:
    issues = [
        Issue(kind=IssueKind.BLOCKING, text="a"),
        Issue(kind=IssueKind.CRITICAL, text="b"),
        Issue(kind=IssueKind.RESOLVED_BLOCKING, text="c"),
    ]

    assert [issue.text for issue in apply_severity_filter(issues, SeverityFilter.BLOCKING)] == ["a", "c"]
    assert [issue.text for issue in apply_severity_filter(issues, SeverityFilter.CRITICAL)] == ["b"]
    assert [
        issue.text for issue in apply_severity_filter(issues, SeverityFilter.BOTH, include_resolved=False)
    ] == ["a", "b"]


def test_issue_requires_ticket_or_text() -> None:
    with pytest.raises(ValidationError):
        Issue(kind=IssueKind.BLOCKING, text="   ")
    with pytest.raises(ValidationError):
        Issue(kind=IssueKind.BLOCKING, tickets=(TicketRef(key="KAH-1"), TicketRef(key="KAH-1")))
