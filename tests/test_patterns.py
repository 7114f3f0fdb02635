import pytest

from release_readiness.patterns import (
    PatternMatcher,
    SignalStrength,
    blocking_strength,
    explicit_list_kind,
    extract_tickets,
    has_blocking_indicators,
    has_critical_indicators,
    has_resolution_indicators,
    is_hotfix_context,
    parse_explicit_list,
)


@pytest.mark.parametrize("text", [None, "", "   ", "\n"])
def test_blocking_indicators_false_for_empty_input(text) -> None:
    assert has_blocking_indicators(text) is False


@pytest.mark.parametrize(
    "text",
    [
        "PROJ-123 is a release blocker",
        "This is blocking the release",
        "Blocker: KAH-100 login broken",
        "no-go for today",
        "nogo until the crash is sorted",
        "it's a no go from QA",
        "cc @test-managers please check",
        "release blocker cc @escalation",
        "we need a hotfix for payments",
        "this blocks the release",
        "the migration blocks deployment to prod",
    ],
)
def test_blocking_indicators_detect_release_language(text: str) -> None:
    assert has_blocking_indicators(text) is True


@pytest.mark.parametrize(
    "text",
    [
        "this blocks the answer block editor",
        "the block dialog does not close",
        "question blocks render twice",
        "ad blocker breaks the landing page",
        "this is not a blocker",
        "fixed, not blocking anymore",
        "the block is grey",
    ],
)
def test_blocking_indicators_ignore_ui_and_negated_language(text: str) -> None:
    assert has_blocking_indicators(text) is False


def test_ui_phrase_does_not_hide_real_blocker_in_same_text() -> None:
    assert has_blocking_indicators("content block crash is blocking the release") is True


def test_ad_blocker_with_release_context_is_kept() -> None:
    assert has_blocking_indicators("ad blocker detection blocks the release") is True


def test_blocking_strength_separates_explicit_and_contextual() -> None:
    assert blocking_strength("KAH-1 is a blocker") == SignalStrength.EXPLICIT
    assert blocking_strength("might need a hotfix") == SignalStrength.CONTEXTUAL
    assert blocking_strength("all good") == SignalStrength.NONE


@pytest.mark.parametrize(
    "text",
    ["this is critical", "urgent fix needed for KAH-9", "high priority bug in checkout"],
)
def test_critical_indicators_positive_cues(text: str) -> None:
    assert has_critical_indicators(text) is True


@pytest.mark.parametrize(
    "text",
    [
        None,
        "",
        "critical path analysis looks fine",
        "this is not critical",
        "low priority, but urgent for design",
        "not super high priority",
        "this isn't urgent",
        "no need to tackle immediately, critical later",
    ],
)
def test_critical_indicators_negated_or_empty(text) -> None:
    assert has_critical_indicators(text) is False


def test_critical_negation_inside_window_wins() -> None:
    assert has_critical_indicators("this is not really very super critical") is False
    assert has_critical_indicators("not a b c d critical") is False


def test_critical_negation_outside_window_is_ignored() -> None:
    assert has_critical_indicators("not a b c d e critical") is True
    assert has_critical_indicators("not sure who owns it, but the checkout crash is critical") is True


def test_critical_negation_window_is_tunable() -> None:
    assert has_critical_indicators("not a b c d e critical", negation_window=5) is False
    assert has_critical_indicators("not a critical", negation_window=0) is True
    assert PatternMatcher(negation_window=5).has_critical_indicators("not a b c d e critical") is False


@pytest.mark.parametrize("text", ["PROJ-", "-123", "PROJX123", "", None, "proj-123"])
def test_extract_tickets_ignores_malformed_keys(text) -> None:
    assert extract_tickets(text) == []


def test_extract_tickets_keeps_first_appearance_order() -> None:
    tickets = extract_tickets("KAH-1 and ABC-22, then KAH-1 again", source_message_id="1.0")

    assert [ticket.key for ticket in tickets] == ["KAH-1", "ABC-22"]
    assert all(ticket.source_message_id == "1.0" for ticket in tickets)


def test_extract_tickets_builds_browse_url() -> None:
    tickets = extract_tickets("see KAH-7", browse_base_url="https://jira.example.com/")

    assert tickets[0].url == "https://jira.example.com/browse/KAH-7"


def test_long_inputs_are_handled() -> None:
    filler = "lorem ipsum " * 1000
    assert has_critical_indicators(filler + "critical") is True
    assert has_critical_indicators("not " + "word " * 2500 + "critical") is True
    assert has_blocking_indicators(filler * 2) is False
    assert [ticket.key for ticket in extract_tickets(filler + "KAH-42 " + filler)] == ["KAH-42"]


def test_parse_explicit_list_with_bullets_and_thread_links() -> None:
    text = (
        "Blockers for today:\n"
        "• KAH-100 login broken\n"
        "  ◦ Mentioned here: <https://slack.example.com/archives/C1/p1?thread_ts=1.2|thread>\n"
        "• KAH-101 and KAH-102 payments\n"
        "• no ticket here"
    )

    tickets = parse_explicit_list(text, source_message_id="9.0")

    assert [ticket.key for ticket in tickets] == ["KAH-100", "KAH-101"]
    assert tickets[0].thread_link == "https://slack.example.com/archives/C1/p1?thread_ts=1.2"
    assert tickets[1].thread_link is None
    assert explicit_list_kind(text) == "blockers"


def test_parse_explicit_list_with_hyphen_hotfix_list() -> None:
    text = "List of hotfixes:\n- KAH-5 crash on start\n- KAH-6 typo"

    assert [ticket.key for ticket in parse_explicit_list(text)] == ["KAH-5", "KAH-6"]
    assert explicit_list_kind(text) == "hotfixes"
    assert is_hotfix_context(text) is True


def test_parse_explicit_list_requires_header() -> None:
    assert parse_explicit_list("- KAH-1 broken\n- KAH-2 broken") == []
    assert parse_explicit_list(None) == []


def test_resolution_indicators() -> None:
    assert has_resolution_indicators("KAH-1 fixed and deployed") is True
    assert has_resolution_indicators("no longer blocking") is True
    assert has_resolution_indicators("still broken") is False
    assert has_resolution_indicators(None) is False


def test_matcher_uses_configured_escalation_mentions() -> None:
    matcher = PatternMatcher(escalation_mentions=["@release-police"])

    assert matcher.has_blocking_indicators("cc @release-police") is True
    assert has_blocking_indicators("cc @release-police") is False


def test_matcher_seed_filters() -> None:
    matcher = PatternMatcher()

    assert matcher.is_negated_seed("this is not blocking us") is True
    assert matcher.is_negated_seed("this is blocking us") is False
    assert matcher.is_status_summary_header("Frontend release update @dev cc @test-managers") is True
    assert matcher.is_status_summary_header("release blocker found") is False
