from release_readiness.autotest_status import (
    DEFAULT_TEST_BOTS,
    apply_recent_resolution,
    classify_test_thread,
    extract_failed_test_names,
    parse_suite_status,
    section_status,
    suite_for_message,
)
from release_readiness.models import (
    ClassificationVerdict,
    Message,
    SectionStatus,
    SuiteStatus,
    ThreadContext,
    VerdictStatus,
)
from release_readiness.semantic_classifier import needs_review_verdict

RUN_TEXT = (
    "Failed run. Specs for Review:\n"
    "cypress/e2e/login_flow_spec.ts 2 failed\n"
    "cypress/e2e/checkout.test.ts 1 failed"
)


def _run_thread(*replies: Message) -> ThreadContext:
    root = Message(id="1.0", text=RUN_TEXT, is_bot=True, bot_id="B067SLP8AR5")
    return ThreadContext(root_message=root, replies=replies)


def test_parse_suite_status() -> None:
    assert parse_suite_status("Run #42 failed run") == SuiteStatus.FAILED
    assert parse_suite_status("Test results: FAILED") == SuiteStatus.FAILED
    assert parse_suite_status("All tests passed ✅") == SuiteStatus.PASSED
    assert parse_suite_status("Run started") == SuiteStatus.PENDING


def test_suite_for_message_uses_bot_id() -> None:
    assert suite_for_message(Message(id="1.0", bot_id="B052372DK4H"), DEFAULT_TEST_BOTS) == "Playwright"
    assert suite_for_message(Message(id="1.0", bot_id="B000"), DEFAULT_TEST_BOTS) is None


def test_extract_failed_test_names_filters_support_files() -> None:
    text = (
        "Specs for Review:\n"
        "cypress/e2e/login_flow_spec.ts  2 failed tests\n"
        "`checkout.test.ts`\n"
        "cypress/support/helpers/setup_spec.ts 1 failed\n"
        "cypress/e2e/LoginPage.spec.ts 1 failed"
    )

    assert extract_failed_test_names(text) == ["login_flow", "checkout"]
    assert extract_failed_test_names("") == []


def test_extract_failed_test_names_decodes_urls() -> None:
    text = "see https://ci.example.com/artifacts/cypress%2Fe2e%2Fpayment_refund_spec.ts"

    assert extract_failed_test_names(text) == ["payment_refund"]


def test_classify_test_thread_per_test_statuses() -> None:
    thread = _run_thread(
        Message(id="2.0", text="login_flow passes locally, looks flaky", author_ref="U1"),
        Message(id="3.0", text="checkout still failing after rerun", author_ref="U2"),
    )

    verdicts = classify_test_thread(thread, ["login_flow", "checkout"])

    assert verdicts["login_flow"].status == VerdictStatus.FLAKY
    assert verdicts["login_flow"].confidence == 45
    assert verdicts["checkout"].status == VerdictStatus.STILL_FAILING
    assert verdicts["checkout"].confidence == 90
    assert section_status(verdicts) == SectionStatus.NEEDS_ATTENTION


def test_generic_follow_up_applies_to_all_tests_by_priority() -> None:
    thread = _run_thread(
        Message(id="2.0", text="login_flow passes locally, looks flaky"),
        Message(id="3.0", text="checkout still failing after rerun"),
        Message(id="4.0", text="all fixed now"),
    )

    verdicts = classify_test_thread(thread, ["login_flow", "checkout"])

    assert verdicts["login_flow"].status == VerdictStatus.RESOLVED
    assert verdicts["checkout"].status == VerdictStatus.STILL_FAILING


def test_bot_statements_are_capped_and_silence_needs_review() -> None:
    thread = _run_thread(Message(id="2.0", text="login_flow passed on rerun", is_bot=True, bot_id="B067SLP8AR5"))

    verdicts = classify_test_thread(thread, ["login_flow", "checkout"])

    assert verdicts["login_flow"].status == VerdictStatus.RESOLVED
    assert verdicts["login_flow"].confidence == 30
    assert verdicts["checkout"].status == VerdictStatus.NEEDS_REVIEW
    assert verdicts["checkout"].confidence == 30


def test_blocker_language() -> None:
    blocker = classify_test_thread(_run_thread(Message(id="2.0", text="checkout is a release blocker")), ["checkout"])
    cleared = classify_test_thread(_run_thread(Message(id="2.0", text="checkout is not a blocker")), ["checkout"])

    assert blocker["checkout"].status == VerdictStatus.BLOCKER
    assert section_status(blocker) == SectionStatus.BLOCKER_FOUND
    assert cleared["checkout"].status == VerdictStatus.NOT_BLOCKING
    assert section_status(cleared) == SectionStatus.REVIEWED_NOT_BLOCKING


def test_recent_resolution_promotes_only_reviewed_attention_verdicts() -> None:
    thread = _run_thread(Message(id="2.0", text="reran it on main and it passes now"))
    verdicts = {
        "login_flow": ClassificationVerdict(item_id="login_flow", status=VerdictStatus.UNCLEAR, used_semantic_model=True),
        "checkout": ClassificationVerdict(item_id="checkout", status=VerdictStatus.STILL_FAILING, confidence=90),
        "search_bar": ClassificationVerdict(item_id="search_bar", status=VerdictStatus.NEEDS_ATTENTION),
        "profile": ClassificationVerdict(item_id="profile", status=VerdictStatus.NEEDS_REVIEW),
        "settings": needs_review_verdict("settings", "semantic model unavailable"),
    }

    updated = apply_recent_resolution(thread, verdicts)

    assert updated["login_flow"].status == VerdictStatus.RESOLVED
    assert updated["login_flow"].reasoning.startswith("resolution signal in recent reply")
    assert updated["checkout"].status == VerdictStatus.STILL_FAILING
    assert updated["search_bar"].status == VerdictStatus.RESOLVED
    assert updated["profile"].status == VerdictStatus.NEEDS_REVIEW
    assert updated["settings"].status == VerdictStatus.UNCLEAR


def test_recent_resolution_only_clears_tests_named_in_the_reply() -> None:
    thread = _run_thread(Message(id="2.0", text="login_flow passes now"))
    verdicts = {
        "login_flow": ClassificationVerdict(item_id="login_flow", status=VerdictStatus.NEEDS_ATTENTION),
        "checkout": ClassificationVerdict(item_id="checkout", status=VerdictStatus.NEEDS_ATTENTION),
    }

    updated = apply_recent_resolution(thread, verdicts)

    assert updated["login_flow"].status == VerdictStatus.RESOLVED
    assert updated["checkout"].status == VerdictStatus.NEEDS_ATTENTION


def test_reply_about_one_test_leaves_the_other_unreviewed() -> None:
    root = Message(id="1.0", text="Test results: failed\nlogin.test.ts\ncheckout.test.ts", is_bot=True)
    thread = ThreadContext(root_message=root, replies=(Message(id="2.0", text="login.test.ts is flaky"),))
    tests = extract_failed_test_names(root.text)

    final = apply_recent_resolution(thread, classify_test_thread(thread, tests))

    assert tests == ["login", "checkout"]
    assert final["login"].status == VerdictStatus.FLAKY
    assert final["checkout"].status == VerdictStatus.NEEDS_REVIEW
    assert section_status(final) == SectionStatus.NEEDS_ATTENTION


def test_recent_resolution_ignores_bot_replies() -> None:
    thread = _run_thread(Message(id="2.0", text="it passes now", is_bot=True))
    verdicts = {"a": ClassificationVerdict(item_id="a", status=VerdictStatus.NEEDS_ATTENTION)}

    assert apply_recent_resolution(thread, verdicts)["a"].status == VerdictStatus.NEEDS_ATTENTION


def test_section_status_levels() -> None:
    def verdicts(*statuses: VerdictStatus) -> dict:
        return {str(i): ClassificationVerdict(item_id=str(i), status=status) for i, status in enumerate(statuses)}

    assert section_status({}) == SectionStatus.AWAITING_REVIEW
    assert section_status(verdicts(VerdictStatus.RESOLVED, VerdictStatus.INVESTIGATING)) == SectionStatus.IN_PROGRESS
    assert section_status(verdicts(VerdictStatus.RESOLVED, VerdictStatus.FLAKY)) == SectionStatus.REVIEWED_NOT_BLOCKING
    assert section_status(verdicts(VerdictStatus.NEEDS_REVIEW, VerdictStatus.BLOCKER)) == SectionStatus.BLOCKER_FOUND
