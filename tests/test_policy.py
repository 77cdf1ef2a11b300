from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from hypothesis import given, strategies as st

from prbumper.models import (
    CheckRun,
    PullRequestIssueComment,
    PullRequestReviewComment,
    PullRequestSignals,
    PullRequestSnapshot,
    Verdict,
    available,
)
from prbumper.oracle import CompletionOracle, is_issue_fixed
from prbumper.policy import (
    ELIGIBLE,
    JUDGED_FIXED,
    NO_ATTENTION_NEEDED,
    NOT_AUTOMATED_AUTHOR,
    NOT_STALLED,
    REVISITABLE_REASONS,
    decide,
    first_failed_gate,
    select_action,
)
from prbumper.signals import extract_signals


def _signals(**overrides: object) -> PullRequestSignals:
    signals = PullRequestSignals(
        is_automated_author_pr=True,
        is_wip=False,
        is_stalled=True,
        has_merge_conflict=False,
        session_stopped=False,
        session_failed=False,
        has_error_comment=False,
        has_failing_checks=False,
        has_review_comments=False,
        latest_relevant_comment=None,
        latest_feedback_comment=None,
    )
    return replace(signals, **overrides)  # type: ignore[arg-type]


def test_gates_run_in_order() -> None:
    assert first_failed_gate(_signals(is_automated_author_pr=False, is_stalled=False)) == (
        NOT_AUTOMATED_AUTHOR
    )
    assert first_failed_gate(_signals(is_stalled=False, is_wip=True)) == NOT_STALLED
    assert first_failed_gate(_signals()) == NO_ATTENTION_NEEDED
    assert first_failed_gate(_signals(session_stopped=True)) is None


def test_scenario_stalled_with_conflict_and_failing_checks_picks_conflict() -> None:
    verdict = decide(
        _signals(is_wip=True, has_merge_conflict=True, has_failing_checks=True),
        judged_fixed=False,
    )

    assert verdict.eligible
    assert verdict.action_kind == "conflict"
    assert verdict.reason == ELIGIBLE


def test_scenario_recently_updated_pr_is_not_stalled() -> None:
    verdict = decide(_signals(is_stalled=False, is_wip=True), judged_fixed=False)

    assert not verdict.eligible
    assert verdict.action_kind == "none"
    assert verdict.reason == NOT_STALLED


def test_scenario_human_pr_is_rejected() -> None:
    verdict = decide(
        _signals(is_automated_author_pr=False, has_failing_checks=True), judged_fixed=False
    )

    assert verdict.reason == NOT_AUTOMATED_AUTHOR
    assert verdict.action_kind == "none"


def test_scenario_review_feedback_after_session_stop() -> None:
    verdict = decide(
        _signals(session_stopped=True, has_review_comments=True), judged_fixed=False
    )

    assert verdict.eligible
    assert verdict.action_kind == "feedback"


def test_judged_fixed_rejects_otherwise_eligible_pr() -> None:
    verdict = decide(_signals(has_error_comment=True), judged_fixed=True)

    assert not verdict.eligible
    assert verdict.reason == JUDGED_FIXED
    assert JUDGED_FIXED in REVISITABLE_REASONS


def test_generic_nudge_is_the_fallback() -> None:
    assert select_action(_signals(is_wip=True)) == "generic-nudge"
    assert select_action(_signals(has_failing_checks=True, has_review_comments=True)) == (
        "ci-failure"
    )


@given(st.booleans(), st.booleans(), st.booleans())
def test_action_priority(conflict: bool, failing: bool, feedback: bool) -> None:
    action = select_action(
        _signals(
            has_merge_conflict=conflict, has_failing_checks=failing, has_review_comments=feedback
        )
    )
    if conflict:
        assert action == "conflict"
    elif failing:
        assert action == "ci-failure"
    elif feedback:
        assert action == "feedback"
    else:
        assert action == "generic-nudge"


@given(
    st.booleans(),
    st.booleans(),
    st.booleans(),
    st.booleans(),
    st.booleans(),
    st.booleans(),
)
def test_verdict_action_is_none_exactly_when_ineligible(
    author: bool, stalled: bool, wip: bool, failing: bool, conflict: bool, fixed: bool
) -> None:
    verdict = decide(
        _signals(
            is_automated_author_pr=author,
            is_stalled=stalled,
            is_wip=wip,
            has_failing_checks=failing,
            has_merge_conflict=conflict,
        ),
        judged_fixed=fixed,
    )
    assert verdict.eligible == (author and stalled and (wip or failing) and not fixed)
    assert (verdict.action_kind == "none") == (not verdict.eligible)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
STRICT = timedelta(minutes=60)


class ReplyOracle(CompletionOracle):
    def __init__(self, reply: str) -> None:
        self.reply = reply

    def complete(self, prompt: str, *, system: str) -> str:
        _ = prompt, system
        return self.reply


def _snapshot(**overrides: object) -> PullRequestSnapshot:
    pr = PullRequestSnapshot(
        number=1,
        title="WIP: add feature",
        body=None,
        author_login="copilot[bot]",
        draft=False,
        updated_at=NOW - timedelta(hours=2),
        head_sha="abc",
        mergeable=True,
        mergeable_state="clean",
    )
    return replace(pr, **overrides)  # type: ignore[arg-type]


def _verdict(pr: PullRequestSnapshot, **aux: object) -> Verdict:
    signals = extract_signals(
        pr, bot_login="copilot[bot]", stall_threshold=STRICT, now=NOW, **aux
    )
    return decide(signals, judged_fixed=False)


def test_wip_pr_stalled_two_hours_gets_generic_nudge() -> None:
    assert _verdict(_snapshot()) == Verdict(
        eligible=True, action_kind="generic-nudge", reason=ELIGIBLE
    )


def test_dirty_merge_state_wins_over_other_signals() -> None:
    verdict = _verdict(
        _snapshot(mergeable=False, mergeable_state="dirty"),
        check_runs=available([CheckRun("test", "failure")]),
        review_comments=available(
            [PullRequestReviewComment(author_login="alice", body="nit", created_at="t")]
        ),
    )

    assert verdict.action_kind == "conflict"


def test_failing_check_makes_non_wip_pr_eligible() -> None:
    verdict = _verdict(
        _snapshot(title="Add feature", updated_at=NOW - timedelta(hours=3)),
        check_runs=available([CheckRun("test", "failure")]),
    )

    assert verdict.eligible
    assert verdict.action_kind == "ci-failure"


def test_oracle_yes_rejects_stale_pr() -> None:
    comment = PullRequestIssueComment(
        author_login="alice", body="Thanks, this is merged upstream now.", created_at="t"
    )
    signals = extract_signals(
        _snapshot(),
        bot_login="copilot[bot]",
        stall_threshold=STRICT,
        now=NOW,
        issue_comments=available([comment]),
    )
    fixed = is_issue_fixed(
        signals.latest_relevant_comment, ReplyOracle("YES, this looks resolved")
    )

    verdict = decide(signals, judged_fixed=fixed)

    assert fixed is True
    assert not verdict.eligible
    assert verdict.reason == JUDGED_FIXED
