from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from prbumper.dispatcher import Dispatcher, RunState
from prbumper.models import Notification, Verdict
from prbumper.prompts import NudgeTemplate, is_nudge_template


class FakeGitHub:
    def __init__(self, *, fail_numbers: set[int] | None = None) -> None:
        self.fail_numbers = fail_numbers or set()
        self.posted: list[tuple[str, str, int, str]] = []

    def post_issue_comment(self, owner: str, repo: str, issue_number: int, body: str) -> None:
        if issue_number in self.fail_numbers:
            raise RuntimeError("403 forbidden")
        self.posted.append((owner, repo, issue_number, body))


def _notification(number: int) -> Notification:
    return Notification(
        subject_type="PullRequest",
        subject_url=f"https://api.github.com/repos/octo/widgets/pulls/{number}",
        repo_owner="octo",
        repo_name="widgets",
    )


ELIGIBLE = Verdict(eligible=True, action_kind="generic-nudge", reason="eligible")


def test_run_state_start_rejects_negative_budget() -> None:
    with pytest.raises(ValueError, match="budget"):
        RunState.start(-1)


def test_run_state_consume_and_terminal_tracking() -> None:
    state = RunState.start(1)

    assert state.mark_terminal("o/r#1") is True
    assert state.mark_terminal("o/r#1") is False
    assert state.is_terminal("o/r#1")
    state.consume()
    assert state.budget_exhausted
    assert state.dispatched_count == 1
    with pytest.raises(RuntimeError, match="exhausted"):
        state.consume()


def test_budget_of_five_with_six_eligible_posts_five() -> None:
    github = FakeGitHub()
    state = RunState.start(5)
    dispatcher = Dispatcher(github, state)

    outcomes = [dispatcher.dispatch(_notification(n), ELIGIBLE, dry_run=False) for n in range(6)]

    assert outcomes == ["posted"] * 5 + ["skipped_limit"]
    assert len(github.posted) == 5
    assert state.remaining_budget == 0
    assert state.dispatched_count == 5


def test_dispatch_posts_template_for_action() -> None:
    github = FakeGitHub()
    dispatcher = Dispatcher(github, RunState.start(3))

    dispatcher.dispatch(
        _notification(4),
        Verdict(eligible=True, action_kind="conflict", reason="eligible"),
        dry_run=False,
    )

    assert github.posted == [("octo", "widgets", 4, NudgeTemplate.CONFLICT.text)]


def test_dry_run_consumes_budget_without_posting() -> None:
    github = FakeGitHub()
    state = RunState.start(1)
    dispatcher = Dispatcher(github, state)

    assert dispatcher.dispatch(_notification(1), ELIGIBLE, dry_run=True) == "dry_run"
    assert dispatcher.dispatch(_notification(2), ELIGIBLE, dry_run=True) == "skipped_limit"
    assert github.posted == []
    assert state.dispatched_count == 1


def test_failed_post_does_not_consume_budget() -> None:
    github = FakeGitHub(fail_numbers={1})
    state = RunState.start(1)
    dispatcher = Dispatcher(github, state)

    assert dispatcher.dispatch(_notification(1), ELIGIBLE, dry_run=False) == "failed"
    assert state.remaining_budget == 1
    assert dispatcher.dispatch(_notification(2), ELIGIBLE, dry_run=False) == "posted"
    assert state.remaining_budget == 0


def test_ineligible_verdict_is_not_dispatched() -> None:
    github = FakeGitHub()
    state = RunState.start(2)
    dispatcher = Dispatcher(github, state)

    outcome = dispatcher.dispatch(
        _notification(1),
        Verdict(eligible=False, action_kind="none", reason="not_stalled"),
        dry_run=False,
    )

    assert outcome == "not_eligible"
    assert github.posted == []
    assert state.remaining_budget == 2


@given(st.integers(min_value=0, max_value=8), st.integers(min_value=0, max_value=12))
def test_posts_never_exceed_budget(budget: int, eligible_count: int) -> None:
    github = FakeGitHub()
    dispatcher = Dispatcher(github, RunState.start(budget))

    for number in range(eligible_count):
        dispatcher.dispatch(_notification(number), ELIGIBLE, dry_run=False)

    assert len(github.posted) == min(budget, eligible_count)
    assert all(is_nudge_template(body) for _, _, _, body in github.posted)
