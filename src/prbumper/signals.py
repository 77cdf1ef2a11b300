from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta

from prbumper.models import (
    CheckRun,
    Fetched,
    PullRequestIssueComment,
    PullRequestReviewComment,
    PullRequestSignals,
    PullRequestSnapshot,
    T,
    TimelineEvent,
)
from prbumper.prompts import is_nudge_template


DEFAULT_BOT_LOGIN = "copilot[bot]"
SESSION_STOPPED_KIND = "session-stopped"
FAILING_CHECK_CONCLUSIONS = frozenset({"failure", "action_required", "timed_out"})
ERROR_PHRASES: tuple[str, ...] = (
    "encountered an error",
    "ran into an error",
    "an error occurred",
    "having trouble",
    "was unable to",
    "i couldn't",
    "failed to",
    "something went wrong",
    "i apologize",
    "unfortunately",
    "i'm sorry",
)
_MENTION = "copilot"
_WIP_MARKER = "wip"


def normalize_login(login: str | None) -> str:
    if login is None:
        return ""
    return login.strip().lower()


def is_bot_author(login: str | None, *, bot_login: str) -> bool:
    normalized = normalize_login(login)
    return bool(normalized) and normalized == normalize_login(bot_login)


def is_automated_author_pr(pr: PullRequestSnapshot, *, bot_login: str = DEFAULT_BOT_LOGIN) -> bool:
    if is_bot_author(pr.author_login, bot_login=bot_login):
        return True
    if _MENTION in pr.title.lower():
        return True
    return _MENTION in (pr.body or "").lower()


def is_wip(pr: PullRequestSnapshot) -> bool:
    return _WIP_MARKER in pr.title.lower() or pr.draft


def time_since_update(pr: PullRequestSnapshot, *, now: datetime) -> timedelta:
    return now - pr.updated_at


def is_stalled(pr: PullRequestSnapshot, threshold: timedelta, *, now: datetime) -> bool:
    # Equal to the threshold is still considered active.
    return time_since_update(pr, now=now) > threshold


def has_merge_conflict(pr: PullRequestSnapshot) -> bool:
    # mergeable is None while GitHub is still computing it.
    return pr.mergeable is False and pr.mergeable_state == "dirty"


def session_stopped(events: Iterable[TimelineEvent]) -> bool:
    return any(event.kind == SESSION_STOPPED_KIND for event in events)


def session_failed(events: Iterable[TimelineEvent]) -> bool:
    return any(
        event.kind == SESSION_STOPPED_KIND and event.session_outcome == "failure"
        for event in events
    )


def has_error_comment(
    comment: PullRequestIssueComment | None, *, bot_login: str = DEFAULT_BOT_LOGIN
) -> bool:
    if comment is None or not comment.body:
        return False
    if not is_bot_author(comment.author_login, bot_login=bot_login):
        return False
    body = comment.body.lower()
    return any(phrase in body for phrase in ERROR_PHRASES)


def find_latest_bot_comment(
    comments: Sequence[PullRequestIssueComment], *, bot_login: str = DEFAULT_BOT_LOGIN
) -> PullRequestIssueComment | None:
    for comment in comments:
        if is_bot_author(comment.author_login, bot_login=bot_login):
            return comment
    return None


def has_failing_checks(check_runs: Iterable[CheckRun]) -> bool:
    return any(run.conclusion in FAILING_CHECK_CONCLUSIONS for run in check_runs)


def find_relevant_comment(
    comments: Sequence[PullRequestIssueComment],
) -> PullRequestIssueComment | None:
    """Return the newest comment that is not one of our own nudges."""
    for comment in comments:
        if not is_nudge_template(comment.body):
            return comment
    return None


def find_latest_review_comment(
    review_comments: Sequence[PullRequestReviewComment] | None,
    *,
    bot_login: str = DEFAULT_BOT_LOGIN,
) -> PullRequestReviewComment | None:
    if not review_comments:
        return None
    for comment in review_comments:
        if normalize_login(comment.author_login) and not is_bot_author(
            comment.author_login, bot_login=bot_login
        ):
            return comment
    return None


def has_review_comments(review_comments: Sequence[PullRequestReviewComment] | None) -> bool:
    # Any open line feedback counts, whoever wrote it.
    return bool(review_comments)


def extract_signals(
    pr: PullRequestSnapshot,
    *,
    bot_login: str,
    stall_threshold: timedelta,
    now: datetime,
    issue_comments: Fetched[PullRequestIssueComment] | None = None,
    review_comments: Fetched[PullRequestReviewComment] | None = None,
    timeline_events: Fetched[TimelineEvent] | None = None,
    check_runs: Fetched[CheckRun] | None = None,
) -> PullRequestSignals:
    """Derive every signal for one PR.

    Auxiliary inputs that were not fetched (``None``) or whose fetch failed are
    treated as empty, so a missing signal never blocks evaluation.
    """
    comments = _items(issue_comments)
    reviews = _items(review_comments)
    events = _items(timeline_events)
    checks = _items(check_runs)

    return PullRequestSignals(
        is_automated_author_pr=is_automated_author_pr(pr, bot_login=bot_login),
        is_wip=is_wip(pr),
        is_stalled=is_stalled(pr, stall_threshold, now=now),
        has_merge_conflict=has_merge_conflict(pr),
        session_stopped=session_stopped(events),
        session_failed=session_failed(events),
        has_error_comment=has_error_comment(
            find_latest_bot_comment(comments, bot_login=bot_login), bot_login=bot_login
        ),
        has_failing_checks=has_failing_checks(checks),
        has_review_comments=has_review_comments(reviews),
        latest_relevant_comment=find_relevant_comment(comments),
        latest_feedback_comment=find_latest_review_comment(reviews, bot_login=bot_login),
    )


def _items(fetched: Fetched[T] | None) -> tuple[T, ...]:
    if fetched is None:
        return ()
    return fetched.items
