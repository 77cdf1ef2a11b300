from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Literal, TypeVar


ActionKind = Literal["conflict", "ci-failure", "feedback", "generic-nudge", "none"]
SessionOutcome = Literal["success", "failure", "unknown"]
FetchStatus = Literal["available", "unavailable"]

T = TypeVar("T")


@dataclass(frozen=True)
class Notification:
    subject_type: str
    subject_url: str
    repo_owner: str
    repo_name: str

    @property
    def is_pull_request(self) -> bool:
        return self.subject_type == "PullRequest"

    @property
    def pr_number(self) -> int:
        tail = self.subject_url.rstrip("/").rsplit("/", 1)[-1]
        if not tail.isdigit():
            raise ValueError(f"Notification subject URL has no PR number: {self.subject_url!r}")
        return int(tail)

    @property
    def repo_full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    @property
    def key(self) -> str:
        return f"{self.repo_full_name}#{self.pr_number}"


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    title: str
    body: str | None
    author_login: str
    draft: bool
    updated_at: datetime
    head_sha: str
    mergeable: bool | None
    mergeable_state: str


@dataclass(frozen=True)
class PullRequestIssueComment:
    author_login: str | None
    body: str | None
    created_at: str


@dataclass(frozen=True)
class PullRequestReviewComment:
    author_login: str | None
    body: str | None
    created_at: str


@dataclass(frozen=True)
class TimelineEvent:
    kind: str
    actor_login: str | None = None
    session_outcome: SessionOutcome | None = None


@dataclass(frozen=True)
class CheckRun:
    name: str
    conclusion: str | None


@dataclass(frozen=True)
class Fetched(Generic[T]):
    """Result of an auxiliary fetch that is allowed to fail without blocking evaluation."""

    status: FetchStatus
    items: tuple[T, ...] = ()
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.status == "available"


def available(items: tuple[T, ...] | list[T]) -> Fetched[T]:
    return Fetched(status="available", items=tuple(items))


def unavailable(error: str) -> Fetched[T]:
    return Fetched(status="unavailable", items=(), error=error)


@dataclass(frozen=True)
class PullRequestSignals:
    is_automated_author_pr: bool
    is_wip: bool
    is_stalled: bool
    has_merge_conflict: bool
    session_stopped: bool
    session_failed: bool
    has_error_comment: bool
    has_failing_checks: bool
    has_review_comments: bool
    latest_relevant_comment: PullRequestIssueComment | None
    latest_feedback_comment: PullRequestReviewComment | None

    @property
    def needs_attention(self) -> bool:
        return (
            self.is_wip
            or self.session_stopped
            or self.has_error_comment
            or self.session_failed
            or self.has_failing_checks
        )


@dataclass(frozen=True)
class Verdict:
    eligible: bool
    action_kind: ActionKind
    reason: str

    def __post_init__(self) -> None:
        if not self.eligible and self.action_kind != "none":
            raise ValueError("Ineligible verdicts must carry action_kind='none'")
        if self.eligible and self.action_kind == "none":
            raise ValueError("Eligible verdicts must carry a concrete action_kind")


@dataclass(frozen=True)
class Repository:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    assignee_logins: tuple[str, ...]
