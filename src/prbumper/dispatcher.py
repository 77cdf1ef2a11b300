from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Literal

from prbumper.github_gateway import GitHubGateway
from prbumper.models import Notification, Verdict
from prbumper.observability import log_event, log_warning_event
from prbumper.prompts import NudgeTemplate, is_nudge_template


LOGGER = logging.getLogger("prbumper.dispatcher")

DispatchOutcome = Literal["posted", "dry_run", "skipped_limit", "failed", "not_eligible"]
DISPATCHED_OUTCOMES: frozenset[DispatchOutcome] = frozenset({"posted", "dry_run"})


@dataclass
class RunState:
    """Counters and sets that live for exactly one bump run."""

    remaining_budget: int
    budget_cap: int
    dispatched_count: int = 0
    terminal_keys: set[str] = field(default_factory=set)
    oracle_verdicts: dict[str, bool] = field(default_factory=dict)

    @classmethod
    def start(cls, budget: int) -> RunState:
        if budget < 0:
            raise ValueError("budget must be >= 0")
        return cls(remaining_budget=budget, budget_cap=budget)

    @property
    def budget_exhausted(self) -> bool:
        return self.remaining_budget <= 0

    def consume(self) -> None:
        if self.remaining_budget <= 0:
            raise RuntimeError("Cannot consume from an exhausted budget")
        self.remaining_budget -= 1
        self.dispatched_count += 1

    def is_terminal(self, key: str) -> bool:
        return key in self.terminal_keys

    def mark_terminal(self, key: str) -> bool:
        if key in self.terminal_keys:
            return False
        self.terminal_keys.add(key)
        return True


class Dispatcher:
    def __init__(self, github: GitHubGateway, state: RunState) -> None:
        self._github = github
        self._state = state

    def dispatch(
        self, notification: Notification, verdict: Verdict, *, dry_run: bool
    ) -> DispatchOutcome:
        key = notification.key
        if not verdict.eligible:
            return "not_eligible"
        if self._state.budget_exhausted:
            log_event(
                LOGGER,
                "dispatch_skipped_limit",
                pr_key=key,
                action_kind=verdict.action_kind,
                budget_cap=self._state.budget_cap,
            )
            return "skipped_limit"

        body = NudgeTemplate.for_action(verdict.action_kind).text
        if not is_nudge_template(body):
            raise RuntimeError(f"Refusing to post non-template body for {key}")

        if dry_run:
            self._state.consume()
            log_event(
                LOGGER,
                "nudge_dry_run",
                pr_key=key,
                action_kind=verdict.action_kind,
                remaining_budget=self._state.remaining_budget,
            )
            return "dry_run"

        try:
            self._github.post_issue_comment(
                notification.repo_owner,
                notification.repo_name,
                notification.pr_number,
                body,
            )
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "nudge_post_failed",
                pr_key=key,
                action_kind=verdict.action_kind,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return "failed"

        self._state.consume()
        log_event(
            LOGGER,
            "nudge_posted",
            pr_key=key,
            action_kind=verdict.action_kind,
            remaining_budget=self._state.remaining_budget,
        )
        return "posted"
