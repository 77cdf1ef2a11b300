from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import random
from typing import Literal

from prbumper.config import AppConfig
from prbumper.dispatcher import DISPATCHED_OUTCOMES, DispatchOutcome, Dispatcher, RunState
from prbumper.github_gateway import GitHubGateway
from prbumper.models import (
    CheckRun,
    Fetched,
    Notification,
    PullRequestIssueComment,
    PullRequestSignals,
    PullRequestSnapshot,
    T,
    Verdict,
    available,
    unavailable,
)
from prbumper.observability import log_event, log_warning_event
from prbumper.oracle import CompletionOracle, is_issue_fixed
from prbumper.policy import (
    JUDGED_FIXED,
    NOT_AUTOMATED_AUTHOR,
    NOT_STALLED,
    REVISITABLE_REASONS,
    decide,
    first_failed_gate,
    rejected,
)
from prbumper.signals import extract_signals, time_since_update


LOGGER = logging.getLogger("prbumper.orchestrator")

PassName = Literal["strict", "relaxed"]
NOT_OWNED_REPO = "not_owned_repo"
PRIMARY_FETCH_FAILED = "primary_fetch_failed"


@dataclass(frozen=True)
class PullRequestOutcome:
    key: str
    pass_name: PassName
    verdict: Verdict
    dispatch: DispatchOutcome | None


@dataclass(frozen=True)
class RunSummary:
    dispatched: int
    dispatched_by_pass: tuple[tuple[PassName, int], ...]
    outcomes: tuple[PullRequestOutcome, ...]

    def dispatched_in(self, pass_name: PassName) -> int:
        for name, count in self.dispatched_by_pass:
            if name == pass_name:
                return count
        return 0


@dataclass(frozen=True)
class _Evaluation:
    verdict: Verdict
    terminal: bool
    signals: PullRequestSignals | None = None
    pr: PullRequestSnapshot | None = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BumpOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        *,
        github: GitHubGateway,
        oracle: CompletionOracle | None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._github = github
        self._oracle = oracle
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock

    def run(self) -> RunSummary:
        runtime = self._config.runtime
        state = RunState.start(runtime.max_comments_per_run)
        dispatcher = Dispatcher(self._github, state)

        candidates = self._collect_candidates()
        order = list(candidates)
        self._rng.shuffle(order)
        owner_login: str | None = None
        if order and runtime.skip_non_owned_repos:
            owner_login = self._owner_login()
        log_event(
            LOGGER,
            "run_started",
            dry_run=runtime.dry_run,
            budget=state.budget_cap,
            candidate_count=len(order),
            oracle_enabled=self._oracle is not None,
        )

        outcomes: list[PullRequestOutcome] = []
        dispatched_by_pass: list[tuple[PassName, int]] = []

        strict_count = self._run_pass(
            "strict",
            runtime.strict_stall_threshold,
            order,
            owner_login=owner_login,
            state=state,
            dispatcher=dispatcher,
            outcomes=outcomes,
        )
        dispatched_by_pass.append(("strict", strict_count))

        if state.dispatched_count >= runtime.relaxed_pass_floor:
            log_event(
                LOGGER,
                "relaxed_pass_skipped",
                reason="floor_met",
                dispatched=state.dispatched_count,
                floor=runtime.relaxed_pass_floor,
            )
        elif state.budget_exhausted:
            log_event(LOGGER, "relaxed_pass_skipped", reason="budget_exhausted")
        else:
            relaxed_count = self._run_pass(
                "relaxed",
                runtime.relaxed_stall_threshold,
                order,
                owner_login=owner_login,
                state=state,
                dispatcher=dispatcher,
                outcomes=outcomes,
            )
            dispatched_by_pass.append(("relaxed", relaxed_count))

        log_event(
            LOGGER,
            "run_completed",
            dispatched=state.dispatched_count,
            remaining_budget=state.remaining_budget,
            dry_run=runtime.dry_run,
        )
        return RunSummary(
            dispatched=state.dispatched_count,
            dispatched_by_pass=tuple(dispatched_by_pass),
            outcomes=tuple(outcomes),
        )

    def _collect_candidates(self) -> list[Notification]:
        try:
            notifications = self._github.list_notifications()
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "notifications_unavailable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return []

        candidates: dict[str, Notification] = {}
        for notification in notifications:
            if not notification.is_pull_request:
                continue
            try:
                key = notification.key
            except ValueError as exc:
                log_warning_event(
                    LOGGER, "notification_skipped", reason="bad_subject_url", error=str(exc)
                )
                continue
            candidates.setdefault(key, notification)
        log_event(
            LOGGER,
            "candidates_collected",
            notification_count=len(notifications),
            pull_request_count=len(candidates),
        )
        return list(candidates.values())

    def _run_pass(
        self,
        pass_name: PassName,
        threshold: timedelta,
        order: list[Notification],
        *,
        owner_login: str | None,
        state: RunState,
        dispatcher: Dispatcher,
        outcomes: list[PullRequestOutcome],
    ) -> int:
        pending = [item for item in order if not state.is_terminal(item.key)]
        dispatched_before = state.dispatched_count
        log_event(
            LOGGER,
            "pass_started",
            pass_name=pass_name,
            threshold_minutes=int(threshold.total_seconds() // 60),
            candidate_count=len(pending),
            remaining_budget=state.remaining_budget,
        )
        for notification in pending:
            if state.budget_exhausted:
                log_event(
                    LOGGER,
                    "pass_stopped",
                    pass_name=pass_name,
                    reason="budget_exhausted",
                    budget_cap=state.budget_cap,
                )
                break

            evaluation = self._evaluate(
                notification, threshold=threshold, owner_login=owner_login, state=state
            )
            dispatch: DispatchOutcome | None = None
            terminal = evaluation.terminal
            if evaluation.verdict.eligible:
                dispatch = dispatcher.dispatch(
                    notification, evaluation.verdict, dry_run=self._config.runtime.dry_run
                )
                terminal = dispatch in DISPATCHED_OUTCOMES or dispatch == "failed"
            if terminal:
                state.mark_terminal(notification.key)

            self._log_evaluation(
                notification,
                pass_name=pass_name,
                evaluation=evaluation,
                dispatch=dispatch,
                terminal=terminal,
            )
            outcomes.append(
                PullRequestOutcome(
                    key=notification.key,
                    pass_name=pass_name,
                    verdict=evaluation.verdict,
                    dispatch=dispatch,
                )
            )

        dispatched = state.dispatched_count - dispatched_before
        log_event(
            LOGGER,
            "pass_completed",
            pass_name=pass_name,
            dispatched=dispatched,
            remaining_budget=state.remaining_budget,
        )
        return dispatched

    def _owner_login(self) -> str:
        try:
            return self._github.get_authenticated_login()
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "authenticated_user_unavailable",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            # Without a login every repo counts as non-owned.
            return ""

    def _evaluate(
        self,
        notification: Notification,
        *,
        threshold: timedelta,
        owner_login: str | None,
        state: RunState,
    ) -> _Evaluation:
        if owner_login is not None and notification.repo_owner.strip().lower() != owner_login:
            return _Evaluation(verdict=rejected(NOT_OWNED_REPO), terminal=True)

        owner = notification.repo_owner
        repo = notification.repo_name
        number = notification.pr_number
        try:
            pr = self._github.get_pull_request(owner, repo, number)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "pull_request_unavailable",
                pr_key=notification.key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return _Evaluation(verdict=rejected(PRIMARY_FETCH_FAILED), terminal=True)

        bot_login = self._config.identity.bot_login
        now = self._clock()
        signals = extract_signals(pr, bot_login=bot_login, stall_threshold=threshold, now=now)
        failed_gate = first_failed_gate(signals)
        # Author and staleness only need the PR itself; skip the other fetches.
        if failed_gate in (NOT_AUTOMATED_AUTHOR, NOT_STALLED):
            return _Evaluation(
                verdict=rejected(failed_gate),
                terminal=failed_gate not in REVISITABLE_REASONS,
                signals=signals,
                pr=pr,
            )

        if state.oracle_verdicts.get(notification.key) is True:
            log_event(LOGGER, "oracle_verdict_cached", pr_key=notification.key, fixed=True)
            return _Evaluation(
                verdict=rejected(JUDGED_FIXED), terminal=False, signals=signals, pr=pr
            )

        limit = self._config.runtime.recent_comments_to_fetch
        signals = extract_signals(
            pr,
            bot_login=bot_login,
            stall_threshold=threshold,
            now=now,
            issue_comments=self._fetch_auxiliary(
                notification,
                "issue_comments",
                lambda: self._github.list_issue_comments(owner, repo, number, limit=limit),
            ),
            review_comments=self._fetch_auxiliary(
                notification,
                "review_comments",
                lambda: self._github.list_review_comments(owner, repo, number, limit=limit),
            ),
            timeline_events=self._fetch_auxiliary(
                notification,
                "timeline_events",
                lambda: self._github.list_timeline_events(
                    owner, repo, number, limit=self._config.runtime.timeline_events_to_fetch
                ),
            ),
            check_runs=self._fetch_check_runs(notification, pr),
        )

        judged_fixed = False
        if first_failed_gate(signals) is None:
            judged_fixed = self._judged_fixed(
                notification.key, signals.latest_relevant_comment, state=state
            )
        verdict = decide(signals, judged_fixed=judged_fixed)
        return _Evaluation(
            verdict=verdict,
            terminal=not verdict.eligible and verdict.reason not in REVISITABLE_REASONS,
            signals=signals,
            pr=pr,
        )

    def _fetch_check_runs(
        self, notification: Notification, pr: PullRequestSnapshot
    ) -> Fetched[CheckRun]:
        if not pr.head_sha:
            log_warning_event(
                LOGGER,
                "signal_unavailable",
                pr_key=notification.key,
                signal="check_runs",
                error="missing head sha",
            )
            return unavailable("missing head sha")
        return self._fetch_auxiliary(
            notification,
            "check_runs",
            lambda: self._github.list_check_runs(
                notification.repo_owner, notification.repo_name, pr.head_sha
            ),
        )

    def _fetch_auxiliary(
        self, notification: Notification, signal: str, fetch: Callable[[], list[T]]
    ) -> Fetched[T]:
        try:
            return available(fetch())
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "signal_unavailable",
                pr_key=notification.key,
                signal=signal,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return unavailable(str(exc))

    def _judged_fixed(
        self, key: str, comment: PullRequestIssueComment | None, *, state: RunState
    ) -> bool:
        cached = state.oracle_verdicts.get(key)
        if cached is not None:
            log_event(LOGGER, "oracle_verdict_cached", pr_key=key, fixed=cached)
            return cached
        fixed = is_issue_fixed(comment, self._oracle)
        state.oracle_verdicts[key] = fixed
        return fixed

    def _log_evaluation(
        self,
        notification: Notification,
        *,
        pass_name: PassName,
        evaluation: _Evaluation,
        dispatch: DispatchOutcome | None,
        terminal: bool,
    ) -> None:
        fields: dict[str, object] = {
            "pr_key": notification.key,
            "pass_name": pass_name,
            "eligible": evaluation.verdict.eligible,
            "action_kind": evaluation.verdict.action_kind,
            "reason": evaluation.verdict.reason,
            "dispatch": dispatch,
            "terminal": terminal,
        }
        if evaluation.pr is not None:
            fields["title"] = evaluation.pr.title
            fields["minutes_since_update"] = int(
                time_since_update(evaluation.pr, now=self._clock()).total_seconds() // 60
            )
        if evaluation.signals is not None:
            signals = evaluation.signals
            fields["is_wip"] = signals.is_wip
            fields["session_stopped"] = signals.session_stopped
            fields["session_failed"] = signals.session_failed
            fields["has_error_comment"] = signals.has_error_comment
            fields["has_failing_checks"] = signals.has_failing_checks
            fields["has_merge_conflict"] = signals.has_merge_conflict
            fields["has_review_comments"] = signals.has_review_comments
            feedback = signals.latest_feedback_comment
            fields["feedback_author"] = feedback.author_login if feedback is not None else None
        log_event(LOGGER, "pr_evaluated", **fields)
