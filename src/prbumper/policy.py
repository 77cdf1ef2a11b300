from __future__ import annotations

from typing import Final

from prbumper.models import ActionKind, PullRequestSignals, Verdict


NOT_AUTOMATED_AUTHOR: Final[str] = "not_automated_author"
NOT_STALLED: Final[str] = "not_stalled"
NO_ATTENTION_NEEDED: Final[str] = "no_attention_needed"
JUDGED_FIXED: Final[str] = "judged_fixed"
ELIGIBLE: Final[str] = "eligible"

# Rejections that depend on the pass threshold or on live signals; a later,
# more relaxed pass may still reach a different verdict for these.
REVISITABLE_REASONS: Final[frozenset[str]] = frozenset(
    {NOT_STALLED, NO_ATTENTION_NEEDED, JUDGED_FIXED}
)


def first_failed_gate(signals: PullRequestSignals) -> str | None:
    """Return the reason of the first eligibility gate the PR fails, if any.

    Gates run in order: automated author, stalled at the current pass
    threshold, and needs attention (WIP, stopped or failed session, error
    comment from the assistant, or failing checks).
    """
    if not signals.is_automated_author_pr:
        return NOT_AUTOMATED_AUTHOR
    if not signals.is_stalled:
        return NOT_STALLED
    if not signals.needs_attention:
        return NO_ATTENTION_NEEDED
    return None


def select_action(signals: PullRequestSignals) -> ActionKind:
    if signals.has_merge_conflict:
        return "conflict"
    if signals.has_failing_checks:
        return "ci-failure"
    if signals.has_review_comments:
        return "feedback"
    return "generic-nudge"


def rejected(reason: str) -> Verdict:
    return Verdict(eligible=False, action_kind="none", reason=reason)


def decide(signals: PullRequestSignals, *, judged_fixed: bool) -> Verdict:
    failed_gate = first_failed_gate(signals)
    if failed_gate is not None:
        return rejected(failed_gate)
    if judged_fixed:
        return rejected(JUDGED_FIXED)
    return Verdict(eligible=True, action_kind=select_action(signals), reason=ELIGIBLE)
