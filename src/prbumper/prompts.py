from __future__ import annotations

from enum import Enum

from prbumper.models import ActionKind


class NudgeTemplate(Enum):
    """Every comment body the bumper is allowed to post, keyed by action kind."""

    CONFLICT = (
        "conflict",
        "@copilot There is a merge conflict with the base branch. "
        "Please merge in the base branch and resolve the conflicts.",
    )
    CI_FAILURE = (
        "ci-failure",
        "@copilot The CI checks are failing on this PR. "
        "Please fix the failing tests or build issues.",
    )
    FEEDBACK = ("feedback", "@copilot please implement the feedback left on this PR.")
    GENERIC_NUDGE = ("generic-nudge", "@copilot still working?")

    def __init__(self, action_kind: ActionKind, text: str) -> None:
        self.action_kind = action_kind
        self.text = text

    @classmethod
    def for_action(cls, action_kind: ActionKind) -> NudgeTemplate:
        for template in cls:
            if template.action_kind == action_kind:
                return template
        raise ValueError(f"No nudge template for action kind {action_kind!r}")


def is_nudge_template(text: str | None) -> bool:
    if not text:
        return False
    return any(template.text in text for template in NudgeTemplate)


RESOLUTION_SYSTEM_PROMPT = "You are a helpful assistant analyzing GitHub PR comments."


def build_resolution_prompt(*, comment_body: str) -> str:
    return f"""
The following is a comment on a GitHub PR created by Copilot.
I need to determine if this comment indicates that the issue has been fixed or completed.
Comment: "{comment_body}"

Based on this comment, is the issue fixed, resolved, or completed? Answer with "YES" if it appears to be resolved/fixed/completed, or "NO" if it's still in progress or needs more work.
""".strip()
