from __future__ import annotations

from abc import ABC, abstractmethod
import logging

from prbumper.config import OracleConfig
from prbumper.models import PullRequestIssueComment
from prbumper.observability import log_event, log_warning_event
from prbumper.prompts import RESOLUTION_SYSTEM_PROMPT, build_resolution_prompt
from prbumper.shell import run


LOGGER = logging.getLogger("prbumper.oracle")


class CompletionOracle(ABC):
    @abstractmethod
    def complete(self, prompt: str, *, system: str) -> str:
        """Return the model's free-text reply to ``prompt``."""


class GitHubModelsOracle(CompletionOracle):
    """Completion oracle backed by ``gh models run`` (GitHub Models inference)."""

    def __init__(self, config: OracleConfig, *, env: dict[str, str] | None = None) -> None:
        self._config = config
        self._env = env

    def complete(self, prompt: str, *, system: str) -> str:
        cmd = [
            "gh",
            "models",
            "run",
            self._config.model,
            "--system-prompt",
            system,
            "--temperature",
            str(self._config.temperature),
        ]
        log_event(LOGGER, "oracle_call_started", model=self._config.model)
        reply = run(cmd, input_text=prompt, env=self._env)
        log_event(LOGGER, "oracle_call_finished", model=self._config.model, reply=reply)
        return reply


def build_oracle(
    config: OracleConfig, *, env: dict[str, str] | None = None
) -> CompletionOracle | None:
    if not config.enabled:
        log_event(LOGGER, "oracle_disabled")
        return None
    return GitHubModelsOracle(config, env=env)


def is_issue_fixed(
    comment: PullRequestIssueComment | None, oracle: CompletionOracle | None
) -> bool:
    """Ask the oracle whether ``comment`` says the work is done.

    Missing input or any oracle failure answers "not fixed".
    """
    if comment is None or oracle is None or not comment.body:
        return False

    prompt = build_resolution_prompt(comment_body=comment.body)
    try:
        normalized = oracle.complete(prompt, system=RESOLUTION_SYSTEM_PROMPT).strip().upper()
    except Exception as exc:  # noqa: BLE001
        log_warning_event(
            LOGGER,
            "oracle_call_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return False

    fixed = "YES" in normalized
    log_event(LOGGER, "oracle_verdict", fixed=fixed, reply=normalized)
    return fixed
