from __future__ import annotations

from collections.abc import Iterator
import logging

import pytest

from prbumper.observability import configure_logging, log_event, log_warning_event


@pytest.fixture(autouse=True)
def restore_prbumper_logger() -> Iterator[None]:
    logger = logging.getLogger("prbumper")
    handlers = list(logger.handlers)
    level = logger.level
    propagate = logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


def test_quiet_mode_discards_run_events(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=False)

    log_event(logging.getLogger("prbumper.orchestrator"), "run_started", budget=5)
    log_warning_event(
        logging.getLogger("prbumper.dispatcher"), "nudge_post_failed", pr_key="o/r#1"
    )

    assert capsys.readouterr().err == ""
    assert len(logging.getLogger("prbumper").handlers) == 1


def test_low_mode_keeps_run_milestones_and_warnings(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose="low")
    orchestrator_logger = logging.getLogger("prbumper.orchestrator")
    dispatcher_logger = logging.getLogger("prbumper.dispatcher")

    log_event(orchestrator_logger, "pr_evaluated", pr_key="o/r#1", eligible=True)
    log_event(orchestrator_logger, "pass_stopped", pass_name="strict", reason="budget_exhausted")
    log_event(dispatcher_logger, "nudge_dry_run", pr_key="o/r#1", action_kind="generic-nudge")
    log_event(logging.getLogger("prbumper.github_gateway"), "github_read", endpoint="user")
    log_warning_event(orchestrator_logger, "signal_unavailable", signal="timeline_events")

    stderr = capsys.readouterr().err
    assert "event=pr_evaluated" not in stderr
    assert "event=github_read" not in stderr
    assert "event=pass_stopped pass_name=strict reason=budget_exhausted" in stderr
    assert "event=nudge_dry_run action_kind=generic-nudge pr_key=o/r#1" in stderr
    assert "event=signal_unavailable signal=timeline_events" in stderr


def test_high_mode_emits_every_event_with_logger_name(
    capsys: pytest.CaptureFixture[str],
) -> None:
    configure_logging(verbose="high")

    log_event(
        logging.getLogger("prbumper.orchestrator"),
        "pass_stopped",
        pass_name="relaxed",
        budget_cap=5,
    )

    line = capsys.readouterr().err.strip()
    assert " INFO prbumper.orchestrator event=pass_stopped budget_cap=5 pass_name=relaxed" in line


def test_reconfiguring_replaces_the_handler() -> None:
    configure_logging(verbose=True)
    configure_logging(verbose="low")

    assert len(logging.getLogger("prbumper").handlers) == 1


def test_unknown_verbose_mode_is_rejected() -> None:
    with pytest.raises(ValueError, match="Unsupported verbose mode"):
        configure_logging(verbose="debug")


def test_pr_titles_and_missing_fields_are_log_safe(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging(verbose=True)

    log_event(
        logging.getLogger("prbumper.orchestrator"),
        "pr_evaluated",
        title="[WIP] Fix a=b\nparsing",
        feedback_author=None,
        dispatch="posted",
        terminal=True,
        minutes_since_update=95,
        details={"k": "v"},
    )

    stderr = capsys.readouterr().err
    assert 'title="[WIP] Fix a=b parsing"' in stderr
    assert "feedback_author=null" in stderr
    assert "terminal=true" in stderr
    assert "minutes_since_update=95" in stderr
    assert "details=<dict>" in stderr
    assert stderr.index("dispatch=") < stderr.index("title=")
