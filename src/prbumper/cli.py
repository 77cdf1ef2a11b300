from __future__ import annotations

import argparse
from dataclasses import replace
import os
from pathlib import Path

from prbumper.config import (
    AppConfig,
    ConfigError,
    apply_env_overrides,
    gh_env,
    load_config,
    resolve_token,
)
from prbumper.github_gateway import GitHubGateway
from prbumper.issue_assigner import assign_open_issues
from prbumper.observability import configure_logging
from prbumper.oracle import build_oracle
from prbumper.orchestrator import BumpOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prbumper")
    subparsers = parser.add_subparsers(dest="command", required=True)

    bump_parser = subparsers.add_parser(
        "bump", help="Nudge stalled assistant-authored pull requests from notifications"
    )
    _add_common_arguments(bump_parser)

    assign_parser = subparsers.add_parser(
        "assign-issues", help="Assign the coding assistant to open issues in owned repositories"
    )
    _add_common_arguments(assign_parser)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log intended writes without touching GitHub",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    verbosity.add_argument(
        "--verbose-mode",
        choices=("low", "high"),
        default=None,
        help="Log only key events (low) or every event (high) to stderr",
    )


def main() -> None:
    args = build_parser().parse_args()
    verbose_mode = getattr(args, "verbose_mode", None)
    configure_logging(verbose_mode or bool(getattr(args, "verbose", False)))

    try:
        config = apply_env_overrides(load_config(args.config), os.environ)
        if bool(getattr(args, "dry_run", False)):
            config = replace(config, runtime=replace(config.runtime, dry_run=True))
        token = resolve_token(config, os.environ)
    except ConfigError as exc:
        raise SystemExit(f"prbumper: {exc}") from exc

    env = gh_env(token, os.environ)
    if args.command == "bump":
        _cmd_bump(config, env=env)
        return
    if args.command == "assign-issues":
        _cmd_assign_issues(config, env=env)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_bump(config: AppConfig, *, env: dict[str, str]) -> None:
    github = GitHubGateway(env=env)
    orchestrator = BumpOrchestrator(
        config,
        github=github,
        oracle=build_oracle(config.oracle, env=env),
    )
    summary = orchestrator.run()

    mode = "dry-run" if config.runtime.dry_run else "live"
    print(
        f"Dispatched {summary.dispatched}/{config.runtime.max_comments_per_run} nudges ({mode})"
    )
    for name, count in summary.dispatched_by_pass:
        print(f"  {name} pass: {count}")
    for outcome in summary.outcomes:
        if outcome.dispatch is None:
            continue
        print(f"  {outcome.key}: {outcome.dispatch} {outcome.verdict.action_kind}")


def _cmd_assign_issues(config: AppConfig, *, env: dict[str, str]) -> None:
    github = GitHubGateway(env=env)
    summary = assign_open_issues(
        github,
        assignee=config.identity.assignee,
        bot_login=config.identity.bot_login,
        dry_run=config.runtime.dry_run,
    )
    mode = "dry-run" if config.runtime.dry_run else "live"
    print(
        f"Assigned {summary.assigned} issues across {summary.repositories} repositories ({mode}); "
        f"{summary.already_assigned} already assigned, {summary.failed} failed"
    )
