from __future__ import annotations

from dataclasses import dataclass
import logging

from prbumper.github_gateway import GitHubGateway
from prbumper.observability import log_event, log_warning_event


LOGGER = logging.getLogger("prbumper.issue_assigner")


@dataclass(frozen=True)
class AssignSummary:
    repositories: int
    assigned: int
    already_assigned: int
    failed: int


def assign_open_issues(
    github: GitHubGateway,
    *,
    assignee: str,
    bot_login: str,
    dry_run: bool,
) -> AssignSummary:
    """Assign the coding assistant to every open, unassigned issue in the user's own repos."""
    owner_login = github.get_authenticated_login()
    repositories = github.list_owned_repositories()
    assistant_logins = {assignee.strip().lower(), bot_login.strip().lower()}

    scanned = 0
    assigned = 0
    already_assigned = 0
    failed = 0
    for repository in repositories:
        if repository.owner.strip().lower() != owner_login:
            continue
        scanned += 1
        try:
            issues = github.list_open_issues(repository.owner, repository.name)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "open_issues_unavailable",
                repo_full_name=repository.full_name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            continue

        for issue in issues:
            if assistant_logins.intersection(issue.assignee_logins):
                already_assigned += 1
                continue
            if dry_run:
                log_event(
                    LOGGER,
                    "issue_assigned",
                    repo_full_name=repository.full_name,
                    issue_number=issue.number,
                    dry_run=True,
                )
                assigned += 1
                continue
            try:
                github.add_issue_assignees(
                    repository.owner, repository.name, issue.number, (assignee,)
                )
            except Exception as exc:  # noqa: BLE001
                log_warning_event(
                    LOGGER,
                    "issue_assign_failed",
                    repo_full_name=repository.full_name,
                    issue_number=issue.number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                failed += 1
                continue
            log_event(
                LOGGER,
                "issue_assigned",
                repo_full_name=repository.full_name,
                issue_number=issue.number,
                dry_run=False,
            )
            assigned += 1

    return AssignSummary(
        repositories=scanned,
        assigned=assigned,
        already_assigned=already_assigned,
        failed=failed,
    )
