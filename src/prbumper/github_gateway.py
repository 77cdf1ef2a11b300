from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
from typing import cast
from urllib.parse import urlencode

from prbumper.models import (
    CheckRun,
    Issue,
    Notification,
    PullRequestIssueComment,
    PullRequestReviewComment,
    PullRequestSnapshot,
    Repository,
    SessionOutcome,
    TimelineEvent,
)
from prbumper.observability import log_event
from prbumper.shell import run


LOGGER = logging.getLogger("prbumper.github_gateway")
_PAGE_SIZE = 100
_SESSION_STOPPED_EVENTS: dict[str, SessionOutcome] = {
    "copilot_work_finished": "success",
    "copilot_work_finished_failure": "failure",
}


class GitHubPollingError(RuntimeError):
    """Recoverable GitHub read failure; callers treat the data as unavailable."""


@dataclass(frozen=True)
class GitHubGateway:
    env: dict[str, str] | None = field(default=None, repr=False, compare=False)
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    def get_authenticated_login(self) -> str:
        payload_obj = _as_object_dict(self._api_json("GET", "/user"))
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for user")
        login = _as_login(payload_obj.get("login"))
        if not login:
            raise RuntimeError("Unexpected GitHub response: authenticated user has no login")
        log_event(LOGGER, "github_read", endpoint="user", login=login)
        return login

    def list_notifications(self) -> list[Notification]:
        query = urlencode({"all": "true", "participating": "true", "per_page": _PAGE_SIZE})
        payload = self._api_json("GET", f"/notifications?{query}")
        if not isinstance(payload, list):
            raise RuntimeError("Unexpected GitHub response: expected list for notifications")

        notifications: list[Notification] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            subject = _as_object_dict(item_obj.get("subject"))
            repository = _as_object_dict(item_obj.get("repository"))
            if subject is None or repository is None:
                continue
            owner = _as_object_dict(repository.get("owner"))
            notifications.append(
                Notification(
                    subject_type=_as_string(subject.get("type")),
                    subject_url=_as_string(subject.get("url")),
                    repo_owner=_as_string(owner.get("login") if owner else None),
                    repo_name=_as_string(repository.get("name")),
                )
            )
        log_event(LOGGER, "github_read", endpoint="notifications", count=len(notifications))
        return notifications

    def get_pull_request(self, owner: str, repo: str, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{owner}/{repo}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        if head is None:
            raise RuntimeError("Unexpected GitHub response: missing pull request head")
        user_obj = _as_object_dict(payload_obj.get("user"))

        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            body=_as_optional_str(payload_obj.get("body")),
            author_login=_as_login(user_obj.get("login") if user_obj else None),
            draft=_as_bool(payload_obj.get("draft", False)),
            updated_at=_as_datetime(payload_obj.get("updated_at"), field="updated_at"),
            head_sha=_as_string(head.get("sha")),
            mergeable=_as_optional_bool(payload_obj.get("mergeable")),
            mergeable_state=_as_string(payload_obj.get("mergeable_state")).strip().lower(),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            repo_full_name=f"{owner}/{repo}",
            pr_number=snapshot.number,
        )
        return snapshot

    def list_issue_comments(
        self, owner: str, repo: str, issue_number: int, *, limit: int
    ) -> list[PullRequestIssueComment]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        items = self._get_all_pages(f"/repos/{owner}/{repo}/issues/{issue_number}/comments", {})
        comments = [
            PullRequestIssueComment(
                author_login=_comment_author(item_obj),
                body=_as_optional_str(item_obj.get("body")),
                created_at=_as_string(item_obj.get("created_at")),
            )
            for item_obj in items
        ]
        newest_first = sorted(comments, key=lambda comment: comment.created_at, reverse=True)
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            repo_full_name=f"{owner}/{repo}",
            issue_number=issue_number,
            count=len(comments),
        )
        return newest_first[:limit]

    def list_review_comments(
        self, owner: str, repo: str, pr_number: int, *, limit: int
    ) -> list[PullRequestReviewComment]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        query = urlencode({"sort": "created", "direction": "desc", "per_page": limit})
        payload = self._api_json("GET", f"/repos/{owner}/{repo}/pulls/{pr_number}/comments?{query}")
        if not isinstance(payload, list):
            raise RuntimeError("Unexpected GitHub response: expected list of review comments")

        comments: list[PullRequestReviewComment] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            comments.append(
                PullRequestReviewComment(
                    author_login=_comment_author(item_obj),
                    body=_as_optional_str(item_obj.get("body")),
                    created_at=_as_string(item_obj.get("created_at")),
                )
            )
        newest_first = sorted(comments, key=lambda comment: comment.created_at, reverse=True)
        log_event(
            LOGGER,
            "github_read",
            endpoint="review_comments",
            repo_full_name=f"{owner}/{repo}",
            pr_number=pr_number,
            count=len(comments),
        )
        return newest_first[:limit]

    def list_timeline_events(
        self, owner: str, repo: str, issue_number: int, *, limit: int
    ) -> list[TimelineEvent]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        # GitHub returns the timeline oldest first; keep the newest events.
        items = self._get_all_pages(f"/repos/{owner}/{repo}/issues/{issue_number}/timeline", {})

        events: list[TimelineEvent] = []
        for item_obj in items[-limit:]:
            raw_kind = _as_string(item_obj.get("event")).strip().lower()
            actor = _as_object_dict(item_obj.get("actor"))
            actor_login = _as_login(actor.get("login") if actor else None) or None
            outcome = _SESSION_STOPPED_EVENTS.get(raw_kind)
            if outcome is not None:
                events.append(
                    TimelineEvent(
                        kind="session-stopped", actor_login=actor_login, session_outcome=outcome
                    )
                )
                continue
            events.append(TimelineEvent(kind=raw_kind, actor_login=actor_login))
        log_event(
            LOGGER,
            "github_read",
            endpoint="timeline",
            repo_full_name=f"{owner}/{repo}",
            issue_number=issue_number,
            count=len(events),
        )
        return events

    def list_check_runs(self, owner: str, repo: str, ref: str) -> list[CheckRun]:
        query = urlencode({"per_page": _PAGE_SIZE})
        payload_obj = _as_object_dict(
            self._api_json("GET", f"/repos/{owner}/{repo}/commits/{ref}/check-runs?{query}")
        )
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for check runs")
        runs_payload = payload_obj.get("check_runs")
        if not isinstance(runs_payload, list):
            raise RuntimeError("Unexpected GitHub response: expected check_runs list")

        runs: list[CheckRun] = []
        for item in runs_payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            runs.append(
                CheckRun(
                    name=_as_string(item_obj.get("name")),
                    conclusion=_normalize_optional_lower_str(item_obj.get("conclusion")),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="check_runs",
            repo_full_name=f"{owner}/{repo}",
            ref=ref,
            count=len(runs),
        )
        return runs

    def post_issue_comment(self, owner: str, repo: str, issue_number: int, body: str) -> None:
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=f"{owner}/{repo}",
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_comment_posted",
            repo_full_name=f"{owner}/{repo}",
            issue_number=issue_number,
        )

    def list_owned_repositories(self) -> list[Repository]:
        items = self._get_all_pages("/user/repos", {"type": "owner"})
        repositories: list[Repository] = []
        for item_obj in items:
            owner = _as_object_dict(item_obj.get("owner"))
            name = _as_string(item_obj.get("name"))
            if owner is None or not name:
                continue
            repositories.append(Repository(owner=_as_string(owner.get("login")), name=name))
        log_event(LOGGER, "github_read", endpoint="owned_repositories", count=len(repositories))
        return repositories

    def list_open_issues(self, owner: str, repo: str) -> list[Issue]:
        items = self._get_all_pages(f"/repos/{owner}/{repo}/issues", {"state": "open"})
        issues: list[Issue] = []
        for item_obj in items:
            # GitHub returns pull requests in the issues endpoint; ignore those.
            if "pull_request" in item_obj:
                continue
            assignees = item_obj.get("assignees")
            assignee_logins: list[str] = []
            if isinstance(assignees, list):
                for entry in assignees:
                    entry_obj = _as_object_dict(entry)
                    if entry_obj is None:
                        continue
                    login = _as_login(entry_obj.get("login"))
                    if login:
                        assignee_logins.append(login)
            issues.append(
                Issue(
                    number=_as_int(item_obj.get("number"), field="number"),
                    title=_as_string(item_obj.get("title")),
                    assignee_logins=tuple(assignee_logins),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="open_issues",
            repo_full_name=f"{owner}/{repo}",
            count=len(issues),
        )
        return issues

    def add_issue_assignees(
        self, owner: str, repo: str, issue_number: int, assignees: tuple[str, ...]
    ) -> None:
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/assignees"
        try:
            self._api_json("POST", path, payload={"assignees": list(assignees)})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_assign_failed",
                repo_full_name=f"{owner}/{repo}",
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_issue_assigned",
            repo_full_name=f"{owner}/{repo}",
            issue_number=issue_number,
        )

    def _get_all_pages(
        self, base_path: str, query_items: dict[str, object]
    ) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            query = urlencode({**query_items, "per_page": _PAGE_SIZE, "page": page})
            payload = self._api_json("GET", f"{base_path}?{query}")
            if not isinstance(payload, list):
                raise RuntimeError(f"Unexpected GitHub response: expected list for {base_path}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        return items

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            cmd = ["gh", "api", "--method", method_upper]
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
            cmd.extend(["--include", path])

            raw = run(cmd, env=self.env, check=False)
            try:
                status_code, headers, body = _parse_http_response(raw)

                if status_code == 304:
                    cached_payload = self._cached_get_payload_by_path.get(path)
                    if cached_payload is None:
                        raise RuntimeError(f"GitHub returned 304 for uncached path: {path}")
                    return cached_payload

                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise RuntimeError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )

                payload_obj = json.loads(body)
                etag = headers.get("etag")
                if etag:
                    self._etags_by_path[path] = etag
                    self._cached_get_payload_by_path[path] = payload_obj
                return payload_obj
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_poll_get_failed",
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                raise GitHubPollingError(
                    f"GitHub polling GET failed for path {path}: {exc}"
                ) from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload, env=self.env)
        if not raw.strip():
            return None
        return json.loads(raw)


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _comment_author(item_obj: dict[str, object]) -> str | None:
    user_obj = _as_object_dict(item_obj.get("user"))
    login = _as_login(user_obj.get("login") if user_obj else None)
    return login or None


def _normalize_optional_lower_str(value: object) -> str | None:
    raw = _as_optional_str(value)
    if raw is None:
        return None
    normalized = raw.strip().lower()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise RuntimeError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise RuntimeError(f"Unexpected GitHub response type for {field}")


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    raise RuntimeError("Unexpected GitHub response type for bool field")


def _as_optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    return _as_bool(value)


def _as_datetime(value: object, *, field: str) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise RuntimeError(f"Unexpected GitHub response type for {field}")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response value for {field}: {value}") from exc
    if parsed.tzinfo is None:
        raise RuntimeError(f"GitHub timestamp for {field} has no timezone: {value}")
    return parsed
