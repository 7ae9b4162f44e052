from __future__ import annotations

from calendar import monthrange
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging
import re
from typing import cast

from prbuddy.models import (
    CommentQueryOptions,
    DailyCount,
    PullRequestDetails,
    PullRequestDiffSummary,
    PullRequestStats,
    RepositoryCount,
    StatsPeriod,
)
from prbuddy.observability import log_event
from prbuddy.shell import CommandError, run


LOGGER = logging.getLogger("prbuddy.github_cli")
_PR_URL_NUMBER_PATTERN = re.compile(r"/pull/(\d+)\s*$")
_PR_LIST_STATES = {"open", "closed", "merged", "all"}
_PR_VIEW_FIELDS = (
    "number,title,body,state,author,url,headRefName,baseRefName,createdAt,updatedAt,"
    "mergeable,labels,assignees,reviewRequests,isDraft,additions,deletions,changedFiles"
)
_PR_LIST_FIELDS = (
    "number,title,body,state,author,url,headRefName,baseRefName,createdAt,updatedAt,"
    "labels,isDraft"
)
_MERGED_PR_FIELDS = "number,title,mergedAt,additions,deletions,changedFiles,headRepository"
_TOP_REPOSITORY_LIMIT = 5

_PR_COMMENTS_QUERY = """
fragment InlineCommentFields on PullRequestReviewComment {
  id
  author { login avatarUrl }
  body
  createdAt
  updatedAt
  url
  path
  line
  startLine
  position
  diffHunk
}

query(
  $owner: String!
  $name: String!
  $number: Int!
  $first: Int!
  $withGeneral: Boolean!
  $withReviews: Boolean!
  $withThreads: Boolean!
) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      comments(first: $first) @include(if: $withGeneral) {
        nodes {
          id
          author { login avatarUrl }
          body
          createdAt
          updatedAt
          url
        }
      }
      reviews(first: $first) @include(if: $withReviews) {
        nodes {
          id
          author { login avatarUrl }
          body
          state
          createdAt
          submittedAt
          updatedAt
          url
          comments(first: $first) {
            nodes { ...InlineCommentFields }
          }
        }
      }
      resolvableThreads: reviewThreads(first: $first) @include(if: $withThreads) {
        nodes {
          id
          isResolved
          comments(first: $first) {
            nodes { ...InlineCommentFields }
          }
        }
      }
    }
  }
}
""".strip()


class GitHubCliError(RuntimeError):
    def __init__(self, message: str, *, exit_code: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass(frozen=True)
class GitHubCli:
    """Thin command builder around the ``gh`` CLI.

    ``repo`` is ``owner/name``. When it is ``None`` gh resolves the
    repository from the working directory.
    """

    repo: str | None = None

    def check_auth(self) -> bool:
        try:
            run(["gh", "auth", "status"])
        except CommandError:
            return False
        return True

    def fetch_pr_comments_document(
        self, pr_number: int, options: CommentQueryOptions
    ) -> dict[str, object]:
        owner, name = self._owner_and_name()
        argv = [
            "gh",
            "api",
            "graphql",
            "-f",
            f"query={_PR_COMMENTS_QUERY}",
            "-f",
            f"owner={owner}",
            "-f",
            f"name={name}",
            "-F",
            f"number={pr_number}",
            "-F",
            f"first={options.max_comments}",
            "-F",
            f"withGeneral={_graphql_bool(options.include_general_comments)}",
            "-F",
            f"withReviews={_graphql_bool(options.include_review_comments or options.include_inline_comments)}",
            "-F",
            f"withThreads={_graphql_bool(options.include_inline_comments)}",
        ]
        try:
            raw = run(argv)
        except CommandError as exc:
            # gh exits non-zero on GraphQL errors but still prints the payload.
            payload = _parse_json_or_none(exc.stdout)
            if payload is None or not _only_not_found_errors(payload):
                raise _wrap_command_error(exc, action="graphql_pr_comments") from exc
            log_event(LOGGER, "github_read", endpoint="graphql_pr_comments", found=False)
            return {"subject": None}

        payload = _parse_json(raw, context="graphql_pr_comments")
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubCliError("Unexpected GitHub response: expected object for GraphQL")
        if payload_obj.get("errors"):
            if _only_not_found_errors(payload_obj):
                return {"subject": None}
            raise GitHubCliError(f"GraphQL error: {_first_error_message(payload_obj)}")

        data_obj = _as_object_dict(payload_obj.get("data"))
        repository_obj = _as_object_dict(data_obj.get("repository")) if data_obj else None
        subject = repository_obj.get("pullRequest") if repository_obj else None
        log_event(
            LOGGER,
            "github_read",
            endpoint="graphql_pr_comments",
            pr_number=pr_number,
            found=subject is not None,
        )
        return {"subject": subject}

    def get_pr_details(self, pr_number: int) -> PullRequestDetails:
        payload = self._gh_json(["pr", "view", str(pr_number), "--json", _PR_VIEW_FIELDS])
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubCliError("Unexpected GitHub response: expected object for pr view")
        log_event(LOGGER, "github_read", endpoint="pr_view", pr_number=pr_number)
        return _parse_pull_request(payload_obj)

    def list_my_prs(self, state: str = "open", limit: int = 10) -> list[PullRequestDetails]:
        if state not in _PR_LIST_STATES:
            raise ValueError(f"state must be one of: {', '.join(sorted(_PR_LIST_STATES))}")
        if not 1 <= limit <= 100:
            raise ValueError("limit must be between 1 and 100")
        payload = self._gh_json(
            [
                "pr",
                "list",
                "--author",
                "@me",
                "--state",
                state,
                "--limit",
                str(limit),
                "--json",
                _PR_LIST_FIELDS,
            ]
        )
        if not isinstance(payload, list):
            raise GitHubCliError("Unexpected GitHub response: expected list for pr list")
        prs: list[PullRequestDetails] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            prs.append(_parse_pull_request(item_obj))
        log_event(LOGGER, "github_read", endpoint="pr_list", state=state, count=len(prs))
        return prs

    def create_pr(
        self,
        *,
        title: str,
        body: str,
        base: str,
        head: str | None = None,
        labels: tuple[str, ...] = (),
        draft: bool = False,
    ) -> PullRequestDetails:
        argv = ["pr", "create", "--title", title, "--body", body, "--base", base]
        if head:
            argv.extend(["--head", head])
        if draft:
            argv.append("--draft")
        try:
            output = self._gh(argv)
            match = _PR_URL_NUMBER_PATTERN.search(output)
            if match is None:
                raise GitHubCliError(f"Could not parse pull request URL from: {output!r}")
            pr_number = int(match.group(1))
        except GitHubCliError as exc:
            log_event(
                LOGGER,
                "github_pr_create_failed",
                repo=self.repo,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_pr_created", repo=self.repo, pr_number=pr_number, base=base)

        if labels:
            self.add_labels(pr_number, labels)
        return self.get_pr_details(pr_number)

    def edit_pr(self, pr_number: int, *, title: str | None = None, body: str | None = None) -> str:
        if title is None and body is None:
            raise ValueError("edit_pr requires a title or a body")
        argv = ["pr", "edit", str(pr_number)]
        if title is not None:
            argv.extend(["--title", title])
        if body is not None:
            argv.extend(["--body", body])
        self._gh(argv)
        log_event(LOGGER, "github_pr_edited", pr_number=pr_number)
        return f"Successfully updated PR #{pr_number}"

    def add_labels(self, pr_number: int, labels: tuple[str, ...]) -> str:
        self._gh(["pr", "edit", str(pr_number), "--add-label", ",".join(labels)])
        log_event(LOGGER, "github_labels_added", pr_number=pr_number, labels=labels)
        return f"Successfully added labels [{', '.join(labels)}] to PR #{pr_number}"

    def remove_labels(self, pr_number: int, labels: tuple[str, ...]) -> str:
        self._gh(["pr", "edit", str(pr_number), "--remove-label", ",".join(labels)])
        log_event(LOGGER, "github_labels_removed", pr_number=pr_number, labels=labels)
        return f"Successfully removed labels [{', '.join(labels)}] from PR #{pr_number}"

    def enable_preview_env(self, pr_number: int, label: str) -> str:
        self.add_labels(pr_number, (label,))
        return f"Successfully enabled preview environment for PR #{pr_number}"

    def checkout_pr_branch(self, pr_number: int, *, create_local: bool = True) -> str:
        argv = ["pr", "checkout", str(pr_number)]
        if not create_local:
            argv.append("--detach")
        try:
            self._gh(argv)
        except GitHubCliError as exc:
            raise GitHubCliError(
                f"Failed to checkout PR #{pr_number}: {exc}",
                exit_code=exc.exit_code,
                stderr=exc.stderr,
            ) from exc
        return f"Successfully checked out PR #{pr_number}"

    def get_pr_diff_summary(self, pr_number: int, max_files: int = 20) -> PullRequestDiffSummary:
        if max_files < 1:
            raise ValueError("max_files must be >= 1")
        names_output = self._gh(["pr", "diff", str(pr_number), "--name-only"])
        files = [line.strip() for line in names_output.splitlines() if line.strip()]
        stats = _as_object_dict(
            self._gh_json(
                ["pr", "view", str(pr_number), "--json", "additions,deletions,changedFiles"]
            )
        )
        if stats is None:
            raise GitHubCliError("Unexpected GitHub response: expected object for diff stats")
        changed_files = _as_int_or_zero(stats.get("changedFiles")) or len(files)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pr_diff",
            pr_number=pr_number,
            count=len(files),
        )
        return PullRequestDiffSummary(
            number=pr_number,
            files=tuple(files[:max_files]),
            changed_files=changed_files,
            additions=_as_int_or_zero(stats.get("additions")),
            deletions=_as_int_or_zero(stats.get("deletions")),
            max_files=max_files,
        )

    def get_pr_stats(self, period: StatsPeriod, *, now: datetime | None = None) -> PullRequestStats:
        end = now if now is not None else datetime.now(timezone.utc)
        start = _period_start(period, end)
        payload = self._gh_json(
            [
                "pr",
                "list",
                "--author",
                "@me",
                "--state",
                "merged",
                "--limit",
                "100",
                "--json",
                _MERGED_PR_FIELDS,
            ]
        )
        if not isinstance(payload, list):
            raise GitHubCliError("Unexpected GitHub response: expected list for merged PRs")

        in_period: list[tuple[dict[str, object], datetime]] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            merged_at = _parse_timestamp(item_obj.get("mergedAt"))
            if merged_at is None or not start <= merged_at <= end:
                continue
            in_period.append((item_obj, merged_at))

        total_merged = len(in_period)
        added = sum(_as_int_or_zero(item.get("additions")) for item, _ in in_period)
        deleted = sum(_as_int_or_zero(item.get("deletions")) for item, _ in in_period)
        files_changed = sum(_as_int_or_zero(item.get("changedFiles")) for item, _ in in_period)

        fallback_repo_name = self._current_repo_name() if in_period else "unknown"
        repo_counts: Counter[str] = Counter()
        day_counts: Counter[str] = Counter()
        for item, merged_at in in_period:
            head_repo = _as_object_dict(item.get("headRepository"))
            repo_name = head_repo.get("name") if head_repo else None
            repo_counts[repo_name if isinstance(repo_name, str) and repo_name else fallback_repo_name] += 1
            day_counts[merged_at.date().isoformat()] += 1

        top_repositories = tuple(
            RepositoryCount(
                repo=repo_name,
                count=count,
                percentage=round(count / total_merged * 100),
            )
            for repo_name, count in repo_counts.most_common(_TOP_REPOSITORY_LIMIT)
        )
        log_event(LOGGER, "github_read", endpoint="pr_stats", period=period, count=total_merged)
        return PullRequestStats(
            period=period,
            total_merged=total_merged,
            total_lines_added=added,
            total_lines_deleted=deleted,
            total_files_changed=files_changed,
            average_pr_size=round((added + deleted) / total_merged) if total_merged else 0,
            top_repositories=top_repositories,
            prs_by_day=tuple(
                DailyCount(date=date, count=count) for date, count in sorted(day_counts.items())
            ),
            period_start=start.isoformat(),
            period_end=end.isoformat(),
        )

    def _owner_and_name(self) -> tuple[str, str]:
        if self.repo:
            owner, _, name = self.repo.partition("/")
            return owner, name
        payload = _as_object_dict(self._gh_json(["repo", "view", "--json", "owner,name"]))
        owner_obj = _as_object_dict(payload.get("owner")) if payload else None
        owner = owner_obj.get("login") if owner_obj else None
        name = payload.get("name") if payload else None
        if not isinstance(owner, str) or not isinstance(name, str):
            raise GitHubCliError("Could not resolve the current repository owner and name")
        return owner, name

    def _current_repo_name(self) -> str:
        if self.repo:
            return self.repo.partition("/")[2]
        try:
            payload = _as_object_dict(self._gh_json(["repo", "view", "--json", "name"]))
        except GitHubCliError:
            return "unknown"
        name = payload.get("name") if payload else None
        return name if isinstance(name, str) and name else "unknown"

    def _gh(self, args: list[str]) -> str:
        argv = ["gh", *args]
        if self.repo and args[0] == "pr":
            argv.extend(["--repo", self.repo])
        try:
            return run(argv).strip()
        except CommandError as exc:
            raise _wrap_command_error(exc, action=" ".join(args[:2])) from exc

    def _gh_json(self, args: list[str]) -> object:
        return _parse_json(self._gh(args), context=" ".join(args[:2]))


def _wrap_command_error(exc: CommandError, *, action: str) -> GitHubCliError:
    log_event(
        LOGGER,
        "github_cli_failed",
        action=action,
        exit_code=exc.exit_code,
        stderr=exc.stderr,
    )
    detail = exc.stderr.strip() or exc.stdout.strip() or f"exit code {exc.exit_code}"
    return GitHubCliError(
        f"GitHub CLI command failed: {detail}",
        exit_code=exc.exit_code,
        stderr=exc.stderr,
    )


def _parse_pull_request(payload: dict[str, object]) -> PullRequestDetails:
    author_obj = _as_object_dict(payload.get("author"))
    return PullRequestDetails(
        number=_as_int_or_zero(payload.get("number")),
        title=_as_string(payload.get("title")),
        body=_as_string(payload.get("body")),
        state=_as_string(payload.get("state")).lower(),
        author=_as_string(author_obj.get("login") if author_obj else None),
        url=_as_string(payload.get("url")),
        head_ref_name=_as_string(payload.get("headRefName")),
        base_ref_name=_as_string(payload.get("baseRefName")),
        created_at=_as_string(payload.get("createdAt")),
        updated_at=_as_string(payload.get("updatedAt")),
        mergeable=_as_string(payload.get("mergeable")).lower() or "unknown",
        labels=_names(payload.get("labels"), key="name"),
        assignees=_names(payload.get("assignees"), key="login"),
        reviewers=_reviewer_logins(payload.get("reviewRequests")),
        is_draft=payload.get("isDraft") is True,
        additions=_as_int_or_zero(payload.get("additions")),
        deletions=_as_int_or_zero(payload.get("deletions")),
        changed_files=_as_int_or_zero(payload.get("changedFiles")),
    )


def _names(value: object, *, key: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    names: list[str] = []
    for entry in value:
        entry_obj = _as_object_dict(entry)
        if entry_obj is None:
            continue
        name = entry_obj.get(key)
        if isinstance(name, str) and name:
            names.append(name)
    return tuple(names)


def _reviewer_logins(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    logins: list[str] = []
    for entry in value:
        entry_obj = _as_object_dict(entry)
        if entry_obj is None:
            continue
        # gh flattens requested reviewers; older payloads nest them.
        nested = _as_object_dict(entry_obj.get("requestedReviewer"))
        login = (nested or entry_obj).get("login")
        if isinstance(login, str) and login:
            logins.append(login)
    return tuple(logins)


def _period_start(period: StatsPeriod, now: datetime) -> datetime:
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "day":
        return midnight
    if period == "week":
        return midnight - timedelta(days=7)
    if period == "month":
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        day = min(now.day, monthrange(year, month)[1])
        return midnight.replace(year=year, month=month, day=day)
    raise ValueError(f"Unsupported stats period: {period!r}")


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _graphql_bool(value: bool) -> str:
    return "true" if value else "false"


def _parse_json(raw: str, *, context: str) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise GitHubCliError(f"Unexpected non-JSON output from gh {context}") from exc


def _parse_json_or_none(raw: str) -> dict[str, object] | None:
    try:
        return _as_object_dict(json.loads(raw))
    except json.JSONDecodeError:
        return None


def _only_not_found_errors(payload: dict[str, object]) -> bool:
    errors = payload.get("errors")
    if not isinstance(errors, list) or not errors:
        return False
    for error in errors:
        error_obj = _as_object_dict(error)
        if error_obj is None or error_obj.get("type") != "NOT_FOUND":
            return False
    return True


def _first_error_message(payload: dict[str, object]) -> str:
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        first = _as_object_dict(errors[0])
        message = first.get("message") if first else None
        if isinstance(message, str):
            return message
    return "unknown error"


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


def _as_int_or_zero(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return 0
    return 0
