from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, TypeVar


CommentCategory = Literal["general", "review", "inline"]
ReviewState = Literal["approved", "changes_requested", "commented", "dismissed"]
GroupBy = Literal["type", "author", "file", "chronological"]
PullRequestState = Literal["open", "closed", "merged", "all"]
StatsPeriod = Literal["day", "week", "month"]

_T = TypeVar("_T")

GROUP_BY_CHOICES: tuple[GroupBy, ...] = ("chronological", "type", "author", "file")
UNKNOWN_AUTHOR = "unknown"
MAX_COMMENTS_LIMIT = 100


@dataclass(frozen=True)
class CommentAuthor:
    handle: str = UNKNOWN_AUTHOR
    avatar_url: str | None = None


@dataclass(frozen=True)
class CommentLocation:
    path: str
    line: int | None = None
    start_line: int | None = None
    position: int | None = None
    diff_hunk: str | None = None


@dataclass(frozen=True)
class CommentResolution:
    is_resolved: bool
    thread_id: str


@dataclass(frozen=True)
class Comment:
    id: str
    category: CommentCategory
    author: CommentAuthor
    body: str
    created_at: str
    updated_at: str | None = None
    link: str | None = None
    review_state: ReviewState | None = None
    location: CommentLocation | None = None
    resolution: CommentResolution | None = None


@dataclass(frozen=True)
class CommentBreakdown:
    general: int = 0
    review: int = 0
    inline: int = 0
    resolved: int = 0
    unresolved: int = 0


@dataclass(frozen=True)
class AggregatedResult:
    subject_id: int
    total_count: int
    breakdown: CommentBreakdown
    comments: tuple[Comment, ...]
    authors: tuple[str, ...]
    files: tuple[str, ...]


@dataclass(frozen=True)
class CommentQueryOptions:
    include_general_comments: bool = True
    include_review_comments: bool = True
    include_inline_comments: bool = True
    include_resolved: bool = False
    filter_by_author: str | None = None
    group_by: str = "chronological"
    max_comments: int = MAX_COMMENTS_LIMIT

    def __post_init__(self) -> None:
        if not 1 <= self.max_comments <= MAX_COMMENTS_LIMIT:
            raise ValueError(f"max_comments must be between 1 and {MAX_COMMENTS_LIMIT}")

    @classmethod
    def from_arguments(
        cls,
        *,
        include_general_comments: bool | None = None,
        include_review_comments: bool | None = None,
        include_inline_comments: bool | None = None,
        include_resolved: bool | None = None,
        filter_by_author: str | None = None,
        group_by: str | None = None,
        max_comments: int | None = None,
        defaults: CommentQueryOptions | None = None,
    ) -> CommentQueryOptions:
        """Resolve caller-supplied arguments against one set of defaults.

        ``None`` means "not supplied"; every other value wins over the default.
        """
        base = defaults if defaults is not None else cls()
        return cls(
            include_general_comments=_pick(
                include_general_comments, base.include_general_comments
            ),
            include_review_comments=_pick(include_review_comments, base.include_review_comments),
            include_inline_comments=_pick(include_inline_comments, base.include_inline_comments),
            include_resolved=_pick(include_resolved, base.include_resolved),
            filter_by_author=_pick(filter_by_author, base.filter_by_author),
            group_by=_pick(group_by, base.group_by),
            max_comments=_pick(max_comments, base.max_comments),
        )


@dataclass(frozen=True)
class PullRequestDetails:
    number: int
    title: str
    body: str
    state: str
    author: str
    url: str
    head_ref_name: str
    base_ref_name: str
    created_at: str
    updated_at: str
    mergeable: str = "unknown"
    labels: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    reviewers: tuple[str, ...] = ()
    is_draft: bool = False
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


@dataclass(frozen=True)
class RepositoryCount:
    repo: str
    count: int
    percentage: int


@dataclass(frozen=True)
class DailyCount:
    date: str
    count: int


@dataclass(frozen=True)
class PullRequestStats:
    period: StatsPeriod
    total_merged: int
    total_lines_added: int
    total_lines_deleted: int
    total_files_changed: int
    average_pr_size: int
    top_repositories: tuple[RepositoryCount, ...]
    prs_by_day: tuple[DailyCount, ...]
    period_start: str
    period_end: str


def _pick(value: _T | None, default: _T) -> _T:
    if value is None:
        return default
    return value


@dataclass(frozen=True)
class PullRequestDiffSummary:
    number: int
    files: tuple[str, ...]
    changed_files: int
    additions: int
    deletions: int
    max_files: int
