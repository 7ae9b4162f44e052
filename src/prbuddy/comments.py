"""Comment aggregation for a single pull request.

Three comment collections come back from the review host for one subject:
top-level issue comments, reviews (each owning nested inline comments) and
resolvable review threads (owning the same inline comments again). This
module flattens them into one deduplicated list of ``Comment`` records,
filters and orders that list, and derives the summary statistics.

Everything here is a pure transformation over an already fetched document.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging
from typing import cast

from prbuddy.models import (
    AggregatedResult,
    Comment,
    CommentAuthor,
    CommentBreakdown,
    CommentCategory,
    CommentLocation,
    CommentQueryOptions,
    CommentResolution,
    ReviewState,
    UNKNOWN_AUTHOR,
)
from prbuddy.observability import log_event, log_warning_event


LOGGER = logging.getLogger("prbuddy.comments")
_CATEGORY_ORDER: dict[CommentCategory, int] = {"general": 0, "review": 1, "inline": 2}
_REVIEW_STATES: dict[str, ReviewState] = {
    "APPROVED": "approved",
    "CHANGES_REQUESTED": "changes_requested",
    "COMMENTED": "commented",
    "DISMISSED": "dismissed",
}
_UNPARSEABLE_INSTANT = datetime.min.replace(tzinfo=timezone.utc)


class SubjectNotFoundError(LookupError):
    def __init__(self, subject_id: int) -> None:
        self.subject_id = subject_id
        super().__init__(f"Pull request #{subject_id} not found")


@dataclass(frozen=True)
class _Skipped:
    source: str
    reason: str


def aggregate_comments(
    subject_id: int,
    document: Mapping[str, object],
    options: CommentQueryOptions,
) -> AggregatedResult:
    normalized = normalize_comments(subject_id, document, options)
    filtered = filter_by_author(normalized, options.filter_by_author)
    ordered = group_comments(filtered, options.group_by)
    breakdown, authors, files = summarize_comments(ordered)
    log_event(
        LOGGER,
        "comments_aggregated",
        subject_id=subject_id,
        normalized_count=len(normalized),
        total_count=len(ordered),
        group_by=options.group_by,
        filter_by_author=options.filter_by_author,
    )
    return AggregatedResult(
        subject_id=subject_id,
        total_count=len(ordered),
        breakdown=breakdown,
        comments=tuple(ordered),
        authors=authors,
        files=files,
    )


def normalize_comments(
    subject_id: int,
    document: Mapping[str, object],
    options: CommentQueryOptions,
) -> list[Comment]:
    subject = _as_object_dict(document.get("subject"))
    if subject is None:
        raise SubjectNotFoundError(subject_id)

    threads = (
        _scan_threads(subject, subject_id=subject_id) if options.include_inline_comments else []
    )
    # Inline comments surface under their review and again under their
    # thread; the first thread that lists an id owns its resolution.
    thread_by_comment: dict[str, CommentResolution] = {}
    for resolution, nodes in threads:
        for node in nodes:
            comment_id = _node_id(node)
            if comment_id is not None:
                thread_by_comment.setdefault(comment_id, resolution)
    hidden_ids: set[str] = (
        set()
        if options.include_resolved
        else {comment_id for comment_id, res in thread_by_comment.items() if res.is_resolved}
    )

    emitted: list[Comment] = []
    seen_ids: set[str] = set()

    def emit(parsed: Comment | _Skipped) -> None:
        if isinstance(parsed, _Skipped):
            _log_skip(subject_id, parsed)
            return
        if parsed.id in seen_ids:
            return
        if parsed.category == "inline":
            if parsed.id in hidden_ids:
                return
            parsed = replace(parsed, resolution=thread_by_comment.get(parsed.id))
        seen_ids.add(parsed.id)
        emitted.append(parsed)

    if options.include_general_comments:
        for node in _collection_nodes(subject, "comments", subject_id=subject_id):
            emit(_parse_comment(node, category="general", source="comments"))

    if options.include_review_comments or options.include_inline_comments:
        for review in _collection_nodes(subject, "reviews", subject_id=subject_id):
            if options.include_review_comments:
                parsed_review = _parse_review(review)
                # Reviews without summary text carry no entry of their own.
                if isinstance(parsed_review, _Skipped) or parsed_review.body.strip():
                    emit(parsed_review)
            review_obj = _as_object_dict(review)
            if not options.include_inline_comments or review_obj is None:
                continue
            for node in _collection_nodes(review_obj, "comments", subject_id=subject_id):
                emit(_parse_comment(node, category="inline", source="review_comments"))

    for resolution, nodes in threads:
        if resolution.is_resolved and not options.include_resolved:
            continue
        for node in nodes:
            emit(_parse_comment(node, category="inline", source="thread_comments"))
    return emitted


def filter_by_author(comments: Iterable[Comment], handle: str | None) -> list[Comment]:
    if handle is None:
        return list(comments)
    return [comment for comment in comments if comment.author.handle == handle]


def group_comments(comments: Iterable[Comment], group_by: str) -> list[Comment]:
    items = list(comments)
    if group_by == "chronological":
        return sorted(items, key=_chronological_key)
    if group_by == "type":
        return sorted(items, key=lambda comment: _CATEGORY_ORDER[comment.category])
    if group_by == "author":
        return sorted(items, key=lambda comment: comment.author.handle)
    if group_by == "file":
        return sorted(items, key=_file_key)
    # Unrecognized strategies keep normalization order.
    log_warning_event(LOGGER, "comment_group_by_unknown", group_by=group_by)
    return items


def summarize_comments(
    comments: Iterable[Comment],
) -> tuple[CommentBreakdown, tuple[str, ...], tuple[str, ...]]:
    categories: Counter[str] = Counter()
    resolved = 0
    unresolved = 0
    authors: dict[str, None] = {}
    files: dict[str, None] = {}
    for comment in comments:
        categories[comment.category] += 1
        if comment.resolution is not None:
            if comment.resolution.is_resolved:
                resolved += 1
            else:
                unresolved += 1
        authors.setdefault(comment.author.handle, None)
        if comment.location is not None and comment.location.path:
            files.setdefault(comment.location.path, None)

    breakdown = CommentBreakdown(
        general=categories["general"],
        review=categories["review"],
        inline=categories["inline"],
        resolved=resolved,
        unresolved=unresolved,
    )
    return breakdown, tuple(authors), tuple(files)


def _parse_comment(
    node: object,
    *,
    category: CommentCategory,
    source: str,
) -> Comment | _Skipped:
    node_obj = _as_object_dict(node)
    if node_obj is None:
        return _Skipped(source=source, reason="not_an_object")
    comment_id = node_obj.get("id")
    if not isinstance(comment_id, str) or not comment_id:
        return _Skipped(source=source, reason="missing_id")

    location: CommentLocation | None = None
    if category == "inline":
        path = node_obj.get("path")
        if not isinstance(path, str) or not path:
            return _Skipped(source=source, reason="missing_path")
        location = CommentLocation(
            path=path,
            line=_as_optional_int(node_obj.get("line")),
            start_line=_as_optional_int(node_obj.get("startLine")),
            position=_as_optional_int(node_obj.get("position")),
            diff_hunk=_as_optional_str(node_obj.get("diffHunk")),
        )

    return Comment(
        id=comment_id,
        category=category,
        author=_parse_author(node_obj.get("author")),
        body=_as_string(node_obj.get("body")),
        created_at=_as_string(node_obj.get("createdAt")),
        updated_at=_as_optional_str(node_obj.get("updatedAt")),
        link=_as_optional_str(node_obj.get("url")),
        location=location,
    )


def _parse_review(node: object) -> Comment | _Skipped:
    parsed = _parse_comment(node, category="review", source="reviews")
    if isinstance(parsed, _Skipped):
        return parsed
    node_obj = cast(dict[str, object], node)
    submitted_at = _as_optional_str(node_obj.get("submittedAt"))
    state = node_obj.get("state")
    return replace(
        parsed,
        created_at=submitted_at or parsed.created_at,
        review_state=_REVIEW_STATES.get(state) if isinstance(state, str) else None,
    )


def _parse_thread_resolution(node: object) -> CommentResolution | _Skipped:
    node_obj = _as_object_dict(node)
    if node_obj is None:
        return _Skipped(source="review_threads", reason="not_an_object")
    thread_id = node_obj.get("id")
    if not isinstance(thread_id, str) or not thread_id:
        return _Skipped(source="review_threads", reason="missing_id")
    is_resolved = node_obj.get("isResolved")
    if not isinstance(is_resolved, bool):
        return _Skipped(source="review_threads", reason="missing_is_resolved")
    return CommentResolution(is_resolved=is_resolved, thread_id=thread_id)


def _scan_threads(
    subject: Mapping[str, object], *, subject_id: int
) -> list[tuple[CommentResolution, list[object]]]:
    scanned: list[tuple[CommentResolution, list[object]]] = []
    for thread in _collection_nodes(subject, "resolvableThreads", subject_id=subject_id):
        resolution = _parse_thread_resolution(thread)
        if isinstance(resolution, _Skipped):
            _log_skip(subject_id, resolution)
            continue
        thread_obj = cast(dict[str, object], thread)
        scanned.append(
            (resolution, _collection_nodes(thread_obj, "comments", subject_id=subject_id))
        )
    return scanned


def _node_id(node: object) -> str | None:
    node_obj = _as_object_dict(node)
    comment_id = node_obj.get("id") if node_obj is not None else None
    return comment_id if isinstance(comment_id, str) and comment_id else None


def _parse_author(value: object) -> CommentAuthor:
    author_obj = _as_object_dict(value)
    if author_obj is None:
        return CommentAuthor()
    login = author_obj.get("login")
    handle = login if isinstance(login, str) and login else UNKNOWN_AUTHOR
    return CommentAuthor(handle=handle, avatar_url=_as_optional_str(author_obj.get("avatarUrl")))


def _collection_nodes(
    container: Mapping[str, object], key: str, *, subject_id: int
) -> list[object]:
    raw = container.get(key)
    if raw is None:
        return []
    collection = _as_object_dict(raw)
    nodes = collection.get("nodes") if collection is not None else None
    if not isinstance(nodes, list):
        _log_skip(subject_id, _Skipped(source=key, reason="collection_not_a_node_list"))
        return []
    return nodes


def _chronological_key(comment: Comment) -> tuple[int, datetime]:
    instant = _parse_instant(comment.created_at)
    if instant is None:
        return (1, _UNPARSEABLE_INSTANT)
    return (0, instant)


def _file_key(comment: Comment) -> tuple[int, str]:
    if comment.location is None or not comment.location.path:
        return (1, "")
    return (0, comment.location.path)


def _parse_instant(value: str) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _log_skip(subject_id: int, skipped: _Skipped) -> None:
    log_event(
        LOGGER,
        "comment_node_skipped",
        subject_id=subject_id,
        source=skipped.source,
        reason=skipped.reason,
    )


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
        return value or None
    return str(value)


def _as_optional_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value
