from __future__ import annotations

import io
import logging
from typing import cast

from hypothesis import given, strategies as st
import pytest

from prbuddy.comments import (
    SubjectNotFoundError,
    aggregate_comments,
    filter_by_author,
    group_comments,
    normalize_comments,
    summarize_comments,
)
from prbuddy.models import (
    Comment,
    CommentAuthor,
    CommentBreakdown,
    CommentLocation,
    CommentQueryOptions,
    CommentResolution,
)


def _node(
    node_id: str,
    *,
    login: str | None = "alice",
    body: str = "text",
    created_at: str = "2024-01-01T00:00:00Z",
    **extra: object,
) -> dict[str, object]:
    node: dict[str, object] = {
        "id": node_id,
        "author": {"login": login, "avatarUrl": f"https://avatars/{login}"} if login else None,
        "body": body,
        "createdAt": created_at,
        "updatedAt": created_at,
        "url": f"https://github.com/o/r/pull/1#{node_id}",
    }
    node.update(extra)
    return node


def _inline(
    node_id: str, *, path: str = "a.ts", line: int | None = 10, **kwargs: object
) -> dict[str, object]:
    return _node(
        node_id,
        path=path,
        line=line,
        startLine=None,
        position=3,
        diffHunk="@@ -1,3 +1,4 @@",
        **kwargs,
    )


def _review(
    node_id: str,
    *,
    state: str = "COMMENTED",
    body: str = "review text",
    nested: list[object] | None = None,
    submitted_at: str | None = None,
    **kwargs: object,
) -> dict[str, object]:
    review = _node(node_id, body=body, state=state, **kwargs)
    review["submittedAt"] = submitted_at
    review["comments"] = {"nodes": nested or []}
    return review


def _thread(thread_id: str, *, resolved: bool, nested: list[object]) -> dict[str, object]:
    return {"id": thread_id, "isResolved": resolved, "comments": {"nodes": nested}}


def _document(
    *,
    general: list[object] | None = None,
    reviews: list[object] | None = None,
    threads: list[object] | None = None,
) -> dict[str, object]:
    subject: dict[str, object] = {}
    if general is not None:
        subject["comments"] = {"nodes": general}
    if reviews is not None:
        subject["reviews"] = {"nodes": reviews}
    if threads is not None:
        subject["resolvableThreads"] = {"nodes": threads}
    return {"subject": subject}


def _comment(
    comment_id: str,
    *,
    category: str = "general",
    handle: str = "alice",
    created_at: str = "2024-01-01T00:00:00Z",
    path: str | None = None,
    resolution: CommentResolution | None = None,
) -> Comment:
    return Comment(
        id=comment_id,
        category=category,  # type: ignore[arg-type]
        author=CommentAuthor(handle=handle),
        body="b",
        created_at=created_at,
        location=CommentLocation(path=path) if path is not None else None,
        resolution=resolution,
    )


def test_review_without_body_is_skipped_and_inline_is_deduplicated() -> None:
    document = _document(
        general=[_node("g1", login="alice")],
        reviews=[_review("r1", state="APPROVED", body="", login="bob", nested=[_inline("i1", login="bob")])],
        threads=[_thread("t1", resolved=True, nested=[_inline("i1", login="bob")])],
    )
    options = CommentQueryOptions(include_resolved=True)

    result = aggregate_comments(1, document, options)

    assert [comment.id for comment in result.comments] == ["g1", "i1"]
    assert result.breakdown == CommentBreakdown(
        general=1, review=0, inline=1, resolved=1, unresolved=0
    )
    assert result.authors == ("alice", "bob")
    assert result.files == ("a.ts",)
    inline = result.comments[1]
    assert inline.resolution == CommentResolution(is_resolved=True, thread_id="t1")
    assert inline.location is not None
    assert inline.location.line == 10


def test_resolved_thread_comments_are_never_normalized_by_default() -> None:
    document = _document(
        threads=[_thread("t1", resolved=True, nested=[_inline("i9")])],
    )

    result = aggregate_comments(1, document, CommentQueryOptions())

    assert result.total_count == 0
    assert result.comments == ()
    assert result.breakdown == CommentBreakdown()


def test_resolved_thread_hides_inline_comment_listed_under_its_review() -> None:
    document = _document(
        general=[_node("g1")],
        reviews=[_review("r1", body="", nested=[_inline("i1", login="bob")])],
        threads=[_thread("t1", resolved=True, nested=[_inline("i1", login="bob")])],
    )

    result = aggregate_comments(1, document, CommentQueryOptions())

    assert [comment.id for comment in result.comments] == ["g1"]
    assert result.breakdown == CommentBreakdown(general=1)
    assert result.files == ()


def test_review_path_inline_comment_carries_unresolved_thread_state() -> None:
    document = _document(
        reviews=[_review("r1", body="", nested=[_inline("i1")])],
        threads=[_thread("t1", resolved=False, nested=[_inline("i1")])],
    )

    (inline,) = normalize_comments(1, document, CommentQueryOptions())

    assert inline.id == "i1"
    assert inline.resolution == CommentResolution(is_resolved=False, thread_id="t1")


def test_inline_comment_kept_by_default_when_first_thread_is_unresolved() -> None:
    document = _document(
        reviews=[_review("r1", body="", nested=[_inline("i1")])],
        threads=[
            _thread("t1", resolved=False, nested=[_inline("i1")]),
            _thread("t2", resolved=True, nested=[_inline("i1"), _inline("i2")]),
        ],
    )

    comments = normalize_comments(1, document, CommentQueryOptions())

    assert [comment.id for comment in comments] == ["i1"]
    assert comments[0].resolution == CommentResolution(is_resolved=False, thread_id="t1")


def test_threads_under_review_threads_key_are_not_read() -> None:
    document = {
        "subject": {
            "reviewThreads": {"nodes": [_thread("t1", resolved=False, nested=[_inline("i1")])]}
        }
    }

    assert normalize_comments(1, document, CommentQueryOptions()) == []


def test_unresolved_thread_comment_not_seen_under_a_review_is_emitted_with_resolution() -> None:
    document = _document(
        reviews=[],
        threads=[_thread("t2", resolved=False, nested=[_inline("i2", path="b.py")])],
    )

    comments = normalize_comments(1, document, CommentQueryOptions())

    assert len(comments) == 1
    assert comments[0].category == "inline"
    assert comments[0].resolution == CommentResolution(is_resolved=False, thread_id="t2")


def test_first_thread_resolution_wins_for_repeated_inline_ids() -> None:
    document = _document(
        reviews=[_review("r1", nested=[_inline("i1")])],
        threads=[
            _thread("t1", resolved=False, nested=[_inline("i1")]),
            _thread("t2", resolved=True, nested=[_inline("i1")]),
        ],
    )

    comments = normalize_comments(1, document, CommentQueryOptions(include_resolved=True))

    inline = [comment for comment in comments if comment.id == "i1"]
    assert len(inline) == 1
    assert inline[0].resolution == CommentResolution(is_resolved=False, thread_id="t1")


def test_review_entry_uses_submitted_at_and_state() -> None:
    document = _document(
        reviews=[
            _review(
                "r1",
                state="CHANGES_REQUESTED",
                created_at="2024-01-01T00:00:00Z",
                submitted_at="2024-01-02T00:00:00Z",
            )
        ]
    )

    (review,) = normalize_comments(1, document, CommentQueryOptions())

    assert review.category == "review"
    assert review.review_state == "changes_requested"
    assert review.created_at == "2024-01-02T00:00:00Z"
    assert review.location is None
    assert review.resolution is None


def test_whitespace_only_review_body_is_skipped() -> None:
    document = _document(reviews=[_review("r1", body="  \n ")])
    assert normalize_comments(1, document, CommentQueryOptions()) == []


def test_category_flags_limit_what_is_normalized() -> None:
    document = _document(
        general=[_node("g1")],
        reviews=[_review("r1", nested=[_inline("i1")])],
        threads=[_thread("t1", resolved=False, nested=[_inline("i2")])],
    )

    only_general = normalize_comments(
        1,
        document,
        CommentQueryOptions(include_review_comments=False, include_inline_comments=False),
    )
    assert [comment.id for comment in only_general] == ["g1"]

    only_inline = normalize_comments(
        1,
        document,
        CommentQueryOptions(include_general_comments=False, include_review_comments=False),
    )
    assert [comment.id for comment in only_inline] == ["i1", "i2"]

    no_inline = normalize_comments(1, document, CommentQueryOptions(include_inline_comments=False))
    assert [comment.id for comment in no_inline] == ["g1", "r1"]


def test_query_options_reject_out_of_range_page_size() -> None:
    with pytest.raises(ValueError, match="between 1 and 100"):
        CommentQueryOptions(max_comments=0)
    with pytest.raises(ValueError, match="between 1 and 100"):
        CommentQueryOptions.from_arguments(max_comments=101)

    assert CommentQueryOptions.from_arguments(max_comments=100).max_comments == 100


def test_missing_author_defaults_to_unknown() -> None:
    document = _document(general=[_node("g1", login=None)])

    (comment,) = normalize_comments(1, document, CommentQueryOptions())

    assert comment.author == CommentAuthor(handle="unknown", avatar_url=None)


def test_null_subject_raises_not_found_with_subject_id() -> None:
    with pytest.raises(SubjectNotFoundError, match="#42") as exc_info:
        aggregate_comments(42, {"subject": None}, CommentQueryOptions())
    assert exc_info.value.subject_id == 42


def test_malformed_nodes_are_skipped_and_logged() -> None:
    logger = logging.getLogger("prbuddy.comments")
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    logger.addHandler(handler)
    original_level = logger.level
    logger.setLevel(logging.INFO)
    try:
        document = _document(
            general=[{"body": "no id"}, "not a node", _node("g1")],
            reviews=[_review("r1", nested=[_inline("i1", path="")])],
            threads=[{"id": "t1", "comments": {"nodes": []}}],
        )
        comments = normalize_comments(7, document, CommentQueryOptions())
    finally:
        logger.removeHandler(handler)
        logger.setLevel(original_level)

    assert [comment.id for comment in comments] == ["g1", "r1"]
    output = stream.getvalue()
    assert "reason=missing_id" in output
    assert "reason=not_an_object" in output
    assert "reason=missing_path" in output
    assert "reason=missing_is_resolved" in output
    assert "subject_id=7" in output


def test_collection_without_node_list_is_skipped() -> None:
    document = {"subject": {"comments": {"nodes": "oops"}, "reviews": None}}
    assert normalize_comments(1, document, CommentQueryOptions()) == []


def test_empty_document_yields_zero_statistics() -> None:
    result = aggregate_comments(1, _document(), CommentQueryOptions())

    assert result.total_count == 0
    assert result.authors == ()
    assert result.files == ()
    assert result.breakdown == CommentBreakdown()


def test_filter_by_author_is_exact_and_case_sensitive() -> None:
    comments = [_comment("1", handle="alice"), _comment("2", handle="Alice"), _comment("3", handle="alicia")]

    assert [comment.id for comment in filter_by_author(comments, "alice")] == ["1"]
    assert filter_by_author(comments, "nobody") == []
    assert filter_by_author(comments, None) == comments


def test_author_filter_with_no_matches_is_not_an_error() -> None:
    document = _document(general=[_node("g1", login="alice")])

    result = aggregate_comments(
        1, document, CommentQueryOptions(filter_by_author="zed")
    )

    assert result.total_count == 0
    assert result.breakdown == CommentBreakdown()


def test_group_by_type_uses_fixed_precedence() -> None:
    comments = [
        _comment("i", category="inline", path="a"),
        _comment("r", category="review"),
        _comment("g", category="general"),
        _comment("i2", category="inline", path="b"),
    ]

    assert [comment.id for comment in group_comments(comments, "type")] == ["g", "r", "i", "i2"]


def test_group_by_author_sorts_by_handle() -> None:
    comments = [_comment("1", handle="carol"), _comment("2", handle="alice"), _comment("3", handle="bob")]

    assert [comment.id for comment in group_comments(comments, "author")] == ["2", "3", "1"]


def test_group_by_file_puts_pathless_comments_last_in_original_order() -> None:
    comments = [
        _comment("g1"),
        _comment("i1", category="inline", path="z.py"),
        _comment("g2"),
        _comment("i2", category="inline", path="a.py"),
    ]

    assert [comment.id for comment in group_comments(comments, "file")] == ["i2", "i1", "g1", "g2"]


def test_chronological_compares_instants_not_strings() -> None:
    comments = [
        _comment("late", created_at="2024-01-01T10:00:00+02:00"),
        _comment("early", created_at="2024-01-01T09:00:00Z"),
        _comment("broken", created_at="not a date"),
    ]

    # 10:00+02:00 is 08:00Z, so it sorts before 09:00Z.
    assert [comment.id for comment in group_comments(comments, "chronological")] == [
        "late",
        "early",
        "broken",
    ]


def test_unknown_group_by_keeps_normalization_order() -> None:
    comments = [_comment("b", handle="z"), _comment("a", handle="a")]

    assert group_comments(comments, "size") == comments


def test_group_comments_does_not_mutate_input() -> None:
    comments = [_comment("2", created_at="2024-02-01T00:00:00Z"), _comment("1")]
    snapshot = list(comments)

    group_comments(comments, "chronological")

    assert comments == snapshot


def test_summarize_counts_resolution_buckets_and_first_occurrence_order() -> None:
    comments = [
        _comment("i1", category="inline", handle="bob", path="b.py", resolution=CommentResolution(True, "t1")),
        _comment("i2", category="inline", handle="alice", path="a.py", resolution=CommentResolution(False, "t2")),
        _comment("i3", category="inline", handle="bob", path="b.py"),
        _comment("g1", handle="carol"),
    ]

    breakdown, authors, files = summarize_comments(comments)

    assert breakdown == CommentBreakdown(general=1, review=0, inline=3, resolved=1, unresolved=1)
    assert authors == ("bob", "alice", "carol")
    assert files == ("b.py", "a.py")


_HANDLES = st.sampled_from(["alice", "bob", "carol", "unknown"])
_INSTANTS = st.sampled_from(
    ["2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z", "2024-01-01T00:00:00Z", "2023-12-31T23:59:59Z"]
)


@st.composite
def _documents(draw: st.DrawFn) -> dict[str, object]:
    inline_ids = draw(st.lists(st.sampled_from(["i1", "i2", "i3", "i4"]), max_size=6))
    general = [
        _node(f"g{index}", login=draw(_HANDLES), created_at=draw(_INSTANTS))
        for index in range(draw(st.integers(min_value=0, max_value=3)))
    ]
    reviews = [
        _review(
            f"r{index}",
            body=draw(st.sampled_from(["", "looks good"])),
            login=draw(_HANDLES),
            nested=[_inline(comment_id, login=draw(_HANDLES)) for comment_id in inline_ids[index::2]],
        )
        for index in range(2)
    ]
    threads = [
        _thread(
            f"t{comment_id}",
            resolved=draw(st.booleans()),
            nested=[_inline(comment_id, login=draw(_HANDLES), path=f"{comment_id}.py")],
        )
        for comment_id in draw(st.lists(st.sampled_from(["i1", "i2", "i5"]), max_size=4))
    ]
    return _document(general=general, reviews=reviews, threads=threads)


def _thread_comment_ids(document: dict[str, object]) -> set[str]:
    subject = cast(dict[str, object], document["subject"])
    threads = cast(dict[str, list[dict[str, object]]], subject["resolvableThreads"])
    return {
        cast(str, node["id"])
        for thread in threads["nodes"]
        for node in cast(dict[str, list[dict[str, object]]], thread["comments"])["nodes"]
    }


@given(_documents(), st.booleans(), st.sampled_from(["chronological", "type", "author", "file"]))
def test_aggregate_invariants(document: dict[str, object], include_resolved: bool, group_by: str) -> None:
    options = CommentQueryOptions(include_resolved=include_resolved, group_by=group_by)

    result = aggregate_comments(1, document, options)

    ids = [comment.id for comment in result.comments]
    assert len(ids) == len(set(ids))
    breakdown = result.breakdown
    assert breakdown.general + breakdown.review + breakdown.inline == result.total_count
    assert result.total_count == len(result.comments)
    assert breakdown.resolved + breakdown.unresolved <= breakdown.inline
    if not include_resolved:
        assert breakdown.resolved == 0
    threaded = _thread_comment_ids(document)
    for comment in result.comments:
        if comment.category == "inline" and comment.id in threaded:
            assert comment.resolution is not None


@given(_documents(), _HANDLES, _HANDLES)
def test_repeated_author_filters_compose(document: dict[str, object], first: str, second: str) -> None:
    comments = normalize_comments(1, document, CommentQueryOptions(include_resolved=True))

    twice = filter_by_author(filter_by_author(comments, first), second)
    combined = [c for c in comments if c.author.handle == first and c.author.handle == second]

    assert twice == combined


@given(st.lists(st.tuples(st.sampled_from(["a", "b", "c"]), _INSTANTS), max_size=8))
def test_chronological_sort_is_stable(entries: list[tuple[str, str]]) -> None:
    comments = [
        _comment(f"{index}", handle=handle, created_at=created_at)
        for index, (handle, created_at) in enumerate(entries)
    ]

    ordered = group_comments(comments, "chronological")

    for earlier, later in zip(ordered, ordered[1:]):
        if earlier.created_at == later.created_at:
            assert int(earlier.id) < int(later.id)
