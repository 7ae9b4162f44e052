from __future__ import annotations

from datetime import datetime, timezone

from prbuddy.formatting import (
    escape_cell,
    format_checklist,
    format_comments,
    format_comments_table,
    format_company_values,
    format_created_highlight,
    format_created_ticket,
    format_diff_summary,
    format_highlight_summary,
    format_highlights,
    format_my_tickets,
    format_pr_details,
    format_pr_list,
    format_pr_stats,
    format_sprint_details,
    format_sprints,
    format_transition,
    preview_body,
)
from prbuddy.highlights import CompanyValue, HighlightRecord, HighlightSummary
from prbuddy.jira_cli import (
    JiraSprint,
    JiraTicket,
    SprintDetails,
    SprintStats,
    TicketTransition,
)
from prbuddy.models import (
    AggregatedResult,
    Comment,
    CommentAuthor,
    CommentBreakdown,
    CommentLocation,
    CommentResolution,
    DailyCount,
    PullRequestDetails,
    PullRequestDiffSummary,
    PullRequestStats,
    RepositoryCount,
)


def _pr(**overrides: object) -> PullRequestDetails:
    fields: dict[str, object] = {
        "number": 3,
        "title": "Fix | pipes",
        "body": "Body text\n",
        "state": "open",
        "author": "alice",
        "url": "https://github.com/acme/widgets/pull/3",
        "head_ref_name": "fix",
        "base_ref_name": "master",
        "created_at": "2024-03-01T10:00:00Z",
        "updated_at": "2024-03-02T10:00:00Z",
    }
    fields.update(overrides)
    return PullRequestDetails(**fields)  # type: ignore[arg-type]


def _ticket(key: str, status: str, points: float = 0) -> JiraTicket:
    return JiraTicket(
        key=key,
        summary=f"Do {key}",
        status=status,
        assignee="Alice",
        priority="High",
        type="Story",
        url=f"https://jira.example/browse/{key}",
        story_points=points,
    )


def _record(title: str, values: tuple[str, ...]) -> HighlightRecord:
    stamp = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
    return HighlightRecord(
        id="abc123",
        user_id="alice",
        title=title,
        description=None,
        artifact_type="github_pr",
        artifact_url="https://github.com/acme/widgets/pull/1",
        achieved_at=stamp,
        created_at=stamp,
        updated_at=stamp,
        value_titles=values,
    )


def test_escape_and_preview() -> None:
    assert escape_cell("a|b") == "a\\|b"
    assert preview_body("line one\r\nline two") == "line one line two"
    assert preview_body("x" * 101) == "x" * 100 + "..."
    assert preview_body("x" * 100) == "x" * 100


def test_format_comments_table_rows() -> None:
    comments = [
        Comment(
            id="r1",
            category="review",
            author=CommentAuthor("bob"),
            body="Needs | work",
            created_at="2024-03-01T10:00:00Z",
            link="https://example/r1",
            review_state="changes_requested",
        ),
        Comment(
            id="i1",
            category="inline",
            author=CommentAuthor("carol"),
            body="nit",
            created_at="2024-03-02T10:00:00Z",
            location=CommentLocation(path="src/app.py", line=12),
            resolution=CommentResolution(is_resolved=False, thread_id="t1"),
        ),
        Comment(
            id="g1",
            category="general",
            author=CommentAuthor("dave"),
            body="",
            created_at="",
            location=None,
        ),
    ]

    table = format_comments_table(comments).splitlines()

    assert table[0] == "| Type | Author | Date | File/Location | Status | Comment | Link |"
    assert table[2] == (
        "| review | @bob | 2024-03-01 | - | Changes requested | Needs \\| work | [View](https://example/r1) |"
    )
    assert table[3] == "| inline | @carol | 2024-03-02 | src/app.py:12 | Unresolved | nit | - |"
    assert table[4].startswith("| general | @dave | - | - | - |")
    assert format_comments_table([]) == "_No comments found._"


def test_format_comments_summary_sections() -> None:
    empty = AggregatedResult(
        subject_id=5,
        total_count=0,
        breakdown=CommentBreakdown(),
        comments=(),
        authors=(),
        files=(),
    )
    text = format_comments(empty)
    assert text.startswith("# Comments on PR #5")
    assert "- **Total Comments:** 0" in text
    assert "Resolved" not in text
    assert "**Authors:** -" in text
    assert text.endswith("_No comments found._")

    with_threads = AggregatedResult(
        subject_id=5,
        total_count=1,
        breakdown=CommentBreakdown(inline=1, resolved=1),
        comments=(
            Comment(
                id="i1",
                category="inline",
                author=CommentAuthor("bob"),
                body="done",
                created_at="2024-03-01T00:00:00Z",
                location=CommentLocation(path="a.ts"),
                resolution=CommentResolution(is_resolved=True, thread_id="t1"),
            ),
        ),
        authors=("bob",),
        files=("a.ts",),
    )
    text = format_comments(with_threads)
    assert "- **Resolved:** 1" in text
    assert "- **Unresolved:** 0" in text
    assert "**Files with comments:** 1" in text
    assert "| a.ts | Resolved |" in text


def test_format_pr_details_and_list() -> None:
    details = format_pr_details(_pr(is_draft=True, labels=("bug",)))
    assert details.startswith("# PR #3: Fix | pipes")
    assert "- **State:** open (draft)" in details
    assert "- **Labels:** bug" in details
    assert "- **Reviewers:** none" in details
    assert details.endswith("## Description\n\nBody text")

    assert format_pr_list([], state="merged") == "No merged pull requests found."
    listing = format_pr_list([_pr()], state="open")
    assert "# My open pull requests (1)" in listing
    assert "| [#3](https://github.com/acme/widgets/pull/3) | Fix \\| pipes | open | `fix` | 2024-03-02 |" in listing


def test_format_diff_summary_reports_hidden_files() -> None:
    summary = PullRequestDiffSummary(
        number=3, files=("a.py", "b.py"), changed_files=5, additions=7, deletions=1, max_files=2
    )

    text = format_diff_summary(summary)

    assert "- `a.py`" in text
    assert text.endswith("- ... and 3 more (showing first 2)")


def test_format_pr_stats_tables() -> None:
    stats = PullRequestStats(
        period="week",
        total_merged=3,
        total_lines_added=31,
        total_lines_deleted=6,
        total_files_changed=4,
        average_pr_size=12,
        top_repositories=(RepositoryCount("widgets", 2, 67), RepositoryCount("gadgets", 1, 33)),
        prs_by_day=(DailyCount("2024-03-12", 2),),
        period_start="2024-03-08T00:00:00+00:00",
        period_end="2024-03-15T12:00:00+00:00",
    )

    text = format_pr_stats(stats)

    assert "**Period:** 2024-03-08 to 2024-03-15" in text
    assert "| widgets | 2 | 67% |" in text
    assert "| 2024-03-12 | 2 |" in text


def test_format_checklist_uses_checkboxes() -> None:
    assert format_checklist(9, ["A", "B"]) == "# Code review checklist for PR #9\n\n- [ ] A\n- [ ] B"


def test_format_sprints_and_details() -> None:
    sprints = [
        JiraSprint(id=1, name="S1", state="active", board_id=2, start_date="2024-03-01T00:00:00Z"),
        JiraSprint(id=2, name="S2", state="future", board_id=2),
    ]
    text = format_sprints(sprints)
    assert "- **Active:** 1" in text
    assert "| 1 | S1 | active | 2024-03-01 | - | - |" in text
    assert format_sprints([]) == "No sprints found."

    details = SprintDetails(
        sprint=JiraSprint(id=1, name="S1", state="active", board_id=2, goal="Ship it"),
        tickets=(_ticket("ENG-1", "Done", 3), _ticket("ENG-2", "To Do")),
        stats=SprintStats(total=2, completed=1, in_progress=0, todo=1, story_points=3, completed_points=3),
    )
    text = format_sprint_details(details)
    assert "**Goal:** Ship it" in text
    assert "- **Completed:** 1 (50%)" in text
    assert "- **Story points:** 3/3 completed (100%)" in text
    assert "| [ENG-2](https://jira.example/browse/ENG-2) | Do ENG-2 | Story | To Do | Alice | - |" in text


def test_format_my_tickets_counts_points() -> None:
    text = format_my_tickets(
        [_ticket("A-1", "Done", 2), _ticket("A-2", "In Progress", 1.5), _ticket("A-3", "Open")]
    )

    assert "- **To do:** 1" in text
    assert "- **In progress:** 1" in text
    assert "- **Done:** 1" in text
    assert "- **Story points:** 2/3.5 completed" in text
    assert format_my_tickets([]) == "No tickets found."


def test_format_created_ticket_and_transition() -> None:
    ticket = JiraTicket(
        key="ENG-9",
        summary="New thing",
        status="To Do",
        assignee="@me",
        priority="Medium",
        type="Task",
        url="https://jira.example/browse/ENG-9",
        labels=("a", "b"),
    )
    text = format_created_ticket(ticket, parent="ENG-1")
    assert "| Key | **ENG-9** |" in text
    assert "| Labels | a, b |" in text
    assert "| Parent | ENG-1 |" in text

    transition = format_transition(
        TicketTransition("ENG-9", "To Do", "Done", "https://jira.example/browse/ENG-9")
    )
    assert "| Previous Status | To Do |" in transition
    assert "| New Status | Done |" in transition


def test_format_highlight_views() -> None:
    record = _record("Shipped | search", ("Learn Voraciously",))

    created = format_created_highlight(record)
    assert "- **Achieved At:** 2024-03-10" in created
    assert "Description" not in created

    listing = format_highlights("alice", [record], start_date="2024-03-01")
    assert "**Period:** 2024-03-01 to Present" in listing
    assert "**Total:** 1 highlight" in listing
    assert "Shipped \\| search" in listing

    assert format_highlights("bob", []) == "No highlights found for user: bob"
    assert (
        format_highlights("bob", [], end_date="2024-01-01")
        == "No highlights found for user: bob in the specified date range"
    )

    summary = HighlightSummary(
        user_id="alice",
        total_highlights=1,
        by_value=(("Learn Voraciously", 1),),
        by_artifact_type=(("github_pr", 1),),
        recent=(record,),
    )
    text = format_highlight_summary(summary)
    assert "**Total Highlights:** 1" in text
    assert "| Learn Voraciously | 1 |" in text
    assert "| github_pr | 1 |" in text


def test_format_company_values() -> None:
    assert format_company_values([]) == "No company values found. Run: prbuddy seed-values"
    text = format_company_values([CompanyValue("v1", "Be Bold", "Act.")])
    assert "| `v1` | Be Bold | Act. |" in text
    assert "**Total:** 1 values" in text
