"""Markdown renderers for tool responses.

Every function here is pure: it takes already computed records and returns
markdown text. Table cells escape ``|`` so user-provided text cannot break
the table layout.
"""

from __future__ import annotations

from collections.abc import Sequence

from prbuddy.highlights import CompanyValue, HighlightRecord, HighlightSummary
from prbuddy.jira_cli import (
    DONE_STATUSES,
    IN_PROGRESS_STATUSES,
    TODO_STATUSES,
    JiraBoard,
    JiraSprint,
    JiraTicket,
    SprintDetails,
    TicketTransition,
)
from prbuddy.models import (
    AggregatedResult,
    Comment,
    PullRequestDetails,
    PullRequestDiffSummary,
    PullRequestStats,
)
from prbuddy.pr_analysis import ComplexityAnalysis


BODY_PREVIEW_LIMIT = 100
_STATUS_LABELS = {
    "approved": "Approved",
    "changes_requested": "Changes requested",
    "commented": "Commented",
    "dismissed": "Dismissed",
}


def escape_cell(text: str) -> str:
    return text.replace("|", "\\|")


def preview_body(body: str, *, limit: int = BODY_PREVIEW_LIMIT) -> str:
    flattened = body.replace("\r\n", "\n").replace("\n", " ")
    if len(flattened) > limit:
        return flattened[:limit] + "..."
    return flattened


def format_comments(result: AggregatedResult) -> str:
    breakdown = result.breakdown
    lines = [
        f"# Comments on PR #{result.subject_id}",
        "",
        "## Summary",
        "",
        f"- **Total Comments:** {result.total_count}",
        f"- **General:** {breakdown.general}",
        f"- **Reviews:** {breakdown.review}",
        f"- **Inline:** {breakdown.inline}",
    ]
    if breakdown.resolved > 0 or breakdown.unresolved > 0:
        lines.append(f"- **Resolved:** {breakdown.resolved}")
        lines.append(f"- **Unresolved:** {breakdown.unresolved}")
    lines.extend(["", f"**Authors:** {', '.join(result.authors) or '-'}", ""])
    if result.files:
        lines.extend([f"**Files with comments:** {len(result.files)}", ""])
    lines.extend(["## Comments", "", format_comments_table(result.comments)])
    return "\n".join(lines)


def format_comments_table(comments: Sequence[Comment]) -> str:
    if not comments:
        return "_No comments found._"
    rows = [
        "| Type | Author | Date | File/Location | Status | Comment | Link |",
        "|------|--------|------|---------------|--------|---------|------|",
    ]
    for comment in comments:
        cells = (
            comment.category,
            f"@{comment.author.handle}",
            comment.created_at[:10] or "-",
            _comment_location(comment),
            _comment_status(comment),
            preview_body(comment.body),
        )
        link = f"[View]({comment.link})" if comment.link else "-"
        rows.append("| " + " | ".join(escape_cell(cell) for cell in cells) + f" | {link} |")
    return "\n".join(rows)


def _comment_location(comment: Comment) -> str:
    if comment.location is None:
        return "-"
    if comment.location.line is not None:
        return f"{comment.location.path}:{comment.location.line}"
    return comment.location.path


def _comment_status(comment: Comment) -> str:
    if comment.review_state is not None:
        return _STATUS_LABELS[comment.review_state]
    if comment.resolution is not None:
        return "Resolved" if comment.resolution.is_resolved else "Unresolved"
    return "-"


def format_pr_details(pr: PullRequestDetails) -> str:
    lines = [
        f"# PR #{pr.number}: {pr.title}",
        "",
        f"- **Author:** @{pr.author}",
        f"- **State:** {pr.state}{' (draft)' if pr.is_draft else ''}",
        f"- **Branch:** `{pr.head_ref_name}` -> `{pr.base_ref_name}`",
        f"- **Mergeable:** {pr.mergeable}",
        f"- **Changes:** +{pr.additions} / -{pr.deletions} across {pr.changed_files} files",
        f"- **Labels:** {', '.join(pr.labels) or 'none'}",
        f"- **Assignees:** {', '.join(pr.assignees) or 'none'}",
        f"- **Reviewers:** {', '.join(pr.reviewers) or 'none'}",
        f"- **Created:** {pr.created_at}",
        f"- **Updated:** {pr.updated_at}",
        f"- **URL:** {pr.url}",
    ]
    if pr.body.strip():
        lines.extend(["", "## Description", "", pr.body.strip()])
    return "\n".join(lines)


def format_pr_list(prs: Sequence[PullRequestDetails], *, state: str) -> str:
    if not prs:
        return f"No {state} pull requests found."
    rows = [
        f"# My {state} pull requests ({len(prs)})",
        "",
        "| PR | Title | State | Branch | Updated |",
        "|----|-------|-------|--------|---------|",
    ]
    for pr in prs:
        title = escape_cell(pr.title) + (" (draft)" if pr.is_draft else "")
        rows.append(
            f"| [#{pr.number}]({pr.url}) | {title} | {pr.state} | "
            f"`{escape_cell(pr.head_ref_name)}` | {pr.updated_at[:10]} |"
        )
    return "\n".join(rows)


def format_diff_summary(summary: PullRequestDiffSummary) -> str:
    lines = [
        f"# Diff summary for PR #{summary.number}",
        "",
        f"- **Files changed:** {summary.changed_files}",
        f"- **Lines added:** {summary.additions}",
        f"- **Lines deleted:** {summary.deletions}",
        "",
        "## Files",
        "",
    ]
    lines.extend(f"- `{path}`" for path in summary.files)
    hidden = summary.changed_files - len(summary.files)
    if hidden > 0:
        lines.append(f"- ... and {hidden} more (showing first {summary.max_files})")
    return "\n".join(lines)


def format_pr_stats(stats: PullRequestStats) -> str:
    lines = [
        f"# Merged PR statistics ({stats.period})",
        "",
        f"**Period:** {stats.period_start[:10]} to {stats.period_end[:10]}",
        "",
        f"- **PRs merged:** {stats.total_merged}",
        f"- **Lines added:** {stats.total_lines_added}",
        f"- **Lines deleted:** {stats.total_lines_deleted}",
        f"- **Files changed:** {stats.total_files_changed}",
        f"- **Average PR size:** {stats.average_pr_size} lines",
    ]
    if stats.top_repositories:
        lines.extend(["", "## Top repositories", "", "| Repository | PRs | Share |", "|---|---|---|"])
        lines.extend(
            f"| {escape_cell(entry.repo)} | {entry.count} | {entry.percentage}% |"
            for entry in stats.top_repositories
        )
    if stats.prs_by_day:
        lines.extend(["", "## PRs by day", "", "| Date | PRs |", "|---|---|"])
        lines.extend(f"| {entry.date} | {entry.count} |" for entry in stats.prs_by_day)
    return "\n".join(lines)


def format_complexity(pr: PullRequestDetails, analysis: ComplexityAnalysis) -> str:
    lines = [
        f"# Complexity analysis for PR #{pr.number}",
        "",
        f"**{pr.title}**",
        "",
        f"- **Score:** {analysis.score}/100",
        f"- **Level:** {analysis.level}",
        f"- **Files changed:** {analysis.changed_files}",
        f"- **Lines changed:** {analysis.lines_changed} (+{analysis.lines_added} / -{analysis.lines_deleted})",
        f"- **Deletion/addition ratio:** {analysis.deletion_ratio:.2f}",
        f"- **Estimated review time:** {analysis.estimated_review_time}",
        "",
        analysis.description,
    ]
    if analysis.suggestions:
        lines.extend(["", "## Suggestions", ""])
        lines.extend(f"- {suggestion}" for suggestion in analysis.suggestions)
    return "\n".join(lines)


def format_checklist(pr_number: int, items: Sequence[str]) -> str:
    lines = [f"# Code review checklist for PR #{pr_number}", ""]
    lines.extend(f"- [ ] {item}" for item in items)
    return "\n".join(lines)


def format_sprints(sprints: Sequence[JiraSprint]) -> str:
    if not sprints:
        return "No sprints found."
    counts = {state: sum(1 for s in sprints if s.state == state) for state in ("active", "future", "closed")}
    rows = [
        f"# Jira sprints ({len(sprints)})",
        "",
        f"- **Active:** {counts['active']}",
        f"- **Future:** {counts['future']}",
        f"- **Closed:** {counts['closed']}",
        "",
        "| ID | Name | State | Start | End | Goal |",
        "|----|------|-------|-------|-----|------|",
    ]
    for sprint in sprints:
        rows.append(
            f"| {sprint.id} | {escape_cell(sprint.name)} | {sprint.state} | "
            f"{(sprint.start_date or '-')[:10]} | {(sprint.end_date or '-')[:10]} | "
            f"{escape_cell(sprint.goal) or '-'} |"
        )
    return "\n".join(rows)


def format_sprint_details(details: SprintDetails) -> str:
    sprint = details.sprint
    stats = details.stats
    lines = [f"# {sprint.name}", ""]
    if sprint.goal:
        lines.extend([f"**Goal:** {sprint.goal}", ""])
    lines.extend(
        [
            f"**Duration:** {(sprint.start_date or '?')[:10]} -> {(sprint.end_date or '?')[:10]}",
            f"**State:** {sprint.state}",
            "",
            "## Progress",
            "",
            f"- **Total tickets:** {stats.total}",
            f"- **Completed:** {stats.completed} ({_percent(stats.completed, stats.total)}%)",
            f"- **In progress:** {stats.in_progress}",
            f"- **To do:** {stats.todo}",
        ]
    )
    if stats.story_points:
        lines.append(
            f"- **Story points:** {_points(stats.completed_points)}/{_points(stats.story_points)} "
            f"completed ({_percent(stats.completed_points, stats.story_points)}%)"
        )
    lines.extend(["", "## Tickets", "", format_tickets_table(details.tickets)])
    return "\n".join(lines)


def format_boards(boards: Sequence[JiraBoard]) -> str:
    if not boards:
        return "No boards found."
    rows = [
        f"# Jira boards ({len(boards)})",
        "",
        "| ID | Name | Type | Project |",
        "|----|------|------|---------|",
    ]
    rows.extend(
        f"| {board.id} | {escape_cell(board.name)} | {board.type} | {board.project_key or '-'} |"
        for board in boards
    )
    return "\n".join(rows)


def format_my_tickets(tickets: Sequence[JiraTicket]) -> str:
    if not tickets:
        return "No tickets found."
    todo = sum(1 for ticket in tickets if ticket.status in TODO_STATUSES)
    in_progress = sum(1 for ticket in tickets if ticket.status in IN_PROGRESS_STATUSES)
    done = [ticket for ticket in tickets if ticket.status in DONE_STATUSES]
    total_points = sum(ticket.story_points for ticket in tickets)
    lines = [
        f"# My Jira tickets ({len(tickets)})",
        "",
        f"- **To do:** {todo}",
        f"- **In progress:** {in_progress}",
        f"- **Done:** {len(done)}",
    ]
    if total_points:
        done_points = sum(ticket.story_points for ticket in done)
        lines.append(f"- **Story points:** {_points(done_points)}/{_points(total_points)} completed")
    lines.extend(["", format_tickets_table(tickets)])
    return "\n".join(lines)


def format_tickets_table(tickets: Sequence[JiraTicket]) -> str:
    if not tickets:
        return "_No tickets._"
    rows = [
        "| Key | Summary | Type | Status | Assignee | Points |",
        "|-----|---------|------|--------|----------|--------|",
    ]
    rows.extend(
        f"| [{ticket.key}]({ticket.url}) | {escape_cell(ticket.summary)} | {ticket.type} | "
        f"{ticket.status} | {escape_cell(ticket.assignee)} | {_points(ticket.story_points) if ticket.story_points else '-'} |"
        for ticket in tickets
    )
    return "\n".join(rows)


def format_created_ticket(ticket: JiraTicket, *, parent: str | None = None) -> str:
    lines = [
        "Jira ticket created.",
        "",
        "| Field | Value |",
        "|-------|-------|",
        f"| Key | **{ticket.key}** |",
        f"| Summary | {escape_cell(ticket.summary)} |",
        f"| Type | {ticket.type} |",
        f"| Status | {ticket.status} |",
        f"| Assignee | {escape_cell(ticket.assignee)} |",
        f"| Priority | {ticket.priority} |",
    ]
    if ticket.labels:
        lines.append(f"| Labels | {', '.join(ticket.labels)} |")
    if parent:
        lines.append(f"| Parent | {parent} |")
    lines.append(f"| URL | {ticket.url} |")
    return "\n".join(lines)


def format_transition(transition: TicketTransition) -> str:
    return "\n".join(
        [
            f"Ticket {transition.ticket_key} transitioned.",
            "",
            "| Field | Value |",
            "|-------|-------|",
            f"| Ticket | {transition.ticket_key} |",
            f"| Previous Status | {transition.previous_status} |",
            f"| New Status | {transition.new_status} |",
            f"| URL | {transition.url} |",
        ]
    )


def format_created_highlight(record: HighlightRecord) -> str:
    lines = [
        "Highlight created.",
        "",
        f"- **ID:** {record.id}",
        f"- **User:** {record.user_id}",
        f"- **Title:** {record.title}",
    ]
    if record.description:
        lines.append(f"- **Description:** {record.description}")
    lines.extend(
        [
            f"- **Artifact Type:** {record.artifact_type}",
            f"- **Artifact URL:** {record.artifact_url}",
            f"- **Achieved At:** {record.achieved_at.date().isoformat()}",
            f"- **Values:** {', '.join(record.value_titles)}",
        ]
    )
    return "\n".join(lines)


def format_highlights(
    user_id: str,
    records: Sequence[HighlightRecord],
    *,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    has_range = start_date is not None or end_date is not None
    if not records:
        suffix = " in the specified date range" if has_range else ""
        return f"No highlights found for user: {user_id}{suffix}"
    lines = [f"# Highlights for {user_id}", ""]
    if has_range:
        lines.extend([f"**Period:** {start_date or 'Beginning'} to {end_date or 'Present'}", ""])
    plural = "" if len(records) == 1 else "s"
    lines.extend(
        [
            f"**Total:** {len(records)} highlight{plural}",
            "",
            "| Date | Title | Type | Values | Link |",
            "|------|-------|------|--------|------|",
        ]
    )
    lines.extend(
        f"| {record.achieved_at.date().isoformat()} | {escape_cell(record.title)} | "
        f"{record.artifact_type} | {escape_cell(', '.join(record.value_titles))} | "
        f"[Link]({record.artifact_url}) |"
        for record in records
    )
    return "\n".join(lines)


def format_highlight_summary(
    summary: HighlightSummary,
    *,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    has_range = start_date is not None or end_date is not None
    if summary.total_highlights == 0:
        suffix = " in the specified date range" if has_range else ""
        return f"No highlights found for user: {summary.user_id}{suffix}"
    lines = ["# Performance Highlight Summary", "", f"**User:** {summary.user_id}"]
    if has_range:
        lines.append(f"**Period:** {start_date or 'Beginning'} to {end_date or 'Present'}")
    lines.extend(
        [
            f"**Total Highlights:** {summary.total_highlights}",
            "",
            "## By Value",
            "",
            "| Value | Count |",
            "|-------|-------|",
        ]
    )
    lines.extend(f"| {escape_cell(title)} | {count} |" for title, count in summary.by_value)
    lines.extend(["", "## By Artifact Type", "", "| Artifact Type | Count |", "|---|---|"])
    lines.extend(f"| {kind} | {count} |" for kind, count in summary.by_artifact_type)
    lines.extend(["", "## Recent Highlights", "", "| Date | Title | Values |", "|---|---|---|"])
    lines.extend(
        f"| {record.achieved_at.date().isoformat()} | {escape_cell(record.title)} | "
        f"{escape_cell(', '.join(record.value_titles))} |"
        for record in summary.recent
    )
    return "\n".join(lines)


def format_company_values(values: Sequence[CompanyValue]) -> str:
    if not values:
        return "No company values found. Run: prbuddy seed-values"
    lines = [
        "# Company Values",
        "",
        f"**Total:** {len(values)} values",
        "",
        "| ID | Title | Description |",
        "|----|-------|-------------|",
    ]
    lines.extend(
        f"| `{value.id}` | {escape_cell(value.title)} | {escape_cell(value.description)} |"
        for value in values
    )
    lines.extend(["", "Use an ID from the table above when creating highlights."])
    return "\n".join(lines)


def _percent(part: float, whole: float) -> int:
    if not whole:
        return 0
    return round(part / whole * 100)


def _points(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"
