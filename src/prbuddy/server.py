"""FastMCP server exposing the prbuddy tools over stdio.

Stdout carries the protocol, so logging must go to stderr or a log file.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from prbuddy import __version__
from prbuddy.config import AppConfig
from prbuddy.observability import log_event
from prbuddy.tools import ToolContext, ToolResponse, build_context, dispatch


LOGGER = logging.getLogger("prbuddy.server")

_INSTRUCTIONS = """\
Pull request, Jira and performance-highlight helpers backed by the `gh` and
`acli` command line tools. Authentication is handled by those CLIs.
"""

RepoArg = Annotated[
    str | None,
    Field(description='Repository in "owner/name" form. Defaults to the configured or current repo.'),
]
PrNumberArg = Annotated[int, Field(ge=1, description="Pull request number")]


def _unwrap(response: ToolResponse) -> str:
    if response.is_error:
        raise ToolError(response.text)
    return response.text


def build_server(ctx: ToolContext) -> FastMCP:
    mcp = FastMCP("prbuddy", instructions=_INSTRUCTIONS)

    def call(name: str, **arguments: object) -> str:
        return _unwrap(dispatch(ctx, name, arguments))

    @mcp.tool(tags={"github", "command"})
    def create_pr(
        title: Annotated[str, Field(description="PR title, e.g. 'PROJ-123 - Add retry to uploader'")],
        body: Annotated[str, Field(description="PR description in markdown")] = "",
        base: Annotated[str | None, Field(description="Base branch; defaults to the configured base")] = None,
        head: Annotated[str | None, Field(description="Head branch; defaults to the current branch")] = None,
        labels: Annotated[list[str] | None, Field(description="Labels to add after creation")] = None,
        draft: Annotated[bool, Field(description="Create as a draft PR")] = False,
        repo: RepoArg = None,
    ) -> str:
        """Create a pull request and return its details."""
        return call(
            "create_pr",
            title=title,
            body=body,
            base=base,
            head=head,
            labels=labels,
            draft=draft,
            repo=repo,
        )

    @mcp.tool(tags={"github", "query"})
    def get_pr_details(number: PrNumberArg, repo: RepoArg = None) -> str:
        """Get comprehensive information about a pull request."""
        return call("get_pr_details", number=number, repo=repo)

    @mcp.tool(tags={"github", "command"})
    def edit_pr(
        pr_number: PrNumberArg,
        title: Annotated[str | None, Field(description="New title")] = None,
        body: Annotated[str | None, Field(description="New description")] = None,
        repo: RepoArg = None,
    ) -> str:
        """Update the title and/or body of a pull request."""
        return call("edit_pr", pr_number=pr_number, title=title, body=body, repo=repo)

    @mcp.tool(tags={"github", "query"})
    def list_my_prs(
        state: Literal["open", "closed", "merged", "all"] = "open",
        limit: Annotated[int, Field(ge=1, le=100)] = 10,
        repo: RepoArg = None,
    ) -> str:
        """List pull requests authored by the current user."""
        return call("list_my_prs", state=state, limit=limit, repo=repo)

    @mcp.tool(tags={"github", "command"})
    def checkout_pr_branch(
        pr_number: PrNumberArg,
        create_local: Annotated[bool, Field(description="Create a local branch")] = True,
        repo: RepoArg = None,
    ) -> str:
        """Switch the working copy to the branch of a pull request."""
        return call(
            "checkout_pr_branch", pr_number=pr_number, create_local=create_local, repo=repo
        )

    @mcp.tool(tags={"github", "command"})
    def enable_preview_env(pr_number: PrNumberArg, repo: RepoArg = None) -> str:
        """Add the preview-environment label to a pull request."""
        return call("enable_preview_env", pr_number=pr_number, repo=repo)

    @mcp.tool(tags={"github", "query"})
    def get_pr_comments(
        pr_number: PrNumberArg,
        include_general_comments: bool | None = None,
        include_review_comments: bool | None = None,
        include_inline_comments: bool | None = None,
        include_resolved: Annotated[
            bool | None, Field(description="Include comments on resolved review threads")
        ] = None,
        filter_by_author: Annotated[str | None, Field(description="Only this login")] = None,
        group_by: Literal["chronological", "type", "author", "file"] | None = None,
        max_comments: Annotated[int | None, Field(ge=1, le=100)] = None,
        repo: RepoArg = None,
    ) -> str:
        """Fetch general, review and inline comments as one deduplicated table."""
        return call(
            "get_pr_comments",
            pr_number=pr_number,
            include_general_comments=include_general_comments,
            include_review_comments=include_review_comments,
            include_inline_comments=include_inline_comments,
            include_resolved=include_resolved,
            filter_by_author=filter_by_author,
            group_by=group_by,
            max_comments=max_comments,
            repo=repo,
        )

    @mcp.tool(tags={"github", "query"})
    def get_pr_diff_summary(
        pr_number: PrNumberArg,
        max_files: Annotated[int, Field(ge=1)] = 20,
        repo: RepoArg = None,
    ) -> str:
        """Summarize the files and line counts changed by a pull request."""
        return call("get_pr_diff_summary", pr_number=pr_number, max_files=max_files, repo=repo)

    @mcp.tool(tags={"github", "query"})
    def get_pr_stats(period: Literal["day", "week", "month"], repo: RepoArg = None) -> str:
        """Statistics about the current user's merged pull requests."""
        return call("get_pr_stats", period=period, repo=repo)

    @mcp.tool(tags={"review"})
    def generate_review_prompt(
        pr_number: PrNumberArg,
        review_type: Literal[
            "staff-engineer", "security", "performance", "architecture", "junior-dev"
        ] = "staff-engineer",
        focus_areas: list[str] | None = None,
        repo: RepoArg = None,
    ) -> str:
        """Create a review prompt tailored to a review style."""
        return call(
            "generate_review_prompt",
            pr_number=pr_number,
            review_type=review_type,
            focus_areas=focus_areas,
            repo=repo,
        )

    @mcp.tool(tags={"review"})
    def generate_code_checklist(
        pr_number: PrNumberArg,
        include_security_checks: bool = True,
        include_performance_checks: bool = True,
        repo: RepoArg = None,
    ) -> str:
        """Create a code review checklist for a pull request."""
        return call(
            "generate_code_checklist",
            pr_number=pr_number,
            include_security_checks=include_security_checks,
            include_performance_checks=include_performance_checks,
            repo=repo,
        )

    @mcp.tool(tags={"review"})
    def analyze_pr_complexity(pr_number: PrNumberArg, repo: RepoArg = None) -> str:
        """Score a pull request's complexity and estimate review time."""
        return call("analyze_pr_complexity", pr_number=pr_number, repo=repo)

    @mcp.tool(tags={"jira", "query"})
    def get_jira_sprints(
        board_id: int | None = None,
        state: Literal["future", "active", "closed", "all"] | None = None,
        max_results: Annotated[int | None, Field(ge=1)] = None,
    ) -> str:
        """List sprints, optionally for one board and state."""
        return call("get_jira_sprints", board_id=board_id, state=state, max_results=max_results)

    @mcp.tool(tags={"jira", "query"})
    def get_jira_sprint_details(sprint_id: int) -> str:
        """Sprint progress, story points and tickets."""
        return call("get_jira_sprint_details", sprint_id=sprint_id)

    @mcp.tool(tags={"jira", "query"})
    def get_jira_boards(
        project_key: str | None = None,
        board_type: Literal["scrum", "kanban"] | None = None,
        max_results: Annotated[int | None, Field(ge=1)] = None,
    ) -> str:
        """List Jira boards."""
        return call(
            "get_jira_boards",
            project_key=project_key,
            board_type=board_type,
            max_results=max_results,
        )

    @mcp.tool(tags={"jira", "query"})
    def get_my_jira_tickets(
        status: Annotated[str | None, Field(description='e.g. "In Progress"')] = None,
        sprint: Literal["open", "closed", "all"] | None = None,
        max_results: Annotated[int, Field(ge=1)] = 50,
    ) -> str:
        """Tickets assigned to the current user, newest first."""
        return call("get_my_jira_tickets", status=status, sprint=sprint, max_results=max_results)

    @mcp.tool(tags={"jira", "command"})
    def create_jira_ticket(
        project: Annotated[str, Field(description="Project key, e.g. PROJ")],
        issue_type: Annotated[str, Field(description="Task, Bug, Story, ...")],
        summary: str,
        description: str | None = None,
        assignee: Annotated[str, Field(description='Email, account id or "@me"')] = "@me",
        labels: list[str] | None = None,
        priority: str | None = None,
        parent: Annotated[str | None, Field(description="Parent key for sub-tasks")] = None,
    ) -> str:
        """Create a Jira ticket."""
        return call(
            "create_jira_ticket",
            project=project,
            issue_type=issue_type,
            summary=summary,
            description=description,
            assignee=assignee,
            labels=labels,
            priority=priority,
            parent=parent,
        )

    @mcp.tool(tags={"jira", "command"})
    def transition_jira_ticket(
        ticket_key: Annotated[str, Field(description="e.g. PROJ-123")],
        status: Annotated[str, Field(description='Target status, e.g. "Done"')],
    ) -> str:
        """Move a Jira ticket to another status."""
        return call("transition_jira_ticket", ticket_key=ticket_key, status=status)

    @mcp.tool(tags={"highlights", "command"})
    def create_highlight(
        user_id: str,
        title: str,
        artifact_type: Literal[
            "github_pr", "slack_message", "jira_ticket", "document", "demo", "meeting", "other"
        ],
        artifact_url: str,
        achieved_at: Annotated[str, Field(description="ISO date or timestamp")],
        value_ids: Annotated[list[str], Field(min_length=1, description="Company value IDs")],
        description: str | None = None,
    ) -> str:
        """Record a performance highlight linked to company values."""
        return call(
            "create_highlight",
            user_id=user_id,
            title=title,
            artifact_type=artifact_type,
            artifact_url=artifact_url,
            achieved_at=achieved_at,
            value_ids=value_ids,
            description=description,
        )

    @mcp.tool(tags={"highlights", "query"})
    def get_my_highlights(
        user_id: str,
        start_date: Annotated[str | None, Field(description="ISO date, inclusive")] = None,
        end_date: Annotated[str | None, Field(description="ISO date, inclusive")] = None,
        value_title: Annotated[str | None, Field(description="Substring of a value title")] = None,
        artifact_type: str | None = None,
    ) -> str:
        """List a user's highlights, newest first."""
        return call(
            "get_my_highlights",
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            value_title=value_title,
            artifact_type=artifact_type,
        )

    @mcp.tool(tags={"highlights", "query"})
    def get_highlight_summary(
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> str:
        """Counts of a user's highlights by value and artifact type."""
        return call(
            "get_highlight_summary", user_id=user_id, start_date=start_date, end_date=end_date
        )

    @mcp.tool(tags={"highlights", "query"})
    def list_company_values() -> str:
        """List the company values highlights can be linked to."""
        return call("list_company_values")

    return mcp


def serve(config: AppConfig) -> None:
    ctx = build_context(config)
    server = build_server(ctx)
    log_event(
        LOGGER,
        "server_started",
        version=__version__,
        repo=config.github.repo,
        highlights_db=str(config.highlights.db_path),
    )
    server.run()
