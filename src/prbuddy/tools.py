"""Tool handlers shared by the MCP server and the command line.

Each ``handle_*`` function takes a :class:`ToolContext` plus keyword
arguments and returns a :class:`ToolResponse`. Expected failures become
error responses; anything else propagates.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
import functools
import inspect
import logging
from typing import Concatenate, ParamSpec

from prbuddy import formatting
from prbuddy.comments import SubjectNotFoundError, aggregate_comments
from prbuddy.config import AppConfig
from prbuddy.github_cli import GitHubCli, GitHubCliError
from prbuddy.highlights import (
    HighlightError,
    HighlightInput,
    HighlightStore,
    parse_achieved_at,
)
from prbuddy.jira_cli import JiraCli, JiraCliError
from prbuddy.models import CommentQueryOptions
from prbuddy.observability import log_event, timed_event
from prbuddy.pr_analysis import analyze_complexity, build_code_checklist, build_review_prompt


LOGGER = logging.getLogger("prbuddy.tools")
_P = ParamSpec("_P")
_EXPECTED_ERRORS = (
    GitHubCliError,
    JiraCliError,
    SubjectNotFoundError,
    HighlightError,
    ValueError,
)


@dataclass(frozen=True)
class ToolResponse:
    text: str
    is_error: bool = False


@dataclass(frozen=True)
class ToolContext:
    config: AppConfig
    github_factory: Callable[[str | None], GitHubCli]
    jira: JiraCli
    highlights: HighlightStore

    def github(self, repo: str | None = None) -> GitHubCli:
        return self.github_factory(repo or self.config.github.repo)


def build_context(config: AppConfig) -> ToolContext:
    return ToolContext(
        config=config,
        github_factory=lambda repo: GitHubCli(repo=repo),
        jira=JiraCli(site=config.jira.site, browse_url=config.jira.browse_url),
        highlights=HighlightStore(config.highlights.db_path),
    )


def _tool(
    action: str,
) -> Callable[
    [Callable[Concatenate[ToolContext, _P], str]],
    Callable[Concatenate[ToolContext, _P], ToolResponse],
]:
    def decorator(
        fn: Callable[Concatenate[ToolContext, _P], str],
    ) -> Callable[Concatenate[ToolContext, _P], ToolResponse]:
        @functools.wraps(fn)
        def wrapper(ctx: ToolContext, *args: _P.args, **kwargs: _P.kwargs) -> ToolResponse:
            try:
                return ToolResponse(text=fn(ctx, *args, **kwargs))
            except _EXPECTED_ERRORS as exc:
                log_event(
                    LOGGER,
                    "tool_call_failed",
                    tool=fn.__name__.removeprefix("handle_"),
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return ToolResponse(text=f"❌ Error {action}: {exc}", is_error=True)

        return wrapper

    return decorator


@_tool("creating PR")
def handle_create_pr(
    ctx: ToolContext,
    *,
    title: str,
    body: str = "",
    base: str | None = None,
    head: str | None = None,
    labels: list[str] | None = None,
    draft: bool = False,
    repo: str | None = None,
) -> str:
    pr = ctx.github(repo).create_pr(
        title=title,
        body=body,
        base=base or ctx.config.github.default_base,
        head=head,
        labels=tuple(labels or ()),
        draft=draft,
    )
    return f"Pull request created: {pr.url}\n\n{formatting.format_pr_details(pr)}"


@_tool("fetching PR details")
def handle_get_pr_details(ctx: ToolContext, *, number: int, repo: str | None = None) -> str:
    return formatting.format_pr_details(ctx.github(repo).get_pr_details(number))


@_tool("editing PR")
def handle_edit_pr(
    ctx: ToolContext,
    *,
    pr_number: int,
    title: str | None = None,
    body: str | None = None,
    repo: str | None = None,
) -> str:
    return ctx.github(repo).edit_pr(pr_number, title=title, body=body)


@_tool("listing PRs")
def handle_list_my_prs(
    ctx: ToolContext, *, state: str = "open", limit: int = 10, repo: str | None = None
) -> str:
    prs = ctx.github(repo).list_my_prs(state=state, limit=limit)
    return formatting.format_pr_list(prs, state=state)


@_tool("checking out PR branch")
def handle_checkout_pr_branch(
    ctx: ToolContext, *, pr_number: int, create_local: bool = True, repo: str | None = None
) -> str:
    return ctx.github(repo).checkout_pr_branch(pr_number, create_local=create_local)


@_tool("enabling preview environment")
def handle_enable_preview_env(ctx: ToolContext, *, pr_number: int, repo: str | None = None) -> str:
    return ctx.github(repo).enable_preview_env(pr_number, ctx.config.github.preview_label)


@_tool("fetching PR comments")
def handle_get_pr_comments(
    ctx: ToolContext,
    *,
    pr_number: int,
    include_general_comments: bool | None = None,
    include_review_comments: bool | None = None,
    include_inline_comments: bool | None = None,
    include_resolved: bool | None = None,
    filter_by_author: str | None = None,
    group_by: str | None = None,
    max_comments: int | None = None,
    repo: str | None = None,
) -> str:
    options = CommentQueryOptions.from_arguments(
        include_general_comments=include_general_comments,
        include_review_comments=include_review_comments,
        include_inline_comments=include_inline_comments,
        include_resolved=include_resolved,
        filter_by_author=filter_by_author,
        group_by=group_by,
        max_comments=max_comments,
        defaults=ctx.config.comments.default_options(),
    )
    document = ctx.github(repo).fetch_pr_comments_document(pr_number, options)
    return formatting.format_comments(aggregate_comments(pr_number, document, options))


@_tool("fetching PR diff summary")
def handle_get_pr_diff_summary(
    ctx: ToolContext, *, pr_number: int, max_files: int = 20, repo: str | None = None
) -> str:
    return formatting.format_diff_summary(
        ctx.github(repo).get_pr_diff_summary(pr_number, max_files=max_files)
    )


@_tool("fetching PR statistics")
def handle_get_pr_stats(ctx: ToolContext, *, period: str, repo: str | None = None) -> str:
    if period not in ("day", "week", "month"):
        raise ValueError("period must be one of: day, week, month")
    return formatting.format_pr_stats(ctx.github(repo).get_pr_stats(period))  # type: ignore[arg-type]


@_tool("generating review prompt")
def handle_generate_review_prompt(
    ctx: ToolContext,
    *,
    pr_number: int,
    review_type: str = "staff-engineer",
    focus_areas: list[str] | None = None,
    repo: str | None = None,
) -> str:
    pr = ctx.github(repo).get_pr_details(pr_number)
    return build_review_prompt(pr, review_type, tuple(focus_areas or ()))


@_tool("generating code checklist")
def handle_generate_code_checklist(
    ctx: ToolContext,
    *,
    pr_number: int,
    include_security_checks: bool = True,
    include_performance_checks: bool = True,
    repo: str | None = None,
) -> str:
    pr = ctx.github(repo).get_pr_details(pr_number)
    items = build_code_checklist(
        pr,
        include_security=include_security_checks,
        include_performance=include_performance_checks,
    )
    return formatting.format_checklist(pr_number, items)


@_tool("analyzing PR complexity")
def handle_analyze_pr_complexity(
    ctx: ToolContext, *, pr_number: int, repo: str | None = None
) -> str:
    pr = ctx.github(repo).get_pr_details(pr_number)
    return formatting.format_complexity(pr, analyze_complexity(pr))


@_tool("fetching sprints")
def handle_get_jira_sprints(
    ctx: ToolContext,
    *,
    board_id: int | None = None,
    state: str | None = None,
    max_results: int | None = None,
) -> str:
    if state is not None and state not in ("future", "active", "closed", "all"):
        raise ValueError("state must be one of: future, active, closed, all")
    sprints = ctx.jira.list_sprints(
        board_id=board_id,
        state=state,  # type: ignore[arg-type]
        max_results=max_results,
    )
    return formatting.format_sprints(sprints)


@_tool("fetching sprint details")
def handle_get_jira_sprint_details(ctx: ToolContext, *, sprint_id: int) -> str:
    return formatting.format_sprint_details(ctx.jira.get_sprint_details(sprint_id))


@_tool("fetching boards")
def handle_get_jira_boards(
    ctx: ToolContext,
    *,
    project_key: str | None = None,
    board_type: str | None = None,
    max_results: int | None = None,
) -> str:
    if board_type is not None and board_type not in ("scrum", "kanban"):
        raise ValueError("board_type must be one of: scrum, kanban")
    boards = ctx.jira.list_boards(
        project_key=project_key,
        board_type=board_type,  # type: ignore[arg-type]
        max_results=max_results,
    )
    return formatting.format_boards(boards)


@_tool("fetching tickets")
def handle_get_my_jira_tickets(
    ctx: ToolContext,
    *,
    status: str | None = None,
    sprint: str | None = None,
    max_results: int = 50,
) -> str:
    if sprint is not None and sprint not in ("open", "closed", "all"):
        raise ValueError("sprint must be one of: open, closed, all")
    tickets = ctx.jira.get_my_tickets(
        status=status,
        sprint=sprint,  # type: ignore[arg-type]
        max_results=max_results,
    )
    return formatting.format_my_tickets(tickets)


@_tool("creating ticket")
def handle_create_jira_ticket(
    ctx: ToolContext,
    *,
    project: str,
    issue_type: str,
    summary: str,
    description: str | None = None,
    assignee: str = "@me",
    labels: list[str] | None = None,
    priority: str | None = None,
    parent: str | None = None,
) -> str:
    ticket = ctx.jira.create_ticket(
        project=project,
        issue_type=issue_type,
        summary=summary,
        description=description,
        assignee=assignee,
        labels=tuple(labels or ()),
        priority=priority,
        parent=parent,
    )
    return formatting.format_created_ticket(ticket, parent=parent)


@_tool("transitioning ticket")
def handle_transition_jira_ticket(ctx: ToolContext, *, ticket_key: str, status: str) -> str:
    return formatting.format_transition(ctx.jira.transition_ticket(ticket_key, status))


@_tool("creating highlight")
def handle_create_highlight(
    ctx: ToolContext,
    *,
    user_id: str,
    title: str,
    artifact_type: str,
    artifact_url: str,
    achieved_at: str,
    value_ids: list[str],
    description: str | None = None,
) -> str:
    record = ctx.highlights.create_highlight(
        HighlightInput(
            user_id=user_id,
            title=title,
            description=description,
            artifact_type=artifact_type,
            artifact_url=artifact_url,
            achieved_at=parse_achieved_at(achieved_at),
            value_ids=tuple(value_ids),
        )
    )
    return formatting.format_created_highlight(record)


@_tool("fetching highlights")
def handle_get_my_highlights(
    ctx: ToolContext,
    *,
    user_id: str,
    start_date: str | None = None,
    end_date: str | None = None,
    value_title: str | None = None,
    artifact_type: str | None = None,
) -> str:
    records = ctx.highlights.list_highlights(
        user_id,
        start_date=_parse_bound(start_date),
        end_date=_parse_bound(end_date),
        value_title=value_title,
        artifact_type=artifact_type,
    )
    return formatting.format_highlights(
        user_id, records, start_date=start_date, end_date=end_date
    )


@_tool("generating summary")
def handle_get_highlight_summary(
    ctx: ToolContext,
    *,
    user_id: str,
    start_date: str | None = None,
    end_date: str | None = None,
) -> str:
    summary = ctx.highlights.summarize(
        user_id, start_date=_parse_bound(start_date), end_date=_parse_bound(end_date)
    )
    return formatting.format_highlight_summary(summary, start_date=start_date, end_date=end_date)


@_tool("listing company values")
def handle_list_company_values(ctx: ToolContext) -> str:
    return formatting.format_company_values(ctx.highlights.list_values())


TOOL_HANDLERS: dict[str, Callable[..., ToolResponse]] = {
    "create_pr": handle_create_pr,
    "get_pr_details": handle_get_pr_details,
    "edit_pr": handle_edit_pr,
    "list_my_prs": handle_list_my_prs,
    "checkout_pr_branch": handle_checkout_pr_branch,
    "enable_preview_env": handle_enable_preview_env,
    "get_pr_comments": handle_get_pr_comments,
    "get_pr_diff_summary": handle_get_pr_diff_summary,
    "get_pr_stats": handle_get_pr_stats,
    "generate_review_prompt": handle_generate_review_prompt,
    "generate_code_checklist": handle_generate_code_checklist,
    "analyze_pr_complexity": handle_analyze_pr_complexity,
    "get_jira_sprints": handle_get_jira_sprints,
    "get_jira_sprint_details": handle_get_jira_sprint_details,
    "get_jira_boards": handle_get_jira_boards,
    "get_my_jira_tickets": handle_get_my_jira_tickets,
    "create_jira_ticket": handle_create_jira_ticket,
    "transition_jira_ticket": handle_transition_jira_ticket,
    "create_highlight": handle_create_highlight,
    "get_my_highlights": handle_get_my_highlights,
    "get_highlight_summary": handle_get_highlight_summary,
    "list_company_values": handle_list_company_values,
}


def dispatch(ctx: ToolContext, name: str, arguments: Mapping[str, object] | None = None) -> ToolResponse:
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        log_event(LOGGER, "tool_call_failed", tool=name, error_type="UnknownTool")
        return ToolResponse(text=f"❌ Unknown tool: {name}", is_error=True)
    kwargs = dict(arguments or {})
    try:
        inspect.signature(handler).bind(ctx, **kwargs)
    except TypeError as exc:
        log_event(LOGGER, "tool_call_failed", tool=name, error_type="TypeError", error=str(exc))
        return ToolResponse(text=f"❌ Invalid arguments for {name}: {exc}", is_error=True)
    with timed_event(LOGGER, "tool_call_finished", tool=name) as outcome:
        response = handler(ctx, **kwargs)
        outcome["is_error"] = response.is_error
    return response


def _parse_bound(value: str | None) -> date | datetime | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return parse_achieved_at(value)
