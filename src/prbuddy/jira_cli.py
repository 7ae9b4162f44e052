from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Literal, cast

from prbuddy.observability import log_event
from prbuddy.shell import CommandError, run


LOGGER = logging.getLogger("prbuddy.jira_cli")

SprintState = Literal["future", "active", "closed", "unknown"]
SprintStateFilter = Literal["future", "active", "closed", "all"]
SprintScope = Literal["open", "closed", "all"]
BoardType = Literal["scrum", "kanban"]

DONE_STATUSES = frozenset({"Done", "Closed", "Resolved"})
IN_PROGRESS_STATUSES = frozenset({"In Progress", "In Review", "In QA"})
TODO_STATUSES = frozenset({"To Do", "Open", "Backlog"})
STORY_POINTS_FIELD = "customfield_10016"
_SPRINT_STATES: frozenset[str] = frozenset({"future", "active", "closed"})
_DEFAULT_MY_TICKETS_LIMIT = 50


class JiraCliError(RuntimeError):
    def __init__(self, message: str, *, exit_code: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


@dataclass(frozen=True)
class JiraSprint:
    id: int
    name: str
    state: SprintState
    board_id: int
    start_date: str | None = None
    end_date: str | None = None
    complete_date: str | None = None
    goal: str = ""


@dataclass(frozen=True)
class JiraTicket:
    key: str
    summary: str
    status: str
    assignee: str
    priority: str
    type: str
    url: str
    story_points: float = 0
    labels: tuple[str, ...] = ()
    created: str | None = None
    updated: str | None = None


@dataclass(frozen=True)
class JiraBoard:
    id: int
    name: str
    type: str
    project_key: str


@dataclass(frozen=True)
class SprintStats:
    total: int
    completed: int
    in_progress: int
    todo: int
    story_points: float
    completed_points: float


@dataclass(frozen=True)
class SprintDetails:
    sprint: JiraSprint
    tickets: tuple[JiraTicket, ...]
    stats: SprintStats


@dataclass(frozen=True)
class TicketTransition:
    ticket_key: str
    previous_status: str
    new_status: str
    url: str


@dataclass(frozen=True)
class JiraCli:
    """Jira operations through the Atlassian CLI (``acli``)."""

    site: str | None = None
    browse_url: str = "https://jira.atlassian.net"

    def ticket_url(self, key: str) -> str:
        return f"{self.browse_url}/browse/{key}"

    def check_auth(self) -> bool:
        try:
            run(["acli", "--version"])
        except CommandError:
            return False
        return True

    def list_sprints(
        self,
        *,
        board_id: int | None = None,
        state: SprintStateFilter | None = None,
        max_results: int | None = None,
    ) -> list[JiraSprint]:
        args = ["jira", "sprint", "list", "--output", "json"]
        if board_id is not None:
            args.extend(["--board-id", str(board_id)])
        if state is not None and state != "all":
            args.extend(["--state", state])
        # acli has no server-side limit for sprint listings.
        items = _limit(self._acli_list(args, action="list sprints"), max_results)
        return [_parse_sprint(item, fallback_board_id=board_id or 0) for item in items]

    def get_sprint_details(self, sprint_id: int) -> SprintDetails:
        sprint_payload = _as_object_dict(
            self._acli_json(
                ["jira", "sprint", "get", str(sprint_id), "--output", "json"],
                action="get sprint details",
            )
        )
        if sprint_payload is None:
            raise JiraCliError(f"Failed to get sprint details: sprint {sprint_id} not found")
        ticket_items = self._acli_list(
            ["jira", "workitem", "list", "--sprint", str(sprint_id), "--output", "json"],
            action="get sprint details",
        )
        tickets = tuple(self._parse_ticket(item) for item in ticket_items)
        done = [ticket for ticket in tickets if ticket.status in DONE_STATUSES]
        stats = SprintStats(
            total=len(tickets),
            completed=len(done),
            in_progress=sum(1 for ticket in tickets if ticket.status in IN_PROGRESS_STATUSES),
            todo=sum(1 for ticket in tickets if ticket.status in TODO_STATUSES),
            story_points=sum(ticket.story_points for ticket in tickets),
            completed_points=sum(ticket.story_points for ticket in done),
        )
        log_event(LOGGER, "jira_read", endpoint="sprint_details", sprint_id=sprint_id, count=len(tickets))
        return SprintDetails(
            sprint=_parse_sprint(sprint_payload, fallback_board_id=0),
            tickets=tickets,
            stats=stats,
        )

    def list_boards(
        self,
        *,
        project_key: str | None = None,
        board_type: BoardType | None = None,
        max_results: int | None = None,
    ) -> list[JiraBoard]:
        args = ["jira", "board", "list", "--output", "json"]
        if project_key:
            args.extend(["--project-key", project_key])
        if board_type:
            args.extend(["--type", board_type])
        boards: list[JiraBoard] = []
        for item in _limit(self._acli_list(args, action="list boards"), max_results):
            location = _as_object_dict(item.get("location"))
            boards.append(
                JiraBoard(
                    id=_as_int_or_zero(item.get("id")),
                    name=_as_string(item.get("name")),
                    type=_as_string(item.get("type")).lower() or "scrum",
                    project_key=_as_string(location.get("projectKey") if location else None),
                )
            )
        return boards

    def get_active_sprint(self, board_id: int) -> JiraSprint | None:
        sprints = self.list_sprints(board_id=board_id, state="active", max_results=1)
        return sprints[0] if sprints else None

    def search_tickets(self, jql: str, *, max_results: int | None = None) -> list[JiraTicket]:
        items = self._acli_list(
            ["jira", "workitem", "search", "--jql", jql, "--json"],
            action="search tickets",
        )
        tickets = [self._parse_ticket(item) for item in _limit(items, max_results)]
        log_event(LOGGER, "jira_read", endpoint="workitem_search", count=len(tickets))
        return tickets

    def get_my_tickets(
        self,
        *,
        status: str | None = None,
        sprint: SprintScope | None = None,
        max_results: int = _DEFAULT_MY_TICKETS_LIMIT,
    ) -> list[JiraTicket]:
        return self.search_tickets(
            build_my_tickets_jql(status=status, sprint=sprint), max_results=max_results
        )

    def create_ticket(
        self,
        *,
        project: str,
        issue_type: str,
        summary: str,
        description: str | None = None,
        assignee: str = "@me",
        labels: tuple[str, ...] = (),
        priority: str | None = None,
        parent: str | None = None,
    ) -> JiraTicket:
        args = [
            "jira",
            "workitem",
            "create",
            "--project",
            project,
            "--type",
            issue_type,
            "--summary",
            summary,
            "--assignee",
            assignee,
        ]
        if description:
            args.extend(["--description", description])
        if labels:
            args.extend(["--label", ",".join(labels)])
        if parent:
            args.extend(["--parent", parent])
        args.append("--json")

        payload = _as_object_dict(self._acli_json(args, action="create ticket"))
        key = payload.get("key") if payload else None
        if not isinstance(key, str) or not key:
            raise JiraCliError("Failed to create ticket: response did not include a key")
        fields = _as_object_dict(payload.get("fields")) if payload else None
        fields = fields or {}
        log_event(LOGGER, "jira_ticket_created", project=project, ticket_key=key)
        return JiraTicket(
            key=key,
            summary=summary,
            status=_nested_name(fields, "status") or "To Do",
            assignee=_nested_name(fields, "assignee", "displayName") or assignee,
            priority=_nested_name(fields, "priority") or priority or "Medium",
            type=issue_type,
            url=self.ticket_url(key),
            labels=labels,
            created=_as_optional_str(fields.get("created")),
            updated=_as_optional_str(fields.get("updated")),
        )

    def transition_ticket(self, ticket_key: str, status: str) -> TicketTransition:
        current = self._acli_list(
            ["jira", "workitem", "search", "--jql", f"key = {ticket_key}", "--json"],
            action="transition ticket",
        )
        if not current:
            raise JiraCliError(f"Failed to transition ticket: Ticket {ticket_key} not found")
        fields = _as_object_dict(current[0].get("fields")) or {}
        previous_status = _nested_name(fields, "status") or "Unknown"

        self._acli(
            ["jira", "workitem", "transition", "--key", ticket_key, "--status", status, "--yes"],
            action="transition ticket",
        )
        log_event(
            LOGGER,
            "jira_ticket_transitioned",
            ticket_key=ticket_key,
            previous_status=previous_status,
            new_status=status,
        )
        return TicketTransition(
            ticket_key=ticket_key,
            previous_status=previous_status,
            new_status=status,
            url=self.ticket_url(ticket_key),
        )

    def _parse_ticket(self, item: dict[str, object]) -> JiraTicket:
        key = _as_string(item.get("key"))
        fields = _as_object_dict(item.get("fields")) or {}
        raw_labels = fields.get("labels")
        labels = (
            tuple(label for label in raw_labels if isinstance(label, str))
            if isinstance(raw_labels, list)
            else ()
        )
        return JiraTicket(
            key=key,
            summary=_as_string(fields.get("summary")),
            status=_nested_name(fields, "status") or "Unknown",
            assignee=_nested_name(fields, "assignee", "displayName") or "Unassigned",
            priority=_nested_name(fields, "priority") or "None",
            type=_nested_name(fields, "issuetype") or "Task",
            url=self.ticket_url(key),
            story_points=_as_points(fields.get(STORY_POINTS_FIELD)),
            labels=labels,
            created=_as_optional_str(fields.get("created")),
            updated=_as_optional_str(fields.get("updated")),
        )

    def _acli(self, args: list[str], *, action: str) -> str:
        argv = ["acli", *args]
        if self.site:
            argv.extend(["--site", self.site])
        try:
            return run(argv).strip()
        except CommandError as exc:
            log_event(
                LOGGER,
                "jira_cli_failed",
                action=action,
                exit_code=exc.exit_code,
                stderr=exc.stderr,
            )
            detail = exc.stderr.strip() or exc.stdout.strip() or f"exit code {exc.exit_code}"
            raise JiraCliError(
                f"Failed to {action}: {detail}", exit_code=exc.exit_code, stderr=exc.stderr
            ) from exc

    def _acli_json(self, args: list[str], *, action: str) -> object:
        raw = self._acli(args, action=action)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise JiraCliError(f"Failed to {action}: acli returned non-JSON output") from exc

    def _acli_list(self, args: list[str], *, action: str) -> list[dict[str, object]]:
        payload = self._acli_json(args, action=action)
        if not isinstance(payload, list):
            raise JiraCliError(f"Failed to {action}: expected a JSON list from acli")
        items: list[dict[str, object]] = []
        for entry in payload:
            entry_obj = _as_object_dict(entry)
            if entry_obj is not None:
                items.append(entry_obj)
        return items


def build_my_tickets_jql(*, status: str | None = None, sprint: SprintScope | None = None) -> str:
    clauses = ["assignee = currentUser()"]
    if sprint == "open":
        clauses.append("sprint in openSprints()")
    elif sprint == "closed":
        clauses.append("sprint in closedSprints()")
    if status:
        escaped = status.replace('"', '\\"')
        clauses.append(f'status = "{escaped}"')
    return " AND ".join(clauses) + " ORDER BY created DESC"


def _parse_sprint(item: dict[str, object], *, fallback_board_id: int) -> JiraSprint:
    state = _as_string(item.get("state")).lower()
    return JiraSprint(
        id=_as_int_or_zero(item.get("id")),
        name=_as_string(item.get("name")),
        state=cast(SprintState, state) if state in _SPRINT_STATES else "unknown",
        board_id=_as_int_or_zero(item.get("originBoardId")) or fallback_board_id,
        start_date=_as_optional_str(item.get("startDate")),
        end_date=_as_optional_str(item.get("endDate")),
        complete_date=_as_optional_str(item.get("completeDate")),
        goal=_as_string(item.get("goal")),
    )


def _limit(items: list[dict[str, object]], max_results: int | None) -> list[dict[str, object]]:
    if max_results is None or max_results < 1:
        return items
    return items[:max_results]


def _nested_name(fields: dict[str, object], key: str, attribute: str = "name") -> str | None:
    nested = _as_object_dict(fields.get(key))
    if nested is None:
        return None
    value = nested.get(attribute)
    return value if isinstance(value, str) and value else None


def _as_points(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


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
    if isinstance(value, str) and value:
        return value
    return None


def _as_int_or_zero(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value
