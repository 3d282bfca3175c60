"""Описание схем и реестра MCP-инструментов Jira."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

ToolResponse = Dict[str, Any]
ToolHandler = Callable[[Dict[str, Any]], ToolResponse]

TOOL_PREFIX = "jira_"


class ToolSchema(BaseModel):
    """JSON-схема аргументов/результатов инструмента MCP."""

    type: str = "object"
    properties: Dict[str, Any] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)
    additionalProperties: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class ToolSpec(BaseModel):
    """Спецификация инструмента MCP, публикуемая в `tools/list`."""

    name: str
    description: str
    input_schema: ToolSchema
    output_schema: Optional[ToolSchema] = None

    def as_mcp_dict(self) -> Dict[str, Any]:
        payload = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema.as_dict(),
        }
        if self.output_schema is not None:
            payload["outputSchema"] = self.output_schema.as_dict()
        return payload


_ISSUE_KEY = {"type": "string", "description": "Issue key (e.g., 'QT-14006')"}
_PROJECT_KEY = {
    "type": "string",
    "description": "Project key (e.g., 'QT'); JIRA_DEFAULT_PROJECT is used when omitted",
}


def _max_results(default: int) -> Dict[str, Any]:
    return {
        "type": "integer",
        "description": f"Maximum results to return (default: {default})",
        "minimum": 1,
        "default": default,
    }


def _spec(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> ToolSpec:
    return ToolSpec(
        name=TOOL_PREFIX + name,
        description=description,
        input_schema=ToolSchema(properties=properties, required=required),
    )


_SPECS = [
    _spec(
        "get_issue",
        "Get complete issue details: summary, status, priority, assignee, description, comments and labels.",
        {"issue_key": _ISSUE_KEY},
        ["issue_key"],
    ),
    _spec(
        "search_issues",
        "Search issues with a JQL query, e.g. 'project = QT AND status = \"In Progress\"'.",
        {
            "jql": {"type": "string", "description": "JQL query string"},
            "max_results": _max_results(100),
        },
        ["jql"],
    ),
    _spec(
        "search_sprint_issues",
        "List issues in the open sprints of a project, or in a named sprint.",
        {
            "project_key": _PROJECT_KEY,
            "sprint_name": {
                "type": "string",
                "description": "Optional sprint name; open sprints are used when omitted",
            },
            "max_results": _max_results(500),
        },
        [],
    ),
    _spec(
        "get_team_workload",
        "Ticket counts per assignee in the current sprint, grouped by status. Includes unassigned tickets.",
        {"project_key": _PROJECT_KEY},
        [],
    ),
    _spec(
        "get_time_metrics",
        "Time estimates and time logged by role (Developer/Tester/Reviewer) for the current sprint.",
        {"project_key": _PROJECT_KEY},
        [],
    ),
    _spec(
        "get_epic_children",
        "List issues linked to an epic with status, assignee and story points.",
        {
            "epic_key": {"type": "string", "description": "Epic issue key (e.g., 'QT-1000')"},
            "max_results": _max_results(100),
        },
        ["epic_key"],
    ),
    _spec(
        "create_issue",
        "Create a new issue and return its key.",
        {
            "project_key": _PROJECT_KEY,
            "summary": {"type": "string", "description": "Issue summary/title"},
            "description": {"type": "string", "description": "Issue description"},
            "issue_type": {
                "type": "string",
                "description": "Issue type (Bug, Task, Story, etc.)",
                "default": "Task",
            },
            "priority": {"type": "string", "description": "Priority (Highest, High, Medium, Low, Lowest)"},
        },
        ["summary"],
    ),
    _spec(
        "update_issue",
        "Update fields of an existing issue, e.g. {'summary': 'Updated title'}.",
        {
            "issue_key": _ISSUE_KEY,
            "fields": {"type": "object", "description": "Fields to update"},
        },
        ["issue_key", "fields"],
    ),
    _spec(
        "get_transitions",
        "List the status transitions currently available for an issue.",
        {"issue_key": _ISSUE_KEY},
        ["issue_key"],
    ),
    _spec(
        "transition_issue",
        "Move an issue to another status. Use jira_get_transitions to find the transition id.",
        {
            "issue_key": _ISSUE_KEY,
            "transition_id": {"type": "string", "description": "Transition ID"},
        },
        ["issue_key", "transition_id"],
    ),
    _spec(
        "add_comment",
        "Add a comment to an issue.",
        {
            "issue_key": _ISSUE_KEY,
            "body": {"type": "string", "description": "Comment text"},
        },
        ["issue_key", "body"],
    ),
    _spec(
        "get_rate_limits",
        "Report the last seen Jira API rate limit: limit, remaining requests, reset time and status.",
        {},
        [],
    ),
    _spec(
        "search_by_labels",
        "Open-sprint tickets per label (e.g. 'rg', 'SprintGoal') with count, status breakdown and ticket list.",
        {
            "project_key": _PROJECT_KEY,
            "labels": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Labels to search for (e.g., ['rg', 'SprintGoal'])",
            },
        },
        ["labels"],
    ),
    _spec(
        "get_blocked_tickets",
        "Open-sprint tickets in the Blocked status or labelled 'blocked'.",
        {"project_key": _PROJECT_KEY},
        [],
    ),
    _spec(
        "list_sprints",
        "List the sprints of an agile board with state (active/closed/future), dates and goal.",
        {"board_id": {"type": "integer", "description": "Board ID to fetch sprints from"}},
        ["board_id"],
    ),
    _spec(
        "get_issue_links",
        "Linked issues (blocks, is blocked by, relates to, duplicates...) with link type and status.",
        {"issue_key": _ISSUE_KEY},
        ["issue_key"],
    ),
    _spec(
        "get_issue_history",
        "Change history of an issue: who changed which field, from what, to what and when.",
        {"issue_key": _ISSUE_KEY},
        ["issue_key"],
    ),
    _spec(
        "bulk_transition",
        "Apply the same transition to several issues; reports success per issue.",
        {
            "issue_keys": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Issue keys to transition",
            },
            "transition_id": {"type": "string", "description": "Transition ID (same for all issues)"},
        },
        ["issue_keys", "transition_id"],
    ),
    _spec(
        "add_attachment",
        "Attach a file to an issue from base64-encoded content.",
        {
            "issue_key": _ISSUE_KEY,
            "filename": {"type": "string", "description": "Filename with extension"},
            "content_base64": {"type": "string", "description": "Base64 encoded file content"},
        },
        ["issue_key", "filename", "content_base64"],
    ),
]

TOOLS: Dict[str, ToolSpec] = {spec.name: spec for spec in _SPECS}

__all__ = [
    "TOOL_PREFIX",
    "TOOLS",
    "ToolHandler",
    "ToolResponse",
    "ToolSchema",
    "ToolSpec",
]
