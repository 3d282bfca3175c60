"""Обработчики MCP-инструментов Jira."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from tracker_mcp.services.jira_client import (
    INVALID_PARAMETER,
    MISSING_REQUIRED_FIELD,
    NOT_CONFIGURED,
    JiraClient,
    JiraError,
)
from tracker_mcp.tools.registry import TOOL_PREFIX, ToolHandler, ToolResponse

logger = logging.getLogger("tracker_mcp.tools.handlers")

STORY_POINTS_FIELD = "customfield_10016"
TIME_BY_ROLE_FIELD = "customfield_10300"
ROLES = ("Developer", "Tester", "Reviewer")

_ROLE_RE = re.compile(r"Role:\s*(\w+)")
_SECONDS_RE = re.compile(r"\((\d+)\(")

JiraAction = Callable[[JiraClient, Dict[str, Any]], Dict[str, Any]]


def _tool_ok(payload: Dict[str, Any], *, metadata: Optional[Dict[str, Any]] = None) -> ToolResponse:
    result: ToolResponse = {
        "content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False, indent=2)}],
        "isError": False,
    }
    if metadata:
        result["metadata"] = metadata
    return result


def _tool_error(message: str, *, metadata: Optional[Dict[str, Any]] = None) -> ToolResponse:
    result: ToolResponse = {
        "content": [{"type": "text", "text": message}],
        "isError": True,
    }
    if metadata:
        result["metadata"] = metadata
    return result


def _require(arguments: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if arguments.get(name) in (None, "", {}, [])]
    if missing:
        raise JiraError(
            MISSING_REQUIRED_FIELD,
            f"Missing required argument(s): {', '.join(missing)}",
            details={"provided_args": sorted(arguments)},
        )


def _max_results(arguments: Dict[str, Any], default: int) -> int:
    try:
        return max(1, int(arguments.get("max_results", default)))
    except (TypeError, ValueError):
        return default


def _name(value: Any, default: Optional[str] = None) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("displayName") or value.get("name") or default
    return default


def _issue_row(issue: Dict[str, Any]) -> Dict[str, Any]:
    fields = issue.get("fields") or {}
    return {
        "key": issue.get("key"),
        "summary": fields.get("summary"),
        "status": _name(fields.get("status")),
        "priority": _name(fields.get("priority")),
        "assignee": _name(fields.get("assignee"), "Unassigned"),
        "created": fields.get("created"),
    }


def parse_time_logged_by_role(entries: Any) -> Dict[str, int]:
    """Секунды, залогированные по ролям, из строк вида 'Role: Developer (3600(...'."""
    totals = {role: 0 for role in ROLES}
    if not isinstance(entries, list):
        return totals
    for entry in entries:
        if not isinstance(entry, str):
            continue
        role_match = _ROLE_RE.search(entry)
        seconds_match = _SECONDS_RE.search(entry)
        if role_match and seconds_match and role_match.group(1) in totals:
            totals[role_match.group(1)] = int(seconds_match.group(1))
    return totals


def _hours(seconds: int) -> str:
    return f"{seconds / 3600:.2f}h"


def _project_key(client: JiraClient, arguments: Dict[str, Any]) -> str:
    project_key = arguments.get("project_key") or client.default_project
    if not project_key:
        raise JiraError(
            MISSING_REQUIRED_FIELD,
            "Missing required argument(s): project_key",
            details={"provided_args": sorted(arguments)},
            suggested_action="Pass project_key or set JIRA_DEFAULT_PROJECT",
        )
    return project_key


def _open_sprint_jql(project_key: str) -> str:
    return f'project = "{project_key}" AND sprint in openSprints()'


# --- действия инструментов ---


def _get_issue(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key")
    issue_key = arguments["issue_key"]
    data = client.get(f"/rest/api/2/issue/{issue_key}", params={"expand": "renderedFields"})
    fields = data.get("fields") or {}
    rendered = data.get("renderedFields") or {}
    comments = (fields.get("comment") or {}).get("comments") or []
    issue = _issue_row(data)
    issue.update(
        {
            "reporter": _name(fields.get("reporter")),
            "updated": fields.get("updated"),
            "description": rendered.get("description") or fields.get("description"),
            "comments": [
                {"author": _name(c.get("author")), "body": c.get("body"), "created": c.get("created")}
                for c in comments
            ],
            "labels": fields.get("labels") or [],
            "components": [c.get("name") for c in fields.get("components") or []],
            "story_points": fields.get(STORY_POINTS_FIELD),
        }
    )
    return {"success": True, "issue": issue}


def _search_issues(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "jql")
    jql = arguments["jql"]
    data = client.search(jql, max_results=_max_results(arguments, 100))
    issues = data.get("issues") or []
    return {
        "success": True,
        "jql_query": jql,
        "total": data.get("total", len(issues)),
        "returned": len(issues),
        "issues": [_issue_row(issue) for issue in issues],
    }


def _search_sprint_issues(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    project_key = _project_key(client, arguments)
    sprint_name = arguments.get("sprint_name")
    if sprint_name:
        jql = f'project = "{project_key}" AND sprint = "{sprint_name}"'
    else:
        jql = _open_sprint_jql(project_key)
    jql += " ORDER BY created DESC"
    max_results = _max_results(arguments, 500)
    data = client.search(jql, max_results=max_results)
    issues = data.get("issues") or []
    return {
        "success": True,
        "total": data.get("total", len(issues)),
        "returned": len(issues),
        "max_results": max_results,
        "issues": [_issue_row(issue) for issue in issues],
    }


def _get_team_workload(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    jql = _open_sprint_jql(_project_key(client, arguments)) + " ORDER BY assignee ASC"
    data = client.search(jql, max_results=1000, fields="assignee,status")
    workload: Dict[str, Dict[str, Any]] = {}
    for issue in data.get("issues") or []:
        fields = issue.get("fields") or {}
        assignee = _name(fields.get("assignee"), "Unassigned")
        status = _name(fields.get("status"), "Unknown")
        entry = workload.setdefault(assignee, {"total": 0, "by_status": {}})
        entry["total"] += 1
        entry["by_status"][status] = entry["by_status"].get(status, 0) + 1
    return {
        "success": True,
        "total_issues": data.get("total", 0),
        "team_members": len(workload),
        "workload": workload,
    }


def _get_time_metrics(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    data = client.search(
        _open_sprint_jql(_project_key(client, arguments)),
        max_results=1000,
        fields=f"summary,timeestimate,{TIME_BY_ROLE_FIELD}",
    )
    totals = {role: 0 for role in ROLES}
    tickets: List[Dict[str, Any]] = []
    for issue in data.get("issues") or []:
        fields = issue.get("fields") or {}
        by_role = parse_time_logged_by_role(fields.get(TIME_BY_ROLE_FIELD))
        for role, seconds in by_role.items():
            totals[role] += seconds
        tickets.append(
            {
                "key": issue.get("key"),
                "summary": fields.get("summary"),
                "time_estimate_hours": (fields.get("timeestimate") or 0) / 3600,
                "time_logged_by_role": {role: _hours(seconds) for role, seconds in by_role.items()},
            }
        )
    return {
        "success": True,
        "sprint_totals": {role: _hours(seconds) for role, seconds in totals.items()},
        "tickets": tickets,
    }


def _get_epic_children(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "epic_key")
    epic_key = arguments["epic_key"]
    data = client.search(
        f'"Epic Link" = {epic_key}',
        max_results=_max_results(arguments, 100),
        fields=f"summary,status,assignee,{STORY_POINTS_FIELD}",
    )
    children = []
    for issue in data.get("issues") or []:
        row = _issue_row(issue)
        row["story_points"] = (issue.get("fields") or {}).get(STORY_POINTS_FIELD)
        children.append(row)
    return {
        "success": True,
        "epic_key": epic_key,
        "total_children": data.get("total", len(children)),
        "children": children,
    }


def _create_issue(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "summary")
    fields: Dict[str, Any] = {
        "project": {"key": _project_key(client, arguments)},
        "summary": arguments["summary"],
        "description": arguments.get("description") or "",
        "issuetype": {"name": arguments.get("issue_type") or "Task"},
    }
    if arguments.get("priority"):
        fields["priority"] = {"name": arguments["priority"]}
    data = client.post("/rest/api/2/issue", {"fields": fields})
    return {
        "success": True,
        "issue_key": data.get("key"),
        "issue_id": data.get("id"),
        "self": data.get("self"),
    }


def _update_issue(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key", "fields")
    issue_key = arguments["issue_key"]
    fields = arguments["fields"]
    if not isinstance(fields, dict):
        raise JiraError(MISSING_REQUIRED_FIELD, "'fields' must be an object with at least one field")
    client.put(f"/rest/api/2/issue/{issue_key}", {"fields": fields})
    return {
        "success": True,
        "message": f"Issue {issue_key} updated successfully",
        "updated_fields": sorted(fields),
    }


def _get_transitions(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key")
    issue_key = arguments["issue_key"]
    data = client.get(f"/rest/api/2/issue/{issue_key}/transitions")
    return {
        "success": True,
        "issue_key": issue_key,
        "available_transitions": [
            {"id": t.get("id"), "name": t.get("name"), "to_status": _name(t.get("to"))}
            for t in data.get("transitions") or []
        ],
    }


def _transition_issue(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key", "transition_id")
    issue_key = arguments["issue_key"]
    client.post(
        f"/rest/api/2/issue/{issue_key}/transitions",
        {"transition": {"id": str(arguments["transition_id"])}},
    )
    return {"success": True, "message": f"Issue {issue_key} transitioned successfully"}


def _add_comment(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key", "body")
    data = client.post(f"/rest/api/2/issue/{arguments['issue_key']}/comment", {"body": arguments["body"]})
    return {
        "success": True,
        "comment_id": data.get("id"),
        "author": _name(data.get("author")),
        "created": data.get("created"),
    }


def _search_by_labels(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "labels")
    labels = arguments["labels"]
    if isinstance(labels, str):
        labels = [labels]
    project_key = _project_key(client, arguments)
    results: Dict[str, Any] = {}
    for label in labels:
        jql = f'{_open_sprint_jql(project_key)} AND labels = "{label}"'
        data = client.search(jql, max_results=1000, fields="status,summary")
        issues = data.get("issues") or []
        breakdown: Dict[str, int] = {}
        for issue in issues:
            status = _name((issue.get("fields") or {}).get("status"), "Unknown")
            breakdown[status] = breakdown.get(status, 0) + 1
        results[label] = {
            "count": data.get("total", len(issues)),
            "status_breakdown": breakdown,
            "issues": [
                {"key": issue.get("key"), "summary": (issue.get("fields") or {}).get("summary")}
                for issue in issues
            ],
        }
    return {"success": True, "results": results}


def _get_blocked_tickets(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    jql = f"{_open_sprint_jql(_project_key(client, arguments))} AND (status = Blocked OR labels = blocked)"
    data = client.search(jql, max_results=500, fields="summary,status,assignee,priority")
    issues = data.get("issues") or []
    return {
        "success": True,
        "total_blocked": data.get("total", len(issues)),
        "blocked_issues": [_issue_row(issue) for issue in issues],
    }


def _list_sprints(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "board_id")
    data = client.get(f"/rest/agile/1.0/board/{arguments['board_id']}/sprint")
    return {
        "success": True,
        "sprints": [
            {
                "id": sprint.get("id"),
                "name": sprint.get("name"),
                "state": sprint.get("state"),
                "start_date": sprint.get("startDate"),
                "end_date": sprint.get("endDate"),
                "goal": sprint.get("goal"),
            }
            for sprint in data.get("values") or []
        ],
    }


def _linked(link: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    link_type = link.get("type") or {}
    for side, label in (("outwardIssue", "outward"), ("inwardIssue", "inward")):
        issue = link.get(side)
        if issue:
            fields = issue.get("fields") or {}
            return {
                "type": link_type.get(label),
                "linked_issue": issue.get("key"),
                "summary": fields.get("summary"),
                "status": _name(fields.get("status")),
            }
    return None


def _get_issue_links(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key")
    issue_key = arguments["issue_key"]
    data = client.get(f"/rest/api/2/issue/{issue_key}", params={"fields": "issuelinks"})
    raw_links = (data.get("fields") or {}).get("issuelinks") or []
    links = [link for link in map(_linked, raw_links) if link is not None]
    return {"success": True, "issue_key": issue_key, "total_links": len(links), "links": links}


def _get_issue_history(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key")
    issue_key = arguments["issue_key"]
    data = client.get(f"/rest/api/2/issue/{issue_key}", params={"expand": "changelog", "fields": "summary"})
    history = [
        {
            "author": _name(change.get("author")),
            "created": change.get("created"),
            "changes": [
                {"field": item.get("field"), "from": item.get("fromString"), "to": item.get("toString")}
                for item in change.get("items") or []
            ],
        }
        for change in (data.get("changelog") or {}).get("histories") or []
    ]
    return {"success": True, "issue_key": issue_key, "total_changes": len(history), "history": history}


def _bulk_transition(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_keys", "transition_id")
    issue_keys = arguments["issue_keys"]
    if not isinstance(issue_keys, list):
        raise JiraError(INVALID_PARAMETER, "'issue_keys' must be an array of issue keys")
    payload = {"transition": {"id": str(arguments["transition_id"])}}
    results: List[Dict[str, Any]] = []
    # ошибка по одной задаче не прерывает остальные
    for issue_key in issue_keys:
        try:
            client.post(f"/rest/api/2/issue/{issue_key}/transitions", payload)
        except JiraError as exc:
            results.append({"issue_key": issue_key, "success": False, "error": exc.message})
        else:
            results.append({"issue_key": issue_key, "success": True})
    return {"success": True, "total_processed": len(issue_keys), "results": results}


def _add_attachment(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    _require(arguments, "issue_key", "filename", "content_base64")
    issue_key = arguments["issue_key"]
    filename = arguments["filename"]
    try:
        content = base64.b64decode(arguments["content_base64"], validate=True)
    except (binascii.Error, TypeError, ValueError) as exc:
        raise JiraError(
            INVALID_PARAMETER,
            "'content_base64' is not valid base64",
            details={"original_error": str(exc)},
        ) from exc
    data = client.upload(f"/rest/api/2/issue/{issue_key}/attachments", filename, content)
    attachments = data if isinstance(data, list) else []
    return {
        "success": True,
        "message": f"Attachment {filename} added to {issue_key}",
        "attachment_ids": [item.get("id") for item in attachments if isinstance(item, dict)],
    }


def _get_rate_limits(client: JiraClient, arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "rate_limit": client.rate_limit.to_dict()}


_ACTIONS: Dict[str, JiraAction] = {
    "get_issue": _get_issue,
    "search_issues": _search_issues,
    "search_sprint_issues": _search_sprint_issues,
    "get_team_workload": _get_team_workload,
    "get_time_metrics": _get_time_metrics,
    "get_epic_children": _get_epic_children,
    "create_issue": _create_issue,
    "update_issue": _update_issue,
    "get_transitions": _get_transitions,
    "transition_issue": _transition_issue,
    "add_comment": _add_comment,
    "get_rate_limits": _get_rate_limits,
    "search_by_labels": _search_by_labels,
    "get_blocked_tickets": _get_blocked_tickets,
    "list_sprints": _list_sprints,
    "get_issue_links": _get_issue_links,
    "get_issue_history": _get_issue_history,
    "bulk_transition": _bulk_transition,
    "add_attachment": _add_attachment,
}


def _run_action(
    name: str,
    action: JiraAction,
    client: Optional[JiraClient],
    arguments: Dict[str, Any],
) -> ToolResponse:
    if client is None:
        error = JiraError(
            NOT_CONFIGURED,
            "Jira connection is not configured",
            suggested_action="Set JIRA_BASE_URL and JIRA_API_TOKEN",
        )
        return _tool_error(
            json.dumps(error.to_dict(), ensure_ascii=False, indent=2),
            metadata={"errorCode": error.code},
        )
    try:
        payload = action(client, arguments)
    except JiraError as exc:
        logger.info("Tool %s failed: %s %s", name, exc.code, exc.message)
        return _tool_error(
            json.dumps(exc.to_dict(), ensure_ascii=False, indent=2),
            metadata={"errorCode": exc.code},
        )
    return _tool_ok(payload)


def build_tool_handlers(client: Optional[JiraClient]) -> Dict[str, ToolHandler]:
    """Связать действия инструментов с клиентом Jira; ключи совпадают с `TOOLS`."""
    return {
        TOOL_PREFIX + name: partial(_run_action, TOOL_PREFIX + name, action, client)
        for name, action in _ACTIONS.items()
    }


__all__ = [
    "_tool_error",
    "_tool_ok",
    "build_tool_handlers",
    "parse_time_logged_by_role",
]
