"""HTTP-клиент Jira REST API v2 со структурированными ошибками."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from tracker_mcp.core.config import JiraConfig

logger = logging.getLogger("tracker_mcp.services.jira_client")

# 1xxx: авторизация, 2xxx: входные данные, 3xxx: ресурсы, 4xxx: лимиты, 5xxx: сервер/сеть
UNAUTHORIZED = "JIRA_1001"
FORBIDDEN = "JIRA_1002"
INVALID_PARAMETER = "JIRA_2001"
MISSING_REQUIRED_FIELD = "JIRA_2002"
ISSUE_NOT_FOUND = "JIRA_3001"
RATE_LIMIT_EXCEEDED = "JIRA_4001"
JIRA_API_ERROR = "JIRA_5001"
NETWORK_ERROR = "JIRA_5002"
NOT_CONFIGURED = "JIRA_5004"

RATE_LIMIT_WARNING_THRESHOLD = 10


class JiraError(Exception):
    """Ошибка обращения к Jira с машинно-читаемым кодом."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggested_action: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.suggested_action = suggested_action

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.code,
            "error_message": self.message,
            "details": self.details,
            "suggested_action": self.suggested_action,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


@dataclass(slots=True)
class RateLimitInfo:
    """Последние значения заголовков X-RateLimit-* от Jira."""

    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[str] = None

    def update(self, headers: httpx.Headers) -> None:
        remaining = _parse_int(headers.get("X-RateLimit-Remaining"))
        if remaining is not None:
            self.remaining = remaining
        limit = _parse_int(headers.get("X-RateLimit-Limit"))
        if limit is not None:
            self.limit = limit
        reset = headers.get("X-RateLimit-Reset")
        if reset:
            self.reset = reset

    def to_dict(self) -> Dict[str, Any]:
        low = self.remaining is not None and self.remaining < RATE_LIMIT_WARNING_THRESHOLD
        return {
            "limit": self.limit if self.limit is not None else "Unknown",
            "remaining": self.remaining if self.remaining is not None else "Unknown",
            "reset": self.reset or "Unknown",
            "status": "WARNING" if low else "OK",
        }


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class JiraClient:
    """Синхронный клиент Jira поверх httpx с Bearer-токеном (PAT)."""

    def __init__(self, config: JiraConfig, *, transport: Optional[httpx.BaseTransport] = None) -> None:
        if not config.configured:
            raise ValueError("JIRA_BASE_URL и JIRA_API_TOKEN должны быть заданы.")
        self._config = config
        self.rate_limit = RateLimitInfo()
        self._client = httpx.Client(
            base_url=config.base_url or "",
            headers={
                "Authorization": f"Bearer {config.api_token}",
                "Accept": "application/json",
            },
            timeout=(config.timeout_ms / 1000) or None,
            transport=transport,
        )

    @property
    def default_project(self) -> Optional[str]:
        return self._config.default_project

    def close(self) -> None:
        self._client.close()

    def get(self, path: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, payload: Dict[str, Any]) -> Any:
        return self.request("POST", path, json=payload)

    def put(self, path: str, payload: Dict[str, Any]) -> Any:
        return self.request("PUT", path, json=payload)

    def upload(self, path: str, filename: str, content: bytes) -> Any:
        # Jira требует X-Atlassian-Token для multipart-запросов
        return self.request(
            "POST",
            path,
            files={"file": (filename, content)},
            headers={"X-Atlassian-Token": "no-check"},
        )

    def search(self, jql: str, *, max_results: int = 100, fields: str = "*all") -> Dict[str, Any]:
        return self.get(
            "/rest/api/2/search",
            params={"jql": jql, "maxResults": max_results, "fields": fields},
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        logger.debug("Jira %s %s params=%s", method, path, params)
        try:
            response = self._client.request(
                method, path, params=params, json=json, files=files, headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning("Jira request %s %s failed: %s", method, path, exc)
            raise JiraError(
                NETWORK_ERROR,
                f"Network error: {exc}",
                details={"endpoint": path, "original_error": str(exc)},
                suggested_action="Check network connectivity and Jira server status",
            ) from exc

        self.rate_limit.update(response.headers)

        if response.status_code >= 400:
            raise self._error_for_status(response, path)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise JiraError(
                JIRA_API_ERROR,
                "Jira returned a non-JSON response",
                details={"endpoint": path, "status": response.status_code},
            ) from exc

    def _error_for_status(self, response: httpx.Response, path: str) -> JiraError:
        status = response.status_code
        if status == 401:
            return JiraError(
                UNAUTHORIZED,
                "Authentication failed",
                details={"status": status},
                suggested_action="Verify JIRA_API_TOKEN is valid and not expired",
            )
        if status == 403:
            return JiraError(
                FORBIDDEN,
                "Permission denied",
                details={"status": status},
                suggested_action="Check user permissions for this resource",
            )
        if status == 404:
            return JiraError(
                ISSUE_NOT_FOUND,
                "Resource not found",
                details={"status": status, "endpoint": path},
                suggested_action="Verify issue key, project key, or sprint name is correct",
            )
        if status == 429:
            return JiraError(
                RATE_LIMIT_EXCEEDED,
                "Rate limit exceeded",
                details={"status": status, "rate_limit": self.rate_limit.to_dict()},
                suggested_action="Wait before retrying. Check X-RateLimit-Reset header",
            )
        return JiraError(
            JIRA_API_ERROR,
            f"Jira API error: {status} {response.reason_phrase}",
            details={"status": status, "endpoint": path},
        )


def create_jira_client(config: JiraConfig) -> Optional[JiraClient]:
    """Создать клиент Jira или вернуть None, если подключение не настроено."""
    if not config.configured:
        logger.warning("JIRA_BASE_URL/JIRA_API_TOKEN not set; Jira tools will report an error")
        return None
    return JiraClient(config)


__all__ = [
    "FORBIDDEN",
    "INVALID_PARAMETER",
    "ISSUE_NOT_FOUND",
    "JIRA_API_ERROR",
    "JiraClient",
    "JiraError",
    "MISSING_REQUIRED_FIELD",
    "NETWORK_ERROR",
    "NOT_CONFIGURED",
    "RATE_LIMIT_EXCEEDED",
    "RateLimitInfo",
    "UNAUTHORIZED",
    "create_jira_client",
]
