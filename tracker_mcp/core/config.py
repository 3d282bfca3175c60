"""Глобальные константы и настройки MCP-сервера для Jira."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

logger = logging.getLogger("tracker_mcp.core.config")

PROTOCOL_VERSION = "2025-03-26"
SESSION_HEADER = "Mcp-Session-Id"
SERVICE_NAME = "tracker-mcp"
TRANSPORT_NAME = "streamable-http"

SERVER_INFO: Dict[str, str] = {
    "name": SERVICE_NAME,
    "version": os.getenv("APP_VERSION", "0.1.0"),
}
SERVER_CAPABILITIES: Dict[str, Dict[str, object]] = {
    "tools": {
        "listChanged": False,
    },
}

TRANSPORT_MODES = {"stdio", "http"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def normalise_log_level(raw: Optional[str], default: str = "INFO") -> str:
    level = (raw or default).strip().upper()
    if level not in LOG_LEVELS:
        logger.warning("Unknown log level %r, using %s", raw, default)
        return default
    return level


def _get_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        logger.warning("Invalid value %s=%r, falling back to %s", name, raw, default)
        return default


def _get_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return max(minimum, float(raw))
    except ValueError:
        logger.warning("Invalid value %s=%r, falling back to %s", name, raw, default)
        return default


def _split_origins(raw: Optional[str]) -> List[str]:
    if raw is None:
        return ["*"]
    origins = [item.strip() for item in raw.split(",") if item.strip()]
    return origins or ["*"]


@dataclass(slots=True)
class TransportConfig:
    """Настройки транспорта (stdio или Streamable HTTP), получаемые из окружения."""

    mode: str = "stdio"
    port: int = 3000
    bind_address: str = "127.0.0.1"
    endpoint: str = "/mcp"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    session_max_age: float = 3600.0
    sweep_interval: float = 300.0
    sse_keepalive: float = 15.0
    max_body_bytes: int = 10 * 1024 * 1024
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TransportConfig":
        mode = (os.getenv("MCP_TRANSPORT") or "stdio").strip().lower()
        # sse: историческое имя HTTP-режима
        if mode == "sse":
            mode = "http"
        if mode not in TRANSPORT_MODES:
            logger.warning("Unknown MCP_TRANSPORT=%r, using stdio", mode)
            mode = "stdio"

        endpoint = (os.getenv("MCP_ENDPOINT") or "/mcp").strip()
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint

        return cls(
            mode=mode,
            port=_get_int("MCP_HTTP_PORT", 3000, minimum=1),
            bind_address=(os.getenv("MCP_BIND_ADDRESS") or "127.0.0.1").strip(),
            endpoint=endpoint,
            cors_origins=_split_origins(os.getenv("MCP_CORS_ORIGIN")),
            session_max_age=_get_float("MCP_SESSION_MAX_AGE", 3600.0),
            sweep_interval=_get_float("MCP_SESSION_SWEEP_INTERVAL", 300.0, minimum=0.01),
            sse_keepalive=_get_float("MCP_SSE_KEEPALIVE", 15.0, minimum=0.01),
            max_body_bytes=_get_int("MCP_MAX_BODY_BYTES", 10 * 1024 * 1024, minimum=1),
            log_level=normalise_log_level(os.getenv("MCP_LOG_LEVEL")),
        )


@dataclass(slots=True)
class JiraConfig:
    """Параметры подключения к Jira REST API."""

    base_url: Optional[str] = None
    api_token: Optional[str] = None
    timeout_ms: int = 30_000
    default_project: Optional[str] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_token)

    @classmethod
    def from_env(cls) -> "JiraConfig":
        base_url = (os.getenv("JIRA_BASE_URL") or "").strip().rstrip("/") or None
        api_token = (os.getenv("JIRA_API_TOKEN") or "").strip() or None
        default_project = (os.getenv("JIRA_DEFAULT_PROJECT") or "").strip() or None
        return cls(
            base_url=base_url,
            api_token=api_token,
            timeout_ms=_get_int("JIRA_TIMEOUT_MS", 30_000),
            default_project=default_project,
        )


__all__ = [
    "JiraConfig",
    "PROTOCOL_VERSION",
    "SERVER_CAPABILITIES",
    "SERVER_INFO",
    "SERVICE_NAME",
    "SESSION_HEADER",
    "TRANSPORT_NAME",
    "TransportConfig",
    "normalise_log_level",
]
