"""Точка входа MCP-сервера Jira: фабрика FastAPI-приложения и CLI.

Транспорт выбирается переменной MCP_TRANSPORT (или --transport): `stdio` для
встраивания в хост-приложение, `http` для Streamable HTTP с SSE.
"""
from __future__ import annotations

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI

from .api.cors import CorsMiddleware
from .api.routes import create_router
from .core.config import SERVER_INFO, JiraConfig, TransportConfig, normalise_log_level
from .core.session import SessionRegistry
from .core.sweeper import SessionSweeper
from .services.dispatcher import McpDispatcher
from .services.jira_client import JiraClient, create_jira_client
from .services.stdio_transport import serve_stdio
from .tools.handlers import build_tool_handlers
from .tools.registry import TOOLS

logger = logging.getLogger("tracker_mcp")


def build_dispatcher(jira_client: Optional[JiraClient]) -> McpDispatcher:
    return McpDispatcher(tools=TOOLS, handlers=build_tool_handlers(jira_client))


def create_app(
    config: Optional[TransportConfig] = None,
    *,
    registry: Optional[SessionRegistry] = None,
    jira_client: Optional[JiraClient] = None,
) -> FastAPI:
    """Собрать приложение Streamable HTTP.

    Реестр сессий создаётся здесь один раз и живёт в `app.state`; lifespan
    запускает фоновую очистку и при остановке закрывает все SSE-потоки.
    """
    config = config or TransportConfig.from_env()
    registry = registry if registry is not None else SessionRegistry()
    if jira_client is None:
        jira_client = create_jira_client(JiraConfig.from_env())
    sweeper = SessionSweeper(registry, interval=config.sweep_interval, max_age=config.session_max_age)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()
            registry.close_all()
            if jira_client is not None:
                jira_client.close()
            logger.info("HTTP transport shut down")

    app = FastAPI(title="Jira MCP Server", version=SERVER_INFO["version"], lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.sweeper = sweeper
    app.state.dispatcher = build_dispatcher(jira_client)
    app.add_middleware(CorsMiddleware, allow_origins=config.cors_origins)
    app.include_router(create_router(config.endpoint))
    return app


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tracker-mcp", description="Jira MCP server (stdio or Streamable HTTP)")
    parser.add_argument("--transport", choices=["stdio", "http", "sse"], help="Override MCP_TRANSPORT")
    parser.add_argument("--host", help="Override MCP_BIND_ADDRESS")
    parser.add_argument("--port", type=int, help="Override MCP_HTTP_PORT")
    parser.add_argument("--endpoint", help="Override MCP_ENDPOINT")
    parser.add_argument("--log-level", help="Override MCP_LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    config = TransportConfig.from_env()
    if args.transport:
        config.mode = "http" if args.transport == "sse" else args.transport
    if args.host:
        config.bind_address = args.host
    if args.port:
        config.port = args.port
    if args.endpoint:
        config.endpoint = args.endpoint if args.endpoint.startswith("/") else "/" + args.endpoint
    if args.log_level:
        config.log_level = normalise_log_level(args.log_level)

    # stdout занят протоколом в stdio-режиме, поэтому логи только в stderr.
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if config.mode == "stdio":
        jira_client = create_jira_client(JiraConfig.from_env())
        try:
            serve_stdio(build_dispatcher(jira_client))
        finally:
            if jira_client is not None:
                jira_client.close()
        return 0

    app = create_app(config)
    logger.info(
        "Streamable HTTP transport on http://%s:%s%s (health: /health)",
        config.bind_address,
        config.port,
        config.endpoint,
    )
    uvicorn.run(app, host=config.bind_address, port=config.port, log_level=config.log_level.lower())
    return 0


__all__ = ["build_dispatcher", "create_app", "main"]
