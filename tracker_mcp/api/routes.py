"""FastAPI-маршруты MCP Streamable HTTP: единый эндпоинт и health-check."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask

from tracker_mcp.core.config import PROTOCOL_VERSION, SERVICE_NAME, SESSION_HEADER, TRANSPORT_NAME
from tracker_mcp.core.session import SessionRegistry, SessionStream
from tracker_mcp.models.json_rpc import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    SERVER_ERROR,
    UNAUTHORIZED,
    json_rpc_error,
)

logger = logging.getLogger("tracker_mcp.api.routes")

ALLOWED_METHODS = ("GET", "POST", "DELETE")
# OPTIONS перехватывает CorsMiddleware; остальные глаголы нужны, чтобы ответить 405 самим.
_ROUTE_METHODS = ["GET", "POST", "DELETE", "PUT", "PATCH", "HEAD"]

STREAM_OPENED_COMMENT = ": MCP Streamable HTTP connection established\n\n"
KEEPALIVE_COMMENT = ": keepalive\n\n"


def _error_response(
    status_code: int,
    code: int,
    message: str,
    *,
    data: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    envelope = json_rpc_error(code, message, data=data).as_envelope()
    return JSONResponse(envelope, status_code=status_code, headers=headers)


def _session_id(request: Request) -> Optional[str]:
    # Starlette сравнивает имена заголовков без учёта регистра.
    value = request.headers.get(SESSION_HEADER, "").strip()
    return value or None


def format_sse_event(message: Any) -> str:
    return f"event: message\ndata: {json.dumps(message, ensure_ascii=False)}\n\n"


async def _event_stream(
    registry: SessionRegistry,
    session_id: str,
    stream: SessionStream,
    keepalive: float,
) -> AsyncIterator[str]:
    try:
        yield STREAM_OPENED_COMMENT
        while True:
            try:
                message = await stream.receive(timeout=keepalive)
            except asyncio.TimeoutError:
                yield KEEPALIVE_COMMENT
                continue
            if message is None:
                logger.info("Stream for session %s closed by server", session_id)
                break
            yield format_sse_event(message)
    except asyncio.CancelledError:
        logger.info("Client disconnected, cleaning up session %s", session_id)
        raise
    except Exception:
        # Заголовки уже отправлены: второй ответ невозможен, закрываем поток.
        logger.exception("SSE stream for session %s failed", session_id)
    finally:
        registry.remove(session_id)


def _open_stream(request: Request) -> StreamingResponse:
    state = request.app.state
    registry: SessionRegistry = state.registry
    stream = SessionStream()
    session_id = registry.create(stream)
    logger.info("Session established %s", session_id)
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        SESSION_HEADER: session_id,
    }
    return StreamingResponse(
        _event_stream(registry, session_id, stream, state.config.sse_keepalive),
        media_type="text/event-stream",
        headers=headers,
    )


async def _accept_message(request: Request) -> Response:
    state = request.app.state
    max_body_bytes: int = state.config.max_body_bytes

    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > max_body_bytes:
        return _error_response(413, INVALID_REQUEST, "Bad Request: Payload too large")
    body = await _read_body(request, max_body_bytes)
    if body is None:
        return _error_response(413, INVALID_REQUEST, "Bad Request: Payload too large")

    try:
        payload = json.loads(body)
    except ValueError as exc:
        logger.warning("Malformed JSON in request body: %s", exc)
        return _error_response(400, INVALID_REQUEST, "Bad Request: Malformed JSON")
    if not _is_message_shape(payload):
        logger.warning("Request body is not a JSON-RPC message")
        return _error_response(400, INVALID_REQUEST, "Bad Request: Invalid JSON-RPC message")

    session_id = _session_id(request)
    logger.info("Received message for session %s", session_id or "MISSING")
    if session_id is None:
        return _error_response(400, INVALID_REQUEST, f"Bad Request: Missing {SESSION_HEADER} header")

    registry: SessionRegistry = state.registry
    session = registry.get(session_id)
    if session is None:
        logger.warning("Invalid or expired session %s", session_id)
        return _error_response(401, UNAUTHORIZED, "Unauthorized: Invalid or expired session ID")

    task = BackgroundTask(state.dispatcher.deliver, session_id, session.stream, payload)
    return JSONResponse({"accepted": True}, status_code=202, background=task)


async def _read_body(request: Request, limit: int) -> Optional[bytes]:
    """Прочитать тело по частям; None, как только размер превысил `limit` (в том числе для chunked)."""
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            logger.warning("Request body exceeds %d bytes, rejecting", limit)
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def _is_message_shape(payload: Any) -> bool:
    if isinstance(payload, dict):
        return True
    return isinstance(payload, list) and bool(payload) and all(isinstance(item, dict) for item in payload)


def _terminate(request: Request) -> Response:
    session_id = _session_id(request)
    logger.info("Session termination request %s", session_id or "MISSING")
    if session_id is not None:
        request.app.state.registry.remove(session_id)
    return Response(status_code=204)


def _method_not_allowed(request: Request) -> JSONResponse:
    logger.warning("Unsupported method %s on MCP endpoint", request.method)
    allowed = ", ".join(ALLOWED_METHODS)
    return _error_response(
        405,
        SERVER_ERROR,
        f"Method Not Allowed: supported methods are {allowed}",
        data={"allowed": list(ALLOWED_METHODS)},
        headers={"Allow": allowed},
    )


async def mcp_endpoint(request: Request) -> Response:
    try:
        if request.method == "GET":
            return _open_stream(request)
        if request.method == "POST":
            return await _accept_message(request)
        if request.method == "DELETE":
            return _terminate(request)
        return _method_not_allowed(request)
    except Exception:
        logger.exception("Error handling %s %s", request.method, request.url.path)
        return _error_response(500, INTERNAL_ERROR, "Internal error")


async def health(request: Request) -> Dict[str, Any]:
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "transport": TRANSPORT_NAME,
        "protocol": PROTOCOL_VERSION,
        "activeSessions": request.app.state.registry.active_count(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def create_router(endpoint: str = "/mcp") -> APIRouter:
    """Собрать маршруты; путь эндпоинта берётся из конфигурации."""
    router = APIRouter()
    router.add_api_route("/health", health, methods=["GET"])
    router.add_api_route(endpoint, mcp_endpoint, methods=_ROUTE_METHODS, response_model=None)
    return router


__all__ = ["ALLOWED_METHODS", "create_router", "format_sse_event", "mcp_endpoint"]
