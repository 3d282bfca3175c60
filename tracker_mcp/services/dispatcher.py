"""Диспетчер JSON-RPC методов MCP, общий для stdio и Streamable HTTP."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from tracker_mcp.core.config import PROTOCOL_VERSION, SERVER_CAPABILITIES, SERVER_INFO
from tracker_mcp.core.session import SessionStream
from tracker_mcp.models.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    InitializeParams,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    ToolCallParams,
    json_rpc_error,
)
from tracker_mcp.tools.registry import ToolHandler, ToolSpec

logger = logging.getLogger("tracker_mcp.services.dispatcher")

Message = Dict[str, Any]
Reply = Union[Message, List[Message]]


class McpDispatcher:
    """Выполняет JSON-RPC запросы MCP и формирует ответы.

    Транспорт передаёт сюда уже разобранный JSON (объект или batch-массив) и
    получает ответ для отправки, либо None, если отвечать не нужно (уведомления).
    """

    def __init__(self, *, tools: Dict[str, ToolSpec], handlers: Dict[str, ToolHandler]) -> None:
        self._tools = tools
        self._handlers = handlers

    def handle_message(self, payload: Any) -> Optional[Reply]:
        if isinstance(payload, list):
            if not payload:
                return json_rpc_error(INVALID_REQUEST, "Invalid Request: empty batch").as_message()
            replies = [reply for reply in map(self._handle_single, payload) if reply is not None]
            return replies or None
        return self._handle_single(payload)

    def deliver(self, session_id: str, stream: SessionStream, payload: Any) -> None:
        """Обработать принятое по HTTP сообщение и отправить ответ в SSE-поток сессии.

        Если сессия завершилась, пока шла обработка, ответ отбрасывается.
        """
        reply = self.handle_message(payload)
        if reply is None:
            return
        if not stream.send(reply):
            logger.info("Session %s closed before delivery, dropping response", session_id)

    def _handle_single(self, payload: Any) -> Optional[Message]:
        if _is_client_response(payload):
            # ответы клиента на запросы сервера; сервер их не инициирует
            logger.debug("Ignoring client response id=%s", payload.get("id"))
            return None
        try:
            request = JsonRpcRequest.model_validate(payload)
        except ValidationError as exc:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            return json_rpc_error(
                INVALID_REQUEST,
                "Invalid Request",
                data=exc.errors(include_url=False),
                request_id=request_id,
            ).as_message()

        try:
            reply = self._dispatch(request)
        except Exception as exc:  # pragma: no cover - guardrail
            logger.exception("Unhandled MCP error in %s", request.method)
            reply = json_rpc_error(INTERNAL_ERROR, "Internal error", data=str(exc), request_id=request.id)

        if request.is_notification:
            return None
        if isinstance(reply, JsonRpcError):
            return reply.as_message()
        return reply.model_dump()

    def _dispatch(self, request: JsonRpcRequest) -> Union[JsonRpcResponse, JsonRpcError]:
        method = request.method
        params = request.params or {}

        if method == "initialize":
            return self._handle_initialize(params, request.id)
        if method.startswith("notifications/"):
            logger.debug("Notification received: %s", method)
            return JsonRpcResponse(result={}, id=request.id)
        if method == "ping":
            return JsonRpcResponse(result={}, id=request.id)
        if method == "tools/list":
            return self._handle_tools_list(request.id)
        if method == "tools/call":
            return self._handle_tools_call(params, request.id)

        return json_rpc_error(
            METHOD_NOT_FOUND,
            "Method not found",
            data={"method": method},
            request_id=request.id,
        )

    def _handle_initialize(self, params: Dict[str, Any], request_id: Any) -> Union[JsonRpcResponse, JsonRpcError]:
        try:
            parsed = InitializeParams.model_validate(params)
        except ValidationError as exc:
            return json_rpc_error(
                INVALID_PARAMS,
                "Invalid initialize params",
                data=exc.errors(include_url=False),
                request_id=request_id,
            )
        logger.info("Initialize from client %s", parsed.clientInfo.get("name", "unknown"))
        result = {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": SERVER_INFO,
            "capabilities": SERVER_CAPABILITIES,
        }
        return JsonRpcResponse(result=result, id=request_id)

    def _handle_tools_list(self, request_id: Any) -> JsonRpcResponse:
        result = {"tools": [spec.as_mcp_dict() for spec in self._tools.values()]}
        return JsonRpcResponse(result=result, id=request_id)

    def _handle_tools_call(self, params: Dict[str, Any], request_id: Any) -> Union[JsonRpcResponse, JsonRpcError]:
        try:
            parsed = ToolCallParams.model_validate(params)
        except ValidationError as exc:
            return json_rpc_error(
                INVALID_PARAMS,
                "Invalid params: 'name' must be a string and 'arguments' an object",
                data=exc.errors(include_url=False),
                request_id=request_id,
            )
        handler = self._handlers.get(parsed.name)
        if handler is None:
            return json_rpc_error(
                METHOD_NOT_FOUND,
                "Tool not found",
                data={"available": list(self._handlers)},
                request_id=request_id,
            )
        logger.info("Calling tool %s", parsed.name)
        return JsonRpcResponse(result=handler(parsed.arguments), id=request_id)


def _is_client_response(payload: Any) -> bool:
    return isinstance(payload, dict) and "method" not in payload and ("result" in payload or "error" in payload)


__all__ = ["McpDispatcher"]
