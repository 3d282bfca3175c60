"""Pydantic-модели JSON-RPC 2.0 и коды ошибок транспорта MCP."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SERVER_ERROR = -32000
# Собственный код MCP: неизвестная или истёкшая сессия.
UNAUTHORIZED = -32001


class JsonRpcRequest(BaseModel):
    """Стандартный JSON-RPC 2.0 запрос или уведомление (без `id`)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Optional[Dict[str, Any]] = None
    id: Optional[Any] = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class JsonRpcResponse(BaseModel):
    """Успешный JSON-RPC 2.0 ответ."""

    jsonrpc: Literal["2.0"] = "2.0"
    result: Any = None
    id: Optional[Any] = None


class JsonRpcErrorObj(BaseModel):
    """Структура ошибки JSON-RPC 2.0."""

    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 ответ с ошибкой."""

    jsonrpc: Literal["2.0"] = "2.0"
    error: JsonRpcErrorObj
    id: Optional[Any] = None

    def as_envelope(self) -> Dict[str, Any]:
        """Конверт для HTTP-ответов транспорта: без `id` и пустого `data`."""
        return self.model_dump(exclude_none=True, exclude={"id"})

    def as_message(self) -> Dict[str, Any]:
        """Полноценное JSON-RPC сообщение: `id` присутствует всегда, даже null."""
        payload = self.model_dump(exclude_none=True)
        payload["id"] = self.id
        return payload


class InitializeParams(BaseModel):
    """Параметры метода `initialize` MCP."""

    protocolVersion: Optional[str] = None
    clientInfo: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


class ToolCallParams(BaseModel):
    """Параметры метода `tools/call`."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


def json_rpc_error(code: int, message: str, *, data: Any = None, request_id: Any = None) -> JsonRpcError:
    return JsonRpcError(
        error=JsonRpcErrorObj(code=code, message=message, data=data),
        id=request_id,
    )


__all__ = [
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "InitializeParams",
    "JsonRpcError",
    "JsonRpcErrorObj",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "SERVER_ERROR",
    "ToolCallParams",
    "UNAUTHORIZED",
    "json_rpc_error",
]
