"""ASGI-middleware с CORS-политикой MCP-эндпоинта."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from starlette.datastructures import Headers, MutableHeaders
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from tracker_mcp.core.config import SESSION_HEADER

ALLOW_METHODS = "GET, POST, DELETE, OPTIONS"
ALLOW_HEADERS = f"Content-Type, {SESSION_HEADER}"
EXPOSE_HEADERS = SESSION_HEADER


class CorsMiddleware:
    """Добавляет CORS-заголовки ко всем ответам, включая открытые SSE-потоки.

    В отличие от `starlette.middleware.cors.CORSMiddleware`, любой OPTIONS
    завершается здесь же пустым ответом 200, а `Mcp-Session-Id` всегда
    открыт для чтения браузерным клиентам.
    """

    def __init__(self, app: ASGIApp, *, allow_origins: Sequence[str] = ("*",)) -> None:
        self.app = app
        self.allow_all = "*" in allow_origins
        self.allow_origins = frozenset(allow_origins)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        origin = Headers(scope=scope).get("origin")
        cors_headers = self._cors_headers(origin)

        if scope["method"] == "OPTIONS":
            response = Response(status_code=200, headers=cors_headers)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in cors_headers.items():
                    if name == "Vary":
                        headers.add_vary_header(value)
                    else:
                        headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)

    def _cors_headers(self, origin: Optional[str]) -> Dict[str, str]:
        headers = {
            "Access-Control-Allow-Methods": ALLOW_METHODS,
            "Access-Control-Allow-Headers": ALLOW_HEADERS,
            "Access-Control-Expose-Headers": EXPOSE_HEADERS,
        }
        if self.allow_all:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin and origin in self.allow_origins:
            headers["Access-Control-Allow-Origin"] = origin
            headers["Vary"] = "Origin"
        return headers


__all__ = ["CorsMiddleware"]
