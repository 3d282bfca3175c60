"""Stdio-транспорт MCP: JSON-RPC по одному документу на строку."""

from __future__ import annotations

import json
import logging
import sys
from typing import IO, Optional

from tracker_mcp.models.json_rpc import PARSE_ERROR, json_rpc_error
from tracker_mcp.services.dispatcher import McpDispatcher

logger = logging.getLogger("tracker_mcp.services.stdio_transport")


def serve_stdio(
    dispatcher: McpDispatcher,
    *,
    stdin: Optional[IO[str]] = None,
    stdout: Optional[IO[str]] = None,
) -> int:
    """Читать запросы из stdin до EOF и писать ответы в stdout.

    stdout принадлежит протоколу целиком, поэтому логирование идёт только в
    stderr. Возвращает число обработанных строк.
    """
    reader = stdin if stdin is not None else sys.stdin
    writer = stdout if stdout is not None else sys.stdout
    handled = 0

    logger.info("MCP server running on stdio")
    for line in reader:
        line = line.strip()
        if not line:
            continue
        handled += 1
        try:
            payload = json.loads(line)
        except ValueError as exc:
            logger.warning("Malformed JSON on stdin: %s", exc)
            reply = json_rpc_error(PARSE_ERROR, "Parse error").as_message()
        else:
            reply = dispatcher.handle_message(payload)
        if reply is None:
            continue
        writer.write(json.dumps(reply, ensure_ascii=False) + "\n")
        writer.flush()

    logger.info("stdin closed, stopping stdio transport")
    return handled


__all__ = ["serve_stdio"]
