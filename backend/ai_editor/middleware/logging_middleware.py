"""
Pure ASGI middleware for logging API traffic.

Pure ASGI (not BaseHTTPMiddleware) so StreamingResponse and websockets pass
through untouched. HTTP requests are logged with method, path, status,
duration and sanitized bodies; websocket connections are logged when they
open and when they end.
"""

import json
import logging
import time
from typing import Any, Dict, Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)

MAX_BODY_LOG_LENGTH = 5000


def _sanitize_body(data: bytes) -> Optional[str]:
    """Decode a body for logging, masking sensitive JSON fields."""
    if not data:
        return None
    text = data.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return truncate_large_data(text, max_length=MAX_BODY_LOG_LENGTH)
    return truncate_large_data(
        json.dumps(filter_sensitive_data(payload), ensure_ascii=False),
        max_length=MAX_BODY_LOG_LENGTH,
    )


def _extract_error_reason(body_text: Optional[str]) -> Optional[str]:
    """Pull a concise error reason out of a JSON error body."""
    if not body_text:
        return None
    try:
        payload = json.loads(body_text)
    except json.JSONDecodeError:
        return truncate_large_data(body_text, max_length=500)
    if isinstance(payload, dict):
        for key in ("detail", "message", "error"):
            if payload.get(key):
                return str(payload[key])
    return truncate_large_data(body_text, max_length=500)


def _scope_fields(scope: Scope) -> Dict[str, Any]:
    headers = {
        k.decode("utf-8", errors="ignore"): v.decode("utf-8", errors="ignore")
        for k, v in scope.get("headers", [])
    }
    client = scope.get("client")
    query_string = scope.get("query_string", b"").decode("utf-8", errors="ignore")
    query_params = dict(
        item.split("=", 1) for item in query_string.split("&") if "=" in item
    ) if query_string else None
    return {
        "path": scope.get("path", ""),
        "query_params": filter_sensitive_data(query_params),
        "client": client[0] if client else None,
        "user_agent": headers.get("user-agent"),
    }


class RequestLoggingMiddleware:
    """Pure ASGI middleware to log HTTP requests and websocket sessions."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Args:
            app: The ASGI application
            exclude_paths: Paths that are passed through without logging
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/health", "/"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return
        if scope["type"] == "http":
            await self._log_http(scope, receive, send)
        elif scope["type"] == "websocket":
            await self._log_websocket(scope, receive, send)
        else:
            await self.app(scope, receive, send)

    async def _log_websocket(self, scope: Scope, receive: Receive, send: Send) -> None:
        fields = _scope_fields(scope)
        start_time = time.time()
        close_code = None

        async def logging_send(message: Message) -> None:
            nonlocal close_code
            if message["type"] == "websocket.close":
                close_code = message.get("code", 1000)
            await send(message)

        logger.info(f"WebSocket opened: {fields['path']}", extra={"extra_fields": fields})
        try:
            await self.app(scope, receive, logging_send)
        finally:
            logger.info(
                f"WebSocket ended: {fields['path']} (code={close_code}, "
                f"{(time.time() - start_time):.1f}s)",
                extra={"extra_fields": {**fields, "close_code": close_code}}
            )

    async def _log_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        fields = _scope_fields(scope)
        method = scope.get("method", "UNKNOWN")
        path = fields["path"]
        request_id = id(scope)
        start_time = time.time()

        body_chunks = []
        response_chunks = []
        status_code = 0
        streaming = False

        async def logging_receive() -> Message:
            message = await receive()
            if message["type"] == "http.request":
                body_chunks.append(message.get("body", b""))
            return message

        async def logging_send(message: Message) -> None:
            nonlocal status_code, streaming
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                for key, value in message.get("headers", []):
                    if key.lower() == b"content-type" and value.startswith(b"text/event-stream"):
                        streaming = True
            elif message["type"] == "http.response.body" and not streaming:
                response_chunks.append(message.get("body", b""))
            await send(message)

        logger.info(
            f"Request started: {method} {path}",
            extra={"extra_fields": {"request_id": request_id, "method": method, **fields}}
        )

        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            logger.error(
                f"Request failed: {method} {path} - {e}",
                exc_info=True,
                extra={"extra_fields": {
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "duration_ms": (time.time() - start_time) * 1000,
                    "error": str(e),
                }}
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        request_body = _sanitize_body(b"".join(body_chunks))
        # Event streams are logged by the generation itself, not here
        response_body = "<event-stream>" if streaming else _sanitize_body(b"".join(response_chunks))
        error_reason = _extract_error_reason(response_body) if status_code >= 400 else None

        if status_code < 400:
            log_level = logging.INFO
        elif status_code < 500:
            log_level = logging.WARNING
        else:
            log_level = logging.ERROR

        message = f"Request completed: {method} {path} - {status_code} ({duration_ms:.2f}ms)"
        if error_reason:
            message += f" | error_reason={error_reason}"

        logger.log(
            log_level,
            message,
            extra={"extra_fields": {
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "request_body": request_body,
                "response_body": response_body,
                "error_reason": error_reason,
            }}
        )
