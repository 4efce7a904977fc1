# lessonpay/core/middleware.py
from __future__ import annotations
import time
import uuid
import structlog
from starlette.types import ASGIApp, Receive, Scope, Send, Message

log = structlog.get_logger(__name__)

LOG_EXEMPT_PREFIXES = (
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
)


class RequestContextMiddleware:
    """
    ASGI middleware that:
      - Binds request_id/method/path into structlog contextvars for the request.
      - Takes X-Request-Id from the caller or generates one; echoes it back.
      - Logs one `request_completed` line with status and duration.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        method = scope.get("method", "GET").upper()
        path = scope.get("path") or "/"
        request_id = self._header(scope, b"x-request-id") or uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, method=method, path=path)

        resp_status = 500
        started = time.perf_counter()

        async def send_wrapper(message: Message):
            nonlocal resp_status
            if message["type"] == "http.response.start":
                resp_status = message.get("status", 200)
                headers = list(message.get("headers") or [])
                headers.append((b"x-request-id", request_id.encode()))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            if method != "OPTIONS" and not any(path.startswith(p) for p in LOG_EXEMPT_PREFIXES):
                log.info(
                    "request_completed",
                    status=resp_status,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                )
            structlog.contextvars.clear_contextvars()

    @staticmethod
    def _header(scope: Scope, name: bytes) -> str | None:
        headers = dict((k.lower(), v) for k, v in (scope.get("headers") or []))
        v = headers.get(name)
        return v.decode() if v else None
