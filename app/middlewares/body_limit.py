from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.errors import utcnow_iso

logger = logging.getLogger("ad-gateway.body-limit")


class BodyLimitMiddleware(BaseHTTPMiddleware):
    """Reject API requests whose body exceeds ``max_body_bytes`` with 413."""

    WATCH_PATH_PREFIXES = ("/api/",)

    def __init__(self, app, *, max_body_bytes: int | None = None, **_: Any) -> None:  # type: ignore[override]
        self.max_body_bytes = max_body_bytes if max_body_bytes and max_body_bytes > 0 else None
        super().__init__(app)

    def _too_large(self, content_length: int | None, body_len: int) -> bool:
        if self.max_body_bytes is None:
            return False
        if content_length and content_length > self.max_body_bytes:
            return True
        return body_len > self.max_body_bytes

    def _rejection(self, size: int) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content={
                "error": "PAYLOAD_TOO_LARGE",
                "message": f"Request body of {size} bytes exceeds the {self.max_body_bytes} byte limit",
                "timestamp": utcnow_iso(),
            },
        )

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.method not in {"POST", "PUT", "PATCH"}:
            return await call_next(request)

        path = request.url.path
        if not any(path.startswith(prefix) for prefix in self.WATCH_PATH_PREFIXES):
            return await call_next(request)

        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        start = time.time()

        content_length_header = request.headers.get("content-length")
        try:
            content_length = int(content_length_header) if content_length_header else None
        except (TypeError, ValueError):
            content_length = None

        # Declared length alone is enough to refuse without buffering the body.
        if self._too_large(content_length, 0):
            logger.warning(
                "[body-limit] rid=%s path=%s rejected declared=%s", rid, path, content_length
            )
            return self._rejection(content_length or 0)

        body = await request.body()
        if self._too_large(None, len(body)):
            logger.warning("[body-limit] rid=%s path=%s rejected size=%s", rid, path, len(body))
            return self._rejection(len(body))

        async def receive() -> dict[str, Any]:
            return {"type": "http.request", "body": body, "more_body": False}

        response = await call_next(Request(request.scope, receive))
        logger.info(
            "[body-limit] rid=%s path=%s size=%s status=%s dur_ms=%s",
            rid,
            path,
            len(body),
            response.status_code,
            int((time.time() - start) * 1000),
        )
        return response
