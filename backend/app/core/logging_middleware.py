"""Request logging middleware for the roadmap API."""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger("roadmap.requests")


async def _drain(response: Response) -> bytes:
    body = b""
    async for chunk in response.body_iterator:
        body += chunk.encode("utf-8") if isinstance(chunk, str) else chunk
    return body


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration.

    Every reconstruction walks the whole ledger, so requests slower than
    ``slow_ms`` are logged as warnings. Error responses are logged with their
    body (FastAPI's "detail") and re-sent unchanged. The duration is also
    returned in the ``X-Elapsed-Ms`` header.
    """

    def __init__(self, app: ASGIApp, slow_ms: float = 2000.0, max_detail: int = 500):
        super().__init__(app)
        self.slow_ms = slow_ms
        self.max_detail = max_detail

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - start) * 1000

        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        status = response.status_code
        response.headers["X-Elapsed-Ms"] = f"{elapsed_ms:.0f}"

        if status >= 400 and hasattr(response, "body_iterator"):
            body = await _drain(response)
            detail = body.decode("utf-8", errors="replace")
            if len(detail) > self.max_detail:
                detail = detail[: self.max_detail] + "..."
            log = logger.warning if status < 500 else logger.error
            log("%s %s -> %d (%.0fms): %s", request.method, target, status, elapsed_ms, detail)
            return Response(
                content=body,
                status_code=status,
                headers=dict(response.headers),
                media_type=response.media_type,
            )

        log = logger.warning if elapsed_ms >= self.slow_ms else logger.info
        log("%s %s -> %d (%.0fms)", request.method, target, status, elapsed_ms)
        return response
