"""Request correlation and throttling of credential-guessing endpoints."""

from __future__ import annotations

import re
import time
import uuid
from collections import defaultdict, deque
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

if TYPE_CHECKING:
    from collections.abc import Iterable

    from starlette.requests import Request
    from starlette.responses import Response

logger = structlog.get_logger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# Routes where a caller can probe passwords or invitation tokens.
CREDENTIAL_PATHS = ("/api/auth/", "/api/invitations/validate", "/api/invitations/accept")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds request_id, method and path into every log line of the request.

    A caller-supplied ``X-Request-ID`` is reused only when it is a short
    token; anything else is replaced so it cannot forge log entries.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get("x-request-id", "")
        request_id = incoming if _REQUEST_ID_RE.match(incoming) else uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=request.method, path=request.url.path
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window limit per client IP over the credential routes.

    All guarded paths share one budget per IP, so spreading guesses between
    login and invitation redemption does not buy extra attempts.
    """

    def __init__(
        self,
        app: object,
        max_requests: int = 20,
        window_seconds: int = 60,
        paths: Iterable[str] = CREDENTIAL_PATHS,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.paths = tuple(paths)
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def guards(self, path: str) -> bool:
        return path.startswith(self.paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.guards(request.url.path):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        self._prune(now)
        hits = self._hits[client_ip]

        if len(hits) >= self.max_requests:
            retry_after = max(1, int(self.window_seconds - (now - hits[0])))
            logger.warning("credential_rate_limited", ip=client_ip, attempts=len(hits))
            return JSONResponse(
                {"detail": "Too many attempts. Try again later.", "code": "rate_limited"},
                status_code=429,
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)
        return await call_next(request)

    def _prune(self, now: float) -> None:
        """Drop expired hits, and IPs left with none, so idle clients cost nothing."""
        for client_ip in list(self._hits):
            hits = self._hits[client_ip]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if not hits:
                del self._hits[client_ip]
