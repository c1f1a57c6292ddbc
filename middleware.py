import time
from typing import Callable, Dict, List

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = structlog.get_logger()

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding-window rate limiting by client IP."""

    def __init__(self, app: ASGIApp, max_requests: int = 1000, window_seconds: float = 900):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: Dict[str, List[float]] = {}

    def _get_client_ip(self, request: Request) -> str:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _check(self, client_ip: str):
        """Record a hit and return (limited, retry_after_seconds)."""
        now = time.time()
        window_start = now - self.window_seconds

        hits = [t for t in self._requests.get(client_ip, []) if t > window_start]
        if len(hits) >= self.max_requests:
            self._requests[client_ip] = hits
            retry_after = int(hits[0] + self.window_seconds - now) + 1
            return True, retry_after

        hits.append(now)
        self._requests[client_ip] = hits
        return False, 0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_ip = self._get_client_ip(request)
        limited, retry_after = self._check(client_ip)

        if limited:
            logger.warning(
                "request.rate_limited",
                client_ip=client_ip,
                path=request.url.path,
                retry_after=retry_after,
            )
            return JSONResponse(
                status_code=429,
                content={"error": RATE_LIMIT_MESSAGE},
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
