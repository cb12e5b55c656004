"""
Request deadline for the servmon API.

A request that outlives ``timeout_seconds`` is answered with a 504 in the
``ErrorResponse`` shape. For writes the 504 does not undo anything: a
metric sample, alert transition or threshold change that was already
committed stays committed, and the body says so. Health checks are
exempt so a stuck database still shows up as "unhealthy" instead of 504.
"""

import asyncio

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from servmon.api.models import ErrorResponse

logger = structlog.get_logger(__name__)

DEFAULT_EXEMPT_PREFIXES = ("/health",)

_READ_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class TimeoutMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        timeout_seconds: float = 30.0,
        exempt_prefixes: tuple[str, ...] = DEFAULT_EXEMPT_PREFIXES,
    ):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds
        self.exempt_prefixes = tuple(exempt_prefixes)

    def _is_exempt(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix.rstrip("/") + "/")
            for prefix in self.exempt_prefixes
        )

    def _timeout_body(self, request: Request) -> dict:
        detail = f"{request.method} {request.url.path} exceeded {self.timeout_seconds:g}s"
        if request.method not in _READ_METHODS:
            detail += "; changes committed before the deadline were kept"
        return ErrorResponse(detail=detail, error_type="timeout").model_dump()

    async def dispatch(self, request: Request, call_next):
        if self._is_exempt(request.url.path):
            return await call_next(request)

        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await call_next(request)
        except TimeoutError:
            logger.warning(
                "Request deadline exceeded",
                method=request.method,
                path=request.url.path,
                timeout_seconds=self.timeout_seconds,
            )
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content=self._timeout_body(request),
            )
