"""
Caller identity middleware.

The upstream gateway authenticates the request and forwards the caller's
user id in a header. This middleware is the last line before the billing
core: requests under the API prefix without that header are answered with
401 and never reach a route; otherwise the id is exposed on
`request.state.user_id`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response


logger = logging.getLogger(__name__)


class CallerIdentityMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: Any,
        *,
        path_prefix: str = "/api",
        user_id_header: str = "X-User-Id",
        skip_paths: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(app)
        self.path_prefix = path_prefix.rstrip("/")
        self.user_id_header = user_id_header
        self.skip_paths = tuple(skip_paths or ())

    def _should_apply(self, path: str) -> bool:
        if not path.startswith(self.path_prefix + "/") and path != self.path_prefix:
            return False
        for skip in self.skip_paths:
            if path == skip or path.startswith(skip.rstrip("/") + "/"):
                return False
        return True

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Any]
    ) -> Response:
        if not self._should_apply(request.url.path):
            return await call_next(request)

        user_id = (request.headers.get(self.user_id_header) or "").strip()
        if not user_id:
            logger.info(
                "Rejected unauthenticated request",
                extra={"path": request.url.path, "method": request.method},
            )
            return JSONResponse(
                status_code=401,
                content={"detail": "User not authenticated", "code": "unauthenticated"},
            )

        request.state.user_id = user_id
        return await call_next(request)
