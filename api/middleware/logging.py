from __future__ import annotations

import json
import logging
import time
import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

ACCESS_LOGGER_NAME = "doctracker.access"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured JSON access line per request."""

    def __init__(self, app, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self.logger = logger if logger is not None else logging.getLogger(ACCESS_LOGGER_NAME)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        request.state.request_id = request_id
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            payload = self._base_payload(request, request_id, start)
            payload.update({"event": "http_request_error", "status": 500})
            self._log(payload, level=logging.ERROR)
            raise

        response.headers.setdefault("x-request-id", request_id)

        payload = self._base_payload(request, request_id, start)
        payload.update({"event": "http_request", "status": response.status_code})
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        self._log(payload, level=level)

        return response

    @staticmethod
    def _base_payload(request: Request, request_id: str, start: float) -> dict[str, object]:
        payload: dict[str, object] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "duration_ms": int((time.perf_counter() - start) * 1000),
        }
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            payload["user_id"] = user_id
        return payload

    def _log(self, payload: dict[str, object], level: int = logging.INFO) -> None:
        self.logger.log(level, json.dumps(payload, separators=(",", ":")))
