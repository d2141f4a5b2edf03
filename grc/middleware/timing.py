"""
Per-request id and duration.

Every response carries X-Request-ID (echoed from the caller when present) and
X-Request-Duration-Ms. One log line per API call: DEBUG normally, WARNING when
slow, ERROR on 5xx. The tenant and user resolved by the tenant middleware ride
along as log context.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000
_QUIET_PREFIXES = ("/api/v1/health", "/static")


def _level(status: int, duration_ms: float) -> int:
    if status >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def _log_context(status: int, duration_ms: float) -> dict:
    tenant = getattr(g, "tenant_context", None)
    return {
        "request_id": g.request_id,
        "method": request.method,
        "path": request.path,
        "status": status,
        "duration_ms": duration_ms,
        "remote_addr": request.remote_addr,
        "tenant_id": getattr(tenant, "tenant_id", None),
        "user_id": getattr(tenant, "user_id", None),
    }


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_request(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response
        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if not request.path.startswith(_QUIET_PREFIXES):
            logger.log(
                _level(response.status_code, duration_ms),
                "%s %s -> %d (%.0fms)",
                request.method, request.path, response.status_code, duration_ms,
                extra=_log_context(response.status_code, duration_ms),
            )
        return response
