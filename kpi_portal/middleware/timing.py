"""
Request timing middleware.

Every API response carries:
    X-Request-ID           — echoed from the request or generated
    X-Request-Duration-Ms  — wall time spent in the app
    X-State-Version        — version of the aggregate the response was built from

One log line per request: DEBUG normally, WARNING when slower than
SLOW_REQUEST_MS, ERROR for 5xx.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

from kpi_portal.services.portal import EXTENSION_KEY

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000

# Probes hit these every few seconds
_QUIET_PATHS = frozenset({"/api/v1/health/ready", "/api/v1/health/live"})


def _snapshot_version():
    portal = current_app.extensions.get(EXTENSION_KEY)
    return portal.cached_version if portal is not None else None


def init_request_timing(app: Flask):
    """Register the before/after hooks on *app*."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        version = _snapshot_version()
        if version is not None:
            response.headers["X-State-Version"] = str(version)

        if request.path in _QUIET_PATHS:
            return response

        actor = getattr(g, "actor", None)
        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "actor_id": actor.user_id if actor is not None else None,
            "state_version": version,
        }
        if response.status_code >= 500:
            log = logger.error
        elif duration_ms > SLOW_REQUEST_MS:
            log = logger.warning
        else:
            log = logger.debug
        log("%s %s -> %d", request.method, request.path, response.status_code, extra=extra)
        return response
