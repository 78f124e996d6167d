"""Standard JSON error bodies for the API.

Every error leaves the portal as::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``api_error`` builds one directly (auth hooks, login). ``exception_response``
renders the service exceptions from ``core.exceptions`` and is registered
by the app factory as the handler for each of them.

Usage
-----
    from kpi_portal.utils.errors import api_error, E

    return api_error(E.UNAUTHENTICATED, "Invalid username or password")
"""

from __future__ import annotations

import logging

from flask import jsonify

from kpi_portal.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StaleStateError,
    TransitionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error codes ───────────────────────────────────────────────────────
class E:
    """Machine-readable error codes (``ERR_`` prefix)."""

    VALIDATION = "ERR_VALIDATION"            # 422 business rule / bad field
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"  # 401 unknown or missing actor
    FORBIDDEN = "ERR_FORBIDDEN"              # 403 role gate, disabled account
    NOT_FOUND = "ERR_NOT_FOUND"              # 404
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"  # 405
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"  # 409 code / username taken
    CONFLICT_STATE = "ERR_CONFLICT_STATE"    # 409 invalid task transition
    CONFLICT_STALE = "ERR_CONFLICT_STALE"    # 409 another writer saved first
    STORAGE = "ERR_STORAGE"                  # 500 state store failure
    INTERNAL = "ERR_INTERNAL"                # 500


_STATUS: dict[str, int] = {
    E.VALIDATION: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_STALE: 409,
    E.STORAGE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(response, status)`` with the standard error body.

    The status defaults to the one registered for *code*, then 400.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS.get(code, 400)


# ── Service exceptions ────────────────────────────────────────────────

def _stale_details(exc):
    return {"expectedVersion": exc.expected_version, "actualVersion": exc.actual_version}


def _transition_details(exc):
    return {"taskId": exc.task_id, "currentStatus": exc.current_status, "targetStatus": exc.target_status}


# Most specific first: StaleStateError is a ConflictError.
_EXCEPTION_CODES = (
    (StaleStateError, E.CONFLICT_STALE, _stale_details),
    (ConflictError, E.CONFLICT_DUPLICATE, lambda exc: {"field": exc.field}),
    (TransitionError, E.CONFLICT_STATE, _transition_details),
    (ValidationError, E.VALIDATION, lambda exc: exc.details),
    (NotFoundError, E.NOT_FOUND, lambda exc: {"resource": exc.resource}),
    (PermissionDeniedError, E.FORBIDDEN, lambda exc: None),
)

HANDLED_EXCEPTIONS = tuple(exc_type for exc_type, _, _ in _EXCEPTION_CODES)


def exception_response(exc: Exception):
    """Error handler for the exception types in ``HANDLED_EXCEPTIONS``."""
    for exc_type, code, details in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            if code == E.CONFLICT_STALE:
                logger.info("Rejected stale write: %s", exc)
            return api_error(code, str(exc), details=details(exc))
    raise exc
