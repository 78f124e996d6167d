"""
KPI Portal
Acting-identity middleware.

The portal trusts the identity supplied by the session layer: every
``/api/v1/*`` request may carry an ``X-User-Id`` header naming a user in
the aggregate. The hook resolves it and exposes:

    g.actor       — Actor(user_id, role) used by the lifecycle engine
    g.actor_user  — the resolved User

Requests without the header proceed anonymously; endpoints that need an
actor are decorated with ``require_actor`` or ``require_role``.
"""

import functools
import logging

from flask import g, request

from kpi_portal.models.directory import Actor
from kpi_portal.services.portal import get_portal
from kpi_portal.services.repository import find_user
from kpi_portal.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"

# Reachable without an actor
_PUBLIC_PREFIXES = ("/api/v1/health", "/api/v1/auth/login")


def init_auth(app):
    """Install the actor-resolving before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor = None
        g.actor_user = None

        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith(_PUBLIC_PREFIXES):
            return None

        user_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not user_id:
            return None

        user = find_user(get_portal().state, user_id)
        if user is None:
            logger.warning("Unknown actor %s on %s", user_id, request.path)
            return api_error(E.UNAUTHENTICATED, f"Unknown user: {user_id}")
        if not user.is_active:
            logger.warning("Disabled actor %s on %s", user_id, request.path)
            return api_error(E.FORBIDDEN, "Account is disabled. Contact your administrator.")

        g.actor = Actor.for_user(user)
        g.actor_user = user
        return None


def current_actor() -> Actor | None:
    return getattr(g, "actor", None)


def require_actor(f):
    """Decorator: the request must carry a resolvable ``X-User-Id``."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_actor() is None:
            return api_error(E.UNAUTHENTICATED, f"Authentication required. Provide {ACTOR_HEADER} header.")
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: str):
    """
    Decorator: the actor's role must be one of *roles*.

    Usage:
        @task_bp.route("/tasks/<task_id>", methods=["DELETE"])
        @require_role("manager", "admin")
        def delete_task(task_id): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")
            if actor.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (needs %s)",
                    actor.role, request.path, "/".join(roles),
                    extra={"actor_id": actor.user_id},
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator
