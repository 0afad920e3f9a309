"""
Actor Context Middleware — resolves the calling employee for API requests.

Authentication is owned by the upstream gateway / identity provider, which
forwards the authenticated employee id in ``X-Employee-Id``. This hook only
looks the employee up and stores it on ``g``:

    g.actor_id  — header value (or None)
    g.actor     — Employee instance, or None if unknown / inactive

It never blocks a request; endpoints that need a caller use
``actor_required()`` and decide for themselves.
"""

import logging

from flask import g, request

from compliance_desk.models import db
from compliance_desk.models.directory import Employee, Role
from compliance_desk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Employee-Id"

# Paths that skip actor resolution
ACTOR_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_actor_context(app):
    """Register actor context middleware as a before_request hook."""

    @app.before_request
    def _actor_context():
        g.actor = None
        g.actor_id = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in ACTOR_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None

        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            return None
        g.actor_id = actor_id

        employee = db.session.get(Employee, actor_id)
        if employee is None:
            logger.warning("Unknown %s=%s on %s", ACTOR_HEADER, actor_id, request.path)
            return None
        if not employee.is_active:
            logger.warning("Inactive employee %s attempted %s %s", actor_id, request.method, request.path)
            return None
        g.actor = employee
        return None

    logger.info("Actor context middleware installed")


def current_actor() -> Employee | None:
    return getattr(g, "actor", None)


def actor_required():
    """Return (employee, None) or (None, error_response) for the tuple-return pattern."""
    actor = current_actor()
    if actor is None:
        return None, api_error(E.UNAUTHENTICATED, f"A valid, active {ACTOR_HEADER} header is required")
    return actor, None


def admin_required():
    actor, err = actor_required()
    if err:
        return None, err
    if actor.role != Role.ADMIN:
        return None, api_error(E.FORBIDDEN, "Administrator role required")
    return actor, None
