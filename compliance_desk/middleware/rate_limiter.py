"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in compliance_desk/__init__.py with no
default limits; this module applies granular limits per route category.

Usage:
    from compliance_desk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

from compliance_desk.middleware.actor_context import ACTOR_HEADER

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def actor_or_ip_key():
    """Rate limit key: calling employee if known, else remote IP.

    Flask-Limiter checks limits in its own before_request hook, which runs
    ahead of the actor context, so the header is read here directly.
    """
    actor_id = (flask_request.headers.get(ACTOR_HEADER) or "").strip()
    if actor_id:
        return f"actor:{actor_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per employee, falling back to remote IP):
        - Mutation-heavy blueprints:  60/minute
        - Read-focused blueprints:    200/minute
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("workflow", "compliance", "directory", "escalation"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=actor_or_ip_key)(bp)

    for bp_name in ("notification", "change_feed"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=actor_or_ip_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
