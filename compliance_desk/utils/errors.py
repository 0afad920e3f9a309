"""Standardised API error responses.

Usage
-----
    from compliance_desk.utils.errors import api_error, E, register_error_handlers

    return api_error(E.VALIDATION_REQUIRED, "remarks is required")

    register_error_handlers(workflow_bp)   # maps core.exceptions → JSON
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from compliance_desk.core.exceptions import (
    Conflict,
    Forbidden,
    NotFound,
    PreconditionFailed,
    UpstreamUnavailable,
    ValidationFailed,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Malformed request – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500 / 503
    UPSTREAM_UNAVAILABLE = "ERR_UPSTREAM_UNAVAILABLE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.UPSTREAM_UNAVAILABLE: 503,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (task id, offending field, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the service-exception → HTTP mapping to a blueprint.

    Order matters only for subclasses: Flask resolves the most specific
    registered class first, so ``Forbidden`` wins over ``PreconditionFailed``.
    """

    @bp.errorhandler(ValidationFailed)
    def _handle_validation(error: ValidationFailed):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(Forbidden)
    def _handle_forbidden(error: Forbidden):
        return api_error(E.FORBIDDEN, str(error), details=error.details)

    @bp.errorhandler(PreconditionFailed)
    def _handle_precondition(error: PreconditionFailed):
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(NotFound)
    def _handle_not_found(error: NotFound):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(Conflict)
    def _handle_conflict(error: Conflict):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details=error.details)

    @bp.errorhandler(UpstreamUnavailable)
    def _handle_upstream(error: UpstreamUnavailable):
        logger.warning("Upstream failure on %s: %s", request.endpoint, error)
        return api_error(E.UPSTREAM_UNAVAILABLE, str(error), details=error.details)
