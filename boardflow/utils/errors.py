"""Standard JSON error envelope for the API.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}?, "requestId": "..."?}

Usage
-----
    from boardflow.utils.errors import api_error, exception_response, E

    return api_error(E.VALIDATION_REQUIRED, "status is required")
    return exception_response(exc)          # service-layer exceptions
"""

from __future__ import annotations

from flask import g, has_request_context, jsonify

from boardflow.core.exceptions import (
    AccessDenied,
    InvalidTransition,
    NotFoundError,
    SequenceViolation,
    ValidationError,
)


class E:
    """Machine-readable error codes."""

    # Malformed request (400)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Well-formed but rejected by a business rule (422)
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    NOT_FOUND = "ERR_NOT_FOUND"                  # 404
    FORBIDDEN = "ERR_FORBIDDEN"                  # 403

    # Approval state conflicts (409)
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    SEQUENCE_VIOLATION = "ERR_SEQUENCE_VIOLATION"

    INTERNAL = "ERR_INTERNAL"                    # 500


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.FORBIDDEN: 403,
    E.CONFLICT_STATE: 409,
    E.SEQUENCE_VIOLATION: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(jsonify(body), http_status)`` for a Flask view.

    ``status`` overrides the code's default HTTP status (fallback 400).
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if has_request_context() and getattr(g, "request_id", None):
        body["requestId"] = g.request_id
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def exception_response(exc: Exception):
    """Translate a service-layer exception into the error envelope.

    Raises ``TypeError`` for exceptions the API does not map.
    """
    if isinstance(exc, NotFoundError):
        return api_error(E.NOT_FOUND, str(exc))
    if isinstance(exc, ValidationError):
        return api_error(E.VALIDATION_RULE, str(exc), details=exc.details)
    if isinstance(exc, AccessDenied):
        return api_error(E.FORBIDDEN, str(exc))
    if isinstance(exc, SequenceViolation):
        return api_error(E.SEQUENCE_VIOLATION, str(exc),
                         details={"level": exc.level, "previousLevel": exc.previous})
    if isinstance(exc, InvalidTransition):
        return api_error(E.CONFLICT_STATE, str(exc),
                         details={"currentStatus": exc.current, "requestedStatus": exc.requested})
    raise TypeError(f"No API mapping for {type(exc).__name__}")
