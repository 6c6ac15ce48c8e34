"""
Boardflow
Blueprint registry and shared request helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from boardflow.core.exceptions import (
    AccessDenied,
    InvalidTransition,
    NotFoundError,
    SequenceViolation,
    ValidationError,
)
from boardflow.utils.errors import E, api_error, exception_response

logger = logging.getLogger(__name__)

_HTTP_CODES = {403: E.FORBIDDEN, 404: E.NOT_FOUND, 409: E.CONFLICT_STATE}


def current_user():
    """Acting user from the X-User header (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or "system"
    )


def json_body():
    """Return ``(data, None)`` for a JSON object body, else ``(None, error_response)``."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def int_arg(name, default):
    """Integer query parameter; ``(value, None)`` or ``(None, error_response)``."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default, None
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer",
                               details={name: raw})


def bool_arg(name):
    """Boolean query parameter; None when absent."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() in ("1", "true", "yes")


def register_error_handlers(bp):
    """Map the service exception hierarchy onto standard JSON errors for ``bp``."""

    @bp.errorhandler(NotFoundError)
    @bp.errorhandler(ValidationError)
    @bp.errorhandler(AccessDenied)
    @bp.errorhandler(SequenceViolation)
    @bp.errorhandler(InvalidTransition)
    def _handle_service_error(error):
        return exception_response(error)

    @bp.errorhandler(HTTPException)
    def _handle_http(error):
        code = _HTTP_CODES.get(error.code, E.INTERNAL if error.code >= 500 else E.VALIDATION_INVALID)
        return api_error(code, error.description or error.name, status=error.code)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
