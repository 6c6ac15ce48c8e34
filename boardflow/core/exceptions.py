"""
Boardflow exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from boardflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Approval", resource_id=42)
    raise ValidationError("Unknown action type", details={"actions[0].type": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Item", "Approval").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 when raised while saving configuration. Inside an
    automation run it only marks the failing action.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field paths.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AccessDenied(Exception):
    """Raised when the actor lacks the capability for an action. Maps to HTTP 403."""

    def __init__(self, actor: str | None, action: str, message: str | None = None) -> None:
        self.actor = actor
        self.action = action
        super().__init__(message or f"User {actor!r} is not allowed to perform {action}")


class InvalidTransition(Exception):
    """Raised for a status change the approval lifecycle forbids. Maps to HTTP 409."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change approval from {current!r} to {requested!r}")


class SequenceViolation(Exception):
    """Raised when approving a level whose previous level is not approved. Maps to HTTP 409."""

    def __init__(self, level: str, previous: str) -> None:
        self.level = level
        self.previous = previous
        super().__init__(f"{previous} must be approved before {level}")


class ExternalIntegrationError(Exception):
    """Raised by outbound calls that failed or returned a non-2xx status.

    Never leaves the action executor; the action is recorded as failed.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
