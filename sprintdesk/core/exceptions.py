"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from sprintdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="SprintDraft", resource_id=42)
    raise ValidationError("Version must be in format X.Y", details={"version": "1"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Also used when the caller may not learn whether the resource exists
    (share tokens).

    Args:
        resource: Human-readable model/entity name (e.g. "SprintDraft").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
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
    """Raised when input fails validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class StateError(Exception):
    """Raised when an operation is not allowed in the resource's current state.

    Distinct from NotFoundError so callers can tell "missing" from
    "not allowed now". Maps to HTTP 409.
    """

    def __init__(self, message: str, current_state: str | None = None) -> None:
        self.current_state = current_state
        super().__init__(message)


class SprintLockedError(StateError):
    """Raised when a non-admin mutates a completed sprint. Maps to HTTP 423."""

    def __init__(self, sprint_id: int) -> None:
        self.sprint_id = sprint_id
        super().__init__(f"Sprint {sprint_id} is complete and locked", current_state="complete")


class CatalogIntegrityError(Exception):
    """Raised when a catalog deliverable is missing or inactive at add time.

    Maps to HTTP 422.
    """

    def __init__(self, deliverable_id: int | str | None) -> None:
        self.deliverable_id = deliverable_id
        super().__init__(f"Deliverable id={deliverable_id} not found or inactive")


class AccessDeniedError(Exception):
    """Raised when an authenticated caller lacks access. Maps to HTTP 403."""


class GenerationError(Exception):
    """Raised when the AI collaborator fails (timeout, non-2xx, bad payload).

    State is never mutated when this is raised. Maps to HTTP 502.

    Args:
        message: Human-readable failure reason.
        ai_response_id: Audit row id of the failed call, when one was recorded.
    """

    def __init__(self, message: str, ai_response_id: int | None = None) -> None:
        self.ai_response_id = ai_response_id
        super().__init__(message)
