"""Standardised API error responses.

Usage
-----
    from sprintdesk.utils.errors import api_error, E, register_error_handlers

    return api_error(E.NOT_FOUND, "Sprint not found")
    return api_error(E.VALIDATION_REQUIRED, "deliverable_id is required")
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from sprintdesk.core.exceptions import (
    AccessDeniedError,
    CatalogIntegrityError,
    ConflictError,
    GenerationError,
    NotFoundError,
    SprintLockedError,
    StateError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INTEGRITY_CATALOG = "ERR_INTEGRITY_CATALOG"

    # Auth – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409 / 423
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    LOCKED = "ERR_LOCKED"

    # Upstream – HTTP 502
    GENERATION_FAILED = "ERR_GENERATION_FAILED"

    # Webhooks – HTTP 400
    SIGNATURE_INVALID = "ERR_SIGNATURE_INVALID"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.INTEGRITY_CATALOG: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.LOCKED: 423,
    E.GENERATION_FAILED: 502,
    E.SIGNATURE_INVALID: 400,
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
        Extra structured payload.

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
    """Map the platform exception hierarchy onto a blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(CatalogIntegrityError)
    def _handle_catalog(error: CatalogIntegrityError):
        return api_error(E.INTEGRITY_CATALOG, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(SprintLockedError)
    def _handle_locked(error: SprintLockedError):
        return api_error(E.LOCKED, str(error), details={"status": "complete"})

    @bp.errorhandler(StateError)
    def _handle_state(error: StateError):
        details = {"status": error.current_state} if error.current_state else None
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(AccessDeniedError)
    def _handle_denied(error: AccessDeniedError):
        return api_error(E.FORBIDDEN, str(error) or "Access denied")

    @bp.errorhandler(GenerationError)
    def _handle_generation(error: GenerationError):
        details = {"ai_response_id": error.ai_response_id} if error.ai_response_id else None
        return api_error(E.GENERATION_FAILED, str(error), details=details)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
