"""
SprintDesk
Authentication & Authorization Middleware.

Session issuance lives in the external account service; this module only
resolves an API key into the caller's identity.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - Identity (account id, email, admin flag) on ``flask.g.identity``
    - require_auth / require_admin decorators
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/v1/* endpoints require a valid API key, except health checks,
      the public share view and the Stripe webhook (signature-verified)
    - Admin-only operations (workshop, complexity, settlement) require the
      'admin' role

Configuration (env vars):
    API_KEYS          — comma-separated list of key entries
                        e.g. "k1:admin:acct_1:ops@studio.test,k2:member:acct_2:c@client.test"
                        Format: "<key>:<role>:<account_id>:<email>" where role is admin|member
    API_AUTH_ENABLED  — set to "false" to disable auth (development only)
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, jsonify, request

from sprintdesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "member"}

# Paths under /api/v1/ that never need an API key
PUBLIC_PREFIXES = (
    "/api/v1/health",
    "/api/v1/shared/",
    "/api/v1/webhooks/",
)


@dataclass(frozen=True)
class Identity:
    account_id: str
    email: str
    is_admin: bool = False


DEV_IDENTITY = Identity(account_id="dev", email="dev@localhost", is_admin=True)


def _parse_api_keys() -> dict[str, Identity]:
    """
    Parse API_KEYS env var into {key: Identity} mapping.

    Entries with an unknown role default to 'member'. Entries missing the
    account id fall back to the key itself.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":", 3)]
        key = parts[0]
        role = parts[1].lower() if len(parts) > 1 and parts[1] else "member"
        if role not in ROLES:
            logger.warning("Unknown role '%s' for API key, defaulting to 'member'", role)
            role = "member"
        account_id = parts[2] if len(parts) > 2 and parts[2] else key
        email = parts[3].lower() if len(parts) > 3 else ""
        keys[key] = Identity(account_id=account_id, email=email, is_admin=role == "admin")
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
            "false", "0", "no", "off",
        )
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def _resolve_identity():
    """
    Resolve the caller for the current request.

    Returns:
        (Identity, None) on success or (None, error_response) on failure.
    """
    if not _is_auth_enabled():
        return DEV_IDENTITY, None

    api_key = _get_api_key_from_request()
    if not api_key:
        return None, api_error(E.UNAUTHENTICATED, "Authentication required. Provide X-API-Key header.")

    api_keys = _parse_api_keys()
    if not api_keys:
        logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
        return None, api_error(E.INTERNAL, "Server authentication not configured")

    identity = api_keys.get(api_key)
    if identity is None:
        logger.warning("Invalid API key attempt: %s...", api_key[:8])
        return None, api_error(E.UNAUTHENTICATED, "Invalid API key")
    return identity, None


def current_identity() -> Optional[Identity]:
    """Identity of the current request caller, or None outside an authenticated request."""
    return getattr(g, "identity", None)


# ── Authentication decorators ────────────────────────────────────────────────

def require_auth(f):
    """
    Decorator: require a valid API key for the endpoint.

    Sets g.identity. When auth is disabled (development), the caller is the
    dev admin identity.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "identity", None) is None:
            identity, error = _resolve_identity()
            if error:
                return error
            g.identity = identity
        return f(*args, **kwargs)

    return decorated


def require_admin(f):
    """
    Decorator: require the admin role.

    Usage:
        @require_auth
        @require_admin
        def generate_workshop(sprint_id): ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        identity = getattr(g, "identity", None)
        if identity is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")
        if not identity.is_admin:
            logger.warning(
                "Access denied: account '%s' tried to access admin endpoint %s",
                identity.account_id, request.path,
            )
            return api_error(E.FORBIDDEN, "Insufficient permissions")
        return f(*args, **kwargs)

    return decorated


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def _is_public_path(path: str) -> bool:
    return any(path.startswith(prefix) for prefix in PUBLIC_PREFIXES)


def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health checks, the public share view and webhooks
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if _is_public_path(request.path):
            return None
        # OPTIONS pre-flight requests don't need auth
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        identity, error = _resolve_identity()
        if error:
            return error
        g.identity = identity
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
