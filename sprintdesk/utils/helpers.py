"""Shared utility functions used by services and blueprints.

parse_date:          returns None on bad input
parse_date_input:    raises ValidationError on bad input
commit_or_rollback:  one-transaction scope for service operations
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime

from sprintdesk.core.exceptions import ValidationError
from sprintdesk.models import db

logger = logging.getLogger(__name__)

# Largest value a 32-bit Integer column accepts
INT_COLUMN_MAX = 2**31 - 1


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value, field="date"):
    """Same as parse_date() but raises ValidationError instead of returning None."""
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: value},
        )
    return parsed


def parse_positive_int(value, field, default=None):
    """Coerce ``value`` to an int between 1 and INT_COLUMN_MAX; None returns ``default``."""
    if value is None:
        return default
    error = ValidationError(f"{field} must be a positive integer", details={field: value})
    if isinstance(value, bool):
        raise error
    try:
        number = int(value)
        whole = number == float(value)
    except (TypeError, ValueError, OverflowError):
        raise error
    if not whole or number < 1 or number > INT_COLUMN_MAX:
        raise error
    return number


# ── Database transaction helper ──────────────────────────────────────────────

@contextmanager
def commit_or_rollback():
    """Run the block as one transaction: commit at the end, roll back on any error.

    Usage::

        with commit_or_rollback():
            db.session.add(row)
            recompute_totals(sprint)
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
