"""Deliverable version ledger.

Versions are immutable snapshots of a sprint deliverable's working content
(content, notes, type data). Numbers are "major.minor" strings compared
numerically, so "1.10" sorts after "1.9". Each new version must be strictly
greater than the line's current version pointer ("0.0" before the first).
"""
import logging
from datetime import datetime, timezone

from sprintdesk.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from sprintdesk.models import db
from sprintdesk.models.audit import write_changelog
from sprintdesk.models.sprint import (
    SprintDeliverable,
    SprintDeliverableVersion,
    parse_version,
)
from sprintdesk.services.sprint_service import can_access, ensure_unlocked, get_sprint
from sprintdesk.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)

INITIAL_VERSION = "0.0"


def _load_line(sprint_deliverable_id, identity, sprint_id=None):
    row = db.session.get(SprintDeliverable, sprint_deliverable_id)
    if row is None or (sprint_id is not None and row.sprint_draft_id != int(sprint_id)):
        raise NotFoundError(resource="SprintDeliverable", resource_id=sprint_deliverable_id)
    sprint = get_sprint(row.sprint_draft_id)
    if identity is not None and not can_access(sprint, identity):
        raise AccessDeniedError("Access denied")
    return sprint, row


def create_version(sprint_deliverable_id, requested_version, identity, sprint_id=None):
    """Snapshot a deliverable's current content under ``requested_version``.

    Raises:
        ValidationError: malformed number, or not greater than the current version.
        ConflictError: that exact number already exists for the line.
        SprintLockedError: sprint is complete and caller is not an admin.
    """
    requested = parse_version(requested_version)
    if requested is None:
        raise ValidationError(
            "Version must be in format X.Y (e.g., 1.0, 2.1)",
            details={"version": requested_version},
        )
    version_number = f"{requested[0]}.{requested[1]}"

    sprint, row = _load_line(sprint_deliverable_id, identity, sprint_id)
    ensure_unlocked(sprint, identity)

    exists = SprintDeliverableVersion.query.filter_by(
        sprint_deliverable_id=row.id, version_number=version_number,
    ).first()
    if exists is not None:
        raise ConflictError("SprintDeliverableVersion", "version_number", version_number)

    current_label = row.current_version or INITIAL_VERSION
    current = parse_version(current_label) or (0, 0)
    if requested <= current:
        raise ValidationError(
            f"Version must be greater than current version ({current_label})",
            details={"version": version_number, "current_version": current_label},
        )

    author = (getattr(identity, "email", None) or getattr(identity, "account_id", None)
              or "system")
    now = datetime.now(timezone.utc)
    with commit_or_rollback():
        version = SprintDeliverableVersion(
            sprint_deliverable_id=row.id,
            version_number=version_number,
            version_major=requested[0],
            version_minor=requested[1],
            content=row.content,
            notes=row.notes,
            type_data=row.type_data,
            saved_by=author,
            saved_at=now,
        )
        db.session.add(version)
        row.current_version = version_number
        sprint.updated_at = now
        write_changelog(
            sprint.id, "deliverable.version",
            f"{row.name} saved as v{version_number}",
            identity=identity,
            details={"sprint_deliverable_id": row.id, "version": version_number},
        )
    logger.info("Version %s created for sprint deliverable %s", version_number, row.id,
                extra={"sprint_id": sprint.id})
    return version


def list_versions(sprint_deliverable_id, identity=None, sprint_id=None):
    """All snapshots for a line, newest (highest major.minor) first."""
    _, row = _load_line(sprint_deliverable_id, identity, sprint_id)
    return (
        SprintDeliverableVersion.query
        .filter_by(sprint_deliverable_id=row.id)
        .order_by(
            SprintDeliverableVersion.version_major.desc(),
            SprintDeliverableVersion.version_minor.desc(),
        )
        .all()
    )
