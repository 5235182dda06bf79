"""
SprintDesk
Sprint domain models.

Models:
    - SprintDraft: priced, time-boxed bundle of deliverables sold to a client
    - SprintDeliverable: composition line item (catalog snapshot + adjusted values)
    - SprintDeliverableVersion: immutable snapshot of a line item's output

Status flow (single transition table, guards included):
    draft → studio_review → pending_client → complete
    pending_client → studio_review (workshop removal)
"""

import re
from datetime import datetime, timezone

from sqlalchemy import event

from sprintdesk.models import db

# ── Status machine ───────────────────────────────────────────────────────

SPRINT_STATUSES = {"draft", "studio_review", "pending_client", "complete"}


def _always(sprint, identity):
    return True


def _has_workshop(sprint, identity):
    return bool(sprint.workshop_agenda)


def _is_admin(sprint, identity):
    return identity is not None and identity.is_admin


# state → {target state → guard(sprint, identity)}
SPRINT_TRANSITIONS = {
    "draft":          {"studio_review": _always, "pending_client": _has_workshop},
    "studio_review":  {"pending_client": _has_workshop},
    "pending_client": {"complete": _is_admin, "studio_review": _always},
    "complete":       {},
}

GUARD_REASONS = {
    _has_workshop: "A workshop agenda is required before the client can review",
    _is_admin: "Admin role required",
}

# Guards that fail because of who is asking rather than what the sprint holds
ROLE_GUARDS = {_is_admin}

# Composition (add/remove/complexity) is only open while drafting
COMPOSITION_EDITABLE_STATUSES = {"draft"}

WORKSHOP_GENERATION_STATUSES = {"draft", "studio_review"}


def validate_sprint_transition(old_status, new_status):
    """Return True if the edge exists in the transition table (guards not evaluated)."""
    return new_status in SPRINT_TRANSITIONS.get(old_status, {})


def transition_guard(old_status, new_status):
    """Return the guard for an edge, or None if the edge does not exist."""
    return SPRINT_TRANSITIONS.get(old_status, {}).get(new_status)


# ── Version numbers ──────────────────────────────────────────────────────

VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)$")

# version_major / version_minor are 32-bit Integer columns
VERSION_PART_MAX = 2**31 - 1


def parse_version(value):
    """Return (major, minor) for an ``X.Y`` string, or None if malformed."""
    if not isinstance(value, str):
        return None
    m = VERSION_PATTERN.match(value.strip())
    if not m:
        return None
    major, minor = int(m.group(1)), int(m.group(2))
    if major > VERSION_PART_MAX or minor > VERSION_PART_MAX:
        return None
    return major, minor


def _utcnow():
    return datetime.now(timezone.utc)


class SprintDraft(db.Model):
    """
    A sprint being composed, reviewed, or delivered.

    Totals (points, hours, price, deliverable count) are derived from the
    composition rows by the sprint service and never edited directly.
    Package name/description are snapshotted at creation time.
    """

    __tablename__ = "sprint_drafts"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False, default="Untitled Sprint")
    status = db.Column(
        db.String(30), nullable=False, default="draft", index=True,
        comment="draft | studio_review | pending_client | complete",
    )

    # ── Ownership
    account_id = db.Column(db.String(64), nullable=True, index=True)
    owner_email = db.Column(db.String(255), nullable=True)
    project_id = db.Column(db.String(64), nullable=True, index=True)

    # ── Narrative (free-form draft content, incl. a deliverables list)
    draft = db.Column(db.JSON, nullable=True)

    # ── Derived totals
    total_points = db.Column(db.Float, nullable=False, default=0.0)
    total_hours = db.Column(db.Float, nullable=False, default=0.0)
    total_price = db.Column(db.Float, nullable=False, default=0.0)
    deliverable_count = db.Column(db.Integer, nullable=False, default=0)

    # ── Schedule
    weeks = db.Column(db.Integer, nullable=False, default=2)
    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    # ── Package snapshot
    package_id = db.Column(
        db.Integer, db.ForeignKey("sprint_packages.id", ondelete="SET NULL"), nullable=True,
    )
    package_name = db.Column(db.String(200), nullable=True)
    package_description = db.Column(db.Text, nullable=True)

    # ── Public sharing
    share_token = db.Column(db.String(64), nullable=True, unique=True)

    # ── Workshop (AI-generated agenda)
    workshop_agenda = db.Column(db.JSON, nullable=True)
    workshop_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    workshop_ai_response_id = db.Column(
        db.Integer, nullable=True, comment="ai_responses.id of the generating call",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliverables = db.relationship(
        "SprintDeliverable",
        backref="sprint",
        order_by="SprintDeliverable.id",
        cascade="all, delete-orphan",
    )

    def totals_dict(self):
        return {
            "total_points": self.total_points,
            "total_hours": self.total_hours,
            "total_price": self.total_price,
            "deliverable_count": self.deliverable_count,
        }

    def to_dict(self, include_deliverables=False):
        result = {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "account_id": self.account_id,
            "project_id": self.project_id,
            "draft": self.draft,
            **self.totals_dict(),
            "weeks": self.weeks,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "package_id": self.package_id,
            "package_name": self.package_name,
            "package_description": self.package_description,
            "workshop_agenda": self.workshop_agenda,
            "workshop_generated_at": (
                self.workshop_generated_at.isoformat() if self.workshop_generated_at else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_deliverables:
            result["deliverables"] = [d.to_dict() for d in self.deliverables]
        return result

    def to_public_dict(self):
        """Read-only view for unauthenticated share-token access."""
        return {
            "title": self.title,
            "status": self.status,
            **self.totals_dict(),
            "weeks": self.weeks,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "package_name": self.package_name,
            "workshop_agenda": self.workshop_agenda,
            "deliverables": [
                {
                    "name": d.name,
                    "category": d.category,
                    "scope": d.scope,
                    "adjusted_points": d.adjusted_points,
                    "current_version": d.current_version,
                    "delivery_url": d.delivery_url,
                }
                for d in self.deliverables
            ],
        }

    def __repr__(self):
        return f"<SprintDraft {self.id}: {self.status}>"


class SprintDeliverable(db.Model):
    """
    A deliverable inside a sprint.

    Name, description, category, scope and base values are copied from the
    catalog when the row is created, so later catalog edits never change an
    in-flight sprint.
    """

    __tablename__ = "sprint_deliverables"
    __table_args__ = (
        db.UniqueConstraint("sprint_draft_id", "deliverable_id", name="uq_sprint_deliverable"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_draft_id = db.Column(
        db.Integer, db.ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="RESTRICT"), nullable=False,
    )

    complexity_score = db.Column(db.Float, nullable=False, default=1.0)
    quantity = db.Column(db.Integer, nullable=False, default=1)

    # ── Catalog snapshot
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    category = db.Column(db.String(100), default="")
    scope = db.Column(db.Text, default="")
    base_points = db.Column(db.Float, nullable=True)
    base_hours = db.Column(db.Float, nullable=True)
    base_price = db.Column(db.Float, nullable=True)

    # ── Derived values
    adjusted_points = db.Column(db.Float, nullable=False, default=0.0)
    adjusted_hours = db.Column(db.Float, nullable=False, default=0.0)
    adjusted_price = db.Column(db.Float, nullable=False, default=0.0)

    # ── Working content
    content = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    type_data = db.Column(db.JSON, nullable=True)
    attachments = db.Column(db.JSON, nullable=True, comment="Storage paths / URLs only")
    delivery_url = db.Column(db.String(1000), nullable=True)
    current_version = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    versions = db.relationship(
        "SprintDeliverableVersion",
        backref="sprint_deliverable",
        lazy="dynamic",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_draft_id": self.sprint_draft_id,
            "deliverable_id": self.deliverable_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "scope": self.scope,
            "complexity_score": self.complexity_score,
            "quantity": self.quantity,
            "base_points": self.base_points,
            "base_hours": self.base_hours,
            "base_price": self.base_price,
            "adjusted_points": self.adjusted_points,
            "adjusted_hours": self.adjusted_hours,
            "adjusted_price": self.adjusted_price,
            "content": self.content,
            "notes": self.notes,
            "type_data": self.type_data,
            "attachments": self.attachments or [],
            "delivery_url": self.delivery_url,
            "current_version": self.current_version,
        }

    def __repr__(self):
        return f"<SprintDeliverable {self.id}: {self.name}>"


class SprintDeliverableVersion(db.Model):
    """
    Immutable output snapshot of a sprint deliverable.

    Append-only: the ORM refuses UPDATE and DELETE on existing rows.
    Major/minor are stored as integers so ordering happens in SQL.
    """

    __tablename__ = "sprint_deliverable_versions"
    __table_args__ = (
        db.UniqueConstraint(
            "sprint_deliverable_id", "version_number", name="uq_sprint_deliverable_version",
        ),
        db.Index("ix_sdv_order", "sprint_deliverable_id", "version_major", "version_minor"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_deliverable_id = db.Column(
        db.Integer, db.ForeignKey("sprint_deliverables.id", ondelete="RESTRICT"), nullable=False,
    )
    version_number = db.Column(db.String(32), nullable=False)
    version_major = db.Column(db.Integer, nullable=False)
    version_minor = db.Column(db.Integer, nullable=False)

    content = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    type_data = db.Column(db.JSON, nullable=True)

    saved_by = db.Column(db.String(255), nullable=False, default="system")
    saved_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_deliverable_id": self.sprint_deliverable_id,
            "version_number": self.version_number,
            "content": self.content,
            "notes": self.notes,
            "type_data": self.type_data,
            "saved_by": self.saved_by,
            "saved_at": self.saved_at.isoformat() if self.saved_at else None,
        }

    def __repr__(self):
        return f"<SprintDeliverableVersion {self.sprint_deliverable_id}@{self.version_number}>"


@event.listens_for(SprintDeliverableVersion, "before_update")
def _refuse_version_update(mapper, connection, target):
    raise ValueError(
        f"SprintDeliverableVersion {target.id} is immutable and cannot be updated"
    )


@event.listens_for(SprintDeliverableVersion, "before_delete")
def _refuse_version_delete(mapper, connection, target):
    raise ValueError(
        f"SprintDeliverableVersion {target.id} is immutable and cannot be deleted"
    )
