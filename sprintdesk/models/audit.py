"""
SprintDesk
Sprint change log model.

Models:
    - SprintChangeLog: append-only, human-readable summaries of sprint
      mutations for display next to the sprint.
"""

from datetime import datetime, timezone

from sprintdesk.models import db

# ── Constants ────────────────────────────────────────────────────────────────

CHANGELOG_ACTIONS = {
    "sprint.create",
    "sprint.transition",
    "deliverable.add",
    "deliverable.remove",
    "deliverable.complexity",
    "deliverable.update",
    "deliverable.version",
    "workshop.generate",
    "workshop.remove",
    "invoice.generate",
    "invoice.update",
    "invoice.delete",
    "invoice.reconcile",
    "budget_plan.record",
}


class SprintChangeLog(db.Model):
    """
    One row per sprint mutation.

    ``summary`` is display text; ``details`` carries structured context
    (ids, old → new values). Rows are never updated.
    """

    __tablename__ = "sprint_draft_changelog"
    __table_args__ = (
        db.Index("idx_changelog_sprint_ts", "sprint_draft_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_draft_id = db.Column(
        db.Integer, db.ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False,
    )
    account_id = db.Column(db.String(64), nullable=True)
    actor_email = db.Column(db.String(255), nullable=True)
    action = db.Column(db.String(60), nullable=False)
    summary = db.Column(db.String(500), nullable=False)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_draft_id": self.sprint_draft_id,
            "action": self.action,
            "summary": self.summary,
            "details": self.details,
            "author": self.actor_email or self.account_id or "system",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def write_changelog(sprint_id, action, summary, *, identity=None, details=None):
    """Stage a changelog row on the current session (caller commits).

    Returns the unflushed SprintChangeLog instance.
    """
    if action not in CHANGELOG_ACTIONS:
        raise ValueError(f"Unknown changelog action: {action}")
    entry = SprintChangeLog(
        sprint_draft_id=sprint_id,
        account_id=getattr(identity, "account_id", None),
        actor_email=getattr(identity, "email", None),
        action=action,
        summary=summary[:500],
        details=details,
    )
    db.session.add(entry)
    return entry
