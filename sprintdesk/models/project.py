"""
SprintDesk
Project membership model.

Projects themselves live in the account service; this table only records
which emails may collaborate on sprints attached to a project.
"""

from datetime import datetime, timezone

from sprintdesk.models import db


class ProjectMember(db.Model):
    """Email-level membership of an external project."""

    __tablename__ = "project_members"
    __table_args__ = (
        db.UniqueConstraint("project_id", "email", name="uq_project_member_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False, comment="Stored lower-cased")
    role = db.Column(db.String(30), default="member")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def is_member(cls, project_id, email):
        if not project_id or not email:
            return False
        return (
            cls.query.filter_by(project_id=project_id, email=email.strip().lower()).first()
            is not None
        )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "email": self.email,
            "role": self.role,
        }
