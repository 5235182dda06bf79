"""
SprintDesk
AI domain models.

Models:
    - AIResponse: audit trail for every workshop generation call
"""

import hashlib
import json
from datetime import datetime, timezone

from sprintdesk.models import db


class AIResponse(db.Model):
    """
    Immutable record of one AI collaborator call.

    Written for successes and failures alike so a failed generation can be
    inspected after the fact. ``response_json`` is null when the payload
    did not parse.
    """

    __tablename__ = "ai_responses"

    id = db.Column(db.Integer, primary_key=True)
    sprint_draft_id = db.Column(
        db.Integer, db.ForeignKey("sprint_drafts.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    provider = db.Column(db.String(30), nullable=False, default="openai")
    model = db.Column(db.String(80), nullable=False, default="")
    purpose = db.Column(db.String(50), nullable=False, default="workshop")

    prompt = db.Column(db.JSON, nullable=True, comment="Messages sent to the model")
    prompt_hash = db.Column(db.String(64), default="", comment="SHA-256 of prompt for dedup")
    response_text = db.Column(db.Text, nullable=True)
    response_json = db.Column(db.JSON, nullable=True)

    http_status = db.Column(db.Integer, nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    error = db.Column(db.Text, nullable=True)
    duration_ms = db.Column(db.Integer, default=0)
    created_by = db.Column(db.String(255), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    @staticmethod
    def hash_prompt(prompt):
        payload = json.dumps(prompt, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_draft_id": self.sprint_draft_id,
            "provider": self.provider,
            "model": self.model,
            "purpose": self.purpose,
            "http_status": self.http_status,
            "success": self.success,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "response_json": self.response_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AIResponse {self.id}: {self.model} ok={self.success}>"
