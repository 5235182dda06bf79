"""
SprintDesk
Settlement domain models.

Models:
    - BudgetPlan: compensation plan (inputs + derived outputs) for a sprint
    - Invoice: payable line generated from the latest BudgetPlan
"""

from datetime import datetime, timezone

from sprintdesk.models import db

# ── Constants ────────────────────────────────────────────────────────────────

INVOICE_STATUSES = {"pending", "paid", "failed"}

# Labels emitted by the settlement generator, in emission order
INVOICE_LABEL_DEPOSIT = "Deposit"
INVOICE_LABEL_DEFERRED = "Deferred Payment"
INVOICE_LABEL_FINAL = "Final Payment"
INVOICE_LABEL_GENERIC = "Invoice"

MILESTONE_MISS_OUTCOMES = {"forfeit_bonus", "extend_deadline", "convert_to_equity", "renegotiate"}


def _utcnow():
    return datetime.now(timezone.utc)


class BudgetPlan(db.Model):
    """
    Compensation plan computed by the budget calculator.

    ``inputs``: totalProjectValue, upfrontPayment (percent), equitySplit,
    isDeferred, milestones [{summary, multiplier, date}], milestoneMissOutcome.
    ``outputs``: upfrontAmount, equityAmount, deferredAmount,
    milestoneBonusAmount, remainingOnCompletion, totalProjectValue.

    Plans are never edited; a new plan supersedes the previous one and the
    settlement generator always reads the most recent.
    """

    __tablename__ = "budget_plans"
    __table_args__ = (
        db.Index("idx_budget_plan_sprint_created", "sprint_draft_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_draft_id = db.Column(
        db.Integer, db.ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False,
    )
    inputs = db.Column(db.JSON, nullable=False, default=dict)
    outputs = db.Column(db.JSON, nullable=False, default=dict)
    created_by = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def is_deferred(self):
        # Plans recorded before the flag existed are deferred plans
        return (self.inputs or {}).get("isDeferred") is not False

    def output(self, key):
        """Return a positive output amount as float, or 0.0 when absent/non-numeric."""
        value = (self.outputs or {}).get(key)
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return 0.0
        return amount if amount > 0 else 0.0

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_draft_id": self.sprint_draft_id,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "is_deferred": self.is_deferred,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Invoice(db.Model):
    """
    Payable invoice line for a sprint.

    ``processor_ref`` holds the payment processor's canonical object id
    (payment intent, checkout session or invoice id); reconciliation
    matches on it by equality.
    """

    __tablename__ = "sprint_invoices"
    __table_args__ = (
        db.UniqueConstraint("sprint_draft_id", "sort_order", name="uq_invoice_sort_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_draft_id = db.Column(
        db.Integer, db.ForeignKey("sprint_drafts.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    label = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | paid | failed",
    )
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    invoice_url = db.Column(db.String(1000), nullable=True, comment="Hosted invoice link")
    processor_ref = db.Column(db.String(255), nullable=True, index=True)
    pdf_url = db.Column(db.String(1000), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_draft_id": self.sprint_draft_id,
            "label": self.label,
            "amount": self.amount,
            "status": self.status,
            "sort_order": self.sort_order,
            "invoice_url": self.invoice_url,
            "processor_ref": self.processor_ref,
            "pdf_url": self.pdf_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Invoice {self.id}: {self.label} {self.status}>"
