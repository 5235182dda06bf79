"""Settlement service — budget plans and invoice generation.

Budget plans are produced by the external budget calculator and recorded
here unchanged. Invoice generation reads the most recent plan and emits
payable lines once per sprint; later calls return the existing rows.

Transaction policy: every mutation commits once through commit_or_rollback().
"""
import logging
import math

from sqlalchemy.exc import IntegrityError

from sprintdesk.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from sprintdesk.models import db
from sprintdesk.models.audit import write_changelog
from sprintdesk.models.settlement import (
    INVOICE_LABEL_DEFERRED,
    INVOICE_LABEL_DEPOSIT,
    INVOICE_LABEL_FINAL,
    INVOICE_LABEL_GENERIC,
    INVOICE_STATUSES,
    MILESTONE_MISS_OUTCOMES,
    BudgetPlan,
    Invoice,
)
from sprintdesk.services.sprint_service import get_sprint
from sprintdesk.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)

NO_BUDGET_PLAN = "no_budget_plan"

OUTPUT_KEYS = (
    "upfrontAmount",
    "equityAmount",
    "deferredAmount",
    "milestoneBonusAmount",
    "remainingOnCompletion",
    "totalProjectValue",
)


def _require_admin(identity):
    if identity is None or not identity.is_admin:
        raise AccessDeniedError("Admin role required")


def _as_amount(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: value})
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})
    if not math.isfinite(amount) or amount < 0:
        raise ValidationError(f"{field} must be a non-negative number", details={field: value})
    return amount


# ── Budget plans ─────────────────────────────────────────────────────────


def _validate_plan(inputs, outputs):
    if not isinstance(inputs, dict) or not isinstance(outputs, dict):
        raise ValidationError("inputs and outputs must be objects")
    for key in OUTPUT_KEYS:
        if outputs.get(key) is not None:
            _as_amount(outputs[key], key)
    if "isDeferred" in inputs and not isinstance(inputs["isDeferred"], bool):
        raise ValidationError("isDeferred must be a boolean",
                              details={"isDeferred": inputs["isDeferred"]})
    outcome = inputs.get("milestoneMissOutcome")
    if outcome is not None and outcome not in MILESTONE_MISS_OUTCOMES:
        raise ValidationError(
            f"Unknown milestoneMissOutcome: {outcome}",
            details={"allowed": sorted(MILESTONE_MISS_OUTCOMES)},
        )
    milestones = inputs.get("milestones")
    if milestones is not None:
        if not isinstance(milestones, list):
            raise ValidationError("milestones must be a list")
        for m in milestones:
            if not isinstance(m, dict):
                raise ValidationError("each milestone must be an object")
            if m.get("multiplier") is not None:
                _as_amount(m["multiplier"], "multiplier")


def record_budget_plan(sprint_id, data, identity):
    """Store a calculator result as the sprint's newest budget plan (admin)."""
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)
    inputs = data.get("inputs")
    outputs = data.get("outputs")
    inputs = {} if inputs is None else inputs
    outputs = {} if outputs is None else outputs
    _validate_plan(inputs, outputs)

    with commit_or_rollback():
        plan = BudgetPlan(
            sprint_draft_id=sprint.id,
            inputs=inputs,
            outputs=outputs,
            created_by=identity.email or identity.account_id,
        )
        db.session.add(plan)
        db.session.flush()
        write_changelog(
            sprint.id, "budget_plan.record",
            "Budget plan recorded ({})".format("deferred" if plan.is_deferred else "standard"),
            identity=identity, details={"budget_plan_id": plan.id},
        )
    return plan


def latest_budget_plan(sprint_id):
    return (
        BudgetPlan.query
        .filter_by(sprint_draft_id=sprint_id)
        .order_by(BudgetPlan.created_at.desc(), BudgetPlan.id.desc())
        .first()
    )


def get_latest_budget_plan(sprint_id, identity):
    sprint = get_sprint(sprint_id, identity)
    plan = latest_budget_plan(sprint.id)
    if plan is None:
        raise NotFoundError(resource="BudgetPlan")
    return plan


# ── Invoices ─────────────────────────────────────────────────────────────


def plan_invoice_lines(plan):
    """Return [(label, amount)] for a budget plan, zero amounts skipped.

    Deferred plans bill a deposit and the deferred amount; standard plans
    bill a deposit and the remainder on completion. A plan with neither
    becomes one line for the total project value.
    """
    if plan.is_deferred:
        candidates = [
            (INVOICE_LABEL_DEPOSIT, plan.output("upfrontAmount")),
            (INVOICE_LABEL_DEFERRED, plan.output("deferredAmount")),
        ]
    else:
        candidates = [
            (INVOICE_LABEL_DEPOSIT, plan.output("upfrontAmount")),
            (INVOICE_LABEL_FINAL, plan.output("remainingOnCompletion")),
        ]
    lines = [(label, amount) for label, amount in candidates if amount > 0]
    if not lines:
        total = plan.output("totalProjectValue")
        if total <= 0:
            try:
                total = max(float((plan.inputs or {}).get("totalProjectValue") or 0), 0.0)
            except (TypeError, ValueError):
                total = 0.0
        lines = [(INVOICE_LABEL_GENERIC, total)]
    return lines


def list_invoices(sprint_id, identity=None):
    sprint = get_sprint(sprint_id, identity)
    return (
        Invoice.query
        .filter_by(sprint_draft_id=sprint.id)
        .order_by(Invoice.sort_order.asc(), Invoice.id.asc())
        .all()
    )


def generate_invoices(sprint_id, identity):
    """Create the sprint's invoices from its latest budget plan (admin).

    Returns:
        (invoices, created, reason) — ``reason`` is "no_budget_plan" when
        there is nothing to bill from; ``created`` is False when rows
        already existed.
    """
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)

    plan = latest_budget_plan(sprint.id)
    if plan is None:
        logger.info("Invoice generation skipped, no budget plan sprint=%s", sprint.id,
                    extra={"sprint_id": sprint.id})
        return [], False, NO_BUDGET_PLAN

    existing = list_invoices(sprint.id)
    if existing:
        return existing, False, None

    lines = plan_invoice_lines(plan)
    try:
        with commit_or_rollback():
            for sort_order, (label, amount) in enumerate(lines):
                db.session.add(Invoice(
                    sprint_draft_id=sprint.id,
                    label=label,
                    amount=amount,
                    status="pending",
                    sort_order=sort_order,
                ))
            db.session.flush()
            write_changelog(
                sprint.id, "invoice.generate",
                "Generated invoices: "
                + ", ".join(f"{label} {amount:,.2f}" for label, amount in lines),
                identity=identity, details={"budget_plan_id": plan.id},
            )
    except IntegrityError:
        # Concurrent generation committed first (uq_invoice_sort_order)
        logger.info("Invoices already generated concurrently for sprint %s", sprint.id,
                    extra={"sprint_id": sprint.id})
        return list_invoices(sprint.id), False, None
    logger.info("Generated %d invoice(s) for sprint %s", len(lines), sprint.id,
                extra={"sprint_id": sprint.id})
    return list_invoices(sprint.id), True, None


def _get_invoice(sprint_id, invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None or invoice.sprint_draft_id != int(sprint_id):
        raise NotFoundError(resource="Invoice", resource_id=invoice_id)
    return invoice


def update_invoice(sprint_id, invoice_id, data, identity):
    """Edit label, amount, links, processor reference or status (admin)."""
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)
    invoice = _get_invoice(sprint.id, invoice_id)

    changes = {}
    if "label" in data:
        label = data["label"]
        if not isinstance(label, str) or not label.strip():
            raise ValidationError("label must be a non-empty string")
        changes["label"] = label.strip()
    if "amount" in data:
        changes["amount"] = _as_amount(data["amount"], "amount")
    for field in ("invoice_url", "pdf_url", "processor_ref"):
        if field in data:
            value = data[field]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field} must be a string")
            changes[field] = (value or "").strip() or None
    if "status" in data:
        if data["status"] not in INVOICE_STATUSES:
            raise ValidationError(
                f"Invalid invoice status: {data['status']}",
                details={"allowed": sorted(INVOICE_STATUSES)},
            )
        changes["status"] = data["status"]

    if not changes:
        raise ValidationError("No valid fields to update")

    with commit_or_rollback():
        for field, value in changes.items():
            setattr(invoice, field, value)
        write_changelog(
            sprint.id, "invoice.update",
            f"Invoice '{invoice.label}' updated: {', '.join(sorted(changes))}",
            identity=identity, details={"invoice_id": invoice.id, "fields": sorted(changes)},
        )
    return invoice


def delete_invoice(sprint_id, invoice_id, identity):
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)
    invoice = _get_invoice(sprint.id, invoice_id)
    with commit_or_rollback():
        label = invoice.label
        db.session.delete(invoice)
        write_changelog(sprint.id, "invoice.delete", f"Invoice '{label}' deleted",
                        identity=identity, details={"invoice_id": int(invoice_id)})
