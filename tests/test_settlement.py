"""
Settlement tests — budget plans and invoice generation.

Generation is one-shot per sprint: the first call emits invoices from the
latest budget plan, later calls return the same rows with created=False.
"""

import pytest
from sqlalchemy.exc import IntegrityError

from sprintdesk.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from sprintdesk.models import db
from sprintdesk.models.audit import SprintChangeLog
from sprintdesk.models.settlement import BudgetPlan, Invoice
from sprintdesk.services import settlement_service, sprint_service
from sprintdesk.services.settlement_service import NO_BUDGET_PLAN, plan_invoice_lines


@pytest.fixture()
def sprint(member, pricing):
    return sprint_service.create_sprint(member, {"title": "Settlement"}, pricing)


def _plan(sprint, admin, inputs=None, **outputs):
    return settlement_service.record_budget_plan(
        sprint.id, {"inputs": inputs or {}, "outputs": outputs}, admin,
    )


# ── Line planning ────────────────────────────────────────────────────────


def test_deferred_plan_lines(sprint, admin):
    plan = _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=500, deferredAmount=1500)
    assert plan_invoice_lines(plan) == [("Deposit", 500.0), ("Deferred Payment", 1500.0)]


def test_standard_plan_lines(sprint, admin):
    plan = _plan(sprint, admin, {"isDeferred": False},
                 upfrontAmount=4000, remainingOnCompletion=6000, deferredAmount=999)
    assert plan_invoice_lines(plan) == [("Deposit", 4000.0), ("Final Payment", 6000.0)]


def test_missing_flag_means_deferred(sprint, admin):
    plan = _plan(sprint, admin, {}, upfrontAmount=100, deferredAmount=200)
    assert plan.is_deferred
    assert [label for label, _ in plan_invoice_lines(plan)] == ["Deposit", "Deferred Payment"]


def test_zero_amounts_skipped(sprint, admin):
    plan = _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=0, deferredAmount=800)
    assert plan_invoice_lines(plan) == [("Deferred Payment", 800.0)]


def test_generic_invoice_from_total(sprint, admin):
    plan = _plan(sprint, admin, {"isDeferred": False}, totalProjectValue=12000)
    assert plan_invoice_lines(plan) == [("Invoice", 12000.0)]


def test_generic_invoice_falls_back_to_inputs(sprint, admin):
    plan = _plan(sprint, admin, {"isDeferred": False, "totalProjectValue": 3000})
    assert plan_invoice_lines(plan) == [("Invoice", 3000.0)]


# ── Budget plans ─────────────────────────────────────────────────────────


def test_record_plan_requires_admin(sprint, member):
    with pytest.raises(AccessDeniedError):
        settlement_service.record_budget_plan(sprint.id, {"outputs": {}}, member)


@pytest.mark.parametrize("data", [
    {"outputs": {"upfrontAmount": -1}},
    {"outputs": {"deferredAmount": "lots"}},
    {"inputs": {"isDeferred": "yes"}, "outputs": {}},
    {"inputs": {"milestoneMissOutcome": "walk_away"}, "outputs": {}},
    {"inputs": {"milestones": [{"multiplier": -2}]}, "outputs": {}},
    {"inputs": [], "outputs": {}},
])
def test_record_plan_validation(sprint, admin, data):
    with pytest.raises(ValidationError):
        settlement_service.record_budget_plan(sprint.id, data, admin)
    assert BudgetPlan.query.count() == 0


def test_latest_plan_wins(sprint, admin):
    _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=1)
    newest = _plan(sprint, admin, {"isDeferred": False}, upfrontAmount=2)
    assert settlement_service.get_latest_budget_plan(sprint.id, admin).id == newest.id


def test_latest_plan_missing(sprint, admin):
    with pytest.raises(NotFoundError):
        settlement_service.get_latest_budget_plan(sprint.id, admin)


# ── Generation ───────────────────────────────────────────────────────────


def test_generate_without_plan(sprint, admin):
    invoices, created, reason = settlement_service.generate_invoices(sprint.id, admin)
    assert (invoices, created, reason) == ([], False, NO_BUDGET_PLAN)
    assert Invoice.query.count() == 0


def test_generate_deferred_scenario(sprint, admin):
    _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=500, deferredAmount=1500)

    invoices, created, reason = settlement_service.generate_invoices(sprint.id, admin)
    assert created is True
    assert reason is None
    assert [(i.label, i.amount, i.sort_order, i.status) for i in invoices] == [
        ("Deposit", 500.0, 0, "pending"),
        ("Deferred Payment", 1500.0, 1, "pending"),
    ]

    again, created_again, _ = settlement_service.generate_invoices(sprint.id, admin)
    assert created_again is False
    assert [i.id for i in again] == [i.id for i in invoices]
    assert Invoice.query.count() == 2


def test_generate_ignores_newer_plan_once_invoiced(sprint, admin):
    _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=500, deferredAmount=1500)
    settlement_service.generate_invoices(sprint.id, admin)
    _plan(sprint, admin, {"isDeferred": False}, upfrontAmount=1, remainingOnCompletion=1)

    invoices, created, _ = settlement_service.generate_invoices(sprint.id, admin)
    assert created is False
    assert [i.label for i in invoices] == ["Deposit", "Deferred Payment"]


def test_invoice_sort_order_unique_per_sprint(sprint):
    db.session.add(Invoice(sprint_draft_id=sprint.id, label="Deposit", amount=1, sort_order=0))
    db.session.commit()
    db.session.add(Invoice(sprint_draft_id=sprint.id, label="Deposit", amount=1, sort_order=0))
    with pytest.raises(IntegrityError):
        db.session.commit()
    db.session.rollback()


def test_generate_loses_race_returns_existing(sprint, admin, monkeypatch):
    _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=500, deferredAmount=1500)
    # Another request committed its invoices after this one checked for rows
    db.session.add(Invoice(sprint_draft_id=sprint.id, label="Deposit", amount=500, sort_order=0))
    db.session.commit()

    real_list = settlement_service.list_invoices
    calls = []

    def list_invoices_stale_once(sprint_id, identity=None):
        calls.append(sprint_id)
        if len(calls) == 1:
            return []
        return real_list(sprint_id, identity)

    monkeypatch.setattr(settlement_service, "list_invoices", list_invoices_stale_once)
    invoices, created, reason = settlement_service.generate_invoices(sprint.id, admin)

    assert created is False
    assert reason is None
    assert [(i.label, i.sort_order) for i in invoices] == [("Deposit", 0)]
    assert Invoice.query.filter_by(sprint_draft_id=sprint.id).count() == 1
    assert SprintChangeLog.query.filter_by(action="invoice.generate").count() == 0


def test_generate_requires_admin(sprint, member):
    with pytest.raises(AccessDeniedError):
        settlement_service.generate_invoices(sprint.id, member)


# ── Invoice edits ────────────────────────────────────────────────────────


@pytest.fixture()
def invoices(sprint, admin):
    _plan(sprint, admin, {"isDeferred": True}, upfrontAmount=500, deferredAmount=1500)
    rows, _, _ = settlement_service.generate_invoices(sprint.id, admin)
    return rows


def test_update_invoice(sprint, admin, invoices):
    invoice = settlement_service.update_invoice(
        sprint.id, invoices[0].id,
        {"processor_ref": " pi_123 ", "invoice_url": "https://pay.test/i/1", "status": "paid"},
        admin,
    )
    assert invoice.processor_ref == "pi_123"
    assert invoice.invoice_url == "https://pay.test/i/1"
    assert invoice.status == "paid"


@pytest.mark.parametrize("data", [
    {"status": "refunded"},
    {"amount": -5},
    {"label": "   "},
    {"pdf_url": 12},
    {},
])
def test_update_invoice_validation(sprint, admin, invoices, data):
    with pytest.raises(ValidationError):
        settlement_service.update_invoice(sprint.id, invoices[0].id, data, admin)


def test_update_invoice_must_belong_to_sprint(admin, invoices, member, pricing):
    other = sprint_service.create_sprint(member, {}, pricing)
    with pytest.raises(NotFoundError):
        settlement_service.update_invoice(other.id, invoices[0].id, {"status": "paid"}, admin)


def test_delete_invoice(sprint, admin, invoices):
    settlement_service.delete_invoice(sprint.id, invoices[1].id, admin)
    assert [i.label for i in settlement_service.list_invoices(sprint.id, admin)] == ["Deposit"]
    assert db.session.get(Invoice, invoices[1].id) is None
