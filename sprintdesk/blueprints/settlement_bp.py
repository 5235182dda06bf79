"""
Settlement Blueprint — budget plans and invoices.

Endpoints:
    POST   /api/v1/sprints/<id>/budget-plans                  (admin)
    GET    /api/v1/sprints/<id>/budget-plans/latest
    GET    /api/v1/sprints/<id>/invoices
    POST   /api/v1/sprints/<id>/invoices                      (admin, generate)
    PATCH  /api/v1/sprints/<id>/invoices/<invoice_id>         (admin)
    DELETE /api/v1/sprints/<id>/invoices/<invoice_id>         (admin)
"""

from flask import Blueprint, jsonify, request

from sprintdesk.auth import current_identity, require_admin, require_auth
from sprintdesk.services import settlement_service
from sprintdesk.utils.errors import E, api_error, register_error_handlers

settlement_bp = Blueprint("settlement", __name__, url_prefix="/api/v1/sprints")
register_error_handlers(settlement_bp)


@settlement_bp.route("/<int:sprint_id>/budget-plans", methods=["POST"])
@require_auth
@require_admin
def record_budget_plan(sprint_id):
    data = request.get_json(silent=True) or {}
    if "outputs" not in data:
        return api_error(E.VALIDATION_REQUIRED, "outputs is required")
    plan = settlement_service.record_budget_plan(sprint_id, data, current_identity())
    return jsonify(plan.to_dict()), 201


@settlement_bp.route("/<int:sprint_id>/budget-plans/latest", methods=["GET"])
@require_auth
def latest_budget_plan(sprint_id):
    plan = settlement_service.get_latest_budget_plan(sprint_id, current_identity())
    return jsonify(plan.to_dict())


@settlement_bp.route("/<int:sprint_id>/invoices", methods=["GET"])
@require_auth
def list_invoices(sprint_id):
    invoices = settlement_service.list_invoices(sprint_id, current_identity())
    return jsonify({"items": [i.to_dict() for i in invoices], "total": len(invoices)})


@settlement_bp.route("/<int:sprint_id>/invoices", methods=["POST"])
@require_auth
@require_admin
def generate_invoices(sprint_id):
    """Generate invoices from the latest budget plan (once per sprint)."""
    invoices, created, reason = settlement_service.generate_invoices(
        sprint_id, current_identity(),
    )
    body = {"created": created, "invoices": [i.to_dict() for i in invoices]}
    if reason:
        body["reason"] = reason
        return jsonify(body), 400
    return jsonify(body), 201 if created else 200


@settlement_bp.route("/<int:sprint_id>/invoices/<int:invoice_id>", methods=["PATCH"])
@require_auth
@require_admin
def update_invoice(sprint_id, invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = settlement_service.update_invoice(sprint_id, invoice_id, data, current_identity())
    return jsonify(invoice.to_dict())


@settlement_bp.route("/<int:sprint_id>/invoices/<int:invoice_id>", methods=["DELETE"])
@require_auth
@require_admin
def delete_invoice(sprint_id, invoice_id):
    settlement_service.delete_invoice(sprint_id, invoice_id, current_identity())
    return jsonify({"deleted": True, "id": invoice_id})
