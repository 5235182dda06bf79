"""
Catalog Blueprint — deliverables, packages, preview and purchase.

Endpoints:
    GET  /api/v1/catalog/deliverables                        ?category=&include_inactive=
    GET  /api/v1/catalog/deliverables/<id>
    GET  /api/v1/catalog/packages
    GET  /api/v1/catalog/packages/<id_or_slug>
    GET  /api/v1/catalog/packages/<id_or_slug>/preview
    POST /api/v1/catalog/packages/<id_or_slug>/purchase      → new draft sprint
"""

from flask import Blueprint, jsonify, request

from sprintdesk.auth import current_identity
from sprintdesk.services import catalog_service, sprint_service
from sprintdesk.utils.errors import register_error_handlers

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/v1/catalog")
register_error_handlers(catalog_bp)


def _flag(name):
    return request.args.get(name, "").lower() in ("1", "true", "yes")


@catalog_bp.route("/deliverables", methods=["GET"])
def list_deliverables():
    items = catalog_service.list_deliverables(
        category=request.args.get("category") or None,
        include_inactive=_flag("include_inactive"),
    )
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@catalog_bp.route("/deliverables/<int:deliverable_id>", methods=["GET"])
def get_deliverable(deliverable_id):
    return jsonify(catalog_service.get_deliverable(deliverable_id).to_dict())


@catalog_bp.route("/packages", methods=["GET"])
def list_packages():
    items = catalog_service.list_packages(include_inactive=_flag("include_inactive"))
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)})


@catalog_bp.route("/packages/<id_or_slug>", methods=["GET"])
def get_package(id_or_slug):
    package = catalog_service.get_package(id_or_slug)
    return jsonify(package.to_dict(include_lines=True))


@catalog_bp.route("/packages/<id_or_slug>/preview", methods=["GET"])
def preview_package(id_or_slug):
    """Totals the package would produce if purchased now."""
    return jsonify(catalog_service.preview(id_or_slug))


@catalog_bp.route("/packages/<id_or_slug>/purchase", methods=["POST"])
def purchase_package(id_or_slug):
    """Create a draft sprint pre-filled from the package."""
    data = request.get_json(silent=True) or {}
    sprint = sprint_service.create_from_package(id_or_slug, current_identity(), data)
    return jsonify(sprint.to_dict(include_deliverables=True)), 201
