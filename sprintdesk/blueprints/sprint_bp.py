"""
Sprint Blueprint — composition, versions, status, workshop and sharing.

Endpoints:
    Sprint:        POST /sprints, GET /sprints/<id>
                   POST /sprints/<id>/transition
                   POST /sprints/<id>/recalculate                          (admin)
    Composition:   POST   /sprints/<id>/deliverables
                   DELETE /sprints/<id>/deliverables/<deliverable_id>
                   PATCH  /sprints/<id>/deliverables/complexity             (admin)
                   GET|PATCH /sprints/<id>/deliverables/<sd_id>
    Versions:      GET|POST  /sprints/<id>/deliverables/<sd_id>/versions
    Workshop:      POST|DELETE /sprints/<id>/workshop                      (admin)
    Sharing:       GET /sprints/<id>/share
                   GET /shared/sprints/<token>                             (public)
    Change log:    GET /sprints/<id>/changelog
"""

from flask import Blueprint, jsonify, request

from sprintdesk import limiter
from sprintdesk.auth import current_identity, require_admin, require_auth
from sprintdesk.blueprints import paginate_query
from sprintdesk.services import sprint_service, version_ledger
from sprintdesk.utils.errors import E, api_error, register_error_handlers

sprint_bp = Blueprint("sprint", __name__, url_prefix="/api/v1")
register_error_handlers(sprint_bp)

_share_limit = limiter.shared_limit("60/minute", scope="shared_sprint")


def _sprint_payload(sprint):
    return sprint.to_dict(include_deliverables=True)


# ═════════════════════════════════════════════════════════════════════════════
# Sprint
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints", methods=["POST"])
@require_auth
def create_sprint():
    data = request.get_json(silent=True) or {}
    sprint = sprint_service.create_sprint(current_identity(), data)
    return jsonify(_sprint_payload(sprint)), 201


@sprint_bp.route("/sprints/<int:sprint_id>", methods=["GET"])
@require_auth
def get_sprint(sprint_id):
    sprint = sprint_service.get_sprint(sprint_id, current_identity())
    return jsonify(_sprint_payload(sprint))


@sprint_bp.route("/sprints/<int:sprint_id>/transition", methods=["POST"])
@require_auth
def transition_sprint(sprint_id):
    data = request.get_json(silent=True) or {}
    target = data.get("status")
    if not target:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    sprint = sprint_service.transition_sprint(sprint_id, target, current_identity())
    return jsonify(_sprint_payload(sprint))


@sprint_bp.route("/sprints/<int:sprint_id>/recalculate", methods=["POST"])
@require_auth
@require_admin
def recalculate_sprint(sprint_id):
    sprint = sprint_service.recalculate_sprint(sprint_id, current_identity())
    return jsonify(_sprint_payload(sprint))


# ═════════════════════════════════════════════════════════════════════════════
# Composition
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints/<int:sprint_id>/deliverables", methods=["POST"])
@require_auth
def add_deliverable(sprint_id):
    """Add a catalog deliverable; body: deliverable_id, complexity_score?, quantity?"""
    data = request.get_json(silent=True) or {}
    if data.get("deliverable_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "deliverable_id is required")
    row = sprint_service.add_deliverable(
        sprint_id,
        data["deliverable_id"],
        current_identity(),
        complexity=data.get("complexity_score"),
        quantity=data.get("quantity"),
    )
    return jsonify({
        "deliverable": row.to_dict(),
        "totals": row.sprint.totals_dict(),
    }), 201


@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/<int:deliverable_id>",
                 methods=["DELETE"])
@require_auth
def remove_deliverable(sprint_id, deliverable_id):
    """Remove by catalog deliverable id."""
    totals = sprint_service.remove_deliverable(sprint_id, deliverable_id, current_identity())
    return jsonify({"removed": deliverable_id, "totals": totals.to_dict()})


@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/complexity", methods=["PATCH"])
@require_auth
@require_admin
def update_complexity(sprint_id):
    data = request.get_json(silent=True) or {}
    if data.get("deliverable_id") is None or data.get("complexity_score") is None:
        return api_error(E.VALIDATION_REQUIRED,
                         "deliverable_id and complexity_score are required")
    row = sprint_service.update_complexity(
        sprint_id, data["deliverable_id"], data["complexity_score"], current_identity(),
    )
    return jsonify({"deliverable": row.to_dict(), "totals": row.sprint.totals_dict()})


@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/<int:sd_id>", methods=["GET"])
@require_auth
def get_sprint_deliverable(sprint_id, sd_id):
    _, row = sprint_service.get_sprint_deliverable(sprint_id, sd_id, current_identity())
    return jsonify(row.to_dict())


@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/<int:sd_id>", methods=["PATCH"])
@require_auth
def update_sprint_deliverable(sprint_id, sd_id):
    data = request.get_json(silent=True) or {}
    row = sprint_service.update_deliverable(sprint_id, sd_id, data, current_identity())
    return jsonify(row.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Versions
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/<int:sd_id>/versions",
                 methods=["GET"])
@require_auth
def list_versions(sprint_id, sd_id):
    versions = version_ledger.list_versions(sd_id, current_identity(), sprint_id=sprint_id)
    return jsonify({"items": [v.to_dict() for v in versions], "total": len(versions)})


@sprint_bp.route("/sprints/<int:sprint_id>/deliverables/<int:sd_id>/versions",
                 methods=["POST"])
@require_auth
def create_version(sprint_id, sd_id):
    data = request.get_json(silent=True) or {}
    if not data.get("version"):
        return api_error(E.VALIDATION_REQUIRED, "version is required")
    version = version_ledger.create_version(
        sd_id, data["version"], current_identity(), sprint_id=sprint_id,
    )
    return jsonify(version.to_dict()), 201


# ═════════════════════════════════════════════════════════════════════════════
# Workshop
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints/<int:sprint_id>/workshop", methods=["POST"])
@require_auth
@require_admin
def generate_workshop(sprint_id):
    sprint, record = sprint_service.generate_workshop(sprint_id, current_identity())
    return jsonify({
        "sprint": _sprint_payload(sprint),
        "ai_response_id": record.id,
    }), 201


@sprint_bp.route("/sprints/<int:sprint_id>/workshop", methods=["DELETE"])
@require_auth
@require_admin
def remove_workshop(sprint_id):
    sprint = sprint_service.remove_workshop(sprint_id, current_identity())
    return jsonify(_sprint_payload(sprint))


# ═════════════════════════════════════════════════════════════════════════════
# Sharing
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints/<int:sprint_id>/share", methods=["GET"])
@require_auth
def get_share_token(sprint_id):
    token = sprint_service.get_share_token(sprint_id, current_identity())
    return jsonify({"share_token": token, "path": f"/api/v1/shared/sprints/{token}"})


@sprint_bp.route("/shared/sprints/<token>", methods=["GET"])
@_share_limit
def get_shared_sprint(token):
    """Read-only public view; no authentication."""
    sprint = sprint_service.get_shared_sprint(token)
    return jsonify(sprint.to_public_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Change log
# ═════════════════════════════════════════════════════════════════════════════

@sprint_bp.route("/sprints/<int:sprint_id>/changelog", methods=["GET"])
@require_auth
def list_changelog(sprint_id):
    query = sprint_service.changelog_query(sprint_id, current_identity())
    items, total = paginate_query(query, default_limit=sprint_service.CHANGELOG_LIMIT)
    return jsonify({"items": [e.to_dict() for e in items], "total": total})
