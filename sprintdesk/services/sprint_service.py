"""Sprint composition service — business logic behind sprint_bp.

Transaction policy: every public mutation runs read → validate → write →
recompute inside commit_or_rollback(), so a sprint is never left with totals
that disagree with its composition rows.

Operations:
- Create sprint (blank or from a package)
- Add / remove deliverable, update complexity, update line content
- Recompute totals and reprice lines
- Status transitions (single table in models.sprint, guards included)
- Workshop generation / removal through the AI collaborator
- Share tokens and the public read-only view
- Change log listing
"""
import logging
import secrets
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError

from sprintdesk.ai.prompts import build_sprint_context
from sprintdesk.ai.workshop_gateway import workshop_gateway
from sprintdesk.core.exceptions import (
    AccessDeniedError,
    CatalogIntegrityError,
    ConflictError,
    GenerationError,
    NotFoundError,
    SprintLockedError,
    StateError,
    ValidationError,
)
from sprintdesk.models import db
from sprintdesk.models.ai import AIResponse
from sprintdesk.models.audit import SprintChangeLog, write_changelog
from sprintdesk.models.project import ProjectMember
from sprintdesk.models.sprint import (
    COMPOSITION_EDITABLE_STATUSES,
    GUARD_REASONS,
    ROLE_GUARDS,
    SPRINT_STATUSES,
    WORKSHOP_GENERATION_STATUSES,
    SprintDeliverable,
    SprintDraft,
    transition_guard,
)
from sprintdesk.services import catalog_service
from sprintdesk.services.pricing import (
    LINE_ITEM_RANGE,
    PricingConfig,
    clamp_complexity,
    package_line_multiplier,
    price_line,
    sum_lines,
)
from sprintdesk.utils.helpers import commit_or_rollback, parse_date_input, parse_positive_int

logger = logging.getLogger(__name__)

CHANGELOG_LIMIT = 50


def _utcnow():
    return datetime.now(timezone.utc)


def _pricing(config=None):
    return config or PricingConfig.from_app(current_app)


# ── Access ───────────────────────────────────────────────────────────────


def is_owner(sprint, identity):
    if identity is None:
        return False
    if sprint.account_id and sprint.account_id == identity.account_id:
        return True
    return bool(
        identity.email and sprint.owner_email
        and sprint.owner_email.lower() == identity.email.lower()
    )


def can_access(sprint, identity):
    """Owner, admin or member of the sprint's project."""
    if identity is None:
        return False
    if identity.is_admin or is_owner(sprint, identity):
        return True
    return ProjectMember.is_member(sprint.project_id, identity.email)


def get_sprint(sprint_id, identity=None):
    """Load a sprint, enforcing access when an identity is given.

    ``identity=None`` is an internal (system) lookup with no access check.

    Raises:
        NotFoundError: unknown sprint.
        AccessDeniedError: caller is not owner, admin or project member.
    """
    sprint = db.session.get(SprintDraft, sprint_id)
    if sprint is None:
        raise NotFoundError(resource="SprintDraft", resource_id=sprint_id)
    if identity is not None and not can_access(sprint, identity):
        logger.warning(
            "Sprint access denied sprint=%s account=%s", sprint_id, identity.account_id,
            extra={"sprint_id": sprint_id},
        )
        raise AccessDeniedError("Access denied")
    return sprint


def ensure_unlocked(sprint, identity):
    """Completed sprints are read-only for everyone but admins."""
    if sprint.status == "complete" and not (identity is not None and identity.is_admin):
        raise SprintLockedError(sprint.id)


def _ensure_composition_open(sprint, identity):
    ensure_unlocked(sprint, identity)
    if sprint.status not in COMPOSITION_EDITABLE_STATUSES:
        raise StateError(
            f"Deliverables can only be changed while the sprint is a draft (status: {sprint.status})",
            current_state=sprint.status,
        )


def _require_admin(identity):
    if identity is None or not identity.is_admin:
        raise AccessDeniedError("Admin role required")


# ── Narrative (draft JSON) ───────────────────────────────────────────────


def _narrative_add(sprint, deliverable, reason):
    draft = dict(sprint.draft or {})
    entries = [
        e for e in draft.get("deliverables") or []
        if str(e.get("deliverableId")) != str(deliverable.id)
    ]
    entries.append({"deliverableId": deliverable.id, "name": deliverable.name, "reason": reason})
    draft["deliverables"] = entries
    # New object so the JSON column is flagged dirty
    sprint.draft = draft


def _narrative_remove(sprint, deliverable_id):
    draft = dict(sprint.draft or {})
    draft["deliverables"] = [
        e for e in draft.get("deliverables") or []
        if str(e.get("deliverableId")) != str(deliverable_id)
    ]
    sprint.draft = draft


# ── Totals ───────────────────────────────────────────────────────────────


def recompute_totals(sprint, config=None):
    """Re-derive sprint totals from the current composition rows.

    Flushes first so rows added or removed in this transaction are counted.
    Caller commits.
    """
    cfg = _pricing(config)
    db.session.flush()
    rows = SprintDeliverable.query.filter_by(sprint_draft_id=sprint.id).all()
    totals = sum_lines((r.adjusted_points for r in rows), cfg)
    sprint.total_points = totals.points
    sprint.total_hours = totals.hours
    sprint.total_price = totals.price
    sprint.deliverable_count = len(rows)
    sprint.updated_at = _utcnow()
    return totals


def _apply_line_values(row, values):
    row.complexity_score = values.complexity
    row.adjusted_points = values.points
    row.adjusted_hours = values.hours
    row.adjusted_price = values.price


def _build_line(sprint, deliverable, complexity, quantity, cfg):
    """Snapshot a catalog deliverable into a new composition row."""
    values = price_line(
        deliverable.default_estimate_points, complexity, quantity, LINE_ITEM_RANGE, cfg,
    )
    row = SprintDeliverable(
        deliverable_id=deliverable.id,
        quantity=quantity,
        name=deliverable.name,
        description=deliverable.description or "",
        category=deliverable.category or "",
        scope=deliverable.scope or "",
        base_points=deliverable.default_estimate_points,
        base_hours=deliverable.fixed_hours,
        base_price=deliverable.fixed_price,
    )
    _apply_line_values(row, values)
    sprint.deliverables.append(row)
    return row


def _reprice_line(row, cfg, complexity=None):
    values = price_line(
        row.base_points,
        row.complexity_score if complexity is None else complexity,
        row.quantity,
        LINE_ITEM_RANGE,
        cfg,
    )
    _apply_line_values(row, values)
    return values


def recalculate_sprint(sprint_id, identity, config=None):
    """Reprice every line from its snapshot and recompute totals (admin)."""
    _require_admin(identity)
    cfg = _pricing(config)
    sprint = get_sprint(sprint_id, identity)
    if sprint.status == "complete":
        raise StateError("Completed sprints cannot be repriced", current_state="complete")

    with commit_or_rollback():
        for row in sprint.deliverables:
            _reprice_line(row, cfg)
        totals = recompute_totals(sprint, cfg)
    logger.info("Sprint %s recalculated: %.1f pts", sprint.id, totals.points,
                extra={"sprint_id": sprint.id})
    return sprint


# ── Create ───────────────────────────────────────────────────────────────


def _new_sprint(identity, data, default_title="Untitled Sprint", **extra):
    weeks = parse_positive_int(data.get("weeks"), "weeks", default=2)
    start_date = parse_date_input(data.get("start_date"), "start_date")
    due_date = parse_date_input(data.get("due_date"), "due_date")
    if start_date and due_date and due_date < start_date:
        raise ValidationError("due_date must not be before start_date",
                              details={"start_date": str(start_date), "due_date": str(due_date)})
    draft = data.get("draft")
    if draft is not None and not isinstance(draft, dict):
        raise ValidationError("draft must be an object", details={"draft": type(draft).__name__})

    sprint = SprintDraft(
        title=(data.get("title") or "").strip() or default_title,
        status="draft",
        account_id=getattr(identity, "account_id", None),
        owner_email=(getattr(identity, "email", "") or "").lower() or None,
        project_id=data.get("project_id"),
        draft=dict(draft or {"deliverables": []}),
        weeks=weeks,
        start_date=start_date,
        due_date=due_date,
        **extra,
    )
    db.session.add(sprint)
    db.session.flush()
    return sprint


def create_sprint(identity, data, config=None):
    """Create an empty draft sprint owned by the caller."""
    cfg = _pricing(config)
    with commit_or_rollback():
        sprint = _new_sprint(identity, data)
        recompute_totals(sprint, cfg)
        write_changelog(sprint.id, "sprint.create", f"Sprint '{sprint.title}' created",
                        identity=identity)
    logger.info("Sprint created id=%s account=%s", sprint.id, sprint.account_id,
                extra={"sprint_id": sprint.id})
    return sprint


def create_from_package(id_or_slug, identity, data=None, config=None):
    """Create a draft sprint pre-filled from a package template (purchase).

    Package name/description are snapshotted. Template complexity scores
    (1.0–5.0) are mapped onto the line-item scale. Inactive catalog
    deliverables in the package are skipped.
    """
    cfg = _pricing(config)
    data = data or {}
    package = catalog_service.get_package(id_or_slug)

    with commit_or_rollback():
        sprint = _new_sprint(
            identity, data,
            default_title=package.name,
            package_id=package.id,
            package_name=package.name,
            package_description=package.description,
        )
        for line in package.lines:
            deliverable = line.deliverable
            if deliverable is None or not deliverable.active:
                logger.warning("Skipping inactive deliverable %s in package %s",
                               line.deliverable_id, package.slug)
                continue
            quantity = line.quantity if line.quantity and line.quantity > 0 else 1
            _build_line(sprint, deliverable, package_line_multiplier(line.complexity_score),
                        quantity, cfg)
            _narrative_add(sprint, deliverable, f"Included in {package.name}")
        totals = recompute_totals(sprint, cfg)
        write_changelog(
            sprint.id, "sprint.create",
            f"Sprint created from package '{package.name}' ({totals.points:g} pts)",
            identity=identity,
            details={"package_id": package.id, "slug": package.slug},
        )
    logger.info("Sprint %s created from package %s", sprint.id, package.slug,
                extra={"sprint_id": sprint.id})
    return sprint


# ── Composition ──────────────────────────────────────────────────────────


def add_deliverable(sprint_id, deliverable_id, identity, complexity=None, quantity=None,
                    config=None):
    """Add a catalog deliverable to a draft sprint.

    Raises:
        CatalogIntegrityError: deliverable missing or inactive (nothing written).
        ConflictError: deliverable already in the sprint.
        StateError / SprintLockedError: sprint not editable.
    """
    cfg = _pricing(config)
    sprint = get_sprint(sprint_id, identity)
    _ensure_composition_open(sprint, identity)

    deliverable = catalog_service.get_active_deliverable(deliverable_id)
    if deliverable is None:
        raise CatalogIntegrityError(deliverable_id)
    if any(r.deliverable_id == deliverable.id for r in sprint.deliverables):
        raise ConflictError("SprintDeliverable", "deliverable_id", str(deliverable.id))
    qty = parse_positive_int(quantity, "quantity", default=1)

    try:
        with commit_or_rollback():
            row = _build_line(sprint, deliverable, complexity, qty, cfg)
            recompute_totals(sprint, cfg)
            _narrative_add(sprint, deliverable, "Added by user")
            write_changelog(
                sprint.id, "deliverable.add",
                f"Added {deliverable.name} (complexity {row.complexity_score:g}, "
                f"{row.adjusted_points:g} pts)",
                identity=identity,
                details={"deliverable_id": deliverable.id, "quantity": qty},
            )
    except IntegrityError:
        # Concurrent add of the same deliverable
        raise ConflictError("SprintDeliverable", "deliverable_id", str(deliverable.id))
    return row


def _line_by_catalog_id(sprint, deliverable_id):
    try:
        key = int(deliverable_id)
    except (TypeError, ValueError):
        raise NotFoundError(resource="SprintDeliverable", resource_id=deliverable_id)
    for row in sprint.deliverables:
        if row.deliverable_id == key:
            return row
    raise NotFoundError(resource="SprintDeliverable", resource_id=deliverable_id)


def remove_deliverable(sprint_id, deliverable_id, identity, config=None):
    """Remove a catalog deliverable from a draft sprint and recompute totals.

    Lines with version history are kept; their snapshots reference them.
    """
    cfg = _pricing(config)
    sprint = get_sprint(sprint_id, identity)
    _ensure_composition_open(sprint, identity)
    row = _line_by_catalog_id(sprint, deliverable_id)

    if row.versions.count():
        raise StateError(
            f"{row.name} has version history and cannot be removed",
            current_state=sprint.status,
        )

    name, catalog_id = row.name, row.deliverable_id
    with commit_or_rollback():
        sprint.deliverables.remove(row)
        totals = recompute_totals(sprint, cfg)
        _narrative_remove(sprint, catalog_id)
        write_changelog(sprint.id, "deliverable.remove", f"Removed {name}",
                        identity=identity, details={"deliverable_id": catalog_id})
    return totals


def update_complexity(sprint_id, deliverable_id, complexity, identity, config=None):
    """Set a line's complexity (admin, draft only) and recompute."""
    _require_admin(identity)
    cfg = _pricing(config)
    sprint = get_sprint(sprint_id, identity)
    _ensure_composition_open(sprint, identity)
    row = _line_by_catalog_id(sprint, deliverable_id)

    old = row.complexity_score
    new = clamp_complexity(complexity, LINE_ITEM_RANGE)
    with commit_or_rollback():
        _reprice_line(row, cfg, complexity=new)
        recompute_totals(sprint, cfg)
        write_changelog(
            sprint.id, "deliverable.complexity",
            f"Complexity of {row.name} changed {old:g} → {new:g}",
            identity=identity,
            details={"deliverable_id": row.deliverable_id, "from": old, "to": new},
        )
    return row


def get_sprint_deliverable(sprint_id, sprint_deliverable_id, identity=None):
    sprint = get_sprint(sprint_id, identity)
    row = db.session.get(SprintDeliverable, sprint_deliverable_id)
    if row is None or row.sprint_draft_id != sprint.id:
        raise NotFoundError(resource="SprintDeliverable", resource_id=sprint_deliverable_id)
    return sprint, row


def _clean_attachments(value):
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError("attachments must be a list of storage paths or URLs")
    return [v.strip() for v in value if v.strip()]


def update_deliverable(sprint_id, sprint_deliverable_id, data, identity, config=None):
    """Update a line's working content.

    Content fields are editable in every status except a locked (complete)
    sprint. A quantity change reprices the line and follows the draft-only
    composition rule.
    """
    cfg = _pricing(config)
    sprint, row = get_sprint_deliverable(sprint_id, sprint_deliverable_id, identity)
    ensure_unlocked(sprint, identity)

    changes = {}
    for field in ("content", "notes", "scope"):
        if field in data:
            value = data[field]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{field} must be a string", details={field: value})
            if field == "scope":
                changes[field] = value or ""
            else:
                changes[field] = value or None
    if "attachments" in data:
        changes["attachments"] = _clean_attachments(data["attachments"] or [])
    if "delivery_url" in data:
        url = data["delivery_url"]
        changes["delivery_url"] = (url.strip() or None) if isinstance(url, str) else None
    if "type_data" in data:
        if data["type_data"] is not None and not isinstance(data["type_data"], dict):
            raise ValidationError("type_data must be an object")
        changes["type_data"] = data["type_data"]

    quantity = None
    if "quantity" in data:
        quantity = parse_positive_int(data["quantity"], "quantity")
        if quantity != row.quantity:
            _ensure_composition_open(sprint, identity)
        else:
            quantity = None

    if not changes and quantity is None and "quantity" not in data:
        raise ValidationError("No fields to update")

    with commit_or_rollback():
        for field, value in changes.items():
            setattr(row, field, value)
        if quantity is not None:
            row.quantity = quantity
            _reprice_line(row, cfg)
            recompute_totals(sprint, cfg)
        else:
            sprint.updated_at = _utcnow()
        fields = sorted(changes) + (["quantity"] if quantity is not None else [])
        if fields:
            write_changelog(
                sprint.id, "deliverable.update",
                f"Updated {row.name}: {', '.join(fields)}",
                identity=identity,
                details={"sprint_deliverable_id": row.id, "fields": fields},
            )
    return row


# ── Status ───────────────────────────────────────────────────────────────


def _apply_transition(sprint, target, identity):
    old = sprint.status
    guard = transition_guard(old, target)
    if guard is None:
        raise StateError(f"Invalid transition: {old} → {target}", current_state=old)
    if not guard(sprint, identity):
        reason = GUARD_REASONS.get(guard, "Transition not allowed")
        if guard in ROLE_GUARDS:
            raise AccessDeniedError(reason)
        raise StateError(reason, current_state=old)
    sprint.status = target
    sprint.updated_at = _utcnow()
    return old


def transition_sprint(sprint_id, target, identity):
    """Move a sprint along the transition table, evaluating the edge guard."""
    if target not in SPRINT_STATUSES:
        raise ValidationError(
            f"Unknown status: {target}", details={"allowed": sorted(SPRINT_STATUSES)},
        )
    sprint = get_sprint(sprint_id, identity)
    with commit_or_rollback():
        old = _apply_transition(sprint, target, identity)
        write_changelog(sprint.id, "sprint.transition", f"Status changed {old} → {target}",
                        identity=identity, details={"from": old, "to": target})
    logger.info("Sprint %s transitioned %s → %s", sprint.id, old, target,
                extra={"sprint_id": sprint.id})
    return sprint


# ── Workshop ─────────────────────────────────────────────────────────────


def generate_workshop(sprint_id, identity, gateway=None):
    """Generate a workshop agenda and move the sprint to pending_client (admin).

    The AI response is always recorded. On failure the sprint is left as it
    was and GenerationError is raised.

    Returns:
        (SprintDraft, AIResponse)
    """
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)
    if sprint.status not in WORKSHOP_GENERATION_STATUSES:
        raise StateError(
            f"Cannot generate workshop for sprint in '{sprint.status}' status",
            current_state=sprint.status,
        )

    cfg = current_app.config
    result = (gateway or workshop_gateway).generate(
        build_sprint_context(sprint),
        api_key=cfg.get("OPENAI_API_KEY", ""),
        model=cfg.get("WORKSHOP_MODEL", "gpt-4o"),
        base_url=cfg.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        timeout=float(cfg.get("AI_REQUEST_TIMEOUT", 60)),
    )

    with commit_or_rollback():
        record = AIResponse(
            sprint_draft_id=sprint.id,
            purpose="workshop",
            created_by=identity.email or identity.account_id,
            prompt_hash=AIResponse.hash_prompt(result.messages),
            **result.to_log_dict(),
        )
        db.session.add(record)
        db.session.flush()
        if result.ok:
            sprint.workshop_agenda = result.agenda
            sprint.workshop_generated_at = _utcnow()
            sprint.workshop_ai_response_id = record.id
            old = _apply_transition(sprint, "pending_client", identity)
            write_changelog(
                sprint.id, "workshop.generate",
                f"Workshop generated; status {old} → pending_client",
                identity=identity, details={"ai_response_id": record.id},
            )

    if not result.ok:
        logger.error("Workshop generation failed sprint=%s ai_response=%s: %s",
                     sprint.id, record.id, result.error, extra={"sprint_id": sprint.id})
        raise GenerationError(result.error or "Workshop generation failed",
                              ai_response_id=record.id)
    return sprint, record


def remove_workshop(sprint_id, identity):
    """Clear the workshop and send the sprint back to studio_review (admin)."""
    _require_admin(identity)
    sprint = get_sprint(sprint_id, identity)
    if sprint.status != "pending_client":
        raise StateError(
            f"Workshop can only be removed while pending client review (status: {sprint.status})",
            current_state=sprint.status,
        )
    with commit_or_rollback():
        sprint.workshop_agenda = None
        sprint.workshop_generated_at = None
        sprint.workshop_ai_response_id = None
        _apply_transition(sprint, "studio_review", identity)
        write_changelog(sprint.id, "workshop.remove",
                        "Workshop removed; status pending_client → studio_review",
                        identity=identity)
    return sprint


# ── Sharing ──────────────────────────────────────────────────────────────


def get_share_token(sprint_id, identity):
    """Return the sprint's share token, creating it on first request.

    Only the owner or an admin may obtain it; anyone else gets a 404.
    """
    sprint = get_sprint(sprint_id)
    if not (identity is not None and (identity.is_admin or is_owner(sprint, identity))):
        raise NotFoundError(resource="SprintDraft", resource_id=sprint_id)
    if not sprint.share_token:
        with commit_or_rollback():
            sprint.share_token = secrets.token_urlsafe(16)
    return sprint.share_token


def get_shared_sprint(token):
    if not token:
        raise NotFoundError(resource="SharedSprint")
    sprint = SprintDraft.query.filter_by(share_token=token).first()
    if sprint is None:
        raise NotFoundError(resource="SharedSprint")
    return sprint


# ── Change log ───────────────────────────────────────────────────────────


def changelog_query(sprint_id, identity):
    """Newest-first change log query for a sprint the caller can access."""
    sprint = get_sprint(sprint_id, identity)
    return (
        SprintChangeLog.query
        .filter_by(sprint_draft_id=sprint.id)
        .order_by(SprintChangeLog.created_at.desc(), SprintChangeLog.id.desc())
    )


def list_changelog(sprint_id, identity, limit=CHANGELOG_LIMIT):
    return changelog_query(sprint_id, identity).limit(limit).all()
