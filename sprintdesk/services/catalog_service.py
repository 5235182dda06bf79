"""Catalog service — read-only access to deliverables and packages.

Catalog rows are authored by admins through seeding (`flask seed-catalog`);
request handlers only read them. Inactive rows are hidden from listings
unless explicitly requested.
"""
import logging

from flask import current_app

from sprintdesk.core.exceptions import NotFoundError, ValidationError
from sprintdesk.models import db
from sprintdesk.models.catalog import Deliverable, SprintPackage, SprintPackageDeliverable
from sprintdesk.services.pricing import PricingConfig, preview_package
from sprintdesk.utils.helpers import commit_or_rollback

logger = logging.getLogger(__name__)


def list_deliverables(*, category=None, include_inactive=False):
    q = Deliverable.query
    if not include_inactive:
        q = q.filter(Deliverable.active.is_(True))
    if category:
        q = q.filter(Deliverable.category == category)
    return q.order_by(Deliverable.name.asc()).all()


def get_deliverable(deliverable_id):
    deliverable = db.session.get(Deliverable, deliverable_id)
    if deliverable is None:
        raise NotFoundError(resource="Deliverable", resource_id=deliverable_id)
    return deliverable


def get_active_deliverable(deliverable_id):
    """Return the deliverable if it exists and is active, else None."""
    try:
        key = int(deliverable_id)
    except (TypeError, ValueError):
        return None
    deliverable = db.session.get(Deliverable, key)
    if deliverable is None or not deliverable.active:
        return None
    return deliverable


def list_packages(*, include_inactive=False):
    q = SprintPackage.query
    if not include_inactive:
        q = q.filter(SprintPackage.active.is_(True))
    return q.order_by(SprintPackage.sort_order.asc(), SprintPackage.name.asc()).all()


def get_package(id_or_slug, *, active_only=True):
    """Look up a package by numeric id or slug.

    Raises:
        NotFoundError: unknown package, or inactive when ``active_only``.
    """
    package = None
    if isinstance(id_or_slug, int) or str(id_or_slug).isdigit():
        package = db.session.get(SprintPackage, int(id_or_slug))
    if package is None:
        package = SprintPackage.query.filter_by(slug=str(id_or_slug)).first()
    if package is None or (active_only and not package.active):
        raise NotFoundError(resource="SprintPackage", resource_id=id_or_slug)
    return package


def preview(id_or_slug, config=None):
    package = get_package(id_or_slug)
    return preview_package(package, config or PricingConfig.from_app(current_app))


# ── Seeding ──────────────────────────────────────────────────────────────

_DELIVERABLE_FIELDS = (
    "category", "description", "scope",
    "default_estimate_points", "fixed_hours", "fixed_price", "active",
)
_PACKAGE_FIELDS = ("name", "description", "tagline", "category", "active", "sort_order")


def seed_catalog(data):
    """Insert catalog deliverables and packages that do not exist yet.

    ``data`` holds ``deliverables`` (matched by name) and ``packages``
    (matched by slug). Package lines name their deliverable; existing rows
    are left untouched.

    Returns:
        (deliverables_inserted, packages_inserted)
    """
    new_deliverables = 0
    new_packages = 0
    with commit_or_rollback():
        by_name = {d.name: d for d in Deliverable.query.all()}
        for item in data.get("deliverables") or []:
            name = (item.get("name") or "").strip()
            if not name:
                raise ValidationError("Catalog deliverable without a name", details=item)
            if name in by_name:
                continue
            deliverable = Deliverable(
                name=name, **{k: item[k] for k in _DELIVERABLE_FIELDS if k in item},
            )
            db.session.add(deliverable)
            by_name[name] = deliverable
            new_deliverables += 1
        db.session.flush()

        for item in data.get("packages") or []:
            slug = (item.get("slug") or "").strip()
            if not slug or not item.get("name"):
                raise ValidationError("Catalog package needs a slug and a name", details=item)
            if SprintPackage.query.filter_by(slug=slug).first() is not None:
                continue
            package = SprintPackage(
                slug=slug, **{k: item[k] for k in _PACKAGE_FIELDS if k in item},
            )
            for order, line in enumerate(item.get("deliverables") or []):
                if isinstance(line, str):
                    line = {"name": line}
                deliverable = by_name.get(line.get("name"))
                if deliverable is None:
                    raise ValidationError(
                        f"Package {slug} references unknown deliverable",
                        details={"name": line.get("name")},
                    )
                package.lines.append(SprintPackageDeliverable(
                    deliverable=deliverable,
                    quantity=line.get("quantity", 1),
                    complexity_score=line.get("complexity_score", 2.5),
                    sort_order=order,
                ))
            db.session.add(package)
            new_packages += 1
    logger.info("Catalog seeded: %d deliverables, %d packages", new_deliverables, new_packages)
    return new_deliverables, new_packages
