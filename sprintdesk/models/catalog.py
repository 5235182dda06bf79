"""
SprintDesk
Catalog domain models — read-only reference data.

Models:
    - Deliverable: priced unit of work (points, fixed hours, fixed price)
    - SprintPackage: named bundle of deliverables
    - SprintPackageDeliverable: ordered package line with template complexity
"""

from datetime import datetime, timezone

from sprintdesk.models import db


class Deliverable(db.Model):
    """
    Catalog deliverable.

    Admin-authored and never deleted; retired entries are soft-deactivated
    with ``active=False`` so historical sprints keep their references.
    """

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(100), default="", comment="Branding | Product | Workshop | ...")
    description = db.Column(db.Text, default="")
    scope = db.Column(db.Text, default="", comment="Contractual scope text")
    default_estimate_points = db.Column(
        db.Float, nullable=True, comment="Base point value at complexity 1.0",
    )
    fixed_hours = db.Column(db.Float, nullable=True)
    fixed_price = db.Column(db.Float, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "scope": self.scope,
            "points": self.default_estimate_points,
            "fixed_hours": self.fixed_hours,
            "fixed_price": self.fixed_price,
            "active": self.active,
        }

    def __repr__(self):
        return f"<Deliverable {self.id}: {self.name}>"


class SprintPackage(db.Model):
    """Ordered bundle of catalog deliverables sold as one sprint."""

    __tablename__ = "sprint_packages"

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(120), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    tagline = db.Column(db.String(300), default="")
    category = db.Column(db.String(100), default="")
    active = db.Column(db.Boolean, nullable=False, default=True)
    sort_order = db.Column(db.Integer, default=0)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    lines = db.relationship(
        "SprintPackageDeliverable",
        backref="package",
        order_by="SprintPackageDeliverable.sort_order",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_lines=False):
        result = {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "tagline": self.tagline,
            "category": self.category,
            "active": self.active,
            "sort_order": self.sort_order,
        }
        if include_lines:
            result["deliverables"] = [line.to_dict() for line in self.lines]
        return result

    def __repr__(self):
        return f"<SprintPackage {self.id}: {self.slug}>"


class SprintPackageDeliverable(db.Model):
    """One deliverable inside a package template."""

    __tablename__ = "sprint_package_deliverables"
    __table_args__ = (
        db.UniqueConstraint("sprint_package_id", "deliverable_id", name="uq_package_deliverable"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sprint_package_id = db.Column(
        db.Integer, db.ForeignKey("sprint_packages.id", ondelete="CASCADE"), nullable=False,
    )
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="RESTRICT"), nullable=False,
    )
    quantity = db.Column(db.Integer, nullable=False, default=1)
    complexity_score = db.Column(
        db.Float, nullable=False, default=2.5,
        comment="Template complexity on the 1.0–5.0 scale; 2.5 is baseline",
    )
    sort_order = db.Column(db.Integer, default=0)

    deliverable = db.relationship("Deliverable")

    def to_dict(self):
        return {
            "deliverable_id": self.deliverable_id,
            "name": self.deliverable.name if self.deliverable else None,
            "quantity": self.quantity,
            "complexity_score": self.complexity_score,
            "sort_order": self.sort_order,
        }
