"""Complexity pricing — pure functions, no database access.

adjusted points = round(base points × complexity × quantity, 1)
hours           = adjusted points × HOURS_PER_POINT
price           = adjusted points × PRICE_PER_POINT

The valid complexity range depends on where the score came from, so every
caller passes a ComplexityRange explicitly:
    - LINE_ITEM_RANGE        [0.5, 2.0]  sprint composition edits
    - PACKAGE_TEMPLATE_RANGE [1.0, 5.0]  package template scores (2.5 = baseline)
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_COMPLEXITY = 1.0
DEFAULT_HOURS_PER_POINT = 10.0
DEFAULT_PRICE_PER_POINT = 1750.0
PACKAGE_TEMPLATE_BASELINE = 2.5


@dataclass(frozen=True)
class ComplexityRange:
    minimum: float
    maximum: float

    def clamp(self, value: float) -> float:
        return max(self.minimum, min(self.maximum, value))


LINE_ITEM_RANGE = ComplexityRange(0.5, 2.0)
PACKAGE_TEMPLATE_RANGE = ComplexityRange(1.0, 5.0)


@dataclass(frozen=True)
class PricingConfig:
    """Conversion ratios from points to hours and price."""
    hours_per_point: float = DEFAULT_HOURS_PER_POINT
    price_per_point: float = DEFAULT_PRICE_PER_POINT

    @classmethod
    def from_app(cls, app) -> "PricingConfig":
        """Build from a Flask app (or any mapping-like ``config``)."""
        cfg = getattr(app, "config", app)
        return cls(
            hours_per_point=float(cfg.get("HOURS_PER_POINT", DEFAULT_HOURS_PER_POINT)),
            price_per_point=float(cfg.get("PRICE_PER_POINT", DEFAULT_PRICE_PER_POINT)),
        )


@dataclass(frozen=True)
class LineValues:
    complexity: float
    points: float
    hours: float
    price: float

    def to_dict(self) -> dict:
        return {
            "complexity_score": self.complexity,
            "adjusted_points": self.points,
            "adjusted_hours": self.hours,
            "adjusted_price": self.price,
        }


@dataclass(frozen=True)
class Totals:
    points: float
    hours: float
    price: float

    def to_dict(self) -> dict:
        return {"total_points": self.points, "total_hours": self.hours, "total_price": self.price}


def _to_float(value, default):
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if result != result:  # NaN
        return default
    return result


def clamp_complexity(value, rng: ComplexityRange) -> float:
    """Coerce ``value`` to a float inside ``rng``; unusable input becomes 1.0 first."""
    return rng.clamp(_to_float(value, DEFAULT_COMPLEXITY))


def price_totals(points, config: PricingConfig) -> Totals:
    """Derive hours and price for an aggregate point total."""
    pts = round(_to_float(points, 0.0), 1)
    return Totals(
        points=pts,
        hours=round(pts * config.hours_per_point, 2),
        price=round(pts * config.price_per_point, 2),
    )


def price_line(base_points, complexity, quantity, rng: ComplexityRange,
               config: PricingConfig) -> LineValues:
    """Price a single composition line.

    Zero or missing base points yields all-zero values, never an error.
    """
    c = clamp_complexity(complexity, rng)
    q = _to_float(quantity, 1.0)
    if q < 1:
        q = 1.0
    base = _to_float(base_points, 0.0)
    if base <= 0:
        return LineValues(complexity=c, points=0.0, hours=0.0, price=0.0)

    adjusted = round(base * c * q, 1)
    totals = price_totals(adjusted, config)
    return LineValues(complexity=c, points=totals.points, hours=totals.hours, price=totals.price)


def sum_lines(adjusted_points, config: PricingConfig) -> Totals:
    """Aggregate already-adjusted line points (quantity included) into totals."""
    return price_totals(sum(_to_float(p, 0.0) for p in adjusted_points), config)


def package_line_multiplier(template_score) -> float:
    """Map a 1.0–5.0 template score onto the line-item multiplier scale.

    The template score is clamped to its own range, divided by the 2.5
    baseline, then clamped to the line-item range.
    """
    score = clamp_complexity(
        PACKAGE_TEMPLATE_BASELINE if template_score is None else template_score,
        PACKAGE_TEMPLATE_RANGE,
    )
    return LINE_ITEM_RANGE.clamp(round(score / PACKAGE_TEMPLATE_BASELINE, 2))


def preview_package(package, config: PricingConfig) -> dict:
    """Price a package at its template complexities.

    Only active catalog deliverables are counted, matching what a purchase
    of the package would put in the sprint.
    """
    lines = []
    for line in package.lines:
        deliverable = line.deliverable
        if deliverable is None or not deliverable.active:
            continue
        values = price_line(
            deliverable.default_estimate_points,
            package_line_multiplier(line.complexity_score),
            line.quantity,
            LINE_ITEM_RANGE,
            config,
        )
        lines.append({
            "deliverable_id": deliverable.id,
            "name": deliverable.name,
            "quantity": line.quantity,
            "template_complexity": clamp_complexity(line.complexity_score, PACKAGE_TEMPLATE_RANGE),
            "base_points": deliverable.default_estimate_points,
            **values.to_dict(),
        })

    totals = sum_lines((l["adjusted_points"] for l in lines), config)
    return {
        "package_id": package.id,
        "slug": package.slug,
        "name": package.name,
        **totals.to_dict(),
        "deliverable_count": len(lines),
        "deliverables": lines,
    }
