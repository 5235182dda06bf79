"""Catalog service: listings, package lookup and seeding."""

import pytest

from sprintdesk.core.exceptions import NotFoundError, ValidationError
from sprintdesk.models.catalog import Deliverable, SprintPackage
from sprintdesk.services import catalog_service


SEED = {
    "deliverables": [
        {"name": "Pitch Deck", "category": "Fundraising", "default_estimate_points": 5},
        {"name": "Financial Model", "category": "Fundraising", "default_estimate_points": 8,
         "fixed_hours": 24, "fixed_price": 4000},
    ],
    "packages": [
        {
            "slug": "fundraising-sprint",
            "name": "Fundraising Sprint",
            "category": "Fundraising",
            "deliverables": [
                "Pitch Deck",
                {"name": "Financial Model", "complexity_score": 3.5, "quantity": 1},
            ],
        },
    ],
}


def test_list_deliverables_by_category(catalog):
    names = [d.name for d in catalog_service.list_deliverables(category="Branding")]
    assert names == ["Brand Style Guide", "Typography Scale + Wordmark Logo"]


def test_list_deliverables_include_inactive(catalog):
    rows = catalog_service.list_deliverables(category="Branding", include_inactive=True)
    assert "Print Collateral" in [d.name for d in rows]


def test_get_active_deliverable(catalog):
    assert catalog_service.get_active_deliverable(catalog["landing"].id) is catalog["landing"]
    assert catalog_service.get_active_deliverable(catalog["retired"].id) is None
    assert catalog_service.get_active_deliverable("not-an-id") is None
    assert catalog_service.get_active_deliverable(99999) is None


def test_get_package_by_id_or_slug(package):
    assert catalog_service.get_package(package.id) is package
    assert catalog_service.get_package(str(package.id)) is package
    assert catalog_service.get_package("brand-identity-sprint") is package


def test_inactive_package_is_hidden(package):
    package.active = False
    with pytest.raises(NotFoundError):
        catalog_service.get_package(package.slug)
    assert catalog_service.get_package(package.slug, active_only=False) is package
    assert catalog_service.list_packages() == []


def test_seed_catalog_inserts_rows():
    assert catalog_service.seed_catalog(SEED) == (2, 1)

    package = SprintPackage.query.filter_by(slug="fundraising-sprint").one()
    assert [(l.deliverable.name, l.complexity_score, l.sort_order) for l in package.lines] == [
        ("Pitch Deck", 2.5, 0),
        ("Financial Model", 3.5, 1),
    ]
    model = Deliverable.query.filter_by(name="Financial Model").one()
    assert model.fixed_price == 4000


def test_seed_catalog_skips_existing_rows():
    catalog_service.seed_catalog(SEED)
    assert catalog_service.seed_catalog(SEED) == (0, 0)
    assert Deliverable.query.count() == 2
    assert SprintPackage.query.count() == 1


def test_seed_catalog_unknown_deliverable():
    data = {"packages": [{"slug": "x", "name": "X", "deliverables": ["Nope"]}]}
    with pytest.raises(ValidationError):
        catalog_service.seed_catalog(data)
    assert SprintPackage.query.count() == 0


def test_seed_catalog_requires_names():
    with pytest.raises(ValidationError):
        catalog_service.seed_catalog({"deliverables": [{"category": "Branding"}]})


def test_seed_catalog_cli(app, tmp_path):
    import json

    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(SEED), encoding="utf-8")
    result = app.test_cli_runner().invoke(args=["seed-catalog", str(path)])
    assert result.exit_code == 0, result.output
    assert Deliverable.query.count() == 2
