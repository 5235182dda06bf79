"""
Shared pytest fixtures for the SprintDesk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / member / outsider: caller identities
    - catalog: four deliverables (one inactive)
    - package: "brand-identity-sprint" built from the catalog
"""

import pytest

from sprintdesk import create_app
from sprintdesk.auth import Identity
from sprintdesk.models import db as _db
from sprintdesk.models.catalog import Deliverable, SprintPackage, SprintPackageDeliverable
from sprintdesk.services.pricing import PricingConfig


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def pricing():
    return PricingConfig(hours_per_point=10, price_per_point=1750)


# ── Identities ───────────────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return Identity(account_id="acct_admin", email="ops@studio.test", is_admin=True)


@pytest.fixture()
def member():
    return Identity(account_id="acct_client", email="founder@client.test")


@pytest.fixture()
def outsider():
    return Identity(account_id="acct_other", email="someone@elsewhere.test")


@pytest.fixture()
def api_keys(monkeypatch):
    """Enable API-key auth with one admin key and one member key."""
    monkeypatch.setenv("API_AUTH_ENABLED", "true")
    monkeypatch.setenv(
        "API_KEYS",
        "admin-key:admin:acct_admin:ops@studio.test,"
        "member-key:member:acct_client:founder@client.test,"
        "other-key:member:acct_other:someone@elsewhere.test",
    )
    return {
        "admin": {"X-API-Key": "admin-key"},
        "member": {"X-API-Key": "member-key"},
        "outsider": {"X-API-Key": "other-key"},
    }


# ── Catalog fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def catalog():
    """Four catalog deliverables keyed by short name; ``retired`` is inactive."""
    items = {
        "wordmark": Deliverable(
            name="Typography Scale + Wordmark Logo", category="Branding",
            scope="Logo, type scale", default_estimate_points=8,
            fixed_hours=20, fixed_price=3000,
        ),
        "style_guide": Deliverable(
            name="Brand Style Guide", category="Branding",
            scope="20 page guide", default_estimate_points=5,
            fixed_hours=12, fixed_price=2000,
        ),
        "landing": Deliverable(
            name="Landing Page", category="Product",
            scope="Responsive page", default_estimate_points=5,
        ),
        "retired": Deliverable(
            name="Print Collateral", category="Branding",
            default_estimate_points=3, active=False,
        ),
    }
    _db.session.add_all(items.values())
    _db.session.commit()
    return items


@pytest.fixture()
def package(catalog):
    """Package with template scores 2.5 (×1.0), 5.0 (×2.0) and an inactive line."""
    pkg = SprintPackage(
        slug="brand-identity-sprint", name="Brand Identity Sprint",
        description="Complete brand foundation in 2 weeks", category="Branding",
    )
    pkg.lines = [
        SprintPackageDeliverable(deliverable=catalog["wordmark"], complexity_score=2.5,
                                 sort_order=0),
        SprintPackageDeliverable(deliverable=catalog["style_guide"], complexity_score=5.0,
                                 sort_order=1),
        SprintPackageDeliverable(deliverable=catalog["retired"], complexity_score=2.5,
                                 sort_order=2),
    ]
    _db.session.add(pkg)
    _db.session.commit()
    return pkg
