"""
HTTP API tests — blueprints, error mapping and authentication.

Auth is disabled in TestingConfig (requests run as the dev admin) unless a
test requests the ``api_keys`` fixture.
"""

import json
from unittest.mock import patch

from sprintdesk.ai.workshop_gateway import WorkshopResult

BASE = "/api/v1"


def _create_sprint(client, headers=None, **data):
    res = client.post(f"{BASE}/sprints", json=data, headers=headers or {})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ── Health & catalog ─────────────────────────────────────────────────────


def test_health_ready(client):
    assert client.get(f"{BASE}/health/ready").get_json() == {"status": "ok"}


def test_health_live(client):
    res = client.get(f"{BASE}/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"


def test_response_carries_request_headers(client):
    res = client.get(f"{BASE}/health/ready", headers={"X-Request-ID": "req-abc"})
    assert res.headers["X-Request-ID"] == "req-abc"
    assert float(res.headers["X-Request-Duration-Ms"]) >= 0


def test_list_deliverables_hides_inactive(client, catalog):
    names = [d["name"] for d in client.get(f"{BASE}/catalog/deliverables").get_json()["items"]]
    assert "Print Collateral" not in names
    assert len(names) == 3

    res = client.get(f"{BASE}/catalog/deliverables?include_inactive=true")
    assert res.get_json()["total"] == 4


def test_get_unknown_deliverable(client):
    res = client.get(f"{BASE}/catalog/deliverables/999")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_package_preview(client, package):
    res = client.get(f"{BASE}/catalog/packages/{package.slug}/preview")
    assert res.status_code == 200
    body = res.get_json()
    assert body["total_points"] == 18.0
    assert body["total_hours"] == 180.0
    assert body["total_price"] == 18 * 1750
    assert body["deliverable_count"] == 2


def test_package_purchase(client, package):
    res = client.post(f"{BASE}/catalog/packages/{package.slug}/purchase", json={"weeks": 3})
    assert res.status_code == 201
    body = res.get_json()
    assert body["package_name"] == "Brand Identity Sprint"
    assert body["weeks"] == 3
    assert len(body["deliverables"]) == 2


# ── Sprint composition ───────────────────────────────────────────────────


def test_add_and_remove_deliverable(client, catalog):
    sprint = _create_sprint(client, title="API sprint")
    res = client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                      json={"deliverable_id": catalog["wordmark"].id, "complexity_score": 1.0})
    assert res.status_code == 201
    assert res.get_json()["totals"]["total_points"] == 8.0

    res = client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                      json={"deliverable_id": catalog["style_guide"].id, "complexity_score": 1.5})
    totals = res.get_json()["totals"]
    assert totals["total_points"] == 15.5
    assert totals["deliverable_count"] == 2

    res = client.delete(f"{BASE}/sprints/{sprint['id']}/deliverables/{catalog['wordmark'].id}")
    assert res.status_code == 200
    assert res.get_json()["totals"]["total_points"] == 7.5


def test_add_requires_deliverable_id(client):
    sprint = _create_sprint(client)
    res = client.post(f"{BASE}/sprints/{sprint['id']}/deliverables", json={})
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_non_finite_quantity_is_422(client, catalog):
    sprint = _create_sprint(client)
    url = f"{BASE}/sprints/{sprint['id']}/deliverables"
    for raw in ("Infinity", "-Infinity", "NaN", "1e400", str(10**30)):
        res = client.post(url, data=f'{{"deliverable_id": {catalog["landing"].id}, "quantity": {raw}}}',
                          content_type="application/json")
        assert res.status_code == 422, raw
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
    assert client.get(f"{BASE}/sprints/{sprint['id']}").get_json()["deliverable_count"] == 0


def test_non_finite_weeks_is_422(client):
    res = client.post(f"{BASE}/sprints", data='{"weeks": Infinity}',
                      content_type="application/json")
    assert res.status_code == 422


def test_add_inactive_deliverable_is_422(client, catalog):
    sprint = _create_sprint(client)
    res = client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                      json={"deliverable_id": catalog["retired"].id})
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_INTEGRITY_CATALOG"


def test_add_duplicate_is_409(client, catalog):
    sprint = _create_sprint(client)
    url = f"{BASE}/sprints/{sprint['id']}/deliverables"
    client.post(url, json={"deliverable_id": catalog["landing"].id})
    res = client.post(url, json={"deliverable_id": catalog["landing"].id})
    assert res.status_code == 409


def test_update_complexity_endpoint(client, catalog):
    sprint = _create_sprint(client)
    client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                json={"deliverable_id": catalog["landing"].id})
    res = client.patch(f"{BASE}/sprints/{sprint['id']}/deliverables/complexity",
                       json={"deliverable_id": catalog["landing"].id, "complexity_score": 1.5})
    assert res.status_code == 200
    assert res.get_json()["deliverable"]["adjusted_points"] == 7.5


def test_versions_endpoints(client, catalog):
    sprint = _create_sprint(client)
    row = client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                      json={"deliverable_id": catalog["landing"].id}).get_json()["deliverable"]
    url = f"{BASE}/sprints/{sprint['id']}/deliverables/{row['id']}/versions"

    assert client.post(url, json={"version": "1.0"}).status_code == 201
    assert client.post(url, json={"version": "1.0"}).status_code == 409
    assert client.post(url, json={"version": "0.9"}).status_code == 422
    assert client.post(url, json={"version": "abc"}).status_code == 422
    assert client.post(url, json={"version": "99999999999999999999.0"}).status_code == 422
    assert client.post(url, json={}).status_code == 400
    assert client.post(url, json={"version": "1.1"}).status_code == 201

    items = client.get(url).get_json()["items"]
    assert [v["version_number"] for v in items] == ["1.1", "1.0"]


def test_transition_endpoint(client):
    sprint = _create_sprint(client)
    url = f"{BASE}/sprints/{sprint['id']}/transition"
    res = client.post(url, json={"status": "pending_client"})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_STATE"
    assert client.post(url, json={"status": "studio_review"}).get_json()["status"] == \
        "studio_review"


def test_workshop_endpoint_failure_is_502(client, catalog):
    sprint = _create_sprint(client)
    failed = WorkshopResult(ok=False, status_code=500, agenda=None, raw_text="boom",
                            error="HTTP 500: boom", duration_ms=12, model="gpt-4o",
                            messages=[{"role": "user", "content": "x"}])
    with patch("sprintdesk.services.sprint_service.workshop_gateway.generate",
               return_value=failed):
        res = client.post(f"{BASE}/sprints/{sprint['id']}/workshop")
    assert res.status_code == 502
    body = res.get_json()
    assert body["code"] == "ERR_GENERATION_FAILED"
    assert body["details"]["ai_response_id"]


def test_workshop_endpoint_success(client, catalog):
    sprint = _create_sprint(client)
    agenda = {"title": "Kickoff"}
    ok = WorkshopResult(ok=True, status_code=200, agenda=agenda, raw_text=json.dumps(agenda),
                        error=None, duration_ms=12, model="gpt-4o", messages=[])
    with patch("sprintdesk.services.sprint_service.workshop_gateway.generate", return_value=ok):
        res = client.post(f"{BASE}/sprints/{sprint['id']}/workshop")
    assert res.status_code == 201
    assert res.get_json()["sprint"]["status"] == "pending_client"

    res = client.delete(f"{BASE}/sprints/{sprint['id']}/workshop")
    assert res.get_json()["status"] == "studio_review"


def test_changelog_endpoint(client, catalog):
    sprint = _create_sprint(client)
    client.post(f"{BASE}/sprints/{sprint['id']}/deliverables",
                json={"deliverable_id": catalog["landing"].id})
    body = client.get(f"{BASE}/sprints/{sprint['id']}/changelog?limit=1").get_json()
    assert body["total"] == 2
    assert [e["action"] for e in body["items"]] == ["deliverable.add"]


# ── Settlement ───────────────────────────────────────────────────────────


def test_generate_invoices_without_plan_is_400(client):
    sprint = _create_sprint(client)
    res = client.post(f"{BASE}/sprints/{sprint['id']}/invoices")
    assert res.status_code == 400
    assert res.get_json() == {"created": False, "reason": "no_budget_plan", "invoices": []}


def test_generate_invoices_flow(client):
    sprint = _create_sprint(client)
    res = client.post(f"{BASE}/sprints/{sprint['id']}/budget-plans", json={
        "inputs": {"isDeferred": True},
        "outputs": {"upfrontAmount": 500, "deferredAmount": 1500},
    })
    assert res.status_code == 201

    res = client.post(f"{BASE}/sprints/{sprint['id']}/invoices")
    assert res.status_code == 201
    body = res.get_json()
    assert body["created"] is True
    assert [(i["label"], i["amount"], i["sort_order"]) for i in body["invoices"]] == [
        ("Deposit", 500.0, 0), ("Deferred Payment", 1500.0, 1),
    ]

    res = client.post(f"{BASE}/sprints/{sprint['id']}/invoices")
    assert res.status_code == 200
    assert res.get_json()["created"] is False

    invoice_id = body["invoices"][0]["id"]
    res = client.patch(f"{BASE}/sprints/{sprint['id']}/invoices/{invoice_id}",
                       json={"processor_ref": "pi_123"})
    assert res.get_json()["processor_ref"] == "pi_123"


# ── Authentication & sharing ─────────────────────────────────────────────


def test_missing_api_key_is_401(client, api_keys):
    res = client.post(f"{BASE}/sprints", json={})
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"


def test_invalid_api_key_is_401(client, api_keys):
    res = client.get(f"{BASE}/sprints/1", headers={"X-API-Key": "nope"})
    assert res.status_code == 401


def test_outsider_gets_403(client, api_keys):
    sprint = _create_sprint(client, headers=api_keys["member"])
    res = client.get(f"{BASE}/sprints/{sprint['id']}", headers=api_keys["outsider"])
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_member_cannot_use_admin_endpoints(client, api_keys):
    sprint = _create_sprint(client, headers=api_keys["member"])
    res = client.post(f"{BASE}/sprints/{sprint['id']}/invoices", headers=api_keys["member"])
    assert res.status_code == 403


def test_member_cannot_complete_sprint(client, api_keys):
    from sprintdesk.models import db
    from sprintdesk.models.sprint import SprintDraft

    sprint = _create_sprint(client, headers=api_keys["member"])
    row = db.session.get(SprintDraft, sprint["id"])
    row.status, row.workshop_agenda = "pending_client", {"title": "Kickoff"}
    db.session.commit()

    res = client.post(f"{BASE}/sprints/{sprint['id']}/transition",
                      json={"status": "complete"}, headers=api_keys["member"])
    assert res.status_code == 403
    res = client.post(f"{BASE}/sprints/{sprint['id']}/transition",
                      json={"status": "complete"}, headers=api_keys["admin"])
    assert res.status_code == 200


def test_share_token_flow(client, api_keys, catalog):
    sprint = _create_sprint(client, headers=api_keys["member"], title="Shared")
    url = f"{BASE}/sprints/{sprint['id']}/share"

    assert client.get(url, headers=api_keys["outsider"]).status_code == 404
    token = client.get(url, headers=api_keys["member"]).get_json()["share_token"]
    assert client.get(url, headers=api_keys["admin"]).get_json()["share_token"] == token

    res = client.get(f"{BASE}/shared/sprints/{token}")
    assert res.status_code == 200
    body = res.get_json()
    assert body["title"] == "Shared"
    assert "account_id" not in body

    assert client.get(f"{BASE}/shared/sprints/not-a-token").status_code == 404


def test_mutations_require_json_content_type(client, api_keys):
    res = client.post(f"{BASE}/sprints", data="title=x",
                      headers={**api_keys["member"],
                               "Content-Type": "application/x-www-form-urlencoded"})
    assert res.status_code == 415
