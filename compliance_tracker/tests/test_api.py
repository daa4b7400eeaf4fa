"""
Tests: FastAPI routes and error mapping.

Run with:
    pytest compliance_tracker/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from compliance_tracker.api import create_app


@pytest.fixture
def client(store):
    with TestClient(create_app(store)) as c:
        yield c


def post_action(client, payload):
    return client.post("/api/dashboard/actions", json=payload)


def create_requirement(client, **fields):
    data = {"title": "Enforce MFA", "category": "technical", **fields}
    return post_action(client, {"type": "create_requirement", "data": data})


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"


class TestActions:
    def test_create_and_read_state(self, client):
        resp = create_requirement(client, businessValueScore=4)
        assert resp.status_code == 200
        assert resp.json()["version"] == 1

        state = client.get("/api/dashboard/state").json()
        req = state["requirements"][0]
        assert req["id"] == "REQ-0001"
        assert req["businessValueScore"] == 4
        assert state["theme"] == "light"

    def test_view_applies_criteria(self, client):
        create_requirement(client, status="active")
        create_requirement(client, status="draft", title="Write policy")
        post_action(client, {"type": "set_filters", "filters": {"status": "draft"}})

        view = client.get("/api/dashboard/view").json()
        assert [r["title"] for r in view["items"]] == ["Write policy"]
        assert view["totalCount"] == 2
        assert view["filteredCount"] == 1
        assert view["aggregates"]["statusDistribution"][0]["percentage"] == 100.0

    def test_validation_error_is_422(self, client):
        resp = create_requirement(client, title="")
        assert resp.status_code == 422
        assert resp.json()["code"] == "VAL_001"

    def test_unknown_action_is_422(self, client):
        assert post_action(client, {"type": "launch_rocket"}).status_code == 422

    def test_link_integrity_is_409(self, client):
        create_requirement(client)
        resp = post_action(client, {
            "type": "link_capabilities", "requirementId": "REQ-0001", "capabilityIds": ["C-missing"],
        })
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "REF_003"
        assert body["error"] == "LinkIntegrityError"

    def test_not_found_is_404(self, client):
        resp = post_action(client, {"type": "delete_requirement", "id": "REQ-404"})
        assert resp.status_code == 404
        assert resp.json()["details"]["id"] == "REQ-404"

    def test_purge_requires_token(self, client):
        create_requirement(client)
        assert post_action(client, {"type": "purge_all"}).status_code == 422
        assert post_action(client, {"type": "purge_all", "confirmation": "DELETE"}).status_code == 200
        assert client.get("/api/dashboard/state").json()["requirements"] == []


class TestCsvEndpoints:
    def test_import_upload(self, client):
        csv_bytes = b"title,category,status\nA,technical,active\nB,technical,Bogus\n"
        resp = client.post(
            "/api/dashboard/import",
            files={"file": ("reqs.csv", csv_bytes, "text/csv")},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["admitted_count"] == 1
        assert body["rejected_count"] == 1
        assert body["report"]["errors"][0]["row"] == 2

    def test_import_bad_header(self, client):
        resp = client.post(
            "/api/dashboard/import",
            files={"file": ("reqs.csv", b"foo,bar\n1,2\n", "text/csv")},
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VAL_005"

    def test_export(self, client):
        create_requirement(client, tags=["iam", "mfa"])
        resp = client.get("/api/dashboard/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.startswith("id,title,description,category")
        assert "iam;mfa" in resp.text


class TestQueries:
    def test_requirements_for_capability(self, client):
        post_action(client, {"type": "create_capability", "data": {"name": "IdP"}})
        create_requirement(client, capabilityIds=["CAP-0001"])
        create_requirement(client, title="Unlinked")
        resp = client.get("/api/dashboard/capabilities/CAP-0001/requirements")
        assert [r["title"] for r in resp.json()] == ["Enforce MFA"]

    def test_requirements_for_framework(self, client):
        create_requirement(client, framework="SOC 2")
        resp = client.get("/api/dashboard/frameworks/SOC 2/requirements")
        assert len(resp.json()) == 1


class TestWebSocket:
    def test_new_client_receives_recent_commits(self, client):
        create_requirement(client)
        with client.websocket_connect("/api/dashboard/ws") as ws:
            event = ws.receive_json()
        assert event["event"] == "commit"
        assert event["action"] == "create_requirement"
        assert event["version"] == 1
