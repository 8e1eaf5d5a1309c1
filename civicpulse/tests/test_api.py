"""
API Contract Tests
==================

HTTP surface: auth, issue reporting, role gating, verify-resolve, reporting
views, infrastructure CRUD and the error body shape.
"""

import os
from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from civicpulse.api import (
    app,
    get_verifier_dependency, get_notifier_dependency, get_geocoder_dependency,
    get_categorizer_dependency, get_storage_dependency,
)
from civicpulse.auth import issue_token_for
from civicpulse.storage import LocalImageStorage
from civicpulse.webhooks import ImageCategorizer, ReverseGeocoder, VerificationVerdict
from civicpulse.workflow import IssueWorkflow

PNG = b"\x89PNG\r\n\x1a\n fake image bytes"


@dataclass
class Harness:
    client: TestClient
    verifier: object
    notifier: object
    storage: LocalImageStorage


@pytest.fixture
def api(sqlalchemy_db, tmp_path, verifier, notifier):
    storage = LocalImageStorage(base_path=str(tmp_path / "media"), base_url="/media")
    geocoder = ReverseGeocoder(url="https://geo.civic.local/reverse", enabled=False)
    categorizer = ImageCategorizer(url="")

    app.dependency_overrides[get_verifier_dependency] = lambda: verifier
    app.dependency_overrides[get_notifier_dependency] = lambda: notifier
    app.dependency_overrides[get_geocoder_dependency] = lambda: geocoder
    app.dependency_overrides[get_categorizer_dependency] = lambda: categorizer
    app.dependency_overrides[get_storage_dependency] = lambda: storage

    yield Harness(client=TestClient(app), verifier=verifier, notifier=notifier, storage=storage)

    app.dependency_overrides.clear()


def _headers(auth):
    return {"Authorization": f"Bearer {issue_token_for(auth)}"}


def _report(api, auth, **fields):
    data = {
        "title": "Overflowing bin",
        "description": "Garbage bin overflowing near the school",
        "lat": "12.97",
        "lng": "77.59",
    }
    data.update(fields)
    files = [("images", ("bin.png", PNG, "image/png"))]
    return api.client.post("/issues", data=data, files=files, headers=_headers(auth))


def _stored_files(storage):
    return [name for _, _, names in os.walk(storage.base_path) for name in names]


# =============================================================================
# Auth
# =============================================================================

class TestAuthEndpoints:

    def test_register_login_me(self, api):
        r = api.client.post("/auth/register", json={
            "username": "meera", "email": "meera@civicpulse.in", "password": "pw-12345", "role": "government",
        })
        assert r.status_code == 201
        assert r.json()["role"] == "government"

        r = api.client.post("/auth/login", json={"email": "meera@civicpulse.in", "password": "pw-12345"})
        assert r.status_code == 200
        token = r.json()["access_token"]

        r = api.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 200
        assert r.json()["username"] == "meera"

    def test_duplicate_registration(self, api, citizen):
        r = api.client.post("/auth/register", json={
            "username": "other", "email": citizen.email, "password": "pw-12345",
        })
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"

    def test_bad_login(self, api, citizen):
        r = api.client.post("/auth/login", json={"email": citizen.email, "password": "wrong"})
        assert r.status_code == 401
        assert r.json()["error"] == "unauthorized"

    def test_me_requires_token(self, api):
        assert api.client.get("/auth/me").status_code == 401
        r = api.client.get("/auth/me", headers={"Authorization": "Bearer garbage"})
        assert r.status_code == 401


# =============================================================================
# Issues
# =============================================================================

class TestIssueEndpoints:

    def test_report_issue(self, api, citizen):
        r = _report(api, citizen, area="Indiranagar")
        assert r.status_code == 201
        body = r.json()
        assert body["status"] == "Reported"
        assert body["area"] == "Indiranagar"
        assert body["category"] == "Sanitation"
        assert body["reporter"]["id"] == citizen.user_id
        assert len(body["images"]) == 1

        url = body["images"][0]
        assert url.startswith("/media/")
        media = api.client.get(url)
        assert media.status_code == 200
        assert media.content == PNG

    def test_geocoder_disabled_gives_unknown_area(self, api, citizen):
        body = _report(api, citizen).json()
        assert body["area"] == "Unknown Area"

    def test_report_requires_image(self, api, citizen):
        r = api.client.post(
            "/issues",
            data={"title": "t", "description": "d", "lat": "1", "lng": "2"},
            headers=_headers(citizen),
        )
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"

    def test_report_rejects_bad_extension(self, api, citizen):
        r = api.client.post(
            "/issues",
            data={"title": "t", "description": "d", "lat": "1", "lng": "2"},
            files=[("images", ("notes.gif", b"GIF89a", "image/gif"))],
            headers=_headers(citizen),
        )
        assert r.status_code == 400

    def test_every_upload_is_stored(self, api, citizen):
        files = [("images", (f"bin{i}.png", PNG, "image/png")) for i in range(3)]
        r = api.client.post(
            "/issues",
            data={"title": "Overflowing bins", "description": "Three bins on one street", "lat": "1", "lng": "2"},
            files=files,
            headers=_headers(citizen),
        )
        assert r.status_code == 201
        assert len(r.json()["images"]) == 3
        assert len(set(r.json()["images"])) == 3

    def test_too_many_uploads(self, api, citizen):
        files = [("images", (f"bin{i}.png", PNG, "image/png")) for i in range(11)]
        r = api.client.post(
            "/issues",
            data={"title": "t", "description": "d", "lat": "1", "lng": "2"},
            files=files,
            headers=_headers(citizen),
        )
        assert r.status_code == 400
        assert r.json()["error"] == "validation_error"
        assert _stored_files(api.storage) == []

    def test_report_requires_login(self, api):
        r = api.client.post("/issues", data={"title": "t", "description": "d", "lat": "1", "lng": "2"})
        assert r.status_code == 401

    def test_list_and_filters(self, api, citizen, official):
        _report(api, citizen, category="Roads", area="Bengaluru")
        _report(api, official, category="Water", area="Mysuru")

        assert api.client.get("/issues").json()["total"] == 2
        assert api.client.get("/issues", params={"category": "Water"}).json()["total"] == 1
        assert api.client.get("/issues", params={"area": "Bengaluru"}).json()["total"] == 1

        mine = api.client.get("/issues", params={"reporter": "me"}, headers=_headers(citizen)).json()
        assert [i["category"] for i in mine["issues"]] == ["Roads"]

    def test_get_unknown_issue(self, api):
        r = api.client.get("/issues/does-not-exist")
        assert r.status_code == 404
        assert r.json() == {"error": "not_found", "detail": "Issue does-not-exist not found"}

    def test_status_update(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.put(
            f"/issues/{issue_id}",
            json={"status": "In Progress", "assigned_department": "Sanitation Dept"},
            headers=_headers(official),
        )
        assert r.status_code == 200
        assert r.json()["status"] == "In Progress"
        assert r.json()["assigned_department"] == "Sanitation Dept"

        events = api.client.get(f"/issues/{issue_id}/events").json()["events"]
        assert [e["event_type"] for e in events] == ["issue_created", "status_changed"]

    def test_citizen_status_update_forbidden(self, api, citizen):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.put(f"/issues/{issue_id}", json={"status": "In Progress"}, headers=_headers(citizen))
        assert r.status_code == 403
        assert r.json()["error"] == "forbidden"

    def test_direct_resolve_conflict(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.put(f"/issues/{issue_id}", json={"status": "Resolved"}, headers=_headers(official))
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_transition"

    def test_unknown_status_value(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.put(f"/issues/{issue_id}", json={"status": "Closed"}, headers=_headers(official))
        assert r.status_code == 400


# =============================================================================
# Verify and resolve
# =============================================================================

class TestVerifyResolve:

    def test_json_after_uri(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )
        assert r.status_code == 200
        body = r.json()
        assert body["resolved"] is True
        assert body["issue"]["status"] == "Resolved"
        assert body["notification"]["sent"] is True
        assert len(api.notifier.notices) == 1

    def test_multipart_after_image(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            files={"image": ("after.png", PNG, "image/png")},
            headers=_headers(official),
        )
        assert r.status_code == 200
        before, after = api.verifier.calls[0]
        assert after.startswith("/media/")
        assert after != before

    def test_negative_verdict_is_ok_response(self, api, citizen, official):
        api.verifier.verdict = VerificationVerdict(resolved=False, reason="Bin still full")
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )
        assert r.status_code == 200
        assert r.json()["verification"] == {"resolved": False, "reason": "Bin still full"}
        assert r.json()["issue"]["status"] == "Reported"

    def test_citizen_forbidden(self, api, citizen):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(citizen),
        )
        assert r.status_code == 403
        assert api.verifier.calls == []

    def test_missing_before_image(self, api, db, citizen, official):
        issue = IssueWorkflow(db).create_issue(citizen, "No photo", "Reported by phone", 1.0, 2.0)
        r = api.client.post(
            f"/issues/{issue.id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )
        assert r.status_code == 422
        assert r.json()["error"] == "missing_before_image"

    def test_multipart_missing_before_image_stores_nothing(self, api, db, citizen, official):
        issue = IssueWorkflow(db).create_issue(citizen, "No photo", "Reported by phone", 1.0, 2.0)
        r = api.client.post(
            f"/issues/{issue.id}/verify-resolve",
            files={"image": ("after.png", PNG, "image/png")},
            headers=_headers(official),
        )
        assert r.status_code == 422
        assert r.json()["error"] == "missing_before_image"
        assert _stored_files(api.storage) == []
        assert api.verifier.calls == []

    def test_multipart_on_resolved_issue_stores_nothing(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )
        stored = _stored_files(api.storage)

        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            files={"image": ("after.png", PNG, "image/png")},
            headers=_headers(official),
        )
        assert r.status_code == 200
        assert r.json()["already_resolved"] is True
        assert _stored_files(api.storage) == stored
        assert len(api.verifier.calls) == 1

    def test_verifier_failure_is_bad_gateway(self, api, citizen, official):
        from civicpulse.errors import VerificationServiceError

        api.verifier.error = VerificationServiceError("Verification service unavailable: HTTP 500")
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )
        assert r.status_code == 502
        assert r.json()["error"] == "verification_service_error"

    def test_missing_after(self, api, citizen, official):
        issue_id = _report(api, citizen).json()["id"]
        r = api.client.post(f"/issues/{issue_id}/verify-resolve", json={}, headers=_headers(official))
        assert r.status_code == 400


# =============================================================================
# Reporting views
# =============================================================================

class TestReportingViews:

    def _resolve(self, api, issue_id, official):
        return api.client.post(
            f"/issues/{issue_id}/verify-resolve",
            json={"after": "https://img.civic.local/after.jpg"},
            headers=_headers(official),
        )

    def test_government_list_excludes_resolved(self, api, citizen, official):
        keep = _report(api, citizen, area="Bengaluru", category="Roads").json()["id"]
        _report(api, citizen, area="Bengaluru", category="Water")
        done = _report(api, citizen, area="Mysuru", category="Water").json()["id"]
        self._resolve(api, done, official)

        body = api.client.get("/issues/government", headers=_headers(official)).json()
        assert body["total"] == 2
        assert keep in [i["id"] for i in body["issues"]]
        assert body["area_counts"] == {"Bengaluru": 2}
        assert body["category_counts"] == {"Roads": 1, "Water": 1}

    def test_government_list_forbidden_for_citizen(self, api, citizen):
        r = api.client.get("/issues/government", headers=_headers(citizen))
        assert r.status_code == 403

    def test_stats(self, api, citizen, official):
        _report(api, citizen, category="Roads")
        _report(api, citizen, category="Roads")
        done = _report(api, citizen, category="Water").json()["id"]
        self._resolve(api, done, official)

        body = api.client.get("/issues/stats").json()
        assert body["total"] == 3
        assert body["by_category"] == {"Roads": 2, "Water": 1}
        assert body["by_status"] == {"Reported": 2, "Resolved": 1}


# =============================================================================
# Infrastructure
# =============================================================================

PROJECT = {
    "name": "Lakeside Park",
    "type": "Park",
    "description": "New park along the lake",
    "lat": 12.9,
    "lng": 77.6,
    "area": "Bengaluru",
    "budget": 150000,
}


class TestInfrastructureEndpoints:

    def test_crud(self, api, official):
        headers = _headers(official)
        r = api.client.post("/infrastructure", json=PROJECT, headers=headers)
        assert r.status_code == 201
        project_id = r.json()["id"]
        assert r.json()["status"] == "Planned"
        assert r.json()["created_by"]["id"] == official.user_id

        r = api.client.put(f"/infrastructure/{project_id}", json={"progress": 55}, headers=headers)
        assert r.json()["progress"] == 55
        assert r.json()["name"] == "Lakeside Park"

        assert api.client.get(f"/infrastructure/{project_id}").status_code == 200
        assert api.client.get("/infrastructure", params={"type": "Park"}).json()["total"] == 1

        assert api.client.delete(f"/infrastructure/{project_id}", headers=headers).status_code == 200
        assert api.client.get(f"/infrastructure/{project_id}").status_code == 404

    def test_citizen_cannot_write(self, api, citizen, official):
        project_id = api.client.post("/infrastructure", json=PROJECT, headers=_headers(official)).json()["id"]
        headers = _headers(citizen)
        assert api.client.post("/infrastructure", json=PROJECT, headers=headers).status_code == 403
        assert api.client.put(f"/infrastructure/{project_id}", json={"progress": 10}, headers=headers).status_code == 403
        assert api.client.delete(f"/infrastructure/{project_id}", headers=headers).status_code == 403

    def test_progress_out_of_range(self, api, official):
        headers = _headers(official)
        project_id = api.client.post("/infrastructure", json=PROJECT, headers=headers).json()["id"]
        r = api.client.put(f"/infrastructure/{project_id}", json={"progress": 140}, headers=headers)
        assert r.status_code == 400

    def test_upload_image(self, api, official, citizen):
        r = api.client.post(
            "/infrastructure/upload",
            files={"image": ("site.jpg", b"jpeg bytes", "image/jpeg")},
            headers=_headers(official),
        )
        assert r.status_code == 200
        assert api.storage.exists(r.json()["key"])

        r = api.client.post(
            "/infrastructure/upload",
            files={"image": ("site.jpg", b"jpeg bytes", "image/jpeg")},
            headers=_headers(citizen),
        )
        assert r.status_code == 403


# =============================================================================
# System
# =============================================================================

@pytest.mark.asyncio
async def test_health_check(api):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        r = await client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


def test_unknown_role_rejected(api):
    r = api.client.post("/auth/register", json={
        "username": "x", "email": "x@civicpulse.in", "password": "pw", "role": "mayor",
    })
    assert r.status_code == 400
