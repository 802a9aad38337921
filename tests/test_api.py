"""End-to-end tests of the HTTP API and its request-governance pipeline."""

from __future__ import annotations

import asyncio
import json
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from app.core.app_factory import create_app
from app.core.config import (
    CacheSettings,
    CorsSettings,
    RateLimitRuleConfig,
    RateLimitSettings,
)
from app.models.entities import Company


def _create(client: TestClient, payload: dict) -> dict:
    resp = client.post("/api/companies", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestCompanies:
    def test_create_returns_location(self, client, company_payload):
        resp = client.post("/api/companies", json=company_payload)

        assert resp.status_code == 201
        body = resp.json()
        assert body["full_address"] == "312 Forest Avenue, BF 923 USA"
        assert resp.headers["Location"].endswith(f"/api/companies/{body['id']}")

    def test_get_by_id_and_not_found(self, client, company_payload):
        created = _create(client, company_payload)

        assert client.get(f"/api/companies/{created['id']}").json() == created

        missing = client.get(f"/api/companies/{uuid.uuid4()}")
        assert missing.status_code == 404
        error = missing.json()["error"]
        assert error["code"] == "company_not_found"
        assert error["request_id"] == missing.headers["X-Request-ID"]

    def test_invalid_body_is_rejected(self, client):
        resp = client.post("/api/companies", json={"name": "x" * 61, "address": "a"})
        assert resp.status_code == 422

    def test_list_versions(self, client, company_payload):
        _create(client, company_payload)

        v1 = client.get("/api/companies")
        v2 = client.get("/api/companies", headers={"api-version": "2.0"})

        assert set(v1.json()[0]) == {"id", "name", "full_address"}
        assert v2.json()[0]["employee_count"] == 2
        assert v2.json()[0]["country"] == "USA"
        assert v1.headers["api-supported-versions"] == "1.0, 2.0"

    def test_unsupported_version(self, client):
        resp = client.get("/api/companies", headers={"api-version": "3.0"})

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unsupported_api_version"
        assert resp.headers["api-supported-versions"] == "1.0, 2.0"

    def test_version_not_offered_by_endpoint(self, client, company_payload):
        created = _create(client, company_payload)

        resp = client.get(f"/api/companies/{created['id']}", headers={"api-version": "2.0"})

        assert resp.status_code == 400
        assert resp.headers["api-supported-versions"] == "1.0"

    def test_employees_are_served_in_both_versions(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}/employees"

        v1 = client.get(url)
        v2 = client.get(url, headers={"api-version": "2.0"})

        assert v2.status_code == 200
        assert v2.json() == v1.json()

    def test_collection_round_trip(self, client, company_payload):
        second = dict(company_payload, name="Second Ltd", employees=[])
        resp = client.post("/api/companies/collection", json=[company_payload, second])

        assert resp.status_code == 201
        ids = [c["id"] for c in resp.json()]
        assert "/api/companies/collection/(" in resp.headers["Location"]

        fetched = client.get(f"/api/companies/collection/({','.join(ids)})")
        assert fetched.status_code == 200
        assert sorted(c["id"] for c in fetched.json()) == sorted(ids)

    def test_collection_with_unknown_id(self, client, company_payload):
        created = _create(client, company_payload)

        resp = client.get(f"/api/companies/collection/({created['id']},{uuid.uuid4()})")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "ids_mismatch"

    def test_collection_with_invalid_id(self, client):
        resp = client.get("/api/companies/collection/(not-an-id)")
        assert resp.json()["error"]["code"] == "ids_invalid"

    def test_update_and_delete(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"

        put = client.put(url, json={"name": "Renamed", "address": "New St", "country": "UK"})
        assert put.status_code == 204
        assert client.get(url).json()["name"] == "Renamed"

        assert client.delete(url).status_code == 204
        assert client.get(url).status_code == 404
        assert client.get(f"{url}/employees").status_code == 404


class TestEmployees:
    def test_paging_header(self, client, company_payload):
        created = _create(client, company_payload)

        resp = client.get(
            f"/api/companies/{created['id']}/employees",
            params={"page_size": 1, "order_by": "name desc"},
        )

        assert resp.status_code == 200
        assert [e["name"] for e in resp.json()] == ["Sam Raiden"]
        pagination = json.loads(resp.headers["X-Pagination"])
        assert pagination["TotalCount"] == 2
        assert pagination["TotalPages"] == 2
        assert pagination["HasNext"] is True

    def test_invalid_age_range(self, client, company_payload):
        created = _create(client, company_payload)

        resp = client.get(
            f"/api/companies/{created['id']}/employees",
            params={"min_age": 40, "max_age": 20},
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_age_range"

    def test_employee_lifecycle(self, client, company_payload):
        company = _create(client, dict(company_payload, employees=[]))
        base = f"/api/companies/{company['id']}/employees"

        created = client.post(base, json={"name": "Kane Miller", "age": 35, "position": "Administrator"})
        assert created.status_code == 201
        employee_url = f"{base}/{created.json()['id']}"
        assert created.headers["Location"].endswith(employee_url)

        update = {"name": "Kane Miller", "age": 36, "position": "Manager"}
        assert client.put(employee_url, json=update).status_code == 204
        assert client.get(employee_url).json()["age"] == 36

        assert client.delete(employee_url).status_code == 204
        assert client.get(employee_url).status_code == 404

    def test_employee_of_other_company_is_not_found(self, client, company_payload):
        owner = _create(client, company_payload)
        other = _create(client, dict(company_payload, name="Other", employees=[]))
        employee_id = client.get(f"/api/companies/{owner['id']}/employees").json()[0]["id"]

        resp = client.get(f"/api/companies/{other['id']}/employees/{employee_id}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "employee_not_found"


class TestConditionalRequests:
    def test_validators_are_emitted(self, client, company_payload):
        _create(client, company_payload)
        resp = client.get("/api/companies")

        assert resp.headers["ETag"].startswith('"')
        assert "Last-Modified" in resp.headers
        assert "Expires" in resp.headers
        assert resp.headers["Cache-Control"] == "private, max-age=65, no-cache, must-revalidate"
        assert "api-version" in resp.headers["Vary"]

    def test_matching_etag_returns_304(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        etag = client.get(url).headers["ETag"]

        resp = client.get(url, headers={"If-None-Match": etag})

        assert resp.status_code == 304
        assert resp.content == b""
        assert resp.headers["ETag"] == etag

    def test_if_modified_since_returns_304(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        last_modified = client.get(url).headers["Last-Modified"]

        assert client.get(url, headers={"If-Modified-Since": last_modified}).status_code == 304

    def test_etag_is_stale_after_update(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        etag = client.get(url).headers["ETag"]

        client.put(url, json={"name": "Changed", "address": "a", "country": "b"})
        resp = client.get(url, headers={"If-None-Match": etag})

        assert resp.status_code == 200
        assert resp.headers["ETag"] != etag

    def test_if_modified_since_is_stale_after_update(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        last_modified = client.get(url).headers["Last-Modified"]

        client.put(url, json={"name": "Changed", "address": "a", "country": "b"})
        resp = client.get(url, headers={"If-Modified-Since": last_modified})

        assert resp.status_code == 200
        assert resp.json()["name"] == "Changed"
        assert resp.headers["Last-Modified"] != last_modified

    def test_collection_validator_changes_after_child_write(self, client, company_payload):
        created = _create(client, company_payload)
        etag = client.get("/api/companies").headers["ETag"]

        client.put(
            f"/api/companies/{created['id']}",
            json={"name": "Changed", "address": "a", "country": "b"},
        )

        assert client.get("/api/companies", headers={"If-None-Match": etag}).status_code == 200

    def test_if_match_guards_writes(self, client, company_payload):
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        etag = client.get(url).headers["ETag"]
        body = {"name": "Guarded", "address": "a", "country": "b"}

        stale = client.put(url, json=body, headers={"If-Match": '"stale"'})
        assert stale.status_code == 412
        assert stale.json()["error"]["code"] == "precondition_failed"

        assert client.put(url, json=body, headers={"If-Match": etag}).status_code == 204

    def test_versions_have_separate_validators(self, client, company_payload):
        _create(client, company_payload)
        v1 = client.get("/api/companies").headers["ETag"]
        v2 = client.get("/api/companies", headers={"api-version": "2.0"}).headers["ETag"]

        assert v1 != v2
        resp = client.get("/api/companies", headers={"api-version": "2.0", "If-None-Match": v1})
        assert resp.status_code == 200


def test_trusted_validator_store_skips_handler(make_settings, company_payload):
    app = create_app(make_settings(cache=CacheSettings(trust_validator_store=True)))
    with TestClient(app) as client:
        created = _create(client, company_payload)
        url = f"/api/companies/{created['id']}"
        etag = client.get(url).headers["ETag"]

        # Changed behind the API's back: only a handler run would notice
        with app.state.session_factory() as session:
            session.execute(update(Company).values(name="Elsewhere"))
            session.commit()

        assert client.get(url, headers={"If-None-Match": etag}).status_code == 304


class TestRateLimiting:
    @pytest.fixture
    def limited_client(self, make_settings):
        cfg = make_settings(
            rate_limit=RateLimitSettings(
                general_rules=[RateLimitRuleConfig(endpoint="*", limit=2, period="1m")],
                client_whitelist=["ops"],
            )
        )
        with TestClient(create_app(cfg)) as client:
            yield client

    def test_third_request_is_rejected(self, limited_client):
        headers = {"X-ClientId": "mobile"}
        first = limited_client.get("/api/companies", headers=headers)
        limited_client.get("/api/companies", headers=headers)
        denied = limited_client.get("/api/companies", headers=headers)

        assert first.headers["X-RateLimit-Limit"] == "2"
        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert denied.status_code == 429
        assert 0 < int(denied.headers["Retry-After"]) <= 60
        assert denied.json()["error"]["code"] == "quota_exceeded"
        assert "X-Request-ID" in denied.headers

    def test_clients_are_limited_separately(self, limited_client):
        for _ in range(3):
            limited_client.get("/api/companies", headers={"X-ClientId": "a"})

        assert limited_client.get("/api/companies", headers={"X-ClientId": "b"}).status_code == 200

    def test_whitelisted_client(self, limited_client):
        for _ in range(5):
            resp = limited_client.get("/api/companies", headers={"X-ClientId": "ops"})
            assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers

    def test_version_errors_do_not_consume_quota(self, limited_client):
        for _ in range(3):
            limited_client.get("/api/companies", headers={"X-ClientId": "c", "api-version": "9"})

        assert limited_client.get("/api/companies", headers={"X-ClientId": "c"}).status_code == 200

    def test_decision_runs_off_the_event_loop(self, limited_client, monkeypatch):
        processor = limited_client.app.state.governance.rate_limit_processor
        original = processor.process
        seen: list[str] = []

        def recording(client_request):
            try:
                asyncio.get_running_loop()
                seen.append("event_loop")
            except RuntimeError:
                seen.append("worker_thread")
            return original(client_request)

        monkeypatch.setattr(processor, "process", recording)
        assert limited_client.get("/api/companies").status_code == 200
        assert seen == ["worker_thread"]

    def test_health_is_exempt(self, limited_client):
        for _ in range(5):
            resp = limited_client.get("/health")
            assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "database": "ok"}
        assert "api-supported-versions" not in resp.headers


class TestCors:
    def test_pagination_header_is_exposed(self, client, company_payload):
        created = _create(client, company_payload)

        resp = client.get(
            f"/api/companies/{created['id']}/employees",
            headers={"Origin": "https://frontend.example"},
        )

        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "X-Pagination" in resp.headers["Access-Control-Expose-Headers"]

    def test_preflight_is_answered_before_governance(self, client):
        resp = client.options(
            "/api/companies",
            headers={
                "Origin": "https://frontend.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "api-version",
            },
        )

        assert resp.status_code == 200
        assert "api-supported-versions" not in resp.headers

    def test_can_be_disabled(self, make_settings):
        cfg = make_settings(cors=CorsSettings(enabled=False))
        with TestClient(create_app(cfg)) as client:
            resp = client.get("/api/companies", headers={"Origin": "https://frontend.example"})

        assert "Access-Control-Allow-Origin" not in resp.headers
