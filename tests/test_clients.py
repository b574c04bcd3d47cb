"""Tests for the CRM and platform HTTP clients (httpx.MockTransport)."""

from __future__ import annotations

import json

import httpx
import pytest

from src.rentsync.clients.base import BackoffPolicy
from src.rentsync.clients.crm import CrmClient
from src.rentsync.core.exceptions import (
    ApiError,
    ApiTimeoutError,
    AuthError,
    ConflictError,
    RateLimitError,
    ValidationError,
)


# ── Helpers ────────────────────────────────────────────────────────────────


class Recorder:
    """Collects recorder-hook calls made by a client."""

    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def __call__(self, **kwargs) -> None:
        self.calls.append(kwargs)


def _rate_limited_then(status: int, body: dict | None, limited: int):
    """Handler returning 429 ``limited`` times, then ``status``."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if len(seen) <= limited:
            return httpx.Response(429, json={"message": "slow down"})
        return httpx.Response(status, json=body)

    return handler, seen


# ── Rate limiting ──────────────────────────────────────────────────────────


class TestBackoffPolicy:
    async def test_doubles_until_cap(self, make_crm_client, sleeper):
        handler, seen = _rate_limited_then(200, {"id": "1"}, limited=6)
        client = make_crm_client(handler, backoff=BackoffPolicy(max_attempts=7, base_delay=5.0, max_delay=80.0))

        await client.get_deal("1")

        assert len(seen) == 7
        assert sleeper.delays == [5.0, 10.0, 20.0, 40.0, 80.0, 80.0]


class TestRateLimitRetry:
    async def test_retries_429_with_exponential_delays(self, make_crm_client, sleeper):
        handler, seen = _rate_limited_then(200, {"id": "1", "properties": {}}, limited=3)
        client = make_crm_client(handler)

        deal = await client.get_deal("1")

        assert deal["id"] == "1"
        assert len(seen) == 4
        assert sleeper.delays == [5.0, 10.0, 20.0]
        assert sum(sleeper.delays) == 35.0

    async def test_gives_up_after_max_attempts(self, make_crm_client, sleeper):
        handler, seen = _rate_limited_then(200, {}, limited=100)
        client = make_crm_client(handler)

        with pytest.raises(RateLimitError) as excinfo:
            await client.get_deal("1")

        assert len(seen) == 5
        assert sleeper.delays == [5.0, 10.0, 20.0, 40.0]
        assert excinfo.value.attempts == 5
        assert excinfo.value.status_code == 429

    async def test_create_is_resent_only_after_429(self, make_crm_client, sleeper):
        handler, seen = _rate_limited_then(201, {"id": "77"}, limited=1)
        client = make_crm_client(handler)

        created = await client.create_company({"name": "Acme"})

        assert created["id"] == "77"
        assert len(seen) == 2
        assert sleeper.delays == [5.0]

    async def test_failed_create_is_not_resent(self, make_crm_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(500, text="boom")

        client = make_crm_client(handler)
        with pytest.raises(ApiError):
            await client.create_deal({"dealname": "x"})
        assert len(seen) == 1

    async def test_timeout_raises_api_timeout_error(self, make_crm_client, sleeper):
        recorder = Recorder()

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        client = make_crm_client(handler, api_call_recorder=recorder)
        with pytest.raises(ApiTimeoutError) as excinfo:
            await client.update_deal("1", {"dealname": "x"})

        assert excinfo.value.system == "crm"
        assert sleeper.delays == []
        assert [call["response_status"] for call in recorder.calls] == [None]


# ── Status handling ────────────────────────────────────────────────────────


class TestStatusHandling:
    async def test_lookup_404_is_none(self, make_crm_client):
        client = make_crm_client(lambda request: httpx.Response(404, json={"message": "gone"}))
        assert await client.get_company("5") is None
        assert await client.update_deal("5", {"dealname": "x"}) is None
        assert await client.delete_order("5") is False

    async def test_conflict_carries_existing_id(self, make_crm_client):
        client = make_crm_client(
            lambda request: httpx.Response(
                409, json={"message": "Contact already exists. Existing ID: 4242"}
            )
        )
        with pytest.raises(ConflictError) as excinfo:
            await client.create_contact({"email": "a@b.dk"})
        assert excinfo.value.existing_id == "4242"

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [(401, AuthError), (403, AuthError), (400, ValidationError), (500, ApiError)],
    )
    async def test_error_types(self, make_crm_client, status, error_type):
        client = make_crm_client(lambda request: httpx.Response(status, text="nope"))
        with pytest.raises(error_type) as excinfo:
            await client.update_company("1", {"name": "x"})
        assert excinfo.value.status_code == status
        assert excinfo.value.system == "crm"

    async def test_recorder_receives_each_call(self, make_crm_client):
        recorder = Recorder()
        client = make_crm_client(
            lambda request: httpx.Response(200, json={"id": "1"}), api_call_recorder=recorder
        )
        await client.get_deal("1")
        assert len(recorder.calls) == 1
        call = recorder.calls[0]
        assert call["target_system"] == "crm"
        assert call["method"] == "GET"
        assert call["response_status"] == 200
        assert call["endpoint"].endswith("/deals/1")

    async def test_recorder_failure_does_not_fail_request(self, make_crm_client):
        async def broken(**kwargs):
            raise RuntimeError("db down")

        client = make_crm_client(
            lambda request: httpx.Response(200, json={"id": "1"}), api_call_recorder=broken
        )
        assert (await client.get_deal("1"))["id"] == "1"


# ── CRM specifics ──────────────────────────────────────────────────────────


class TestCrmClient:
    async def test_list_follows_paging_links(self, make_crm_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("after") == "2":
                return httpx.Response(200, json={"results": [{"id": "3"}]})
            return httpx.Response(
                200,
                json={
                    "results": [{"id": "1"}, {"id": "2"}],
                    "paging": {"next": {"link": "https://crm.test/crm/v3/objects/deals?after=2"}},
                },
            )

        client = make_crm_client(handler)
        results = await client.list_objects("deals")
        assert [r["id"] for r in results] == ["1", "2", "3"]

    async def test_search_follows_after_cursor(self, make_crm_client):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            bodies.append(body)
            if body.get("after") == "100":
                return httpx.Response(200, json={"results": [{"id": "b"}]})
            return httpx.Response(
                200, json={"results": [{"id": "a"}], "paging": {"next": {"after": "100"}}}
            )

        client = make_crm_client(handler)
        filters = [{"propertyName": "name", "operator": "EQ", "value": "Acme"}]
        results = await client.search_objects("companies", filters)

        assert [r["id"] for r in results] == ["a", "b"]
        assert bodies[0]["filterGroups"] == [{"filters": filters}]

    async def test_association_paths(self, make_crm_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204) if request.method == "DELETE" else httpx.Response(200, json={})

        client = make_crm_client(handler)
        await client.add_association("deals", 1, "companies", 2, 5)
        assert await client.remove_association("deals", 1, "companies", 3, 5) is True

        assert seen[0].method == "PUT"
        assert seen[0].url.path == "/crm/v3/objects/deals/1/associations/companies/2/5"
        assert seen[1].method == "DELETE"
        assert seen[1].url.path == "/crm/v3/objects/deals/1/associations/companies/3/5"

    async def test_bearer_token_sent(self, make_crm_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "1"})

        await make_crm_client(handler).get_deal("1")
        assert seen[0].headers["Authorization"] == "Bearer crm-token"

    def test_inline_association_payload(self):
        assert CrmClient.association(12, 5) == {
            "to": {"id": "12"},
            "types": [{"associationCategory": "HUBSPOT_DEFINED", "associationTypeId": 5}],
        }


# ── Platform specifics ─────────────────────────────────────────────────────


class TestOpsClient:
    async def test_list_projects_pages_by_offset_and_excludes_archived(self, make_ops_client):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            offset = int(request.url.params["offset"])
            if offset == 0:
                return httpx.Response(200, json={"data": [{"id": n} for n in range(50)]})
            if offset == 50:
                return httpx.Response(200, json={"data": [{"id": 50}]})
            return httpx.Response(200, json={"data": []})

        projects = await make_ops_client(handler).list_projects()

        assert len(projects) == 51
        assert seen[0].url.params["project_type[neq]"] == "projecttypes/109"
        assert [int(r.url.params["offset"]) for r in seen] == [0, 50, 100]

    async def test_get_by_ref_unwraps_data(self, make_ops_client):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/contacts/12"
            return httpx.Response(200, json={"data": {"id": 12, "displayname": "Acme"}})

        client = make_ops_client(handler)
        assert (await client.get("/contacts/12"))["displayname"] == "Acme"
        assert await client.get(None) is None

    async def test_missing_resource_is_none(self, make_ops_client):
        client = make_ops_client(lambda request: httpx.Response(404, json={}))
        assert await client.get_project(1) is None
        assert await client.get_project_subprojects("/projects/1") == []

    def test_app_links(self, make_ops_client):
        client = make_ops_client(lambda request: httpx.Response(200))
        assert client.build_project_url(5) == "https://app.ops.test/#/projects/5/details"
        assert client.build_project_url(5, 9) == "https://app.ops.test/#/projects/5/details?subproject=9"
        assert client.build_request_url(3) == "https://app.ops.test/#/requests/3/details"
