from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from wafscope.apps.api.deps import get_notes_store_dep
from wafscope.apps.api.main import create_app
from wafscope.providers.notes.memory import InMemoryNotesStore


def _app(store: InMemoryNotesStore):
    app = create_app()
    app.dependency_overrides[get_notes_store_dep] = lambda: store
    return app


@pytest.mark.asyncio
async def test_save_managed_rule_note_with_camel_case_body() -> None:
    store = InMemoryNotesStore()
    transport = ASGITransport(app=_app(store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/v1/wafnotes/save",
            json={
                "entityType": "ManagedRuleOverride",
                "wafPolicyName": "edge-waf-01",
                "managedRuleSetType": "OWASP",
                "managedRuleSetVersion": "3.2",
                "ruleGroupName": "SQLI",
                "ruleId": "942100",
                "notesContent": "false positives on search",
                "subscriptionId": "sub-1",
            },
        )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["partition_key"] == "edge-waf-01_OWASP_3.2_SQLI"
    assert data["row_key"] == "942100"
    assert data["notes_content"] == "false positives on search"
    [record] = store.records()
    assert record.fields.subscription_id == "sub-1"


@pytest.mark.asyncio
async def test_legacy_save_route_accepts_camel_case_payload() -> None:
    store = InMemoryNotesStore()
    transport = ASGITransport(app=_app(store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/api/wafnotes/save",
            json={
                "entityType": "WafPolicy",
                "wafPolicyName": "edge-waf-01",
                "matchConditionIndex": "",
                "notesContent": "owned by edge team",
            },
        )
    assert response.status_code == 200
    body = response.json()
    assert body["partition_key"] == "edge-waf-01"
    assert body["message"] == "Notes saved successfully."
    assert response.headers["Deprecation"] == "true"


@pytest.mark.asyncio
async def test_invalid_entity_type_is_400_without_store_calls() -> None:
    store = InMemoryNotesStore()
    transport = ASGITransport(app=_app(store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/v1/wafnotes/save",
            json={"entity_type": "Firewall", "waf_policy_name": "p", "notes_content": "x"},
        )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_ENTITY_TYPE"
    assert store.upsert_calls == 0


@pytest.mark.asyncio
async def test_missing_fields_is_400_and_store_failure_is_502() -> None:
    transport = ASGITransport(app=_app(InMemoryNotesStore(fail_writes=True)))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/v1/wafnotes/save",
            json={"entity_type": "CustomRule", "waf_policy_name": "p", "notes_content": "x"},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_KEY_FIELDS"

        response = await client.post(
            "/v1/wafnotes/save",
            json={"entity_type": "Policy", "waf_policy_name": "p", "notes_content": "x"},
        )
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "NOTES_STORE_ERROR"


@pytest.mark.asyncio
async def test_get_note_found_absent_and_invalid() -> None:
    store = InMemoryNotesStore()
    transport = ASGITransport(app=_app(store))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        params = {"entity_type": "Policy", "waf_policy_name": "edge-waf-01"}
        response = await client.get("/v1/wafnotes", params=params)
        assert response.status_code == 200
        assert response.json()["data"]["found"] is False

        await client.post("/v1/wafnotes/save", json={**params, "notes_content": ""})
        response = await client.get("/v1/wafnotes", params=params)
        data = response.json()["data"]
        assert data["found"] is True
        assert data["notes_content"] == ""

        response = await client.get("/v1/wafnotes", params={"entity_type": "MatchValue", "waf_policy_name": "p"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MISSING_KEY_FIELDS"
