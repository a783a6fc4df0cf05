"""HTTP tests for api.routes through the full app (desktop mode, local identity)."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from analysis.errors import RateLimited
from analysis.pipeline import AnalysisPipeline
from api.config_models import ApiKeys
from api.routes import get_pipeline, get_secrets, get_store
from conftest import sample_result
from llm.client import LLMResponse
from llm.prompt_defaults import default_global_config
from main import create_app

TEMPLATE = "Patient: {{name}}, Age: {{age}}"
INPUTS = {"name": "Ana", "age": "34"}


class _Stub:
    def __init__(self, texts):
        self.texts = list(texts)
        self.calls = 0

    async def complete(self, **kwargs):
        self.calls += 1
        item = self.texts.pop(0)
        if isinstance(item, Exception):
            raise item
        return LLMResponse("openai", item, "gpt-4o-mini", 100, 50)


@pytest.fixture
def app(db, keychain, monkeypatch):
    monkeypatch.setenv("LYZ_DB_PATH", str(db._db_path))
    app = create_app()
    app.dependency_overrides[get_store] = lambda: db
    app.dependency_overrides[get_secrets] = lambda: keychain
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def use_stub(app, db, analysis_type, *texts):
    """Route analysis runs through a stub provider returning ``texts``."""
    stub = _Stub(texts)
    config = default_global_config()
    stage = getattr(config, analysis_type).model_copy(update={"user_prompt_template": TEMPLATE})
    config = config.model_copy(update={"api_keys": ApiKeys(openai="sk-test"), analysis_type: stage})
    app.dependency_overrides[get_pipeline] = lambda: AnalysisPipeline(
        config=config,
        store=db,
        client_factory=lambda **kwargs: stub,
        timeout_for=lambda provider: 5.0,
    )
    return stub


def _create_patient(client, **fields):
    body = {"name": "Ana Souza", "age": 34, "main_symptoms": ["fatigue"], **fields}
    resp = client.post("/patients", json=body)
    assert resp.status_code == 201
    return resp.json()


def _run(client, patient_id, analysis_type="laboratory"):
    return client.post(
        "/analyses/run",
        json={"analysis_type": analysis_type, "patient_id": patient_id, "inputs": INPUTS},
    )


def _completed(app, db, client, analysis_type="laboratory"):
    use_stub(app, db, analysis_type, json.dumps(sample_result(analysis_type)))
    patient = _create_patient(client)
    resp = _run(client, patient["id"], analysis_type)
    assert resp.status_code == 201
    return resp.json()


class TestHealth:
    def test_ok(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_no_cache_headers(self, client):
        assert "no-store" in client.get("/health").headers["cache-control"]


class TestPatients:
    def test_crud(self, client):
        patient = _create_patient(client, life_cycle="peri_menopausal")
        assert patient["company_id"] == "local"
        assert patient["created_by"] == "local-user"

        resp = client.patch(f"/patients/{patient['id']}", json={"age": 35})
        assert resp.json()["age"] == 35
        assert resp.json()["main_symptoms"] == ["fatigue"]

        listing = client.get("/patients", params={"search": "Ana"}).json()
        assert listing["total"] == 1

        assert client.get(f"/patients/{patient['id']}").json()["life_cycle"] == "peri_menopausal"

    def test_not_found(self, client):
        assert client.get("/patients/nope").status_code == 404
        assert client.patch("/patients/nope", json={"age": 1}).status_code == 404

    def test_name_cannot_be_cleared(self, client):
        patient = _create_patient(client)
        resp = client.patch(f"/patients/{patient['id']}", json={"name": None})
        assert resp.status_code == 422
        assert client.get(f"/patients/{patient['id']}").json()["name"] == "Ana Souza"

        resp = client.patch(f"/patients/{patient['id']}", json={"phone": None})
        assert resp.status_code == 200

    def test_validation(self, client):
        assert client.post("/patients", json={"name": ""}).status_code == 422
        assert client.post("/patients", json={"name": "A", "age": 200}).status_code == 422


class TestGlobalConfig:
    def test_read_masks_keys(self, client, keychain):
        keychain.set_provider_key("openai", "sk-live-abcdefghijklmnop")
        keychain.set_provider_key("google", "short")
        body = client.get("/settings/global-ai-config").json()
        assert body["api_keys"]["openai"] == "sk-live-...mnop"
        assert body["api_keys"]["google"] == "***"
        assert body["version"] == "1.0.0"

    def test_update_and_reset(self, client):
        config = client.get("/settings/global-ai-config").json()
        tcm = dict(config["tcm"], model="gpt-4o")
        resp = client.put("/settings/global-ai-config", json={"tcm": tcm})
        assert resp.status_code == 200
        assert resp.json()["tcm"]["model"] == "gpt-4o"
        assert resp.json()["version"] == "1.0.1"
        assert resp.json()["last_updated_by"] == "local-user"

        reset = client.post("/settings/global-ai-config/reset").json()
        assert reset["tcm"]["model"] == "gpt-4o-mini"
        assert reset["version"] == "1.0.0"

    def test_update_rejects_bad_stage(self, client):
        config = client.get("/settings/global-ai-config").json()
        tcm = dict(config["tcm"], temperature=5)
        assert client.put("/settings/global-ai-config", json={"tcm": tcm}).status_code == 422

    def test_provider_check(self, client, keychain):
        keychain.set_provider_key("openai", "sk-live-abcdefghijklmnop")
        with patch(
            "api.routes.check_provider",
            new=AsyncMock(return_value=(True, "gpt-4o-mini", 42, None)),
        ) as check:
            resp = client.post("/settings/ai-providers/test", json={"provider": "openai"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["response_time_ms"] == 42
        assert check.await_args.args[1] == "sk-live-abcdefghijklmnop"

    def test_provider_check_without_key(self, client):
        resp = client.post("/settings/ai-providers/test", json={"provider": "anthropic"})
        assert resp.status_code == 422
        assert resp.json()["category"] == "ConfigurationError"


class TestRunAnalysis:
    def test_success(self, app, db, client):
        record = _completed(app, db, client)
        assert record["status"] == "completed"
        assert record["analysis"] == sample_result("laboratory")
        assert record["ai_metadata"]["totalTokens"] == 150
        assert "raw_output" not in record

    def test_malformed(self, app, db, client):
        use_stub(app, db, "laboratory", "not json")
        patient = _create_patient(client)
        resp = _run(client, patient["id"])
        assert resp.status_code == 502
        body = resp.json()
        assert body["category"] == "MalformedResponse"

        record = client.get(f"/analyses/{body['analysis_id']}").json()
        assert record["status"] == "error"
        assert record["error_category"] == "MalformedResponse"
        assert record["analysis"] is None

    def test_missing_placeholder(self, app, db, client):
        stub = use_stub(app, db, "laboratory", json.dumps(sample_result("laboratory")))
        patient = _create_patient(client)
        resp = client.post(
            "/analyses/run",
            json={"analysis_type": "laboratory", "patient_id": patient["id"], "inputs": {"name": "Ana"}},
        )
        assert resp.status_code == 422
        assert resp.json()["category"] == "ConfigurationError"
        assert stub.calls == 0

    def test_provider_failure(self, app, db, client):
        use_stub(app, db, "laboratory", *[RateLimited("429")] * 3)
        patient = _create_patient(client)
        with patch("llm.retry._sleep", new=AsyncMock()):
            resp = _run(client, patient["id"])
        assert resp.status_code == 502
        assert resp.json()["category"] == "RateLimited"

    def test_unknown_patient(self, app, db, client):
        use_stub(app, db, "laboratory")
        assert _run(client, "nope").status_code == 404

    def test_unknown_type(self, client):
        patient = _create_patient(client)
        resp = client.post("/analyses/run", json={"analysis_type": "xray", "patient_id": patient["id"]})
        assert resp.status_code == 422


class TestReviewFlow:
    def test_review_approve(self, app, db, client):
        record = _completed(app, db, client)
        aid = record["id"]

        pending = client.get("/analyses/reviews").json()
        assert [a["id"] for a in pending["items"]] == [aid]

        resp = client.post(f"/analyses/{aid}/review", json={"notes": "Checked"})
        assert resp.json()["status"] == "reviewed"

        resp = client.post(f"/analyses/{aid}/decision", json={"approved": True})
        assert resp.json()["status"] == "approved"
        assert client.get("/analyses/reviews").json()["total"] == 0

        listing = client.get("/analyses", params={"status": "approved"}).json()
        assert listing["total"] == 1

    def test_decision_before_review(self, app, db, client):
        record = _completed(app, db, client)
        resp = client.post(f"/analyses/{record['id']}/decision", json={"approved": True})
        assert resp.status_code == 409
        assert resp.json()["category"] == "InvalidTransition"

    def test_edit(self, app, db, client):
        record = _completed(app, db, client)
        content = sample_result("laboratory")
        content["summary"] = "Edited"
        resp = client.patch(f"/analyses/{record['id']}", json={"analysis": content})
        assert resp.json()["analysis"]["summary"] == "Edited"

        resp = client.patch(f"/analyses/{record['id']}", json={"analysis": {"summary": "x"}})
        assert resp.status_code == 422

    def test_not_found(self, client):
        assert client.get("/analyses/nope").status_code == 404
        assert client.post("/analyses/nope/review", json={"notes": "x"}).status_code == 404
        assert client.post("/analyses/nope/decision", json={"approved": False}).status_code == 404


class TestDelivery:
    def test_deliver_approved_plan(self, app, db, client):
        record = _completed(app, db, client, "treatment_plan")
        aid = record["id"]
        client.post(f"/analyses/{aid}/review", json={"notes": "ok"})
        client.post(f"/analyses/{aid}/decision", json={"approved": True})

        resp = client.post(f"/delivery/plans/{aid}/deliver", json={"method": "portal"})
        assert resp.status_code == 200
        assert resp.json()["delivery"]["method"] == "portal"

    def test_not_a_plan(self, app, db, client):
        record = _completed(app, db, client)
        resp = client.post(f"/delivery/plans/{record['id']}/deliver", json={"method": "email"})
        assert resp.status_code == 400

    def test_not_approved(self, app, db, client):
        record = _completed(app, db, client, "treatment_plan")
        resp = client.post(f"/delivery/plans/{record['id']}/deliver", json={"method": "email"})
        assert resp.status_code == 409


class TestRag:
    def test_requires_openai_key(self, client):
        resp = client.post("/rag/search", json={"query": "thyroid"})
        assert resp.status_code == 422
        assert resp.json()["category"] == "ConfigurationError"

    def test_list_documents(self, client, db):
        db.save_rag_document("local", "Guide", "text", chunks=[("text", [1.0])])
        db.save_rag_document("clinic-b", "Other", "text", chunks=[])
        docs = client.get("/rag/documents").json()
        assert [d["name"] for d in docs] == ["Guide"]
