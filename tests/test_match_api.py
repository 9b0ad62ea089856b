import json

import httpx
import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services.llm_client import LLMClient

MOCK_NURSES = [
    {"id": "n1", "name": "Maya Cohen", "city": "Tel Aviv", "rating": 4.9, "reviewsCount": 10,
     "services": ["Wound Care"], "expertiseTags": ["Geriatrics"]},
    {"id": "n2", "name": "Daniel Levi", "city": "Tel Aviv", "rating": 4.5, "reviewsCount": 4,
     "services": ["Home Care"], "expertiseTags": []},
    {"id": "n3", "name": "Noa Friedman", "city": "Ramat Gan", "rating": 4.7, "reviewsCount": 8,
     "services": ["Pediatric Care"], "expertiseTags": ["Pediatrics"]},
]

QUERY = {
    "city": "Tel Aviv",
    "servicesQuery": ["Wound Care"],
    "expertiseQuery": ["Geriatrics"],
    "urgent": True,
    "topK": 3,
}


@pytest.fixture
def settings(tmp_path):
    p = tmp_path / "nurses.json"
    p.write_text(json.dumps(MOCK_NURSES), encoding="utf-8")
    return Settings(nurses_json_path=str(p))


def _live_client(handler):
    return LLMClient(
        uri="https://example.openai.azure.com/openai/responses?api-version=2025-03-01-preview",
        api_key="test-key-123",
        deployment="d",
        transport=httpx.MockTransport(handler),
        sleep=lambda s: None,
    )


def test_match_end_to_end_mock_mode(settings):
    with TestClient(create_app(settings)) as client:
        resp = client.post("/match", json=QUERY)
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 3
    assert data["mode"] == "mock"
    assert [r["score"] for r in data["results"]] == [1.0, 0.85, 0.7]
    assert [r["id"] for r in data["results"]] == ["n1", "n2", "n3"]
    assert data["results"][0]["name"] == "Maya Cohen"


def test_match_live_mode_sorted_with_names(settings):
    answer = {"results": [
        {"id": "n3", "score": 0.4, "reason": "other city"},
        {"id": "n1", "score": 0.95, "reason": "wound care + geriatrics"},
        {"id": "zz", "score": 0.6, "reason": "unknown"},
    ]}

    def handler(request):
        return httpx.Response(200, json={"output_text": json.dumps(answer)})

    with TestClient(create_app(settings, llm_client=_live_client(handler))) as client:
        resp = client.post("/match", json=QUERY)
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "live"
    assert data["count"] == 3
    assert [(r["id"], r["name"]) for r in data["results"]] == [
        ("n1", "Maya Cohen"), ("zz", "zz"), ("n3", "Noa Friedman"),
    ]


def test_match_llm_failure_returns_error_envelope(settings):
    def handler(request):
        return httpx.Response(401, text="Access denied due to invalid subscription key test-key-123")

    with TestClient(create_app(settings, llm_client=_live_client(handler))) as client:
        resp = client.post("/match", json=QUERY)
    assert resp.status_code == 502
    data = resp.json()
    assert data["error"] == "LLM error"
    assert "HTTP 401" in data["detail"]
    assert "test-key-123" not in data["detail"]


def test_match_malformed_model_json_returns_error_envelope(settings):
    def handler(request):
        return httpx.Response(200, json={"output_text": '{"results": ['})

    with TestClient(create_app(settings, llm_client=_live_client(handler))) as client:
        resp = client.post("/match", json=QUERY)
    assert resp.status_code == 502
    assert "valid JSON" in resp.json()["detail"]


def test_match_rejects_half_time_window(settings):
    with TestClient(create_app(settings)) as client:
        resp = client.post("/match", json={"start": "2025-01-06T08:00:00Z"})
    assert resp.status_code == 422


def test_match_unexpected_failure_is_500(tmp_path):
    missing = Settings(nurses_json_path=str(tmp_path / "missing.json"))
    with TestClient(create_app(missing)) as client:
        resp = client.post("/match", json=QUERY)
    assert resp.status_code == 500
    assert resp.json()["error"] == "Match error"


def test_health_reports_source_and_llm(settings):
    with TestClient(create_app(settings)) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["database"]["enabled"] is False
    assert data["database"]["connected"] is False
    assert data["llm"] == {"configured": False, "variant": "responses"}


@pytest.mark.parametrize("body", [
    {"expertiseQuery": None},
    {"urgent": None},
    {"topK": None},
    {"servicesQuery": None, "service": "Wound Care"},
])
def test_match_accepts_null_fields(settings, body):
    with TestClient(create_app(settings)) as client:
        resp = client.post("/match", json=body)
    assert resp.status_code == 200
    assert resp.json()["count"] == 3


def test_match_error_envelope_documented_in_openapi(settings):
    with TestClient(create_app(settings)) as client:
        spec = client.get("/openapi.json").json()
    responses = spec["paths"]["/match"]["post"]["responses"]
    assert "ErrorResponse" in responses["502"]["content"]["application/json"]["schema"]["$ref"]
    assert "500" in responses
