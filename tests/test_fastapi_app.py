from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

import moirai_archivist.serve.fastapi_app as app_mod

FRAGMENT = {"fragmentText": "The letter arrived a day late.", "revelationText": "She chose not to open it."}


def _gemini_body(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


class _FakeClient:
    """Stands in for httpx.Client; replays one upstream reply and records the call."""

    reply: httpx.Response | Exception = httpx.Response(200, json=_gemini_body(json.dumps(FRAGMENT)))
    calls: list[dict[str, Any]] = []

    def __init__(self, timeout: float | int | None = None) -> None:  # signature-compatible
        self.timeout = timeout

    def __enter__(self) -> "_FakeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        return None

    def post(self, url: str, headers: dict[str, str] | None = None, json: dict[str, Any] | None = None) -> httpx.Response:  # noqa: A002
        type(self).calls.append({"url": url, "headers": headers, "json": json})
        if isinstance(self.reply, Exception):
            raise self.reply
        reply = self.reply
        return httpx.Response(
            reply.status_code,
            content=reply.content,
            headers=reply.headers,
            request=httpx.Request("POST", url),
        )


@pytest.fixture
def fake_upstream(monkeypatch: pytest.MonkeyPatch) -> type[_FakeClient]:
    # Patch httpx.Client in the module to avoid network calls
    monkeypatch.setattr(app_mod.httpx, "Client", _FakeClient)
    monkeypatch.setattr(app_mod, "GEMINI_API_KEY", "gemini-key")
    monkeypatch.setattr(app_mod, "SERVICE_TOKEN", None)
    monkeypatch.setattr(_FakeClient, "calls", [])
    monkeypatch.setattr(
        _FakeClient, "reply", httpx.Response(200, json=_gemini_body(json.dumps(FRAGMENT)))
    )
    return _FakeClient


def _post(body: dict[str, Any], headers: dict[str, str] | None = None) -> httpx.Response:
    client = TestClient(app_mod.app)
    return client.post("/api/generate-fragment", json=body, headers=headers)


def test_health_ok() -> None:
    client = TestClient(app_mod.app)
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"


def test_generate_with_mocked_httpx(fake_upstream: type[_FakeClient]) -> None:
    r = _post({"secretTag": "FATE", "difficultyTier": 2, "genre": "Noir"})
    assert r.status_code == 200
    assert r.json() == FRAGMENT

    call = fake_upstream.calls[0]
    assert call["url"].endswith(f"/models/{app_mod.MODEL_ID}:generateContent")
    assert call["headers"]["x-goog-api-key"] == "gemini-key"
    cfg = call["json"]["generationConfig"]
    assert cfg["responseMimeType"] == "application/json"
    assert cfg["responseSchema"]["required"] == ["fragmentText", "revelationText"]
    user_prompt = call["json"]["contents"][0]["parts"][0]["text"]
    assert "FATE" in user_prompt
    assert "Tier 2" in user_prompt
    assert "Noir" in user_prompt


def test_system_instruction_from_request_overrides_template(fake_upstream: type[_FakeClient]) -> None:
    r = _post({"secretTag": "CHANCE", "difficultyTier": 1, "systemInstruction": "Be terse."})
    assert r.status_code == 200
    sent = fake_upstream.calls[0]["json"]["systemInstruction"]["parts"][0]["text"]
    assert sent == "Be terse."


def test_json_wrapped_in_prose_is_extracted(fake_upstream: type[_FakeClient]) -> None:
    fake_upstream.reply = httpx.Response(
        200, json=_gemini_body("Here you go:\n```json\n" + json.dumps(FRAGMENT) + "\n```")
    )
    r = _post({"secretTag": "CHOICE", "difficultyTier": 3})
    assert r.status_code == 200
    assert r.json() == FRAGMENT


@pytest.mark.parametrize(
    "body",
    [
        {"difficultyTier": 2},
        {"secretTag": "FATE"},
        {"secretTag": "FATE", "difficultyTier": 0},
        {"secretTag": "DESTINY", "difficultyTier": 1},
    ],
)
def test_invalid_body_is_400(fake_upstream: type[_FakeClient], body: dict[str, Any]) -> None:
    r = _post(body)
    assert r.status_code == 400
    assert "error" in r.json()
    assert fake_upstream.calls == []


def test_missing_gemini_key_is_500(fake_upstream: type[_FakeClient], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_mod, "GEMINI_API_KEY", None)
    r = _post({"secretTag": "FATE", "difficultyTier": 1})
    assert r.status_code == 500
    assert "Not Configured" in r.json()["error"]
    assert fake_upstream.calls == []


def test_service_token_enforced_when_set(fake_upstream: type[_FakeClient], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_mod, "SERVICE_TOKEN", "tok")
    body = {"secretTag": "FATE", "difficultyTier": 1}
    assert _post(body).status_code == 401
    assert _post(body, {"Authorization": "Bearer wrong"}).status_code == 401
    assert _post(body, {"Authorization": "Bearer tok"}).status_code == 200


def test_upstream_rate_limit_passes_through_as_429(fake_upstream: type[_FakeClient]) -> None:
    fake_upstream.reply = httpx.Response(429, json={"error": {"code": 429}})
    r = _post({"secretTag": "FATE", "difficultyTier": 1})
    assert r.status_code == 429
    assert "rate limited" in r.json()["error"]


def test_upstream_error_is_500(fake_upstream: type[_FakeClient]) -> None:
    fake_upstream.reply = httpx.Response(503, json={"error": {"code": 503}})
    r = _post({"secretTag": "FATE", "difficultyTier": 1})
    assert r.status_code == 500
    assert r.json()["error"].startswith("GenAI API call failed")


def test_upstream_network_failure_is_500(fake_upstream: type[_FakeClient]) -> None:
    fake_upstream.reply = httpx.ConnectError("connection refused")
    r = _post({"secretTag": "FATE", "difficultyTier": 1})
    assert r.status_code == 500
    assert "connection refused" in r.json()["error"]


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        json.dumps({"fragmentText": "only half"}),
        json.dumps({"fragmentText": "", "revelationText": "x"}),
    ],
)
def test_malformed_model_output_is_500(fake_upstream: type[_FakeClient], text: str) -> None:
    fake_upstream.reply = httpx.Response(200, json=_gemini_body(text))
    r = _post({"secretTag": "FATE", "difficultyTier": 1})
    assert r.status_code == 500
    assert r.json()["error"] == "AI response format was invalid or unparsable."


def test_extract_json_bounds() -> None:
    assert app_mod.extract_json('noise {"a": 1} trailing') == {"a": 1}
    assert app_mod.extract_json("} backwards {") is None
    assert app_mod.extract_json("{broken") is None
    assert app_mod.extract_json("[1, 2]") is None


def test_prompt_keeps_genre_and_tier_without_template(monkeypatch: pytest.MonkeyPatch) -> None:
    def _missing() -> str:
        raise FileNotFoundError("prompt_template.txt")

    monkeypatch.setattr(app_mod, "load_template", _missing)
    req = app_mod.GenerationRequest(difficultyTier=5, secretTag="CHOICE", genre="Sci-Fi")
    system_prompt, user_prompt = app_mod.build_prompts(req)

    assert "Archivist of Moirai" in system_prompt
    assert "CHOICE" in user_prompt
    assert "Sci-Fi" in user_prompt
    assert "Tier 5" in user_prompt
    assert "highly complex" in user_prompt
    assert "{{" not in user_prompt


def test_token_checked_before_configuration(fake_upstream: type[_FakeClient], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app_mod, "SERVICE_TOKEN", "tok")
    monkeypatch.setattr(app_mod, "GEMINI_API_KEY", None)
    body = {"secretTag": "FATE", "difficultyTier": 1}
    r = _post(body)
    assert r.status_code == 401
    assert "Not Configured" not in r.json()["error"]
    assert _post(body, {"Authorization": "Bearer tok"}).status_code == 500
