from __future__ import annotations

import httpx

from services.orchestrator.app.providers import clients
from services.orchestrator.app.providers.clients import generate_text, make_provider_client


class _FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://example.test")
            raise httpx.HTTPStatusError("boom", request=request, response=httpx.Response(self.status_code, request=request))

    def json(self) -> dict:
        return self._payload


class _RecordingClient:
    calls: list[dict] = []
    payload: dict = {}

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def __enter__(self) -> "_RecordingClient":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def post(self, url: str, **kwargs) -> _FakeResponse:
        type(self).calls.append({"url": url, "timeout": self.timeout, **kwargs})
        return _FakeResponse(type(self).payload)


def _install(monkeypatch, payload: dict) -> type[_RecordingClient]:
    recorder = type("Recorder", (_RecordingClient,), {"calls": [], "payload": payload})
    monkeypatch.setattr(clients.httpx, "Client", recorder)
    return recorder


def test_generate_text_fails_cleanly_without_keys(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    result = generate_text("anthropic", "etymology of salary")
    assert result.success is False
    assert "ANTHROPIC_API_KEY" in (result.error or "")


def test_unknown_provider_is_a_failed_result_not_an_exception():
    result = generate_text("mystery", "prompt")
    assert result.success is False
    assert "Unsupported provider" in (result.error or "")


def test_gemini_accepts_google_key_alias(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "fake-google-key")

    client = make_provider_client("google")
    assert client.provider == "gemini"


def test_anthropic_grounding_adds_search_tool_and_reports_tokens(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    recorder = _install(
        monkeypatch,
        {
            "content": [{"type": "text", "text": '{"word": "salary"}'}],
            "usage": {"input_tokens": 120, "output_tokens": 40},
            "stop_reason": "end_turn",
        },
    )

    result = generate_text(
        "anthropic",
        "Write the entry",
        system="sys",
        max_tokens=300,
        timeout_s=3.0,
        json_schema={"type": "object"},
        grounding=True,
    )

    assert result.success is True
    assert result.tokens_input == 120
    assert result.tokens_output == 40
    sent = recorder.calls[0]["json"]
    assert sent["tools"][0]["type"] == "web_search_20250305"
    assert sent["system"] == "sys"
    assert '"type": "object"' in sent["messages"][0]["content"]
    assert recorder.calls[0]["timeout"] == 3.0


def test_anthropic_empty_content_keeps_token_counts(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    _install(monkeypatch, {"content": [], "usage": {"input_tokens": 50, "output_tokens": 2}})

    result = generate_text("anthropic", "prompt")

    assert result.success is False
    assert result.error == "empty_content"
    assert result.tokens_input == 50
    assert result.tokens_output == 2


def test_gemini_grounding_drops_json_mime_type(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "AIza-test")
    recorder = _install(
        monkeypatch,
        {
            "candidates": [{"content": {"parts": [{"text": "{}"}]}}],
            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5},
        },
    )

    generate_text("gemini", "prompt", json_schema={"type": "object"}, grounding=False)
    generate_text("gemini", "prompt", json_schema={"type": "object"}, grounding=True)

    plain, grounded = recorder.calls
    assert plain["json"]["generationConfig"]["responseMimeType"] == "application/json"
    assert "tools" not in plain["json"]
    assert "responseMimeType" not in grounded["json"]["generationConfig"]
    assert grounded["json"]["tools"] == [{"google_search": {}}]
    assert plain["params"] == {"key": "AIza-test"}
