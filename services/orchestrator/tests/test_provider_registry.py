from __future__ import annotations

from services.orchestrator.app.providers import build_default_registry


def test_registry_reports_synthesis_provider_key(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

    registry = build_default_registry()
    by_provider = {status.provider: status for status in registry.resolve(["anthropic", "gemini"])}

    assert by_provider["anthropic"].configured is True
    assert by_provider["anthropic"].env_var == "ANTHROPIC_API_KEY"
    assert by_provider["gemini"].configured is False
    assert registry.is_configured("anthropic") is True


def test_registry_accepts_either_gemini_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")

    registry = build_default_registry()

    assert registry.is_configured("gemini") is True
    assert registry.resolve(["google"])[0].env_var == "GOOGLE_API_KEY"


def test_registry_marks_unknown_provider_unsupported():
    status = build_default_registry().resolve(["mystery"])[0]
    assert status.configured is False
    assert status.env_var == "unsupported"
