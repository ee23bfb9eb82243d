from __future__ import annotations

import structlog
from structlog.testing import capture_logs

from services.orchestrator.app import observability
from services.orchestrator.app.observability import (
    REDACTED,
    LookupObservability,
    PhaseMetric,
    emit_event,
    redact_secrets,
    safe_error,
)


def test_redacts_provider_keys_and_tokens() -> None:
    text = (
        "anthropic said no for sk-ant-api03-abcdefghijkl and "
        "https://generativelanguage.googleapis.com/v1?key=AIzaSyA-secret-value-12345 "
        "with Authorization: Bearer eyJhbGciOi.payload"
    )
    redacted = redact_secrets(text)
    assert "sk-ant-api03" not in redacted
    assert "AIzaSy" not in redacted
    assert "eyJhbGciOi" not in redacted
    assert redacted.count(REDACTED) >= 3


def test_safe_error_falls_back_to_class_name() -> None:
    assert safe_error(TimeoutError()) == "TimeoutError"
    assert safe_error("api_key=supersecretvalue") == REDACTED


def test_redact_processor_scrubs_fields() -> None:
    event = {"event": "provider_error", "error": "Bearer abcdefghijkl", "exc": ValueError("sk-ant-12345678901")}
    cleaned = observability._redact_processor(None, "info", event)
    assert cleaned["error"] == REDACTED
    assert cleaned["exc"] == REDACTED


def test_redact_processor_scrubs_nested_fields() -> None:
    event = {
        "event": "validation_failed",
        "problems": ["lore too short", "fetch failed: https://x.test/?key=AIzaSyD-abcdefghijklmnopqrstuv"],
        "context": {"headers": {"authorization": "Bearer abcdefghijkl"}, "attempts": 2},
        "sources": ("etymonline", ValueError("sk-ant-12345678901")),
    }

    cleaned = observability._redact_processor(None, "warning", event)

    assert cleaned["problems"] == ["lore too short", f"fetch failed: https://x.test/?key={REDACTED}"]
    assert cleaned["context"] == {"headers": {"authorization": REDACTED}, "attempts": 2}
    assert cleaned["sources"] == ["etymonline", REDACTED]


def test_emit_event_marks_telemetry() -> None:
    with capture_logs() as logs:
        emit_event("cost_mode_changed", previous="normal", current="protected")
    assert logs == [
        {
            "event": "cost_mode_changed",
            "telemetry": True,
            "previous": "normal",
            "current": "protected",
            "log_level": "info",
        }
    ]


def test_configure_logging_installs_redaction(monkeypatch) -> None:
    captured: dict = {}
    monkeypatch.setattr(structlog, "configure", lambda **kwargs: captured.update(kwargs))
    monkeypatch.setattr(observability, "_SERVICE_NAME", "etymon")

    observability.configure_logging("debug", json_format=True, service="api_gateway")

    processors = captured["processors"]
    assert observability._redact_processor in processors
    assert isinstance(processors[-1], structlog.processors.JSONRenderer)
    assert captured["cache_logger_on_first_use"] is True
    assert observability._add_service_metadata(None, "info", {})["service"] == "api_gateway"


def test_lookup_observability_totals_phases() -> None:
    trace = LookupObservability(word="telephone")
    trace.add_phase(PhaseMetric(name="research", duration_ms=120, fetches_used=9))
    trace.add_phase(PhaseMetric(name="synthesis", duration_ms=900, estimated_cost_usd=0.004))
    trace.finish("computed")

    payload = trace.to_dict()
    assert payload["total_duration_ms"] == 1020
    assert payload["total_estimated_cost_usd"] == 0.004
    assert [phase["name"] for phase in payload["phases"]] == ["research", "synthesis"]
    assert payload["outcome"] == "computed"
    assert payload["ended_at"] is not None
