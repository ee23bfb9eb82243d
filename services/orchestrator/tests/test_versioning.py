from __future__ import annotations

from services.orchestrator.app.versioning import PROMPT_VERSION, SCHEMA_VERSION, build_lookup_record


def test_lookup_record_fingerprint_is_stable() -> None:
    versions = {"etymology": 3, "source": 1, "negative": 1}
    first = build_lookup_record("telephone", "anthropic", versions)
    second = build_lookup_record("telephone", "anthropic", dict(versions))

    assert first["prompt_version"] == PROMPT_VERSION
    assert first["schema_version"] == SCHEMA_VERSION
    assert first["fingerprint"] == second["fingerprint"]
    assert "created_at" in first


def test_lookup_record_fingerprint_tracks_cache_versions() -> None:
    before = build_lookup_record("telephone", "anthropic", {"etymology": 3})
    after = build_lookup_record("telephone", "anthropic", {"etymology": 4})
    other_provider = build_lookup_record("telephone", "gemini", {"etymology": 3})

    assert before["fingerprint"] != after["fingerprint"]
    assert before["fingerprint"] != other_provider["fingerprint"]
