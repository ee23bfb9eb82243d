from __future__ import annotations

import hashlib
import json
import os
from datetime import datetime, timezone

PROMPT_VERSION = "etymology_v3.0"
SCHEMA_VERSION = "etymology_result_v3"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _fingerprint(payload: dict) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_lookup_record(
    word: str,
    provider: str,
    cache_versions: dict[str, int],
    prompt_version: str = PROMPT_VERSION,
    schema_version: str = SCHEMA_VERSION,
) -> dict:
    stable_payload = {
        "word": word,
        "provider": provider,
        "cache_versions": cache_versions,
        "prompt_version": prompt_version,
        "schema_version": schema_version,
        "app_version": os.getenv("APP_VERSION", "0.1.0"),
    }
    payload = {
        **stable_payload,
        "created_at": _utc_now_iso(),
    }
    # Fingerprint covers stable inputs only.
    payload["fingerprint"] = _fingerprint(stable_payload)
    return payload
