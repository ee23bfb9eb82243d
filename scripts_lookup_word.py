#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from shared.schemas.domain import dump_result

from services.api_gateway.app.state import build_pipeline
from services.orchestrator.app.config import Settings
from services.orchestrator.app.errors import EtymologyError
from services.orchestrator.app.observability import configure_logging, safe_error
from services.orchestrator.app.versioning import build_lookup_record


def error_payload(exc: EtymologyError) -> dict:
    payload = {"success": False, "error": safe_error(exc.message), "category": exc.category}
    suggestions = getattr(exc, "suggestions", None)
    if suggestions:
        payload["suggestions"] = [suggestion.model_dump() for suggestion in suggestions]
    suggestion = getattr(exc, "suggestion", None)
    if suggestion:
        payload["suggestion"] = suggestion
    return payload


def main() -> int:
    parser = argparse.ArgumentParser(description="Look up one word's etymology and print the result as JSON.")
    parser.add_argument("word")
    parser.add_argument("--provider", default=None, help="Override ETYM_LLM_PROVIDER for this run.")
    parser.add_argument("--no-public-search", action="store_true", help="Skip Wikipedia and Urban Dictionary.")
    parser.add_argument("--trace", action="store_true", help="Include per-phase timings in the output.")
    args = parser.parse_args()

    settings = Settings.from_env()
    if args.provider:
        settings = settings.with_overrides(
            synthesis=replace(settings.synthesis, provider=args.provider.lower(), root_provider=args.provider.lower())
        )
    if args.no_public_search:
        settings = settings.with_overrides(research=replace(settings.research, public_search_enabled=False))
    configure_logging(settings.log_level, settings.log_json, service="lookup_cli")

    pipeline = build_pipeline(settings)
    try:
        outcome = pipeline.lookup(args.word)
    except EtymologyError as exc:
        print(json.dumps(error_payload(exc), indent=2))
        return 1

    payload = {"success": True, "cached": outcome.cached, "data": dump_result(outcome.result)}
    if args.trace:
        payload["trace"] = outcome.observability.to_dict()
        payload["run"] = build_lookup_record(
            outcome.result.word, settings.synthesis.provider, pipeline.stats()["cache_versions"]
        )
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
