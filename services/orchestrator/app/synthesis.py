"""Model call, output recovery and retry loop for etymology synthesis.

The model is asked for a JSON object matching ``EtymologyResult``. Replies are
recovered from bare JSON, fenced blocks, or prose with an embedded object.
Unusable replies are retried, with search grounding enabled on retries, and
every attempt's tokens are reported so the ledger is charged for all of them.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from shared.schemas.domain import EtymologyResult, TokenUsage

from .config import Settings
from .deadline import RequestDeadline
from .errors import MalformedModelOutput, SynthesisFailed
from .observability import emit_event, get_logger
from .prompts import SYSTEM_PROMPT, build_research_prompt, result_json_schema
from .providers import GenerationResult, generate_text
from .research import ResearchContext

log = get_logger(__name__)

Generator = Callable[..., GenerationResult]
UsageRecorder = Callable[[GenerationResult], None]

SUGGESTION_FIELDS = ("synonyms", "antonyms", "homophones", "easily_confused_with", "see_also")
_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_LOW_SIGNAL_SLANG = re.compile(r"^(slang term|internet slang|modern slang|used online|expression)$", re.IGNORECASE)


def extract_json_object_chunk(text: str) -> str | None:
    """First balanced ``{...}`` in ``text``, ignoring braces inside strings."""
    start = -1
    depth = 0
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                return text[start : index + 1]
    return None


def _loads_object(candidate: str | None) -> dict[str, Any] | None:
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_generated_json(text: str) -> dict[str, Any] | None:
    trimmed = (text or "").strip()
    parsed = _loads_object(trimmed)
    if parsed is not None:
        return parsed
    fence = _FENCE_PATTERN.search(trimmed)
    if fence:
        parsed = _loads_object(fence.group(1).strip())
        if parsed is not None:
            return parsed
    return _loads_object(extract_json_object_chunk(trimmed))


def sanitize_suggestion_word(raw: str) -> str:
    text = raw.strip()
    text = re.sub(r"\s*\([^)]*\).*$", "", text)
    text = re.sub(r"\s*[—–].*$", "", text)
    text = re.sub(r"\s+-\s+.*$", "", text)
    text = re.sub(r":\s*.*$", "", text)
    text = re.sub(r",\s*(meaning|i\.e\.|as in)\b.*$", "", text, flags=re.IGNORECASE)
    text = re.sub(r"[.,;:!?\"']+$", "", text).strip()
    return text


def sanitize_suggestions(data: dict[str, Any], word: str) -> None:
    suggestions = data.get("suggestions")
    if not isinstance(suggestions, dict):
        return
    for name in SUGGESTION_FIELDS:
        items = suggestions.get(name)
        if not isinstance(items, list):
            suggestions[name] = []
            continue
        cleaned: list[str] = []
        for item in items:
            if not isinstance(item, str):
                continue
            candidate = sanitize_suggestion_word(item)
            if not candidate or " " in candidate or len(candidate) > 40:
                continue
            if candidate.lower() == word or candidate.lower() in {c.lower() for c in cleaned}:
                continue
            cleaned.append(candidate)
        suggestions[name] = cleaned


def sanitize_modern_usage(data: dict[str, Any], context: ResearchContext) -> None:
    usage = data.get("modern_usage")
    if not isinstance(usage, dict):
        data.pop("modern_usage", None)
        return
    if not usage.get("has_slang_meaning"):
        data.pop("modern_usage", None)
        return

    urban = context.main_results.get("urban_dictionary")
    has_slang_evidence = urban is not None and urban.ok
    definition = re.sub(r"\s+", " ", str(usage.get("slang_definition") or "")).strip()
    substantive = len(definition) >= 24 and len(definition.split()) >= 5 and not _LOW_SIGNAL_SLANG.match(definition)
    if not has_slang_evidence or not substantive:
        data.pop("modern_usage", None)
        return

    cleaned: dict[str, Any] = {"has_slang_meaning": True, "slang_definition": definition}
    phrases = [
        re.sub(r"\s+", " ", phrase).strip()
        for phrase in usage.get("popular_phrases") or []
        if isinstance(phrase, str)
    ]
    phrases = [phrase for phrase in dict.fromkeys(phrases) if 3 <= len(phrase) <= 80][:4]
    if phrases:
        cleaned["popular_phrases"] = phrases
    note = str(usage.get("generational_note") or "").strip()
    if note:
        cleaned["generational_note"] = note
    data["modern_usage"] = cleaned


class SynthesisEngine:
    def __init__(
        self,
        settings: Settings,
        generate: Generator = generate_text,
        record_usage: UsageRecorder | None = None,
    ) -> None:
        self.settings = settings
        self.generate = generate
        self.record_usage = record_usage

    def _coerce(self, data: dict[str, Any], word: str, context: ResearchContext) -> EtymologyResult:
        data.setdefault("word", word)
        data.setdefault("sources", [])
        sanitize_suggestions(data, word)
        sanitize_modern_usage(data, context)
        return EtymologyResult.model_validate(data)

    def synthesize(
        self,
        word: str,
        context: ResearchContext,
        deadline: RequestDeadline,
    ) -> tuple[EtymologyResult, TokenUsage]:
        synthesis = self.settings.synthesis
        prompt = build_research_prompt(context, self.settings.research.max_source_chars)
        schema = result_json_schema()
        usage = TokenUsage()
        last_error = "no attempts made"
        malformed = False

        for attempt in range(synthesis.max_retries + 1):
            deadline.check("synthesis")
            grounding = attempt > 0 and synthesis.grounding_on_retry
            result = self.generate(
                synthesis.provider,
                prompt,
                system=SYSTEM_PROMPT,
                max_tokens=synthesis.max_output_tokens,
                timeout_s=deadline.bound(synthesis.llm_timeout_s),
                json_schema=schema,
                grounding=grounding,
            )
            usage = usage.add(result.tokens_input, result.tokens_output)
            if self.record_usage is not None:
                self.record_usage(result)

            if not result.success:
                malformed = False
                last_error = result.error or "provider call failed"
                log.warning("synthesis_call_failed", word=word, attempt=attempt + 1, error=last_error)
                emit_event("synthesis_retry", word=word, attempt=attempt + 1, reason="provider_error")
                continue

            data = parse_generated_json(result.text)
            if data is None:
                malformed = True
                last_error = "model output did not contain a JSON object"
                emit_event("synthesis_retry", word=word, attempt=attempt + 1, reason="unparseable_json")
                continue
            try:
                parsed = self._coerce(data, word, context)
            except ValidationError as exc:
                malformed = True
                last_error = f"model output failed shape check: {exc.error_count()} errors"
                emit_event("synthesis_retry", word=word, attempt=attempt + 1, reason="shape_mismatch")
                continue

            log.info(
                "synthesis_completed",
                word=word,
                attempts=attempt + 1,
                grounding=grounding,
                tokens_input=usage.tokens_input,
                tokens_output=usage.tokens_output,
            )
            return parsed, usage

        if malformed:
            raise MalformedModelOutput(last_error, usage=usage)
        raise SynthesisFailed(last_error, usage=usage)
