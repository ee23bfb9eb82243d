from __future__ import annotations

import json
import os
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import httpx


class ProviderClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class GenerationResult:
    provider: str
    model: str
    text: str
    success: bool
    tokens_input: int = 0
    tokens_input_cached: int = 0
    tokens_output: int = 0
    latency_s: float = 0.0
    error: str | None = None


class BaseProviderClient:
    provider: str
    model: str

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
        timeout_s: float = 15.0,
        json_schema: dict[str, Any] | None = None,
        grounding: bool = False,
    ) -> GenerationResult:
        raise NotImplementedError

    def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        timeout_s: float,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        with httpx.Client(timeout=timeout_s) as client:
            response = client.post(url, headers=headers, params=params, json=payload)
            response.raise_for_status()
        return response.json()

    def _failure(self, started: float, error: str, tokens_input: int = 0, tokens_output: int = 0) -> GenerationResult:
        return GenerationResult(
            provider=self.provider,
            model=self.model,
            text="",
            success=False,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_s=max(0.0, perf_counter() - started),
            error=error,
        )


def _default_timeout_for_provider(provider: str) -> float:
    per_provider = os.getenv(f"{provider.upper()}_TIMEOUT_S")
    if per_provider:
        try:
            return max(1.0, float(per_provider))
        except ValueError:
            pass
    global_default = os.getenv("ETYM_LLM_TIMEOUT_S", "15")
    try:
        return max(1.0, float(global_default))
    except ValueError:
        return 15.0


class AnthropicClient(BaseProviderClient):
    provider = "anthropic"

    def __init__(self) -> None:
        self.api_key = os.getenv("ANTHROPIC_API_KEY")
        self.model = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")
        if not self.api_key:
            raise ProviderClientError("ANTHROPIC_API_KEY is not set")

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
        timeout_s: float = 15.0,
        json_schema: dict[str, Any] | None = None,
        grounding: bool = False,
    ) -> GenerationResult:
        url = "https://api.anthropic.com/v1/messages"
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        user_prompt = prompt
        if json_schema is not None:
            # Messages API has no response_format; the schema rides in the prompt.
            user_prompt = f"{prompt}\n\nRespond with a single JSON object matching this schema:\n{json.dumps(json_schema)}"
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": user_prompt}],
            "temperature": 0.2,
            # Messages API requires max_tokens.
            "max_tokens": max_tokens or 1200,
        }
        if system:
            payload["system"] = system
        if grounding:
            payload["tools"] = [{"type": "web_search_20250305", "name": "web_search", "max_uses": 2}]
        started = perf_counter()
        try:
            data = self._post_json(url, payload, timeout_s, headers=headers)
            usage = data.get("usage", {}) or {}
            tokens_input = int(usage.get("input_tokens", 0) or 0)
            tokens_output = int(usage.get("output_tokens", 0) or 0)
            if str(data.get("stop_reason", "")).lower() == "refusal":
                return self._failure(started, "refusal", tokens_input, tokens_output)
            text = ""
            for block in data.get("content", []):
                if block.get("type") == "text":
                    text += block.get("text", "")
            if not text.strip():
                return self._failure(started, "empty_content", tokens_input, tokens_output)
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=tokens_input,
                tokens_input_cached=int(usage.get("cache_read_input_tokens", 0) or 0),
                tokens_output=tokens_output,
                latency_s=max(0.0, perf_counter() - started),
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc))


class GeminiClient(BaseProviderClient):
    provider = "gemini"

    def __init__(self) -> None:
        self.api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        self.model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        if not self.api_key:
            raise ProviderClientError("GEMINI_API_KEY or GOOGLE_API_KEY is not set")

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int | None = None,
        timeout_s: float = 15.0,
        json_schema: dict[str, Any] | None = None,
        grounding: bool = False,
    ) -> GenerationResult:
        url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        generation_config: dict[str, Any] = {"temperature": 0.2}
        if max_tokens is not None:
            generation_config["maxOutputTokens"] = max_tokens
        # Search grounding cannot be combined with a forced JSON mime type.
        if json_schema is not None and not grounding:
            generation_config["responseMimeType"] = "application/json"
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if grounding:
            payload["tools"] = [{"google_search": {}}]
        started = perf_counter()
        try:
            data = self._post_json(url, payload, timeout_s, params={"key": self.api_key})
            usage = data.get("usageMetadata", {}) or {}
            tokens_input = int(usage.get("promptTokenCount", 0) or 0)
            tokens_output = int(usage.get("candidatesTokenCount", 0) or 0)
            candidates = data.get("candidates", [])
            text = ""
            if candidates:
                parts = candidates[0].get("content", {}).get("parts", [])
                text = "".join(part.get("text", "") for part in parts)
            if not text.strip():
                return self._failure(started, "empty_content", tokens_input, tokens_output)
            return GenerationResult(
                provider=self.provider,
                model=self.model,
                text=text,
                success=True,
                tokens_input=tokens_input,
                tokens_input_cached=int(usage.get("cachedContentTokenCount", 0) or 0),
                tokens_output=tokens_output,
                latency_s=max(0.0, perf_counter() - started),
            )
        except Exception as exc:  # noqa: BLE001
            return self._failure(started, str(exc))


def make_provider_client(provider: str) -> BaseProviderClient:
    normalized = provider.lower()
    if normalized == "anthropic":
        return AnthropicClient()
    if normalized in {"gemini", "google"}:
        return GeminiClient()
    raise ProviderClientError(f"Unsupported provider: {provider}")


def generate_text(
    provider: str,
    prompt: str,
    system: str | None = None,
    max_tokens: int | None = None,
    timeout_s: float | None = None,
    json_schema: dict[str, Any] | None = None,
    grounding: bool = False,
) -> GenerationResult:
    try:
        client = make_provider_client(provider)
    except Exception as exc:  # noqa: BLE001
        return GenerationResult(
            provider=provider,
            model="unknown",
            text="",
            success=False,
            error=str(exc),
        )
    resolved_timeout = timeout_s if timeout_s is not None else _default_timeout_for_provider(provider)
    return client.generate(
        prompt=prompt,
        system=system,
        max_tokens=max_tokens,
        timeout_s=resolved_timeout,
        json_schema=json_schema,
        grounding=grounding,
    )
