from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ProviderStatus:
    provider: str
    configured: bool
    env_var: str


class ProviderRegistry:
    def __init__(self, mapping: dict[str, list[str]]) -> None:
        self.mapping = mapping

    def resolve(self, providers: list[str]) -> list[ProviderStatus]:
        statuses: list[ProviderStatus] = []
        for provider in providers:
            key_candidates = self.mapping.get(provider.lower())
            if not key_candidates:
                statuses.append(ProviderStatus(provider=provider, configured=False, env_var="unsupported"))
                continue
            configured_env = next((name for name in key_candidates if os.getenv(name)), "")
            statuses.append(
                ProviderStatus(
                    provider=provider,
                    configured=bool(configured_env),
                    env_var=configured_env or key_candidates[0],
                )
            )
        return statuses

    def is_configured(self, provider: str) -> bool:
        return self.resolve([provider])[0].configured


def build_default_registry() -> ProviderRegistry:
    return ProviderRegistry(
        {
            "anthropic": ["ANTHROPIC_API_KEY"],
            "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
            "google": ["GOOGLE_API_KEY", "GEMINI_API_KEY"],
        }
    )
