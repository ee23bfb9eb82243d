from __future__ import annotations

import os
from dataclasses import dataclass, field, replace


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if not raw:
        return max(default, minimum)
    try:
        return max(int(raw), minimum)
    except ValueError:
        return max(default, minimum)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if not raw:
        return max(default, minimum)
    try:
        return max(float(raw), minimum)
    except ValueError:
        return max(default, minimum)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip()


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(piece.strip() for piece in raw.split(",") if piece.strip())


DAY_S = 24 * 60 * 60


@dataclass(frozen=True)
class CostSettings:
    monthly_limit_usd: float = 400.0
    protected_pct: float = 0.60
    cache_only_pct: float = 0.85
    hysteresis_pct: float = 0.02
    period_expiry_buffer_s: int = 48 * 60 * 60
    force_cache_only: bool = False


@dataclass(frozen=True)
class CacheSettings:
    etymology_version: int = 3
    source_version: int = 2
    negative_version: int = 1
    etymology_ttl_s: int = 45 * DAY_S
    source_ttl_s: int = 7 * DAY_S
    negative_ttl_s: int = 6 * 60 * 60
    jitter_pct: float = 0.10
    negative_admit_only: tuple[str, ...] = ("no_sources_found", "invalid_word_shape")


@dataclass(frozen=True)
class LockSettings:
    ttl_s: int = 60
    poll_attempts: int = 8
    poll_interval_s: float = 0.5


@dataclass(frozen=True)
class ResearchSettings:
    max_total_fetches: int = 10
    max_roots: int = 3
    max_related_per_root: int = 2
    fetch_timeout_s: float = 4.0
    max_source_chars: int = 2000
    public_search_enabled: bool = True
    max_workers: int = 6


@dataclass(frozen=True)
class SynthesisSettings:
    provider: str = "anthropic"
    root_provider: str = "anthropic"
    llm_timeout_s: float = 15.0
    max_output_tokens: int = 4096
    root_max_tokens: int = 100
    max_retries: int = 2
    grounding_on_retry: bool = True


@dataclass(frozen=True)
class Settings:
    """Runtime configuration shared by every pipeline component.

    Built once per process with ``Settings.from_env()`` and passed into
    constructors. Tests build instances directly and override fields with
    ``with_overrides``.
    """

    redis_url: str = ""
    admin_secret: str = ""
    request_deadline_s: float = 45.0
    log_level: str = "INFO"
    log_json: bool | None = None
    cost: CostSettings = field(default_factory=CostSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    lock: LockSettings = field(default_factory=LockSettings)
    research: ResearchSettings = field(default_factory=ResearchSettings)
    synthesis: SynthesisSettings = field(default_factory=SynthesisSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        raw_json = os.getenv("ETYM_LOG_JSON")
        log_json = None if raw_json is None else _env_bool("ETYM_LOG_JSON", False)
        provider = _env_str("ETYM_LLM_PROVIDER", "anthropic").lower() or "anthropic"
        return cls(
            redis_url=_env_str("ETYM_REDIS_URL", ""),
            admin_secret=_env_str("ETYM_ADMIN_SECRET", ""),
            request_deadline_s=_env_float("ETYM_REQUEST_DEADLINE_S", 45.0, 1.0),
            log_level=_env_str("ETYM_LOG_LEVEL", "INFO").upper() or "INFO",
            log_json=log_json,
            cost=CostSettings(
                monthly_limit_usd=_env_float("ETYM_MONTHLY_LIMIT_USD", 400.0, 0.01),
                protected_pct=_env_float("ETYM_PROTECTED_PCT", 0.60, 0.0),
                cache_only_pct=_env_float("ETYM_CACHE_ONLY_PCT", 0.85, 0.0),
                hysteresis_pct=_env_float("ETYM_HYSTERESIS_PCT", 0.02, 0.0),
                force_cache_only=_env_bool("ETYM_FORCE_CACHE_ONLY", False),
            ),
            cache=CacheSettings(
                etymology_version=_env_int("ETYM_CACHE_VERSION", 3, 1),
                source_version=_env_int("ETYM_SOURCE_CACHE_VERSION", 2, 1),
                negative_version=_env_int("ETYM_NEGATIVE_CACHE_VERSION", 1, 1),
                etymology_ttl_s=_env_int("ETYM_CACHE_TTL_S", 45 * DAY_S, 60),
                source_ttl_s=_env_int("ETYM_SOURCE_CACHE_TTL_S", 7 * DAY_S, 60),
                negative_ttl_s=_env_int("ETYM_NEGATIVE_CACHE_TTL_S", 6 * 60 * 60, 60),
                jitter_pct=min(_env_float("ETYM_CACHE_JITTER_PCT", 0.10, 0.0), 0.5),
                negative_admit_only=_env_list(
                    "ETYM_NEGATIVE_ADMIT_ONLY", ("no_sources_found", "invalid_word_shape")
                ),
            ),
            lock=LockSettings(
                ttl_s=_env_int("ETYM_LOCK_TTL_S", 60, 1),
                poll_attempts=_env_int("ETYM_LOCK_POLL_ATTEMPTS", 8, 0),
                poll_interval_s=_env_float("ETYM_LOCK_POLL_INTERVAL_S", 0.5, 0.01),
            ),
            research=ResearchSettings(
                max_total_fetches=_env_int("ETYM_MAX_TOTAL_FETCHES", 10, 1),
                max_roots=_env_int("ETYM_MAX_ROOTS", 3, 0),
                max_related_per_root=_env_int("ETYM_MAX_RELATED_PER_ROOT", 2, 0),
                fetch_timeout_s=_env_float("ETYM_FETCH_TIMEOUT_S", 4.0, 0.5),
                max_source_chars=_env_int("ETYM_MAX_SOURCE_CHARS", 2000, 200),
                public_search_enabled=_env_bool("ETYM_PUBLIC_SEARCH_ENABLED", True),
                max_workers=_env_int("ETYM_FETCH_WORKERS", 6, 1),
            ),
            synthesis=SynthesisSettings(
                provider=provider,
                root_provider=_env_str("ETYM_ROOT_PROVIDER", provider).lower() or provider,
                llm_timeout_s=_env_float("ETYM_LLM_TIMEOUT_S", 15.0, 1.0),
                max_output_tokens=_env_int("ETYM_MAX_OUTPUT_TOKENS", 4096, 256),
                max_retries=_env_int("ETYM_SYNTHESIS_MAX_RETRIES", 2, 0),
                grounding_on_retry=_env_bool("ETYM_GROUNDING_ON_RETRY", True),
            ),
        )

    def with_overrides(self, **sections: object) -> "Settings":
        return replace(self, **sections)
