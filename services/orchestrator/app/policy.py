from __future__ import annotations

import json
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from shared.schemas.domain import BudgetState, CostMode

from .config import CostSettings
from .errors import CoordinationUnavailable
from .observability import emit_event, get_logger, safe_error
from .providers import GenerationResult
from .store import KeyValueStore, StoreUnavailable

log = get_logger(__name__)


@dataclass(frozen=True)
class PricingRates:
    input_cache_hit: float
    input_cache_miss: float
    output: float


# Per-1M token prices.
DEFAULT_MODEL_PRICING: dict[tuple[str, str], PricingRates] = {
    ("anthropic", "claude-3-5-haiku-latest"): PricingRates(input_cache_hit=0.08, input_cache_miss=0.80, output=4.00),
    ("anthropic", "claude-haiku-4-5"): PricingRates(input_cache_hit=0.10, input_cache_miss=1.00, output=5.00),
    ("anthropic", "claude-sonnet-4-5"): PricingRates(input_cache_hit=0.30, input_cache_miss=3.00, output=15.00),
    ("gemini", "gemini-2.0-flash"): PricingRates(input_cache_hit=0.025, input_cache_miss=0.10, output=0.40),
    ("google", "gemini-2.0-flash"): PricingRates(input_cache_hit=0.025, input_cache_miss=0.10, output=0.40),
}

# Unknown models are billed at the small-model Anthropic rate so spend is never undercounted to zero.
FALLBACK_RATES = PricingRates(input_cache_hit=0.80, input_cache_miss=0.80, output=4.00)


def _parse_rate_blob(blob: dict) -> PricingRates | None:
    try:
        return PricingRates(
            input_cache_hit=float(blob.get("input_cache_hit", blob["input_cache_miss"])),
            input_cache_miss=float(blob["input_cache_miss"]),
            output=float(blob["output"]),
        )
    except Exception:  # noqa: BLE001
        return None


@lru_cache(maxsize=1)
def _load_env_model_pricing() -> dict[tuple[str, str], PricingRates]:
    # {"provider:model":{"input_cache_hit":...,"input_cache_miss":...,"output":...}}
    raw = os.getenv("ETYM_MODEL_PRICING_JSON", "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except Exception:  # noqa: BLE001
        return {}
    if not isinstance(parsed, dict):
        return {}

    pricing: dict[tuple[str, str], PricingRates] = {}
    for key, value in parsed.items():
        if not isinstance(key, str) or ":" not in key or not isinstance(value, dict):
            continue
        provider, model = key.split(":", 1)
        rates = _parse_rate_blob(value)
        if rates is not None:
            pricing[(provider.strip().lower(), model.strip())] = rates
    return pricing


def _resolve_pricing(provider: str, model: str) -> PricingRates:
    key = (provider.lower(), model)
    env_pricing = _load_env_model_pricing()
    if key in env_pricing:
        return env_pricing[key]
    return DEFAULT_MODEL_PRICING.get(key, FALLBACK_RATES)


def has_exact_pricing(provider: str, model: str) -> bool:
    key = (provider.lower(), model)
    return key in _load_env_model_pricing() or key in DEFAULT_MODEL_PRICING


def estimate_generation_cost(
    provider: str,
    model: str,
    *,
    tokens_input: int,
    tokens_output: int,
    tokens_input_cached: int = 0,
) -> float:
    rates = _resolve_pricing(provider, model)
    cached = max(0, int(tokens_input_cached))
    miss = max(0, max(0, int(tokens_input)) - cached)
    output = max(0, int(tokens_output))
    return (
        (cached / 1_000_000.0) * rates.input_cache_hit
        + (miss / 1_000_000.0) * rates.input_cache_miss
        + (output / 1_000_000.0) * rates.output
    )


def period_key(now: datetime) -> str:
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def next_period_start(now: datetime) -> datetime:
    current = now.astimezone(timezone.utc)
    if current.month == 12:
        return datetime(current.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(current.year, current.month + 1, 1, tzinfo=timezone.utc)


def budget_key(period: str) -> str:
    return f"cost:usd:{period}"


def _mode_thresholds(settings: CostSettings) -> list[tuple[CostMode, float]]:
    return [
        (CostMode.BLOCKED, 1.0),
        (CostMode.CACHE_ONLY, settings.cache_only_pct),
        (CostMode.PROTECTED, settings.protected_pct),
    ]


def mode_threshold(mode: CostMode, settings: CostSettings) -> float:
    for candidate, threshold in _mode_thresholds(settings):
        if candidate == mode:
            return threshold
    return 0.0


def mode_for_spend(spent_usd: float, limit_usd: float, settings: CostSettings) -> CostMode:
    """Highest tier whose threshold the spend ratio has reached."""
    if limit_usd <= 0:
        return CostMode.BLOCKED
    ratio = max(0.0, spent_usd) / limit_usd
    for mode, threshold in _mode_thresholds(settings):
        if ratio >= threshold:
            return mode
    return CostMode.NORMAL


class BudgetLedger:
    """Monthly spend counter and the cost mode derived from it.

    Every store interaction fails open: an unreachable counter reads as
    ``normal`` and spend that cannot be written is logged and dropped.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: CostSettings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._mode_lock = threading.Lock()
        self._last_mode: CostMode | None = None

    @property
    def limit_usd(self) -> float:
        return self.settings.monthly_limit_usd

    def _read_spent(self, period: str) -> float | None:
        try:
            raw = self.store.get(budget_key(period))
        except StoreUnavailable as exc:
            log.warning("budget_read_failed", period=period, error=safe_error(exc))
            emit_event("store_unavailable", component="budget_ledger", operation="read", category=CoordinationUnavailable.category)
            return None
        if raw is None:
            return 0.0
        try:
            return float(raw)
        except ValueError:
            log.warning("budget_counter_corrupt", period=period, raw=raw)
            return 0.0

    def _apply_hysteresis(self, raw_mode: CostMode, spent_usd: float) -> CostMode:
        with self._mode_lock:
            previous = self._last_mode
            resolved = raw_mode
            if previous is not None and raw_mode.rank < previous.rank:
                ratio = spent_usd / self.limit_usd if self.limit_usd > 0 else 1.0
                floor = mode_threshold(previous, self.settings) - self.settings.hysteresis_pct
                if ratio >= floor:
                    resolved = previous
            self._last_mode = resolved
        if resolved != (previous or CostMode.NORMAL):
            emit_event(
                "cost_mode_changed",
                previous=(previous or CostMode.NORMAL).value,
                current=resolved.value,
                spent_usd=round(spent_usd, 6),
                limit_usd=self.limit_usd,
            )
        return resolved

    def get_mode(self) -> CostMode:
        spent = self._read_spent(period_key(self._clock()))
        if spent is None:
            return CostMode.NORMAL
        return self._apply_hysteresis(mode_for_spend(spent, self.limit_usd, self.settings), spent)

    def record_spend(
        self,
        tokens_input: int,
        tokens_output: int,
        provider: str = "anthropic",
        model: str = "",
        tokens_input_cached: int = 0,
    ) -> float:
        usd = estimate_generation_cost(
            provider,
            model,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            tokens_input_cached=tokens_input_cached,
        )
        if usd <= 0:
            return 0.0
        now = self._clock()
        period = period_key(now)
        expire_at = next_period_start(now) + timedelta(seconds=self.settings.period_expiry_buffer_s)
        try:
            total = self.store.incr_float_with_expiry(budget_key(period), usd, int(expire_at.timestamp()))
        except StoreUnavailable as exc:
            log.warning("budget_write_failed", period=period, usd=usd, error=safe_error(exc))
            emit_event("store_unavailable", component="budget_ledger", operation="write", category=CoordinationUnavailable.category)
            return usd
        log.info("spend_recorded", period=period, usd=round(usd, 6), total_usd=round(total, 6))
        return usd

    def record_generation(self, result: GenerationResult) -> float:
        """Charge one provider call, successful or not, at its reported token counts."""
        if result.tokens_input or result.tokens_output:
            if not has_exact_pricing(result.provider, result.model):
                log.warning("pricing_fallback", provider=result.provider, model=result.model)
        return self.record_spend(
            result.tokens_input,
            result.tokens_output,
            provider=result.provider,
            model=result.model,
            tokens_input_cached=result.tokens_input_cached,
        )

    def retry_after_s(self, mode: CostMode) -> int:
        if mode == CostMode.BLOCKED:
            remaining = next_period_start(self._clock()) - self._clock()
            return max(60, min(int(remaining.total_seconds()), 86_400))
        return 900

    def snapshot(self) -> BudgetState:
        now = self._clock()
        period = period_key(now)
        spent = self._read_spent(period)
        if spent is None:
            return BudgetState(period_key=period, spent_usd=0.0, limit_usd=self.limit_usd, mode=CostMode.NORMAL)
        return BudgetState(
            period_key=period,
            spent_usd=round(spent, 6),
            limit_usd=self.limit_usd,
            mode=mode_for_spend(spent, self.limit_usd, self.settings),
        )
