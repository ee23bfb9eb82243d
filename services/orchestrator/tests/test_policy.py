from __future__ import annotations

from datetime import datetime, timezone

import pytest
from structlog.testing import capture_logs

from shared.schemas.domain import CostMode
from services.orchestrator.app.config import CostSettings
from services.orchestrator.app.policy import (
    BudgetLedger,
    budget_key,
    estimate_generation_cost,
    has_exact_pricing,
    mode_for_spend,
    next_period_start,
    period_key,
)
from services.orchestrator.app.providers import GenerationResult
from services.orchestrator.app.store import MemoryStore, StoreUnavailable

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


class BrokenStore:
    def get(self, key):
        raise StoreUnavailable("connection refused")

    def set(self, key, value, ttl_s=None, nx=False):
        raise StoreUnavailable("connection refused")

    def delete(self, key):
        raise StoreUnavailable("connection refused")

    def delete_if_equals(self, key, value):
        raise StoreUnavailable("connection refused")

    def incr_float_with_expiry(self, key, amount, expire_at_epoch):
        raise StoreUnavailable("connection refused")


def _ledger(store, limit: float = 100.0) -> BudgetLedger:
    return BudgetLedger(store, CostSettings(monthly_limit_usd=limit), clock=lambda: NOW)


def test_mode_for_spend_is_monotone_and_never_skips_a_tier() -> None:
    settings = CostSettings()
    modes = [mode_for_spend(spent / 10, 100.0, settings) for spent in range(0, 1200)]
    ranks = [mode.rank for mode in modes]
    assert ranks == sorted(ranks)
    assert {b - a for a, b in zip(ranks, ranks[1:])} <= {0, 1}
    assert modes[0] == CostMode.NORMAL
    assert modes[-1] == CostMode.BLOCKED


@pytest.mark.parametrize(
    ("spent", "expected"),
    [
        (59.99, CostMode.NORMAL),
        (60.0, CostMode.PROTECTED),
        (85.0, CostMode.CACHE_ONLY),
        (100.0, CostMode.BLOCKED),
    ],
)
def test_mode_thresholds(spent: float, expected: CostMode) -> None:
    assert mode_for_spend(spent, 100.0, CostSettings()) == expected


def test_zero_limit_is_blocked() -> None:
    assert mode_for_spend(0.0, 0.0, CostSettings()) == CostMode.BLOCKED


def test_generation_cost_uses_per_million_rates() -> None:
    cost = estimate_generation_cost(
        "anthropic",
        "claude-3-5-haiku-latest",
        tokens_input=1_000_000,
        tokens_input_cached=250_000,
        tokens_output=100_000,
    )
    # 250k * 0.08 + 750k * 0.80 + 100k * 4.00 per 1M tokens.
    assert abs(cost - 1.02) < 1e-9
    assert has_exact_pricing("anthropic", "claude-3-5-haiku-latest") is True


def test_generation_cost_uses_env_pricing(monkeypatch) -> None:
    monkeypatch.setenv(
        "ETYM_MODEL_PRICING_JSON",
        '{"anthropic:claude-custom":{"input_cache_miss":2.0,"output":3.0}}',
    )
    import services.orchestrator.app.policy as policy

    policy._load_env_model_pricing.cache_clear()  # noqa: SLF001
    try:
        cost = estimate_generation_cost("anthropic", "claude-custom", tokens_input=1_000_000, tokens_output=1_000_000)
        assert abs(cost - 5.0) < 1e-9
    finally:
        policy._load_env_model_pricing.cache_clear()  # noqa: SLF001


def test_period_boundaries() -> None:
    assert period_key(NOW) == "2026-03"
    assert budget_key("2026-03") == "cost:usd:2026-03"
    assert next_period_start(datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)) == datetime(
        2027, 1, 1, tzinfo=timezone.utc
    )


def test_record_spend_sets_expiry_once_past_period_end() -> None:
    store = MemoryStore(clock=lambda: NOW.timestamp())
    ledger = _ledger(store)

    ledger.record_spend(1_000_000, 0, model="claude-3-5-haiku-latest")
    first_ttl = store.ttl("cost:usd:2026-03")
    ledger.record_spend(1_000_000, 0, model="claude-3-5-haiku-latest")

    assert float(store.get("cost:usd:2026-03")) == pytest.approx(1.6)
    assert store.ttl("cost:usd:2026-03") == first_ttl
    assert first_ttl > (next_period_start(NOW) - NOW).total_seconds()


def test_record_generation_charges_failed_calls() -> None:
    store = MemoryStore(clock=lambda: NOW.timestamp())
    ledger = _ledger(store)
    failed = GenerationResult(
        provider="anthropic",
        model="claude-3-5-haiku-latest",
        text="",
        success=False,
        tokens_input=1_000_000,
        error="empty_content",
    )
    assert ledger.record_generation(failed) == pytest.approx(0.8)
    assert ledger.snapshot().spent_usd == pytest.approx(0.8)


def test_get_mode_applies_hysteresis_on_the_way_down() -> None:
    store = MemoryStore()
    ledger = _ledger(store)
    key = budget_key(period_key(NOW))

    store.set(key, "61.0")
    assert ledger.get_mode() == CostMode.PROTECTED
    store.set(key, "59.0")
    assert ledger.get_mode() == CostMode.PROTECTED
    store.set(key, "57.5")
    assert ledger.get_mode() == CostMode.NORMAL


def test_mode_change_emits_event() -> None:
    store = MemoryStore()
    ledger = _ledger(store)
    store.set(budget_key(period_key(NOW)), "90.0")
    with capture_logs() as logs:
        assert ledger.get_mode() == CostMode.CACHE_ONLY
    changes = [entry for entry in logs if entry["event"] == "cost_mode_changed"]
    assert changes and changes[0]["current"] == "cache_only"


def test_store_failure_fails_open() -> None:
    ledger = _ledger(BrokenStore())
    with capture_logs() as logs:
        assert ledger.get_mode() == CostMode.NORMAL
        assert ledger.record_spend(1000, 1000) > 0
    assert any(entry["event"] == "store_unavailable" for entry in logs)
    assert ledger.snapshot().mode == CostMode.NORMAL


def test_retry_after_for_blocked_is_clamped_to_a_day() -> None:
    ledger = _ledger(MemoryStore())
    assert ledger.retry_after_s(CostMode.CACHE_ONLY) == 900
    assert ledger.retry_after_s(CostMode.BLOCKED) == 86_400
