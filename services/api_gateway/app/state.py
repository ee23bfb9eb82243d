from __future__ import annotations

import threading

from services.orchestrator.app.cache_store import CacheStore
from services.orchestrator.app.config import Settings
from services.orchestrator.app.engine import LookupPipeline
from services.orchestrator.app.observability import configure_logging, get_logger
from services.orchestrator.app.policy import BudgetLedger
from services.orchestrator.app.providers import ProviderRegistry, build_default_registry
from services.orchestrator.app.research import ResearchOrchestrator
from services.orchestrator.app.singleflight import LockCoordinator
from services.orchestrator.app.store import KeyValueStore, build_store
from services.orchestrator.app.synthesis import SynthesisEngine

log = get_logger(__name__)


def build_pipeline(settings: Settings, store: KeyValueStore | None = None) -> LookupPipeline:
    """Wire every lookup component against one shared store."""
    store = store if store is not None else build_store(settings)
    ledger = BudgetLedger(store, settings.cost)
    cache = CacheStore(store, settings.cache)
    return LookupPipeline(
        settings=settings,
        cache=cache,
        locks=LockCoordinator(store, settings.lock),
        research=ResearchOrchestrator(settings, cache=cache, record_usage=ledger.record_generation),
        synthesis=SynthesisEngine(settings, record_usage=ledger.record_generation),
        ledger=ledger,
    )


class AppState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._settings: Settings | None = None
        self._pipeline: LookupPipeline | None = None

    @property
    def settings(self) -> Settings:
        with self._lock:
            if self._settings is None:
                self._settings = Settings.from_env()
                configure_logging(self._settings.log_level, self._settings.log_json, service="api_gateway")
            return self._settings

    def pipeline(self) -> LookupPipeline:
        settings = self.settings
        with self._lock:
            if self._pipeline is None:
                self._pipeline = build_pipeline(settings)
                log.info(
                    "pipeline_ready",
                    provider=settings.synthesis.provider,
                    store="redis" if settings.redis_url else "memory",
                    cache_versions=self._pipeline.cache.versions,
                )
            return self._pipeline

    def registry(self) -> ProviderRegistry:
        return build_default_registry()

    def reset(self, settings: Settings | None = None, pipeline: LookupPipeline | None = None) -> None:
        with self._lock:
            self._settings = settings
            self._pipeline = pipeline


app_state = AppState()
