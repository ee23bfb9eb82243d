from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Protocol

from shared.schemas.api import WordSuggestion, normalize_word
from shared.schemas.domain import BudgetState, CostMode, EtymologyResult, SourceReference
from services.retrieval_service.app.models import SourceResult

from .cache_store import CacheStore
from .config import Settings
from .deadline import RequestDeadline
from .enricher import enrich
from .errors import BudgetExceeded, EtymologyError, InputInvalid, WordNotFound
from .observability import LookupObservability, PhaseMetric, emit_event, get_logger
from .policy import BudgetLedger, estimate_generation_cost, period_key
from .research import ResearchContext, ResearchOrchestrator
from .singleflight import LockCoordinator
from .spellcheck import is_likely_typo, suggest
from .synthesis import SynthesisEngine
from .verifier import validate_result
from .wordlist import random_word

log = get_logger(__name__)

_REFUSING_MODES = {CostMode.CACHE_ONLY, CostMode.BLOCKED}


class BudgetSnapshotProvider(Protocol):
    def snapshot(self) -> BudgetState: ...


class _IdleBudget:
    """Snapshot source used when no ledger is wired."""

    def __init__(self, limit_usd: float) -> None:
        self.limit_usd = limit_usd

    def snapshot(self) -> BudgetState:
        return BudgetState(period_key=period_key(datetime.now(timezone.utc)), limit_usd=self.limit_usd)


@dataclass(frozen=True)
class LookupOutcome:
    result: EtymologyResult
    cached: bool
    observability: LookupObservability


def build_sources(context: ResearchContext) -> list[SourceReference]:
    """One reference per (source, term) that actually contributed text."""
    references: list[SourceReference] = []
    seen: set[tuple[str, str]] = set()
    results: list[SourceResult] = context.ok_results()
    for result in results:
        key = (result.source, result.term)
        if key in seen:
            continue
        seen.add(key)
        references.append(
            SourceReference(
                name=result.source,
                url=result.url,
                word=result.term,
            )
        )
    return references


class LookupPipeline:
    def __init__(
        self,
        settings: Settings,
        cache: CacheStore,
        locks: LockCoordinator,
        research: ResearchOrchestrator,
        synthesis: SynthesisEngine,
        ledger: BudgetLedger | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.locks = locks
        self.research = research
        self.synthesis = synthesis
        self.ledger = ledger
        self.budget: BudgetSnapshotProvider = ledger if ledger is not None else _IdleBudget(settings.cost.monthly_limit_usd)

    def current_mode(self) -> CostMode:
        if self.settings.cost.force_cache_only:
            return CostMode.CACHE_ONLY
        if self.ledger is None:
            return CostMode.NORMAL
        return self.ledger.get_mode()

    def _retry_after_s(self, mode: CostMode) -> int:
        if self.ledger is not None:
            return self.ledger.retry_after_s(mode)
        return 900

    def _budget_error(self, word: str, mode: CostMode) -> BudgetExceeded:
        emit_event("budget_rejected", word=word, mode=mode.value)
        return BudgetExceeded(
            f"Lookups of uncached words are paused ({mode.value} mode)",
            mode=mode,
            retry_after_s=self._retry_after_s(mode),
        )

    def _not_found(self, word: str) -> WordNotFound:
        message = f"No etymology sources found for '{word}'"
        if is_likely_typo(word):
            suggestions: list[WordSuggestion] = suggest(word)
            return WordNotFound(message, suggestions=suggestions)
        return WordNotFound(message, suggestion=random_word())

    def lookup(self, raw_word: str, deadline: RequestDeadline | None = None) -> LookupOutcome:
        try:
            word = normalize_word(raw_word)
        except ValueError as exc:
            raise InputInvalid(str(exc)) from exc

        deadline = deadline or RequestDeadline(self.settings.request_deadline_s)
        obs = LookupObservability(word=word)
        started = perf_counter()
        outcome = "error"
        try:
            cached = self.cache.get_result(word)
            if cached is not None:
                outcome = "cache_hit"
                return LookupOutcome(result=cached, cached=True, observability=obs)

            if self.cache.is_invalid(word):
                outcome = "negative_cache_hit"
                raise self._not_found(word)

            mode = self.current_mode()
            if mode in _REFUSING_MODES:
                outcome = "budget_rejected"
                raise self._budget_error(word, mode)

            token = self.locks.try_acquire(word)
            acquired = token is not None
            if not acquired:
                waited = self.locks.poll_for_result(word, lambda: self.cache.get_result(word), deadline)
                if waited is not None:
                    outcome = "lock_wait_hit"
                    return LookupOutcome(result=waited, cached=True, observability=obs)
                deadline.check("lock_wait")
                if mode == CostMode.PROTECTED:
                    outcome = "budget_rejected"
                    raise self._budget_error(word, mode)
                log.info("lock_wait_compute", word=word)

            try:
                if acquired:
                    # Another caller may have finished between the first read and the acquire.
                    cached = self.cache.get_result(word)
                    if cached is not None:
                        outcome = "cache_hit"
                        return LookupOutcome(result=cached, cached=True, observability=obs)
                    if mode == CostMode.PROTECTED:
                        outcome = "budget_rejected"
                        raise self._budget_error(word, mode)
                result = self._compute(word, deadline, obs)
            finally:
                if token is not None:
                    self.locks.release(word, token)
            outcome = "computed"
            return LookupOutcome(result=result, cached=False, observability=obs)
        except EtymologyError as exc:
            if outcome == "error":
                outcome = exc.category
            raise
        finally:
            obs.finish(outcome)
            emit_event(
                "lookup_completed",
                word=word,
                outcome=outcome,
                duration_ms=int((perf_counter() - started) * 1000),
                estimated_cost_usd=round(obs.total_estimated_cost_usd, 6),
                phases=[phase.name for phase in obs.phases],
            )

    def _compute(self, word: str, deadline: RequestDeadline, obs: LookupObservability) -> EtymologyResult:
        deadline.check("research")
        context = self.research.research(word, deadline, obs)
        if not context.has_primary_text:
            # Only a definitive miss from every primary source is remembered.
            if context.primary_not_found:
                self.cache.mark_invalid(word, WordNotFound.category)
            raise self._not_found(word)

        deadline.check("synthesis")
        started = perf_counter()
        result, usage = self.synthesis.synthesize(word, context, deadline)
        obs.add_phase(
            PhaseMetric(
                name="synthesis",
                duration_ms=int((perf_counter() - started) * 1000),
                estimated_cost_usd=estimate_generation_cost(
                    self.settings.synthesis.provider,
                    "",
                    tokens_input=usage.tokens_input,
                    tokens_output=usage.tokens_output,
                ),
            )
        )

        started = perf_counter()
        enrich(result.ancestry_graph, list(context.chains))
        result.sources = build_sources(context)
        validated = validate_result(result)
        obs.add_phase(PhaseMetric(name="enrich_validate", duration_ms=int((perf_counter() - started) * 1000)))

        deadline.check("cache_write")
        self.cache.set_result(word, validated)
        return validated

    def stats(self) -> dict:
        state = self.budget.snapshot()
        return {
            "mode": self.current_mode().value,
            "spent_usd": state.spent_usd,
            "limit_usd": state.limit_usd,
            "period": state.period_key,
            "cache_versions": self.cache.versions,
            "force_cache_only": self.settings.cost.force_cache_only,
        }


def execute_lookup(pipeline: LookupPipeline, raw_word: str, deadline: RequestDeadline | None = None) -> LookupOutcome:
    return pipeline.lookup(raw_word, deadline)
