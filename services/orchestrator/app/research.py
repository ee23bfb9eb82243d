from __future__ import annotations

import json
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from time import perf_counter

from shared.schemas.domain import ParsedEtymChain

from services.retrieval_service.app.aggregator import (
    PRIMARY_SOURCES,
    RELATED_SOURCES,
    ROOT_SOURCES,
    SourceCache,
    fetch_sources,
    has_primary_text,
    main_word_sources,
    primary_sources_all_not_found,
)
from services.retrieval_service.app.models import SourceResult, SourceStatus

from .chain_parser import parse_source_texts
from .config import Settings
from .deadline import RequestDeadline
from .errors import UpstreamTimeout
from .fanout import Err, Ok, run_all
from .observability import LookupObservability, PhaseMetric, emit_event, get_logger
from .prompts import build_root_prompt
from .providers import GenerationResult, generate_text

log = get_logger(__name__)

COST_PER_ROOT = len(ROOT_SOURCES)
_RELATED_PATTERNS = [
    re.compile(r"\brelated to\s+([A-Za-z][\w-]+)", re.IGNORECASE),
    re.compile(r"\bcognate with\s+([A-Za-z][\w-]+)", re.IGNORECASE),
    re.compile(r"\bsee also\s+([A-Za-z][\w-]+)", re.IGNORECASE),
    re.compile(r"\bcompare\s+([A-Za-z][\w-]+)", re.IGNORECASE),
    re.compile(r"\bakin to\s+([A-Za-z][\w-]+)", re.IGNORECASE),
]
_RELATED_STOPWORDS = {"the", "and", "for", "from", "with", "also", "old", "middle", "latin", "greek", "french"}

Generator = Callable[..., GenerationResult]
UsageRecorder = Callable[[GenerationResult], None]


class FetchBudget:
    """Global per-word fetch allowance shared by all research phases."""

    def __init__(self, limit: int) -> None:
        self.limit = max(0, limit)
        self._used = 0
        self._lock = threading.Lock()

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self._used)

    def take(self, count: int) -> int:
        with self._lock:
            granted = min(max(0, count), self.limit - self._used)
            self._used += max(0, granted)
            return max(0, granted)


@dataclass(frozen=True)
class RootResearchData:
    root: str
    source_results: dict[str, SourceResult]
    related_terms: list[str]


@dataclass(frozen=True)
class ResearchContext:
    word: str
    main_results: dict[str, SourceResult]
    identified_roots: tuple[str, ...] = ()
    root_research: tuple[RootResearchData, ...] = ()
    related_results: dict[str, SourceResult] = field(default_factory=dict)
    fetches_used: int = 0
    chains: tuple[ParsedEtymChain, ...] = ()
    root_errors: dict[str, str] = field(default_factory=dict)

    @property
    def has_primary_text(self) -> bool:
        return has_primary_text(self.main_results)

    @property
    def primary_not_found(self) -> bool:
        return primary_sources_all_not_found(self.main_results)

    def ok_results(self) -> list[SourceResult]:
        results = [result for result in self.main_results.values() if result.ok]
        for root_data in self.root_research:
            results.extend(result for result in root_data.source_results.values() if result.ok)
        results.extend(result for result in self.related_results.values() if result.ok)
        return results


def parse_roots_array(text: str, word: str, limit: int) -> list[str]:
    match = re.search(r"\[[\s\S]*?\]", text or "")
    if not match:
        return []
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    roots: list[str] = []
    for item in parsed:
        if not isinstance(item, str):
            continue
        root = item.strip().lower().strip("-")
        if len(root) < 2 or root == word or root in roots:
            continue
        roots.append(root)
    return roots[:limit]


def extract_related_terms(text: str, exclude: set[str], limit: int) -> list[str]:
    terms: list[str] = []
    for pattern in _RELATED_PATTERNS:
        for match in pattern.finditer(text):
            term = match.group(1).lower().strip("-")
            if len(term) <= 2 or term in exclude or term in _RELATED_STOPWORDS or term in terms:
                continue
            terms.append(term)
    return terms[:limit]


class ResearchOrchestrator:
    def __init__(
        self,
        settings: Settings,
        cache: SourceCache | None = None,
        generate: Generator = generate_text,
        record_usage: UsageRecorder | None = None,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.generate = generate
        self.record_usage = record_usage

    def _fetch(self, term: str, sources: tuple[str, ...], deadline: RequestDeadline) -> dict[str, SourceResult]:
        timeout_s = deadline.bound(self.settings.research.fetch_timeout_s)
        return fetch_sources(
            term,
            sources,
            timeout_s=timeout_s,
            cache=self.cache,
            max_workers=self.settings.research.max_workers,
        )

    def _log_phase(self, obs: LookupObservability | None, name: str, started: float, budget: FetchBudget, errors: int = 0) -> None:
        duration_ms = int((perf_counter() - started) * 1000)
        log.info("research_phase", phase=name, fetches_used=budget.used, fetch_limit=budget.limit, duration_ms=duration_ms)
        if obs is not None:
            obs.add_phase(PhaseMetric(name=name, duration_ms=duration_ms, fetches_used=budget.used, source_errors=errors))

    def identify_roots(self, word: str, texts: list[str], deadline: RequestDeadline) -> list[str]:
        research = self.settings.research
        synthesis = self.settings.synthesis
        if not texts or research.max_roots <= 0:
            return []
        prompt = build_root_prompt(word, texts, research.max_source_chars)
        try:
            result = self.generate(
                synthesis.root_provider,
                prompt,
                max_tokens=synthesis.root_max_tokens,
                timeout_s=deadline.bound(synthesis.llm_timeout_s),
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("root_identification_failed", word=word, error=str(exc))
            return []
        if self.record_usage is not None:
            self.record_usage(result)
        if not result.success:
            log.warning("root_identification_failed", word=word, error=result.error)
            return []
        return parse_roots_array(result.text, word, research.max_roots + 1)

    def _research_root(self, root: str, word: str, deadline: RequestDeadline) -> RootResearchData:
        results = self._fetch(root, ROOT_SOURCES, deadline)
        combined = " ".join(result.text or "" for result in results.values() if result.ok)
        related = extract_related_terms(combined, {root, word}, self.settings.research.max_related_per_root)
        return RootResearchData(root=root, source_results=results, related_terms=related)

    def research(
        self,
        word: str,
        deadline: RequestDeadline,
        obs: LookupObservability | None = None,
    ) -> ResearchContext:
        research = self.settings.research
        budget = FetchBudget(research.max_total_fetches)

        deadline.check("main_word_phase")
        started = perf_counter()
        sources = main_word_sources(research.public_search_enabled)
        granted = budget.take(len(sources))
        # Primary sources come first so a tight budget never drops them.
        sources = tuple(sorted(sources, key=lambda name: name not in PRIMARY_SOURCES))[:granted]
        main_results = self._fetch(word, sources, deadline)
        failed = sum(1 for result in main_results.values() if result.status in {SourceStatus.ERROR, SourceStatus.TIMEOUT})
        self._log_phase(obs, "main_word", started, budget, failed)
        timed_out = sorted(name for name, result in main_results.items() if result.status == SourceStatus.TIMEOUT)
        if timed_out:
            emit_event("sources_timed_out", word=word, sources=timed_out, category=UpstreamTimeout.category)

        if not has_primary_text(main_results):
            log.info("research_no_primary_sources", word=word, fetches_used=budget.used)
            return ResearchContext(word=word, main_results=main_results, fetches_used=budget.used)

        started = perf_counter()
        chains = parse_source_texts(word, {name: result.text for name, result in main_results.items() if name in PRIMARY_SOURCES and result.ok})
        self._log_phase(obs, "parse", started, budget)

        deadline.check("root_identification_phase")
        started = perf_counter()
        primary_texts = [main_results[name].text or "" for name in PRIMARY_SOURCES if name in main_results and main_results[name].ok]
        roots = self.identify_roots(word, primary_texts, deadline)
        self._log_phase(obs, "root_identification", started, budget)

        deadline.check("root_research_phase")
        started = perf_counter()
        affordable = min(budget.remaining // COST_PER_ROOT, research.max_roots)
        to_explore = [root for root in roots if root != word][:affordable]
        budget.take(len(to_explore) * COST_PER_ROOT)
        outcomes = run_all(
            {root: (lambda root=root: self._research_root(root, word, deadline)) for root in to_explore},
            max_workers=max(1, research.max_roots),
        )
        root_research: list[RootResearchData] = []
        root_errors: dict[str, str] = {}
        for root, outcome in outcomes.items():
            if isinstance(outcome, Ok):
                root_research.append(outcome.value)
            elif isinstance(outcome, Err):
                root_errors[root] = outcome.reason
                log.warning("root_research_failed", root=root, error=outcome.reason)

        related_terms: list[str] = []
        for root_data in root_research:
            for term in root_data.related_terms:
                if term not in related_terms and term != word and term not in roots:
                    related_terms.append(term)
        related_terms = related_terms[: budget.take(len(related_terms))]
        related_results: dict[str, SourceResult] = {}
        if related_terms and not deadline.expired:
            related_outcomes = run_all(
                {term: (lambda term=term: self._fetch(term, RELATED_SOURCES, deadline)) for term in related_terms},
                max_workers=research.max_workers,
            )
            for term, outcome in related_outcomes.items():
                if isinstance(outcome, Ok):
                    related_results.update({term: result for result in outcome.value.values()})
                else:
                    root_errors[f"related:{term}"] = outcome.reason
        self._log_phase(obs, "root_research", started, budget, len(root_errors))

        for root_data in root_research:
            chains.extend(
                parse_source_texts(root_data.root, {name: result.text for name, result in root_data.source_results.items() if result.ok})
            )

        emit_event(
            "research_completed",
            word=word,
            roots=to_explore,
            related=related_terms,
            fetches_used=budget.used,
            chains=len(chains),
        )
        return ResearchContext(
            word=word,
            main_results=main_results,
            identified_roots=tuple(roots),
            root_research=tuple(root_research),
            related_results=related_results,
            fetches_used=budget.used,
            chains=tuple(chains),
            root_errors=root_errors,
        )
