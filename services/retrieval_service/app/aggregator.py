from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Protocol

import httpx
import structlog

from .adapters import (
    fetch_etymonline,
    fetch_free_dictionary,
    fetch_urban_dictionary,
    fetch_wikipedia,
    fetch_wiktionary,
)
from .models import SourceResult, SourceStatus

log = structlog.get_logger(__name__)

Fetcher = Callable[[str, float], SourceResult]

PRIMARY_SOURCES = ("etymonline", "wiktionary")
ROOT_SOURCES = ("etymonline", "wiktionary")
RELATED_SOURCES = ("etymonline",)


class SourceCache(Protocol):
    def get_source(self, source: str, term: str) -> SourceResult | None: ...

    def set_source(self, result: SourceResult) -> bool: ...


def _fetchers() -> dict[str, Fetcher]:
    # Resolved per call so tests can swap module-level fetchers.
    return {
        "etymonline": fetch_etymonline,
        "wiktionary": fetch_wiktionary,
        "free_dictionary": fetch_free_dictionary,
        "wikipedia": fetch_wikipedia,
        "urban_dictionary": fetch_urban_dictionary,
    }


def main_word_sources(public_search_enabled: bool = True) -> tuple[str, ...]:
    sources = ["etymonline", "wiktionary", "free_dictionary"]
    if public_search_enabled:
        sources.extend(["wikipedia", "urban_dictionary"])
    return tuple(sources)


def fetch_source(
    source: str,
    term: str,
    timeout_s: float,
    cache: SourceCache | None = None,
) -> SourceResult:
    """One fault-tolerant fetch. Never raises: failures become a non-ok result."""
    if cache is not None:
        cached = cache.get_source(source, term)
        if cached is not None:
            return cached

    fetcher = _fetchers().get(source)
    if fetcher is None:
        return SourceResult(source=source, term=term, status=SourceStatus.SKIPPED, error="unknown source")
    try:
        result = fetcher(term, timeout_s)
    except httpx.TimeoutException as exc:
        log.warning("upstream_timeout", source=source, term=term, timeout_s=timeout_s)
        return SourceResult(source=source, term=term, status=SourceStatus.TIMEOUT, error=str(exc) or "timeout")
    except Exception as exc:  # noqa: BLE001
        log.warning("source_fetch_failed", source=source, term=term, error=str(exc))
        return SourceResult(source=source, term=term, status=SourceStatus.ERROR, error=str(exc))

    if cache is not None and result.cacheable:
        cache.set_source(result)
    return result


def fetch_sources(
    term: str,
    sources: tuple[str, ...] | list[str],
    timeout_s: float,
    cache: SourceCache | None = None,
    max_workers: int = 6,
) -> dict[str, SourceResult]:
    """Fetch ``term`` from every named source in parallel."""
    if not sources:
        return {}
    results: dict[str, SourceResult] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(sources)))) as executor:
        futures = {executor.submit(fetch_source, source, term, timeout_s, cache): source for source in sources}
        for future in as_completed(futures):
            source = futures[future]
            results[source] = future.result()
    log.info(
        "sources_fetched",
        term=term,
        ok=sorted(name for name, result in results.items() if result.ok),
        failed=sorted(name for name, result in results.items() if result.status not in {SourceStatus.OK, SourceStatus.NOT_FOUND}),
    )
    return {source: results[source] for source in sources}


def primary_sources_all_not_found(results: dict[str, SourceResult]) -> bool:
    """True only when every primary source answered definitively with nothing."""
    return all(
        results.get(source) is not None and results[source].status == SourceStatus.NOT_FOUND
        for source in PRIMARY_SOURCES
    )


def has_primary_text(results: dict[str, SourceResult]) -> bool:
    return any(results.get(source) is not None and results[source].ok for source in PRIMARY_SOURCES)
