from __future__ import annotations

import json
import random
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from shared.schemas.domain import EtymologyResult
from services.retrieval_service.app.models import SourceResult

from .config import CacheSettings
from .errors import CoordinationUnavailable
from .observability import emit_event, get_logger, safe_error
from .store import KeyValueStore, StoreUnavailable

log = get_logger(__name__)

ETYMOLOGY_KIND = "etymology"
SOURCE_KIND = "source"
NEGATIVE_PREFIX = "neg"


def jitter_ttl(ttl_s: int, jitter_pct: float, rng: Callable[[], float] = random.random) -> int:
    """Spread expiries over ``ttl_s * (1 ± jitter_pct)``."""
    if ttl_s <= 0:
        return 1
    pct = max(0.0, jitter_pct)
    offset = (rng() * 2.0 - 1.0) * pct
    return max(1, round(ttl_s * (1.0 + offset)))


class CacheStore:
    """Versioned, schema-checked cache over a key/value store.

    Reads that fail validation are misses. Writes that fail validation are
    dropped. Store outages degrade to misses and skipped writes.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: CacheSettings,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.store = store
        self.settings = settings
        self._rng = rng
        self._schemas: dict[str, type[BaseModel]] = {
            ETYMOLOGY_KIND: EtymologyResult,
            SOURCE_KIND: SourceResult,
        }
        self._versions: dict[str, int] = {
            ETYMOLOGY_KIND: settings.etymology_version,
            SOURCE_KIND: settings.source_version,
            NEGATIVE_PREFIX: settings.negative_version,
        }

    @property
    def versions(self) -> dict[str, int]:
        return dict(self._versions)

    def key(self, kind: str, word: str) -> str:
        return f"{kind}:v{self._versions[kind]}:{word}"

    def get(self, kind: str, word: str) -> Any | None:
        schema = self._schemas[kind]
        key = self.key(kind, word)
        try:
            raw = self.store.get(key)
        except StoreUnavailable as exc:
            log.warning("cache_read_failed", key=key, error=safe_error(exc))
            emit_event("store_unavailable", component="cache", operation="read", category=CoordinationUnavailable.category)
            return None
        if raw is None:
            return None
        try:
            return schema.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            emit_event("cache_schema_mismatch", kind=kind, key=key, error=safe_error(str(exc))[:300])
            return None

    def set(self, kind: str, word: str, value: BaseModel | dict, ttl_s: int | None = None) -> bool:
        schema = self._schemas[kind]
        key = self.key(kind, word)
        payload = value.model_dump(mode="json") if isinstance(value, BaseModel) else value
        try:
            validated = schema.model_validate(payload)
        except ValidationError as exc:
            log.error("cache_write_rejected", kind=kind, key=key, error=safe_error(str(exc))[:300])
            emit_event("cache_write_rejected", kind=kind, key=key)
            return False
        ttl = jitter_ttl(ttl_s if ttl_s is not None else self._default_ttl(kind), self.settings.jitter_pct, self._rng)
        try:
            self.store.set(key, validated.model_dump_json(exclude_none=True), ttl_s=ttl)
        except StoreUnavailable as exc:
            log.warning("cache_write_failed", key=key, error=safe_error(exc))
            emit_event("store_unavailable", component="cache", operation="write", category=CoordinationUnavailable.category)
            return False
        return True

    def _default_ttl(self, kind: str) -> int:
        if kind == SOURCE_KIND:
            return self.settings.source_ttl_s
        return self.settings.etymology_ttl_s

    def get_result(self, word: str) -> EtymologyResult | None:
        return self.get(ETYMOLOGY_KIND, word)

    def set_result(self, word: str, result: EtymologyResult | dict) -> bool:
        return self.set(ETYMOLOGY_KIND, word, result)

    def get_source(self, source: str, term: str) -> SourceResult | None:
        return self.get(SOURCE_KIND, f"{source}:{term}")

    def set_source(self, result: SourceResult) -> bool:
        return self.set(SOURCE_KIND, f"{result.source}:{result.term}", result)

    def negative_key(self, word: str) -> str:
        return self.key(NEGATIVE_PREFIX, word)

    def is_invalid(self, word: str) -> bool:
        try:
            return self.store.get(self.negative_key(word)) is not None
        except StoreUnavailable as exc:
            log.warning("negative_cache_read_failed", word=word, error=safe_error(exc))
            emit_event("store_unavailable", component="negative_cache", operation="read", category=CoordinationUnavailable.category)
            return False

    def mark_invalid(self, word: str, category: str) -> bool:
        if category not in self.settings.negative_admit_only:
            emit_event("negative_cache_refused", word=word, category=category)
            return False
        ttl = jitter_ttl(self.settings.negative_ttl_s, self.settings.jitter_pct, self._rng)
        try:
            self.store.set(self.negative_key(word), category, ttl_s=ttl)
        except StoreUnavailable as exc:
            log.warning("negative_cache_write_failed", word=word, error=safe_error(exc))
            emit_event("store_unavailable", component="negative_cache", operation="write", category=CoordinationUnavailable.category)
            return False
        return True
