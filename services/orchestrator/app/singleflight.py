from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from typing import TypeVar

from .config import LockSettings
from .deadline import RequestDeadline
from .errors import CoordinationUnavailable
from .observability import emit_event, get_logger, safe_error
from .store import KeyValueStore, StoreUnavailable

log = get_logger(__name__)

T = TypeVar("T")


def lock_key(word: str) -> str:
    return f"lock:{word}"


class LockCoordinator:
    """Per-word mutual exclusion over SET NX EX.

    ``try_acquire`` returns an owner token when the caller owns the
    computation, or when the store is unreachable (fail open), and None when
    another caller holds the lock. ``release`` only deletes a lock that still
    carries the caller's token, so a holder whose lock expired cannot free
    the lock of the next owner.
    """

    def __init__(self, store: KeyValueStore, settings: LockSettings) -> None:
        self.store = store
        self.settings = settings

    def try_acquire(self, word: str) -> str | None:
        token = uuid.uuid4().hex
        try:
            if self.store.set(lock_key(word), token, ttl_s=self.settings.ttl_s, nx=True):
                return token
            return None
        except StoreUnavailable as exc:
            log.warning("lock_acquire_failed", word=word, error=safe_error(exc))
            emit_event("lock_fail_open", word=word, category=CoordinationUnavailable.category)
            return token

    def release(self, word: str, token: str) -> bool:
        try:
            released = self.store.delete_if_equals(lock_key(word), token)
        except StoreUnavailable as exc:
            log.warning("lock_release_failed", word=word, error=safe_error(exc))
            return False
        if not released:
            log.warning("lock_lost", word=word)
        return released

    def poll_for_result(
        self,
        word: str,
        get_cached: Callable[[], T | None],
        deadline: RequestDeadline | None = None,
    ) -> T | None:
        for attempt in range(self.settings.poll_attempts):
            if deadline is not None:
                if deadline.expired or not deadline.wait(self.settings.poll_interval_s):
                    break
            else:
                time.sleep(self.settings.poll_interval_s)
            cached = get_cached()
            if cached is not None:
                log.info("lock_wait_hit", word=word, attempts=attempt + 1)
                return cached
        log.info("lock_wait_exhausted", word=word, attempts=self.settings.poll_attempts)
        return None
