from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class SourceStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    ERROR = "error"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class SourceResult(BaseModel):
    source: str
    term: str
    status: SourceStatus
    text: str | None = None
    url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == SourceStatus.OK and bool(self.text)

    @property
    def cacheable(self) -> bool:
        # Errors and timeouts stay retryable.
        return self.status in {SourceStatus.OK, SourceStatus.NOT_FOUND}
