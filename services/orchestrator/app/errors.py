from __future__ import annotations

from shared.schemas.api import WordSuggestion
from shared.schemas.domain import CostMode, TokenUsage


class EtymologyError(RuntimeError):
    category = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InputInvalid(EtymologyError):
    category = "invalid_word_shape"
    status_code = 422


class UpstreamTimeout(EtymologyError):
    """A single source fetch ran past its timeout. Absorbed by the fetch layer."""

    category = "upstream_timeout"
    status_code = 504


class SynthesisFailed(EtymologyError):
    category = "synthesis_failed"
    status_code = 502

    def __init__(self, message: str, usage: TokenUsage | None = None) -> None:
        super().__init__(message)
        self.usage = usage or TokenUsage()


class MalformedModelOutput(SynthesisFailed):
    category = "malformed_model_output"


class SchemaValidationFailed(EtymologyError):
    category = "schema_validation_failed"
    status_code = 502


class BudgetExceeded(EtymologyError):
    category = "budget_exceeded"
    status_code = 503

    def __init__(self, message: str, mode: CostMode, retry_after_s: int) -> None:
        super().__init__(message)
        self.mode = mode
        self.retry_after_s = retry_after_s


class CoordinationUnavailable(EtymologyError):
    """Shared store outage. Logged on fail-open paths, never raised to callers."""

    category = "coordination_unavailable"
    status_code = 503


class WordNotFound(EtymologyError):
    category = "no_sources_found"
    status_code = 404

    def __init__(
        self,
        message: str,
        suggestions: list[WordSuggestion] | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(message)
        self.suggestions = suggestions or []
        # A random word to try instead, offered when the input is not a near miss.
        self.suggestion = suggestion


class RequestCancelled(EtymologyError):
    category = "request_cancelled"
    status_code = 499
