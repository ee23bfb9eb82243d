from __future__ import annotations

import re
import unicodedata
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .domain import CostMode, EtymologyResult

WORD_MIN_LENGTH = 2
WORD_MAX_LENGTH = 48
_WORD_PATTERN = re.compile(r"^[a-z][a-z'-]{1,47}$")
_APOSTROPHES = {"’": "'", "‘": "'", "ʼ": "'"}


def normalize_word(raw: str) -> str:
    """Canonicalize a user-supplied word and check its shape.

    NFKC-normalizes, trims and lowercases. Raises ValueError when the
    result is outside the accepted length or character class.
    """
    text = unicodedata.normalize("NFKC", raw or "")
    for curly, straight in _APOSTROPHES.items():
        text = text.replace(curly, straight)
    text = text.strip().lower()
    if not (WORD_MIN_LENGTH <= len(text) <= WORD_MAX_LENGTH):
        raise ValueError(f"word must be {WORD_MIN_LENGTH}-{WORD_MAX_LENGTH} characters")
    if not _WORD_PATTERN.match(text):
        raise ValueError("word must start with a letter and contain only letters, hyphens or apostrophes")
    return text


class EtymologyRequest(BaseModel):
    word: str = Field(min_length=1, max_length=256)

    @field_validator("word")
    @classmethod
    def canonical_word(cls, value: str) -> str:
        return normalize_word(value)


class WordSuggestion(BaseModel):
    word: str
    distance: int = Field(ge=0)


class EtymologyResponse(BaseModel):
    success: bool = True
    data: EtymologyResult
    cached: bool = False


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    category: str
    suggestions: list[WordSuggestion] | None = None
    suggestion: str | None = None
    details: dict[str, Any] | None = None


class SuggestionsData(BaseModel):
    suggestions: list[WordSuggestion]


class SuggestionsResponse(BaseModel):
    success: bool = True
    data: SuggestionsData


class RandomWordData(BaseModel):
    word: str


class RandomWordResponse(BaseModel):
    success: bool = True
    data: RandomWordData


class AdminStatsResponse(BaseModel):
    mode: CostMode
    spent_usd: float
    limit_usd: float
    period: str
    cache_versions: dict[str, int] = Field(default_factory=dict)
    force_cache_only: bool = False
