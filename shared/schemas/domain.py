from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CostMode(str, Enum):
    NORMAL = "normal"
    PROTECTED = "protected"
    CACHE_ONLY = "cache_only"
    BLOCKED = "blocked"

    @property
    def rank(self) -> int:
        return _MODE_ORDER.index(self)


_MODE_ORDER = [CostMode.NORMAL, CostMode.PROTECTED, CostMode.CACHE_ONLY, CostMode.BLOCKED]


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class _PassThroughModel(BaseModel):
    # Fields added by newer prompt revisions survive validation untouched.
    model_config = ConfigDict(extra="allow")


class Root(_PassThroughModel):
    root: str = Field(min_length=1)
    origin: str = Field(min_length=1)
    meaning: str = Field(min_length=1)
    related_words: list[str] = Field(default_factory=list)
    ancestor_roots: list[str] | None = None
    descendant_words: list[str] | None = None


class StageEvidence(BaseModel):
    source: str
    snippet: str


class AncestryStage(_PassThroughModel):
    stage: str = Field(min_length=1)
    form: str = Field(min_length=1)
    note: str | None = None
    is_reconstructed: bool | None = None
    confidence: Confidence | None = None
    evidence: list[StageEvidence] | None = None


class AncestryBranch(_PassThroughModel):
    root: str = Field(min_length=1)
    stages: list[AncestryStage] = Field(min_length=1)


class ConvergencePoint(_PassThroughModel):
    pie_root: str
    meaning: str
    branch_indices: list[int] = Field(min_length=2)


class MergePoint(_PassThroughModel):
    form: str = Field(min_length=1)
    note: str | None = None


class AncestryGraph(_PassThroughModel):
    branches: list[AncestryBranch] = Field(min_length=1)
    convergence_points: list[ConvergencePoint] | None = None
    merge_point: MergePoint | None = None
    post_merge: list[AncestryStage] | None = None


class SourceReference(_PassThroughModel):
    name: str = Field(min_length=1)
    url: str | None = None
    word: str | None = None


class PartOfSpeech(_PassThroughModel):
    pos: str
    definition: str
    pronunciation: str | None = None


class WordSuggestions(_PassThroughModel):
    synonyms: list[str] = Field(default_factory=list)
    antonyms: list[str] = Field(default_factory=list)
    homophones: list[str] = Field(default_factory=list)
    easily_confused_with: list[str] = Field(default_factory=list)
    see_also: list[str] = Field(default_factory=list)


class ModernUsage(_PassThroughModel):
    has_slang_meaning: bool = False
    slang_definition: str | None = None
    popular_phrases: list[str] | None = None
    generational_note: str | None = None


class EtymologyResult(_PassThroughModel):
    word: str = Field(min_length=1)
    pronunciation: str
    definition: str = Field(min_length=1)
    roots: list[Root] = Field(min_length=1)
    ancestry_graph: AncestryGraph
    lore: str
    sources: list[SourceReference] = Field(default_factory=list)
    parts_of_speech: list[PartOfSpeech] | None = None
    suggestions: WordSuggestions | None = None
    modern_usage: ModernUsage | None = None


class ParsedEtymLink(BaseModel):
    language: str
    form: str
    meaning: str | None = None
    is_reconstructed: bool = False
    raw_snippet: str = ""


class ParsedEtymChain(BaseModel):
    source_name: str
    word: str
    links: list[ParsedEtymLink] = Field(default_factory=list)
    date_attested: str | None = None


class TokenUsage(BaseModel):
    tokens_input: int = 0
    tokens_output: int = 0

    def add(self, tokens_input: int, tokens_output: int) -> "TokenUsage":
        return TokenUsage(
            tokens_input=self.tokens_input + max(0, int(tokens_input)),
            tokens_output=self.tokens_output + max(0, int(tokens_output)),
        )


class BudgetState(BaseModel):
    period_key: str
    spent_usd: float = 0.0
    limit_usd: float
    mode: CostMode = CostMode.NORMAL


def dump_result(result: EtymologyResult) -> dict[str, Any]:
    return result.model_dump(mode="json", exclude_none=True)
