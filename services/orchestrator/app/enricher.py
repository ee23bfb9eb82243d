"""Attach parser evidence and confidence to model-written ancestry stages.

Confidence is never taken from the model. It is derived from how many distinct
sources attest a stage's form in the pre-parsed chains.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable

from shared.schemas.domain import (
    AncestryGraph,
    AncestryStage,
    Confidence,
    ParsedEtymChain,
    ParsedEtymLink,
    StageEvidence,
)

_PARENTHETICAL = re.compile(r"\([^)]*\)")


def normalize_form(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    stripped = _PARENTHETICAL.sub("", stripped)
    stripped = stripped.strip().lstrip("*")
    stripped = stripped.replace("-", "").replace("_", "")
    return re.sub(r"\s+", " ", stripped).strip().lower()


def forms_match(left: str, right: str) -> bool:
    a = normalize_form(left)
    b = normalize_form(right)
    if not a or not b:
        return False
    if a == b:
        return True
    return (len(a) >= 3 and a in b) or (len(b) >= 3 and b in a)


def languages_match(stage_language: str, link_language: str) -> bool:
    a = (stage_language or "").strip().lower()
    b = (link_language or "").strip().lower()
    if not a or not b:
        return False
    return a == b or a in b or b in a


def _stage_matches(stage: AncestryStage, link: ParsedEtymLink) -> bool:
    if not forms_match(stage.form, link.form):
        return False
    # Containment-only form hits need the languages to agree as well.
    if normalize_form(stage.form) == normalize_form(link.form):
        return True
    return languages_match(stage.stage, link.language)


def is_reconstructed_stage(stage: AncestryStage) -> bool:
    if stage.form.startswith("*"):
        return True
    label = stage.stage.lower()
    return "proto-indo-european" in label or label == "pie" or label.startswith("proto-")


def _matches(stage: AncestryStage, chains: Iterable[ParsedEtymChain]) -> list[tuple[str, ParsedEtymLink]]:
    return [(chain.source_name, link) for chain in chains for link in chain.links if _stage_matches(stage, link)]


def confidence_for(source_count: int) -> Confidence:
    if source_count >= 2:
        return Confidence.HIGH
    if source_count == 1:
        return Confidence.MEDIUM
    return Confidence.LOW


def enrich_stage(stage: AncestryStage, chains: list[ParsedEtymChain]) -> None:
    stage.is_reconstructed = is_reconstructed_stage(stage)
    evidence: list[StageEvidence] = []
    seen: set[str] = set()
    for source, link in _matches(stage, chains):
        if source in seen:
            continue
        seen.add(source)
        evidence.append(StageEvidence(source=source, snippet=link.raw_snippet))
    stage.confidence = confidence_for(len(seen))
    if evidence:
        stage.evidence = evidence


def enrich(graph: AncestryGraph, chains: list[ParsedEtymChain]) -> AncestryGraph:
    """Mutate ``graph`` in place and return it for chaining.

    Stages no parsed chain backs are marked low confidence.
    """
    for branch in graph.branches:
        for stage in branch.stages:
            enrich_stage(stage, chains)
    for stage in graph.post_merge or []:
        enrich_stage(stage, chains)
    return graph
