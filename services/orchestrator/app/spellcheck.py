from __future__ import annotations

from collections.abc import Sequence

import Levenshtein

from shared.schemas.api import WordSuggestion

from .wordlist import COMMON_WORDS


def suggest(
    word: str,
    max_suggestions: int = 3,
    max_distance: int = 3,
    vocabulary: Sequence[str] = COMMON_WORDS,
) -> list[WordSuggestion]:
    """Closest vocabulary words by edit distance, nearest first."""
    needle = word.strip().lower()
    if not needle:
        return []
    scored: list[tuple[int, str]] = []
    for candidate in vocabulary:
        distance = Levenshtein.distance(needle, candidate, score_cutoff=max_distance)
        if 0 < distance <= max_distance:
            scored.append((distance, candidate))
    scored.sort()
    return [WordSuggestion(word=candidate, distance=distance) for distance, candidate in scored[:max_suggestions]]


def is_known_word(word: str, vocabulary: Sequence[str] = COMMON_WORDS) -> bool:
    return word.strip().lower() in vocabulary


def is_likely_typo(word: str, vocabulary: Sequence[str] = COMMON_WORDS) -> bool:
    return bool(suggest(word, max_suggestions=1, max_distance=2, vocabulary=vocabulary))


def suggestions_for(query: str, vocabulary: Sequence[str] = COMMON_WORDS) -> list[WordSuggestion]:
    """Suggestions for a typed query; a known word comes back alone at distance 0."""
    if is_known_word(query, vocabulary):
        return [WordSuggestion(word=query.strip().lower(), distance=0)]
    return suggest(query, vocabulary=vocabulary)
