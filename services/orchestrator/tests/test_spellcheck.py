from __future__ import annotations

from services.orchestrator.app.spellcheck import is_known_word, is_likely_typo, suggest


def test_suggest_orders_by_distance_then_word() -> None:
    suggestions = suggest("telephon")
    assert suggestions[0].word == "telephone"
    assert suggestions[0].distance == 1
    distances = [item.distance for item in suggestions]
    assert distances == sorted(distances)
    assert len(suggestions) <= 3


def test_suggest_excludes_exact_and_distant_words() -> None:
    vocabulary = ("salary", "salty", "celery")
    assert [item.word for item in suggest("salary", vocabulary=vocabulary)] == ["salty", "celery"]
    assert suggest("zzzzzzzzzz", vocabulary=vocabulary) == []
    assert suggest("   ", vocabulary=vocabulary) == []


def test_typo_detection() -> None:
    assert is_known_word("Telephone")
    assert is_likely_typo("perfidous")
    assert not is_likely_typo("qwxzkjv")
