from __future__ import annotations

import copy
from dataclasses import replace

import pytest

from services.orchestrator.app.config import Settings
from services.orchestrator.app.store import MemoryStore

TELEPHONE_RESULT = {
    "word": "telephone",
    "pronunciation": "/ˈtɛlɪfoʊn/",
    "definition": "device for talking with someone far away",
    "roots": [
        {"root": "tele", "origin": "Greek", "meaning": "far off", "related_words": ["television", "telescope"]},
        {"root": "phone", "origin": "Greek", "meaning": "sound, voice", "related_words": ["phonetic", "symphony"]},
    ],
    "ancestry_graph": {
        "branches": [
            {
                "root": "tele",
                "stages": [
                    {"stage": "Proto-Indo-European", "form": "*kwel-"},
                    {"stage": "Greek", "form": "tēle"},
                ],
            },
            {
                "root": "phone",
                "stages": [
                    {"stage": "Proto-Indo-European", "form": "*bha-"},
                    {"stage": "Greek", "form": "phōnē"},
                ],
            },
        ],
        "merge_point": {"form": "téléphone", "note": "French coinage"},
        "post_merge": [{"stage": "French", "form": "téléphone"}, {"stage": "English", "form": "telephone"}],
    },
    "lore": (
        "Before Bell ever spoke into a wire, telephone named acoustic signalling devices of the 1830s. "
        "The word was built from two Greek pieces meaning far off and voice."
    ),
    "sources": [],
}

ETYMONLINE_TELEPHONE = (
    '1835, "instrument for conveying sound signals," coined from French téléphone, '
    'from Greek tēle "far off" + phōnē "sound, voice," from PIE root *bha- "to speak, tell, say."'
)
WIKTIONARY_TELEPHONE = 'Etymology From French téléphone, from Ancient Greek τῆλε (tēle, "far") + φωνή (phōnē, "voice").'


@pytest.fixture
def telephone_texts() -> dict[str, str]:
    return {"etymonline": ETYMONLINE_TELEPHONE, "wiktionary": WIKTIONARY_TELEPHONE}


@pytest.fixture
def result_payload():
    def build(**overrides):
        payload = copy.deepcopy(TELEPHONE_RESULT)
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings() -> Settings:
    base = Settings()
    return base.with_overrides(
        request_deadline_s=10.0,
        lock=replace(base.lock, poll_attempts=40, poll_interval_s=0.01),
        synthesis=replace(base.synthesis, provider="anthropic", root_provider="anthropic"),
    )
