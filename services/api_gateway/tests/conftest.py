from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from shared.schemas.domain import EtymologyResult

from services.api_gateway.app.main import app
from services.api_gateway.app.state import app_state
from services.orchestrator.app.config import Settings
from services.orchestrator.app.engine import LookupOutcome
from services.orchestrator.app.observability import LookupObservability

SALARY_RESULT = {
    "word": "salary",
    "pronunciation": "/ˈsæləri/",
    "definition": "fixed regular payment for work",
    "roots": [{"root": "sal", "origin": "Latin", "meaning": "salt"}],
    "ancestry_graph": {
        "branches": [
            {
                "root": "sal",
                "stages": [
                    {"stage": "Latin", "form": "salarium", "confidence": "high"},
                    {"stage": "Anglo-French", "form": "salarie"},
                ],
            }
        ]
    },
    "lore": "Roman soldiers were said to be paid in salt, though the story is more legend than ledger.",
    "sources": [{"name": "etymonline", "url": "https://www.etymonline.com/word/salary", "word": "salary"}],
}


class FakePipeline:
    """Stands in for ``LookupPipeline`` at the HTTP boundary."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.error: Exception | None = None
        self.cached = False
        self.calls: list[str] = []

    def lookup(self, word, deadline=None) -> LookupOutcome:
        self.calls.append(word)
        if self.error is not None:
            raise self.error
        return LookupOutcome(
            result=EtymologyResult.model_validate(SALARY_RESULT),
            cached=self.cached,
            observability=LookupObservability(word=word),
        )

    def stats(self) -> dict:
        return {
            "mode": "protected",
            "spent_usd": 251.5,
            "limit_usd": 400.0,
            "period": "2026-10",
            "cache_versions": {"etymology": 3, "source": 2, "negative": 1},
            "force_cache_only": False,
        }


@pytest.fixture
def gateway_settings() -> Settings:
    return Settings(admin_secret="s3cret-admin")


@pytest.fixture
def pipeline(gateway_settings):
    fake = FakePipeline(gateway_settings)
    app_state.reset(settings=gateway_settings, pipeline=fake)
    yield fake
    app_state.reset()


@pytest.fixture
def client(pipeline) -> TestClient:
    return TestClient(app)
