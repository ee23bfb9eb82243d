from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from services.retrieval_service.app import adapters
from services.retrieval_service.app.models import SourceStatus

FIXTURE_DIR = Path(__file__).parent / "fixtures"


def _fixture(name: str) -> str:
    return (FIXTURE_DIR / name).read_text(encoding="utf-8")


def _fake_client(responses: dict[str, tuple[int, str]]):
    """httpx.Client stand-in that answers by URL prefix."""

    class FakeClient:
        requested: list[tuple[str, dict | None]] = []

        def __init__(self, timeout: float, follow_redirects: bool = False) -> None:
            self.timeout = timeout

        def __enter__(self):
            return self

        def __exit__(self, *exc) -> None:
            return None

        def get(self, url: str, params=None, headers=None) -> httpx.Response:
            FakeClient.requested.append((url, params))
            for prefix, (status, body) in responses.items():
                if url.startswith(prefix):
                    return httpx.Response(status, text=body, request=httpx.Request("GET", url))
            raise AssertionError(f"unexpected url {url}")

    return FakeClient


def test_parse_etymonline_html_reads_prose_section():
    text = adapters.parse_etymonline_html(_fixture("etymonline_telephone.html"))
    assert text is not None
    assert text.startswith("1835")
    assert "PIE root *bha-" in text
    assert "Advertisement" not in text


def test_parse_etymonline_html_falls_back_to_dated_paragraph():
    text = adapters.parse_etymonline_html(_fixture("etymonline_fallback.html"))
    assert text is not None
    assert text.startswith("perfidy (n.) 1590s")


def test_parse_etymonline_html_recognizes_soft_404():
    assert adapters.parse_etymonline_html("<html>NEXT_HTTP_ERROR_FALLBACK;404</html>") is None


def test_fetch_etymonline_maps_404_to_not_found(monkeypatch):
    monkeypatch.setattr(adapters.httpx, "Client", _fake_client({adapters.ETYMONLINE_WORD_URL: (404, "")}))
    result = adapters.fetch_etymonline("zzxq")
    assert result.status == SourceStatus.NOT_FOUND
    assert result.url == f"{adapters.ETYMONLINE_WORD_URL}/zzxq"


def test_fetch_wiktionary_extracts_etymology_section(monkeypatch):
    fake = _fake_client({adapters.WIKTIONARY_API_URL: (200, _fixture("wiktionary_salary.json"))})
    monkeypatch.setattr(adapters.httpx, "Client", fake)

    result = adapters.fetch_wiktionary("Salary")

    assert result.ok
    assert result.text.startswith("Etymology")
    assert 'Latin salarium ("salt-money")' in result.text
    assert "Pronunciation" not in result.text
    assert fake.requested[0][1]["titles"] == "salary"


def test_fetch_wiktionary_rejects_malformed_payload(monkeypatch):
    monkeypatch.setattr(adapters.httpx, "Client", _fake_client({adapters.WIKTIONARY_API_URL: (200, "{}")}))
    with pytest.raises(ValueError):
        adapters.fetch_wiktionary("salary")


def test_fetch_urban_dictionary_filters_votes_and_nsfw(monkeypatch):
    fake = _fake_client({adapters.URBAN_DICTIONARY_URL: (200, _fixture("urban_dictionary_salty.json"))})
    monkeypatch.setattr(adapters.httpx, "Client", fake)

    result = adapters.fetch_urban_dictionary("salty")

    assert result.ok
    assert "upset or bitter over something minor" in result.text
    assert "one hundred votes" in result.text
    assert "low-voted" not in result.text
    assert "ass" not in result.text.split()


def test_format_free_dictionary_entry_keeps_two_definitions_per_pos():
    entry = {
        "phonetics": [{"audio": ""}, {"text": "/ˈsæl.ə.ɹi/"}],
        "meanings": [
            {
                "partOfSpeech": "noun",
                "definitions": [{"definition": "Fixed pay."}, {"definition": "Stipend."}, {"definition": "Third."}],
            }
        ],
        "origin": "Latin salarium",
    }
    text = adapters.format_free_dictionary_entry(entry)
    assert text.splitlines() == [
        "Pronunciation: /ˈsæl.ə.ɹi/",
        "noun: Fixed pay.",
        "noun: Stipend.",
        "Origin: Latin salarium",
    ]


def test_get_with_retry_retries_server_errors(monkeypatch):
    monkeypatch.setattr(adapters.time, "sleep", lambda _s: None)
    statuses = iter([503, 200])

    class Client:
        def get(self, url, params=None, headers=None):
            return httpx.Response(next(statuses), text="ok", request=httpx.Request("GET", url))

    response = adapters._get_with_retry(Client(), "https://example.test/x")  # noqa: SLF001
    assert response.status_code == 200


def test_wikipedia_disambiguation_is_not_found(monkeypatch):
    body = json.dumps({"type": "disambiguation", "extract": "may refer to"})
    monkeypatch.setattr(adapters.httpx, "Client", _fake_client({adapters.WIKIPEDIA_SUMMARY_URL: (200, body)}))
    assert adapters.fetch_wikipedia("mercury").status == SourceStatus.NOT_FOUND
