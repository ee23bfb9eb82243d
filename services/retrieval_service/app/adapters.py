from __future__ import annotations

import re
import time
from typing import Any
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from .models import SourceResult, SourceStatus

ETYMONLINE_WORD_URL = "https://www.etymonline.com/word"
WIKTIONARY_API_URL = "https://en.wiktionary.org/w/api.php"
WIKTIONARY_PAGE_URL = "https://en.wiktionary.org/wiki"
WIKIPEDIA_SUMMARY_URL = "https://en.wikipedia.org/api/rest_v1/page/summary"
FREE_DICTIONARY_URL = "https://api.dictionaryapi.dev/api/v2/entries/en"
URBAN_DICTIONARY_URL = "https://api.urbandictionary.com/v0/define"

USER_AGENT = "etymon/0.1 (etymology lookup service)"
MAX_TEXT_CHARS = 4000
URBAN_MIN_THUMBS_UP = 100

_ETYMOLOGY_HINT = re.compile(r"\d{4}s?|Latin|Greek|French|Old English|German", re.IGNORECASE)
_DATE_HINT = re.compile(r"\b\d{4}s?\b|\b\d{1,2}c\.")
_NSFW_TERMS = (
    "fuck", "shit", "cock", "dick", "pussy", "cunt", "ass", "penis",
    "vagina", "anal", "orgasm", "ejaculate", "masturbat",
)


def _clean_text(text: str) -> str:
    text = text.replace("\x00", " ").replace("\xa0", " ")
    text = re.sub(r"\s+", " ", text).strip()
    return text[:MAX_TEXT_CHARS]


def _get_with_retry(
    client: httpx.Client,
    url: str,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    retries: int = 1,
    backoff_s: float = 0.3,
) -> httpx.Response:
    """GET with backoff on 429/5xx. A 404 is returned to the caller, not raised."""
    last_exc: Exception | None = None
    for attempt in range(retries + 1):
        try:
            response = client.get(url, params=params, headers=headers)
            if response.status_code in {429, 500, 502, 503, 504} and attempt < retries:
                time.sleep(backoff_s * (2**attempt))
                continue
            if response.status_code == 404:
                return response
            response.raise_for_status()
            return response
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            last_exc = exc
            if attempt >= retries:
                raise
            time.sleep(backoff_s * (2**attempt))

    if last_exc:
        raise last_exc
    raise RuntimeError("request failed without exception")


def _headers() -> dict[str, str]:
    return {"User-Agent": USER_AGENT}


def _not_found(source: str, term: str, url: str | None = None) -> SourceResult:
    return SourceResult(source=source, term=term, status=SourceStatus.NOT_FOUND, url=url)


def _ok(source: str, term: str, text: str, url: str) -> SourceResult:
    return SourceResult(source=source, term=term, status=SourceStatus.OK, text=text, url=url)


def parse_etymonline_html(html: str) -> str | None:
    if "NEXT_HTTP_ERROR_FALLBACK;404" in html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    candidates = [
        soup.find("section", class_=lambda value: value and "prose-lg" in value),
        soup.find("section", class_=lambda value: value and "word__defination" in value),
        soup.find("div", class_=lambda value: value and "word_entry" in value),
    ]
    for block in candidates:
        if block is None:
            continue
        text = _clean_text(block.get_text(" ", strip=True))
        if text and _ETYMOLOGY_HINT.search(text):
            return text

    # Layout changed: take the first paragraph that reads like an etymology entry.
    for paragraph in soup.find_all("p"):
        text = _clean_text(paragraph.get_text(" ", strip=True))
        if _DATE_HINT.search(text) and re.search(r"\bfrom\b", text, re.IGNORECASE):
            return text
    return None


def fetch_etymonline(term: str, timeout_s: float = 4.0) -> SourceResult:
    slug = re.sub(r"\s+", "-", term.strip().lower())
    url = f"{ETYMONLINE_WORD_URL}/{quote(slug)}"
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
        response = _get_with_retry(client, url, headers=_headers())
    if response.status_code == 404:
        return _not_found("etymonline", term, url)
    text = parse_etymonline_html(response.text)
    if not text:
        return _not_found("etymonline", term, url)
    return _ok("etymonline", term, text, url)


def extract_wiktionary_etymology(extract: str) -> str:
    match = re.search(r"Etymology[\s\S]*?(?=\n\n[A-Z]|\n\nPronunciation|$)", extract, re.IGNORECASE)
    section = match.group(0) if match else extract[:1000]
    return section.strip()[:MAX_TEXT_CHARS]


def fetch_wiktionary(term: str, timeout_s: float = 4.0) -> SourceResult:
    normalized = term.strip().lower()
    page_url = f"{WIKTIONARY_PAGE_URL}/{quote(normalized)}"
    params = {
        "action": "query",
        "titles": normalized,
        "prop": "extracts",
        "explaintext": "true",
        "format": "json",
    }
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
        response = _get_with_retry(client, WIKTIONARY_API_URL, params=params, headers=_headers())
    if response.status_code == 404:
        return _not_found("wiktionary", term, page_url)
    pages = (response.json().get("query") or {}).get("pages")
    if not pages:
        raise ValueError("wiktionary response missing query.pages")
    page = next(iter(pages.values()))
    if "missing" in page or not page.get("extract"):
        return _not_found("wiktionary", term, page_url)
    return _ok("wiktionary", term, extract_wiktionary_etymology(page["extract"]), page_url)


def fetch_wikipedia(term: str, timeout_s: float = 4.0) -> SourceResult:
    url = f"{WIKIPEDIA_SUMMARY_URL}/{quote(term.strip())}"
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
        response = _get_with_retry(client, url, headers=_headers())
    if response.status_code == 404:
        return _not_found("wikipedia", term)
    data = response.json()
    if data.get("type") == "disambiguation" or not data.get("extract"):
        return _not_found("wikipedia", term)
    page_url = ((data.get("content_urls") or {}).get("desktop") or {}).get("page") or (
        f"https://en.wikipedia.org/wiki/{quote(term.strip())}"
    )
    return _ok("wikipedia", term, _clean_text(data["extract"]), page_url)


def format_free_dictionary_entry(entry: dict[str, Any]) -> str:
    lines: list[str] = []
    phonetic = entry.get("phonetic") or next(
        (item.get("text") for item in entry.get("phonetics", []) or [] if item.get("text")), None
    )
    if phonetic:
        lines.append(f"Pronunciation: {phonetic}")
    for meaning in entry.get("meanings", []) or []:
        pos = meaning.get("partOfSpeech", "")
        for definition in (meaning.get("definitions", []) or [])[:2]:
            text = definition.get("definition")
            if text:
                lines.append(f"{pos}: {text}" if pos else text)
    if entry.get("origin"):
        lines.append(f"Origin: {entry['origin']}")
    return "\n".join(lines)[:MAX_TEXT_CHARS]


def fetch_free_dictionary(term: str, timeout_s: float = 4.0) -> SourceResult:
    url = f"{FREE_DICTIONARY_URL}/{quote(term.strip())}"
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
        response = _get_with_retry(client, url, headers=_headers())
    if response.status_code == 404:
        return _not_found("free_dictionary", term)
    data = response.json()
    entry = data[0] if isinstance(data, list) and data else data
    if not isinstance(entry, dict):
        return _not_found("free_dictionary", term)
    text = format_free_dictionary_entry(entry)
    if not text:
        return _not_found("free_dictionary", term)
    return _ok("free_dictionary", term, text, url)


def _is_clean(text: str) -> bool:
    lowered = text.lower()
    return not any(re.search(rf"\b{term}\b", lowered) for term in _NSFW_TERMS)


def fetch_urban_dictionary(term: str, timeout_s: float = 4.0) -> SourceResult:
    page_url = f"https://www.urbandictionary.com/define.php?term={quote(term.strip())}"
    with httpx.Client(timeout=timeout_s, follow_redirects=True) as client:
        response = _get_with_retry(client, URBAN_DICTIONARY_URL, params={"term": term.strip()}, headers=_headers())
    if response.status_code == 404:
        return _not_found("urban_dictionary", term)
    entries = response.json().get("list", []) or []
    filtered = [
        entry
        for entry in entries
        if int(entry.get("thumbs_up", 0) or 0) >= URBAN_MIN_THUMBS_UP
        and _is_clean(str(entry.get("definition", "")))
        and _is_clean(str(entry.get("example", "") or ""))
    ][:2]
    if not filtered:
        return _not_found("urban_dictionary", term)
    text = "\n\n".join(re.sub(r"[\[\]]", "", str(entry.get("definition", ""))) for entry in filtered)
    return _ok("urban_dictionary", term, text[:MAX_TEXT_CHARS], page_url)
