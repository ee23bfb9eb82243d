"""Deterministic extraction of "from X, from Y" ancestry chains.

Dictionary prose is irregular, so parsing runs in small passes instead of one
pattern: split on ``from`` boundaries, match the longest known language at the
start of each segment, then pull the form and an optional gloss. The chains are
fed to the model as ground truth and later used to score its ancestry stages.
"""

from __future__ import annotations

import re

from shared.schemas.domain import ParsedEtymChain, ParsedEtymLink

KNOWN_LANGUAGES = [
    "Proto-Indo-European",
    "Proto-Germanic",
    "Proto-West Germanic",
    "Proto-Italic",
    "Proto-Celtic",
    "Proto-Slavic",
    "Proto-Hellenic",
    "Middle English",
    "Old English",
    "Old French",
    "Old North French",
    "Old Norse",
    "Old High German",
    "Middle High German",
    "Old Saxon",
    "Old Frisian",
    "Old Irish",
    "Old Spanish",
    "Old Italian",
    "Old Provençal",
    "Middle French",
    "Middle Dutch",
    "Middle Low German",
    "Medieval Latin",
    "Late Latin",
    "Vulgar Latin",
    "Classical Latin",
    "Ecclesiastical Latin",
    "Modern English",
    "Modern French",
    "Ancient Greek",
    "Koine Greek",
    "Byzantine Greek",
    "New Latin",
    "Church Latin",
    "Anglo-French",
    "Anglo-Norman",
    "Latin",
    "Greek",
    "French",
    "German",
    "Spanish",
    "Italian",
    "Portuguese",
    "Dutch",
    "Swedish",
    "Danish",
    "Norwegian",
    "Icelandic",
    "Sanskrit",
    "Arabic",
    "Hebrew",
    "Persian",
    "Turkish",
    "Japanese",
    "Chinese",
    "Celtic",
    "Gaelic",
    "Welsh",
    "PIE",
]

RECONSTRUCTED_LANGUAGE = "Proto-Indo-European"

_CANONICAL = {name.lower(): name for name in KNOWN_LANGUAGES}
_CANONICAL["pie"] = RECONSTRUCTED_LANGUAGE
_LANGUAGE_PATTERN = re.compile(
    r"^(" + "|".join(re.escape(name) for name in sorted(KNOWN_LANGUAGES, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
_FROM_BOUNDARY = re.compile(r"(?:^|[,;\s(])\s*from\s+", re.IGNORECASE)
_FORM_PATTERN = re.compile(r"^(\*?[\wÀ-ɏ*-]+(?:\s*\([^)]*\))?)")
_PIE_ROOT_PATTERN = re.compile(r"\bPIE\s+root\s+(\*[\wÀ-ɏ*-]+)", re.IGNORECASE)
_DATE_PATTERN = re.compile(
    r"\b(?:(?:early|mid|late)\s+|c\.\s*)?\d{4}s?\b|\b(?:early|mid|late)\s+\d{1,2}c\.",
    re.IGNORECASE,
)
_MEANING_PATTERNS = [
    re.compile(r"[\"“]([^\"“”]+)[\"”]"),
    re.compile(r"(?:^|\s)['‘]([^'‘’]+)['’](?=[\s,;.)]|$)"),
    re.compile(r"\(([^)]+)\)"),
]
# Words that follow "from" in prose without naming an ancestor form.
_NON_FORMS = {
    "a", "an", "the", "this", "that", "which", "same", "source", "root", "stem",
    "base", "its", "their", "earlier", "older", "unknown", "uncertain",
}
_SNIPPET_LIMIT = 120


def extract_date(text: str) -> str | None:
    match = _DATE_PATTERN.search(text)
    return match.group(0) if match else None


def _extract_meaning(text: str) -> str | None:
    for pattern in _MEANING_PATTERNS:
        match = pattern.search(text)
        if match and len(match.group(1)) < 100:
            meaning = match.group(1).strip().rstrip(",;:.").strip()
            if meaning:
                return meaning
    return None


def _extract_form(text: str) -> str | None:
    trimmed = text.strip()
    if not trimmed:
        return None
    match = _FORM_PATTERN.match(trimmed)
    return match.group(1).strip() if match else None


def _snippet(segment: str) -> str:
    snippet = f"from {segment}"[:_SNIPPET_LIMIT]
    if len(snippet) == _SNIPPET_LIMIT:
        last_space = snippet.rfind(" ")
        if last_space > 80:
            snippet = snippet[:last_space] + "..."
    return snippet


def _is_reconstructed(language: str, form: str) -> bool:
    return form.startswith("*") or language.startswith("Proto-")


def split_from_segments(text: str) -> list[str]:
    """Text following each ``from`` boundary, up to the next one."""
    matches = list(_FROM_BOUNDARY.finditer(text))
    segments: list[str] = []
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        segments.append(text[match.end():end].strip())
    return segments


def _parse_segment(segment: str, previous: ParsedEtymLink | None) -> ParsedEtymLink | None:
    lang_match = _LANGUAGE_PATTERN.match(segment)
    if lang_match:
        language = _CANONICAL.get(lang_match.group(1).lower(), lang_match.group(1))
        after = segment[lang_match.end():].strip()
        after = re.sub(r"^root\s+(?=\*)", "", after, flags=re.IGNORECASE)
        form = _extract_form(after)
        if not form:
            return None
        meaning = _extract_meaning(after)
    else:
        # "from Latin perfidia 'x,' from perfidus 'y'": the second hop keeps the language.
        if previous is None:
            return None
        after = segment
        form = _extract_form(after)
        if not form or form.lower() in _NON_FORMS:
            return None
        meaning = _extract_meaning(after)
        if meaning is None and not form.startswith("*"):
            return None
        language = previous.language

    return ParsedEtymLink(
        language=language,
        form=form,
        meaning=meaning,
        is_reconstructed=_is_reconstructed(language, form),
        raw_snippet=_snippet(segment),
    )


def parse_chain(text: str, word: str, source_name: str) -> ParsedEtymChain:
    links: list[ParsedEtymLink] = []
    for segment in split_from_segments(text):
        link = _parse_segment(segment, links[-1] if links else None)
        if link is not None:
            links.append(link)

    seen_forms = {link.form for link in links}
    for match in _PIE_ROOT_PATTERN.finditer(text):
        form = match.group(1)
        if form in seen_forms:
            continue
        seen_forms.add(form)
        tail = text[match.end():match.end() + 80]
        links.append(
            ParsedEtymLink(
                language=RECONSTRUCTED_LANGUAGE,
                form=form,
                meaning=_extract_meaning(tail.split(";")[0]),
                is_reconstructed=True,
                raw_snippet=text[match.start():match.end() + 40][:_SNIPPET_LIMIT].strip(),
            )
        )

    return ParsedEtymChain(source_name=source_name, word=word, links=links, date_attested=extract_date(text))


def parse_source_texts(word: str, texts: dict[str, str | None]) -> list[ParsedEtymChain]:
    """Parse each source's text, keeping only chains with at least one link."""
    chains: list[ParsedEtymChain] = []
    for source_name, text in texts.items():
        if not text:
            continue
        chain = parse_chain(text, word, source_name)
        if chain.links:
            chains.append(chain)
    return chains


def format_chains_for_prompt(chains: list[ParsedEtymChain]) -> str:
    if not chains:
        return ""
    lines = [
        "=== Pre-Parsed Etymology Chains ===",
        "(Extracted deterministically from the source text. Prefer these over your own recollection.)",
        "",
    ]
    for chain in chains:
        lines.append(f"--- Chain from {chain.source_name} ({chain.word}) ---")
        if chain.date_attested:
            lines.append(f"First attested: {chain.date_attested}")
        for link in chain.links:
            line = f"  {link.language}: {link.form}"
            if link.meaning:
                line += f' "{link.meaning}"'
            if link.is_reconstructed:
                line += " [RECONSTRUCTED]"
            lines.append(line)
        lines.append("")
    return "\n".join(lines)
