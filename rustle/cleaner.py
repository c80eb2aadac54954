"""
Post-processing for raw translation API output.

Models wrap translations in quotes, prepend "Translation:" or a chatty
preamble, add markdown, or return a JSON object instead of plain text.
``clean_translation`` removes those artifacts in a fixed order of passes
and repeats until the text stops changing, so cleaning is idempotent.

``sanitize_html`` is applied before any cleaned text is injected as raw HTML.
"""

from __future__ import annotations

import json
import re
from typing import Mapping

QUOTE_CHARS = "\"'`„“”‘’«»‹›"

QUOTE_PAIRS = {
    ('"', '"'), ("'", "'"), ("`", "`"),
    ("“", "”"), ("„", "“"), ("„", "”"),
    ("‘", "’"), ("«", "»"), ("‹", "›"),
}

TRANSLATION_PREFIX = re.compile(
    r"^(Translation|Translated text|Traducción|Traduction|Übersetzung|Traduzione|"
    r"Tradução|Vertaling|Tłumaczenie|翻译|翻譯|번역|翻訳|Перевод|ترجمة)\s*:\s*",
    re.IGNORECASE,
)

PREAMBLES = [
    re.compile(r"^(Here is the translation|Here's the translation|The translation is|Translated text)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Voici la traduction|La traduction est|Texte traduit)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Hier ist die Übersetzung|Die Übersetzung ist|Übersetzter Text)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Ecco la traduzione|La traduzione è|Testo tradotto)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Aquí está la traducción|La traducción es|Texto traducido)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Aqui está a tradução|A tradução é|Texto traduzido)\s*:\s*", re.IGNORECASE),
]

MARKDOWN_WRAPPERS = [
    re.compile(r"^\*\*(.+)\*\*$", re.DOTALL),
    re.compile(r"^\*(.+)\*$", re.DOTALL),
    re.compile(r"^`(.+)`$", re.DOTALL),
    re.compile(r"^_(.+?)_$", re.DOTALL),
]

JSON_WRAPPER = re.compile(
    r"""^\{\s*["']?(?:text|translation)["']?\s*:\s*["'](.*)["']\s*\}$""",
    re.IGNORECASE | re.DOTALL,
)

_WHITESPACE = re.compile(r"\s+")


def _strip_matching_quotes(text: str) -> str:
    while len(text) >= 2 and (text[0], text[-1]) in QUOTE_PAIRS:
        text = text[1:-1].strip()
    return text


def _unwrap_json(text: str) -> str:
    if not (text.startswith("{") and text.endswith("}")):
        return text
    try:
        data = json.loads(text)
    except ValueError:
        match = JSON_WRAPPER.match(text)
        return match.group(1) if match else text
    if isinstance(data, dict):
        for key in ("text", "translation"):
            if isinstance(data.get(key), str):
                return data[key]
    return text


def _strip_artifact_quotes(text: str) -> str:
    """Remove one outer quote pair unless the inner text uses that quote too."""
    if len(text) <= 2 or (text[0], text[-1]) not in QUOTE_PAIRS:
        return text
    inner = text[1:-1]
    if text[0] in inner or text[-1] in inner:
        return text
    return inner.strip()


def _clean_once(text: str) -> str:
    cleaned = text.strip()
    cleaned = _strip_matching_quotes(cleaned)
    cleaned = cleaned.strip(QUOTE_CHARS).strip()
    cleaned = TRANSLATION_PREFIX.sub("", cleaned)
    for pattern in PREAMBLES:
        cleaned = pattern.sub("", cleaned)
    for pattern in MARKDOWN_WRAPPERS:
        match = pattern.match(cleaned)
        if match:
            cleaned = match.group(1)
            break
    cleaned = _unwrap_json(cleaned.strip())
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return _strip_artifact_quotes(cleaned)


def clean_translation(translation: str) -> str:
    """Clean a raw translation returned by the API.

    Args:
        translation: Raw model output

    Returns:
        Best-effort plain translation text

    Example:
        >>> clean_translation('"Hola mundo"')
        'Hola mundo'
        >>> clean_translation('Translation: Hola')
        'Hola'
    """
    if not translation or not isinstance(translation, str):
        return translation
    cleaned = translation
    for _ in range(len(translation) + 1):
        result = _clean_once(cleaned)
        if result == cleaned:
            break
        cleaned = result
    return cleaned


def clean_batch(translations: Mapping[str, str]) -> dict[str, str]:
    """Apply ``clean_translation`` to every value of a batch response."""
    return {key: clean_translation(value) for key, value in translations.items()}


def clean_html_translation(html: str) -> str:
    """Clean every text node of an HTML string, keeping the markup."""
    if not html or not isinstance(html, str):
        return html
    return re.sub(r">([^<]+)<", lambda m: f">{clean_translation(m.group(1))}<", html)


def sanitize_html(html: str) -> str:
    """Strip active content from HTML before it is injected raw.

    Removes script/iframe/object/embed/link/meta tags, inline event handler
    attributes, ``javascript:`` URLs and non-image ``data:`` URLs.
    """
    flags = re.IGNORECASE | re.DOTALL
    html = re.sub(r"<script[^>]*>.*?</script\s*>", "", html, flags=flags)
    html = re.sub(r"<iframe[^>]*>.*?</iframe\s*>", "", html, flags=flags)
    html = re.sub(r"<object[^>]*>.*?</object\s*>", "", html, flags=flags)
    html = re.sub(r"<(script|iframe|object|embed|link|meta)\b[^>]*/?>", "", html, flags=flags)
    html = re.sub(r"\s+on\w+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]+)", "", html, flags=flags)
    html = re.sub(r"javascript\s*:", "", html, flags=flags)
    html = re.sub(r"data:(?!image/)", "", html, flags=flags)
    return html


ERROR_PATTERNS = [
    re.compile(r"^(I cannot|I can't|Unable to|Error|Failed)", re.IGNORECASE),
    re.compile(r"^(Sorry|Apologies|I apologize)", re.IGNORECASE),
    re.compile(r"^(Please|Could you|Can you)", re.IGNORECASE),
    re.compile(r"\[.*\]"),
    re.compile(r"\{.*\}"),
]


def is_valid_translation(translation: str, original_text: str) -> bool:
    """Heuristically decide whether a translation looks usable."""
    if not translation or not isinstance(translation, str) or not original_text:
        return False
    cleaned = clean_translation(translation)
    if cleaned.lower() == original_text.lower():
        return False
    ratio = len(cleaned) / len(original_text)
    if ratio < 0.3 or ratio > 3:
        return False
    return not any(pattern.search(cleaned) for pattern in ERROR_PATTERNS)


def needs_cleaning(text: str) -> bool:
    if not text or not isinstance(text, str):
        return False
    has_quotes = len(text) >= 2 and (text[0], text[-1]) in QUOTE_PAIRS
    has_prefix = bool(TRANSLATION_PREFIX.match(text)) or any(p.match(text) for p in PREAMBLES)
    has_markdown = any(p.match(text) for p in MARKDOWN_WRAPPERS)
    has_whitespace = bool(re.search(r"\s{2,}", text)) or text != text.strip()
    return has_quotes or has_prefix or has_markdown or has_whitespace


def normalize_for_translation(text: str) -> str:
    """Replace non-breaking and typographic spaces, then collapse whitespace."""
    if not text or not isinstance(text, str):
        return text
    text = text.replace("\u00a0", " ")
    text = re.sub("[\u2000-\u200b]", " ", text)
    return _WHITESPACE.sub(" ", text).strip()
