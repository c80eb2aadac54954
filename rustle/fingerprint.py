"""
Content fingerprints shared by the extraction CLI and the runtime engine.

A fingerprint identifies a text fragment by its normalized content, so the
same sentence gets the same id no matter which file or run produced it.
The hash is the 32-bit string hash used by the browser runtime, which keeps
locale files produced here interchangeable with the JavaScript client.

Functions:
    normalize: Trim, lowercase and collapse whitespace
    fingerprint: Stable 8-hex-digit id of normalized text
    content_hash: Change-detection hash of the exact (case-preserving) text
    location_fingerprint: Id of a (file, position) pair
    is_translatable_text: Gate applied by every scanner

Example:
    >>> fingerprint("Hello   world") == fingerprint("hello world")
    True
"""

from __future__ import annotations

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")
_CONSTANT = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_URL = re.compile(r"^(https?://|www\.)", re.IGNORECASE)
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

MIN_TEXT_LENGTH = 2


def normalize(text: str) -> str:
    """Trim, lowercase, and collapse internal whitespace runs to one space."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def _string_hash(value: str) -> int:
    """32-bit signed ``h = h * 31 + unit`` over UTF-16 code units.

    Identical to the JavaScript ``(hash << 5) - hash + charCode`` loop.
    """
    h = 0
    data = value.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    return h


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def fingerprint(text: str) -> str:
    """Return the stable fingerprint of ``text``.

    Fingerprints are short (32 bits) and therefore not collision-free; they
    are only guaranteed to be stable for the same normalized text.
    """
    return format(abs(_string_hash(normalize(text))), "08x")


def content_hash(text: str) -> str:
    """Return the change-detection hash of ``text``.

    Whitespace runs are collapsed but case is kept, so an edit that leaves
    the fingerprint unchanged (e.g. "Sign in" -> "Sign In") still registers
    as a content change between extractions.
    """
    collapsed = _WHITESPACE.sub(" ", text.strip())
    return hashlib.sha1(collapsed.encode("utf-8")).hexdigest()[:12]


def location_fingerprint(file_path: str, position: int) -> str:
    """Return an id for a fragment at ``position`` in ``file_path``."""
    return f"fp_{_to_base36(abs(_string_hash(f'{file_path}:{position}')))}"


def is_translatable_text(text: str) -> bool:
    """Decide whether a fragment should be extracted and translated.

    Rejects empty text, fragments shorter than two characters, text without
    any letters (numbers, punctuation, symbols), ALL_CAPS identifiers, URLs
    and template placeholders such as ``{{name}}`` or ``${name}``.
    """
    if not text:
        return False
    trimmed = text.strip()
    if len(trimmed) < MIN_TEXT_LENGTH:
        return False
    if not any(ch.isalpha() for ch in trimmed):
        return False
    if _CONSTANT.match(trimmed):
        return False
    if _URL.match(trimmed):
        return False
    if "{{" in trimmed or "${" in trimmed:
        return False
    return True
