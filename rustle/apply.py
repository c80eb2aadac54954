"""
Apply translations to HTML documents.

Visible text nodes (not script/style/code/pre/noscript, and not inside an
element marked ``data-i18n="false"``) are resolved through the engine and
replaced in place. Their parent elements are tagged with ``data-i18n`` and a
position fingerprint. A failed or cancelled resolution leaves the source
text in place.

``TranslatedDocument`` keeps the source markup so the document can be
re-rendered when the locale or a part of the page changes; subscribers are
told about every re-render through ``on_subtree_changed``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from bs4 import BeautifulSoup, NavigableString
from bs4.element import PreformattedString, Tag

from rustle.engine import TranslationEngine
from rustle.errors import TranslationCancelled
from rustle.fingerprint import is_translatable_text, location_fingerprint

logger = logging.getLogger(__name__)

SKIPPED_TAGS = {"script", "style", "code", "pre", "noscript"}


def _is_excluded(node: NavigableString) -> bool:
    for parent in node.parents:
        if parent.name in SKIPPED_TAGS:
            return True
        if isinstance(parent, Tag) and parent.get("data-i18n") == "false":
            return True
    return False


def visible_text_nodes(soup: BeautifulSoup) -> list[NavigableString]:
    nodes = []
    for node in soup.find_all(string=True):
        if isinstance(node, PreformattedString) or _is_excluded(node):
            continue
        if is_translatable_text(node.strip()):
            nodes.append(node)
    return nodes


class HTMLTranslator:
    """Translates the visible text of HTML fragments through an engine."""

    def __init__(self, engine: TranslationEngine, document_path: str = "document"):
        self.engine = engine
        self.document_path = document_path

    async def _resolve(self, text: str, locale: str) -> str:
        try:
            return await self.engine.translate(text, locale)
        except TranslationCancelled:
            return text
        except Exception:
            logger.exception("Translation failed for %r", text[:30])
            return text

    async def translate_html(self, html: str, locale: Optional[str] = None) -> str:
        locale = locale or self.engine.current_locale
        soup = BeautifulSoup(html, "html.parser")
        nodes = visible_text_nodes(soup)
        if not nodes:
            return str(soup)

        translations = await asyncio.gather(*(self._resolve(node.strip(), locale) for node in nodes))
        for position, (node, translation) in enumerate(zip(nodes, translations)):
            original = str(node)
            leading = original[:len(original) - len(original.lstrip())]
            trailing = original[len(original.rstrip()):]
            parent = node.parent
            if isinstance(parent, Tag) and parent is not soup:
                parent["data-i18n"] = "true"
                parent["data-i18n-fingerprint"] = location_fingerprint(self.document_path, position)
            node.replace_with(NavigableString(f"{leading}{translation}{trailing}"))
        return str(soup)


class TranslatedDocument:
    """Source markup plus its current rendering in the engine's locale.

    Usage:
        doc = TranslatedDocument(HTMLTranslator(engine), "<h1>Welcome</h1>")
        doc.on_subtree_changed(lambda html: print(html))
        await doc.render()
        await doc.set_locale("fr")
    """

    def __init__(self, translator: HTMLTranslator, source_html: str):
        self.translator = translator
        self.source_html = source_html
        self.rendered: Optional[str] = None
        self._callbacks: list[Callable[[str], Any]] = []

    def on_subtree_changed(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def render(self) -> str:
        self.rendered = await self.translator.translate_html(self.source_html)
        for callback in list(self._callbacks):
            try:
                callback(self.rendered)
            except Exception:
                logger.exception("Error in subtree-changed callback")
        return self.rendered

    async def replace_source(self, source_html: str) -> str:
        """Swap in new markup (e.g. content added to the page) and re-render."""
        self.source_html = source_html
        return await self.render()

    async def set_locale(self, locale: str) -> str:
        await self.translator.engine.set_locale(locale)
        return await self.render()
