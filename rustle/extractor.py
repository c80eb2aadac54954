"""
Build-time extraction of translatable text.

The extractor scans source files with a best-effort textual pattern scan
(no AST parsing), assigns each fragment its fingerprint, merges the result
with the previous master record and writes:

    <output>/master.json            every known entry, with translations
    <output>/locales/<lang>.json    fingerprint -> text, one file per language

Entries are classified against the previous run:
    new        fingerprint never seen before
    updated    same fingerprint, different content hash (version + 1,
               previous translations kept until re-translated)
    unchanged  carried over as is

Entries that disappear from the sources stay in the master record.

Target languages are translated in batches through the API client. Only
entries whose translation is missing or older than the entry version are
sent. A failed batch falls back to the source text, so every locale file
always carries every fingerprint.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from rustle.api import APIClient
from rustle.cleaner import clean_translation
from rustle.config import MAX_BATCH_SIZE, ExtractorConfig
from rustle.errors import RustleError, ValidationError
from rustle.fingerprint import content_hash, fingerprint, is_translatable_text, normalize
from rustle.models import (
    BatchEntry,
    EntryStatus,
    MasterRecord,
    SourceLocation,
    TranslationEntry,
    utc_now_iso,
    write_locale_file,
)

logger = logging.getLogger(__name__)

# Interim textual scan: text between matching tags, a few text-bearing
# attributes, and string literals in JSX braces.
TAG_TEXT_PATTERN = re.compile(r"<([a-zA-Z][a-zA-Z0-9]*)[^>]*>([^<]+)</\1>")
ATTRIBUTE_PATTERN = re.compile(
    r"<[a-zA-Z][a-zA-Z0-9]*[^>]*\s(alt|title|placeholder|aria-label)=[\"']([^\"']+)[\"'][^>]*/?>"
)
BRACE_LITERAL_PATTERN = re.compile(r"\{[\"']([^\"']+)[\"']\}")
TAG_NAME_PATTERN = re.compile(r"</?([a-zA-Z][a-zA-Z0-9]*)")

CONTEXT_WINDOW = 100
MAX_CONTEXT_TAGS = 3
EXCLUDED_TAGS = {
    "html", "head", "body", "script", "style", "meta", "link", "title",
    "rustlebox", "rustlego", "autotranslate",
    "provider", "context", "fragment",
}


@dataclass
class Candidate:
    """A fragment found by the scan, before merging."""
    text: str
    start: int
    end: int
    tags: list[str] = field(default_factory=list)


@dataclass
class LocaleReport:
    translated: int = 0
    reused: int = 0
    fallback: int = 0


@dataclass
class ExtractionReport:
    files_scanned: int = 0
    files_failed: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    total_entries: int = 0
    collisions: int = 0
    locales: dict[str, LocaleReport] = field(default_factory=dict)


def extract_tag_context(content: str, position: int) -> list[str]:
    """Return up to 3 tag names found within 100 characters of ``position``."""
    window = content[max(0, position - CONTEXT_WINDOW):position + CONTEXT_WINDOW]
    tags: list[str] = []
    for match in TAG_NAME_PATTERN.finditer(window):
        tag = match.group(1).lower()
        if tag not in EXCLUDED_TAGS and tag not in tags:
            tags.append(tag)
    return tags[:MAX_CONTEXT_TAGS]


def extract_candidates(content: str) -> list[Candidate]:
    """Scan ``content`` for translatable fragments, in pattern order."""
    candidates = []
    for pattern in (TAG_TEXT_PATTERN, ATTRIBUTE_PATTERN, BRACE_LITERAL_PATTERN):
        for match in pattern.finditer(content):
            text = match.group(pattern.groups)
            if not text or not is_translatable_text(text):
                continue
            candidates.append(Candidate(
                text=text.strip(),
                start=match.start(),
                end=match.end(),
                tags=extract_tag_context(content, match.start()),
            ))
    return candidates


def merge_entry(candidate: Candidate, file: str, previous: Optional[TranslationEntry]) -> TranslationEntry:
    """Build the entry for ``candidate``, classified against ``previous``."""
    entry = TranslationEntry(
        fingerprint=fingerprint(candidate.text),
        source=candidate.text,
        file=file,
        loc=SourceLocation(start=candidate.start, end=candidate.end),
        content_hash=content_hash(candidate.text),
        tags=list(candidate.tags),
    )
    if previous is None:
        return entry

    entry.translations = dict(previous.translations)
    entry.translated_versions = dict(previous.translated_versions)
    if previous.content_hash != entry.content_hash:
        entry.version = previous.version + 1
        entry.status = EntryStatus.UPDATED
        # Legacy records carry no per-locale versions; pin them to the old one
        for locale in entry.translations:
            entry.translated_versions.setdefault(locale, previous.version)
    else:
        entry.version = previous.version
        entry.status = previous.status
    entry.last_translated_at = previous.last_translated_at
    return entry


class Extractor:
    """Runs one extraction pass for an ``ExtractorConfig``.

    Usage:
        report = asyncio.run(Extractor(ExtractorConfig.from_env()).run())
    """

    def __init__(
        self,
        config: ExtractorConfig,
        api: Optional[APIClient] = None,
        progress: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.api = api
        self.progress = progress or (lambda message: None)
        self._owns_api = False

    def _get_api(self) -> Optional[APIClient]:
        """Lazy initialization of the API client; ``None`` when unusable."""
        if self.api is None and self.config.api_key:
            try:
                self.api = APIClient(self.config.api_key, self.config.api_url)
                self._owns_api = True
            except ValidationError as e:
                logger.warning("Cannot create API client: %s", e)
        return self.api

    def load_master(self) -> Optional[MasterRecord]:
        path = self.config.master_path
        if not path.exists():
            return None
        try:
            master = MasterRecord.load(path)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning("Could not load existing master file %s, starting fresh: %s", path, e)
            return None
        logger.info("Loaded existing master with %d entries", len(master.entries))
        return master

    def find_files(self) -> list[Path]:
        src_dir = Path(self.config.src_dir)
        found: dict[Path, None] = {}
        for pattern in self.config.file_patterns:
            for path in sorted(src_dir.glob(pattern)):
                if path.is_file() and not self._is_excluded(path, src_dir):
                    found[path] = None
        return list(found)

    def _is_excluded(self, path: Path, root: Path) -> bool:
        relative = "/" + path.relative_to(root).as_posix()
        return any(fnmatch.fnmatch(relative, pattern) for pattern in self.config.exclude_patterns)

    async def run(self) -> ExtractionReport:
        """Extract, merge, write and translate.

        Raises:
            OSError: if the output files cannot be written
        """
        report = ExtractionReport()
        previous = self.load_master()
        previous_entries = previous.entries if previous else {}

        entries: dict[str, TranslationEntry] = {}
        seen_text: dict[str, str] = {}
        src_dir = Path(self.config.src_dir)
        files = self.find_files()
        logger.info("Found %d files to process", len(files))

        for path in files:
            relative = path.relative_to(src_dir).as_posix()
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                logger.error("Error processing file %s: %s", path, e)
                report.files_failed += 1
                continue
            report.files_scanned += 1
            self.progress(relative)

            for candidate in extract_candidates(content):
                fp = fingerprint(candidate.text)
                normalized = normalize(candidate.text)
                if fp in seen_text:
                    if seen_text[fp] != normalized:
                        report.collisions += 1
                        logger.warning(
                            "Fingerprint collision %s: %r vs %r, keeping the first",
                            fp, seen_text[fp], normalized,
                        )
                    continue
                seen_text[fp] = normalized

                entry = merge_entry(candidate, relative, previous_entries.get(fp))
                entries[fp] = entry
                logger.debug("Extracted %r -> %s", candidate.text[:30], fp)
                if fp not in previous_entries:
                    report.new += 1
                elif entry.content_hash != previous_entries[fp].content_hash:
                    report.updated += 1
                else:
                    report.unchanged += 1

        # Entries no longer in the sources are kept for content reversion
        for fp, entry in previous_entries.items():
            entries.setdefault(fp, entry)

        master = MasterRecord(
            source_language=self.config.source_language,
            target_languages=list(self.config.target_languages),
            entries=entries,
        )
        report.total_entries = len(entries)
        master.save(self.config.master_path)
        write_locale_file(
            self.config.locales_dir / f"{self.config.source_language}.json",
            {fp: entry.source for fp, entry in entries.items()},
        )
        logger.info(
            "Extracted %d entries (%d new, %d updated, %d unchanged)",
            len(entries), report.new, report.updated, report.unchanged,
        )

        try:
            for locale in self.config.target_languages:
                if locale == self.config.source_language:
                    continue
                report.locales[locale] = await self.translate_locale(master, locale)
        finally:
            if self._owns_api and self.api is not None:
                await self.api.close()

        master.last_updated = utc_now_iso()
        master.save(self.config.master_path)
        return report

    async def translate_locale(self, master: MasterRecord, locale: str) -> LocaleReport:
        """Translate stale entries for ``locale`` and write its locale file."""
        report = LocaleReport()
        stale = [entry for entry in master.entries.values() if entry.needs_translation(locale)]
        report.reused = len(master.entries) - len(stale)
        fallback_fps: set[str] = set()

        api = self._get_api() if stale else None
        if stale and api is None:
            logger.warning("No API client available, using source text for %d %s entries", len(stale), locale)
            fallback_fps.update(entry.fingerprint for entry in stale)
        elif stale:
            logger.info("Translating %d entries to %s", len(stale), locale)
            for start in range(0, len(stale), MAX_BATCH_SIZE):
                chunk = stale[start:start + MAX_BATCH_SIZE]
                translations = await self._translate_chunk(api, chunk, locale)
                now = utc_now_iso()
                for entry in chunk:
                    translation = translations.get(entry.fingerprint)
                    translation = clean_translation(translation) if translation else ""
                    if not translation:
                        fallback_fps.add(entry.fingerprint)
                        continue
                    entry.translations[locale] = translation
                    entry.translated_versions[locale] = entry.version
                    entry.last_translated_at = now
                    report.translated += 1

        report.fallback = len(fallback_fps)
        locale_data = {
            fp: (entry.source if fp in fallback_fps else entry.translations.get(locale) or entry.source)
            for fp, entry in master.entries.items()
        }
        write_locale_file(self.config.locales_dir / f"{locale}.json", locale_data)
        logger.info(
            "Wrote %s locale (%d translated, %d reused, %d source fallbacks)",
            locale, report.translated, report.reused, report.fallback,
        )
        return report

    async def _translate_chunk(
        self,
        api: APIClient,
        chunk: list[TranslationEntry],
        locale: str,
    ) -> dict[str, str]:
        batch = [
            BatchEntry(id=entry.fingerprint, text=entry.source, tags=entry.tags, file=entry.file)
            for entry in chunk
        ]
        try:
            response = await api.translate_batch(batch, self.config.source_language, locale, self.config.model)
        except RustleError as e:
            logger.error("Translation to %s failed, using source text: %s", locale, e)
            return {}
        if not response.success:
            logger.error("Translation to %s failed, using source text: %s", locale, response.error)
            return {}
        return response.translations
