"""
Data model for extraction output and the translation API.

- TranslationEntry: one translatable fragment, keyed by fingerprint
- MasterRecord: every known entry plus metadata (written by the extractor)
- PendingTranslation: a request queued while offline
- BatchEntry / TranslationResponse: translation API wire types

JSON uses the camelCase keys of the published file format; attribute names
are snake_case.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from rustle.config import MASTER_SCHEMA_VERSION


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class EntryStatus(str, Enum):
    NEW = "new"
    TRANSLATED = "translated"
    UPDATED = "updated"
    MISSING = "missing"


@dataclass
class SourceLocation:
    start: int
    end: int


@dataclass
class TranslationEntry:
    """A translatable fragment discovered by the extractor.

    Attributes:
        fingerprint: Stable content id (see ``rustle.fingerprint``)
        source: Canonical source text
        file: Source file, relative to the scanned root
        loc: Character offsets of the match in ``file``
        content_hash: Hash used to detect source edits
        version: Incremented whenever ``content_hash`` changes
        translations: locale -> translated text
        translated_versions: locale -> entry version the translation was made for
        last_translated_at: ISO timestamp
        tags: Enclosing tag names, used as context hints
        status: new | translated | updated | missing
    """
    fingerprint: str
    source: str
    file: str
    loc: SourceLocation
    content_hash: str
    version: int = 1
    translations: dict[str, str] = field(default_factory=dict)
    translated_versions: dict[str, int] = field(default_factory=dict)
    last_translated_at: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    status: EntryStatus = EntryStatus.NEW

    def needs_translation(self, locale: str) -> bool:
        """Whether ``locale`` has no translation for the current version."""
        if not self.translations.get(locale):
            return True
        if locale in self.translated_versions:
            return self.translated_versions[locale] != self.version
        # Legacy entries without version tracking: only updated ones are stale
        return self.status == EntryStatus.UPDATED

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "source": self.source,
            "file": self.file,
            "loc": {"start": self.loc.start, "end": self.loc.end},
            "contentHash": self.content_hash,
            "version": self.version,
            "translations": dict(self.translations),
            "translatedVersions": dict(self.translated_versions),
            "lastTranslatedAt": self.last_translated_at,
            "tags": list(self.tags),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranslationEntry:
        loc = data.get("loc") or {}
        return cls(
            fingerprint=data["fingerprint"],
            source=data["source"],
            file=data.get("file", ""),
            loc=SourceLocation(start=int(loc.get("start", 0)), end=int(loc.get("end", 0))),
            content_hash=data["contentHash"],
            version=int(data.get("version", 1)),
            translations=dict(data.get("translations") or {}),
            translated_versions={k: int(v) for k, v in (data.get("translatedVersions") or {}).items()},
            last_translated_at=data.get("lastTranslatedAt"),
            tags=list(data.get("tags") or []),
            status=EntryStatus(data.get("status", EntryStatus.NEW.value)),
        )


@dataclass
class MasterRecord:
    """Canonical record of every extracted fragment."""
    source_language: str
    target_languages: list[str]
    entries: dict[str, TranslationEntry] = field(default_factory=dict)
    version: str = MASTER_SCHEMA_VERSION
    last_updated: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": {
                "version": self.version,
                "sourceLanguage": self.source_language,
                "targetLanguages": list(self.target_languages),
                "lastUpdated": self.last_updated,
                "totalEntries": len(self.entries),
            },
            "entries": {fp: entry.to_dict() for fp, entry in self.entries.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MasterRecord:
        if not isinstance(data, dict):
            raise ValueError("Master record must be a JSON object")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, dict) or not isinstance(data.get("entries") or {}, dict):
            raise ValueError("Master record metadata and entries must be JSON objects")
        entries = {
            fp: TranslationEntry.from_dict(entry)
            for fp, entry in (data.get("entries") or {}).items()
        }
        return cls(
            source_language=metadata.get("sourceLanguage", "en"),
            target_languages=list(metadata.get("targetLanguages") or []),
            entries=entries,
            version=metadata.get("version", MASTER_SCHEMA_VERSION),
            last_updated=metadata.get("lastUpdated") or utc_now_iso(),
        )

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> MasterRecord:
        return cls.from_dict(json.loads(Path(path).read_text(encoding="utf-8")))


def write_locale_file(path: Path, data: dict[str, str]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")


def read_locale_file(path: Path) -> dict[str, str]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Locale file {path} is not a JSON object")
    return {str(k): str(v) for k, v in data.items()}


@dataclass
class PendingTranslation:
    text: str
    source_locale: str
    target_locale: str
    timestamp: int

    @property
    def key(self) -> str:
        return f"{self.text}_{self.source_locale}_{self.target_locale}"


@dataclass
class BatchEntry:
    """One item of a ``/translate/batch`` request."""
    id: str
    text: str
    tags: list[str] = field(default_factory=list)
    file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "text": self.text}
        if self.file and self.tags:
            payload["context"] = {"tags": list(self.tags), "file": self.file}
        return payload


@dataclass
class TranslationResponse:
    success: bool
    translations: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranslationResponse:
        translations = data.get("translations") or {}
        return cls(
            success=bool(data.get("success", False)),
            translations={str(k): v for k, v in translations.items() if isinstance(v, str)},
            error=data.get("error"),
        )
