"""
API key storage for Rustle.

Lookup order:
1. ``RUSTLE_API_KEY`` environment variable (CI and production)
2. OS keychain via keyring
3. ``~/.rustle/keys.json`` (written with 0600 permissions)

Usage:
    km = KeyManager()
    km.set_key("rk_live_...")
    key = km.get_key()
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import keyring
from keyring.errors import KeyringError

from rustle.config import API_KEY_ENV, APP_NAME
from rustle.security import obfuscate_api_key

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "rustle"
DEFAULT_CONFIG_DIR = Path.home() / ".rustle"


@dataclass
class KeyInfo:
    service: str
    is_set: bool
    source: str  # 'env', 'keyring', 'config', 'none'
    masked_value: str


class KeyManager:
    """Stores and resolves the translation API key."""

    def __init__(self, config_dir: Optional[Path] = None, use_keyring: bool = True):
        self.config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        self.config_file = self.config_dir / "keys.json"
        self.use_keyring = use_keyring

    def _env_var(self, service: str) -> str:
        if service == DEFAULT_SERVICE:
            return API_KEY_ENV
        return f"{service.upper()}_API_KEY"

    def _read_config(self) -> dict[str, str]:
        if not self.config_file.exists():
            return {}
        try:
            data = json.loads(self.config_file.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable key file %s: %s", self.config_file, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_config(self, data: dict[str, str]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(json.dumps(data, indent=2))
        self.config_file.chmod(0o600)

    def _from_keyring(self, service: str) -> Optional[str]:
        if not self.use_keyring:
            return None
        try:
            return keyring.get_password(APP_NAME, service)
        except KeyringError as e:
            logger.debug("Keyring lookup failed: %s", e)
            return None

    def _lookup(self, service: str) -> tuple[Optional[str], str]:
        if value := os.getenv(self._env_var(service)):
            return value, "env"
        if value := self._from_keyring(service):
            return value, "keyring"
        if value := self._read_config().get(service):
            return value, "config"
        return None, "none"

    def get_key(self, service: str = DEFAULT_SERVICE) -> Optional[str]:
        """Return the API key for ``service``, or None if not configured."""
        return self._lookup(service.lower())[0]

    def set_key(self, key: str, service: str = DEFAULT_SERVICE) -> str:
        """Store ``key``; returns where it went ('keyring' or 'config')."""
        service = service.lower()
        if self.use_keyring:
            try:
                keyring.set_password(APP_NAME, service, key)
                return "keyring"
            except KeyringError as e:
                logger.debug("Keyring unavailable, using config file: %s", e)

        config = self._read_config()
        config[service] = key
        self._write_config(config)
        return "config"

    def delete_key(self, service: str = DEFAULT_SERVICE) -> bool:
        service = service.lower()
        deleted = False
        if self.use_keyring:
            try:
                keyring.delete_password(APP_NAME, service)
                deleted = True
            except KeyringError as e:
                logger.debug("No keyring entry to delete: %s", e)

        config = self._read_config()
        if service in config:
            del config[service]
            self._write_config(config)
            deleted = True
        return deleted

    def get_key_info(self, service: str = DEFAULT_SERVICE) -> KeyInfo:
        service = service.lower()
        value, source = self._lookup(service)
        return KeyInfo(
            service=service,
            is_set=value is not None,
            source=source,
            masked_value=obfuscate_api_key(value) if value else "",
        )

    def list_keys(self) -> list[KeyInfo]:
        services = {DEFAULT_SERVICE, *self._read_config()}
        return [self.get_key_info(service) for service in sorted(services)]
