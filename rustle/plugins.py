"""
Plugin hooks for the translation engine.

A plugin is a name plus a mapping of hook kinds to handlers. Handlers are
plain or async callables; the manager keeps one ordered list per hook kind
and calls them in registration order.

Transforming hooks (``BEFORE_TRANSLATE``, ``AFTER_TRANSLATE``) form a chain:
each handler receives the previous handler's output and may return a new
value (``None`` keeps the current one). The other hooks only observe.

A failing handler is logged and skipped; it never aborts a translation.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class HookKind(str, Enum):
    """Hook points and the arguments their handlers receive."""
    BEFORE_TRANSLATE = "before_translate"  # (text, locale) -> text
    AFTER_TRANSLATE = "after_translate"    # (translation, original, locale) -> translation
    CACHE_HIT = "cache_hit"                # (text, locale, translation)
    CACHE_MISS = "cache_miss"              # (text, locale)
    CACHE_SET = "cache_set"                # (text, locale, translation)
    LOCALE_CHANGE = "locale_change"        # (new_locale, old_locale)
    ERROR = "error"                        # (error, context)
    INIT = "init"                          # (engine)
    DESTROY = "destroy"                    # (engine)


TRANSFORM_HOOKS = {HookKind.BEFORE_TRANSLATE, HookKind.AFTER_TRANSLATE}


@dataclass
class Plugin:
    """A named bundle of hook handlers.

    Usage:
        shout = Plugin("shout", {HookKind.AFTER_TRANSLATE: lambda t, *_: t.upper()})
        engine.use(shout)
    """
    name: str
    hooks: dict[HookKind, Callable[..., Any]] = field(default_factory=dict)
    version: str = "1.0.0"


class PluginManager:
    """Registry of plugins with one ordered handler list per hook kind."""

    def __init__(self):
        self._plugins: dict[str, Plugin] = {}
        self._handlers: dict[HookKind, list[tuple[str, Callable[..., Any]]]] = {
            kind: [] for kind in HookKind
        }

    def use(self, plugin: Plugin) -> None:
        if plugin.name in self._plugins:
            logger.warning("Plugin %s already registered, replacing it", plugin.name)
            self.unuse(plugin.name)
        self._plugins[plugin.name] = plugin
        for kind, handler in plugin.hooks.items():
            self._handlers[HookKind(kind)].append((plugin.name, handler))
        logger.debug("Plugin %s registered", plugin.name)

    def unuse(self, name: str) -> bool:
        if self._plugins.pop(name, None) is None:
            return False
        for kind in HookKind:
            self._handlers[kind] = [(n, h) for n, h in self._handlers[kind] if n != name]
        return True

    def get_plugin(self, name: str) -> Optional[Plugin]:
        return self._plugins.get(name)

    @property
    def plugins(self) -> list[Plugin]:
        return list(self._plugins.values())

    def handlers(self, kind: HookKind) -> list[Callable[..., Any]]:
        return [handler for _, handler in self._handlers[kind]]

    async def _call(self, name: str, kind: HookKind, handler: Callable[..., Any], *args: Any) -> Any:
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception:
            logger.exception("Plugin %s failed in %s hook", name, kind.value)
            return None

    async def run_chain(self, kind: HookKind, value: Any, *args: Any) -> Any:
        """Pass ``value`` through every handler of a transforming hook."""
        if kind not in TRANSFORM_HOOKS:
            raise ValueError(f"{kind.value} is not a transforming hook")
        for name, handler in list(self._handlers[kind]):
            result = await self._call(name, kind, handler, value, *args)
            if result is not None:
                value = result
        return value

    async def emit(self, kind: HookKind, *args: Any) -> None:
        """Notify every observer of ``kind``."""
        for name, handler in list(self._handlers[kind]):
            await self._call(name, kind, handler, *args)
