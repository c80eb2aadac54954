"""
Debounced request batching.

Concurrent translation requests for the same locale pair are held for a
short window and sent as a single batch call. A batch fires when the window
elapses or as soon as it reaches ``max_items``.

Each waiter gets its own translation, or the batch's exception. Cancelling a
locale rejects queued waiters and aborts in-flight batches for it with
``TranslationCancelled``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from rustle.config import BATCH_MAX_ITEMS, BATCH_WAIT
from rustle.errors import RustleAPIError, TranslationCancelled
from rustle.models import BatchEntry

logger = logging.getLogger(__name__)

# (entries, source_locale, target_locale, request_key) -> {entry id: translation}
BatchSender = Callable[[list[BatchEntry], str, str, str], Awaitable[dict[str, str]]]
PairKey = tuple[str, str]


@dataclass
class _Waiter:
    text: str
    future: asyncio.Future


@dataclass
class _PendingBatch:
    waiters: list[_Waiter] = field(default_factory=list)
    timer: Optional[asyncio.TimerHandle] = None


class BatchCollector:
    """Groups requests by (source, target) locale pair into batch calls."""

    def __init__(
        self,
        sender: BatchSender,
        wait: float = BATCH_WAIT,
        max_items: int = BATCH_MAX_ITEMS,
    ):
        self.sender = sender
        self.wait = wait
        self.max_items = max_items
        self._pending: dict[PairKey, _PendingBatch] = {}
        self._inflight: dict[str, tuple[PairKey, asyncio.Task, list[_Waiter]]] = {}
        self._counter = itertools.count(1)

    async def submit(self, text: str, source_locale: str, target_locale: str) -> str:
        """Queue ``text`` and wait for its translation."""
        loop = asyncio.get_running_loop()
        pair = (source_locale, target_locale)
        batch = self._pending.setdefault(pair, _PendingBatch())
        waiter = _Waiter(text=text, future=loop.create_future())
        batch.waiters.append(waiter)

        if len(batch.waiters) >= self.max_items:
            self._flush(pair)
        elif batch.timer is None:
            batch.timer = loop.call_later(self.wait, self._flush, pair)
        return await waiter.future

    def _flush(self, pair: PairKey) -> None:
        batch = self._pending.pop(pair, None)
        if batch is None:
            return
        if batch.timer is not None:
            batch.timer.cancel()
        waiters = [w for w in batch.waiters if not w.future.done()]
        if not waiters:
            return
        request_key = f"batch_{pair[0]}_{pair[1]}_{next(self._counter)}"
        task = asyncio.ensure_future(self._run(request_key, pair, waiters))
        self._inflight[request_key] = (pair, task, waiters)

    async def _run(self, request_key: str, pair: PairKey, waiters: list[_Waiter]) -> None:
        entries = [BatchEntry(id=f"t{i}", text=w.text) for i, w in enumerate(waiters)]
        logger.debug("Sending batch %s with %d items", request_key, len(entries))
        try:
            translations = await self.sender(entries, pair[0], pair[1], request_key)
        except asyncio.CancelledError:
            _reject_all(waiters, TranslationCancelled(f"Batch {request_key} cancelled"))
            raise
        except Exception as e:
            _reject_all(waiters, e)
            return
        finally:
            self._inflight.pop(request_key, None)

        for entry, waiter in zip(entries, waiters):
            if waiter.future.done():
                continue
            translation = translations.get(entry.id)
            if translation:
                waiter.future.set_result(translation)
            else:
                waiter.future.set_exception(RustleAPIError(f"No translation returned for {entry.text!r}"))

    def cancel_locale(self, target_locale: str) -> int:
        """Cancel queued and in-flight work for ``target_locale``. Returns waiters rejected."""
        cancelled = 0
        for pair in [p for p in self._pending if p[1] == target_locale]:
            batch = self._pending.pop(pair)
            if batch.timer is not None:
                batch.timer.cancel()
            cancelled += _reject_all(batch.waiters, TranslationCancelled(f"Translation to {target_locale} cancelled"))
        for request_key, (pair, task, waiters) in list(self._inflight.items()):
            if pair[1] != target_locale:
                continue
            del self._inflight[request_key]
            task.cancel()
            cancelled += _reject_all(waiters, TranslationCancelled(f"Batch {request_key} cancelled"))
        if cancelled:
            logger.debug("Cancelled %d batch items for %s", cancelled, target_locale)
        return cancelled

    def cancel_all(self) -> None:
        for pair in list(self._pending):
            batch = self._pending.pop(pair)
            if batch.timer is not None:
                batch.timer.cancel()
            _reject_all(batch.waiters, TranslationCancelled("Batch cancelled"))
        for request_key, (_, task, waiters) in list(self._inflight.items()):
            del self._inflight[request_key]
            task.cancel()
            _reject_all(waiters, TranslationCancelled(f"Batch {request_key} cancelled"))

    @property
    def pending_count(self) -> int:
        return sum(len(batch.waiters) for batch in self._pending.values())


def _reject_all(waiters: list[_Waiter], error: BaseException) -> int:
    rejected = 0
    for waiter in waiters:
        if not waiter.future.done():
            waiter.future.set_exception(error)
            rejected += 1
    return rejected
