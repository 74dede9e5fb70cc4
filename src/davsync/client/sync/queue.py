"""Pending local changes, coalesced per path.

This module provides:
- ChangeQueue: path-keyed map of the latest pending change
- Debouncer: single reschedulable timer on the running event loop

Only the most recent change per path is kept. A rename is keyed by its new
path and remembers the old one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterator

from davsync.core.types import SyncAction, SyncQueueItem

logger = logging.getLogger(__name__)


class ChangeQueue:
    """Path-keyed queue of pending changes with last-write-wins coalescing."""

    def __init__(self) -> None:
        self._items: dict[str, SyncQueueItem] = {}

    def put(
        self,
        path: str,
        action: SyncAction,
        old_path: str | None = None,
        timestamp: float | None = None,
    ) -> SyncQueueItem:
        """Record a change, replacing any pending change for the same path."""
        item = SyncQueueItem(
            path=path,
            action=action,
            timestamp=time.time() if timestamp is None else timestamp,
            old_path=old_path,
        )
        replaced = self._items.get(path)
        if replaced is not None:
            logger.debug(
                "Coalesced %s %s over pending %s", action.value, path, replaced.action.value
            )
        self._items[path] = item
        return item

    def get(self, path: str) -> SyncQueueItem | None:
        return self._items.get(path)

    def remove(self, path: str) -> SyncQueueItem | None:
        return self._items.pop(path, None)

    def snapshot(self) -> list[SyncQueueItem]:
        """Pending items in ascending timestamp order (a copy)."""
        return sorted(self._items.values(), key=lambda item: item.timestamp)

    def clear(self) -> int:
        count = len(self._items)
        self._items.clear()
        return count

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, path: object) -> bool:
        return path in self._items

    def __iter__(self) -> Iterator[SyncQueueItem]:
        return iter(self.snapshot())


class Debouncer:
    """Calls a function once activity has been quiet for ``delay`` seconds.

    Every trigger() cancels the pending call and schedules a new one.
    """

    def __init__(self, delay: float, callback: Callable[[], object]) -> None:
        self.delay = delay
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        self._callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
