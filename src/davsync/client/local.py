"""Local file tree access for davsync.

This module provides:
- LocalStore: contract the orchestrator uses to read and write local files
- FileSystemStore: LocalStore over a directory, disk IO off the event loop
- LocalChangeHandler / FileSystemWatcher: watchdog bridge that forwards
  file changes to a callback on the event loop
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from watchdog.events import (
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from davsync.core.types import LocalFileInfo, SyncAction

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[SyncAction, str, "str | None"], None]

# Filesystems may round the mtimes passed to os.utime
MTIME_EPSILON = 0.01  # seconds


class LocalStore(Protocol):
    """Read/write access to the local sync root by relative path."""

    async def read(self, path: str) -> bytes: ...

    async def write(self, path: str, data: bytes, mtime: float | None = None) -> None: ...

    async def set_mtime(self, path: str, mtime: float) -> None: ...

    async def delete(self, path: str) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def enumerate(self) -> list[LocalFileInfo]: ...


class FileSystemStore:
    """LocalStore backed by a directory on disk.

    Symlinks are skipped during enumeration. The store remembers the state
    it left each written or deleted file in, so that the watcher can tell
    its own changes from the user's (see is_own_change()).
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser().resolve()
        # path -> (size, mtime) after write()/set_mtime(), None after delete()
        self._own_changes: dict[str, tuple[int, float] | None] = {}
        self._lock = threading.Lock()

    def absolute(self, path: str) -> Path:
        """Absolute path of a sync-root-relative path.

        Raises:
            ValueError: If the path escapes the sync root.
        """
        target = (self.root / path.strip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes sync root: {path}")
        return target

    def relative(self, absolute: Path | str) -> str | None:
        """Sync-root-relative path with forward slashes, or None if outside."""
        try:
            rel = Path(absolute).resolve().relative_to(self.root)
        except ValueError:
            return None
        return rel.as_posix()

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(self.absolute(path).read_bytes)

    async def write(self, path: str, data: bytes, mtime: float | None = None) -> None:
        """Atomically replace a file's content.

        Args:
            path: Path relative to the sync root.
            data: New content.
            mtime: Modification time to give the file (now if None).
        """
        target = self.absolute(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".davsync-tmp")
            tmp.write_bytes(data)
            if mtime is not None:
                os.utime(tmp, (mtime, mtime))
            # A rename keeps size and mtime, so the final state is known now
            stat = tmp.stat()
            self._remember(path, (stat.st_size, stat.st_mtime))
            os.replace(tmp, target)

        await asyncio.to_thread(_write)

    async def set_mtime(self, path: str, mtime: float) -> None:
        target = self.absolute(path)

        def _touch() -> None:
            stat = target.stat()
            self._remember(path, (stat.st_size, mtime))
            os.utime(target, (stat.st_atime, mtime))

        await asyncio.to_thread(_touch)

    async def delete(self, path: str) -> None:
        self._remember(path, None)
        await asyncio.to_thread(self.absolute(path).unlink, True)

    def _remember(self, path: str, state: tuple[int, float] | None) -> None:
        with self._lock:
            self._own_changes[path.strip("/")] = state

    def is_own_change(self, path: str) -> bool:
        """Check whether a file is still exactly as this store last left it.

        Called from the watcher thread. A file the user touched afterwards no
        longer matches and is forgotten.
        """
        path = path.strip("/")
        with self._lock:
            if path not in self._own_changes:
                return False
            expected = self._own_changes[path]

        try:
            stat = self.absolute(path).stat()
        except FileNotFoundError:
            matches = expected is None
        except (OSError, ValueError):
            matches = False
        else:
            matches = (
                expected is not None
                and stat.st_size == expected[0]
                and abs(stat.st_mtime - expected[1]) < MTIME_EPSILON
            )

        if not matches:
            with self._lock:
                if self._own_changes.get(path, False) == expected:
                    del self._own_changes[path]
        return matches

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self.absolute(path).is_file)

    async def enumerate(self) -> list[LocalFileInfo]:
        """Every regular file below the root, sorted by path."""
        return await asyncio.to_thread(self._scan)

    def _scan(self) -> list[LocalFileInfo]:
        files = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            base = Path(dirpath)
            dirnames[:] = [d for d in dirnames if not (base / d).is_symlink()]
            for filename in filenames:
                full = base / filename
                if full.is_symlink():
                    continue
                try:
                    stat = full.stat()
                except OSError as e:
                    logger.debug("Skipping %s: %s", full, e)
                    continue
                files.append(
                    LocalFileInfo(
                        path=full.relative_to(self.root).as_posix(),
                        mtime=stat.st_mtime,
                        size=stat.st_size,
                    )
                )
        files.sort(key=lambda info: info.path)
        return files


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class LocalChangeHandler(FileSystemEventHandler):
    """Translates watchdog file events into sync actions on the event loop."""

    def __init__(
        self,
        store: FileSystemStore,
        callback: ChangeCallback,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        super().__init__()
        self._store = store
        self._callback = callback
        self._loop = loop

    def _emit(self, action: SyncAction, path: str, old_path: str | None = None) -> None:
        if path.endswith(".davsync-tmp"):
            return
        if action is not SyncAction.RENAME and self._store.is_own_change(path):
            logger.debug("Dropping %s event for %s written by sync", action.value, path)
            return
        self._loop.call_soon_threadsafe(self._callback, action, path, old_path)

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        src = self._store.relative(_decode(event.src_path))
        if src is None:
            return

        if isinstance(event, FileMovedEvent):
            dest = self._store.relative(_decode(event.dest_path))
            if dest is None:
                self._emit(SyncAction.DELETE, src)
            elif dest.endswith(".davsync-tmp"):
                return
            elif src.endswith(".davsync-tmp"):
                # Atomic replace by FileSystemStore.write
                self._emit(SyncAction.MODIFY, dest)
            else:
                self._emit(SyncAction.RENAME, dest, src)
        elif isinstance(event, FileCreatedEvent):
            self._emit(SyncAction.CREATE, src)
        elif isinstance(event, FileModifiedEvent | FileClosedEvent):
            self._emit(SyncAction.MODIFY, src)
        elif isinstance(event, FileDeletedEvent):
            self._emit(SyncAction.DELETE, src)


class FileSystemWatcher:
    """Watches the sync root and reports file changes to a callback.

    The callback runs on the given event loop, never on the observer thread.
    """

    def __init__(
        self,
        store: FileSystemStore,
        callback: ChangeCallback,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if not store.root.is_dir():
            raise ValueError(f"Watch path must be a directory: {store.root}")
        self._store = store
        self._handler = LocalChangeHandler(store, callback, loop or asyncio.get_running_loop())
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._observer.schedule(self._handler, str(self._store.root), recursive=True)
        self._observer.start()
        self._running = True
        logger.info("Watching %s for changes", self._store.root)

    def stop(self) -> None:
        if not self._running:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._running = False
