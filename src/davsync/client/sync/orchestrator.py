"""Sync orchestration between the local tree and WebDAV providers.

This module provides:
- SyncOrchestrator: queues local changes, debounces them, and pushes them to
  every enabled provider through a per-provider RequestScheduler; also runs
  full reconciliations, the sync watchdog and periodic auto-sync
- MergeStrategy: hook for the "merge" conflict policy

Usage:
    orchestrator = SyncOrchestrator(settings, FileSystemStore(root))
    orchestrator.queue_change(SyncAction.MODIFY, "notes/a.md")
    report = await orchestrator.run_sync()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import timezone
from typing import Any, Protocol, TypeVar

import httpx

from davsync.client.local import LocalStore
from davsync.client.notifications import (
    Notifier,
    not_configured_notice,
    sync_failures_notice,
    sync_timeout_notice,
    unverified_deletions_notice,
)
from davsync.client.sync.ignore import FileFilter
from davsync.client.sync.queue import ChangeQueue, Debouncer
from davsync.client.sync.scheduler import RequestPriority, RequestScheduler
from davsync.client.webdav.vendors import WebDAVProvider, create_provider
from davsync.core.config import ConflictPolicy, SyncMode, SyncSettings, WebDAVSettings
from davsync.core.crypto import ContentCipher, Encryptor, PassthroughCipher
from davsync.core.errors import (
    EncryptionError,
    ErrorKind,
    RequestCancelledError,
    StorageError,
)
from davsync.core.types import (
    ConnectionState,
    FileRecord,
    LocalFileInfo,
    SyncAction,
    SyncQueueItem,
    SyncReport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEBOUNCE_DELAY = 2.0  # seconds
NOT_CONFIGURED_COOLDOWN = 30 * 60  # seconds
SYNC_TIMEOUT = 10 * 60  # seconds
# Remote files whose mtime is within this many seconds of the local one are
# considered the same version
MTIME_TOLERANCE = 2.0
# Policies under which a newer remote copy replaces the local one
REMOTE_WINS_POLICIES = frozenset({ConflictPolicy.KEEP_REMOTE, ConflictPolicy.MERGE})

ProviderFactory = Callable[[str, WebDAVSettings], WebDAVProvider]


class MergeStrategy(Protocol):
    """Combines diverged local and remote content for the merge policy."""

    async def merge(self, path: str, local: bytes, remote: bytes) -> bytes: ...


def _is_retryable(error: Exception) -> bool:
    return isinstance(error, StorageError) and error.is_transient


class SyncOrchestrator:
    """Keeps the local tree and every enabled provider in step.

    Local change events are coalesced per path and processed after a quiet
    period. Each provider gets its own scheduler, so one slow or throttled
    server never holds back the others.
    """

    def __init__(
        self,
        settings: SyncSettings,
        store: LocalStore,
        notifier: Notifier | None = None,
        cipher: ContentCipher | None = None,
        provider_factory: ProviderFactory | None = None,
        merge_strategy: MergeStrategy | None = None,
        debounce_delay: float = DEFAULT_DEBOUNCE_DELAY,
        sync_timeout: float = SYNC_TIMEOUT,
        scheduler_options: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Sync settings (providers, filters, policies).
            store: Local file access.
            notifier: Where notices go (a log-only Notifier by default).
            cipher: Content cipher; derived from the encryption settings if None.
            provider_factory: Builds a provider from (name, settings).
            merge_strategy: Used by the merge conflict policy.
            debounce_delay: Quiet period before queued changes are processed.
            sync_timeout: Seconds after which a stuck sync is force-reset.
            scheduler_options: Extra keyword arguments for each RequestScheduler.
            transport: httpx transport handed to the default provider factory.
        """
        self.settings = settings
        self.store = store
        self.notifier = notifier or Notifier()
        if cipher is None:
            if settings.encryption.enabled:
                cipher = Encryptor(settings.encryption.key)
            else:
                cipher = PassthroughCipher()
        self.cipher = cipher
        self.merge_strategy = merge_strategy
        self.sync_timeout = sync_timeout
        self.filter = FileFilter.from_settings(settings)

        self._provider_factory = provider_factory or self._default_factory
        self._transport = transport
        self._scheduler_options = scheduler_options or {}

        self.queue = ChangeQueue()
        self._debouncer = Debouncer(debounce_delay, self._on_debounce)
        self._providers: dict[str, WebDAVProvider] = {}
        self._schedulers: dict[str, RequestScheduler] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._auto_task: asyncio.Task[None] | None = None
        self._watchdog: asyncio.TimerHandle | None = None
        self._sync_in_progress = False
        self._run_id = 0
        self._reported_unverified: set[str] = set()

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    # Change intake

    def queue_change(self, action: SyncAction, path: str, old_path: str | None = None) -> None:
        """Record a local change and restart the debounce timer.

        Changes to ignored paths are dropped, except deletions. A rename into
        an ignored path becomes a deletion of the old path, and a rename out
        of one becomes a creation.
        """
        path = path.strip("/")
        if action is SyncAction.RENAME and old_path is not None:
            old_path = old_path.strip("/")
            old_ignored = self.filter.should_ignore(old_path)
            if self.filter.should_ignore(path):
                if old_ignored:
                    return
                action, path, old_path = SyncAction.DELETE, old_path, None
            elif old_ignored:
                action, old_path = SyncAction.CREATE, None
        elif action is not SyncAction.DELETE and self.filter.should_ignore(path):
            logger.debug("Ignoring %s of %s", action.value, path)
            return

        self.queue.put(path, action, old_path=old_path)
        self._debouncer.trigger()

    def _on_debounce(self) -> None:
        self._spawn(self.run_incremental())

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Providers

    def _default_factory(self, name: str, settings: WebDAVSettings) -> WebDAVProvider:
        return create_provider(settings, name=name, transport=self._transport)

    def _make_scheduler(self, provider: WebDAVProvider) -> RequestScheduler:
        options = {"should_retry": _is_retryable, **self._scheduler_options}
        return RequestScheduler(provider.create_rate_limiter(), **options)

    async def _discard_provider(self, name: str) -> None:
        scheduler = self._schedulers.pop(name, None)
        if scheduler is not None:
            await scheduler.close()
        provider = self._providers.pop(name, None)
        if provider is not None:
            await provider.close()

    async def _connected_providers(
        self, report: SyncReport
    ) -> list[tuple[str, WebDAVProvider, RequestScheduler]]:
        """Connect every enabled provider, rebuilding any left in ERROR state.

        Providers that fail to connect are reported under ``<name>`` and
        left out of the returned list.
        """
        enabled = self.settings.enabled_providers()
        for name in list(self._providers):
            if name not in enabled:
                await self._discard_provider(name)

        connected = []
        for name, provider_settings in enabled.items():
            provider = self._providers.get(name)
            if provider is not None and provider.state is ConnectionState.ERROR:
                logger.info("Rebuilding provider %s after a failed connection", name)
                await self._discard_provider(name)
                provider = None
            if provider is None:
                provider = self._provider_factory(name, provider_settings)
                self._providers[name] = provider
                self._schedulers[name] = self._make_scheduler(provider)

            try:
                await provider.ensure_connected()
            except StorageError as e:
                report.failed[f"<{name}>"] = str(e)
                continue
            connected.append((name, provider, self._schedulers[name]))
        return connected

    def _not_configured(self) -> bool:
        if self.settings.enabled_providers():
            return False
        self.notifier.notify_once(
            "not-configured", not_configured_notice(), cooldown=NOT_CONFIGURED_COOLDOWN
        )
        return True

    async def _call(
        self,
        scheduler: RequestScheduler,
        executor: Callable[[], Awaitable[T]],
        priority: RequestPriority = RequestPriority.NORMAL,
    ) -> T:
        return await scheduler.enqueue(executor, priority)

    # Key derivation and AES-GCM over whole files run off the event loop

    async def _encrypt(self, data: bytes) -> bytes:
        return await asyncio.to_thread(self.cipher.encrypt, data)

    async def _decrypt(self, data: bytes) -> bytes:
        return await asyncio.to_thread(self.cipher.decrypt, data)

    # Incremental sync

    async def process_queue(self) -> SyncReport:
        """Push every queued local change to every enabled provider.

        Items are handled in ascending timestamp order and removed after one
        attempt, whether it succeeded or not.
        """
        report = SyncReport()
        if not self.queue:
            return report

        if self._not_configured():
            dropped = self.queue.clear()
            logger.info("No provider configured, dropped %d queued change(s)", dropped)
            return report

        if not self.settings.sync_direction.allows_upload:
            dropped = self.queue.clear()
            logger.info("Download-only sync, dropped %d local change(s)", dropped)
            return report

        providers = await self._connected_providers(report)
        for item in self.queue.snapshot():
            if providers:
                await self._process_item(item, providers, report)
            else:
                report.failed[item.path] = "no provider reachable"
            # Coalesced again while it was being processed
            current = self.queue.get(item.path)
            if current is item:
                self.queue.remove(item.path)

        self._finish(report, providers)
        return report

    async def _process_item(
        self,
        item: SyncQueueItem,
        providers: list[tuple[str, WebDAVProvider, RequestScheduler]],
        report: SyncReport,
    ) -> None:
        if item.action in (SyncAction.CREATE, SyncAction.MODIFY) or (
            item.action is SyncAction.RENAME and not item.old_path
        ):
            try:
                data = await self._encrypt(await self.store.read(item.path))
            except FileNotFoundError:
                logger.debug("%s vanished before upload", item.path)
                report.skipped.append(item.path)
                return
            except (OSError, EncryptionError) as e:
                report.failed[item.path] = str(e)
                return
            operation = "upload"
        elif item.action is SyncAction.DELETE:
            data, operation = b"", "delete"
        else:
            data, operation = b"", "move"

        results = await asyncio.gather(
            *(
                self._apply(item, operation, data, provider, scheduler)
                for _, provider, scheduler in providers
            ),
            return_exceptions=True,
        )

        errors = []
        skipped = False
        for (name, _, _), result in zip(providers, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                errors.append(f"{name}: {result}")
            elif result is False:
                skipped = True

        if errors:
            logger.warning("Sync of %s failed: %s", item.path, "; ".join(errors))
            report.failed[item.path] = "; ".join(errors)
        elif skipped:
            report.skipped.append(item.path)
        elif operation == "upload":
            report.uploaded.append(item.path)
        elif operation == "delete":
            report.deleted.append(item.path)
        else:
            report.moved.append(item.path)

    async def _apply(
        self,
        item: SyncQueueItem,
        operation: str,
        data: bytes,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
    ) -> bool:
        """Apply one item to one provider. Returns False when skipped."""
        remote = provider.remote_path(item.path)
        if operation == "upload":
            return await self._upload(provider, scheduler, item.path, remote, data)
        if operation == "delete":
            await self._call(scheduler, lambda: provider.delete_file(remote))
            return True

        if item.old_path is None:
            raise ValueError(f"Rename of {item.path} has no source path")
        source = provider.remote_path(item.old_path)
        try:
            await self._call(scheduler, lambda: provider.move_file(source, remote))
        except StorageError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            # Old remote copy never existed, upload the file under its new name
            logger.info("%s missing on %s, uploading %s instead", source, provider.name, remote)
            content = await self._encrypt(await self.store.read(item.path))
            return await self._upload(provider, scheduler, item.path, remote, content)
        return True

    async def _upload(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        path: str,
        remote: str,
        data: bytes,
    ) -> bool:
        overwrite = self.settings.conflict_policy is not ConflictPolicy.KEEP_REMOTE
        try:
            await self._call(
                scheduler, lambda: provider.upload_file(remote, data, overwrite=overwrite)
            )
        except StorageError as e:
            if e.kind is ErrorKind.FILE_EXISTS and not overwrite:
                logger.info("Keeping remote %s on %s", remote, provider.name)
                return False
            raise
        await self._after_upload(provider, scheduler, path, remote)
        return True

    async def _after_upload(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        path: str,
        remote: str,
    ) -> None:
        """Give the local file the mtime the server stamped on the upload.

        Only needed under the policies where a newer remote copy wins, so
        that the next full sync sees both copies at the same version.
        """
        if self.settings.conflict_policy not in REMOTE_WINS_POLICIES:
            return
        try:
            record = await self._call(
                scheduler, lambda: provider.get_file_info(remote), RequestPriority.LOW
            )
        except StorageError as e:
            logger.warning("Could not read back %s from %s: %s", remote, provider.name, e)
            return
        try:
            await self.store.set_mtime(path, self._remote_mtime(record))
        except OSError as e:
            logger.warning("Could not update mtime of %s: %s", path, e)

    def _finish(
        self,
        report: SyncReport,
        providers: list[tuple[str, WebDAVProvider, RequestScheduler]],
    ) -> None:
        for _, provider, _ in providers:
            for remote in sorted(provider.unverified_deletions):
                local = provider.local_path(remote).strip("/")
                if local not in report.unverified:
                    report.unverified.append(local)

        new_unverified = [p for p in report.unverified if p not in self._reported_unverified]
        self._reported_unverified.update(new_unverified)
        notice = unverified_deletions_notice(new_unverified)
        if notice is not None:
            self.notifier.notify(notice)

        notice = sync_failures_notice(report.failed)
        if notice is not None:
            self.notifier.notify(notice)

        logger.info(
            "Sync finished: %d uploaded, %d downloaded, %d deleted, %d moved, "
            "%d skipped, %d failed",
            len(report.uploaded),
            len(report.downloaded),
            len(report.deleted),
            len(report.moved),
            len(report.skipped),
            len(report.failed),
        )

    # Full sync

    async def full_sync(self) -> SyncReport:
        """Reconcile the whole local tree with every enabled provider."""
        report = SyncReport()
        if self._not_configured():
            return report

        local_files = {
            info.path: info
            for info in await self.store.enumerate()
            if not info.is_folder and not self.filter.should_ignore(info.path)
        }
        providers = await self._connected_providers(report)
        for name, provider, scheduler in providers:
            try:
                await self._reconcile(provider, scheduler, local_files, report)
            except StorageError as e:
                logger.error("Full sync against %s failed: %s", name, e)
                report.failed[f"<{name}>"] = str(e)

        self._finish(report, providers)
        return report

    async def _remote_files(
        self, provider: WebDAVProvider, scheduler: RequestScheduler
    ) -> dict[str, FileRecord]:
        try:
            records = await self._call(
                scheduler,
                lambda: provider.list_files(provider.remote_root, recursive=True),
                RequestPriority.LOW,
            )
        except StorageError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            logger.info("Remote folder %s does not exist yet on %s", provider.remote_root, provider.name)
            return {}

        remote_files = {}
        for record in records:
            if record.is_folder:
                continue
            local = provider.local_path(record.path).strip("/")
            if local and not self.filter.should_ignore(local):
                remote_files[local] = record
        return remote_files

    async def _reconcile(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        local_files: dict[str, LocalFileInfo],
        report: SyncReport,
    ) -> None:
        direction = self.settings.sync_direction
        remote_files = await self._remote_files(provider, scheduler)

        for path in sorted(set(local_files) | set(remote_files)):
            local = local_files.get(path)
            remote = remote_files.get(path)
            try:
                if local is not None and remote is not None:
                    await self._resolve_conflict(provider, scheduler, local, remote, report)
                elif local is not None:
                    if self.settings.delete_local_extra_files and direction.allows_download:
                        await self.store.delete(path)
                        report.deleted.append(path)
                    elif direction.allows_upload:
                        await self._push(provider, scheduler, path, report)
                    else:
                        report.skipped.append(path)
                elif remote is not None:
                    if self.settings.delete_remote_extra_files and direction.allows_upload:
                        await self._call(scheduler, lambda: provider.delete_file(remote.path))
                        report.deleted.append(path)
                    elif direction.allows_download:
                        await self._pull(provider, scheduler, remote, path, report)
                    else:
                        report.skipped.append(path)
            except (StorageError, EncryptionError, OSError) as e:
                logger.warning("Sync of %s with %s failed: %s", path, provider.name, e)
                report.failed[path] = f"{provider.name}: {e}"

    @staticmethod
    def _remote_mtime(remote: FileRecord) -> float:
        modified = remote.modified_time
        if modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        return modified.timestamp()

    async def _resolve_conflict(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        local: LocalFileInfo,
        remote: FileRecord,
        report: SyncReport,
    ) -> None:
        """Apply the conflict policy to a file present on both sides.

        A copy is newer when its mtime leads by more than MTIME_TOLERANCE.
        Sizes are compared through the cipher, so encrypted copies compare
        too. Copies with equal sizes and close mtimes are left alone.

        overwrite uploads when the local copy is newer or the sizes differ.
        keep_local uploads when the local copy is newer, or when the sizes
        differ and the remote copy is not newer. keep_remote downloads under
        the mirrored rule. merge merges whenever the copies differ.
        """
        path = local.path
        direction = self.settings.sync_direction
        remote_mtime = self._remote_mtime(remote)
        local_newer = local.mtime - remote_mtime > MTIME_TOLERANCE
        remote_newer = remote_mtime - local.mtime > MTIME_TOLERANCE
        size_differs = self.cipher.encrypted_size(local.size) != remote.size

        if not (local_newer or remote_newer or size_differs):
            report.skipped.append(path)
            return

        policy = self.settings.conflict_policy
        if policy is ConflictPolicy.MERGE:
            await self._merge(provider, scheduler, local, remote, report)
            return

        if policy is ConflictPolicy.OVERWRITE:
            upload, download = local_newer or size_differs, False
        elif policy is ConflictPolicy.KEEP_LOCAL:
            upload, download = local_newer or (size_differs and not remote_newer), False
        else:
            upload, download = False, remote_newer or (size_differs and not local_newer)

        if upload and direction.allows_upload:
            await self._push(provider, scheduler, path, report)
        elif download and direction.allows_download:
            await self._pull(provider, scheduler, remote, path, report)
        else:
            logger.debug("Leaving %s as is under %s", path, policy.value)
            report.skipped.append(path)

    async def _merge(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        local: LocalFileInfo,
        remote: FileRecord,
        report: SyncReport,
    ) -> None:
        path = local.path
        direction = self.settings.sync_direction
        if self.merge_strategy is None:
            logger.warning("No merge strategy configured, leaving %s as is", path)
            report.skipped.append(path)
            return

        local_data = await self.store.read(path)
        remote_data = await self._decrypt(
            await self._call(scheduler, lambda: provider.download_file(remote.path))
        )
        merged = await self.merge_strategy.merge(path, local_data, remote_data)
        upload = direction.allows_upload and merged != remote_data
        download = direction.allows_download and merged != local_data
        if download:
            # Matches the remote copy unless it is about to be replaced
            mtime = None if upload else self._remote_mtime(remote)
            await self.store.write(path, merged, mtime=mtime)
            report.downloaded.append(path)
        if upload:
            encrypted = await self._encrypt(merged)
            await self._call(scheduler, lambda: provider.upload_file(remote.path, encrypted))
            await self._after_upload(provider, scheduler, path, remote.path)
            report.uploaded.append(path)
        if not (download or upload):
            if local_data == remote_data:
                # Same content, only the mtimes disagreed
                await self.store.set_mtime(path, self._remote_mtime(remote))
            report.skipped.append(path)

    async def _push(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        path: str,
        report: SyncReport,
    ) -> None:
        data = await self._encrypt(await self.store.read(path))
        remote = provider.remote_path(path)
        await self._call(scheduler, lambda: provider.upload_file(remote, data))
        await self._after_upload(provider, scheduler, path, remote)
        report.uploaded.append(path)

    async def _pull(
        self,
        provider: WebDAVProvider,
        scheduler: RequestScheduler,
        remote: FileRecord,
        path: str,
        report: SyncReport,
    ) -> None:
        """Download a file, giving the local copy the remote mtime."""
        data = await self._call(scheduler, lambda: provider.download_file(remote.path))
        await self.store.write(path, await self._decrypt(data), mtime=self._remote_mtime(remote))
        report.downloaded.append(path)

    # Run control

    async def run_incremental(self) -> SyncReport | None:
        """Process the queue under the in-progress guard."""
        return await self._guarded(self.process_queue)

    async def run_sync(self, mode: SyncMode | None = None) -> SyncReport | None:
        """Run one sync in the given mode (the configured one by default).

        A full run first pushes queued changes, since deletions and renames
        cannot be recovered from a tree scan.

        Returns:
            The report, or None if another sync was already running.
        """
        mode = mode or self.settings.sync_mode
        if mode is SyncMode.FULL:
            return await self._guarded(self._full_with_queue)
        return await self._guarded(self.process_queue)

    async def _full_with_queue(self) -> SyncReport:
        report = await self.process_queue()
        report.merge(await self.full_sync())
        return report

    async def _guarded(self, run: Callable[[], Awaitable[SyncReport]]) -> SyncReport | None:
        if self._sync_in_progress:
            logger.info("Sync already in progress, skipping")
            return None

        self._sync_in_progress = True
        self._run_id += 1
        run_id = self._run_id
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self.sync_timeout, self._on_sync_timeout)
        try:
            return await run()
        finally:
            # A run that outlived the watchdog must not reset its successor
            if run_id == self._run_id:
                if self._watchdog is not None:
                    self._watchdog.cancel()
                    self._watchdog = None
                self._sync_in_progress = False
            if self.queue:
                # Changes that arrived during the run
                self._debouncer.trigger()

    def _on_sync_timeout(self) -> None:
        self._watchdog = None
        if not self._sync_in_progress:
            return
        logger.error("Sync exceeded %.0fs, resetting in-progress flag", self.sync_timeout)
        self._sync_in_progress = False
        self.notifier.notify(sync_timeout_notice(self.sync_timeout / 60))

    # Auto-sync

    def start_auto_sync(self) -> bool:
        """Start periodic syncs every ``sync_interval`` minutes.

        Returns:
            True if auto-sync is running afterwards.
        """
        if not self.settings.enable_sync or self.settings.sync_interval <= 0:
            logger.info("Auto-sync disabled or interval not set")
            return False
        if self._auto_task is not None and not self._auto_task.done():
            return True
        self._auto_task = asyncio.get_running_loop().create_task(self._auto_loop())
        logger.info("Auto-sync every %d minute(s)", self.settings.sync_interval)
        return True

    async def _auto_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sync_interval * 60)
            try:
                await self.run_sync()
            except (StorageError, RequestCancelledError, OSError) as e:
                logger.error("Auto-sync run failed: %s", e)

    async def stop_auto_sync(self) -> None:
        if self._auto_task is None:
            return
        self._auto_task.cancel()
        try:
            await self._auto_task
        except asyncio.CancelledError:
            pass
        self._auto_task = None
        logger.info("Auto-sync stopped")

    async def close(self) -> None:
        """Cancel timers and background work, then close every provider."""
        self._debouncer.cancel()
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        await self.stop_auto_sync()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for name in list(self._providers):
            await self._discard_provider(name)
