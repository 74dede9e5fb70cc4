"""Vendor strategies for WebDAV servers.

This module provides:
- VendorKind / classify_vendor: pick a strategy from the server URL
- WebDAVProvider: the single provider interface used by the orchestrator
- GenericProvider: plain WebDAV with a Depth: infinity listing fast path
- JianguoyunProvider: quota-enforcing vendor with tiered pacing, patient
  connection retry and a best-effort deletion fallback chain
- create_provider: factory resolving the strategy once at construction
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import ClassVar

import httpx

from davsync.client.sync.paths import (
    format_path,
    get_remote_base_path,
    local_to_remote,
    map_remote_path_to_local,
)
from davsync.client.sync.rate_limit import RateLimiter, pacing_delay
from davsync.client.webdav.client import DEFAULT_HEADERS, WebDAVClient
from davsync.client.webdav.operations import WebDAVOperations
from davsync.core.config import AccountTier, DelayLevel, WebDAVSettings
from davsync.core.errors import ErrorKind, StorageError
from davsync.core.types import (
    ConnectionState,
    ConnectionTracker,
    FileRecord,
    QuotaInfo,
)

logger = logging.getLogger(__name__)

JIANGUOYUN_MARKERS = ("jianguoyun", "jgy")

DEFAULT_CONNECT_DELAY = 3.0  # seconds before the first reconnect
JITTER_RATIO = 0.3


class VendorKind(str, Enum):
    """Closed set of supported server variants."""

    GENERIC = "generic"
    JIANGUOYUN = "jianguoyun"


def classify_vendor(server_url: str) -> VendorKind:
    """Map a server URL to its vendor variant.

    URLs without a domain (no dot and not localhost) are always generic.
    """
    url = (server_url or "").strip().lower()
    if not url:
        return VendorKind.GENERIC
    if "." not in url and "localhost" not in url:
        return VendorKind.GENERIC
    if any(marker in url for marker in JIANGUOYUN_MARKERS):
        return VendorKind.JIANGUOYUN
    return VendorKind.GENERIC


class WebDAVProvider:
    """Remote storage reachable over WebDAV.

    Paths are canonical remote paths relative to the server URL. Use
    remote_path() and local_path() to translate from and to paths relative
    to the local sync root.
    """

    kind: ClassVar[VendorKind] = VendorKind.GENERIC
    default_headers: ClassVar[dict[str, str]] = DEFAULT_HEADERS
    status_overrides: ClassVar[dict[int, ErrorKind]] = {}

    connect_attempts: ClassVar[int] = 3
    connect_delay_cap: ClassVar[float] = 10.0
    # Failures worth retrying while connecting
    retry_connect_kinds: ClassVar[frozenset[ErrorKind]] = frozenset(
        {ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.NETWORK_ERROR, ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT}
    )

    def __init__(
        self,
        settings: WebDAVSettings,
        name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        connect_delay: float = DEFAULT_CONNECT_DELAY,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Server URL, credentials and vendor options.
            name: Display name used in logs and notifications.
            transport: Optional httpx transport (used by tests).
            connect_delay: Initial backoff between connection attempts.
        """
        self.settings = settings
        self.name = name or settings.server_url
        self.connect_delay = connect_delay
        self.client = WebDAVClient(
            settings,
            default_headers=self.default_headers,
            status_overrides=self.status_overrides,
            transport=transport,
        )
        self.ops = WebDAVOperations(self.client, before_mutation=self._before_mutation)
        self._tracker = ConnectionTracker()
        self.base_path = get_remote_base_path(settings.base_path)
        self.unverified_deletions: set[str] = set()

    @property
    def state(self) -> ConnectionState:
        return self._tracker.state

    @property
    def remote_root(self) -> str:
        return format_path(self.base_path)

    def remote_path(self, local_path: str) -> str:
        """Remote path of a path relative to the local sync root."""
        return local_to_remote(local_path, self.base_path)

    def local_path(self, remote_path: str) -> str:
        """Path relative to the local sync root of a remote path."""
        return map_remote_path_to_local(remote_path, self.base_path)

    # Connection lifecycle

    async def _check_root(self) -> None:
        await self.ops.get_file_info("/")

    async def test_connection(self) -> bool:
        """Check that the server answers an authenticated PROPFIND."""
        try:
            await self._check_root()
        except StorageError as e:
            logger.warning("Connection test to %s failed: %s", self.name, e)
            return False
        return True

    def _max_attempts(self, error: StorageError) -> int:
        return self.connect_attempts

    def _next_delay(self, delay: float, error: StorageError) -> float:
        grown = delay * 1.5
        return min(grown + random.uniform(0, grown * JITTER_RATIO), self.connect_delay_cap)

    async def connect(self) -> None:
        """Connect to the server, retrying transient failures with backoff.

        Raises:
            StorageError: CONFIG_ERROR for incomplete settings, otherwise the
                last connection failure. The provider is left in ERROR state.
        """
        self._tracker.transition(ConnectionState.CONNECTING)
        if not self.settings.is_configured:
            self._tracker.transition(ConnectionState.ERROR)
            raise StorageError(
                ErrorKind.CONFIG_ERROR,
                f"{self.name}: server URL, username and password are required",
            )

        delay = self.connect_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._check_root()
            except StorageError as e:
                max_attempts = self._max_attempts(e)
                if e.kind not in self.retry_connect_kinds or attempt >= max_attempts:
                    logger.error(
                        "Connecting to %s failed after %d attempt(s): %s", self.name, attempt, e
                    )
                    self._tracker.transition(ConnectionState.ERROR)
                    raise
                delay = self._next_delay(delay, e)
                logger.warning(
                    "Connecting to %s failed (%d/%d): %s. Retrying in %.1fs",
                    self.name,
                    attempt,
                    max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            break

        self._tracker.transition(ConnectionState.CONNECTED)
        logger.info("Connected to %s (%s)", self.name, self.kind.value)
        await self._after_connect()

    async def _after_connect(self) -> None:
        """Hook run once connected."""

    async def disconnect(self) -> None:
        if self._tracker.state is ConnectionState.CONNECTED:
            self._tracker.transition(ConnectionState.DISCONNECTED)

    async def ensure_connected(self) -> None:
        """Connect unless already connected.

        Raises:
            StorageError: INVALID_OPERATION if a previous connect failed
                (an errored provider must be rebuilt).
        """
        if self.state is ConnectionState.CONNECTED:
            return
        if self.state is ConnectionState.ERROR:
            raise StorageError(
                ErrorKind.INVALID_OPERATION, f"{self.name} is in error state, rebuild it"
            )
        await self.connect()

    async def close(self) -> None:
        await self.disconnect()
        await self.client.close()

    def create_rate_limiter(self) -> RateLimiter:
        """Limiter for this server (no quota and no pacing by default)."""
        return RateLimiter()

    async def _before_mutation(self) -> None:
        """Awaited before every MKCOL, PUT, MOVE and COPY request."""

    # File operations

    async def list_files(self, path: str = "/", recursive: bool = False) -> list[FileRecord]:
        return await self.ops.list_files(path, recursive=recursive)

    async def get_file_info(self, path: str) -> FileRecord:
        return await self.ops.get_file_info(path)

    async def get_file_metadata(self, path: str) -> FileRecord:
        return await self.ops.get_file_metadata(path)

    async def file_exists(self, path: str) -> bool:
        return await self.ops.exists(path)

    async def upload_file(self, path: str, data: bytes, overwrite: bool = True) -> None:
        await self.ops.upload_file(path, data, overwrite=overwrite)

    async def download_file(self, path: str) -> bytes:
        return await self.ops.download_file(path)

    async def delete_file(self, path: str) -> None:
        await self.ops.delete_file(path)

    async def delete_folder(self, path: str, recursive: bool = True) -> None:
        await self.ops.delete_directory(path, recursive=recursive)

    async def move_file(self, source: str, target: str, overwrite: bool = True) -> None:
        await self.ops.move_file(source, target, overwrite=overwrite)

    async def copy_file(self, source: str, target: str, overwrite: bool = True) -> None:
        await self.ops.copy_file(source, target, overwrite=overwrite)

    async def create_folder(self, path: str) -> None:
        await self.ops.create_directory(path)

    async def ensure_directory(self, path: str) -> None:
        await self.ops.ensure_directory_exists(path)

    async def get_quota(self) -> QuotaInfo:
        return await self.ops.get_quota()


class GenericProvider(WebDAVProvider):
    """Standards-following WebDAV server."""

    kind = VendorKind.GENERIC

    async def list_files(self, path: str = "/", recursive: bool = False) -> list[FileRecord]:
        """List a folder, trying one Depth: infinity request when recursive.

        Servers that refuse infinite depth are walked with Depth 1 requests.
        """
        if not recursive:
            return await self.ops.list_files(path)
        try:
            return await self.ops.list_files_infinite(path)
        except StorageError as e:
            logger.info(
                "Depth: infinity listing of %s refused by %s (%s), walking folders instead",
                path,
                self.name,
                e.kind.value,
            )
        return await self.ops.list_files(path, recursive=True)


class JianguoyunProvider(WebDAVProvider):
    """Jianguoyun (Nutstore) WebDAV: request quota per 30 minutes.

    Attributes:
        account_tier: Current tier, explicit or inferred from quota size.
        request_delay: Seconds waited before each MKCOL, PUT, MOVE or COPY.
        unverified_deletions: Paths whose deletion could not be confirmed.
    """

    kind = VendorKind.JIANGUOYUN
    default_headers = {"Accept": "*/*", "Cache-Control": "no-cache"}
    status_overrides = {403: ErrorKind.AUTH_FAILED}

    connect_attempts = 5
    unavailable_connect_attempts = 8
    connect_delay_cap = 10.0
    unavailable_delay_cap = 15.0
    throttled_delay_cap = 20.0
    retry_connect_kinds = WebDAVProvider.retry_connect_kinds | {ErrorKind.AUTH_FAILED}
    throttled_statuses = frozenset({401, 403, 429})

    paid_threshold_bytes = int(1.1 * 1024**3)
    max_listing_depth = 20
    listing_retries = 3
    listing_retry_delay = 1.0
    delete_settle_delay = 0.5  # seconds between the empty PUT and the retried DELETE
    tombstone_suffix = ".deleted"

    def __init__(
        self,
        settings: WebDAVSettings,
        name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        connect_delay: float = DEFAULT_CONNECT_DELAY,
    ) -> None:
        super().__init__(settings, name=name, transport=transport, connect_delay=connect_delay)
        self._explicit_tier = settings.account_tier
        self.account_tier = settings.account_tier or AccountTier.FREE
        self.request_delay = pacing_delay(self.account_tier, settings.delay_level)
        self._limiter: RateLimiter | None = None

    # Pacing and tier

    @property
    def delay_level(self) -> DelayLevel:
        return self.settings.delay_level

    def _expected_delay(self) -> float:
        return pacing_delay(self.account_tier, self.settings.delay_level)

    def _apply_tier(self) -> None:
        self.request_delay = self._expected_delay()
        if self._limiter is not None:
            self._limiter.configure(self.account_tier, self.settings.delay_level)

    def set_delay_level(self, level: DelayLevel) -> None:
        self.settings.delay_level = level
        self._apply_tier()

    def set_account_tier(self, tier: AccountTier | None) -> None:
        """Set an explicit tier, or None to go back to inference."""
        self._explicit_tier = tier
        self.settings.account_tier = tier
        if tier is not None:
            self.account_tier = tier
        self._apply_tier()

    def infer_account_tier(self, quota: QuotaInfo) -> AccountTier:
        """Update the tier from quota size unless the user set one."""
        if self._explicit_tier is not None or not quota.is_known:
            return self.account_tier
        tier = AccountTier.PAID if quota.total > self.paid_threshold_bytes else AccountTier.FREE
        if tier is not self.account_tier:
            logger.info("%s: inferred %s account from %d byte quota", self.name, tier.value, quota.total)
            self.account_tier = tier
            self._apply_tier()
        return tier

    def _assert_pacing(self) -> None:
        expected = self._expected_delay()
        if self.request_delay != expected:
            logger.warning(
                "%s: pacing drifted to %.0fms, expected %.0fms for %s/%s",
                self.name,
                self.request_delay * 1000,
                expected * 1000,
                self.account_tier.value,
                self.settings.delay_level.value,
            )
            self.request_delay = expected

    async def _pace(self) -> None:
        self._assert_pacing()
        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)

    async def _before_mutation(self) -> None:
        await self._pace()

    def create_rate_limiter(self) -> RateLimiter:
        # Quota only: mutating requests are paced by _before_mutation
        self._limiter = RateLimiter.for_tier(
            self.account_tier, self.settings.delay_level, paced=False
        )
        return self._limiter

    # Connection

    def _max_attempts(self, error: StorageError) -> int:
        if error.kind is ErrorKind.SERVICE_UNAVAILABLE:
            return self.unavailable_connect_attempts
        return self.connect_attempts

    def _next_delay(self, delay: float, error: StorageError) -> float:
        if error.status_code in self.throttled_statuses:
            grown, cap = delay * 2.0, self.throttled_delay_cap
        elif error.kind is ErrorKind.SERVICE_UNAVAILABLE:
            grown, cap = delay * 1.5, self.unavailable_delay_cap
        else:
            grown, cap = delay * 1.5, self.connect_delay_cap
        return min(grown + random.uniform(0, grown * JITTER_RATIO), cap)

    async def _after_connect(self) -> None:
        await self.get_quota()

    async def get_quota(self) -> QuotaInfo:
        quota = await self.ops.get_quota()
        self.infer_account_tier(quota)
        return quota

    # Operations with vendor behavior

    async def list_files(self, path: str = "/", recursive: bool = False) -> list[FileRecord]:
        """List a folder. Recursive listings always walk Depth 1 requests."""
        if not recursive:
            return await self.ops.list_files(path)
        return await self.ops.list_files(
            path,
            recursive=True,
            max_depth=self.max_listing_depth,
            retries=self.listing_retries,
            retry_delay=self.listing_retry_delay,
        )

    async def delete_file(self, path: str) -> None:
        """Delete a file, falling back through progressively cruder strategies.

        1. DELETE.
        2. Existence check: an already absent file counts as deleted.
        3. Overwrite with empty content, then DELETE again.
        4. MOVE to a tombstone name.
        5. Give up: log, record the path in unverified_deletions, and return.

        Every failed step moves on to the next one, so no StorageError
        escapes. A missing file already counts as deleted in step 1.
        """
        path = format_path(path)
        try:
            await self.ops.delete_file(path)
            self.unverified_deletions.discard(path)
            return
        except StorageError as e:
            logger.warning("%s: DELETE %s failed (%s), trying fallbacks", self.name, path, e)

        try:
            if not await self.ops.exists(path):
                logger.info("%s: %s is already absent", self.name, path)
                self.unverified_deletions.discard(path)
                return
        except StorageError as e:
            logger.debug("%s: existence check for %s failed: %s", self.name, path, e)

        try:
            await self.ops.put_content(path, b"", content_type="text/plain; charset=utf-8")
            await asyncio.sleep(self.delete_settle_delay)
            await self.ops.delete_file(path)
            self.unverified_deletions.discard(path)
            return
        except StorageError as e:
            logger.warning("%s: empty-then-delete of %s failed: %s", self.name, path, e)

        tombstone = path + self.tombstone_suffix
        try:
            await self.ops.move_file(path, tombstone)
            logger.warning("%s: moved %s to tombstone %s", self.name, path, tombstone)
            self.unverified_deletions.discard(path)
            return
        except StorageError as e:
            logger.warning("%s: tombstone move of %s failed: %s", self.name, path, e)

        logger.error("%s: could not delete %s, marking it unverified", self.name, path)
        self.unverified_deletions.add(path)


_PROVIDERS: dict[VendorKind, type[WebDAVProvider]] = {
    VendorKind.GENERIC: GenericProvider,
    VendorKind.JIANGUOYUN: JianguoyunProvider,
}


def create_provider(
    settings: WebDAVSettings,
    name: str = "",
    transport: httpx.AsyncBaseTransport | None = None,
    connect_delay: float = DEFAULT_CONNECT_DELAY,
) -> WebDAVProvider:
    """Build the provider matching the server URL."""
    kind = classify_vendor(settings.server_url)
    logger.debug("Using %s strategy for %s", kind.value, name or settings.server_url)
    return _PROVIDERS[kind](settings, name=name, transport=transport, connect_delay=connect_delay)
