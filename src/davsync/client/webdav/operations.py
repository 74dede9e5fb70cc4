"""Vendor-agnostic WebDAV file operations.

All paths are canonical remote paths relative to the server URL. Vendor
strategies add retries and fallbacks on top of these primitives, and pace
mutating requests through the before_mutation hook.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from davsync.client.sync.paths import (
    format_path,
    is_ancestor_or_self,
    join_paths,
    parent_path,
)
from davsync.client.webdav.client import WebDAVClient
from davsync.client.webdav.parsers import (
    PROPFIND_BODY,
    PROPFIND_METADATA_BODY,
    QUOTA_BODY,
    parse_multistatus,
    parse_quota,
)
from davsync.core.errors import ErrorKind, StorageError
from davsync.core.types import FileRecord, QuotaInfo

logger = logging.getLogger(__name__)

# MKCOL answers meaning the collection is already there
ALREADY_EXISTS_STATUSES = frozenset({405, 409})
LISTING_RETRY_DELAY = 1.0  # seconds


def _validated_segments(path: str) -> list[str]:
    """Split a directory path, rejecting segments that do not descend.

    Raises:
        StorageError: INVALID_OPERATION for "." or ".." segments, whose
            parent would resolve to the path itself or above it.
    """
    segments = []
    for segment in path.replace("\\", "/").split("/"):
        if not segment:
            continue
        if segment in (".", ".."):
            raise StorageError(
                ErrorKind.INVALID_OPERATION,
                f"Cannot create directory with relative segment {segment!r}: {path}",
            )
        segments.append(segment)
    return segments


class WebDAVOperations:
    """Path-based CRUD primitives over a WebDAVClient.

    Attributes:
        before_mutation: Awaited before every MKCOL, PUT, MOVE and COPY,
            including the folder creations an upload or move triggers.
    """

    def __init__(
        self,
        client: WebDAVClient,
        before_mutation: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.client = client
        self.before_mutation = before_mutation

    async def _mutate(
        self,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        if self.before_mutation is not None:
            await self.before_mutation()
        return await self.client.request(method, path, headers=headers, content=content)

    async def _propfind(self, path: str, depth: str, body: str = PROPFIND_BODY) -> list[FileRecord]:
        response = await self.client.request(
            "PROPFIND",
            path,
            headers={"Depth": depth, "Content-Type": "application/xml; charset=utf-8"},
            content=body,
        )
        return parse_multistatus(response.content, self.client.server_path)

    async def _list_children(self, path: str) -> list[FileRecord]:
        path = format_path(path)
        return [r for r in await self._propfind(path, "1") if r.path != path]

    async def _list_children_with_retry(
        self, path: str, retries: int, retry_delay: float
    ) -> list[FileRecord]:
        attempt = 0
        while True:
            try:
                return await self._list_children(path)
            except StorageError as e:
                if e.kind is ErrorKind.NOT_FOUND or attempt >= retries:
                    raise
                attempt += 1
                logger.warning(
                    "Listing %s failed (%d/%d): %s", path, attempt, retries, e
                )
                await asyncio.sleep(retry_delay * attempt)

    async def list_files(
        self,
        path: str = "/",
        recursive: bool = False,
        max_depth: int | None = None,
        retries: int = 0,
        retry_delay: float = LISTING_RETRY_DELAY,
    ) -> list[FileRecord]:
        """List a folder with Depth 1 requests.

        Args:
            path: Folder to list.
            recursive: Walk discovered subfolders as well.
            max_depth: Deepest level to descend to when recursive (None for
                unbounded; the cycle guard still applies).
            retries: Extra attempts per folder on failure.
            retry_delay: Base delay between those attempts, in seconds.

        Returns:
            Records below path (the folder itself excluded), without duplicates.
        """
        root = format_path(path)
        records: list[FileRecord] = []
        seen: set[str] = set()
        visited: set[str] = set()
        pending = [(root, 0)]

        while pending:
            current, depth = pending.pop(0)
            if current in visited:
                continue
            visited.add(current)

            children = await self._list_children_with_retry(current, retries, retry_delay)
            for record in children:
                if record.path in seen:
                    continue
                seen.add(record.path)
                records.append(record)

                if not (recursive and record.is_folder):
                    continue
                if is_ancestor_or_self(record.path, current):
                    logger.warning(
                        "Skipping folder %s listed under itself or a descendant (%s)",
                        record.path,
                        current,
                    )
                    continue
                if max_depth is not None and depth + 1 >= max_depth:
                    logger.warning("Maximum listing depth %d reached at %s", max_depth, record.path)
                    continue
                pending.append((record.path, depth + 1))

        return records

    async def list_files_infinite(self, path: str = "/") -> list[FileRecord]:
        """List a whole subtree with one ``Depth: infinity`` request."""
        root = format_path(path)
        records = []
        seen: set[str] = set()
        for record in await self._propfind(root, "infinity"):
            if record.path == root or record.path in seen:
                continue
            if not record.path.startswith(root.rstrip("/") + "/"):
                continue
            seen.add(record.path)
            records.append(record)
        return records

    async def _single(self, path: str, body: str) -> FileRecord:
        records = await self._propfind(path, "0", body)
        if not records:
            raise StorageError(ErrorKind.NOT_FOUND, f"Not found: {path}", status_code=404)
        if len(records) > 1:
            logger.warning("Depth 0 PROPFIND on %s returned %d records", path, len(records))
        return records[0]

    async def get_file_info(self, path: str) -> FileRecord:
        """Fetch the record of one file or folder.

        Raises:
            StorageError: NOT_FOUND if the server reports nothing for the path.
        """
        return await self._single(format_path(path), PROPFIND_BODY)

    async def get_file_metadata(self, path: str) -> FileRecord:
        """Like get_file_info, also requesting content type and creation date."""
        return await self._single(format_path(path), PROPFIND_METADATA_BODY)

    async def exists(self, path: str) -> bool:
        try:
            await self.get_file_info(path)
        except StorageError as e:
            if e.kind is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    async def download_file(self, path: str) -> bytes:
        response = await self.client.request("GET", format_path(path))
        return response.content

    async def upload_file(self, path: str, data: bytes, overwrite: bool = True) -> None:
        """Upload content, creating missing parent folders.

        Raises:
            StorageError: FILE_EXISTS when overwrite is False and the target
                already exists (no PUT is sent).
        """
        path = format_path(path)
        if not overwrite and await self.exists(path):
            raise StorageError(ErrorKind.FILE_EXISTS, f"File already exists: {path}")

        await self.ensure_directory_exists(parent_path(path))
        await self.put_content(path, data)

    async def put_content(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> None:
        """PUT content without checking or creating parent folders."""
        await self._mutate(
            "PUT", format_path(path), headers={"Content-Type": content_type}, content=data
        )

    async def create_directory(self, path: str) -> None:
        """MKCOL a folder. An already existing folder counts as success."""
        try:
            await self._mutate("MKCOL", format_path(path))
        except StorageError as e:
            if e.status_code in ALREADY_EXISTS_STATUSES:
                logger.debug("MKCOL %s: already exists (%s)", path, e.status_code)
                return
            raise

    async def ensure_directory_exists(self, path: str) -> None:
        """Create a folder and any missing ancestors.

        Walks the segments from the root to the leaf, checking each one and
        creating it when absent. Once one level had to be created, the levels
        below it are created without checking.

        Raises:
            StorageError: INVALID_OPERATION for "." or ".." segments,
                NOT_A_DIRECTORY if a path component exists as a file.
        """
        segments = _validated_segments(path)
        if not segments:
            return

        leaf = join_paths(*segments)
        try:
            info = await self.get_file_info(leaf)
        except StorageError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
        else:
            if not info.is_folder:
                raise StorageError(ErrorKind.NOT_A_DIRECTORY, f"Not a directory: {leaf}")
            return

        current = "/"
        creating = False
        for segment in segments:
            current = join_paths(current, segment)
            if not creating:
                try:
                    info = await self.get_file_info(current)
                except StorageError as e:
                    if e.kind is not ErrorKind.NOT_FOUND:
                        raise
                    creating = True
                else:
                    if not info.is_folder:
                        raise StorageError(
                            ErrorKind.NOT_A_DIRECTORY, f"Not a directory: {current}"
                        )
                    continue
            logger.debug("Creating remote folder %s", current)
            await self.create_directory(current)

    async def delete_file(self, path: str) -> None:
        """DELETE a file. A missing file counts as deleted."""
        path = format_path(path)
        if path == "/":
            raise StorageError(ErrorKind.INVALID_OPERATION, "Refusing to delete the root")
        try:
            await self.client.request("DELETE", path)
        except StorageError as e:
            if e.kind is ErrorKind.NOT_FOUND:
                logger.debug("DELETE %s: already absent", path)
                return
            raise

    async def delete_directory(self, path: str, recursive: bool = True) -> None:
        """Delete a folder, children first when recursive."""
        path = format_path(path)
        if path == "/":
            raise StorageError(ErrorKind.INVALID_OPERATION, "Refusing to delete the root")

        if recursive:
            try:
                children = await self._list_children(path)
            except StorageError as e:
                if e.kind is ErrorKind.NOT_FOUND:
                    return
                raise
            for child in children:
                if not child.is_folder:
                    await self.delete_file(child.path)
            for child in children:
                if child.is_folder and not is_ancestor_or_self(child.path, path):
                    await self.delete_directory(child.path, recursive=True)

        await self.delete_file(path)

    async def _transfer(self, method: str, source: str, target: str, overwrite: bool) -> None:
        source = format_path(source)
        target = format_path(target)
        if source == target:
            return
        await self.ensure_directory_exists(parent_path(target))
        headers = {
            "Destination": self.client.url_for(target),
            "Overwrite": "T" if overwrite else "F",
        }
        if method == "COPY":
            headers["Depth"] = "infinity"
        await self._mutate(method, source, headers=headers)

    async def move_file(self, source: str, target: str, overwrite: bool = True) -> None:
        await self._transfer("MOVE", source, target, overwrite)

    async def copy_file(self, source: str, target: str, overwrite: bool = True) -> None:
        await self._transfer("COPY", source, target, overwrite)

    async def get_quota(self) -> QuotaInfo:
        """Query quota on the server root. Failures yield an all-unknown quota."""
        try:
            response = await self.client.request(
                "PROPFIND",
                "/",
                headers={"Depth": "0", "Content-Type": "application/xml; charset=utf-8"},
                content=QUOTA_BODY,
            )
        except StorageError as e:
            logger.warning("Quota request failed: %s", e)
            return QuotaInfo()
        return parse_quota(response.content)
