"""Async HTTP client for WebDAV servers.

This module provides:
- WebDAVClient: authenticated request execution against one server
- format_url: normalize a user-entered server URL
- classify_status: map an HTTP status code to an ErrorKind

Every failure leaving this module is a StorageError.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlsplit

import httpx

from davsync.client.sync.paths import format_path
from davsync.core.config import WebDAVSettings
from davsync.core.errors import ErrorKind, StorageError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Content-Type": "application/xml",
    "Accept": "*/*",
}

STATUS_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.AUTH_FAILED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    405: ErrorKind.METHOD_NOT_ALLOWED,
    409: ErrorKind.CONFLICT,
    423: ErrorKind.LOCKED,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.SERVER_ERROR,
    502: ErrorKind.BAD_GATEWAY,
    503: ErrorKind.SERVICE_UNAVAILABLE,
    507: ErrorKind.INSUFFICIENT_STORAGE,
}

# (encoding, error handler) pairs tried in order for Basic auth credentials
_AUTH_ENCODINGS = (
    ("utf-8", "strict"),
    ("utf-8", "surrogatepass"),
    ("latin-1", "strict"),
)


def format_url(url: str) -> str:
    """Ensure a server URL has a scheme and a trailing slash.

    Examples:
        >>> format_url("dav.example.com/remote")
        'https://dav.example.com/remote/'
    """
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    if not url.endswith("/"):
        url += "/"
    return url


def classify_status(
    status_code: int, overrides: Mapping[int, ErrorKind] | None = None
) -> ErrorKind:
    """Map an HTTP error status to an ErrorKind."""
    if overrides and status_code in overrides:
        return overrides[status_code]
    if status_code in STATUS_KINDS:
        return STATUS_KINDS[status_code]
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN_ERROR


def encode_credentials(username: str, password: str) -> str:
    """Base64-encode ``username:password`` for HTTP Basic auth.

    Raises:
        StorageError: CONFIG_ERROR if no encoding can represent the credentials.
    """
    credentials = f"{username.strip()}:{password.strip()}"
    for encoding, errors in _AUTH_ENCODINGS:
        try:
            raw = credentials.encode(encoding, errors)
        except UnicodeEncodeError:
            logger.debug("Credentials not encodable as %s/%s", encoding, errors)
            continue
        return base64.b64encode(raw).decode("ascii")
    raise StorageError(
        ErrorKind.CONFIG_ERROR, "Username or password contains unencodable characters"
    )


class WebDAVClient:
    """Executes authenticated WebDAV requests against one server.

    Paths passed to request() are interpreted relative to the server URL.
    Full URLs are passed through unchanged.
    """

    def __init__(
        self,
        settings: WebDAVSettings,
        default_headers: Mapping[str, str] | None = None,
        status_overrides: Mapping[int, ErrorKind] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Server URL and credentials.
            default_headers: Headers sent with every request (vendor specific).
            status_overrides: Vendor-specific status code classification.
            transport: Optional httpx transport (used by tests).
        """
        if not settings.server_url:
            raise StorageError(ErrorKind.CONFIG_ERROR, "Server URL is not configured")
        self.settings = settings
        self.base_url = format_url(settings.server_url)
        self.server_path = urlsplit(self.base_url).path or "/"
        self._default_headers = dict(default_headers or DEFAULT_HEADERS)
        self._status_overrides = dict(status_overrides or {})
        self._client = httpx.AsyncClient(timeout=settings.timeout, transport=transport)

    async def __aenter__(self) -> WebDAVClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def get_auth_header(self) -> str:
        """Build the Authorization header value."""
        return "Basic " + encode_credentials(self.settings.username, self.settings.password)

    def get_headers(self) -> dict[str, str]:
        headers = {"Authorization": self.get_auth_header()}
        headers.update(self._default_headers)
        return headers

    def url_for(self, path: str) -> str:
        """Absolute, percent-encoded URL of a remote path."""
        if path.startswith(("http://", "https://")):
            return path
        relative = format_path(path).lstrip("/")
        return self.base_url + quote(relative, safe="/")

    def handle_error(self, error: BaseException | httpx.Response | int) -> StorageError:
        """Classify any failure into a StorageError.

        Args:
            error: An HTTP response, a status code, or a raised exception.

        Returns:
            The classified error (an existing StorageError is returned as-is).
        """
        if isinstance(error, StorageError):
            return error
        if isinstance(error, httpx.Response):
            return StorageError(
                classify_status(error.status_code, self._status_overrides),
                f"{error.request.method} {error.request.url.path} failed: "
                f"{error.status_code} {error.reason_phrase}",
                status_code=error.status_code,
            )
        if isinstance(error, int):
            return StorageError(
                classify_status(error, self._status_overrides),
                f"Request failed with HTTP {error}",
                status_code=error,
            )
        if isinstance(error, httpx.TimeoutException):
            classified = StorageError(ErrorKind.TIMEOUT, f"Request timed out: {error}")
        elif isinstance(error, httpx.TransportError):
            classified = StorageError(ErrorKind.NETWORK_ERROR, f"Network error: {error}")
        else:
            classified = StorageError(ErrorKind.UNKNOWN_ERROR, f"Unexpected error: {error}")
        classified.__cause__ = error
        return classified

    async def request(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Args:
            method: HTTP or WebDAV verb.
            path: Remote path relative to the server URL, or a full URL.
            headers: Extra headers merged over the defaults.
            content: Request body.

        Returns:
            The response, for any 2xx status.

        Raises:
            StorageError: For every non-2xx status and transport failure.
        """
        url = self.url_for(path)
        merged = self.get_headers()
        if headers:
            merged.update(headers)

        logger.info("%s %s", method, url)
        try:
            response = await self._client.request(method, url, headers=merged, content=content)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, url, e)
            raise self.handle_error(e) from e

        logger.debug("%s %s -> %d", method, url, response.status_code)
        if response.is_success:
            return response
        raise self.handle_error(response)
