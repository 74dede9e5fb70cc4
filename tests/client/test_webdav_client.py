"""Tests for the WebDAV protocol client."""

from __future__ import annotations

import base64

import httpx
import pytest

from davsync.client.webdav.client import (
    WebDAVClient,
    classify_status,
    encode_credentials,
    format_url,
)
from davsync.core.config import WebDAVSettings
from davsync.core.errors import ErrorKind, StorageError

BASE = "https://dav.example.com/dav/"


def make_client(**kwargs: object) -> WebDAVClient:
    settings = WebDAVSettings(server_url="dav.example.com/dav", username="alice", password="secret")
    return WebDAVClient(settings, **kwargs)  # type: ignore[arg-type]


class TestHelpers:
    """Tests for URL, status and credential helpers."""

    def test_format_url(self) -> None:
        assert format_url("dav.example.com/remote") == "https://dav.example.com/remote/"
        assert format_url(" http://host/dav/ ") == "http://host/dav/"

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (401, ErrorKind.AUTH_FAILED),
            (403, ErrorKind.FORBIDDEN),
            (404, ErrorKind.NOT_FOUND),
            (405, ErrorKind.METHOD_NOT_ALLOWED),
            (409, ErrorKind.CONFLICT),
            (423, ErrorKind.LOCKED),
            (429, ErrorKind.RATE_LIMITED),
            (502, ErrorKind.BAD_GATEWAY),
            (503, ErrorKind.SERVICE_UNAVAILABLE),
            (504, ErrorKind.SERVER_ERROR),
            (507, ErrorKind.INSUFFICIENT_STORAGE),
            (418, ErrorKind.UNKNOWN_ERROR),
        ],
    )
    def test_classify_status(self, status: int, kind: ErrorKind) -> None:
        assert classify_status(status) is kind

    def test_classify_status_override(self) -> None:
        assert classify_status(403, {403: ErrorKind.AUTH_FAILED}) is ErrorKind.AUTH_FAILED

    def test_encode_credentials(self) -> None:
        encoded = encode_credentials(" alice ", "pässwörd")
        assert base64.b64decode(encoded).decode("utf-8") == "alice:pässwörd"

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(StorageError) as exc_info:
            WebDAVClient(WebDAVSettings(server_url="", username="u", password="p"))
        assert exc_info.value.kind is ErrorKind.CONFIG_ERROR


class TestWebDAVClient:
    """Tests for WebDAVClient requests."""

    def test_url_for_quotes_path(self) -> None:
        client = make_client()
        assert client.server_path == "/dav/"
        assert client.url_for("/notes/a b#1.md") == BASE + "notes/a%20b%231.md"
        assert client.url_for("https://elsewhere/x") == "https://elsewhere/x"

    @pytest.mark.asyncio
    async def test_request_sends_auth_and_headers(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Requests should carry Basic auth, defaults and extra headers."""
        httpx_mock.add_response(method="PROPFIND", url=BASE + "notes", status_code=207, text="<x/>")
        async with make_client() as client:
            response = await client.request("PROPFIND", "/notes", headers={"Depth": "1"})

        assert response.status_code == 207
        request = httpx_mock.get_request()
        expected = "Basic " + base64.b64encode(b"alice:secret").decode()
        assert request.headers["Authorization"] == expected
        assert request.headers["Depth"] == "1"
        assert request.headers["Accept"] == "*/*"

    @pytest.mark.asyncio
    async def test_error_status_raises(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="GET", url=BASE + "missing.md", status_code=404)
        async with make_client() as client:
            with pytest.raises(StorageError) as exc_info:
                await client.request("GET", "/missing.md")
        assert exc_info.value.kind is ErrorKind.NOT_FOUND
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_status_override_applied(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="GET", url=BASE + "a.md", status_code=403)
        async with make_client(status_overrides={403: ErrorKind.AUTH_FAILED}) as client:
            with pytest.raises(StorageError) as exc_info:
                await client.request("GET", "/a.md")
        assert exc_info.value.kind is ErrorKind.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_network_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Transport failures should become NETWORK_ERROR with the cause kept."""
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        async with make_client() as client:
            with pytest.raises(StorageError) as exc_info:
                await client.request("GET", "/a.md")
        assert exc_info.value.kind is ErrorKind.NETWORK_ERROR
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_timeout(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))
        async with make_client() as client:
            with pytest.raises(StorageError) as exc_info:
                await client.request("GET", "/a.md")
        assert exc_info.value.kind is ErrorKind.TIMEOUT

    def test_handle_error_passthrough(self) -> None:
        client = make_client()
        error = StorageError(ErrorKind.LOCKED, "locked")
        assert client.handle_error(error) is error
        assert client.handle_error(503).kind is ErrorKind.SERVICE_UNAVAILABLE
