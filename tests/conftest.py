"""Shared fixtures for davsync tests."""

from __future__ import annotations

import pytest

from davsync.client.webdav.vendors import GenericProvider, JianguoyunProvider
from davsync.core.config import WebDAVSettings
from tests.fakedav import JIANGUOYUN_URL, SERVER_URL, FakeDAVServer


@pytest.fixture
def dav_server() -> FakeDAVServer:
    """An empty in-memory WebDAV server."""
    return FakeDAVServer()


@pytest.fixture
def webdav_settings() -> WebDAVSettings:
    """Settings for a generic server."""
    return WebDAVSettings(server_url=SERVER_URL, username="alice", password="secret")


@pytest.fixture
def generic_provider(
    webdav_settings: WebDAVSettings, dav_server: FakeDAVServer
) -> GenericProvider:
    """Generic provider talking to the fake server, without connect backoff."""
    return GenericProvider(
        webdav_settings, name="generic", transport=dav_server.transport, connect_delay=0
    )


@pytest.fixture
def jianguoyun_provider(
    dav_server: FakeDAVServer, monkeypatch: pytest.MonkeyPatch
) -> JianguoyunProvider:
    """Jianguoyun provider talking to the fake server, with all sleeps disabled."""
    monkeypatch.setattr(
        "davsync.client.webdav.vendors.pacing_delay", lambda tier, level=None: 0.0
    )
    settings = WebDAVSettings(server_url=JIANGUOYUN_URL, username="alice", password="secret")
    provider = JianguoyunProvider(
        settings, name="jgy", transport=dav_server.transport, connect_delay=0
    )
    provider.delete_settle_delay = 0.0
    provider.listing_retry_delay = 0.0
    return provider
