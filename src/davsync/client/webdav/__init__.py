"""WebDAV protocol layer.

Components:
- **client**: WebDAVClient, authenticated requests and status mapping
- **parsers**: multistatus and quota XML parsing
- **operations**: WebDAVOperations, path-based CRUD primitives
- **vendors**: provider strategies (Generic, Jianguoyun) and create_provider
"""

from davsync.client.webdav.client import WebDAVClient
from davsync.client.webdav.operations import WebDAVOperations
from davsync.client.webdav.vendors import (
    GenericProvider,
    JianguoyunProvider,
    VendorKind,
    WebDAVProvider,
    classify_vendor,
    create_provider,
)

__all__ = [
    "GenericProvider",
    "JianguoyunProvider",
    "VendorKind",
    "WebDAVClient",
    "WebDAVOperations",
    "WebDAVProvider",
    "classify_vendor",
    "create_provider",
]
