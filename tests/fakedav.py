"""In-memory WebDAV server for tests, served through httpx.MockTransport."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import quote, unquote, urlsplit
from xml.sax.saxutils import escape

import httpx

SERVER_URL = "https://dav.example.com/dav"
JIANGUOYUN_URL = "https://dav.jianguoyun.com/dav"
SERVER_PATH = "/dav"

FIXED_TIME = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def _canonical(path: str) -> str:
    parts = [p for p in path.split("/") if p]
    return "/" + "/".join(parts)


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] or "/"


class FakeDAVServer:
    """A small but faithful WebDAV server.

    Paths are relative to SERVER_PATH. Scripted failures are consumed in
    order per (method, path) before the normal behavior applies.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.folders: set[str] = {"/"}
        self.mtimes: dict[str, datetime] = {}
        self.requests: list[httpx.Request] = []
        self.allow_infinity = True
        self.quota: tuple[int, int] | None = (1024, 4096)
        self._failures: dict[tuple[str, str], list[int]] = defaultdict(list)
        self._always: dict[tuple[str, str], int] = {}
        # Extra hrefs appended to Depth 1 listings, keyed by folder
        self.extra_children: dict[str, list[str]] = defaultdict(list)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # Test setup helpers

    def add_folder(self, path: str) -> None:
        path = _canonical(path)
        while path not in self.folders:
            self.folders.add(path)
            path = _parent(path)

    def add_file(self, path: str, content: bytes = b"", mtime: datetime = FIXED_TIME) -> None:
        path = _canonical(path)
        self.add_folder(_parent(path))
        self.files[path] = content
        self.mtimes[path] = mtime

    def fail(self, method: str, path: str, *statuses: int) -> None:
        """Answer the next requests for method/path with these statuses."""
        self._failures[(method, _canonical(path))].extend(statuses)

    def fail_always(self, method: str, path: str, status: int) -> None:
        self._always[(method, _canonical(path))] = status

    def calls(self, method: str | None = None) -> list[tuple[str, str]]:
        """(method, path) of every request received, optionally filtered."""
        result = []
        for request in self.requests:
            if method is None or request.method == method:
                result.append((request.method, self._path_of(request.url)))
        return result

    # Request handling

    def _path_of(self, url: httpx.URL | str) -> str:
        path = unquote(urlsplit(str(url)).path)
        if path.startswith(SERVER_PATH):
            path = path[len(SERVER_PATH) :]
        return _canonical(path)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self._path_of(request.url)
        key = (request.method, path)
        if self._failures.get(key):
            return httpx.Response(self._failures[key].pop(0))
        if key in self._always:
            return httpx.Response(self._always[key])

        handler = getattr(self, "_do_" + request.method.lower(), None)
        if handler is None:
            return httpx.Response(405)
        return handler(request, path)

    def _exists(self, path: str) -> bool:
        return path in self.files or path in self.folders

    def _entry(self, path: str) -> str:
        href = SERVER_PATH + quote(path)
        if path in self.folders:
            if not href.endswith("/"):
                href += "/"
            props = "<d:resourcetype><d:collection/></d:resourcetype>"
            modified = FIXED_TIME
        else:
            props = (
                "<d:resourcetype/>"
                f"<d:getcontentlength>{len(self.files[path])}</d:getcontentlength>"
                f'<d:getetag>"etag-{len(self.files[path])}"</d:getetag>'
            )
            modified = self.mtimes.get(path, FIXED_TIME)
        return (
            f"<d:response><d:href>{escape(href)}</d:href><d:propstat><d:prop>"
            f"{props}<d:getlastmodified>{format_datetime(modified, usegmt=True)}"
            "</d:getlastmodified></d:prop>"
            "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )

    def _children(self, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        entries = [p for p in self.folders | set(self.files) if p != path and p.startswith(prefix)]
        return sorted(p for p in entries if "/" not in p[len(prefix) :])

    def _descendants(self, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        return sorted(
            p for p in self.folders | set(self.files) if p != path and p.startswith(prefix)
        )

    def _do_propfind(self, request: httpx.Request, path: str) -> httpx.Response:
        if b"quota-used-bytes" in request.content:
            return self._quota_response()
        if not self._exists(path):
            return httpx.Response(404)

        depth = request.headers.get("Depth", "1")
        if depth == "infinity" and not self.allow_infinity:
            return httpx.Response(403)

        paths = [path]
        if path in self.folders:
            if depth == "1":
                paths += self._children(path)
            elif depth == "infinity":
                paths += self._descendants(path)
        body = "".join(self._entry(p) for p in paths)
        if depth == "1":
            for href in self.extra_children.get(path, []):
                body += (
                    f"<d:response><d:href>{escape(href)}</d:href><d:propstat><d:prop>"
                    "<d:resourcetype><d:collection/></d:resourcetype></d:prop>"
                    "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
                )
        return httpx.Response(
            207,
            content=f'<?xml version="1.0"?><d:multistatus xmlns:d="DAV:">{body}</d:multistatus>',
        )

    def _quota_response(self) -> httpx.Response:
        if self.quota is None:
            return httpx.Response(404)
        used, available = self.quota
        return httpx.Response(
            207,
            content=(
                '<?xml version="1.0"?><d:multistatus xmlns:d="DAV:"><d:response>'
                f"<d:href>{SERVER_PATH}/</d:href><d:propstat><d:prop>"
                f"<d:quota-used-bytes>{used}</d:quota-used-bytes>"
                f"<d:quota-available-bytes>{available}</d:quota-available-bytes>"
                "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat>"
                "</d:response></d:multistatus>"
            ),
        )

    def _do_mkcol(self, request: httpx.Request, path: str) -> httpx.Response:
        if self._exists(path):
            return httpx.Response(405)
        if _parent(path) not in self.folders:
            return httpx.Response(409)
        self.folders.add(path)
        return httpx.Response(201)

    def _do_put(self, request: httpx.Request, path: str) -> httpx.Response:
        if _parent(path) not in self.folders:
            return httpx.Response(409)
        if path in self.folders:
            return httpx.Response(405)
        created = path not in self.files
        self.files[path] = request.content
        self.mtimes[path] = datetime.now(timezone.utc)
        return httpx.Response(201 if created else 204)

    def _do_get(self, request: httpx.Request, path: str) -> httpx.Response:
        if path not in self.files:
            return httpx.Response(404)
        return httpx.Response(200, content=self.files[path])

    def _do_delete(self, request: httpx.Request, path: str) -> httpx.Response:
        if path in self.files:
            del self.files[path]
            self.mtimes.pop(path, None)
            return httpx.Response(204)
        if path in self.folders:
            for child in self._descendants(path):
                self.files.pop(child, None)
                self.folders.discard(child)
            self.folders.discard(path)
            return httpx.Response(204)
        return httpx.Response(404)

    def _transfer(self, request: httpx.Request, path: str, keep_source: bool) -> httpx.Response:
        if not self._exists(path):
            return httpx.Response(404)
        target = self._path_of(request.headers["Destination"])
        if _parent(target) not in self.folders:
            return httpx.Response(409)
        existed = self._exists(target)
        if existed and request.headers.get("Overwrite", "T") == "F":
            return httpx.Response(412)

        moves = [(path, target)] + [
            (child, target + child[len(path) :]) for child in self._descendants(path)
        ]
        for source, dest in moves:
            if source in self.folders:
                self.folders.add(dest)
            else:
                self.files[dest] = self.files[source]
                self.mtimes[dest] = self.mtimes.get(source, FIXED_TIME)
        if not keep_source:
            for source, _ in reversed(moves):
                self.files.pop(source, None)
                self.mtimes.pop(source, None)
                self.folders.discard(source)
        return httpx.Response(204 if existed else 201)

    def _do_move(self, request: httpx.Request, path: str) -> httpx.Response:
        return self._transfer(request, path, keep_source=False)

    def _do_copy(self, request: httpx.Request, path: str) -> httpx.Response:
        return self._transfer(request, path, keep_source=True)
