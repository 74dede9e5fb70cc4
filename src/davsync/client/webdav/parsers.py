"""Parsers for WebDAV multistatus responses.

Parsing is lenient: an element that cannot be decoded is skipped with a
warning, and a document that cannot be parsed at all yields an empty listing
or an all-unknown quota instead of raising.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import unquote, urlsplit

from davsync.client.sync.paths import base_name, format_path
from davsync.core.types import UNKNOWN_BYTES, FileRecord, QuotaInfo

logger = logging.getLogger(__name__)

NAMESPACES = {"d": "DAV:"}

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:getlastmodified/>
    <d:getcontentlength/>
    <d:resourcetype/>
    <d:getetag/>
  </d:prop>
</d:propfind>"""

PROPFIND_METADATA_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:getlastmodified/>
    <d:getcontentlength/>
    <d:resourcetype/>
    <d:getcontenttype/>
    <d:getetag/>
    <d:creationdate/>
  </d:prop>
</d:propfind>"""

QUOTA_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:quota-available-bytes/>
    <d:quota-used-bytes/>
  </d:prop>
</d:propfind>"""


def _text(element: ET.Element, tag: str) -> str | None:
    found = element.find(tag, NAMESPACES)
    if found is None or found.text is None:
        return None
    value = found.text.strip()
    return value or None


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_http_date(value: str | None) -> datetime:
    """Parse an RFC 1123 date, falling back to the current time."""
    if value:
        try:
            parsed = parsedate_to_datetime(value)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (TypeError, ValueError):
            logger.debug("Unparseable getlastmodified %r", value)
    return datetime.now(timezone.utc)


def parse_iso_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def href_to_path(href: str, server_path: str) -> str | None:
    """Convert an href into a path relative to the server URL.

    Args:
        href: Raw href, absolute URL or absolute path, possibly URL-encoded.
        server_path: Path component of the server URL.

    Returns:
        Canonical path, or None when the href lies outside the server path.
    """
    if "://" in href:
        href = urlsplit(href).path
    decoded = format_path(unquote(href))
    prefix = format_path(unquote(server_path))
    if prefix == "/":
        return decoded
    if decoded == prefix:
        return "/"
    if decoded.startswith(prefix + "/"):
        return format_path(decoded[len(prefix) :])
    return None


def _select_prop(response: ET.Element) -> ET.Element | None:
    """Prefer the prop of a 200 propstat, else the first one present."""
    first: ET.Element | None = None
    for propstat in response.findall("d:propstat", NAMESPACES):
        prop = propstat.find("d:prop", NAMESPACES)
        if prop is None:
            continue
        status = _text(propstat, "d:status") or ""
        if " 200" in status:
            return prop
        if first is None:
            first = prop
    return first


def _parse_response(response: ET.Element, server_path: str) -> FileRecord | None:
    href = _text(response, "d:href")
    if href is None:
        logger.warning("Skipping multistatus response without href")
        return None

    path = href_to_path(href, server_path)
    if path is None:
        logger.debug("Skipping href outside server path: %s", href)
        return None

    prop = _select_prop(response)
    if prop is None:
        logger.warning("Skipping multistatus response without properties: %s", href)
        return None

    resource_type = prop.find("d:resourcetype", NAMESPACES)
    is_folder = (
        resource_type is not None
        and resource_type.find("d:collection", NAMESPACES) is not None
    )

    etag = _text(prop, "d:getetag")
    if etag is not None:
        etag = etag.replace('"', "")

    return FileRecord(
        path=path,
        name=base_name(path),
        is_folder=is_folder,
        size=max(0, _parse_int(_text(prop, "d:getcontentlength"), 0)),
        modified_time=parse_http_date(_text(prop, "d:getlastmodified")),
        etag=etag,
        created_time=parse_iso_date(_text(prop, "d:creationdate")),
        content_type=_text(prop, "d:getcontenttype"),
    )


def parse_multistatus(xml_text: str | bytes, server_path: str = "/") -> list[FileRecord]:
    """Decode a PROPFIND multistatus document into file records.

    Args:
        xml_text: Response body.
        server_path: Path component of the server URL, stripped from hrefs.

    Returns:
        One record per decodable response element, in document order.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.warning("Unparseable multistatus document: %s", e)
        return []

    records = []
    for response in root.iter(f"{{{NAMESPACES['d']}}}response"):
        try:
            record = _parse_response(response, server_path)
        except (ValueError, OverflowError) as e:
            logger.warning("Skipping malformed multistatus response: %s", e)
            continue
        if record is not None:
            records.append(record)
    return records


def parse_quota(xml_text: str | bytes) -> QuotaInfo:
    """Extract quota-used-bytes and quota-available-bytes.

    Each value is parsed independently; missing or invalid ones are -1.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.warning("Unparseable quota document: %s", e)
        return QuotaInfo()

    used = UNKNOWN_BYTES
    available = UNKNOWN_BYTES
    used_elem = root.find(".//d:quota-used-bytes", NAMESPACES)
    if used_elem is not None and used_elem.text:
        used = _parse_int(used_elem.text.strip(), UNKNOWN_BYTES)
    available_elem = root.find(".//d:quota-available-bytes", NAMESPACES)
    if available_elem is not None and available_elem.text:
        available = _parse_int(available_elem.text.strip(), UNKNOWN_BYTES)

    if used < 0:
        used = UNKNOWN_BYTES
    if available < 0:
        available = UNKNOWN_BYTES
    return QuotaInfo.from_counts(used, available)
