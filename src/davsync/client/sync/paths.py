"""Path normalization and local/remote path mapping.

Remote paths are canonical: a leading slash, single slashes between segments,
and no trailing slash except for the root itself. Local paths are relative
to the sync root and use forward slashes without a leading slash.
"""

from __future__ import annotations

import re

_MULTI_SLASH = re.compile(r"/+")


def format_path(path: str) -> str:
    """Canonicalize a remote path.

    Examples:
        >>> format_path("")
        '/'
        >>> format_path("notes//daily/")
        '/notes/daily'
    """
    if not path:
        return "/"
    path = _MULTI_SLASH.sub("/", "/" + path.replace("\\", "/"))
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def join_paths(*parts: str) -> str:
    """Join path fragments into one canonical remote path."""
    return format_path("/".join(part for part in parts if part))


def split_segments(path: str) -> list[str]:
    """Split a path into its non-empty segments (root yields [])."""
    return [segment for segment in format_path(path).split("/") if segment]


def parent_path(path: str) -> str:
    """Parent of a canonical path; the root is its own parent."""
    path = format_path(path)
    if path == "/":
        return "/"
    return path[: path.rfind("/")] or "/"


def base_name(path: str) -> str:
    """Last segment of a path ("" for the root)."""
    segments = split_segments(path)
    return segments[-1] if segments else ""


def is_ancestor_or_self(candidate: str, path: str) -> bool:
    """Check whether candidate equals path or is one of its ancestors."""
    candidate = format_path(candidate)
    path = format_path(path)
    if candidate == path or candidate == "/":
        return True
    return path.startswith(candidate + "/")


def get_remote_base_path(base_path: str) -> str:
    """Remote folder that mirrors the sync root, without surrounding slashes."""
    return base_path.strip().strip("/")


def local_to_remote(local_path: str, base_path: str) -> str:
    """Map a sync-root-relative local path to its canonical remote path."""
    return join_paths(get_remote_base_path(base_path), local_path.replace("\\", "/"))


def map_remote_path_to_local(remote_path: str, base_path: str) -> str:
    """Map a remote path back to a path relative to the local sync root.

    Args:
        remote_path: Path as reported by the server.
        base_path: Configured remote base folder.

    Returns:
        "" when remote_path is the base folder itself, the remainder after
        the base prefix when it lies below it, and remote_path unchanged when
        no mapping applies.
    """
    if not base_path or not base_path.strip():
        return remote_path

    remote = remote_path.strip().strip("/")
    base = base_path.strip().strip("/")

    if remote == base:
        return ""
    if remote.startswith(base + "/"):
        return remote[len(base) + 1 :]

    # Some servers echo the base folder with irregular separators; compare
    # segment by segment before giving up.
    base_segments = [s for s in base.split("/") if s]
    remote_segments = [s for s in remote.split("/") if s]
    if (
        base_segments
        and len(remote_segments) >= len(base_segments)
        and remote_segments[: len(base_segments)] == base_segments
    ):
        return "/".join(remote_segments[len(base_segments) :])

    return remote_path
