"""Error taxonomy for remote storage operations.

Every failure crossing the WebDAV client boundary is a StorageError carrying
exactly one ErrorKind.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a storage failure."""

    CONFIG_ERROR = "config_error"
    AUTH_FAILED = "auth_failed"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    LOCKED = "locked"
    METHOD_NOT_ALLOWED = "method_not_allowed"
    SERVER_ERROR = "server_error"
    BAD_GATEWAY = "bad_gateway"
    SERVICE_UNAVAILABLE = "service_unavailable"
    INSUFFICIENT_STORAGE = "insufficient_storage"
    RATE_LIMITED = "rate_limited"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    NOT_A_DIRECTORY = "not_a_directory"
    FILE_EXISTS = "file_exists"
    INVALID_OPERATION = "invalid_operation"
    UNKNOWN_ERROR = "unknown_error"


# Retried locally with backoff before surfacing to the caller
TRANSIENT_KINDS = frozenset(
    {
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.NETWORK_ERROR,
        ErrorKind.RATE_LIMITED,
    }
)


class StorageError(Exception):
    """A classified failure of a remote storage operation."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same request may succeed."""
        return self.kind in TRANSIENT_KINDS

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"[{self.kind.name}] {self.message} (HTTP {self.status_code})"
        return f"[{self.kind.name}] {self.message}"


class RequestCancelledError(Exception):
    """A scheduled request was removed from the queue before it ran."""


class EncryptionError(Exception):
    """Content could not be encrypted or decrypted."""
