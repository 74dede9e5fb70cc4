"""Sync machinery between the local tree and WebDAV providers.

Architecture:
    local change → ChangeQueue → Debouncer → SyncOrchestrator
        → RequestScheduler (per provider, paced by RateLimiter) → provider

Components:
- **paths**: canonical remote paths and local/remote mapping
- **ignore**: FileFilter over folder, file and extension patterns
- **rate_limit**: RateLimiter with a 30 minute request window
- **scheduler**: RequestScheduler with priorities and retry backoff
- **queue**: ChangeQueue and Debouncer
- **orchestrator**: SyncOrchestrator (incremental, full, auto-sync); import it
  from davsync.client.sync.orchestrator
"""

from davsync.client.sync.ignore import FileFilter, FilterMode, detect_filter_mode
from davsync.client.sync.queue import ChangeQueue, Debouncer
from davsync.client.sync.rate_limit import RateLimiter
from davsync.client.sync.scheduler import RequestPriority, RequestScheduler

__all__ = [
    "ChangeQueue",
    "Debouncer",
    "FileFilter",
    "FilterMode",
    "RateLimiter",
    "RequestPriority",
    "RequestScheduler",
    "detect_filter_mode",
]
