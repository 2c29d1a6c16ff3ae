"""dashsync: client-side data sync for dashboard resource collections."""

from dashsync.batch import BatchDeleter
from dashsync.cache import CacheStore, list_loader
from dashsync.config import SyncSettings
from dashsync.errors import AmbiguousResult, ServerRejection, StaleResponse, SyncError, TransportError
from dashsync.models import BatchOutcome, CachedCollection, MutationOutcome, Page, Progress
from dashsync.mutator import OptimisticMutator
from dashsync.pager import CursorPager, ScrollAccumulator
from dashsync.resources import ManagedCollection, SyncContext

__all__ = [
    "CacheStore",
    "list_loader",
    "OptimisticMutator",
    "CursorPager",
    "ScrollAccumulator",
    "BatchDeleter",
    "ManagedCollection",
    "SyncContext",
    "SyncSettings",
    "CachedCollection",
    "MutationOutcome",
    "Page",
    "Progress",
    "BatchOutcome",
    "SyncError",
    "TransportError",
    "ServerRejection",
    "AmbiguousResult",
    "StaleResponse",
]
