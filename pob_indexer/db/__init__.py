"""
Snapshot Store Module
=====================

Supabase client management and the snapshot store implementations.
"""

from pob_indexer.db.client import get_write_client
from pob_indexer.db.store import (
    SnapshotStore,
    MemorySnapshotStore,
    SupabaseSnapshotStore,
    create_store,
)

__all__ = [
    "get_write_client",
    "SnapshotStore",
    "MemorySnapshotStore",
    "SupabaseSnapshotStore",
    "create_store",
]
