"""
Snapshot Store
==============

Keyed, idempotent storage for everything the indexers derive.

Two implementations share one contract:
- SupabaseSnapshotStore: production store (PostgREST upserts with on_conflict)
- MemorySnapshotStore:   in-process store for local runs and tests

Contract:
- Every write is an upsert keyed exactly as documented on the record model
- Re-applying an identical record produces no observable change
- Last write wins on last_updated_at
- Team member deletion only happens through delete_team_members_not_in(),
  which callers invoke only after a complete roster fetch

All methods are synchronous (supabase-py is synchronous). Async callers run
them through asyncio.to_thread() so the event loop is never blocked.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from pob_indexer.models.records import (
    NON_FINAL_CERT_STATUSES,
    CertRecord,
    ContentCacheEntry,
    EligibilityRecord,
    ProfileRecord,
    RetryRecord,
    RoundSnapshot,
    ScanCheckpoint,
    TeamMembership,
)

logger = logging.getLogger(__name__)

# Table names
ROUND_SNAPSHOTS_TABLE = "round_snapshots"
CERTS_TABLE = "cert_snapshots"
TEAM_MEMBERS_TABLE = "team_member_snapshots"
ELIGIBILITY_TABLE = "cert_eligibility"
PROFILES_TABLE = "profiles"
RETRY_TABLE = "retry_tracker"
CONTENT_CACHE_TABLE = "ipfs_cache"
CHECKPOINTS_TABLE = "scan_checkpoints"


class SnapshotStore(ABC):
    """Storage boundary used by the indexers, retry tracker and content cache"""

    # Round snapshots
    @abstractmethod
    def upsert_round_snapshot(self, snapshot: RoundSnapshot) -> None: ...

    @abstractmethod
    def get_round_snapshot(self, network_id: int, iteration_id: int, round_id: int) -> Optional[RoundSnapshot]: ...

    @abstractmethod
    def list_round_snapshots(self, network_id: int) -> List[RoundSnapshot]: ...

    # Certificates
    @abstractmethod
    def upsert_cert(self, cert: CertRecord) -> None: ...

    @abstractmethod
    def get_cert(self, network_id: int, token_id: int) -> Optional[CertRecord]: ...

    @abstractmethod
    def get_highest_token_id(self, network_id: int) -> int: ...

    @abstractmethod
    def list_non_final_certs(self, network_id: int) -> List[CertRecord]: ...

    @abstractmethod
    def list_cert_accounts(self, network_id: int) -> List[str]: ...

    # Team rosters
    @abstractmethod
    def upsert_team_member(self, member: TeamMembership) -> None: ...

    @abstractmethod
    def list_team_members(self, network_id: int, iteration_id: int, project_address: str) -> List[TeamMembership]: ...

    @abstractmethod
    def delete_team_members_not_in(
        self, network_id: int, iteration_id: int, project_address: str, roster: Iterable[str]
    ) -> int: ...

    # Eligibility
    @abstractmethod
    def upsert_eligibility(self, record: EligibilityRecord) -> None: ...

    @abstractmethod
    def list_eligibility(self, network_id: int, iteration_id: int) -> List[EligibilityRecord]: ...

    # Profiles
    @abstractmethod
    def upsert_profile(self, profile: ProfileRecord) -> None: ...

    @abstractmethod
    def get_profile(self, network_id: int, account: str) -> Optional[ProfileRecord]: ...

    # Retry bookkeeping
    @abstractmethod
    def get_retry_record(self, namespace: str, operation: str, key: str) -> Optional[RetryRecord]: ...

    @abstractmethod
    def put_retry_record(self, record: RetryRecord) -> None: ...

    @abstractmethod
    def delete_retry_record(self, namespace: str, operation: str, key: str) -> None: ...

    @abstractmethod
    def delete_retry_records_older_than(self, cutoff: float) -> int:
        """Drop records whose last attempt is before cutoff (unix seconds); returns count"""

    # Content cache
    @abstractmethod
    def get_cached_content(self, content_id: str) -> Optional[ContentCacheEntry]: ...

    @abstractmethod
    def put_cached_content(self, entry: ContentCacheEntry) -> None: ...

    # Scan checkpoints
    @abstractmethod
    def get_checkpoint(self, network_id: int, source_ref: str) -> Optional[ScanCheckpoint]: ...

    @abstractmethod
    def put_checkpoint(self, checkpoint: ScanCheckpoint) -> None: ...


# ============================================================
# In-memory store
# ============================================================

class MemorySnapshotStore(SnapshotStore):
    """
    Dictionary-backed store.

    Lock is held only for the dict operation itself (calls arrive from
    worker threads via asyncio.to_thread).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rounds: Dict[tuple, RoundSnapshot] = {}
        self._certs: Dict[tuple, CertRecord] = {}
        self._members: Dict[tuple, TeamMembership] = {}
        self._eligibility: Dict[tuple, EligibilityRecord] = {}
        self._profiles: Dict[tuple, ProfileRecord] = {}
        self._retries: Dict[tuple, RetryRecord] = {}
        self._content: Dict[str, ContentCacheEntry] = {}
        self._checkpoints: Dict[tuple, ScanCheckpoint] = {}

    @staticmethod
    def _put_newest(table: Dict, key, record) -> None:
        existing = table.get(key)
        if existing is not None and existing.last_updated_at > record.last_updated_at:
            return
        table[key] = record.model_copy(deep=True)

    def upsert_round_snapshot(self, snapshot: RoundSnapshot) -> None:
        with self._lock:
            self._put_newest(self._rounds, snapshot.key, snapshot)

    def get_round_snapshot(self, network_id, iteration_id, round_id):
        with self._lock:
            snapshot = self._rounds.get((network_id, iteration_id, round_id))
            return snapshot.model_copy(deep=True) if snapshot else None

    def list_round_snapshots(self, network_id):
        with self._lock:
            rows = [s for k, s in self._rounds.items() if k[0] == network_id]
        return [s.model_copy(deep=True) for s in sorted(rows, key=lambda s: s.key)]

    def upsert_cert(self, cert: CertRecord) -> None:
        with self._lock:
            self._put_newest(self._certs, cert.key, cert)

    def get_cert(self, network_id, token_id):
        with self._lock:
            cert = self._certs.get((network_id, token_id))
            return cert.model_copy(deep=True) if cert else None

    def get_highest_token_id(self, network_id):
        with self._lock:
            ids = [k[1] for k in self._certs if k[0] == network_id]
        return max(ids) if ids else 0

    def list_non_final_certs(self, network_id):
        with self._lock:
            rows = [c for k, c in self._certs.items() if k[0] == network_id and c.status in NON_FINAL_CERT_STATUSES]
        return [c.model_copy(deep=True) for c in sorted(rows, key=lambda c: c.token_id)]

    def list_cert_accounts(self, network_id):
        with self._lock:
            return sorted({c.account for k, c in self._certs.items() if k[0] == network_id})

    def upsert_team_member(self, member: TeamMembership) -> None:
        with self._lock:
            self._put_newest(self._members, member.key, member)

    def list_team_members(self, network_id, iteration_id, project_address):
        prefix = (network_id, iteration_id, project_address.lower())
        with self._lock:
            rows = [m for k, m in self._members.items() if k[:3] == prefix]
        return [m.model_copy(deep=True) for m in sorted(rows, key=lambda m: m.key)]

    def delete_team_members_not_in(self, network_id, iteration_id, project_address, roster):
        prefix = (network_id, iteration_id, project_address.lower())
        keep = {address.lower() for address in roster}
        with self._lock:
            stale = [k for k in self._members if k[:3] == prefix and k[3] not in keep]
            for k in stale:
                del self._members[k]
        return len(stale)

    def upsert_eligibility(self, record: EligibilityRecord) -> None:
        with self._lock:
            self._put_newest(self._eligibility, record.key, record)

    def list_eligibility(self, network_id, iteration_id):
        with self._lock:
            rows = [r for k, r in self._eligibility.items() if k[:2] == (network_id, iteration_id)]
        return [r.model_copy(deep=True) for r in sorted(rows, key=lambda r: r.key)]

    def upsert_profile(self, profile: ProfileRecord) -> None:
        with self._lock:
            self._put_newest(self._profiles, profile.key, profile)

    def get_profile(self, network_id, account):
        with self._lock:
            profile = self._profiles.get((network_id, account.lower()))
            return profile.model_copy() if profile else None

    def get_retry_record(self, namespace, operation, key):
        with self._lock:
            record = self._retries.get((namespace, operation, key))
            return record.model_copy() if record else None

    def put_retry_record(self, record: RetryRecord) -> None:
        with self._lock:
            self._retries[(record.namespace, record.operation, record.key)] = record.model_copy()

    def delete_retry_record(self, namespace, operation, key):
        with self._lock:
            self._retries.pop((namespace, operation, key), None)

    def delete_retry_records_older_than(self, cutoff):
        with self._lock:
            stale = [k for k, r in self._retries.items() if r.last_attempt_at < cutoff]
            for k in stale:
                del self._retries[k]
            return len(stale)

    def get_cached_content(self, content_id):
        with self._lock:
            return self._content.get(content_id)

    def put_cached_content(self, entry: ContentCacheEntry) -> None:
        with self._lock:
            # Content is immutable: first successful fetch wins
            self._content.setdefault(entry.content_id, entry)

    def get_checkpoint(self, network_id, source_ref):
        with self._lock:
            checkpoint = self._checkpoints.get((network_id, source_ref.lower()))
            return checkpoint.model_copy() if checkpoint else None

    def put_checkpoint(self, checkpoint: ScanCheckpoint) -> None:
        key = (checkpoint.network_id, checkpoint.source_ref.lower())
        with self._lock:
            existing = self._checkpoints.get(key)
            if existing is not None and existing.next_block_to_scan > checkpoint.next_block_to_scan:
                logger.warning(
                    f"⚠️  Refusing to move checkpoint {key} backwards "
                    f"({existing.next_block_to_scan} → {checkpoint.next_block_to_scan})"
                )
                return
            self._checkpoints[key] = checkpoint.model_copy()


# ============================================================
# Supabase store
# ============================================================

class SupabaseSnapshotStore(SnapshotStore):
    """
    Supabase/PostgREST store.

    Each table carries a unique constraint on the record key so that
    upsert(on_conflict=...) is a keyed, idempotent write.
    """

    def __init__(self, client):
        self.client = client

    def _upsert(self, table: str, row: Dict, on_conflict: str) -> None:
        self.client.table(table).upsert(row, on_conflict=on_conflict).execute()

    # Round snapshots ---------------------------------------------------

    def upsert_round_snapshot(self, snapshot: RoundSnapshot) -> None:
        self._upsert(ROUND_SNAPSHOTS_TABLE, snapshot.to_row(), "network_id,iteration_id,round_id")

    def get_round_snapshot(self, network_id, iteration_id, round_id):
        result = self.client.table(ROUND_SNAPSHOTS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("iteration_id", iteration_id) \
            .eq("round_id", round_id) \
            .limit(1) \
            .execute()
        return RoundSnapshot.from_row(result.data[0]) if result.data else None

    def list_round_snapshots(self, network_id):
        result = self.client.table(ROUND_SNAPSHOTS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .order("iteration_id") \
            .order("round_id") \
            .execute()
        return [RoundSnapshot.from_row(row) for row in result.data]

    # Certificates ------------------------------------------------------

    def upsert_cert(self, cert: CertRecord) -> None:
        self._upsert(CERTS_TABLE, cert.to_row(), "network_id,token_id")

    def get_cert(self, network_id, token_id):
        result = self.client.table(CERTS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("token_id", token_id) \
            .limit(1) \
            .execute()
        return CertRecord.from_row(result.data[0]) if result.data else None

    def get_highest_token_id(self, network_id):
        result = self.client.table(CERTS_TABLE) \
            .select("token_id") \
            .eq("network_id", network_id) \
            .order("token_id", desc=True) \
            .limit(1) \
            .execute()
        return int(result.data[0]["token_id"]) if result.data else 0

    def list_non_final_certs(self, network_id):
        result = self.client.table(CERTS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .in_("status", [s.value for s in NON_FINAL_CERT_STATUSES]) \
            .order("token_id") \
            .execute()
        return [CertRecord.from_row(row) for row in result.data]

    def list_cert_accounts(self, network_id):
        result = self.client.table(CERTS_TABLE) \
            .select("account") \
            .eq("network_id", network_id) \
            .execute()
        return sorted({row["account"] for row in result.data})

    # Team rosters ------------------------------------------------------

    def upsert_team_member(self, member: TeamMembership) -> None:
        self._upsert(
            TEAM_MEMBERS_TABLE,
            member.to_row(),
            "network_id,iteration_id,project_address,member_address",
        )

    def list_team_members(self, network_id, iteration_id, project_address):
        result = self.client.table(TEAM_MEMBERS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("iteration_id", iteration_id) \
            .eq("project_address", project_address) \
            .order("member_address") \
            .execute()
        return [TeamMembership.from_row(row) for row in result.data]

    def delete_team_members_not_in(self, network_id, iteration_id, project_address, roster):
        roster = list(roster)
        query = self.client.table(TEAM_MEMBERS_TABLE) \
            .delete() \
            .eq("network_id", network_id) \
            .eq("iteration_id", iteration_id) \
            .eq("project_address", project_address)
        if roster:
            query = query.not_.in_("member_address", roster)
        result = query.execute()
        return len(result.data or [])

    # Eligibility -------------------------------------------------------

    def upsert_eligibility(self, record: EligibilityRecord) -> None:
        self._upsert(ELIGIBILITY_TABLE, record.to_row(), "network_id,iteration_id,account")

    def list_eligibility(self, network_id, iteration_id):
        result = self.client.table(ELIGIBILITY_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("iteration_id", iteration_id) \
            .order("account") \
            .execute()
        return [EligibilityRecord.from_row(row) for row in result.data]

    # Profiles ----------------------------------------------------------

    def upsert_profile(self, profile: ProfileRecord) -> None:
        self._upsert(PROFILES_TABLE, profile.to_row(), "network_id,account")

    def get_profile(self, network_id, account):
        result = self.client.table(PROFILES_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("account", account.lower()) \
            .limit(1) \
            .execute()
        return ProfileRecord.from_row(result.data[0]) if result.data else None

    # Retry bookkeeping -------------------------------------------------

    def get_retry_record(self, namespace, operation, key):
        result = self.client.table(RETRY_TABLE) \
            .select("*") \
            .eq("namespace", namespace) \
            .eq("operation", operation) \
            .eq("key", key) \
            .limit(1) \
            .execute()
        return RetryRecord.from_row(result.data[0]) if result.data else None

    def put_retry_record(self, record: RetryRecord) -> None:
        self._upsert(RETRY_TABLE, record.to_row(), "namespace,operation,key")

    def delete_retry_record(self, namespace, operation, key):
        self.client.table(RETRY_TABLE) \
            .delete() \
            .eq("namespace", namespace) \
            .eq("operation", operation) \
            .eq("key", key) \
            .execute()

    def delete_retry_records_older_than(self, cutoff):
        result = self.client.table(RETRY_TABLE) \
            .delete() \
            .lt("last_attempt_at", cutoff) \
            .execute()
        return len(result.data or [])

    # Content cache -----------------------------------------------------

    def get_cached_content(self, content_id):
        result = self.client.table(CONTENT_CACHE_TABLE) \
            .select("*") \
            .eq("content_id", content_id) \
            .limit(1) \
            .execute()
        return ContentCacheEntry.from_row(result.data[0]) if result.data else None

    def put_cached_content(self, entry: ContentCacheEntry) -> None:
        # ignore_duplicates: cached content is immutable
        self.client.table(CONTENT_CACHE_TABLE) \
            .upsert(entry.to_row(), on_conflict="content_id", ignore_duplicates=True) \
            .execute()

    # Scan checkpoints --------------------------------------------------

    def get_checkpoint(self, network_id, source_ref):
        result = self.client.table(CHECKPOINTS_TABLE) \
            .select("*") \
            .eq("network_id", network_id) \
            .eq("source_ref", source_ref.lower()) \
            .limit(1) \
            .execute()
        return ScanCheckpoint.from_row(result.data[0]) if result.data else None

    def put_checkpoint(self, checkpoint: ScanCheckpoint) -> None:
        row = checkpoint.to_row()
        row["source_ref"] = checkpoint.source_ref.lower()
        self._upsert(CHECKPOINTS_TABLE, row, "network_id,source_ref")


def create_store(backend: Optional[str] = None) -> SnapshotStore:
    """
    Build the configured snapshot store.

    Raises:
        ValueError: Unknown backend (startup misconfiguration)
    """
    if backend is None:
        from pob_indexer.config import STORE_BACKEND
        backend = STORE_BACKEND

    if backend == "memory":
        logger.warning("⚠️  Using in-memory snapshot store - state is lost on restart")
        return MemorySnapshotStore()

    if backend == "supabase":
        from pob_indexer.db.client import get_write_client
        return SupabaseSnapshotStore(get_write_client())

    raise ValueError(f"Unknown store backend: {backend}")
