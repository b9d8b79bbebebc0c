"""
Content Cache
=============

Read-through cache for immutable content-addressed blobs.

Flow for get_or_fetch(cid):
1. Cached → parse and return (no network I/O)
2. Not cached and still in backoff → None (no network I/O)
3. Not cached and allowed → fetch; success caches + clears the retry
   record, failure records it and returns None

Never raises: callers in polling loops treat None as "not available yet".
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

from pob_indexer.db.store import SnapshotStore
from pob_indexer.models.records import ContentCacheEntry
from pob_indexer.utils.ipfs_client import IPFSClient, IPFSFetchError
from pob_indexer.utils.retry_tracker import RetryTracker

logger = logging.getLogger(__name__)

RETRY_NAMESPACE = "ipfs"
RETRY_OPERATION = "fetch"


class ContentCache:
    def __init__(
        self,
        store: SnapshotStore,
        ipfs: IPFSClient,
        retry_tracker: RetryTracker,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ipfs = ipfs
        self.retry_tracker = retry_tracker
        self.clock = clock

    @staticmethod
    def _parse(content_id: str, raw: str) -> Optional[Any]:
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.error(f"❌ Cached content {content_id} is not valid JSON: {e}")
            return None

    async def get_or_fetch(self, content_id: Optional[str]) -> Optional[Any]:
        if not content_id:
            return None

        try:
            cached = await asyncio.to_thread(self.store.get_cached_content, content_id)
            if cached is not None:
                return self._parse(content_id, cached.raw_content)

            allowed = await asyncio.to_thread(
                self.retry_tracker.should_retry, RETRY_NAMESPACE, RETRY_OPERATION, content_id
            )
            if not allowed:
                return None

            try:
                raw = await self.ipfs.fetch_raw(content_id)
            except IPFSFetchError as e:
                await asyncio.to_thread(
                    self.retry_tracker.record_failure, RETRY_NAMESPACE, RETRY_OPERATION, content_id, str(e)
                )
                return None

            parsed = self._parse(content_id, raw)
            if parsed is None:
                await asyncio.to_thread(
                    self.retry_tracker.record_failure,
                    RETRY_NAMESPACE,
                    RETRY_OPERATION,
                    content_id,
                    "content is not valid JSON",
                )
                return None

            entry = ContentCacheEntry(
                content_id=content_id,
                raw_content=raw,
                fetched_at=int(self.clock() * 1000),
            )
            await asyncio.to_thread(self.store.put_cached_content, entry)
            await asyncio.to_thread(
                self.retry_tracker.record_success, RETRY_NAMESPACE, RETRY_OPERATION, content_id
            )
            logger.debug(f"📦 Cached content {content_id}")
            return parsed

        except Exception as e:
            # Store trouble must not break the caller's tick
            logger.error(f"❌ Content cache failure for {content_id}: {e}")
            return None
