"""
Retry Tracker
=============

Durable exponential-backoff bookkeeping for failed fetches.

The tracker never sleeps: callers ask should_retry() and simply skip the
operation until its next_retry_at has passed.

    next_retry_at = now + min(max_delay, base_delay * 2 ** attempt_count)

attempt_count is the count after the failure being recorded, so with the
defaults (base 150 s) the first retry is 5 minutes out and the delay doubles
until it reaches the 24 hour cap.
"""

import logging
import time
from typing import Callable, Optional

from pob_indexer.db.store import SnapshotStore
from pob_indexer.models.records import RetryRecord

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 30 * 24 * 60 * 60


class RetryTracker:
    def __init__(
        self,
        store: SnapshotStore,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        if base_delay is None or max_delay is None:
            from pob_indexer.config import RETRY_BASE_DELAY_SECONDS, RETRY_MAX_DELAY_SECONDS
            base_delay = RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay
            max_delay = RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay

        self.store = store
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.clock = clock

    def delay_for(self, attempt_count: int) -> float:
        # Cap the exponent so huge attempt counts cannot overflow the float
        return min(self.max_delay, self.base_delay * (2 ** min(attempt_count, 64)))

    def get_record(self, namespace: str, operation: str, key: str) -> Optional[RetryRecord]:
        return self.store.get_retry_record(namespace, operation, key)

    def should_retry(self, namespace: str, operation: str, key: str) -> bool:
        """True if there is no failure on record or its backoff has elapsed"""
        record = self.store.get_retry_record(namespace, operation, key)
        if record is None:
            return True
        return self.clock() >= record.next_retry_at

    def record_failure(self, namespace: str, operation: str, key: str, error: str) -> RetryRecord:
        existing = self.store.get_retry_record(namespace, operation, key)
        attempt_count = (existing.attempt_count if existing else 0) + 1
        now = self.clock()
        record = RetryRecord(
            namespace=namespace,
            operation=operation,
            key=key,
            attempt_count=attempt_count,
            last_attempt_at=now,
            next_retry_at=now + self.delay_for(attempt_count),
            last_error=str(error)[:500],
        )
        self.store.put_retry_record(record)
        logger.info(
            f"⏳ {namespace}/{operation} {key} failed (attempt {attempt_count}), "
            f"next retry in {self.delay_for(attempt_count):.0f}s"
        )
        return record

    def record_success(self, namespace: str, operation: str, key: str) -> None:
        self.store.delete_retry_record(namespace, operation, key)

    def cleanup(self, max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS) -> int:
        """
        Forget failures whose last attempt is older than max_age_seconds.

        A forgotten key starts again at attempt 1 the next time it fails.

        Returns:
            Number of records removed
        """
        removed = self.store.delete_retry_records_older_than(self.clock() - max_age_seconds)
        if removed:
            logger.info(f"🧹 Removed {removed} retry record(s) older than {max_age_seconds / 86400:.0f}d")
        return removed
