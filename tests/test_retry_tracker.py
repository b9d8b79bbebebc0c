from pob_indexer.utils.retry_tracker import RetryTracker


def test_no_record_means_retry_allowed(retry_tracker):
    assert retry_tracker.should_retry("ipfs", "fetch", "cid-1") is True
    assert retry_tracker.get_record("ipfs", "fetch", "cid-1") is None


def test_first_failure_backs_off_five_minutes(retry_tracker, clock):
    record = retry_tracker.record_failure("ipfs", "fetch", "cid-1", "timeout")

    assert record.attempt_count == 1
    assert record.next_retry_at == clock.now + 300
    assert record.last_error == "timeout"
    assert retry_tracker.should_retry("ipfs", "fetch", "cid-1") is False

    clock.advance(299)
    assert retry_tracker.should_retry("ipfs", "fetch", "cid-1") is False
    clock.advance(1)
    assert retry_tracker.should_retry("ipfs", "fetch", "cid-1") is True


def test_backoff_strictly_increases_until_cap(store, clock):
    tracker = RetryTracker(store, base_delay=150, max_delay=3600, clock=clock)

    delays = []
    for _ in range(8):
        record = tracker.record_failure("ipfs", "fetch", "cid-1", "boom")
        delays.append(record.next_retry_at - record.last_attempt_at)

    assert delays[:4] == [300, 600, 1200, 2400]
    assert delays[4:] == [3600] * 4

    # next_retry_at is monotonic even while capped, since time keeps moving
    previous = tracker.get_record("ipfs", "fetch", "cid-1").next_retry_at
    clock.advance(10)
    assert tracker.record_failure("ipfs", "fetch", "cid-1", "boom").next_retry_at > previous


def test_success_clears_record(retry_tracker):
    retry_tracker.record_failure("ipfs", "fetch", "cid-1", "boom")
    retry_tracker.record_success("ipfs", "fetch", "cid-1")

    assert retry_tracker.get_record("ipfs", "fetch", "cid-1") is None
    assert retry_tracker.should_retry("ipfs", "fetch", "cid-1") is True


def test_keys_are_independent(retry_tracker):
    retry_tracker.record_failure("ipfs", "fetch", "cid-1", "boom")

    assert retry_tracker.should_retry("ipfs", "fetch", "cid-2") is True
    assert retry_tracker.should_retry("other", "fetch", "cid-1") is True


def test_huge_attempt_count_does_not_overflow(store, clock):
    tracker = RetryTracker(store, base_delay=150, max_delay=86400, clock=clock)
    assert tracker.delay_for(5000) == 86400


def test_cleanup_drops_records_idle_for_thirty_days(retry_tracker, clock):
    retry_tracker.record_failure("ipfs", "fetch", "cid-old", "boom")
    clock.advance(29 * 86400)
    retry_tracker.record_failure("ipfs", "fetch", "cid-recent", "boom")
    clock.advance(2 * 86400)

    assert retry_tracker.cleanup() == 1
    assert retry_tracker.get_record("ipfs", "fetch", "cid-old") is None
    assert retry_tracker.get_record("ipfs", "fetch", "cid-recent") is not None


def test_cleanup_resets_backoff_for_forgotten_keys(retry_tracker, clock):
    for _ in range(3):
        retry_tracker.record_failure("ipfs", "fetch", "cid-1", "boom")
    clock.advance(3600)

    assert retry_tracker.cleanup(max_age_seconds=60) == 1
    assert retry_tracker.record_failure("ipfs", "fetch", "cid-1", "boom").attempt_count == 1
