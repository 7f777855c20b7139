# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for the change-feed receiver state machine."""

import threading
import time

import pytest

from conftest import FakeDocumentStore, ScriptedFeed
from docbridge.core.config import FeedMode
from docbridge.core.errors import StoreAccessError
from docbridge.execution.changes_receiver import (
    ChangesReceiver,
    ReceiverState,
    drain_changes,
)

B1 = [{"_id": "a", "v": 1}, {"_id": "b", "v": 2}]
B2 = [{"_id": "c", "v": 3}]


class TestDrainMode:
    """Tests for finite drain subscriptions."""

    def test_transitions_and_union(self):
        """Batches [B1, B2, empty] drain to B1 + B2 in delivery order."""
        store = FakeDocumentStore(feed_pages=[B1, B2, []])
        receiver = ChangesReceiver(store, since="0", mode=FeedMode.DRAIN)
        batches = []

        state = receiver.run(batches.append)

        assert state == ReceiverState.DRAINED
        assert receiver.state_history == [
            ReceiverState.IDLE,
            ReceiverState.SUBSCRIBED,
            ReceiverState.POLLING,
            ReceiverState.DELIVERING,
            ReceiverState.POLLING,
            ReceiverState.DELIVERING,
            ReceiverState.POLLING,
            ReceiverState.DRAINED,
        ]
        assert [d for b in batches for d in b.documents] == B1 + B2
        assert [b.sequence for b in batches] == [0, 1]
        assert [b.cursor for b in batches] == ["1", "2"]

    def test_feed_closed_after_drain(self):
        store = FakeDocumentStore(feed_pages=[B1, []])
        ChangesReceiver(store).run(lambda batch: None)
        assert store.feeds[0].closed

    def test_subscribes_at_configured_cursor(self):
        store = FakeDocumentStore(feed_pages=[])
        ChangesReceiver(store, since="17-abc").run(lambda batch: None)
        assert store.calls_to("open_change_feed") == [("open_change_feed", "17-abc")]

    def test_no_deduplication_across_batches(self):
        """The same _id in two batches is delivered twice."""
        store = FakeDocumentStore(feed_pages=[[{"_id": "a", "v": 1}], [{"_id": "a", "v": 2}], []])
        assert drain_changes(store) == [{"_id": "a", "v": 1}, {"_id": "a", "v": 2}]

    def test_immediately_empty_feed(self):
        store = FakeDocumentStore(feed_pages=[])
        receiver = ChangesReceiver(store)
        assert receiver.run(lambda batch: None) == ReceiverState.DRAINED
        assert receiver.batches_delivered == 0

    def test_idle_page_mid_history_ends_drain(self):
        """An empty page ends the drain even if the store has more to send.

        The store cannot tell an idle feed from a caught-up one through this
        contract; an explicit end-of-history marker would be needed.
        """
        store = FakeDocumentStore(feed_pages=[B1, [], B2])
        assert drain_changes(store) == B1

    def test_receiver_cannot_be_reused(self):
        store = FakeDocumentStore(feed_pages=[])
        receiver = ChangesReceiver(store)
        receiver.run(lambda batch: None)
        with pytest.raises(RuntimeError, match="already used"):
            receiver.run(lambda batch: None)


class TestBackPressure:
    """Tests that polling waits for the consumer."""

    def test_next_poll_after_delivery(self):
        store = FakeDocumentStore(feed_pages=[B1, B2, []])
        polls_seen = []

        def consumer(batch):
            polls_seen.append(store.feeds[0].polls)

        ChangesReceiver(store).run(consumer)
        # One poll per delivered batch: nothing was fetched ahead
        assert polls_seen == [1, 2]


class TestFailure:
    """Tests for unrecoverable feed errors."""

    def test_poll_error_fails_and_notifies(self):
        store = FakeDocumentStore(feed_pages=[B1, B2, []], feed_fail_at=1)
        receiver = ChangesReceiver(store)
        batches, errors = [], []

        with pytest.raises(StoreAccessError):
            receiver.run(batches.append, on_error=errors.append)

        assert receiver.state == ReceiverState.FAILED
        assert len(batches) == 1
        assert len(errors) == 1
        assert receiver.error is errors[0]
        assert store.feeds[0].closed

    def test_background_failure_surfaces_on_wait(self):
        store = FakeDocumentStore(feed_pages=[], feed_fail_at=0)
        receiver = ChangesReceiver(store).start(lambda batch: None)
        with pytest.raises(StoreAccessError):
            receiver.wait(timeout=5)
        assert receiver.state == ReceiverState.FAILED


class BlockingFeed(ScriptedFeed):
    """Feed whose polls block until the feed is closed."""

    def __init__(self):
        super().__init__([])
        self._released = threading.Event()

    def poll(self):
        self.polls += 1
        self._released.wait(timeout=10)
        raise StoreAccessError("connection closed")

    def close(self):
        self.closed = True
        self._released.set()


class TestContinuousMode:
    """Tests for continuous subscriptions and ungraceful stop."""

    def test_empty_pages_do_not_end_continuous(self):
        store = FakeDocumentStore(feed_pages=[B1, [], [], B2])
        received = []
        done = threading.Event()

        def consumer(batch):
            received.extend(batch.documents)
            if len(received) == 3:
                done.set()

        receiver = ChangesReceiver(store, since="now", mode=FeedMode.CONTINUOUS)
        receiver.start(consumer)
        assert done.wait(timeout=5)
        receiver.stop()
        assert receiver.wait(timeout=5) == ReceiverState.STOPPED
        assert received == B1 + B2

    def test_stop_releases_blocked_poll(self):
        feed = BlockingFeed()
        store = FakeDocumentStore()
        store.open_change_feed = lambda since: feed
        receiver = ChangesReceiver(store, mode=FeedMode.CONTINUOUS).start(lambda batch: None)

        deadline = time.monotonic() + 5
        while feed.polls == 0 and time.monotonic() < deadline:
            time.sleep(0.01)

        started = time.monotonic()
        receiver.stop()
        assert receiver.wait(timeout=5) == ReceiverState.STOPPED
        assert time.monotonic() - started < 5
        assert feed.closed
        assert receiver.error is None
