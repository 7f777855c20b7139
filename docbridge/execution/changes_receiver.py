# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Change-feed receiver.

Pulls pages from a store's change feed and delivers each page to a single
consumer as a ``ChangeBatch``::

    IDLE -> SUBSCRIBED -> (POLLING <-> DELIVERING) -> DRAINED | FAILED | STOPPED

The receiver is a single producer: one poll is outstanding at a time, and
the next poll is issued only after the consumer has returned from the
previous batch, so nothing is buffered ahead of a slow consumer.

In drain mode an empty page ends the subscription. This is the only
termination condition; the receiver does not count documents or time out.
Note that an idle feed and a feed that has caught up look the same here;
the store's ``pending`` count is carried on each batch but not used to
decide completion.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from docbridge.catalog.nosql.base import ChangeFeed, DocumentStoreClient
from docbridge.core.config import FeedMode
from docbridge.core.errors import StoreAccessError
from docbridge.core.models import ChangeBatch, Document

logger = logging.getLogger(__name__)

BatchConsumer = Callable[[ChangeBatch], None]
ErrorHandler = Callable[[Exception], None]


class ReceiverState(Enum):
    """Lifecycle state of a change-feed subscription."""
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    POLLING = "polling"
    DELIVERING = "delivering"
    DRAINED = "drained"  # drain mode reached an empty page
    FAILED = "failed"  # unrecoverable feed error
    STOPPED = "stopped"  # stopped by the owner

    @property
    def is_terminal(self) -> bool:
        return self in (ReceiverState.DRAINED, ReceiverState.FAILED, ReceiverState.STOPPED)


class ChangesReceiver:
    """
    Long-running subscriber to a document store's change feed.

    Usage:
        receiver = ChangesReceiver(client, since="0", mode=FeedMode.DRAIN)
        receiver.run(lambda batch: docs.extend(batch.documents))

        # Or in the background, until stopped:
        receiver = ChangesReceiver(client, since="now", mode=FeedMode.CONTINUOUS)
        receiver.start(handle_batch)
        ...
        receiver.stop()
    """

    def __init__(
        self,
        client: DocumentStoreClient,
        since: str = "0",
        mode: FeedMode = FeedMode.DRAIN,
    ):
        self.client = client
        self.since = since
        self.mode = mode
        self.state = ReceiverState.IDLE
        self.state_history: list[ReceiverState] = [ReceiverState.IDLE]
        self.error: Optional[Exception] = None
        self.batches_delivered = 0
        self.documents_delivered = 0
        self._feed: Optional[ChangeFeed] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def source_url(self) -> str:
        return self.client.source_url

    @property
    def cursor(self) -> Optional[str]:
        """Cursor of the open feed, or the starting cursor."""
        return self._feed.cursor if self._feed is not None else self.since

    def _transition(self, state: ReceiverState) -> None:
        logger.debug(f"Changes receiver {self.source_url}: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    def run(
        self,
        consumer: BatchConsumer,
        on_error: Optional[ErrorHandler] = None,
    ) -> ReceiverState:
        """
        Run the subscription in the calling thread until it terminates.

        Args:
            consumer: Called once per non-empty batch, in feed-cursor order
            on_error: Called with the error before the receiver fails

        Returns:
            Terminal state (DRAINED or STOPPED)

        Raises:
            StoreAccessError: If the feed fails; the state is then FAILED
        """
        if self.state != ReceiverState.IDLE:
            raise RuntimeError(f"Receiver already used (state: {self.state.value})")

        logger.info(f"Subscribing to {self.source_url} since {self.since} ({self.mode.value})")
        try:
            self._feed = self.client.open_change_feed(self.since)
        except StoreAccessError as e:
            self._fail(e, on_error)
            raise
        self._transition(ReceiverState.SUBSCRIBED)

        try:
            while not self._stop.is_set():
                self._transition(ReceiverState.POLLING)
                try:
                    docs, cursor, pending = self._feed.poll()
                except StoreAccessError as e:
                    if self._stop.is_set():
                        break
                    self._fail(e, on_error)
                    raise

                if self._stop.is_set():
                    break

                if not docs:
                    if self.mode == FeedMode.DRAIN:
                        logger.info(
                            f"Drained {self.source_url}: {self.documents_delivered} documents "
                            f"in {self.batches_delivered} batches"
                        )
                        self._transition(ReceiverState.DRAINED)
                        return self.state
                    continue

                self._transition(ReceiverState.DELIVERING)
                batch = ChangeBatch(
                    sequence=self.batches_delivered,
                    cursor=cursor,
                    documents=tuple(docs),
                    pending=pending,
                )
                consumer(batch)
                self.batches_delivered += 1
                self.documents_delivered += len(batch)
        finally:
            self._close_feed()

        self._transition(ReceiverState.STOPPED)
        return self.state

    def _fail(self, error: Exception, on_error: Optional[ErrorHandler]) -> None:
        logger.error(f"Change feed {self.source_url} failed: {error}")
        self.error = error
        self._transition(ReceiverState.FAILED)
        if on_error is not None:
            on_error(error)

    def _close_feed(self) -> None:
        if self._feed is not None:
            self._feed.close()

    def start(
        self,
        consumer: BatchConsumer,
        on_error: Optional[ErrorHandler] = None,
    ) -> "ChangesReceiver":
        """Run the subscription on a background thread."""
        def target():
            try:
                self.run(consumer, on_error)
            except StoreAccessError:
                # Recorded in self.error; surfaced by wait()
                logger.debug(f"Receiver thread for {self.source_url} exiting after failure")

        self._thread = threading.Thread(
            target=target, name=f"changes-{self.client.name}", daemon=True
        )
        self._thread.start()
        return self

    def stop(self) -> None:
        """Stop immediately, closing the feed so a blocked poll returns."""
        self._stop.set()
        self._close_feed()

    def wait(self, timeout: Optional[float] = None) -> ReceiverState:
        """Wait for a background subscription to end.

        Raises:
            StoreAccessError: If the feed failed
        """
        if self._thread is not None:
            self._thread.join(timeout)
        if self.state == ReceiverState.FAILED and self.error is not None:
            raise self.error
        return self.state


def drain_changes(client: DocumentStoreClient, since: str = "0") -> list[Document]:
    """
    Drain the change feed into one document list.

    Batches are concatenated in delivery order without deduplication.
    """
    documents: list[Document] = []
    receiver = ChangesReceiver(client, since=since, mode=FeedMode.DRAIN)
    receiver.run(lambda batch: documents.extend(batch.documents))
    return documents
