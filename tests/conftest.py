# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Pytest configuration and fixtures.

Provides an in-memory document store that records every call, so tests can
assert on the exact network traffic a read, write or drain would cause.
"""

import threading
from typing import Optional, Sequence

import pytest

from docbridge.catalog.nosql.base import ChangeFeed, DocumentStoreClient
from docbridge.catalog.nosql.filters import apply_filters, project
from docbridge.core.config import StoreConfig
from docbridge.core.errors import StoreAccessError
from docbridge.core.models import SaveResult


class ScriptedFeed(ChangeFeed):
    """Change feed that returns pre-scripted pages, then empty pages."""

    def __init__(self, pages: list, fail_at: Optional[int] = None):
        self.pages = list(pages)
        self.fail_at = fail_at
        self.polls = 0
        self.closed = False
        self._cursor = "0"

    @property
    def cursor(self):
        return self._cursor

    def poll(self):
        if self.closed:
            raise StoreAccessError("feed closed")
        index = self.polls
        self.polls += 1
        if self.fail_at is not None and index == self.fail_at:
            raise StoreAccessError("connection reset", status_code=503)
        docs = self.pages[index] if index < len(self.pages) else []
        self._cursor = str(index + 1)
        return list(docs), self._cursor, 0

    def close(self):
        self.closed = True


class FakeDocumentStore(DocumentStoreClient):
    """In-memory DocumentStoreClient recording every call."""

    def __init__(
        self,
        documents: Sequence[dict] = (),
        pushdown: bool = False,
        feed_pages: Optional[list] = None,
        feed_fail_at: Optional[int] = None,
        failing_saves: Sequence[int] = (),
    ):
        super().__init__(name="fakedb")
        self.documents = [dict(d) for d in documents]
        self.pushdown = pushdown
        self.feed_pages = feed_pages or []
        self.feed_fail_at = feed_fail_at
        self.failing_saves = set(failing_saves)
        self.calls: list[tuple] = []
        self.saved: list[dict] = []
        self.feeds: list[ScriptedFeed] = []
        self.created = 0
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    @property
    def supports_pushdown(self) -> bool:
        return self.pushdown

    @property
    def source_url(self) -> str:
        return "http://fake:5984/fakedb"

    def count_documents(self) -> int:
        self._record("count_documents")
        return len(self.documents)

    def fetch_range(self, offset, limit, projection=None, filters=None):
        self._record("fetch_range", offset, limit, projection, filters)
        docs = self.documents[offset:offset + limit]
        if filters:
            docs = [d for d in docs if apply_filters(d, filters)]
        if projection:
            docs = [project(d, projection) for d in docs]
        return docs

    def fetch_sample(self, limit):
        self._record("fetch_sample", limit)
        return list(self.documents if limit < 0 else self.documents[:limit])

    def bulk_save(self, documents):
        with self._lock:
            index = len(self.calls_to("bulk_save"))
            self.calls.append(("bulk_save", len(documents)))
        if index in self.failing_saves:
            raise StoreAccessError(f"save {index} rejected", status_code=500)
        with self._lock:
            self.saved.extend(documents)
        return [SaveResult(id=d.get("_id"), ok=True, rev="1-x") for d in documents]

    def create_collection_if_absent(self):
        self._record("create_collection_if_absent")
        self.created += 1

    def open_change_feed(self, since):
        self._record("open_change_feed", since)
        feed = ScriptedFeed(self.feed_pages, fail_at=self.feed_fail_at)
        self.feeds.append(feed)
        return feed


def make_docs(count: int) -> list[dict]:
    return [{"_id": f"doc{i:04d}", "n": i, "name": f"item {i}"} for i in range(count)]


@pytest.fixture
def store_config() -> StoreConfig:
    """Config for a bulk (_all_docs) source, full scan on resolution."""
    return StoreConfig(url="http://fake:5984", database="fakedb", page_length=10)


@pytest.fixture
def feed_config() -> StoreConfig:
    """Config for a change-feed source."""
    return StoreConfig(
        url="http://fake:5984", database="fakedb", endpoint="_changes", page_length=10
    )


@pytest.fixture
def fake_store() -> FakeDocumentStore:
    return FakeDocumentStore(make_docs(25))
