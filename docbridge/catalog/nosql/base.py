# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Base classes for document store clients."""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from docbridge.core.models import Document, SaveResult

from .filters import Filter


class ChangeFeed(ABC):
    """Pollable handle on a store's change feed.

    A feed has exactly one outstanding poll at a time. ``close()`` may be
    called from another thread to release a blocked ``poll()``.
    """

    @abstractmethod
    def poll(self) -> tuple[list[Document], Optional[str], Optional[int]]:
        """Block until changes arrive or the poll interval elapses.

        Returns:
            (documents, next_cursor, pending) tuple. ``documents`` is empty
            when nothing changed during the interval.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Terminate the underlying connection immediately."""
        pass

    @property
    @abstractmethod
    def cursor(self) -> Optional[str]:
        """Cursor the next poll starts from."""
        pass


class DocumentStoreClient(ABC):
    """Abstract base class for paginated document store clients.

    Subclasses must implement:
    - count_documents(): Total documents in the listing
    - fetch_range(): One offset/limit page
    - fetch_sample(): Single bulk fetch used for schema sampling
    - bulk_save(): Save many documents in one call
    - create_collection_if_absent(): Idempotent database creation
    - open_change_feed(): Start a change-feed subscription
    """

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description

    @property
    def supports_pushdown(self) -> bool:
        """Whether fetch_range honours projection and filters."""
        return False

    @property
    def source_url(self) -> str:
        """URL identifying the store, for diagnostics."""
        return self.name

    @abstractmethod
    def count_documents(self) -> int:
        """Number of documents the paginated listing will return."""
        pass

    @abstractmethod
    def fetch_range(
        self,
        offset: int,
        limit: int,
        projection: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> list[Document]:
        """Fetch one page of the listing.

        Args:
            offset: Number of documents to skip
            limit: Maximum documents to return
            projection: Advisory column projection
            filters: Advisory filters

        Returns:
            List of documents
        """
        pass

    @abstractmethod
    def fetch_sample(self, limit: int) -> list[Document]:
        """Fetch up to ``limit`` documents in one non-parallel call.

        A negative limit means no limit. Uses the configured view or index
        when there is one.
        """
        pass

    @abstractmethod
    def bulk_save(self, documents: Sequence[Document]) -> list[SaveResult]:
        """Save documents, returning one result per document."""
        pass

    @abstractmethod
    def create_collection_if_absent(self) -> None:
        """Create the target database. No-op if it exists."""
        pass

    @abstractmethod
    def open_change_feed(self, since: str) -> ChangeFeed:
        """Open a change-feed subscription starting at ``since``."""
        pass

    def close(self) -> None:
        """Release client resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
