# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Core data structures shared by readers, writers and the change-feed receiver."""

from dataclasses import dataclass, field
from typing import Any, Optional

# A schemaless JSON object as stored in, or written to, the document store.
Document = dict[str, Any]


@dataclass(frozen=True)
class PartitionDescriptor:
    """A contiguous offset/limit slice of the store's paginated listing."""
    index: int
    offset: int
    limit: int

    @property
    def end(self) -> int:
        """Exclusive end offset."""
        return self.offset + self.limit

    def __str__(self) -> str:
        return f"partition {self.index} [{self.offset}:{self.end})"


@dataclass(frozen=True)
class ChangeBatch:
    """One poll cycle's worth of documents observed on the change feed.

    An empty batch is the end-of-feed signal for drain mode.
    """
    sequence: int  # delivery order, starting at 0
    cursor: Optional[str]  # feed cursor after this batch
    documents: tuple[Document, ...] = ()
    pending: Optional[int] = None  # changes the store reports as still queued

    @property
    def is_empty(self) -> bool:
        return len(self.documents) == 0

    def __len__(self) -> int:
        return len(self.documents)


@dataclass
class SaveResult:
    """Per-document outcome of a bulk save."""
    id: Optional[str]
    ok: bool
    rev: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class PartitionResult:
    """Outcome of saving one dataset partition."""
    partition: int
    submitted: int
    saved: int = 0
    item_errors: list[SaveResult] = field(default_factory=list)
    cause: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.cause is None


@dataclass
class WriteReport:
    """Partition-level report of a write. Failed partitions are not rolled back."""
    database: str
    partitions: list[PartitionResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[PartitionResult]:
        return [p for p in self.partitions if p.ok]

    @property
    def failed(self) -> list[PartitionResult]:
        return [p for p in self.partitions if not p.ok]

    @property
    def saved(self) -> int:
        return sum(p.saved for p in self.partitions)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "database": self.database,
            "saved": self.saved,
            "partitions": [
                {
                    "partition": p.partition,
                    "submitted": p.submitted,
                    "saved": p.saved,
                    "rejected": len(p.item_errors),
                    "error": str(p.cause) if p.cause else None,
                }
                for p in self.partitions
            ],
        }
