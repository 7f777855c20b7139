# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Partitioned reads and writes over a paginated document store.

A scan issues one count query, splits the listing into contiguous
offset/limit partitions of ``page_length`` documents, and fetches the
partitions independently on a thread pool. Partitions are a best-effort
snapshot: documents added or removed between the count and the fetches may
be missed or shifted, since the store offers no snapshot isolation.

A write saves each dataset partition with its own bulk-save call so
partitions are saved concurrently. There is no cross-partition transaction;
failures are reported per partition and nothing is rolled back.
"""

import base64
import dataclasses
import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional, Sequence
from uuid import UUID

import pandas as pd
from pydantic import BaseModel

from docbridge.catalog.nosql.base import DocumentStoreClient
from docbridge.catalog.nosql.filters import Filter, apply_filters, project
from docbridge.core.errors import StoreAccessError
from docbridge.core.models import (
    Document,
    PartitionDescriptor,
    PartitionResult,
    WriteReport,
)

logger = logging.getLogger(__name__)


def compute_partitions(total: int, page_length: int) -> list[PartitionDescriptor]:
    """
    Split ``total`` documents into contiguous partitions.

    The partitions cover [0, total) exactly once: ceil(total / page_length)
    partitions, all full except possibly the last.
    """
    if page_length <= 0:
        raise ValueError(f"page_length must be positive, got {page_length}")
    count = math.ceil(total / page_length) if total > 0 else 0
    return [
        PartitionDescriptor(
            index=i,
            offset=i * page_length,
            limit=min(page_length, total - i * page_length),
        )
        for i in range(count)
    ]


@contextmanager
def _worker_pool(executor: Optional[Executor], max_workers: int):
    """Use the caller's executor, or a private pool shut down on exit."""
    if executor is not None:
        yield executor
        return
    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="docbridge")
    try:
        yield pool
    finally:
        pool.shutdown(wait=True)


class MaterializedDataset:
    """Documents held in memory, grouped into partitions."""

    def __init__(self, partitions: Sequence[Sequence[Document]]):
        self.partitions: list[list[Document]] = [list(p) for p in partitions]

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[Document],
        page_length: Optional[int] = None,
    ) -> "MaterializedDataset":
        """Split documents into partitions of ``page_length`` (one partition if None)."""
        docs = list(documents)
        if page_length is None or not docs:
            return cls([docs] if docs else [])
        return cls([docs[i:i + page_length] for i in range(0, len(docs), page_length)])

    @property
    def num_partitions(self) -> int:
        return len(self.partitions)

    def __iter__(self) -> Iterator[Document]:
        for partition in self.partitions:
            yield from partition

    def __len__(self) -> int:
        return sum(len(p) for p in self.partitions)

    def iter_partitions(self) -> Iterator[list[Document]]:
        return iter(self.partitions)

    def materialize(self) -> "MaterializedDataset":
        return self

    def select(
        self,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> "MaterializedDataset":
        """Filter and project every partition, keeping the partitioning."""
        filters = list(filters or [])
        return MaterializedDataset([
            [project(doc, columns) for doc in partition if apply_filters(doc, filters)]
            for partition in self.partitions
        ])

    def to_pandas(self) -> pd.DataFrame:
        """Flatten to a DataFrame; nested objects become dotted columns."""
        return pd.json_normalize(list(self))


class PartitionedDataset:
    """
    Lazy, restartable scan of a store split into partitions.

    Nothing is fetched until the dataset is iterated or materialized, and
    every iteration fetches again. Partitions are fetched in parallel and
    yielded in partition order.

    Usage:
        dataset = PartitionedReader(client, page_length=200).scan()
        for doc in dataset:
            ...
        df = dataset.to_pandas()
    """

    def __init__(
        self,
        client: DocumentStoreClient,
        partitions: list[PartitionDescriptor],
        projection: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
        executor: Optional[Executor] = None,
        max_workers: int = 8,
    ):
        self.client = client
        self.partitions = partitions
        self.projection = list(projection) if projection else None
        self.filters = list(filters) if filters else None
        self._executor = executor
        self._max_workers = max_workers
        # Applied locally after each fetch, see select()
        self._local: Optional[tuple[Optional[list[str]], list[Filter]]] = None

    @property
    def num_partitions(self) -> int:
        return len(self.partitions)

    def select(
        self,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> "PartitionedDataset":
        """Lazy view that filters and projects each partition after fetching."""
        view = PartitionedDataset(
            self.client,
            self.partitions,
            projection=self.projection,
            filters=self.filters,
            executor=self._executor,
            max_workers=self._max_workers,
        )
        view._local = (list(columns) if columns is not None else None, list(filters or []))
        return view

    def fetch_partition(self, partition: PartitionDescriptor) -> list[Document]:
        """Fetch one partition, tagging failures with its range."""
        logger.debug(f"Fetching {partition}")
        try:
            if self.client.supports_pushdown:
                docs = self.client.fetch_range(
                    partition.offset, partition.limit, self.projection, self.filters
                )
            else:
                docs = self.client.fetch_range(partition.offset, partition.limit)
            if self._local is None:
                return docs
            columns, filters = self._local
            return [project(doc, columns) for doc in docs if apply_filters(doc, filters)]
        except StoreAccessError as e:
            raise StoreAccessError(
                f"Failed to fetch {partition}: {e}",
                partition=partition,
                status_code=e.status_code,
                response_body=e.response_body,
                retryable=e.retryable,
            ) from e

    def iter_partitions(self) -> Iterator[list[Document]]:
        """Fetch all partitions in parallel, yielding them in order."""
        if not self.partitions:
            return
        with _worker_pool(self._executor, self._max_workers) as pool:
            futures = [pool.submit(self.fetch_partition, p) for p in self.partitions]
            try:
                for future in futures:
                    yield future.result()
            finally:
                for future in futures:
                    future.cancel()

    def __iter__(self) -> Iterator[Document]:
        for partition in self.iter_partitions():
            yield from partition

    def materialize(self) -> MaterializedDataset:
        """Fetch every partition and keep the result in memory."""
        return MaterializedDataset(list(self.iter_partitions()))

    def to_pandas(self) -> pd.DataFrame:
        return self.materialize().to_pandas()


class PartitionedReader:
    """Turns a paginated store into a partitioned dataset."""

    def __init__(
        self,
        client: DocumentStoreClient,
        page_length: int,
        executor: Optional[Executor] = None,
        max_workers: int = 8,
    ):
        self.client = client
        self.page_length = page_length
        self._executor = executor
        self._max_workers = max_workers

    def scan(
        self,
        projection: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> PartitionedDataset:
        """
        Plan a scan over the whole store.

        Issues the single count query and computes partitions; documents are
        fetched when the returned dataset is iterated.

        Args:
            projection: Advisory column projection, passed through when the
                client supports pushdown
            filters: Advisory filters, passed through likewise

        Returns:
            PartitionedDataset
        """
        try:
            total = self.client.count_documents()
        except StoreAccessError as e:
            raise StoreAccessError(
                f"Failed to count documents in {self.client.source_url}: {e}",
                status_code=e.status_code,
                response_body=e.response_body,
                retryable=e.retryable,
            ) from e

        partitions = compute_partitions(total, self.page_length)
        logger.info(
            f"Scanning {self.client.source_url}: {total} documents "
            f"in {len(partitions)} partitions of {self.page_length}"
        )
        return PartitionedDataset(
            self.client,
            partitions,
            projection=projection,
            filters=filters,
            executor=self._executor,
            max_workers=self._max_workers,
        )


# -----------------------------------------------------------------------------
# Writes
# -----------------------------------------------------------------------------

def _to_json_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items() if not _is_null(v)}
    if isinstance(value, (list, tuple)):
        return [_to_json_value(v) for v in value]
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    if hasattr(value, "tolist"):
        # numpy scalars and arrays
        return _to_json_value(value.tolist())
    return value


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (dict, list, tuple)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        # numpy arrays are never null
        return False


def to_document(row: Any) -> Document:
    """Convert a row-like record to a JSON document. Null fields are omitted."""
    if isinstance(row, BaseModel):
        data = row.model_dump(exclude_none=True)
    elif dataclasses.is_dataclass(row) and not isinstance(row, type):
        data = dataclasses.asdict(row)
    elif isinstance(row, pd.Series):
        data = row.to_dict()
    elif isinstance(row, dict):
        data = row
    else:
        raise TypeError(f"Cannot convert {type(row).__name__} to a document")
    return _to_json_value(data)


def to_partitions(data: Any) -> list[list[Any]]:
    """Group input rows the way they are partitioned.

    Datasets keep their partitions; a DataFrame or a plain sequence of rows
    is a single partition.
    """
    if isinstance(data, (MaterializedDataset, PartitionedDataset)):
        return [list(p) for p in data.iter_partitions()]
    if isinstance(data, pd.DataFrame):
        return [data.to_dict(orient="records")] if len(data) else []
    rows = list(data)
    return [rows] if rows else []


class PartitionedWriter:
    """Saves dataset partitions to the store with one bulk save per partition."""

    def __init__(
        self,
        client: DocumentStoreClient,
        create_db_on_save: bool = False,
        executor: Optional[Executor] = None,
        max_workers: int = 8,
    ):
        self.client = client
        self.create_db_on_save = create_db_on_save
        self._executor = executor
        self._max_workers = max_workers

    def save_partition(self, index: int, rows: list[Any]) -> PartitionResult:
        """Save one partition; failures are captured in the result."""
        result = PartitionResult(partition=index, submitted=len(rows))
        try:
            documents = [to_document(row) for row in rows]
            outcomes = self.client.bulk_save(documents)
        except StoreAccessError as e:
            logger.warning(f"Partition {index} of {self.client.source_url} failed: {e}")
            # Chunks saved before the failure stay saved
            result.saved = sum(1 for o in e.results if o.ok)
            result.item_errors = [o for o in e.results if not o.ok]
            result.cause = StoreAccessError(
                f"Failed to save partition {index} ({result.saved} of "
                f"{len(rows)} documents saved): {e}",
                partition=index,
                status_code=e.status_code,
                response_body=e.response_body,
                retryable=e.retryable,
                results=e.results,
            )
            return result
        except Exception as e:
            logger.warning(
                f"Partition {index} of {self.client.source_url} failed: "
                f"{type(e).__name__}: {e}"
            )
            cause = StoreAccessError(
                f"Failed to save partition {index} ({len(rows)} documents): "
                f"{type(e).__name__}: {e}",
                partition=index,
                retryable=False,
            )
            cause.__cause__ = e
            result.cause = cause
            return result

        result.saved = sum(1 for o in outcomes if o.ok)
        result.item_errors = [o for o in outcomes if not o.ok]
        if result.item_errors:
            first = result.item_errors[0]
            logger.warning(
                f"Partition {index}: {len(result.item_errors)} of {len(rows)} "
                f"documents rejected (first: {first.id}: {first.error} {first.reason})"
            )
            result.cause = StoreAccessError(
                f"{len(result.item_errors)} of {len(rows)} documents rejected in "
                f"partition {index}: {first.error}: {first.reason}",
                partition=index,
                retryable=False,
            )
        return result

    def write(self, data: Any, database: str = "") -> WriteReport:
        """
        Write rows to the store, one bulk save per partition.

        Args:
            data: MaterializedDataset, PartitionedDataset, DataFrame or
                a sequence of row-like records (dicts, pydantic models,
                dataclasses)
            database: Name recorded in the report

        Returns:
            WriteReport with one entry per partition. Never raises for
            partition failures; check ``report.failed``.
        """
        report = WriteReport(database=database or self.client.name)
        partitions = [p for p in to_partitions(data) if p]

        if not partitions:
            logger.warning(
                f"Database {report.database}: nothing was saved because "
                f"the number of records was 0!"
            )
            return report

        if self.create_db_on_save:
            self.client.create_collection_if_absent()

        with _worker_pool(self._executor, self._max_workers) as pool:
            futures = [
                pool.submit(self.save_partition, index, rows)
                for index, rows in enumerate(partitions)
            ]
            report.partitions = [f.result() for f in futures]

        logger.info(
            f"Saved {report.saved} documents to {report.database} in "
            f"{len(report.partitions)} partitions ({len(report.failed)} failed)"
        )
        return report
