# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Schema resolution and the relation bound to a document store.

``resolve_schema`` turns a configuration into exactly one acquisition
strategy and runs it once:

- ExplicitSchema: the caller's schema, nothing fetched
- FullScan: parallel paginated scan; the documents become the dataset
- SampledFetch: one bulk fetch of N documents (or view/index rows); the
  sample is used for inference only
- ChangeFeedDrain: drain the change feed; the union becomes the dataset

A ``Relation`` owns the resolved schema and the retained dataset, if any.
It is built once and not modified afterwards; ``insert`` writes to the
store but leaves the relation unchanged.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence, Union

from docbridge.catalog.nosql.base import DocumentStoreClient
from docbridge.catalog.nosql.couchdb import CouchDBClient
from docbridge.catalog.nosql.filters import Filter
from docbridge.catalog.nosql.schema import Schema, infer_schema
from docbridge.core.config import (
    Acquisition,
    ChangeFeedDrain,
    ExplicitSchema,
    FullScan,
    SampledFetch,
    StoreConfig,
)
from docbridge.core.errors import PartialWriteError, SchemaInferenceError
from docbridge.core.models import Document, WriteReport
from docbridge.execution.changes_receiver import drain_changes
from docbridge.execution.partitioned import (
    MaterializedDataset,
    PartitionedDataset,
    PartitionedReader,
    PartitionedWriter,
    to_document,
    to_partitions,
)

logger = logging.getLogger(__name__)


class SaveMode(str, Enum):
    """How a creatable relation treats existing data."""
    APPEND = "append"
    OVERWRITE = "overwrite"


@dataclass(frozen=True)
class ResolvedSchema:
    """Schema plus the documents it was inferred from, when they are reusable."""
    schema: Schema
    dataset: Optional[MaterializedDataset]
    strategy: Acquisition


def resolve_schema(
    config: StoreConfig,
    client: DocumentStoreClient,
    explicit_schema: Optional[Schema] = None,
) -> ResolvedSchema:
    """
    Produce the relation's schema with one acquisition pass.

    Args:
        config: Store configuration
        client: Store client; not touched for an explicit schema
        explicit_schema: Schema supplied by the caller

    Returns:
        ResolvedSchema

    Raises:
        SchemaInferenceError: If draining the change feed yields no documents
        StoreAccessError: If a fetch fails
    """
    strategy = config.acquisition(explicit_schema)

    if isinstance(strategy, ExplicitSchema):
        return ResolvedSchema(strategy.schema, None, strategy)

    if isinstance(strategy, FullScan):
        reader = PartitionedReader(
            client, strategy.page_length, max_workers=config.max_workers
        )
        dataset = reader.scan().materialize()
        logger.info(
            f"Inferred schema from full scan of {client.source_url} "
            f"({len(dataset)} documents)"
        )
        return ResolvedSchema(infer_schema(dataset), dataset, strategy)

    if isinstance(strategy, SampledFetch):
        sample = client.fetch_sample(strategy.sample_size)
        source = strategy.view or strategy.index or "_all_docs"
        logger.info(
            f"Inferred schema from {len(sample)} sampled documents of "
            f"{client.source_url} ({source})"
        )
        return ResolvedSchema(infer_schema(sample), None, strategy)

    if isinstance(strategy, ChangeFeedDrain):
        logger.info(f"Loading data from {strategy.receiver_url}")
        documents = drain_changes(client, since=strategy.since)
        if not documents:
            raise SchemaInferenceError(
                f"No documents received from change feed {strategy.receiver_url}. "
                f"Check the database name, credentials and selector.",
                source_url=strategy.receiver_url,
            )
        dataset = MaterializedDataset.from_documents(documents, config.page_length)
        return ResolvedSchema(infer_schema(documents), dataset, strategy)

    raise TypeError(f"Unknown acquisition strategy: {strategy!r}")


class Relation:
    """
    A document store database exposed as a table.

    Usage:
        config = StoreConfig.from_yaml("store.yaml")
        with Relation.create(config) as relation:
            relation.schema
            for row in relation.scan(["name", "total"], [GreaterThan("total", 10)]):
                ...
            relation.insert(rows)

    A client passed in stays owned by the caller. A client the relation
    builds itself is closed by ``close()`` or on leaving a ``with`` block.
    """

    def __init__(
        self,
        config: StoreConfig,
        schema: Schema,
        client: DocumentStoreClient,
        dataset: Optional[MaterializedDataset] = None,
        owns_client: bool = False,
    ):
        self._config = config
        self._schema = schema
        self._client = client
        self._dataset = dataset
        self._owns_client = owns_client

    @classmethod
    def create(
        cls,
        config: StoreConfig,
        explicit_schema: Optional[Schema] = None,
        client: Optional[DocumentStoreClient] = None,
    ) -> "Relation":
        """Resolve the schema once and bind it to the store."""
        owns_client = client is None
        client = client or CouchDBClient(config)
        try:
            resolved = resolve_schema(config, client, explicit_schema)
        except Exception:
            if owns_client:
                client.close()
            raise
        return cls(config, resolved.schema, client, resolved.dataset, owns_client)

    def close(self) -> None:
        """Close the store client if this relation created it."""
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Relation":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def client(self) -> DocumentStoreClient:
        return self._client

    @property
    def dataset(self) -> Optional[MaterializedDataset]:
        """Documents retained from schema resolution, if any."""
        return self._dataset

    def scan(
        self,
        columns: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> Union[MaterializedDataset, PartitionedDataset]:
        """
        Read the relation.

        Reuses the documents retained at creation when there are any;
        otherwise plans a fresh lazy partitioned scan, pushing the
        projection and filters down where the store supports it. Filters
        and projection are always re-applied locally.

        Args:
            columns: Columns to return, in order. None returns every field
            filters: Filters every returned row satisfies

        Returns:
            Dataset with the same partitioning as the source
        """
        filters = list(filters or [])

        if self._dataset is not None:
            return self._dataset.select(columns, filters)

        # Filter columns must be fetched even when not projected
        pushed_columns = None
        if columns is not None:
            pushed_columns = list(columns) + [
                a for a in _filter_attributes(filters) if a not in columns
            ]
        reader = PartitionedReader(
            self._client, self._config.page_length, max_workers=self._config.max_workers
        )
        return reader.scan(pushed_columns or None, filters or None).select(columns, filters)

    def insert(self, data: Any, overwrite: bool = False) -> WriteReport:
        """
        Write rows to the store.

        Documents are saved with one bulk call per input partition. The
        store has no truncate, so ``overwrite`` upserts by ``_id`` like an
        append. Writing zero rows is not an error.

        Raises:
            PartialWriteError: If any partition failed; saved partitions
                are not rolled back
        """
        if overwrite:
            logger.info(
                f"Overwrite requested for {self._config.database}; documents are "
                f"upserted by _id"
            )
        writer = PartitionedWriter(
            self._client,
            create_db_on_save=self._config.create_db_on_save,
            max_workers=self._config.max_workers,
        )
        report = writer.write(data, database=self._config.database)
        if report.failed:
            failed = ", ".join(str(p.partition) for p in report.failed)
            raise PartialWriteError(
                f"Database {self._config.database}: {len(report.failed)} of "
                f"{len(report.partitions)} partitions failed ({failed}); "
                f"{report.saved} documents saved",
                report=report,
            )
        return report


def _filter_attributes(filters: Sequence[Filter]) -> list[str]:
    """Attributes referenced by filters, including nested ones."""
    attributes: list[str] = []
    pending = list(filters)
    while pending:
        f = pending.pop(0)
        attribute = getattr(f, "attribute", None)
        if attribute and attribute not in attributes:
            attributes.append(attribute)
        for name in ("left", "right", "child"):
            child = getattr(f, name, None)
            if child is not None:
                pending.append(child)
    return attributes


def create_relation(
    config: StoreConfig,
    mode: SaveMode,
    data: Any,
    client: Optional[DocumentStoreClient] = None,
) -> Relation:
    """
    Create a relation from rows and save them.

    The schema is inferred from the rows themselves, so the store is not
    sampled. The input is read once; a lazy dataset is not fetched twice.
    """
    mode = SaveMode(mode)
    rows = MaterializedDataset(to_partitions(data))
    documents: list[Document] = [to_document(row) for row in rows]
    relation = Relation.create(config, infer_schema(documents), client)
    relation.insert(rows, overwrite=mode == SaveMode.OVERWRITE)
    return relation
