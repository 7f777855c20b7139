# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""DocBridge - document stores as partitioned tables.

Discovers a tabular schema from schemaless JSON documents, reads a
CouchDB-compatible store as a partitioned dataset (bulk listing or change
feed), and writes rows back as JSON documents.

Submodules:
- core: Configuration, errors and shared models
- catalog: Store clients, schema inference and filter translation
- execution: Partitioned reads/writes and the change-feed receiver
- relation: Schema resolution and the Relation facade

Main classes:
- StoreConfig: Configuration loading from YAML or data source options
- Relation: Schema plus scan/insert over one database
- CouchDBClient: REST client for CouchDB and Cloudant
"""

from docbridge.catalog.nosql import (
    CouchDBClient,
    DocumentStoreClient,
    Field,
    Schema,
    infer_schema,
)
from docbridge.core.config import ALL_DOCS, FeedMode, StoreConfig
from docbridge.core.errors import (
    ConfigurationError,
    DocBridgeError,
    PartialWriteError,
    SchemaInferenceError,
    StoreAccessError,
)
from docbridge.execution import (
    ChangesReceiver,
    MaterializedDataset,
    PartitionedDataset,
    ReceiverState,
)
from docbridge.relation import (
    Relation,
    ResolvedSchema,
    SaveMode,
    create_relation,
    resolve_schema,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "ALL_DOCS",
    "FeedMode",
    "StoreConfig",
    # Errors
    "ConfigurationError",
    "DocBridgeError",
    "PartialWriteError",
    "SchemaInferenceError",
    "StoreAccessError",
    # Store access
    "CouchDBClient",
    "DocumentStoreClient",
    "Field",
    "Schema",
    "infer_schema",
    # Execution
    "ChangesReceiver",
    "MaterializedDataset",
    "PartitionedDataset",
    "ReceiverState",
    # Relation
    "Relation",
    "ResolvedSchema",
    "SaveMode",
    "create_relation",
    "resolve_schema",
]
