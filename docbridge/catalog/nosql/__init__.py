# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Document store clients, schema inference and filter translation.

Each client provides:
- Paginated reads (count + offset/limit pages)
- Single-call sampling, optionally through a view or search index
- Bulk saves with per-document results
- A pollable change feed

Supported stores:
- CouchDB and IBM Cloudant (REST API over httpx)

Usage:
    from docbridge.catalog.nosql import CouchDBClient, infer_schema

    client = CouchDBClient(config)
    schema = infer_schema(client.fetch_sample(100))
"""

from .base import ChangeFeed, DocumentStoreClient
from .couchdb import CouchDBChangeFeed, CouchDBClient
from .filters import (
    And,
    EqualTo,
    Filter,
    GreaterThan,
    GreaterThanOrEqual,
    In,
    IsNotNull,
    IsNull,
    LessThan,
    LessThanOrEqual,
    Not,
    Or,
    StringStartsWith,
    apply_filters,
    project,
    to_selector,
)
from .schema import DataType, Field, Schema, infer_schema, merge_types

__all__ = [
    # Base classes
    "ChangeFeed",
    "DocumentStoreClient",
    # Clients
    "CouchDBClient",
    "CouchDBChangeFeed",
    # Schema
    "DataType",
    "Field",
    "Schema",
    "infer_schema",
    "merge_types",
    # Filters
    "Filter",
    "And",
    "EqualTo",
    "GreaterThan",
    "GreaterThanOrEqual",
    "In",
    "IsNotNull",
    "IsNull",
    "LessThan",
    "LessThanOrEqual",
    "Not",
    "Or",
    "StringStartsWith",
    "apply_filters",
    "project",
    "to_selector",
]
