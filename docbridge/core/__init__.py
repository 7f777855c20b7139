# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Core models, configuration and errors."""

from .config import (
    ALL_DOCS,
    Acquisition,
    ChangeFeedDrain,
    Endpoint,
    ExplicitSchema,
    FeedMode,
    FullScan,
    SampledFetch,
    StoreConfig,
)
from .errors import (
    ConfigurationError,
    DocBridgeError,
    PartialWriteError,
    SchemaInferenceError,
    StoreAccessError,
)
from .models import (
    ChangeBatch,
    Document,
    PartitionDescriptor,
    PartitionResult,
    SaveResult,
    WriteReport,
)

__all__ = [
    # Configuration
    "ALL_DOCS",
    "Acquisition",
    "ChangeFeedDrain",
    "Endpoint",
    "ExplicitSchema",
    "FeedMode",
    "FullScan",
    "SampledFetch",
    "StoreConfig",
    # Errors
    "ConfigurationError",
    "DocBridgeError",
    "PartialWriteError",
    "SchemaInferenceError",
    "StoreAccessError",
    # Models
    "ChangeBatch",
    "Document",
    "PartitionDescriptor",
    "PartitionResult",
    "SaveResult",
    "WriteReport",
]
