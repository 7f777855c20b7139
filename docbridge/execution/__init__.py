# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Partitioned reads/writes and change-feed ingestion."""

from .changes_receiver import ChangesReceiver, ReceiverState, drain_changes
from .partitioned import (
    MaterializedDataset,
    PartitionedDataset,
    PartitionedReader,
    PartitionedWriter,
    compute_partitions,
    to_document,
)

__all__ = [
    "ChangesReceiver",
    "ReceiverState",
    "drain_changes",
    "MaterializedDataset",
    "PartitionedDataset",
    "PartitionedReader",
    "PartitionedWriter",
    "compute_partitions",
    "to_document",
]
