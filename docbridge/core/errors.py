# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Error types raised by the document store bridge.

Errors are not retried here. Partition-level failures carry the identity of
the partition or record batch that failed and propagate to the caller, who
decides whether to retry the whole scan or write.
"""

from typing import Any, Optional


class DocBridgeError(Exception):
    """Base class for all bridge errors."""
    pass


class ConfigurationError(DocBridgeError):
    """Raised for contradictory or missing settings, before any network call."""
    pass


class StoreAccessError(DocBridgeError):
    """Raised when a fetch or save against the store fails."""
    def __init__(
        self,
        message: str,
        partition: Any = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        retryable: bool = True,
        results: Optional[list] = None,
    ):
        super().__init__(message)
        self.partition = partition
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable
        # Per-document outcomes of a bulk save that failed part way
        self.results = results or []


class SchemaInferenceError(DocBridgeError):
    """Raised when a drain or sample produced no usable documents."""
    def __init__(self, message: str, source_url: Optional[str] = None):
        super().__init__(message)
        self.source_url = source_url


class PartialWriteError(DocBridgeError):
    """Raised when some bulk-save partitions failed while others succeeded.

    The write is not rolled back. ``report`` holds the result of every
    partition, including the ones that were saved.
    """
    def __init__(self, message: str, report: Any):
        super().__init__(message)
        self.report = report

    @property
    def failed(self) -> list:
        return self.report.failed


def classify_http_error(status_code: int) -> tuple[bool, str]:
    """
    Classify an HTTP error status returned by the store.

    Returns:
        (retryable, hint) tuple
    """
    if status_code == 401:
        return False, "Authentication failed. Check store credentials."
    if status_code == 403:
        return False, "Permission denied for this database."
    if status_code == 404:
        return False, "Database or document path not found."
    if status_code == 409:
        return False, "Document update conflict."
    if status_code == 412:
        return False, "Precondition failed (database may already exist)."
    if status_code == 429:
        return True, "Rate limited by the store."
    if status_code >= 500:
        return True, f"Server error {status_code} (possibly transient)."
    if status_code >= 400:
        return False, f"Client error {status_code}. Check the request."
    return True, f"Unexpected status {status_code}."
