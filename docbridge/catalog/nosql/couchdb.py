# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""CouchDB / Cloudant REST client.

Speaks the CouchDB HTTP API over httpx:

- ``_all_docs`` for paginated listing (skip/limit)
- ``_find`` when a selector, filters or a projection are pushed down
- views and search indexes for sampling through a secondary path
- ``_bulk_docs`` for saves
- ``_changes`` (longpoll) for the change feed

Usage:
    from docbridge.core.config import StoreConfig
    from docbridge.catalog.nosql import CouchDBClient

    config = StoreConfig(url="http://localhost:5984", database="sales")
    with CouchDBClient(config) as client:
        total = client.count_documents()
        page = client.fetch_range(0, 200)
"""

import logging
import threading
import time
from typing import Any, Optional, Sequence

import httpx

from docbridge.core.config import StoreConfig
from docbridge.core.errors import StoreAccessError, classify_http_error
from docbridge.core.models import Document, SaveResult

from .base import ChangeFeed, DocumentStoreClient
from .filters import Filter, to_selector

logger = logging.getLogger(__name__)

DESIGN_PREFIX = "_design/"


def _is_design_doc(doc_id: Optional[str]) -> bool:
    return bool(doc_id) and doc_id.startswith(DESIGN_PREFIX)


class CouchDBClient(DocumentStoreClient):
    """
    Client for one database of a CouchDB-compatible store.

    Handles:
    - Lazy httpx client with basic auth
    - Bounded retries with exponential backoff for transient failures
    - Conversion of HTTP failures into StoreAccessError
    """

    def __init__(
        self,
        config: StoreConfig,
        transport: Optional[httpx.BaseTransport] = None,
        backoff: float = 0.5,
    ):
        """
        Initialize the client.

        Args:
            config: Store configuration
            transport: Optional httpx transport (used for testing)
            backoff: Base delay in seconds between retries
        """
        super().__init__(name=config.database)
        self.config = config
        self.backoff = backoff
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()

    @property
    def supports_pushdown(self) -> bool:
        return True

    @property
    def source_url(self) -> str:
        return self.config.db_url

    @property
    def client(self) -> httpx.Client:
        """Lazy-initialize HTTP client, shared by partition workers."""
        with self._client_lock:
            if self._client is None:
                self._client = self._new_client(self.config.timeout)
            return self._client

    def _new_client(self, timeout: float) -> httpx.Client:
        auth = None
        if self.config.username:
            auth = (self.config.username, self.config.password or "")
        return httpx.Client(
            base_url=self.config.base_url,
            auth=auth,
            timeout=timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        """Close the HTTP client."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _path(self, suffix: str = "") -> str:
        path = f"/{self.config.database}"
        return f"{path}/{suffix}" if suffix else path

    def _request(
        self,
        method: str,
        path: str,
        partition: Any = None,
        client: Optional[httpx.Client] = None,
        accept: tuple[int, ...] = (),
        **kwargs,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Args:
            method: HTTP method
            path: Path relative to the store URL
            partition: Partition or batch identity attached to errors
            client: Client to use instead of the shared one
            accept: Non-2xx statuses treated as success

        Raises:
            StoreAccessError: On transport failure or an error status
        """
        http = client or self.client
        attempts = self.config.retries + 1

        for attempt in range(attempts):
            last = attempt == attempts - 1
            try:
                response = http.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                if last:
                    raise StoreAccessError(
                        f"{method} {path} failed: {e}",
                        partition=partition,
                    ) from e
                logger.debug(f"{method} {path} transport error, retrying: {e}")
                self._sleep(attempt)
                continue

            if response.is_success or response.status_code in accept:
                return response

            retryable, hint = classify_http_error(response.status_code)
            if retryable and not last:
                logger.debug(f"{method} {path} returned {response.status_code}, retrying")
                self._sleep(attempt)
                continue

            raise StoreAccessError(
                f"{method} {path} returned {response.status_code}: {hint}",
                partition=partition,
                status_code=response.status_code,
                response_body=response.text,
                retryable=retryable,
            )

        # Unreachable: the last attempt either returns or raises
        raise StoreAccessError(f"{method} {path} failed", partition=partition)

    def _sleep(self, attempt: int) -> None:
        if self.backoff > 0:
            time.sleep(self.backoff * (2 ** attempt))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def count_documents(self) -> int:
        """Rows in the ``_all_docs`` listing (design documents included)."""
        response = self._request(
            "GET", self._path("_all_docs"), params={"limit": 0}
        )
        return int(response.json().get("total_rows", 0))

    def fetch_range(
        self,
        offset: int,
        limit: int,
        projection: Optional[Sequence[str]] = None,
        filters: Optional[Sequence[Filter]] = None,
    ) -> list[Document]:
        """Fetch one page, pushing filters/projection down through ``_find``.

        With no selector, filters or projection the page comes from
        ``_all_docs``. ``_find`` pages over the matching subset in ``_id``
        order, so partitions computed from the full count still cover it
        without overlap; trailing partitions may come back empty.
        """
        partition = (offset, limit)
        selector, _ = to_selector(filters or [], self.config.selector)

        if selector is None and not projection:
            response = self._request(
                "GET",
                self._path("_all_docs"),
                partition=partition,
                params={"include_docs": "true", "skip": offset, "limit": limit},
            )
            return self._docs_from_rows(response.json().get("rows", []))

        return self._find(selector or {"_id": {"$gt": None}}, offset, limit, projection, partition)

    def _find(
        self,
        selector: dict,
        skip: int,
        limit: int,
        projection: Optional[Sequence[str]],
        partition: Any,
    ) -> list[Document]:
        body: dict[str, Any] = {"selector": selector, "skip": skip, "limit": limit}
        if projection:
            body["fields"] = list(projection)
        response = self._request(
            "POST", self._path("_find"), partition=partition, json=body
        )
        payload = response.json()
        if payload.get("warning"):
            logger.debug(f"_find warning: {payload['warning']}")
        return [
            doc for doc in payload.get("docs", [])
            if not _is_design_doc(doc.get("_id"))
        ]

    def fetch_sample(self, limit: int) -> list[Document]:
        """One bulk call through the view, search index, or listing."""
        params: dict[str, Any] = {"include_docs": "true"}
        if limit >= 0:
            params["limit"] = limit

        if self.config.view:
            response = self._request("GET", self._path(self.config.view), params=params)
            return self._docs_from_rows(response.json().get("rows", []))

        if self.config.index:
            params["q"] = "*:*"
            response = self._request("GET", self._path(self.config.index), params=params)
            return self._docs_from_rows(response.json().get("rows", []))

        if self.config.selector:
            sample_limit = limit if limit >= 0 else self.count_documents()
            return self._find(self.config.selector, 0, sample_limit, None, None)

        response = self._request("GET", self._path("_all_docs"), params=params)
        return self._docs_from_rows(response.json().get("rows", []))

    @staticmethod
    def _docs_from_rows(rows: list[dict]) -> list[Document]:
        """Documents from listing, view or search rows; design docs dropped."""
        docs = []
        for row in rows:
            doc = row.get("doc")
            if doc is None:
                value = row.get("value")
                if isinstance(value, dict) and "rev" not in value:
                    doc = value
                elif "fields" in row:
                    doc = {"_id": row.get("id"), **row["fields"]}
                else:
                    doc = {"_id": row.get("id"), "key": row.get("key"), "value": value}
            if _is_design_doc(doc.get("_id")) or _is_design_doc(row.get("id")):
                continue
            docs.append(doc)
        return docs

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def bulk_save(self, documents: Sequence[Document]) -> list[SaveResult]:
        """Save documents in ``bulk_size`` chunks through ``_bulk_docs``."""
        results: list[SaveResult] = []
        size = self.config.bulk_size
        for start in range(0, len(documents), size):
            chunk = list(documents[start:start + size])
            try:
                response = self._request(
                    "POST",
                    self._path("_bulk_docs"),
                    partition=(start, len(chunk)),
                    json={"docs": chunk},
                )
            except StoreAccessError as e:
                # Earlier chunks are already committed
                e.results = results
                raise
            for item in response.json():
                if "error" in item:
                    results.append(SaveResult(
                        id=item.get("id"),
                        ok=False,
                        error=item.get("error"),
                        reason=item.get("reason"),
                    ))
                else:
                    results.append(SaveResult(id=item.get("id"), ok=True, rev=item.get("rev")))
        return results

    def create_collection_if_absent(self) -> None:
        """Create the database; 412 means it already exists."""
        response = self._request("PUT", self._path(), accept=(412,))
        if response.status_code == 412:
            logger.debug(f"Database {self.config.database} already exists")
        else:
            logger.info(f"Created database {self.config.database}")

    # -------------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------------

    def open_change_feed(self, since: str) -> "CouchDBChangeFeed":
        return CouchDBChangeFeed(self, since)


class CouchDBChangeFeed(ChangeFeed):
    """Longpoll ``_changes`` subscription.

    Owns a dedicated HTTP connection so that ``close()`` releases a poll
    that is blocked waiting for changes.
    """

    def __init__(self, store: CouchDBClient, since: str):
        self._store = store
        self._cursor: Optional[str] = since
        self._closed = False
        poll_ms = int(store.config.batch_interval * 1000)
        self._params = {
            "feed": "longpoll",
            "include_docs": "true",
            "timeout": poll_ms,
            "limit": store.config.bulk_size,
        }
        self._http = store._new_client(store.config.timeout + store.config.batch_interval)

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def closed(self) -> bool:
        return self._closed

    def poll(self) -> tuple[list[Document], Optional[str], Optional[int]]:
        """Poll until a page yields documents or the feed returns no changes.

        Pages holding only deletions or design documents are skipped over,
        so an empty result always means the feed returned no changes.
        """
        while True:
            results, pending = self._poll_page()
            docs = []
            for change in results:
                if change.get("deleted") or _is_design_doc(change.get("id")):
                    continue
                doc = change.get("doc")
                if doc is not None:
                    docs.append(doc)
            if docs or not results:
                return docs, self._cursor, pending

    def _poll_page(self) -> tuple[list[dict], Optional[int]]:
        if self._closed:
            raise StoreAccessError("Change feed is closed", partition=self._cursor)

        params = dict(self._params, since=self._cursor)
        selector = self._store.config.selector
        request: dict[str, Any] = {"params": params}
        method = "GET"
        if selector:
            params["filter"] = "_selector"
            request["json"] = {"selector": selector}
            method = "POST"

        try:
            response = self._store._request(
                method, self._store._path("_changes"),
                partition=self._cursor, client=self._http, **request,
            )
        except RuntimeError as e:
            # httpx refuses to send on a client closed by another thread
            if self._closed:
                raise StoreAccessError("Change feed is closed", partition=self._cursor) from e
            raise

        payload = response.json()
        last_seq = payload.get("last_seq")
        if last_seq is not None:
            self._cursor = str(last_seq)
        return payload.get("results", []), payload.get("pending")

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._http.close()
