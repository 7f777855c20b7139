# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Store configuration with Pydantic validation and env var substitution.

A ``StoreConfig`` describes one database in a CouchDB-compatible document
store and how it is read: bulk listing or change feed, schema sample size,
partition sizing, and write behaviour. ``acquisition()`` resolves a config
to exactly one schema acquisition strategy before anything is fetched.
"""

import json
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import BaseModel, ValidationError, model_validator

from docbridge.core.errors import ConfigurationError

# Sample size meaning "use the whole store", as opposed to any numeric cap.
ALL_DOCS = -1

DEFAULT_PAGE_LENGTH = 200
DEFAULT_BULK_SIZE = 200
DEFAULT_BATCH_INTERVAL = 8.0


class Endpoint(str, Enum):
    """Where documents are listed from."""
    ALL_DOCS = "_all_docs"
    CHANGES = "_changes"


class FeedMode(str, Enum):
    """How a change-feed subscription ends."""
    DRAIN = "drain"  # stop at the first empty batch
    CONTINUOUS = "continuous"  # tail until stopped; receivers only


# -----------------------------------------------------------------------------
# Schema acquisition strategies
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class ExplicitSchema:
    """Caller supplied the schema; nothing is fetched."""
    schema: Any


@dataclass(frozen=True)
class FullScan:
    """Parallel paginated scan of the whole store; result is kept as the dataset."""
    page_length: int


@dataclass(frozen=True)
class SampledFetch:
    """One non-parallel bulk fetch of ``sample_size`` documents (or view/index rows)."""
    sample_size: int
    view: Optional[str] = None
    index: Optional[str] = None


@dataclass(frozen=True)
class ChangeFeedDrain:
    """Drain the change feed from ``since``; the union is kept as the dataset."""
    since: str
    receiver_url: str
    batch_interval: float


Acquisition = Union[ExplicitSchema, FullScan, SampledFetch, ChangeFeedDrain]


class StoreConfig(BaseModel):
    """Document store connection and read/write configuration."""
    model_config = {"extra": "ignore", "frozen": True}

    database: str
    url: Optional[str] = None  # e.g. https://account.cloudant.com
    host: Optional[str] = None  # alternative to url
    protocol: str = "https"
    username: Optional[str] = None
    password: Optional[str] = None

    endpoint: Endpoint = Endpoint.ALL_DOCS
    view: Optional[str] = None  # _design/<ddoc>/_view/<name>
    index: Optional[str] = None  # _design/<ddoc>/_search/<name>
    selector: Optional[dict[str, Any]] = None  # Mango selector

    schema_sample_size: int = ALL_DOCS
    create_db_on_save: bool = False
    bulk_size: int = DEFAULT_BULK_SIZE
    page_length: int = DEFAULT_PAGE_LENGTH

    feed_mode: FeedMode = FeedMode.DRAIN
    batch_interval: float = DEFAULT_BATCH_INTERVAL
    since: Optional[str] = None

    timeout: float = 60.0
    max_workers: int = 8
    retries: int = 3

    @model_validator(mode="after")
    def _check_consistency(self) -> "StoreConfig":
        if not self.database:
            raise ConfigurationError("A database name is required")
        if not self.url and not self.host:
            raise ConfigurationError(
                f"Database '{self.database}': either url or host must be provided"
            )
        if self.schema_sample_size < 0 and self.schema_sample_size != ALL_DOCS:
            raise ConfigurationError(
                f"schema_sample_size must be >= 0 or {ALL_DOCS} (all documents), "
                f"got {self.schema_sample_size}"
            )
        if self.page_length <= 0:
            raise ConfigurationError(f"page_length must be positive, got {self.page_length}")
        if self.bulk_size <= 0:
            raise ConfigurationError(f"bulk_size must be positive, got {self.bulk_size}")
        if self.batch_interval <= 0:
            raise ConfigurationError(
                f"batch_interval must be positive, got {self.batch_interval}"
            )
        if self.max_workers <= 0:
            raise ConfigurationError(f"max_workers must be positive, got {self.max_workers}")
        if self.view and self.index:
            raise ConfigurationError("Only one of view or index may be configured")
        return self

    @property
    def base_url(self) -> str:
        """Store URL without trailing slash."""
        if self.url:
            return self.url.rstrip("/")
        return f"{self.protocol}://{self.host}".rstrip("/")

    @property
    def db_url(self) -> str:
        return f"{self.base_url}/{self.database}"

    @property
    def changes_receiver_url(self) -> str:
        return f"{self.db_url}/_changes"

    @property
    def is_feed_source(self) -> bool:
        return self.endpoint == Endpoint.CHANGES

    @property
    def secondary_path(self) -> Optional[str]:
        """Configured view or search index path, if any."""
        return self.view or self.index

    @property
    def feed_since(self) -> str:
        """Starting cursor for a ChangesReceiver opened in ``feed_mode``.

        Beginning of history for drain, now for continuous. Schema
        resolution always drains and ignores ``feed_mode``; see
        ``acquisition``.
        """
        if self.since is not None:
            return self.since
        return "0" if self.feed_mode == FeedMode.DRAIN else "now"

    def acquisition(self, explicit_schema: Any = None) -> Acquisition:
        """
        Resolve this configuration to exactly one schema acquisition strategy.

        Order of precedence:
        1. An explicit schema is used verbatim.
        2. A bulk source, or any source with a view/index, is sampled; a
           full scan is used only for the all-documents sample size with no
           view/index.
        3. Otherwise the change feed is drained.
        """
        if explicit_schema is not None:
            return ExplicitSchema(schema=explicit_schema)

        if not self.is_feed_source or self.secondary_path:
            if self.schema_sample_size == ALL_DOCS and not self.secondary_path:
                return FullScan(page_length=self.page_length)
            # A secondary path with the all-documents sentinel fetches the
            # whole view/index result in one call.
            return SampledFetch(
                sample_size=self.schema_sample_size,
                view=self.view,
                index=self.index,
            )

        # A schema drain is finite and reads the history from the start
        # unless the caller supplied a cursor.
        return ChangeFeedDrain(
            since=self.since if self.since is not None else "0",
            receiver_url=self.changes_receiver_url,
            batch_interval=self.batch_interval,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "StoreConfig":
        """Load config from YAML file with env var substitution."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            raw_content = f.read()

        # Substitute environment variables: ${VAR_NAME}
        substituted = _substitute_env_vars(raw_content)

        data = yaml.safe_load(substituted) or {}
        if "store" in data:
            data = data["store"]
        return cls._validate(data)

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> "StoreConfig":
        """
        Build a config from flat data source options.

        Accepts the connector-style keys (``cloudant.host``,
        ``schemaSampleSize``, ``createDBOnSave``, ...) as well as the field
        names of this model. Values may be strings.
        """
        data: dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name == "selector" and isinstance(value, str):
                try:
                    value = json.loads(value)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"selector is not valid JSON: {e}") from e
            data[name] = value
        return cls._validate(data)

    @classmethod
    def _validate(cls, data: dict[str, Any]) -> "StoreConfig":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid store configuration: {e}") from e


_OPTION_ALIASES = {
    "path": "database",
    "cloudant.host": "host",
    "cloudant.url": "url",
    "cloudant.protocol": "protocol",
    "cloudant.username": "username",
    "cloudant.password": "password",
    "cloudant.endpoint": "endpoint",
    "cloudant.batchInterval": "batch_interval",
    "cloudant.timeout": "timeout",
    "cloudant.numberOfRetries": "retries",
    "schemaSampleSize": "schema_sample_size",
    "createDBOnSave": "create_db_on_save",
    "bulkSize": "bulk_size",
    "pageLength": "page_length",
    "feedMode": "feed_mode",
    "maxWorkers": "max_workers",
}


def _substitute_env_vars(content: str) -> str:
    """Replace ${VAR_NAME} with environment variable values."""
    pattern = re.compile(r'\$\{([^}]+)\}')

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigurationError(f"Environment variable not set: {var_name}")
        return value

    return pattern.sub(replacer, content)
