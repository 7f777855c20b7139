# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Tests for store configuration and acquisition strategy selection."""

import pytest

from docbridge.core.config import (
    ALL_DOCS,
    ChangeFeedDrain,
    Endpoint,
    ExplicitSchema,
    FeedMode,
    FullScan,
    SampledFetch,
    StoreConfig,
)
from docbridge.core.errors import ConfigurationError


def _config(**kwargs) -> StoreConfig:
    kwargs.setdefault("url", "http://localhost:5984")
    kwargs.setdefault("database", "sales")
    return StoreConfig(**kwargs)


class TestStoreConfigDefaults:
    """Tests for default values and derived URLs."""

    def test_defaults(self):
        """Defaults select a bulk source sampled in full."""
        config = _config()
        assert config.endpoint == Endpoint.ALL_DOCS
        assert config.schema_sample_size == ALL_DOCS
        assert config.create_db_on_save is False
        assert config.bulk_size == 200
        assert config.page_length == 200
        assert config.feed_mode == FeedMode.DRAIN

    def test_urls(self):
        """Database and change-feed URLs are built from the base URL."""
        config = _config(url="http://localhost:5984/")
        assert config.base_url == "http://localhost:5984"
        assert config.db_url == "http://localhost:5984/sales"
        assert config.changes_receiver_url == "http://localhost:5984/sales/_changes"

    def test_host_and_protocol(self):
        """A host without url uses the protocol."""
        config = StoreConfig(host="acct.cloudant.com", database="sales")
        assert config.base_url == "https://acct.cloudant.com"

    def test_feed_since_defaults_by_mode(self):
        """Drain starts at the beginning of history, continuous at now."""
        assert _config().feed_since == "0"
        assert _config(feed_mode="continuous").feed_since == "now"
        assert _config(feed_mode="continuous", since="42-abc").feed_since == "42-abc"

    def test_config_is_frozen(self):
        """Configs cannot be mutated after creation."""
        config = _config()
        with pytest.raises(Exception):
            config.database = "other"


class TestStoreConfigValidation:
    """Tests for contradictory or missing settings."""

    def test_missing_location_raises(self):
        """Either url or host is required."""
        with pytest.raises(ConfigurationError, match="url or host"):
            StoreConfig(database="sales")

    def test_empty_database_raises(self):
        with pytest.raises(ConfigurationError, match="database"):
            _config(database="")

    def test_negative_sample_size_raises(self):
        """Only the all-documents sentinel may be negative."""
        with pytest.raises(ConfigurationError, match="schema_sample_size"):
            _config(schema_sample_size=-5)

    def test_zero_sample_size_is_valid(self):
        assert _config(schema_sample_size=0).schema_sample_size == 0

    def test_view_and_index_conflict(self):
        with pytest.raises(ConfigurationError, match="view or index"):
            _config(view="_design/d/_view/v", index="_design/d/_search/s")

    @pytest.mark.parametrize("field", ["page_length", "bulk_size", "batch_interval", "max_workers"])
    def test_non_positive_sizes_raise(self, field):
        with pytest.raises(ConfigurationError, match=field):
            _config(**{field: 0})


class TestAcquisition:
    """Tests for resolving a config to one acquisition strategy."""

    def test_explicit_schema_wins(self):
        """An explicit schema is used regardless of the source."""
        schema = object()
        strategy = _config(endpoint="_changes").acquisition(schema)
        assert isinstance(strategy, ExplicitSchema)
        assert strategy.schema is schema

    def test_all_docs_sentinel_is_full_scan(self):
        strategy = _config(page_length=50).acquisition()
        assert strategy == FullScan(page_length=50)

    def test_numeric_sample_is_sampled_fetch(self):
        strategy = _config(schema_sample_size=20).acquisition()
        assert strategy == SampledFetch(sample_size=20)

    def test_zero_sample_is_not_sentinel(self):
        """Sample size 0 is a sampled fetch, not a full scan."""
        strategy = _config(schema_sample_size=0).acquisition()
        assert strategy == SampledFetch(sample_size=0)

    def test_view_with_sentinel_is_sampled_fetch(self):
        """A view path always goes through one bulk call."""
        strategy = _config(view="_design/d/_view/v").acquisition()
        assert strategy == SampledFetch(sample_size=ALL_DOCS, view="_design/d/_view/v")

    def test_feed_source_with_index_is_sampled_fetch(self):
        """A secondary path overrides the change feed."""
        strategy = _config(endpoint="_changes", index="_design/d/_search/s").acquisition()
        assert isinstance(strategy, SampledFetch)
        assert strategy.index == "_design/d/_search/s"

    def test_feed_source_is_drain(self):
        strategy = _config(endpoint="_changes", batch_interval=2).acquisition()
        assert strategy == ChangeFeedDrain(
            since="0",
            receiver_url="http://localhost:5984/sales/_changes",
            batch_interval=2.0,
        )

    def test_schema_drain_ignores_continuous_mode(self):
        """Schema resolution reads the feed history even in continuous mode."""
        config = _config(endpoint="_changes", feed_mode="continuous")
        assert config.feed_since == "now"
        assert config.acquisition().since == "0"

    def test_schema_drain_keeps_explicit_cursor(self):
        config = _config(endpoint="_changes", feed_mode="continuous", since="17-g1A")
        assert config.acquisition().since == "17-g1A"


class TestConfigLoading:
    """Tests for YAML and option loading."""

    def test_from_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STORE_PASSWORD", "s3cret")
        path = tmp_path / "store.yaml"
        path.write_text(
            "store:\n"
            "  url: http://localhost:5984\n"
            "  database: sales\n"
            "  username: admin\n"
            "  password: ${STORE_PASSWORD}\n"
            "  schema_sample_size: 10\n"
        )
        config = StoreConfig.from_yaml(path)
        assert config.password == "s3cret"
        assert config.schema_sample_size == 10

    def test_from_yaml_missing_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DOCBRIDGE_UNSET_VAR", raising=False)
        path = tmp_path / "store.yaml"
        path.write_text("url: ${DOCBRIDGE_UNSET_VAR}\ndatabase: sales\n")
        with pytest.raises(ConfigurationError, match="DOCBRIDGE_UNSET_VAR"):
            StoreConfig.from_yaml(path)

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            StoreConfig.from_yaml(tmp_path / "nope.yaml")

    def test_from_options_connector_keys(self):
        """Connector-style string options map onto fields."""
        config = StoreConfig.from_options({
            "cloudant.host": "acct.cloudant.com",
            "cloudant.username": "user",
            "database": "n_airportcodemapping",
            "schemaSampleSize": "-1",
            "createDBOnSave": "true",
            "bulkSize": "100",
            "selector": '{"year": {"$gt": 2000}}',
        })
        assert config.host == "acct.cloudant.com"
        assert config.create_db_on_save is True
        assert config.bulk_size == 100
        assert config.schema_sample_size == ALL_DOCS
        assert config.selector == {"year": {"$gt": 2000}}

    def test_from_options_invalid_type(self):
        """Type errors surface as ConfigurationError."""
        with pytest.raises(ConfigurationError):
            StoreConfig.from_options({"url": "http://x", "database": "d", "bulkSize": "many"})

    def test_from_options_invalid_selector(self):
        with pytest.raises(ConfigurationError, match="selector"):
            StoreConfig.from_options({"url": "http://x", "database": "d", "selector": "{nope"})
