"""Tests for store configuration."""

import pytest

from ledgerkeep.config import (
    CONFIG_FILENAME,
    StoreConfig,
    default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "LEDGERKEEP_SUI_RPC_URL",
        "LEDGERKEEP_WALRUS_PUBLISHER_URL",
        "LEDGERKEEP_WALRUS_AGGREGATOR_URL",
        "LEDGERKEEP_STORE_PATH",
    ):
        monkeypatch.delenv(var, raising=False)


class TestDefaults:

    def test_create_writes_file(self, tmp_path):
        config = load_or_create_config(tmp_path)
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert config.ledger.name == "memory"
        assert config.blobs.name == "local"
        assert config.access.name == "local"
        assert config.lease.renewal_window_days == 7
        assert config.query.top_k == 4
        assert config.embedding.name == "openai"

    def test_store_path_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGERKEEP_STORE_PATH", str(tmp_path / "store"))
        assert default_store_path() == tmp_path / "store"


class TestRoundTrip:

    def test_sections_survive_save(self, tmp_path):
        config = StoreConfig(path=tmp_path)
        config.ledger.name = "sui"
        config.ledger.package_id = "0xpkg"
        config.blobs.epochs = 10
        config.lease.max_period = 180
        config.generation.name = "anthropic"
        config.generation.params = {"model": "claude-sonnet"}
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.ledger.name == "sui"
        assert loaded.ledger.package_id == "0xpkg"
        assert loaded.blobs.epochs == 10
        assert loaded.lease.max_period == 180
        assert loaded.generation.name == "anthropic"
        assert loaded.generation.params == {"model": "claude-sonnet"}
        assert loaded.created == config.created


class TestValidation:

    def write(self, tmp_path, text: str):
        (tmp_path / CONFIG_FILENAME).write_text(text)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_newer_version(self, tmp_path):
        self.write(tmp_path, "[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_unknown_ledger(self, tmp_path):
        self.write(tmp_path, '[ledger]\nname = "ethereum"\n')
        with pytest.raises(ValueError, match="Unknown ledger"):
            load_config(tmp_path)

    def test_unknown_blob_store(self, tmp_path):
        self.write(tmp_path, '[blobs]\nname = "s3"\n')
        with pytest.raises(ValueError, match="Unknown blob store"):
            load_config(tmp_path)

    def test_bad_chunking(self, tmp_path):
        self.write(tmp_path, "[query]\nchunk_size = 100\nchunk_overlap = 100\n")
        with pytest.raises(ValueError):
            load_config(tmp_path)

    def test_unknown_keys_ignored(self, tmp_path):
        self.write(tmp_path, "[lease]\nrenewal_window_days = 3\nfuture_option = true\n")
        config = load_config(tmp_path)
        assert config.lease.renewal_window_days == 3


class TestEnvOverrides:

    def test_endpoints_from_env(self, tmp_path, monkeypatch):
        save_config(StoreConfig(path=tmp_path))
        monkeypatch.setenv("LEDGERKEEP_SUI_RPC_URL", "http://localhost:9000")
        monkeypatch.setenv("LEDGERKEEP_WALRUS_PUBLISHER_URL", "http://localhost:31415")
        monkeypatch.setenv("LEDGERKEEP_WALRUS_AGGREGATOR_URL", "http://localhost:31416")
        config = load_config(tmp_path)
        assert config.ledger.rpc_url == "http://localhost:9000"
        assert config.blobs.publisher_url == "http://localhost:31415"
        assert config.blobs.aggregator_url == "http://localhost:31416"
