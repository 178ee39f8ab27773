"""Tests for kitchen.toml loading, saving and provider detection."""

import pytest

from kitchen.config import (
    CONFIG_FILENAME,
    NO_PROVIDER,
    ProviderConfig,
    StoreConfig,
    detect_default_providers,
    get_default_store_path,
    load_config,
    load_or_create_config,
    save_config,
)


class TestDetectProviders:

    def test_no_credentials(self):
        providers = detect_default_providers()
        assert providers["embedding"].name == NO_PROVIDER
        assert providers["summarization"].name == "passthrough"

    def test_openai_key(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        providers = detect_default_providers()
        assert providers["embedding"].name == "openai"
        assert providers["embedding"].params == {"model": "text-embedding-3-small"}
        assert providers["summarization"].name == "openai"

    def test_kitchen_specific_openai_key(self, monkeypatch):
        monkeypatch.setenv("KITCHEN_OPENAI_API_KEY", "sk-test")
        assert detect_default_providers()["embedding"].name == "openai"

    def test_anthropic_key_summarizes_without_embeddings(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
        providers = detect_default_providers()
        assert providers["embedding"].name == NO_PROVIDER
        assert providers["summarization"].name == "anthropic"


class TestLoadSave:

    def test_round_trip_keeps_settings(self, tmp_path):
        config = StoreConfig(
            path=tmp_path,
            embedding=ProviderConfig("ollama", {"model": "nomic-embed-text"}),
            summarization=ProviderConfig("anthropic", {"max_tokens": 512}),
        )
        config.processor.interval = 2.5
        config.search.threshold = 0.5
        config.queue.retention_days = 3
        save_config(config)

        loaded = load_config(tmp_path)
        assert loaded.embedding == ProviderConfig("ollama", {"model": "nomic-embed-text"})
        assert loaded.summarization.params == {"max_tokens": 512}
        assert loaded.processor.interval == 2.5
        assert loaded.search.threshold == 0.5
        assert loaded.queue.retention_days == 3
        assert loaded.backend == "local"

    def test_missing_sections_use_defaults(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            '[store]\nversion = 1\n\n[embedding]\nname = "openai"\n'
        )
        config = load_config(tmp_path)
        assert config.embedding.name == "openai"
        assert config.summarization.name == "passthrough"
        assert config.processor.timeout == 60.0
        assert config.search.limit == 10

    def test_unknown_keys_ignored(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "[store]\nversion = 1\n\n[search]\nthreshold = 0.4\nfuzzy = true\n"
        )
        assert load_config(tmp_path).search.threshold == 0.4

    def test_newer_version_rejected(self, tmp_path):
        (tmp_path / CONFIG_FILENAME).write_text("[store]\nversion = 99\n")
        with pytest.raises(ValueError, match="newer"):
            load_config(tmp_path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)

    def test_load_or_create_writes_defaults(self, tmp_path):
        store = tmp_path / "new-store"
        config = load_or_create_config(store)
        assert (store / CONFIG_FILENAME).exists()
        assert config.path == store
        assert load_or_create_config(store).created == config.created


class TestStorePath:

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("KITCHEN_STORE_PATH", str(tmp_path / "elsewhere"))
        assert get_default_store_path() == tmp_path / "elsewhere"

    def test_home_default(self, monkeypatch):
        monkeypatch.delenv("KITCHEN_STORE_PATH", raising=False)
        assert get_default_store_path().name == ".kitchen"
