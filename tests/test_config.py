"""Tests for configuration loading."""

import pytest

from folio_browser.config import Config, ConfigManager, RemoteConfig


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestDefaults:
    """Tests for built-in defaults."""

    def test_defaults(self):
        config = Config()
        assert config.remote.base_url == "http://127.0.0.1:3000"
        assert config.remote.data_path == "/data"
        assert config.remote.count_path == "/data/count"
        assert config.query.default_page_size == 20
        assert config.query.default_sort_column == "Company_Name"
        assert config.sync.chunk_size == 10000
        assert config.export.chunk_size == 2000
        assert config.export.default_format == "xlsx"
        assert config.cache.page_cache_entries == 0

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = ConfigManager(str(tmp_path / "absent.toml"))
        assert manager.config == Config()


class TestLoading:
    """Tests for reading TOML files."""

    def test_load_sections(self, tmp_path):
        path = _write(
            tmp_path / "config.toml",
            """
[remote]
base_url = "https://data.example.com/"
data_path = "/comp"
count_path = "/comp/count"

[query]
default_page_size = 50

[export]
default_format = "csv"
file_prefix = "comp"
""",
        )
        config = ConfigManager(path).config

        assert config.remote.base_url == "https://data.example.com"
        assert config.remote.data_path == "/comp"
        assert config.query.default_page_size == 50
        assert config.export.default_format == "csv"
        assert config.export.file_prefix == "comp"
        assert config.sync.chunk_size == 10000

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path / "config.toml", "[remote\nbase_url = ")
        with pytest.raises(ValueError, match="Invalid configuration file"):
            ConfigManager(path).config

    def test_invalid_values(self, tmp_path):
        path = _write(tmp_path / "config.toml", '[query]\ndefault_sort_column = "DROP TABLE"\n')
        with pytest.raises(ValueError):
            ConfigManager(path).config

    def test_invalid_format(self, tmp_path):
        path = _write(tmp_path / "config.toml", '[export]\ndefault_format = "pdf"\n')
        with pytest.raises(ValueError):
            ConfigManager(path).config

    def test_env_var_location(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "custom.toml", "[sync]\nchunk_size = 500\n")
        monkeypatch.setenv(ConfigManager.ENV_VAR, path)
        manager = ConfigManager()
        assert manager.config_path == path
        assert manager.config.sync.chunk_size == 500

    def test_reload(self, tmp_path):
        path = tmp_path / "config.toml"
        _write(path, "[sync]\nchunk_size = 500\n")
        manager = ConfigManager(str(path))
        assert manager.config.sync.chunk_size == 500

        _write(path, "[sync]\nchunk_size = 600\n")
        manager.reload()
        assert manager.config.sync.chunk_size == 600


class TestToken:
    """Tests for bearer token resolution."""

    def test_env_preferred(self, monkeypatch):
        monkeypatch.setenv("FOLIO_BROWSER_TOKEN", "from-env")
        assert RemoteConfig(token="from-file").resolve_token() == "from-env"

    def test_file_fallback(self, monkeypatch):
        monkeypatch.delenv("FOLIO_BROWSER_TOKEN", raising=False)
        assert RemoteConfig(token="from-file").resolve_token() == "from-file"

    def test_custom_env_name(self, monkeypatch):
        monkeypatch.setenv("MY_TOKEN", "abc")
        assert RemoteConfig(token_env="MY_TOKEN").resolve_token() == "abc"
