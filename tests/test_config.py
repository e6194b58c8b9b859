"""
Tests for configuration loading.
"""

import json

import pytest

from sqlalchemy_bulk_upsert import DuplicatePolicy
from sqlalchemy_bulk_upsert.utils.config import Config, UpsertConfig


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Run each test in an empty directory without inherited settings."""
    monkeypatch.chdir(tmp_path)
    for env_var in Config.ENV_MAPPING:
        monkeypatch.delenv(f"{Config.ENV_PREFIX}{env_var}", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)


class TestUpsertConfig:
    """Test suite for UpsertConfig."""

    def test_defaults(self):
        """Defaults are safe for any table."""
        config = UpsertConfig()

        assert config.chunk_size == 500
        assert config.duplicate_policy is DuplicatePolicy.ERROR
        assert config.fetch_inserted_identities is False
        assert (config.created_column, config.updated_column, config.deleted_column) == (
            "created_at",
            "updated_at",
            "deleted_at",
        )

    def test_chunk_size_must_be_positive(self):
        """A zero chunk size is rejected."""
        with pytest.raises(ValueError):
            UpsertConfig(chunk_size=0)


class TestConfig:
    """Test suite for the Config manager."""

    def test_json_file(self, tmp_path):
        """Known keys are applied, unknown keys kept as custom settings."""
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"chunk_size": 50, "duplicate_policy": "last_wins", "team": "data"}))

        config = Config(config_file=str(path), load_env=False, configure_logging=False)

        assert config.get("chunk_size") == 50
        assert config.settings.duplicate_policy is DuplicatePolicy.LAST_WINS
        assert config.get("team") == "data"
        assert config.get("missing", "fallback") == "fallback"

    def test_toml_file(self, tmp_path):
        """TOML files may nest settings under a bulk_upsert table."""
        path = tmp_path / "upsert.config.toml"
        path.write_text('[bulk_upsert]\nchunk_size = 20\nfetch_inserted_identities = true\n')

        config = Config(load_env=False, configure_logging=False)

        assert config.get("chunk_size") == 20
        assert config.get("fetch_inserted_identities") is True

    def test_invalid_file(self, tmp_path):
        """A broken file is an error, not a silent default."""
        path = tmp_path / "upsert.config.json"
        path.write_text("{not json")

        with pytest.raises(ValueError):
            Config(load_env=False, configure_logging=False)

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        """Environment variables win over the file and are coerced."""
        (tmp_path / "upsert.config.json").write_text(json.dumps({"chunk_size": 50}))
        monkeypatch.setenv("BULK_UPSERT_CHUNK_SIZE", "25")
        monkeypatch.setenv("BULK_UPSERT_DUPLICATE_POLICY", "first_wins")
        monkeypatch.setenv("DATABASE_URL", "sqlite://")

        config = Config(configure_logging=False)

        assert config.get("chunk_size") == 25
        assert config.settings.duplicate_policy is DuplicatePolicy.FIRST_WINS
        assert config.database_url == "sqlite://"

    def test_set_and_to_dict(self):
        """Values can be overridden and exported."""
        config = Config(load_env=False, configure_logging=False)
        config.set("echo_sql", True)
        config.set("owner", "ops")

        data = config.to_dict()
        assert data["echo_sql"] is True
        assert data["duplicate_policy"] == "error"
        assert data["custom_settings"] == {"owner": "ops"}
