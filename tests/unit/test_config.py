"""
Unit Tests for Configuration and Errors
"""
import pytest
import sys
import os

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..', 'src'))

from schema_knowledge.config import (
    CompressionConfig,
    EngineConfig,
    LogLevel,
    StorageBackend,
    StorageFormat,
    get_config,
    reset_config,
    set_config,
)
from schema_knowledge.utils import (
    ConfigurationError,
    ErrorCategory,
    PersistenceError,
    SnapshotNotFoundError,
    TableNotFoundError,
    classify_storage_error,
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("SCHEMA_ENGINE_"):
            monkeypatch.delenv(key)
    # an empty dotenv file keeps a stray .env out of the test
    dotenv = tmp_path / ".env"
    dotenv.write_text("")
    yield str(dotenv)
    reset_config()


class TestEngineConfig:
    """Tests for EngineConfig"""

    def test_defaults(self, clean_env):
        config = EngineConfig.from_env(clean_env)

        assert config.compression.max_tables == 20
        assert config.compression.max_tokens == 4000
        assert config.learning.max_examples == 10
        assert config.extraction.max_age_seconds == 24 * 3600
        assert config.storage.backend == StorageBackend.MEMORY
        assert config.log_level == LogLevel.INFO

    def test_from_env(self, clean_env, monkeypatch):
        monkeypatch.setenv("SCHEMA_ENGINE_MAX_TABLES", "5")
        monkeypatch.setenv("SCHEMA_ENGINE_INCLUDE_RELATIONSHIPS", "false")
        monkeypatch.setenv("SCHEMA_ENGINE_MAX_AGE_HOURS", "0.5")
        monkeypatch.setenv("SCHEMA_ENGINE_STORAGE_BACKEND", "file")
        monkeypatch.setenv("SCHEMA_ENGINE_STORAGE_DIR", "/tmp/schemas")
        monkeypatch.setenv("SCHEMA_ENGINE_STORAGE_FORMAT", "json")
        monkeypatch.setenv("SCHEMA_ENGINE_LOG_LEVEL", "debug")

        config = EngineConfig.from_env(clean_env)

        assert config.compression.max_tables == 5
        assert config.compression.include_relationships is False
        assert config.extraction.max_age_seconds == 1800
        assert config.storage.backend == StorageBackend.FILE
        assert config.storage.directory == "/tmp/schemas"
        assert config.storage.format == StorageFormat.JSON
        assert config.log_level == LogLevel.DEBUG

    def test_dotenv_file(self, clean_env):
        with open(clean_env, "w") as f:
            f.write("SCHEMA_ENGINE_MAX_EXAMPLES=3\n")

        config = EngineConfig.from_env(clean_env)
        os.environ.pop("SCHEMA_ENGINE_MAX_EXAMPLES", None)

        assert config.learning.max_examples == 3

    @pytest.mark.parametrize("key,value", [
        ("SCHEMA_ENGINE_MAX_TABLES", "many"),
        ("SCHEMA_ENGINE_MAX_TABLES", "0"),
        ("SCHEMA_ENGINE_STORAGE_BACKEND", "s3"),
        ("SCHEMA_ENGINE_LOG_LEVEL", "loud"),
    ])
    def test_invalid_values(self, clean_env, monkeypatch, key, value):
        monkeypatch.setenv(key, value)

        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_env(clean_env)

        assert exc_info.value.recoverable is False

    def test_compression_overrides_copy(self):
        base = CompressionConfig()
        narrowed = base.model_copy(update={"max_tables": 3})

        assert narrowed.max_tables == 3
        assert base.max_tables == 20

    def test_global_config(self, clean_env):
        custom = EngineConfig(log_json=True)
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom


class TestErrors:
    """Tests for the error taxonomy"""

    def test_not_found_errors(self):
        error = TableNotFoundError("t-users", "db-1")

        assert error.category == ErrorCategory.NOT_FOUND
        assert error.entity_id == "t-users"
        assert "db-1" in str(error)
        assert SnapshotNotFoundError("db-1").database_id == "db-1"

    def test_classify_storage_error(self):
        original = OSError("disk full")
        error = classify_storage_error(original, "save_snapshot", "db-1")

        assert isinstance(error, PersistenceError)
        assert error.original_error is original
        assert error.context.database_id == "db-1"
        assert "save snapshot" in error.message

    def test_classify_keeps_engine_errors(self):
        error = SnapshotNotFoundError("db-1")
        assert classify_storage_error(error, "get_snapshot") is error

    def test_to_dict(self):
        data = PersistenceError("boom", operation="clear").to_dict()

        assert data["error_type"] == "PersistenceError"
        assert data["category"] == "persistence"
        assert any("clear" in s for s in data["suggestions"])
