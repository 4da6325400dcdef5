"""Unit tests for filegate.engine.config — FileGateConfig and loading."""

import pytest

from filegate.engine.config import (
    MIN_ACCESS_TTL_SECONDS,
    AuditConfig,
    FileGateConfig,
    LoggingConfig,
    SecurityConfig,
    get_config,
    load_config,
    reset_config,
)
from filegate.engine.errors import FileGateConfigError


class TestFileGateConfig:
    """Test the pydantic models."""

    def test_defaults(self):
        cfg = FileGateConfig()
        assert cfg.name == "FileGate"
        assert cfg.environment == "dev"
        assert cfg.database.pool_size == 10
        assert cfg.security.access_request_ttl_seconds == 3600
        assert cfg.security.admin_override is True
        assert cfg.audit.max_page_size == 100
        assert cfg.audit.export_row_cap == 10000
        assert cfg.storage.max_upload_size_mb == 50
        assert cfg.logging.level == "INFO"

    def test_invalid_environment(self):
        with pytest.raises(ValueError, match="dev/staging/prod"):
            FileGateConfig(environment="test")

    def test_level_is_upper_cased(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="chatty")

    def test_audit_sizes_must_be_positive(self):
        with pytest.raises(ValueError):
            AuditConfig(max_page_size=0)


class TestSecurityConfig:

    def test_ttl_floor(self):
        assert SecurityConfig(access_request_ttl_seconds=5).effective_ttl_seconds == MIN_ACCESS_TTL_SECONDS

    def test_ttl_above_floor(self):
        assert SecurityConfig(access_request_ttl_seconds=7200).effective_ttl_seconds == 7200


class TestLoadConfig:

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "filegate.yaml"))
        assert cfg == FileGateConfig()

    def test_load_sections(self, tmp_path):
        path = tmp_path / "filegate.yaml"
        path.write_text(
            "filegate:\n"
            "  name: Vault\n"
            "  environment: staging\n"
            "database:\n"
            "  url: sqlite://\n"
            "security:\n"
            "  access_request_ttl_seconds: 120\n"
            "  admin_override: false\n"
            "audit:\n"
            "  max_page_size: 50\n",
            encoding="utf-8",
        )
        cfg = load_config(str(path))
        assert cfg.name == "Vault"
        assert cfg.environment == "staging"
        assert cfg.database.url == "sqlite://"
        assert cfg.security.access_request_ttl_seconds == 120
        assert cfg.security.admin_override is False
        assert cfg.audit.max_page_size == 50

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "filegate.yaml"
        path.write_text("database: [unclosed\n", encoding="utf-8")
        with pytest.raises(FileGateConfigError, match="Invalid YAML"):
            load_config(str(path))

    def test_validation_error(self, tmp_path):
        path = tmp_path / "filegate.yaml"
        path.write_text("environment: qa\n", encoding="utf-8")
        with pytest.raises(FileGateConfigError) as exc_info:
            load_config(str(path))
        assert "validation_errors" in exc_info.value.context

    def test_auto_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "filegate.yaml").write_text("name: Found\n", encoding="utf-8")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_config().name == "Found"

    def test_get_config_caches(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        first = get_config()
        assert get_config() is first
        reset_config()
        assert get_config() is not first
