"""
Tests for configuration loading, environment overrides and validation.
"""

import pytest

from config_manager import ConfigManager, ConfigurationError, DEFAULT_JWT_SECRET


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DATABASE_URL", "JWT_SECRET", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


class TestConfigManager:
    """Tests for ConfigManager"""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ConfigManager(str(tmp_path / "absent.yaml"))
        assert config.pagination.max_event_page_size == 100
        assert config.pagination.max_case_page_size == 200
        assert config.rate_limit.max_requests == 60
        assert config.auth.jwt_secret == DEFAULT_JWT_SECRET

    def test_loads_sections(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, (
            "database:\n  url: sqlite:///review.db\n"
            "pagination:\n  max_event_page_size: 50\n"
            "rate_limit:\n  enabled: false\n  max_requests: 5\n"
            "auth:\n  jwt_secret: s\n  token_ttl_hours: 2\n"
            "analytics:\n  top_n: 3\n"
            "api:\n  cors_origins: ['https://*.authentiqa.io']\n"
        )))
        assert config.database.url == "sqlite:///review.db"
        assert config.pagination.max_event_page_size == 50
        assert config.pagination.max_case_page_size == 200
        assert config.rate_limit.enabled is False
        assert config.rate_limit.max_requests == 5
        assert config.auth.token_ttl_hours == 2
        assert config.analytics.top_n == 3
        assert config.api.cors_origins == ["https://*.authentiqa.io"]

    def test_empty_file(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, ""))
        assert config.analytics.top_n == 10

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/authentiqa")
        monkeypatch.setenv("JWT_SECRET", "from-env")
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example ,")

        config = ConfigManager(write_config(tmp_path, "auth:\n  jwt_secret: from-file\n"))
        assert config.database.url == "postgresql://u:p@db/authentiqa"
        assert config.auth.jwt_secret == "from-env"
        assert config.api.cors_origins == ["https://a.example", "https://b.example"]

    @pytest.mark.parametrize("text,message", [
        ("pagination:\n  max_event_page_size: 0\n", "max_event_page_size"),
        ("rate_limit:\n  max_requests: -1\n", "max_requests"),
        ("rate_limit:\n  window_seconds: 0\n", "window_seconds"),
        ("auth:\n  jwt_algorithm: RS256\n", "jwt_algorithm"),
        ("auth:\n  bcrypt_rounds: 2\n", "bcrypt_rounds"),
        ("analytics:\n  top_n: 0\n", "top_n"),
        ("database:\n  slow_query_ms: 0\n", "slow_query_ms"),
        ("logging:\n  level: LOUD\n", "logging.level"),
    ])
    def test_invalid_values(self, tmp_path, text, message):
        with pytest.raises(ConfigurationError, match=message):
            ConfigManager(write_config(tmp_path, text))

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(write_config(tmp_path, "database: [unclosed\n"))

    def test_section_must_be_mapping(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager(write_config(tmp_path, "database: 5\n"))

    def test_to_dict_masks_secrets(self, tmp_path):
        config = ConfigManager(write_config(tmp_path, (
            "database:\n  password: hunter2\n  url: postgresql://u:hunter2@db/x\n"
            "auth:\n  jwt_secret: topsecret\n"
        )))
        exported = str(config.to_dict())
        assert "hunter2" not in exported
        assert "topsecret" not in exported
        assert config.to_dict()["database"]["url_configured"] is True

    def test_singleton(self, tmp_path):
        ConfigManager.reset_instance()
        try:
            path = write_config(tmp_path, "analytics:\n  top_n: 4\n")
            first = ConfigManager.get_instance(path)
            assert ConfigManager.get_instance() is first
            assert first.analytics.top_n == 4
        finally:
            ConfigManager.reset_instance()
