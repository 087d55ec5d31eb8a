"""Tests for configuration loading."""

from pathlib import Path

import pytest

from canvas_mcp.config import (
    CanvasConfig,
    ServerSettings,
    expand_env_vars,
    load_settings,
    normalize_api_url,
)
from canvas_mcp.errors import ConfigurationError

FULL_SETTINGS = """
version: "1.0"
cache:
  max_entries: 64
  default_ttl: 45
tools:
  timeout: 12
  ttl:
    list_courses: 600
  timeouts:
    list_course_users: 90
logging:
  file: "${CANVAS_TEST_LOG_DIR}/canvas.log"
"""


class TestNormalizeApiUrl:
    """Tests for API URL normalization."""

    @pytest.mark.parametrize(
        "raw",
        [
            "https://canvas.example.edu",
            "https://canvas.example.edu/",
            "https://canvas.example.edu/api/v1",
            "https://canvas.example.edu/api/v1/",
        ],
    )
    def test_appends_api_suffix_once(self, raw):
        """Should end with exactly one /api/v1."""
        assert normalize_api_url(raw) == "https://canvas.example.edu/api/v1"


class TestCanvasConfigFromEnv:
    """Tests for environment configuration."""

    def test_loads_required_values(self):
        """Should read token and URL."""
        config = CanvasConfig.from_env(
            {"CANVAS_API_TOKEN": "abc", "CANVAS_API_URL": "https://canvas.example.edu"}
        )

        assert config.api_token == "abc"
        assert config.api_url == "https://canvas.example.edu/api/v1"
        assert config.enable_anonymization is False
        assert config.log_file is None

    def test_loads_optional_values(self):
        """Should read optional settings and parse booleans."""
        config = CanvasConfig.from_env(
            {
                "CANVAS_API_TOKEN": "abc",
                "CANVAS_API_URL": "https://canvas.example.edu",
                "INSTITUTION_NAME": "Example U",
                "TIMEZONE": "America/Chicago",
                "ENABLE_DATA_ANONYMIZATION": "yes",
                "DEBUG": "TRUE",
                "CANVAS_MCP_LOG_FILE": "/tmp/canvas.log",
                "CANVAS_MCP_SETTINGS": "/etc/canvas.yaml",
            }
        )

        assert config.institution_name == "Example U"
        assert config.timezone == "America/Chicago"
        assert config.enable_anonymization is True
        assert config.debug is True
        assert config.log_file == "/tmp/canvas.log"
        assert config.settings_path == "/etc/canvas.yaml"

    def test_false_values(self):
        """Should treat anything but the true spellings as false."""
        config = CanvasConfig.from_env(
            {
                "CANVAS_API_TOKEN": "abc",
                "CANVAS_API_URL": "https://canvas.example.edu",
                "ENABLE_DATA_ANONYMIZATION": "no",
            }
        )
        assert config.enable_anonymization is False

    def test_requires_token(self):
        """Should fail without a token."""
        with pytest.raises(ConfigurationError, match="CANVAS_API_TOKEN"):
            CanvasConfig.from_env({"CANVAS_API_URL": "https://canvas.example.edu"})

    def test_requires_url(self):
        """Should fail without a URL."""
        with pytest.raises(ConfigurationError, match="CANVAS_API_URL"):
            CanvasConfig.from_env({"CANVAS_API_TOKEN": "abc"})

    def test_rejects_non_http_url(self):
        """Should fail for URLs without an http(s) scheme."""
        with pytest.raises(ConfigurationError, match="http"):
            CanvasConfig.from_env({"CANVAS_API_TOKEN": "abc", "CANVAS_API_URL": "canvas.edu"})


class TestLoadSettings:
    """Tests for YAML settings."""

    def test_defaults_without_file(self):
        """Should return defaults when no path is given."""
        settings = load_settings(None)

        assert settings.cache_max_entries == 512
        assert settings.cache_default_ttl == 300.0
        assert settings.tool_timeout == 30.0

    def test_loads_full_file(self, tmp_path: Path, monkeypatch):
        """Should read every section and expand env vars."""
        monkeypatch.setenv("CANVAS_TEST_LOG_DIR", "/var/log/canvas")
        path = tmp_path / "settings.yaml"
        path.write_text(FULL_SETTINGS)

        settings = load_settings(path)

        assert settings.cache_max_entries == 64
        assert settings.cache_default_ttl == 45.0
        assert settings.tool_timeout == 12.0
        assert settings.tool_ttls == {"list_courses": 600.0}
        assert settings.tool_timeouts == {"list_course_users": 90.0}
        assert settings.log_file == "/var/log/canvas/canvas.log"

    def test_empty_file_gives_defaults(self, tmp_path: Path):
        """Should accept an empty settings file."""
        path = tmp_path / "settings.yaml"
        path.write_text("")

        assert load_settings(path) == ServerSettings()

    def test_missing_file(self, tmp_path: Path):
        """Should fail for a path that does not exist."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        """Should fail on unparseable YAML."""
        path = tmp_path / "settings.yaml"
        path.write_text("cache: [unclosed")

        with pytest.raises(ConfigurationError, match="parse"):
            load_settings(path)

    def test_non_mapping(self, tmp_path: Path):
        """Should fail when the top level is not a mapping."""
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path)

    def test_bad_value(self, tmp_path: Path):
        """Should fail on values of the wrong kind."""
        path = tmp_path / "settings.yaml"
        path.write_text("cache:\n  max_entries: lots\n")

        with pytest.raises(ConfigurationError, match="Invalid"):
            load_settings(path)

    def test_non_positive_values(self, tmp_path: Path):
        """Should fail on zero sizes and lifetimes."""
        path = tmp_path / "settings.yaml"
        path.write_text("cache:\n  max_entries: 0\n")

        with pytest.raises(ConfigurationError, match="positive"):
            load_settings(path)


class TestSettingsLookups:
    """Tests for per-tool ttl and timeout resolution."""

    def test_override_beats_declared(self):
        """Should prefer the settings override."""
        settings = ServerSettings(tool_ttls={"get_course": 5.0}, tool_timeouts={"get_course": 2.0})

        assert settings.get_ttl("get_course", declared=600) == 5.0
        assert settings.get_timeout("get_course", declared=60) == 2.0

    def test_declared_beats_default(self):
        """Should use the tool's own value when not overridden."""
        settings = ServerSettings()

        assert settings.get_ttl("get_course", declared=600) == 600
        assert settings.get_timeout("get_course", declared=60) == 60

    def test_default_when_nothing_declared(self):
        """Should fall back to server defaults."""
        settings = ServerSettings(cache_default_ttl=42.0, tool_timeout=7.0)

        assert settings.get_ttl("x") == 42.0
        assert settings.get_timeout("x") == 7.0


class TestExpandEnvVars:
    """Tests for ${VAR} expansion."""

    def test_expands_known_variable(self, monkeypatch):
        """Should substitute set variables."""
        monkeypatch.setenv("CANVAS_TEST_VAR", "value")
        assert expand_env_vars("a/${CANVAS_TEST_VAR}/b") == "a/value/b"

    def test_leaves_unknown_variable(self, monkeypatch):
        """Should keep unknown references as written."""
        monkeypatch.delenv("CANVAS_TEST_UNSET", raising=False)
        assert expand_env_vars("${CANVAS_TEST_UNSET}") == "${CANVAS_TEST_UNSET}"
