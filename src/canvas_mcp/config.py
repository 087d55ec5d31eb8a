"""Configuration loading.

Credentials and the Canvas endpoint come from the environment. Server
tuning (cache size, TTLs, timeouts, log file) comes from an optional YAML
settings file.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from canvas_mcp.errors import ConfigurationError

API_SUFFIX = "/api/v1"

TRUE_VALUES = {"1", "true", "yes", "on"}


def expand_env_vars(value: str) -> str:
    """Expand environment variables in a string.

    Supports ${VAR_NAME} syntax. Unknown variables are left unchanged.

    Args:
        value: String potentially containing environment variable references.

    Returns:
        String with known environment variables expanded.
    """
    pattern = re.compile(r"\$\{([^}]+)\}")

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if var_name == "HOME":
            return os.path.expanduser("~")
        return match.group(0)

    return pattern.sub(replacer, value)


def normalize_api_url(api_url: str) -> str:
    """Ensure the Canvas base URL ends with /api/v1."""
    api_url = api_url.rstrip("/")
    if api_url.endswith(API_SUFFIX):
        return api_url
    return api_url + API_SUFFIX


def _parse_bool(value: str | None) -> bool:
    return value is not None and value.strip().lower() in TRUE_VALUES


@dataclass
class CanvasConfig:
    """Canvas connection settings."""

    api_token: str
    api_url: str
    institution_name: str | None = None
    timezone: str | None = None
    enable_anonymization: bool = False
    debug: bool = False
    log_file: str | None = None
    settings_path: str | None = None

    def __post_init__(self) -> None:
        self.api_url = normalize_api_url(self.api_url)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CanvasConfig:
        """Load configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            CanvasConfig instance.

        Raises:
            ConfigurationError: If required variables are missing or invalid.
        """
        env = os.environ if environ is None else environ

        api_token = env.get("CANVAS_API_TOKEN", "").strip()
        if not api_token:
            raise ConfigurationError("CANVAS_API_TOKEN environment variable is required")

        api_url = env.get("CANVAS_API_URL", "").strip()
        if not api_url:
            raise ConfigurationError("CANVAS_API_URL environment variable is required")

        if not api_url.startswith(("http://", "https://")):
            raise ConfigurationError("CANVAS_API_URL must start with http:// or https://")

        return cls(
            api_token=api_token,
            api_url=api_url,
            institution_name=env.get("INSTITUTION_NAME") or None,
            timezone=env.get("TIMEZONE") or None,
            enable_anonymization=_parse_bool(env.get("ENABLE_DATA_ANONYMIZATION")),
            debug=_parse_bool(env.get("DEBUG")),
            log_file=env.get("CANVAS_MCP_LOG_FILE") or None,
            settings_path=env.get("CANVAS_MCP_SETTINGS") or None,
        )


@dataclass
class ServerSettings:
    """Server tuning loaded from YAML.

    Every value is optional; the defaults give a working server.
    """

    version: str = "1.0"

    # Cache settings
    cache_max_entries: int = 512
    cache_default_ttl: float = 300.0

    # Tool settings
    tool_timeout: float = 30.0
    tool_ttls: dict[str, float] = field(default_factory=dict)
    tool_timeouts: dict[str, float] = field(default_factory=dict)

    # Logging settings
    log_file: str = ""

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> ServerSettings:
        """Create settings from a configuration dictionary.

        Args:
            config: Dictionary parsed from YAML configuration.

        Returns:
            ServerSettings instance with all settings populated.
        """
        cache = config.get("cache") or {}
        tools = config.get("tools") or {}
        logging_cfg = config.get("logging") or {}

        return cls(
            version=str(config.get("version", "1.0")),
            cache_max_entries=int(cache.get("max_entries", 512)),
            cache_default_ttl=float(cache.get("default_ttl", 300)),
            tool_timeout=float(tools.get("timeout", 30)),
            tool_ttls={k: float(v) for k, v in (tools.get("ttl") or {}).items()},
            tool_timeouts={k: float(v) for k, v in (tools.get("timeouts") or {}).items()},
            log_file=expand_env_vars(logging_cfg.get("file", "")),
        )

    def get_ttl(self, tool_name: str, declared: float | None = None) -> float:
        """Cache lifetime for a tool: settings override, then declared, then default."""
        if tool_name in self.tool_ttls:
            return self.tool_ttls[tool_name]
        if declared is not None:
            return declared
        return self.cache_default_ttl

    def get_timeout(self, tool_name: str, declared: float | None = None) -> float:
        """Handler timeout for a tool: settings override, then declared, then default."""
        if tool_name in self.tool_timeouts:
            return self.tool_timeouts[tool_name]
        if declared is not None:
            return declared
        return self.tool_timeout


def load_settings(path: Path | None) -> ServerSettings:
    """Load server settings from a YAML file.

    Args:
        path: Path to the settings file, or None for defaults.

    Returns:
        ServerSettings instance.

    Raises:
        ConfigurationError: If the file cannot be found, parsed, or validated.
    """
    if path is None:
        return ServerSettings()

    if not path.exists():
        raise ConfigurationError(f"Settings file not found: {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse settings YAML: {e}") from e

    if config is None:
        return ServerSettings()
    if not isinstance(config, dict):
        raise ConfigurationError("Settings must be a YAML mapping")

    try:
        settings = ServerSettings.from_dict(config)
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid settings value: {e}") from e

    if settings.cache_max_entries <= 0:
        raise ConfigurationError("cache.max_entries must be positive")
    if settings.cache_default_ttl <= 0 or settings.tool_timeout <= 0:
        raise ConfigurationError("cache.default_ttl and tools.timeout must be positive")
    return settings
