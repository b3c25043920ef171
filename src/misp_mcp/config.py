"""Server configuration loading.

Configuration is assembled once at startup from, in increasing precedence,
a YAML file, environment variables, and command-line overrides. The
resulting ServerConfig is passed explicitly to everything that needs it.
"""

from __future__ import annotations

import dataclasses
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from misp_mcp.protocol.transport import FRAMINGS

# Environment variable -> ServerConfig field
ENV_VARS = {
    "MISP_URL": "misp_url",
    "MISP_API_KEY": "api_key",
    "MISP_VERIFY_TLS": "verify_tls",
    "MISP_TIMEOUT": "timeout",
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


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
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        return match.group(0)  # Return unchanged if not found

    return pattern.sub(replacer, value)


def parse_bool(value: Any) -> bool:
    """Interpret a YAML or environment value as a boolean.

    Raises:
        ConfigError: If the value is not a recognised boolean spelling.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean value: {value!r}")


def _parse_seconds(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number of seconds, got {value!r}") from None


@dataclass(frozen=True)
class ServerConfig:
    """Immutable server configuration."""

    # MISP connection
    misp_url: str = ""
    api_key: str = field(default="", repr=False)
    verify_tls: bool = True
    timeout: float = 30.0

    # Session behaviour
    framing: str = "line"
    tool_timeout: float = 60.0
    drain_timeout: float = 30.0

    # Diagnostics
    log_level: str = "INFO"
    audit_log_file: str = ""

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> ServerConfig:
        """Create a ServerConfig from a configuration dictionary.

        Args:
            config: Dictionary parsed from YAML configuration.

        Returns:
            ServerConfig with defaults for anything not given.

        Raises:
            ConfigError: If a value has the wrong type.
        """
        misp = config.get("misp") or {}
        server = config.get("server") or {}
        audit = config.get("audit") or {}
        defaults = cls()

        return cls(
            misp_url=expand_env_vars(str(misp.get("url", defaults.misp_url))),
            api_key=expand_env_vars(str(misp.get("api_key", defaults.api_key))),
            verify_tls=parse_bool(misp.get("verify_tls", defaults.verify_tls)),
            timeout=_parse_seconds("misp.timeout", misp.get("timeout", defaults.timeout)),
            framing=str(server.get("framing", defaults.framing)),
            tool_timeout=_parse_seconds(
                "server.tool_timeout", server.get("tool_timeout", defaults.tool_timeout)
            ),
            drain_timeout=_parse_seconds(
                "server.drain_timeout", server.get("drain_timeout", defaults.drain_timeout)
            ),
            log_level=str(server.get("log_level", defaults.log_level)).upper(),
            audit_log_file=expand_env_vars(str(audit.get("log_file", defaults.audit_log_file))),
        )

    def with_env(self, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Return a copy with environment variables applied.

        Args:
            environ: Environment mapping (defaults to os.environ).
        """
        environ = os.environ if environ is None else environ
        changes: dict[str, Any] = {}
        for var, name in ENV_VARS.items():
            raw = environ.get(var)
            if raw is None or raw == "":
                continue
            if name == "verify_tls":
                changes[name] = parse_bool(raw)
            elif name == "timeout":
                changes[name] = _parse_seconds(var, raw)
            else:
                changes[name] = raw
        return dataclasses.replace(self, **changes)

    def with_overrides(self, **overrides: Any) -> ServerConfig:
        """Return a copy with the non-None overrides applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)

    def validate(self) -> None:
        """Check the configuration is usable.

        Raises:
            ConfigError: Describing the first problem found.
        """
        if not self.misp_url:
            raise ConfigError("MISP URL is required (misp.url, MISP_URL or --misp-url)")
        if not self.misp_url.startswith(("http://", "https://")):
            raise ConfigError(f"MISP URL must start with http:// or https://: {self.misp_url}")
        if not self.api_key:
            raise ConfigError("MISP API key is required (misp.api_key, MISP_API_KEY or --api-key)")
        for name in ("timeout", "tool_timeout", "drain_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.framing not in FRAMINGS:
            raise ConfigError(
                f"Unknown framing '{self.framing}', expected one of: {', '.join(FRAMINGS)}"
            )
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level '{self.log_level}'")


def load_config_file(path: Path) -> ServerConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the configuration YAML file.

    Returns:
        ServerConfig instance.

    Raises:
        ConfigError: If the file cannot be found or parsed.
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse config YAML: {e}") from e

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError("Config must be a YAML mapping")

    return ServerConfig.from_dict(config)


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ServerConfig:
    """Build the effective configuration.

    Args:
        path: Optional YAML file.
        environ: Environment mapping (defaults to os.environ).
        **overrides: Command-line values; None means "not given".

    Returns:
        Validated ServerConfig.

    Raises:
        ConfigError: If any source is invalid or the result is incomplete.
    """
    config = load_config_file(path) if path is not None else ServerConfig()
    config = config.with_env(environ).with_overrides(**overrides)
    config.validate()
    return config
