"""
Config Module - Black Box Interface

Purpose: Application configuration management
Interface: get_config(), ConfigModule.get(), ConfigModule.get_config_schema()
Hidden: Config sources, validation logic, environment parsing

Read once at startup. Can be replaced with a different config source.
"""

import os
from typing import Any, Dict, List, Mapping, Optional


# Configuration Contract: Required and Optional Keys
# This defines the black box interface - what the config module guarantees to provide

REQUIRED_CONFIG_KEYS = {
    "host": "Server bind address",
    "port": "Server listen port",
    "log_level": "Logging level (DEBUG, INFO, WARNING, ERROR)",
    "allow_any": "Relay to any non-sensitive host",
    "allow_hosts": "Explicit host allow-list",
    "min_port": "Lowest target port that may be relayed to",
    "max_port": "Highest target port that may be relayed to",
    "idle_timeout_ms": "Idle time in milliseconds before a session is closed",
    "max_connections": "Maximum number of concurrent sessions",
    "connect_timeout_ms": "Timeout in milliseconds for opening the target connection",
    "read_chunk_size": "Maximum bytes read from the target per data message",
}

OPTIONAL_CONFIG_KEYS = {
    "debug": {
        "description": "Enable debug mode (auto reload)",
        "default": False,
    },
    "static_dir": {
        "description": "Directory with the browser client, mounted at / when present",
        "default": "public",
    },
}

TRUTHY = {"1", "true", "yes", "on"}


def parse_flag(value: str) -> bool:
    """Parse an environment flag ("1", "true", "yes", "on" are enabled)."""
    return value.strip().lower() in TRUTHY


def parse_list(value: str) -> List[str]:
    """Split a comma-separated environment value, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


class ConfigModule:
    """Configuration management module."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (used by tests)
        """
        self._environ = os.environ if environ is None else environ
        self._config = self._load_from_env()
        self._validate_required_keys()
        self._validate_values()

    def _getenv(self, key: str, default: str) -> str:
        return self._environ.get(key, default)

    def _validate_required_keys(self) -> None:
        """
        Validate that all required configuration keys are present.

        Raises:
            ValueError: If required keys are missing
        """
        missing_keys = []
        for key in REQUIRED_CONFIG_KEYS:
            if key not in self._config or self._config[key] is None:
                missing_keys.append(key)

        if missing_keys:
            raise ValueError(
                f"Missing required configuration keys: {', '.join(missing_keys)}. "
                f"Check environment variables and deployment configuration."
            )

    def _validate_values(self) -> None:
        """
        Validate value ranges.

        Raises:
            ValueError: If a value is out of range
        """
        for key in ("port", "min_port", "max_port"):
            if not 1 <= self._config[key] <= 65535:
                raise ValueError(f"{key} must be between 1 and 65535, got {self._config[key]}")

        if self._config["min_port"] > self._config["max_port"]:
            raise ValueError(
                f"min_port ({self._config['min_port']}) is greater than "
                f"max_port ({self._config['max_port']})"
            )

        for key in ("idle_timeout_ms", "max_connections", "connect_timeout_ms", "read_chunk_size"):
            if self._config[key] <= 0:
                raise ValueError(f"{key} must be positive, got {self._config[key]}")

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment."""
        try:
            return {
                # Server settings
                "host": self._getenv("HOST", "0.0.0.0"),
                "port": int(self._getenv("PORT", "8080")),
                "log_level": self._getenv("LOG_LEVEL", "INFO").upper(),
                "debug": parse_flag(self._getenv("DEBUG", "false")),
                "static_dir": self._getenv("STATIC_DIR", "public"),
                # Admission settings
                "allow_any": parse_flag(self._getenv("ALLOW_ANY", "0")),
                "allow_hosts": parse_list(self._getenv("ALLOW_HOSTS", "")),
                "min_port": int(self._getenv("MIN_PORT", "1")),
                "max_port": int(self._getenv("MAX_PORT", "65535")),
                # Session settings
                "idle_timeout_ms": int(self._getenv("IDLE_TIMEOUT_MS", "300000")),
                "max_connections": int(self._getenv("MAX_CONN", "50")),
                "connect_timeout_ms": int(self._getenv("CONNECT_TIMEOUT_MS", "10000")),
                "read_chunk_size": int(self._getenv("READ_CHUNK_SIZE", "65536")),
            }
        except ValueError as e:
            raise ValueError(f"Invalid numeric configuration value: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value."""
        return self._config.get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    @staticmethod
    def get_config_schema() -> Dict[str, Any]:
        """
        Get the configuration schema (contract) for this module.

        Returns:
            Dictionary with 'required' and 'optional' key specifications

        Example:
            >>> schema = ConfigModule.get_config_schema()
            >>> print(schema['required']['max_connections'])
            'Maximum number of concurrent sessions'
        """
        return {
            "required": REQUIRED_CONFIG_KEYS.copy(),
            "optional": OPTIONAL_CONFIG_KEYS.copy(),
        }


# Singleton instance
_instance = None


def get_config() -> ConfigModule:
    """Get the configuration module singleton."""
    global _instance
    if _instance is None:
        _instance = ConfigModule()
    return _instance


__all__ = ["get_config", "ConfigModule", "parse_flag", "parse_list"]
