"""Configuration provider following Black Box Design principles."""
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

from ..modules.config import ConfigModule, get_config


@dataclass(frozen=True)
class AdmissionConfig:
    """Admission rule set. Derived once from configuration, never mutated."""
    allow_any: bool = False
    allow_hosts: Tuple[str, ...] = field(default_factory=tuple)
    min_port: int = 1
    max_port: int = 65535


@dataclass
class RelayConfig:
    """Per-session limits."""
    idle_timeout_ms: int = 300_000
    max_connections: int = 50
    connect_timeout_ms: int = 10_000
    read_chunk_size: int = 65536

    @property
    def idle_timeout(self) -> float:
        """Idle timeout in seconds."""
        return self.idle_timeout_ms / 1000

    @property
    def connect_timeout(self) -> float:
        """Connect timeout in seconds."""
        return self.connect_timeout_ms / 1000


@dataclass
class APIConfig:
    """API configuration."""
    port: int
    host: str
    debug: bool
    log_level: str
    static_dir: Optional[str]


class ConfigProvider(Protocol):
    """Protocol for configuration providers."""

    def get_admission_config(self) -> AdmissionConfig:
        """Get admission rules."""
        ...

    def get_relay_config(self) -> RelayConfig:
        """Get relay limits."""
        ...

    def get_api_config(self) -> APIConfig:
        """Get API configuration."""
        ...


class EnvConfigProvider:
    """Environment-based configuration provider."""

    def __init__(self, config: Optional[ConfigModule] = None):
        self._config = config or get_config()

    def get_admission_config(self) -> AdmissionConfig:
        """Get admission rules from environment variables."""
        return AdmissionConfig(
            allow_any=self._config.get("allow_any"),
            allow_hosts=tuple(self._config.get("allow_hosts")),
            min_port=self._config.get("min_port"),
            max_port=self._config.get("max_port"),
        )

    def get_relay_config(self) -> RelayConfig:
        """Get relay limits from environment variables."""
        return RelayConfig(
            idle_timeout_ms=self._config.get("idle_timeout_ms"),
            max_connections=self._config.get("max_connections"),
            connect_timeout_ms=self._config.get("connect_timeout_ms"),
            read_chunk_size=self._config.get("read_chunk_size"),
        )

    def get_api_config(self) -> APIConfig:
        """Get API configuration from environment variables."""
        return APIConfig(
            port=self._config.get("port"),
            host=self._config.get("host"),
            debug=self._config.get("debug", False),
            log_level=self._config.get("log_level"),
            static_dir=self._config.get("static_dir") or None,
        )


@dataclass
class StaticConfigProvider:
    """Fixed configuration, for embedding and tests."""
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    api: APIConfig = field(
        default_factory=lambda: APIConfig(
            port=8080, host="0.0.0.0", debug=False, log_level="INFO", static_dir=None
        )
    )

    def get_admission_config(self) -> AdmissionConfig:
        return self.admission

    def get_relay_config(self) -> RelayConfig:
        return self.relay

    def get_api_config(self) -> APIConfig:
        return self.api
