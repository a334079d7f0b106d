"""Configuration management for the DNS migration orchestrator."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import (
    DEFAULT_BACKOFF_MAX,
    DEFAULT_BACKOFF_MIN,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_LEASE_TTL,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_STATE_DIR,
    LEASE_DIRNAME,
    PHASE_LOG_FILENAME,
)


@dataclass
class RetryConfig:
    """
    Retry policy for Provisioner and DnsAdmin calls.

    Only transient failures (timeouts, 5xx, rate limits) are retried.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS  # Capped at 5 by CallPolicy
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    backoff_min: float = DEFAULT_BACKOFF_MIN
    backoff_max: float = DEFAULT_BACKOFF_MAX


@dataclass
class ProbeConfig:
    """Retry policy for link confirmation probes."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    backoff_min: float = DEFAULT_BACKOFF_MIN
    backoff_max: float = DEFAULT_BACKOFF_MAX
    timeout: float = 10.0  # Seconds per directional probe


@dataclass
class CollaboratorConfig:
    """Connection settings for the external control plane."""

    base_url: str | None = None
    token: str | None = None
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    verify_ssl: bool = True
    max_concurrency: int = 10  # Concurrent pushes within a phase


@dataclass
class LeaseConfig:
    """Exclusive orchestration lease."""

    directory: str = f"{DEFAULT_STATE_DIR}/{LEASE_DIRNAME}"
    ttl_seconds: float = DEFAULT_LEASE_TTL


@dataclass
class StateConfig:
    """Durable state owned by the orchestrator."""

    phase_log: str = f"{DEFAULT_STATE_DIR}/{PHASE_LOG_FILENAME}"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"
    file: Path | None = None


@dataclass
class OrchestratorConfig:
    """
    Complete configuration for the orchestrator.

    This combines all configuration sections.
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    collaborator: CollaboratorConfig = field(default_factory=CollaboratorConfig)
    lease: LeaseConfig = field(default_factory=LeaseConfig)
    state: StateConfig = field(default_factory=StateConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "OrchestratorConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            OrchestratorConfig instance
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        logging_data = dict(data.get("logging") or {})
        if logging_data.get("file"):
            logging_data["file"] = Path(logging_data["file"])

        try:
            return cls(
                retry=RetryConfig(**(data.get("retry") or {})),
                probe=ProbeConfig(**(data.get("probe") or {})),
                collaborator=CollaboratorConfig(**(data.get("collaborator") or {})),
                lease=LeaseConfig(**(data.get("lease") or {})),
                state=StateConfig(**(data.get("state") or {})),
                logging=LoggingConfig(**logging_data),
            )
        except TypeError as e:
            raise ValueError(f"Unknown configuration key in {config_path}: {e}") from e

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        The API token is never written.
        """
        collaborator = {k: v for k, v in self.collaborator.__dict__.items() if k != "token"}
        data = {
            "retry": self.retry.__dict__,
            "probe": self.probe.__dict__,
            "collaborator": collaborator,
            "lease": self.lease.__dict__,
            "state": self.state.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            DNSMIGRATE_ENDPOINT: Control-plane base URL
            DNSMIGRATE_TOKEN: Control-plane bearer token
            DNSMIGRATE_VERIFY_SSL: Verify TLS (default: true)
            DNSMIGRATE_CALL_TIMEOUT: Seconds per collaborator call
            DNSMIGRATE_STATE_DIR: Directory for the phase log and lease
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: console or json (default: console)

        Returns:
            OrchestratorConfig instance
        """
        verify_ssl_str = os.environ.get("DNSMIGRATE_VERIFY_SSL", "true").lower()
        collaborator = CollaboratorConfig(
            base_url=os.environ.get("DNSMIGRATE_ENDPOINT"),
            token=os.environ.get("DNSMIGRATE_TOKEN"),
            call_timeout=float(os.environ.get("DNSMIGRATE_CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT)),
            verify_ssl=verify_ssl_str not in ("false", "0", "no", "off"),
        )

        state_dir = os.environ.get("DNSMIGRATE_STATE_DIR", DEFAULT_STATE_DIR)
        return cls(
            collaborator=collaborator,
            lease=LeaseConfig(directory=f"{state_dir}/{LEASE_DIRNAME}"),
            state=StateConfig(phase_log=f"{state_dir}/{PHASE_LOG_FILENAME}"),
            logging=LoggingConfig(
                level=os.environ.get("LOG_LEVEL", "INFO"),
                format=os.environ.get("LOG_FORMAT", "console"),
            ),
        )


def load_config(config_file: Path | None = None) -> OrchestratorConfig:
    """
    Load configuration from file or environment variables.

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return OrchestratorConfig.from_file(config_file)
    return OrchestratorConfig.from_env()
