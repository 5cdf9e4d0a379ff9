"""
Configuration module for the cloud controller.

Loads configuration from environment variables. Each concern has its own
dataclass section with a ``from_env`` constructor.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_ENDPOINT = "https://api.hetzner.cloud/v1"


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class HCloudConfig:
    """Remote API connection configuration."""

    token: str = field(default="", repr=False)  # Never log token
    endpoint: str = DEFAULT_ENDPOINT
    network_id: Optional[int] = None
    debug: bool = False
    request_timeout: float = 30.0
    application_name: str = "ccm-from-scratch"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        token = os.getenv("HCLOUD_TOKEN", "")
        if not token:
            raise ValueError(
                "HCLOUD_TOKEN environment variable must be set. "
                "API token cannot be empty."
            )

        network_id = None
        raw_network = os.getenv("HCLOUD_NETWORK", "")
        if raw_network:
            try:
                network_id = int(raw_network)
            except ValueError:
                raise ValueError(
                    f"HCLOUD_NETWORK must be an integer network ID, got: {raw_network}"
                )

        return cls(
            token=token,
            endpoint=os.getenv("HCLOUD_ENDPOINT", DEFAULT_ENDPOINT),
            network_id=network_id,
            debug=_env_bool("HCLOUD_DEBUG"),
            request_timeout=float(os.getenv("HCLOUD_REQUEST_TIMEOUT", "30")),
        )


@dataclass
class LoadBalancerConfig:
    """Load balancer creation and convergence configuration."""

    load_balancer_type: str = "lb11"
    location: str = "fsn1"
    # Remove listeners and targets that are no longer desired
    prune: bool = False

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            load_balancer_type=os.getenv("HCLOUD_LOAD_BALANCER_TYPE", "lb11"),
            location=os.getenv("HCLOUD_LOAD_BALANCER_LOCATION", "fsn1"),
            prune=_env_bool("HCLOUD_LOAD_BALANCER_PRUNE"),
        )


@dataclass
class ActionConfig:
    """Waiting behaviour for remote long-running actions."""

    poll_interval: float = 1.0  # initial delay between polls in seconds
    max_poll_interval: float = 10.0
    timeout: Optional[float] = 300.0  # None waits forever

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        timeout: Optional[float] = float(os.getenv("HCLOUD_ACTION_TIMEOUT", "300"))
        if timeout <= 0:
            timeout = None
        return cls(
            poll_interval=float(os.getenv("HCLOUD_ACTION_POLL_INTERVAL", "1")),
            max_poll_interval=float(os.getenv("HCLOUD_ACTION_MAX_POLL_INTERVAL", "10")),
            timeout=timeout,
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    hcloud: HCloudConfig
    load_balancer: LoadBalancerConfig
    actions: ActionConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            hcloud=HCloudConfig.from_env(),
            load_balancer=LoadBalancerConfig.from_env(),
            actions=ActionConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            hcloud=HCloudConfig(),
            load_balancer=LoadBalancerConfig(),
            actions=ActionConfig(),
            logging=LoggingConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
