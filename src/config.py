"""
Configuration module for the resource providers.

Loads configuration from environment variables. Only the CLI entry point
reads the process-wide configuration; providers and the reconciler receive
their collaborators explicitly.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

MIN_DELETE_POLL_INTERVAL = 15  # seconds


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class ArmConfig:
    """Control-plane connection configuration."""

    endpoint: str = "https://management.azure.com"
    subscription_id: str = ""
    access_token: str = field(default="", repr=False)  # Never log token
    request_timeout: int = 60  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        subscription_id = os.getenv("ARM_SUBSCRIPTION_ID", "")
        if not subscription_id:
            raise ValueError(
                "ARM_SUBSCRIPTION_ID environment variable must be set. "
                "Resources cannot be addressed without a subscription."
            )

        return cls(
            endpoint=os.getenv("ARM_ENDPOINT", "https://management.azure.com").rstrip(
                "/"
            ),
            subscription_id=subscription_id,
            access_token=os.getenv("ARM_ACCESS_TOKEN", ""),
            request_timeout=int(os.getenv("ARM_REQUEST_TIMEOUT", "60")),
        )


@dataclass
class PollingConfig:
    """Polling intervals for long-running operations."""

    delete_poll_interval: int = MIN_DELETE_POLL_INTERVAL  # seconds
    operation_poll_interval: int = 10  # seconds

    def __post_init__(self):
        # The delete confirmation poll never runs faster than the floor
        if self.delete_poll_interval < MIN_DELETE_POLL_INTERVAL:
            self.delete_poll_interval = MIN_DELETE_POLL_INTERVAL

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            delete_poll_interval=int(
                os.getenv("DELETE_POLL_INTERVAL", str(MIN_DELETE_POLL_INTERVAL))
            ),
            operation_poll_interval=int(os.getenv("OPERATION_POLL_INTERVAL", "10")),
        )


@dataclass
class FeaturesConfig:
    """Behavioural feature toggles."""

    purge_soft_deleted_workspace_on_destroy: bool = False

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            purge_soft_deleted_workspace_on_destroy=_env_bool(
                "PURGE_SOFT_DELETED_WORKSPACE_ON_DESTROY"
            ),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(log_level=os.getenv("LOG_LEVEL", "INFO").upper())


@dataclass
class Config:
    """Main configuration object."""

    arm: ArmConfig
    polling: PollingConfig
    features: FeaturesConfig
    logging: LoggingConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            arm=ArmConfig.from_env(),
            polling=PollingConfig.from_env(),
            features=FeaturesConfig.from_env(),
            logging=LoggingConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            arm=ArmConfig(),
            polling=PollingConfig(),
            features=FeaturesConfig(),
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
