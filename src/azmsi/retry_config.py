"""Configuration for retry logic.

Retry settings for Azure CLI calls, role assignments and SSH readiness.
All values can be overridden through AZMSI_RETRY_* environment variables.
"""

import os
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """Retry configuration settings."""

    # Azure CLI operations
    azure_cli_max_attempts: int = 3
    azure_cli_initial_delay: float = 2.0
    azure_cli_max_delay: float = 30.0

    # Role assignments (new identities take a while to replicate)
    role_assignment_max_attempts: int = 6
    role_assignment_initial_delay: float = 10.0
    role_assignment_max_delay: float = 60.0

    # SSH readiness
    ssh_ready_timeout: int = 300
    ssh_ready_interval: int = 5

    jitter_enabled: bool = True

    @classmethod
    def from_environment(cls) -> "RetryConfig":
        """Load retry configuration from environment variables.

        Environment variables (all optional):
            AZMSI_RETRY_MAX_ATTEMPTS: Azure CLI max attempts (default: 3)
            AZMSI_RETRY_INITIAL_DELAY: Azure CLI initial delay in seconds (default: 2.0)
            AZMSI_RETRY_MAX_DELAY: Azure CLI max delay in seconds (default: 30.0)
            AZMSI_RETRY_ROLE_MAX_ATTEMPTS: Role assignment attempts (default: 6)
            AZMSI_RETRY_SSH_TIMEOUT: Seconds to wait for SSH (default: 300)
            AZMSI_RETRY_JITTER_ENABLED: Enable jitter (default: true)

        Returns:
            RetryConfig with values from environment or defaults
        """
        return cls(
            azure_cli_max_attempts=int(os.getenv("AZMSI_RETRY_MAX_ATTEMPTS", "3")),
            azure_cli_initial_delay=float(os.getenv("AZMSI_RETRY_INITIAL_DELAY", "2.0")),
            azure_cli_max_delay=float(os.getenv("AZMSI_RETRY_MAX_DELAY", "30.0")),
            role_assignment_max_attempts=int(os.getenv("AZMSI_RETRY_ROLE_MAX_ATTEMPTS", "6")),
            role_assignment_initial_delay=float(
                os.getenv("AZMSI_RETRY_ROLE_INITIAL_DELAY", "10.0")
            ),
            role_assignment_max_delay=float(os.getenv("AZMSI_RETRY_ROLE_MAX_DELAY", "60.0")),
            ssh_ready_timeout=int(os.getenv("AZMSI_RETRY_SSH_TIMEOUT", "300")),
            ssh_ready_interval=int(os.getenv("AZMSI_RETRY_SSH_INTERVAL", "5")),
            jitter_enabled=os.getenv("AZMSI_RETRY_JITTER_ENABLED", "true").lower() == "true",
        )


# Global configuration instance (lazily loaded)
_config: RetryConfig | None = None


def get_retry_config() -> RetryConfig:
    """Get global retry configuration, loading it from the environment on first access."""
    global _config
    if _config is None:
        _config = RetryConfig.from_environment()
    return _config


def reset_retry_config() -> None:
    """Reset global retry configuration.

    Forces reload from environment on next access.
    """
    global _config
    _config = None


__all__ = ["RetryConfig", "get_retry_config", "reset_retry_config"]
