"""Azure authentication handler module.

This module delegates all authentication to the Azure CLI. It NEVER stores
credentials - tokens stay in ~/.azure/ where az CLI keeps them.

Security:
- No credential storage
- Delegates to az CLI
- Validates subscription IDs
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass

from azmsi.azure_cli_executor import run_az_json

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


class AuthenticationError(Exception):
    """Raised when Azure authentication fails."""

    pass


@dataclass
class Subscription:
    """An Azure subscription visible to the signed-in account."""

    id: str
    name: str
    tenant_id: str
    is_default: bool = False
    state: str = "Enabled"

    @classmethod
    def from_az(cls, data: dict) -> "Subscription":
        """Build from an `az account list` / `az account show` entry."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            tenant_id=data.get("tenantId", ""),
            is_default=bool(data.get("isDefault", False)),
            state=data.get("state", "Enabled"),
        )


class AzureAuthenticator:
    """Manage Azure CLI authentication and subscription context."""

    def __init__(self, use_device_code: bool = False):
        """Initialize Azure authenticator.

        Args:
            use_device_code: Use device code flow for `az login` (headless shells)
        """
        self._use_device_code = use_device_code

    def get_current_account(self) -> Subscription | None:
        """Return the active account, or None when not logged in."""
        try:
            result = subprocess.run(
                ["az", "account", "show", "--output", "json"],
                capture_output=True,
                text=True,
                timeout=30,
            )
        except subprocess.TimeoutExpired:
            logger.debug("az account show timed out")
            return None

        if result.returncode != 0:
            logger.debug(f"Not logged in: {result.stderr.strip()}")
            return None

        try:
            return Subscription.from_az(json.loads(result.stdout))
        except (json.JSONDecodeError, KeyError) as e:
            logger.debug(f"Unexpected az account show output: {e}")
            return None

    def ensure_logged_in(self) -> Subscription:
        """Ensure an az CLI session exists, running `az login` if needed.

        `az login` inherits the terminal so the browser/device-code flow
        can interact with the user.

        Returns:
            The active account after login

        Raises:
            AuthenticationError: If login fails
        """
        account = self.get_current_account()
        if account:
            logger.info(f"Already logged in to Azure (tenant {account.tenant_id})")
            return account

        logger.info("No Azure CLI session found, starting az login...")
        cmd = ["az", "login", "--output", "none"]
        if self._use_device_code:
            cmd.append("--use-device-code")

        try:
            result = subprocess.run(cmd)
        except FileNotFoundError as e:
            raise AuthenticationError("Azure CLI not found. Install az CLI first.") from e

        if result.returncode != 0:
            raise AuthenticationError(f"az login failed with exit code {result.returncode}")

        account = self.get_current_account()
        if not account:
            raise AuthenticationError("az login completed but no account is active")
        return account

    def list_subscriptions(self) -> list[Subscription]:
        """List enabled subscriptions, sorted by name.

        Raises:
            AuthenticationError: If the subscriptions cannot be listed
        """
        try:
            data = run_az_json(["az", "account", "list", "--all"], timeout=60)
        except (
            subprocess.CalledProcessError, subprocess.TimeoutExpired, json.JSONDecodeError
        ) as e:
            raise AuthenticationError(f"Failed to list subscriptions: {e}") from e

        subscriptions = [Subscription.from_az(entry) for entry in data or []]
        enabled = [s for s in subscriptions if s.state == "Enabled"]
        return sorted(enabled, key=lambda s: s.name.lower())

    def set_subscription(self, subscription_id: str) -> None:
        """Make subscription_id the active subscription for az CLI.

        Raises:
            AuthenticationError: If the ID is malformed or az rejects it
        """
        if not self.validate_subscription_id(subscription_id):
            raise AuthenticationError(f"Invalid subscription ID: {subscription_id}")

        try:
            subprocess.run(
                ["az", "account", "set", "--subscription", subscription_id],
                capture_output=True,
                text=True,
                timeout=30,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise AuthenticationError(f"Failed to select subscription: {e.stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise AuthenticationError("Timed out selecting subscription") from e

        logger.info(f"Using subscription {subscription_id}")

    @staticmethod
    def validate_subscription_id(subscription_id: str | None) -> bool:
        """Azure subscription IDs are UUIDs."""
        if not subscription_id:
            return False
        return bool(UUID_PATTERN.match(subscription_id))


__all__ = ["AuthenticationError", "AzureAuthenticator", "Subscription"]
