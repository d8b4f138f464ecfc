"""Resource group, CLI extension and resource provider management.

The existence checks every demo flow performs before creating anything:
- Is the az CLI extension installed?
- Does the resource group exist?
- Is the resource provider registered in the subscription?

Provider registration is asynchronous on Azure's side. Instead of sleeping a
fixed amount of time after `az provider register`, the registration state is
polled until it reads "Registered" or a timeout is reached.
"""

import logging
import subprocess
import time

from azmsi.azure_cli_executor import run_az_command

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Raised when creating or preparing Azure resources fails."""

    pass


class ResourceManager:
    """Control-plane helpers shared by both demo flows."""

    REGISTERED = "Registered"

    @classmethod
    def resource_group_exists(cls, name: str) -> bool:
        result = run_az_command(["az", "group", "exists", "--name", name], timeout=30)
        return result.stdout.strip().lower() == "true"

    @classmethod
    def ensure_resource_group(cls, name: str, location: str) -> bool:
        """Create the resource group unless it already exists.

        Returns:
            True if the group was created, False if it already existed

        Raises:
            ProvisioningError: If creation fails
        """
        try:
            if cls.resource_group_exists(name):
                logger.info(f"Resource group {name} already exists")
                return False

            logger.info(f"Creating resource group {name} in {location}")
            run_az_command(
                [
                    "az",
                    "group",
                    "create",
                    "--name",
                    name,
                    "--location",
                    location,
                    "--tags",
                    "created-by=azmsi",
                    "--output",
                    "none",
                ],
                timeout=60,
            )
            return True

        except subprocess.CalledProcessError as e:
            raise ProvisioningError(f"Failed to create resource group {name}: {e.stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timed out creating resource group {name}") from e

    @classmethod
    def ensure_extension(cls, name: str) -> bool:
        """Install an az CLI extension if it is missing.

        Returns:
            True if the extension was installed, False if already present

        Raises:
            ProvisioningError: If installation fails
        """
        try:
            show = run_az_command(
                ["az", "extension", "show", "--name", name, "--output", "none"],
                timeout=30,
                max_attempts=1,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timed out checking az extension {name}") from e
        if show.returncode == 0:
            logger.debug(f"az extension {name} already installed")
            return False

        logger.info(f"Installing az CLI extension: {name}")
        try:
            run_az_command(
                ["az", "extension", "add", "--name", name, "--yes", "--output", "none"],
                timeout=300,
            )
        except subprocess.CalledProcessError as e:
            raise ProvisioningError(f"Failed to install az extension {name}: {e.stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timed out installing az extension {name}") from e
        return True

    @classmethod
    def get_provider_state(cls, namespace: str) -> str:
        result = run_az_command(
            [
                "az",
                "provider",
                "show",
                "--namespace",
                namespace,
                "--query",
                "registrationState",
                "--output",
                "tsv",
            ],
            timeout=60,
        )
        return result.stdout.strip()

    @classmethod
    def ensure_provider_registered(
        cls, namespace: str, poll_interval: int = 30, timeout: int = 600
    ) -> bool:
        """Register a resource provider and wait until it is usable.

        Args:
            namespace: Provider namespace, e.g. "Microsoft.Insights"
            poll_interval: Seconds between registration state checks
            timeout: Maximum seconds to wait for "Registered"

        Returns:
            True if registration was triggered, False if already registered

        Raises:
            ProvisioningError: If registration fails or does not finish in time
        """
        try:
            state = cls.get_provider_state(namespace)
            if state == cls.REGISTERED:
                logger.debug(f"Provider {namespace} already registered")
                return False

            logger.info(f"Registering resource provider {namespace} (state: {state or 'unknown'})")
            run_az_command(
                ["az", "provider", "register", "--namespace", namespace, "--output", "none"],
                timeout=120,
            )

            poll_interval = max(1, poll_interval)
            waited = 0
            while waited < timeout:
                sleep_for = min(poll_interval, timeout - waited)
                logger.info(f"Waiting {sleep_for}s for {namespace} registration...")
                time.sleep(sleep_for)
                waited += sleep_for

                state = cls.get_provider_state(namespace)
                if state == cls.REGISTERED:
                    logger.info(f"Provider {namespace} registered after {waited}s")
                    return True
                logger.debug(f"Provider {namespace} state: {state}")

        except subprocess.CalledProcessError as e:
            raise ProvisioningError(f"Failed to register provider {namespace}: {e.stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timed out registering provider {namespace}") from e

        raise ProvisioningError(
            f"Provider {namespace} not registered after {timeout}s (last state: {state})"
        )

    @classmethod
    def delete_resource_group(cls, name: str, no_wait: bool = False) -> None:
        """Delete a resource group and everything in it.

        Raises:
            ProvisioningError: If deletion fails
        """
        cmd = ["az", "group", "delete", "--name", name, "--yes"]
        if no_wait:
            cmd.append("--no-wait")

        logger.info(f"Deleting resource group {name}...")
        try:
            run_az_command(cmd, timeout=1800, max_attempts=1)
        except subprocess.CalledProcessError as e:
            raise ProvisioningError(f"Failed to delete resource group {name}: {e.stderr}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(f"Timed out deleting resource group {name}") from e


__all__ = ["ProvisioningError", "ResourceManager"]
