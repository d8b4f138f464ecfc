"""VM provisioning module.

Creates the Ubuntu VM that exercises the managed identity. The VM gets a
system-assigned identity at creation time (`--assign-identity`), SSH key
authentication only and a Standard SKU public IP so the demo can log in.

Security:
- Input validation (VM names, sizes, regions)
- SSH key authentication only (no passwords)
- Public key never logged (sanitized command logging)
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass

from azmsi.azure_cli_executor import run_az_json
from azmsi.resource_manager import ProvisioningError

logger = logging.getLogger(__name__)

VM_SIZE_PATTERN = re.compile(r"^Standard_[A-Za-z0-9_]+$")
VM_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{0,62}[a-zA-Z0-9]$")
LOCATION_PATTERN = re.compile(r"^[a-z0-9]+$")


@dataclass
class VMConfig:
    """VM configuration parameters."""

    name: str
    resource_group: str
    location: str
    ssh_public_key: str
    size: str = "Standard_B2s"
    image: str = "Ubuntu2204"
    admin_username: str = "azureuser"


@dataclass
class VMDetails:
    """VM provisioning result details."""

    name: str
    resource_group: str
    location: str
    size: str
    public_ip: str | None = None
    private_ip: str | None = None
    id: str | None = None
    principal_id: str | None = None


class VMProvisioner:
    """Provision a Linux VM with a system-assigned managed identity."""

    SKU_ERROR_INDICATORS = (
        "SkuNotAvailable",
        "NotAvailableForSubscription",
        "Capacity Restrictions",
        "requested VM size",
        "currently not available",
    )

    @classmethod
    def create_vm_config(
        cls,
        name: str,
        resource_group: str,
        location: str,
        ssh_public_key: str,
        size: str = "Standard_B2s",
        image: str = "Ubuntu2204",
        admin_username: str = "azureuser",
    ) -> VMConfig:
        """Create VM configuration with validation.

        Raises:
            ValueError: If validation fails
        """
        if not VM_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid VM name: {name}")
        if not cls.validate_vm_size(size):
            raise ValueError(f"Invalid VM size: {size} (expected e.g. Standard_B2s)")
        if not cls.validate_region(location):
            raise ValueError(f"Invalid region: {location}")
        if not ssh_public_key.strip():
            raise ValueError("SSH public key is required")

        return VMConfig(
            name=name,
            resource_group=resource_group,
            location=location.lower(),
            ssh_public_key=ssh_public_key.strip(),
            size=size,
            image=image,
            admin_username=admin_username,
        )

    @staticmethod
    def validate_vm_size(size: str) -> bool:
        return bool(VM_SIZE_PATTERN.match(size))

    @staticmethod
    def validate_region(region: str) -> bool:
        return bool(region) and bool(LOCATION_PATTERN.match(region.lower()))

    @classmethod
    def _is_sku_error(cls, error_message: str) -> bool:
        lowered = error_message.lower()
        return any(indicator.lower() in lowered for indicator in cls.SKU_ERROR_INDICATORS)

    @classmethod
    def build_create_command(cls, config: VMConfig) -> list[str]:
        return [
            "az",
            "vm",
            "create",
            "--name",
            config.name,
            "--resource-group",
            config.resource_group,
            "--location",
            config.location,
            "--size",
            config.size,
            "--image",
            config.image,
            "--admin-username",
            config.admin_username,
            "--authentication-type",
            "ssh",
            "--ssh-key-values",
            config.ssh_public_key,
            "--assign-identity",
            "[system]",
            "--public-ip-sku",
            "Standard",
            "--nsg-rule",
            "SSH",
        ]

    @classmethod
    def provision_vm(cls, config: VMConfig) -> VMDetails:
        """Create the VM and return its addresses and identity.

        Raises:
            ProvisioningError: If creation fails or the VM has no identity/public IP
        """
        logger.info(f"Creating VM {config.name} ({config.size}) in {config.location}")

        try:
            vm_data = run_az_json(cls.build_create_command(config), timeout=900, max_attempts=1)
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr or str(e)
            if cls._is_sku_error(error_msg):
                raise ProvisioningError(
                    f"VM size {config.size} is not available in {config.location}. "
                    "Try another size (--vm-size) or location (--location)."
                ) from e
            raise ProvisioningError(f"VM provisioning failed: {error_msg}") from e
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError("VM provisioning timed out after 15 minutes") from e
        except json.JSONDecodeError as e:
            raise ProvisioningError("Failed to parse VM creation response") from e

        vm_data = vm_data or {}
        identity = vm_data.get("identity") or {}
        principal_id = identity.get("systemAssignedIdentity") or identity.get("principalId")
        if not principal_id:
            principal_id = cls.get_principal_id(config.name, config.resource_group)

        details = VMDetails(
            name=config.name,
            resource_group=config.resource_group,
            location=config.location,
            size=config.size,
            public_ip=vm_data.get("publicIpAddress") or None,
            private_ip=vm_data.get("privateIpAddress") or None,
            id=vm_data.get("id"),
            principal_id=principal_id,
        )

        if not details.public_ip:
            raise ProvisioningError(f"VM {config.name} has no public IP address")

        logger.info(f"VM {details.name} ready at {details.public_ip}")
        return details

    @classmethod
    def get_principal_id(cls, vm_name: str, resource_group: str) -> str:
        """Read the system-assigned identity's principal ID.

        Raises:
            ProvisioningError: If the VM has no system-assigned identity
        """
        try:
            identity = run_az_json(
                ["az", "vm", "identity", "show", "--name", vm_name, "--resource-group", resource_group]
            )
        except (
            subprocess.CalledProcessError, subprocess.TimeoutExpired, json.JSONDecodeError
        ) as e:
            raise ProvisioningError(f"Failed to read identity of VM {vm_name}: {e}") from e

        principal_id = (identity or {}).get("principalId")
        if not principal_id:
            raise ProvisioningError(f"VM {vm_name} has no system-assigned managed identity")
        return principal_id


__all__ = ["VMConfig", "VMDetails", "VMProvisioner"]
