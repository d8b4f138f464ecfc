"""Synapse Analytics workspace + dedicated SQL pool provisioning.

A Synapse workspace needs an ADLS Gen2 storage account (hierarchical
namespace enabled) for its primary file system; the workspace creates the
file system itself. The dedicated SQL pool is created at the smallest
performance level.

The VM's managed identity is made the workspace's Entra ID SQL admin so it
can log in to the pool without a password, and its public IP is added to the
workspace firewall.

Security:
- The SQL admin password is generated per run and never logged
  (--sql-admin-login-password is redacted by the command sanitizer)
"""

import json
import logging
import secrets
import string
import subprocess
from dataclasses import dataclass

from azmsi.azure_cli_executor import run_az_command, run_az_json
from azmsi.resource_manager import ProvisioningError

logger = logging.getLogger(__name__)

SQL_POOL_PERFORMANCE_LEVEL = "DW100c"
WORKSPACE_READ_ROLE = "Reader"
PASSWORD_SPECIALS = "!#%*-_+="


@dataclass
class SynapseResources:
    """Identifiers of the Synapse resources of a run."""

    workspace_name: str
    workspace_id: str
    sql_endpoint: str
    dev_endpoint: str
    sql_pool: str
    storage_account_id: str


def generate_sql_password(length: int = 24) -> str:
    """Random password satisfying Azure SQL complexity rules.

    Contains upper and lower case letters, digits and symbols. Starts with a
    letter so az never parses it as an option.
    """
    if length < 12:
        raise ValueError("SQL admin password must be at least 12 characters")

    alphabet = string.ascii_letters + string.digits + PASSWORD_SPECIALS
    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(PASSWORD_SPECIALS),
    ]
    rest = [secrets.choice(alphabet) for _ in range(length - len(required) - 1)]
    chars = required + rest
    secrets.SystemRandom().shuffle(chars)
    return secrets.choice(string.ascii_letters) + "".join(chars)


def create_storage_account(name: str, resource_group: str, location: str) -> dict:
    logger.info(f"Creating ADLS Gen2 storage account {name}")
    return run_az_json(
        [
            "az",
            "storage",
            "account",
            "create",
            "--name",
            name,
            "--resource-group",
            resource_group,
            "--location",
            location,
            "--sku",
            "Standard_LRS",
            "--kind",
            "StorageV2",
            "--hns",
            "true",
            "--min-tls-version",
            "TLS1_2",
        ],
        timeout=600,
    )


def create_workspace(
    name: str,
    resource_group: str,
    location: str,
    storage_account: str,
    file_system: str,
    sql_admin_user: str,
    sql_admin_password: str,
) -> dict:
    logger.info(f"Creating Synapse workspace {name} (this takes several minutes)")
    return run_az_json(
        [
            "az",
            "synapse",
            "workspace",
            "create",
            "--name",
            name,
            "--resource-group",
            resource_group,
            "--location",
            location,
            "--storage-account",
            storage_account,
            "--file-system",
            file_system,
            "--sql-admin-login-user",
            sql_admin_user,
            "--sql-admin-login-password",
            sql_admin_password,
        ],
        timeout=1800,
        max_attempts=1,
    )


def create_sql_pool(name: str, workspace_name: str, resource_group: str) -> dict:
    logger.info(f"Creating dedicated SQL pool {name} ({SQL_POOL_PERFORMANCE_LEVEL})")
    return run_az_json(
        [
            "az",
            "synapse",
            "sql",
            "pool",
            "create",
            "--name",
            name,
            "--workspace-name",
            workspace_name,
            "--resource-group",
            resource_group,
            "--performance-level",
            SQL_POOL_PERFORMANCE_LEVEL,
        ],
        timeout=1800,
        max_attempts=1,
    )


def provision_synapse(
    workspace_name: str,
    storage_account: str,
    file_system: str,
    sql_pool: str,
    resource_group: str,
    location: str,
    sql_admin_user: str,
    sql_admin_password: str,
) -> SynapseResources:
    """Create storage account, workspace and dedicated SQL pool.

    Raises:
        ProvisioningError: If any resource cannot be created
    """
    try:
        storage = create_storage_account(storage_account, resource_group, location) or {}
        workspace = (
            create_workspace(
                workspace_name,
                resource_group,
                location,
                storage_account,
                file_system,
                sql_admin_user,
                sql_admin_password,
            )
            or {}
        )
        create_sql_pool(sql_pool, workspace_name, resource_group)
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Synapse provisioning failed: {e.stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ProvisioningError("Synapse provisioning timed out") from e
    except json.JSONDecodeError as e:
        raise ProvisioningError("Failed to parse Synapse provisioning response") from e

    endpoints = workspace.get("connectivityEndpoints") or {}
    sql_endpoint = endpoints.get("sql") or f"{workspace_name}.sql.azuresynapse.net"
    if not workspace.get("id"):
        raise ProvisioningError(f"Workspace {workspace_name} returned no id")

    return SynapseResources(
        workspace_name=workspace_name,
        workspace_id=workspace["id"],
        sql_endpoint=sql_endpoint,
        dev_endpoint=endpoints.get("dev") or f"https://{workspace_name}.dev.azuresynapse.net",
        sql_pool=sql_pool,
        storage_account_id=storage.get("id", ""),
    )


def allow_client_ip(workspace_name: str, resource_group: str, ip_address: str) -> None:
    """Open the workspace firewall for a single IP address.

    Raises:
        ProvisioningError: If the rule cannot be created
    """
    rule_name = "azmsi-" + ip_address.replace(".", "-")
    logger.info(f"Allowing {ip_address} through the {workspace_name} firewall")
    try:
        run_az_command(
            [
                "az",
                "synapse",
                "workspace",
                "firewall-rule",
                "create",
                "--name",
                rule_name,
                "--workspace-name",
                workspace_name,
                "--resource-group",
                resource_group,
                "--start-ip-address",
                ip_address,
                "--end-ip-address",
                ip_address,
                "--output",
                "none",
            ],
            timeout=600,
        )
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Failed to create firewall rule: {e.stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ProvisioningError(f"Timed out creating firewall rule for {ip_address}") from e


def set_sql_aad_admin(
    workspace_name: str, resource_group: str, display_name: str, object_id: str
) -> None:
    """Make a principal the workspace's Entra ID SQL administrator.

    Raises:
        ProvisioningError: If the admin cannot be set
    """
    logger.info(f"Setting {display_name} as Entra ID SQL admin of {workspace_name}")
    try:
        run_az_command(
            [
                "az",
                "synapse",
                "sql",
                "ad-admin",
                "create",
                "--workspace-name",
                workspace_name,
                "--resource-group",
                resource_group,
                "--display-name",
                display_name,
                "--object-id",
                object_id,
                "--output",
                "none",
            ],
            timeout=600,
        )
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Failed to set SQL admin: {e.stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ProvisioningError(f"Timed out setting SQL admin of {workspace_name}") from e


__all__ = [
    "SQL_POOL_PERFORMANCE_LEVEL",
    "WORKSPACE_READ_ROLE",
    "SynapseResources",
    "allow_client_ip",
    "generate_sql_password",
    "provision_synapse",
    "set_sql_aad_admin",
]
