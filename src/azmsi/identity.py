"""Role assignments for the VM's managed identity.

A system-assigned identity is created together with the VM, but Azure AD
takes a while to replicate the new service principal. Until it has, role
assignment calls fail with PrincipalNotFound, so those errors are retried.
Passing --assignee-object-id together with --assignee-principal-type skips
the Graph lookup that would otherwise fail for the same reason.
"""

import json
import logging
import subprocess
from dataclasses import dataclass

from azmsi.azure_cli_executor import run_az_json
from azmsi.resource_manager import ProvisioningError
from azmsi.retry_config import get_retry_config
from azmsi.retry_handler import retry_with_exponential_backoff

logger = logging.getLogger(__name__)

REPLICATION_ERRORS = ("PrincipalNotFound", "does not exist in the directory")


@dataclass
class RoleAssignment:
    """A role granted to a principal at a scope."""

    role: str
    scope: str
    principal_id: str
    id: str | None = None


def _is_replication_error(error: Exception) -> bool:
    stderr = getattr(error, "stderr", None) or ""
    return any(marker in stderr for marker in REPLICATION_ERRORS)


def assign_role(principal_id: str, role: str, scope: str) -> RoleAssignment:
    """Grant role to a service principal at scope.

    Args:
        principal_id: Object ID of the managed identity
        role: Built-in role name, e.g. "Monitoring Metrics Publisher"
        scope: Resource ID the role applies to

    Raises:
        ProvisioningError: If the assignment fails
    """
    if not principal_id:
        raise ProvisioningError("Cannot assign a role without a principal ID")

    config = get_retry_config()

    @retry_with_exponential_backoff(
        max_attempts=config.role_assignment_max_attempts,
        initial_delay=config.role_assignment_initial_delay,
        max_delay=config.role_assignment_max_delay,
        jitter=config.jitter_enabled,
        retryable_exceptions=(subprocess.CalledProcessError,),
        retry_if=_is_replication_error,
    )
    def _create() -> dict:
        return run_az_json(
            [
                "az",
                "role",
                "assignment",
                "create",
                "--assignee-object-id",
                principal_id,
                "--assignee-principal-type",
                "ServicePrincipal",
                "--role",
                role,
                "--scope",
                scope,
            ],
            max_attempts=1,
        )

    logger.info(f"Assigning '{role}' to {principal_id}")
    try:
        data = _create() or {}
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Failed to assign role '{role}': {e.stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ProvisioningError(f"Timed out assigning role '{role}'") from e
    except json.JSONDecodeError as e:
        raise ProvisioningError(f"Failed to parse role assignment response for '{role}'") from e

    return RoleAssignment(role=role, scope=scope, principal_id=principal_id, id=data.get("id"))


__all__ = ["RoleAssignment", "assign_role"]
