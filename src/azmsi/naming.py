"""Resource naming for a demo run.

Every resource of a run shares one prefix and one random suffix so a run's
resources are easy to spot in the portal and never collide with a previous
run that is still being deleted.

Azure naming rules that matter here:
- Storage accounts: 3-24 chars, lowercase letters and digits only, globally unique
- Synapse workspaces: 1-50 chars, lowercase letters, digits and hyphens, globally unique
- SQL pools: up to 60 chars, letters, digits and underscores
- VMs (Linux): up to 64 chars, no underscores
"""

import re
import secrets
import string
from dataclasses import dataclass

PREFIX_PATTERN = re.compile(r"^[a-z][a-z0-9-]{0,18}[a-z0-9]$")
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class ResourceNames:
    """Names for every resource a demo run may create."""

    resource_group: str
    vm: str
    log_analytics_workspace: str
    app_insights: str
    storage_account: str
    file_system: str
    synapse_workspace: str
    sql_pool: str


def generate_suffix(length: int = 6) -> str:
    """Random lowercase alphanumeric suffix."""
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def build_resource_names(prefix: str, suffix: str | None = None) -> ResourceNames:
    """Derive all resource names from a prefix and suffix.

    Args:
        prefix: 2-20 chars, lowercase letters, digits and hyphens, starting with a
            letter and not ending with a hyphen
        suffix: Lowercase alphanumeric run suffix of at most 12 chars (random when omitted)

    Raises:
        ValueError: If prefix or suffix is invalid
    """
    prefix = prefix.lower()
    if not PREFIX_PATTERN.match(prefix):
        raise ValueError(
            f"Invalid prefix '{prefix}': use 2-20 lowercase letters, digits or hyphens, "
            "starting with a letter and not ending with a hyphen"
        )

    suffix = suffix if suffix is not None else generate_suffix()
    if not suffix or len(suffix) > 12 or not suffix.isalnum() or suffix.lower() != suffix:
        raise ValueError(f"Invalid suffix '{suffix}': use lowercase letters and digits")

    compact = prefix.replace("-", "")
    base = f"{prefix}-{suffix}"

    return ResourceNames(
        resource_group=f"{base}-rg",
        vm=f"{base}-vm",
        log_analytics_workspace=f"{base}-law",
        app_insights=f"{base}-ai",
        storage_account=f"{compact[: 22 - len(suffix)]}{suffix}sa",
        file_system="synapsefs",
        synapse_workspace=f"{base}-syn"[:50],
        sql_pool=f"{compact}_{suffix}_pool"[:60],
    )


__all__ = ["ResourceNames", "build_resource_names", "generate_suffix"]
