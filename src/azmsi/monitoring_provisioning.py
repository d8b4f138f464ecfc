"""Application Insights + Log Analytics provisioning.

Creates a Log Analytics workspace and a workspace-based Application Insights
component on top of it. The `application-insights` az CLI extension must be
installed (see ResourceManager.ensure_extension).

Roles the VM identity needs for the probe script:
- Monitoring Metrics Publisher on the component (Entra ID authenticated ingestion)
- Log Analytics Reader on the workspace (query API)
"""

import json
import logging
import subprocess
from dataclasses import dataclass

from azmsi.azure_cli_executor import run_az_json
from azmsi.resource_manager import ProvisioningError

logger = logging.getLogger(__name__)

APP_INSIGHTS_EXTENSION = "application-insights"
GLOBAL_INGESTION_ENDPOINT = "https://dc.services.visualstudio.com/"

INGESTION_ROLE = "Monitoring Metrics Publisher"
QUERY_ROLE = "Log Analytics Reader"


@dataclass
class MonitoringResources:
    """Identifiers of the monitoring resources of a run."""

    workspace_id: str
    workspace_customer_id: str
    component_id: str
    instrumentation_key: str
    connection_string: str
    ingestion_endpoint: str


def parse_connection_string(connection_string: str) -> dict[str, str]:
    """Split an Application Insights connection string into its parts.

    Example:
        >>> parse_connection_string("InstrumentationKey=abc;IngestionEndpoint=https://x/")
        {'InstrumentationKey': 'abc', 'IngestionEndpoint': 'https://x/'}
    """
    parts: dict[str, str] = {}
    for segment in connection_string.split(";"):
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        if key.strip():
            parts[key.strip()] = value.strip()
    return parts


def ingestion_endpoint_from(connection_string: str) -> str:
    """Ingestion endpoint with a trailing slash, defaulting to the global endpoint."""
    endpoint = parse_connection_string(connection_string).get("IngestionEndpoint")
    if not endpoint:
        return GLOBAL_INGESTION_ENDPOINT
    return endpoint if endpoint.endswith("/") else endpoint + "/"


def create_log_analytics_workspace(name: str, resource_group: str, location: str) -> dict:
    logger.info(f"Creating Log Analytics workspace {name}")
    return run_az_json(
        [
            "az",
            "monitor",
            "log-analytics",
            "workspace",
            "create",
            "--resource-group",
            resource_group,
            "--workspace-name",
            name,
            "--location",
            location,
        ],
        timeout=600,
    )


def create_app_insights_component(
    name: str, resource_group: str, location: str, workspace_id: str
) -> dict:
    logger.info(f"Creating Application Insights component {name}")
    return run_az_json(
        [
            "az",
            "monitor",
            "app-insights",
            "component",
            "create",
            "--app",
            name,
            "--resource-group",
            resource_group,
            "--location",
            location,
            "--kind",
            "web",
            "--application-type",
            "web",
            "--workspace",
            workspace_id,
        ],
        timeout=600,
    )


def provision_monitoring(
    workspace_name: str, component_name: str, resource_group: str, location: str
) -> MonitoringResources:
    """Create the workspace and the component bound to it.

    Raises:
        ProvisioningError: If either resource cannot be created
    """
    try:
        workspace = create_log_analytics_workspace(workspace_name, resource_group, location) or {}
        if not workspace.get("id") or not workspace.get("customerId"):
            raise ProvisioningError(f"Workspace {workspace_name} returned no id/customerId")

        component = (
            create_app_insights_component(component_name, resource_group, location, workspace["id"])
            or {}
        )
    except subprocess.CalledProcessError as e:
        raise ProvisioningError(f"Monitoring provisioning failed: {e.stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ProvisioningError("Monitoring provisioning timed out") from e
    except json.JSONDecodeError as e:
        raise ProvisioningError("Failed to parse monitoring provisioning response") from e

    connection_string = component.get("connectionString") or ""
    instrumentation_key = component.get("instrumentationKey") or parse_connection_string(
        connection_string
    ).get("InstrumentationKey", "")
    if not component.get("id") or not instrumentation_key:
        raise ProvisioningError(f"Component {component_name} returned no id/instrumentation key")

    return MonitoringResources(
        workspace_id=workspace["id"],
        workspace_customer_id=workspace["customerId"],
        component_id=component["id"],
        instrumentation_key=instrumentation_key,
        connection_string=connection_string,
        ingestion_endpoint=ingestion_endpoint_from(connection_string),
    )


__all__ = [
    "APP_INSIGHTS_EXTENSION",
    "INGESTION_ROLE",
    "QUERY_ROLE",
    "MonitoringResources",
    "ingestion_endpoint_from",
    "parse_connection_string",
    "provision_monitoring",
]
