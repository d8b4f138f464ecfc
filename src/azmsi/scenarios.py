"""Demo flow orchestration.

Each demo run executes the same sequence of blocking steps:

1. Prerequisites check
2. Azure login and subscription selection
3. Parameter collection (prefix, location, resource group)
4. Resource group, CLI extensions and resource providers
5. Scenario resources (App Insights or Synapse)
6. SSH key and VM with a system-assigned managed identity
7. Access for the identity (role assignments, firewall, SQL admin)
8. Probe script executed on the VM over SSH
9. Teardown of the resource group after a countdown

Failures are reported with an exit code; resources that were already
created are still offered for teardown.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import ClassVar

import click
from rich.console import Console

from azmsi.azure_auth import AuthenticationError, AzureAuthenticator, Subscription
from azmsi.config_manager import DemoConfig
from azmsi.identity import RoleAssignment, assign_role
from azmsi.modules.prerequisites import PrerequisiteChecker, PrerequisiteError
from azmsi.modules.progress import StepReporter
from azmsi.modules.ssh_connector import RemoteResult, SSHConfig, SSHConnectionError, SSHConnector
from azmsi.modules.ssh_keys import SSHKeyError, SSHKeyManager, SSHKeyPair
from azmsi.monitoring_provisioning import (
    APP_INSIGHTS_EXTENSION,
    INGESTION_ROLE,
    QUERY_ROLE,
    MonitoringResources,
    provision_monitoring,
)
from azmsi.naming import ResourceNames, build_resource_names
from azmsi.remote_script import RemoteExecError, run_remote_script
from azmsi.resource_manager import ProvisioningError, ResourceManager
from azmsi.retry_config import get_retry_config
from azmsi.subscription_selector import SubscriptionSelectionError, SubscriptionSelector
from azmsi.synapse_provisioning import (
    WORKSPACE_READ_ROLE,
    SynapseResources,
    allow_client_ip,
    generate_sql_password,
    provision_synapse,
    set_sql_aad_admin,
)
from azmsi.teardown import countdown_and_delete, manual_delete_command
from azmsi.vm_provisioning import VMDetails, VMProvisioner

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_PREREQUISITES = 2
EXIT_AUTH = 3
EXIT_PROVISIONING = 4
EXIT_REMOTE = 5
EXIT_INTERRUPTED = 130


@dataclass
class ScenarioOptions:
    """Command-line choices for a demo run; None means prompt or use config."""

    subscription: str | None = None
    resource_group: str | None = None
    location: str | None = None
    prefix: str | None = None
    vm_size: str | None = None
    countdown: int | None = None
    keep: bool = False
    assume_yes: bool = False
    use_device_code: bool = False
    no_wait: bool = False


@dataclass
class RunState:
    """What a run has produced so far."""

    subscription: Subscription | None = None
    names: ResourceNames | None = None
    location: str | None = None
    resource_group_created: bool = False
    resource_group_ready: bool = False
    ssh_keys: SSHKeyPair | None = None
    vm: VMDetails | None = None
    probe_result: RemoteResult | None = None
    role_assignments: list[RoleAssignment] = field(default_factory=list)


class ScenarioOrchestrator:
    """Run one demo flow end to end.

    Subclasses provide the providers, extensions, service resources, access
    grants and probe script values of their scenario.
    """

    title: ClassVar[str] = "managed identity demo"
    script_name: ClassVar[str] = ""
    providers: ClassVar[tuple[str, ...]] = ("Microsoft.Compute", "Microsoft.Network")
    extensions: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        config: DemoConfig,
        options: ScenarioOptions,
        progress: StepReporter | None = None,
        console: Console | None = None,
        authenticator: AzureAuthenticator | None = None,
    ):
        self.config = config
        self.options = options
        self.console = console or Console()
        self.progress = progress or StepReporter(self.console)
        self.auth = authenticator or AzureAuthenticator(use_device_code=options.use_device_code)
        self.state = RunState()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Execute the flow, then tear down.

        Returns:
            Exit code (0 = success, non-zero = error)
        """
        exit_code = self._run_steps()

        if not self.state.resource_group_ready or not self.state.names:
            return exit_code

        resource_group = self.state.names.resource_group
        if self.options.keep:
            self.progress.warn(
                f"Keeping resource group {resource_group}. Delete it with: "
                f"{manual_delete_command(resource_group)}",
            )
            return exit_code

        return self._teardown(exit_code)

    def _run_steps(self) -> int:
        try:
            self.progress.begin("Prerequisites Check")
            self._check_prerequisites()
            self.progress.finish("All prerequisites available")

            self.progress.begin("Azure Authentication")
            subscription = self._authenticate()
            self.progress.finish(f"Using subscription: {subscription.name}")

            self._collect_parameters()
            names = self.state.names
            assert names is not None and self.state.location is not None

            self.progress.begin(f"Preparing resource group {names.resource_group}")
            self._prepare_environment()
            self.progress.finish("Resource group and providers ready")

            self.progress.begin(f"Provisioning {self.title} resources", 600)
            self.provision_service()
            self.progress.finish(f"{self.title} resources created")

            self.progress.begin(f"Provisioning VM {names.vm}", 300)
            vm = self._provision_vm()
            self.progress.finish(f"VM ready at {vm.public_ip} (identity {vm.principal_id})")

            self.progress.begin("Granting access to the managed identity")
            self.grant_access(vm)
            self.progress.finish("Access granted")

            self.progress.begin("Running managed identity probe on the VM", 300)
            result = self._run_probe(vm)
            if not result.success:
                self.progress.fail(f"Probe exited with code {result.exit_code}")
                return EXIT_REMOTE
            self.progress.finish("Probe succeeded")

            self._display_summary()
            return EXIT_OK

        except PrerequisiteError as e:
            self.progress.fail(str(e))
            return EXIT_PREREQUISITES
        except (AuthenticationError, SubscriptionSelectionError) as e:
            self.progress.fail(f"Authentication failed: {e}")
            return EXIT_AUTH
        except (ProvisioningError, SSHKeyError, ValueError) as e:
            self.progress.fail(f"Provisioning failed: {e}")
            return EXIT_PROVISIONING
        except (RemoteExecError, SSHConnectionError) as e:
            self.progress.fail(f"Remote execution failed: {e}")
            return EXIT_REMOTE
        except KeyboardInterrupt:
            self.progress.fail("Cancelled by user")
            return EXIT_INTERRUPTED
        except Exception as e:
            self.progress.fail(f"Unexpected error: {e}")
            logger.exception("Unexpected error in demo flow")
            return EXIT_UNEXPECTED

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _check_prerequisites(self) -> None:
        result = PrerequisiteChecker.check_all()
        if not result.all_available:
            click.echo(
                PrerequisiteChecker.format_missing_message(result.missing, result.platform_name),
                err=True,
            )
            raise PrerequisiteError(f"Missing required tools: {', '.join(result.missing)}")

    def _authenticate(self) -> Subscription:
        self.progress.note("Checking Azure CLI session...")
        self.auth.ensure_logged_in()

        subscriptions = self.auth.list_subscriptions()
        selector = SubscriptionSelector(subscriptions, console=self.console)
        subscription = selector.select(self.options.subscription)

        self.auth.set_subscription(subscription.id)
        self.state.subscription = subscription
        return subscription

    def _ask(self, label: str, default: str) -> str:
        if self.options.assume_yes:
            return default
        return click.prompt(label, default=default, type=str).strip()

    def _collect_parameters(self) -> None:
        """Resolve prefix, location and resource group, prompting where needed."""
        prefix = self.options.prefix
        while self.state.names is None:
            if prefix is None:
                prefix = self._ask("Resource name prefix", self.config.name_prefix)
            try:
                self.state.names = build_resource_names(prefix)
            except ValueError as e:
                if self.options.assume_yes or self.options.prefix:
                    raise
                click.echo(str(e), err=True)
                prefix = None

        location = self.options.location or self._ask("Location", self.config.default_location)
        location = location.strip().lower()
        if not VMProvisioner.validate_region(location):
            raise ValueError(f"Invalid location: {location}")
        self.state.location = location

        resource_group = self.options.resource_group or self._ask(
            "Resource group", self.state.names.resource_group
        )
        self.state.names = dataclasses.replace(self.state.names, resource_group=resource_group)
        logger.info(f"Resources will be created in {resource_group} ({self.state.location})")

    def _prepare_environment(self) -> None:
        names = self.state.names
        assert names is not None and self.state.location is not None

        for extension in self.extensions:
            if ResourceManager.ensure_extension(extension):
                self.progress.note(f"Installed az extension {extension}")

        self.state.resource_group_created = ResourceManager.ensure_resource_group(
            names.resource_group, self.state.location
        )
        self.state.resource_group_ready = True

        for namespace in self.providers:
            if ResourceManager.ensure_provider_registered(
                namespace,
                poll_interval=self.config.provider_poll_interval,
                timeout=self.config.provider_wait_timeout,
            ):
                self.progress.note(f"Registered provider {namespace}")

    def _provision_vm(self) -> VMDetails:
        names = self.state.names
        assert names is not None and self.state.location is not None

        ssh_keys = SSHKeyManager.ensure_key_exists(self.config.ssh_key_path)
        self.state.ssh_keys = ssh_keys

        vm_config = VMProvisioner.create_vm_config(
            name=names.vm,
            resource_group=names.resource_group,
            location=self.state.location,
            ssh_public_key=ssh_keys.public_key_content,
            size=self.options.vm_size or self.config.vm_size,
            image=self.config.vm_image,
            admin_username=self.config.admin_username,
        )
        vm = VMProvisioner.provision_vm(vm_config)
        self.state.vm = vm
        return vm

    def ssh_config(self, vm: VMDetails) -> SSHConfig:
        assert vm.public_ip is not None and self.state.ssh_keys is not None
        return SSHConfig(
            host=vm.public_ip,
            user=self.config.admin_username,
            key_path=self.state.ssh_keys.private_path,
        )

    def _run_probe(self, vm: VMDetails) -> RemoteResult:
        ssh_config = self.ssh_config(vm)
        retry = get_retry_config()

        self.progress.note(f"Waiting for SSH on {ssh_config.host}...")
        if not SSHConnector.wait_for_ssh_ready(
            ssh_config, timeout=retry.ssh_ready_timeout, interval=retry.ssh_ready_interval
        ):
            raise SSHConnectionError(f"SSH on {ssh_config.host} did not become available")

        result = run_remote_script(ssh_config, self.script_name, self.script_values(vm))
        self.state.probe_result = result

        click.echo("----- probe output -----")
        click.echo(result.get_output().rstrip())
        click.echo("------------------------")
        return result

    def _teardown(self, exit_code: int) -> int:
        names = self.state.names
        assert names is not None
        resource_group = names.resource_group

        if not self.state.resource_group_created:
            if self.options.assume_yes or not click.confirm(
                f"Resource group {resource_group} existed before this run. Delete it anyway?",
                default=False,
            ):
                self.progress.warn(f"Keeping pre-existing resource group {resource_group}")
                return exit_code

        countdown = (
            self.options.countdown
            if self.options.countdown is not None
            else self.config.teardown_countdown
        )

        try:
            countdown_and_delete(
                resource_group, seconds=countdown, no_wait=self.options.no_wait, console=self.console
            )
        except ProvisioningError as e:
            self.progress.fail(f"Teardown failed: {e}")
            click.echo(f"Delete it manually with: {manual_delete_command(resource_group)}", err=True)
            return exit_code or EXIT_PROVISIONING
        except KeyboardInterrupt:
            self.progress.fail("Teardown interrupted")
            return EXIT_INTERRUPTED

        return exit_code

    def _display_summary(self) -> None:
        names = self.state.names
        vm = self.state.vm
        assert names is not None and vm is not None

        click.echo("")
        click.echo("=" * 60)
        click.echo(f"{self.title} demo completed")
        click.echo("=" * 60)
        click.echo(f"  Subscription:   {self.state.subscription.name if self.state.subscription else '?'}")
        click.echo(f"  Resource group: {names.resource_group}")
        click.echo(f"  VM:             {vm.name} ({vm.public_ip})")
        click.echo(f"  Identity:       {vm.principal_id}")
        for assignment in self.state.role_assignments:
            resource = assignment.scope.rsplit("/", 1)[-1]
            click.echo(f"  Role:           {assignment.role} on {resource}")
        for label, value in self.summary_lines():
            click.echo(f"  {label + ':':<16}{value}")
        click.echo("=" * 60)

    # ------------------------------------------------------------------
    # Scenario hooks
    # ------------------------------------------------------------------

    def provision_service(self) -> None:
        raise NotImplementedError

    def grant_access(self, vm: VMDetails) -> None:
        raise NotImplementedError

    def script_values(self, vm: VMDetails) -> dict[str, str]:
        raise NotImplementedError

    def summary_lines(self) -> list[tuple[str, str]]:
        return []


class AppInsightsScenario(ScenarioOrchestrator):
    """Application Insights + Log Analytics, probed with Entra ID auth."""

    title = "Application Insights"
    script_name = "appinsights_probe"
    providers = (
        "Microsoft.Compute",
        "Microsoft.Network",
        "Microsoft.OperationalInsights",
        "Microsoft.Insights",
    )
    extensions = (APP_INSIGHTS_EXTENSION,)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.monitoring: MonitoringResources | None = None

    def provision_service(self) -> None:
        names = self.state.names
        assert names is not None and self.state.location is not None
        self.monitoring = provision_monitoring(
            names.log_analytics_workspace,
            names.app_insights,
            names.resource_group,
            self.state.location,
        )

    def grant_access(self, vm: VMDetails) -> None:
        assert self.monitoring is not None and vm.principal_id is not None
        self.state.role_assignments += [
            assign_role(vm.principal_id, INGESTION_ROLE, self.monitoring.component_id),
            assign_role(vm.principal_id, QUERY_ROLE, self.monitoring.workspace_id),
        ]

    def script_values(self, vm: VMDetails) -> dict[str, str]:
        assert self.monitoring is not None
        return {
            "INGESTION_ENDPOINT": self.monitoring.ingestion_endpoint,
            "INSTRUMENTATION_KEY": self.monitoring.instrumentation_key,
            "WORKSPACE_ID": self.monitoring.workspace_customer_id,
        }

    def summary_lines(self) -> list[tuple[str, str]]:
        if not self.monitoring:
            return []
        return [
            ("Workspace", self.monitoring.workspace_customer_id),
            ("Ingestion", self.monitoring.ingestion_endpoint),
        ]


class SynapseScenario(ScenarioOrchestrator):
    """Synapse workspace + dedicated SQL pool, probed with Entra ID auth."""

    title = "Synapse Analytics"
    script_name = "synapse_probe"
    providers = (
        "Microsoft.Compute",
        "Microsoft.Network",
        "Microsoft.Storage",
        "Microsoft.Synapse",
    )

    SQL_ADMIN_USER = "sqladminuser"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.synapse: SynapseResources | None = None

    def provision_service(self) -> None:
        names = self.state.names
        assert names is not None and self.state.location is not None
        self.synapse = provision_synapse(
            workspace_name=names.synapse_workspace,
            storage_account=names.storage_account,
            file_system=names.file_system,
            sql_pool=names.sql_pool,
            resource_group=names.resource_group,
            location=self.state.location,
            sql_admin_user=self.SQL_ADMIN_USER,
            sql_admin_password=generate_sql_password(),
        )

    def grant_access(self, vm: VMDetails) -> None:
        assert self.synapse is not None and self.state.names is not None
        assert vm.public_ip is not None and vm.principal_id is not None
        resource_group = self.state.names.resource_group

        allow_client_ip(self.synapse.workspace_name, resource_group, vm.public_ip)
        set_sql_aad_admin(self.synapse.workspace_name, resource_group, vm.name, vm.principal_id)
        self.state.role_assignments.append(
            assign_role(vm.principal_id, WORKSPACE_READ_ROLE, self.synapse.workspace_id)
        )

    def script_values(self, vm: VMDetails) -> dict[str, str]:
        assert self.synapse is not None
        return {
            "WORKSPACE_RESOURCE_ID": self.synapse.workspace_id,
            "SQL_ENDPOINT": self.synapse.sql_endpoint,
            "SQL_POOL": self.synapse.sql_pool,
        }

    def summary_lines(self) -> list[tuple[str, str]]:
        if not self.synapse:
            return []
        return [
            ("Workspace", self.synapse.workspace_name),
            ("SQL endpoint", self.synapse.sql_endpoint),
            ("SQL pool", self.synapse.sql_pool),
            ("Studio", self.synapse.dev_endpoint),
            ("Storage", self.synapse.storage_account_id.rsplit("/", 1)[-1]),
        ]


SCENARIOS: dict[str, type[ScenarioOrchestrator]] = {
    "appinsights": AppInsightsScenario,
    "synapse": SynapseScenario,
}


__all__ = [
    "SCENARIOS",
    "AppInsightsScenario",
    "RunState",
    "ScenarioOptions",
    "ScenarioOrchestrator",
    "SynapseScenario",
]
