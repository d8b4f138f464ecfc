"""Unit tests for the demo flow orchestration.

Every collaborator that talks to Azure or SSH is mocked; these tests check
the order of steps, the values passed between them, exit codes and the
teardown decision.
"""

from io import StringIO
from pathlib import Path
from unittest.mock import DEFAULT, MagicMock, call, patch

import pytest
from rich.console import Console

from azmsi.azure_auth import AuthenticationError, Subscription
from azmsi.identity import RoleAssignment
from azmsi.modules.prerequisites import PrerequisiteResult
from azmsi.modules.progress import StepReporter
from azmsi.modules.ssh_connector import RemoteResult
from azmsi.modules.ssh_keys import SSHKeyPair
from azmsi.monitoring_provisioning import INGESTION_ROLE, QUERY_ROLE, MonitoringResources
from azmsi.remote_script import RemoteExecError
from azmsi.resource_manager import ProvisioningError
from azmsi.scenarios import (
    AppInsightsScenario,
    ScenarioOptions,
    SynapseScenario,
)
from azmsi.synapse_provisioning import SynapseResources

SUBSCRIPTION = Subscription(
    id="11111111-1111-1111-1111-111111111111", name="Alpha", tenant_id="t", is_default=True
)

MONITORING = MonitoringResources(
    workspace_id="/subscriptions/s/resourceGroups/rg/providers/Microsoft.OperationalInsights/workspaces/law",
    workspace_customer_id="44444444-4444-4444-4444-444444444444",
    component_id="/subscriptions/s/resourceGroups/rg/providers/Microsoft.Insights/components/ai",
    instrumentation_key="55555555-5555-5555-5555-555555555555",
    connection_string="InstrumentationKey=5555",
    ingestion_endpoint="https://westus2-2.in.applicationinsights.azure.com/",
)

SYNAPSE = SynapseResources(
    workspace_name="msidemo-abc123-syn",
    workspace_id="/subscriptions/s/resourceGroups/rg/providers/Microsoft.Synapse/workspaces/msidemo-abc123-syn",
    sql_endpoint="msidemo-abc123-syn.sql.azuresynapse.net",
    dev_endpoint="https://msidemo-abc123-syn.dev.azuresynapse.net",
    sql_pool="msidemo_abc123_pool",
    storage_account_id="/storage",
)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def authenticator():
    auth = MagicMock()
    auth.ensure_logged_in.return_value = SUBSCRIPTION
    auth.list_subscriptions.return_value = [SUBSCRIPTION]
    return auth


@pytest.fixture
def mocks(vm_details, remote_ok, tmp_path):
    """Patch every Azure- and SSH-facing collaborator of the orchestrator."""
    with patch.multiple(
        "azmsi.scenarios",
        PrerequisiteChecker=DEFAULT,
        ResourceManager=DEFAULT,
        SSHKeyManager=DEFAULT,
        SSHConnector=DEFAULT,
        provision_monitoring=DEFAULT,
        provision_synapse=DEFAULT,
        allow_client_ip=DEFAULT,
        set_sql_aad_admin=DEFAULT,
        assign_role=DEFAULT,
        run_remote_script=DEFAULT,
        countdown_and_delete=DEFAULT,
    ) as patched, patch("azmsi.scenarios.VMProvisioner.provision_vm") as provision_vm:
        patched["PrerequisiteChecker"].check_all.return_value = PrerequisiteResult(
            all_available=True,
            missing=[],
            available=["az", "ssh", "scp", "ssh-keygen"],
            platform_name="linux",
        )
        patched["ResourceManager"].ensure_resource_group.return_value = True
        patched["ResourceManager"].ensure_extension.return_value = False
        patched["ResourceManager"].ensure_provider_registered.return_value = False
        patched["SSHKeyManager"].ensure_key_exists.return_value = SSHKeyPair(
            private_path=tmp_path / "azmsi_key",
            public_path=tmp_path / "azmsi_key.pub",
            public_key_content="ssh-ed25519 AAAA test",
        )
        patched["SSHConnector"].wait_for_ssh_ready.return_value = True
        patched["provision_monitoring"].return_value = MONITORING
        patched["provision_synapse"].return_value = SYNAPSE
        patched["run_remote_script"].return_value = remote_ok
        patched["countdown_and_delete"].return_value = True
        patched["assign_role"].side_effect = lambda principal, role, scope: RoleAssignment(
            role=role, scope=scope, principal_id=principal
        )
        provision_vm.return_value = vm_details
        patched["provision_vm"] = provision_vm
        yield patched


def make(scenario_cls, demo_config, authenticator, **option_overrides):
    options = {"prefix": "msidemo", "location": "westus2", "assume_yes": True}
    options.update(option_overrides)
    console = Console(file=StringIO(), width=200)
    return scenario_cls(
        demo_config,
        ScenarioOptions(**options),
        progress=StepReporter(console),
        console=console,
        authenticator=authenticator,
    )


# ============================================================================
# HAPPY PATHS
# ============================================================================


class TestAppInsightsScenario:
    def test_full_run(self, mocks, demo_config, authenticator, vm_details, capsys):
        scenario = make(AppInsightsScenario, demo_config, authenticator)

        assert scenario.run() == 0

        names = scenario.state.names
        authenticator.set_subscription.assert_called_once_with(SUBSCRIPTION.id)
        mocks["ResourceManager"].ensure_extension.assert_called_once_with("application-insights")
        mocks["ResourceManager"].ensure_resource_group.assert_called_once_with(
            names.resource_group, "westus2"
        )
        registered = [
            c.args[0] for c in mocks["ResourceManager"].ensure_provider_registered.call_args_list
        ]
        assert registered == [
            "Microsoft.Compute",
            "Microsoft.Network",
            "Microsoft.OperationalInsights",
            "Microsoft.Insights",
        ]
        assert mocks["ResourceManager"].ensure_provider_registered.call_args.kwargs == {
            "poll_interval": 1,
            "timeout": 5,
        }

        mocks["provision_monitoring"].assert_called_once_with(
            names.log_analytics_workspace, names.app_insights, names.resource_group, "westus2"
        )
        mocks["assign_role"].assert_has_calls(
            [
                call(vm_details.principal_id, INGESTION_ROLE, MONITORING.component_id),
                call(vm_details.principal_id, QUERY_ROLE, MONITORING.workspace_id),
            ]
        )

        ssh_config, script, values = mocks["run_remote_script"].call_args[0]
        assert ssh_config.host == vm_details.public_ip
        assert ssh_config.key_path == Path(mocks["SSHKeyManager"].ensure_key_exists.return_value.private_path)
        assert script == "appinsights_probe"
        assert values == {
            "INGESTION_ENDPOINT": MONITORING.ingestion_endpoint,
            "INSTRUMENTATION_KEY": MONITORING.instrumentation_key,
            "WORKSPACE_ID": MONITORING.workspace_customer_id,
        }

        mocks["countdown_and_delete"].assert_called_once()
        assert mocks["countdown_and_delete"].call_args.args == (names.resource_group,)
        assert mocks["countdown_and_delete"].call_args.kwargs["seconds"] == 0

        out = capsys.readouterr().out
        assert "Managed identity probe succeeded" in out
        assert "Application Insights demo completed" in out
        assert "Monitoring Metrics Publisher on ai" in out
        assert "Log Analytics Reader on law" in out
        assert [a.role for a in scenario.state.role_assignments] == [INGESTION_ROLE, QUERY_ROLE]

    def test_vm_config_uses_options_and_config(self, mocks, demo_config, authenticator):
        make(AppInsightsScenario, demo_config, authenticator, vm_size="Standard_D2s_v5").run()

        vm_config = mocks["provision_vm"].call_args[0][0]
        assert vm_config.size == "Standard_D2s_v5"
        assert vm_config.image == demo_config.vm_image
        assert vm_config.ssh_public_key == "ssh-ed25519 AAAA test"


class TestSynapseScenario:
    def test_full_run(self, mocks, demo_config, authenticator, vm_details, capsys):
        scenario = make(SynapseScenario, demo_config, authenticator)

        assert scenario.run() == 0

        names = scenario.state.names
        kwargs = mocks["provision_synapse"].call_args.kwargs
        assert kwargs["workspace_name"] == names.synapse_workspace
        assert kwargs["storage_account"] == names.storage_account
        assert kwargs["sql_pool"] == names.sql_pool
        assert kwargs["sql_admin_user"] == "sqladminuser"
        assert len(kwargs["sql_admin_password"]) == 24
        mocks["ResourceManager"].ensure_extension.assert_not_called()

        mocks["allow_client_ip"].assert_called_once_with(
            SYNAPSE.workspace_name, names.resource_group, vm_details.public_ip
        )
        mocks["set_sql_aad_admin"].assert_called_once_with(
            SYNAPSE.workspace_name, names.resource_group, vm_details.name, vm_details.principal_id
        )
        mocks["assign_role"].assert_called_once_with(
            vm_details.principal_id, "Reader", SYNAPSE.workspace_id
        )

        _, script, values = mocks["run_remote_script"].call_args[0]
        assert script == "synapse_probe"
        assert values == {
            "WORKSPACE_RESOURCE_ID": SYNAPSE.workspace_id,
            "SQL_ENDPOINT": SYNAPSE.sql_endpoint,
            "SQL_POOL": SYNAPSE.sql_pool,
        }

        out = capsys.readouterr().out
        assert "Reader on msidemo-abc123-syn" in out
        assert f"Studio:         {SYNAPSE.dev_endpoint}" in out
        assert "Storage:        storage" in out


# ============================================================================
# PARAMETERS
# ============================================================================


class TestParameters:
    @patch("azmsi.scenarios.click.echo")
    @patch("azmsi.scenarios.click.prompt")
    def test_prompts_with_defaults(self, mock_prompt, mock_echo, mocks, demo_config, authenticator):
        mock_prompt.side_effect = ["bad_prefix!", "demo", "EastUS", "my-rg"]
        scenario = make(
            AppInsightsScenario, demo_config, authenticator, prefix=None, location=None,
            assume_yes=False,
        )

        scenario.run()

        assert scenario.state.names.resource_group == "my-rg"
        assert scenario.state.names.vm.startswith("demo-")
        assert scenario.state.location == "eastus"
        labels = [c.args[0] for c in mock_prompt.call_args_list]
        assert labels == ["Resource name prefix", "Resource name prefix", "Location", "Resource group"]
        assert mock_prompt.call_args_list[0].kwargs["default"] == "msidemo"
        assert mock_prompt.call_args_list[2].kwargs["default"] == "westus2"

    def test_resource_group_option(self, mocks, demo_config, authenticator):
        scenario = make(AppInsightsScenario, demo_config, authenticator, resource_group="given-rg")

        scenario.run()

        assert scenario.state.names.resource_group == "given-rg"
        assert scenario.state.names.vm.startswith("msidemo-")

    def test_invalid_prefix_option(self, mocks, demo_config, authenticator):
        scenario = make(AppInsightsScenario, demo_config, authenticator, prefix="Bad_Prefix")

        assert scenario.run() == 4
        mocks["ResourceManager"].ensure_resource_group.assert_not_called()
        mocks["countdown_and_delete"].assert_not_called()

    def test_invalid_location(self, mocks, demo_config, authenticator):
        scenario = make(AppInsightsScenario, demo_config, authenticator, location="west us")

        assert scenario.run() == 4


# ============================================================================
# FAILURES AND EXIT CODES
# ============================================================================


class TestExitCodes:
    def test_missing_prerequisites(self, mocks, demo_config, authenticator, capsys):
        mocks["PrerequisiteChecker"].check_all.return_value = PrerequisiteResult(
            all_available=False, missing=["az"], available=[], platform_name="linux"
        )
        mocks["PrerequisiteChecker"].format_missing_message.return_value = "install az"

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 2

        authenticator.ensure_logged_in.assert_not_called()
        mocks["countdown_and_delete"].assert_not_called()
        assert "install az" in capsys.readouterr().err

    def test_authentication_failure(self, mocks, demo_config, authenticator):
        authenticator.ensure_logged_in.side_effect = AuthenticationError("login failed")

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 3
        mocks["countdown_and_delete"].assert_not_called()

    def test_no_subscriptions(self, mocks, demo_config, authenticator):
        authenticator.list_subscriptions.return_value = []

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 3

    def test_provisioning_failure_still_tears_down(self, mocks, demo_config, authenticator):
        mocks["provision_monitoring"].side_effect = ProvisioningError("quota")

        scenario = make(AppInsightsScenario, demo_config, authenticator)

        assert scenario.run() == 4
        mocks["provision_vm"].assert_not_called()
        mocks["countdown_and_delete"].assert_called_once()
        assert "✗ Provisioning failed: quota" in scenario.console.file.getvalue()

    def test_probe_failure(self, mocks, demo_config, authenticator):
        mocks["run_remote_script"].return_value = RemoteResult(
            host="20.1.2.3", success=False, stdout="", stderr="HTTP 403", exit_code=1
        )

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 5
        mocks["countdown_and_delete"].assert_called_once()

    def test_remote_exec_error(self, mocks, demo_config, authenticator):
        mocks["run_remote_script"].side_effect = RemoteExecError("scp failed")

        assert make(SynapseScenario, demo_config, authenticator).run() == 5

    def test_ssh_never_ready(self, mocks, demo_config, authenticator):
        mocks["SSHConnector"].wait_for_ssh_ready.return_value = False

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 5
        mocks["run_remote_script"].assert_not_called()

    def test_interrupted(self, mocks, demo_config, authenticator):
        mocks["provision_vm"].side_effect = KeyboardInterrupt

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 130
        mocks["countdown_and_delete"].assert_called_once()

    def test_unexpected_error(self, mocks, demo_config, authenticator):
        mocks["assign_role"].side_effect = RuntimeError("boom")

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 1


# ============================================================================
# TEARDOWN DECISION
# ============================================================================


class TestTeardown:
    def test_keep_skips_teardown(self, mocks, demo_config, authenticator):
        scenario = make(AppInsightsScenario, demo_config, authenticator, keep=True)

        assert scenario.run() == 0
        mocks["countdown_and_delete"].assert_not_called()

    def test_countdown_option_overrides_config(self, mocks, demo_config, authenticator):
        make(AppInsightsScenario, demo_config, authenticator, countdown=45, no_wait=True).run()

        kwargs = mocks["countdown_and_delete"].call_args.kwargs
        assert kwargs["seconds"] == 45
        assert kwargs["no_wait"] is True

    def test_preexisting_group_kept_with_yes(self, mocks, demo_config, authenticator):
        mocks["ResourceManager"].ensure_resource_group.return_value = False

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 0
        mocks["countdown_and_delete"].assert_not_called()

    @patch("azmsi.scenarios.click.confirm", return_value=True)
    def test_preexisting_group_deleted_when_confirmed(
        self, mock_confirm, mocks, demo_config, authenticator
    ):
        mocks["ResourceManager"].ensure_resource_group.return_value = False
        scenario = make(
            AppInsightsScenario,
            demo_config,
            authenticator,
            assume_yes=False,
            resource_group="msidemo-rg",
        )

        assert scenario.run() == 0
        mock_confirm.assert_called_once()
        mocks["countdown_and_delete"].assert_called_once()

    def test_teardown_failure_reported(self, mocks, demo_config, authenticator):
        mocks["countdown_and_delete"].side_effect = ProvisioningError("delete failed")

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 4

    def test_teardown_failure_keeps_original_code(self, mocks, demo_config, authenticator):
        mocks["run_remote_script"].side_effect = RemoteExecError("scp failed")
        mocks["countdown_and_delete"].side_effect = ProvisioningError("delete failed")

        assert make(AppInsightsScenario, demo_config, authenticator).run() == 5
