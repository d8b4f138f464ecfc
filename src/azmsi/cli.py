"""Command-line interface for azmsi.

Commands:
    appinsights     Run the Application Insights managed identity demo
    synapse         Run the Synapse Analytics managed identity demo
    teardown        Delete a demo resource group after a countdown
    config init     Write a config file with the default settings
    config show     Print the effective configuration
"""

import logging
import sys

import click
import tomlkit
from rich.console import Console

from azmsi import __version__
from azmsi.config_manager import ConfigError, ConfigManager, DemoConfig
from azmsi.resource_manager import ProvisioningError
from azmsi.scenarios import EXIT_INTERRUPTED, EXIT_PROVISIONING, SCENARIOS, ScenarioOptions
from azmsi.teardown import countdown_and_delete, manual_delete_command

logger = logging.getLogger(__name__)


def _load_config(config_path: str | None) -> DemoConfig:
    try:
        return ConfigManager.load_config(config_path)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)


def scenario_options(func):
    """Options shared by the demo commands."""
    options = [
        click.option("--subscription", help="Subscription id or name (skips the prompt)", type=str),
        click.option("--resource-group", "--rg", help="Resource group to create", type=str),
        click.option("--location", help="Azure region, e.g. westus2", type=str),
        click.option("--prefix", help="Prefix for generated resource names", type=str),
        click.option("--vm-size", help="Azure VM size", type=str),
        click.option("--config", help="Config file path", type=click.Path()),
        click.option("--keep", is_flag=True, help="Keep the resources instead of tearing down"),
        click.option(
            "--countdown",
            type=click.IntRange(min=0),
            help="Seconds to wait before deleting the resource group",
        ),
        click.option("--no-wait", is_flag=True, help="Do not wait for the deletion to finish"),
        click.option("--device-code", is_flag=True, help="Use device code flow for az login"),
        click.option("--yes", "-y", is_flag=True, help="Accept defaults instead of prompting"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _run_scenario(name: str, config_path: str | None, **kwargs) -> None:
    config = _load_config(config_path)
    options = ScenarioOptions(
        subscription=kwargs["subscription"],
        resource_group=kwargs["resource_group"],
        location=kwargs["location"],
        prefix=kwargs["prefix"],
        vm_size=kwargs["vm_size"],
        countdown=kwargs["countdown"],
        keep=kwargs["keep"],
        assume_yes=kwargs["yes"],
        use_device_code=kwargs["device_code"],
        no_wait=kwargs["no_wait"],
    )
    orchestrator = SCENARIOS[name](config, options)
    sys.exit(orchestrator.run())


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug output")
@click.version_option(version=__version__)
def main(verbose: bool) -> None:
    """azmsi - Azure managed identity demos.

    Provisions a Linux VM with a system-assigned managed identity next to an
    Azure service, proves from inside the VM that the identity can reach the
    service, then deletes everything.

    \b
    DEMOS:
        appinsights   Application Insights + Log Analytics
        synapse       Synapse Analytics workspace + dedicated SQL pool

    \b
    CLEANUP:
        teardown      Delete a demo resource group after a countdown

    \b
    CONFIGURATION:
        Config file: ~/.azmsi/config.toml (override with AZMSI_CONFIG)
        config init   Write the default settings
        config show   Print the effective settings

    \b
    EXIT CODES:
        0 success, 1 unexpected error, 2 missing prerequisites,
        3 authentication, 4 provisioning, 5 remote execution, 130 interrupted
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format="%(message)s")


@main.command(name="appinsights")
@scenario_options
def appinsights(config: str | None, **kwargs) -> None:
    """Run the Application Insights demo.

    Creates a Log Analytics workspace, a workspace-based Application Insights
    component and a VM. The VM's identity gets Monitoring Metrics Publisher
    on the component and Log Analytics Reader on the workspace, sends a
    custom event with an Entra ID token and queries the workspace.

    \b
    Examples:
        $ azmsi appinsights
        $ azmsi appinsights --location eastus --prefix demo --yes
        $ azmsi appinsights --keep
    """
    _run_scenario("appinsights", config, **kwargs)


@main.command(name="synapse")
@scenario_options
def synapse(config: str | None, **kwargs) -> None:
    """Run the Synapse Analytics demo.

    Creates an ADLS Gen2 storage account, a Synapse workspace with a
    dedicated SQL pool and a VM. The VM's identity becomes the workspace's
    Entra ID SQL admin, reads the workspace through the management API and
    queries the pool with sqlcmd.

    \b
    Examples:
        $ azmsi synapse
        $ azmsi synapse --subscription "My Subscription" --countdown 60
    """
    _run_scenario("synapse", config, **kwargs)


@main.command(name="teardown")
@click.argument("resource_group", type=str)
@click.option(
    "--countdown", type=click.IntRange(min=0), help="Seconds to wait before deleting"
)
@click.option("--no-wait", is_flag=True, help="Do not wait for the deletion to finish")
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.option("--config", help="Config file path", type=click.Path())
def teardown(
    resource_group: str, countdown: int | None, no_wait: bool, yes: bool, config: str | None
) -> None:
    """Delete RESOURCE_GROUP and everything in it.

    A countdown runs before the deletion; press Ctrl+C to cancel.

    \b
    Examples:
        $ azmsi teardown msidemo-ab12cd-rg
        $ azmsi teardown msidemo-ab12cd-rg --countdown 0 --yes --no-wait
    """
    demo_config = _load_config(config)

    if not yes and not click.confirm(
        f"Delete resource group {resource_group} and all its resources?", default=False
    ):
        click.echo("Cancelled.")
        return

    seconds = countdown if countdown is not None else demo_config.teardown_countdown
    try:
        countdown_and_delete(resource_group, seconds=seconds, no_wait=no_wait, console=Console())
    except ProvisioningError as e:
        click.echo(f"Error: {e}", err=True)
        click.echo(f"Delete it manually with: {manual_delete_command(resource_group)}", err=True)
        sys.exit(EXIT_PROVISIONING)
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)


@main.group(name="config")
def config_group() -> None:
    """Manage the azmsi configuration file."""


@config_group.command(name="init")
@click.option("--config", help="Config file path", type=click.Path())
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(config: str | None, force: bool) -> None:
    """Write a config file with the default settings."""
    path = ConfigManager.get_config_path(config)
    if path.exists() and not force:
        click.echo(f"Config file already exists: {path} (use --force to overwrite)", err=True)
        sys.exit(1)

    try:
        saved = ConfigManager.save_config(DemoConfig(), config)
    except ConfigError as e:
        click.echo(f"Config error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Wrote {saved}")


@config_group.command(name="show")
@click.option("--config", help="Config file path", type=click.Path())
def config_show(config: str | None) -> None:
    """Print the effective configuration as TOML."""
    demo_config = _load_config(config)
    click.echo(f"# {ConfigManager.get_config_path(config)}")
    click.echo(tomlkit.dumps(demo_config.to_dict()).rstrip())


if __name__ == "__main__":
    main()
