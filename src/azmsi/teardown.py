"""Resource group teardown with an interruptible countdown.

Deleting the resource group is irreversible, so the deletion is preceded by
a visible countdown. Pressing Ctrl+C during the countdown cancels the
deletion and leaves every resource in place.
"""

import logging
import time

from rich.console import Console
from rich.live import Live
from rich.text import Text

from azmsi.resource_manager import ResourceManager

logger = logging.getLogger(__name__)


def manual_delete_command(resource_group: str) -> str:
    return f"az group delete --name {resource_group} --yes --no-wait"


def countdown(seconds: int, resource_group: str, console: Console | None = None) -> bool:
    """Count down before deleting resource_group.

    Returns:
        True if the countdown completed, False if the user pressed Ctrl+C
    """
    console = console or Console()

    def render(remaining: int) -> Text:
        return Text.assemble(
            ("Deleting resource group ", "bold"),
            (resource_group, "bold red"),
            f" in {remaining}s ",
            ("(Ctrl+C to keep it)", "dim"),
        )

    try:
        with Live(render(seconds), console=console, transient=True, auto_refresh=False) as live:
            for remaining in range(seconds, 0, -1):
                live.update(render(remaining), refresh=True)
                time.sleep(1)
    except KeyboardInterrupt:
        return False
    return True


def countdown_and_delete(
    resource_group: str,
    seconds: int = 30,
    no_wait: bool = False,
    console: Console | None = None,
) -> bool:
    """Delete resource_group after an interruptible countdown.

    Returns:
        True if the group was deleted, False if the user cancelled

    Raises:
        ProvisioningError: If the deletion itself fails
    """
    console = console or Console()

    if not countdown(max(0, seconds), resource_group, console):
        console.print(f"[yellow]Teardown cancelled. Resource group {resource_group} was kept.[/yellow]")
        console.print(f"Delete it later with: {manual_delete_command(resource_group)}")
        logger.info(f"Teardown of {resource_group} cancelled by user")
        return False

    with console.status(f"Deleting resource group {resource_group}..."):
        ResourceManager.delete_resource_group(resource_group, no_wait=no_wait)

    if no_wait:
        console.print(f"[green]Deletion of {resource_group} started.[/green]")
    else:
        console.print(f"[green]Resource group {resource_group} deleted.[/green]")
    return True


__all__ = ["countdown", "countdown_and_delete", "manual_delete_command"]
