"""Interactive subscription selection.

Prints the subscriptions visible to the signed-in account as a numbered
table and asks the user to pick one by index. Answers that are not an
integer inside [0, n) are rejected and the prompt repeats.

A subscription given up front (ID or exact name) skips the prompt.
"""

import logging

import click
from rich.console import Console
from rich.table import Table

from azmsi.azure_auth import Subscription

logger = logging.getLogger(__name__)


class SubscriptionSelectionError(Exception):
    """Raised when no subscription can be selected."""

    pass


class SubscriptionSelector:
    """Pick one subscription from a list."""

    def __init__(self, subscriptions: list[Subscription], console: Console | None = None):
        self.subscriptions = subscriptions
        self.console = console or Console()

    def select(self, preselected: str | None = None) -> Subscription:
        """Select a subscription.

        Args:
            preselected: Subscription ID or name chosen on the command line

        Returns:
            The chosen Subscription

        Raises:
            SubscriptionSelectionError: If there are no subscriptions or the
                preselected one is unknown
        """
        if not self.subscriptions:
            raise SubscriptionSelectionError(
                "No enabled subscriptions found for this account. "
                "Check 'az account list --all'."
            )

        if preselected:
            return self.find(preselected)

        if len(self.subscriptions) == 1:
            only = self.subscriptions[0]
            logger.info(f"Only one subscription available, using {only.name}")
            return only

        self.display()
        return self.subscriptions[self.prompt_for_index()]

    def find(self, key: str) -> Subscription:
        """Find a subscription by ID (case-insensitive) or exact name."""
        for sub in self.subscriptions:
            if sub.id.lower() == key.lower() or sub.name == key:
                return sub
        raise SubscriptionSelectionError(f"Subscription not found: {key}")

    def display(self) -> None:
        table = Table(title="Azure Subscriptions", show_header=True)
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Name", style="green")
        table.add_column("Subscription ID", style="white")
        table.add_column("Default", style="yellow")

        for index, sub in enumerate(self.subscriptions):
            table.add_row(str(index), sub.name, sub.id, "*" if sub.is_default else "")

        self.console.print(table)

    def prompt_for_index(self) -> int:
        """Prompt until a valid index is entered."""
        count = len(self.subscriptions)
        default = next(
            (str(i) for i, sub in enumerate(self.subscriptions) if sub.is_default), None
        )

        while True:
            answer = click.prompt(
                f"Select subscription [0-{count - 1}]", default=default, type=str
            )
            index = self.parse_index(answer, count)
            if index is not None:
                return index
            click.echo(f"Invalid selection '{answer}'. Enter a number between 0 and {count - 1}.")

    @staticmethod
    def parse_index(answer: str, count: int) -> int | None:
        """Parse answer as an index into a list of count items, or None."""
        try:
            index = int(answer.strip())
        except (ValueError, AttributeError):
            return None
        if 0 <= index < count:
            return index
        return None


__all__ = ["SubscriptionSelectionError", "SubscriptionSelector"]
