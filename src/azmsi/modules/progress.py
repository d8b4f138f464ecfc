"""Step reporting for a demo run.

A run is a fixed sequence of blocking steps. Each step is announced, may
emit notes while it runs, and ends with a success or failure line that
carries the elapsed time. Output goes through a rich Console so it shares
styling with the subscription table and the teardown countdown.
"""

import time

from rich.console import Console
from rich.markup import escape


def format_duration(seconds: float) -> str:
    """Format duration, e.g. "42.0s", "2m 30s", "1h 5m"."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"


class StepReporter:
    """Announce demo steps and their outcome on a console."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()
        self.step: str | None = None
        self._started: float | None = None

    def begin(self, step: str, estimated_seconds: int | None = None) -> None:
        self.step = step
        self._started = time.monotonic()
        hint = f" [dim](about {estimated_seconds // 60} min)[/dim]" if estimated_seconds else ""
        self.console.print(f"[bold cyan]►[/bold cyan] {escape(step)}{hint}")

    def note(self, message: str) -> None:
        self.console.print(f"  {escape(message)}")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]⚠ {escape(message)}[/yellow]")

    def fail(self, message: str) -> None:
        """Report a failure; closes the current step if one is open."""
        self.console.print(f"[red]✗ {escape(message)}{self._elapsed()}[/red]")
        self._close()

    def finish(self, message: str | None = None) -> None:
        text = message or f"{self.step or 'Step'} done"
        self.console.print(f"[green]✓ {escape(text)}{self._elapsed()}[/green]")
        self._close()

    def _elapsed(self) -> str:
        if self._started is None:
            return ""
        return f" ({format_duration(time.monotonic() - self._started)})"

    def _close(self) -> None:
        self.step = None
        self._started = None


__all__ = ["StepReporter", "format_duration"]
