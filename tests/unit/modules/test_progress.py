"""Unit tests for progress module."""

from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console

from azmsi.modules.progress import StepReporter, format_duration


@pytest.fixture
def reporter():
    return StepReporter(Console(file=StringIO(), width=200))


def lines(reporter):
    return reporter.console.file.getvalue().splitlines()


class TestStepReporter:
    def test_begin_and_finish(self, reporter):
        with patch("azmsi.modules.progress.time.monotonic", side_effect=[100.0, 142.0]):
            reporter.begin("Provisioning VM demo-vm", estimated_seconds=300)
            reporter.finish("VM ready")

        assert lines(reporter) == [
            "► Provisioning VM demo-vm (about 5 min)",
            "✓ VM ready (42.0s)",
        ]
        assert reporter.step is None

    def test_finish_default_message(self, reporter):
        reporter.begin("Azure Authentication")
        reporter.finish()

        assert lines(reporter)[-1].startswith("✓ Azure Authentication done (")

    def test_fail_closes_step(self, reporter):
        reporter.begin("Registering providers")
        reporter.fail("Provisioning failed: quota")

        assert lines(reporter)[-1].startswith("✗ Provisioning failed: quota (")
        assert reporter.step is None

    def test_fail_without_step_has_no_elapsed_time(self, reporter):
        reporter.fail("Teardown interrupted")

        assert lines(reporter) == ["✗ Teardown interrupted"]

    def test_notes_and_warnings(self, reporter):
        reporter.note("Registered provider Microsoft.Insights")
        reporter.warn("Keeping resource group rg1")

        assert lines(reporter) == [
            "  Registered provider Microsoft.Insights",
            "⚠ Keeping resource group rg1",
        ]

    def test_markup_in_messages_is_printed_literally(self, reporter):
        reporter.note("az said: [bold]denied[/bold]")

        assert lines(reporter) == ["  az said: [bold]denied[/bold]"]


@pytest.mark.parametrize("seconds,expected", [(5, "5.0s"), (150, "2m 30s"), (3900, "1h 5m")])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
