"""Unit tests for teardown module."""

from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console

from azmsi.resource_manager import ProvisioningError
from azmsi.teardown import countdown, countdown_and_delete, manual_delete_command


@pytest.fixture
def console():
    return Console(file=StringIO(), width=120, force_terminal=False)


@pytest.fixture
def mock_sleep():
    with patch("azmsi.teardown.time.sleep") as mock:
        yield mock


@pytest.fixture
def mock_delete():
    with patch("azmsi.teardown.ResourceManager.delete_resource_group") as mock:
        yield mock


def test_manual_delete_command():
    assert manual_delete_command("rg1") == "az group delete --name rg1 --yes --no-wait"


class TestCountdown:
    def test_ticks_once_per_second(self, mock_sleep, console):
        assert countdown(3, "rg1", console) is True
        assert mock_sleep.call_count == 3

    def test_zero_seconds(self, mock_sleep, console):
        assert countdown(0, "rg1", console) is True
        mock_sleep.assert_not_called()

    def test_ctrl_c_cancels(self, mock_sleep, console):
        mock_sleep.side_effect = [None, KeyboardInterrupt]

        assert countdown(5, "rg1", console) is False


class TestCountdownAndDelete:
    def test_deletes_after_countdown(self, mock_sleep, mock_delete, console):
        assert countdown_and_delete("rg1", seconds=2, console=console) is True

        mock_delete.assert_called_once_with("rg1", no_wait=False)
        assert "Resource group rg1 deleted" in console.file.getvalue()

    def test_no_wait(self, mock_sleep, mock_delete, console):
        countdown_and_delete("rg1", seconds=0, no_wait=True, console=console)

        mock_delete.assert_called_once_with("rg1", no_wait=True)
        assert "Deletion of rg1 started" in console.file.getvalue()

    def test_cancel_keeps_group(self, mock_sleep, mock_delete, console):
        mock_sleep.side_effect = KeyboardInterrupt

        assert countdown_and_delete("rg1", seconds=10, console=console) is False

        mock_delete.assert_not_called()
        output = console.file.getvalue()
        assert "Teardown cancelled" in output
        assert manual_delete_command("rg1") in output

    def test_negative_seconds_treated_as_zero(self, mock_sleep, mock_delete, console):
        countdown_and_delete("rg1", seconds=-5, console=console)

        mock_sleep.assert_not_called()
        mock_delete.assert_called_once()

    def test_delete_failure_propagates(self, mock_sleep, mock_delete, console):
        mock_delete.side_effect = ProvisioningError("denied")

        with pytest.raises(ProvisioningError, match="denied"):
            countdown_and_delete("rg1", seconds=0, console=console)
