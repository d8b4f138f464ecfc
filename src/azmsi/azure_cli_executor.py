"""Standardized Azure CLI subprocess execution with retry logic.

Provides run_az_command() - a thin wrapper around subprocess.run that adds
automatic retry with exponential backoff for transient Azure CLI failures
(CalledProcessError, TimeoutExpired) - and run_az_json(), which also decodes
the JSON output.

Every command is logged at DEBUG level after sensitive parameter values
(passwords, keys, custom data) have been replaced by ***.

Usage:
    from azmsi.azure_cli_executor import run_az_command, run_az_json

    result = run_az_command(["az", "group", "exists", "--name", "my-rg"])
    vm = run_az_json(["az", "vm", "create", ...], timeout=600)
"""

import json
import logging
import subprocess
from typing import Any, ClassVar

from azmsi.retry_config import get_retry_config
from azmsi.retry_handler import retry_with_exponential_backoff

logger = logging.getLogger(__name__)


class CommandSanitizer:
    """Redact sensitive parameter values from az command lists."""

    REDACTED = "***"

    SENSITIVE_PARAMS: ClassVar[set[str]] = {
        "--password",
        "--admin-password",
        "--sql-admin-login-password",
        "--client-secret",
        "--ssh-key-value",
        "--ssh-key-values",
        "--account-key",
        "--connection-string",
        "--sas-token",
        "--custom-data",
        "--secret",
        "--token",
    }

    @classmethod
    def sanitize(cls, command: list[str]) -> list[str]:
        """Return a copy of command with sensitive values replaced.

        Example:
            >>> CommandSanitizer.sanitize(["az", "login", "--password", "Secret"])
            ['az', 'login', '--password', '***']
        """
        result: list[str] = []
        redact_next = False
        for arg in command:
            if redact_next:
                result.append(cls.REDACTED)
                redact_next = False
                continue

            if "=" in arg and arg.startswith("--"):
                param, _ = arg.split("=", 1)
                if param.lower() in cls.SENSITIVE_PARAMS:
                    result.append(f"{param}={cls.REDACTED}")
                    continue

            result.append(arg)
            if arg.lower() in cls.SENSITIVE_PARAMS:
                redact_next = True

        return result


def sanitize_command(cmd: list[str]) -> str:
    """Format a command for logging with secrets redacted."""
    return " ".join(CommandSanitizer.sanitize(cmd))


def run_az_command(
    cmd: list[str],
    *,
    timeout: int = 60,
    max_attempts: int | None = None,
    check: bool = True,
) -> subprocess.CompletedProcess[str]:
    """Execute an Azure CLI command with retry logic.

    Args:
        cmd: Command list starting with "az", e.g. ["az", "vm", "list"]
        timeout: Subprocess timeout in seconds (default: 60)
        max_attempts: Number of attempts (default: from RetryConfig)
        check: If True, raise CalledProcessError on non-zero exit (default: True)

    Returns:
        subprocess.CompletedProcess with stdout/stderr

    Raises:
        subprocess.CalledProcessError: After retries exhausted (when check=True)
        subprocess.TimeoutExpired: After retries exhausted
    """
    config = get_retry_config()
    attempts = max_attempts or config.azure_cli_max_attempts

    @retry_with_exponential_backoff(
        max_attempts=attempts,
        initial_delay=config.azure_cli_initial_delay,
        max_delay=config.azure_cli_max_delay,
        jitter=config.jitter_enabled,
        retryable_exceptions=(subprocess.CalledProcessError, subprocess.TimeoutExpired),
    )
    def _run() -> subprocess.CompletedProcess[str]:
        logger.debug(f"Executing: {sanitize_command(cmd)}")
        return subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)

    return _run()


def run_az_json(
    cmd: list[str],
    *,
    timeout: int = 60,
    max_attempts: int | None = None,
) -> Any:
    """Execute an Azure CLI command and decode its JSON output.

    "--output json" is appended unless the command already selects an output
    format. Empty output (e.g. "az ... show" for a missing resource with
    --only-show-errors) decodes to None.

    Raises:
        subprocess.CalledProcessError: If the command fails after retries
        json.JSONDecodeError: If the output is not valid JSON
    """
    if "--output" not in cmd and "-o" not in cmd:
        cmd = [*cmd, "--output", "json"]

    result = run_az_command(cmd, timeout=timeout, max_attempts=max_attempts)
    if not result.stdout.strip():
        return None
    return json.loads(result.stdout)


__all__ = ["CommandSanitizer", "run_az_command", "run_az_json", "sanitize_command"]
