"""
SSH Connector Module

Wait for a new VM to accept SSH, copy files to it with scp and run
commands on it non-interactively.

Security Requirements:
- SSH key-based authentication only (BatchMode, no password prompts)
- Host key checking disabled: demo VMs are brand new and short-lived
- Timeout enforcement on every call
- Argument lists only, never shell=True
"""

import logging
import socket
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SSHConfig:
    """SSH connection configuration."""

    host: str
    user: str
    key_path: Path
    port: int = 22


@dataclass
class RemoteResult:
    """Result from a command executed on the VM."""

    host: str
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration: float = 0.0

    def get_output(self) -> str:
        """Get combined output."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr


class SSHConnectionError(Exception):
    """Raised when SSH connection or file copy fails."""

    pass


class SSHConnector:
    """Run commands and copy files over SSH."""

    COMMON_OPTIONS = [
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", "LogLevel=ERROR",
    ]

    @classmethod
    def wait_for_ssh_ready(
        cls,
        config: SSHConfig,
        timeout: int = 300,
        interval: int = 5,
    ) -> bool:
        """
        Wait until the VM accepts key-based SSH logins.

        Args:
            config: SSH configuration
            timeout: Maximum wait time in seconds
            interval: Check interval in seconds

        Returns:
            bool: True if SSH is ready, False if timed out

        Raises:
            ValueError: If timeout is negative
        """
        if timeout < 0:
            raise ValueError("timeout must be positive (non-negative)")

        start_time = time.time()
        attempt = 0

        while time.time() - start_time < timeout:
            attempt += 1

            if cls._check_port_open(config.host, config.port) and cls._test_ssh_connection(
                config
            ):
                elapsed = time.time() - start_time
                logger.info(
                    f"SSH ready on {config.host}:{config.port} "
                    f"(after {elapsed:.1f}s, {attempt} attempts)"
                )
                return True

            logger.debug(f"SSH not ready, retrying in {interval}s...")
            time.sleep(interval)

        logger.error(f"SSH not ready after {timeout}s ({attempt} attempts)")
        return False

    @classmethod
    def _check_port_open(cls, host: str, port: int, timeout: float = 2.0) -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    @classmethod
    def _test_ssh_connection(cls, config: SSHConfig, timeout: int = 10) -> bool:
        args = cls.build_ssh_command(config, "exit 0", connect_timeout=timeout)
        try:
            result = subprocess.run(args, capture_output=True, timeout=timeout + 5)
        except subprocess.TimeoutExpired:
            return False
        return result.returncode == 0

    @classmethod
    def build_ssh_command(
        cls, config: SSHConfig, remote_command: str, connect_timeout: int = 10
    ) -> list[str]:
        """
        Build SSH command with proper flags.

        Example:
            >>> config = SSHConfig(host="20.12.34.56", user="azureuser",
            ...                    key_path=Path("~/.ssh/azmsi_key"))
            >>> SSHConnector.build_ssh_command(config, "uptime")[0]
            'ssh'
        """
        return [
            "ssh",
            "-i", str(config.key_path.expanduser()),
            "-p", str(config.port),
            *cls.COMMON_OPTIONS,
            "-o", f"ConnectTimeout={connect_timeout}",
            f"{config.user}@{config.host}",
            remote_command,
        ]

    @classmethod
    def build_scp_command(cls, config: SSHConfig, local_path: Path, remote_path: str) -> list[str]:
        return [
            "scp",
            "-i", str(config.key_path.expanduser()),
            "-P", str(config.port),
            *cls.COMMON_OPTIONS,
            str(local_path),
            f"{config.user}@{config.host}:{remote_path}",
        ]

    @classmethod
    def _validate_config(cls, config: SSHConfig) -> None:
        if not config.host:
            raise ValueError("SSH host cannot be empty")
        if not config.user:
            raise ValueError("SSH user cannot be empty")
        if not (1 <= config.port <= 65535):
            raise ValueError(f"Invalid SSH port: {config.port}")

        key_path = config.key_path.expanduser()
        if not key_path.exists():
            raise ValueError(f"SSH key not found: {key_path}")

    @classmethod
    def upload_file(
        cls, config: SSHConfig, local_path: Path, remote_path: str, timeout: int = 60
    ) -> None:
        """
        Copy a local file to the VM with scp.

        Raises:
            SSHConnectionError: If the copy fails
        """
        cls._validate_config(config)
        args = cls.build_scp_command(config, local_path, remote_path)
        logger.debug(f"Uploading {local_path} to {config.host}:{remote_path}")

        try:
            subprocess.run(args, capture_output=True, text=True, timeout=timeout, check=True)
        except subprocess.TimeoutExpired as e:
            raise SSHConnectionError(f"Upload to {config.host} timed out after {timeout}s") from e
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr if e.stderr else str(e)
            raise SSHConnectionError(f"Upload to {config.host} failed: {error_msg}") from e

    @classmethod
    def execute_remote_command(
        cls, config: SSHConfig, command: str, timeout: int = 60
    ) -> RemoteResult:
        """
        Execute a command on the VM and capture its output.

        A non-zero exit status of the remote command is reported in the
        result, not raised.

        Raises:
            SSHConnectionError: If the command times out or ssh cannot run
        """
        cls._validate_config(config)
        args = cls.build_ssh_command(config, command)
        logger.debug(f"Executing on {config.host}: {command}")

        start_time = time.time()
        try:
            result = subprocess.run(
                args, capture_output=True, text=True, timeout=timeout, check=False
            )
        except subprocess.TimeoutExpired as e:
            raise SSHConnectionError(
                f"Command timed out after {timeout}s on {config.host}"
            ) from e
        except FileNotFoundError as e:
            raise SSHConnectionError("ssh not found. Please install OpenSSH client.") from e

        return RemoteResult(
            host=config.host,
            success=result.returncode == 0,
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.returncode,
            duration=time.time() - start_time,
        )


__all__ = ["RemoteResult", "SSHConfig", "SSHConnectionError", "SSHConnector"]
