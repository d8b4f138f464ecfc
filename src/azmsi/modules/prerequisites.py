"""
Prerequisites Checker Module

Verifies the external tools a demo run shells out to are installed.

Security Requirements:
- Read-only system checks
- No shell=True in subprocess calls
"""

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import ClassVar

logger = logging.getLogger(__name__)


@dataclass
class PrerequisiteResult:
    """Result of prerequisite checks."""

    all_available: bool
    missing: list[str]
    available: list[str]
    platform_name: str


class PrerequisiteError(Exception):
    """Raised when prerequisites are missing."""

    pass


class PrerequisiteChecker:
    """
    Check required external tools are installed.

    Required tools:
    - az (Azure CLI)
    - ssh, scp, ssh-keygen (OpenSSH client)
    """

    REQUIRED_TOOLS: ClassVar[list[str]] = ["az", "ssh", "scp", "ssh-keygen"]

    INSTALL_HINTS: ClassVar[dict[str, dict[str, str]]] = {
        "az": {
            "macos": "brew install azure-cli",
            "linux": "curl -sL https://aka.ms/InstallAzureCLIDeb | sudo bash",
            "windows": "winget install -e --id Microsoft.AzureCLI",
        },
        "openssh": {
            "macos": "brew install openssh",
            "linux": "sudo apt-get install openssh-client",
            "windows": "Add-WindowsCapability -Online -Name OpenSSH.Client~~~~0.0.1.0",
        },
    }

    @classmethod
    def check_tool(cls, tool_name: str) -> bool:
        """Check if a single tool is available in PATH."""
        result = shutil.which(tool_name)
        if result:
            logger.debug(f"Found {tool_name} at {result}")
            return True
        logger.debug(f"Tool not found: {tool_name}")
        return False

    @classmethod
    def check_all(cls) -> PrerequisiteResult:
        """
        Check all prerequisites and return comprehensive result.

        Example:
            >>> result = PrerequisiteChecker.check_all()
            >>> if not result.all_available:
            ...     print(f"Missing: {result.missing}")
        """
        missing: list[str] = []
        available: list[str] = []

        for tool in cls.REQUIRED_TOOLS:
            if cls.check_tool(tool):
                available.append(tool)
            else:
                missing.append(tool)

        platform_name = cls.detect_platform()

        if missing:
            logger.error(f"Missing prerequisites: {', '.join(missing)}")
        else:
            logger.debug(f"All prerequisites available ({platform_name})")

        return PrerequisiteResult(
            all_available=not missing,
            missing=missing,
            available=available,
            platform_name=platform_name,
        )

    @classmethod
    def detect_platform(cls) -> str:
        """Return macos, linux, windows or unknown (WSL counts as linux)."""
        system = platform.system().lower()
        if system == "darwin":
            return "macos"
        if system in ("linux", "windows"):
            return system
        return "unknown"

    @classmethod
    def format_missing_message(cls, missing: list[str], platform_name: str) -> str:
        """Format installation instructions for missing tools."""
        if not missing:
            return "All prerequisites are installed."

        lines: list[str] = ["Missing required tools:", ""]
        lines.extend(f"  - {tool}" for tool in missing)
        lines.extend(["", "Installation instructions:", ""])

        packages = []
        if "az" in missing:
            packages.append(("Azure CLI", "az"))
        if any(tool in missing for tool in ("ssh", "scp", "ssh-keygen")):
            packages.append(("OpenSSH client", "openssh"))

        for label, key in packages:
            hint = cls.INSTALL_HINTS[key].get(platform_name)
            lines.append(f"Install {label}:")
            lines.append(f"  {hint}" if hint else "  See your platform's package manager")
            lines.append("")

        lines.append("After installing, run 'azmsi' again.")
        return "\n".join(lines)


__all__ = ["PrerequisiteChecker", "PrerequisiteError", "PrerequisiteResult"]
