"""Remote probe scripts.

The bash scripts in azmsi/scripts/ run on the demo VM and prove that the
VM's managed identity can reach the provisioned services. Placeholders use
the form @@{NAME} so bash's own $VAR and ${VAR} syntax passes through
untouched. Every substituted value is shell-quoted.

Usage:
    result = run_remote_script(
        ssh_config,
        "appinsights_probe",
        {"INGESTION_ENDPOINT": ..., "INSTRUMENTATION_KEY": ..., "WORKSPACE_ID": ...},
    )
    print(result.get_output())
"""

import logging
import os
import shlex
import string
import tempfile
from pathlib import Path

from azmsi.modules.ssh_connector import RemoteResult, SSHConfig, SSHConnectionError, SSHConnector

logger = logging.getLogger(__name__)

SCRIPTS_DIR = Path(__file__).parent / "scripts"
REMOTE_DIR = "/tmp"


class RemoteExecError(Exception):
    """Raised when a probe script cannot be rendered, uploaded or run."""

    pass


class RemoteScriptError(RemoteExecError):
    """Raised when a probe script template cannot be rendered."""

    pass


class ScriptTemplate(string.Template):
    """string.Template with @@{NAME} placeholders."""

    delimiter = "@@"


def available_scripts() -> list[str]:
    return sorted(path.stem for path in SCRIPTS_DIR.glob("*.sh"))


def load_template(name: str) -> ScriptTemplate:
    """Load a packaged script template by name (without .sh).

    Raises:
        RemoteScriptError: If no such script exists
    """
    path = SCRIPTS_DIR / f"{name}.sh"
    if not path.is_file():
        raise RemoteScriptError(
            f"Unknown script '{name}'. Available: {', '.join(available_scripts())}"
        )
    return ScriptTemplate(path.read_text())


def placeholders(template: ScriptTemplate) -> set[str]:
    """Names of the placeholders used in template."""
    names = set()
    for match in template.pattern.finditer(template.template):
        name = match.group("named") or match.group("braced")
        if name:
            names.add(name)
        elif match.group("invalid") is not None:
            raise RemoteScriptError(f"Invalid placeholder at offset {match.start('invalid')}")
    return names


def render_script(name: str, values: dict[str, str]) -> str:
    """Render a probe script with exactly its placeholders' values.

    Raises:
        RemoteScriptError: If values are missing, unexpected or empty
    """
    template = load_template(name)
    expected = placeholders(template)

    missing = expected - values.keys()
    if missing:
        raise RemoteScriptError(f"Missing values for {name}: {', '.join(sorted(missing))}")

    unexpected = values.keys() - expected
    if unexpected:
        raise RemoteScriptError(f"Unexpected values for {name}: {', '.join(sorted(unexpected))}")

    empty = [key for key, value in values.items() if not str(value).strip()]
    if empty:
        raise RemoteScriptError(f"Empty values for {name}: {', '.join(sorted(empty))}")

    return template.substitute({key: shlex.quote(str(value)) for key, value in values.items()})


def run_remote_script(
    ssh_config: SSHConfig, name: str, values: dict[str, str], timeout: int = 900
) -> RemoteResult:
    """Render, upload and run a probe script on the VM.

    The remote copy is removed after it has run.

    Returns:
        RemoteResult with the script's console output

    Raises:
        RemoteScriptError: If rendering fails
        RemoteExecError: If upload or execution fails
    """
    script = render_script(name, values)
    remote_path = f"{REMOTE_DIR}/azmsi-{name}.sh"

    fd, local_name = tempfile.mkstemp(prefix=f"azmsi-{name}-", suffix=".sh")
    local_path = Path(local_name)
    try:
        with os.fdopen(fd, "w") as f:
            f.write(script)

        logger.info(f"Uploading {name} to {ssh_config.host}:{remote_path}")
        SSHConnector.upload_file(ssh_config, local_path, remote_path)

        logger.info(f"Running {name} on {ssh_config.host}")
        command = f"bash {shlex.quote(remote_path)}; rc=$?; rm -f {shlex.quote(remote_path)}; exit $rc"
        return SSHConnector.execute_remote_command(ssh_config, command, timeout=timeout)

    except SSHConnectionError as e:
        raise RemoteExecError(f"Failed to run {name} on {ssh_config.host}: {e}") from e
    finally:
        local_path.unlink(missing_ok=True)


__all__ = [
    "RemoteExecError",
    "RemoteScriptError",
    "ScriptTemplate",
    "available_scripts",
    "render_script",
    "run_remote_script",
]
