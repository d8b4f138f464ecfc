"""Configuration management module.

Persistent defaults for the demo flows stored as TOML at
~/.azmsi/config.toml (or $AZMSI_CONFIG). Command-line options always win
over config values.

Security:
- Config file permissions: 0600 (owner read/write only)
- Values are type-checked on load
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Python 3.11+ ships the same parser as tomllib
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

import tomlkit

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AZMSI_CONFIG"


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class DemoConfig:
    """Defaults shared by both demo flows."""

    default_location: str = "westus2"
    vm_size: str = "Standard_B2s"
    vm_image: str = "Ubuntu2204"
    admin_username: str = "azureuser"
    ssh_key_path: str = "~/.ssh/azmsi_key"
    name_prefix: str = "msidemo"
    teardown_countdown: int = 30
    provider_poll_interval: int = 30
    provider_wait_timeout: int = 600

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DemoConfig":
        """Create from a parsed TOML table.

        Unknown keys are ignored with a warning. Values must match the type
        of the field's default.

        Raises:
            ConfigError: If a value has the wrong type or is out of range
        """
        known = {f.name: f for f in fields(cls)}
        defaults = cls()
        values: dict[str, Any] = {}

        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key: {key}")
                continue

            expected = type(getattr(defaults, key))
            # bool is a subclass of int, reject it explicitly for numeric fields
            if isinstance(value, bool) or not isinstance(value, expected):
                raise ConfigError(
                    f"Config key '{key}' must be {expected.__name__}, got {type(value).__name__}"
                )
            if expected is int and value < 0:
                raise ConfigError(f"Config key '{key}' must not be negative")
            values[key] = value

        return cls(**values)


class ConfigManager:
    """Load and save the azmsi configuration file."""

    DEFAULT_CONFIG_DIRNAME = ".azmsi"
    DEFAULT_CONFIG_FILENAME = "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Resolve the config file path.

        Priority: explicit path, $AZMSI_CONFIG, ~/.azmsi/config.toml.
        """
        if custom_path:
            return Path(custom_path).expanduser().resolve()

        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path).expanduser().resolve()

        return Path.home() / cls.DEFAULT_CONFIG_DIRNAME / cls.DEFAULT_CONFIG_FILENAME

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> DemoConfig:
        """Load configuration, falling back to defaults when no file exists.

        An explicitly requested file that does not exist is an error.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            if custom_path:
                raise ConfigError(f"Config file not found: {config_path}")
            logger.debug("Config file not found, using defaults")
            return DemoConfig()

        mode = config_path.stat().st_mode & 0o777
        if mode & 0o077:
            logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
            os.chmod(config_path, 0o600)

        try:
            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]
        except (OSError, tomli.TOMLDecodeError) as e:  # type: ignore[attr-defined]
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return DemoConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: DemoConfig, custom_path: str | None = None) -> Path:
        """Write configuration, preserving comments in an existing file.

        Returns:
            Path the config was written to

        Raises:
            ConfigError: If saving fails
        """
        config_path = cls.get_config_path(custom_path)
        temp_path = config_path.with_suffix(".tmp")

        try:
            config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()
                doc.add(tomlkit.comment("azmsi defaults - command-line options take precedence"))

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path


__all__ = ["CONFIG_ENV_VAR", "ConfigError", "ConfigManager", "DemoConfig"]
