"""Unit tests for config_manager module."""

import os
import stat

import pytest

from azmsi.config_manager import CONFIG_ENV_VAR, ConfigError, ConfigManager, DemoConfig


class TestDemoConfig:
    """Tests for DemoConfig dataclass."""

    def test_default_values(self):
        config = DemoConfig()
        assert config.default_location == "westus2"
        assert config.vm_size == "Standard_B2s"
        assert config.teardown_countdown == 30
        assert config.provider_poll_interval == 30
        assert config.name_prefix == "msidemo"

    def test_round_trip_dict(self):
        config = DemoConfig(default_location="eastus", teardown_countdown=10)
        assert DemoConfig.from_dict(config.to_dict()) == config

    def test_from_dict_partial(self):
        config = DemoConfig.from_dict({"vm_size": "Standard_D2s_v5"})
        assert config.vm_size == "Standard_D2s_v5"
        assert config.default_location == "westus2"

    def test_unknown_keys_ignored_with_warning(self, caplog):
        config = DemoConfig.from_dict({"colour": "blue", "name_prefix": "demo"})

        assert config.name_prefix == "demo"
        assert "Ignoring unknown config key: colour" in caplog.text

    def test_wrong_type_raises(self):
        with pytest.raises(ConfigError, match="teardown_countdown"):
            DemoConfig.from_dict({"teardown_countdown": "30"})

    def test_bool_rejected_for_int(self):
        with pytest.raises(ConfigError, match="must be int"):
            DemoConfig.from_dict({"provider_poll_interval": True})

    def test_negative_int_rejected(self):
        with pytest.raises(ConfigError, match="must not be negative"):
            DemoConfig.from_dict({"teardown_countdown": -1})


class TestConfigPath:
    def test_default_path_under_home(self, isolated_home):
        assert ConfigManager.get_config_path() == isolated_home / ".azmsi" / "config.toml"

    def test_env_var_override(self, tmp_path, monkeypatch):
        target = tmp_path / "custom.toml"
        monkeypatch.setenv(CONFIG_ENV_VAR, str(target))
        assert ConfigManager.get_config_path() == target.resolve()

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_ENV_VAR, str(tmp_path / "env.toml"))
        explicit = tmp_path / "explicit.toml"
        assert ConfigManager.get_config_path(str(explicit)) == explicit.resolve()


class TestLoadSave:
    def test_missing_default_file_gives_defaults(self):
        assert ConfigManager.load_config() == DemoConfig()

    def test_missing_explicit_file_raises(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            ConfigManager.load_config(str(tmp_path / "nope.toml"))

    def test_save_then_load(self, tmp_path):
        path = tmp_path / "config.toml"
        config = DemoConfig(default_location="northeurope", vm_size="Standard_D2s_v5")

        saved = ConfigManager.save_config(config, str(path))

        assert saved == path.resolve()
        assert ConfigManager.load_config(str(path)) == config
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert not path.with_suffix(".tmp").exists()

    def test_save_keeps_comments(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('# my notes\nvm_size = "Standard_B1s"\n')

        ConfigManager.save_config(DemoConfig(vm_size="Standard_B4ms"), str(path))

        text = path.read_text()
        assert "# my notes" in text
        assert 'vm_size = "Standard_B4ms"' in text

    def test_insecure_permissions_are_fixed(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('default_location = "eastus"\n')
        os.chmod(path, 0o644)

        config = ConfigManager.load_config(str(path))

        assert config.default_location == "eastus"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_invalid_toml_raises(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("this is = = not toml\n")
        os.chmod(path, 0o600)

        with pytest.raises(ConfigError, match="Failed to load config"):
            ConfigManager.load_config(str(path))
