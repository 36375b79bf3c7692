"""Unit tests for configuration loading and management."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from accessctl.config import (
    AccessControlConfig,
    ConfigLoader,
    EngineConfig,
    MFAPolicy,
    ServerConfig,
    StorageConfig
)
from accessctl.config.settings import EngineSettings

PROJECT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


class TestConfigModels:
    """Test cases for configuration models."""

    def test_server_config_defaults(self):
        """Test server configuration with default values."""
        config = ServerConfig()

        assert config.host == "localhost"
        assert config.port == 8000
        assert config.log_level == "info"
        assert config.log_format == "text"
        assert config.access_log is True

    def test_access_control_defaults(self):
        """Test the access-control defaults."""
        config = AccessControlConfig()

        assert config.default_user_role == "tenant"
        assert config.session_timeout == 480
        assert config.max_login_attempts == 5
        assert config.password_policy.min_length == 8
        assert config.mfa_policy.required is False
        assert config.mfa_policy.required_for_roles == ["super_admin", "property_manager"]
        assert config.mfa_policy.required_for_actions == ["delete", "manage_users"]
        assert config.audit_policy.retention_days == 365
        assert config.audit_policy.max_entries == 10000
        assert config.engine.inheritance_mode == "direct"
        assert config.engine.decision_timeout_seconds == 2.0

    def test_validation(self):
        """Test invalid values are rejected."""
        with pytest.raises(ValidationError):
            StorageConfig(backend="redis")
        with pytest.raises(ValidationError):
            EngineConfig(inheritance_mode="sideways")
        with pytest.raises(ValidationError):
            EngineConfig(decision_timeout_seconds=0)
        with pytest.raises(ValidationError):
            MFAPolicy(methods=["carrier_pigeon"])

    def test_config_round_trip(self):
        """Test a dumped configuration validates back to itself."""
        config = AccessControlConfig(mfa_policy=MFAPolicy(required=True))
        assert AccessControlConfig.model_validate(config.model_dump(mode="json")) == config


class TestConfigLoader:
    """Test cases for ConfigLoader."""

    def write_yaml(self, directory: Path, name: str, data):
        with open(directory / name, "w") as file:
            yaml.safe_dump(data, file)

    def test_load_config_merges_environment(self, temp_directory):
        """Test environment files override the base file key by key."""
        self.write_yaml(temp_directory, "engine.yaml", {
            "server": {"port": 9000, "log_level": "info"},
            "access_control": {"mfa_policy": {"required": False, "methods": ["totp"]}},
        })
        self.write_yaml(temp_directory, "staging.yaml", {
            "server": {"log_level": "debug"},
            "access_control": {"mfa_policy": {"required": True}},
        })

        config = ConfigLoader(temp_directory).load_config("staging")

        assert config.server.port == 9000
        assert config.server.log_level == "debug"
        assert config.access_control.mfa_policy.required is True
        assert config.access_control.mfa_policy.methods == ["totp"]

    def test_missing_files_use_defaults(self, temp_directory):
        config = ConfigLoader(temp_directory).load_config("nowhere")
        assert config.storage.backend == "memory"
        assert config.access_control == AccessControlConfig()

    def test_env_var_substitution(self, temp_directory, mock_environment_variables):
        """Test ${VAR} and ${VAR:default} references."""
        self.write_yaml(temp_directory, "engine.yaml", {
            "server": {"host": "${TEST_ACCESSCTL_HOST}"},
            "storage": {"data_dir": "${TEST_ACCESSCTL_MISSING:/tmp/default}"},
        })

        with mock_environment_variables(TEST_ACCESSCTL_HOST="10.1.2.3"):
            config = ConfigLoader(temp_directory).load_config("test")

        assert config.server.host == "10.1.2.3"
        assert config.storage.data_dir == "/tmp/default"

    def test_invalid_yaml_is_ignored(self, temp_directory):
        (temp_directory / "engine.yaml").write_text("server: [unclosed")
        config = ConfigLoader(temp_directory).load_config("test")
        assert config.server == ServerConfig()

    def test_load_policies(self, temp_directory):
        self.write_yaml(temp_directory, "policies.yaml", {
            "policies": [{"id": "p1", "name": "One", "rules": []}],
        })
        assert ConfigLoader(temp_directory).load_policies() == [{"id": "p1", "name": "One", "rules": []}]
        assert ConfigLoader(temp_directory / "missing").load_policies() == []

    def test_project_config_files(self):
        """Test the shipped configuration files load and validate."""
        loader = ConfigLoader(PROJECT_CONFIG_DIR)
        for environment in ("development", "test", "production"):
            config = loader.load_config(environment)
            assert config.access_control.engine.inheritance_mode in ("direct", "transitive")

        assert loader.load_config("test").storage.backend == "memory"
        policy_ids = [p["id"] for p in loader.load_policies()]
        assert "critical_delete_guard" in policy_ids


class TestEngineSettings:
    """Test cases for environment-driven settings."""

    def test_settings_from_environment(self, mock_environment_variables):
        with mock_environment_variables(
            ACCESSCTL_ENVIRONMENT="production",
            ACCESSCTL_STORAGE_BACKEND="file",
            ACCESSCTL_DATA_DIR="/var/lib/accessctl",
            ACCESSCTL_SWEEP_ENABLED="false",
        ):
            settings = EngineSettings()

        assert settings.environment == "production"
        assert settings.storage_backend == "file"
        assert settings.data_dir == "/var/lib/accessctl"
        assert settings.sweep_enabled is False
