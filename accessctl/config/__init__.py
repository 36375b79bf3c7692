import logging
import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Server configuration settings."""
    host: str = "localhost"
    port: int = 8000
    workers: int = 1
    debug: bool = False
    reload: bool = False
    log_level: str = "info"
    log_format: str = "text"
    log_file: Optional[str] = None
    access_log: bool = True


class StorageConfig(BaseModel):
    """Persistence backend settings."""
    backend: str = "memory"
    data_dir: str = "data"
    compact_threshold: int = Field(default=1000, gt=0)
    fsync: bool = True

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        if v not in ("memory", "file"):
            raise ValueError("Storage backend must be 'memory' or 'file'")
        return v


class PasswordPolicy(BaseModel):
    """Password rules published to the identity collaborator."""
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    max_age: int = 90
    history_count: int = 5


class MFAPolicy(BaseModel):
    """When a granted decision must be followed by MFA verification."""
    required: bool = False
    required_for_roles: List[str] = Field(default_factory=lambda: ["super_admin", "property_manager"])
    required_for_actions: List[str] = Field(default_factory=lambda: ["delete", "manage_users"])
    methods: List[str] = Field(default_factory=lambda: ["totp", "email"])

    @field_validator('methods')
    @classmethod
    def validate_methods(cls, v):
        allowed = {"totp", "sms", "email", "hardware"}
        unknown = [method for method in v if method not in allowed]
        if unknown:
            raise ValueError(f"Unknown MFA methods: {unknown}")
        return v


class AuditPolicy(BaseModel):
    """Audit retention and alerting."""
    retention_days: int = Field(default=365, gt=0)
    log_all_actions: bool = True
    log_failed_only: bool = False
    alert_on_suspicious_activity: bool = True
    max_entries: int = Field(default=10000, gt=0)


class ReportThresholds(BaseModel):
    """Thresholds that trigger security report recommendations."""
    pending_requests: int = 5
    failed_logins: int = 10
    privileged_user_ratio: float = 0.10
    suspicious_activity: int = 20
    privileged_hierarchy: int = 8
    high_risk_score: int = 7
    suspicious_window_hours: int = 24


class EngineConfig(BaseModel):
    """Decision engine behaviour."""
    inheritance_mode: str = "direct"
    decision_timeout_seconds: float = Field(default=2.0, gt=0)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    request_ttl_days: int = Field(default=30, gt=0)

    @field_validator('inheritance_mode')
    @classmethod
    def validate_inheritance_mode(cls, v):
        if v not in ("direct", "transitive"):
            raise ValueError("Inheritance mode must be 'direct' or 'transitive'")
        return v


class AccessControlConfig(BaseModel):
    """Process-wide access-control configuration."""
    default_user_role: str = "tenant"
    session_timeout: int = 480
    max_login_attempts: int = 5
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)
    mfa_policy: MFAPolicy = Field(default_factory=MFAPolicy)
    audit_policy: AuditPolicy = Field(default_factory=AuditPolicy)
    report_thresholds: ReportThresholds = Field(default_factory=ReportThresholds)
    engine: EngineConfig = Field(default_factory=EngineConfig)


class AppConfig(BaseModel):
    """Main application configuration."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    access_control: AccessControlConfig = Field(default_factory=AccessControlConfig)

    # Raw configuration for complex nested structures
    raw_config: Dict[str, Any] = Field(default_factory=dict)


class ConfigLoader:
    """Configuration loader for YAML files with environment-specific overrides."""

    def __init__(self, config_dir: Optional[Path] = None):
        """Initialize the configuration loader.

        Args:
            config_dir: Directory containing configuration files.
                       Defaults to the config directory at the project root.
        """
        if config_dir is None:
            current_dir = Path(__file__).parent.parent.parent
            self.config_dir = current_dir / "config"
        else:
            self.config_dir = Path(config_dir)

    def load_config(self, environment: Optional[str] = None) -> AppConfig:
        """Load configuration for the specified environment.

        Args:
            environment: Environment name (development, production, test).
                        If None, will try to detect from ENVIRONMENT variable.

        Returns:
            Loaded and validated configuration.
        """
        if environment is None:
            environment = os.getenv("ENVIRONMENT", "development")

        config_data = self._load_base_config()

        env_config = self._load_environment_config(environment)
        if env_config:
            config_data = self._merge_configs(config_data, env_config)

        config_data = self._substitute_env_vars(config_data)

        return self._create_app_config(config_data)

    def _load_base_config(self) -> Dict[str, Any]:
        """Load the base engine configuration."""
        base_config_path = self.config_dir / "engine.yaml"
        if base_config_path.exists():
            return self._load_yaml_file(base_config_path)
        return {}

    def _load_environment_config(self, environment: str) -> Optional[Dict[str, Any]]:
        """Load environment-specific configuration."""
        env_config_path = self.config_dir / f"{environment}.yaml"
        if env_config_path.exists():
            return self._load_yaml_file(env_config_path)
        return None

    def _load_yaml_file(self, file_path: Path) -> Dict[str, Any]:
        """Load and parse a YAML file."""
        try:
            with open(file_path, 'r') as file:
                return yaml.safe_load(file) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config file {file_path}: {e}")
            return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, config: Any) -> Any:
        """Substitute environment variables in configuration values."""
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_string_env_vars(config)
        else:
            return config

    def _substitute_string_env_vars(self, value: str) -> str:
        """Substitute environment variables in a string value."""
        # Handle ${VAR_NAME} and ${VAR_NAME:default}
        def replace_env_var(match):
            var_spec = match.group(1)
            if ':' in var_spec:
                var_name, default_value = var_spec.split(':', 1)
                return os.getenv(var_name, default_value)
            else:
                return os.getenv(var_spec, match.group(0))

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, value)

    def _create_app_config(self, config_data: Dict[str, Any]) -> AppConfig:
        """Create an AppConfig object from configuration data."""
        return AppConfig(
            server=ServerConfig(**config_data.get("server", {})),
            storage=StorageConfig(**config_data.get("storage", {})),
            access_control=AccessControlConfig(**config_data.get("access_control", {})),
            raw_config=config_data
        )

    def load_policies(self) -> List[Dict[str, Any]]:
        """Load seed security policies from policies.yaml."""
        policies_path = self.config_dir / "policies.yaml"
        if not policies_path.exists():
            return []
        data = self._substitute_env_vars(self._load_yaml_file(policies_path))
        return data.get("policies", []) or []


# Global configuration instance
_config_loader = ConfigLoader()
_app_config: Optional[AppConfig] = None


def reload_config(environment: Optional[str] = None, config_dir: Optional[Path] = None) -> AppConfig:
    """Reload the application configuration."""
    global _app_config, _config_loader
    if config_dir is not None:
        _config_loader = ConfigLoader(config_dir)
    _app_config = _config_loader.load_config(environment)
    return _app_config


def get_policies_config() -> List[Dict[str, Any]]:
    """Load seed policies from the active config directory."""
    return _config_loader.load_policies()
