"""Configuration loader for bootstrap settings."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "bootstrap.yaml"

DEFAULT_DOMAIN = "n8n.yourdomain.com"
DEFAULT_EMAIL = "n8n@localdomain.com"
DEFAULT_TIMEZONE = "UTC"

LOG_LEVELS = ("error", "warn", "info", "verbose", "debug")


class QueueConfig(BaseModel):
    """n8n queue-mode configuration."""
    executions_mode: str = "queue"
    health_check_active: bool = True
    offload_manual_executions: bool = False
    runners_enabled: bool = False
    workers: int = 2
    worker_concurrency: int = 10

    @field_validator('executions_mode')
    @classmethod
    def validate_mode(cls, v):
        """Validate the n8n executions mode."""
        if v not in ("queue", "regular"):
            raise ValueError(f"Invalid executions mode: {v}")
        return v

    @field_validator('workers', 'worker_concurrency')
    @classmethod
    def validate_workers(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


class PerformanceConfig(BaseModel):
    """Execution pruning and timeout knobs."""
    prune_data: bool = True
    prune_max_count: int = 10000
    execution_timeout: int = 3600  # seconds
    graceful_shutdown_timeout: int = 30  # seconds

    @field_validator('prune_max_count', 'execution_timeout', 'graceful_shutdown_timeout')
    @classmethod
    def validate_positive(cls, v):
        """Validate tuning values are positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class DatabaseConfig(BaseModel):
    """PostgreSQL database configuration."""
    name: str = "n8n"
    user: str = "n8n"


class CertificateConfig(BaseModel):
    """Self-signed certificate configuration."""
    enabled: bool = True
    certs_dir: str = "certs"
    validity_days: int = 365

    @field_validator('validity_days')
    @classmethod
    def validate_validity(cls, v):
        """Validate certificate validity period."""
        if v <= 0:
            raise ValueError("Validity must be at least one day")
        return v


class BootstrapSettings(BaseModel):
    """Operator inputs and defaults for a bootstrap run."""
    domain: str = DEFAULT_DOMAIN
    email: str = DEFAULT_EMAIL
    protocol: str = "https"
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = "info"
    admin_user: str = "admin"
    web_network: str = "web"
    secrets_dir: str = "secrets"
    env_file: str = ".env"
    overwrite_existing: bool = False
    best_effort: bool = False
    queue: QueueConfig = Field(default_factory=QueueConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    certificates: CertificateConfig = Field(default_factory=CertificateConfig)

    @field_validator('domain', mode='before')
    @classmethod
    def default_domain(cls, v):
        """Fall back to the placeholder domain when unset."""
        if v is None or not str(v).strip():
            return DEFAULT_DOMAIN
        return str(v).strip()

    @field_validator('email', mode='before')
    @classmethod
    def default_email(cls, v):
        """Fall back to the placeholder email when unset."""
        if v is None or not str(v).strip():
            return DEFAULT_EMAIL
        v = str(v).strip()
        if "@" not in v:
            raise ValueError(f"Invalid email address: {v}")
        return v

    @field_validator('timezone', mode='before')
    @classmethod
    def default_timezone(cls, v):
        """Fall back to UTC when unset."""
        if v is None or not str(v).strip():
            return DEFAULT_TIMEZONE
        return str(v).strip()

    @field_validator('protocol')
    @classmethod
    def validate_protocol(cls, v):
        """Validate the public protocol."""
        if v not in ("http", "https"):
            raise ValueError(f"Invalid protocol: {v}")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Validate the n8n log level."""
        if v not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}")
        return v

    @field_validator('secrets_dir', 'env_file')
    @classmethod
    def validate_not_blank(cls, v):
        """Validate paths are not blank."""
        if not v.strip():
            raise ValueError("Path must not be empty")
        return v

    def secrets_path(self, base_dir: Path) -> Path:
        """Resolve the secrets directory against ``base_dir``."""
        return Path(base_dir) / Path(self.secrets_dir).expanduser()

    def env_path(self, base_dir: Path) -> Path:
        """Resolve the environment file against ``base_dir``."""
        return Path(base_dir) / Path(self.env_file).expanduser()

    def certs_path(self, base_dir: Path) -> Path:
        """Resolve the certificates directory against ``base_dir``."""
        return Path(base_dir) / Path(self.certificates.certs_dir).expanduser()


class ConfigLoader:
    """Loads and saves ``bootstrap.yaml`` in a deployment directory."""

    def __init__(self, base_dir: Path):
        """Initialize config loader with the deployment base directory."""
        self.base_dir = Path(base_dir)
        self._settings: Optional[BootstrapSettings] = None

    @property
    def config_path(self) -> Path:
        return self.base_dir / CONFIG_FILENAME

    def _load_yaml(self) -> dict:
        """Load the YAML config file."""
        if not self.config_path.exists():
            return {}

        with open(self.config_path) as f:
            return yaml.safe_load(f) or {}

    def _save_yaml(self, data: dict) -> None:
        """Save data to the YAML config file."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def config_exists(self) -> bool:
        """Check if a configuration file exists."""
        return self.config_path.exists()

    def load_settings(self, reload: bool = False) -> BootstrapSettings:
        """Load bootstrap settings."""
        if self._settings is None or reload:
            data = self._load_yaml()
            self._settings = BootstrapSettings(**data)
            logger.debug("Loaded settings from %s", self.config_path)
        return self._settings

    def save_settings(self, settings: BootstrapSettings) -> None:
        """Save bootstrap settings."""
        data = settings.model_dump()
        self._save_yaml(data)
        self._settings = settings

    def update_settings(self, **kwargs) -> BootstrapSettings:
        """Update specific settings fields and save."""
        settings = self.load_settings()
        data = settings.model_dump()
        for key, value in kwargs.items():
            if key in data:
                data[key] = value
        settings = BootstrapSettings(**data)
        self.save_settings(settings)
        return settings


# Global config loader instance
_config_loader: Optional[ConfigLoader] = None


def get_config_loader(base_dir: Optional[Path] = None) -> ConfigLoader:
    """Get or create the global config loader instance.

    The first call must name the base directory.
    """
    global _config_loader
    if base_dir is not None:
        _config_loader = ConfigLoader(base_dir)
    elif _config_loader is None:
        raise ValueError("Config loader has not been initialized with a base directory")
    return _config_loader
