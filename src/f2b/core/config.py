"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides for host paths
- Example configuration for `f2b config example`
"""

from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from f2b.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/f2b/config.yaml")
DEFAULT_FAIL2BAN_DIR = Path("/etc/fail2ban")
DEFAULT_LOCK_PATH = Path("/run/f2b.lock")
DEFAULT_AUDIT_LOG = Path("/var/log/f2b/audit.log")


class PathsConfig(BaseModel):
    """Host paths touched by a provisioning run."""

    fail2ban_dir: Path = DEFAULT_FAIL2BAN_DIR
    lock_path: Path = DEFAULT_LOCK_PATH

    @field_validator("fail2ban_dir", "lock_path")
    @classmethod
    def validate_absolute(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError("paths must be absolute")
        return v


class VerificationConfig(BaseModel):
    """Timing and tightening parameters for the post-install probe."""

    probe_count: int = 5
    record_delay: float = 0.5     # seconds between synthetic failures
    restart_settle: float = 3.0   # seconds after reload/restart
    probe_settle: float = 5.0     # seconds after the last synthetic failure
    retry_step: int = 2           # maxretry decrement on remediation

    @field_validator("probe_count", "retry_step")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be 1 or greater")
        return v

    @field_validator("record_delay", "restart_settle", "probe_settle")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("delays cannot be negative")
        return v


class OverridesConfig(BaseModel):
    """Operator-maintained policy overrides.

    `local` patches DEFAULT or any jail at jail.local precedence,
    `jails` patches individual jails at jail.d precedence.
    """

    local: dict[str, dict[str, Any]] = Field(default_factory=dict)
    jails: dict[str, dict[str, Any]] = Field(default_factory=dict)


class AuditConfig(BaseModel):
    """Audit log configuration."""

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG


class ToolConfig(BaseModel):
    """Root configuration model.

    Loaded from /etc/f2b/config.yaml. Every section is optional.
    """

    paths: PathsConfig = Field(default_factory=PathsConfig)
    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    overrides: OverridesConfig = Field(default_factory=OverridesConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "ToolConfig":
        """Load configuration from YAML file.

        Raises:
            ConfigurationError: If file is unreadable or invalid
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "ToolConfig":
        """Load configuration, falling back to defaults if the file is missing."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvironmentOverrides(BaseSettings):
    """Path overrides read from F2B_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="F2B_", extra="ignore")

    fail2ban_dir: Optional[Path] = None
    lock_path: Optional[Path] = None
    audit_log: Optional[Path] = None


class AppConfig:
    """Application configuration combining the config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[ToolConfig] = None,
    ) -> None:
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or ToolConfig.load_or_default(self.config_path)
        self._env = EnvironmentOverrides()

    @property
    def config(self) -> ToolConfig:
        """Get the tool configuration."""
        return self._config

    @property
    def verification(self) -> VerificationConfig:
        """Shortcut to verification config."""
        return self._config.verification

    @property
    def overrides(self) -> OverridesConfig:
        """Shortcut to policy overrides."""
        return self._config.overrides

    @property
    def fail2ban_dir(self) -> Path:
        """fail2ban configuration directory (environment wins)."""
        return self._env.fail2ban_dir or self._config.paths.fail2ban_dir

    @property
    def lock_path(self) -> Path:
        """Run lock file (environment wins)."""
        return self._env.lock_path or self._config.paths.lock_path

    @property
    def audit_enabled(self) -> bool:
        return self._config.audit.enabled

    @property
    def audit_log(self) -> Path:
        """Audit log file (environment wins)."""
        return self._env.audit_log or self._config.audit.log_path


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# f2b configuration
# Every section is optional; missing values use the defaults shown here.

paths:
  fail2ban_dir: /etc/fail2ban
  lock_path: /run/f2b.lock

# Post-install ban probe
verification:
  probe_count: 5        # synthetic failures per probe
  record_delay: 0.5     # seconds between failures
  restart_settle: 3.0   # seconds to wait after reload/restart
  probe_settle: 5.0     # seconds to wait before checking the ban
  retry_step: 2         # maxretry decrement when remediating

# Policy overrides applied on top of the generated policy
overrides:
  # jail.local precedence; DEFAULT or any jail name
  local:
    DEFAULT:
      bantime: 1h
  # jail.d/<name>.local precedence
  jails:
    sshd:
      maxretry: 3

audit:
  enabled: true
  log_path: /var/log/f2b/audit.log
"""
