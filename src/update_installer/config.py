"""
Configuration management for the update installer.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/update-installer/config.yml or --config path)
3. Environment variables (UPDATE_INSTALLER_* prefix, __ for nesting)
4. Explicit overrides supplied by the CLI (highest precedence)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path("/etc/update-installer/config.yml")
DEFAULT_ENV_PREFIX = "UPDATE_INSTALLER_"


# =============================================================================
# Hook Configuration
# =============================================================================


class HookConfig(BaseModel):
    """Pre-install hook execution settings.

    Attributes:
        timeout_seconds: Maximum time to wait for the hook before killing it.
        use_shell: Run the hook line through the system shell.
        allowed_commands: Executables a hook may invoke (empty = unrestricted).
    """

    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum seconds to wait for the pre-install hook",
    )
    use_shell: bool = Field(
        default=False,
        description="Execute the hook through the system shell instead of argv form",
    )
    allowed_commands: list[str] = Field(
        default_factory=list,
        description="Allowed hook executables (full path or basename); empty allows any",
    )

    @field_validator("allowed_commands", mode="before")
    @classmethod
    def split_allowed_commands(cls, v: Any) -> Any:
        """Accept a single name or a comma-separated string."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def check_shell_allow_list(self) -> HookConfig:
        """Reject an allow-list the shell could bypass."""
        if self.use_shell and self.allowed_commands:
            raise ValueError(
                "allowed_commands cannot be enforced when use_shell is enabled"
            )
        return self


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Application logging configuration.

    Attributes:
        level: Log level.
        json_format: Emit JSON log lines instead of plain text.
        log_to_stdout: Whether to log to stdout.
    """

    level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error, critical",
    )
    json_format: bool = Field(
        default=False,
        description="Emit JSON-formatted log lines",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"debug", "info", "warn", "warning", "error", "critical"}
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"Invalid log level: {v}. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        if v_lower == "warn":
            return "warning"
        return v_lower


# =============================================================================
# Main Installer Configuration
# =============================================================================


class InstallerConfig(BaseModel):
    """
    Main installer configuration model.

    Attributes:
        root: Managed root holding versions/, the pointer files and the
            install history.
        hooks: Pre-install hook execution settings.
        logging: Logging configuration.
    """

    root: str = Field(
        default="/var/lib/update-installer",
        description="Managed root directory",
    )
    hooks: HookConfig = Field(
        default_factory=HookConfig,
        description="Pre-install hook settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )

    @field_validator("root")
    @classmethod
    def validate_root(cls, v: str) -> str:
        """Reject an empty root path."""
        if not v.strip():
            raise ValueError("root must not be empty")
        return v

    @property
    def root_path(self) -> Path:
        """Managed root as a Path."""
        return Path(self.root)


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, e.g.
    UPDATE_INSTALLER_HOOKS__TIMEOUT_SECONDS=60. Values are kept as strings and
    converted by the model field they land in, so UPDATE_INSTALLER_ROOT=2024
    stays a path and a single allowed command still becomes a list.

    Args:
        prefix: Environment variable prefix.

    Returns:
        Dictionary with configuration values.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        current[parts[-1]] = value

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    overrides: dict[str, Any] | None = None,
) -> InstallerConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, the default
            path is used when it exists.
        env_prefix: Prefix for environment variables.
        overrides: Values that take precedence over every other source.

    Returns:
        Fully configured InstallerConfig instance.

    Raises:
        FileNotFoundError: If the specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(overrides={"root": "/srv/game"})
        >>> config.root
        '/srv/game'
    """
    config_dict: dict[str, Any] = {}

    if config_path is None:
        if DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    elif isinstance(config_path, str):
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)

    return InstallerConfig(**config_dict)
