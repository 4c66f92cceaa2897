"""Configuration loader with YAML parsing and environment variable substitution."""

import os
import re
from pathlib import Path

import yaml

from .schema import FixPilotConfig


def substitute_env_vars(text: str) -> str:
    """
    Replace ${VAR_NAME} patterns with environment variable values.

    Args:
        text: Text containing ${VAR_NAME} patterns

    Returns:
        Text with environment variables substituted

    Raises:
        ValueError: If a referenced environment variable is not found
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(f"Environment variable {var_name} not found")
        return value

    return re.sub(r"\$\{([^}]+)\}", replacer, text)


def load_config(path: Path | None = None) -> FixPilotConfig:
    """
    Load configuration from YAML file with environment variable substitution.

    Without a path, defaults (plus ``FIXPILOT_*`` environment overrides) are
    used.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated FixPilotConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If environment variables are missing or config is invalid
        ValidationError: If config doesn't match schema
    """
    if path is None:
        config = FixPilotConfig()
        validate_config(config)
        return config

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with path.open() as f:
        raw_yaml = f.read()

    # Substitute environment variables
    yaml_with_env = substitute_env_vars(raw_yaml)

    # Parse YAML; an empty file means "all defaults"
    config_dict = yaml.safe_load(yaml_with_env) or {}
    if not isinstance(config_dict, dict):
        raise ValueError(f"Configuration root must be a mapping: {path}")

    config = FixPilotConfig.model_validate(config_dict)

    # Additional cross-field validation
    validate_config(config)

    return config


def validate_config(config: FixPilotConfig) -> None:
    """
    Perform additional cross-field validation.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If a selected mode is missing the settings it needs
    """
    if config.llm.provider == "anthropic" and config.llm.anthropic is None:
        raise ValueError("Anthropic provider selected but anthropic config missing")

    if config.dashboard.patch_mode == "local" and config.dashboard.project_root is None:
        raise ValueError("Local patch mode selected but dashboard.project_root missing")

    if config.retry.max_delay < config.retry.initial_delay:
        raise ValueError("retry.max_delay must not be smaller than retry.initial_delay")
