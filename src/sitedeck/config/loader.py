"""Configuration loader for SiteDeck.

This module provides the ConfigLoader class for locating ``sitedeck.yaml``,
substituting environment variables, merging an environment's overrides over
the base configuration and validating the result.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from sitedeck.config.env_loader import get_env_var, load_env_files, substitute_env_vars
from sitedeck.config.validator import first_error_field, flatten_pydantic_errors
from sitedeck.lib.errors import ConfigError
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.config import SiteConfig

logger = get_logger(__name__)

CONFIG_FILE_NAMES = ("sitedeck.yaml", "sitedeck.yml")
DEFAULT_ENVIRONMENT = "default"

# Environment variable to config path mapping
ENV_VAR_MAP = {
    "SITEDECK_REGION": ("region",),
    "SITEDECK_PROFILE": ("credentials", "profile"),
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override dict into base dict (in-place).

    For nested dicts, merging is recursive.
    For other types, including lists, override completely replaces base.
    None values in override are ignored.
    """
    for key, override_value in override.items():
        if override_value is None:
            continue
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(override_value, dict)
        ):
            _deep_merge(base[key], override_value)
        else:
            base[key] = copy.deepcopy(override_value)


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
    node = data
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[path[-1]] = value


def find_config_file(start_dir: str | Path | None = None) -> Path | None:
    """Find a config file in ``start_dir`` or any of its parents."""
    current = Path(start_dir or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def merge_environment(
    raw: dict[str, Any], environment: str | None
) -> dict[str, Any]:
    """Merge an environment's overrides over the base configuration.

    Args:
        raw: Parsed configuration mapping
        environment: Environment name; None or ``default`` returns the base

    Returns:
        New mapping with ``environments`` removed

    Raises:
        ConfigError: If the environment is not declared
    """
    base = copy.deepcopy(raw)
    environments = base.pop("environments", None) or {}
    if not isinstance(environments, dict):
        raise ConfigError("environments", "Must be a mapping of environment names")
    if not environment or environment == DEFAULT_ENVIRONMENT:
        return base
    if environment not in environments:
        available = ", ".join(sorted(environments)) or "none"
        raise ConfigError(
            "environment",
            f"Environment '{environment}' not found in config. "
            f"Available environments: {available}",
        )
    override = environments[environment] or {}
    if not isinstance(override, dict):
        raise ConfigError(
            f"environments.{environment}", "Environment override must be a mapping"
        )
    _deep_merge(base, override)
    return base


class ConfigLoader:
    """Loads and validates SiteDeck configuration files.

    Configuration precedence (highest to lowest):
    1. ``--profile`` passed on the command line
    2. SITEDECK_* environment variables
    3. ``environments.<name>`` overrides
    4. Base settings in sitedeck.yaml
    """

    def parse_yaml(self, path: Path) -> dict[str, Any]:
        """Read a YAML file with environment variable substitution.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            raw_text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(
                "config_file",
                f"Configuration file not found at {path}. "
                "Please ensure the file exists at this path.",
            ) from e
        try:
            content = yaml.safe_load(substitute_env_vars(raw_text))
        except yaml.YAMLError as e:
            raise ConfigError(
                "yaml_parse", f"Failed to parse YAML file {path}: {e}"
            ) from e
        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigError("yaml_parse", f"{path} must contain a mapping")
        return content

    def load(
        self,
        config_path: str | Path | None = None,
        environment: str | None = None,
        profile: str | None = None,
    ) -> SiteConfig:
        """Locate, merge and validate the configuration.

        Args:
            config_path: Explicit path; discovered from the cwd when None
            environment: Environment whose overrides are applied
            profile: AWS profile overriding the configured credentials

        Returns:
            Validated SiteConfig

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if config_path is None:
            path = find_config_file()
            if path is None:
                raise ConfigError(
                    "config_file",
                    "Config file not found. Please create one of: "
                    + ", ".join(CONFIG_FILE_NAMES),
                )
        else:
            path = Path(config_path)

        load_env_files(environment, path.parent)
        raw = self.parse_yaml(path)
        logger.debug("Loaded configuration from %s", path)
        return self.resolve(raw, environment=environment, profile=profile, source=path)

    def resolve(
        self,
        raw: dict[str, Any],
        environment: str | None = None,
        profile: str | None = None,
        source: Path | str = "configuration",
    ) -> SiteConfig:
        """Merge and validate an already parsed configuration mapping."""
        merged = merge_environment(raw, environment)

        for env_var, path in ENV_VAR_MAP.items():
            value = get_env_var(env_var)
            if value is not None:
                _set_path(merged, path, value)

        if profile:
            _set_path(merged, ("credentials", "profile"), profile)

        try:
            return SiteConfig(**merged)
        except PydanticValidationError as e:
            error_text = "\n".join(f"  - {m}" for m in flatten_pydantic_errors(e))
            raise ConfigError(
                first_error_field(e),
                f"Invalid configuration in {source}:\n{error_text}",
            ) from e


def load_config(
    config_path: str | Path | None = None,
    environment: str | None = None,
    profile: str | None = None,
) -> SiteConfig:
    """One-call helper for CLI commands."""
    return ConfigLoader().load(config_path, environment=environment, profile=profile)
