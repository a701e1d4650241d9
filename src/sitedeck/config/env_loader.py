"""Environment variable loading and ``${VAR}`` substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import load_dotenv

from sitedeck.lib.errors import ConfigError
from sitedeck.lib.logging_config import get_logger

logger = get_logger(__name__)

# ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def get_env_var(name: str, default: str | None = None) -> str | None:
    """Return an environment variable, treating empty strings as unset."""
    value = os.environ.get(name)
    return value if value else default


def substitute_env_vars(text: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` references in text.

    Args:
        text: Raw text, typically a YAML document

    Returns:
        Text with every reference substituted

    Raises:
        ConfigError: If a referenced variable is unset and has no default
    """

    def replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None:
            return value
        if default is not None:
            return default
        raise ConfigError(
            name,
            f"Environment variable '{name}' is not set. "
            f"Set it or use '${{{name}:-default}}' in the configuration.",
        )

    return ENV_VAR_PATTERN.sub(replace, text)


def env_file_candidates(environment: str | None) -> list[str]:
    """Dotenv file names in priority order, highest first."""
    names: list[str] = []
    if environment:
        names += [f".env.{environment}.local", f".env.{environment}"]
    names += [".env.local", ".env"]
    return names


def load_env_files(
    environment: str | None = None, config_dir: str | Path | None = None
) -> list[Path]:
    """Load dotenv files for an environment into ``os.environ``.

    Files are loaded from highest to lowest priority without overriding, so
    variables already set in the process always win, and
    ``.env.<env>.local`` beats ``.env.<env>``, ``.env.local`` and ``.env``.

    Returns:
        Paths of the files that were loaded
    """
    base = Path(config_dir) if config_dir else Path.cwd()
    loaded: list[Path] = []
    for name in env_file_candidates(environment):
        path = base / name
        if path.is_file():
            load_dotenv(path, override=False)
            loaded.append(path)
    if loaded:
        logger.debug("Loaded env files: %s", ", ".join(p.name for p in loaded))
    return loaded
