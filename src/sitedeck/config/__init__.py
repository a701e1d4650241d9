"""Configuration loading and validation for SiteDeck.

Main components:
- ConfigLoader: Locate, merge and validate sitedeck.yaml
- Environment variable substitution (${VAR} and ${VAR:-default})
- Per-environment dotenv files
"""

from sitedeck.config.env_loader import get_env_var, load_env_files, substitute_env_vars
from sitedeck.config.loader import ConfigLoader, find_config_file, load_config

__all__ = [
    "ConfigLoader",
    "find_config_file",
    "load_config",
    "substitute_env_vars",
    "get_env_var",
    "load_env_files",
]
