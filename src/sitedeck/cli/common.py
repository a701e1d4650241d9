"""Helpers shared by the SiteDeck CLI commands."""

from __future__ import annotations

import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

import click

from sitedeck.config.loader import CONFIG_FILE_NAMES, ConfigLoader, find_config_file
from sitedeck.deploy.state import DEFAULT_ENVIRONMENT, DEFAULT_STATE_DIR, StateStore
from sitedeck.lib.errors import (
    CertificateError,
    ConfigError,
    CredentialsError,
    DeploymentError,
    ProviderError,
    SiteDeckError,
)
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.config import SiteConfig

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

ROLLBACK_HINT = (
    "A bucket created by this run is removed when a later step fails. "
    "Re-run with --no-rollback to keep it for inspection."
)


@contextmanager
def handle_deployment_errors(
    rollback_hint: bool = False,
) -> Generator[None, None, None]:
    """Context manager for consistent error handling in commands.

    Exit codes:
        2: Configuration error
        3: Credentials, AWS or deployment error
    """
    try:
        yield
    except (click.exceptions.Exit, click.Abort, click.ClickException):
        raise
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        click.secho("Error: Configuration error", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(2)
    except CredentialsError as e:
        logger.error(f"Credentials error: {e}")
        click.secho("Error: AWS credentials", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        sys.exit(3)
    except CertificateError as e:
        logger.error(f"Certificate error: {e}")
        click.secho(f"Error: certificate for {e.domain} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        if e.name_servers:
            click.echo("  Name servers to set at your registrar:", err=True)
            for server in e.name_servers:
                click.echo(f"    - {server}", err=True)
        sys.exit(3)
    except DeploymentError as e:
        logger.error(f"Deployment error: {e}")
        click.secho(f"Error: {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.message}", err=True)
        if rollback_hint:
            click.echo(f"  {ROLLBACK_HINT}", err=True)
        sys.exit(3)
    except ProviderError as e:
        logger.error(f"AWS error: {e}")
        click.secho(f"Error: AWS {e.operation} failed", fg="red", err=True)
        click.echo(f"  {e.code or e.kind.value}: {e.message}", err=True)
        if rollback_hint:
            click.echo(f"  {ROLLBACK_HINT}", err=True)
        sys.exit(3)
    except SiteDeckError as e:
        logger.error(f"Error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(3)


def common_options(func: F) -> F:
    """Options every command accepts: config file, environment, verbosity."""
    decorators = [
        click.option(
            "--config",
            "-c",
            "config_path",
            type=click.Path(dir_okay=False),
            default=None,
            help=f"Path to the config file (default: {CONFIG_FILE_NAMES[0]})",
        ),
        click.option(
            "--env",
            "-e",
            "environment",
            default=DEFAULT_ENVIRONMENT,
            show_default=True,
            help="Environment to operate on",
        ),
        click.option(
            "--verbose",
            "-v",
            is_flag=True,
            help="Enable verbose debug logging",
        ),
        click.option(
            "--quiet",
            "-q",
            is_flag=True,
            help="Only print warnings, errors and the final result",
        ),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def profile_option(func: F) -> F:
    return click.option(
        "--profile",
        "-p",
        default=None,
        help="AWS profile to use (overrides the config file)",
    )(func)


def resolve_config_path(config_path: str | None) -> Path:
    """Explicit config path, or the one found from the working directory.

    Raises:
        ConfigError: If no config file can be found
    """
    if config_path:
        return Path(config_path).resolve()
    found = find_config_file()
    if found is None:
        raise ConfigError(
            "config_file",
            "Config file not found. Please create one of: "
            + ", ".join(CONFIG_FILE_NAMES),
        )
    return found


def load_site(
    config_path: str | None, environment: str, profile: str | None = None
) -> tuple[SiteConfig, StateStore]:
    """Load configuration and the state store kept beside the config file."""
    path = resolve_config_path(config_path)
    config = ConfigLoader().load(path, environment=environment, profile=profile)
    return config, StateStore(path.parent / DEFAULT_STATE_DIR)
