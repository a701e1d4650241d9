"""CLI command for rebuilding lost state from AWS resource tags."""

from __future__ import annotations

import sys

import click

from sitedeck.cli.common import (
    common_options,
    handle_deployment_errors,
    load_site,
    profile_option,
)
from sitedeck.cli.render import render_discovery_report, render_state_summary
from sitedeck.deploy.aws.client import AwsClients, verify_credentials
from sitedeck.deploy.discovery import discover_all, recover_state
from sitedeck.lib.errors import StateCorruptError
from sitedeck.lib.logging_config import setup_logging


@click.command()
@common_options
@profile_option
@click.option("--force", "-f", is_flag=True, help="Overwrite existing state")
@click.option(
    "--list",
    "list_only",
    is_flag=True,
    help="List every sitedeck-managed resource instead of recovering",
)
def recover(
    config_path: str | None,
    environment: str,
    verbose: bool,
    quiet: bool,
    profile: str | None,
    force: bool,
    list_only: bool,
) -> None:
    """Recover deployment state from tagged AWS resources.

    The recovered state has no file digests, so the next deploy uploads
    every file once.
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config, store = load_site(config_path, environment, profile)
        clients = AwsClients.from_config(config)
        verify_credentials(clients)

        if list_only:
            render_discovery_report(discover_all(clients))
            return

        if not force:
            try:
                existing = store.load(config.app, environment)
                exists = existing is not None and not existing.is_empty
            except StateCorruptError:
                exists = True
            if exists:
                confirm = click.confirm(
                    f"State for '{config.app}' ({environment}) already exists. "
                    "Overwrite it?",
                    default=False,
                )
                if not confirm:
                    click.secho("Recover aborted.", fg="yellow")
                    sys.exit(0)
                force = True

        state = recover_state(clients, store, config.app, environment, force=force)

        if quiet:
            return
        click.secho("State recovered", fg="green", bold=True)
        render_state_summary(state)
