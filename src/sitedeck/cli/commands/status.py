"""CLI command for showing recorded deployments."""

from __future__ import annotations

import json

import click

from sitedeck.cli.common import common_options, handle_deployment_errors, load_site
from sitedeck.cli.render import render_state_summary
from sitedeck.lib.logging_config import setup_logging
from sitedeck.models.state import DeploymentState


@click.command()
@common_options
@click.option(
    "--all", "-a", "all_environments", is_flag=True, help="Show every environment"
)
@click.option("--json", "as_json", is_flag=True, help="Print state as JSON")
def status(
    config_path: str | None,
    environment: str,
    verbose: bool,
    quiet: bool,
    all_environments: bool,
    as_json: bool,
) -> None:
    """Show the recorded deployment state.

    Reads local state only; no AWS calls are made.
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config, store = load_site(config_path, environment)
        names = store.list_environments() if all_environments else [environment]

        states: list[DeploymentState] = []
        for name in names:
            state = store.load(config.app, name)
            if state is not None:
                states.append(state)

        if as_json:
            payload = [s.model_dump(mode="json", by_alias=True) for s in states]
            data = payload if all_environments else (payload[0] if payload else None)
            click.echo(json.dumps(data, indent=2))
            return

        if not states:
            scope = "any environment" if all_environments else f"'{environment}'"
            click.secho(
                f"No deployment recorded for {config.app} in {scope}.", fg="yellow"
            )
            click.echo("  Run 'sitedeck deploy' or 'sitedeck recover'.")
            return

        for state in states:
            render_state_summary(state)
