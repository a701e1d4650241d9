"""CLI command for tearing a deployment down."""

from __future__ import annotations

import sys

import click

from sitedeck.cli.common import (
    common_options,
    handle_deployment_errors,
    load_site,
    profile_option,
)
from sitedeck.cli.render import EventRenderer, render_remove_result
from sitedeck.deploy.aws.client import AwsClients, verify_credentials
from sitedeck.deploy.orchestrator import Deployer
from sitedeck.lib.logging_config import setup_logging
from sitedeck.models.results import RemoveOptions


@click.command()
@common_options
@profile_option
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
@click.option("--keep-bucket", is_flag=True, help="Keep the S3 bucket and its files")
@click.option(
    "--keep-distribution", is_flag=True, help="Keep the CloudFront distribution"
)
@click.option("--keep-certificate", is_flag=True, help="Keep the ACM certificate")
@click.option(
    "--delete-hosted-zone",
    is_flag=True,
    help="Also delete a hosted zone sitedeck created",
)
def remove(
    config_path: str | None,
    environment: str,
    verbose: bool,
    quiet: bool,
    profile: str | None,
    force: bool,
    keep_bucket: bool,
    keep_distribution: bool,
    keep_certificate: bool,
    delete_hosted_zone: bool,
) -> None:
    """Remove a deployed site and its AWS resources.

    Resources are deleted in the order CloudFront, ACM, S3, Route53. When
    no local state exists, resources are found through their tags.
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors():
        config, store = load_site(config_path, environment, profile)

        if not force:
            confirm = click.confirm(
                f"Remove all AWS resources of '{config.app}' ({environment})?",
                default=False,
            )
            if not confirm:
                click.secho("Remove aborted.", fg="yellow")
                sys.exit(0)

        clients = AwsClients.from_config(config)
        verify_credentials(clients)
        deployer = Deployer(
            clients,
            store,
            config,
            environment,
            reporter=EventRenderer(quiet=quiet, verbose=verbose),
        )
        result = deployer.remove(
            RemoveOptions(
                keep_bucket=keep_bucket,
                keep_distribution=keep_distribution,
                keep_certificate=keep_certificate,
                keep_hosted_zone=not delete_hosted_zone,
            )
        )

        if not quiet:
            render_remove_result(result)
        if not result.ok:
            sys.exit(3)
