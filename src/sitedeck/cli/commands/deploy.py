"""CLI command for deploying a site.

Implements 'sitedeck deploy': publishes the build directory to S3 and
reconciles the CloudFront distribution, certificate and DNS records.
"""

from __future__ import annotations

import click

from sitedeck.cli.common import (
    common_options,
    handle_deployment_errors,
    load_site,
    profile_option,
)
from sitedeck.cli.render import EventRenderer, render_deploy_result
from sitedeck.deploy.aws.client import AwsClients, verify_credentials
from sitedeck.deploy.orchestrator import Deployer
from sitedeck.lib.logging_config import setup_logging
from sitedeck.models.results import DeployOptions


@click.command()
@common_options
@profile_option
@click.option(
    "--build-dir",
    "-b",
    type=click.Path(file_okay=False),
    default=None,
    help="Build directory to publish (overrides s3.build_dir)",
)
@click.option("--force", "-f", is_flag=True, help="Upload every file")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show what would be uploaded without changing anything",
)
@click.option("--cleanup", is_flag=True, help="Delete remote files removed locally")
@click.option(
    "--skip-invalidation", is_flag=True, help="Do not invalidate the CloudFront cache"
)
@click.option("--skip-cache", is_flag=True, help="Skip cache warming")
@click.option("--no-cloudfront", is_flag=True, help="Deploy to S3 only")
@click.option(
    "--no-rollback",
    is_flag=True,
    help="Keep a newly created bucket when a later step fails",
)
@click.option(
    "--no-wait",
    is_flag=True,
    help="Do not wait for the distribution to finish deploying",
)
def deploy(
    config_path: str | None,
    environment: str,
    verbose: bool,
    quiet: bool,
    profile: str | None,
    build_dir: str | None,
    force: bool,
    dry_run: bool,
    cleanup: bool,
    skip_invalidation: bool,
    skip_cache: bool,
    no_cloudfront: bool,
    no_rollback: bool,
    no_wait: bool,
) -> None:
    """Deploy the site to S3 and CloudFront.

    Example:

        sitedeck deploy

        sitedeck deploy --env production --cleanup

        sitedeck deploy --dry-run
    """
    if not quiet:
        setup_logging(verbose=verbose, quiet=quiet)

    with handle_deployment_errors(rollback_hint=not no_rollback):
        config, store = load_site(config_path, environment, profile)
        clients = AwsClients.from_config(config)
        if not dry_run:
            verify_credentials(clients)

        if not quiet:
            click.secho(f"Deploying {config.app} ({environment})", bold=True)

        options = DeployOptions(
            force=force,
            dry_run=dry_run,
            skip_invalidation=skip_invalidation,
            skip_cache_warming=skip_cache,
            cleanup=cleanup,
            no_cloudfront=no_cloudfront,
            rollback=not no_rollback,
            wait_for_deployment=not no_wait,
            build_dir=build_dir,
        )
        deployer = Deployer(
            clients,
            store,
            config,
            environment,
            reporter=EventRenderer(quiet=quiet, verbose=verbose),
        )
        result = deployer.deploy(options)

        if quiet:
            click.echo(
                result.custom_domain_url
                or result.distribution_url
                or result.website_url
                or ""
            )
            return
        render_deploy_result(result)
