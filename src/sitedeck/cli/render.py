"""Terminal rendering of progress events, results and recorded state."""

from __future__ import annotations

import click

from sitedeck.deploy.events import EventLevel, ProgressEvent
from sitedeck.models.discovery import DiscoveryReport
from sitedeck.models.results import DeployResult, RemoveResult
from sitedeck.models.state import DeploymentState

_STYLES: dict[EventLevel, tuple[str, str | None]] = {
    EventLevel.STEP: ("->", "cyan"),
    EventLevel.INFO: ("  ", None),
    EventLevel.SUCCESS: ("ok", "green"),
    EventLevel.WARNING: ("!!", "yellow"),
    EventLevel.ERROR: ("xx", "red"),
}


def format_bytes(size: int | float) -> str:
    """Human readable size, e.g. ``1.5 MB``."""
    value = float(size)
    if abs(value) < 1024:
        return f"{int(value)} B"
    for unit in ("KB", "MB"):
        value /= 1024
        if abs(value) < 1024:
            return f"{value:.1f} {unit}"
    return f"{value / 1024:.1f} GB"


def format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m {rest}s"


class EventRenderer:
    """Reporter that prints progress events.

    Per-file INFO events with a counter are shown only in verbose mode; quiet
    mode shows warnings and errors only.
    """

    def __init__(self, quiet: bool = False, verbose: bool = False) -> None:
        self.quiet = quiet
        self.verbose = verbose

    def __call__(self, event: ProgressEvent) -> None:
        if self.quiet and event.level not in (EventLevel.WARNING, EventLevel.ERROR):
            return
        counted = event.total is not None and event.current is not None
        if event.level == EventLevel.INFO and counted and not self.verbose:
            return
        marker, color = _STYLES[event.level]
        text = f"{marker} {event.message}"
        if counted and event.level == EventLevel.STEP:
            text = f"{text} [{event.current}/{event.total}]"
        err = event.level in (EventLevel.WARNING, EventLevel.ERROR)
        click.secho(text, fg=color, err=err)


def render_deploy_result(result: DeployResult) -> None:
    click.echo()
    title = "Dry Run Complete" if result.dry_run else "Deployment Successful!"
    click.secho(title, fg="yellow" if result.dry_run else "green", bold=True)
    click.echo(f"  App:          {result.app} ({result.environment})")
    click.echo(f"  Bucket:       {result.bucket_name}")
    verb = "Would upload" if result.dry_run else "Uploaded"
    size = format_bytes(result.total_bytes)
    click.echo(f"  {verb + ':':<13} {result.uploaded} files ({size})")
    if result.compressed_bytes:
        click.echo(f"  Sent:         {format_bytes(result.compressed_bytes)}")
    click.echo(f"  Unchanged:    {result.unchanged} files")
    if result.deleted:
        click.echo(f"  Deleted:      {result.deleted} files")
    if result.invalidation_id:
        click.echo(f"  Invalidation: {result.invalidation_id}")
    if result.website_url:
        click.echo(f"  Website:      {result.website_url}")
    if result.distribution_url:
        click.echo(f"  CloudFront:   {result.distribution_url}")
    if result.custom_domain_url:
        click.echo(f"  Domain:       {result.custom_domain_url}")
    click.echo(f"  Duration:     {format_duration(result.duration)}")
    if result.warnings:
        click.echo()
        click.secho(f"Completed with {len(result.warnings)} warning(s):", fg="yellow")
        for warning in result.warnings:
            click.echo(f"  - {warning}")
    click.echo()


def render_remove_result(result: RemoveResult) -> None:
    click.echo()
    if result.ok:
        click.secho("Removal Complete", fg="green", bold=True)
    else:
        click.secho("Removal Incomplete", fg="red", bold=True)
    for item in result.removed:
        click.echo(f"  removed  {item}")
    for item in result.kept:
        click.echo(f"  kept     {item}")
    for error in result.errors:
        click.secho(f"  failed   {error}", fg="red")
    if result.state_deleted:
        click.echo("  State file deleted")
    elif not result.ok:
        click.echo("  State kept; run 'sitedeck remove' again to retry")
    click.echo()


def render_state_summary(state: DeploymentState) -> None:
    """Summary of a recorded deployment."""
    resources = state.resources
    click.secho(f"{state.app} ({state.environment})", bold=True)
    if state.last_deployed:
        click.echo(f"  Last deployed: {state.last_deployed.isoformat()}")
    click.echo(f"  Files:         {len(state.files)}")
    if resources.s3:
        s3 = resources.s3
        click.echo(f"  Bucket:        {s3.bucket_name} ({s3.region})")
        if s3.website_url:
            click.echo(f"  Website:       {s3.website_url}")
    if resources.cloudfront:
        cf = resources.cloudfront
        click.echo(f"  Distribution:  {cf.distribution_id}")
        click.echo(f"  CloudFront:    {cf.distribution_url}")
        if cf.aliases:
            click.echo(f"  Aliases:       {', '.join(cf.aliases)}")
        if cf.last_invalidation:
            click.echo(f"  Invalidated:   {cf.last_invalidation.isoformat()}")
    if resources.acm:
        click.echo(f"  Certificate:   {resources.acm.certificate_arn}")
    if resources.route53:
        zone = resources.route53
        click.echo(f"  Hosted zone:   {zone.zone_name} ({zone.hosted_zone_id})")
        if zone.name_servers:
            click.echo(f"  Name servers:  {', '.join(zone.name_servers)}")
    click.echo()


def render_discovery_report(report: DiscoveryReport) -> None:
    pairs = report.app_environments()
    if not pairs:
        click.echo("No sitedeck-managed resources found.")
        return
    for app, environment in pairs:
        click.secho(f"{app} ({environment})", bold=True)
        for kind in ("s3", "cloudfront", "acm", "route53"):
            for resource in getattr(report, kind):
                if resource.matches(app, environment):
                    click.echo(f"  {kind:<11} {resource.name} [{resource.resource_id}]")
        click.echo()
