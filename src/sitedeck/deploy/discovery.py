"""Find SiteDeck-managed resources by tag and rebuild lost state from them."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from sitedeck.deploy.aws import cdn, certificates, dns, storage
from sitedeck.deploy.aws.calls import invoke, iterate_pages
from sitedeck.deploy.aws.client import GLOBAL_REGION, AwsClients
from sitedeck.deploy.state import StateStore
from sitedeck.lib.errors import (
    DeploymentError,
    ProviderError,
    StateConflictError,
    StateCorruptError,
)
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.discovery import (
    TAG_APP,
    TAG_AUTO_CREATED,
    TAG_ENVIRONMENT,
    TAG_REGION,
    DiscoveredResource,
    DiscoveredResources,
    DiscoveryReport,
    is_managed,
)
from sitedeck.models.state import (
    AcmResource,
    CloudFrontResource,
    DeploymentState,
    Route53Resource,
    S3Resource,
)

logger = get_logger(__name__)


def _wanted(tags: dict[str, str], app: str | None, environment: str | None) -> bool:
    if not is_managed(tags):
        return False
    if app is not None and tags.get(TAG_APP) != app:
        return False
    return environment is None or tags.get(TAG_ENVIRONMENT) == environment


def discover_buckets(
    client: Any, app: str | None = None, environment: str | None = None
) -> list[DiscoveredResource]:
    response = invoke("ListBuckets", client.list_buckets)
    found = []
    for bucket in response.get("Buckets", []):
        name = bucket["Name"]
        try:
            tags = storage.get_bucket_tags(client, name)
        except ProviderError as exc:
            logger.debug("Skipping bucket %s: %s", name, exc)
            continue
        if not _wanted(tags, app, environment):
            continue
        region = tags.get(TAG_REGION, "us-east-1")
        found.append(
            DiscoveredResource(
                kind="s3",
                resource_id=name,
                name=name,
                region=region,
                arn=storage.bucket_arn(name),
                tags=tags,
            )
        )
    return found


def discover_distributions(
    client: Any, app: str | None = None, environment: str | None = None
) -> list[DiscoveredResource]:
    found = []
    for page in iterate_pages("ListDistributions", client, "list_distributions"):
        for item in page.get("DistributionList", {}).get("Items", []) or []:
            try:
                tags = cdn.get_distribution_tags(client, item["ARN"])
            except ProviderError as exc:
                logger.debug("Skipping distribution %s: %s", item["Id"], exc)
                continue
            if not _wanted(tags, app, environment):
                continue
            found.append(
                DiscoveredResource(
                    kind="cloudfront",
                    resource_id=item["Id"],
                    name=item["DomainName"],
                    status=item.get("Status"),
                    arn=item["ARN"],
                    aliases=list(item.get("Aliases", {}).get("Items", []) or []),
                    tags=tags,
                )
            )
    return found


def discover_certificates(
    client: Any, app: str | None = None, environment: str | None = None
) -> list[DiscoveredResource]:
    found = []
    for page in iterate_pages(
        "ListCertificates",
        client,
        "list_certificates",
        CertificateStatuses=["ISSUED", "PENDING_VALIDATION"],
    ):
        for summary in page.get("CertificateSummaryList", []):
            arn = summary["CertificateArn"]
            try:
                tags = certificates.get_certificate_tags(client, arn)
            except ProviderError as exc:
                logger.debug("Skipping certificate %s: %s", arn, exc)
                continue
            if not _wanted(tags, app, environment):
                continue
            found.append(
                DiscoveredResource(
                    kind="acm",
                    resource_id=arn,
                    name=summary.get("DomainName", ""),
                    status=summary.get("Status"),
                    region=GLOBAL_REGION,
                    arn=arn,
                    tags=tags,
                )
            )
    return found


def discover_hosted_zones(
    client: Any, app: str | None = None, environment: str | None = None
) -> list[DiscoveredResource]:
    found = []
    for zone in dns.list_hosted_zones(client):
        zone_id = dns.strip_zone_id(zone["Id"])
        try:
            tags = dns.get_hosted_zone_tags(client, zone_id)
        except ProviderError as exc:
            logger.debug("Skipping hosted zone %s: %s", zone_id, exc)
            continue
        if not _wanted(tags, app, environment):
            continue
        found.append(
            DiscoveredResource(
                kind="route53",
                resource_id=zone_id,
                name=zone["Name"].rstrip("."),
                tags=tags,
            )
        )
    return found


def _discoverers(
    clients: AwsClients,
) -> dict[str, Callable[[str | None, str | None], list[DiscoveredResource]]]:
    return {
        "s3": lambda a, e: discover_buckets(clients.s3, a, e),
        "cloudfront": lambda a, e: discover_distributions(clients.cloudfront, a, e),
        "acm": lambda a, e: discover_certificates(clients.acm, a, e),
        "route53": lambda a, e: discover_hosted_zones(clients.route53, a, e),
    }


def _fan_out(
    clients: AwsClients, app: str | None, environment: str | None
) -> dict[str, list[DiscoveredResource]]:
    """Query every kind concurrently; a failing kind yields no resources."""
    discoverers = _discoverers(clients)
    results: dict[str, list[DiscoveredResource]] = {}
    with ThreadPoolExecutor(max_workers=len(discoverers)) as pool:
        futures = {
            kind: pool.submit(fn, app, environment) for kind, fn in discoverers.items()
        }
        for kind, future in futures.items():
            try:
                results[kind] = future.result()
            except ProviderError as exc:
                logger.warning("Failed to discover %s resources: %s", kind, exc)
                results[kind] = []
    return results


def discover_for_app_env(
    clients: AwsClients, app: str, environment: str
) -> DiscoveredResources:
    """Resources tagged for one app and environment, at most one per kind."""
    results = _fan_out(clients, app, environment)
    picked: dict[str, DiscoveredResource | None] = {}
    for kind, found in results.items():
        if len(found) > 1:
            logger.warning(
                "Found %d %s resources tagged for %s/%s; using %s",
                len(found),
                kind,
                app,
                environment,
                found[0].resource_id,
            )
        picked[kind] = found[0] if found else None
    return DiscoveredResources(**picked)


def discover_all(clients: AwsClients) -> DiscoveryReport:
    """Every managed resource in the account."""
    return DiscoveryReport(**_fan_out(clients, None, None))


def state_from_discovery(
    app: str, environment: str, found: DiscoveredResources
) -> DeploymentState:
    """Build a state record from discovered resources alone."""
    state = DeploymentState(app=app, environment=environment)
    if found.s3:
        region = found.s3.region or "us-east-1"
        state.record(
            "s3",
            S3Resource(
                bucket_name=found.s3.name,
                region=region,
                website_url=storage.website_url(found.s3.name, region),
                bucket_arn=found.s3.arn,
            ),
        )
    if found.acm:
        state.record(
            "acm",
            AcmResource(
                certificate_arn=found.acm.resource_id,
                domain_name=found.acm.name,
                status=found.acm.status,
            ),
        )
    if found.cloudfront:
        state.record(
            "cloudfront",
            CloudFrontResource(
                distribution_id=found.cloudfront.resource_id,
                domain_name=found.cloudfront.name,
                distribution_url=cdn.distribution_url(found.cloudfront.name),
                distribution_arn=found.cloudfront.arn,
                certificate_arn=found.acm.resource_id if found.acm else None,
                aliases=found.cloudfront.aliases,
            ),
        )
    if found.route53:
        aliases = found.cloudfront.aliases if found.cloudfront else []
        state.record(
            "route53",
            Route53Resource(
                hosted_zone_id=found.route53.resource_id,
                zone_name=found.route53.name,
                record_names=aliases,
                auto_created=found.route53.tags.get(TAG_AUTO_CREATED) == "true",
            ),
        )
    return state


def recover_state(
    clients: AwsClients,
    store: StateStore,
    app: str,
    environment: str,
    force: bool = False,
) -> DeploymentState:
    """Rebuild and save state from tagged resources.

    The file digest map starts empty, so the next deploy uploads every file.

    Raises:
        StateConflictError: If state already exists and ``force`` is False
        DeploymentError: If no tagged resources are found
    """
    try:
        existing = store.load(app, environment)
    except StateCorruptError:
        if not force:
            raise
        existing = None
    if existing is not None and not existing.is_empty and not force:
        raise StateConflictError(
            f"State for {app}/{environment} already exists at "
            f"{store.path_for(environment)}. Use --force to overwrite it."
        )

    found = discover_for_app_env(clients, app, environment)
    if found.is_empty:
        raise DeploymentError(
            "recover",
            f"No resources tagged for app '{app}' and environment "
            f"'{environment}' were found. Check the region and credentials.",
        )
    state = state_from_discovery(app, environment, found)
    store.save(state)
    logger.info(
        "Recovered state for %s/%s with %d resources",
        app,
        environment,
        len(found.found),
    )
    return state
