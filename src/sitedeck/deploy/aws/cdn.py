"""CloudFront distributions in front of the site bucket.

The origin is the bucket's regional REST endpoint, signed through an Origin
Access Control so the bucket itself stays private.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sitedeck.deploy.aws.calls import invoke, inspect_call
from sitedeck.deploy.aws.storage import regional_domain
from sitedeck.deploy.aws.tags import from_cloudfront_tags, to_cloudfront_tags
from sitedeck.deploy.events import Emitter, Reporter
from sitedeck.lib.errors import DeploymentError, ErrorKind, ProviderError
from sitedeck.lib.logging_config import get_logger
from sitedeck.lib.retry import PollSchedule, poll_until
from sitedeck.models.config import ErrorPageConfig
from sitedeck.models.discovery import convention_tags

logger = get_logger(__name__)

DEPLOY_TIMEOUT = 20 * 60
INVALIDATION_TIMEOUT = 10 * 60
DEPLOY_POLL = PollSchedule(
    timeout=DEPLOY_TIMEOUT, interval=20, max_interval=60, multiplier=1.5, jitter=0.1
)
MINIMUM_TLS = "TLSv1.2_2021"
OAC_NAME_LIMIT = 64


@dataclass
class DistributionOptions:
    """Everything the distribution is built from."""

    bucket_name: str
    region: str
    origin_access_control_id: str | None = None
    index_document: str = "index.html"
    price_class: str = "PriceClass_100"
    ipv6: bool = True
    aliases: list[str] = field(default_factory=list)
    certificate_arn: str | None = None
    min_ttl: int = 0
    default_ttl: int = 86400
    max_ttl: int = 31536000
    error_pages: Sequence[ErrorPageConfig] = ()
    comment: str = ""

    @property
    def origin_id(self) -> str:
        return f"S3-{self.bucket_name}"


@dataclass
class DistributionResult:
    """Outcome of :func:`ensure_distribution`."""

    id: str
    domain: str
    arn: str
    status: str
    created: bool = False

    @property
    def url(self) -> str:
        return distribution_url(self.domain)


def distribution_url(domain: str) -> str:
    return f"https://{domain}"


def origin_access_control_name(bucket: str) -> str:
    return f"sitedeck-{bucket}"[:OAC_NAME_LIMIT]


def find_origin_access_control(client: Any, bucket: str) -> str | None:
    """Id of the bucket's Origin Access Control, if one exists."""
    name = origin_access_control_name(bucket)
    marker: str | None = None
    while True:
        kwargs = {"Marker": marker} if marker else {}
        response = invoke(
            "ListOriginAccessControls", client.list_origin_access_controls, **kwargs
        )
        listing = response.get("OriginAccessControlList", {})
        for item in listing.get("Items", []) or []:
            if item.get("Name") == name:
                return item["Id"]
        if not listing.get("IsTruncated"):
            return None
        marker = listing.get("NextMarker")


def ensure_origin_access_control(client: Any, bucket: str) -> str:
    """Find or create the Origin Access Control used to sign origin requests."""
    existing = find_origin_access_control(client, bucket)
    if existing:
        return existing
    response = invoke(
        "CreateOriginAccessControl",
        client.create_origin_access_control,
        OriginAccessControlConfig={
            "Name": origin_access_control_name(bucket),
            "Description": f"sitedeck origin access for {bucket}",
            "SigningProtocol": "sigv4",
            "SigningBehavior": "always",
            "OriginAccessControlOriginType": "s3",
        },
    )
    oac_id = response["OriginAccessControl"]["Id"]
    logger.info("Created origin access control %s for %s", oac_id, bucket)
    return oac_id


def delete_origin_access_control(client: Any, bucket: str) -> bool:
    """Delete the bucket's Origin Access Control.

    Returns:
        True if deleted, False if there was none
    """
    oac_id = find_origin_access_control(client, bucket)
    if oac_id is None:
        return False
    current = inspect_call(
        "GetOriginAccessControl", client.get_origin_access_control, Id=oac_id
    )
    if current.not_found:
        return False
    try:
        invoke(
            "DeleteOriginAccessControl",
            client.delete_origin_access_control,
            Id=oac_id,
            IfMatch=current.unwrap()["ETag"],
        )
    except ProviderError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            return False
        raise
    logger.info("Deleted origin access control %s", oac_id)
    return True


def _listed(items: Sequence[Any]) -> dict[str, Any]:
    """CloudFront's ``{"Quantity": n, "Items": [...]}`` list shape."""
    if not items:
        return {"Quantity": 0}
    return {"Quantity": len(items), "Items": list(items)}


def _error_response(page: ErrorPageConfig) -> dict[str, Any]:
    response: dict[str, Any] = {"ErrorCode": page.error_code}
    if page.response_path:
        response["ResponsePagePath"] = page.response_path
        response["ResponseCode"] = str(page.response_code or page.error_code)
    elif page.response_code:
        response["ResponseCode"] = str(page.response_code)
    if page.cache_ttl is not None:
        response["ErrorCachingMinTTL"] = page.cache_ttl
    return response


def _managed_fields(options: DistributionOptions) -> dict[str, Any]:
    """Parts of the distribution config SiteDeck owns and rewrites."""
    methods = ["GET", "HEAD"]
    if options.certificate_arn:
        certificate = {
            "ACMCertificateArn": options.certificate_arn,
            "SSLSupportMethod": "sni-only",
            "MinimumProtocolVersion": MINIMUM_TLS,
            "CloudFrontDefaultCertificate": False,
        }
    else:
        certificate = {"CloudFrontDefaultCertificate": True}

    return {
        "DefaultRootObject": options.index_document,
        "Origins": _listed(
            [
                {
                    "Id": options.origin_id,
                    "DomainName": regional_domain(options.bucket_name, options.region),
                    "OriginPath": "",
                    "S3OriginConfig": {"OriginAccessIdentity": ""},
                    "OriginAccessControlId": options.origin_access_control_id or "",
                }
            ]
        ),
        "DefaultCacheBehavior": {
            "TargetOriginId": options.origin_id,
            "ViewerProtocolPolicy": "redirect-to-https",
            "AllowedMethods": {
                **_listed(methods),
                "CachedMethods": _listed(methods),
            },
            "Compress": True,
            "ForwardedValues": {
                "QueryString": False,
                "Cookies": {"Forward": "none"},
            },
            "MinTTL": options.min_ttl,
            "DefaultTTL": options.default_ttl,
            "MaxTTL": options.max_ttl,
            "TrustedSigners": {"Enabled": False, "Quantity": 0},
        },
        "CustomErrorResponses": _listed(
            [_error_response(p) for p in options.error_pages]
        ),
        "PriceClass": options.price_class,
        "IsIPV6Enabled": options.ipv6,
        "HttpVersion": "http2",
        "Aliases": _listed(options.aliases),
        "ViewerCertificate": certificate,
        "Enabled": True,
    }


def build_distribution_config(
    options: DistributionOptions, caller_reference: str | None = None
) -> dict[str, Any]:
    """Full DistributionConfig for a new distribution."""
    return {
        "CallerReference": caller_reference or f"sitedeck-{uuid.uuid4().hex}",
        "Comment": options.comment or f"sitedeck: {options.bucket_name}",
        **_managed_fields(options),
    }


def _is_price_class_rejection(
    exc: ProviderError, requested: str, fallback: str
) -> bool:
    """Some accounts only accept one price class and answer InvalidArgument."""
    if exc.code != "InvalidArgument" or requested == fallback:
        return False
    text = exc.message.lower().replace(" ", "")
    return "priceclass" in text


def _result(distribution: dict[str, Any], created: bool) -> DistributionResult:
    return DistributionResult(
        id=distribution["Id"],
        domain=distribution["DomainName"],
        arn=distribution["ARN"],
        status=distribution.get("Status", "InProgress"),
        created=created,
    )


def _conflict_error(
    exc: ProviderError, options: DistributionOptions
) -> DeploymentError:
    return DeploymentError(
        "cloudfront",
        f"{exc.message}\nOne of the aliases ({', '.join(options.aliases)}) is "
        "already attached to another distribution. Remove it there first.",
    )


def _create(client: Any, options: DistributionOptions) -> DistributionResult:
    config = build_distribution_config(options)
    try:
        response = invoke(
            "CreateDistribution", client.create_distribution, DistributionConfig=config
        )
    except ProviderError as exc:
        if exc.kind == ErrorKind.CONFLICT:
            raise _conflict_error(exc, options) from exc
        if not _is_price_class_rejection(exc, config["PriceClass"], "PriceClass_All"):
            raise
        logger.warning(
            "Price class %s rejected for this account, using PriceClass_All",
            options.price_class,
        )
        config["PriceClass"] = "PriceClass_All"
        response = invoke(
            "CreateDistribution", client.create_distribution, DistributionConfig=config
        )
    distribution = response["Distribution"]
    logger.info("Created distribution %s", distribution["Id"])
    return _result(distribution, created=True)


def _update(
    client: Any, distribution_id: str, options: DistributionOptions
) -> DistributionResult:
    current = inspect_call(
        "GetDistributionConfig", client.get_distribution_config, Id=distribution_id
    )
    if current.not_found:
        raise DeploymentError(
            "cloudfront",
            f"Distribution {distribution_id} recorded in state was not found. "
            "Check your configuration, or run 'sitedeck recover --force' to "
            "rebuild state from AWS.",
        )
    response = current.unwrap()
    existing = response["DistributionConfig"]
    config = {**existing, **_managed_fields(options)}
    try:
        updated = invoke(
            "UpdateDistribution",
            client.update_distribution,
            Id=distribution_id,
            IfMatch=response["ETag"],
            DistributionConfig=config,
        )
    except ProviderError as exc:
        if exc.kind == ErrorKind.CONFLICT:
            raise _conflict_error(exc, options) from exc
        kept = existing.get("PriceClass", "PriceClass_All")
        if not _is_price_class_rejection(exc, config["PriceClass"], kept):
            raise
        logger.warning(
            "Price class %s rejected, keeping %s", config["PriceClass"], kept
        )
        config["PriceClass"] = kept
        updated = invoke(
            "UpdateDistribution",
            client.update_distribution,
            Id=distribution_id,
            IfMatch=response["ETag"],
            DistributionConfig=config,
        )
    logger.info("Updated distribution %s", distribution_id)
    return _result(updated["Distribution"], created=False)


def ensure_distribution(
    client: Any, options: DistributionOptions, distribution_id: str | None = None
) -> DistributionResult:
    """Create the distribution, or bring a known one in line with options.

    Raises:
        DeploymentError: If the known distribution is gone or an alias is
            taken by another distribution
        ProviderError: On other provider failures
    """
    if distribution_id:
        return _update(client, distribution_id, options)
    return _create(client, options)


def tag_distribution(client: Any, arn: str, app: str, environment: str) -> bool:
    """Write the convention tags on a distribution; failures are logged only."""
    result = inspect_call(
        "TagResource",
        client.tag_resource,
        Resource=arn,
        Tags=to_cloudfront_tags(convention_tags(app, environment)),
    )
    if not result.ok:
        logger.warning("Failed to tag distribution %s: %s", arn, result.error)
    return result.ok


def get_distribution_tags(client: Any, arn: str) -> dict[str, str]:
    result = inspect_call(
        "ListTagsForResource", client.list_tags_for_resource, Resource=arn
    )
    if result.ok:
        return from_cloudfront_tags(result.value)
    if result.not_found:
        return {}
    raise result.error  # type: ignore[misc]


def get_distribution(client: Any, distribution_id: str) -> dict[str, Any] | None:
    result = inspect_call(
        "GetDistribution", client.get_distribution, Id=distribution_id
    )
    if result.not_found:
        return None
    return result.unwrap()["Distribution"]


def wait_until_deployed(
    client: Any, distribution_id: str, timeout: float = DEPLOY_TIMEOUT
) -> bool:
    """Poll until the distribution reports ``Deployed``.

    Returns:
        True when deployed, False when the timeout passed first
    """
    schedule = PollSchedule(
        timeout=timeout,
        interval=DEPLOY_POLL.interval,
        max_interval=DEPLOY_POLL.max_interval,
        multiplier=DEPLOY_POLL.multiplier,
        jitter=DEPLOY_POLL.jitter,
    )

    def check() -> bool | None:
        distribution = get_distribution(client, distribution_id)
        if distribution is None:
            raise DeploymentError(
                "cloudfront", f"Distribution {distribution_id} disappeared"
            )
        return True if distribution.get("Status") == "Deployed" else None

    deployed = poll_until(check, schedule)
    if deployed is None:
        logger.warning(
            "Distribution %s not deployed after %ds", distribution_id, timeout
        )
        return False
    return True


def invalidate(
    client: Any,
    distribution_id: str,
    paths: Sequence[str] | None = None,
    wait: bool = False,
    timeout: float = INVALIDATION_TIMEOUT,
) -> str:
    """Create a cache invalidation, by default for every path.

    Returns:
        The invalidation id
    """
    items = list(paths) if paths else ["/*"]
    response = invoke(
        "CreateInvalidation",
        client.create_invalidation,
        DistributionId=distribution_id,
        InvalidationBatch={
            "Paths": _listed(items),
            "CallerReference": f"sitedeck-{uuid.uuid4().hex}",
        },
    )
    invalidation_id = response["Invalidation"]["Id"]
    logger.info("Created invalidation %s for %s", invalidation_id, distribution_id)

    if wait:

        def check() -> bool | None:
            current = invoke(
                "GetInvalidation",
                client.get_invalidation,
                DistributionId=distribution_id,
                Id=invalidation_id,
            )
            status = current["Invalidation"].get("Status")
            return True if status == "Completed" else None

        done = poll_until(
            check, PollSchedule(timeout=timeout, interval=20, max_interval=60)
        )
        if done is None:
            logger.warning("Invalidation %s still in progress", invalidation_id)
    return invalidation_id


def tear_down_distribution(
    client: Any,
    distribution_id: str,
    timeout: float = DEPLOY_TIMEOUT,
    reporter: Reporter | None = None,
) -> bool:
    """Disable, wait for, and delete a distribution.

    Returns:
        True if deleted, False if it was already gone

    Raises:
        DeploymentError: If the disabled distribution does not finish
            deploying within the timeout
    """
    emitter = Emitter(reporter, "cloudfront")
    current = inspect_call(
        "GetDistributionConfig", client.get_distribution_config, Id=distribution_id
    )
    if current.not_found:
        return False
    response = current.unwrap()
    config = response["DistributionConfig"]

    if config.get("Enabled"):
        emitter.step(f"Disabling distribution {distribution_id}")
        invoke(
            "UpdateDistribution",
            client.update_distribution,
            Id=distribution_id,
            IfMatch=response["ETag"],
            DistributionConfig={**config, "Enabled": False},
        )

    emitter.info("Waiting for the distribution to finish deploying")
    if not wait_until_deployed(client, distribution_id, timeout=timeout):
        raise DeploymentError(
            "cloudfront",
            f"Distribution {distribution_id} is still deploying after being "
            "disabled. Run 'sitedeck remove' again in a few minutes.",
        )

    fresh = inspect_call(
        "GetDistributionConfig", client.get_distribution_config, Id=distribution_id
    )
    if fresh.not_found:
        return False
    try:
        invoke(
            "DeleteDistribution",
            client.delete_distribution,
            Id=distribution_id,
            IfMatch=fresh.unwrap()["ETag"],
        )
    except ProviderError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            return False
        raise
    emitter.success(f"Deleted distribution {distribution_id}")
    return True
