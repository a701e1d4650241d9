"""ACM certificates for custom domains.

Certificates used by CloudFront must live in us-east-1; the caller passes an
ACM client pinned to that region. A domain moves through

    NO_CERTIFICATE -> READY                                   (found)
    NO_CERTIFICATE -> REQUESTED -> AWAITING_VALIDATION -> READY

and ends in FAILED on rejection or timeout.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sitedeck.deploy.aws.calls import invoke, iterate_pages, inspect_call
from sitedeck.deploy.aws.dns import (
    HostedZoneResult,
    resolve_hosted_zone,
    upsert_validation_records,
)
from sitedeck.deploy.aws.tags import from_tag_list, to_tag_list
from sitedeck.deploy.events import Emitter, Reporter
from sitedeck.lib import retry
from sitedeck.lib.errors import CertificateError, ErrorKind, ProviderError
from sitedeck.lib.logging_config import get_logger
from sitedeck.lib.retry import PollSchedule, poll_until
from sitedeck.models.discovery import convention_tags

logger = get_logger(__name__)

ISSUANCE_TIMEOUT = 30 * 60
ISSUANCE_POLL_INTERVAL = 30
VALIDATION_RECORD_ATTEMPTS = 10
VALIDATION_RECORD_DELAY = 5.0
FAILED_STATUSES = frozenset({"FAILED", "REVOKED", "VALIDATION_TIMED_OUT", "EXPIRED"})


class CertificateState(str, Enum):
    """Where a domain's certificate is in its lifecycle."""

    NO_CERTIFICATE = "no_certificate"
    REQUESTED = "requested"
    AWAITING_VALIDATION = "awaiting_validation"
    READY = "ready"
    FAILED = "failed"


@dataclass
class CertificateResult:
    """Outcome of :func:`provision_certificate`."""

    arn: str
    domain: str
    state: CertificateState
    zone: HostedZoneResult | None = None
    requested: bool = False
    alternative_names: list[str] = field(default_factory=list)
    validation_records: list[str] = field(default_factory=list)


def _covers(name: str, domain: str) -> bool:
    """Whether a certificate name (possibly a wildcard) covers a domain."""
    name, domain = name.lower(), domain.lower()
    if name == domain:
        return True
    if name.startswith("*."):
        suffix = name[1:]
        return domain.endswith(suffix) and "." not in domain[: -len(suffix)]
    return False


def describe_certificate(client: Any, arn: str) -> dict[str, Any] | None:
    """Certificate detail, or None when the ARN no longer exists."""
    result = inspect_call(
        "DescribeCertificate", client.describe_certificate, CertificateArn=arn
    )
    if result.not_found:
        return None
    return result.unwrap()["Certificate"]


def find_existing_certificate(
    client: Any, domain: str, alternative_names: Sequence[str] = ()
) -> str | None:
    """ARN of an issued certificate covering the domain and its aliases.

    The domain matches the certificate's primary name or one of its
    subject alternative names. Lookup failures are logged and treated as
    "none found".
    """
    wanted = [domain, *alternative_names]
    try:
        for page in iterate_pages(
            "ListCertificates",
            client,
            "list_certificates",
            CertificateStatuses=["ISSUED"],
        ):
            for summary in page.get("CertificateSummaryList", []):
                arn = summary["CertificateArn"]
                names = summary.get("SubjectAlternativeNameSummaries")
                if names is None:
                    detail = describe_certificate(client, arn) or {}
                    names = detail.get("SubjectAlternativeNames", [])
                names = [summary.get("DomainName", ""), *names]
                if all(any(_covers(n, d) for n in names) for d in wanted):
                    logger.info("Found issued certificate %s for %s", arn, domain)
                    return arn
    except ProviderError as exc:
        logger.warning("Failed to check existing certificates: %s", exc)
    return None


def request_certificate(
    client: Any,
    domain: str,
    alternative_names: Sequence[str],
    app: str,
    environment: str,
) -> str:
    """Request a DNS-validated certificate tagged for recovery."""
    sans = [domain, *[n for n in alternative_names if n != domain]]
    tags = convention_tags(app, environment, domain=domain, auto_created="true")
    response = invoke(
        "RequestCertificate",
        client.request_certificate,
        DomainName=domain,
        SubjectAlternativeNames=sans,
        ValidationMethod="DNS",
        Tags=to_tag_list(tags),
    )
    arn = response["CertificateArn"]
    logger.info("Requested certificate %s for %s", arn, domain)
    return arn


def get_validation_records(client: Any, arn: str) -> list[dict[str, str]]:
    """DNS validation records of a certificate; empty until ACM generates them."""
    detail = describe_certificate(client, arn)
    if detail is None:
        raise CertificateError(arn, f"Certificate {arn} no longer exists")
    records = []
    for option in detail.get("DomainValidationOptions", []):
        record = option.get("ResourceRecord")
        if record and record.get("Name") and record.get("Value"):
            records.append(
                {
                    "name": record["Name"],
                    "type": record.get("Type", "CNAME"),
                    "value": record["Value"],
                }
            )
    return records


def publish_validation_records(
    acm_client: Any,
    route53_client: Any,
    arn: str,
    zone_id: str,
    attempts: int = VALIDATION_RECORD_ATTEMPTS,
    delay: float = VALIDATION_RECORD_DELAY,
) -> list[str]:
    """Wait for ACM to generate validation records, then UPSERT them.

    Raises:
        CertificateError: If no records appear within the attempts
    """
    for attempt in range(1, attempts + 1):
        records = get_validation_records(acm_client, arn)
        if records:
            return upsert_validation_records(route53_client, zone_id, records)
        logger.debug("Validation records not ready (attempt %d/%d)", attempt, attempts)
        if attempt < attempts:
            retry.sleep(delay)
    raise CertificateError(
        arn,
        f"ACM did not generate DNS validation records for {arn}. "
        "Re-run the deployment in a few minutes.",
    )


def await_issuance(
    client: Any,
    arn: str,
    timeout: float = ISSUANCE_TIMEOUT,
    interval: float = ISSUANCE_POLL_INTERVAL,
) -> dict[str, Any]:
    """Poll a certificate until it is ISSUED.

    Raises:
        CertificateError: If validation fails or the timeout passes
    """

    def check() -> dict[str, Any] | None:
        detail = describe_certificate(client, arn)
        if detail is None:
            raise CertificateError(arn, f"Certificate {arn} was deleted while waiting")
        status = detail.get("Status")
        if status == "ISSUED":
            return detail
        if status in FAILED_STATUSES:
            raise CertificateError(
                detail.get("DomainName", arn),
                f"Certificate validation failed with status: {status}\n"
                f"Failure reason: {detail.get('FailureReason') or 'Unknown'}",
            )
        logger.debug("Certificate %s status %s", arn, status)
        return None

    detail = poll_until(check, PollSchedule(timeout=timeout, interval=interval))
    if detail is None:
        minutes = int(timeout // 60)
        raise CertificateError(
            arn,
            f"Certificate validation timed out after {minutes} minutes.\n"
            "Please check:\n"
            "  - DNS validation records are created correctly\n"
            "  - The domain's name servers delegate to the Route53 hosted zone\n"
            "You can retry the deployment after DNS records have propagated.",
        )
    return detail


def get_certificate_tags(client: Any, arn: str) -> dict[str, str]:
    result = inspect_call(
        "ListTagsForCertificate", client.list_tags_for_certificate, CertificateArn=arn
    )
    if result.ok:
        return from_tag_list(result.value.get("Tags"))
    if result.not_found:
        return {}
    raise result.error  # type: ignore[misc]


def delete_certificate(client: Any, arn: str) -> bool:
    """Delete a certificate.

    Returns:
        True if deleted, False if it was already gone

    Raises:
        CertificateError: If the certificate is still attached to a resource
    """
    try:
        invoke("DeleteCertificate", client.delete_certificate, CertificateArn=arn)
    except ProviderError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            return False
        if exc.code == "ResourceInUseException":
            raise CertificateError(
                arn,
                f"Certificate {arn} is still in use. Delete or detach the "
                "CloudFront distribution first.",
            ) from exc
        raise
    logger.info("Deleted certificate %s", arn)
    return True


def provision_certificate(
    acm_client: Any,
    route53_client: Any,
    domain: str,
    alternative_names: Sequence[str],
    app: str,
    environment: str,
    zone_id: str | None = None,
    known_arn: str | None = None,
    timeout: float = ISSUANCE_TIMEOUT,
    reporter: Reporter | None = None,
) -> CertificateResult:
    """Drive a domain's certificate to READY.

    Reuses ``known_arn`` while it is issued or pending, then looks for an
    issued certificate covering the names, and only then requests one.

    Raises:
        CertificateError: Carrying the hosted zone's name servers when the
            certificate cannot be made ready
        DnsError: If no hosted zone can be resolved
    """
    emitter = Emitter(reporter, "certificate")
    alternative_names = [n for n in alternative_names if n != domain]
    zone = resolve_hosted_zone(route53_client, domain, app, environment, zone_id)
    if zone.created:
        emitter.warning(
            f"Created hosted zone {zone.name}. Delegate these name servers at "
            f"your registrar: {', '.join(zone.name_servers)}",
            data={"name_servers": zone.name_servers},
        )

    result = CertificateResult(
        arn="",
        domain=domain,
        state=CertificateState.NO_CERTIFICATE,
        zone=zone,
        alternative_names=list(alternative_names),
    )

    if known_arn:
        detail = describe_certificate(acm_client, known_arn)
        status = detail.get("Status") if detail else None
        if status == "ISSUED":
            emitter.success(f"Using certificate {known_arn}")
            result.arn, result.state = known_arn, CertificateState.READY
            return result
        if status == "PENDING_VALIDATION":
            result.arn, result.state = known_arn, CertificateState.REQUESTED

    if not result.arn:
        existing = find_existing_certificate(acm_client, domain, alternative_names)
        if existing:
            emitter.success(f"Found issued certificate {existing}")
            result.arn, result.state = existing, CertificateState.READY
            return result

        emitter.step(f"Requesting certificate for {domain}")
        result.arn = request_certificate(
            acm_client, domain, alternative_names, app, environment
        )
        result.state = CertificateState.REQUESTED
        result.requested = True

    try:
        result.validation_records = publish_validation_records(
            acm_client, route53_client, result.arn, zone.id
        )
        result.state = CertificateState.AWAITING_VALIDATION
        emitter.info("Waiting for certificate validation (this can take minutes)")
        await_issuance(acm_client, result.arn, timeout=timeout)
    except CertificateError as exc:
        result.state = CertificateState.FAILED
        hint = ""
        if zone.name_servers:
            hint = (
                "\nMake sure your registrar delegates the domain to: "
                + ", ".join(zone.name_servers)
            )
        raise CertificateError(
            domain, f"{exc.message}{hint}", zone.name_servers
        ) from exc

    result.state = CertificateState.READY
    emitter.success(f"Certificate issued for {domain}")
    return result
