"""Route53 hosted zones and records for custom domains."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sitedeck.deploy.aws.calls import invoke, iterate_pages, inspect_call
from sitedeck.deploy.aws.tags import from_tag_list, to_tag_list
from sitedeck.lib.errors import DnsError, ErrorKind, ProviderError
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.config import DnsRecordMode
from sitedeck.models.discovery import convention_tags

logger = get_logger(__name__)

# Hosted zone id CloudFront uses for every alias target.
CLOUDFRONT_ZONE_ID = "Z2FDTNDATAQYW2"
VALIDATION_TTL = 300
CNAME_TTL = 300


@dataclass
class HostedZoneResult:
    """A hosted zone resolved for a domain."""

    id: str
    name: str
    name_servers: list[str] = field(default_factory=list)
    created: bool = False


def strip_zone_id(zone_id: str) -> str:
    """``/hostedzone/Z123`` to ``Z123``."""
    return zone_id.replace("/hostedzone/", "")


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


def _bare(name: str) -> str:
    return name.rstrip(".").lower()


def apex_of(domain: str) -> str:
    """Last two labels of a domain."""
    return ".".join(_bare(domain).split(".")[-2:])


def is_apex(domain: str) -> bool:
    return len(_bare(domain).split(".")) <= 2


def list_hosted_zones(client: Any) -> list[dict[str, Any]]:
    zones: list[dict[str, Any]] = []
    for page in iterate_pages("ListHostedZones", client, "list_hosted_zones"):
        zones.extend(page.get("HostedZones", []))
    return zones


def find_hosted_zone(client: Any, domain: str) -> dict[str, Any] | None:
    """Public hosted zone for a domain: exact match, else nearest parent."""
    public = [
        z
        for z in list_hosted_zones(client)
        if not z.get("Config", {}).get("PrivateZone")
    ]
    by_name = {_bare(z["Name"]): z for z in public}
    labels = _bare(domain).split(".")
    for i in range(len(labels) - 1):
        candidate = ".".join(labels[i:])
        if candidate in by_name:
            return by_name[candidate]
    return None


def get_name_servers(client: Any, zone_id: str) -> list[str]:
    """Delegation name servers of a hosted zone."""
    response = invoke(
        "GetHostedZone", client.get_hosted_zone, Id=strip_zone_id(zone_id)
    )
    return list(response.get("DelegationSet", {}).get("NameServers", []))


def get_hosted_zone_tags(client: Any, zone_id: str) -> dict[str, str]:
    result = inspect_call(
        "ListTagsForResource",
        client.list_tags_for_resource,
        ResourceType="hostedzone",
        ResourceId=strip_zone_id(zone_id),
    )
    if result.ok:
        return from_tag_list(result.value.get("ResourceTagSet", {}).get("Tags"))
    if result.not_found:
        return {}
    raise result.error  # type: ignore[misc]


def create_hosted_zone(
    client: Any, domain: str, app: str, environment: str
) -> HostedZoneResult:
    """Create a tagged public hosted zone for an apex domain."""
    response = invoke(
        "CreateHostedZone",
        client.create_hosted_zone,
        Name=_fqdn(_bare(domain)),
        CallerReference=f"sitedeck-{uuid.uuid4().hex}",
        HostedZoneConfig={
            "Comment": "Hosted zone created by sitedeck",
            "PrivateZone": False,
        },
    )
    zone = response["HostedZone"]
    zone_id = strip_zone_id(zone["Id"])
    tags = convention_tags(app, environment, domain=_bare(domain), auto_created="true")
    tagged = inspect_call(
        "ChangeTagsForResource",
        client.change_tags_for_resource,
        ResourceType="hostedzone",
        ResourceId=zone_id,
        AddTags=to_tag_list(tags),
    )
    if not tagged.ok:
        logger.warning("Failed to tag hosted zone %s: %s", zone_id, tagged.error)
    name_servers = list(response.get("DelegationSet", {}).get("NameServers", []))
    logger.info("Created hosted zone %s for %s", zone_id, domain)
    return HostedZoneResult(
        id=zone_id, name=_bare(zone["Name"]), name_servers=name_servers, created=True
    )


def resolve_hosted_zone(
    client: Any,
    domain: str,
    app: str,
    environment: str,
    zone_id: str | None = None,
) -> HostedZoneResult:
    """Find the hosted zone for a domain, creating one for apex domains.

    Raises:
        DnsError: If a subdomain has no parent zone, or a given zone id is
            missing
    """
    if zone_id:
        result = inspect_call(
            "GetHostedZone", client.get_hosted_zone, Id=strip_zone_id(zone_id)
        )
        if result.not_found:
            raise DnsError(
                f"Hosted zone {zone_id} configured for {domain} does not exist. "
                "Fix cloudfront.custom_domain.hosted_zone_id or remove it."
            )
        response = result.unwrap()
        return HostedZoneResult(
            id=strip_zone_id(response["HostedZone"]["Id"]),
            name=_bare(response["HostedZone"]["Name"]),
            name_servers=list(response.get("DelegationSet", {}).get("NameServers", [])),
        )

    zone = find_hosted_zone(client, domain)
    if zone is not None:
        found_id = strip_zone_id(zone["Id"])
        return HostedZoneResult(
            id=found_id,
            name=_bare(zone["Name"]),
            name_servers=get_name_servers(client, found_id),
        )

    if not is_apex(domain):
        parent = apex_of(domain)
        raise DnsError(
            f"No hosted zone found for {domain}.\n"
            f"This appears to be a subdomain. Please ensure the parent domain "
            f"({parent}) has a hosted zone in Route53, or deploy with the parent "
            "domain first."
        )
    return create_hosted_zone(client, domain, app, environment)


def change_records(
    client: Any, zone_id: str, changes: list[dict[str, Any]], comment: str
) -> str:
    """Submit a change batch and return the change id."""
    response = invoke(
        "ChangeResourceRecordSets",
        client.change_resource_record_sets,
        HostedZoneId=strip_zone_id(zone_id),
        ChangeBatch={"Comment": comment, "Changes": changes},
    )
    return response.get("ChangeInfo", {}).get("Id", "")


def upsert_validation_records(
    client: Any, zone_id: str, records: Iterable[dict[str, str]]
) -> list[str]:
    """UPSERT certificate validation CNAMEs; duplicates are collapsed."""
    unique: dict[str, dict[str, str]] = {}
    for record in records:
        unique[_fqdn(record["name"])] = record
    changes = [
        {
            "Action": "UPSERT",
            "ResourceRecordSet": {
                "Name": name,
                "Type": record.get("type", "CNAME"),
                "TTL": VALIDATION_TTL,
                "ResourceRecords": [{"Value": record["value"]}],
            },
        }
        for name, record in unique.items()
    ]
    if changes:
        change_records(client, zone_id, changes, "ACM certificate validation")
    return [_bare(name) for name in unique]


def publish_alias_records(
    client: Any,
    zone_id: str,
    domain: str,
    cdn_domain: str,
    aliases: Sequence[str] = (),
    mode: DnsRecordMode = DnsRecordMode.ALIAS,
    ipv6: bool = True,
) -> list[str]:
    """Point the domain and its aliases at the distribution.

    ALIAS mode writes A (and AAAA) alias records against CloudFront's hosted
    zone; CNAME mode writes CNAME records. Both UPSERT, so re-running is
    harmless.

    Returns:
        Record names written
    """
    names: list[str] = []
    for name in [domain, *aliases]:
        bare = _bare(name)
        if bare not in names:
            names.append(bare)

    changes: list[dict[str, Any]] = []
    for name in names:
        if mode == DnsRecordMode.CNAME:
            changes.append(
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": _fqdn(name),
                        "Type": "CNAME",
                        "TTL": CNAME_TTL,
                        "ResourceRecords": [{"Value": cdn_domain}],
                    },
                }
            )
            continue
        record_types = ["A", "AAAA"] if ipv6 else ["A"]
        for record_type in record_types:
            changes.append(
                {
                    "Action": "UPSERT",
                    "ResourceRecordSet": {
                        "Name": _fqdn(name),
                        "Type": record_type,
                        "AliasTarget": {
                            "HostedZoneId": CLOUDFRONT_ZONE_ID,
                            "DNSName": cdn_domain,
                            "EvaluateTargetHealth": False,
                        },
                    },
                }
            )
    change_records(client, zone_id, changes, f"sitedeck records for {domain}")
    logger.info("Published %s records for %s", mode.value, ", ".join(names))
    return names


def list_records(client: Any, zone_id: str) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    for page in iterate_pages(
        "ListResourceRecordSets",
        client,
        "list_resource_record_sets",
        HostedZoneId=strip_zone_id(zone_id),
    ):
        records.extend(page.get("ResourceRecordSets", []))
    return records


def delete_records(
    client: Any,
    zone_id: str,
    names: Iterable[str],
    types: Iterable[str] = ("A", "AAAA", "CNAME"),
) -> int:
    """Delete records with the given names and types; missing ones are skipped."""
    wanted = {_bare(n) for n in names}
    wanted_types = set(types)
    doomed = [
        r
        for r in list_records(client, zone_id)
        if _bare(r["Name"]) in wanted and r["Type"] in wanted_types
    ]
    if doomed:
        change_records(
            client,
            zone_id,
            [{"Action": "DELETE", "ResourceRecordSet": r} for r in doomed],
            "Removing sitedeck records",
        )
    return len(doomed)


def delete_hosted_zone(client: Any, zone_id: str) -> bool:
    """Delete a hosted zone after removing its non NS/SOA records.

    Returns:
        True if deleted, False if it was already gone
    """
    zone_id = strip_zone_id(zone_id)
    try:
        doomed = [
            r for r in list_records(client, zone_id) if r["Type"] not in ("NS", "SOA")
        ]
        if doomed:
            change_records(
                client,
                zone_id,
                [{"Action": "DELETE", "ResourceRecordSet": r} for r in doomed],
                "Deleting all records before zone deletion",
            )
        invoke("DeleteHostedZone", client.delete_hosted_zone, Id=zone_id)
    except ProviderError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            return False
        if exc.code == "HostedZoneNotEmpty":
            raise DnsError(
                "Hosted zone still has records that cannot be deleted. "
                "Remove all records except NS and SOA, then retry."
            ) from exc
        raise
    logger.info("Deleted hosted zone %s", zone_id)
    return True
