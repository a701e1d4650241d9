"""Deployment state models persisted per application and environment."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from sitedeck.lib.errors import StateConflictError

STATE_VERSION = "1.0"
DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")

ResourceKind = Literal["s3", "cloudfront", "acm", "route53"]


class _StateModel(BaseModel):
    """Base for state models: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )


class S3Resource(_StateModel):
    """Recorded S3 bucket."""

    bucket_name: str = Field(..., description="Bucket name")
    region: str = Field(..., description="Bucket region")
    website_url: str | None = Field(default=None, description="Website endpoint URL")
    bucket_arn: str | None = Field(default=None, description="Bucket ARN")


class CloudFrontResource(_StateModel):
    """Recorded CloudFront distribution."""

    distribution_id: str = Field(..., description="Distribution id")
    domain_name: str = Field(..., description="Distribution domain name")
    distribution_url: str = Field(..., description="HTTPS URL of the distribution")
    distribution_arn: str | None = Field(default=None, description="Distribution ARN")
    certificate_arn: str | None = Field(
        default=None, description="Attached ACM certificate"
    )
    aliases: list[str] = Field(default_factory=list, description="Alternate domains")
    last_invalidation: datetime | None = Field(
        default=None, description="When the last invalidation was created"
    )


class AcmResource(_StateModel):
    """Recorded ACM certificate."""

    certificate_arn: str = Field(..., description="Certificate ARN")
    domain_name: str = Field(..., description="Primary domain")
    validation_method: str = Field(default="DNS", description="Validation method")
    status: str | None = Field(default=None, description="Last observed status")
    alternative_names: list[str] = Field(
        default_factory=list, description="Subject alternative names"
    )


class Route53Resource(_StateModel):
    """Recorded Route53 hosted zone and the records SiteDeck published."""

    hosted_zone_id: str = Field(..., description="Hosted zone id without prefix")
    zone_name: str = Field(..., description="Zone name")
    name_servers: list[str] = Field(default_factory=list, description="Name servers")
    record_names: list[str] = Field(
        default_factory=list, description="Record names published in the zone"
    )
    auto_created: bool = Field(
        default=False, description="Whether SiteDeck created the zone"
    )


class Resources(_StateModel):
    """Remote resources owned by a deployment."""

    s3: S3Resource | None = None
    cloudfront: CloudFrontResource | None = None
    acm: AcmResource | None = None
    route53: Route53Resource | None = None


_IDENTIFIERS: dict[str, str] = {
    "s3": "bucket_name",
    "cloudfront": "distribution_id",
    "acm": "certificate_arn",
    "route53": "hosted_zone_id",
}


class DeploymentState(_StateModel):
    """State of one application deployed to one environment."""

    app: str = Field(..., min_length=1, description="Application name")
    environment: str = Field(..., min_length=1, description="Environment name")
    version: str = Field(default=STATE_VERSION, description="State schema version")
    last_deployed: datetime | None = Field(
        default=None, description="UTC timestamp of the last reconcile"
    )
    resources: Resources = Field(default_factory=Resources)
    files: dict[str, str] = Field(
        default_factory=dict, description="Object key to SHA-256 hex digest"
    )

    @field_validator("files")
    @classmethod
    def validate_files(cls, v: dict[str, str]) -> dict[str, str]:
        """Keys are normalized relative paths and values are SHA-256 digests."""
        for key, digest in v.items():
            if not key or key.startswith("/") or "\\" in key:
                raise ValueError(f"File key is not a normalized relative path: {key!r}")
            if not DIGEST_PATTERN.match(digest):
                raise ValueError(f"Invalid SHA-256 digest for {key!r}: {digest!r}")
        return v

    def record(
        self,
        kind: ResourceKind,
        resource: BaseModel,
        *,
        replace: bool = False,
    ) -> None:
        """Record a resource block, refusing to swap a known identifier.

        Args:
            kind: Resource block to update
            resource: New resource model
            replace: Allow replacing a different recorded identifier

        Raises:
            StateConflictError: If a different identifier is already recorded
                and ``replace`` is False
        """
        if not replace:
            self.check_identifier(kind, getattr(resource, _IDENTIFIERS[kind]))
        setattr(self.resources, kind, resource)

    def check_identifier(self, kind: ResourceKind, identifier: str) -> None:
        """Raise StateConflictError if another identifier is recorded for kind."""
        attr = _IDENTIFIERS[kind]
        current = getattr(self.resources, kind)
        if current is None:
            return
        old_id = getattr(current, attr)
        if old_id != identifier:
            raise StateConflictError(
                f"State for {self.app}/{self.environment} already records "
                f"{kind} {attr}={old_id!r}; refusing to replace it with "
                f"{identifier!r}. Remove the old resource first or recover state "
                "with 'sitedeck recover --force'."
            )

    def clear(self, kind: ResourceKind) -> None:
        """Forget a resource block."""
        setattr(self.resources, kind, None)

    @property
    def is_empty(self) -> bool:
        """True when no resources and no files are recorded."""
        r = self.resources
        return (
            r.s3 is None
            and r.cloudfront is None
            and r.acm is None
            and r.route53 is None
            and not self.files
        )
