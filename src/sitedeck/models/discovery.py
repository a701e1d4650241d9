"""Models for resources found through SiteDeck's convention tags."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

TAG_PREFIX = "sitedeck:"
TAG_MANAGED = f"{TAG_PREFIX}managed"
TAG_TOOL = f"{TAG_PREFIX}tool"
TAG_APP = f"{TAG_PREFIX}app"
TAG_ENVIRONMENT = f"{TAG_PREFIX}environment"
TAG_REGION = f"{TAG_PREFIX}region"
TAG_DOMAIN = f"{TAG_PREFIX}domain"
TAG_AUTO_CREATED = f"{TAG_PREFIX}auto-created"
TOOL_NAME = "sitedeck"


class DiscoveredResource(BaseModel):
    """A remote resource carrying the managed tag."""

    model_config = ConfigDict(extra="forbid")

    kind: str = Field(..., description="s3, cloudfront, acm or route53")
    resource_id: str = Field(..., description="Provider identifier")
    name: str = Field(..., description="Bucket name, domain or zone name")
    status: str | None = Field(default=None, description="Provider status")
    region: str | None = Field(default=None, description="Region, where relevant")
    arn: str | None = Field(default=None, description="Resource ARN")
    aliases: list[str] = Field(
        default_factory=list, description="Alternate domains of a distribution"
    )
    tags: dict[str, str] = Field(default_factory=dict)

    @property
    def app(self) -> str | None:
        return self.tags.get(TAG_APP)

    @property
    def environment(self) -> str | None:
        return self.tags.get(TAG_ENVIRONMENT)

    @property
    def domain(self) -> str | None:
        return self.tags.get(TAG_DOMAIN)

    def matches(self, app: str, environment: str) -> bool:
        """True when the resource belongs to the given app and environment."""
        return self.app == app and self.environment == environment


class DiscoveredResources(BaseModel):
    """At most one resource of each kind for an app and environment."""

    model_config = ConfigDict(extra="forbid")

    s3: DiscoveredResource | None = None
    cloudfront: DiscoveredResource | None = None
    acm: DiscoveredResource | None = None
    route53: DiscoveredResource | None = None

    @property
    def found(self) -> list[DiscoveredResource]:
        return [r for r in (self.s3, self.cloudfront, self.acm, self.route53) if r]

    @property
    def is_empty(self) -> bool:
        return not self.found


class DiscoveryReport(BaseModel):
    """Every managed resource in the account, grouped by kind."""

    model_config = ConfigDict(extra="forbid")

    s3: list[DiscoveredResource] = Field(default_factory=list)
    cloudfront: list[DiscoveredResource] = Field(default_factory=list)
    acm: list[DiscoveredResource] = Field(default_factory=list)
    route53: list[DiscoveredResource] = Field(default_factory=list)

    def app_environments(self) -> list[tuple[str, str]]:
        """Sorted distinct (app, environment) pairs across all kinds."""
        pairs = {
            (r.app, r.environment)
            for r in self.s3 + self.cloudfront + self.acm + self.route53
            if r.app and r.environment
        }
        return sorted(pairs)  # type: ignore[arg-type]


def convention_tags(
    app: str, environment: str, **extra: str | None
) -> dict[str, str]:
    """Build the tag set written on every managed resource.

    Extra keyword arguments map to ``sitedeck:<name>`` tags, with underscores
    turned into hyphens; None values are skipped.
    """
    tags = {
        TAG_MANAGED: "true",
        TAG_TOOL: TOOL_NAME,
        TAG_APP: app,
        TAG_ENVIRONMENT: environment,
    }
    for name, value in extra.items():
        if value is not None:
            tags[f"{TAG_PREFIX}{name.replace('_', '-')}"] = value
    return tags


def is_managed(tags: dict[str, str]) -> bool:
    """True when a tag set marks a SiteDeck-managed resource."""
    return tags.get(TAG_MANAGED) == "true"
