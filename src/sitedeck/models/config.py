"""Pydantic models for SiteDeck configuration.

This module defines the schema of ``sitedeck.yaml``: the application
identity, AWS credentials, the S3 bucket, the CloudFront distribution and
per-environment overrides.
"""

import re
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

# Regex patterns for validation
APP_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")
REGION_PATTERN = re.compile(r"^[a-z]{2}-[a-z]+-\d+$")
BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")
ACM_ARN_PATTERN = re.compile(r"^arn:aws:acm:")
DOMAIN_PATTERN = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)


class PriceClass(str, Enum):
    """CloudFront price classes."""

    PRICE_CLASS_100 = "PriceClass_100"
    PRICE_CLASS_200 = "PriceClass_200"
    PRICE_CLASS_ALL = "PriceClass_All"


class DnsRecordMode(str, Enum):
    """How a custom domain is pointed at the distribution."""

    ALIAS = "alias"
    CNAME = "cname"


class CredentialsConfig(BaseModel):
    """AWS credentials configuration.

    Attributes:
        profile: Named profile from ~/.aws/credentials
        access_key_id: Explicit access key id
        secret_access_key: Explicit secret access key
        session_token: Session token for temporary credentials
    """

    model_config = ConfigDict(extra="forbid")

    profile: str | None = Field(default=None, description="AWS profile name")
    access_key_id: str | None = Field(default=None, description="AWS access key ID")
    secret_access_key: str | None = Field(
        default=None, description="AWS secret access key"
    )
    session_token: str | None = Field(
        default=None, description="AWS session token for temporary credentials"
    )

    @model_validator(mode="after")
    def validate_key_pair(self) -> "CredentialsConfig":
        """Explicit keys must be given as a pair."""
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise ValueError(
                "access_key_id and secret_access_key must be provided together"
            )
        return self


class S3Config(BaseModel):
    """S3 bucket configuration.

    Attributes:
        bucket_name: Globally unique bucket name
        build_dir: Local directory whose contents are published
        index_document: Index document for website hosting
        error_document: Error document for website hosting
        website_hosting: Whether to enable static website hosting
        concurrency: Maximum concurrent uploads
        gzip: Whether to gzip compressible files
        exclude: Glob patterns excluded from upload
    """

    model_config = ConfigDict(extra="forbid")

    bucket_name: str = Field(
        ..., min_length=3, max_length=63, description="S3 bucket name"
    )
    build_dir: str = Field(
        default="dist", min_length=1, description="Build directory to upload"
    )
    index_document: str = Field(
        default="index.html", description="Index document for website hosting"
    )
    error_document: str | None = Field(
        default=None, description="Error document for website hosting"
    )
    website_hosting: bool = Field(
        default=True, description="Enable static website hosting"
    )
    concurrency: int = Field(
        default=10, ge=1, le=100, description="Maximum concurrent uploads"
    )
    gzip: bool = Field(default=True, description="Gzip compressible files")
    exclude: list[str] = Field(
        default_factory=list, description="Glob patterns excluded from upload"
    )

    @field_validator("bucket_name")
    @classmethod
    def validate_bucket_name(cls, v: str) -> str:
        """Validate S3 bucket naming rules."""
        if not BUCKET_NAME_PATTERN.match(v):
            raise ValueError(
                f"Invalid bucket name: {v}. "
                "Must contain only lowercase letters, numbers, '.', '-' and "
                "start and end with a letter or number"
            )
        if ".." in v:
            raise ValueError(f"Invalid bucket name: {v}. Must not contain '..'")
        return v


class ErrorPageConfig(BaseModel):
    """Custom error response served by the distribution."""

    model_config = ConfigDict(extra="forbid")

    error_code: int = Field(..., ge=400, le=599, description="HTTP error code")
    response_code: int | None = Field(
        default=None, ge=200, le=599, description="Response code returned instead"
    )
    response_path: str | None = Field(
        default=None, description="Path of the page served for this error"
    )
    cache_ttl: int | None = Field(
        default=None, ge=0, description="Seconds the error response is cached"
    )

    @field_validator("response_path")
    @classmethod
    def validate_response_path(cls, v: str | None) -> str | None:
        """Response paths are absolute."""
        if v is not None and not v.startswith("/"):
            raise ValueError(f"response_path must start with '/': {v}")
        return v


class CustomDomainConfig(BaseModel):
    """Custom domain served by the distribution.

    When ``certificate_arn`` is omitted a certificate is found or requested
    in ACM and validated through Route53.
    """

    model_config = ConfigDict(extra="forbid")

    domain_name: str = Field(..., min_length=1, description="Primary domain name")
    certificate_arn: str | None = Field(
        default=None, description="Existing ACM certificate ARN (us-east-1)"
    )
    aliases: list[str] = Field(
        default_factory=list, description="Additional domain names (CNAMEs)"
    )
    hosted_zone_id: str | None = Field(
        default=None, description="Route53 hosted zone to publish records in"
    )
    create_dns_records: bool = Field(
        default=True, description="Publish alias records for the domain"
    )
    record_mode: DnsRecordMode = Field(
        default=DnsRecordMode.ALIAS, description="Alias (A/AAAA) or CNAME records"
    )

    @field_validator("domain_name")
    @classmethod
    def validate_domain_name(cls, v: str) -> str:
        """Validate the domain name syntax."""
        v = v.strip().lower().rstrip(".")
        if not DOMAIN_PATTERN.match(v):
            raise ValueError(f"Invalid domain name: {v}")
        return v

    @field_validator("aliases")
    @classmethod
    def normalize_aliases(cls, v: list[str]) -> list[str]:
        """Lower-case aliases and drop duplicates."""
        seen: list[str] = []
        for alias in v:
            alias = alias.strip().lower().rstrip(".")
            if not DOMAIN_PATTERN.match(alias):
                raise ValueError(f"Invalid alias domain: {alias}")
            if alias not in seen:
                seen.append(alias)
        return seen

    @field_validator("certificate_arn")
    @classmethod
    def validate_certificate_arn(cls, v: str | None) -> str | None:
        """Validate ACM ARN format."""
        if v is not None and not ACM_ARN_PATTERN.match(v):
            raise ValueError(f"Must be a valid ACM certificate ARN: {v}")
        return v

    @property
    def all_names(self) -> list[str]:
        """Primary domain followed by aliases, without duplicates."""
        return [self.domain_name] + [
            a for a in self.aliases if a != self.domain_name
        ]


class CacheWarmingConfig(BaseModel):
    """Edge cache warming after deployment."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=False, description="Enable cache warming")
    paths: list[str] = Field(
        default_factory=lambda: ["/"], description="Paths requested after deploy"
    )
    concurrency: int = Field(
        default=3, ge=1, le=10, description="Concurrent warming requests"
    )
    delay: int = Field(
        default=500, ge=100, description="Delay between requests in milliseconds"
    )


class CloudFrontConfig(BaseModel):
    """CloudFront distribution configuration."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Enable CloudFront")
    price_class: PriceClass = Field(
        default=PriceClass.PRICE_CLASS_100, description="Distribution price class"
    )
    custom_domain: CustomDomainConfig | None = Field(
        default=None, description="Custom domain configuration"
    )
    default_ttl: int = Field(default=86400, ge=0, description="Default TTL seconds")
    max_ttl: int = Field(default=31536000, ge=0, description="Max TTL seconds")
    min_ttl: int = Field(default=0, ge=0, description="Min TTL seconds")
    ipv6: bool = Field(default=True, description="Enable IPv6")
    error_pages: list[ErrorPageConfig] = Field(
        default_factory=list, description="Custom error responses"
    )
    cache_warming: CacheWarmingConfig = Field(
        default_factory=CacheWarmingConfig, description="Cache warming settings"
    )

    @model_validator(mode="after")
    def validate_ttl_order(self) -> "CloudFrontConfig":
        """TTLs must satisfy min <= default <= max."""
        if not self.min_ttl <= self.default_ttl <= self.max_ttl:
            raise ValueError("TTLs must satisfy min_ttl <= default_ttl <= max_ttl")
        return self


class SiteConfig(BaseModel):
    """Root SiteDeck configuration after environment resolution.

    Attributes:
        app: Application name, used for tags and state
        region: AWS region for the bucket
        credentials: Optional credentials configuration
        s3: Bucket configuration
        cloudfront: Distribution configuration
        environments: Raw per-environment overrides
    """

    model_config = ConfigDict(extra="forbid")

    app: str = Field(..., min_length=1, description="Application name")
    region: str = Field(default="us-east-1", description="AWS region")
    credentials: CredentialsConfig = Field(
        default_factory=CredentialsConfig, description="AWS credentials"
    )
    s3: S3Config = Field(..., description="S3 bucket configuration")
    cloudfront: CloudFrontConfig = Field(
        default_factory=CloudFrontConfig, description="CloudFront configuration"
    )
    environments: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Environment-specific overrides"
    )

    @field_validator("app")
    @classmethod
    def validate_app(cls, v: str) -> str:
        """Validate application name pattern."""
        if not APP_NAME_PATTERN.match(v):
            raise ValueError(
                "App name must contain only lowercase letters, numbers, and hyphens"
            )
        return v

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        if not REGION_PATTERN.match(v):
            raise ValueError(f"Must be a valid AWS region (e.g., us-east-1): {v}")
        return v

    @property
    def custom_domain(self) -> CustomDomainConfig | None:
        """Custom domain when CloudFront is enabled."""
        if not self.cloudfront.enabled:
            return None
        return self.cloudfront.custom_domain
