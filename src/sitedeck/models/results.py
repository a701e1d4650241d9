"""Options and results of orchestrated deploy and remove runs."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class DeployOptions:
    """Switches for a single deploy run.

    Attributes:
        force: Upload every file regardless of recorded digests
        dry_run: Scan and classify only; no remote mutation
        skip_invalidation: Do not invalidate the distribution cache
        skip_cache_warming: Do not warm edge caches after deploy
        cleanup: Delete remote objects no longer present locally
        no_cloudfront: Deploy storage only
        rollback: Tear down a bucket created by this run when a later step fails
        wait_for_deployment: Wait for the distribution to reach Deployed
        build_dir: Override of the configured build directory
    """

    force: bool = False
    dry_run: bool = False
    skip_invalidation: bool = False
    skip_cache_warming: bool = False
    cleanup: bool = False
    no_cloudfront: bool = False
    rollback: bool = True
    wait_for_deployment: bool = True
    build_dir: str | None = None


@dataclass
class RemoveOptions:
    """Switches for a teardown run."""

    keep_bucket: bool = False
    keep_distribution: bool = False
    keep_certificate: bool = False
    keep_hosted_zone: bool = True


class DeployResult(BaseModel):
    """Result of a deploy run.

    Attributes:
        app: Application name
        environment: Environment name
        bucket_name: Bucket the files were published to
        website_url: S3 website endpoint, when website hosting is on
        distribution_id: CloudFront distribution id, when enabled
        distribution_url: HTTPS URL of the distribution
        custom_domain_url: HTTPS URL of the custom domain, when configured
        uploaded: Number of files uploaded
        deleted: Number of remote objects deleted
        unchanged: Number of files skipped because their digest matched
        total_bytes: Bytes read from uploaded files
        compressed_bytes: Bytes sent after compression
        invalidation_id: Invalidation created by this run
        duration: Wall-clock seconds of the run
        dry_run: Whether this was a dry run
        warnings: Best-effort steps that did not succeed
    """

    model_config = ConfigDict(extra="forbid")

    app: str
    environment: str
    bucket_name: str
    website_url: str | None = None
    distribution_id: str | None = None
    distribution_url: str | None = None
    custom_domain_url: str | None = None
    uploaded: int = 0
    deleted: int = 0
    unchanged: int = 0
    total_bytes: int = 0
    compressed_bytes: int = 0
    invalidation_id: str | None = None
    duration: float = 0.0
    dry_run: bool = False
    warnings: list[str] = Field(default_factory=list)


class RemoveResult(BaseModel):
    """Result of a teardown run."""

    model_config = ConfigDict(extra="forbid")

    app: str
    environment: str
    removed: list[str] = Field(
        default_factory=list, description="Resources that were deleted"
    )
    kept: list[str] = Field(default_factory=list, description="Resources kept")
    errors: list[str] = Field(default_factory=list, description="Failed steps")
    state_deleted: bool = Field(default=False)

    @property
    def ok(self) -> bool:
        return not self.errors
