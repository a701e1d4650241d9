"""Deploy, remove and inspect a site across S3, ACM, CloudFront and Route53.

A deploy runs in a fixed order and saves state after every durable step so
an interrupted run can be resumed:

    certificate -> bucket -> files -> distribution -> wait
        -> invalidation -> alias records -> cache warming

If a step after the bucket fails and this run created the bucket, the bucket
is torn down again (unless rollback is disabled) and the original error is
re-raised.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from sitedeck.deploy import discovery, scanner
from sitedeck.deploy.aws import cdn, certificates, dns, storage
from sitedeck.deploy.aws.client import AwsClients
from sitedeck.deploy.cache_warmer import warm_cache
from sitedeck.deploy.events import Emitter, Reporter
from sitedeck.deploy.state import StateStore
from sitedeck.lib import retry
from sitedeck.lib.errors import DeploymentError, SiteDeckError
from sitedeck.lib.logging_config import get_logger
from sitedeck.models.config import CustomDomainConfig, SiteConfig
from sitedeck.models.discovery import TAG_AUTO_CREATED
from sitedeck.models.files import FileChanges, FileDescriptor, UploadStats
from sitedeck.models.results import (
    DeployOptions,
    DeployResult,
    RemoveOptions,
    RemoveResult,
)
from sitedeck.models.state import (
    AcmResource,
    CloudFrontResource,
    DeploymentState,
    Route53Resource,
    S3Resource,
)

logger = get_logger(__name__)


class Deployer:
    """Runs deploy, remove and status for one app and environment.

    Attributes:
        clients: AWS service clients
        store: Local state store
        config: Resolved site configuration
        environment: Environment name
        certificate_timeout: Seconds to wait for certificate issuance
        distribution_timeout: Seconds to wait for a distribution to deploy
    """

    def __init__(
        self,
        clients: AwsClients,
        store: StateStore,
        config: SiteConfig,
        environment: str = "default",
        reporter: Reporter | None = None,
    ) -> None:
        self.clients = clients
        self.store = store
        self.config = config
        self.environment = environment
        self.reporter = reporter
        self.certificate_timeout: float = certificates.ISSUANCE_TIMEOUT
        self.distribution_timeout: float = cdn.DEPLOY_TIMEOUT

    @property
    def app(self) -> str:
        return self.config.app

    def _emitter(self, stage: str) -> Emitter:
        return Emitter(self.reporter, stage)

    def _save(self, state: DeploymentState) -> None:
        self.store.save(state)

    def status(self) -> DeploymentState | None:
        """The recorded state, or None when nothing was deployed."""
        return self.store.load(self.app, self.environment)

    # Deploy

    def deploy(self, options: DeployOptions | None = None) -> DeployResult:
        """Publish the build directory and reconcile the remote resources.

        Args:
            options: Switches for this run

        Returns:
            DeployResult describing what changed

        Raises:
            SiteDeckError: On any fatal failure, after rollback where it applies
        """
        options = options or DeployOptions()
        started = retry.monotonic()
        config = self.config
        cdn_enabled = config.cloudfront.enabled and not options.no_cloudfront
        domain = config.custom_domain if cdn_enabled else None
        build_dir = Path(options.build_dir or config.s3.build_dir)

        emitter = self._emitter("scan")
        emitter.step(f"Scanning {build_dir}")
        files = scanner.scan_files(build_dir, config.s3.exclude)
        state = self.store.get_or_create(self.app, self.environment)
        changes = self._classify(files, state, options.force)
        emitter.info(
            "{added} added, {modified} modified, {unchanged} unchanged, "
            "{deleted} deleted".format(**changes.summary()),
            data=changes.summary(),
        )

        result = DeployResult(
            app=self.app,
            environment=self.environment,
            bucket_name=config.s3.bucket_name,
            unchanged=len(changes.unchanged),
            dry_run=options.dry_run,
        )
        if options.dry_run:
            return self._dry_run(changes, options, result, started)
        state.check_identifier("s3", config.s3.bucket_name)

        certificate_arn = domain.certificate_arn if domain else None
        zone: dns.HostedZoneResult | None = None
        if domain and not certificate_arn:
            cert = self._provision_certificate(state, domain)
            certificate_arn, zone = cert.arn, cert.zone

        bucket = self._ensure_bucket(state, cdn_enabled, result)
        try:
            self._publish_files(state, files, changes, options, result)
            if cdn_enabled:
                distribution = self._ensure_distribution(
                    state, certificate_arn, result
                )
                self._wait_for(distribution, options, result)
                self._invalidate(state, distribution, changes, options, result)
                result.distribution_id = distribution.id
                result.distribution_url = distribution.url
                if domain:
                    result.custom_domain_url = f"https://{domain.domain_name}"
                    if domain.create_dns_records:
                        self._publish_aliases(state, domain, distribution, zone)
                self._warm(distribution, options, result)
        except Exception:
            if bucket.created and options.rollback:
                self._rollback(state, bucket.name)
            elif bucket.created:
                self._emitter("rollback").warning(
                    f"Rollback disabled; bucket {bucket.name} was left in place"
                )
            raise

        result.duration = retry.monotonic() - started
        self._emitter("deploy").success(
            f"Deployed {self.app} ({self.environment}) in {result.duration:.1f}s"
        )
        return result

    def _classify(
        self, files: list[FileDescriptor], state: DeploymentState, force: bool
    ) -> FileChanges:
        changes = scanner.classify_changes(files, state.files)
        if force:
            changes = FileChanges(
                added=changes.added,
                modified=changes.modified + changes.unchanged,
                unchanged=[],
                deleted=changes.deleted,
            )
        return changes

    def _dry_run(
        self,
        changes: FileChanges,
        options: DeployOptions,
        result: DeployResult,
        started: float,
    ) -> DeployResult:
        stats = storage.upload_changed_files(
            None,
            self.config.s3.bucket_name,
            changes,
            storage.UploadOptions(dry_run=True),
            self.reporter,
        )
        result.uploaded = stats.count
        result.total_bytes = stats.total_bytes
        if options.cleanup:
            emitter = self._emitter("cleanup")
            for key in changes.deleted:
                emitter.info(f"[dry run] would delete {key}")
            result.deleted = len(changes.deleted)
        result.duration = retry.monotonic() - started
        self._emitter("deploy").success("Dry run complete; nothing was changed")
        return result

    def _provision_certificate(
        self, state: DeploymentState, domain: CustomDomainConfig
    ) -> certificates.CertificateResult:
        known = state.resources.acm.certificate_arn if state.resources.acm else None
        cert = certificates.provision_certificate(
            self.clients.acm,
            self.clients.route53,
            domain.domain_name,
            domain.aliases,
            self.app,
            self.environment,
            zone_id=domain.hosted_zone_id,
            known_arn=known,
            timeout=self.certificate_timeout,
            reporter=self.reporter,
        )
        state.record(
            "acm",
            AcmResource(
                certificate_arn=cert.arn,
                domain_name=domain.domain_name,
                status="ISSUED",
                alternative_names=cert.alternative_names,
            ),
            replace=True,
        )
        if cert.zone is not None:
            self._record_zone(state, cert.zone)
        self._save(state)
        return cert

    def _record_zone(
        self,
        state: DeploymentState,
        zone: dns.HostedZoneResult,
        record_names: list[str] | None = None,
    ) -> None:
        previous = state.resources.route53
        state.record(
            "route53",
            Route53Resource(
                hosted_zone_id=zone.id,
                zone_name=zone.name,
                name_servers=zone.name_servers,
                record_names=(
                    record_names
                    if record_names is not None
                    else (previous.record_names if previous else [])
                ),
                auto_created=zone.created or bool(previous and previous.auto_created),
            ),
        )

    def _ensure_bucket(
        self, state: DeploymentState, cdn_enabled: bool, result: DeployResult
    ) -> storage.BucketResult:
        s3 = self.config.s3
        emitter = self._emitter("bucket")
        emitter.step(f"Ensuring bucket {s3.bucket_name}")
        recorded = state.resources.cloudfront
        options = storage.BucketOptions(
            website_hosting=s3.website_hosting,
            index_document=s3.index_document,
            error_document=s3.error_document,
            access=(
                storage.AccessMode.CDN_ONLY
                if cdn_enabled
                else storage.AccessMode.PUBLIC_READ
            ),
            distribution_arn=(
                recorded.distribution_arn if cdn_enabled and recorded else None
            ),
        )
        bucket = storage.ensure_bucket(
            self.clients.s3, s3.bucket_name, self.config.region, options
        )
        state.record(
            "s3",
            S3Resource(
                bucket_name=bucket.name,
                region=bucket.region,
                website_url=bucket.website_url,
                bucket_arn=bucket.arn,
            ),
        )
        self._save(state)
        if not storage.tag_bucket(
            self.clients.s3, bucket.name, self.app, self.environment, bucket.region
        ):
            self._warn(result, emitter, f"Could not tag bucket {bucket.name}")
        verb = "Created" if bucket.created else "Using existing"
        emitter.success(f"{verb} bucket {bucket.name}")
        result.website_url = bucket.website_url
        return bucket

    def _publish_files(
        self,
        state: DeploymentState,
        files: list[FileDescriptor],
        changes: FileChanges,
        options: DeployOptions,
        result: DeployResult,
    ) -> UploadStats:
        s3 = self.config.s3
        stats = storage.upload_changed_files(
            self.clients.s3,
            s3.bucket_name,
            changes,
            storage.UploadOptions(concurrency=s3.concurrency, gzip=s3.gzip),
            self.reporter,
        )
        result.uploaded = stats.count
        result.total_bytes = stats.total_bytes
        result.compressed_bytes = stats.compressed_bytes

        # Keys removed locally stay recorded until they are deleted remotely.
        stale = {k: state.files[k] for k in changes.deleted if k in state.files}
        if options.cleanup and changes.deleted:
            deleted = storage.delete_removed_files(
                self.clients.s3, s3.bucket_name, changes.deleted, self.reporter
            )
            result.deleted = len(deleted.deleted)
            for key in deleted.deleted:
                stale.pop(key, None)
            for key, reason in deleted.failed.items():
                result.warnings.append(f"Failed to delete {key}: {reason}")

        state.files = {**stale, **scanner.digest_map(files)}
        self._save(state)
        return stats

    def _ensure_distribution(
        self,
        state: DeploymentState,
        certificate_arn: str | None,
        result: DeployResult,
    ) -> cdn.DistributionResult:
        config = self.config
        cloudfront = config.cloudfront
        emitter = self._emitter("cloudfront")
        emitter.step("Ensuring CloudFront distribution")
        client = self.clients.cloudfront
        oac_id = cdn.ensure_origin_access_control(client, config.s3.bucket_name)
        domain = config.custom_domain
        options = cdn.DistributionOptions(
            bucket_name=config.s3.bucket_name,
            region=config.region,
            origin_access_control_id=oac_id,
            index_document=config.s3.index_document,
            price_class=cloudfront.price_class.value,
            ipv6=cloudfront.ipv6,
            aliases=domain.all_names if domain else [],
            certificate_arn=certificate_arn,
            min_ttl=cloudfront.min_ttl,
            default_ttl=cloudfront.default_ttl,
            max_ttl=cloudfront.max_ttl,
            error_pages=cloudfront.error_pages,
            comment=f"sitedeck: {self.app} ({self.environment})",
        )
        recorded = state.resources.cloudfront
        distribution = cdn.ensure_distribution(
            client, options, recorded.distribution_id if recorded else None
        )
        state.record(
            "cloudfront",
            CloudFrontResource(
                distribution_id=distribution.id,
                domain_name=distribution.domain,
                distribution_url=distribution.url,
                distribution_arn=distribution.arn,
                certificate_arn=certificate_arn,
                aliases=options.aliases,
                last_invalidation=recorded.last_invalidation if recorded else None,
            ),
        )
        self._save(state)
        storage.apply_cdn_policy(
            self.clients.s3, config.s3.bucket_name, distribution.arn
        )
        if not cdn.tag_distribution(
            client, distribution.arn, self.app, self.environment
        ):
            self._warn(
                result, emitter, f"Could not tag distribution {distribution.id}"
            )
        verb = "Created" if distribution.created else "Updated"
        emitter.success(f"{verb} distribution {distribution.id}")
        return distribution

    def _wait_for(
        self,
        distribution: cdn.DistributionResult,
        options: DeployOptions,
        result: DeployResult,
    ) -> None:
        if not options.wait_for_deployment or distribution.status == "Deployed":
            return
        emitter = self._emitter("cloudfront")
        emitter.info("Waiting for the distribution to deploy (this can take minutes)")
        deployed = cdn.wait_until_deployed(
            self.clients.cloudfront, distribution.id, timeout=self.distribution_timeout
        )
        if not deployed:
            self._warn(
                result,
                emitter,
                f"Distribution {distribution.id} is still deploying; it will "
                "serve the new configuration once AWS finishes.",
            )

    def _invalidate(
        self,
        state: DeploymentState,
        distribution: cdn.DistributionResult,
        changes: FileChanges,
        options: DeployOptions,
        result: DeployResult,
    ) -> None:
        emitter = self._emitter("invalidation")
        if options.skip_invalidation:
            emitter.info("Skipping cache invalidation")
            return
        # Keys left in the bucket without --cleanup are still served as before.
        if not (changes.to_upload or result.deleted or options.force):
            emitter.info("No changes; cache invalidation not needed")
            return
        emitter.step("Invalidating CloudFront cache")
        result.invalidation_id = cdn.invalidate(
            self.clients.cloudfront, distribution.id
        )
        recorded = state.resources.cloudfront
        if recorded is not None:
            recorded.last_invalidation = datetime.now(timezone.utc)
        self._save(state)
        emitter.success(f"Created invalidation {result.invalidation_id}")

    def _publish_aliases(
        self,
        state: DeploymentState,
        domain: CustomDomainConfig,
        distribution: cdn.DistributionResult,
        zone: dns.HostedZoneResult | None,
    ) -> None:
        emitter = self._emitter("dns")
        route53 = self.clients.route53
        if zone is None:
            zone = dns.resolve_hosted_zone(
                route53,
                domain.domain_name,
                self.app,
                self.environment,
                domain.hosted_zone_id,
            )
        emitter.step(f"Pointing {domain.domain_name} at the distribution")
        names = dns.publish_alias_records(
            route53,
            zone.id,
            domain.domain_name,
            distribution.domain,
            domain.aliases,
            mode=domain.record_mode,
            ipv6=self.config.cloudfront.ipv6,
        )
        self._record_zone(state, zone, record_names=names)
        self._save(state)
        emitter.success(f"Published DNS records for {', '.join(names)}")

    def _warm(
        self,
        distribution: cdn.DistributionResult,
        options: DeployOptions,
        result: DeployResult,
    ) -> None:
        warming = self.config.cloudfront.cache_warming
        if not warming.enabled or options.skip_cache_warming:
            return
        domain = self.config.custom_domain
        host = domain.domain_name if domain else distribution.domain
        warmed = warm_cache(
            host,
            warming.paths,
            concurrency=warming.concurrency,
            delay_ms=warming.delay,
            reporter=self.reporter,
        )
        for path, reason in warmed.failures.items():
            result.warnings.append(f"Cache warming failed for {path}: {reason}")

    def _rollback(self, state: DeploymentState, bucket_name: str) -> None:
        """Tear down a bucket created by this run; errors are reported only."""
        emitter = self._emitter("rollback")
        emitter.warning(f"Deployment failed; removing bucket {bucket_name}")
        try:
            storage.tear_down_bucket(self.clients.s3, bucket_name, self.reporter)
        except SiteDeckError as exc:
            logger.error("Rollback of bucket %s failed: %s", bucket_name, exc)
            emitter.error(
                f"Rollback failed; delete bucket {bucket_name} manually: {exc}"
            )
            return
        state.clear("s3")
        state.files = {}
        self._save(state)
        emitter.info(f"Rolled back bucket {bucket_name}")

    @staticmethod
    def _warn(result: DeployResult, emitter: Emitter, message: str) -> None:
        result.warnings.append(message)
        emitter.warning(message)

    # Remove

    def remove(self, options: RemoveOptions | None = None) -> RemoveResult:
        """Tear down the deployment: CloudFront, ACM, S3, then Route53.

        Falls back to tag discovery when no state is recorded. The state
        file is deleted only when every step succeeded; otherwise the
        remaining resources are saved so the run can be repeated.

        Raises:
            DeploymentError: If there is nothing to remove
        """
        options = options or RemoveOptions()
        state = self.store.load(self.app, self.environment)
        from_state = state is not None
        if state is None:
            self._emitter("discovery").info(
                "No local state; looking for tagged resources"
            )
            found = discovery.discover_for_app_env(
                self.clients, self.app, self.environment
            )
            if found.is_empty:
                raise DeploymentError(
                    "remove",
                    f"No deployment found for {self.app} ({self.environment}). "
                    "Nothing to remove.",
                )
            state = discovery.state_from_discovery(self.app, self.environment, found)

        result = RemoveResult(app=self.app, environment=self.environment)
        resources = state.resources
        bucket_name = resources.s3.bucket_name if resources.s3 else None

        distribution = resources.cloudfront
        if distribution:
            if options.keep_distribution:
                result.kept.append(f"cloudfront:{distribution.distribution_id}")
            else:
                self._step(
                    result,
                    "cloudfront",
                    lambda: self._remove_distribution(state, distribution, bucket_name),
                )

        certificate = resources.acm
        if certificate:
            if options.keep_certificate:
                result.kept.append(f"acm:{certificate.certificate_arn}")
            else:
                self._step(
                    result, "acm", lambda: self._remove_certificate(state, certificate)
                )

        bucket = resources.s3
        if bucket:
            if options.keep_bucket:
                result.kept.append(f"s3:{bucket.bucket_name}")
            else:
                self._step(result, "s3", lambda: self._remove_bucket(state, bucket))

        zone = resources.route53
        if zone:
            self._step(
                result,
                "route53",
                lambda: self._remove_dns(state, zone, options, result),
            )

        if result.ok:
            if from_state:
                result.state_deleted = self.store.delete(self.app, self.environment)
        else:
            self._save(state)

        emitter = self._emitter("remove")
        if result.ok:
            emitter.success(f"Removed {self.app} ({self.environment})")
        else:
            emitter.error(f"Removal finished with {len(result.errors)} error(s)")
        return result

    def _step(
        self, result: RemoveResult, name: str, action: Callable[[], list[str]]
    ) -> None:
        try:
            removed = action()
        except SiteDeckError as exc:
            logger.error("Failed to remove %s: %s", name, exc)
            result.errors.append(f"{name}: {exc}")
            self._emitter(name).error(f"Failed to remove {name}: {exc}")
            return
        result.removed.extend(removed)

    def _remove_distribution(
        self,
        state: DeploymentState,
        recorded: CloudFrontResource,
        bucket_name: str | None,
    ) -> list[str]:
        client = self.clients.cloudfront
        cdn.tear_down_distribution(
            client,
            recorded.distribution_id,
            timeout=self.distribution_timeout,
            reporter=self.reporter,
        )
        if bucket_name:
            cdn.delete_origin_access_control(client, bucket_name)
        state.clear("cloudfront")
        return [f"cloudfront:{recorded.distribution_id}"]

    def _remove_certificate(
        self, state: DeploymentState, recorded: AcmResource
    ) -> list[str]:
        tags = certificates.get_certificate_tags(
            self.clients.acm, recorded.certificate_arn
        )
        if tags.get(TAG_AUTO_CREATED) != "true":
            self._emitter("acm").info(
                f"Keeping certificate {recorded.certificate_arn}; "
                "it was not requested by sitedeck"
            )
            state.clear("acm")
            return []
        certificates.delete_certificate(self.clients.acm, recorded.certificate_arn)
        state.clear("acm")
        return [f"acm:{recorded.certificate_arn}"]

    def _remove_bucket(self, state: DeploymentState, recorded: S3Resource) -> list[str]:
        storage.tear_down_bucket(self.clients.s3, recorded.bucket_name, self.reporter)
        state.clear("s3")
        state.files = {}
        return [f"s3:{recorded.bucket_name}"]

    def _remove_dns(
        self,
        state: DeploymentState,
        recorded: Route53Resource,
        options: RemoveOptions,
        result: RemoveResult,
    ) -> list[str]:
        route53 = self.clients.route53
        removed: list[str] = []
        if recorded.record_names and not options.keep_distribution:
            dns.delete_records(route53, recorded.hosted_zone_id, recorded.record_names)
            removed.extend(f"dns:{name}" for name in recorded.record_names)
            recorded.record_names = []

        if recorded.auto_created and not options.keep_hosted_zone:
            dns.delete_hosted_zone(route53, recorded.hosted_zone_id)
            removed.append(f"route53:{recorded.hosted_zone_id}")
            state.clear("route53")
        elif recorded.auto_created:
            result.kept.append(f"route53:{recorded.hosted_zone_id}")
        else:
            state.clear("route53")
        return removed
