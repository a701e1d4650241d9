"""End-to-end tests of deploy and remove against in-memory AWS fakes."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from aws_fakes import client_error

from sitedeck.deploy import orchestrator
from sitedeck.deploy.aws.client import AwsClients
from sitedeck.deploy.cache_warmer import WarmResult
from sitedeck.deploy.events import EventRecorder
from sitedeck.deploy.orchestrator import Deployer
from sitedeck.deploy.state import StateStore
from sitedeck.lib.errors import DeploymentError, ProviderError, StateConflictError
from sitedeck.models.config import SiteConfig
from sitedeck.models.results import DeployOptions, RemoveOptions
from sitedeck.models.state import DeploymentState, S3Resource

BUCKET = "my-site-bucket"


def _write_site(root: Path, count: int) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    (root / "index.html").write_text("<h1>Home</h1>")
    for i in range(1, count):
        page = root / "pages" / f"page-{i:02d}.html"
        page.parent.mkdir(exist_ok=True)
        page.write_text(f"<p>Page {i}</p>")
    return root


def _config(build_dir: Path, **overrides: Any) -> SiteConfig:
    data: dict[str, Any] = {
        "app": "my-site",
        "s3": {"bucket_name": BUCKET, "build_dir": str(build_dir)},
    }
    data.update(overrides)
    return SiteConfig(**data)


def _deployer(
    clients: AwsClients,
    store: StateStore,
    config: SiteConfig,
    recorder: EventRecorder | None = None,
) -> Deployer:
    return Deployer(clients, store, config, "default", recorder)


class TestFirstDeploy:
    """A deploy into an empty account."""

    def test_uploads_everything_and_records_state(
        self, clients: AwsClients, store: StateStore, tmp_path: Path
    ) -> None:
        site = _write_site(tmp_path / "dist", 50)
        deployer = _deployer(clients, store, _config(site))

        result = deployer.deploy()

        assert result.uploaded == 50
        assert result.unchanged == 0
        assert len(clients.s3.buckets[BUCKET].objects) == 50
        state = store.load("my-site", "default")
        assert state is not None
        assert len(state.files) == 50
        assert state.resources.s3 is not None
        assert state.resources.s3.bucket_name == BUCKET
        assert state.resources.cloudfront is not None
        assert state.resources.cloudfront.distribution_id == result.distribution_id
        assert state.last_deployed is not None

    def test_distribution_fronts_private_bucket(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        result = _deployer(clients, store, _config(build_dir)).deploy()

        record = clients.cloudfront.distributions[result.distribution_id]
        assert record["Status"] == "Deployed"
        bucket = clients.s3.buckets[BUCKET]
        assert all(bucket.public_access_block.values())
        policy = json.loads(bucket.policy)
        condition = policy["Statement"][0]["Condition"]["StringEquals"]
        assert condition["AWS:SourceArn"] == record["ARN"]
        assert result.distribution_url == f"https://{record['DomainName']}"
        assert result.invalidation_id == clients.cloudfront.invalidations[0]["Id"]

    def test_resources_are_tagged(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        result = _deployer(clients, store, _config(build_dir)).deploy()

        assert clients.s3.buckets[BUCKET].tags["sitedeck:app"] == "my-site"
        arn = clients.cloudfront.distributions[result.distribution_id]["ARN"]
        assert clients.cloudfront.tags[arn]["sitedeck:environment"] == "default"

    def test_events_follow_deploy_order(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        recorder: EventRecorder,
    ) -> None:
        _deployer(clients, store, _config(build_dir), recorder).deploy()

        order = list(dict.fromkeys(recorder.stages()))
        assert order == [
            "scan",
            "bucket",
            "upload",
            "cloudfront",
            "invalidation",
            "deploy",
        ]

    def test_storage_only(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        """Without a distribution the bucket is served publicly."""
        result = _deployer(clients, store, _config(build_dir)).deploy(
            DeployOptions(no_cloudfront=True)
        )

        assert result.distribution_id is None
        assert result.website_url is not None
        assert not clients.cloudfront.calls
        bucket = clients.s3.buckets[BUCKET]
        assert json.loads(bucket.policy)["Statement"][0]["Principal"] == "*"

    def test_slow_distribution_is_a_warning(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        clients.cloudfront.polls_to_deploy = 10_000
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.distribution_timeout = 60

        result = deployer.deploy()

        assert any("still deploying" in w for w in result.warnings)
        assert result.invalidation_id is not None


class TestIncrementalDeploy:
    """Redeploys only publish what changed."""

    def test_one_modified_file(
        self, clients: AwsClients, store: StateStore, tmp_path: Path
    ) -> None:
        site = _write_site(tmp_path / "dist", 50)
        deployer = _deployer(clients, store, _config(site))
        first = deployer.deploy()
        (site / "pages" / "page-07.html").write_text("<p>Changed</p>")

        result = deployer.deploy()

        assert result.uploaded == 1
        assert result.unchanged == 49
        assert result.distribution_id == first.distribution_id
        assert len(clients.cloudfront.called("CreateDistribution")) == 1
        assert len(clients.cloudfront.called("UpdateDistribution")) == 1
        put_keys = [c["Key"] for c in clients.s3.called("PutObject")]
        assert put_keys.count("pages/page-07.html") == 2
        assert len(put_keys) == 51

    def test_unchanged_site_skips_invalidation(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()

        result = deployer.deploy()

        assert result.uploaded == 0
        assert result.invalidation_id is None
        assert len(clients.cloudfront.invalidations) == 1

    def test_force_uploads_everything(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()

        result = deployer.deploy(DeployOptions(force=True))

        assert result.uploaded == 4
        assert result.invalidation_id is not None

    def test_deleted_file_with_cleanup(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()
        (build_dir / "about.html").unlink()

        result = deployer.deploy(DeployOptions(cleanup=True))

        assert result.deleted == 1
        assert result.invalidation_id is not None
        assert "about.html" not in clients.s3.buckets[BUCKET].objects
        state = store.load("my-site", "default")
        assert state is not None
        assert "about.html" not in state.files

    def test_deleted_file_without_cleanup_stays_recorded(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()
        (build_dir / "about.html").unlink()

        result = deployer.deploy()

        assert result.deleted == 0
        assert "about.html" in clients.s3.buckets[BUCKET].objects
        state = store.load("my-site", "default")
        assert state is not None
        assert "about.html" in state.files

    def test_stale_keys_do_not_force_invalidation(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        """Files removed locally but kept remotely do not trigger invalidations."""
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()
        (build_dir / "about.html").unlink()

        second = deployer.deploy()
        third = deployer.deploy()

        assert second.invalidation_id is None
        assert third.invalidation_id is None
        assert len(clients.cloudfront.invalidations) == 1

    def test_dry_run_changes_nothing(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        recorder: EventRecorder,
    ) -> None:
        result = _deployer(clients, store, _config(build_dir), recorder).deploy(
            DeployOptions(dry_run=True)
        )

        assert result.dry_run
        assert result.uploaded == 4
        assert not clients.s3.calls
        assert not clients.cloudfront.calls
        assert not store.exists("my-site", "default")
        assert recorder.events[-1].message == "Dry run complete; nothing was changed"


class TestRollback:
    """A failure after the bucket step undoes a bucket created by this run."""

    def test_new_bucket_is_removed(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        recorder: EventRecorder,
    ) -> None:
        clients.cloudfront.fail(
            "CreateInvalidation", client_error("AccessDenied", status=403)
        )

        with pytest.raises(ProviderError, match="CreateInvalidation"):
            _deployer(clients, store, _config(build_dir), recorder).deploy()

        assert BUCKET not in clients.s3.buckets
        state = store.load("my-site", "default")
        assert state is not None
        assert state.resources.s3 is None
        assert state.files == {}
        assert "rollback" in recorder.stages()

    def test_existing_bucket_is_kept(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        clients.s3.add_bucket(BUCKET)
        clients.cloudfront.fail(
            "CreateInvalidation", client_error("AccessDenied", status=403)
        )

        with pytest.raises(ProviderError):
            _deployer(clients, store, _config(build_dir)).deploy()

        assert BUCKET in clients.s3.buckets
        assert not clients.s3.called("DeleteBucket")

    def test_rollback_disabled(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        recorder: EventRecorder,
    ) -> None:
        clients.cloudfront.fail(
            "CreateDistribution", client_error("AccessDenied", status=403)
        )

        with pytest.raises(ProviderError):
            _deployer(clients, store, _config(build_dir), recorder).deploy(
                DeployOptions(rollback=False)
            )

        assert BUCKET in clients.s3.buckets
        assert any("Rollback disabled" in e.message for e in recorder.warnings)

    def test_upload_failure_rolls_back(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        clients.s3.failing_keys["index.html"] = client_error(
            "AccessDenied", status=403
        )

        with pytest.raises(DeploymentError, match="index.html"):
            _deployer(clients, store, _config(build_dir)).deploy()

        assert BUCKET not in clients.s3.buckets

    def test_recorded_bucket_conflict_creates_nothing(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        """A config naming a different bucket than state fails before any call."""
        existing = DeploymentState(app="my-site", environment="default")
        existing.record("s3", S3Resource(bucket_name="old-bucket", region="us-east-1"))
        store.save(existing)

        with pytest.raises(StateConflictError, match="old-bucket"):
            _deployer(clients, store, _config(build_dir)).deploy()

        assert not clients.s3.buckets
        assert not clients.s3.called("CreateBucket")
        state = store.load("my-site", "default")
        assert state is not None
        assert state.resources.s3 is not None
        assert state.resources.s3.bucket_name == "old-bucket"


class TestCustomDomain:
    """Deploys with a custom domain and an auto-provisioned certificate."""

    def _config(self, build_dir: Path) -> SiteConfig:
        return _config(
            build_dir,
            cloudfront={
                "custom_domain": {
                    "domain_name": "example.com",
                    "aliases": ["www.example.com"],
                }
            },
        )

    def test_certificate_and_records(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        zone_id = clients.route53.add_zone("example.com")

        result = _deployer(clients, store, self._config(build_dir)).deploy()

        state = store.load("my-site", "default")
        assert state is not None and state.resources.acm is not None
        arn = state.resources.acm.certificate_arn
        config = clients.cloudfront.distributions[result.distribution_id]["config"]
        assert config["ViewerCertificate"]["ACMCertificateArn"] == arn
        assert config["Aliases"]["Items"] == ["example.com", "www.example.com"]
        assert clients.route53.record_names(zone_id, "A") == [
            "example.com.",
            "www.example.com.",
        ]
        assert state.resources.route53 is not None
        assert state.resources.route53.hosted_zone_id == zone_id
        assert state.resources.route53.record_names == [
            "example.com",
            "www.example.com",
        ]
        assert result.custom_domain_url == "https://example.com"

    def test_certificate_is_reused_on_redeploy(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        clients.route53.add_zone("example.com")
        deployer = _deployer(clients, store, self._config(build_dir))
        deployer.deploy()
        deployer.deploy()
        assert len(clients.acm.called("RequestCertificate")) == 1

    def test_certificate_failure_happens_before_bucket(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        clients.route53.add_zone("example.com")
        clients.acm.fail_status = "FAILED"

        with pytest.raises(DeploymentError, match="validation failed"):
            _deployer(clients, store, self._config(build_dir)).deploy()

        assert not clients.s3.called("CreateBucket")


class TestCacheWarming:
    def test_failures_become_warnings(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        calls: list[tuple[str, list[str]]] = []

        def fake_warm(host: str, paths: list[str], **kwargs: Any) -> WarmResult:
            calls.append((host, list(paths)))
            return WarmResult(total=2, succeeded=1, failures={"/about": "HTTP 404"})

        monkeypatch.setattr(orchestrator, "warm_cache", fake_warm)
        config = _config(
            build_dir,
            cloudfront={"cache_warming": {"enabled": True, "paths": ["/", "/about"]}},
        )

        result = _deployer(clients, store, config).deploy()

        host = clients.cloudfront.distributions[result.distribution_id]["DomainName"]
        assert calls == [(host, ["/", "/about"])]
        assert result.warnings == ["Cache warming failed for /about: HTTP 404"]


class TestRemove:
    """Teardown of a deployed site."""

    def test_removes_everything_and_deletes_state(
        self,
        clients: AwsClients,
        store: StateStore,
        build_dir: Path,
        recorder: EventRecorder,
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir), recorder)
        deployed = deployer.deploy()

        result = deployer.remove()

        assert result.ok
        assert result.removed == [
            f"cloudfront:{deployed.distribution_id}",
            f"s3:{BUCKET}",
        ]
        assert result.state_deleted
        assert not clients.cloudfront.distributions
        assert not clients.cloudfront.origin_access_controls
        assert BUCKET not in clients.s3.buckets
        assert not store.exists("my-site", "default")

    def test_custom_domain_teardown(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        zone_id = clients.route53.add_zone("example.com")
        config = _config(
            build_dir,
            cloudfront={"custom_domain": {"domain_name": "example.com"}},
        )
        deployer = _deployer(clients, store, config)
        deployer.deploy()

        result = deployer.remove()

        assert result.ok
        assert not clients.acm.certificates
        assert "dns:example.com" in result.removed
        assert clients.route53.record_names(zone_id, "A") == []
        assert zone_id in clients.route53.zones

    def test_imported_certificate_is_kept(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        """Certificates sitedeck did not request are never deleted."""
        clients.route53.add_zone("example.com")
        arn = clients.acm.add_certificate("example.com")
        config = _config(
            build_dir,
            cloudfront={"custom_domain": {"domain_name": "example.com"}},
        )
        deployer = _deployer(clients, store, config)
        deployer.deploy()

        deployer.remove()

        assert arn in clients.acm.certificates

    def test_keep_bucket(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()

        result = deployer.remove(RemoveOptions(keep_bucket=True))

        assert result.kept == [f"s3:{BUCKET}"]
        assert BUCKET in clients.s3.buckets
        assert result.state_deleted

    def test_failed_step_keeps_state(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()
        clients.s3.fail("ListObjectVersions", client_error("AccessDenied", status=403))

        result = deployer.remove()

        assert not result.ok
        assert result.errors[0].startswith("s3:")
        state = store.load("my-site", "default")
        assert state is not None
        assert state.resources.cloudfront is None
        assert state.resources.s3 is not None

    def test_without_state_uses_discovery(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        deployer.deploy()
        store.delete("my-site", "default")

        result = deployer.remove()

        assert result.ok
        assert f"s3:{BUCKET}" in result.removed
        assert not clients.cloudfront.distributions
        assert not result.state_deleted

    def test_nothing_to_remove(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        with pytest.raises(DeploymentError, match="Nothing to remove"):
            _deployer(clients, store, _config(build_dir)).remove()


class TestStatus:
    def test_status(
        self, clients: AwsClients, store: StateStore, build_dir: Path
    ) -> None:
        deployer = _deployer(clients, store, _config(build_dir))
        assert deployer.status() is None
        deployer.deploy()
        state = deployer.status()
        assert state is not None
        assert state.resources.s3 is not None
