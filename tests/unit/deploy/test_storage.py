"""Tests for S3 bucket provisioning, uploads and teardown."""

from __future__ import annotations

import gzip
import json
from pathlib import Path

import pytest
from aws_fakes import FakeS3, client_error
from boto3.exceptions import S3UploadFailedError

from sitedeck.deploy.aws.storage import (
    ASSET_CACHE_CONTROL,
    HTML_CACHE_CONTROL,
    AccessMode,
    BucketOptions,
    UploadOptions,
    cache_control_for,
    delete_removed_files,
    ensure_bucket,
    get_bucket_tags,
    tag_bucket,
    tear_down_bucket,
    upload_changed_files,
    website_url,
)
from sitedeck.deploy.events import EventLevel, EventRecorder
from sitedeck.deploy.scanner import classify_changes, digest_map, scan_files
from sitedeck.lib.errors import DeploymentError, UploadError
from sitedeck.models.files import FileChanges

DISTRIBUTION_ARN = "arn:aws:cloudfront::123456789012:distribution/E1"


def _changes(root: Path, previous: dict[str, str] | None = None) -> FileChanges:
    return classify_changes(scan_files(root), previous)


class TestHelpers:
    def test_website_url(self) -> None:
        assert (
            website_url("b", "us-east-1")
            == "http://b.s3-website-us-east-1.amazonaws.com"
        )
        assert (
            website_url("b", "eu-west-1")
            == "http://b.s3-website.eu-west-1.amazonaws.com"
        )

    @pytest.mark.parametrize(
        ("content_type", "expected"),
        [
            ("text/html", HTML_CACHE_CONTROL),
            ("text/html; charset=utf-8", HTML_CACHE_CONTROL),
            ("application/json", HTML_CACHE_CONTROL),
            ("text/javascript", ASSET_CACHE_CONTROL),
            ("image/png", ASSET_CACHE_CONTROL),
        ],
    )
    def test_cache_control(self, content_type: str, expected: str) -> None:
        assert cache_control_for(content_type) == expected


class TestEnsureBucket:
    """Tests for bucket creation and configuration."""

    def test_creates_missing_bucket(self) -> None:
        s3 = FakeS3()
        result = ensure_bucket(s3, "site-bucket", "us-east-1")

        assert result.created is True
        assert "site-bucket" in s3.buckets
        assert result.website_url == website_url("site-bucket", "us-east-1")
        assert result.arn == "arn:aws:s3:::site-bucket"
        assert "CreateBucketConfiguration" not in s3.called("CreateBucket")[0]

    def test_location_constraint_outside_us_east_1(self) -> None:
        s3 = FakeS3()
        ensure_bucket(s3, "site-bucket", "eu-west-1")
        assert s3.buckets["site-bucket"].region == "eu-west-1"

    def test_existing_bucket_is_not_created(self) -> None:
        """An existing bucket is reused and never marked as created."""
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        result = ensure_bucket(s3, "site-bucket", "us-east-1")

        assert result.created is False
        assert not s3.called("CreateBucket")
        assert s3.buckets["site-bucket"].website is not None

    def test_create_race_owned_by_caller(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.fail("HeadBucket", client_error("404", status=404))
        assert ensure_bucket(s3, "site-bucket", "us-east-1").created is False

    def test_name_taken_by_another_account(self) -> None:
        s3 = FakeS3()
        s3.fail("HeadBucket", client_error("404", status=404))
        s3.foreign_buckets.add("taken")
        with pytest.raises(DeploymentError, match="already taken"):
            ensure_bucket(s3, "taken", "us-east-1")

    def test_inaccessible_bucket(self) -> None:
        s3 = FakeS3()
        s3.foreign_buckets.add("taken")
        with pytest.raises(DeploymentError, match="not accessible"):
            ensure_bucket(s3, "taken", "us-east-1")

    def test_website_documents(self) -> None:
        s3 = FakeS3()
        ensure_bucket(
            s3,
            "site-bucket",
            "us-east-1",
            BucketOptions(index_document="home.html", error_document="404.html"),
        )
        assert s3.buckets["site-bucket"].website == {
            "IndexDocument": {"Suffix": "home.html"},
            "ErrorDocument": {"Key": "404.html"},
        }

    def test_website_hosting_disabled(self) -> None:
        s3 = FakeS3()
        result = ensure_bucket(
            s3, "site-bucket", "us-east-1", BucketOptions(website_hosting=False)
        )
        assert result.website_url is None
        assert not s3.called("PutBucketWebsite")


class TestAccessModes:
    """Tests for the public access block and bucket policies."""

    def test_cdn_only_blocks_public_access(self) -> None:
        s3 = FakeS3()
        ensure_bucket(
            s3,
            "site-bucket",
            "us-east-1",
            BucketOptions(distribution_arn=DISTRIBUTION_ARN),
        )
        bucket = s3.buckets["site-bucket"]
        assert bucket.public_access_block is not None
        assert all(bucket.public_access_block.values())
        statement = json.loads(bucket.policy)["Statement"][0]
        assert statement["Principal"] == {"Service": "cloudfront.amazonaws.com"}
        assert statement["Condition"]["StringEquals"] == {
            "AWS:SourceArn": DISTRIBUTION_ARN
        }

    def test_cdn_only_without_distribution_has_no_policy(self) -> None:
        s3 = FakeS3()
        ensure_bucket(s3, "site-bucket", "us-east-1")
        assert s3.buckets["site-bucket"].policy is None

    def test_public_read(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket").public_access_block = {"BlockPublicAcls": True}
        ensure_bucket(
            s3,
            "site-bucket",
            "us-east-1",
            BucketOptions(access=AccessMode.PUBLIC_READ),
        )
        bucket = s3.buckets["site-bucket"]
        assert bucket.public_access_block is None
        statement = json.loads(bucket.policy)["Statement"][0]
        assert statement["Principal"] == "*"
        assert statement["Resource"] == "arn:aws:s3:::site-bucket/*"

    def test_public_read_without_existing_block(self) -> None:
        s3 = FakeS3()
        ensure_bucket(
            s3,
            "site-bucket",
            "us-east-1",
            BucketOptions(access=AccessMode.PUBLIC_READ),
        )
        assert s3.buckets["site-bucket"].policy is not None


class TestBucketTags:
    def test_tag_and_read_back(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        assert tag_bucket(s3, "site-bucket", "my-site", "prod", "us-east-1")
        tags = get_bucket_tags(s3, "site-bucket")
        assert tags["sitedeck:app"] == "my-site"
        assert tags["sitedeck:environment"] == "prod"
        assert tags["sitedeck:region"] == "us-east-1"

    def test_untagged_bucket(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        assert get_bucket_tags(s3, "site-bucket") == {}

    def test_tag_failure_is_not_fatal(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.fail("PutBucketTagging", client_error("AccessDenied", status=403))
        assert tag_bucket(s3, "site-bucket", "my-site", "prod", "us-east-1") is False


class TestUploadChangedFiles:
    """Tests for incremental uploads."""

    def test_uploads_every_new_file(self, build_dir: Path) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        recorder = EventRecorder()

        stats = upload_changed_files(
            s3, "site-bucket", _changes(build_dir), reporter=recorder
        )

        assert sorted(stats.uploaded) == sorted(s3.buckets["site-bucket"].objects)
        assert stats.count == 4
        assert stats.skipped == 0
        assert recorder.of_level(EventLevel.SUCCESS)[-1].message == "Uploaded 4 files"

    def test_compressible_files_are_gzipped(self, build_dir: Path) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        upload_changed_files(s3, "site-bucket", _changes(build_dir))
        objects = s3.buckets["site-bucket"].objects

        html = objects["index.html"]
        assert html["ContentEncoding"] == "gzip"
        assert gzip.decompress(html["Body"]) == b"<h1>Home</h1>"
        assert html["ContentType"] == "text/html"
        assert html["CacheControl"] == HTML_CACHE_CONTROL

        png = objects["assets/logo.png"]
        assert "ContentEncoding" not in png
        assert png["CacheControl"] == ASSET_CACHE_CONTROL

    def test_gzip_disabled(self, build_dir: Path) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        upload_changed_files(
            s3, "site-bucket", _changes(build_dir), UploadOptions(gzip=False)
        )
        html = s3.buckets["site-bucket"].objects["index.html"]
        assert "ContentEncoding" not in html
        assert html["Body"] == b"<h1>Home</h1>"

    def test_only_changed_files_are_uploaded(self, build_dir: Path) -> None:
        """Unchanged files are skipped entirely."""
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        previous = digest_map(scan_files(build_dir))
        (build_dir / "about.html").write_text("<h1>About us</h1>")

        stats = upload_changed_files(s3, "site-bucket", _changes(build_dir, previous))

        assert stats.uploaded == ["about.html"]
        assert stats.skipped == 3
        assert [c["Key"] for c in s3.called("PutObject")] == ["about.html"]

    def test_nothing_to_upload(self, build_dir: Path) -> None:
        s3 = FakeS3()
        previous = digest_map(scan_files(build_dir))
        stats = upload_changed_files(s3, "site-bucket", _changes(build_dir, previous))
        assert stats.count == 0
        assert not s3.calls

    def test_dry_run_uploads_nothing(self, build_dir: Path) -> None:
        s3 = FakeS3()
        stats = upload_changed_files(
            s3, "site-bucket", _changes(build_dir), UploadOptions(dry_run=True)
        )
        assert stats.dry_run
        assert stats.count == 4
        assert not s3.calls

    def test_large_files_use_managed_transfer(self, tmp_path: Path) -> None:
        root = tmp_path / "site"
        root.mkdir()
        (root / "video.bin").write_bytes(b"\0" * (8 * 1024 * 1024 + 1))
        s3 = FakeS3()
        s3.add_bucket("site-bucket")

        upload_changed_files(s3, "site-bucket", _changes(root))

        assert [c["Key"] for c in s3.called("UploadFileobj")] == ["video.bin"]
        assert not s3.called("PutObject")

    def test_managed_transfer_failure_names_the_key(self, tmp_path: Path) -> None:
        root = tmp_path / "site"
        root.mkdir()
        (root / "video.bin").write_bytes(b"\0" * (8 * 1024 * 1024 + 1))
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.failing_keys["video.bin"] = S3UploadFailedError(
            "Failed to upload video.bin: An error occurred (AccessDenied)"
        )

        with pytest.raises(UploadError, match="video.bin") as excinfo:
            upload_changed_files(s3, "site-bucket", _changes(root))

        assert excinfo.value.key == "video.bin"
        assert "video.bin" not in s3.buckets["site-bucket"].objects

    def test_transient_failures_are_retried(self, build_dir: Path, fake_clock) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.fail("PutObject", client_error("SlowDown", status=503))

        stats = upload_changed_files(
            s3, "site-bucket", _changes(build_dir), UploadOptions(concurrency=1)
        )

        assert stats.count == 4
        assert len(s3.called("PutObject")) == 5
        assert fake_clock.sleeps

    def test_fatal_failure_aborts(self, build_dir: Path) -> None:
        """A non-transient failure surfaces with the failing key."""
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.failing_keys["about.html"] = client_error("AccessDenied", status=403)
        recorder = EventRecorder()

        with pytest.raises(UploadError) as exc_info:
            upload_changed_files(
                s3,
                "site-bucket",
                _changes(build_dir),
                UploadOptions(concurrency=1),
                recorder,
            )

        assert exc_info.value.key == "about.html"
        assert s3.called("PutObject")[0]["Key"] == "about.html"
        assert "about.html" not in s3.buckets["site-bucket"].objects
        assert recorder.of_level(EventLevel.ERROR)


class TestDeleteRemovedFiles:
    """Tests for batched deletes."""

    def test_deletes_keys(self) -> None:
        s3 = FakeS3()
        bucket = s3.add_bucket("site-bucket")
        bucket.objects = {"a": {}, "b": {}, "keep": {}}

        result = delete_removed_files(s3, "site-bucket", ["a", "b"])

        assert result.ok
        assert result.deleted == ["a", "b"]
        assert list(bucket.objects) == ["keep"]

    def test_batches_of_one_thousand(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        keys = [f"file-{i}.html" for i in range(2500)]
        delete_removed_files(s3, "site-bucket", keys)
        assert [c["Count"] for c in s3.called("DeleteObjects")] == [1000, 1000, 500]

    def test_failed_batch_does_not_block_others(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket")
        s3.fail("DeleteObjects", client_error("AccessDenied", status=403))
        recorder = EventRecorder()
        keys = [f"file-{i}.html" for i in range(1500)]

        result = delete_removed_files(s3, "site-bucket", keys, recorder)

        assert len(result.failed) == 1000
        assert len(result.deleted) == 500
        assert recorder.warnings

    def test_per_key_errors(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket").objects = {"a": {}, "locked": {}}
        s3.undeletable_keys.add("locked")

        result = delete_removed_files(s3, "site-bucket", ["a", "locked"])

        assert result.deleted == ["a"]
        assert result.failed == {"locked": "Access Denied"}


class TestTearDownBucket:
    def test_empties_and_deletes(self) -> None:
        s3 = FakeS3()
        s3.add_bucket("site-bucket").objects = {"index.html": {}, "a.js": {}}
        assert tear_down_bucket(s3, "site-bucket") is True
        assert "site-bucket" not in s3.buckets

    def test_already_gone(self) -> None:
        recorder = EventRecorder()
        assert tear_down_bucket(FakeS3(), "site-bucket", recorder) is False
        assert "already deleted" in recorder.events[-1].message
