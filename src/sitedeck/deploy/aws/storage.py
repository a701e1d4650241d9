"""S3 bucket provisioning, incremental upload and teardown.

Every function takes an explicit boto3 S3 client and holds no state between
calls.
"""

from __future__ import annotations

import gzip
import io
import json
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Any

from boto3.exceptions import S3UploadFailedError

from sitedeck.deploy.aws.calls import invoke, iterate_pages, inspect_call
from sitedeck.deploy.aws.tags import from_tag_list, to_tag_list
from sitedeck.deploy.events import Emitter, Reporter
from sitedeck.lib import retry
from sitedeck.lib.errors import DeploymentError, ErrorKind, ProviderError, UploadError
from sitedeck.lib.logging_config import get_logger
from sitedeck.lib.retry import UPLOAD_RETRY
from sitedeck.models.discovery import convention_tags
from sitedeck.models.files import DeleteResult, FileChanges, FileDescriptor, UploadStats

logger = get_logger(__name__)

DELETE_BATCH_SIZE = 1000
MULTIPART_THRESHOLD = 8 * 1024 * 1024
HTML_CACHE_CONTROL = "public, max-age=0, must-revalidate"
ASSET_CACHE_CONTROL = "public, max-age=86400"
_NO_STORE_TYPES = {
    "text/html",
    "application/json",
    "application/manifest+json",
    "application/xml",
    "text/xml",
    "text/plain",
}


class AccessMode(str, Enum):
    """Who may read objects from the bucket."""

    CDN_ONLY = "cdn-only"
    PUBLIC_READ = "public-read"


@dataclass
class BucketOptions:
    """Hosting and access settings re-applied on every ensure."""

    website_hosting: bool = True
    index_document: str = "index.html"
    error_document: str | None = None
    access: AccessMode = AccessMode.CDN_ONLY
    distribution_arn: str | None = None


@dataclass
class BucketResult:
    """Outcome of :func:`ensure_bucket`."""

    name: str
    region: str
    created: bool
    website_url: str | None
    arn: str


@dataclass
class UploadOptions:
    """Settings of an upload pass."""

    concurrency: int = 10
    gzip: bool = True
    dry_run: bool = False


def website_url(bucket: str, region: str) -> str:
    """Public website endpoint URL of a bucket."""
    if region == "us-east-1":
        return f"http://{bucket}.s3-website-us-east-1.amazonaws.com"
    return f"http://{bucket}.s3-website.{region}.amazonaws.com"


def bucket_arn(bucket: str) -> str:
    return f"arn:aws:s3:::{bucket}"


def regional_domain(bucket: str, region: str) -> str:
    """REST endpoint used as the CloudFront origin domain."""
    return f"{bucket}.s3.{region}.amazonaws.com"


def cache_control_for(content_type: str) -> str:
    """Cache-Control header for a content type.

    Documents that name other resources must revalidate so a deploy is seen
    immediately; everything else is cached for a day.
    """
    base = content_type.split(";", 1)[0].strip().lower()
    if base in _NO_STORE_TYPES:
        return HTML_CACHE_CONTROL
    return ASSET_CACHE_CONTROL


def cdn_only_policy(bucket: str, distribution_arn: str) -> dict[str, Any]:
    """Bucket policy letting only one CloudFront distribution read objects."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AllowCloudFrontServicePrincipal",
                "Effect": "Allow",
                "Principal": {"Service": "cloudfront.amazonaws.com"},
                "Action": "s3:GetObject",
                "Resource": f"{bucket_arn(bucket)}/*",
                "Condition": {"StringEquals": {"AWS:SourceArn": distribution_arn}},
            }
        ],
    }


def public_read_policy(bucket: str) -> dict[str, Any]:
    """Bucket policy letting anyone read objects (website endpoint only)."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "PublicReadGetObject",
                "Effect": "Allow",
                "Principal": "*",
                "Action": "s3:GetObject",
                "Resource": f"{bucket_arn(bucket)}/*",
            }
        ],
    }


def _create_bucket(client: Any, name: str, region: str) -> bool:
    params: dict[str, Any] = {"Bucket": name}
    if region != "us-east-1":
        params["CreateBucketConfiguration"] = {"LocationConstraint": region}
    try:
        invoke("CreateBucket", client.create_bucket, **params)
    except ProviderError as exc:
        if exc.kind == ErrorKind.CONFLICT:
            logger.debug("Bucket %s already owned by caller", name)
            return False
        if exc.code == "BucketAlreadyExists":
            raise DeploymentError(
                "bucket",
                f"Bucket name '{name}' is already taken by another AWS account. "
                "Choose a different s3.bucket_name.",
            ) from exc
        raise
    return True


def apply_cdn_policy(client: Any, name: str, distribution_arn: str) -> None:
    """Grant read access to the given distribution only."""
    policy = cdn_only_policy(name, distribution_arn)
    invoke(
        "PutBucketPolicy",
        client.put_bucket_policy,
        Bucket=name,
        Policy=json.dumps(policy),
    )


def _apply_access(client: Any, name: str, options: BucketOptions) -> None:
    if options.access == AccessMode.CDN_ONLY:
        invoke(
            "PutPublicAccessBlock",
            client.put_public_access_block,
            Bucket=name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
        if options.distribution_arn:
            apply_cdn_policy(client, name, options.distribution_arn)
        return

    result = inspect_call(
        "DeletePublicAccessBlock", client.delete_public_access_block, Bucket=name
    )
    if not result.ok and not result.not_found:
        result.unwrap()
    invoke(
        "PutBucketPolicy",
        client.put_bucket_policy,
        Bucket=name,
        Policy=json.dumps(public_read_policy(name)),
    )


def ensure_bucket(
    client: Any, name: str, region: str, options: BucketOptions | None = None
) -> BucketResult:
    """Create the bucket if absent and re-apply its configuration.

    Website hosting, the public access block and the bucket policy are
    written on every call so drift is corrected.

    Returns:
        BucketResult whose ``created`` is True only when this call created it

    Raises:
        DeploymentError: If the bucket exists but is not accessible
        ProviderError: On other provider failures
    """
    options = options or BucketOptions()
    head = inspect_call("HeadBucket", client.head_bucket, Bucket=name)
    created = False
    if head.not_found:
        created = _create_bucket(client, name, region)
        if created:
            logger.info("Created bucket %s in %s", name, region)
    elif not head.ok:
        raise DeploymentError(
            "bucket",
            f"Bucket '{name}' exists but is not accessible ({head.error.code}). "
            "Check that your credentials own this bucket, or pick another name.",
        )

    if options.website_hosting:
        website: dict[str, Any] = {"IndexDocument": {"Suffix": options.index_document}}
        if options.error_document:
            website["ErrorDocument"] = {"Key": options.error_document}
        invoke(
            "PutBucketWebsite",
            client.put_bucket_website,
            Bucket=name,
            WebsiteConfiguration=website,
        )

    _apply_access(client, name, options)

    return BucketResult(
        name=name,
        region=region,
        created=created,
        website_url=website_url(name, region) if options.website_hosting else None,
        arn=bucket_arn(name),
    )


def tag_bucket(client: Any, name: str, app: str, environment: str, region: str) -> bool:
    """Write the convention tags on a bucket; failures are logged only."""
    tags = convention_tags(app, environment, region=region)
    result = inspect_call(
        "PutBucketTagging",
        client.put_bucket_tagging,
        Bucket=name,
        Tagging={"TagSet": to_tag_list(tags)},
    )
    if not result.ok:
        logger.warning("Failed to tag bucket %s for recovery: %s", name, result.error)
        return False
    return True


def get_bucket_tags(client: Any, name: str) -> dict[str, str]:
    """Tags of a bucket; empty when the bucket or its tag set is missing."""
    result = inspect_call("GetBucketTagging", client.get_bucket_tagging, Bucket=name)
    if result.ok:
        return from_tag_list(result.value.get("TagSet"))
    if result.not_found:
        return {}
    raise result.error  # type: ignore[misc]


def _prepare_body(file: FileDescriptor, use_gzip: bool) -> tuple[bytes, bool]:
    with open(file.path, "rb") as f:
        data = f.read()
    if use_gzip and file.compressible:
        return gzip.compress(data, mtime=0), True
    return data, False


def upload_file(
    client: Any, bucket: str, file: FileDescriptor, use_gzip: bool = True
) -> int:
    """Upload one file and return the number of bytes sent.

    Transient failures are retried; anything else raises UploadError.
    """
    try:
        body, compressed = _prepare_body(file, use_gzip)
    except OSError as exc:
        raise UploadError(file.key, f"cannot read {file.path}: {exc}") from exc

    extra: dict[str, Any] = {
        "ContentType": file.content_type,
        "CacheControl": cache_control_for(file.content_type),
    }
    if compressed:
        extra["ContentEncoding"] = "gzip"

    try:
        if len(body) > MULTIPART_THRESHOLD:
            invoke(
                "UploadFileobj",
                lambda: client.upload_fileobj(
                    io.BytesIO(body), bucket, file.key, ExtraArgs=extra
                ),
                policy=UPLOAD_RETRY,
            )
        else:
            invoke(
                "PutObject",
                client.put_object,
                Bucket=bucket,
                Key=file.key,
                Body=body,
                policy=UPLOAD_RETRY,
                **extra,
            )
    except ProviderError as exc:
        raise UploadError(file.key, exc.message) from exc
    except S3UploadFailedError as exc:
        raise UploadError(file.key, str(exc)) from exc
    return len(body)


def upload_changed_files(
    client: Any,
    bucket: str,
    changes: FileChanges,
    options: UploadOptions | None = None,
    reporter: Reporter | None = None,
) -> UploadStats:
    """Upload exactly the added and modified files.

    Uploads run on a bounded thread pool. The first non-transient failure
    cancels uploads that have not started and is re-raised.

    Raises:
        UploadError: With the key of the first failing file
    """
    options = options or UploadOptions()
    emitter = Emitter(reporter, "upload")
    files = changes.to_upload
    stats = UploadStats(skipped=len(changes.unchanged), dry_run=options.dry_run)
    total = len(files)
    started = retry.monotonic()

    if options.dry_run:
        for index, file in enumerate(files, start=1):
            stats.uploaded.append(file.key)
            stats.total_bytes += file.size
            emitter.info(
                f"[dry run] would upload {file.key}", current=index, total=total
            )
        stats.duration = retry.monotonic() - started
        return stats

    if not files:
        emitter.info("No files to upload", current=0, total=0)
        return stats

    cancelled = threading.Event()

    def work(file: FileDescriptor) -> int:
        if cancelled.is_set():
            raise UploadError(file.key, "cancelled after an earlier failure")
        return upload_file(client, bucket, file, options.gzip)

    emitter.step(f"Uploading {total} files", current=0, total=total)
    workers = max(1, min(options.concurrency, total))
    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="sitedeck-upload"
    ) as pool:
        pending: dict[Future[int], FileDescriptor] = {
            pool.submit(work, file): file for file in files
        }
        failure: BaseException | None = None
        while pending and failure is None:
            done, _ = wait(pending, return_when=FIRST_EXCEPTION)
            for future in done:
                file = pending.pop(future)
                exc = future.exception()
                if exc is not None:
                    failure = failure or exc
                    continue
                sent = future.result()
                stats.uploaded.append(file.key)
                stats.total_bytes += file.size
                stats.compressed_bytes += sent
                emitter.info(
                    f"Uploaded {file.key}", current=len(stats.uploaded), total=total
                )
        if failure is not None:
            cancelled.set()
            for future in pending:
                future.cancel()

    stats.duration = retry.monotonic() - started
    if failure is not None:
        emitter.error(f"Upload aborted: {failure}")
        raise failure
    emitter.success(
        f"Uploaded {stats.count} files", current=stats.count, total=total
    )
    return stats


def _batches(keys: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(keys), size):
        yield keys[start : start + size]


def delete_removed_files(
    client: Any,
    bucket: str,
    keys: Sequence[str],
    reporter: Reporter | None = None,
) -> DeleteResult:
    """Delete objects in batches of 1000.

    A failing batch is recorded in ``failed`` and later batches still run.
    """
    emitter = Emitter(reporter, "cleanup")
    result = DeleteResult()
    for batch in _batches(list(keys), DELETE_BATCH_SIZE):
        try:
            response = invoke(
                "DeleteObjects",
                client.delete_objects,
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        except ProviderError as exc:
            logger.warning("Failed to delete %d objects: %s", len(batch), exc)
            for key in batch:
                result.failed[key] = exc.message
            continue
        errors = {
            e["Key"]: e.get("Message", e.get("Code", ""))
            for e in response.get("Errors", [])
        }
        result.failed.update(errors)
        result.deleted.extend(k for k in batch if k not in errors)

    if result.failed:
        emitter.warning(f"Failed to delete {len(result.failed)} objects")
    if result.deleted:
        emitter.info(f"Deleted {len(result.deleted)} removed files")
    return result


def _delete_entries(client: Any, name: str, entries: list[dict[str, str]]) -> int:
    for batch in _batches(entries, DELETE_BATCH_SIZE):
        invoke(
            "DeleteObjects",
            client.delete_objects,
            Bucket=name,
            Delete={"Objects": list(batch), "Quiet": True},
        )
    return len(entries)


def _empty_bucket(client: Any, name: str) -> int:
    removed = 0
    for page in iterate_pages(
        "ListObjectVersions", client, "list_object_versions", Bucket=name
    ):
        entries = [
            {"Key": v["Key"], "VersionId": v["VersionId"]}
            for v in page.get("Versions", []) + page.get("DeleteMarkers", [])
        ]
        removed += _delete_entries(client, name, entries)

    for page in iterate_pages("ListObjectsV2", client, "list_objects_v2", Bucket=name):
        entries = [{"Key": obj["Key"]} for obj in page.get("Contents", [])]
        removed += _delete_entries(client, name, entries)
    return removed


def tear_down_bucket(client: Any, name: str, reporter: Reporter | None = None) -> bool:
    """Delete every object version and then the bucket.

    Returns:
        True if the bucket was deleted, False if it was already gone
    """
    emitter = Emitter(reporter, "bucket")
    try:
        removed = _empty_bucket(client, name)
        invoke("DeleteBucket", client.delete_bucket, Bucket=name)
    except ProviderError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            emitter.info(f"Bucket {name} already deleted")
            return False
        raise
    emitter.success(f"Deleted bucket {name} ({removed} objects removed)")
    return True
