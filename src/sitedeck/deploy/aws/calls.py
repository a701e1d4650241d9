"""Classified AWS calls.

Botocore failures are mapped to an :class:`ErrorKind` by error code and HTTP
status only. ``invoke`` retries transient failures and raises
:class:`ProviderError`; ``inspect_call`` returns a :class:`CallResult` for
callers that branch on the outcome.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from sitedeck.lib.errors import ErrorKind, ProviderError
from sitedeck.lib.logging_config import get_logger
from sitedeck.lib.retry import DEFAULT_RETRY, RetryPolicy, with_retry

logger = get_logger(__name__)

T = TypeVar("T")

NOT_FOUND_CODES = frozenset(
    {
        "NoSuchBucket",
        "NotFound",
        "404",
        "NoSuchKey",
        "NoSuchDistribution",
        "NoSuchHostedZone",
        "NoSuchOriginAccessControl",
        "NoSuchInvalidation",
        "NoSuchWebsiteConfiguration",
        "NoSuchBucketPolicy",
        "NoSuchTagSet",
        "NoSuchResource",
        "NoSuchPublicAccessBlockConfiguration",
        "ResourceNotFoundException",
    }
)

CONFLICT_CODES = frozenset(
    {
        "BucketAlreadyOwnedByYou",
        "HostedZoneAlreadyExists",
        "OriginAccessControlAlreadyExists",
        "DistributionAlreadyExists",
        "CNAMEAlreadyExists",
    }
)

TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RequestThrottled",
        "RequestThrottledException",
        "SlowDown",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalError",
        "InternalFailure",
        "RequestTimeout",
        "RequestTimeoutException",
        "PriorRequestNotComplete",
        "TooManyInvalidationsInProgress",
        "RequestInProgressException",
    }
)

_TRANSIENT_BOTOCORE = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def error_code(exc: BaseException) -> str | None:
    """Provider error code of a botocore ClientError, if any."""
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") or None
    return None


def http_status(exc: BaseException) -> int | None:
    """HTTP status code of a botocore ClientError, if any."""
    if isinstance(exc, ClientError):
        return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


def classify(exc: BaseException) -> ErrorKind:
    """Map an exception to an error kind.

    Idempotent: a ProviderError keeps the kind it was classified with.
    """
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, _TRANSIENT_BOTOCORE):
        return ErrorKind.TRANSIENT
    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = http_status(exc)
        if code in NOT_FOUND_CODES:
            return ErrorKind.NOT_FOUND
        if code in CONFLICT_CODES:
            return ErrorKind.CONFLICT
        if code in TRANSIENT_CODES:
            return ErrorKind.TRANSIENT
        if status is not None and status >= 500:
            return ErrorKind.TRANSIENT
        if status == 429:
            return ErrorKind.TRANSIENT
        if status == 404 and code is None:
            return ErrorKind.NOT_FOUND
    return ErrorKind.FATAL


def is_transient(exc: BaseException) -> bool:
    return classify(exc) == ErrorKind.TRANSIENT


def to_provider_error(operation: str, exc: BaseException) -> ProviderError:
    """Wrap an exception as a classified ProviderError."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, ClientError):
        message = exc.response.get("Error", {}).get("Message") or str(exc)
    else:
        message = str(exc)
    return ProviderError(operation, classify(exc), error_code(exc), message)


def invoke(
    operation: str,
    fn: Callable[..., T],
    *args: Any,
    policy: RetryPolicy = DEFAULT_RETRY,
    **kwargs: Any,
) -> T:
    """Call an AWS client method, retrying transient failures.

    Args:
        operation: API operation name, used in errors and logs
        fn: Bound client method
        policy: Retry policy for transient failures

    Returns:
        The response of ``fn``

    Raises:
        ProviderError: On any failure once retries are exhausted
    """
    try:
        return with_retry(
            lambda: fn(*args, **kwargs),
            policy,
            retry_on=is_transient,
            on_retry=lambda attempt, exc, delay: logger.info(
                "%s throttled or unavailable (attempt %d), retrying in %.1fs",
                operation,
                attempt,
                delay,
            ),
        )
    except (ClientError, BotoCoreError) as exc:
        raise to_provider_error(operation, exc) from exc


@dataclass
class CallResult(Generic[T]):
    """Outcome of a inspected call: either a value or a classified error."""

    value: T | None = None
    error: ProviderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @property
    def not_found(self) -> bool:
        return self.kind == ErrorKind.NOT_FOUND

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


def inspect_call(
    operation: str,
    fn: Callable[..., T],
    *args: Any,
    policy: RetryPolicy = DEFAULT_RETRY,
    **kwargs: Any,
) -> CallResult[T]:
    """Like :func:`invoke` but returns failures instead of raising them."""
    try:
        return CallResult(value=invoke(operation, fn, *args, policy=policy, **kwargs))
    except ProviderError as exc:
        return CallResult(error=exc)


def iterate_pages(
    operation: str, client: Any, method: str, **kwargs: Any
) -> Iterator[dict[str, Any]]:
    """Yield the pages of a paginated operation, classifying failures.

    Each page fetch is retried on transient errors by botocore's own retry
    handler; failures surface as ProviderError.
    """
    paginator = client.get_paginator(method)
    try:
        yield from paginator.paginate(**kwargs)
    except (ClientError, BotoCoreError) as exc:
        raise to_provider_error(operation, exc) from exc
