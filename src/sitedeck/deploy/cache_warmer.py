"""Warm CloudFront edge caches by requesting paths after a deploy.

Warming is best-effort: failed requests are reported, never raised.
"""

from __future__ import annotations

from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

import httpx

from sitedeck import __version__
from sitedeck.deploy.events import Emitter, Reporter
from sitedeck.lib import retry
from sitedeck.lib.logging_config import get_logger

logger = get_logger(__name__)

REQUEST_TIMEOUT = 30.0
USER_AGENT = f"sitedeck-cache-warmer/{__version__}"


@dataclass
class WarmResult:
    """Summary of a warming pass."""

    total: int = 0
    succeeded: int = 0
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def failed(self) -> int:
        return len(self.failures)


def normalize_paths(paths: Iterable[str]) -> list[str]:
    """Drop blank paths, add the leading slash and remove duplicates."""
    normalized: list[str] = []
    for path in paths:
        path = path.strip()
        if not path:
            continue
        if not path.startswith("/"):
            path = f"/{path}"
        if path not in normalized:
            normalized.append(path)
    return normalized


def warm_cache(
    domain: str,
    paths: Iterable[str],
    concurrency: int = 3,
    delay_ms: int = 500,
    reporter: Reporter | None = None,
    client: httpx.Client | None = None,
) -> WarmResult:
    """GET each path through the distribution with bounded concurrency.

    Args:
        domain: Distribution (or custom) domain name
        paths: URL paths to request
        concurrency: Maximum requests in flight
        delay_ms: Pause after each request, per worker
        reporter: Progress reporter
        client: HTTP client to use; one is created when omitted

    Returns:
        WarmResult with per-path failures
    """
    emitter = Emitter(reporter, "cache-warming")
    targets = normalize_paths(paths)
    result = WarmResult(total=len(targets))
    if not targets:
        return result

    emitter.step(f"Warming cache for {len(targets)} path(s)")
    owns_client = client is None
    http = client or httpx.Client(
        timeout=REQUEST_TIMEOUT,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    )

    def warm(path: str) -> tuple[str, str | None]:
        url = f"https://{domain}{path}"
        try:
            response = http.get(url)
            if response.is_success:
                return path, None
            return path, f"HTTP {response.status_code}"
        except httpx.HTTPError as exc:
            return path, str(exc) or exc.__class__.__name__
        finally:
            retry.sleep(delay_ms / 1000)

    try:
        with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
            for path, error in pool.map(warm, targets):
                if error is None:
                    result.succeeded += 1
                    logger.debug("Warmed %s", path)
                else:
                    result.failures[path] = error
                    emitter.warning(f"Failed to warm {path}: {error}")
    finally:
        if owns_client:
            http.close()

    emitter.success(
        f"Cache warmed: {result.succeeded}/{result.total} path(s)",
        current=result.succeeded,
        total=result.total,
    )
    return result
