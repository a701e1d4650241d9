"""Conversions between tag dicts and the shapes each AWS API expects."""

from __future__ import annotations

from collections.abc import Iterable, Mapping


def to_tag_list(tags: Mapping[str, str]) -> list[dict[str, str]]:
    """``{"k": "v"}`` to ``[{"Key": "k", "Value": "v"}]`` (S3, ACM, Route53)."""
    return [{"Key": k, "Value": v} for k, v in tags.items()]


def from_tag_list(items: Iterable[Mapping[str, str]] | None) -> dict[str, str]:
    """Inverse of :func:`to_tag_list`; missing values become empty strings."""
    return {item["Key"]: item.get("Value", "") for item in items or []}


def to_cloudfront_tags(tags: Mapping[str, str]) -> dict[str, list[dict[str, str]]]:
    """CloudFront wraps the tag list in ``{"Items": [...]}``."""
    return {"Items": to_tag_list(tags)}


def from_cloudfront_tags(response: Mapping | None) -> dict[str, str]:
    """Read tags from a CloudFront ListTagsForResource response."""
    if not response:
        return {}
    return from_tag_list(response.get("Tags", {}).get("Items"))
