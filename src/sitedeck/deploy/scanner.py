"""File change tracker for build directories.

Scans a directory tree, digests every file with SHA-256 and classifies the
result against the digest map recorded by the previous deployment.
"""

from __future__ import annotations

import fnmatch
import hashlib
import mimetypes
import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from sitedeck.lib.errors import ScanError
from sitedeck.models.files import FileChanges, FileDescriptor

CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_EXTRA_TYPES = {
    ".mjs": "text/javascript",
    ".js": "text/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".svg": "image/svg+xml",
    ".wasm": "application/wasm",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".ico": "image/x-icon",
}

_COMPRESSIBLE_APPLICATION_TYPES = {
    "application/javascript",
    "application/x-javascript",
    "application/ecmascript",
    "application/json",
    "application/ld+json",
    "application/manifest+json",
    "application/xml",
    "application/xhtml+xml",
    "application/rss+xml",
    "application/atom+xml",
    "application/x-yaml",
    "application/yaml",
    "application/toml",
    "application/wasm",
    "application/vnd.ms-fontobject",
    "application/x-font-ttf",
}

_COMPRESSIBLE_FONT_TYPES = {"font/ttf", "font/otf", "font/eot"}


def guess_content_type(path: str | Path) -> str:
    """Return the MIME type for a file name, defaulting to octet-stream."""
    suffix = Path(path).suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    content_type, _ = mimetypes.guess_type(str(path), strict=False)
    return content_type or DEFAULT_CONTENT_TYPE


def is_compressible(content_type: str) -> bool:
    """Whether a MIME type is text-like and worth gzipping.

    Covers ``text/*``, JavaScript, JSON, XML and other structured data, SVG
    and uncompressed font formats. Already-compressed binary formats
    (images, woff/woff2, archives) are excluded.
    """
    base = content_type.split(";", 1)[0].strip().lower()
    if base.startswith("text/"):
        return True
    if base in _COMPRESSIBLE_APPLICATION_TYPES or base in _COMPRESSIBLE_FONT_TYPES:
        return True
    return base.endswith("+xml") or base.endswith("+json")


def hash_file(path: str | Path) -> str:
    """Return the hex SHA-256 digest of a file, read in chunks.

    Raises:
        ScanError: If the file cannot be read
    """
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise ScanError(str(path), f"cannot read file: {exc.strerror or exc}") from exc
    return digest.hexdigest()


def normalize_key(relative: str) -> str:
    """Turn a relative path into a forward-slash object key."""
    key = relative.replace(os.sep, "/").replace("\\", "/")
    while key.startswith("./"):
        key = key[2:]
    return key.lstrip("/")


def is_excluded(key: str, patterns: Iterable[str]) -> bool:
    """Match a key, and each of its path segments, against glob patterns."""
    segments = key.split("/")
    for pattern in patterns:
        pattern = pattern.strip().rstrip("/")
        if not pattern:
            continue
        bare = pattern[3:] if pattern.startswith("**/") else pattern
        if fnmatch.fnmatchcase(key, pattern) or fnmatch.fnmatchcase(key, bare):
            return True
        if any(fnmatch.fnmatchcase(segment, bare) for segment in segments):
            return True
        if fnmatch.fnmatchcase(key, f"{bare}/*"):
            return True
    return False


def describe_file(path: Path, key: str) -> FileDescriptor:
    """Build the descriptor for a single file."""
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise ScanError(str(path), f"cannot stat file: {exc.strerror or exc}") from exc
    content_type = guess_content_type(path)
    return FileDescriptor(
        path=path,
        key=key,
        size=size,
        digest=hash_file(path),
        content_type=content_type,
        compressible=is_compressible(content_type),
    )


def scan_files(root: str | Path, exclude: Iterable[str] = ()) -> list[FileDescriptor]:
    """Scan a build directory.

    Dotfiles are included and symlinked directories are not followed.

    Args:
        root: Directory to scan
        exclude: Glob patterns matched against each key and its segments

    Returns:
        Descriptors for every non-excluded regular file, ordered by key

    Raises:
        ScanError: If the root is missing or any entry is unreadable
    """
    root_path = Path(root).resolve()
    if not root_path.exists():
        raise ScanError(str(root_path), "build directory does not exist")
    if not root_path.is_dir():
        raise ScanError(str(root_path), "build path is not a directory")

    patterns = list(exclude)

    def on_error(exc: OSError) -> None:
        raise ScanError(
            exc.filename or str(root_path),
            f"cannot read directory: {exc.strerror or exc}",
        )

    descriptors: list[FileDescriptor] = []
    for dirpath, _dirnames, filenames in os.walk(
        root_path, onerror=on_error, followlinks=False
    ):
        current = Path(dirpath)
        for name in filenames:
            path = current / name
            if not path.is_file():
                continue
            key = normalize_key(os.path.relpath(path, root_path))
            if is_excluded(key, patterns):
                continue
            descriptors.append(describe_file(path, key))

    descriptors.sort(key=lambda d: d.key)
    return descriptors


def classify_changes(
    current: Iterable[FileDescriptor], previous: Mapping[str, str] | None
) -> FileChanges:
    """Classify current files against a previous key-to-digest map.

    Every key of ``current`` and ``previous`` lands in exactly one of
    added, modified, unchanged or deleted.
    """
    previous = previous or {}
    changes = FileChanges()
    seen: set[str] = set()
    for descriptor in current:
        if descriptor.key in seen:
            continue
        seen.add(descriptor.key)
        recorded = previous.get(descriptor.key)
        if recorded is None:
            changes.added.append(descriptor)
        elif recorded != descriptor.digest:
            changes.modified.append(descriptor)
        else:
            changes.unchanged.append(descriptor)
    changes.deleted = sorted(key for key in previous if key not in seen)
    return changes


def digest_map(files: Iterable[FileDescriptor]) -> dict[str, str]:
    """Key-to-digest map for a set of descriptors."""
    return {f.key: f.digest for f in files}
