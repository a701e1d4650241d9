"""Ephemeral descriptors produced by the file change tracker."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class FileDescriptor:
    """A local file scheduled for publication.

    Attributes:
        path: Absolute path on disk
        key: Forward-slash path relative to the scan root, used as object key
        size: Size in bytes
        digest: Hex SHA-256 of the file content
        content_type: MIME type sent with the object
        compressible: Whether the content benefits from gzip
    """

    path: Path
    key: str
    size: int
    digest: str
    content_type: str
    compressible: bool


@dataclass
class FileChanges:
    """Classification of current files against a previous digest map.

    The four lists partition the union of current and previous keys and are
    pairwise disjoint. ``deleted`` holds keys only present previously.
    """

    added: list[FileDescriptor] = field(default_factory=list)
    modified: list[FileDescriptor] = field(default_factory=list)
    unchanged: list[FileDescriptor] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def to_upload(self) -> list[FileDescriptor]:
        """Files that must be uploaded (added then modified)."""
        return self.added + self.modified

    def summary(self) -> dict[str, int]:
        """Counts per change class."""
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "unchanged": len(self.unchanged),
            "deleted": len(self.deleted),
        }


@dataclass
class UploadStats:
    """Outcome of an upload pass."""

    uploaded: list[str] = field(default_factory=list)
    skipped: int = 0
    total_bytes: int = 0
    compressed_bytes: int = 0
    duration: float = 0.0
    dry_run: bool = False

    @property
    def count(self) -> int:
        return len(self.uploaded)


@dataclass
class DeleteResult:
    """Outcome of deleting removed objects in batches."""

    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
