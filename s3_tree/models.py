from __future__ import annotations
"""Data models representing S3 listings and tree nodes."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

NODE_BUCKET = "bucket"
NODE_PREFIX = "prefix"
NODE_OBJECT = "object"
NODE_LOAD_MORE = "load_more"


@dataclass(frozen=True)
class Bucket:
    """A bucket returned by ``list_buckets``."""

    name: str
    creation_date: Optional[datetime] = None


@dataclass(frozen=True)
class S3Object:
    """A stored object. Keys ending in ``/`` with no content are folder markers."""

    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    storage_class: Optional[str] = None

    @property
    def is_folder_marker(self) -> bool:
        return self.key.endswith("/") and not self.size


@dataclass(frozen=True)
class S3Prefix:
    """A folder derived from delimiter grouping; never stored on the server."""

    prefix: str


@dataclass
class ListingPage:
    """Represents a single page of a delimiter-grouped listing."""

    bucket: str
    prefix: str = ""
    objects: list[S3Object] = field(default_factory=list)
    prefixes: list[S3Prefix] = field(default_factory=list)
    is_truncated: bool = False
    continuation_token: Optional[str] = None


@dataclass
class CacheEntry:
    """Accumulated pages for one (bucket, prefix) scope."""

    objects: list[S3Object] = field(default_factory=list)
    prefixes: list[S3Prefix] = field(default_factory=list)
    is_truncated: bool = False
    continuation_token: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return bool(self.is_truncated and self.continuation_token)


@dataclass
class ObjectDetails:
    """Metadata about a single S3 object."""

    bucket: str
    key: str
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    storage_class: Optional[str] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    server_side_encryption: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TreeNode:
    """Ephemeral projection of a bucket, prefix, object or "load more" action.

    ``prefix`` is the listing scope for load-more nodes and the folder path for
    prefix nodes. ``parent_prefix`` is the scope the node was materialized in.
    """

    kind: str
    bucket: str
    label: str
    prefix: Optional[str] = None
    key: Optional[str] = None
    parent_prefix: str = ""
    size: Optional[int] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    continuation_token: Optional[str] = None

    @property
    def node_id(self) -> str:
        if self.kind == NODE_BUCKET:
            return f"bucket:{self.bucket}"
        if self.kind == NODE_PREFIX:
            return f"prefix:{self.bucket}/{self.prefix}"
        if self.kind == NODE_OBJECT:
            return f"object:{self.bucket}/{self.key}"
        return f"load_more:{self.bucket}/{self.parent_prefix}#{self.continuation_token}"

    @property
    def is_expandable(self) -> bool:
        return self.kind in (NODE_BUCKET, NODE_PREFIX)

    @property
    def path(self) -> str:
        """Full path the filter matches against."""
        if self.kind == NODE_BUCKET:
            return self.bucket
        if self.kind == NODE_PREFIX:
            return self.prefix or ""
        if self.kind == NODE_OBJECT:
            return self.key or ""
        return ""
