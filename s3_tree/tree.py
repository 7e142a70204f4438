from __future__ import annotations
"""Materializes cached listings into tree nodes."""
from dataclasses import dataclass
import logging
from typing import Callable, Optional

from .cache import ListingCache, scope_for
from .errors import AuthError, NotFoundError
from .filtering import TreeFilter
from .models import (
    NODE_BUCKET,
    NODE_LOAD_MORE,
    NODE_OBJECT,
    NODE_PREFIX,
    Bucket,
    CacheEntry,
    TreeNode,
)
from .paths import DELIMITER, path_segments, relative_name
from .services import MAX_KEYS_PER_REQUEST, S3Service

LOGGER = logging.getLogger(__name__)

RECOVER_REFRESH_BUCKETS = "refresh_buckets"
RECOVER_REFRESH_PARENT = "refresh_parent"
RECOVER_REAUTHENTICATE = "reauthenticate"

ChangeListener = Callable[[Optional[TreeNode]], None]


@dataclass(frozen=True)
class RecoveryAction:
    """A follow-up the view may offer after a failed expand."""

    kind: str
    message: str
    node: Optional[TreeNode] = None


RecoveryListener = Callable[[RecoveryAction], None]


def bucket_node(bucket: Bucket | str) -> TreeNode:
    name = bucket.name if isinstance(bucket, Bucket) else bucket
    return TreeNode(kind=NODE_BUCKET, bucket=name, label=name)


def prefix_node(bucket: str, prefix: str, parent_prefix: str = "") -> TreeNode:
    return TreeNode(
        kind=NODE_PREFIX,
        bucket=bucket,
        label=relative_name(prefix, parent_prefix),
        prefix=prefix,
        parent_prefix=parent_prefix,
    )


class S3TreeExplorer:
    """Tree data provider over an :class:`S3Service` and a :class:`ListingCache`.

    Expanding a bucket or prefix serves the cached scope when present and
    lists the first page otherwise. Further pages are only fetched through
    :meth:`load_more`, which appends to the cached scope.
    """

    def __init__(
        self,
        service: S3Service,
        cache: ListingCache,
        *,
        page_size: int = MAX_KEYS_PER_REQUEST,
        filter_page_size: int = MAX_KEYS_PER_REQUEST,
    ) -> None:
        self._service = service
        self._cache = cache
        self._page_size = max(1, min(page_size, MAX_KEYS_PER_REQUEST))
        self._filter_page_size = filter_page_size
        self._filter: TreeFilter | None = None
        self._change_listeners: list[ChangeListener] = []
        self._recovery_listeners: list[RecoveryListener] = []

    @property
    def cache(self) -> ListingCache:
        return self._cache

    @property
    def filter_text(self) -> str:
        return self._filter.text if self._filter else ""

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._change_listeners.append(listener)

    def add_recovery_listener(self, listener: RecoveryListener) -> None:
        self._recovery_listeners.append(listener)

    def _notify(self, node: TreeNode | None) -> None:
        for listener in list(self._change_listeners):
            listener(node)

    def _offer(self, action: RecoveryAction) -> None:
        LOGGER.debug("Offering recovery action '%s': %s", action.kind, action.message)
        for listener in list(self._recovery_listeners):
            listener(action)

    # Refresh and filter

    def refresh(self, node: TreeNode | None = None) -> None:
        if node is None:
            self._cache.invalidate_all()
        elif node.kind == NODE_BUCKET:
            self._cache.invalidate(node.bucket)
        elif node.kind == NODE_PREFIX:
            self._cache.invalidate(node.bucket, node.prefix)
        if self._filter:
            self._filter.begin_pass()
        self._notify(node)

    def set_filter(self, text: str) -> None:
        if not text:
            self.clear_filter()
            return
        self._filter = TreeFilter(self._service, text, page_size=self._filter_page_size)
        LOGGER.debug("Filtering tree by '%s'", text)
        self._notify(None)

    def clear_filter(self) -> None:
        self._filter = None
        self._notify(None)

    # Children

    def get_children(self, node: TreeNode | None = None) -> list[TreeNode]:
        """Return the visible children of ``node`` (buckets when ``node`` is None)."""

        if node is not None and not node.is_expandable:
            return []
        try:
            if node is None:
                children = self._bucket_nodes()
            elif node.kind == NODE_BUCKET:
                children = self._scope_nodes(node.bucket, "")
            else:
                children = self._scope_nodes(node.bucket, node.prefix or "")
        except NotFoundError as exc:
            if node is None:
                raise
            if node.kind == NODE_BUCKET or exc.code == "NoSuchBucket":
                self._cache.invalidate(node.bucket)
                self._offer(
                    RecoveryAction(
                        RECOVER_REFRESH_BUCKETS,
                        f'Bucket "{node.bucket}" no longer exists. Refresh the bucket list?',
                        node,
                    )
                )
            else:
                self._cache.invalidate(node.bucket, node.prefix)
                self._offer(
                    RecoveryAction(
                        RECOVER_REFRESH_PARENT,
                        f'Folder "{node.prefix}" no longer exists: {exc}',
                        node,
                    )
                )
            return []
        except AuthError:
            self._offer(
                RecoveryAction(
                    RECOVER_REAUTHENTICATE,
                    "Authentication failed. Please check your S3 credentials.",
                    node,
                )
            )
            raise
        if self._filter is None:
            return children
        return [child for child in children if self._filter.accepts(child)]

    def _bucket_nodes(self) -> list[TreeNode]:
        return [bucket_node(bucket) for bucket in self._service.list_buckets()]

    def _scope_nodes(self, bucket: str, prefix: str) -> list[TreeNode]:
        scope = scope_for(bucket, prefix)
        entry = self._cache.get(scope)
        if entry is None:
            page = self._service.list_objects(bucket, prefix or None, max_keys=self._page_size)
            entry = self._cache.set(
                scope,
                page.objects,
                page.prefixes,
                page.is_truncated,
                page.continuation_token,
            )
            LOGGER.debug(
                "Listed %d folder(s) and %d object(s) under %s/%s",
                len(page.prefixes),
                len(page.objects),
                bucket,
                prefix,
            )
        return self._nodes_from_entry(bucket, prefix, entry)

    @staticmethod
    def _nodes_from_entry(bucket: str, prefix: str, entry: CacheEntry) -> list[TreeNode]:
        nodes = [prefix_node(bucket, item.prefix, prefix) for item in entry.prefixes]
        for obj in entry.objects:
            nodes.append(
                TreeNode(
                    kind=NODE_OBJECT,
                    bucket=bucket,
                    label=relative_name(obj.key, prefix),
                    key=obj.key,
                    parent_prefix=prefix,
                    size=obj.size,
                    last_modified=obj.last_modified,
                    etag=obj.etag,
                )
            )
        if entry.has_more:
            nodes.append(
                TreeNode(
                    kind=NODE_LOAD_MORE,
                    bucket=bucket,
                    label="Load more...",
                    prefix=prefix or None,
                    parent_prefix=prefix,
                    continuation_token=entry.continuation_token,
                )
            )
        return nodes

    # Pagination

    def load_more(self, node: TreeNode) -> None:
        """Append the page behind ``node`` to its scope and refresh the whole tree."""

        if node.kind != NODE_LOAD_MORE or not node.continuation_token:
            raise ValueError("load_more requires a load-more node with a continuation token")
        self._fetch_next_page(node)
        self._notify(None)

    def _fetch_next_page(self, node: TreeNode) -> bool:
        scope = scope_for(node.bucket, node.parent_prefix)
        entry = self._cache.get(scope)
        if entry is None:
            LOGGER.debug("Scope %s/%s was invalidated; next expand relists it", *scope)
            return False
        if entry.continuation_token != node.continuation_token:
            LOGGER.debug("Page %s of %s/%s was already loaded", node.continuation_token, *scope)
            return False
        page = self._service.list_objects(
            node.bucket,
            node.parent_prefix or None,
            continuation_token=node.continuation_token,
            max_keys=self._page_size,
        )
        self._cache.append(
            scope,
            page.objects,
            page.prefixes,
            page.is_truncated,
            page.continuation_token,
        )
        return True

    # Lookup

    def find_node(self, bucket: str, key: str | None = None) -> TreeNode | None:
        """Locate the node for ``key``, paging through continuations as needed."""

        if not key:
            for candidate in self._bucket_nodes():
                if candidate.bucket == bucket:
                    return candidate
            return None

        segments = path_segments(key)
        if not segments:
            return None
        wants_folder = key.endswith(DELIMITER)
        current_prefix = ""
        found: TreeNode | None = None
        fetched_pages = False
        for index, segment in enumerate(segments):
            is_last = index == len(segments) - 1
            folder_path = f"{current_prefix}{segment}{DELIMITER}"
            object_key = f"{current_prefix}{segment}"
            if is_last and not wants_folder:
                predicate = lambda n, k=object_key, p=folder_path: (
                    (n.kind == NODE_OBJECT and n.key == k) or (n.kind == NODE_PREFIX and n.prefix == p)
                )
            else:
                predicate = lambda n, p=folder_path: n.kind == NODE_PREFIX and n.prefix == p
            try:
                found, paged = self._find_in_scope(bucket, current_prefix, predicate)
            except NotFoundError as exc:
                LOGGER.debug("Cannot locate %s/%s: %s", bucket, key, exc)
                found, paged = None, False
            fetched_pages = fetched_pages or paged
            if found is None:
                break
            current_prefix = folder_path
        if fetched_pages:
            self._notify(None)
        return found

    def _find_in_scope(
        self,
        bucket: str,
        prefix: str,
        predicate: Callable[[TreeNode], bool],
    ) -> tuple[TreeNode | None, bool]:
        paged = False
        while True:
            nodes = self._scope_nodes(bucket, prefix)
            for candidate in nodes:
                if candidate.kind != NODE_LOAD_MORE and predicate(candidate):
                    return candidate, paged
            more = nodes[-1] if nodes and nodes[-1].kind == NODE_LOAD_MORE else None
            if more is None or not self._fetch_next_page(more):
                return None, paged
            paged = True
