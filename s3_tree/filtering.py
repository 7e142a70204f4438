from __future__ import annotations
"""Substring filter with ancestor inclusion for the tree view."""
from collections import deque
import logging

from .errors import AuthError, NotFoundError
from .models import NODE_BUCKET, NODE_LOAD_MORE, NODE_PREFIX, TreeNode
from .services import MAX_KEYS_PER_REQUEST, S3Service

LOGGER = logging.getLogger(__name__)


class TreeFilter:
    """Decides which nodes stay visible for a filter text.

    A bucket or folder whose own name does not match is still shown when any
    descendant matches. Descendants are listed one level at a time and the
    search stops at the first hit. Results are memoized until
    :meth:`begin_pass` is called.
    """

    def __init__(self, service: S3Service, text: str, *, page_size: int = MAX_KEYS_PER_REQUEST):
        if not text:
            raise ValueError("Filter text cannot be empty")
        self._service = service
        self._text = text
        self._needle = text.lower()
        self._page_size = max(1, min(page_size, MAX_KEYS_PER_REQUEST))
        self._memo: dict[tuple[str, str], bool] = {}

    @property
    def text(self) -> str:
        return self._text

    def begin_pass(self) -> None:
        self._memo.clear()

    def matches_text(self, value: str) -> bool:
        return self._needle in value.lower()

    def matches(self, node: TreeNode) -> bool:
        if node.kind == NODE_LOAD_MORE:
            return True
        return self.matches_text(node.path)

    def accepts(self, node: TreeNode) -> bool:
        """True when ``node`` should be rendered under the active filter."""
        if self.matches(node):
            return True
        if node.kind == NODE_BUCKET:
            return self.bucket_has_match(node.bucket)
        if node.kind == NODE_PREFIX:
            return self.ancestor_has_match(node.bucket, node.prefix or "")
        return False

    def bucket_has_match(self, bucket: str) -> bool:
        return self.ancestor_has_match(bucket, "")

    def ancestor_has_match(self, bucket: str, prefix: str) -> bool:
        memo_key = (bucket, prefix)
        if memo_key in self._memo:
            return self._memo[memo_key]
        try:
            result = self._subtree_has_match(bucket, prefix)
        except (NotFoundError, AuthError) as exc:
            LOGGER.warning("Skipping %s/%s while filtering: %s", bucket, prefix, exc)
            result = False
        self._memo[memo_key] = result
        return result

    def _subtree_has_match(self, bucket: str, prefix: str) -> bool:
        pending = deque([prefix])
        while pending:
            current = pending.popleft()
            token = None
            while True:
                page = self._service.list_objects(
                    bucket,
                    current or None,
                    continuation_token=token,
                    max_keys=self._page_size,
                )
                for child in page.prefixes:
                    if self.matches_text(child.prefix):
                        return True
                    pending.append(child.prefix)
                for obj in page.objects:
                    if self.matches_text(obj.key):
                        return True
                if not page.continuation_token:
                    break
                token = page.continuation_token
        return False
