from __future__ import annotations
"""Per-scope cache of accumulated listing pages."""
import logging
from typing import Iterable, Optional

from .models import CacheEntry, S3Object, S3Prefix

LOGGER = logging.getLogger(__name__)

Scope = tuple[str, str]


def scope_for(bucket: str, prefix: str | None = None) -> Scope:
    return (bucket, prefix or "")


class ListingCache:
    """Stores the pages fetched for each (bucket, prefix) scope.

    Entries never expire on their own; every mutation must invalidate the
    scopes it touches. The cache is not thread-safe, callers serialize access.
    """

    def __init__(self) -> None:
        self._entries: dict[Scope, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, scope: object) -> bool:
        return scope in self._entries

    def get(self, scope: Scope) -> Optional[CacheEntry]:
        return self._entries.get(scope)

    def set(
        self,
        scope: Scope,
        objects: Iterable[S3Object],
        prefixes: Iterable[S3Prefix],
        is_truncated: bool,
        continuation_token: str | None,
    ) -> CacheEntry:
        entry = CacheEntry(
            objects=list(objects),
            prefixes=list(prefixes),
            is_truncated=is_truncated,
            continuation_token=continuation_token,
        )
        self._entries[scope] = entry
        return entry

    def append(
        self,
        scope: Scope,
        objects: Iterable[S3Object],
        prefixes: Iterable[S3Prefix],
        is_truncated: bool,
        continuation_token: str | None,
    ) -> CacheEntry:
        entry = self._entries.get(scope)
        if entry is None:
            return self.set(scope, objects, prefixes, is_truncated, continuation_token)
        entry.objects.extend(objects)
        entry.prefixes.extend(prefixes)
        entry.is_truncated = is_truncated
        entry.continuation_token = continuation_token
        return entry

    def invalidate(self, bucket: str, prefix: str | None = None) -> None:
        """Drop one scope, or every scope of ``bucket`` when ``prefix`` is None."""
        if prefix is not None:
            if self._entries.pop(scope_for(bucket, prefix), None) is not None:
                LOGGER.debug("Invalidated cache scope %s/%s", bucket, prefix)
            return
        stale = [scope for scope in self._entries if scope[0] == bucket]
        for scope in stale:
            del self._entries[scope]
        LOGGER.debug("Invalidated %d cache scope(s) for bucket '%s'", len(stale), bucket)

    def invalidate_all(self) -> None:
        self._entries.clear()

    def scopes(self) -> list[Scope]:
        return list(self._entries)
