"""Thread identity resolution: live thread handle -> durable thread id."""

import weakref
from pathlib import Path
from typing import TYPE_CHECKING

from locore.models import IndexDocument, Range, coerce_range
from locore.paths import location_key

if TYPE_CHECKING:
    from locore.controller import LiveThread


class ThreadIdentityResolver:
    """Two-tier resolver shared by the write path and the restore path.

    Tier 1 is a session-only cache keyed by the live thread object itself
    (weakly, so closed threads are not kept alive). Tier 2 scans the index's
    ``byUri`` bucket for an entry whose range matches exactly. A cache miss
    only means "not yet cached"; the index is always consulted.
    """

    def __init__(self, workspace_root: Path) -> None:
        self.workspace_root = workspace_root
        self._cache: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()

    def location_key(self, thread: "LiveThread") -> str:
        return location_key(thread.uri, self.workspace_root)

    def cached(self, thread: "LiveThread") -> str | None:
        try:
            return self._cache.get(thread)
        except TypeError:
            # Handle types that cannot be weakly referenced are never cached
            return None

    def remember(self, thread: "LiveThread", thread_id: str) -> None:
        try:
            self._cache[thread] = thread_id
        except TypeError:
            pass

    def resolve(self, thread: "LiveThread", index: IndexDocument) -> str | None:
        """
        Map a live thread to its thread id.

        Args:
            thread: Live thread handle (uri + range)
            index: Freshly loaded index document

        Returns:
            The thread id, or None if the thread has no durable identity yet
        """
        thread_id = self.cached(thread)
        if thread_id is not None and thread_id in index.threads:
            return thread_id

        return find_thread_id(index, self.candidate_keys(thread), coerce_range(thread.range))

    def candidate_keys(self, thread: "LiveThread") -> list[str]:
        """Location keys to scan: the relative key, then the raw URI used by older stores."""
        key = self.location_key(thread)
        return [key] if key == thread.uri else [key, thread.uri]


def find_thread_id(index: IndexDocument, keys: list[str], rng: Range) -> str | None:
    """Return the first thread filed under keys (in order) whose range equals rng exactly."""
    target = rng.coords()
    for key in keys:
        for thread_id in index.by_uri.get(key, []):
            entry = index.threads.get(thread_id)
            if entry is not None and entry.range.coords() == target:
                return thread_id
    return None
