"""Memo of assembled contexts.

Entries are keyed by (document type, model profile, store version). A new
store version makes every older entry unreachable, so entries are pruned
as soon as a result for a newer version is stored.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Optional, Tuple

from docctx.models import AssemblyResult

CacheKey = Tuple[str, str, int]


class ContextCache:
    """Bounded, version-aware cache of AssemblyResult objects.

    Results are copied on the way in and out; callers never share the
    stored object.
    """

    def __init__(self, max_entries: int = 128):
        self.max_entries = max(1, max_entries)
        self._entries: "OrderedDict[CacheKey, AssemblyResult]" = OrderedDict()
        self._latest_version = 0
        self.hits = 0
        self.misses = 0

    def get(self, document_type: str, profile_key: str, version: int) -> Optional[AssemblyResult]:
        key = (document_type, profile_key, version)
        result = self._entries.get(key)
        if result is None:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return result.copy()

    def put(self, result: AssemblyResult, profile_key: str, version: int) -> None:
        if version > self._latest_version:
            self._latest_version = version
            self._entries = OrderedDict(
                (k, v) for k, v in self._entries.items() if k[2] >= version
            )
        elif version < self._latest_version:
            return  # stale build; nothing can look it up again

        self._entries[(result.document_type, profile_key, version)] = result.copy()
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {"size": len(self._entries), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        return len(self._entries)
