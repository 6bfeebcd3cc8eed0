"""Context store: the three pools of project knowledge.

* core:     exactly one fragment describing the project, always included
* enriched: named, long-lived fragments registered ahead of time
* injected: fragments discovered from a project's files at runtime

Every mutation bumps a store version; caches key on it, so any change to
any pool invalidates previously assembled contexts.
"""

from __future__ import annotations

import itertools
import threading
from typing import Dict, Iterable, List, Optional

import xxhash

from docctx.logger import get_logger
from docctx.models import (
    ContextFragment,
    FragmentCategory,
    FragmentKey,
    normalize_key,
)
from docctx.token_counter import CharRatioEstimator, TokenEstimator

logger = get_logger()

CORE_KEY = "core"


def content_hash(text: str) -> str:
    return xxhash.xxh64(text.encode("utf-8")).hexdigest()


class ContextStore:
    """Holds core, enriched and injected fragments for one session.

    Not thread-safe for concurrent mutation and build; callers that share a
    store across threads must serialise access themselves. The version bump
    alone is atomic.
    """

    def __init__(self, estimator: Optional[TokenEstimator] = None):
        self.estimator = estimator or CharRatioEstimator()
        self._core: Optional[ContextFragment] = None
        self._enriched: Dict[str, ContextFragment] = {}
        self._injected: Dict[str, ContextFragment] = {}
        self._sequence = itertools.count(1)
        self._version = 0
        self._version_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Versioning
    # ------------------------------------------------------------------
    @property
    def version(self) -> int:
        return self._version

    def _bump(self) -> None:
        with self._version_lock:
            self._version += 1

    def fingerprint(self) -> str:
        """Hash of the store version and every fragment's content hash."""
        h = xxhash.xxh64()
        h.update(str(self._version).encode())
        for fragment in self._all():
            h.update(f"{fragment.category.value}:{fragment.key}:{fragment.content_hash}".encode())
        return h.hexdigest()

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------
    @property
    def core(self) -> Optional[ContextFragment]:
        return self._core

    @property
    def has_core(self) -> bool:
        return self._core is not None

    def set_core_context(self, content: str, key: str = CORE_KEY) -> ContextFragment:
        """Create (or replace) the session's single core fragment."""
        fragment = self._make(key, content, FragmentCategory.CORE)
        if self._core is not None:
            fragment.sequence = self._core.sequence
            if self._core.key == fragment.key and self._core.same_payload(fragment):
                return self._core
        self._core = fragment
        self._bump()
        logger.debug(f"Core context set: {fragment.token_count:,} tokens")
        return fragment

    # ------------------------------------------------------------------
    # Enriched / injected
    # ------------------------------------------------------------------
    def add_enriched(
        self,
        key: FragmentKey,
        content: str,
        relevance_hint: float = 0.0,
        tags: Iterable[str] = (),
    ) -> ContextFragment:
        """Register an enriched fragment; re-adding a key overwrites it."""
        fragment = self._make(
            normalize_key(key), content, FragmentCategory.ENRICHED,
            relevance_hint=relevance_hint, tags=tags,
        )
        return self._put(self._enriched, fragment)

    def add_injected(
        self,
        key: str,
        content: str,
        source_path: Optional[str] = None,
        relevance_hint: float = 0.0,
        tags: Iterable[str] = (),
    ) -> ContextFragment:
        """Register an injected fragment; re-adding a key overwrites it."""
        fragment = self._make(
            normalize_key(key), content, FragmentCategory.INJECTED,
            source_path=source_path, relevance_hint=relevance_hint, tags=tags,
        )
        return self._put(self._injected, fragment)

    def get(self, key: FragmentKey) -> Optional[ContextFragment]:
        """Look a key up in core, enriched, then injected."""
        key = normalize_key(key)
        if self._core is not None and self._core.key == key:
            return self._core
        return self._enriched.get(key) or self._injected.get(key)

    def remove_enriched(self, key: FragmentKey) -> bool:
        removed = self._enriched.pop(normalize_key(key), None)
        if removed is not None:
            self._bump()
        return removed is not None

    def clear_injected(self) -> int:
        """Drop every injected fragment; returns how many were removed."""
        count = len(self._injected)
        self._injected.clear()
        self._bump()
        logger.info(f"Cleared {count} injected context entries")
        return count

    def clear_enriched(self) -> int:
        count = len(self._enriched)
        self._enriched.clear()
        self._bump()
        return count

    def clear(self) -> None:
        """Drop every fragment, core included."""
        self._core = None
        self._enriched.clear()
        self._injected.clear()
        self._bump()

    def enriched_fragments(self) -> List[ContextFragment]:
        return list(self._enriched.values())

    def injected_fragments(self) -> List[ContextFragment]:
        return list(self._injected.values())

    def candidates(self) -> List[ContextFragment]:
        """Enriched and injected fragments in insertion order."""
        return sorted(
            list(self._enriched.values()) + list(self._injected.values()),
            key=lambda f: f.sequence,
        )

    # ------------------------------------------------------------------
    # Estimator
    # ------------------------------------------------------------------
    def set_estimator(self, estimator: TokenEstimator) -> None:
        """Swap the token estimator and recount every fragment."""
        self.estimator = estimator
        for fragment in self._all():
            fragment.token_count = estimator.estimate(fragment.content)
        self._bump()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _all(self) -> List[ContextFragment]:
        fragments = [self._core] if self._core is not None else []
        return fragments + self.candidates()

    def _make(
        self,
        key: str,
        content: str,
        category: FragmentCategory,
        source_path: Optional[str] = None,
        relevance_hint: float = 0.0,
        tags: Iterable[str] = (),
    ) -> ContextFragment:
        content = content or ""
        return ContextFragment(
            key=key,
            content=content,
            category=category,
            token_count=self.estimator.estimate(content),
            content_hash=content_hash(content),
            source_path=source_path,
            relevance_hint=float(relevance_hint),
            tags=tuple(t.strip().lower() for t in tags if t and t.strip()),
        )

    def _put(self, pool: Dict[str, ContextFragment], fragment: ContextFragment) -> ContextFragment:
        existing = pool.get(fragment.key)
        if existing is not None:
            if existing.same_payload(fragment):
                return existing
            fragment.sequence = existing.sequence
        else:
            fragment.sequence = next(self._sequence)
        pool[fragment.key] = fragment
        self._bump()
        return fragment

    def __len__(self) -> int:
        return len(self._all())
