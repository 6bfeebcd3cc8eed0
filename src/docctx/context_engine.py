"""Context engine: assembles bounded prompt context for document generation.

Given a document type, decides which pieces of project knowledge go into
the prompt sent to an LLM, under the active model's input budget
(context window minus the output reserve).

Algorithm:
  Phase 1 (always)      core fragment, then enriched fragments that match
                        the document type, best first
  Phase 2 (ultra-large) every remaining enriched/injected fragment, best
                        first, while the budget lasts
  Phase 3 (large)       top N remaining fragments, only while more than
                        the supplementary floor is left

  Budget tier of the available tokens picks the phases:
       standard    < 50K    → 1
       large       50K-200K → 1, 3
       ultra-large > 200K   → 1, 2

At every budget boundary a fragment that does not fit is skipped when it
overshoots the remaining budget by more than the overflow tolerance
(20% by default), otherwise truncated to fit with a marker. Both are
recorded on the result as OverflowTruncationWarning entries.

In phases 1 and 2, budget left over after a skip is backfilled with a
partial copy of the best skipped fragment instead of being left unused.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from docctx.cache import ContextCache
from docctx.config import AssemblyConfig, Config, DiscoveryConfig
from docctx.exceptions import MissingCoreContextError
from docctx.logger import get_logger
from docctx.model_registry import (
    ModelCapabilityRegistry,
    classify_tier,
    default_reserve,
)
from docctx.models import (
    AssemblyResult,
    BudgetTier,
    ContextFragment,
    FragmentKey,
    ModelProfile,
    OverflowTruncationWarning,
    UtilizationReport,
)
from docctx.relevance import RelevanceScorer
from docctx.reporter import UtilizationReporter
from docctx.store import ContextStore
from docctx.token_counter import TokenEstimator, get_estimator, truncate_to_budget

logger = get_logger()

INCLUDED = "included"
TRUNCATED = "truncated"
SKIPPED = "skipped"

PHASE_TITLES = {
    1: "Related Context",
    2: "Additional Context",
    3: "Supplementary Context",
}


def render_section(title: str, key: str, content: str) -> str:
    return f"\n\n## {title}: {key}\n{content}"


class _Assembly:
    """Running state of one build: sections, spend and what was decided."""

    def __init__(self, available: int, estimator: TokenEstimator, assembly: AssemblyConfig):
        self.available = available
        self.estimator = estimator
        self.assembly = assembly
        self.sections: List[str] = []
        self.used = 0
        self.included: List[str] = []
        self.fragment_tokens: Dict[str, int] = {}
        self.warnings: List[OverflowTruncationWarning] = []
        self.attempted: Set[Tuple[str, str]] = set()

    @property
    def remaining(self) -> int:
        return self.available - self.used

    def settle(self) -> int:
        """Re-measure spend on the assembled text; per-section sums can overcount."""
        self.used = self.estimator.estimate(self.text())
        return self.remaining

    def add_core(self, fragment: ContextFragment) -> None:
        self.attempted.add((fragment.category.value, fragment.key))
        content = fragment.content
        cost = self.estimator.estimate(content)
        if cost > self.available:
            content = truncate_to_budget(
                content, self.available, self.estimator, self.assembly.truncation_marker,
            )
            kept = self.estimator.estimate(content)
            self.warnings.append(OverflowTruncationWarning(
                fragment_key=fragment.key, phase=1, action=TRUNCATED,
                fragment_tokens=cost, remaining_tokens=self.available, kept_tokens=kept,
            ))
            logger.info(f"Core context truncated to {kept:,} of {cost:,} tokens")
            cost = kept
        self._append(fragment.key, content, cost)

    def offer(self, fragment: ContextFragment, phase: int) -> str:
        """Try to fit *fragment*; returns included, truncated or skipped."""
        self.attempted.add((fragment.category.value, fragment.key))
        remaining = self.remaining
        section = render_section(PHASE_TITLES[phase], fragment.key, fragment.content)
        cost = self.estimator.estimate(section)

        if cost <= remaining:
            self._append(fragment.key, section, cost)
            return INCLUDED

        overflow = cost - remaining
        if remaining <= 0 or overflow > self.assembly.overflow_tolerance * remaining:
            return self._skip(fragment, phase, cost, remaining)
        if self._fill_partial(fragment, phase, cost):
            return TRUNCATED
        return self._skip(fragment, phase, cost, remaining)

    def backfill(self, fragment: ContextFragment, phase: int) -> bool:
        """Spend what is left of the budget on part of a fragment skipped in *phase*.

        The skip warning is replaced by a truncation warning when anything fits.
        """
        if self.remaining <= 0:
            return False
        cost = self.estimator.estimate(
            render_section(PHASE_TITLES[phase], fragment.key, fragment.content)
        )
        if not self._fill_partial(fragment, phase, cost):
            return False
        self.warnings = [
            w for w in self.warnings
            if not (w.fragment_key == fragment.key and w.phase == phase and w.action == SKIPPED)
        ]
        return True

    def _fill_partial(self, fragment: ContextFragment, phase: int, cost: int) -> bool:
        remaining = self.remaining
        header = render_section(f"{PHASE_TITLES[phase]} (Partial)", fragment.key, "")
        body = self._longest_fitting_body(header, fragment.content)
        if not body:
            return False

        section = header + body
        kept = self.estimator.estimate(section)
        self._append(fragment.key, section, kept)
        self.warnings.append(OverflowTruncationWarning(
            fragment_key=fragment.key, phase=phase, action=TRUNCATED,
            fragment_tokens=cost, remaining_tokens=remaining, kept_tokens=kept,
        ))
        logger.info(f"Phase {phase}: truncated '{fragment.key}' ({kept:,}/{cost:,} tokens kept)")
        return True

    def _longest_fitting_body(self, header: str, content: str) -> str:
        """Longest prefix of *content*, plus the marker, that keeps the whole text in budget.

        Measured on the assembled text rather than per section, so every fill
        that reaches the budget ends at the same total.
        """
        prefix = self.text() + header
        marker = self.assembly.truncation_marker

        def fits(n: int) -> bool:
            return self.estimator.estimate(prefix + content[:n] + marker) <= self.available

        lo, hi = 0, len(content)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if fits(mid):
                lo = mid
            else:
                hi = mid - 1
        if lo == 0:
            return ""
        return content[:lo] + marker

    def _skip(self, fragment: ContextFragment, phase: int, cost: int, remaining: int) -> str:
        self.warnings.append(OverflowTruncationWarning(
            fragment_key=fragment.key, phase=phase, action=SKIPPED,
            fragment_tokens=cost, remaining_tokens=remaining,
        ))
        logger.info(
            f"Phase {phase}: skipped '{fragment.key}' "
            f"({cost:,} tokens, {remaining:,} remaining)"
        )
        return SKIPPED

    def _append(self, key: str, section: str, cost: int) -> None:
        self.sections.append(section)
        self.used += cost
        self.included.append(key)
        self.fragment_tokens[key] = cost

    def text(self) -> str:
        return "".join(self.sections)


class ContextBuilder:
    """Runs the phased assembly for one store and one model profile."""

    def __init__(
        self,
        store: ContextStore,
        profile: ModelProfile,
        scorer: Optional[RelevanceScorer] = None,
        assembly: Optional[AssemblyConfig] = None,
        cache: Optional[ContextCache] = None,
    ):
        self.store = store
        self.profile = profile
        self.scorer = scorer or RelevanceScorer()
        self.assembly = assembly or AssemblyConfig()
        self.assembly.validate()
        self.cache = cache if cache is not None else ContextCache(self.assembly.cache_max_entries)

    @property
    def estimator(self) -> TokenEstimator:
        return self.store.estimator

    @property
    def tier(self) -> BudgetTier:
        return classify_tier(
            self.profile.available_tokens,
            self.assembly.standard_max_tokens,
            self.assembly.ultra_min_tokens,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def build(self, document_type: str) -> AssemblyResult:
        """Assemble context for *document_type* within the profile's budget.

        Raises:
            MissingCoreContextError: no core fragment has been set.
        """
        if not self.store.has_core:
            raise MissingCoreContextError(document_type)

        version = self.store.version
        cached = self.cache.get(document_type, self.profile.key, version)
        if cached is not None:
            logger.debug(f"Context cache hit for {document_type} (v{version})")
            return cached

        result = self._assemble(document_type, version)
        self.cache.put(result, self.profile.key, version)
        return result

    # ------------------------------------------------------------------
    # Internal: phases
    # ------------------------------------------------------------------
    def _assemble(self, document_type: str, version: int) -> AssemblyResult:
        available = self.profile.available_tokens
        tier = self.tier
        state = _Assembly(available, self.estimator, self.assembly)
        phases_run = [1]

        logger.debug(
            f"Building {document_type} for {self.profile.key}: "
            f"{available:,} tokens available ({tier.value})"
        )

        self._phase_core(state, document_type)
        phase_reached = 1

        if tier is BudgetTier.ULTRA_LARGE:
            self._phase_comprehensive(state, document_type)
            phases_run.append(2)
            phase_reached = 2
        elif tier is BudgetTier.LARGE:
            if self._phase_supplementary(state, document_type):
                phases_run.append(3)
                phase_reached = 3

        text = state.text()
        total = self.estimator.estimate(text)
        if total > available:
            # Only reachable with estimators that are not subadditive
            text = truncate_to_budget(text, available, self.estimator,
                                      self.assembly.truncation_marker)
            kept = self.estimator.estimate(text)
            state.warnings.append(OverflowTruncationWarning(
                fragment_key=state.included[-1], phase=phase_reached, action=TRUNCATED,
                fragment_tokens=total, remaining_tokens=available, kept_tokens=kept,
            ))
            logger.info(
                f"Assembled text estimated at {total:,} tokens; truncated to {kept:,}"
            )
            total = kept

        return AssemblyResult(
            document_type=document_type,
            text=text,
            total_tokens=total,
            included_fragment_keys=list(state.included),
            phase_reached=phase_reached,
            utilization_percentage=(total / available * 100) if available > 0 else 0.0,
            available_budget=available,
            tier=tier,
            profile=self.profile,
            fragment_tokens=dict(state.fragment_tokens),
            overflow_warnings=list(state.warnings),
            phases_run=phases_run,
            store_version=version,
        )

    def _phase_core(self, state: _Assembly, document_type: str) -> None:
        """Phase 1: core plus relevance-matched enriched fragments."""
        state.add_core(self.store.core)

        matched = [
            f for f in self.store.enriched_fragments()
            if self.scorer.matches(f, document_type)
        ]
        self._fill(state, self.scorer.rank(matched, document_type), phase=1)

    def _phase_comprehensive(self, state: _Assembly, document_type: str) -> None:
        """Phase 2: everything else, best first, until the budget is spent."""
        self._fill(state, self.scorer.rank(self._remaining(state), document_type), phase=2)

    def _phase_supplementary(self, state: _Assembly, document_type: str) -> bool:
        """Phase 3: top few remaining fragments above the token floor.

        Returns False when the phase is skipped because too little budget
        is left. Skipped fragments are not backfilled here: the floor and
        the fragment cap bound this phase.
        """
        floor = self.assembly.supplementary_floor_tokens
        if state.remaining <= floor:
            logger.debug(
                f"Phase 3 skipped: {state.remaining:,} tokens left, floor {floor:,}"
            )
            return False

        ranked = self.scorer.rank(self._remaining(state), document_type)
        self._fill(
            state,
            ranked[: self.assembly.supplementary_max_fragments],
            phase=3,
            floor=floor,
            backfill=False,
        )
        return True

    def _fill(
        self,
        state: _Assembly,
        ranked: List[Tuple[ContextFragment, float]],
        phase: int,
        floor: int = 0,
        backfill: bool = True,
    ) -> None:
        """Offer *ranked* fragments in order; a truncation ends the phase.

        With *backfill*, budget left over after a skip goes to a partial copy
        of the best skipped fragment.
        """
        skipped: List[ContextFragment] = []
        for fragment, score in ranked:
            if state.remaining <= floor and state.settle() <= floor:
                break
            logger.debug(f"Phase {phase}: offering {fragment.key} (score {score:.2f})")
            outcome = state.offer(fragment, phase)
            if outcome == TRUNCATED:
                return
            if outcome == SKIPPED:
                skipped.append(fragment)

        if backfill and skipped and state.settle() > 0 and state.backfill(skipped[0], phase):
            logger.debug(f"Phase {phase}: backfilled with part of '{skipped[0].key}'")

    def _remaining(self, state: _Assembly) -> List[ContextFragment]:
        return [
            f for f in self.store.candidates()
            if (f.category.value, f.key) not in state.attempted
        ]


class ContextAssemblyEngine:
    """One session's context assembly: store, model, builder and reports.

    Construct one per session (or per test); nothing is shared between
    instances.
    """

    def __init__(
        self,
        provider: str = "openai",
        model: str = "gpt-4o",
        registry: Optional[ModelCapabilityRegistry] = None,
        estimator: Optional[TokenEstimator] = None,
        scorer: Optional[RelevanceScorer] = None,
        assembly: Optional[AssemblyConfig] = None,
        discovery: Optional[DiscoveryConfig] = None,
        profile: Optional[ModelProfile] = None,
    ):
        self.assembly = assembly or AssemblyConfig()
        self.assembly.validate()
        self.discovery = discovery or DiscoveryConfig()
        self.registry = registry or ModelCapabilityRegistry()
        self.estimator = estimator or get_estimator(
            self.assembly.tokenizer, self.assembly.chars_per_token, provider,
        )
        self.store = ContextStore(self.estimator)
        self.scorer = scorer or RelevanceScorer()
        self.cache = ContextCache(self.assembly.cache_max_entries)
        self.builder = ContextBuilder(
            self.store,
            profile or self.registry.lookup(provider, model),
            self.scorer,
            self.assembly,
            self.cache,
        )
        self.reporter = UtilizationReporter(self.builder)

    @classmethod
    def from_config(cls, config: Config) -> "ContextAssemblyEngine":
        """Engine wired from a loaded Config."""
        registry = ModelCapabilityRegistry()
        profile = None
        if config.model.max_context_tokens:
            reserve = config.model.reserved_output_tokens
            if reserve is None:
                reserve = default_reserve(config.model.max_context_tokens)
            profile = ModelProfile(
                provider=config.model.provider,
                model=config.model.model,
                max_context_tokens=config.model.max_context_tokens,
                reserved_output_tokens=reserve,
            )
            registry.register(profile)
        return cls(
            provider=config.model.provider,
            model=config.model.model,
            registry=registry,
            scorer=RelevanceScorer(config.document_profiles()),
            assembly=config.assembly,
            discovery=config.discovery,
            profile=profile,
        )

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------
    @property
    def profile(self) -> ModelProfile:
        return self.builder.profile

    def use_model(self, provider: str, model: str) -> ModelProfile:
        """Switch the active model; cached results stay keyed per model."""
        self.builder.profile = self.registry.lookup(provider, model)
        logger.debug(f"Active model: {self.builder.profile.key}")
        return self.builder.profile

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------
    def set_core_context(self, content: str) -> ContextFragment:
        return self.store.set_core_context(content)

    def add_enriched_context(
        self,
        key: FragmentKey,
        content: str,
        relevance_hint: float = 0.0,
        tags: Iterable[str] = (),
    ) -> ContextFragment:
        return self.store.add_enriched(key, content, relevance_hint=relevance_hint, tags=tags)

    def clear_injected(self) -> int:
        return self.store.clear_injected()

    # ------------------------------------------------------------------
    # Build / report
    # ------------------------------------------------------------------
    def build(self, document_type: str) -> AssemblyResult:
        return self.builder.build(document_type)

    def analyze(self, document_type: str) -> UtilizationReport:
        return self.reporter.analyze(document_type)

    def render_engine_report(self) -> str:
        return self.reporter.render_engine_report()

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def inject_high_relevance_fragments(
        self,
        root_path: Path,
        min_score: Optional[int] = None,
        max_count: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Discover project files and inject the best ones; returns the count."""
        from docctx.discovery import inject_high_relevance_fragments
        return inject_high_relevance_fragments(
            self.store,
            Path(root_path),
            min_score=self.discovery.min_score if min_score is None else min_score,
            max_count=self.discovery.max_count if max_count is None else max_count,
            config=self.discovery,
            timeout=self.discovery.timeout_seconds if timeout is None else timeout,
        )

    def inject_files(self, paths: Iterable[Path], root: Path) -> int:
        from docctx.discovery import inject_files
        return inject_files(self.store, paths, Path(root), config=self.discovery)

    def load_existing_documents(self, docs_path: Path) -> int:
        from docctx.discovery import load_existing_documents
        return load_existing_documents(self.store, Path(docs_path), config=self.discovery)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------
    def get_metrics(self) -> Dict[str, Any]:
        core = self.store.core
        return {
            "max_tokens": self.profile.max_context_tokens,
            "available_tokens": self.profile.available_tokens,
            "core_context_tokens": core.token_count if core else 0,
            "enriched_context_count": len(self.store.enriched_fragments()),
            "injected_context_count": len(self.store.injected_fragments()),
            "cache_size": len(self.cache),
            "store_version": self.store.version,
            "model": self.profile.key,
            "tier": self.builder.tier.value,
        }

    def get_injection_statistics(self) -> Dict[str, Any]:
        injected = self.store.injected_fragments()
        total = sum(f.token_count for f in injected)
        core = self.store.core
        core_tokens = core.token_count if core else 0
        return {
            "total_injected": len(injected),
            "injected_keys": [f.key for f in injected],
            "total_tokens_injected": total,
            "remaining_token_budget": max(0, self.profile.available_tokens - core_tokens - total),
        }
