"""Data models for docctx."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from docctx.exceptions import ValidationError
from docctx.token_counter import format_budget


class FragmentCategory(str, Enum):
    """The three pools a fragment can live in."""
    CORE = "core"
    ENRICHED = "enriched"
    INJECTED = "injected"


class KnownFragmentKey(str, Enum):
    """Well-known enriched fragment keys.

    Any plain string is also accepted as a key; these exist so common
    keys are spelled the same way everywhere.
    """
    SUMMARY = "summary"
    PROJECT_CHARTER = "project-charter"
    SCOPE_PLAN = "scope-plan"
    REQUIREMENTS = "requirements"
    TECH_STACK = "tech-stack"
    RISK_ANALYSIS = "risk-analysis"
    RISK_MANAGEMENT = "risk-management"
    PERSONAS = "personas"
    USER_STORIES = "user-stories"
    STAKEHOLDER_REGISTER = "stakeholder-register"
    COMMUNICATION_PLAN = "communication-plan"
    QUALITY_PLAN = "quality-plan"
    COMPLIANCE = "compliance"


FragmentKey = Union[KnownFragmentKey, str]


def normalize_key(key: FragmentKey) -> str:
    """Return the plain-string form of a fragment key."""
    if isinstance(key, KnownFragmentKey):
        return key.value
    key = str(key).strip()
    if not key:
        raise ValidationError("Fragment key must not be empty")
    return key


class BudgetTier(str, Enum):
    """Available-budget classes that select the assembly phases."""
    STANDARD = "standard"
    LARGE = "large"
    ULTRA_LARGE = "ultra-large"


@dataclass
class ContextFragment:
    """A named unit of text eligible for inclusion in a prompt."""
    key: str
    content: str
    category: FragmentCategory
    token_count: int = 0
    content_hash: str = ""
    source_path: Optional[str] = None   # injected fragments only
    relevance_hint: float = 0.0
    tags: Tuple[str, ...] = ()
    sequence: int = 0                   # insertion order, used for tie-breaks

    def same_payload(self, other: "ContextFragment") -> bool:
        return (
            self.content_hash == other.content_hash
            and self.relevance_hint == other.relevance_hint
            and self.tags == other.tags
            and self.source_path == other.source_path
        )


@dataclass
class ModelProfile:
    """Context capacity of one provider/model pair."""
    provider: str
    model: str
    max_context_tokens: int
    reserved_output_tokens: int
    is_default: bool = False

    def __post_init__(self):
        if self.max_context_tokens <= 0:
            raise ValidationError(
                f"{self.key}: max_context_tokens must be positive"
            )
        if self.reserved_output_tokens < 0:
            raise ValidationError(
                f"{self.key}: reserved_output_tokens must not be negative"
            )
        if self.reserved_output_tokens >= self.max_context_tokens:
            raise ValidationError(
                f"{self.key}: reserved_output_tokens ({self.reserved_output_tokens}) "
                f"must be below max_context_tokens ({self.max_context_tokens})"
            )

    @property
    def key(self) -> str:
        return f"{self.provider}/{self.model}"

    @property
    def available_tokens(self) -> int:
        """Input budget left once the response reserve is withheld."""
        return self.max_context_tokens - self.reserved_output_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "max_context_tokens": self.max_context_tokens,
            "reserved_output_tokens": self.reserved_output_tokens,
            "available_tokens": self.available_tokens,
            "is_default": self.is_default,
        }


@dataclass(frozen=True)
class OverflowTruncationWarning:
    """A fragment that was cut or left out because the budget ran out.

    Recorded on the result rather than raised.
    """
    fragment_key: str
    phase: int
    action: str             # "skipped" | "truncated"
    fragment_tokens: int
    remaining_tokens: int
    kept_tokens: int = 0

    @property
    def message(self) -> str:
        if self.action == "truncated":
            return (
                f"Phase {self.phase}: truncated '{self.fragment_key}' to "
                f"{self.kept_tokens:,} of {self.fragment_tokens:,} tokens"
            )
        return (
            f"Phase {self.phase}: skipped '{self.fragment_key}' "
            f"({self.fragment_tokens:,} tokens, {self.remaining_tokens:,} remaining)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fragment_key": self.fragment_key,
            "phase": self.phase,
            "action": self.action,
            "fragment_tokens": self.fragment_tokens,
            "remaining_tokens": self.remaining_tokens,
            "kept_tokens": self.kept_tokens,
            "message": self.message,
        }


@dataclass
class AssemblyResult:
    """Bounded prompt context for one document type, plus its metrics."""
    document_type: str
    text: str
    total_tokens: int
    included_fragment_keys: List[str]
    phase_reached: int
    utilization_percentage: float
    available_budget: int
    tier: BudgetTier
    profile: ModelProfile
    fragment_tokens: Dict[str, int] = field(default_factory=dict)
    overflow_warnings: List[OverflowTruncationWarning] = field(default_factory=list)
    phases_run: List[int] = field(default_factory=list)
    store_version: int = 0

    @property
    def truncated(self) -> bool:
        return any(w.action == "truncated" for w in self.overflow_warnings)

    @property
    def budget_display(self) -> str:
        return format_budget(self.total_tokens, self.available_budget)

    def copy(self) -> "AssemblyResult":
        """Copy that owns its lists, so edits never reach a cached result."""
        return replace(
            self,
            included_fragment_keys=list(self.included_fragment_keys),
            fragment_tokens=dict(self.fragment_tokens),
            overflow_warnings=list(self.overflow_warnings),
            phases_run=list(self.phases_run),
        )

    def to_dict(self, include_text: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "document_type": self.document_type,
            "total_tokens": self.total_tokens,
            "available_budget": self.available_budget,
            "utilization_percentage": round(self.utilization_percentage, 2),
            "budget_utilization": self.budget_display,
            "tier": self.tier.value,
            "phase_reached": self.phase_reached,
            "phases_run": list(self.phases_run),
            "included_fragment_keys": list(self.included_fragment_keys),
            "fragment_tokens": dict(self.fragment_tokens),
            "overflow_warnings": [w.to_dict() for w in self.overflow_warnings],
            "model": self.profile.to_dict(),
        }
        if include_text:
            payload["text"] = self.text
        return payload


@dataclass
class UtilizationReport:
    """Diagnostics derived from one assembly."""
    document_type: str
    total_tokens: int
    available_budget: int
    utilization_percentage: float
    level: str
    tier: BudgetTier
    phase_reached: int
    included_contexts: List[str] = field(default_factory=list)
    potential_contexts: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    overflow_warnings: List[OverflowTruncationWarning] = field(default_factory=list)
    fragment_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_type": self.document_type,
            "total_tokens": self.total_tokens,
            "available_budget": self.available_budget,
            "utilization_percentage": round(self.utilization_percentage, 2),
            "level": self.level,
            "tier": self.tier.value,
            "phase_reached": self.phase_reached,
            "included_contexts": list(self.included_contexts),
            "potential_contexts": list(self.potential_contexts),
            "recommendations": list(self.recommendations),
            "overflow_warnings": [w.to_dict() for w in self.overflow_warnings],
            "fragment_breakdown": list(self.fragment_breakdown),
        }
