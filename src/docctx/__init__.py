"""docctx: token-budgeted context assembly for LLM document generation."""

__version__ = "0.3.0"

from docctx.context_engine import ContextAssemblyEngine, ContextBuilder
from docctx.exceptions import (
    ConfigError,
    DiscoveryIOError,
    DocctxError,
    MissingCoreContextError,
    ValidationError,
)
from docctx.model_registry import ModelCapabilityRegistry
from docctx.models import (
    AssemblyResult,
    BudgetTier,
    ContextFragment,
    FragmentCategory,
    KnownFragmentKey,
    ModelProfile,
    OverflowTruncationWarning,
    UtilizationReport,
)
from docctx.store import ContextStore

__all__ = [
    "__version__",
    "AssemblyResult",
    "BudgetTier",
    "ConfigError",
    "ContextAssemblyEngine",
    "ContextBuilder",
    "ContextFragment",
    "ContextStore",
    "DiscoveryIOError",
    "DocctxError",
    "FragmentCategory",
    "KnownFragmentKey",
    "MissingCoreContextError",
    "ModelCapabilityRegistry",
    "ModelProfile",
    "OverflowTruncationWarning",
    "UtilizationReport",
]
