"""Model capability registry.

Maps a provider/model pair to its context window and the number of tokens
held back for the response. Unknown pairs degrade to a conservative
default profile instead of failing, so a new model name never stops a
generation run.

Example usage:
    registry = ModelCapabilityRegistry()
    profile = registry.lookup("google", "gemini-1.5-pro")
    profile.available_tokens  # 2,087,152
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from docctx.logger import get_logger
from docctx.models import BudgetTier, ModelProfile

logger = get_logger()

DEFAULT_MAX_CONTEXT = 8_000
DEFAULT_RESERVED_OUTPUT = 2_000

STANDARD_MAX_TOKENS = 50_000
ULTRA_MIN_TOKENS = 200_000


def default_reserve(max_context_tokens: int) -> int:
    """Output reserve that scales with the window size.

    Small windows keep a fixed 2K (never more than a quarter of the
    window), mid-size windows 4K, and ultra-large windows 10K.
    """
    if max_context_tokens <= 32_768:
        return min(2_000, max_context_tokens // 4)
    if max_context_tokens <= 262_144:
        return 4_096
    return 10_000


def classify_tier(
    available_tokens: int,
    standard_max_tokens: int = STANDARD_MAX_TOKENS,
    ultra_min_tokens: int = ULTRA_MIN_TOKENS,
) -> BudgetTier:
    """Classify an available budget into standard / large / ultra-large."""
    if available_tokens < standard_max_tokens:
        return BudgetTier.STANDARD
    if available_tokens > ultra_min_tokens:
        return BudgetTier.ULTRA_LARGE
    return BudgetTier.LARGE


def _profile(provider: str, model: str, max_context: int) -> ModelProfile:
    return ModelProfile(
        provider=provider,
        model=model,
        max_context_tokens=max_context,
        reserved_output_tokens=default_reserve(max_context),
    )


class ModelCapabilityRegistry:
    """Static lookup of provider/model → ModelProfile."""

    PROFILES: Dict[Tuple[str, str], ModelProfile] = {
        (p.provider, p.model): p
        for p in [
            # OpenAI
            _profile("openai", "gpt-3.5-turbo", 16_385),
            _profile("openai", "gpt-4", 8_192),
            _profile("openai", "gpt-4-32k", 32_768),
            _profile("openai", "gpt-4-turbo", 128_000),
            _profile("openai", "gpt-4o", 128_000),
            _profile("openai", "gpt-4o-mini", 128_000),
            _profile("openai", "gpt-4.1", 1_047_576),
            _profile("openai", "gpt-4.1-mini", 1_047_576),
            _profile("openai", "o3", 200_000),
            _profile("openai", "o4-mini", 200_000),
            # Azure OpenAI deployments
            _profile("azure-openai", "gpt-35-turbo", 16_385),
            _profile("azure-openai", "gpt-4", 8_192),
            _profile("azure-openai", "gpt-4o", 128_000),
            # Google
            _profile("google", "gemini-1.5-flash", 1_048_576),
            _profile("google", "gemini-1.5-pro", 2_097_152),
            _profile("google", "gemini-2.0-flash", 1_048_576),
            _profile("google", "gemini-2.5-pro", 1_048_576),
            # Anthropic
            _profile("anthropic", "claude-3-haiku", 200_000),
            _profile("anthropic", "claude-3-sonnet", 200_000),
            _profile("anthropic", "claude-3-opus", 200_000),
            _profile("anthropic", "claude-3-5-sonnet", 200_000),
            # Ollama (local)
            _profile("ollama", "llama3", 8_192),
            _profile("ollama", "mistral", 32_768),
            _profile("ollama", "llama3.1", 131_072),
            _profile("ollama", "llama3.2", 131_072),
            _profile("ollama", "qwen2.5", 131_072),
            _profile("ollama", "phi3", 131_072),
        ]
    }

    def __init__(
        self,
        custom_profiles: Optional[List[ModelProfile]] = None,
        default_max_context: int = DEFAULT_MAX_CONTEXT,
        default_reserved_output: int = DEFAULT_RESERVED_OUTPUT,
    ):
        """Initialize the registry with optional extra or overriding profiles.

        Args:
            custom_profiles: Profiles added on top of (or replacing) the table
            default_max_context: Window assumed for unknown models
            default_reserved_output: Reserve assumed for unknown models
        """
        self.profiles: Dict[Tuple[str, str], ModelProfile] = dict(self.PROFILES)
        for profile in custom_profiles or []:
            self.register(profile)
        self.default_max_context = default_max_context
        self.default_reserved_output = default_reserved_output

    def register(self, profile: ModelProfile) -> None:
        """Add or replace a profile."""
        key = (profile.provider.lower(), profile.model.lower())
        self.profiles[key] = profile

    def get(self, provider: str, model: str) -> Optional[ModelProfile]:
        """Exact lookup; None when the pair is not in the table."""
        return self.profiles.get((provider.lower(), model.lower()))

    def lookup(self, provider: str, model: str) -> ModelProfile:
        """Return the profile for *provider*/*model*, never failing.

        Resolution order: exact pair, longest model-name prefix for the same
        provider (dated snapshots such as ``gpt-4o-2024-08-06``), the same
        model under any provider, then the conservative default.
        """
        provider_l = (provider or "").lower()
        model_l = (model or "").lower()

        exact = self.profiles.get((provider_l, model_l))
        if exact is not None:
            return exact

        best: Optional[ModelProfile] = None
        best_len = 0
        for (p, m), profile in self.profiles.items():
            if p == provider_l and model_l.startswith(m) and len(m) > best_len:
                best, best_len = profile, len(m)
        if best is not None:
            logger.debug(f"Resolved {provider}/{model} to {best.key} by prefix")
            return best

        # Same model served by another provider (e.g. a proxy)
        for (p, m), profile in sorted(self.profiles.items()):
            if m == model_l:
                logger.debug(f"Resolved {provider}/{model} to {profile.key} by model name")
                return profile

        logger.warning(
            f"Unknown model {provider}/{model}; using default "
            f"{self.default_max_context:,}-token profile"
        )
        return self.default_profile(provider or "default", model or "default")

    def default_profile(self, provider: str = "default", model: str = "default") -> ModelProfile:
        """The conservative fallback profile (standard tier)."""
        return ModelProfile(
            provider=provider,
            model=model,
            max_context_tokens=self.default_max_context,
            reserved_output_tokens=self.default_reserved_output,
            is_default=True,
        )

    def list_profiles(self) -> List[ModelProfile]:
        """All known profiles, smallest window first."""
        return sorted(
            self.profiles.values(),
            key=lambda p: (p.max_context_tokens, p.provider, p.model),
        )
