"""Tests for model profiles, the capability registry and tiering."""

import pytest

from docctx.exceptions import ValidationError
from docctx.model_registry import (
    ModelCapabilityRegistry,
    classify_tier,
    default_reserve,
)
from docctx.models import BudgetTier, ModelProfile


class TestModelProfile:
    def test_available_tokens(self):
        profile = ModelProfile("test", "small", 8000, 2000)
        assert profile.available_tokens == 6000
        assert profile.key == "test/small"

    def test_reserve_must_be_below_max(self):
        with pytest.raises(ValidationError):
            ModelProfile("test", "bad", 4000, 4000)

    def test_max_must_be_positive(self):
        with pytest.raises(ValidationError):
            ModelProfile("test", "bad", 0, 0)

    def test_negative_reserve(self):
        with pytest.raises(ValidationError):
            ModelProfile("test", "bad", 4000, -1)


class TestDefaultReserve:
    def test_small_window(self):
        assert default_reserve(8192) == 2000
        assert default_reserve(4000) == 1000

    def test_mid_window(self):
        assert default_reserve(128_000) == 4096

    def test_ultra_window(self):
        assert default_reserve(2_097_152) == 10_000


class TestClassifyTier:
    def test_boundaries(self):
        assert classify_tier(10_000) is BudgetTier.STANDARD
        assert classify_tier(49_999) is BudgetTier.STANDARD
        assert classify_tier(50_000) is BudgetTier.LARGE
        assert classify_tier(200_000) is BudgetTier.LARGE
        assert classify_tier(200_001) is BudgetTier.ULTRA_LARGE

    def test_custom_thresholds(self):
        assert classify_tier(20_000, standard_max_tokens=10_000) is BudgetTier.LARGE


class TestModelCapabilityRegistry:
    """Test lookup resolution."""

    def test_exact_lookup(self):
        profile = ModelCapabilityRegistry().lookup("openai", "gpt-4o")
        assert profile.max_context_tokens == 128_000
        assert not profile.is_default

    def test_lookup_is_case_insensitive(self):
        profile = ModelCapabilityRegistry().lookup("OpenAI", "GPT-4o")
        assert profile.model == "gpt-4o"

    def test_dated_snapshot_resolves_by_prefix(self):
        profile = ModelCapabilityRegistry().lookup("openai", "gpt-4o-2024-08-06")
        assert profile.model == "gpt-4o"

    def test_longest_prefix_wins(self):
        profile = ModelCapabilityRegistry().lookup("openai", "gpt-4o-mini-2024-07-18")
        assert profile.model == "gpt-4o-mini"

    def test_same_model_other_provider(self):
        profile = ModelCapabilityRegistry().lookup("openrouter", "gemini-1.5-pro")
        assert profile.provider == "google"

    def test_unknown_model_falls_back_to_default(self):
        profile = ModelCapabilityRegistry().lookup("acme", "mystery-1")
        assert profile.is_default
        assert profile.max_context_tokens == 8000
        assert profile.reserved_output_tokens == 2000
        assert classify_tier(profile.available_tokens) is BudgetTier.STANDARD

    def test_get_returns_none_for_unknown(self):
        assert ModelCapabilityRegistry().get("acme", "mystery-1") is None

    def test_register_custom_profile(self):
        registry = ModelCapabilityRegistry()
        registry.register(ModelProfile("acme", "mystery-1", 64_000, 4_000))
        assert registry.lookup("acme", "mystery-1").available_tokens == 60_000

    def test_custom_profiles_override_table(self):
        registry = ModelCapabilityRegistry([ModelProfile("openai", "gpt-4o", 32_000, 2_000)])
        assert registry.lookup("openai", "gpt-4o").max_context_tokens == 32_000

    def test_tiers_of_known_models(self):
        registry = ModelCapabilityRegistry()
        assert classify_tier(registry.lookup("openai", "gpt-4").available_tokens) is BudgetTier.STANDARD
        assert classify_tier(registry.lookup("openai", "gpt-4o").available_tokens) is BudgetTier.LARGE
        assert classify_tier(
            registry.lookup("google", "gemini-1.5-pro").available_tokens
        ) is BudgetTier.ULTRA_LARGE

    def test_list_profiles_sorted_by_window(self):
        profiles = ModelCapabilityRegistry().list_profiles()
        windows = [p.max_context_tokens for p in profiles]
        assert windows == sorted(windows)
