"""
Unit tests for model_resolver.py module.
"""

import pytest

from llamactl.frameworks_drivers.model_resolver import ModelResolver
from llamactl.shared.errors import AmbiguousModelError, ModelNotFoundError


@pytest.fixture
def resolver(repository, make_model):
    make_model("Qwen2.5-7B-Instruct-Q4_K_M", mtime=3_000)
    make_model("Qwen2.5-Coder-7B-Q4_K_M", mtime=2_000)
    make_model("llama-3-8b", mtime=1_000)
    return ModelResolver(repository)


class TestModelResolver:
    """Test ModelResolver class."""

    def test_resolve_exact_match(self, resolver):
        """Test that an exact name resolves to itself."""
        assert resolver.resolve("llama-3-8b") == "llama-3-8b"

    def test_resolve_exact_match_case_insensitive(self, resolver):
        assert resolver.resolve("LLAMA-3-8B") == "llama-3-8b"

    def test_resolve_unique_substring(self, resolver):
        """Test resolving a fragment contained in exactly one name."""
        assert resolver.resolve("coder") == "Qwen2.5-Coder-7B-Q4_K_M"

    def test_resolve_with_whitespace(self, resolver):
        assert resolver.resolve("  llama  ") == "llama-3-8b"

    def test_resolve_ambiguous(self, resolver):
        """Test that a fragment matching several models raises."""
        with pytest.raises(AmbiguousModelError) as exc_info:
            resolver.resolve("qwen")
        assert set(exc_info.value.matches) == {"Qwen2.5-7B-Instruct-Q4_K_M", "Qwen2.5-Coder-7B-Q4_K_M"}

    def test_resolve_not_found_lists_suggestions(self, resolver):
        """Test that no match raises with the available models, newest first."""
        with pytest.raises(ModelNotFoundError) as exc_info:
            resolver.resolve("mistral")
        assert exc_info.value.available == [
            "Qwen2.5-7B-Instruct-Q4_K_M",
            "Qwen2.5-Coder-7B-Q4_K_M",
            "llama-3-8b",
        ]

    def test_resolve_suggestions_are_capped(self, repository, make_model):
        for i in range(15):
            make_model(f"model-{i:02d}", mtime=1_000 + i)
        with pytest.raises(ModelNotFoundError) as exc_info:
            ModelResolver(repository).resolve("missing")
        assert len(exc_info.value.available) == ModelResolver.MAX_SUGGESTIONS

    @pytest.mark.parametrize("query", ["", "   "])
    def test_resolve_empty_query(self, resolver, query):
        """Test that an empty query is rejected."""
        with pytest.raises(ValueError, match="Model query cannot be empty"):
            resolver.resolve(query)
