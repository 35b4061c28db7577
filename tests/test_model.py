"""Tests for the TransformerLM model.

Tests model assembly, parameter counting, and cached forward passes.
"""

import jax
import jax.numpy as jnp
import pytest

from cadence.config import TINY_CONFIG, TransformerConfig
from cadence.model.transformer import TransformerLM, count_params, create_model, make_forward

GQA_CONFIG = TransformerConfig(
    vocab_size=64,
    hidden_dim=64,
    num_heads=4,
    num_kv_heads=1,
    num_layers=3,
    ffn_dim=96,
    max_seq_len=32,
    tie_word_embeddings=False,
)


class TestTransformerLM:
    """Tests for the full TransformerLM model."""

    def test_forward_shape(self) -> None:
        """Output logits should have shape [batch, seq_len, vocab_size]."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))

        input_ids = jax.random.randint(jax.random.PRNGKey(1), (2, 8), 0, TINY_CONFIG.vocab_size)
        logits = model.apply(variables, input_ids)

        assert logits.shape == (2, 8, TINY_CONFIG.vocab_size)

    @pytest.mark.parametrize("config", [TINY_CONFIG, GQA_CONFIG])
    def test_parameter_count(self, config: TransformerConfig) -> None:
        """Actual parameter count should match the estimate exactly (no biases)."""
        _, variables = create_model(config, jax.random.PRNGKey(0))

        assert count_params(variables) == config.num_params()

    @pytest.mark.parametrize("config", [TINY_CONFIG, GQA_CONFIG])
    def test_kv_cache_consistency(self, config: TransformerConfig) -> None:
        """Prefill plus cached single-token steps produce the full-pass logits."""
        model, variables = create_model(config, jax.random.PRNGKey(0))
        input_ids = jax.random.randint(jax.random.PRNGKey(1), (1, 6), 0, config.vocab_size)

        full_logits = model.apply(variables, input_ids)

        cache = model.init_cache()
        cached_logits = [model.apply(variables, input_ids[:, :3], cache=cache)]
        for i in range(3, 6):
            cached_logits.append(model.apply(variables, input_ids[:, i : i + 1], cache=cache))

        assert jnp.allclose(full_logits, jnp.concatenate(cached_logits, axis=1), atol=1e-4)

    def test_every_layer_cache_advances(self) -> None:
        """One forward call appends the same number of positions to every layer."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        cache = model.init_cache()

        model.apply(variables, jnp.array([[5, 6, 7, 8]]), cache=cache)
        model.apply(variables, jnp.array([[9]]), cache=cache)

        assert len(cache) == TINY_CONFIG.num_layers
        assert [layer.offset for layer in cache] == [5] * TINY_CONFIG.num_layers
        assert cache[0].keys.shape == (1, TINY_CONFIG.kv_heads, 5, TINY_CONFIG.head_dim)

    def test_wrong_cache_count_fails(self) -> None:
        """Passing a cache list of the wrong length is a wiring bug."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        cache = model.init_cache()[:-1]

        with pytest.raises(AssertionError):
            model.apply(variables, jnp.array([[1, 2]]), cache=cache)

    def test_deterministic_output(self) -> None:
        """Same inputs should produce same outputs."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        input_ids = jnp.array([[1, 2, 3, 4]])

        assert jnp.allclose(model.apply(variables, input_ids), model.apply(variables, input_ids))


class TestModelCreation:
    """Tests for model creation utilities."""

    def test_create_model_returns_tuple(self) -> None:
        """create_model should return (model, variables) tuple."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))

        assert isinstance(model, TransformerLM)
        assert "params" in variables

    def test_different_seeds_different_params(self) -> None:
        """Different random seeds should produce different parameters."""
        _, variables1 = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        _, variables2 = create_model(TINY_CONFIG, jax.random.PRNGKey(1))

        leaves1 = jax.tree_util.tree_leaves(variables1)
        leaves2 = jax.tree_util.tree_leaves(variables2)
        assert any(not jnp.allclose(a, b) for a, b in zip(leaves1, leaves2))

    def test_make_forward(self) -> None:
        """make_forward binds params and threads the cache through."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        forward = make_forward(model, variables["params"])
        cache = model.init_cache()

        logits = forward(jnp.array([[1, 2, 3]]), cache)

        assert logits.shape == (1, 3, TINY_CONFIG.vocab_size)
        assert all(layer.offset == 3 for layer in cache)


class TestConfig:
    """Tests for configuration validation and presets."""

    def test_head_dim_derived(self) -> None:
        """head_dim defaults to hidden_dim // num_heads."""
        assert TINY_CONFIG.head_dim == TINY_CONFIG.hidden_dim // TINY_CONFIG.num_heads
        assert TINY_CONFIG.kv_heads == TINY_CONFIG.num_heads

    def test_explicit_head_size(self) -> None:
        """An explicit head_size overrides the derived value."""
        config = TransformerConfig(vocab_size=10, hidden_dim=60, num_heads=4, num_layers=1, ffn_dim=8, head_size=16)
        assert config.head_dim == 16

    def test_invalid_head_split(self) -> None:
        """hidden_dim must divide evenly across heads."""
        with pytest.raises(AssertionError):
            TransformerConfig(vocab_size=10, hidden_dim=30, num_heads=4, num_layers=1, ffn_dim=8)

    def test_invalid_kv_heads(self) -> None:
        """num_heads must be a multiple of num_kv_heads."""
        with pytest.raises(AssertionError):
            TransformerConfig(vocab_size=10, hidden_dim=64, num_heads=4, num_kv_heads=3, num_layers=1, ffn_dim=8)

    def test_tiny_config_builds(self) -> None:
        """TINY_CONFIG should create a valid model."""
        model, variables = create_model(TINY_CONFIG, jax.random.PRNGKey(0))
        logits = model.apply(variables, jnp.array([[1, 2, 3]]))
        assert logits.shape == (1, 3, TINY_CONFIG.vocab_size)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
