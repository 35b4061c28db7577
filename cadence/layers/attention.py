"""Grouped-query attention with Rotary Positional Embeddings (RoPE).

This module implements the attention block shared by every registered
architecture:
- Scaled dot-product attention with causal masking
- Rotary Positional Embeddings, offset by the cache position so that a
  continued session keeps globally consistent positions
- Grouped-query attention (fewer key/value heads than query heads)
- An append-only KV-Cache per layer

References:
- RoPE: https://arxiv.org/abs/2104.09864
- GQA: https://arxiv.org/abs/2305.13245
"""

import jax
import jax.numpy as jnp
from flax import linen as nn

from cadence.config import TransformerConfig
from cadence.layers.kv_cache import KVCache

Array = jnp.ndarray


class RotaryPositionalEmbedding(nn.Module):
    """Rotary Positional Embedding (RoPE).

    Rotates query and key vectors so their dot product depends on relative
    position. Two layouts are supported: the default rotates the first half
    of each head against the second half, the ``traditional`` layout rotates
    interleaved (even, odd) dimension pairs.

    Attributes:
        config: Transformer configuration.
    """

    config: TransformerConfig

    def setup(self) -> None:
        """Precompute rotation frequencies."""
        head_dim = self.config.head_dim
        theta = self.config.rope_theta

        # freqs[i] = theta^(-2i/d) for i in [0, d/2)
        dim_pairs = head_dim // 2
        self.inv_freq = 1.0 / (theta ** (jnp.arange(0, dim_pairs) * 2.0 / head_dim))

    def __call__(self, x: Array, offset: int = 0) -> Array:
        """Apply rotary positional embedding.

        Args:
            x: Input tensor of shape [batch, num_heads, seq_len, head_dim].
            offset: Position of the first element of ``x`` in the sequence.

        Returns:
            Tensor with rotary position encoding applied.
        """
        seq_len = x.shape[2]
        positions = jnp.arange(offset, offset + seq_len) * self.config.rope_scale

        # [seq_len, head_dim // 2], broadcast over batch and heads
        angles = jnp.outer(positions, self.inv_freq)
        sin = jnp.sin(angles)[None, None, :, :]
        cos = jnp.cos(angles)[None, None, :, :]

        if self.config.rope_traditional:
            x1 = x[..., 0::2]
            x2 = x[..., 1::2]
            rotated = jnp.stack([x1 * cos - x2 * sin, x1 * sin + x2 * cos], axis=-1)
            return rotated.reshape(x.shape).astype(x.dtype)

        x1, x2 = jnp.split(x, 2, axis=-1)
        rotated = jnp.concatenate([x1 * cos - x2 * sin, x1 * sin + x2 * cos], axis=-1)
        return rotated.astype(x.dtype)


class MultiHeadAttention(nn.Module):
    """Causal self-attention with RoPE, grouped-query heads and KV-Cache.

    Attributes:
        config: Transformer configuration.
    """

    config: TransformerConfig

    def setup(self) -> None:
        """Initialize projection layers and RoPE."""
        num_heads = self.config.num_heads
        kv_heads = self.config.kv_heads
        head_dim = self.config.head_dim
        use_bias = self.config.attention_bias

        def dense(features: int, name: str) -> nn.Dense:
            return nn.Dense(
                features,
                use_bias=use_bias,
                kernel_init=nn.initializers.xavier_uniform(),
                name=name,
            )

        self.q_proj = dense(num_heads * head_dim, "q_proj")
        self.k_proj = dense(kv_heads * head_dim, "k_proj")
        self.v_proj = dense(kv_heads * head_dim, "v_proj")
        self.o_proj = dense(self.config.hidden_dim, "o_proj")
        self.rope = RotaryPositionalEmbedding(config=self.config)

    def __call__(self, x: Array, cache: KVCache | None = None) -> Array:
        """Apply causal self-attention.

        Args:
            x: Input tensor of shape [batch, seq_len, hidden_dim].
            cache: Optional KV-Cache. When given, the new keys/values are
                appended to it and attention runs over every cached position.

        Returns:
            Output tensor of shape [batch, seq_len, hidden_dim].
        """
        batch_size, seq_len, _ = x.shape
        num_heads = self.config.num_heads
        kv_heads = self.config.kv_heads
        head_dim = self.config.head_dim

        # [batch, heads, seq_len, head_dim]
        q = self.q_proj(x).reshape(batch_size, seq_len, num_heads, head_dim).transpose(0, 2, 1, 3)
        k = self.k_proj(x).reshape(batch_size, seq_len, kv_heads, head_dim).transpose(0, 2, 1, 3)
        v = self.v_proj(x).reshape(batch_size, seq_len, kv_heads, head_dim).transpose(0, 2, 1, 3)

        # Positions continue from what the cache already holds
        offset = cache.offset if cache is not None else 0
        q = self.rope(q, offset=offset)
        k = self.rope(k, offset=offset)

        if cache is not None:
            k, v = cache.update(k, v)

        # Grouped-query attention: share each kv head across its query group
        if kv_heads != num_heads:
            repeats = num_heads // kv_heads
            k = jnp.repeat(k, repeats, axis=1)
            v = jnp.repeat(v, repeats, axis=1)

        scale = head_dim**-0.5
        attn_scores = jnp.einsum("bhqd,bhkd->bhqk", q, k) * scale

        # Query i sits at absolute position offset + i and may see keys <= it
        kv_len = k.shape[2]
        q_positions = jnp.arange(offset, offset + seq_len)
        k_positions = jnp.arange(kv_len)
        mask = (q_positions[:, None] >= k_positions[None, :])[None, None, :, :]
        attn_scores = jnp.where(mask, attn_scores, jnp.finfo(attn_scores.dtype).min)

        attn_weights = jax.nn.softmax(attn_scores.astype(jnp.float32), axis=-1).astype(q.dtype)
        output = jnp.einsum("bhqk,bhkd->bhqd", attn_weights, v)

        # [batch, seq_len, num_heads * head_dim]
        output = output.transpose(0, 2, 1, 3).reshape(batch_size, seq_len, -1)
        return self.o_proj(output)
