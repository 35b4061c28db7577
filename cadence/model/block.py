"""Transformer Block: Attention + FFN with pre-norm residual connections."""

import jax.numpy as jnp
from flax import linen as nn

from cadence.config import TransformerConfig
from cadence.layers.attention import MultiHeadAttention
from cadence.layers.feedforward import FeedForward
from cadence.layers.kv_cache import KVCache
from cadence.layers.normalization import RMSNorm

Array = jnp.ndarray


class TransformerBlock(nn.Module):
    """Single Transformer decoder block.

    Architecture (Pre-Norm):
        x -> RMSNorm -> Attention -> + -> RMSNorm -> FFN -> +
        |______________________________|__________________|

    Attributes:
        config: Transformer configuration.
    """

    config: TransformerConfig

    def setup(self) -> None:
        """Initialize sublayers."""
        hidden_dim = self.config.hidden_dim
        epsilon = self.config.layer_norm_epsilon
        self.attn_norm = RMSNorm(features=hidden_dim, epsilon=epsilon, name="attn_norm")
        self.attention = MultiHeadAttention(config=self.config, name="attention")
        self.ffn_norm = RMSNorm(features=hidden_dim, epsilon=epsilon, name="ffn_norm")
        self.ffn = FeedForward(config=self.config, name="ffn")

    def __call__(self, x: Array, cache: KVCache | None = None) -> Array:
        """Apply transformer block.

        Args:
            x: Input tensor [batch, seq_len, hidden_dim].
            cache: Optional KV-Cache of this block's attention layer.

        Returns:
            Output tensor [batch, seq_len, hidden_dim].
        """
        h = x + self.attention(self.attn_norm(x), cache=cache)
        return h + self.ffn(self.ffn_norm(h))
