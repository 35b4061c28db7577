"""SwiGLU feed-forward network (the "MLP" of each decoder block).

Reference: https://arxiv.org/abs/2002.05202
"""

import jax.numpy as jnp
from flax import linen as nn

from cadence.config import TransformerConfig

Array = jnp.ndarray


class FeedForward(nn.Module):
    """Gated feed-forward network: ``down(SiLU(gate(x)) * up(x))``.

    Attributes:
        config: Transformer configuration. ``ffn_dim`` sets the hidden width
            and ``ffn_bias`` whether the projections carry a bias.
    """

    config: TransformerConfig

    @nn.compact
    def __call__(self, x: Array) -> Array:
        """Apply the SwiGLU transformation.

        Args:
            x: Input tensor of shape [batch, seq_len, hidden_dim].

        Returns:
            Output tensor of the same shape.
        """

        def dense(features: int, name: str) -> nn.Dense:
            return nn.Dense(
                features,
                use_bias=self.config.ffn_bias,
                kernel_init=nn.initializers.xavier_uniform(),
                name=name,
            )

        gate = dense(self.config.ffn_dim, "gate_proj")(x)
        up = dense(self.config.ffn_dim, "up_proj")(x)
        return dense(self.config.hidden_dim, "down_proj")(nn.silu(gate) * up)
