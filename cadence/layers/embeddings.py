"""Token embeddings and the vocabulary projection.

Reference for weight tying: https://arxiv.org/abs/1608.05859
"""

import jax.numpy as jnp
from flax import linen as nn

from cadence.config import TransformerConfig

Array = jnp.ndarray


class Embeddings(nn.Module):
    """Token embedding table plus the matching output projection.

    With ``tie_word_embeddings`` the transposed embedding matrix doubles as
    the output projection; otherwise a separate ``lm_head`` is created.

    Attributes:
        config: Transformer configuration.
    """

    config: TransformerConfig

    def setup(self) -> None:
        self.embedding = nn.Embed(
            num_embeddings=self.config.vocab_size,
            features=self.config.hidden_dim,
            embedding_init=nn.initializers.normal(stddev=0.02),
            name="token_embedding",
        )
        if not self.config.tie_word_embeddings:
            self.lm_head = nn.Dense(
                self.config.vocab_size,
                use_bias=False,
                kernel_init=nn.initializers.normal(stddev=0.02),
                name="lm_head",
            )

    def __call__(self, input_ids: Array) -> Array:
        """Embed token indices [batch, seq_len] -> [batch, seq_len, hidden_dim]."""
        return self.embedding(input_ids)

    def unembed(self, hidden_states: Array) -> Array:
        """Project hidden states [batch, seq_len, hidden_dim] to vocabulary logits."""
        if self.config.tie_word_embeddings:
            return self.embedding.attend(hidden_states)
        return self.lm_head(hidden_states)
