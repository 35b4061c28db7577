"""Transformer Language Model: embeddings, decoder stack and output head.

Architecture:
    Token IDs -> Embed -> [TransformerBlock x N] -> RMSNorm -> Unembed -> Logits

Every registered architecture (see :mod:`cadence.registry`) decodes its JSON
configuration into a :class:`~cadence.config.TransformerConfig` and is built
from this module.
"""

import logging
from collections.abc import Callable
from typing import Any

import jax
import jax.numpy as jnp
from flax import linen as nn

from cadence.config import TransformerConfig
from cadence.layers.embeddings import Embeddings
from cadence.layers.kv_cache import KVCache, make_cache
from cadence.layers.normalization import RMSNorm
from cadence.model.block import TransformerBlock

Array = jnp.ndarray
PyTree = Any

# forward(token_ids [batch, seq_len], caches) -> logits [batch, seq_len, vocab]
ForwardFn = Callable[[Array, list[KVCache]], Array]

logger = logging.getLogger(__name__)


class TransformerLM(nn.Module):
    """Decoder-only Transformer Language Model.

    Attributes:
        config: Transformer configuration.
    """

    config: TransformerConfig

    def setup(self) -> None:
        """Initialize all model components."""
        self.embeddings = Embeddings(config=self.config, name="embeddings")
        self.blocks = [
            TransformerBlock(config=self.config, name=f"block_{i}")
            for i in range(self.config.num_layers)
        ]
        self.final_norm = RMSNorm(
            features=self.config.hidden_dim,
            epsilon=self.config.layer_norm_epsilon,
            name="final_norm",
        )

    def __call__(self, input_ids: Array, cache: list[KVCache] | None = None) -> Array:
        """Forward pass through the language model.

        Args:
            input_ids: Token indices [batch, seq_len]. With a cache these are
                only the positions not yet written to it.
            cache: Optional list of KV-Caches, one per layer. Every cache is
                extended by ``seq_len`` positions.

        Returns:
            Logits over vocabulary [batch, seq_len, vocab_size].
        """
        if cache is not None:
            assert len(cache) == len(self.blocks), (
                f"expected {len(self.blocks)} layer caches, got {len(cache)}"
            )

        x = self.embeddings(input_ids)
        for i, block in enumerate(self.blocks):
            x = block(x, cache=cache[i] if cache is not None else None)

        return self.embeddings.unembed(self.final_norm(x))

    def init_cache(self) -> list[KVCache]:
        """Create empty KV-Caches for all layers."""
        return make_cache(self.config.num_layers)


def create_model(config: TransformerConfig, rng: jax.Array) -> tuple[TransformerLM, PyTree]:
    """Create and randomly initialize a TransformerLM model.

    Args:
        config: Transformer configuration.
        rng: Random key for initialization.

    Returns:
        Tuple of (model, variables) where variables is ``{"params": ...}``.
    """
    model = TransformerLM(config=config)
    dummy_input = jnp.zeros((1, 1), dtype=jnp.int32)
    variables = model.init(rng, dummy_input)
    logger.debug("initialized %s model with %d parameters", config.model_type, count_params(variables))
    return model, variables


def make_forward(model: TransformerLM, params: PyTree) -> ForwardFn:
    """Bind parameters to a model and return its evaluation function.

    Args:
        model: TransformerLM model.
        params: Model parameters (just the 'params' dict, not wrapped).

    Returns:
        ``forward(token_ids, caches) -> logits``.
    """

    def forward(token_ids: Array, caches: list[KVCache]) -> Array:
        return model.apply({"params": params}, token_ids, cache=caches)

    return forward


def count_params(params: PyTree) -> int:
    """Count the total number of parameters in a pytree."""
    return sum(x.size for x in jax.tree_util.tree_leaves(params))
