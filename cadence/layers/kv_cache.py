"""Growing key/value cache for incremental decoding.

Each attention layer owns one :class:`KVCache` for the lifetime of a
generation session. The prefill call appends every prompt position at once;
each decode step then appends exactly one position, so only the newest
token's projections are ever recomputed.
"""

import chex
import jax.numpy as jnp

Array = jnp.ndarray


class KVCache:
    """Append-only key/value storage for a single attention layer.

    Keys and values are stored with shape [batch, kv_heads, offset, head_dim].
    The cache has no capacity limit and never evicts; its length is bounded by
    the prompt plus the session's token budget.

    Attributes:
        offset: Number of positions written so far. Always equal to the
            sequence length of both stored tensors.
    """

    def __init__(self) -> None:
        self.keys: Array | None = None
        self.values: Array | None = None
        self.offset = 0

    @property
    def is_empty(self) -> bool:
        """Whether nothing has been written yet."""
        return self.keys is None

    @property
    def state(self) -> tuple[Array | None, Array | None]:
        """The accumulated (keys, values) pair."""
        return self.keys, self.values

    @property
    def nbytes(self) -> int:
        """Device bytes held by the cached tensors."""
        if self.keys is None:
            return 0
        return self.keys.nbytes + self.values.nbytes

    def update(self, keys: Array, values: Array) -> tuple[Array, Array]:
        """Append new positions and return the full cached tensors.

        Args:
            keys: New keys [batch, kv_heads, new_len, head_dim].
            values: New values with the same shape as ``keys``.

        Returns:
            Tuple of all keys and all values written so far, each
            [batch, kv_heads, offset, head_dim].

        Raises:
            AssertionError: If the new tensors disagree with each other or
                with the stored tensors outside the sequence axis. This is a
                model wiring bug and is not meant to be recovered from.
        """
        chex.assert_rank([keys, values], 4)
        chex.assert_equal_shape([keys, values])

        if self.keys is None:
            self.keys = keys
            self.values = values
        else:
            batch, heads, _, head_dim = self.keys.shape
            chex.assert_shape([keys, values], (batch, heads, None, head_dim))
            chex.assert_type([keys, values], self.keys.dtype)
            self.keys = jnp.concatenate([self.keys, keys], axis=2)
            self.values = jnp.concatenate([self.values, values], axis=2)

        self.offset += keys.shape[2]
        return self.keys, self.values


def make_cache(num_layers: int) -> list[KVCache]:
    """Create one empty cache per layer."""
    return [KVCache() for _ in range(num_layers)]
