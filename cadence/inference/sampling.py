"""Next-token sampling: greedy, temperature, top-k and top-p (nucleus)."""

import jax
import jax.numpy as jnp

Array = jnp.ndarray


def sample_token(
    logits: Array,
    rng: Array,
    temperature: float = 1.0,
    top_k: int | None = None,
    top_p: float | None = None,
) -> Array:
    """Sample a single token from logits.

    Args:
        logits: Logits for the next token [vocab_size] or [batch, vocab_size].
        rng: Random key for sampling. Unused when ``temperature`` is 0.
        temperature: Sampling temperature. 0 picks the arg-max token
            deterministically; otherwise logits are divided by it before
            the categorical draw.
        top_k: If set, only sample from the top k tokens.
        top_p: If set, sample from the smallest set of tokens whose
            probability mass reaches ``top_p``.

    Returns:
        Sampled token index, [] or [batch].
    """
    if logits.ndim == 1:
        return sample_token(logits[None, :], rng, temperature, top_k, top_p)[0]

    logits = logits.astype(jnp.float32)
    if temperature == 0.0:
        return jnp.argmax(logits, axis=-1)

    batch_size, vocab_size = logits.shape
    neg_inf = jnp.finfo(logits.dtype).min

    if temperature != 1.0:
        logits = logits / temperature

    if top_k is not None and 0 < top_k < vocab_size:
        top_k_logits, _ = jax.lax.top_k(logits, top_k)
        logits = jnp.where(logits < top_k_logits[:, -1:], neg_inf, logits)

    if top_p is not None and top_p < 1.0:
        sorted_indices = jnp.argsort(logits, axis=-1)[:, ::-1]
        sorted_logits = jnp.take_along_axis(logits, sorted_indices, axis=-1)
        cumulative_probs = jnp.cumsum(jax.nn.softmax(sorted_logits, axis=-1), axis=-1)

        # Drop a token once the mass before it already reaches top_p; the
        # most likely token is always kept.
        sorted_mask = cumulative_probs > top_p
        sorted_mask = jnp.concatenate(
            [jnp.zeros((batch_size, 1), dtype=bool), sorted_mask[:, :-1]],
            axis=-1,
        )
        mask = jnp.zeros_like(sorted_mask)
        mask = mask.at[jnp.arange(batch_size)[:, None], sorted_indices].set(sorted_mask)
        logits = jnp.where(mask, neg_inf, logits)

    return jax.random.categorical(rng, logits, axis=-1)
