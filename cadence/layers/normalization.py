"""RMSNorm, the normalization used by every registered architecture.

Reference: https://arxiv.org/abs/1910.07467
"""

import jax
import jax.numpy as jnp
from flax import linen as nn

Array = jnp.ndarray


class RMSNorm(nn.Module):
    """Root Mean Square Layer Normalization.

    Formula:
        RMSNorm(x) = x * rsqrt(mean(x^2) + eps) * scale

    The statistic is computed in float32 and the result cast back to the
    input dtype, so bfloat16 activations normalize the same way.

    Attributes:
        features: Size of the normalized (last) dimension.
        epsilon: Added to the mean square for numerical stability.
    """

    features: int
    epsilon: float = 1e-6

    @nn.compact
    def __call__(self, x: Array) -> Array:
        scale = self.param("scale", nn.initializers.ones, (self.features,))
        x_f32 = x.astype(jnp.float32)
        x_normed = x_f32 * jax.lax.rsqrt(jnp.mean(jnp.square(x_f32), axis=-1, keepdims=True) + self.epsilon)
        return (x_normed * scale).astype(x.dtype)
