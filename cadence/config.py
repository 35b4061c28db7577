"""Typed configuration classes for models and generation.

Uses chex.dataclass for immutable, type-checked configuration objects. The
architecture config keeps one internal naming scheme; per-family JSON key
names are translated by the decoders in :mod:`cadence.registry`.
"""

import chex


class ConfigurationError(ValueError):
    """Raised when a model configuration cannot be decoded or is invalid.

    Configuration errors are never retried: they surface before any
    generation session starts and leave no partially initialized model.
    """


@chex.dataclass(frozen=True)
class QuantizationConfig:
    """Quantization block declared in a model's ``config.json``.

    Attributes:
        group_size: Number of weights sharing one scale/bias pair.
        bits: Bits per quantized weight.
    """

    group_size: int = 64
    bits: int = 4


@chex.dataclass(frozen=True)
class TransformerConfig:
    """Configuration for a decoder-only Transformer language model.

    Attributes:
        vocab_size: Size of the vocabulary (number of unique tokens).
        hidden_dim: Dimension of the model's hidden representations (d_model).
        num_heads: Number of query heads.
        num_kv_heads: Number of key/value heads. ``None`` means one per query
            head (plain multi-head attention); fewer heads give grouped-query
            attention.
        num_layers: Number of transformer blocks in the decoder stack.
        ffn_dim: Dimension of the SwiGLU feed-forward hidden layer.
        max_seq_len: Maximum sequence length the model was trained for.
        head_size: Explicit per-head dimension. ``None`` derives it from
            ``hidden_dim // num_heads``.
        tie_word_embeddings: Whether the output projection reuses the
            input embedding matrix.
        rope_theta: Base for RoPE frequency computation.
        rope_scale: Multiplier applied to positions before rotation
            (``1 / factor`` for linear RoPE scaling).
        rope_traditional: Rotate interleaved dimension pairs instead of the
            two halves of each head.
        layer_norm_epsilon: Epsilon for numerical stability in RMSNorm.
        attention_bias: Whether attention projections carry a bias.
        ffn_bias: Whether feed-forward projections carry a bias.
        model_type: Architecture tag the config was decoded for.
        quantization: Optional quantization block from the JSON document.
    """

    vocab_size: int = 32000
    hidden_dim: int = 512
    num_heads: int = 8
    num_kv_heads: int | None = None
    num_layers: int = 6
    ffn_dim: int = 1376  # ~8/3 * hidden_dim for SwiGLU
    max_seq_len: int = 2048
    head_size: int | None = None
    tie_word_embeddings: bool = True
    rope_theta: float = 10000.0
    rope_scale: float = 1.0
    rope_traditional: bool = False
    layer_norm_epsilon: float = 1e-6
    attention_bias: bool = False
    ffn_bias: bool = False
    model_type: str = "llama"
    quantization: QuantizationConfig | None = None

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        assert self.vocab_size > 0, "vocab_size must be positive"
        assert self.num_layers > 0, "num_layers must be positive"
        assert self.num_heads > 0, "num_heads must be positive"
        if self.head_size is None:
            assert self.hidden_dim % self.num_heads == 0, (
                f"hidden_dim ({self.hidden_dim}) must be divisible by num_heads ({self.num_heads})"
            )
        assert self.head_dim % 2 == 0, f"head_dim ({self.head_dim}) must be even for RoPE"
        assert self.kv_heads > 0, "num_kv_heads must be positive"
        assert self.num_heads % self.kv_heads == 0, (
            f"num_heads ({self.num_heads}) must be a multiple of num_kv_heads ({self.kv_heads})"
        )
        assert self.rope_scale > 0.0, "rope_scale must be positive"

    @property
    def head_dim(self) -> int:
        """Dimension of each attention head."""
        if self.head_size is not None:
            return self.head_size
        return self.hidden_dim // self.num_heads

    @property
    def kv_heads(self) -> int:
        """Number of key/value heads actually stored in the cache."""
        return self.num_kv_heads if self.num_kv_heads is not None else self.num_heads

    def num_params(self, include_embeddings: bool = True) -> int:
        """Estimate the number of parameters in the model.

        Args:
            include_embeddings: Whether to count embedding parameters.

        Returns:
            Estimated parameter count.
        """
        embed_params = self.vocab_size * self.hidden_dim if include_embeddings else 0

        # Per-layer parameters:
        # - Attention: Q and O use all heads, K and V only the kv heads
        # - FFN (SwiGLU): gate, up, down = 3 * hidden_dim * ffn_dim
        # - RMSNorm: 2 * hidden_dim (attn_norm + ffn_norm)
        q_dim = self.num_heads * self.head_dim
        kv_dim = self.kv_heads * self.head_dim
        attn_params = 2 * self.hidden_dim * q_dim + 2 * self.hidden_dim * kv_dim
        ffn_params = 3 * self.hidden_dim * self.ffn_dim
        norm_params = 2 * self.hidden_dim
        layer_params = attn_params + ffn_params + norm_params

        output_params = 0 if self.tie_word_embeddings else self.vocab_size * self.hidden_dim
        final_norm_params = self.hidden_dim

        return embed_params + self.num_layers * layer_params + output_params + final_norm_params


@chex.dataclass(frozen=True)
class GenerateParameters:
    """Parameters controlling a generation session.

    Attributes:
        temperature: Sampling temperature. ``0.0`` selects the arg-max token.
        top_k: If set, only sample from the top k tokens.
        top_p: If set, nucleus sampling threshold.
        max_tokens: Hard upper bound on the number of sampled tokens.
        update_interval: Minimum seconds between two streamed text chunks.
        stats_interval: Minimum seconds between two statistics records.
        seed: Fixed RNG seed. ``None`` seeds every session from the clock so
            each generation produces something new.
    """

    temperature: float = 0.6
    top_k: int | None = None
    top_p: float | None = None
    max_tokens: int = 240
    update_interval: float = 0.25
    stats_interval: float = 0.25
    seed: int | None = None

    def __post_init__(self) -> None:
        """Validate generation parameters."""
        assert self.temperature >= 0.0, "temperature must be non-negative"
        assert self.max_tokens >= 0, "max_tokens must be non-negative"
        assert self.update_interval >= 0.0, "update_interval must be non-negative"
        assert self.stats_interval >= 0.0, "stats_interval must be non-negative"
        if self.top_p is not None:
            assert 0.0 < self.top_p <= 1.0, "top_p must be in (0, 1]"


# Preset configurations for common model sizes
TINY_CONFIG = TransformerConfig(
    vocab_size=256,  # Character-level
    hidden_dim=128,
    num_heads=4,
    num_layers=4,
    ffn_dim=344,  # ~8/3 * 128
    max_seq_len=256,
)

SMALL_CONFIG = TransformerConfig(
    vocab_size=32000,
    hidden_dim=512,
    num_heads=8,
    num_kv_heads=2,
    num_layers=6,
    ffn_dim=1376,
    max_seq_len=2048,
)
