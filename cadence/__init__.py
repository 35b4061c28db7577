"""Cadence: incremental decoding with a KV-Cache and throttled streaming, in JAX.

This library implements decoder-only Transformer inference:
- RMSNorm, SwiGLU and grouped-query attention with Rotary Positional Embeddings
- An append-only per-layer KV-Cache
- A cancellable generation session that streams text at a bounded rate
- Architectures selected from ``config.json`` through an explicit registry
"""

__version__ = "0.1.0"

from cadence.config import ConfigurationError, GenerateParameters, TransformerConfig

__all__ = ["ConfigurationError", "GenerateParameters", "TransformerConfig", "__version__"]
