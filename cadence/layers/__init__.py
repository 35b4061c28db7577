"""Neural network layers shared by the registered architectures."""

from cadence.layers.attention import MultiHeadAttention, RotaryPositionalEmbedding
from cadence.layers.embeddings import Embeddings
from cadence.layers.feedforward import FeedForward
from cadence.layers.kv_cache import KVCache, make_cache
from cadence.layers.normalization import RMSNorm

__all__ = [
    "RMSNorm",
    "RotaryPositionalEmbedding",
    "MultiHeadAttention",
    "KVCache",
    "make_cache",
    "FeedForward",
    "Embeddings",
]
