"""Transformer model components."""

from cadence.model.block import TransformerBlock
from cadence.model.transformer import TransformerLM, create_model, make_forward

__all__ = ["TransformerBlock", "TransformerLM", "create_model", "make_forward"]
