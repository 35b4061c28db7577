"""Architecture registry: ``model_type`` tags to config decoders and models.

Each model family names its ``config.json`` keys differently. A registered
architecture provides a decoder that maps one family's JSON document onto
:class:`~cadence.config.TransformerConfig`, plus the module class built from
it. The built-in families are registered when this module is imported;
additional ones can be added with :func:`register_model_type` at startup.
"""

import json
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, NamedTuple

from flax import linen as nn

from cadence.config import ConfigurationError, QuantizationConfig, TransformerConfig
from cadence.model.transformer import TransformerLM

logger = logging.getLogger(__name__)

ConfigDecoder = Callable[[Mapping[str, Any]], TransformerConfig]

CONFIG_FILE = "config.json"


class Architecture(NamedTuple):
    """A registered model family."""

    model_type: str
    decode_config: ConfigDecoder
    model_class: type[nn.Module]


_REGISTRY: dict[str, Architecture] = {}


def register_model_type(
    model_type: str,
    decode_config: ConfigDecoder,
    model_class: type[nn.Module] = TransformerLM,
) -> None:
    """Register (or replace) the architecture for a ``model_type`` tag."""
    if model_type in _REGISTRY:
        logger.info("replacing registered architecture %r", model_type)
    _REGISTRY[model_type] = Architecture(model_type, decode_config, model_class)


def get_architecture(model_type: str) -> Architecture:
    """Look up a registered architecture.

    Raises:
        ConfigurationError: If no architecture is registered for the tag.
    """
    try:
        return _REGISTRY[model_type]
    except KeyError:
        known = ", ".join(sorted(_REGISTRY))
        raise ConfigurationError(f"Unsupported model type {model_type!r} (known: {known})") from None


def registered_model_types() -> list[str]:
    """Sorted list of registered ``model_type`` tags."""
    return sorted(_REGISTRY)


def decode_config(document: Mapping[str, Any]) -> TransformerConfig:
    """Decode a parsed ``config.json`` document.

    Args:
        document: The JSON object of a model configuration.

    Returns:
        The validated architecture configuration.

    Raises:
        ConfigurationError: If the document is not an object, lacks a field
            its family requires, or holds invalid values.
    """
    if not isinstance(document, Mapping):
        raise ConfigurationError(f"configuration must be a JSON object, got {type(document).__name__}")
    if "model_type" not in document:
        raise ConfigurationError("configuration is missing 'model_type'")

    architecture = get_architecture(str(document["model_type"]))
    try:
        return architecture.decode_config(document)
    except ConfigurationError:
        raise
    except KeyError as err:
        raise ConfigurationError(
            f"{architecture.model_type} configuration is missing required field {err.args[0]!r}"
        ) from err
    except (AttributeError, TypeError, ValueError, AssertionError) as err:
        raise ConfigurationError(f"invalid {architecture.model_type} configuration: {err}") from err


def load_config(path: str | Path) -> TransformerConfig:
    """Read and decode a model configuration.

    Args:
        path: A ``config.json`` file or a model directory containing one.

    Returns:
        The validated architecture configuration.

    Raises:
        ConfigurationError: If the file is missing or unreadable, is not
            valid UTF-8 JSON, or cannot be decoded.
    """
    path = Path(path)
    if path.is_dir():
        path = path / CONFIG_FILE
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as err:
        raise ConfigurationError(f"configuration file not found: {path}") from err
    except OSError as err:
        raise ConfigurationError(f"cannot read configuration file {path}: {err}") from err
    except UnicodeDecodeError as err:
        raise ConfigurationError(f"configuration file {path} is not valid UTF-8: {err}") from err
    except json.JSONDecodeError as err:
        raise ConfigurationError(f"malformed JSON in {path}: {err}") from err
    return decode_config(document)


def _quantization(document: Mapping[str, Any]) -> QuantizationConfig | None:
    block = document.get("quantization")
    if block is None:
        return None
    return QuantizationConfig(group_size=int(block["group_size"]), bits=int(block["bits"]))


def _rope_scale(document: Mapping[str, Any]) -> float:
    """Position multiplier for linear RoPE scaling, 1.0 when unscaled."""
    scaling = document.get("rope_scaling")
    if not scaling or scaling.get("type", scaling.get("rope_type")) != "linear":
        return 1.0
    factor = scaling.get("factor")
    if isinstance(factor, bool) or not isinstance(factor, (int, float)):
        raise ConfigurationError(f"rope_scaling.factor must be a number, got {factor!r}")
    return 1.0 / float(factor)


def decode_llama_config(document: Mapping[str, Any]) -> TransformerConfig:
    """Decode Llama-family keys (also used by Mistral)."""
    return TransformerConfig(
        model_type=document["model_type"],
        vocab_size=int(document["vocab_size"]),
        hidden_dim=int(document["hidden_size"]),
        num_heads=int(document["num_attention_heads"]),
        num_kv_heads=document.get("num_key_value_heads"),
        num_layers=int(document["num_hidden_layers"]),
        ffn_dim=int(document["intermediate_size"]),
        max_seq_len=int(document.get("max_position_embeddings", 2048)),
        head_size=document.get("head_dim"),
        tie_word_embeddings=bool(document.get("tie_word_embeddings", False)),
        rope_theta=float(document.get("rope_theta", 10000.0)),
        rope_scale=_rope_scale(document),
        rope_traditional=bool(document.get("rope_traditional", False)),
        layer_norm_epsilon=float(document.get("rms_norm_eps", 1e-6)),
        attention_bias=bool(document.get("attention_bias", False)),
        ffn_bias=bool(document.get("mlp_bias", False)),
        quantization=_quantization(document),
    )


def decode_exaone_config(document: Mapping[str, Any]) -> TransformerConfig:
    """Decode Exaone keys.

    Exaone names its layer count ``num_layers`` and its norm epsilon
    ``layer_norm_epsilon``; ``rope_theta``, ``num_key_value_heads`` and the
    epsilon are required, and embeddings are tied unless stated otherwise.
    """
    return TransformerConfig(
        model_type=document["model_type"],
        vocab_size=int(document["vocab_size"]),
        hidden_dim=int(document["hidden_size"]),
        num_heads=int(document["num_attention_heads"]),
        num_kv_heads=int(document["num_key_value_heads"]),
        num_layers=int(document["num_layers"]),
        ffn_dim=int(document["intermediate_size"]),
        max_seq_len=int(document.get("max_position_embeddings", 2048)),
        head_size=document.get("head_dim"),
        tie_word_embeddings=bool(document.get("tie_word_embeddings", True)),
        rope_theta=float(document["rope_theta"]),
        rope_scale=_rope_scale(document),
        rope_traditional=bool(document.get("rope_traditional", False)),
        layer_norm_epsilon=float(document["layer_norm_epsilon"]),
        attention_bias=bool(document.get("attention_bias", False)),
        ffn_bias=bool(document.get("mlp_bias", False)),
        quantization=_quantization(document),
    )


register_model_type("llama", decode_llama_config)
register_model_type("mistral", decode_llama_config)
register_model_type("exaone", decode_exaone_config)
