"""Tests for configuration decoding and the architecture registry."""

import json

import pytest

from cadence.config import ConfigurationError, TransformerConfig
from cadence.model.transformer import TransformerLM
from cadence.registry import (
    decode_config,
    get_architecture,
    load_config,
    register_model_type,
    registered_model_types,
)

LLAMA_DOCUMENT = {
    "model_type": "llama",
    "vocab_size": 128,
    "hidden_size": 64,
    "num_attention_heads": 4,
    "num_key_value_heads": 2,
    "num_hidden_layers": 2,
    "intermediate_size": 160,
    "rms_norm_eps": 1e-5,
    "rope_theta": 500000.0,
    "max_position_embeddings": 256,
}

EXAONE_DOCUMENT = {
    "model_type": "exaone",
    "vocab_size": 128,
    "hidden_size": 64,
    "num_layers": 3,
    "intermediate_size": 160,
    "num_attention_heads": 4,
    "num_key_value_heads": 1,
    "rope_theta": 10000.0,
    "layer_norm_epsilon": 1e-5,
    "rope_scaling": {"type": "linear", "factor": 4.0},
}


class TestDecoders:
    """Tests for the built-in family decoders."""

    def test_llama(self) -> None:
        """Llama keys map onto TransformerConfig fields."""
        config = decode_config(LLAMA_DOCUMENT)

        assert config.model_type == "llama"
        assert config.hidden_dim == 64
        assert config.num_heads == 4
        assert config.kv_heads == 2
        assert config.num_layers == 2
        assert config.ffn_dim == 160
        assert config.layer_norm_epsilon == pytest.approx(1e-5)
        assert config.rope_theta == pytest.approx(500000.0)
        assert config.max_seq_len == 256
        assert config.rope_scale == 1.0
        assert not config.tie_word_embeddings
        assert config.quantization is None

    def test_mistral_uses_llama_keys(self) -> None:
        """Mistral shares the Llama decoder."""
        config = decode_config({**LLAMA_DOCUMENT, "model_type": "mistral"})
        assert config.model_type == "mistral"
        assert config.num_layers == 2

    def test_exaone(self) -> None:
        """Exaone keys, defaults and linear RoPE scaling."""
        config = decode_config(EXAONE_DOCUMENT)

        assert config.model_type == "exaone"
        assert config.num_layers == 3
        assert config.kv_heads == 1
        assert config.tie_word_embeddings
        assert not config.ffn_bias
        assert config.rope_scale == pytest.approx(0.25)

    def test_exaone_explicit_head_dim(self) -> None:
        """An explicit head_dim is honoured."""
        config = decode_config({**EXAONE_DOCUMENT, "head_dim": 32})
        assert config.head_dim == 32

    def test_quantization_block(self) -> None:
        """The quantization block is decoded."""
        config = decode_config({**LLAMA_DOCUMENT, "quantization": {"group_size": 32, "bits": 8}})
        assert config.quantization.group_size == 32
        assert config.quantization.bits == 8

    def test_non_linear_rope_scaling_ignored(self) -> None:
        """Only linear scaling changes positions."""
        config = decode_config({**LLAMA_DOCUMENT, "rope_scaling": {"rope_type": "dynamic", "factor": 2.0}})
        assert config.rope_scale == 1.0


class TestConfigurationErrors:
    """Configuration problems surface as ConfigurationError."""

    def test_unknown_model_type(self) -> None:
        """An unregistered tag is rejected with the known tags listed."""
        with pytest.raises(ConfigurationError, match="Unsupported model type 'gpt-j'"):
            decode_config({**LLAMA_DOCUMENT, "model_type": "gpt-j"})

    def test_missing_model_type(self) -> None:
        """model_type is mandatory."""
        document = dict(LLAMA_DOCUMENT)
        del document["model_type"]
        with pytest.raises(ConfigurationError, match="model_type"):
            decode_config(document)

    def test_missing_required_field(self) -> None:
        """The error names the missing field."""
        document = dict(EXAONE_DOCUMENT)
        del document["layer_norm_epsilon"]
        with pytest.raises(ConfigurationError, match="layer_norm_epsilon"):
            decode_config(document)

    def test_invalid_values(self) -> None:
        """Validation failures are reported as configuration errors."""
        with pytest.raises(ConfigurationError, match="divisible"):
            decode_config({**LLAMA_DOCUMENT, "hidden_size": 30, "num_key_value_heads": None})

    def test_wrong_types(self) -> None:
        """Values of the wrong type are reported as configuration errors."""
        with pytest.raises(ConfigurationError):
            decode_config({**LLAMA_DOCUMENT, "hidden_size": "wide"})

    def test_bad_rope_factor(self) -> None:
        """A non-numeric linear scaling factor is rejected."""
        document = {**EXAONE_DOCUMENT, "rope_scaling": {"type": "linear", "factor": "two"}}
        with pytest.raises(ConfigurationError, match="factor"):
            decode_config(document)

    def test_not_an_object(self) -> None:
        """The document must be a JSON object."""
        with pytest.raises(ConfigurationError):
            decode_config([LLAMA_DOCUMENT])

    def test_is_value_error(self) -> None:
        """Callers catching ValueError also see configuration errors."""
        assert issubclass(ConfigurationError, ValueError)


class TestLoadConfig:
    """Tests for reading config.json from disk."""

    def test_from_directory(self, tmp_path) -> None:
        """A model directory resolves to its config.json."""
        (tmp_path / "config.json").write_text(json.dumps(LLAMA_DOCUMENT))
        assert load_config(tmp_path).hidden_dim == 64

    def test_from_file(self, tmp_path) -> None:
        """A path to the file itself also works."""
        path = tmp_path / "exaone.json"
        path.write_text(json.dumps(EXAONE_DOCUMENT))
        assert load_config(path).model_type == "exaone"

    def test_missing_file(self, tmp_path) -> None:
        """A missing file is a configuration error."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path)

    def test_malformed_json(self, tmp_path) -> None:
        """Broken JSON is a configuration error."""
        (tmp_path / "config.json").write_text("{ not json")
        with pytest.raises(ConfigurationError, match="malformed"):
            load_config(tmp_path)

    def test_invalid_utf8(self, tmp_path) -> None:
        """Undecodable bytes are a configuration error."""
        (tmp_path / "config.json").write_bytes(b'{"model_type": "llama\xff"}')
        with pytest.raises(ConfigurationError, match="UTF-8"):
            load_config(tmp_path)

    def test_unreadable_path(self, tmp_path) -> None:
        """A config path that cannot be read as a file is a configuration error."""
        (tmp_path / "config.json").mkdir()
        with pytest.raises(ConfigurationError, match="cannot read"):
            load_config(tmp_path)


class TestRegistry:
    """Tests for registering architectures."""

    def test_builtins_registered(self) -> None:
        """The built-in families are available at import time."""
        assert {"llama", "mistral", "exaone"} <= set(registered_model_types())
        assert get_architecture("llama").model_class is TransformerLM

    def test_register_custom_type(self) -> None:
        """A new tag can be registered with its own decoder."""

        def decode_toy(document) -> TransformerConfig:
            return TransformerConfig(
                model_type="toy",
                vocab_size=document["vocab"],
                hidden_dim=32,
                num_heads=2,
                num_layers=1,
                ffn_dim=64,
            )

        register_model_type("toy", decode_toy)

        config = decode_config({"model_type": "toy", "vocab": 77})
        assert config.vocab_size == 77
        assert get_architecture("toy").model_type == "toy"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
