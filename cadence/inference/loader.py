"""Model loading and the load-once model handle.

A model directory holds ``config.json`` (decoded through the architecture
registry), optionally ``params.msgpack`` (Flax-serialized parameters) and
optionally ``vocab.txt`` (the character vocabulary). :class:`ModelHandle`
wraps a loader so that any number of concurrent ``load()`` calls perform a
single initialization and all receive the same :class:`ModelContainer`.
"""

import enum
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, NamedTuple

import jax
import jax.numpy as jnp
from flax import serialization

from cadence.config import ConfigurationError, TransformerConfig
from cadence.layers.kv_cache import KVCache, make_cache
from cadence.model.transformer import ForwardFn, count_params, make_forward
from cadence.registry import get_architecture, load_config
from cadence.tokenizer import CharacterTokenizer, load_tokenizer

PyTree = Any

PARAMS_FILE = "params.msgpack"

logger = logging.getLogger(__name__)


class ModelContainer(NamedTuple):
    """Everything a generation session needs from a loaded model.

    Attributes:
        model_id: Display name (the model directory name).
        config: Decoded architecture configuration.
        model: The Flax module.
        params: Model parameters (the 'params' dict, not wrapped).
        tokenizer: Tokenizer matching the model's vocabulary.
    """

    model_id: str
    config: TransformerConfig
    model: Any
    params: PyTree
    tokenizer: CharacterTokenizer

    @property
    def forward(self) -> ForwardFn:
        return make_forward(self.model, self.params)

    @property
    def num_params(self) -> int:
        return count_params(self.params)

    def new_cache(self) -> list[KVCache]:
        return make_cache(self.config.num_layers)

    def describe(self) -> str:
        info = f"Loaded {self.model_id}.  Weights: {self.num_params / (1024 * 1024):.1f}M"
        if self.config.quantization is not None:
            info += f" ({self.config.quantization.bits}-bit, group {self.config.quantization.group_size})"
        return info


def load_model_container(model_dir: str | Path, seed: int = 0) -> ModelContainer:
    """Load a model directory.

    Args:
        model_dir: Directory with ``config.json`` and optional weights/vocab.
        seed: Initialization seed used when no weights file is present.

    Returns:
        The loaded model.

    Raises:
        ConfigurationError: If the configuration is invalid, the tokenizer
            does not fit the vocabulary, or the weights do not match the
            architecture.
    """
    model_dir = Path(model_dir)
    config = load_config(model_dir)
    architecture = get_architecture(config.model_type)
    tokenizer = load_tokenizer(model_dir)
    if tokenizer.vocab_size > config.vocab_size:
        raise ConfigurationError(
            f"tokenizer has {tokenizer.vocab_size} tokens but vocab_size is {config.vocab_size}"
        )

    model = architecture.model_class(config=config)
    variables = model.init(jax.random.PRNGKey(seed), jnp.zeros((1, 1), dtype=jnp.int32))
    params = variables["params"]

    weights_path = model_dir / PARAMS_FILE
    if weights_path.is_file():
        try:
            params = serialization.from_bytes(params, weights_path.read_bytes())
        except (KeyError, ValueError) as err:
            raise ConfigurationError(f"weights in {weights_path} do not match the configuration: {err}") from err
    else:
        logger.warning("no %s in %s, using randomly initialized weights", PARAMS_FILE, model_dir)

    container = ModelContainer(model_dir.name, config, model, params, tokenizer)
    logger.info("%s (%s, %d layers)", container.describe(), config.model_type, config.num_layers)
    return container


def create_demo_container(vocab: str | None = None, seed: int = 42) -> ModelContainer:
    """A tiny, untrained character-level model for demos and smoke tests."""
    tokenizer = CharacterTokenizer(vocab)
    config = TransformerConfig(
        vocab_size=tokenizer.vocab_size,
        hidden_dim=64,
        num_heads=4,
        num_kv_heads=2,
        num_layers=4,
        ffn_dim=128,
        max_seq_len=512,
        model_type="llama",
    )
    model = get_architecture(config.model_type).model_class(config=config)
    variables = model.init(jax.random.PRNGKey(seed), jnp.zeros((1, 1), dtype=jnp.int32))
    return ModelContainer("demo", config, model, variables["params"], tokenizer)


def save_params(params: PyTree, model_dir: str | Path) -> Path:
    """Write parameters next to a model's ``config.json``."""
    path = Path(model_dir) / PARAMS_FILE
    path.write_bytes(serialization.to_bytes(params))
    return path


class LoadState(enum.Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class ModelHandle:
    """Load-once access to a model.

    The first ``load()`` runs the loader; calls arriving while it runs wait
    for it and get the same container. A failed load returns the handle to
    ``UNLOADED`` and re-raises, leaving no partial state behind.
    """

    def __init__(self, loader: Callable[[], ModelContainer]) -> None:
        self._loader = loader
        self._condition = threading.Condition()
        self._state = LoadState.UNLOADED
        self._container: ModelContainer | None = None

    @classmethod
    def from_directory(cls, model_dir: str | Path, seed: int = 0) -> "ModelHandle":
        return cls(lambda: load_model_container(model_dir, seed=seed))

    @property
    def state(self) -> LoadState:
        return self._state

    def load(self) -> ModelContainer:
        with self._condition:
            while self._state is LoadState.LOADING:
                self._condition.wait()
            if self._state is LoadState.LOADED:
                return self._container
            self._state = LoadState.LOADING

        try:
            container = self._loader()
        except BaseException:
            with self._condition:
                self._state = LoadState.UNLOADED
                self._condition.notify_all()
            raise

        with self._condition:
            self._container = container
            self._state = LoadState.LOADED
            self._condition.notify_all()
        return container


def device_memory_stats(device: jax.Device | None = None) -> dict[str, int] | None:
    """Allocator statistics of a device (``None`` where the backend has none)."""
    if device is None:
        device = jax.local_devices()[0]
    return device.memory_stats()


def format_bytes(num_bytes: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if abs(num_bytes) < 1024:
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f} TB"
