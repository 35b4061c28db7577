"""Character-level tokenizer used by the bundled models and the tests.

Any object with ``encode``, ``decode`` and ``eos_token_id`` can stand in for
it; the generation loop only relies on those three members.
"""

from pathlib import Path
from string import printable

import numpy as np

VOCAB_FILE = "vocab.txt"


class CharacterTokenizer:
    """Simple character-level tokenizer with reserved special tokens.

    Ids 0-2 are reserved for padding, beginning-of-sequence and
    end-of-sequence; characters are numbered from 3 in vocabulary order.
    Characters outside the vocabulary encode to the padding id and special
    ids decode to the empty string.
    """

    pad_token_id = 0
    bos_token_id = 1
    eos_token_id = 2
    num_special_tokens = 3

    def __init__(self, vocab: str | None = None) -> None:
        """Initialize tokenizer.

        Args:
            vocab: Characters making up the vocabulary (duplicates are
                ignored). Defaults to printable ASCII.
        """
        chars = sorted(set(vocab if vocab is not None else printable))
        self.char_to_idx = {ch: i + self.num_special_tokens for i, ch in enumerate(chars)}
        self.idx_to_char = {i: ch for ch, i in self.char_to_idx.items()}

    @property
    def vocab_size(self) -> int:
        return len(self.char_to_idx) + self.num_special_tokens

    def encode(self, text: str) -> list[int]:
        """Encode text to token IDs."""
        return [self.char_to_idx.get(ch, self.pad_token_id) for ch in text]

    def decode(self, token_ids: list[int] | np.ndarray) -> str:
        """Decode token IDs to text.

        Args:
            token_ids: Sequence of token IDs.

        Returns:
            Decoded text string.
        """
        if isinstance(token_ids, np.ndarray):
            token_ids = token_ids.tolist()
        return "".join(self.idx_to_char.get(idx, "") for idx in token_ids)


def load_tokenizer(model_dir: str | Path | None) -> CharacterTokenizer:
    """Load the tokenizer shipped with a model directory.

    Reads the vocabulary from ``vocab.txt`` when present, otherwise falls
    back to the default printable-ASCII vocabulary.
    """
    if model_dir is not None:
        vocab_path = Path(model_dir) / VOCAB_FILE
        if vocab_path.is_file():
            return CharacterTokenizer(vocab_path.read_text(encoding="utf-8"))
    return CharacterTokenizer()
