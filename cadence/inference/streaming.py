"""Streaming primitives: output fragments, emission throttle, cancellation.

A generation session produces an ordered sequence of fragments. Text is
accumulated in an :class:`EmissionThrottle` and released at a bounded rate;
statistics records are interleaved between text chunks. Cancellation is
cooperative through a :class:`CancellationToken`.
"""

import enum
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

Clock = Callable[[], float]


class StopReason(str, enum.Enum):
    """Why a session stopped producing tokens."""

    LENGTH = "length"
    EOS = "eos"
    CANCELLED = "cancelled"
    ERROR = "error"


class Chunk(NamedTuple):
    """A piece of decoded text. Chunks concatenate, in order, to the response."""

    text: str


class GenerationInfo(NamedTuple):
    """Throughput statistics of a session so far.

    Attributes:
        prompt_tokens: Number of prompt tokens processed by the prefill.
        prompt_time: Seconds spent in the prefill.
        generated_tokens: Tokens sampled so far (an end-of-sequence token
            counts, its text is never emitted).
        generate_time: Seconds spent decoding since the prefill finished.
        stop_reason: Set only on the final record of a session.
    """

    prompt_tokens: int
    prompt_time: float
    generated_tokens: int
    generate_time: float
    stop_reason: StopReason | None = None

    @property
    def tokens_per_second(self) -> float:
        if self.generate_time <= 0.0:
            return 0.0
        return self.generated_tokens / self.generate_time

    @property
    def prompt_tokens_per_second(self) -> float:
        if self.prompt_time <= 0.0:
            return 0.0
        return self.prompt_tokens / self.prompt_time

    def summary(self) -> str:
        return (
            f"Prompt: {self.prompt_tokens} tokens, {self.prompt_tokens_per_second:.2f} tokens/s | "
            f"Generation: {self.generated_tokens} tokens, {self.tokens_per_second:.2f} tokens/s"
        )


Fragment = Chunk | GenerationInfo


class _EndOfStream:
    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


class CancellationToken:
    """Thread-safe, idempotent cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class EmissionThrottle:
    """Buffers text and releases it no more often than ``interval`` seconds.

    State is the pending ``buffer`` and ``last_emit_time``; the clock is
    injected so the policy can be driven without real time. Nothing pushed
    is ever dropped: :meth:`flush` releases whatever is still pending.

    Attributes:
        interval: Minimum seconds between two releases.
        clock: Monotonic time source.
    """

    def __init__(self, interval: float = 0.25, clock: Clock = time.perf_counter) -> None:
        self.interval = interval
        self.clock = clock
        self.buffer = ""
        self.last_emit_time = clock()

    def push(self, text: str) -> str | None:
        """Add text; return everything pending if the interval has elapsed."""
        self.buffer += text
        now = self.clock()
        if now - self.last_emit_time < self.interval:
            return None
        text = self._take()
        if not text:
            return None
        self.last_emit_time = now
        return text

    def due(self) -> bool:
        """Whether a release now would respect the interval. Updates state when true."""
        now = self.clock()
        if now - self.last_emit_time < self.interval:
            return False
        self.last_emit_time = now
        return True

    def flush(self) -> str:
        """Release all pending text regardless of the interval."""
        return self._take()

    def _take(self) -> str:
        text, self.buffer = self.buffer, ""
        return text
