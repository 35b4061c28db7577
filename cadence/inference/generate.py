"""Incremental text generation with a KV-Cache and throttled streaming.

A :class:`GenerationSession` drives the model one token at a time:

1. Prefill: the whole prompt goes through the model in one call, writing every
   prompt position into each layer's cache.
2. Decode: each step feeds only the previously sampled token, samples the
   next one and decodes it to text.
3. Termination (token budget, end-of-sequence, cancellation or a model
   failure): pending text is flushed as a final chunk and a final statistics
   record is emitted.

The session is a lazy, non-restartable stream of fragments. The consumer
pulls it with :meth:`GenerationSession.next_fragment` or plain iteration and
may call :meth:`GenerationSession.cancel` from any thread.
"""

import enum
import logging
import time
from collections.abc import Iterator, Sequence
from typing import Protocol

import jax
import jax.numpy as jnp
import numpy as np

from cadence.config import GenerateParameters
from cadence.inference.sampling import sample_token
from cadence.inference.streaming import (
    END_OF_STREAM,
    CancellationToken,
    Chunk,
    Clock,
    EmissionThrottle,
    Fragment,
    GenerationInfo,
    StopReason,
)
from cadence.layers.kv_cache import KVCache
from cadence.model.transformer import ForwardFn

Array = jnp.ndarray

logger = logging.getLogger(__name__)


class Tokenizer(Protocol):
    eos_token_id: int | None

    def encode(self, text: str) -> list[int]: ...

    def decode(self, token_ids: Sequence[int]) -> str: ...


class SessionState(enum.Enum):
    IDLE = "idle"
    PREFILLING = "prefilling"
    DECODING = "decoding"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class GenerationError(RuntimeError):
    """The model failed during a session. The session's caches are discarded."""


def session_rng(parameters: GenerateParameters) -> jax.Array:
    """RNG key for a new session: the fixed seed, or one derived from the clock."""
    if parameters.seed is not None:
        return jax.random.PRNGKey(parameters.seed)
    return jax.random.PRNGKey(int(time.time() * 1000) % (2**31))


class GenerationSession:
    """One prompt's generation run, from prefill to the final flush.

    The session owns its caches exclusively and drops its reference to them
    once it terminates. A new prompt needs a new session with fresh caches.

    Attributes:
        parameters: Sampling parameters and token budget.
        state: Current :class:`SessionState`.
        stop_reason: Why decoding stopped, ``None`` while running.
        tokens: Token ids sampled so far.
        text: Text emitted so far (concatenation of all chunks).
    """

    def __init__(
        self,
        forward: ForwardFn,
        caches: list[KVCache],
        prompt_tokens: Sequence[int] | Array,
        parameters: GenerateParameters,
        tokenizer: Tokenizer,
        rng: jax.Array,
        clock: Clock = time.perf_counter,
        eos_token_id: int | None = None,
    ) -> None:
        prompt = np.asarray(prompt_tokens, dtype=np.int32).reshape(-1)
        if prompt.size == 0:
            raise ValueError("prompt must contain at least one token")

        self.forward = forward
        self.caches: list[KVCache] | None = caches
        self.prompt_tokens = jnp.asarray(prompt)[None, :]
        self.parameters = parameters
        self.tokenizer = tokenizer
        self.rng = rng
        self.clock = clock
        self.eos_token_id = eos_token_id if eos_token_id is not None else tokenizer.eos_token_id

        self.state = SessionState.IDLE
        self.stop_reason: StopReason | None = None
        self.tokens: list[int] = []
        self.text = ""
        self._cancel = CancellationToken()
        self._fragments = self._run()

    @property
    def prompt_length(self) -> int:
        return int(self.prompt_tokens.shape[1])

    @property
    def cancelled(self) -> bool:
        return self._cancel.cancelled

    def cancel(self) -> None:
        """Request cancellation. Honored before the next model call."""
        self._cancel.cancel()

    def next_fragment(self) -> Fragment | object:
        """Return the next fragment, or ``END_OF_STREAM`` once finished.

        Raises:
            GenerationError: If the model failed. Raised after the text
                buffered before the failure has been returned.
        """
        return next(self._fragments, END_OF_STREAM)

    def __iter__(self) -> Iterator[Fragment]:
        return self._fragments

    def _info(self, prompt_time: float, decode_start: float, stop_reason: StopReason | None = None) -> GenerationInfo:
        return GenerationInfo(
            prompt_tokens=self.prompt_length,
            prompt_time=prompt_time,
            generated_tokens=len(self.tokens),
            generate_time=self.clock() - decode_start,
            stop_reason=stop_reason,
        )

    def _chunk(self, text: str) -> Chunk:
        self.text += text
        return Chunk(text)

    def _sample(self, logits: Array) -> int:
        params = self.parameters
        self.rng, step_rng = jax.random.split(self.rng)
        token = sample_token(
            logits,
            step_rng,
            temperature=params.temperature,
            top_k=params.top_k,
            top_p=params.top_p,
        )
        return int(token[0])

    def _run(self) -> Iterator[Fragment]:
        params = self.parameters
        throttle = EmissionThrottle(params.update_interval, self.clock)
        stats = EmissionThrottle(params.stats_interval, self.clock)

        start = self.clock()
        prompt_time = 0.0
        decode_start = start
        failure: Exception | None = None
        reason = StopReason.LENGTH

        try:
            if self.cancelled:
                reason = StopReason.CANCELLED
            else:
                self.state = SessionState.PREFILLING
                logits = self.forward(self.prompt_tokens, self.caches)[:, -1, :]
                decode_start = self.clock()
                prompt_time = decode_start - start
                self.state = SessionState.DECODING

                while True:
                    if self.cancelled:
                        reason = StopReason.CANCELLED
                        break
                    if len(self.tokens) >= params.max_tokens:
                        reason = StopReason.LENGTH
                        break

                    if self.tokens:
                        last = jnp.array([[self.tokens[-1]]], dtype=jnp.int32)
                        logits = self.forward(last, self.caches)[:, -1, :]

                    token = self._sample(logits)
                    self.tokens.append(token)
                    if token == self.eos_token_id:
                        reason = StopReason.EOS
                        break

                    piece = self.tokenizer.decode([token])
                    logger.debug("token %d -> %r", token, piece)
                    text = throttle.push(piece)
                    if text:
                        yield self._chunk(text)
                    if stats.due():
                        yield self._info(prompt_time, decode_start)
        except AssertionError:
            raise
        except Exception as err:
            failure = err
            reason = StopReason.ERROR

        self.stop_reason = reason
        self.state = {
            StopReason.CANCELLED: SessionState.CANCELLED,
            StopReason.ERROR: SessionState.FAILED,
        }.get(reason, SessionState.COMPLETED)
        self.caches = None

        remainder = throttle.flush()
        if remainder:
            yield self._chunk(remainder)
        info = self._info(prompt_time, decode_start, stop_reason=reason)
        logger.info("session %s: %s", reason.value, info.summary())
        yield info

        if failure is not None:
            raise GenerationError(f"generation failed after {len(self.tokens)} tokens: {failure}") from failure


def start_session(
    forward: ForwardFn,
    caches: list[KVCache],
    prompt_tokens: Sequence[int] | Array,
    parameters: GenerateParameters,
    tokenizer: Tokenizer,
    rng: jax.Array | None = None,
    clock: Clock = time.perf_counter,
) -> GenerationSession:
    """Create a session over fresh caches.

    Args:
        forward: Model evaluation function ``forward(token_ids, caches)``.
        caches: Empty per-layer caches owned by the new session.
        prompt_tokens: Encoded prompt.
        parameters: Sampling parameters and token budget.
        tokenizer: Decodes sampled ids; supplies the end-of-sequence id.
        rng: Sampling key. Defaults to :func:`session_rng`.
        clock: Time source for throttling and statistics.

    Returns:
        A session in the ``IDLE`` state; nothing runs until the first pull.
    """
    assert all(cache.is_empty for cache in caches), "a new session needs empty caches"
    if rng is None:
        rng = session_rng(parameters)
    logger.info(
        "starting session: %d prompt tokens, max_tokens=%d, temperature=%.2f",
        len(np.asarray(prompt_tokens).reshape(-1)),
        parameters.max_tokens,
        parameters.temperature,
    )
    return GenerationSession(forward, caches, prompt_tokens, parameters, tokenizer, rng, clock=clock)
