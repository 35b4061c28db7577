"""Headless evaluator: runs generation in the background for a front end.

The evaluator is the producer/consumer seam between a generation session and
whatever presents its output. A worker thread drives the session and puts
fragments on a queue; the presentation side reads them through
:meth:`Evaluator.stream` (or polls ``output``/``stat``) and may cancel at any
time from its own thread.
"""

import logging
import queue
import threading
import time
from collections.abc import Iterator

from cadence.config import GenerateParameters
from cadence.inference.generate import GenerationSession, start_session
from cadence.inference.loader import ModelContainer, ModelHandle
from cadence.inference.streaming import CancellationToken, Chunk, Clock, Fragment

logger = logging.getLogger(__name__)

_DONE = object()


class Evaluator:
    """Drives one generation at a time against a lazily loaded model.

    Attributes:
        handle: Load-once handle of the model.
        parameters: Generation parameters used for every prompt.
        output: Text produced by the current (or last) generation. A failure
            appends a ``Failed: ...`` line instead of truncating silently.
        stat: Latest throughput, e.g. ``"41.30 tokens/s"``.
        model_info: Description of the loaded model.
        error: Exception that ended the last generation, if any.
    """

    def __init__(
        self,
        handle: ModelHandle,
        parameters: GenerateParameters | None = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.handle = handle
        self.parameters = parameters if parameters is not None else GenerateParameters()
        self.clock = clock
        self.output = ""
        self.stat = ""
        self.model_info = ""
        self.error: Exception | None = None

        self._lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._session: GenerationSession | None = None
        self._cancel: CancellationToken | None = None
        self._fragments: queue.Queue | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def session(self) -> GenerationSession | None:
        return self._session

    def load(self) -> ModelContainer:
        """Load the model (once) and update ``model_info``."""
        container = self.handle.load()
        self.model_info = container.describe()
        return container

    def generate(self, prompt: str) -> queue.Queue:
        """Start generating for ``prompt`` in the background.

        A generation already running is cancelled and waited for first, so its
        session and caches are gone before the new prefill starts.

        Returns:
            The queue the worker puts fragments on. It ends with an internal
            sentinel; use :meth:`stream` to consume it.
        """
        with self._start_lock:
            if self.running:
                self.cancel()
                self.wait()

            fragments: queue.Queue = queue.Queue()
            with self._lock:
                self.output = ""
                self.error = None
                self._session = None
                self._cancel = CancellationToken()
                self._fragments = fragments
                self._thread = threading.Thread(
                    target=self._produce,
                    args=(prompt, self._cancel, fragments),
                    name="cadence-generate",
                    daemon=True,
                )
                self._thread.start()
        return fragments

    def stream(self, prompt: str) -> Iterator[Fragment]:
        """Generate for ``prompt`` and yield fragments as the worker emits them.

        Closing the iterator early cancels the generation.

        Raises:
            GenerationError: If the model failed mid-generation.
            ConfigurationError: If the model could not be loaded.
            AssertionError: On a cache or model wiring bug.
        """
        fragments = self.generate(prompt)
        done = False
        try:
            while True:
                item = fragments.get()
                if item is _DONE:
                    done = True
                    return
                if isinstance(item, Exception):
                    done = True
                    raise item
                yield item
        finally:
            if not done:
                self.cancel()

    def cancel(self) -> None:
        """Cancel the running generation. Safe to call from any thread, any number of times."""
        with self._lock:
            if self._cancel is not None:
                self._cancel.cancel()
            if self._session is not None:
                self._session.cancel()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the worker to finish. Returns False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _produce(self, prompt: str, cancel: CancellationToken, fragments: queue.Queue) -> None:
        try:
            container = self.load()
            prompt_tokens = container.tokenizer.encode(prompt)
            if len(prompt_tokens) + self.parameters.max_tokens > container.config.max_seq_len:
                logger.warning(
                    "prompt (%d tokens) plus max_tokens (%d) exceeds max_seq_len (%d)",
                    len(prompt_tokens),
                    self.parameters.max_tokens,
                    container.config.max_seq_len,
                )

            session = start_session(
                container.forward,
                container.new_cache(),
                prompt_tokens,
                self.parameters,
                container.tokenizer,
                clock=self.clock,
            )
            with self._lock:
                self._session = session
                if cancel.cancelled:
                    session.cancel()

            for fragment in session:
                if isinstance(fragment, Chunk):
                    self.output += fragment.text
                else:
                    self.stat = f"{fragment.tokens_per_second:.2f} tokens/s"
                fragments.put(fragment)
        except AssertionError as err:
            # Wiring bugs reach the consumer unchanged, never as a model failure
            logger.critical("internal error during generation", exc_info=True)
            self.error = err
            fragments.put(err)
        except Exception as err:
            logger.error("generation failed: %s", err)
            self.error = err
            self.output += ("\n" if self.output else "") + f"Failed: {err}"
            fragments.put(err)
        finally:
            fragments.put(_DONE)
